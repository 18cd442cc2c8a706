"""Callbacks run around request handling and session registration."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable

BeforeAnyHook = Callable[[Any, Any, str, Any], None]
OnSuccessHook = Callable[[Any, Any, str, Any, Any], None]
OnErrorHook = Callable[[Any, Any, str, Any, BaseException], None]
RequestInitializationHook = Callable[[Any, Any, Any], None]
BeforeHook = Callable[[Any, Any, Any], None]
AfterHook = Callable[[Any, Any, Any, Any], None]
SessionHook = Callable[[Any, Any], None]


@dataclass
class Hooks:
    """Collections of callbacks the server invokes while handling requests.

    Request-initialization hooks reject a request by raising; the first
    exception stops the remaining hooks and propagates to the caller.
    """

    before_any: list[BeforeAnyHook] = field(default_factory=list)
    on_success: list[OnSuccessHook] = field(default_factory=list)
    on_error: list[OnErrorHook] = field(default_factory=list)
    on_request_initialization: list[RequestInitializationHook] = field(default_factory=list)
    before_method: dict[str, list[BeforeHook]] = field(default_factory=lambda: defaultdict(list))
    after_method: dict[str, list[AfterHook]] = field(default_factory=lambda: defaultdict(list))
    on_register_session: list[SessionHook] = field(default_factory=list)
    on_unregister_session: list[SessionHook] = field(default_factory=list)

    def add_before_any(self, hook: BeforeAnyHook) -> None:
        self.before_any.append(hook)

    def add_on_success(self, hook: OnSuccessHook) -> None:
        self.on_success.append(hook)

    def add_on_error(self, hook: OnErrorHook) -> None:
        self.on_error.append(hook)

    def add_on_request_initialization(self, hook: RequestInitializationHook) -> None:
        self.on_request_initialization.append(hook)

    def add_before(self, method: str, hook: BeforeHook) -> None:
        self.before_method.setdefault(method, []).append(hook)

    def add_after(self, method: str, hook: AfterHook) -> None:
        self.after_method.setdefault(method, []).append(hook)

    def add_on_register_session(self, hook: SessionHook) -> None:
        self.on_register_session.append(hook)

    def add_on_unregister_session(self, hook: SessionHook) -> None:
        self.on_unregister_session.append(hook)

    def request_initialization(self, ctx: Any, request_id: Any, message: Any) -> None:
        """Run request-initialization hooks; any exception rejects the request."""
        for hook in self.on_request_initialization:
            hook(ctx, request_id, message)

    def before(self, ctx: Any, request_id: Any, method: str, message: Any) -> None:
        """Run the generic before hooks, then those registered for ``method``."""
        for hook in self.before_any:
            hook(ctx, request_id, method, message)
        for hook in self.before_method.get(method, ()):
            hook(ctx, request_id, message)

    def after(self, ctx: Any, request_id: Any, method: str, message: Any, result: Any) -> None:
        """Run the success hooks, then the after hooks registered for ``method``."""
        for hook in self.on_success:
            hook(ctx, request_id, method, message, result)
        for hook in self.after_method.get(method, ()):
            hook(ctx, request_id, message, result)

    def error(
        self, ctx: Any, request_id: Any, method: str, message: Any, err: BaseException
    ) -> None:
        """Run the error hooks."""
        for hook in self.on_error:
            hook(ctx, request_id, method, message, err)

    def register_session(self, ctx: Any, session: Any) -> None:
        """Run the session-registration hooks."""
        for hook in self.on_register_session:
            hook(ctx, session)

    def unregister_session(self, ctx: Any, session: Any) -> None:
        """Run the session-unregistration hooks."""
        for hook in self.on_unregister_session:
            hook(ctx, session)