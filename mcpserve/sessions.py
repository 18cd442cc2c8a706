"""Client sessions and the request context that carries them."""

from __future__ import annotations

import threading
from collections import deque
from typing import Any

from .protocol import (
    Implementation,
    JSONRPCNotification,
    LoggingLevel,
    NotificationChannelBlockedError,
)

DEFAULT_QUEUE_SIZE = 100


class ClientSession:
    """An active client connection that can receive notifications.

    Notifications are queued up to ``maxsize``; a full queue refuses new ones
    instead of waiting, so a slow client never stalls the server.
    """

    def __init__(self, session_id: str, maxsize: int = DEFAULT_QUEUE_SIZE) -> None:
        if maxsize < 0:
            raise ValueError("maxsize must not be negative")
        self.session_id = session_id
        self.maxsize = maxsize
        self._pending: deque[JSONRPCNotification] = deque()
        self._lock = threading.Lock()
        self._initialized = False

    @property
    def initialized(self) -> bool:
        """Whether the session is ready to accept notifications."""
        return self._initialized

    def initialize(self) -> None:
        """Mark the session as fully initialized."""
        self._initialized = True

    def send(self, notification: JSONRPCNotification) -> None:
        """Queue a notification, raising if the queue is full."""
        with self._lock:
            if len(self._pending) >= self.maxsize:
                raise NotificationChannelBlockedError()
            self._pending.append(notification)

    def drain(self) -> list[JSONRPCNotification]:
        """Remove and return every queued notification, oldest first."""
        with self._lock:
            items = list(self._pending)
            self._pending.clear()
        return items

    @property
    def pending(self) -> int:
        """Number of notifications waiting in the queue."""
        with self._lock:
            return len(self._pending)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.session_id!r})"


class SessionWithTools(ClientSession):
    """A session that carries tools of its own beside the server's tools."""

    def __init__(
        self,
        session_id: str,
        maxsize: int = DEFAULT_QUEUE_SIZE,
        tools: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(session_id, maxsize)
        self._tools_lock = threading.Lock()
        self._tools: dict[str, Any] | None = dict(tools) if tools is not None else None

    def get_session_tools(self) -> dict[str, Any] | None:
        """Return a copy of the session's tools, or None if none were ever set."""
        with self._tools_lock:
            return None if self._tools is None else dict(self._tools)

    def set_session_tools(self, tools: dict[str, Any] | None) -> None:
        """Replace the session's tools with a copy of ``tools``."""
        with self._tools_lock:
            self._tools = None if tools is None else dict(tools)


class SessionWithLogging(ClientSession):
    """A session that keeps the minimum level of log messages it wants."""

    def __init__(self, session_id: str, maxsize: int = DEFAULT_QUEUE_SIZE) -> None:
        super().__init__(session_id, maxsize)
        self._level: LoggingLevel | None = None

    def initialize(self) -> None:
        """Mark the session initialized, starting at the error level."""
        self._level = LoggingLevel.ERROR
        super().initialize()

    def set_log_level(self, level: LoggingLevel | str) -> None:
        """Set the minimum log level; unknown levels raise ValueError."""
        self._level = LoggingLevel(level)

    def get_log_level(self) -> LoggingLevel | None:
        """Return the minimum log level, or None before initialization."""
        return self._level


class SessionWithClientInfo(ClientSession):
    """A session that remembers who the client said it was."""

    def __init__(self, session_id: str, maxsize: int = DEFAULT_QUEUE_SIZE) -> None:
        super().__init__(session_id, maxsize)
        self._client_info = Implementation()

    def get_client_info(self) -> Implementation:
        """Return the stored client information."""
        return self._client_info

    def set_client_info(self, client_info: Implementation) -> None:
        """Store the client information."""
        self._client_info = client_info


class Context:
    """An immutable set of request-scoped values."""

    __slots__ = ("_values",)

    def __init__(self) -> None:
        self._values: dict[Any, Any] = {}

    def with_value(self, key: Any, value: Any) -> Context:
        """Return a new context holding ``value`` under ``key``."""
        child = Context()
        child._values = {**self._values, key: value}
        return child

    def value(self, key: Any) -> Any:
        """Return the value stored under ``key``, or None."""
        return self._values.get(key)

    def __repr__(self) -> str:
        return f"Context({len(self._values)} values)"


class _ClientSessionKey:
    def __repr__(self) -> str:
        return "CLIENT_SESSION_KEY"


CLIENT_SESSION_KEY = _ClientSessionKey()


def client_session_from_context(ctx: Context | None) -> ClientSession | None:
    """Return the client session stored in ``ctx``, if any."""
    if ctx is None:
        return None
    session = ctx.value(CLIENT_SESSION_KEY)
    return session if isinstance(session, ClientSession) else None