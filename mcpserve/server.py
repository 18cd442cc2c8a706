"""A model context protocol server that dispatches JSON-RPC messages."""

from __future__ import annotations

import base64
import binascii
import bisect
import json
import threading
from dataclasses import dataclass
from typing import Any, Callable

from .hooks import Hooks
from .protocol import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    JSONRPC_VERSION,
    LATEST_PROTOCOL_VERSION,
    METHOD_INITIALIZE,
    METHOD_NOT_FOUND,
    METHOD_PING,
    METHOD_PROMPTS_GET,
    METHOD_PROMPTS_LIST,
    METHOD_RESOURCES_LIST,
    METHOD_RESOURCES_READ,
    METHOD_RESOURCES_TEMPLATES_LIST,
    METHOD_SET_LOG_LEVEL,
    METHOD_TOOLS_CALL,
    METHOD_TOOLS_LIST,
    NOTIFICATION_PROMPTS_LIST_CHANGED,
    NOTIFICATION_RESOURCES_LIST_CHANGED,
    NOTIFICATION_TOOLS_LIST_CHANGED,
    PARSE_ERROR,
    RESOURCE_NOT_FOUND,
    VALID_PROTOCOL_VERSIONS,
    Implementation,
    InitializeResult,
    JSONRPCError,
    JSONRPCNotification,
    JSONRPCResponse,
    ListResult,
    LoggingLevel,
    MCPServerError,
    NotificationChannelBlockedError,
    NotificationNotInitializedError,
    Prompt,
    PromptNotFoundError,
    Resource,
    ResourceNotFoundError,
    ResourceTemplate,
    ServerCapabilities,
    SessionDoesNotSupportLoggingError,
    SessionDoesNotSupportToolsError,
    SessionExistsError,
    SessionNotFoundError,
    SessionNotInitializedError,
    Tool,
    ToolNotFoundError,
    UnparsableMessageError,
    UnsupportedError,
)
from .sessions import (
    CLIENT_SESSION_KEY,
    ClientSession,
    Context,
    SessionWithClientInfo,
    SessionWithLogging,
    SessionWithTools,
    client_session_from_context,
)

ToolHandler = Callable[[Any, dict], Any]
ToolMiddleware = Callable[[ToolHandler], ToolHandler]
ToolFilter = Callable[[Any, list], list]
ServerOption = Callable[["MCPServer"], None]


@dataclass
class ServerTool:
    """A tool together with the function that handles calls to it."""

    tool: Tool
    handler: ToolHandler | None = None


@dataclass
class ServerPrompt:
    """A prompt together with the function that renders it."""

    prompt: Prompt
    handler: Callable[[Any, dict], Any] | None = None


@dataclass
class ServerResource:
    """A resource together with the function that reads it."""

    resource: Resource
    handler: Callable[[Any, dict], Any] | None = None


class _ServerKey:
    def __repr__(self) -> str:
        return "SERVER_KEY"


SERVER_KEY = _ServerKey()


def server_from_context(ctx: Context | None) -> MCPServer | None:
    """Return the server stored in ``ctx``, if any."""
    if ctx is None:
        return None
    srv = ctx.value(SERVER_KEY)
    return srv if isinstance(srv, MCPServer) else None


class _RequestError(Exception):
    def __init__(self, code: int, error: BaseException) -> None:
        super().__init__(str(error))
        self.code = code
        self.error = error


def _call_user(func: Callable[..., Any], *args: Any) -> Any:
    try:
        return func(*args)
    except _RequestError:
        raise
    except Exception as exc:
        raise _RequestError(INTERNAL_ERROR, exc) from exc


@dataclass
class _ResourceCaps:
    subscribe: bool = False
    list_changed: bool = False


@dataclass
class _Capabilities:
    tools: bool | None = None  # listChanged value; None means absent
    prompts: bool | None = None
    resources: _ResourceCaps | None = None
    logging: bool = False


def with_pagination_limit(limit: int) -> ServerOption:
    def apply(s: MCPServer) -> None:
        s._pagination_limit = limit
    return apply


def with_resource_capabilities(subscribe: bool, list_changed: bool) -> ServerOption:
    def apply(s: MCPServer) -> None:
        s._caps.resources = _ResourceCaps(subscribe, list_changed)
    return apply


def with_prompt_capabilities(list_changed: bool) -> ServerOption:
    def apply(s: MCPServer) -> None:
        s._caps.prompts = list_changed
    return apply


def with_tool_capabilities(list_changed: bool) -> ServerOption:
    def apply(s: MCPServer) -> None:
        s._caps.tools = list_changed
    return apply


def with_logging() -> ServerOption:
    def apply(s: MCPServer) -> None:
        s._caps.logging = True
    return apply


def with_instructions(instructions: str) -> ServerOption:
    def apply(s: MCPServer) -> None:
        s.instructions = instructions
    return apply


def with_hooks(hooks: Hooks | None) -> ServerOption:
    def apply(s: MCPServer) -> None:
        s.hooks = hooks if hooks is not None else Hooks()
    return apply


def with_tool_handler_middleware(middleware: ToolMiddleware) -> ServerOption:
    def apply(s: MCPServer) -> None:
        with s._lock:
            s._middlewares.append(middleware)
    return apply


def with_tool_filter(tool_filter: ToolFilter) -> ServerOption:
    def apply(s: MCPServer) -> None:
        with s._lock:
            s._tool_filters.append(tool_filter)
    return apply


def with_recovery() -> ServerOption:
    """Report any exception escaping a tool handler as a recovered failure."""

    def middleware(next_handler: ToolHandler) -> ToolHandler:
        def handler(ctx: Any, request: dict) -> Any:
            try:
                return next_handler(ctx, request)
            except Exception as exc:
                raise RuntimeError(
                    f"panic recovered in {request.get('name', '')} tool handler: {exc}"
                ) from exc
        return handler

    return with_tool_handler_middleware(middleware)


def _name_of(item: Any) -> str:
    return item.name


class MCPServer:
    """Holds tools, prompts and resources and answers JSON-RPC requests about them."""

    def __init__(self, name: str, version: str, *args: ServerOption) -> None:
        self.name = name
        self.version = version
        self.instructions = ""
        self.hooks = Hooks()
        self._lock = threading.RLock()
        self._resources: dict[str, ServerResource] = {}
        self._templates: dict[str, tuple[ResourceTemplate, Callable]] = {}
        self._prompts: dict[str, ServerPrompt] = {}
        self._tools: dict[str, ServerTool] = {}
        self._middlewares: list[ToolMiddleware] = []
        self._tool_filters: list[ToolFilter] = []
        self._notification_handlers: dict[str, Callable] = {}
        self._sessions: dict[str, ClientSession] = {}
        self._caps = _Capabilities()
        self._pagination_limit: int | None = None
        self._routes: dict[str, tuple[str | None, Callable]] = {
            METHOD_INITIALIZE: (None, self._handle_initialize),
            METHOD_PING: (None, lambda ctx, rid, params: {}),
            METHOD_SET_LOG_LEVEL: ("logging", self._handle_set_level),
            METHOD_RESOURCES_LIST: ("resources", self._handle_list_resources),
            METHOD_RESOURCES_TEMPLATES_LIST: ("resources", self._handle_list_templates),
            METHOD_RESOURCES_READ: ("resources", self._handle_read_resource),
            METHOD_PROMPTS_LIST: ("prompts", self._handle_list_prompts),
            METHOD_PROMPTS_GET: ("prompts", self._handle_get_prompt),
            METHOD_TOOLS_LIST: ("tools", self._handle_list_tools),
            METHOD_TOOLS_CALL: ("tools", self._handle_tool_call),
        }
        for option in args:
            option(self)

    # ----- message dispatch -------------------------------------------------

    def handle_message(self, message: str | bytes | dict, ctx: Context | None = None) -> Any:
        """Handle one JSON-RPC message; returns a response, an error, or None."""
        ctx = (ctx or Context()).with_value(SERVER_KEY, self)
        if isinstance(message, dict):
            raw, msg = json.dumps(message), message
        else:
            raw = message.decode() if isinstance(message, bytes) else message
            try:
                msg = json.loads(raw)
            except (ValueError, UnicodeDecodeError):
                return JSONRPCError(None, PARSE_ERROR, "Failed to parse message")
        if not isinstance(msg, dict):
            return JSONRPCError(None, PARSE_ERROR, "Failed to parse message")
        request_id = msg.get("id")
        if msg.get("jsonrpc") != JSONRPC_VERSION:
            return JSONRPCError(request_id, INVALID_REQUEST, "Invalid JSON-RPC version")
        method = msg.get("method") or ""
        if request_id is None:
            params = msg.get("params")
            if params is not None and not isinstance(params, dict):
                return JSONRPCError(None, PARSE_ERROR, "Failed to parse notification")
            self._handle_notification(ctx, JSONRPCNotification(method, params or {}))
            return None
        if msg.get("result") is not None:
            return None
        try:
            self.hooks.request_initialization(ctx, request_id, msg)
        except Exception as exc:
            return JSONRPCError(request_id, INVALID_REQUEST, str(exc))

        route = self._routes.get(method)
        if route is None:
            return JSONRPCError(request_id, METHOD_NOT_FOUND, f"Method {method} not found")
        capability, handler = route
        params: Any = {}
        try:
            if capability is not None and not self._has_capability(capability):
                raise _RequestError(
                    METHOD_NOT_FOUND, UnsupportedError(f"{capability} not supported")
                )
            params = msg.get("params")
            if params is None:
                params = {}
            elif not isinstance(params, dict):
                raise _RequestError(
                    INVALID_REQUEST,
                    UnparsableMessageError(raw, method, ValueError("params must be an object")),
                )
            self.hooks.before(ctx, request_id, method, params)
            result = handler(ctx, request_id, params)
        except _RequestError as err:
            self.hooks.error(ctx, request_id, method, params, err.error)
            return JSONRPCError(request_id, err.code, str(err.error))
        self.hooks.after(ctx, request_id, method, params, result)
        return JSONRPCResponse(request_id, result)

    def _has_capability(self, name: str) -> bool:
        if name == "logging":
            return self._caps.logging
        return getattr(self._caps, name) is not None

    def _handle_notification(self, ctx: Context, notification: JSONRPCNotification) -> None:
        with self._lock:
            handler = self._notification_handlers.get(notification.method)
        if handler is not None:
            handler(ctx, notification)

    # ----- request handlers -------------------------------------------------

    def _handle_initialize(self, ctx: Context, request_id: Any, params: dict) -> InitializeResult:
        caps = ServerCapabilities()
        if self._caps.resources is not None:
            caps.resources = {
                "subscribe": self._caps.resources.subscribe,
                "listChanged": self._caps.resources.list_changed,
            }
        if self._caps.prompts is not None:
            caps.prompts = {"listChanged": self._caps.prompts}
        if self._caps.tools is not None:
            caps.tools = {"listChanged": self._caps.tools}
        if self._caps.logging:
            caps.logging = {}
        client_version = params.get("protocolVersion", "")
        version = client_version if client_version in VALID_PROTOCOL_VERSIONS else LATEST_PROTOCOL_VERSION
        result = InitializeResult(
            protocol_version=version,
            server_info=Implementation(self.name, self.version),
            capabilities=caps,
            instructions=self.instructions,
        )
        session = client_session_from_context(ctx)
        if session is not None:
            session.initialize()
            if isinstance(session, SessionWithClientInfo):
                info = params.get("clientInfo") or {}
                session.set_client_info(
                    Implementation(str(info.get("name", "")), str(info.get("version", "")))
                )
        return result

    def _handle_set_level(self, ctx: Context, request_id: Any, params: dict) -> dict:
        session = client_session_from_context(ctx)
        if session is None or not session.initialized:
            raise _RequestError(INTERNAL_ERROR, SessionNotInitializedError())
        if not isinstance(session, SessionWithLogging):
            raise _RequestError(INTERNAL_ERROR, SessionDoesNotSupportLoggingError())
        level = params.get("level")
        try:
            parsed = LoggingLevel(level)
        except ValueError:
            raise _RequestError(
                INVALID_PARAMS, ValueError(f"invalid logging level '{level}'")
            ) from None
        session.set_log_level(parsed)
        return {}

    def _paginate(self, cursor: Any, items: list) -> tuple[list, str]:
        start = 0
        if cursor:
            try:
                decoded = base64.b64decode(str(cursor), validate=True).decode()
            except (binascii.Error, ValueError) as exc:
                raise _RequestError(INVALID_PARAMS, exc) from exc
            start = bisect.bisect_right([_name_of(i) for i in items], decoded)
        limit = self._pagination_limit
        end = len(items)
        if limit is not None and len(items) > start + limit:
            end = start + limit
        page = items[start:end]
        next_cursor = ""
        if limit is not None and page and len(page) >= limit:
            next_cursor = base64.b64encode(_name_of(page[-1]).encode()).decode()
        return page, next_cursor

    def _listing(self, kind: str, params: dict, items: list) -> ListResult:
        page, next_cursor = self._paginate(params.get("cursor"), items)
        return ListResult(kind, page, next_cursor)

    def _handle_list_resources(self, ctx: Context, request_id: Any, params: dict) -> ListResult:
        with self._lock:
            items = sorted((e.resource for e in self._resources.values()), key=_name_of)
        return self._listing("resources", params, items)

    def _handle_list_templates(self, ctx: Context, request_id: Any, params: dict) -> ListResult:
        with self._lock:
            items = sorted((t for t, _ in self._templates.values()), key=_name_of)
        return self._listing("resourceTemplates", params, items)

    def _handle_read_resource(self, ctx: Context, request_id: Any, params: dict) -> dict:
        uri = params.get("uri", "")
        with self._lock:
            entry = self._resources.get(uri)
            handler = entry.handler if entry is not None else None
            request = dict(params)
            if entry is None:
                for template, template_handler in self._templates.values():
                    found = template.uri_template.match(uri)
                    if found is not None:
                        handler = template_handler
                        request["arguments"] = dict(found)
                        break
        if entry is None and handler is None:
            raise _RequestError(
                RESOURCE_NOT_FOUND,
                ResourceNotFoundError(
                    f"handler not found for resource URI '{uri}': resource not found"
                ),
            )
        contents = _call_user(handler, ctx, request)
        return {"contents": contents}

    def _handle_list_prompts(self, ctx: Context, request_id: Any, params: dict) -> ListResult:
        with self._lock:
            items = sorted((e.prompt for e in self._prompts.values()), key=_name_of)
        return self._listing("prompts", params, items)

    def _handle_get_prompt(self, ctx: Context, request_id: Any, params: dict) -> Any:
        name = params.get("name", "")
        with self._lock:
            entry = self._prompts.get(name)
        if entry is None:
            raise _RequestError(
                INVALID_PARAMS, PromptNotFoundError(f"prompt '{name}' not found: prompt not found")
            )
        return _call_user(entry.handler, ctx, params)

    def _handle_list_tools(self, ctx: Context, request_id: Any, params: dict) -> ListResult:
        with self._lock:
            tools = {name: entry.tool for name, entry in self._tools.items()}
            filters = list(self._tool_filters)
        session = client_session_from_context(ctx)
        if isinstance(session, SessionWithTools):
            session_tools = session.get_session_tools()
            if session_tools is not None:
                tools.update({name: st.tool for name, st in session_tools.items()})
        items = sorted(tools.values(), key=_name_of)
        for tool_filter in filters:
            items = list(tool_filter(ctx, items) or [])
        return self._listing("tools", params, items)

    def _handle_tool_call(self, ctx: Context, request_id: Any, params: dict) -> Any:
        name = params.get("name", "")
        entry = None
        session = client_session_from_context(ctx)
        if isinstance(session, SessionWithTools):
            entry = (session.get_session_tools() or {}).get(name)
        if entry is None:
            with self._lock:
                entry = self._tools.get(name)
        if entry is None:
            raise _RequestError(
                INVALID_PARAMS, ToolNotFoundError(f"tool '{name}' not found: tool not found")
            )
        handler = entry.handler
        with self._lock:
            middlewares = list(self._middlewares)
        for middleware in reversed(middlewares):
            handler = middleware(handler)
        return _call_user(handler, ctx, params)

    # ----- registration -----------------------------------------------------

    def with_context(self, ctx: Context | None, session: ClientSession) -> Context:
        """Return a context carrying ``session`` as the current client."""
        return (ctx or Context()).with_value(CLIENT_SESSION_KEY, session)

    def add_resources(self, *args: ServerResource) -> None:
        with self._lock:
            if self._caps.resources is None:
                self._caps.resources = _ResourceCaps()
            for entry in args:
                self._resources[entry.resource.uri] = entry
        if self._caps.resources.list_changed:
            self.send_notification_to_all_clients(NOTIFICATION_RESOURCES_LIST_CHANGED, None)

    def add_resource(self, resource: Resource, handler: Callable) -> None:
        self.add_resources(ServerResource(resource, handler))

    def remove_resource(self, uri: str) -> None:
        with self._lock:
            existed = self._resources.pop(uri, None) is not None
        if existed and self._caps.resources is not None and self._caps.resources.list_changed:
            self.send_notification_to_all_clients(NOTIFICATION_RESOURCES_LIST_CHANGED, None)

    def add_resource_template(self, template: ResourceTemplate, handler: Callable) -> None:
        with self._lock:
            if self._caps.resources is None:
                self._caps.resources = _ResourceCaps()
            self._templates[template.uri_template.raw] = (template, handler)
        if self._caps.resources.list_changed:
            self.send_notification_to_all_clients(NOTIFICATION_RESOURCES_LIST_CHANGED, None)

    def add_prompts(self, *args: ServerPrompt) -> None:
        with self._lock:
            if self._caps.prompts is None:
                self._caps.prompts = False
            for entry in args:
                self._prompts[entry.prompt.name] = entry
        if self._caps.prompts:
            self.send_notification_to_all_clients(NOTIFICATION_PROMPTS_LIST_CHANGED, None)

    def add_prompt(self, prompt: Prompt, handler: Callable | None) -> None:
        self.add_prompts(ServerPrompt(prompt, handler))

    def delete_prompts(self, *args: str) -> None:
        with self._lock:
            removed = [n for n in args if self._prompts.pop(n, None) is not None]
        if removed and self._caps.prompts:
            self.send_notification_to_all_clients(NOTIFICATION_PROMPTS_LIST_CHANGED, None)

    def _register_tool_capabilities(self) -> None:
        with self._lock:
            if self._caps.tools is None:
                self._caps.tools = True

    def add_tool(self, tool: Tool, handler: ToolHandler | None) -> None:
        self.add_tools(ServerTool(tool, handler))

    def add_tools(self, *args: ServerTool) -> None:
        self._register_tool_capabilities()
        with self._lock:
            for entry in args:
                self._tools[entry.tool.name] = entry
        if self._caps.tools:
            self.send_notification_to_all_clients(NOTIFICATION_TOOLS_LIST_CHANGED, None)

    def set_tools(self, *args: ServerTool) -> None:
        with self._lock:
            self._tools = {}
        self.add_tools(*args)

    def delete_tools(self, *args: str) -> None:
        with self._lock:
            removed = [n for n in args if self._tools.pop(n, None) is not None]
        if removed and self._caps.tools:
            self.send_notification_to_all_clients(NOTIFICATION_TOOLS_LIST_CHANGED, None)

    def add_notification_handler(self, method: str, handler: Callable) -> None:
        with self._lock:
            self._notification_handlers[method] = handler

    # ----- sessions ---------------------------------------------------------

    def register_session(self, ctx: Any, session: ClientSession) -> None:
        """Track a session; raises SessionExistsError for a duplicate id."""
        with self._lock:
            if session.session_id in self._sessions:
                raise SessionExistsError()
            self._sessions[session.session_id] = session
        self.hooks.register_session(ctx, session)

    def unregister_session(self, ctx: Any, session_id: str) -> None:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is not None:
            self.hooks.unregister_session(ctx, session)

    def _report_blocked(self, ctx: Any, session_id: str, method: str) -> None:
        if self.hooks.on_error:
            self.hooks.error(
                ctx,
                None,
                "notification",
                {"method": method, "sessionID": session_id},
                NotificationChannelBlockedError(
                    f"notification channel blocked for session {session_id}"
                ),
            )

    def _deliver(self, ctx: Any, session: ClientSession, method: str, params: Any) -> None:
        upgrade = getattr(session, "upgrade_to_sse_when_receive_notification", None)
        if callable(upgrade):
            upgrade()
        try:
            session.send(JSONRPCNotification(method, dict(params or {})))
        except NotificationChannelBlockedError:
            self._report_blocked(ctx, session.session_id, method)
            raise

    def send_notification_to_all_clients(self, method: str, params: dict | None) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
        for session in sessions:
            if not session.initialized:
                continue
            try:
                session.send(JSONRPCNotification(method, dict(params or {})))
            except NotificationChannelBlockedError:
                self._report_blocked(Context(), session.session_id, method)

    def send_notification_to_client(self, ctx: Context, method: str, params: dict | None) -> None:
        session = client_session_from_context(ctx)
        if session is None or not session.initialized:
            raise NotificationNotInitializedError()
        self._deliver(ctx, session, method, params)

    def send_notification_to_specific_client(
        self, session_id: str, method: str, params: dict | None
    ) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError()
        if not session.initialized:
            raise SessionNotInitializedError()
        self._deliver(Context(), session, method, params)

    def _session_with_tools(self, session_id: str) -> SessionWithTools:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError()
        if not isinstance(session, SessionWithTools):
            raise SessionDoesNotSupportToolsError()
        return session

    def _notify_session_tools(self, session: SessionWithTools, action: str) -> None:
        if not (session.initialized and self._caps.tools):
            return
        try:
            self.send_notification_to_specific_client(
                session.session_id, NOTIFICATION_TOOLS_LIST_CHANGED, None
            )
        except MCPServerError as exc:
            if self.hooks.on_error:
                failure = MCPServerError(f"failed to send notification after {action} tools: {exc}")
                failure.__cause__ = exc
                self.hooks.error(
                    Context(),
                    None,
                    "notification",
                    {"method": NOTIFICATION_TOOLS_LIST_CHANGED, "sessionID": session.session_id},
                    failure,
                )

    def add_session_tool(self, session_id: str, tool: Tool, handler: ToolHandler | None) -> None:
        self.add_session_tools(session_id, ServerTool(tool, handler))

    def add_session_tools(self, session_id: str, *args: ServerTool) -> None:
        session = self._session_with_tools(session_id)
        self._register_tool_capabilities()
        tools = dict(session.get_session_tools() or {})
        tools.update({entry.tool.name: entry for entry in args})
        session.set_session_tools(tools)
        self._notify_session_tools(session, "adding")

    def delete_session_tools(self, session_id: str, *args: str) -> None:
        session = self._session_with_tools(session_id)
        current = session.get_session_tools()
        if current is None:
            return
        session.set_session_tools({k: v for k, v in current.items() if k not in args})
        self._notify_session_tools(session, "deleting")