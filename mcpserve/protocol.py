"""Protocol data types, constants and errors for a model context protocol server."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .uritemplate import URITemplate

JSONRPC_VERSION = "2.0"
LATEST_PROTOCOL_VERSION = "2025-03-26"
VALID_PROTOCOL_VERSIONS = ("2024-11-05", LATEST_PROTOCOL_VERSION)

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
RESOURCE_NOT_FOUND = -32002

METHOD_INITIALIZE = "initialize"
METHOD_PING = "ping"
METHOD_SET_LOG_LEVEL = "logging/setLevel"
METHOD_RESOURCES_LIST = "resources/list"
METHOD_RESOURCES_TEMPLATES_LIST = "resources/templates/list"
METHOD_RESOURCES_READ = "resources/read"
METHOD_PROMPTS_LIST = "prompts/list"
METHOD_PROMPTS_GET = "prompts/get"
METHOD_TOOLS_LIST = "tools/list"
METHOD_TOOLS_CALL = "tools/call"

NOTIFICATION_RESOURCES_LIST_CHANGED = "notifications/resources/list_changed"
NOTIFICATION_PROMPTS_LIST_CHANGED = "notifications/prompts/list_changed"
NOTIFICATION_TOOLS_LIST_CHANGED = "notifications/tools/list_changed"

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"


class LoggingLevel(str, Enum):
    """Severity levels a client may select for log notifications."""

    DEBUG = "debug"
    INFO = "info"
    NOTICE = "notice"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"
    ALERT = "alert"
    EMERGENCY = "emergency"

    def __str__(self) -> str:
        return self.value


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def to_jsonable(value: Any) -> Any:
    """Convert protocol objects into plain JSON-compatible Python values."""
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict) and not isinstance(value, type):
        return to_jsonable(to_dict())
    if isinstance(value, ListResult):
        out: dict[str, Any] = {value.kind: to_jsonable(value.items)}
        if value.next_cursor:
            out["nextCursor"] = value.next_cursor
        return out
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, URITemplate):
        return value.raw
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            _camel(f.name): to_jsonable(getattr(value, f.name))
            for f in dataclasses.fields(value)
            if getattr(value, f.name) is not None
        }
    if isinstance(value, dict):
        return {str(key): to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    return value


def _default_input_schema() -> dict[str, Any]:
    return {"type": "object", "properties": {}}


@dataclass
class Implementation:
    """Name and version of a client or server."""

    name: str = ""
    version: str = ""


@dataclass
class Tool:
    """A tool a client can call."""

    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=_default_input_schema)
    annotations: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"name": self.name}
        if self.description:
            out["description"] = self.description
        out["inputSchema"] = to_jsonable(self.input_schema)
        if self.annotations:
            out["annotations"] = to_jsonable(self.annotations)
        return out


@dataclass
class PromptArgument:
    """An argument accepted by a prompt."""

    name: str
    description: str = ""
    required: bool = False


@dataclass
class Prompt:
    """A prompt template offered by the server."""

    name: str
    description: str = ""
    arguments: list[PromptArgument] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"name": self.name}
        if self.description:
            out["description"] = self.description
        if self.arguments:
            args = []
            for arg in self.arguments:
                entry: dict[str, Any] = {"name": arg.name}
                if arg.description:
                    entry["description"] = arg.description
                if arg.required:
                    entry["required"] = True
                args.append(entry)
            out["arguments"] = args
        return out


@dataclass
class Resource:
    """A concrete resource addressed by URI."""

    uri: str
    name: str
    description: str = ""
    mime_type: str = ""

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"uri": self.uri, "name": self.name}
        if self.description:
            out["description"] = self.description
        if self.mime_type:
            out["mimeType"] = self.mime_type
        return out


@dataclass
class ResourceTemplate:
    """A family of resources described by a URI template."""

    uri_template: URITemplate
    name: str
    description: str = ""
    mime_type: str = ""

    def __post_init__(self) -> None:
        if isinstance(self.uri_template, str):
            self.uri_template = URITemplate(self.uri_template)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"uriTemplate": self.uri_template.raw, "name": self.name}
        if self.description:
            out["description"] = self.description
        if self.mime_type:
            out["mimeType"] = self.mime_type
        return out


@dataclass
class TextContent:
    """Plain text content."""

    text: str
    type: str = "text"


@dataclass
class TextResourceContents:
    """Text contents of a resource."""

    uri: str
    text: str
    mime_type: str = ""


@dataclass
class PromptMessage:
    """A single message produced by a prompt."""

    role: str
    content: Any


@dataclass
class GetPromptResult:
    """Result of a prompts/get request."""

    messages: list[PromptMessage] = field(default_factory=list)
    description: str | None = None


@dataclass
class CallToolResult:
    """Result of a tools/call request."""

    content: list[Any] = field(default_factory=list)
    is_error: bool = False


def new_tool_result_text(text: str) -> CallToolResult:
    """Build a tool result holding one piece of text."""
    return CallToolResult(content=[TextContent(text=text)])


@dataclass
class ServerCapabilities:
    """Capabilities announced in the initialize response; None means absent."""

    resources: dict[str, bool] | None = None
    prompts: dict[str, bool] | None = None
    tools: dict[str, bool] | None = None
    logging: dict[str, Any] | None = None


@dataclass
class InitializeResult:
    """Result of an initialize request."""

    protocol_version: str
    server_info: Implementation
    capabilities: ServerCapabilities = field(default_factory=ServerCapabilities)
    instructions: str = ""


@dataclass
class ListResult:
    """One page of a listing; ``kind`` names the JSON key holding the items."""

    kind: str
    items: list[Any] = field(default_factory=list)
    next_cursor: str = ""


@dataclass
class JSONRPCResponse:
    """A successful JSON-RPC response."""

    id: Any
    result: Any
    jsonrpc: str = JSONRPC_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {"jsonrpc": self.jsonrpc, "id": self.id, "result": to_jsonable(self.result)}


@dataclass
class JSONRPCError:
    """A JSON-RPC error response."""

    id: Any
    code: int
    message: str
    data: Any = None
    jsonrpc: str = JSONRPC_VERSION

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = to_jsonable(self.data)
        return {"jsonrpc": self.jsonrpc, "id": self.id, "error": error}


@dataclass
class JSONRPCNotification:
    """A JSON-RPC notification, sent or received."""

    method: str
    params: dict[str, Any] = field(default_factory=dict)
    jsonrpc: str = JSONRPC_VERSION

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"jsonrpc": self.jsonrpc, "method": self.method}
        if self.params:
            out["params"] = to_jsonable(self.params)
        return out


class MCPServerError(Exception):
    """Base class for errors raised by the server; ``code`` is the JSON-RPC code."""

    code = INTERNAL_ERROR
    default_message = "server error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class UnsupportedError(MCPServerError):
    code = METHOD_NOT_FOUND
    default_message = "not supported"


class ToolNotFoundError(MCPServerError):
    code = INVALID_PARAMS
    default_message = "tool not found"


class PromptNotFoundError(MCPServerError):
    code = INVALID_PARAMS
    default_message = "prompt not found"


class ResourceNotFoundError(MCPServerError):
    code = RESOURCE_NOT_FOUND
    default_message = "resource not found"


class SessionExistsError(MCPServerError):
    default_message = "session already exists"


class SessionNotFoundError(MCPServerError):
    default_message = "session not found"


class SessionNotInitializedError(MCPServerError):
    default_message = "session not properly initialized"


class SessionDoesNotSupportToolsError(MCPServerError):
    default_message = "session does not support per-session tools"


class SessionDoesNotSupportLoggingError(MCPServerError):
    default_message = "session does not support setting logging level"


class NotificationNotInitializedError(MCPServerError):
    default_message = "notification not initialized"


class NotificationChannelBlockedError(MCPServerError):
    default_message = "notification channel blocked"


class UnparsableMessageError(MCPServerError):
    """Raised when a request's body does not fit the shape its method expects."""

    code = INVALID_REQUEST

    def __init__(self, raw_message: Any, method: str, cause: BaseException) -> None:
        super().__init__(f"unparsable {method} request: {cause}")
        self.raw_message = raw_message
        self.method = method
        self.__cause__ = cause