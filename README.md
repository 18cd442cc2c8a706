# mcpserve

`mcpserve` is a small framework for writing Model Context Protocol (MCP)
servers. You register tools, prompts, resources and resource templates on an
`MCPServer`. You then pass it JSON-RPC messages, and it returns response
objects that are ready to serialise.

The package has no third-party dependencies.

## Modules

- `mcpserve.server`: `MCPServer`, the `with_*` server options, and `ServerTool`, `ServerPrompt` and `ServerResource`.
- `mcpserve.protocol`: data types such as `Tool`, `Prompt`, `Resource`, `ResourceTemplate`, `TextContent`, `CallToolResult` and `JSONRPCResponse`. It also holds the JSON-RPC error codes, the method names, and the error classes, all of which derive from `MCPServerError`.
- `mcpserve.sessions`: `ClientSession` and its variants, plus `Context`.
- `mcpserve.hooks`: `Hooks`, a set of callbacks that run around requests and around session registration.
- `mcpserve.uritemplate`: `URITemplate`, which matches URIs against URI templates and extracts their variables.

## A minimal server

```python
import json

from mcpserve.protocol import Tool, new_tool_result_text
from mcpserve.server import MCPServer, with_tool_capabilities


def greet(ctx, params):
    name = params.get("arguments", {}).get("name", "world")
    return new_tool_result_text(f"Hello, {name}!")


server = MCPServer("demo-server", "1.0.0", with_tool_capabilities(True))
server.add_tool(Tool(name="greet", description="Say hello"), greet)

response = server.handle_message(json.dumps({
    "jsonrpc": "2.0",
    "id": 1,
    "method": "tools/call",
    "params": {"name": "greet", "arguments": {"name": "Ada"}},
}))
print(json.dumps(response.to_dict()))
```

`handle_message(message, ctx=None)` accepts a JSON string, bytes or an
already-decoded dict.

- It returns a `JSONRPCResponse` or a `JSONRPCError`.
- It returns `None` for a notification. The notification is passed to any handler registered with `add_notification_handler`.
- It also returns `None` for a message that carries a `result`.

Tool, prompt and resource handlers are called as `handler(ctx, params)`, where
`params` is the request's `params` object as a dict.

If a handler raises an exception, the client gets an internal error. The
error message is the text of the exception.

## Supported methods

| Method                     | Requires                          |
|----------------------------|-----------------------------------|
| `initialize`, `ping`       | nothing                           |
| `logging/setLevel`         | `with_logging()`                  |
| `resources/list`           | resource capabilities             |
| `resources/templates/list` | resource capabilities             |
| `resources/read`           | resource capabilities             |
| `prompts/list`             | prompt capabilities               |
| `prompts/get`              | prompt capabilities               |
| `tools/list`               | tool capabilities                 |
| `tools/call`               | tool capabilities                 |

If a method's capability is off, the request gets a "method not found" error.

The first time you add an item of a kind, its capability is turned on, unless
you already configured it:

- Adding a tool sets `listChanged` to true.
- Adding a prompt, resource or resource template sets `listChanged` to false.

When `listChanged` is on, adding or removing items sends a `list_changed`
notification to every initialized session.

`initialize` replies with the client's protocol version if it is supported
(`2024-11-05` or `2025-03-26`). Otherwise it replies with `2025-03-26`.

## Server options

Pass options as extra positional arguments to `MCPServer`:

- `with_resource_capabilities(subscribe, list_changed)`
- `with_prompt_capabilities(list_changed)`
- `with_tool_capabilities(list_changed)`
- `with_logging()`: enables `logging/setLevel`. The request needs a context that carries an initialized `SessionWithLogging`.
- `with_instructions(text)`: text that is returned in the `initialize` result.
- `with_pagination_limit(n)`: list results come back in pages of at most `n` items, sorted by name. The next cursor is the base64 encoding of the last name returned.
- `with_hooks(hooks)`: lifecycle callbacks; see `mcpserve.hooks.Hooks`.
- `with_tool_handler_middleware(mw)`: `mw(handler)` returns a wrapped handler. Middlewares are applied so that the first one registered runs outermost.
- `with_tool_filter(fn)`: `fn(ctx, tools)` returns the tools to list.
- `with_recovery()`: reports an exception from a tool handler as "panic recovered in <tool> tool handler: <error>".

## Resources and templates

```python
from mcpserve.protocol import Resource, ResourceTemplate, TextResourceContents
from mcpserve.server import MCPServer

server = MCPServer("files", "1.0.0")
server.add_resource(
    Resource(uri="file://readme", name="Readme"),
    lambda ctx, params: [TextResourceContents(uri="file://readme", text="hi")],
)
server.add_resource_template(
    ResourceTemplate(uri_template="users://{id}/profile", name="Profile"),
    lambda ctx, params: [TextResourceContents(
        uri=params["uri"], text=params["arguments"]["id"][0],
    )],
)
```

`resources/read` first looks for a resource registered under the exact URI.
If there is none, it tries the registered templates.

When a template matches, its variables are passed to the handler in
`params["arguments"]`. Each variable maps to a list of strings.

If neither a resource nor a template fits the URI, the client gets a
"resource not found" error.

## Sessions and notifications

A session is a `mcpserve.sessions.ClientSession` with a bounded notification
queue. Register sessions with the server, and attach one to a request through
a `Context`:

```python
from mcpserve.sessions import Context, SessionWithTools

session = SessionWithTools("session-1", 16)
server.register_session(Context(), session)
ctx = server.with_context(Context(), session)
server.handle_message(b'{"jsonrpc":"2.0","id":1,"method":"initialize"}', ctx)
server.send_notification_to_client(ctx, "notifications/message", {"text": "hi"})
print(session.drain())
```

Session variants:

- `SessionWithTools`: holds tools for one session. Use `add_session_tool`, `add_session_tools` and `delete_session_tools` to manage them. These tools override global tools of the same name.
- `SessionWithLogging`: stores the level set by `logging/setLevel`.
- `SessionWithClientInfo`: records the `clientInfo` sent with `initialize`.

Sending notifications:

- `send_notification_to_specific_client(session_id, method, params)` sends to one session by id.
- `send_notification_to_all_clients(method, params)` sends to every initialized session.

When a session's queue is full:

- `send_notification_to_client` and `send_notification_to_specific_client` raise `NotificationChannelBlockedError`.
- `send_notification_to_all_clients` skips that session.
- In every case, any error hooks are called.

`register_session` raises `SessionExistsError` if a session with the same id
is already registered.

## What it does not do

The package has no transport. It does not read from stdio, open sockets, or
serve HTTP or server-sent events. It also does not include an MCP client.

Your own code must carry messages to and from `handle_message`, and must
deliver the notifications that pile up in each session's queue (see
`ClientSession.drain`).