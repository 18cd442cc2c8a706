import json

import pytest

from mcpserve.protocol import (
    INVALID_PARAMS,
    INVALID_REQUEST,
    JSONRPC_VERSION,
    METHOD_NOT_FOUND,
    RESOURCE_NOT_FOUND,
    CallToolResult,
    Implementation,
    InitializeResult,
    JSONRPCError,
    JSONRPCNotification,
    JSONRPCResponse,
    ListResult,
    LoggingLevel,
    MCPServerError,
    Prompt,
    PromptArgument,
    Resource,
    ResourceNotFoundError,
    ResourceTemplate,
    ServerCapabilities,
    SessionNotFoundError,
    SessionNotInitializedError,
    TextContent,
    Tool,
    ToolNotFoundError,
    UnparsableMessageError,
    UnsupportedError,
    new_tool_result_text,
    to_jsonable,
)
from mcpserve.uritemplate import URITemplate


def test_tool_to_dict_includes_schema():
    tool = Tool("test-tool", description="Test tool")
    assert tool.to_dict() == {
        "name": "test-tool",
        "description": "Test tool",
        "inputSchema": {"type": "object", "properties": {}},
    }


def test_tool_without_description_omits_it():
    data = Tool("test-tool-1").to_dict()
    assert "description" not in data
    assert data["name"] == "test-tool-1"


def test_resource_template_serializes_raw_template():
    template = ResourceTemplate("test://{a}/test-resource{/b*}", "My Resource")
    data = template.to_dict()
    assert data["uriTemplate"] == "test://{a}/test-resource{/b*}"
    assert data["name"] == "My Resource"


def test_resource_template_accepts_parsed_template():
    parsed = URITemplate("test://{a}")
    assert ResourceTemplate(parsed, "x").uri_template == ResourceTemplate("test://{a}", "x").uri_template


def test_resource_to_dict_round_trips_through_json():
    resource = Resource("resource://testresource", "My Resource")
    data = resource.to_dict()
    assert json.loads(json.dumps(data)) == {"uri": "resource://testresource", "name": "My Resource"}


def test_prompt_to_dict_with_arguments():
    prompt = Prompt(
        "test-prompt",
        "A test prompt",
        [PromptArgument("arg1", "First argument")],
    )
    assert to_jsonable(prompt) == {
        "name": "test-prompt",
        "description": "A test prompt",
        "arguments": [{"name": "arg1", "description": "First argument"}],
    }


def test_response_to_dict_wraps_result():
    tool = Tool("test-tool")
    response = JSONRPCResponse(1, ListResult("tools", [tool]))
    assert response.to_dict() == {
        "jsonrpc": JSONRPC_VERSION,
        "id": 1,
        "result": {"tools": [tool.to_dict()]},
    }


def test_list_result_next_cursor_only_when_set():
    without = to_jsonable(ListResult("prompts", []))
    with_cursor = to_jsonable(ListResult("prompts", [], "dG9vbDY1NA=="))
    assert without == {"prompts": []}
    assert with_cursor["nextCursor"] == "dG9vbDY1NA=="


def test_error_to_dict_with_and_without_data():
    plain = JSONRPCError(1, INVALID_PARAMS, "bad")
    assert plain.to_dict() == {
        "jsonrpc": JSONRPC_VERSION,
        "id": 1,
        "error": {"code": INVALID_PARAMS, "message": "bad"},
    }
    with_data = JSONRPCError(None, INVALID_PARAMS, "bad", data={"why": "test"})
    assert with_data.to_dict()["error"]["data"] == {"why": "test"}
    assert with_data.to_dict()["id"] is None


def test_notification_params_omitted_when_empty():
    assert JSONRPCNotification("method").to_dict() == {"jsonrpc": JSONRPC_VERSION, "method": "method"}
    data = JSONRPCNotification("test-method", {"data": "test-data"}).to_dict()
    assert data["params"] == {"data": "test-data"}


def test_new_tool_result_text():
    result = new_tool_result_text("session result")
    assert result.content == [TextContent("session result")]
    assert result.content[0].type == "text"
    assert to_jsonable(result)["isError"] is False


def test_initialize_result_omits_absent_capabilities():
    result = InitializeResult(
        "2024-11-05",
        Implementation("test-server", "1.0.0"),
        ServerCapabilities(tools={"listChanged": True}),
    )
    data = json.loads(json.dumps(to_jsonable(result)))
    assert data["capabilities"] == {"tools": {"listChanged": True}}
    assert data["protocolVersion"] == "2024-11-05"


def test_logging_level_parses_values():
    assert LoggingLevel("critical") is LoggingLevel.CRITICAL
    assert str(LoggingLevel.ERROR) == "error"
    with pytest.raises(ValueError):
        LoggingLevel("verbose")


def test_unparsable_message_error():
    cause = ValueError("boom")
    raw = '{"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": "invalid"}'
    err = UnparsableMessageError(raw, "initialize", cause)
    assert str(err) == "unparsable initialize request: boom"
    assert err.raw_message == raw
    assert err.method == "initialize"
    assert err.__cause__ is cause
    assert err.code == INVALID_REQUEST
    assert isinstance(err, MCPServerError)


def test_error_default_and_custom_messages():
    assert "not found" in str(SessionNotFoundError())
    assert "not properly initialized" in str(SessionNotInitializedError())
    assert str(ToolNotFoundError("tool 'x' not found")) == "tool 'x' not found"


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (ToolNotFoundError("tool 'x' not found"), INVALID_PARAMS),
        (UnsupportedError("tools not supported"), METHOD_NOT_FOUND),
        (ResourceNotFoundError("resource 'y' not found"), RESOURCE_NOT_FOUND),
    ],
)
def test_error_codes(error, expected):
    assert error.code == expected
    with pytest.raises(MCPServerError) as caught:
        raise error
    assert caught.value.code == expected


def test_call_tool_result_defaults_empty():
    assert to_jsonable(CallToolResult())["content"] == []