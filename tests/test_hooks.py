import pytest

from mcpserve.hooks import Hooks
from mcpserve.protocol import METHOD_PING, METHOD_TOOLS_LIST, ToolNotFoundError
from mcpserve.sessions import ClientSession, Context


def test_before_runs_any_then_specific():
    calls = []
    hooks = Hooks()
    hooks.add_before(METHOD_PING, lambda ctx, rid, msg: calls.append(("ping", rid, msg)))
    hooks.add_before_any(lambda ctx, rid, method, msg: calls.append(("any", method, msg)))
    hooks.before(Context(), 2, METHOD_PING, {"m": 1})
    assert calls == [("any", METHOD_PING, {"m": 1}), ("ping", 2, {"m": 1})]


def test_before_specific_only_for_its_method():
    calls = []
    hooks = Hooks()
    hooks.add_before(METHOD_PING, lambda ctx, rid, msg: calls.append("ping"))
    hooks.add_before_any(lambda ctx, rid, method, msg: calls.append(method))
    hooks.before(Context(), 3, METHOD_TOOLS_LIST, None)
    assert calls == [METHOD_TOOLS_LIST]


def test_after_runs_success_then_specific():
    calls = []
    hooks = Hooks()
    hooks.add_on_success(
        lambda ctx, rid, method, msg, res: calls.append(("success", method, res))
    )
    hooks.add_after(METHOD_PING, lambda ctx, rid, msg, res: calls.append(("ping", res)))
    result = object()
    hooks.after(Context(), 1, METHOD_PING, None, result)
    assert calls == [("success", METHOD_PING, result), ("ping", result)]


def test_error_hooks_receive_error():
    errors = []
    hooks = Hooks()
    hooks.add_on_error(lambda ctx, rid, method, msg, err: errors.append((rid, method, err)))
    err = ToolNotFoundError()
    hooks.error(Context(), 4, "tools/call", None, err)
    assert errors == [(4, "tools/call", err)]


def test_request_initialization_runs_all_hooks():
    seen = []
    hooks = Hooks()
    hooks.add_on_request_initialization(lambda ctx, rid, msg: seen.append(rid))
    hooks.add_on_request_initialization(lambda ctx, rid, msg: seen.append(msg))
    hooks.request_initialization(Context(), 1, b"raw")
    assert seen == [1, b"raw"]


def test_request_initialization_rejection_stops_later_hooks():
    seen = []

    def reject(ctx, rid, msg):
        raise PermissionError("rejected")

    hooks = Hooks()
    hooks.add_on_request_initialization(reject)
    hooks.add_on_request_initialization(lambda ctx, rid, msg: seen.append(rid))
    with pytest.raises(PermissionError, match="rejected"):
        hooks.request_initialization(Context(), 1, None)
    assert seen == []


def test_session_hooks_receive_context_and_session():
    registered = []
    unregistered = []
    hooks = Hooks()
    hooks.add_on_register_session(lambda ctx, s: registered.append((ctx, s)))
    hooks.add_on_unregister_session(lambda ctx, s: unregistered.append((ctx, s)))
    ctx = Context()
    session = ClientSession("test-session-id", 5)
    hooks.register_session(ctx, session)
    assert registered == [(ctx, session)]
    assert unregistered == []
    hooks.unregister_session(ctx, session)
    assert unregistered[0][0] is ctx
    assert unregistered[0][1].session_id == "test-session-id"


def test_empty_hooks_have_no_error_handlers():
    hooks = Hooks()
    hooks.before(Context(), 1, METHOD_PING, None)
    hooks.after(Context(), 1, METHOD_PING, None, None)
    assert hooks.on_error == []
    hooks.add_on_error(lambda *args: None)
    assert len(hooks.on_error) == 1