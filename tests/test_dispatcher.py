"""
File: tests/test_dispatcher.py
Purpose: Protocol dispatcher routing, error mapping and the SSE frame formatter.
"""

import json

import pytest

from incident_server.errors import PreconditionFailed
from incident_server.protocol import ErrorCode, format_sse
from incident_server.registry import Capability, CapabilityRegistry, InvocationContext


class Echo(Capability):
    name = "echo"
    description = "Return the arguments and caller"
    input_schema = {"type": "object", "properties": {"x": {"type": "integer"}}}

    async def execute(self, arguments, context):
        return {**arguments, "user": context.user_id}


class Constant(Capability):
    name = "constant"
    description = "Always {x: 1}"

    async def execute(self, arguments, context):
        return {"x": 1}


class NeedsId(Capability):
    name = "needs_id"
    description = "Requires incident_id"
    input_schema = {
        "type": "object",
        "properties": {"incident_id": {"type": "string"}},
        "required": ["incident_id"],
    }

    async def execute(self, arguments, context):
        return arguments


class Fails(Capability):
    name = "fails"
    description = "Raises a domain error"

    async def execute(self, arguments, context):
        raise PreconditionFailed("Incident must be RESOLVED before closing. Current status: NEW")


@pytest.fixture
def dispatcher(dispatcher_factory):
    return dispatcher_factory(Echo(), Constant(), NeedsId(), Fails())


# ---------------------------------------------------------------------------
# initialize / list
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_initialize(dispatcher):
    resp = await dispatcher.handle({"protocolVersion": "2.0", "id": 1, "method": "initialize"})
    assert resp["protocolVersion"] == "2.0"
    assert resp["id"] == 1
    result = resp["result"]
    assert result["serverInfo"] == {"name": "incident-server", "version": "1.0.0"}
    assert "tools" in result["capabilities"]
    assert result["protocolVersion"]


@pytest.mark.asyncio
async def test_list_preserves_registry_order(dispatcher):
    resp = await dispatcher.handle({"id": "a", "method": "list"})
    tools = resp["result"]["tools"]
    assert [t["name"] for t in tools] == ["echo", "constant", "needs_id", "fails"]
    assert tools[0]["inputSchema"]["properties"]["x"]["type"] == "integer"
    assert tools[1]["description"] == "Always {x: 1}"


@pytest.mark.asyncio
async def test_tools_list_alias(dispatcher):
    resp = await dispatcher.handle({"id": 2, "method": "tools/list"})
    assert len(resp["result"]["tools"]) == 4


# ---------------------------------------------------------------------------
# call
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_call_wraps_result_as_text(dispatcher):
    resp = await dispatcher.handle({"id": 3, "method": "call", "params": {"name": "constant"}})
    content = resp["result"]["content"]
    assert len(content) == 1
    assert content[0]["type"] == "text"
    assert json.loads(content[0]["text"]) == {"x": 1}


@pytest.mark.asyncio
async def test_call_passes_arguments_and_context(dispatcher):
    resp = await dispatcher.handle(
        {"id": 4, "method": "tools/call", "params": {"name": "echo", "arguments": {"x": 5}}},
        InvocationContext(user_id="dev1"),
    )
    assert json.loads(resp["result"]["content"][0]["text"]) == {"x": 5, "user": "dev1"}


@pytest.mark.asyncio
@pytest.mark.parametrize("params", [None, {}, {"arguments": {}}, {"name": ""}, "echo"])
async def test_call_without_name(dispatcher, params):
    request = {"id": 5, "method": "call"}
    if params is not None:
        request["params"] = params
    resp = await dispatcher.handle(request)
    assert resp["error"]["code"] == ErrorCode.INVALID_PARAMS
    assert resp["error"]["message"] == "Invalid params: name is required"


@pytest.mark.asyncio
async def test_call_unknown_capability(dispatcher):
    resp = await dispatcher.handle({"id": 6, "method": "call", "params": {"name": "nope"}})
    assert resp["error"] == {"code": -32602, "message": "Tool not found: nope"}


@pytest.mark.asyncio
async def test_call_missing_required_argument(dispatcher):
    resp = await dispatcher.handle({"id": 7, "method": "call", "params": {"name": "needs_id", "arguments": {}}})
    assert resp["error"]["code"] == ErrorCode.INVALID_PARAMS
    assert "incident_id" in resp["error"]["message"]


@pytest.mark.asyncio
async def test_call_non_object_arguments(dispatcher):
    resp = await dispatcher.handle({"id": 8, "method": "call", "params": {"name": "echo", "arguments": [1]}})
    assert resp["error"]["code"] == ErrorCode.INVALID_PARAMS


@pytest.mark.asyncio
async def test_domain_error_collapses_to_tool_execution_failed(dispatcher):
    resp = await dispatcher.handle({"id": 9, "method": "call", "params": {"name": "fails"}})
    assert resp["id"] == 9
    assert resp["error"]["code"] == ErrorCode.TOOL_EXECUTION_FAILED == -32000
    assert resp["error"]["message"] == (
        "Tool execution failed: Incident must be RESOLVED before closing. Current status: NEW"
    )
    assert "data" not in resp["error"]


# ---------------------------------------------------------------------------
# method routing / ids
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_unknown_method(dispatcher):
    resp = await dispatcher.handle({"id": 10, "method": "foo"})
    assert resp["error"]["code"] == ErrorCode.METHOD_NOT_FOUND == -32601
    assert "result" not in resp


@pytest.mark.asyncio
async def test_missing_id_stays_missing(dispatcher):
    resp = await dispatcher.handle({"method": "foo"})
    assert "id" not in resp
    ok = await dispatcher.handle({"method": "initialize"})
    assert "id" not in ok
    nulled = await dispatcher.handle({"id": None, "method": "initialize"})
    assert nulled["id"] is None


@pytest.mark.asyncio
async def test_non_object_request(dispatcher):
    resp = await dispatcher.handle(["not", "a", "request"])
    assert resp["error"]["code"] == ErrorCode.METHOD_NOT_FOUND
    assert "id" not in resp


@pytest.mark.asyncio
async def test_unexpected_failure_is_internal_error(dispatcher, monkeypatch):
    async def boom(params, context):
        raise KeyError("registry exploded")

    monkeypatch.setitem(dispatcher._methods, "list", boom)
    resp = await dispatcher.handle({"id": 11, "method": "list"})
    assert resp["id"] == 11
    assert resp["error"]["code"] == ErrorCode.INTERNAL_ERROR
    assert "registry exploded" in resp["error"]["message"]


# ---------------------------------------------------------------------------
# registry / SSE
# ---------------------------------------------------------------------------

def test_registry_is_read_only_and_rejects_duplicates():
    registry = CapabilityRegistry([Echo(), Constant()])
    assert list(registry) == ["echo", "constant"]
    with pytest.raises(TypeError):
        registry._entries["x"] = Echo()
    with pytest.raises(ValueError):
        CapabilityRegistry([Echo(), Echo()])


def test_format_sse_exact_frame():
    assert format_sse({"a": 1}) == 'data: {"a":1}\n\n'
