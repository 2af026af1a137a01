"""
File: dispatcher.py
Purpose: Stateless protocol dispatcher. Routes initialize / list / call requests to
         the capability registry and maps every failure onto the protocol error codes.

Domain errors raised by a capability are reported as TOOL_EXECUTION_FAILED with
the capability's message only; their finer-grained codes are not forwarded.
"""

import json
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from .instrumentation import TOOL_CALLS
from .protocol import (
    MCP_PROTOCOL_VERSION,
    NO_ID,
    ErrorCode,
    ProtocolError,
    error_response,
    result_response,
)
from .registry import CapabilityRegistry, InvocationContext

log = logging.getLogger("incident-server.dispatcher")

Handler = Callable[[Any, InvocationContext], Awaitable[Any]]


class Dispatcher:
    """Holds nothing but the immutable registry; safe to share across requests."""

    def __init__(self, registry: CapabilityRegistry, server_name: str = "incident-server", server_version: str = "1.0.0"):
        self.registry = registry
        self.server_name = server_name
        self.server_version = server_version
        self._methods: Dict[str, Handler] = {
            "initialize": self._initialize,
            "list": self._list,
            "tools/list": self._list,
            "call": self._call,
            "tools/call": self._call,
        }

    async def handle(self, request: Any, context: Optional[InvocationContext] = None) -> Dict[str, Any]:
        """Handle one request and always return a response envelope."""
        context = context or InvocationContext()
        is_mapping = isinstance(request, Mapping)
        request_id = request.get("id", NO_ID) if is_mapping else NO_ID
        method = request.get("method") if is_mapping else None
        log.info("rpc request", extra={"method": method, "request_id": context.request_id})

        try:
            handler = self._methods.get(method) if isinstance(method, str) else None
            if handler is None:
                raise ProtocolError(ErrorCode.METHOD_NOT_FOUND, f"Method not found: {method}")
            result = await handler(request.get("params"), context)
            return result_response(request_id, result)
        except ProtocolError as e:
            return error_response(request_id, e.code, e.message, e.data)
        except Exception as e:
            log.exception("rpc request failed", extra={"method": method})
            return error_response(request_id, ErrorCode.INTERNAL_ERROR, str(e))

    # -------------------------------------------------------------------------
    # Methods
    # -------------------------------------------------------------------------

    async def _initialize(self, params: Any, context: InvocationContext) -> Dict[str, Any]:
        return {
            "protocolVersion": MCP_PROTOCOL_VERSION,
            "capabilities": {"tools": {}},
            "serverInfo": {"name": self.server_name, "version": self.server_version},
        }

    async def _list(self, params: Any, context: InvocationContext) -> Dict[str, Any]:
        return {"tools": self.registry.describe()}

    async def _call(self, params: Any, context: InvocationContext) -> Dict[str, Any]:
        name = params.get("name") if isinstance(params, Mapping) else None
        if not name or not isinstance(name, str):
            raise ProtocolError(ErrorCode.INVALID_PARAMS, "Invalid params: name is required")
        capability = self.registry.get(name)
        if capability is None:
            raise ProtocolError(ErrorCode.INVALID_PARAMS, f"Tool not found: {name}")

        arguments = params.get("arguments")
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, Mapping):
            raise ProtocolError(ErrorCode.INVALID_PARAMS, "Invalid params: arguments must be an object")
        missing = [f for f in capability.required if arguments.get(f) is None]
        if missing:
            raise ProtocolError(
                ErrorCode.INVALID_PARAMS,
                f"Invalid params: missing required arguments: {', '.join(missing)}",
            )

        try:
            result = await capability.execute(dict(arguments), context)
        except Exception as e:
            TOOL_CALLS.labels(capability=name, outcome="error").inc()
            log.warning(f"Capability {name} failed: {e}", extra={"capability": name})
            raise ProtocolError(ErrorCode.TOOL_EXECUTION_FAILED, f"Tool execution failed: {e}") from e

        TOOL_CALLS.labels(capability=name, outcome="ok").inc()
        return {"content": [{"type": "text", "text": json.dumps(result, indent=2, default=str)}]}
