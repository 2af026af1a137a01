"""
File: protocol.py
Purpose: Wire-level pieces of the capability protocol: error codes, response
         envelopes and the server-push frame formatter.
"""

import json
from enum import IntEnum
from typing import Any, Dict, Optional

PROTOCOL_VERSION = "2.0"
MCP_PROTOCOL_VERSION = "2024-11-05"

# Marks a request that carried no "id" key, so responses can omit it as well
NO_ID = object()


class ErrorCode(IntEnum):
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603
    TOOL_EXECUTION_FAILED = -32000


class ProtocolError(Exception):
    def __init__(self, code: ErrorCode, message: str, data: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data


def _envelope(request_id: Any) -> Dict[str, Any]:
    env: Dict[str, Any] = {"protocolVersion": PROTOCOL_VERSION}
    if request_id is not NO_ID:
        env["id"] = request_id
    return env


def result_response(request_id: Any, result: Any) -> Dict[str, Any]:
    env = _envelope(request_id)
    env["result"] = result
    return env


def error_response(request_id: Any, code: ErrorCode, message: str, data: Optional[Any] = None) -> Dict[str, Any]:
    error: Dict[str, Any] = {"code": int(code), "message": message}
    if data is not None:
        error["data"] = data
    env = _envelope(request_id)
    env["error"] = error
    return env


def format_sse(payload: Any) -> str:
    """Render a payload as one server-sent-events frame."""
    return f"data: {json.dumps(payload, separators=(',', ':'), default=str)}\n\n"
