"""
File: routers/rpc.py
Purpose: HTTP transport for the capability protocol.

POST /mcp         -> JSON response envelope
POST /mcp/stream  -> the same envelope as a single server-sent-events frame
Protocol failures are reported inside the envelope with HTTP 200; only a body
that is not JSON at all gets HTTP 400.
"""

from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response

from ..deps import get_context, get_services, require_api_key
from ..protocol import format_sse
from ..registry import InvocationContext
from ..wiring import Services

router = APIRouter(dependencies=[Depends(require_api_key)])


async def _read_body(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        return None


def _bad_request() -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "Bad Request", "message": "Request body must be valid JSON"},
    )


@router.post("/mcp")
async def rpc(
    request: Request,
    context: InvocationContext = Depends(get_context),
    services: Services = Depends(get_services),
):
    body = await _read_body(request)
    if body is None:
        return _bad_request()
    return await services.dispatcher.handle(body, context)


@router.post("/mcp/stream")
async def rpc_stream(
    request: Request,
    context: InvocationContext = Depends(get_context),
    services: Services = Depends(get_services),
):
    body = await _read_body(request)
    if body is None:
        return _bad_request()
    response = await services.dispatcher.handle(body, context)
    return Response(
        format_sse(response),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )
