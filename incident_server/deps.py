"""
File: deps.py
Purpose: Dependency helpers (auth guard, component graph, invocation context).
"""

from typing import Optional

from fastapi import Header, HTTPException, Request, status

from .config import settings
from .registry import InvocationContext
from .wiring import Services


def require_api_key(x_api_key: Optional[str] = Header(None)) -> None:
    """Validate inbound API key for protected endpoints."""
    if settings.API_KEY and x_api_key != settings.API_KEY:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_context(
    x_user_id: Optional[str] = Header(None),
    x_principal: Optional[str] = Header(None),
    x_request_id: Optional[str] = Header(None),
) -> InvocationContext:
    """Caller identity as forwarded by the hosting platform."""
    return InvocationContext(user_id=x_user_id, principal=x_principal, request_id=x_request_id)
