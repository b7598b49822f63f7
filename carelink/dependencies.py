"""
Shared dependencies used across multiple routers.
"""

import hmac
import logging

from fastapi import HTTPException, Request

from carelink import settings

logger = logging.getLogger("carelink-server")


def require_api_key(request: Request) -> None:
    """Reject REST calls whose ``api_key`` header does not match API_KEY."""
    if not settings.API_KEY:
        return
    key = request.headers.get("api_key")
    # Header values arrive latin-1 decoded; compare as bytes so any text is accepted
    if not key or not hmac.compare_digest(
        key.encode("utf-8"), settings.API_KEY.encode("utf-8")
    ):
        logger.warning("Rejected %s %s: invalid API key", request.method, request.url.path)
        raise HTTPException(status_code=401, detail="Unauthorized: invalid API key")


def get_gateway_component(name: str):
    """Fetch a gateway singleton or answer 503 if startup has not wired it."""
    from carelink.gateway import setup

    component = getattr(setup, f"get_{name}")()
    if component is None:
        raise HTTPException(status_code=503, detail="Gateway not initialized")
    return component
