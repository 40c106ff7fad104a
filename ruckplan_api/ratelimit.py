"""Regeneration throttling, counted per (program session, client) pair."""

from __future__ import annotations

import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from ruckplan.config import Settings, get_settings
from ruckplan.errors import RegenerationRateLimited

logger = logging.getLogger(__name__)


def session_rate_key(request: Request) -> str:
    client = get_remote_address(request)
    session_id = request.path_params.get("session_id")
    return f"{session_id}:{client}" if session_id else client


def limiter_enabled(settings: Settings) -> bool:
    return settings.app_env.lower() != "test" and settings.rate_limit_enabled


def _build_limiter(settings: Settings) -> Limiter:
    return Limiter(
        key_func=session_rate_key,
        storage_uri=settings.rate_limit_storage_uri,
        enabled=limiter_enabled(settings),
        headers_enabled=True,
    )


limiter = _build_limiter(get_settings())


def rate_limit_exceeded_handler(request: Request, exc: Exception) -> JSONResponse:
    session_id = request.path_params.get("session_id")
    error = RegenerationRateLimited(details={"limit": str(getattr(exc, "detail", ""))})
    headers = {}
    item = getattr(getattr(exc, "limit", None), "limit", None) if isinstance(exc, RateLimitExceeded) else None
    if item is not None:
        headers["Retry-After"] = str(item.get_expiry())
    logger.warning("regeneration_rate_limited", extra={"ctx_session_id": session_id, "ctx_limit": error.details["limit"]})
    return JSONResponse(status_code=error.status_code, content={"detail": error.to_dict()}, headers=headers)
