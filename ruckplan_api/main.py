from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import Callable, Optional

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from ruckplan.bootstrap import build_cache, build_engine
from ruckplan.config import get_settings
from ruckplan.errors import WorkflowEngineError
from ruckplan.services.workflow_engine import WorkflowEngine
from ruckplan_api.observability import (
    configure_logging,
    monotonic_ms,
    new_request_id,
    request_log_fields,
    reset_request_id,
    set_request_id,
)
from ruckplan_api.ratelimit import limiter, rate_limit_exceeded_handler
from ruckplan_api.routes import router

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def workflow_engine_error_handler(request: Request, exc: Exception) -> JSONResponse:
    if not isinstance(exc, WorkflowEngineError):
        raise exc
    if exc.status_code >= 500:
        logger.error("workflow_engine_error", extra={"ctx_code": exc.code.value, "ctx_path": request.url.path})
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})


def create_app(engine: Optional[WorkflowEngine] = None) -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if engine is not None:
            app.state.engine = engine
            app.state.cache_backend = type(engine.cache).__name__
        else:
            cache, backend = build_cache(settings)
            app.state.engine = build_engine(settings, cache=cache)
            app.state.cache_backend = backend
        logger.info("engine_initialized", extra={"ctx_cache_backend": app.state.cache_backend, "ctx_app_env": settings.app_env})
        yield

    app = FastAPI(title="Ruck Plan Engine API", version="1.0.0", lifespan=lifespan)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(WorkflowEngineError, workflow_engine_error_handler)
    app.include_router(router)

    @app.middleware("http")
    async def request_context_and_logging(request: Request, call_next: Callable) -> Response:
        request_id = (request.headers.get(REQUEST_ID_HEADER) or "").strip() or new_request_id()
        token = set_request_id(request_id)
        started_ms = monotonic_ms()
        client_ip = getattr(request.client, "host", None)
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = monotonic_ms() - started_ms
            logger.exception(
                "http_request_error",
                extra=request_log_fields(
                    method=request.method,
                    path=request.url.path,
                    status_code=500,
                    duration_ms=duration_ms,
                    client_ip=client_ip,
                ),
            )
            raise
        else:
            response.headers[REQUEST_ID_HEADER] = request_id
            duration_ms = monotonic_ms() - started_ms
            logger.info(
                "http_request",
                extra=request_log_fields(
                    method=request.method,
                    path=request.url.path,
                    status_code=response.status_code,
                    duration_ms=duration_ms,
                    client_ip=client_ip,
                ),
            )
            return response
        finally:
            reset_request_id(token)

    return app


app = create_app()
