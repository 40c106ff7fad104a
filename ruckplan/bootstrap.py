"""Wiring for a hosted engine: database tables, workflow cache backend and collaborators."""

from __future__ import annotations

import datetime as dt
import logging
from typing import Callable, Optional

import redis

from ruckplan.config import Settings, get_settings
from ruckplan.db import init_db
from ruckplan.services.feedback import SqlFeedbackStore
from ruckplan.services.performance import SqlPerformanceProvider
from ruckplan.services.sessions import SqlAdaptationLog, SqlSessionProvider
from ruckplan.services.templates import TemplateCatalog
from ruckplan.services.workflow_cache import InMemoryWorkflowCache, WorkflowCache, build_workflow_cache
from ruckplan.services.workflow_engine import WorkflowEngine, utcnow

logger = logging.getLogger(__name__)


def build_cache(settings: Settings, redis_client: Optional[redis.Redis] = None) -> tuple[WorkflowCache, str]:
    """Resolve the configured cache backend, falling back to memory when redis is unreachable."""
    backend = settings.cache_backend.lower()
    if backend == "redis":
        client = redis_client or redis.Redis.from_url(settings.redis_url, decode_responses=True, socket_connect_timeout=2)
        try:
            client.ping()
        except redis.RedisError as exc:
            logger.warning("Redis unavailable, using in-memory workflow cache: %s", exc)
            return InMemoryWorkflowCache(), "memory"
        cache = build_workflow_cache(settings, redis_client=client)
    else:
        cache = build_workflow_cache(settings)
    logger.info("workflow_cache_initialized", extra={"ctx_cache_backend": backend})
    return cache, backend


def build_engine(
    settings: Optional[Settings] = None,
    cache: Optional[WorkflowCache] = None,
    clock: Callable[[], dt.datetime] = utcnow,
) -> WorkflowEngine:
    settings = settings or get_settings()
    init_db()
    sessions = SqlSessionProvider()
    return WorkflowEngine(
        catalog=TemplateCatalog.from_settings(settings),
        sessions=sessions,
        performance=SqlPerformanceProvider(sessions, clock),
        cache=cache if cache is not None else build_cache(settings)[0],
        adaptation_log=SqlAdaptationLog(),
        clock=clock,
        settings=settings,
        feedback=SqlFeedbackStore(),
    )
