"""Durable per-session storage for generated workflows.

One entry per session id, overwritten on every generation. Entries are
stored as the workflow's JSON; anything that no longer decodes into a
``GeneratedWorkflow`` surfaces as ``CacheCorrupted``.
"""

from __future__ import annotations

import datetime as dt
import logging
import threading
from typing import Callable, Optional, Protocol

import redis
from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ruckplan.config import Settings
from ruckplan.db import session_scope
from ruckplan.errors import CacheCorrupted
from ruckplan.models import WorkflowCacheRow
from ruckplan.workflow_models import GeneratedWorkflow

logger = logging.getLogger(__name__)


class WorkflowCache(Protocol):
    def put(self, workflow: GeneratedWorkflow) -> None: ...

    def get(self, session_id: str) -> Optional[GeneratedWorkflow]: ...

    def delete(self, session_id: str) -> None: ...


def encode_workflow(workflow: GeneratedWorkflow) -> str:
    return workflow.model_dump_json()


def decode_workflow(payload: str | bytes, session_id: str) -> GeneratedWorkflow:
    try:
        workflow = GeneratedWorkflow.model_validate_json(payload)
    except ValidationError as exc:
        logger.warning("workflow_cache_corrupted", extra={"ctx_session_id": session_id, "ctx_errors": exc.error_count()})
        raise CacheCorrupted(f"Cached workflow for session {session_id} could not be decoded") from exc
    if workflow.session_id != session_id:
        raise CacheCorrupted(f"Cached workflow belongs to session {workflow.session_id}, expected {session_id}")
    return workflow


class InMemoryWorkflowCache:
    """Process-local cache; stores the encoded payload so reads go through the same decode path."""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self._lock = threading.Lock()

    def put(self, workflow: GeneratedWorkflow) -> None:
        payload = encode_workflow(workflow)
        with self._lock:
            self._store[workflow.session_id] = payload

    def get(self, session_id: str) -> Optional[GeneratedWorkflow]:
        with self._lock:
            payload = self._store.get(session_id)
        if payload is None:
            return None
        return decode_workflow(payload, session_id)

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._store.pop(session_id, None)


class RedisWorkflowCache:
    def __init__(self, client: redis.Redis, prefix: str = "ruckplan") -> None:
        self._client = client
        self._prefix = prefix

    def _key(self, session_id: str) -> str:
        return f"{self._prefix}:workflow:{session_id}"

    def put(self, workflow: GeneratedWorkflow) -> None:
        ttl = max(1, int(workflow.validity.to_timedelta().total_seconds()))
        self._client.set(self._key(workflow.session_id), encode_workflow(workflow), ex=ttl)

    def get(self, session_id: str) -> Optional[GeneratedWorkflow]:
        payload = self._client.get(self._key(session_id))
        if payload is None:
            return None
        return decode_workflow(payload, session_id)

    def delete(self, session_id: str) -> None:
        self._client.delete(self._key(session_id))


class SqlWorkflowCache:
    def __init__(self, session_factory: Optional[Callable[[], Session]] = None) -> None:
        self._session_factory = session_factory

    def put(self, workflow: GeneratedWorkflow) -> None:
        row = WorkflowCacheRow(
            session_id=workflow.session_id,
            payload=encode_workflow(workflow),
            generated_at=workflow.generated_at,
            expires_at=workflow.expires_at,
            updated_at=dt.datetime.now(dt.timezone.utc),
        )
        with session_scope(self._session_factory) as s:
            s.merge(row)

    def get(self, session_id: str) -> Optional[GeneratedWorkflow]:
        with session_scope(self._session_factory) as s:
            payload = s.execute(
                select(WorkflowCacheRow.payload).where(WorkflowCacheRow.session_id == session_id)
            ).scalar_one_or_none()
        if payload is None:
            return None
        return decode_workflow(payload, session_id)

    def delete(self, session_id: str) -> None:
        with session_scope(self._session_factory) as s:
            s.execute(delete(WorkflowCacheRow).where(WorkflowCacheRow.session_id == session_id))


def build_workflow_cache(settings: Settings, redis_client: Optional[redis.Redis] = None) -> WorkflowCache:
    backend = settings.cache_backend.lower()
    if backend == "memory":
        return InMemoryWorkflowCache()
    if backend == "redis":
        client = redis_client or redis.Redis.from_url(settings.redis_url, decode_responses=True)
        return RedisWorkflowCache(client, prefix=settings.cache_prefix)
    if backend == "sql":
        return SqlWorkflowCache()
    raise ValueError(f"Unknown workflow cache backend: {settings.cache_backend}")
