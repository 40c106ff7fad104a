"""Program session providers and the adaptation history log."""

from __future__ import annotations

import datetime as dt
import threading
from collections import defaultdict
from typing import Callable, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from ruckplan.db import session_scope
from ruckplan.errors import SessionNotFound
from ruckplan.models import AdaptationRecordRow, ProgramSessionRow
from ruckplan.workflow_models import (
    AdaptationRecord,
    Difficulty,
    PerformanceMetrics,
    ProgramAdaptation,
    ProgramCategory,
    ProgramSession,
    RegenerationReason,
)


class SessionProvider(Protocol):
    def get_session(self, session_id: str) -> ProgramSession: ...

    def save_session(self, session: ProgramSession) -> None: ...

    def active_sessions(self) -> list[ProgramSession]: ...


class AdaptationLog(Protocol):
    def append(self, record: AdaptationRecord) -> None: ...

    def history(self, session_id: str) -> list[AdaptationRecord]: ...


def _aware(value: dt.datetime) -> dt.datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    return value if value.tzinfo else value.replace(tzinfo=dt.timezone.utc)


class InMemorySessionProvider:
    def __init__(self, sessions: Optional[list[ProgramSession]] = None) -> None:
        self._sessions: dict[str, ProgramSession] = {s.session_id: s for s in sessions or []}
        self._lock = threading.Lock()

    def get_session(self, session_id: str) -> ProgramSession:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(f"Program session {session_id} not found")
        return session

    def save_session(self, session: ProgramSession) -> None:
        with self._lock:
            self._sessions[session.session_id] = session

    def active_sessions(self) -> list[ProgramSession]:
        with self._lock:
            return [s for s in self._sessions.values() if s.is_active]


class SqlSessionProvider:
    def __init__(self, session_factory: Optional[Callable[[], Session]] = None) -> None:
        self._session_factory = session_factory

    @staticmethod
    def _to_model(row: ProgramSessionRow) -> ProgramSession:
        return ProgramSession(
            session_id=row.session_id,
            program_title=row.program_title or "",
            category=ProgramCategory(row.category),
            difficulty=Difficulty(row.difficulty),
            duration_weeks=row.duration_weeks,
            current_week=row.current_week,
            workout_days=row.workout_days or [],
            enrolled_on=row.enrolled_on,
            adaptations=tuple(ProgramAdaptation.model_validate(a) for a in row.adaptations or []),
            is_active=row.is_active,
        )

    def get_session(self, session_id: str) -> ProgramSession:
        with session_scope(self._session_factory) as s:
            row = s.get(ProgramSessionRow, session_id)
            if row is None:
                raise SessionNotFound(f"Program session {session_id} not found")
            return self._to_model(row)

    def save_session(self, session: ProgramSession) -> None:
        with session_scope(self._session_factory) as s:
            s.merge(
                ProgramSessionRow(
                    session_id=session.session_id,
                    program_title=session.program_title,
                    category=session.category.value,
                    difficulty=session.difficulty.value,
                    duration_weeks=session.duration_weeks,
                    current_week=session.current_week,
                    workout_days=list(session.workout_days),
                    enrolled_on=session.enrolled_on,
                    adaptations=[a.model_dump(mode="json") for a in session.adaptations],
                    is_active=session.is_active,
                )
            )

    def active_sessions(self) -> list[ProgramSession]:
        with session_scope(self._session_factory) as s:
            rows = s.execute(select(ProgramSessionRow).where(ProgramSessionRow.is_active.is_(True))).scalars().all()
            return [self._to_model(r) for r in rows]


class InMemoryAdaptationLog:
    def __init__(self) -> None:
        self._records: dict[str, list[AdaptationRecord]] = defaultdict(list)
        self._lock = threading.Lock()

    def append(self, record: AdaptationRecord) -> None:
        with self._lock:
            self._records[record.session_id].append(record)

    def history(self, session_id: str) -> list[AdaptationRecord]:
        with self._lock:
            return list(self._records.get(session_id, []))


class SqlAdaptationLog:
    def __init__(self, session_factory: Optional[Callable[[], Session]] = None) -> None:
        self._session_factory = session_factory

    def append(self, record: AdaptationRecord) -> None:
        perf = record.previous_performance
        with session_scope(self._session_factory) as s:
            s.add(
                AdaptationRecordRow(
                    session_id=record.session_id,
                    reason=record.reason.value,
                    timestamp=record.timestamp,
                    consistency=perf.consistency,
                    average_effort=perf.average_effort,
                    progress_trend=perf.progress_trend,
                    applied_changes=list(record.applied_changes),
                )
            )

    def history(self, session_id: str) -> list[AdaptationRecord]:
        with session_scope(self._session_factory) as s:
            rows = s.execute(
                select(AdaptationRecordRow)
                .where(AdaptationRecordRow.session_id == session_id)
                .order_by(AdaptationRecordRow.timestamp, AdaptationRecordRow.id)
            ).scalars().all()
            return [
                AdaptationRecord(
                    session_id=r.session_id,
                    reason=RegenerationReason(r.reason),
                    timestamp=_aware(r.timestamp),
                    previous_performance=PerformanceMetrics(
                        consistency=r.consistency,
                        average_effort=r.average_effort,
                        progress_trend=r.progress_trend,
                    ),
                    applied_changes=tuple(r.applied_changes or []),
                )
                for r in rows
            ]
