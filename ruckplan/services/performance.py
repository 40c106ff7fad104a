"""Recent performance metrics for a program session.

Metrics drive the progression strategy and the advisory regeneration check:

- consistency: completed / planned sessions in the lookback window, capped at 1
- average_effort: mean actual/target duration ratio (below 1 means faster than planned)
- progress_trend: mean performance score of the later half of the history
  minus the earlier half
"""

from __future__ import annotations

import datetime as dt
import threading
from statistics import mean
from typing import Callable, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from ruckplan.db import session_scope
from ruckplan.models import WorkoutCompletionRow
from ruckplan.workflow_models import PerformanceMetrics

DEFAULT_PERFORMANCE = PerformanceMetrics(consistency=0.8, average_effort=0.7, progress_trend=0.1)
LOOKBACK_DAYS = 28


class WorkoutCompletion(BaseModel):
    model_config = ConfigDict(frozen=True)

    completed_on: dt.date
    target_seconds: float = Field(gt=0)
    actual_seconds: float = Field(gt=0)
    performance_score: Optional[float] = None

    @property
    def effort_ratio(self) -> float:
        return self.actual_seconds / self.target_seconds

    @property
    def score(self) -> float:
        if self.performance_score is not None:
            return self.performance_score
        return self.target_seconds / self.actual_seconds


class PerformanceProvider(Protocol):
    def get_performance(self, session_id: str) -> PerformanceMetrics: ...


def compute_performance_metrics(completions: list[WorkoutCompletion], planned_count: int) -> PerformanceMetrics:
    if not completions and planned_count <= 0:
        return DEFAULT_PERFORMANCE
    if not completions:
        return PerformanceMetrics(consistency=0.0, average_effort=0.0, progress_trend=0.0)

    ordered = sorted(completions, key=lambda c: c.completed_on)
    consistency = 1.0 if planned_count <= 0 else min(1.0, len(ordered) / planned_count)
    average_effort = mean(c.effort_ratio for c in ordered)

    trend = 0.0
    if len(ordered) >= 2:
        half = len(ordered) // 2
        earlier = [c.score for c in ordered[:half]]
        later = [c.score for c in ordered[half:]]
        trend = mean(later) - mean(earlier)

    return PerformanceMetrics(
        consistency=round(consistency, 4),
        average_effort=round(average_effort, 4),
        progress_trend=round(trend, 4),
    )


def planned_sessions_between(start: dt.date, end: dt.date, workout_days: tuple[int, ...]) -> int:
    """Count training days in the half-open range [start, end)."""
    days = set(workout_days)
    count = 0
    current = start
    while current < end:
        if current.weekday() in days:
            count += 1
        current += dt.timedelta(days=1)
    return count


class StaticPerformanceProvider:
    """Fixed metrics, optionally overridden per session."""

    def __init__(self, default: PerformanceMetrics = DEFAULT_PERFORMANCE) -> None:
        self._default = default
        self._overrides: dict[str, PerformanceMetrics] = {}
        self._lock = threading.Lock()

    def set(self, session_id: str, metrics: PerformanceMetrics) -> None:
        with self._lock:
            self._overrides[session_id] = metrics

    def get_performance(self, session_id: str) -> PerformanceMetrics:
        with self._lock:
            return self._overrides.get(session_id, self._default)


class SqlPerformanceProvider:
    """Derives metrics from logged workout completions over the lookback window."""

    def __init__(
        self,
        sessions,
        clock: Callable[[], dt.datetime],
        session_factory: Optional[Callable[[], Session]] = None,
        lookback_days: int = LOOKBACK_DAYS,
    ) -> None:
        self._sessions = sessions
        self._clock = clock
        self._session_factory = session_factory
        self._lookback_days = lookback_days

    def record_completion(self, session_id: str, completion: WorkoutCompletion) -> None:
        with session_scope(self._session_factory) as s:
            s.add(
                WorkoutCompletionRow(
                    session_id=session_id,
                    completed_on=completion.completed_on,
                    target_seconds=completion.target_seconds,
                    actual_seconds=completion.actual_seconds,
                    performance_score=completion.performance_score,
                )
            )

    def get_performance(self, session_id: str) -> PerformanceMetrics:
        session = self._sessions.get_session(session_id)
        today = self._clock().date()
        start = max(session.enrolled_on, today - dt.timedelta(days=self._lookback_days))
        with session_scope(self._session_factory) as s:
            rows = s.execute(
                select(WorkoutCompletionRow).where(
                    WorkoutCompletionRow.session_id == session_id,
                    WorkoutCompletionRow.completed_on >= start,
                    WorkoutCompletionRow.completed_on < today,
                )
            ).scalars().all()
            completions = [
                WorkoutCompletion(
                    completed_on=r.completed_on,
                    target_seconds=r.target_seconds,
                    actual_seconds=r.actual_seconds,
                    performance_score=r.performance_score,
                )
                for r in rows
            ]
        planned = planned_sessions_between(start, today, session.workout_days)
        return compute_performance_metrics(completions, planned)
