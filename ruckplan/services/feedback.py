"""Post-march feedback and the light-touch deload it triggers."""

from __future__ import annotations

import datetime as dt
import logging
import threading
from typing import Callable, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from ruckplan.db import session_scope
from ruckplan.models import FeedbackRow
from ruckplan.workflow_models import ScheduledWorkout, WorkoutType

logger = logging.getLogger(__name__)

FEEDBACK_MAX_AGE = dt.timedelta(days=7)
DELOAD_RPE = 8
DELOAD_FACTOR = 0.9
DELOAD_FLOOR_MILES = 1.0


class MarchFeedback(BaseModel):
    model_config = ConfigDict(frozen=True)

    rpe: int = Field(ge=1, le=10)
    soreness: bool = False
    timestamp: dt.datetime

    def calls_for_deload(self) -> bool:
        return self.rpe >= DELOAD_RPE or self.soreness


class FeedbackStore(Protocol):
    def save(self, session_id: str, feedback: MarchFeedback) -> None: ...

    def latest(self, session_id: str) -> Optional[MarchFeedback]: ...


class InMemoryFeedbackStore:
    def __init__(self) -> None:
        self._latest: dict[str, MarchFeedback] = {}
        self._lock = threading.Lock()

    def save(self, session_id: str, feedback: MarchFeedback) -> None:
        with self._lock:
            current = self._latest.get(session_id)
            if current is None or feedback.timestamp >= current.timestamp:
                self._latest[session_id] = feedback

    def latest(self, session_id: str) -> Optional[MarchFeedback]:
        with self._lock:
            return self._latest.get(session_id)


class SqlFeedbackStore:
    def __init__(self, session_factory: Optional[Callable[[], Session]] = None) -> None:
        self._session_factory = session_factory

    def save(self, session_id: str, feedback: MarchFeedback) -> None:
        with session_scope(self._session_factory) as s:
            s.add(FeedbackRow(session_id=session_id, rpe=feedback.rpe, soreness=feedback.soreness, created_at=feedback.timestamp))

    def latest(self, session_id: str) -> Optional[MarchFeedback]:
        with session_scope(self._session_factory) as s:
            row = s.execute(
                select(FeedbackRow)
                .where(FeedbackRow.session_id == session_id)
                .order_by(FeedbackRow.created_at.desc(), FeedbackRow.id.desc())
                .limit(1)
            ).scalar_one_or_none()
            if row is None:
                return None
            created = row.created_at if row.created_at.tzinfo else row.created_at.replace(tzinfo=dt.timezone.utc)
            return MarchFeedback(rpe=row.rpe, soreness=row.soreness, timestamp=created)


def apply_feedback_deload(
    schedule: list[ScheduledWorkout],
    feedback: Optional[MarchFeedback],
    now: dt.datetime,
) -> list[ScheduledWorkout]:
    """Cut upcoming distances by 10% after a hard or sore march in the last week.

    Rest entries and rows without a target distance are left alone. The input
    list is not modified.
    """
    if feedback is None or now - feedback.timestamp > FEEDBACK_MAX_AGE or not feedback.calls_for_deload():
        return schedule

    adjusted: list[ScheduledWorkout] = []
    for workout in schedule:
        if workout.workout_type == WorkoutType.REST or workout.target_distance is None:
            adjusted.append(workout)
            continue
        miles = max(DELOAD_FLOOR_MILES, workout.target_distance * DELOAD_FACTOR)
        adjusted.append(
            workout.model_copy(
                update={
                    "target_distance": round(miles, 2),
                    "description": f"Target: {miles:.1f} miles (deload)",
                }
            )
        )
    logger.info("feedback_deload_applied", extra={"ctx_rpe": feedback.rpe, "ctx_soreness": feedback.soreness, "ctx_workouts": len(adjusted)})
    return adjusted
