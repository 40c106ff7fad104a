from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Iterable, Optional

from ruckplan.workflow_models import ScheduledWorkout, TemplateWorkout, WorkoutType, normalize_weekdays

logger = logging.getLogger(__name__)

MAX_SCHEDULE_DAYS = 100


@dataclass
class ScheduleResult:
    workouts: list[ScheduledWorkout] = field(default_factory=list)
    truncated: bool = False
    unscheduled: list[TemplateWorkout] = field(default_factory=list)


def flatten_program_weeks(weeks: Iterable[dict[str, Any]]) -> list[TemplateWorkout]:
    """Flatten week-grouped template data into the scheduler's work queue.

    Each week is ``{"week_number": int, "workouts": [{"id", "day_number",
    "workout_type", "distance_miles", "instructions"}, ...]}``. Workouts keep
    their declared order inside a week; weeks are ordered by week number.
    """
    queue: list[TemplateWorkout] = []
    for week in sorted(weeks, key=lambda w: int(w["week_number"])):
        week_number = int(week["week_number"])
        for idx, workout in enumerate(week.get("workouts") or [], start=1):
            queue.append(
                TemplateWorkout(
                    id=str(workout.get("id") or f"w{week_number}d{workout.get('day_number') or idx}"),
                    week=week_number,
                    day_number=int(workout.get("day_number") or idx),
                    workout_type=WorkoutType(str(workout.get("workout_type") or "ruck").lower()),
                    target_distance=workout.get("distance_miles"),
                    instructions=workout.get("instructions"),
                )
            )
    return queue


def _title(week_number: int, workout: TemplateWorkout) -> str:
    return f"Week {week_number} - {workout.workout_type.value.replace('_', ' ').title()}"


def _description(workout: TemplateWorkout) -> str:
    return f"Target: {float(workout.target_distance or 0):.1f} miles"


def schedule_workouts(
    queue: list[TemplateWorkout],
    start_date: date,
    preferred_days: Optional[Iterable] = None,
    max_days: int = MAX_SCHEDULE_DAYS,
) -> ScheduleResult:
    """Map a flat, week-ordered workout queue onto the user's training weekdays.

    Walks forward one day at a time from ``start_date`` for at most
    ``max_days`` days. On each preferred weekday the next non-rest entry is
    pulled from the queue; rest entries in front of it are consumed without
    taking a date. Week numbers are calendar-relative to ``start_date`` so
    labels keep advancing with real time even when the user trains fewer
    days than the template assumes.
    """
    training_days = set(normalize_weekdays(list(preferred_days or [])))
    result = ScheduleResult()
    idx = 0

    for offset in range(max(0, max_days)):
        if idx >= len(queue):
            break
        current = start_date + timedelta(days=offset)
        if current.weekday() not in training_days:
            continue

        while idx < len(queue) and queue[idx].is_rest:
            idx += 1
        if idx >= len(queue):
            break

        item = queue[idx]
        week_number = offset // 7 + 1
        result.workouts.append(
            ScheduledWorkout(
                date=current,
                week_number=week_number,
                title=_title(week_number, item),
                description=_description(item),
                workout_id=item.id,
                day_number=item.day_number,
                workout_type=item.workout_type,
                target_distance=item.target_distance,
            )
        )
        idx += 1

    remaining = [w for w in queue[idx:] if not w.is_rest]
    if remaining:
        result.truncated = True
        result.unscheduled = remaining
        logger.warning(
            "schedule_truncated",
            extra={"ctx_unscheduled": len(remaining), "ctx_max_days": max_days, "ctx_training_days": sorted(training_days)},
        )
    return result
