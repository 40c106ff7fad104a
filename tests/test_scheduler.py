"""Tests for the calendar scheduler."""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from ruckplan.services.scheduler import flatten_program_weeks, schedule_workouts
from ruckplan.workflow_models import TemplateWorkout, WorkoutType, normalize_weekdays

MONDAY = date(2024, 1, 1)


def _queue(*types: WorkoutType) -> list[TemplateWorkout]:
    return [
        TemplateWorkout(id=f"q{i}", week=1, day_number=i + 1, workout_type=t, target_distance=3.0)
        for i, t in enumerate(types)
    ]


def _program(weeks: int, per_week: int) -> list[TemplateWorkout]:
    return flatten_program_weeks(
        {
            "week_number": w,
            "workouts": [{"day_number": d, "workout_type": "ruck", "distance_miles": 2.0 + w * 0.5} for d in range(1, per_week + 1)],
        }
        for w in range(1, weeks + 1)
    )


def test_schedule_is_deterministic():
    queue = _program(4, 3)
    first = schedule_workouts(queue, MONDAY, ["Mon", "Wed", "Fri"])
    second = schedule_workouts(queue, MONDAY, ["Mon", "Wed", "Fri"])
    assert [w.model_dump() for w in first.workouts] == [w.model_dump() for w in second.workouts]
    assert first.truncated is second.truncated is False


def test_rest_entries_never_take_a_date():
    queue = _queue(WorkoutType.RUCK, WorkoutType.REST, WorkoutType.RUCK, WorkoutType.REST, WorkoutType.RUCK)
    result = schedule_workouts(queue, MONDAY, [0, 2, 4])
    assert [w.date for w in result.workouts] == [MONDAY, MONDAY + timedelta(days=2), MONDAY + timedelta(days=4)]
    assert [w.workout_id for w in result.workouts] == ["q0", "q2", "q4"]
    assert all(w.week_number == 1 for w in result.workouts)
    assert result.truncated is False


def test_week_labels_follow_the_calendar():
    # Template expects 3 days a week; the user trains on Mondays only.
    queue = _program(8, 3)
    result = schedule_workouts(queue, MONDAY, ["Mon"])
    eighth = result.workouts[7]
    assert eighth.date == MONDAY + timedelta(weeks=7)
    assert eighth.week_number == 8
    assert eighth.title.startswith("Week 8")
    assert eighth.workout_id == "w3d2"


def test_hundred_day_cap_truncates():
    queue = _program(8, 3)
    result = schedule_workouts(queue, MONDAY, ["Mon"])
    assert len(result.workouts) == 15
    assert result.truncated is True
    assert len(result.unscheduled) == 24 - 15
    assert result.workouts[-1].date == MONDAY + timedelta(days=98)


def test_custom_cap():
    result = schedule_workouts(_program(2, 3), MONDAY, ["Mon", "Wed", "Fri"], max_days=3)
    assert [w.date for w in result.workouts] == [MONDAY, MONDAY + timedelta(days=2)]
    assert result.truncated is True


def test_no_training_days_schedules_nothing():
    result = schedule_workouts(_program(1, 3), MONDAY, [])
    assert result.workouts == []
    assert result.truncated is True


def test_rest_only_queue_is_not_truncated():
    result = schedule_workouts(_queue(WorkoutType.REST, WorkoutType.REST), MONDAY, ["Mon"])
    assert result.workouts == []
    assert result.truncated is False


def test_start_off_training_day_waits_for_next_one():
    tuesday = MONDAY + timedelta(days=1)
    result = schedule_workouts(_queue(WorkoutType.RUCK, WorkoutType.RUCK), tuesday, ["Mon"])
    assert [w.date for w in result.workouts] == [MONDAY + timedelta(days=7), MONDAY + timedelta(days=14)]
    assert [w.week_number for w in result.workouts] == [1, 2]


def test_scheduled_rows_carry_template_fields():
    result = schedule_workouts(_program(1, 1), MONDAY, ["Mon"])
    row = result.workouts[0]
    assert row.workout_type == WorkoutType.RUCK
    assert row.target_distance == 2.5
    assert row.description == "Target: 2.5 miles"
    assert row.day_number == 1
    assert row.is_completed is False and row.is_locked is False


def test_flatten_orders_weeks_and_assigns_ids():
    queue = flatten_program_weeks(
        [
            {"week_number": 2, "workouts": [{"workout_type": "Endurance"}]},
            {"week_number": 1, "workouts": [{"id": "custom", "day_number": 3, "workout_type": "rest"}, {"workout_type": "speed"}]},
        ]
    )
    assert [(w.id, w.week, w.workout_type) for w in queue] == [
        ("custom", 1, WorkoutType.REST),
        ("w1d2", 1, WorkoutType.SPEED),
        ("w2d1", 2, WorkoutType.ENDURANCE),
    ]


@pytest.mark.parametrize(
    "days,expected",
    [
        (["Mon", "Wed", "Fri"], [0, 2, 4]),
        (["monday", "SUNDAY", 3], [0, 6, 3]),
        ([4, 4, "Fri", 9, "funday"], [4]),
        ([], []),
        (None, []),
    ],
)
def test_normalize_weekdays(days, expected):
    assert normalize_weekdays(days) == expected
