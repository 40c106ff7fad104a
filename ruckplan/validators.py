"""Pydantic validation models for all user-facing data entry points."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from ruckplan.workflow_models import (
    Difficulty,
    ProgramAdaptation,
    ProgramCategory,
    ProgramSession,
    RegenerationReason,
    WorkoutType,
    normalize_weekdays,
)


def _weekdays(v):
    days = normalize_weekdays(v)
    if not days:
        raise ValueError("at least one valid training weekday is required")
    return days


class EnrollmentInput(BaseModel):
    session_id: str = Field(min_length=1, max_length=64)
    program_title: str = Field(default="", max_length=180)
    category: ProgramCategory
    difficulty: Difficulty
    duration_weeks: int = Field(ge=0, le=104)
    current_week: int = Field(default=1, ge=1)
    workout_days: list[Union[int, str]] = Field(default_factory=lambda: ["Mon", "Wed", "Fri"])
    enrolled_on: date
    adaptations: list[ProgramAdaptation] = Field(default_factory=list)

    @field_validator("workout_days")
    @classmethod
    def valid_workout_days(cls, v):
        return _weekdays(v)

    @model_validator(mode="after")
    def current_week_within_program(self):
        if self.duration_weeks and self.current_week > self.duration_weeks:
            raise ValueError("current_week must be <= duration_weeks")
        return self

    def to_session(self) -> ProgramSession:
        return ProgramSession(
            session_id=self.session_id,
            program_title=self.program_title,
            category=self.category,
            difficulty=self.difficulty,
            duration_weeks=self.duration_weeks,
            current_week=self.current_week,
            workout_days=self.workout_days,
            enrolled_on=self.enrolled_on,
            adaptations=tuple(self.adaptations),
        )


class RegenerationInput(BaseModel):
    reason: RegenerationReason = RegenerationReason.USER_REQUEST


class FeedbackInput(BaseModel):
    rpe: int = Field(ge=1, le=10)
    soreness: bool = False
    timestamp: Optional[datetime] = None

    @field_validator("timestamp")
    @classmethod
    def timezone_aware(cls, v):
        if v is not None and v.tzinfo is None:
            raise ValueError("timestamp must include a timezone offset")
        return v


class PreviewWorkoutInput(BaseModel):
    id: Optional[str] = None
    day_number: Optional[int] = Field(default=None, ge=1)
    workout_type: WorkoutType = WorkoutType.RUCK
    distance_miles: Optional[float] = Field(default=None, ge=0)
    instructions: Optional[str] = Field(default=None, max_length=2000)


class PreviewWeekInput(BaseModel):
    week_number: int = Field(ge=1)
    workouts: list[PreviewWorkoutInput] = Field(default_factory=list)


class SchedulePreviewInput(BaseModel):
    start_date: date
    workout_days: list[Union[int, str]]
    weeks: list[PreviewWeekInput] = Field(min_length=1)
    max_days: int = Field(default=100, ge=1, le=366)

    @field_validator("workout_days")
    @classmethod
    def valid_workout_days(cls, v):
        return _weekdays(v)
