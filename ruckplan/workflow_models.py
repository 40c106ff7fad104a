"""Domain models for templates, planned workouts and generated workflows.

Value objects are frozen pydantic models; new values are always produced by
computation (``model_copy(update=...)``), never mutated in place. Sum types
(segment durations, prerequisites, progression conditions/actions and
adaptation triggers/modifications/durations) are discriminated unions keyed
on a ``kind`` field so they survive a JSON round trip through the cache.
"""

from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_PACE_MIN_PER_MILE = 15.0
MAX_INTENSITY = 1.2

DAY_TO_INDEX = {"Mon": 0, "Tue": 1, "Wed": 2, "Thu": 3, "Fri": 4, "Sat": 5, "Sun": 6}


def normalize_weekdays(days) -> list[int]:
    """Normalize weekday names ("Mon", "monday") or indices (0=Mon) to ordered unique indices."""
    seen: set[int] = set()
    order: list[int] = []
    for day in days or []:
        if isinstance(day, bool):
            continue
        if isinstance(day, int):
            idx = day if 0 <= day <= 6 else None
        else:
            key = str(day or "").strip()[:3].title()
            idx = DAY_TO_INDEX.get(key)
        if idx is None or idx in seen:
            continue
        seen.add(idx)
        order.append(idx)
    return order


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# -- Enumerations --


class ProgramCategory(str, Enum):
    MILITARY = "military"
    ADVENTURE = "adventure"
    FITNESS = "fitness"
    HISTORICAL = "historical"


class Difficulty(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    ELITE = "elite"


class Phase(str, Enum):
    FOUNDATION = "foundation"
    BUILD = "build"
    PEAK = "peak"
    TAPER = "taper"


class WorkoutType(str, Enum):
    FOUNDATION = "foundation"
    ENDURANCE = "endurance"
    STRENGTH = "strength"
    SPEED = "speed"
    RECOVERY = "recovery"
    TEST = "test"
    REST = "rest"
    RUCK = "ruck"


class HeartRateZone(str, Enum):
    RECOVERY = "recovery"
    AEROBIC = "aerobic"
    THRESHOLD = "threshold"
    ANAEROBIC = "anaerobic"
    NEUROMUSCULAR = "neuromuscular"


class SegmentType(str, Enum):
    WARMUP = "warmup"
    STEADY = "steady"
    INTERVAL = "interval"
    REST = "rest"
    BUILDUP = "buildup"
    TEMPO = "tempo"
    RECOVERY = "recovery"
    TEST = "test"
    COOLDOWN = "cooldown"


class DifficultyTier(str, Enum):
    EASY = "easy"
    MODERATE = "moderate"
    HARD = "hard"
    EXTREME = "extreme"


class ProgressionStrategy(str, Enum):
    CONSERVATIVE = "conservative"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"


class ProgressionPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    ProgressionPriority.LOW: 0,
    ProgressionPriority.MEDIUM: 1,
    ProgressionPriority.HIGH: 2,
    ProgressionPriority.CRITICAL: 3,
}


class RegenerationReason(str, Enum):
    SCHEDULED_UPDATE = "scheduled_update"
    PERFORMANCE_DECLINE = "performance_decline"
    CONSISTENCY_ISSUES = "consistency_issues"
    USER_REQUEST = "user_request"
    INJURY_RECOVERY = "injury_recovery"
    EQUIPMENT_CHANGE = "equipment_change"


class AdaptationFlag(str, Enum):
    WEIGHT_INCREASED = "weight_increased"
    WEIGHT_DECREASED = "weight_decreased"
    DISTANCE_MODIFIED = "distance_modified"
    INTENSITY_ADJUSTED = "intensity_adjusted"
    SCHEDULE_MODIFIED = "schedule_modified"
    INJURY_CONSIDERATION = "injury_consideration"


class AdaptationType(str, Enum):
    INCREASE_INTENSITY = "increase_intensity"
    DECREASE_INTENSITY = "decrease_intensity"
    ADJUST_VOLUME = "adjust_volume"
    MODIFY_SCHEDULE = "modify_schedule"
    REST_RECOMMENDED = "rest_recommended"


class Equipment(str, Enum):
    RUCK = "ruck"
    WEIGHTS = "weights"
    PULLUP_BAR = "pullup_bar"
    RESISTANCE_BANDS = "resistance_bands"
    CARDIO = "cardio"


# -- Segment durations --


class TimeDuration(_Frozen):
    kind: Literal["time"] = "time"
    seconds: float = Field(ge=0)


class DistanceDuration(_Frozen):
    kind: Literal["distance"] = "distance"
    miles: float = Field(ge=0)


SegmentDuration = Annotated[Union[TimeDuration, DistanceDuration], Field(discriminator="kind")]


def duration_seconds(duration: SegmentDuration, pace_min_per_mile: float = DEFAULT_PACE_MIN_PER_MILE) -> float:
    """Convert a segment duration to seconds; distances use the given pace (min/mile)."""
    if isinstance(duration, TimeDuration):
        return float(duration.seconds)
    if isinstance(duration, DistanceDuration):
        return float(duration.miles) * pace_min_per_mile * 60.0
    raise TypeError(f"Unknown segment duration: {duration!r}")


def format_duration(duration: SegmentDuration) -> str:
    if isinstance(duration, TimeDuration):
        return f"{int(duration.seconds // 60)} min"
    if isinstance(duration, DistanceDuration):
        return f"{duration.miles:.1f} miles"
    raise TypeError(f"Unknown segment duration: {duration!r}")


# -- Parameters and template --


class WorkoutParameters(_Frozen):
    target_weight: float = Field(default=25.0, ge=0)
    target_distance: float = Field(default=3.0, ge=0)
    target_pace: float = Field(default=DEFAULT_PACE_MIN_PER_MILE, ge=0)
    intensity: float = Field(default=0.7, ge=0, le=MAX_INTENSITY)
    rest_interval_seconds: float = Field(default=60.0, ge=0)
    warmup_duration: SegmentDuration = Field(default_factory=lambda: TimeDuration(seconds=600))
    cooldown_duration: SegmentDuration = Field(default_factory=lambda: TimeDuration(seconds=600))
    max_heart_rate: float = Field(default=180.0, gt=0)
    heart_rate_zone: HeartRateZone = HeartRateZone.AEROBIC

    @classmethod
    def default(cls) -> "WorkoutParameters":
        return cls()


class WeekPattern(_Frozen):
    workout_types: tuple[WorkoutType, ...]
    intensity_modifier: float = Field(default=1.0, ge=0)

    @classmethod
    def default(cls) -> "WeekPattern":
        return cls(
            workout_types=(WorkoutType.ENDURANCE, WorkoutType.STRENGTH, WorkoutType.ENDURANCE),
            intensity_modifier=0.8,
        )


class TemplateProgressionRule(_Frozen):
    """Closed week range with per-week increments."""

    week_start: int
    week_end: int
    weight_progression: float = 0.0
    distance_progression: float = 0.0
    intensity_progression: float = 0.0

    @model_validator(mode="after")
    def _valid_range(self):
        if self.week_start < 1:
            raise ValueError("week_start must be >= 1")
        if self.week_end < self.week_start:
            raise ValueError("week_end must be >= week_start")
        return self

    def contains(self, week: int) -> bool:
        return self.week_start <= week <= self.week_end

    def overlaps(self, other: "TemplateProgressionRule") -> bool:
        return self.week_start <= other.week_end and other.week_start <= self.week_end


class WorkflowTemplate(_Frozen):
    id: UUID = Field(default_factory=uuid4)
    name: str = Field(min_length=1)
    category: ProgramCategory
    difficulty: Difficulty
    duration_weeks: int = Field(ge=0)
    week_patterns: dict[Phase, tuple[WeekPattern, ...]] = Field(default_factory=dict)
    base_parameters: dict[WorkoutType, WorkoutParameters] = Field(default_factory=dict)
    progression_rules: tuple[TemplateProgressionRule, ...] = ()

    @property
    def is_ongoing(self) -> bool:
        return self.duration_weeks == 0

    def week_pattern(self, phase: Phase, week: int) -> WeekPattern:
        patterns = self.week_patterns.get(phase) or ()
        if not patterns:
            return WeekPattern.default()
        return patterns[(week - 1) % len(patterns)]

    def base_parameters_for(self, workout_type: WorkoutType) -> WorkoutParameters:
        return self.base_parameters.get(workout_type) or WorkoutParameters.default()

    def progression_rule_for(self, week: int) -> Optional[TemplateProgressionRule]:
        # First match wins when ranges overlap.
        return next((rule for rule in self.progression_rules if rule.contains(week)), None)


# -- Workout structure --


class TargetMetrics(_Frozen):
    pace: float
    heart_rate_zone: HeartRateZone
    weight: float


class WorkoutSegment(_Frozen):
    id: UUID = Field(default_factory=uuid4)
    segment_type: SegmentType
    duration: SegmentDuration
    intensity: float = Field(ge=0)
    instructions: str = ""
    target: TargetMetrics

    @property
    def duration_seconds(self) -> float:
        return duration_seconds(self.duration)


class WorkoutStructure(_Frozen):
    warmup: WorkoutSegment
    main_segments: tuple[WorkoutSegment, ...] = ()
    cooldown: WorkoutSegment
    total_estimated_seconds: float = Field(ge=0)

    @property
    def segments(self) -> list[WorkoutSegment]:
        return [self.warmup, *self.main_segments, self.cooldown]


# -- Prerequisites --


class RestDayPrerequisite(_Frozen):
    kind: Literal["rest_day"] = "rest_day"
    hours: int = Field(default=24, ge=0)

    @property
    def description(self) -> str:
        return f"Ensure {self.hours} hours rest since last workout"


class EquipmentPrerequisite(_Frozen):
    kind: Literal["equipment"] = "equipment"
    items: tuple[Equipment, ...]

    @property
    def description(self) -> str:
        return "Required equipment: " + ", ".join(item.value for item in self.items)


class HealthCheckPrerequisite(_Frozen):
    kind: Literal["health_check"] = "health_check"

    @property
    def description(self) -> str:
        return "Perform health and injury check before starting"


class WeatherCheckPrerequisite(_Frozen):
    kind: Literal["weather_check"] = "weather_check"

    @property
    def description(self) -> str:
        return "Check weather conditions and adjust accordingly"


class PreviousWorkoutPrerequisite(_Frozen):
    kind: Literal["previous_workout_completion"] = "previous_workout_completion"

    @property
    def description(self) -> str:
        return "Complete previous workout before proceeding"


Prerequisite = Annotated[
    Union[
        RestDayPrerequisite,
        EquipmentPrerequisite,
        HealthCheckPrerequisite,
        WeatherCheckPrerequisite,
        PreviousWorkoutPrerequisite,
    ],
    Field(discriminator="kind"),
]


# -- Progression rules (general purpose) --


class WeeklyConsistencyCondition(_Frozen):
    kind: Literal["weekly_consistency"] = "weekly_consistency"
    threshold: float


class AverageCompletionTimeCondition(_Frozen):
    kind: Literal["average_completion_time"] = "average_completion_time"
    ratio: float


class HeartRateRecoveryCondition(_Frozen):
    kind: Literal["heart_rate_recovery"] = "heart_rate_recovery"
    threshold: float


class MissedWorkoutsCondition(_Frozen):
    kind: Literal["missed_workouts"] = "missed_workouts"
    count: int = Field(ge=0)


class UserFeedbackCondition(_Frozen):
    kind: Literal["user_feedback"] = "user_feedback"
    rating: int = Field(ge=1, le=10)


ProgressionCondition = Annotated[
    Union[
        WeeklyConsistencyCondition,
        AverageCompletionTimeCondition,
        HeartRateRecoveryCondition,
        MissedWorkoutsCondition,
        UserFeedbackCondition,
    ],
    Field(discriminator="kind"),
]


class IncreaseWeightAction(_Frozen):
    kind: Literal["increase_weight"] = "increase_weight"
    amount: float = Field(ge=0)


class DecreaseWeightAction(_Frozen):
    kind: Literal["decrease_weight"] = "decrease_weight"
    amount: float = Field(ge=0)


class IncreaseDistanceAction(_Frozen):
    kind: Literal["increase_distance"] = "increase_distance"
    multiplier: float = Field(gt=0)


class DecreaseDistanceAction(_Frozen):
    kind: Literal["decrease_distance"] = "decrease_distance"
    multiplier: float = Field(gt=0)


class IncreaseIntensityAction(_Frozen):
    kind: Literal["increase_intensity"] = "increase_intensity"
    multiplier: float = Field(gt=0)


class DecreaseIntensityAction(_Frozen):
    kind: Literal["decrease_intensity"] = "decrease_intensity"
    multiplier: float = Field(gt=0)


class AddRestDayAction(_Frozen):
    kind: Literal["add_rest_day"] = "add_rest_day"


class RemoveRestDayAction(_Frozen):
    kind: Literal["remove_rest_day"] = "remove_rest_day"


ProgressionAction = Annotated[
    Union[
        IncreaseWeightAction,
        DecreaseWeightAction,
        IncreaseDistanceAction,
        DecreaseDistanceAction,
        IncreaseIntensityAction,
        DecreaseIntensityAction,
        AddRestDayAction,
        RemoveRestDayAction,
    ],
    Field(discriminator="kind"),
]


class ProgressionRule(_Frozen):
    condition: ProgressionCondition
    action: ProgressionAction
    priority: ProgressionPriority = ProgressionPriority.MEDIUM


# -- Adaptation rules --


class PerformancePatternTrigger(_Frozen):
    kind: Literal["performance_pattern"] = "performance_pattern"
    adaptation_type: AdaptationType


class ConsistencyThresholdTrigger(_Frozen):
    kind: Literal["consistency_threshold"] = "consistency_threshold"
    value: float


class HeartRateAnomalyTrigger(_Frozen):
    kind: Literal["heart_rate_anomaly"] = "heart_rate_anomaly"


class UserFeedbackTrigger(_Frozen):
    kind: Literal["user_feedback"] = "user_feedback"


class InjuryRiskTrigger(_Frozen):
    kind: Literal["injury_risk"] = "injury_risk"


AdaptationTrigger = Annotated[
    Union[
        PerformancePatternTrigger,
        ConsistencyThresholdTrigger,
        HeartRateAnomalyTrigger,
        UserFeedbackTrigger,
        InjuryRiskTrigger,
    ],
    Field(discriminator="kind"),
]


class WeightAdjustment(_Frozen):
    kind: Literal["weight_adjustment"] = "weight_adjustment"
    value: float


class DistanceAdjustment(_Frozen):
    kind: Literal["distance_adjustment"] = "distance_adjustment"
    value: float


class IntensityAdjustment(_Frozen):
    kind: Literal["intensity_adjustment"] = "intensity_adjustment"
    value: float


class ScheduleChange(_Frozen):
    kind: Literal["schedule_change"] = "schedule_change"


class WorkoutTypeChange(_Frozen):
    kind: Literal["workout_type_change"] = "workout_type_change"
    workout_type: WorkoutType


AdaptationModification = Annotated[
    Union[WeightAdjustment, DistanceAdjustment, IntensityAdjustment, ScheduleChange, WorkoutTypeChange],
    Field(discriminator="kind"),
]


class TemporaryDuration(_Frozen):
    kind: Literal["temporary"] = "temporary"
    weeks: int = Field(ge=1)


class PermanentDuration(_Frozen):
    kind: Literal["permanent"] = "permanent"


class UntilConditionDuration(_Frozen):
    kind: Literal["until_condition"] = "until_condition"
    condition: ProgressionCondition


AdaptationDuration = Annotated[
    Union[TemporaryDuration, PermanentDuration, UntilConditionDuration],
    Field(discriminator="kind"),
]


class AdaptationRule(_Frozen):
    trigger: AdaptationTrigger
    modification: AdaptationModification
    duration: AdaptationDuration


# -- Performance and history --


class PerformanceMetrics(_Frozen):
    consistency: float = Field(ge=0)
    average_effort: float = Field(ge=0)
    progress_trend: float = 0.0


class AdaptationRecord(_Frozen):
    session_id: str
    reason: RegenerationReason
    timestamp: dt.datetime
    previous_performance: PerformanceMetrics
    applied_changes: tuple[str, ...] = ()


class TimePeriod(_Frozen):
    unit: Literal["days", "weeks", "months"] = "weeks"
    count: int = Field(default=4, ge=0)

    @classmethod
    def weeks(cls, count: int) -> "TimePeriod":
        return cls(unit="weeks", count=count)

    def to_timedelta(self) -> dt.timedelta:
        days_per_unit = {"days": 1, "weeks": 7, "months": 30}[self.unit]
        return dt.timedelta(days=self.count * days_per_unit)


# -- Sessions (provided by the host application) --


class ProgramAdaptation(_Frozen):
    adaptation_type: AdaptationType
    reason: str = ""
    suggested_change: str = ""
    confidence: float = Field(default=0.5, ge=0, le=1)


class ProgramSession(_Frozen):
    session_id: str = Field(min_length=1)
    program_title: str = ""
    category: ProgramCategory
    difficulty: Difficulty
    duration_weeks: int = Field(ge=0)
    current_week: int = Field(default=1, ge=1)
    workout_days: tuple[int, ...] = (0, 2, 4)
    enrolled_on: dt.date
    adaptations: tuple[ProgramAdaptation, ...] = ()
    is_active: bool = True

    @field_validator("workout_days", mode="before")
    @classmethod
    def _normalize_days(cls, v):
        return tuple(normalize_weekdays(v))

    @property
    def window_start(self) -> dt.date:
        return self.enrolled_on + dt.timedelta(days=7 * (self.current_week - 1))

    @property
    def remaining_weeks(self) -> Optional[int]:
        if self.duration_weeks == 0:
            return None
        return max(0, self.duration_weeks - self.current_week + 1)


# -- Planned and scheduled workouts --


class TemplateWorkout(_Frozen):
    """One entry of the flat, week-ordered queue handed to the calendar scheduler."""

    id: str
    week: int = Field(ge=1)
    day_number: int = Field(ge=1)
    workout_type: WorkoutType
    target_distance: Optional[float] = None
    instructions: Optional[str] = None

    @property
    def is_rest(self) -> bool:
        return self.workout_type == WorkoutType.REST


class ScheduledWorkout(BaseModel):
    date: dt.date
    week_number: int = Field(ge=1)
    title: str
    description: str
    workout_id: Optional[str] = None
    day_number: Optional[int] = None
    workout_type: WorkoutType
    target_distance: Optional[float] = None
    is_completed: bool = False
    is_locked: bool = False


class PlannedWorkout(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    session_id: str
    week: int = Field(ge=1)
    day_index: int = Field(ge=0)
    scheduled_date: dt.date
    workout_type: WorkoutType
    phase: Phase
    parameters: WorkoutParameters
    structure: WorkoutStructure
    estimated_duration_seconds: float = Field(ge=0)
    difficulty: DifficultyTier
    prerequisites: list[Prerequisite] = Field(default_factory=list)
    adaptation_flags: list[AdaptationFlag] = Field(default_factory=list)

    def formatted_instructions(self) -> str:
        p = self.parameters
        lines = [
            f"{self.workout_type.value.title()} Workout - Week {self.week}, Day {self.day_index + 1}",
            "",
            "Target Parameters:",
            f"- Weight: {int(p.target_weight)} lbs",
            f"- Distance: {p.target_distance:.1f} miles",
            f"- Target Pace: {p.target_pace:.1f} min/mile",
            f"- Intensity: {int(round(p.intensity * 100))}%",
            "",
            f"Warmup ({format_duration(self.structure.warmup.duration)}): {self.structure.warmup.instructions}",
        ]
        for idx, segment in enumerate(self.structure.main_segments, start=1):
            lines.append(f"Segment {idx} ({format_duration(segment.duration)}): {segment.instructions}")
        lines.append(f"Cooldown ({format_duration(self.structure.cooldown.duration)}): {self.structure.cooldown.instructions}")
        if self.prerequisites:
            lines.append("")
            lines.append("Prerequisites:")
            lines.extend(f"- {pre.description}" for pre in self.prerequisites)
        if self.adaptation_flags:
            lines.append("")
            lines.append("Adaptations Applied:")
            lines.extend(f"- {flag.value.replace('_', ' ')}" for flag in self.adaptation_flags)
        return "\n".join(lines)


class GeneratedWorkflow(_Frozen):
    id: UUID = Field(default_factory=uuid4)
    session_id: str
    template: WorkflowTemplate
    generated_at: dt.datetime
    window_start: dt.date
    workouts: tuple[PlannedWorkout, ...] = ()
    progression_strategy: ProgressionStrategy = ProgressionStrategy.MODERATE
    adaptation_rules: tuple[AdaptationRule, ...] = ()
    validity: TimePeriod = Field(default_factory=lambda: TimePeriod.weeks(4))
    truncated: bool = False

    @model_validator(mode="after")
    def _ordered_unique_dates(self):
        dates = [w.scheduled_date for w in self.workouts]
        if dates != sorted(dates):
            raise ValueError("workouts must be sorted by scheduled date")
        if len(set(dates)) != len(dates):
            raise ValueError("workouts must not share a scheduled date")
        return self

    @property
    def expires_at(self) -> dt.datetime:
        return self.generated_at + self.validity.to_timedelta()

    def is_expired(self, now: dt.datetime) -> bool:
        return now - self.generated_at > self.validity.to_timedelta()

    def regeneration_reason(
        self,
        performance: PerformanceMetrics,
        now: dt.datetime,
        consistency_min: float = 0.6,
        trend_min: float = -0.2,
    ) -> Optional[RegenerationReason]:
        if self.is_expired(now):
            return RegenerationReason.SCHEDULED_UPDATE
        if performance.consistency < consistency_min:
            return RegenerationReason.CONSISTENCY_ISSUES
        if performance.progress_trend < trend_min:
            return RegenerationReason.PERFORMANCE_DECLINE
        return None

    def needs_regeneration(
        self,
        performance: PerformanceMetrics,
        now: dt.datetime,
        consistency_min: float = 0.6,
        trend_min: float = -0.2,
    ) -> bool:
        """Advisory check: expired, low consistency, or a significant decline."""
        return self.regeneration_reason(performance, now, consistency_min, trend_min) is not None

    def upcoming_workouts(self, today: dt.date) -> list[PlannedWorkout]:
        return [w for w in self.workouts if w.scheduled_date >= today]

    def next_workout(self, today: dt.date) -> Optional[PlannedWorkout]:
        upcoming = self.upcoming_workouts(today)
        return upcoming[0] if upcoming else None

    def workout_on(self, day: dt.date) -> Optional[PlannedWorkout]:
        return next((w for w in self.workouts if w.scheduled_date == day), None)

    def current_week_workouts(self, today: dt.date) -> list[PlannedWorkout]:
        week_start = today - dt.timedelta(days=today.weekday())
        week_end = week_start + dt.timedelta(days=7)
        return [w for w in self.workouts if week_start <= w.scheduled_date < week_end]

    def to_schedule(self) -> list[ScheduledWorkout]:
        """Project planned workouts onto calendar rows labelled with calendar-relative weeks."""
        rows: list[ScheduledWorkout] = []
        for workout in self.workouts:
            week_number = (workout.scheduled_date - self.window_start).days // 7 + 1
            distance = workout.parameters.target_distance
            rows.append(
                ScheduledWorkout(
                    date=workout.scheduled_date,
                    week_number=week_number,
                    title=f"Week {week_number} - {workout.workout_type.value.title()}",
                    description=f"Target: {distance:.1f} miles",
                    workout_id=str(workout.id),
                    day_number=workout.day_index + 1,
                    workout_type=workout.workout_type,
                    target_distance=distance,
                )
            )
        return rows


class ActiveWorkflow(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    session_id: str
    workflow: GeneratedWorkflow
    current_week: int = Field(ge=1)
    last_regeneration: dt.datetime
    adaptation_count: int = Field(default=0, ge=0)
