from __future__ import annotations

from datetime import date as dt_date
from datetime import datetime as dt_datetime
from typing import Optional

from pydantic import BaseModel

from ruckplan.services.phases import phase_weeks
from ruckplan.services.scheduler import ScheduleResult
from ruckplan.workflow_models import (
    ActiveWorkflow,
    AdaptationFlag,
    AdaptationRecord,
    Difficulty,
    DifficultyTier,
    GeneratedWorkflow,
    Phase,
    PlannedWorkout,
    ProgramCategory,
    ProgressionStrategy,
    ScheduledWorkout,
    WorkflowTemplate,
    WorkoutParameters,
    WorkoutType,
)


class TemplateOut(BaseModel):
    id: str
    name: str
    category: ProgramCategory
    difficulty: Difficulty
    duration_weeks: int
    is_ongoing: bool
    phase_weeks: dict[Phase, list[int]]

    @classmethod
    def from_template(cls, template: WorkflowTemplate) -> "TemplateOut":
        return cls(
            id=str(template.id),
            name=template.name,
            category=template.category,
            difficulty=template.difficulty,
            duration_weeks=template.duration_weeks,
            is_ongoing=template.is_ongoing,
            phase_weeks=phase_weeks(template.duration_weeks),
        )


class PlannedWorkoutOut(BaseModel):
    id: str
    week: int
    day_number: int
    scheduled_date: dt_date
    workout_type: WorkoutType
    phase: Phase
    parameters: WorkoutParameters
    estimated_duration_seconds: float
    difficulty: DifficultyTier
    prerequisites: list[str]
    adaptation_flags: list[AdaptationFlag]
    instructions: str

    @classmethod
    def from_workout(cls, workout: PlannedWorkout) -> "PlannedWorkoutOut":
        return cls(
            id=str(workout.id),
            week=workout.week,
            day_number=workout.day_index + 1,
            scheduled_date=workout.scheduled_date,
            workout_type=workout.workout_type,
            phase=workout.phase,
            parameters=workout.parameters,
            estimated_duration_seconds=workout.estimated_duration_seconds,
            difficulty=workout.difficulty,
            prerequisites=[p.description for p in workout.prerequisites],
            adaptation_flags=list(workout.adaptation_flags),
            instructions=workout.formatted_instructions(),
        )


class WorkflowOut(BaseModel):
    id: str
    session_id: str
    template_id: str
    template_name: str
    generated_at: dt_datetime
    expires_at: dt_datetime
    window_start: dt_date
    progression_strategy: ProgressionStrategy
    truncated: bool
    workouts: list[PlannedWorkoutOut]

    @classmethod
    def from_workflow(cls, workflow: GeneratedWorkflow) -> "WorkflowOut":
        return cls(
            id=str(workflow.id),
            session_id=workflow.session_id,
            template_id=str(workflow.template.id),
            template_name=workflow.template.name,
            generated_at=workflow.generated_at,
            expires_at=workflow.expires_at,
            window_start=workflow.window_start,
            progression_strategy=workflow.progression_strategy,
            truncated=workflow.truncated,
            workouts=[PlannedWorkoutOut.from_workout(w) for w in workflow.workouts],
        )


class ActiveWorkflowOut(BaseModel):
    session_id: str
    current_week: int
    last_regeneration: dt_datetime
    adaptation_count: int
    workflow: WorkflowOut

    @classmethod
    def from_active(cls, active: ActiveWorkflow) -> "ActiveWorkflowOut":
        return cls(
            session_id=active.session_id,
            current_week=active.current_week,
            last_regeneration=active.last_regeneration,
            adaptation_count=active.adaptation_count,
            workflow=WorkflowOut.from_workflow(active.workflow),
        )


class AdaptationRecordOut(BaseModel):
    reason: str
    timestamp: dt_datetime
    consistency: float
    average_effort: float
    progress_trend: float
    applied_changes: list[str]

    @classmethod
    def from_record(cls, record: AdaptationRecord) -> "AdaptationRecordOut":
        perf = record.previous_performance
        return cls(
            reason=record.reason.value,
            timestamp=record.timestamp,
            consistency=perf.consistency,
            average_effort=perf.average_effort,
            progress_trend=perf.progress_trend,
            applied_changes=list(record.applied_changes),
        )


class FeedbackOut(BaseModel):
    session_id: str
    rpe: int
    soreness: bool
    timestamp: dt_datetime
    deload: bool


class SchedulePreviewOut(BaseModel):
    workouts: list[ScheduledWorkout]
    truncated: bool
    unscheduled: int

    @classmethod
    def from_result(cls, result: ScheduleResult) -> "SchedulePreviewOut":
        return cls(workouts=result.workouts, truncated=result.truncated, unscheduled=len(result.unscheduled))


class HealthOut(BaseModel):
    status: str
    app_env: str
    cache_backend: str
    templates: int
    query_p95_ms: Optional[float] = None
