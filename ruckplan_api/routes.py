import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from ruckplan.config import get_settings
from ruckplan.db import get_query_stats
from ruckplan.services.feedback import FEEDBACK_MAX_AGE, MarchFeedback
from ruckplan.services.performance import WorkoutCompletion
from ruckplan.services.scheduler import flatten_program_weeks, schedule_workouts
from ruckplan.services.workflow_engine import WorkflowEngine, WorkflowStatus
from ruckplan.validators import EnrollmentInput, FeedbackInput, RegenerationInput, SchedulePreviewInput
from ruckplan.workflow_models import PerformanceMetrics, ScheduledWorkout
from ruckplan_api.deps import get_engine
from ruckplan_api.ratelimit import limiter
from ruckplan_api.schemas import (
    ActiveWorkflowOut,
    AdaptationRecordOut,
    FeedbackOut,
    HealthOut,
    SchedulePreviewOut,
    TemplateOut,
    WorkflowOut,
)

logger = logging.getLogger(__name__)
settings = get_settings()
router = APIRouter(prefix="/api/v1")

EngineDep = Annotated[WorkflowEngine, Depends(get_engine)]


@router.get("/health", response_model=HealthOut, tags=["ops"])
def health(request: Request, engine: EngineDep):
    stats = get_query_stats()
    return HealthOut(
        status="ok",
        app_env=settings.app_env,
        cache_backend=getattr(request.app.state, "cache_backend", "memory"),
        templates=len(engine.catalog.templates),
        query_p95_ms=stats.p95_ms if stats.total else None,
    )


@router.get("/templates", response_model=list[TemplateOut], tags=["templates"])
def list_templates(engine: EngineDep):
    return [TemplateOut.from_template(t) for t in engine.catalog.templates]


@router.post("/sessions", response_model=ActiveWorkflowOut, status_code=201, tags=["sessions"])
def enroll_session(body: EnrollmentInput, engine: EngineDep):
    active = engine.enroll(body.to_session())
    return ActiveWorkflowOut.from_active(active)


@router.post("/sessions/{session_id}/advance", response_model=ActiveWorkflowOut, tags=["sessions"])
def advance_session_week(session_id: str, engine: EngineDep):
    return ActiveWorkflowOut.from_active(engine.advance_week(session_id))


@router.get("/sessions/{session_id}/workflow", response_model=WorkflowOut, tags=["workflows"])
def get_workflow(session_id: str, engine: EngineDep):
    return WorkflowOut.from_workflow(engine.get_workflow(session_id))


@router.post("/sessions/{session_id}/workflow/regenerate", response_model=WorkflowOut, tags=["workflows"])
@limiter.limit(settings.regenerate_rate_limit)
def regenerate_workflow(request: Request, response: Response, session_id: str, engine: EngineDep, body: Optional[RegenerationInput] = None):
    del request, response
    reason = (body or RegenerationInput()).reason
    return WorkflowOut.from_workflow(engine.regenerate(session_id, reason))


@router.get("/sessions/{session_id}/workflow/status", response_model=WorkflowStatus, tags=["workflows"])
def workflow_status(session_id: str, engine: EngineDep):
    return engine.status(session_id)


@router.get("/sessions/{session_id}/history", response_model=list[AdaptationRecordOut], tags=["workflows"])
def adaptation_history(session_id: str, engine: EngineDep):
    engine.sessions.get_session(session_id)
    return [AdaptationRecordOut.from_record(r) for r in engine.history(session_id)]


@router.post("/sessions/{session_id}/completions", response_model=PerformanceMetrics, status_code=201, tags=["performance"])
def record_completion(session_id: str, body: WorkoutCompletion, engine: EngineDep):
    recorder = getattr(engine.performance, "record_completion", None)
    if recorder is None:
        raise HTTPException(status_code=status.HTTP_501_NOT_IMPLEMENTED, detail="Completion logging is not configured")
    engine.sessions.get_session(session_id)
    recorder(session_id, body)
    logger.info("workout_completion_recorded", extra={"ctx_session_id": session_id, "ctx_completed_on": body.completed_on.isoformat()})
    return engine.performance.get_performance(session_id)


@router.get("/sessions/{session_id}/schedule", response_model=list[ScheduledWorkout], tags=["schedule"])
def session_schedule(session_id: str, engine: EngineDep):
    return engine.schedule(session_id)


@router.post("/sessions/{session_id}/feedback", response_model=FeedbackOut, status_code=201, tags=["feedback"])
def submit_feedback(session_id: str, body: FeedbackInput, engine: EngineDep):
    if engine.feedback is None:
        raise HTTPException(status_code=status.HTTP_501_NOT_IMPLEMENTED, detail="Feedback storage is not configured")
    engine.sessions.get_session(session_id)
    now = engine.clock()
    feedback = MarchFeedback(rpe=body.rpe, soreness=body.soreness, timestamp=body.timestamp or now)
    engine.feedback.save(session_id, feedback)
    deload = feedback.calls_for_deload() and now - feedback.timestamp <= FEEDBACK_MAX_AGE
    logger.info("march_feedback_recorded", extra={"ctx_session_id": session_id, "ctx_rpe": feedback.rpe, "ctx_deload": deload})
    return FeedbackOut(session_id=session_id, rpe=feedback.rpe, soreness=feedback.soreness, timestamp=feedback.timestamp, deload=deload)


@router.post("/schedule/preview", response_model=SchedulePreviewOut, tags=["schedule"])
def preview_schedule(body: SchedulePreviewInput):
    weeks = [w.model_dump(mode="json") for w in body.weeks]
    result = schedule_workouts(flatten_program_weeks(weeks), body.start_date, body.workout_days, max_days=body.max_days)
    return SchedulePreviewOut.from_result(result)
