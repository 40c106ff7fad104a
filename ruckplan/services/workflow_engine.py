"""Regeneration and adaptation controller.

The engine owns one workflow per program session. It generates a rolling
window of planned workouts from the session's template, caches it, decides
when a cached workflow has gone stale, and regenerates it on request. All
``ActiveWorkflow`` bookkeeping is mutated here and nowhere else.

Generation for a given session id is serialized by a per-session lock;
different sessions generate independently.
"""

from __future__ import annotations

import datetime as dt
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict

from ruckplan.config import Settings, get_settings
from ruckplan.errors import CacheCorrupted, GenerationFailed, InvalidParameters, SessionNotFound, WorkflowEngineError
from ruckplan.services.feedback import FeedbackStore, apply_feedback_deload
from ruckplan.services.performance import PerformanceProvider
from ruckplan.services.phases import determine_phase
from ruckplan.services.progression import compute_parameters
from ruckplan.services.rules import (
    RuleObservations,
    adapt_parameters,
    adaptation_rules_for,
    apply_action,
    apply_strategy,
    dedupe_flags,
    default_progression_rules,
    determine_strategy,
    select_rule,
)
from ruckplan.services.scheduler import schedule_workouts
from ruckplan.services.sessions import AdaptationLog, SessionProvider
from ruckplan.services.structure import determine_prerequisites, estimate_difficulty, synthesize
from ruckplan.services.templates import TemplateCatalog
from ruckplan.services.workflow_cache import WorkflowCache
from ruckplan.workflow_models import (
    ActiveWorkflow,
    AdaptationFlag,
    AdaptationRecord,
    AdaptationRule,
    GeneratedWorkflow,
    PerformanceMetrics,
    Phase,
    PlannedWorkout,
    ProgramSession,
    ProgressionRule,
    ProgressionStrategy,
    RegenerationReason,
    ScheduledWorkout,
    TemplateWorkout,
    TimePeriod,
    WorkflowTemplate,
    WorkoutParameters,
    WorkoutType,
)

logger = logging.getLogger(__name__)


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


@dataclass
class Personalization:
    strategy: ProgressionStrategy
    progression_rule: Optional[ProgressionRule]
    adaptation_rules: list[AdaptationRule]
    observations: RuleObservations

    def describe(self) -> tuple[str, ...]:
        changes = [f"strategy:{self.strategy.value}"]
        if self.progression_rule is not None:
            changes.append(f"progression:{self.progression_rule.action.kind}")
        if self.adaptation_rules:
            changes.append(f"adaptation_rules:{len(self.adaptation_rules)}")
        return tuple(changes)


@dataclass
class _Slot:
    week: int
    day_index: int
    phase: Phase
    workout_type: WorkoutType
    intensity_modifier: float
    parameters: WorkoutParameters
    flags: list[AdaptationFlag] = field(default_factory=list)

    @property
    def key(self) -> str:
        return f"w{self.week}d{self.day_index + 1}"


@dataclass
class SyncResult:
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)


class WorkflowStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    session_id: str
    workflow_id: str
    generated_at: dt.datetime
    expires_at: dt.datetime
    is_expired: bool
    needs_regeneration: bool
    reason: Optional[RegenerationReason] = None
    performance: PerformanceMetrics
    progression_strategy: ProgressionStrategy
    workout_count: int
    truncated: bool


class WorkflowEngine:
    def __init__(
        self,
        catalog: TemplateCatalog,
        sessions: SessionProvider,
        performance: PerformanceProvider,
        cache: WorkflowCache,
        adaptation_log: AdaptationLog,
        clock: Callable[[], dt.datetime] = utcnow,
        settings: Optional[Settings] = None,
        progression_rules: Optional[list[ProgressionRule]] = None,
        feedback: Optional[FeedbackStore] = None,
    ) -> None:
        self.catalog = catalog
        self.sessions = sessions
        self.performance = performance
        self.cache = cache
        self.adaptation_log = adaptation_log
        self.clock = clock
        self.settings = settings or get_settings()
        self.progression_rules = list(progression_rules) if progression_rules is not None else default_progression_rules()
        self.feedback = feedback
        self._active: dict[str, ActiveWorkflow] = {}
        self._locks: dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, session_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = self._locks[session_id] = threading.RLock()
            return lock

    def _forget_lock(self, session_id: str) -> None:
        with self._guard:
            self._locks.pop(session_id, None)

    # -- Generation --

    def personalization_for(self, session: ProgramSession, performance: PerformanceMetrics) -> Personalization:
        observations = RuleObservations.from_performance(performance)
        return Personalization(
            strategy=determine_strategy(performance),
            progression_rule=select_rule(self.progression_rules, observations),
            adaptation_rules=adaptation_rules_for(session),
            observations=observations,
        )

    def window_weeks(self, session: ProgramSession) -> int:
        window = max(1, self.settings.generation_window_weeks)
        remaining = session.remaining_weeks
        if remaining is None:
            return window
        return max(1, min(window, remaining))

    def generate(self, session: ProgramSession) -> GeneratedWorkflow:
        with self._lock_for(session.session_id):
            performance = self.performance.get_performance(session.session_id)
            return self._generate_locked(session, self.personalization_for(session, performance))

    def _generate_locked(self, session: ProgramSession, personalization: Personalization) -> GeneratedWorkflow:
        template = self.catalog.select_template(session.category, session.difficulty)
        try:
            workflow = self._build_workflow(session, template, personalization)
        except WorkflowEngineError:
            raise
        except Exception as exc:
            logger.exception("workflow_generation_failed", extra={"ctx_session_id": session.session_id})
            raise GenerationFailed(f"Failed to generate workflow for session {session.session_id}") from exc

        try:
            self.cache.put(workflow)
        except WorkflowEngineError:
            raise
        except Exception as exc:
            logger.exception("workflow_cache_write_failed", extra={"ctx_session_id": session.session_id})
            raise GenerationFailed(f"Failed to store workflow for session {session.session_id}") from exc

        active = self._active.get(session.session_id)
        if active is not None:
            active.workflow = workflow
            active.current_week = session.current_week

        logger.info(
            "workflow_generated",
            extra={
                "ctx_session_id": session.session_id,
                "ctx_template": template.name,
                "ctx_workouts": len(workflow.workouts),
                "ctx_strategy": workflow.progression_strategy.value,
                "ctx_truncated": workflow.truncated,
            },
        )
        return workflow

    def _plan_slots(self, session: ProgramSession, template: WorkflowTemplate, personalization: Personalization) -> list[_Slot]:
        slots: list[_Slot] = []
        start_week = session.current_week
        for week in range(start_week, start_week + self.window_weeks(session)):
            phase = determine_phase(week, session.duration_weeks)
            pattern = template.week_pattern(phase, week)
            for day_index, workout_type in enumerate(pattern.workout_types):
                slots.append(self._personalize_slot(template, personalization, week, week - start_week, day_index, phase, workout_type, pattern.intensity_modifier))
        return slots

    def _personalize_slot(
        self,
        template: WorkflowTemplate,
        personalization: Personalization,
        week: int,
        weeks_since_start: int,
        day_index: int,
        phase: Phase,
        workout_type: WorkoutType,
        intensity_modifier: float,
    ) -> _Slot:
        params = compute_parameters(template, week, workout_type)
        flags: list[AdaptationFlag] = []
        if workout_type != WorkoutType.REST:
            params = apply_strategy(params, template.base_parameters_for(workout_type), personalization.strategy)
            if personalization.progression_rule is not None:
                params, action_flags = apply_action(params, personalization.progression_rule.action)
                flags.extend(action_flags)
            params, workout_type, rule_flags = adapt_parameters(
                params,
                workout_type,
                personalization.adaptation_rules,
                weeks_since_start,
                personalization.observations,
            )
            flags.extend(rule_flags)
        return _Slot(
            week=week,
            day_index=day_index,
            phase=phase,
            workout_type=workout_type,
            intensity_modifier=intensity_modifier,
            parameters=params,
            flags=dedupe_flags(flags),
        )

    def _build_workflow(self, session: ProgramSession, template: WorkflowTemplate, personalization: Personalization) -> GeneratedWorkflow:
        slots = self._plan_slots(session, template, personalization)
        by_key = {slot.key: slot for slot in slots}
        queue = [
            TemplateWorkout(
                id=slot.key,
                week=slot.week,
                day_number=slot.day_index + 1,
                workout_type=slot.workout_type,
                target_distance=slot.parameters.target_distance,
            )
            for slot in slots
        ]
        schedule = schedule_workouts(
            queue,
            session.window_start,
            session.workout_days,
            max_days=self.settings.scheduler_max_days,
        )

        workouts: list[PlannedWorkout] = []
        for row in schedule.workouts:
            slot = by_key[row.workout_id]
            structure = synthesize(slot.workout_type, slot.parameters, template, slot.intensity_modifier)
            workouts.append(
                PlannedWorkout(
                    session_id=session.session_id,
                    week=slot.week,
                    day_index=slot.day_index,
                    scheduled_date=row.date,
                    workout_type=slot.workout_type,
                    phase=slot.phase,
                    parameters=slot.parameters,
                    structure=structure,
                    estimated_duration_seconds=structure.total_estimated_seconds,
                    difficulty=estimate_difficulty(slot.parameters, slot.workout_type),
                    prerequisites=determine_prerequisites(slot.week, slot.day_index),
                    adaptation_flags=list(slot.flags),
                )
            )

        return GeneratedWorkflow(
            session_id=session.session_id,
            template=template,
            generated_at=self.clock(),
            window_start=session.window_start,
            workouts=tuple(workouts),
            progression_strategy=personalization.strategy,
            adaptation_rules=tuple(personalization.adaptation_rules),
            validity=TimePeriod.weeks(self.settings.workflow_validity_weeks),
            truncated=schedule.truncated,
        )

    # -- Regeneration --

    def regenerate(self, session_id: str, reason: RegenerationReason) -> GeneratedWorkflow:
        with self._lock_for(session_id):
            session = self.sessions.get_session(session_id)
            performance = self.performance.get_performance(session_id)
            personalization = self.personalization_for(session, performance)
            now = self.clock()
            self.adaptation_log.append(
                AdaptationRecord(
                    session_id=session_id,
                    reason=reason,
                    timestamp=now,
                    previous_performance=performance,
                    applied_changes=personalization.describe(),
                )
            )
            logger.info("workflow_regenerating", extra={"ctx_session_id": session_id, "ctx_reason": reason.value})
            workflow = self._generate_locked(session, personalization)

            with self._guard:
                active = self._active.get(session_id)
                if active is None:
                    active = self._active[session_id] = ActiveWorkflow(
                        session_id=session_id,
                        workflow=workflow,
                        current_week=session.current_week,
                        last_regeneration=now,
                    )
            active.last_regeneration = now
            active.adaptation_count += 1
            return workflow

    def get_workflow(self, session_id: str) -> GeneratedWorkflow:
        """Cached workflow for a session, generating one on a miss or a corrupted entry."""
        try:
            cached = self.cache.get(session_id)
        except CacheCorrupted:
            logger.warning("workflow_cache_miss_corrupted", extra={"ctx_session_id": session_id})
            self.cache.delete(session_id)
            cached = None
        if cached is not None:
            return cached
        return self.generate(self.sessions.get_session(session_id))

    def status(self, session_id: str) -> WorkflowStatus:
        workflow = self.get_workflow(session_id)
        performance = self.performance.get_performance(session_id)
        now = self.clock()
        reason = workflow.regeneration_reason(
            performance,
            now,
            self.settings.regeneration_consistency_min,
            self.settings.regeneration_trend_min,
        )
        return WorkflowStatus(
            session_id=session_id,
            workflow_id=str(workflow.id),
            generated_at=workflow.generated_at,
            expires_at=workflow.expires_at,
            is_expired=workflow.is_expired(now),
            needs_regeneration=reason is not None,
            reason=reason,
            performance=performance,
            progression_strategy=workflow.progression_strategy,
            workout_count=len(workflow.workouts),
            truncated=workflow.truncated,
        )

    def ensure_current(self, session_id: str) -> GeneratedWorkflow:
        """Regenerate when the cached workflow is stale; otherwise return it unchanged."""
        current = self.status(session_id)
        if current.reason is None:
            return self.get_workflow(session_id)
        return self.regenerate(session_id, current.reason)

    # -- Active workflow bookkeeping --

    def enroll(self, session: ProgramSession) -> ActiveWorkflow:
        self.sessions.save_session(session)
        return self._activate(session)

    def _activate(self, session: ProgramSession) -> ActiveWorkflow:
        with self._lock_for(session.session_id):
            workflow = self.generate(session)
            active = ActiveWorkflow(
                session_id=session.session_id,
                workflow=workflow,
                current_week=session.current_week,
                last_regeneration=workflow.generated_at,
            )
            with self._guard:
                self._active[session.session_id] = active
            return active.model_copy()

    def active_workflow(self, session_id: str) -> ActiveWorkflow:
        active = self._active.get(session_id)
        if active is None:
            raise SessionNotFound(f"No active workflow for session {session_id}")
        return active.model_copy()

    def advance_week(self, session_id: str) -> ActiveWorkflow:
        with self._lock_for(session_id):
            session = self.sessions.get_session(session_id)
            if session.duration_weeks and session.current_week >= session.duration_weeks:
                raise InvalidParameters(
                    f"Session {session_id} is already in its final week",
                    details={"current_week": session.current_week, "duration_weeks": session.duration_weeks},
                )
            advanced = session.model_copy(update={"current_week": session.current_week + 1})
            self.sessions.save_session(advanced)
            self.regenerate(session_id, RegenerationReason.SCHEDULED_UPDATE)
            return self.active_workflow(session_id)

    def sync_active_sessions(self, sessions: Optional[list[ProgramSession]] = None) -> SyncResult:
        """Track exactly the given active sessions: activate new ones, prune the rest."""
        current = [s for s in (self.sessions.active_sessions() if sessions is None else sessions) if s.is_active]
        wanted = {s.session_id for s in current}
        result = SyncResult()

        with self._guard:
            stale = [sid for sid in self._active if sid not in wanted]
        for session_id in stale:
            with self._lock_for(session_id):
                with self._guard:
                    self._active.pop(session_id, None)
                self.cache.delete(session_id)
            self._forget_lock(session_id)
            result.removed.append(session_id)

        for session in current:
            if session.session_id in self._active:
                continue
            self._activate(session)
            result.added.append(session.session_id)

        if result.added or result.removed:
            logger.info("active_workflows_synced", extra={"ctx_added": len(result.added), "ctx_removed": len(result.removed)})
        return result

    # -- Read models --

    def schedule(self, session_id: str) -> list[ScheduledWorkout]:
        """Calendar rows for the session's workflow with any recent-feedback deload applied."""
        rows = self.get_workflow(session_id).to_schedule()
        if self.feedback is None:
            return rows
        return apply_feedback_deload(rows, self.feedback.latest(session_id), self.clock())

    def history(self, session_id: str) -> list[AdaptationRecord]:
        return self.adaptation_log.history(session_id)
