"""Tests for workflow generation, caching and regeneration."""

from __future__ import annotations

import datetime as dt
from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import MONDAY, make_session
from ruckplan.config import Settings
from ruckplan.errors import CacheCorrupted, GenerationFailed, InvalidParameters, SessionNotFound
from ruckplan.services.feedback import InMemoryFeedbackStore, MarchFeedback
from ruckplan.services.performance import StaticPerformanceProvider
from ruckplan.services.sessions import InMemoryAdaptationLog, InMemorySessionProvider
from ruckplan.services.templates import TemplateCatalog
from ruckplan.services.workflow_cache import InMemoryWorkflowCache
from ruckplan.services.workflow_engine import WorkflowEngine
from ruckplan.workflow_models import (
    AdaptationFlag,
    AdaptationType,
    Difficulty,
    PerformanceMetrics,
    Phase,
    ProgramAdaptation,
    ProgramCategory,
    ProgressionStrategy,
    RegenerationReason,
    TemplateProgressionRule,
    WorkflowTemplate,
    WorkoutParameters,
    WorkoutType,
)

STRUGGLING = PerformanceMetrics(consistency=0.5, average_effort=0.9, progress_trend=0.0)


class CorruptingCache(InMemoryWorkflowCache):
    """Reports its first read as corrupted."""

    def __init__(self) -> None:
        super().__init__()
        self.corrupt_next = True
        self.deleted: list[str] = []

    def get(self, session_id):
        if self.corrupt_next:
            self.corrupt_next = False
            raise CacheCorrupted("bad payload")
        return super().get(session_id)

    def delete(self, session_id):
        self.deleted.append(session_id)
        super().delete(session_id)


class BrokenCache(InMemoryWorkflowCache):
    def put(self, workflow):
        raise RuntimeError("disk full")


def _engine(clock, *sessions, cache=None, performance=None, feedback=None, settings=None, catalog=None) -> WorkflowEngine:
    return WorkflowEngine(
        catalog=catalog or TemplateCatalog(),
        sessions=InMemorySessionProvider(list(sessions)),
        performance=performance or StaticPerformanceProvider(),
        cache=cache if cache is not None else InMemoryWorkflowCache(),
        adaptation_log=InMemoryAdaptationLog(),
        clock=clock,
        settings=settings or Settings(database_url="sqlite://"),
        feedback=feedback,
    )


def test_generate_plans_window_on_training_days(clock):
    session = make_session()
    engine = _engine(clock, session)
    workflow = engine.generate(session)

    dates = [w.scheduled_date for w in workflow.workouts]
    assert dates == sorted(set(dates))
    assert all(d.weekday() in (0, 2, 4) for d in dates)
    assert len(workflow.workouts) == 14
    assert workflow.truncated is False
    assert workflow.generated_at == clock.now
    assert workflow.template.name == "Military Foundation"
    assert engine.cache.get("s-1").id == workflow.id

    first = workflow.workouts[0]
    assert first.scheduled_date == MONDAY
    assert first.workout_type == WorkoutType.ENDURANCE
    assert first.phase == Phase.FOUNDATION
    assert first.parameters.target_weight == pytest.approx(27.5)
    assert first.adaptation_flags == [AdaptationFlag.WEIGHT_INCREASED]
    assert all(w.workout_type != WorkoutType.REST for w in workflow.workouts)


def test_generation_window_capped_by_remaining_weeks(clock):
    session = make_session(current_week=7)
    engine = _engine(clock, session)
    workflow = engine.generate(session)

    assert engine.window_weeks(session) == 2
    assert workflow.window_start == MONDAY + dt.timedelta(weeks=6)
    assert {w.week for w in workflow.workouts} == {7, 8}
    assert all(w.scheduled_date >= workflow.window_start for w in workflow.workouts)
    assert [w.phase for w in workflow.workouts if w.week == 8] == [Phase.TAPER] * 3
    assert len(workflow.workouts) == 7


def test_ongoing_program_uses_full_window(clock):
    session = make_session(category=ProgramCategory.FITNESS, difficulty=Difficulty.INTERMEDIATE, duration_weeks=0)
    engine = _engine(clock, session)
    workflow = engine.generate(session)

    assert workflow.template.is_ongoing
    assert {w.week for w in workflow.workouts} == {1, 2, 3, 4}
    assert {w.phase for w in workflow.workouts} == {Phase.BUILD}
    assert len(workflow.workouts) == 12


def test_low_performance_is_conservative_without_rule(clock):
    session = make_session()
    performance = StaticPerformanceProvider(STRUGGLING)
    workflow = _engine(clock, session, performance=performance).generate(session)

    assert workflow.progression_strategy == ProgressionStrategy.CONSERVATIVE
    assert workflow.workouts[0].parameters.target_weight == 25.0
    assert workflow.workouts[0].adaptation_flags == []


def test_session_adaptations_apply_for_two_weeks(clock):
    session = make_session(adaptations=(ProgramAdaptation(adaptation_type=AdaptationType.DECREASE_INTENSITY),))
    workflow = _engine(clock, session).generate(session)

    week_one = workflow.workouts[0]
    assert week_one.parameters.target_weight == pytest.approx(25.0)
    assert week_one.adaptation_flags == [AdaptationFlag.WEIGHT_INCREASED, AdaptationFlag.WEIGHT_DECREASED]

    week_three = next(w for w in workflow.workouts if w.week == 3 and w.workout_type == WorkoutType.ENDURANCE)
    assert week_three.parameters.target_weight == pytest.approx(32.5)
    assert week_three.adaptation_flags == [AdaptationFlag.WEIGHT_INCREASED]
    assert len(workflow.adaptation_rules) == 1


def test_get_workflow_generates_on_miss_then_serves_cache(clock):
    engine = _engine(clock, make_session())
    first = engine.get_workflow("s-1")
    clock.advance(days=1)
    assert engine.get_workflow("s-1").id == first.id


def test_get_workflow_unknown_session(clock):
    with pytest.raises(SessionNotFound):
        _engine(clock).get_workflow("ghost")


def test_corrupted_cache_entry_is_replaced(clock):
    cache = CorruptingCache()
    engine = _engine(clock, make_session(), cache=cache)
    workflow = engine.get_workflow("s-1")
    assert cache.deleted == ["s-1"]
    assert cache.get("s-1").id == workflow.id


def test_build_failure_leaves_cache_untouched(clock, monkeypatch):
    session = make_session()
    engine = _engine(clock, session)

    def explode(*args, **kwargs):
        raise ValueError("bad template")

    monkeypatch.setattr("ruckplan.services.workflow_engine.synthesize", explode)
    with pytest.raises(GenerationFailed) as exc:
        engine.generate(session)
    assert exc.value.status_code == 500
    assert engine.cache.get("s-1") is None


def test_cache_write_failure_surfaces_as_generation_failure(clock):
    session = make_session()
    engine = _engine(clock, session, cache=BrokenCache())
    with pytest.raises(GenerationFailed):
        engine.generate(session)


def test_regenerate_records_history_and_counts(clock):
    engine = _engine(clock, make_session())
    engine.enroll(make_session())
    clock.advance(hours=2)

    workflow = engine.regenerate("s-1", RegenerationReason.USER_REQUEST)
    history = engine.history("s-1")
    assert len(history) == 1
    assert history[0].reason == RegenerationReason.USER_REQUEST
    assert history[0].timestamp == clock.now
    assert history[0].applied_changes == ("strategy:moderate", "progression:increase_weight")

    active = engine.active_workflow("s-1")
    assert active.adaptation_count == 1
    assert active.last_regeneration == clock.now
    assert active.workflow.id == workflow.id
    assert engine.cache.get("s-1").id == workflow.id


def test_regenerate_without_enrollment_creates_active_entry(clock):
    engine = _engine(clock, make_session())
    engine.regenerate("s-1", RegenerationReason.INJURY_RECOVERY)
    assert engine.active_workflow("s-1").adaptation_count == 1


def test_regenerate_unknown_session_leaves_no_record(clock):
    engine = _engine(clock)
    with pytest.raises(SessionNotFound):
        engine.regenerate("ghost", RegenerationReason.USER_REQUEST)
    assert engine.history("ghost") == []


def test_concurrent_regenerations_are_serialized(clock):
    engine = _engine(clock, make_session())
    engine.enroll(make_session())
    with ThreadPoolExecutor(max_workers=4) as pool:
        list(pool.map(lambda _: engine.regenerate("s-1", RegenerationReason.USER_REQUEST), range(8)))
    assert len(engine.history("s-1")) == 8
    assert engine.active_workflow("s-1").adaptation_count == 8


def test_status_reports_consistency_issue(clock):
    performance = StaticPerformanceProvider()
    engine = _engine(clock, make_session(), performance=performance)
    engine.get_workflow("s-1")
    assert engine.status("s-1").needs_regeneration is False

    performance.set("s-1", STRUGGLING)
    status = engine.status("s-1")
    assert status.needs_regeneration is True
    assert status.reason == RegenerationReason.CONSISTENCY_ISSUES
    assert status.is_expired is False
    assert status.workout_count == 14


def test_ensure_current_regenerates_expired_workflow(clock):
    engine = _engine(clock, make_session())
    original = engine.get_workflow("s-1")
    assert engine.ensure_current("s-1").id == original.id
    assert engine.history("s-1") == []

    clock.advance(weeks=5)
    refreshed = engine.ensure_current("s-1")
    assert refreshed.id != original.id
    assert refreshed.generated_at == clock.now
    assert [r.reason for r in engine.history("s-1")] == [RegenerationReason.SCHEDULED_UPDATE]


def test_enroll_and_advance_week(clock):
    engine = _engine(clock)
    active = engine.enroll(make_session(duration_weeks=2))
    assert active.current_week == 1
    assert active.adaptation_count == 0

    clock.advance(weeks=1)
    advanced = engine.advance_week("s-1")
    assert advanced.current_week == 2
    assert advanced.adaptation_count == 1
    assert advanced.workflow.window_start == MONDAY + dt.timedelta(weeks=1)
    assert engine.sessions.get_session("s-1").current_week == 2

    with pytest.raises(InvalidParameters):
        engine.advance_week("s-1")


def test_active_workflow_unknown(clock):
    with pytest.raises(SessionNotFound):
        _engine(clock).active_workflow("ghost")


def test_sync_active_sessions_adds_and_prunes(clock):
    engine = _engine(clock, make_session("a"), make_session("b"))
    first = engine.sync_active_sessions()
    assert sorted(first.added) == ["a", "b"]
    assert first.removed == []

    engine.sessions.save_session(make_session("b", is_active=False))
    second = engine.sync_active_sessions()
    assert second.added == []
    assert second.removed == ["b"]
    assert engine.cache.get("b") is None
    assert "b" not in engine._locks
    with pytest.raises(SessionNotFound):
        engine.active_workflow("b")
    assert engine.active_workflow("a").session_id == "a"


def test_schedule_applies_recent_feedback_deload(clock):
    feedback = InMemoryFeedbackStore()
    engine = _engine(clock, make_session(), feedback=feedback)
    plain = engine.schedule("s-1")
    assert plain[0].description == "Target: 3.0 miles"

    feedback.save("s-1", MarchFeedback(rpe=9, timestamp=clock.now))
    deloaded = engine.schedule("s-1")
    assert deloaded[0].target_distance == pytest.approx(2.7)
    assert deloaded[0].description.endswith("(deload)")
    assert [r.date for r in deloaded] == [r.date for r in plain]


def test_decreasing_template_workflow_is_served_from_cache(clock):
    descending = WorkflowTemplate(
        name="Descending",
        category=ProgramCategory.ADVENTURE,
        difficulty=Difficulty.BEGINNER,
        duration_weeks=8,
        base_parameters={WorkoutType.ENDURANCE: WorkoutParameters(target_weight=25.0, intensity=0.7)},
        progression_rules=(
            TemplateProgressionRule(week_start=1, week_end=8, weight_progression=-15.0, intensity_progression=-0.3),
        ),
    )
    session = make_session(category=ProgramCategory.ADVENTURE, difficulty=Difficulty.BEGINNER)
    engine = _engine(clock, session, catalog=TemplateCatalog([descending]))

    first = engine.get_workflow("s-1")
    assert first.template.name == "Descending"
    assert all(w.parameters.target_weight >= 0 for w in first.workouts)
    assert all(0 <= w.parameters.intensity for w in first.workouts)
    assert engine.get_workflow("s-1").id == first.id


def test_sync_tolerates_concurrent_regenerations(clock):
    sessions = [make_session(f"s-{i}") for i in range(12)]
    engine = _engine(clock, *sessions)
    engine.sync_active_sessions(sessions[:1])

    def regenerate(session_id):
        return engine.regenerate(session_id, RegenerationReason.USER_REQUEST)

    with ThreadPoolExecutor(max_workers=4) as pool:
        regenerations = [pool.submit(regenerate, s.session_id) for s in sessions[1:]]
        syncs = [pool.submit(engine.sync_active_sessions, sessions[:1]) for _ in range(6)]
        for future in regenerations + syncs:
            future.result()

    engine.sync_active_sessions(sessions[:1])
    assert engine.active_workflow("s-0").session_id == "s-0"
    for session in sessions[1:]:
        with pytest.raises(SessionNotFound):
            engine.active_workflow(session.session_id)
