"""Tests for session providers and the adaptation log."""

from __future__ import annotations

import datetime as dt

import pytest

from conftest import make_session
from ruckplan.errors import SessionNotFound
from ruckplan.services.sessions import (
    InMemoryAdaptationLog,
    InMemorySessionProvider,
    SqlAdaptationLog,
    SqlSessionProvider,
)
from ruckplan.workflow_models import (
    AdaptationRecord,
    AdaptationType,
    PerformanceMetrics,
    ProgramAdaptation,
    RegenerationReason,
)

T0 = dt.datetime(2024, 1, 8, 6, 0, tzinfo=dt.timezone.utc)


def _record(reason: RegenerationReason, minutes: int = 0) -> AdaptationRecord:
    return AdaptationRecord(
        session_id="s-1",
        reason=reason,
        timestamp=T0 + dt.timedelta(minutes=minutes),
        previous_performance=PerformanceMetrics(consistency=0.5, average_effort=0.9, progress_trend=-0.1),
        applied_changes=("strategy:conservative",),
    )


@pytest.mark.parametrize("provider_kind", ["memory", "sql"])
def test_session_provider_round_trip(provider_kind, sql_factory):
    provider = InMemorySessionProvider() if provider_kind == "memory" else SqlSessionProvider(sql_factory)
    session = make_session(
        workout_days=["Tue", "Thu", "Sat"],
        adaptations=(ProgramAdaptation(adaptation_type=AdaptationType.DECREASE_INTENSITY, reason="sore knees"),),
    )
    provider.save_session(session)
    loaded = provider.get_session("s-1")
    assert loaded.model_dump() == session.model_dump()
    assert loaded.workout_days == (1, 3, 5)

    provider.save_session(session.model_copy(update={"current_week": 2}))
    assert provider.get_session("s-1").current_week == 2


@pytest.mark.parametrize("provider_kind", ["memory", "sql"])
def test_missing_session_raises(provider_kind, sql_factory):
    provider = InMemorySessionProvider() if provider_kind == "memory" else SqlSessionProvider(sql_factory)
    with pytest.raises(SessionNotFound):
        provider.get_session("ghost")


def test_sql_active_sessions_filters_inactive(sql_factory):
    provider = SqlSessionProvider(sql_factory)
    provider.save_session(make_session("a"))
    provider.save_session(make_session("b", is_active=False))
    assert [s.session_id for s in provider.active_sessions()] == ["a"]


@pytest.mark.parametrize("log_kind", ["memory", "sql"])
def test_adaptation_log_is_append_only_and_ordered(log_kind, sql_factory):
    log = InMemoryAdaptationLog() if log_kind == "memory" else SqlAdaptationLog(sql_factory)
    log.append(_record(RegenerationReason.CONSISTENCY_ISSUES))
    log.append(_record(RegenerationReason.USER_REQUEST, minutes=5))
    history = log.history("s-1")
    assert [r.reason for r in history] == [RegenerationReason.CONSISTENCY_ISSUES, RegenerationReason.USER_REQUEST]
    assert history[1].timestamp == T0 + dt.timedelta(minutes=5)
    assert history[0].previous_performance.progress_trend == -0.1
    assert history[0].applied_changes == ("strategy:conservative",)
    assert log.history("s-2") == []
