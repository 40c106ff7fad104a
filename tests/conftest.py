from __future__ import annotations

import datetime as dt

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from ruckplan.models import Base
from ruckplan.workflow_models import Difficulty, ProgramCategory, ProgramSession

MONDAY = dt.date(2024, 1, 1)


class FixedClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, now: dt.datetime) -> None:
        self.now = now

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + dt.timedelta(**kwargs)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(dt.datetime(2024, 1, 1, 6, 0, tzinfo=dt.timezone.utc))


@pytest.fixture
def sql_factory(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'ruckplan-test.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    engine.dispose()


def make_session(session_id: str = "s-1", **overrides) -> ProgramSession:
    fields = {
        "session_id": session_id,
        "program_title": "Military Foundation",
        "category": ProgramCategory.MILITARY,
        "difficulty": Difficulty.BEGINNER,
        "duration_weeks": 8,
        "enrolled_on": MONDAY,
    }
    fields.update(overrides)
    return ProgramSession(**fields)
