from __future__ import annotations

import datetime as dt
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, CheckConstraint, Date, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class Base(DeclarativeBase):
    pass


class ProgramSessionRow(Base):
    __tablename__ = "program_sessions"
    session_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    program_title: Mapped[str] = mapped_column(String(180), default="")
    category: Mapped[str] = mapped_column(String(20))
    difficulty: Mapped[str] = mapped_column(String(20))
    duration_weeks: Mapped[int] = mapped_column(Integer, default=0)
    current_week: Mapped[int] = mapped_column(Integer, default=1)
    workout_days: Mapped[list[int]] = mapped_column(JSON, default=list)
    enrolled_on: Mapped[dt.date] = mapped_column(Date)
    adaptations: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        CheckConstraint("current_week >= 1", name="ck_program_sessions_current_week"),
        CheckConstraint("duration_weeks >= 0", name="ck_program_sessions_duration"),
    )


class WorkflowCacheRow(Base):
    __tablename__ = "workflow_cache"
    session_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    payload: Mapped[str] = mapped_column(Text)
    generated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class AdaptationRecordRow(Base):
    __tablename__ = "adaptation_records"
    id: Mapped[int] = mapped_column(primary_key=True)
    session_id: Mapped[str] = mapped_column(String(64), index=True)
    reason: Mapped[str] = mapped_column(String(40))
    timestamp: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True))
    consistency: Mapped[float] = mapped_column(Float)
    average_effort: Mapped[float] = mapped_column(Float)
    progress_trend: Mapped[float] = mapped_column(Float, default=0.0)
    applied_changes: Mapped[list[str]] = mapped_column(JSON, default=list)


class WorkoutCompletionRow(Base):
    __tablename__ = "workout_completions"
    id: Mapped[int] = mapped_column(primary_key=True)
    session_id: Mapped[str] = mapped_column(String(64))
    completed_on: Mapped[dt.date] = mapped_column(Date)
    target_seconds: Mapped[float] = mapped_column(Float)
    actual_seconds: Mapped[float] = mapped_column(Float)
    performance_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    __table_args__ = (Index("ix_workout_completions_session_day", "session_id", "completed_on"),)


class FeedbackRow(Base):
    __tablename__ = "march_feedback"
    id: Mapped[int] = mapped_column(primary_key=True)
    session_id: Mapped[str] = mapped_column(String(64), index=True)
    rpe: Mapped[int] = mapped_column(Integer)
    soreness: Mapped[bool] = mapped_column(Boolean, default=False)
    notes: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (CheckConstraint("rpe >= 1 AND rpe <= 10", name="ck_march_feedback_rpe"),)
