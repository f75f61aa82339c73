from __future__ import annotations

import uuid
from datetime import date, datetime, timezone

from sqlalchemy import JSON, Date, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all database models."""


class Athlete(Base):
    """Athlete profile and physiological attributes.

    Stores:
    - id: Athlete ID (string, shared by every per-athlete table as user_id)
    - hr_zones: Heart rate zone bounds keyed by zone name (JSON)
    - current_goal / training_days / injury_history: free text
    """

    __tablename__ = "athlete_profiles"

    id: Mapped[str] = mapped_column(String, primary_key=True, index=True)
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    age: Mapped[int | None] = mapped_column(Integer, nullable=True)
    weight_kg: Mapped[float | None] = mapped_column(Float, nullable=True)
    resting_hr: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_hr: Mapped[int | None] = mapped_column(Integer, nullable=True)
    lactate_threshold_hr: Mapped[int | None] = mapped_column(Integer, nullable=True)
    hr_zones: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    current_goal: Mapped[str | None] = mapped_column(Text, nullable=True)
    training_days: Mapped[str | None] = mapped_column(String, nullable=True)
    injury_history: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)


class Run(Base):
    """Recorded runs. Zone percentages are 0-100."""

    __tablename__ = "runs"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    run_date: Mapped[date] = mapped_column(Date, nullable=False)
    distance_km: Mapped[float | None] = mapped_column(Float, nullable=True)
    duration_min: Mapped[float | None] = mapped_column(Float, nullable=True)
    avg_hr: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_hr: Mapped[int | None] = mapped_column(Integer, nullable=True)
    avg_pace_str: Mapped[str | None] = mapped_column(String, nullable=True)
    run_type: Mapped[str | None] = mapped_column(String, nullable=True)
    workout_name: Mapped[str | None] = mapped_column(String, nullable=True)
    pct_z4: Mapped[float | None] = mapped_column(Float, nullable=True)
    pct_z5: Mapped[float | None] = mapped_column(Float, nullable=True)

    __table_args__ = (Index("idx_runs_user_date", "user_id", "run_date"),)


class RunFeedback(Base):
    """Subjective post-run feedback. effort_level is 1-10."""

    __tablename__ = "run_feedback"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    run_date: Mapped[date] = mapped_column(Date, nullable=False)
    rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    effort_level: Mapped[int | None] = mapped_column(Integer, nullable=True)
    feeling: Mapped[str | None] = mapped_column(String, nullable=True)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (Index("idx_run_feedback_user_date", "user_id", "run_date"),)


class WeeklySummary(Base):
    """Weekly check-in. Ratings are 1-10."""

    __tablename__ = "weekly_summaries"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    week_start: Mapped[date] = mapped_column(Date, nullable=False)
    overall_feeling: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sleep_quality: Mapped[int | None] = mapped_column(Integer, nullable=True)
    stress_level: Mapped[int | None] = mapped_column(Integer, nullable=True)
    injury_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    achievements: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (Index("idx_weekly_summaries_user_week", "user_id", "week_start"),)


class Plan(Base):
    """Training plans.

    The ``plan`` JSON column holds the generated structure:
    ``{"methodology": str, "weeks": [{"week_number", "phase", "focus", "target_volume_km", "workouts"}]}``.
    At most one plan per athlete is expected to have status "active".
    """

    __tablename__ = "training_plans"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    plan_type: Mapped[str] = mapped_column(String, nullable=False)
    duration_weeks: Mapped[int] = mapped_column(Integer, nullable=False)
    current_week: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[str] = mapped_column(String, nullable=False, default="active")
    plan: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)


class CoachWorkout(Base):
    """Workouts imported from the athlete's previous coach.

    Usage statistics (times_performed, avg_feeling, last_performed) are updated
    each time the athlete repeats the workout.
    """

    __tablename__ = "coach_workouts"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    workout_name: Mapped[str] = mapped_column(String, nullable=False)
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    training_phase: Mapped[str | None] = mapped_column(String, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    typical_distance_km: Mapped[float | None] = mapped_column(Float, nullable=True)
    typical_duration_min: Mapped[float | None] = mapped_column(Float, nullable=True)
    target_zone: Mapped[str | None] = mapped_column(String, nullable=True)
    target_pace: Mapped[str | None] = mapped_column(String, nullable=True)
    coach_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    when_to_use: Mapped[str | None] = mapped_column(Text, nullable=True)
    when_to_avoid: Mapped[str | None] = mapped_column(Text, nullable=True)
    recovery_needed: Mapped[str | None] = mapped_column(String, nullable=True)
    times_performed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    avg_feeling: Mapped[float | None] = mapped_column(Float, nullable=True)
    last_performed: Mapped[date | None] = mapped_column(Date, nullable=True)

    __table_args__ = (UniqueConstraint("user_id", "workout_name", name="uq_coach_workouts_user_name"),)


class CoachTrainingPhase(Base):
    """Training phases as the previous coach structured them, ordered by phase_order."""

    __tablename__ = "coach_phases"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    phase_name: Mapped[str] = mapped_column(String, nullable=False)
    phase_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    typical_duration_weeks: Mapped[int | None] = mapped_column(Integer, nullable=True)
    focus_areas: Mapped[list | None] = mapped_column(JSON, nullable=True)
    key_workouts: Mapped[list | None] = mapped_column(JSON, nullable=True)
    coach_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    volume_progression: Mapped[str | None] = mapped_column(String, nullable=True)


class CoachingBook(Base):
    """Coaching books the methodology corpus was extracted from."""

    __tablename__ = "coaching_books"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(String, nullable=False)
    author: Mapped[str | None] = mapped_column(String, nullable=True)
    methodology: Mapped[str] = mapped_column(String, nullable=False)


class BookInstructionChunk(Base):
    """Methodology chunks with their embeddings.

    ``embedding`` is stored as a JSON list of floats; it is NULL until the
    backfill job has embedded the chunk.
    """

    __tablename__ = "book_instructions"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    book_id: Mapped[str] = mapped_column(String, ForeignKey("coaching_books.id"), nullable=False, index=True)
    chapter_title: Mapped[str | None] = mapped_column(String, nullable=True)
    section_title: Mapped[str | None] = mapped_column(String, nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    key_rules: Mapped[list | None] = mapped_column(JSON, nullable=True)
    applies_to_phase: Mapped[str | None] = mapped_column(String, nullable=True)
    applies_to_workout_type: Mapped[str | None] = mapped_column(String, nullable=True)
    level: Mapped[str | None] = mapped_column(String, nullable=True)
    embedding: Mapped[list | None] = mapped_column(JSON(none_as_null=True), nullable=True)


class BookSchedule(Base):
    """Published training schedules from the coaching books.

    ``weekly_structure`` holds the book's week-by-week layout as extracted.
    """

    __tablename__ = "book_schedules"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    book_id: Mapped[str] = mapped_column(String, ForeignKey("coaching_books.id"), nullable=False, index=True)
    plan_name: Mapped[str] = mapped_column(String, nullable=False)
    target_race: Mapped[str | None] = mapped_column(String, nullable=True)
    level: Mapped[str | None] = mapped_column(String, nullable=True)
    duration_weeks: Mapped[int | None] = mapped_column(Integer, nullable=True)
    weekly_structure: Mapped[dict | None] = mapped_column(JSON, nullable=True)
