"""Root conftest for all tests.

Shared fixtures: SQLite sessions for the SQL stores, and in-memory
fakes of the store protocols and the query embedder for engine tests.
"""

from dataclasses import dataclass, field
from datetime import UTC, date, datetime

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from coach_context.db.models import Base
from coach_context.rag.embed.embedder import EmbeddingResult
from coach_context.stores.types import (
    ActivityRecord,
    AthleteProfile,
    CoachPhase,
    CoachWorkoutTemplate,
    Feedback,
    TrainingPlan,
    WeeklyCheckIn,
)


# Enable foreign key constraints for SQLite
@event.listens_for(Engine, "connect")
def _set_sqlite_pragma(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@dataclass
class InMemoryAthleteStore:
    """AthleteDataStore and WorkoutHistoryStore over plain attributes. Recent lists are returned as given."""

    profile: AthleteProfile | None = None
    activities: list[ActivityRecord] = field(default_factory=list)
    feedback: list[Feedback] = field(default_factory=list)
    plan: TrainingPlan | None = None
    check_in: WeeklyCheckIn | None = None

    async def get_profile(self, athlete_id: str) -> AthleteProfile | None:
        return self.profile

    async def get_recent_activities(self, athlete_id: str, days: int) -> list[ActivityRecord]:
        return list(self.activities)

    async def get_recent_feedback(self, athlete_id: str, days: int) -> list[Feedback]:
        return list(self.feedback)

    async def get_active_plan(self, athlete_id: str) -> TrainingPlan | None:
        return self.plan

    async def get_latest_check_in(self, athlete_id: str, since: date) -> WeeklyCheckIn | None:
        if self.check_in is None or self.check_in.week_start < since:
            return None
        return self.check_in

    async def get_workout_history(self, athlete_id: str) -> list[ActivityRecord]:
        return sorted((a for a in self.activities if a.workout_name), key=lambda a: a.date)

    async def get_feedback_for_dates(self, athlete_id: str, run_dates: list[date]) -> list[Feedback]:
        wanted = set(run_dates)
        return [f for f in self.feedback if f.run_date in wanted]


@dataclass
class InMemoryCoachStore:
    """CoachLibraryStore over a list of workouts and phases."""

    workouts: list[CoachWorkoutTemplate] = field(default_factory=list)
    phases: list[CoachPhase] = field(default_factory=list)
    search_terms: list[str] = field(default_factory=list)

    def _ranked(self, workouts: list[CoachWorkoutTemplate]) -> list[CoachWorkoutTemplate]:
        return sorted(workouts, key=lambda w: -w.times_performed)

    async def get_workouts_by_phase(self, athlete_id: str, phase: str) -> list[CoachWorkoutTemplate]:
        return self._ranked([w for w in self.workouts if w.training_phase == phase])

    async def get_workouts_by_category(self, athlete_id: str, category: str) -> list[CoachWorkoutTemplate]:
        return self._ranked([w for w in self.workouts if w.category == category])

    async def search_workouts(self, athlete_id: str, term: str, limit: int = 10) -> list[CoachWorkoutTemplate]:
        self.search_terms.append(term)
        return self._ranked([w for w in self.workouts if term.lower() in w.workout_name.lower()])[:limit]

    async def get_most_performed_workouts(self, athlete_id: str) -> list[CoachWorkoutTemplate]:
        return self._ranked(list(self.workouts))

    async def get_phases(self, athlete_id: str) -> list[CoachPhase]:
        return sorted(self.phases, key=lambda p: p.phase_order)


@dataclass
class FakeEmbedder:
    """Returns a fixed vector, or a failed result when ``error`` is set."""

    vector: list[float] = field(default_factory=lambda: [1.0, 0.0, 0.0])
    error: str | None = None
    calls: list[str] = field(default_factory=list)

    async def embed(self, text: str) -> EmbeddingResult:
        self.calls.append(text)
        if self.error:
            return EmbeddingResult(error=self.error)
        return EmbeddingResult(embedding=list(self.vector), token_count=len(text) // 4)


@pytest.fixture
def today() -> date:
    return datetime.now(UTC).date()


@pytest.fixture
def athlete_store() -> InMemoryAthleteStore:
    return InMemoryAthleteStore()


@pytest.fixture
def coach_store() -> InMemoryCoachStore:
    return InMemoryCoachStore()


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def session_factory(tmp_path):
    """Session factory bound to a fresh SQLite database file.

    A file rather than ``:memory:`` so the worker threads used by the SQL
    stores each get their own connection to the same database.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'coach_context_test.db'}",
        echo=False,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    try:
        yield factory
    finally:
        engine.dispose()
