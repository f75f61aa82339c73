"""Store interfaces consumed by the context engine.

The engine only reads. Every method is a coroutine so that implementations
backed by blocking drivers can offload to a thread while the assembler fans
out across layers.
"""

from datetime import date
from typing import Protocol

from coach_context.stores.types import (
    ActivityRecord,
    AthleteProfile,
    CoachPhase,
    CoachWorkoutTemplate,
    Feedback,
    InstructionMatch,
    TrainingPlan,
    WeeklyCheckIn,
)


class AthleteDataStore(Protocol):
    """Profile, activity, feedback, plan and check-in reads keyed by athlete id."""

    async def get_profile(self, athlete_id: str) -> AthleteProfile | None: ...

    async def get_recent_activities(self, athlete_id: str, days: int) -> list[ActivityRecord]:
        """Runs from the last ``days`` days, most recent first."""
        ...

    async def get_recent_feedback(self, athlete_id: str, days: int) -> list[Feedback]:
        """Feedback from the last ``days`` days, most recent first."""
        ...

    async def get_active_plan(self, athlete_id: str) -> TrainingPlan | None: ...

    async def get_latest_check_in(self, athlete_id: str, since: date) -> WeeklyCheckIn | None:
        """Most recent check-in whose week starts on or after ``since``."""
        ...


class WorkoutHistoryStore(Protocol):
    """Full run history reads used for per-workout pattern analysis."""

    async def get_workout_history(self, athlete_id: str) -> list[ActivityRecord]:
        """Every run that carries a workout name, oldest first."""
        ...

    async def get_feedback_for_dates(self, athlete_id: str, run_dates: list[date]) -> list[Feedback]: ...


class CoachLibraryStore(Protocol):
    """Historical coach workouts and phases for one athlete.

    Workout lists are ordered by ``times_performed`` descending.
    """

    async def get_workouts_by_phase(self, athlete_id: str, phase: str) -> list[CoachWorkoutTemplate]: ...

    async def get_workouts_by_category(self, athlete_id: str, category: str) -> list[CoachWorkoutTemplate]: ...

    async def search_workouts(self, athlete_id: str, term: str, limit: int = 10) -> list[CoachWorkoutTemplate]:
        """Case-insensitive substring match on workout name."""
        ...

    async def get_most_performed_workouts(self, athlete_id: str) -> list[CoachWorkoutTemplate]:
        """All of the athlete's workouts, including ones never performed."""
        ...

    async def get_phases(self, athlete_id: str) -> list[CoachPhase]:
        """All phases ordered by ``phase_order`` ascending."""
        ...


class SimilaritySearchStore(Protocol):
    """Two entry points over the methodology corpus, both ranked by similarity."""

    async def search_filtered(
        self,
        query_vector: list[float],
        *,
        threshold: float,
        count: int,
        phase: str | None = None,
        workout_type: str | None = None,
        level: str | None = None,
    ) -> list[InstructionMatch]: ...

    async def search_basic(
        self,
        query_vector: list[float],
        *,
        threshold: float,
        count: int,
    ) -> list[InstructionMatch]: ...
