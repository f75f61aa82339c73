"""Read-only records consumed by the context engine.

These are the shapes the data stores hand back. They are plain frozen
dataclasses so the retrieval code never depends on SQLAlchemy rows or on
whichever backend produced them.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any


@dataclass(frozen=True)
class AthleteProfile:
    """Identity and physiological attributes of an athlete."""

    athlete_id: str
    name: str | None = None
    age: int | None = None
    weight_kg: float | None = None
    resting_hr: int | None = None
    max_hr: int | None = None
    lactate_threshold_hr: int | None = None
    hr_zones: dict[str, str] = field(default_factory=dict)
    current_goal: str | None = None
    training_days: str | None = None
    injury_history: str | None = None


@dataclass(frozen=True)
class ActivityRecord:
    """A single recorded run."""

    id: str
    date: date
    distance_km: float | None = None
    duration_min: float | None = None
    avg_hr: int | None = None
    max_hr: int | None = None
    avg_pace_str: str | None = None
    run_type: str | None = None
    workout_name: str | None = None
    pct_z4: float | None = None
    pct_z5: float | None = None

    @property
    def label(self) -> str | None:
        return self.workout_name or self.run_type

    @property
    def hard_effort_pct(self) -> float | None:
        """Share of time spent in zone 4 and above, if zone data exists."""
        if self.pct_z4 is None and self.pct_z5 is None:
            return None
        return (self.pct_z4 or 0.0) + (self.pct_z5 or 0.0)


@dataclass(frozen=True)
class Feedback:
    """Subjective feedback left for one run, keyed by run date."""

    run_date: date
    rating: int | None = None
    effort_level: int | None = None
    feeling: str | None = None
    comment: str | None = None


@dataclass(frozen=True)
class WeeklyCheckIn:
    """Weekly subjective check-in. All ratings are on a 1-10 scale."""

    week_start: date
    overall_feeling: int | None = None
    sleep_quality: int | None = None
    stress_level: int | None = None
    injury_notes: str | None = None
    achievements: str | None = None


@dataclass(frozen=True)
class PlanWeek:
    week_number: int
    phase: str
    focus: str = ""
    target_volume_km: float | None = None
    workouts: dict[str, dict[str, str]] = field(default_factory=dict)


@dataclass(frozen=True)
class TrainingPlan:
    """The athlete's active training plan."""

    id: str
    plan_type: str
    duration_weeks: int
    current_week: int = 1
    methodology: str | None = None
    weeks: tuple[PlanWeek, ...] = ()

    @property
    def current_plan_week(self) -> PlanWeek | None:
        """Week entry for ``current_week`` (1-based), or None when out of range."""
        index = (self.current_week or 1) - 1
        if 0 <= index < len(self.weeks):
            return self.weeks[index]
        return None

    @property
    def current_phase(self) -> str | None:
        week = self.current_plan_week
        if week is None or not week.phase:
            return None
        return week.phase


@dataclass(frozen=True)
class CoachWorkoutTemplate:
    """A named workout from the athlete's previous coach."""

    id: str
    workout_name: str
    category: str | None = None
    training_phase: str | None = None
    description: str | None = None
    typical_distance_km: float | None = None
    typical_duration_min: float | None = None
    target_zone: str | None = None
    target_pace: str | None = None
    coach_notes: str | None = None
    when_to_use: str | None = None
    when_to_avoid: str | None = None
    recovery_needed: str | None = None
    times_performed: int = 0
    avg_feeling: float | None = None


@dataclass(frozen=True)
class CoachPhase:
    """A training phase as the previous coach structured it."""

    id: str
    phase_name: str
    phase_order: int = 0
    description: str | None = None
    typical_duration_weeks: int | None = None
    focus_areas: tuple[str, ...] = ()
    key_workouts: tuple[str, ...] = ()
    coach_notes: str | None = None
    volume_progression: str | None = None


@dataclass(frozen=True)
class BookInstruction:
    """A chunk of methodology text with its embedding."""

    id: str
    book_title: str
    methodology: str
    content: str
    chapter_title: str | None = None
    section_title: str | None = None
    key_rules: tuple[str, ...] = ()
    applies_to_phase: str | None = None
    applies_to_workout_type: str | None = None
    level: str | None = None
    embedding: tuple[float, ...] | None = None


@dataclass(frozen=True)
class InstructionMatch:
    """A similarity search hit. Carries everything needed for formatting, never the vector."""

    id: str
    book_title: str
    methodology: str
    content: str
    similarity: float
    chapter_title: str | None = None
    section_title: str | None = None
    key_rules: tuple[str, ...] = ()


@dataclass(frozen=True)
class TrainingSchedule:
    """A published plan from one of the coaching books."""

    id: str
    book_title: str
    methodology: str
    plan_name: str
    target_race: str | None = None
    level: str | None = None
    duration_weeks: int | None = None
    weekly_structure: Any = None
