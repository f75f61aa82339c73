"""Canonical types for the context assembly engine.

Query types and their weight table, the per-layer formatted outputs, and the
assembled context handed to the chat and plan handlers. Everything here is
built fresh per request and never persisted.
"""

import math
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType


class QueryType(StrEnum):
    DAILY_ADVICE = "daily_advice"
    PLAN_REVIEW = "plan_review"
    PLAN_GENERATION = "plan_generation"
    ASK_COACH = "ask_coach"
    SECOND_OPINION = "second_opinion"


@dataclass(frozen=True)
class ContextWeights:
    """Share of the total budget given to each layer."""

    user_weight: float
    coach_weight: float
    book_weight: float

    def __post_init__(self) -> None:
        for name in ("user_weight", "coach_weight", "book_weight"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")

    @property
    def total(self) -> float:
        return self.user_weight + self.coach_weight + self.book_weight


QUERY_WEIGHTS: MappingProxyType[QueryType, ContextWeights] = MappingProxyType(
    {
        QueryType.DAILY_ADVICE: ContextWeights(user_weight=0.65, coach_weight=0.10, book_weight=0.25),
        QueryType.PLAN_REVIEW: ContextWeights(user_weight=0.65, coach_weight=0.10, book_weight=0.25),
        QueryType.PLAN_GENERATION: ContextWeights(user_weight=0.35, coach_weight=0.10, book_weight=0.55),
        QueryType.ASK_COACH: ContextWeights(user_weight=0.55, coach_weight=0.10, book_weight=0.35),
        QueryType.SECOND_OPINION: ContextWeights(user_weight=0.55, coach_weight=0.10, book_weight=0.35),
    }
)


def validate_query_weights(weights: MappingProxyType[QueryType, ContextWeights] | dict[QueryType, ContextWeights]) -> None:
    """Check that every query type has weights and that each triple sums to 1.0.

    Raises:
        ValueError: If a query type is missing or a triple does not sum to 1.0
    """
    missing = [query_type.value for query_type in QueryType if query_type not in weights]
    if missing:
        raise ValueError(f"Missing context weights for query types: {', '.join(missing)}")

    for query_type, triple in weights.items():
        if not math.isclose(triple.total, 1.0, abs_tol=1e-9):
            raise ValueError(f"Context weights for {query_type.value} sum to {triple.total}, expected 1.0")


validate_query_weights(QUERY_WEIGHTS)


@dataclass(frozen=True)
class CoachFilters:
    phase: str | None = None
    workout_type: str | None = None
    category: str | None = None


@dataclass(frozen=True)
class BookFilters:
    phase: str | None = None
    workout_type: str | None = None
    level: str | None = None


@dataclass(frozen=True)
class UserContextMetadata:
    runs_included: int
    fatigue_score: float
    current_phase: str | None
    has_active_plan: bool


@dataclass(frozen=True)
class FormattedUserContext:
    text: str
    token_count: int
    metadata: UserContextMetadata


@dataclass(frozen=True)
class FormattedCoachContext:
    text: str
    token_count: int
    workouts_included: list[str] = field(default_factory=list)
    phases_included: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class BookSource:
    """Citation for a methodology excerpt."""

    book_title: str
    methodology: str
    chapter_title: str | None = None


@dataclass(frozen=True)
class FormattedBookContext:
    text: str
    token_count: int
    sources: list[BookSource] = field(default_factory=list)


@dataclass(frozen=True)
class EnhancedContext:
    """The engine's only externally visible output."""

    user_context: FormattedUserContext
    coach_context: FormattedCoachContext
    book_context: FormattedBookContext
    combined_prompt: str
    total_tokens: int
    query_type: QueryType


@dataclass(frozen=True)
class ContextStats:
    """Counts safe to log: no vectors and no book text."""

    total_tokens: int
    per_layer_tokens: dict[str, int]
    source_count: int
    workouts_included_count: int


@dataclass(frozen=True)
class WorkoutPatternAnalysis:
    """How the athlete has actually run one of the previous coach's workouts."""

    workout_name: str
    occurrences: int
    avg_duration_min: int
    avg_distance_km: float
    avg_feeling: float
    typical_day_of_week: str
    followed_by: list[str] = field(default_factory=list)
