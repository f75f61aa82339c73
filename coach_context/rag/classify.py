"""Pattern-based query classification and workout hints.

The pattern order in ``classify_query`` is a contract: the daily-advice check
runs first, so "today" wins over "create a plan". Budget weights depend on the
resulting query type.
"""

from coach_context.rag.types import QueryType

_DAILY_ADVICE_PATTERNS = (
    "today",
    "should i run",
    "what should i do",
    "suggest a workout",
)

_PLAN_REVIEW_PATTERNS = (
    "how was my week",
    "weekly review",
    "analyze my",
    "how did i do",
)

_PLAN_GENERATION_PATTERNS = (
    "create a plan",
    "build a plan",
    "generate a plan",
    "training plan for",
    "week plan",
)

_ORDERED_PATTERNS: tuple[tuple[QueryType, tuple[str, ...]], ...] = (
    (QueryType.DAILY_ADVICE, _DAILY_ADVICE_PATTERNS),
    (QueryType.PLAN_REVIEW, _PLAN_REVIEW_PATTERNS),
    (QueryType.PLAN_GENERATION, _PLAN_GENERATION_PATTERNS),
)

# First matching substring wins, so "long run" is listed before "long"
_WORKOUT_TYPE_PATTERNS: tuple[tuple[str, str], ...] = (
    ("easy", "Easy"),
    ("recovery", "Easy"),
    ("tempo", "Tempo"),
    ("threshold", "Tempo"),
    ("interval", "Intervals"),
    ("speed", "Intervals"),
    ("track", "Intervals"),
    ("repeat", "Intervals"),
    ("long run", "Long Run"),
    ("long", "Long Run"),
    ("endurance", "Long Run"),
    ("fartlek", "Fartlek"),
    ("race", "Race"),
    ("warm", "Warmup"),
    ("cool", "Cooldown"),
)

_CATEGORY_PATTERNS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("recovery", "rest", "easy"), "Easy"),
    (("tempo", "threshold"), "Tempo"),
    (("interval", "speed", "track"), "Intervals"),
    (("long", "endurance"), "Long Run"),
)


def classify_query(text: str) -> QueryType:
    """Map free text to a query type.

    Args:
        text: User message

    Returns:
        First query type whose phrasing matches, ASK_COACH otherwise
    """
    lowered = text.lower()
    for query_type, patterns in _ORDERED_PATTERNS:
        if any(pattern in lowered for pattern in patterns):
            return query_type
    return QueryType.ASK_COACH


def infer_workout_type(query: str) -> str | None:
    """Best-effort workout type guess from the query text."""
    lowered = query.lower()
    for pattern, workout_type in _WORKOUT_TYPE_PATTERNS:
        if pattern in lowered:
            return workout_type
    return None


def infer_category(query: str) -> str | None:
    """Best-effort coach workout category guess from the query text."""
    lowered = query.lower()
    for patterns, category in _CATEGORY_PATTERNS:
        if any(pattern in lowered for pattern in patterns):
            return category
    return None
