"""Observability logging for context retrieval.

Logs counts and citation lists only. Vectors and book text never reach the
log sinks.
"""

from loguru import logger

from coach_context.rag.budget import LayerBudgets
from coach_context.rag.types import BookFilters, BookSource, CoachFilters, EnhancedContext


def _short(query: str) -> str:
    return query[:100] if query else ""


def log_book_retrieval(
    query: str,
    filters: BookFilters,
    k: int,
    *,
    sources: list[BookSource],
    matches: int,
    strategy: str,
    fallback_used: bool = False,
) -> None:
    """Log a methodology retrieval.

    Args:
        query: Query text
        filters: Filters requested for the filtered search
        k: Requested number of instructions
        sources: Citations included in the formatted layer
        matches: Number of instructions returned by the search
        strategy: Search strategy that produced the matches
        fallback_used: Whether the basic search replaced the filtered one
    """
    logger.info(
        "rag_book_retrieval",
        query=_short(query),
        phase=filters.phase,
        workout_type=filters.workout_type,
        level=filters.level,
        k_requested=k,
        matches_returned=matches,
        strategy=strategy,
        fallback_used=fallback_used,
        sources=[f"{s.book_title} / {s.chapter_title or '-'}" for s in sources],
    )


def log_coach_retrieval(
    athlete_id: str,
    filters: CoachFilters,
    *,
    strategy: str,
    workouts: list[str],
    phases: list[str],
) -> None:
    logger.info(
        "rag_coach_retrieval",
        athlete_id=athlete_id,
        phase=filters.phase,
        category=filters.category,
        strategy=strategy,
        workouts=workouts,
        phases=phases,
    )


def log_context_assembly(
    athlete_id: str,
    context: EnhancedContext,
    budgets: LayerBudgets,
    degraded_layers: list[str],
) -> None:
    """Log context assembly.

    Args:
        athlete_id: Athlete the context was built for
        context: Assembled context
        budgets: Token budgets handed to each layer
        degraded_layers: Layers replaced by their placeholder after a failure or timeout
    """
    logger.info(
        "rag_context_assembly",
        athlete_id=athlete_id,
        query_type=context.query_type.value,
        user_budget=budgets.user_tokens,
        coach_budget=budgets.coach_tokens,
        book_budget=budgets.book_tokens,
        user_tokens=context.user_context.token_count,
        coach_tokens=context.coach_context.token_count,
        book_tokens=context.book_context.token_count,
        total_tokens=context.total_tokens,
        degraded_layers=degraded_layers,
    )
