"""Context assembler: budget split, concurrent retrieval and prompt merge.

The three layers run concurrently, each under its own timeout. A layer that
fails or times out is replaced by its "no data" placeholder before the join
returns, so ``assemble`` always produces a complete EnhancedContext.
Cancelling the caller cancels all three layers.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from loguru import logger

from coach_context.config.settings import settings
from coach_context.rag.budget import allocate_budget, tokens_to_chars
from coach_context.rag.classify import classify_query, infer_category, infer_workout_type
from coach_context.rag.fatigue import fatigue_guidance
from coach_context.rag.logging import log_context_assembly
from coach_context.rag.retrieve.book_retriever import BookMethodologyRetriever, book_placeholder
from coach_context.rag.retrieve.coach_retriever import CoachPatternRetriever, coach_placeholder
from coach_context.rag.retrieve.user_formatter import UserContextFormatter, user_placeholder
from coach_context.rag.types import (
    QUERY_WEIGHTS,
    BookFilters,
    CoachFilters,
    ContextStats,
    EnhancedContext,
    FormattedBookContext,
    FormattedCoachContext,
    FormattedUserContext,
    QueryType,
)
from coach_context.stores.base import AthleteDataStore

T = TypeVar("T")

USER_SECTION_HEADER = "--- PRIORITY 1: ATHLETE DATA (Ground Truth) ---"
COACH_SECTION_HEADER = "--- PRIORITY 2: PREVIOUS COACH PATTERNS (Proven for this athlete) ---"
BOOK_SECTION_HEADER = "--- PRIORITY 3: METHODOLOGY GUIDELINES (General rules) ---"

CONTEXT_HEADERS = {
    QueryType.DAILY_ADVICE: "=== CONTEXT FOR DAILY TRAINING ADVICE ===",
    QueryType.PLAN_REVIEW: "=== CONTEXT FOR WEEKLY REVIEW ===",
    QueryType.PLAN_GENERATION: "=== CONTEXT FOR TRAINING PLAN GENERATION ===",
    QueryType.ASK_COACH: "=== CONTEXT FOR COACHING RESPONSE ===",
    QueryType.SECOND_OPINION: "=== CONTEXT FOR SECOND OPINION ===",
}

QUICK_CONTEXT_TOKENS = 2000


@dataclass(frozen=True)
class QuickContext:
    user_summary: str
    fatigue_score: float
    current_phase: str | None


def assemble_combined_prompt(
    user_context: FormattedUserContext,
    coach_context: FormattedCoachContext,
    book_context: FormattedBookContext,
    query_type: QueryType,
) -> str:
    """Merge the layers in priority order: athlete data, coach patterns, methodology.

    Every section is emitted, placeholders included, so the reader can see
    which layers had no data.
    """
    fatigue_score = user_context.metadata.fatigue_score
    sections = [
        CONTEXT_HEADERS[query_type],
        USER_SECTION_HEADER,
        user_context.text,
        f"Current Fatigue: {fatigue_score:.1f}/10 ({fatigue_guidance(fatigue_score)})",
        COACH_SECTION_HEADER,
        coach_context.text,
        BOOK_SECTION_HEADER,
        book_context.text,
    ]
    return "\n\n".join(sections)


def get_context_stats(context: EnhancedContext) -> ContextStats:
    """Counts for monitoring. Never includes vectors or book text."""
    return ContextStats(
        total_tokens=context.total_tokens,
        per_layer_tokens={
            "user": context.user_context.token_count,
            "coach": context.coach_context.token_count,
            "book": context.book_context.token_count,
        },
        source_count=len(context.book_context.sources),
        workouts_included_count=len(context.coach_context.workouts_included),
    )


class ContextAssembler:
    """Builds the three-layer context for one athlete and query."""

    def __init__(
        self,
        athlete_store: AthleteDataStore,
        user_formatter: UserContextFormatter,
        coach_retriever: CoachPatternRetriever,
        book_retriever: BookMethodologyRetriever,
        *,
        total_budget: int | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        """Initialize assembler.

        Args:
            athlete_store: Store used to resolve the current training phase
            user_formatter: User data layer
            coach_retriever: Previous coach layer
            book_retriever: Methodology layer
            total_budget: Default total token budget, TOTAL_CONTEXT_TOKENS if omitted
            timeout_seconds: Per-layer timeout, RETRIEVAL_TIMEOUT_SECONDS if omitted
        """
        self.athlete_store = athlete_store
        self.user_formatter = user_formatter
        self.coach_retriever = coach_retriever
        self.book_retriever = book_retriever
        self.total_budget = total_budget if total_budget is not None else settings.total_context_tokens
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.retrieval_timeout_seconds

    async def _run_layer(
        self,
        name: str,
        operation: Awaitable[T],
        placeholder: Callable[[str], T],
        degraded: list[str],
    ) -> T:
        try:
            return await asyncio.wait_for(operation, timeout=self.timeout_seconds)
        except TimeoutError:
            logger.warning(f"{name} context layer timed out after {self.timeout_seconds}s, using placeholder")
            degraded.append(name)
            return placeholder("timed out")
        except Exception as e:
            logger.warning(f"{name} context layer failed, using placeholder: {type(e).__name__}: {e}")
            degraded.append(name)
            return placeholder("retrieval failed")

    async def _resolve_current_phase(self, athlete_id: str) -> str | None:
        try:
            plan = await asyncio.wait_for(self.athlete_store.get_active_plan(athlete_id), timeout=self.timeout_seconds)
        except TimeoutError:
            logger.warning(f"Active plan lookup timed out for athlete {athlete_id}, retrieving without phase filter")
            return None
        except Exception as e:
            logger.warning(f"Active plan lookup failed for athlete {athlete_id}, retrieving without phase filter: {e}")
            return None
        return plan.current_phase if plan is not None else None

    async def assemble(
        self,
        athlete_id: str,
        query: str,
        query_type: QueryType | None = None,
        total_budget: int | None = None,
    ) -> EnhancedContext:
        """Assemble the enhanced context.

        Args:
            athlete_id: Athlete identifier
            query: Free-text user query
            query_type: Query type, classified from ``query`` when omitted
            total_budget: Token budget override for this call

        Returns:
            EnhancedContext with all three layers, placeholders for any that failed
        """
        resolved_type = query_type or classify_query(query)
        budget_total = total_budget if total_budget is not None else self.total_budget
        if budget_total < 0:
            logger.warning(f"Negative context budget {budget_total} requested, using 0")
            budget_total = 0

        budgets = allocate_budget(budget_total, QUERY_WEIGHTS[resolved_type])

        current_phase = await self._resolve_current_phase(athlete_id)
        workout_type = infer_workout_type(query)
        category = infer_category(query)

        degraded: list[str] = []
        user_context, coach_context, book_context = await asyncio.gather(
            self._run_layer(
                "user",
                self.user_formatter.format(athlete_id, tokens_to_chars(budgets.user_tokens)),
                user_placeholder,
                degraded,
            ),
            self._run_layer(
                "coach",
                self.coach_retriever.retrieve(
                    athlete_id,
                    query,
                    CoachFilters(phase=current_phase, workout_type=workout_type, category=category),
                    tokens_to_chars(budgets.coach_tokens),
                ),
                coach_placeholder,
                degraded,
            ),
            self._run_layer(
                "book",
                self.book_retriever.retrieve(
                    query,
                    BookFilters(phase=current_phase, workout_type=workout_type),
                    tokens_to_chars(budgets.book_tokens),
                ),
                book_placeholder,
                degraded,
            ),
        )

        context = EnhancedContext(
            user_context=user_context,
            coach_context=coach_context,
            book_context=book_context,
            combined_prompt=assemble_combined_prompt(user_context, coach_context, book_context, resolved_type),
            total_tokens=user_context.token_count + coach_context.token_count + book_context.token_count,
            query_type=resolved_type,
        )

        log_context_assembly(athlete_id, context, budgets, degraded)
        return context

    async def build_quick_context(self, athlete_id: str, max_tokens: int = QUICK_CONTEXT_TOKENS) -> QuickContext:
        """User layer only, for lightweight prompts that skip coach and book retrieval."""
        user_context = await self._run_layer(
            "user",
            self.user_formatter.format(athlete_id, tokens_to_chars(max_tokens)),
            user_placeholder,
            [],
        )
        return QuickContext(
            user_summary=user_context.text,
            fatigue_score=user_context.metadata.fatigue_score,
            current_phase=user_context.metadata.current_phase,
        )
