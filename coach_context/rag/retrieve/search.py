"""Filtered and basic similarity search behind one interface.

``search_with_fallback`` is the single place that decides between the two:
the filtered strategy is tried first and any failure from it, including the
entry point being absent, silently hands over to the basic strategy.
"""

from dataclasses import dataclass
from typing import Protocol

from loguru import logger

from coach_context.rag.errors import SearchUnavailableError
from coach_context.rag.types import BookFilters
from coach_context.stores.base import SimilaritySearchStore
from coach_context.stores.types import InstructionMatch


class InstructionSearch(Protocol):
    name: str

    async def search(self, query_vector: list[float], *, threshold: float, count: int) -> list[InstructionMatch]: ...


@dataclass(frozen=True)
class FilteredSearch:
    """Similarity search restricted by phase, workout type and level."""

    store: SimilaritySearchStore
    filters: BookFilters
    name: str = "filtered"

    async def search(self, query_vector: list[float], *, threshold: float, count: int) -> list[InstructionMatch]:
        search_filtered = getattr(self.store, "search_filtered", None)
        if search_filtered is None:
            raise SearchUnavailableError(self.name, "store has no filtered entry point")

        try:
            return await search_filtered(
                query_vector,
                threshold=threshold,
                count=count,
                phase=self.filters.phase,
                workout_type=self.filters.workout_type,
                level=self.filters.level,
            )
        except Exception as e:
            raise SearchUnavailableError(self.name, str(e)) from e


@dataclass(frozen=True)
class BasicSearch:
    """Unfiltered similarity search."""

    store: SimilaritySearchStore
    name: str = "basic"

    async def search(self, query_vector: list[float], *, threshold: float, count: int) -> list[InstructionMatch]:
        try:
            return await self.store.search_basic(query_vector, threshold=threshold, count=count)
        except Exception as e:
            raise SearchUnavailableError(self.name, str(e)) from e


@dataclass(frozen=True)
class SearchOutcome:
    matches: list[InstructionMatch]
    strategy: str
    fallback_used: bool


async def search_with_fallback(
    primary: InstructionSearch,
    fallback: InstructionSearch,
    query_vector: list[float],
    *,
    threshold: float,
    count: int,
) -> SearchOutcome:
    """Run ``primary``; on failure run ``fallback``.

    Args:
        primary: Preferred strategy (normally FilteredSearch)
        fallback: Strategy used when primary is unavailable
        query_vector: Query embedding
        threshold: Minimum similarity
        count: Maximum number of matches

    Returns:
        SearchOutcome with matches and which strategy produced them

    Raises:
        SearchUnavailableError: If the fallback strategy fails as well
    """
    try:
        matches = await primary.search(query_vector, threshold=threshold, count=count)
    except SearchUnavailableError as e:
        logger.warning(f"{primary.name.capitalize()} search not available, using {fallback.name} search: {e}")
    else:
        return SearchOutcome(matches=matches, strategy=primary.name, fallback_used=False)

    matches = await fallback.search(query_vector, threshold=threshold, count=count)
    return SearchOutcome(matches=matches, strategy=fallback.name, fallback_used=True)
