"""Methodology layer: book excerpts selected by semantic similarity.

Embeds the query, runs the filtered similarity search (falling back to the
unfiltered one), and formats matches with source attribution. An embedding
failure yields an explicit "no book context" layer rather than an error.
"""

import math
from typing import Protocol

from loguru import logger

from coach_context.config.settings import settings
from coach_context.rag.budget import CHARS_PER_TOKEN, BoundedAccumulator, estimate_token_count
from coach_context.rag.embed.embedder import EmbeddingResult
from coach_context.rag.errors import SearchUnavailableError
from coach_context.rag.logging import log_book_retrieval
from coach_context.rag.retrieve.search import BasicSearch, FilteredSearch, search_with_fallback
from coach_context.rag.types import BookFilters, BookSource, FormattedBookContext
from coach_context.stores.base import SimilaritySearchStore
from coach_context.stores.types import InstructionMatch

BOOK_HEADER = "## Methodology Guidelines"
NO_BOOK_CONTEXT_TEXT = f"{BOOK_HEADER}\nNo book context available."
NO_METHODOLOGY_FOUND_TEXT = f"{BOOK_HEADER}\nNo relevant methodology found for this query."

# Roughly 500 tokens per instruction when sizing the search
TOKENS_PER_INSTRUCTION = 500


class QueryEmbedder(Protocol):
    async def embed(self, text: str) -> EmbeddingResult: ...


def book_placeholder(reason: str | None = None) -> FormattedBookContext:
    """Layer returned when no methodology could be retrieved."""
    text = NO_BOOK_CONTEXT_TEXT if reason is None else f"{BOOK_HEADER}\nNo book context available ({reason})."
    return FormattedBookContext(text=text, token_count=0)


def no_methodology_found() -> FormattedBookContext:
    return FormattedBookContext(text=NO_METHODOLOGY_FOUND_TEXT, token_count=0)


def instructions_for_budget(max_chars: int) -> int:
    """How many instructions to request for a character budget (at least one)."""
    return max(1, math.ceil(max_chars / (TOKENS_PER_INSTRUCTION * CHARS_PER_TOKEN)))


def format_instruction(match: InstructionMatch) -> str:
    parts = [f'### From "{match.book_title}" ({match.methodology})']

    if match.chapter_title:
        parts.append(f"Chapter: {match.chapter_title}")
    if match.section_title:
        parts.append(f"Section: {match.section_title}")

    parts.append("")
    parts.append(match.content)

    if match.key_rules:
        parts.append("")
        parts.append("Key Rules:")
        parts.extend(f"- {rule}" for rule in match.key_rules)

    return "\n".join(parts)


def format_instructions(matches: list[InstructionMatch], max_chars: int) -> tuple[str, list[BookSource]]:
    """Pack formatted matches within ``max_chars`` and collect deduplicated citations.

    Sources are keyed by (book title, chapter title) and keep first-seen order.
    """
    accumulator: BoundedAccumulator[tuple[InstructionMatch, str]] = BoundedAccumulator(
        max_size=max_chars,
        size_fn=lambda entry: len(entry[1]),
        used=len(BOOK_HEADER),
    )
    accumulator.extend((match, format_instruction(match)) for match in matches)

    sources: list[BookSource] = []
    seen: set[tuple[str, str | None]] = set()
    for match, _ in accumulator.items:
        key = (match.book_title, match.chapter_title)
        if key in seen:
            continue
        seen.add(key)
        sources.append(
            BookSource(
                book_title=match.book_title,
                methodology=match.methodology,
                chapter_title=match.chapter_title,
            )
        )

    text = "\n\n".join([BOOK_HEADER, *(body for _, body in accumulator.items)])
    return text, sources


class BookMethodologyRetriever:
    """Retrieves methodology excerpts relevant to a query."""

    def __init__(
        self,
        embedder: QueryEmbedder,
        search_store: SimilaritySearchStore,
        *,
        similarity_threshold: float | None = None,
    ) -> None:
        self.embedder = embedder
        self.search_store = search_store
        self.similarity_threshold = (
            similarity_threshold if similarity_threshold is not None else settings.similarity_threshold
        )

    async def retrieve(self, query: str, filters: BookFilters, max_chars: int) -> FormattedBookContext:
        """Build the methodology layer within ``max_chars``.

        Args:
            query: User query to embed
            filters: Phase / workout type / level for the filtered search
            max_chars: Character budget for the layer

        Returns:
            FormattedBookContext with deduplicated sources
        """
        embedding = await self.embedder.embed(query)
        if not embedding.ok:
            logger.warning(f"Failed to generate query embedding: {embedding.error}")
            return book_placeholder(embedding.error)

        count = instructions_for_budget(max_chars)

        try:
            outcome = await search_with_fallback(
                FilteredSearch(self.search_store, filters),
                BasicSearch(self.search_store),
                embedding.embedding,
                threshold=self.similarity_threshold,
                count=count,
            )
        except SearchUnavailableError as e:
            logger.error(f"Error in basic instruction search: {e}")
            log_book_retrieval(query, filters, count, sources=[], matches=0, strategy="none", fallback_used=True)
            return no_methodology_found()

        if not outcome.matches:
            log_book_retrieval(
                query,
                filters,
                count,
                sources=[],
                matches=0,
                strategy=outcome.strategy,
                fallback_used=outcome.fallback_used,
            )
            return no_methodology_found()

        text, sources = format_instructions(outcome.matches, max_chars)

        log_book_retrieval(
            query,
            filters,
            count,
            sources=sources,
            matches=len(outcome.matches),
            strategy=outcome.strategy,
            fallback_used=outcome.fallback_used,
        )

        return FormattedBookContext(
            text=text,
            token_count=estimate_token_count(text),
            sources=sources,
        )
