"""Wiring for the production context engine.

Builds the SQL-backed stores, loads the methodology corpus into the
in-memory similarity index, and hands everything to a ContextAssembler.
"""

from __future__ import annotations

from sqlalchemy.orm import Session, sessionmaker

from coach_context.db.session import get_session, get_session_factory
from coach_context.rag.embed.embedder import EmbeddingClient
from coach_context.rag.index.vector_index import InstructionVectorIndex
from coach_context.rag.retrieve.assembler import ContextAssembler
from coach_context.rag.retrieve.book_retriever import BookMethodologyRetriever, QueryEmbedder
from coach_context.rag.retrieve.coach_retriever import CoachPatternRetriever
from coach_context.rag.retrieve.user_formatter import UserContextFormatter
from coach_context.stores.sql import SqlAthleteDataStore, SqlCoachLibraryStore, load_book_instructions


def load_instruction_index(session_factory: sessionmaker[Session] | None = None) -> InstructionVectorIndex:
    with get_session(session_factory) as session:
        instructions = load_book_instructions(session)
    return InstructionVectorIndex(instructions)


def build_context_assembler(
    session_factory: sessionmaker[Session] | None = None,
    embedder: QueryEmbedder | None = None,
    index: InstructionVectorIndex | None = None,
    *,
    total_budget: int | None = None,
    timeout_seconds: float | None = None,
) -> ContextAssembler:
    """Create a ContextAssembler backed by the database.

    Args:
        session_factory: Session factory, the application's default if omitted
        embedder: Query embedder, an EmbeddingClient from settings if omitted
        index: Prebuilt similarity index, loaded from book_instructions if omitted
        total_budget: Default token budget override
        timeout_seconds: Per-layer timeout override

    Returns:
        Ready-to-use ContextAssembler
    """
    factory = session_factory or get_session_factory()

    athlete_store = SqlAthleteDataStore(factory)
    coach_store = SqlCoachLibraryStore(factory)
    search_store = index if index is not None else load_instruction_index(factory)

    return ContextAssembler(
        athlete_store,
        UserContextFormatter(athlete_store),
        CoachPatternRetriever(coach_store, history=athlete_store),
        BookMethodologyRetriever(embedder or EmbeddingClient(), search_store),
        total_budget=total_budget,
        timeout_seconds=timeout_seconds,
    )
