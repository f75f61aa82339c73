"""Backfill embeddings for methodology chunks that do not have one yet.

Chunks are embedded batch by batch, pausing ``batch_delay_seconds`` between
provider calls. Each successful batch is committed before the next call, so
a failure part way through keeps the work already done. Re-running picks up
where the previous run stopped.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from loguru import logger
from sqlalchemy.orm import Session, sessionmaker

from coach_context.config.settings import settings
from coach_context.db.models import BookInstructionChunk
from coach_context.db.session import get_session
from coach_context.rag.embed.embedder import EmbeddingClient
from coach_context.stores.sql import get_instructions_missing_embeddings


@dataclass(frozen=True)
class BackfillReport:
    pending: int
    embedded: int
    error: str | None = None


async def backfill_instruction_embeddings(
    embedder: EmbeddingClient,
    session_factory: sessionmaker[Session] | None = None,
    batch_size: int | None = None,
) -> BackfillReport:
    """Embed every book instruction whose embedding is NULL.

    Args:
        embedder: Embedding client
        session_factory: Session factory, the application's default if omitted
        batch_size: Chunks per provider call, EMBEDDING_BATCH_SIZE if omitted

    Returns:
        BackfillReport with the number of chunks pending, embedded, and the first error
    """
    size = batch_size or settings.embedding_batch_size

    with get_session(session_factory) as session:
        pending_ids = [(chunk.id, chunk.content) for chunk in get_instructions_missing_embeddings(session)]

    if not pending_ids:
        logger.info("All book instructions already have embeddings")
        return BackfillReport(pending=0, embedded=0)

    logger.info(f"Backfilling embeddings for {len(pending_ids)} book instructions (batch_size={size})")

    embedded = 0
    for start in range(0, len(pending_ids), size):
        batch = pending_ids[start : start + size]
        result = await embedder.embed_batch([content for _, content in batch], batch_size=size)

        completed = result.embeddings
        if completed:
            vectors = {chunk_id: item.embedding for (chunk_id, _), item in zip(batch, completed, strict=False)}
            _save_embeddings(vectors, session_factory)
            embedded += len(vectors)

        if result.error:
            logger.error(f"Embedding backfill stopped after {embedded}/{len(pending_ids)} instructions: {result.error}")
            return BackfillReport(pending=len(pending_ids), embedded=embedded, error=result.error)

        logger.info(f"Embedded {embedded}/{len(pending_ids)} book instructions")

        if start + size < len(pending_ids):
            await asyncio.sleep(embedder.batch_delay_seconds)

    return BackfillReport(pending=len(pending_ids), embedded=embedded)


def _save_embeddings(vectors: dict[str, list[float]], session_factory: sessionmaker[Session] | None) -> None:
    with get_session(session_factory) as session:
        for chunk_id, vector in vectors.items():
            chunk = session.get(BookInstructionChunk, chunk_id)
            if chunk is None:
                logger.warning(f"Book instruction {chunk_id} disappeared during backfill, skipping")
                continue
            chunk.embedding = list(vector)
