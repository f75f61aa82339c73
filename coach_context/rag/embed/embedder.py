"""Embedding client for methodology retrieval.

Wraps the OpenAI embeddings endpoint. Provider problems (missing key,
non-2xx responses, malformed payloads) come back as an ``error`` on the
result instead of an exception: callers treat a failed embedding as degraded
retrieval, never as a failed request. No retries happen here beyond the
pause between batches.
"""

import asyncio
import math
from dataclasses import dataclass, field
from typing import Any

from loguru import logger
from openai import AsyncOpenAI, OpenAIError

from coach_context.config.settings import settings
from coach_context.rag.budget import estimate_token_count
from coach_context.rag.errors import ConfigurationError, EmbeddingError


@dataclass(frozen=True)
class EmbeddingResult:
    embedding: list[float] = field(default_factory=list)
    token_count: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and bool(self.embedding)


@dataclass(frozen=True)
class EmbeddedText:
    """An input text paired with its vector."""

    text: str
    embedding: list[float]
    token_count: int


@dataclass(frozen=True)
class BatchEmbeddingResult:
    """Embeddings for every batch that succeeded, in input order.

    When ``error`` is set, ``embeddings`` still holds the batches that
    completed before the failure.
    """

    embeddings: list[EmbeddedText] = field(default_factory=list)
    error: str | None = None


def clean_text_for_embedding(text: str, max_words: int | None = None) -> str:
    """Collapse whitespace and keep at most ``max_words`` words."""
    limit = max_words if max_words is not None else settings.embedding_max_words
    words = text.split()
    if len(words) > limit:
        words = words[:limit]
    return " ".join(words)


def format_embedding_for_storage(embedding: list[float]) -> str:
    """Render a vector in pgvector text form, e.g. ``[0.1,0.2]``."""
    return "[" + ",".join(str(value) for value in embedding) + "]"


def parse_embedding_from_storage(stored: str) -> list[float]:
    cleaned = stored.strip().strip("[]")
    if not cleaned:
        return []
    return [float(value) for value in cleaned.split(",")]


class EmbeddingClient:
    """Turns text into fixed-dimension vectors through the OpenAI API.

    Stateless apart from the lazily created SDK client, so one instance can
    serve concurrent requests.
    """

    def __init__(
        self,
        api_key: str | None = None,
        *,
        model: str | None = None,
        dimensions: int | None = None,
        max_words: int | None = None,
        batch_delay_seconds: float | None = None,
        timeout_seconds: float | None = None,
        client: Any | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: OpenAI key, defaults to OPENAI_API_KEY
            model: Embedding model name
            dimensions: Expected vector length
            max_words: Word cap applied before sending text
            batch_delay_seconds: Pause between batches in ``embed_batch``
            timeout_seconds: Provider request timeout
            client: Pre-built AsyncOpenAI-compatible client
        """
        self.api_key = api_key if api_key is not None else settings.openai_api_key
        self.model = model or settings.embedding_model
        self.dimensions = dimensions or settings.embedding_dimensions
        self.max_words = max_words or settings.embedding_max_words
        self.batch_delay_seconds = (
            batch_delay_seconds if batch_delay_seconds is not None else settings.embedding_batch_delay_seconds
        )
        self.timeout_seconds = timeout_seconds or settings.embedding_timeout_seconds
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            if not self.api_key:
                raise ConfigurationError("OpenAI API key not configured. Set OPENAI_API_KEY environment variable.")
            self._client = AsyncOpenAI(api_key=self.api_key, timeout=self.timeout_seconds, max_retries=0)
            logger.info(f"Initialized embedding client with model={self.model}")
        return self._client

    async def _create(self, inputs: list[str]) -> tuple[list[list[float]], int | None]:
        response = await self._get_client().embeddings.create(
            model=self.model,
            input=inputs,
            dimensions=self.dimensions,
        )
        return self._extract_vectors(response, expected=len(inputs))

    def _extract_vectors(self, response: Any, expected: int) -> tuple[list[list[float]], int | None]:
        try:
            vectors = [list(item.embedding) for item in response.data]
        except (AttributeError, TypeError) as e:
            raise EmbeddingError(f"Malformed embedding response: {e}") from e

        if len(vectors) != expected:
            raise EmbeddingError(f"Expected {expected} embeddings, provider returned {len(vectors)}")

        for vector in vectors:
            if len(vector) != self.dimensions:
                raise EmbeddingError(
                    f"Embedding dimension mismatch: expected {self.dimensions}, got {len(vector)}"
                )

        usage = getattr(response, "usage", None)
        total_tokens = getattr(usage, "total_tokens", None) if usage is not None else None
        return vectors, total_tokens

    async def embed(self, text: str) -> EmbeddingResult:
        """Embed a single text.

        Args:
            text: Text to embed

        Returns:
            EmbeddingResult with either a vector or an error message
        """
        cleaned = clean_text_for_embedding(text, self.max_words)
        if not cleaned:
            return EmbeddingResult(error="Cannot embed empty text")

        try:
            vectors, total_tokens = await self._create([cleaned])
        except ConfigurationError as e:
            logger.warning(f"Embedding skipped: {e}")
            return EmbeddingResult(error=str(e))
        except EmbeddingError as e:
            logger.warning(f"Embedding provider returned an unusable payload: {e}")
            return EmbeddingResult(error=str(e))
        except OpenAIError as e:
            logger.warning(f"Failed to generate embedding: {e}")
            return EmbeddingResult(error=f"Failed to generate embedding: {e}")

        return EmbeddingResult(
            embedding=vectors[0],
            token_count=total_tokens or estimate_token_count(cleaned),
        )

    async def embed_batch(self, texts: list[str], batch_size: int | None = None) -> BatchEmbeddingResult:
        """Embed many texts in provider-sized batches.

        A failing batch stops the run but keeps every batch that already
        succeeded.

        Args:
            texts: Texts to embed
            batch_size: Texts per provider call

        Returns:
            BatchEmbeddingResult with completed embeddings and an optional error
        """
        size = batch_size or settings.embedding_batch_size
        if size < 1:
            raise ValueError(f"batch_size must be positive, got {size}")

        results: list[EmbeddedText] = []

        for start in range(0, len(texts), size):
            batch = texts[start : start + size]
            cleaned_batch = [clean_text_for_embedding(text, self.max_words) for text in batch]

            try:
                vectors, total_tokens = await self._create(cleaned_batch)
            except (ConfigurationError, EmbeddingError) as e:
                logger.warning(f"Batch embedding stopped at offset {start}: {e}")
                return BatchEmbeddingResult(embeddings=results, error=str(e))
            except OpenAIError as e:
                logger.warning(f"Batch embedding stopped at offset {start}: {e}")
                return BatchEmbeddingResult(embeddings=results, error=f"Failed to generate batch embeddings: {e}")

            per_text_tokens = math.ceil((total_tokens or 0) / len(batch))
            for original, vector in zip(batch, vectors, strict=True):
                results.append(EmbeddedText(text=original, embedding=vector, token_count=per_text_tokens))

            logger.debug(f"Embedded batch offset={start} size={len(batch)}")

            if start + size < len(texts):
                await asyncio.sleep(self.batch_delay_seconds)

        return BatchEmbeddingResult(embeddings=results)
