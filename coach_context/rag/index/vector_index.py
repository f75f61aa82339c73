"""In-memory similarity store over methodology instructions.

Exact cosine similarity with numpy. Loaded once from the instruction table
and used read-only afterwards, so concurrent requests can share it.
"""

import numpy as np
from loguru import logger

from coach_context.stores.types import BookInstruction, InstructionMatch

APPLIES_TO_ALL = "all"


def _tag_matches(tag: str | None, wanted: str | None) -> bool:
    """An instruction applies when it is untagged, tagged "All", or tagged with the wanted value."""
    if not wanted:
        return True
    if tag is None or tag.strip().lower() == APPLIES_TO_ALL:
        return True
    return tag.strip().lower() == wanted.strip().lower()


class InstructionVectorIndex:
    """Exact cosine similarity search with optional phase / workout-type / level filters.

    Attributes:
        instructions: Indexed instructions (only those carrying an embedding)
        normalized_vectors: Row-normalized embedding matrix (N x D)
    """

    def __init__(self, instructions: list[BookInstruction]) -> None:
        """Initialize the index.

        Args:
            instructions: Instructions to index; those without an embedding are skipped
        """
        embedded = [instruction for instruction in instructions if instruction.embedding]
        skipped = len(instructions) - len(embedded)
        if skipped:
            logger.warning(f"Skipping {skipped} instructions without embeddings")

        self.instructions: list[BookInstruction] = embedded

        if not embedded:
            self.normalized_vectors = np.zeros((0, 0), dtype=np.float32)
            logger.warning("InstructionVectorIndex initialized with no embedded instructions")
            return

        vectors = np.array([instruction.embedding for instruction in embedded], dtype=np.float32)
        norms = np.linalg.norm(vectors, axis=1, keepdims=True)
        norms = np.where(norms == 0, 1, norms)
        self.normalized_vectors = vectors / norms

        logger.info(f"Initialized InstructionVectorIndex with {len(embedded)} instructions, dim={vectors.shape[1]}")

    def size(self) -> int:
        return len(self.instructions)

    def _rank(
        self,
        query_vector: list[float],
        threshold: float,
        count: int,
        candidate_mask: np.ndarray | None = None,
    ) -> list[InstructionMatch]:
        if not self.instructions or count <= 0:
            return []

        query = np.array(query_vector, dtype=np.float32)
        if query.shape[0] != self.normalized_vectors.shape[1]:
            raise ValueError(
                f"Query vector dimension {query.shape[0]} does not match index dimension "
                f"{self.normalized_vectors.shape[1]}"
            )

        query_norm = np.linalg.norm(query)
        if query_norm == 0:
            logger.warning("Query embedding has zero norm")
            return []

        similarities = np.dot(self.normalized_vectors, query / query_norm)
        if candidate_mask is not None:
            similarities = np.where(candidate_mask, similarities, -np.inf)

        order = np.argsort(-similarities, kind="stable")
        matches: list[InstructionMatch] = []
        for idx in order:
            score = float(similarities[idx])
            if score < threshold:
                break
            instruction = self.instructions[idx]
            matches.append(
                InstructionMatch(
                    id=instruction.id,
                    book_title=instruction.book_title,
                    methodology=instruction.methodology,
                    content=instruction.content,
                    similarity=score,
                    chapter_title=instruction.chapter_title,
                    section_title=instruction.section_title,
                    key_rules=instruction.key_rules,
                )
            )
            if len(matches) >= count:
                break

        return matches

    async def search_filtered(
        self,
        query_vector: list[float],
        *,
        threshold: float,
        count: int,
        phase: str | None = None,
        workout_type: str | None = None,
        level: str | None = None,
    ) -> list[InstructionMatch]:
        mask = np.array(
            [
                _tag_matches(instruction.applies_to_phase, phase)
                and _tag_matches(instruction.applies_to_workout_type, workout_type)
                and _tag_matches(instruction.level, level)
                for instruction in self.instructions
            ],
            dtype=bool,
        )
        return self._rank(query_vector, threshold, count, candidate_mask=mask)

    async def search_basic(
        self,
        query_vector: list[float],
        *,
        threshold: float,
        count: int,
    ) -> list[InstructionMatch]:
        return self._rank(query_vector, threshold, count)
