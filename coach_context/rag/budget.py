"""Budget arithmetic shared by every context layer.

All budgets are approximations: one token is taken to be four characters of
English text. Nothing here calls a tokenizer.
"""

import math
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Generic, TypeVar

from coach_context.rag.types import ContextWeights

CHARS_PER_TOKEN = 4

# Words per token for the word-based estimate
WORDS_PER_TOKEN = 0.75

T = TypeVar("T")


def estimate_token_count(text: str) -> int:
    """Estimate tokens as ceil(len(text) / 4)."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def count_tokens(text: str) -> int:
    """Word-based token estimate, ceil(words / 0.75)."""
    words = [w for w in text.split() if w]
    return math.ceil(len(words) / WORDS_PER_TOKEN)


def tokens_to_chars(tokens: int) -> int:
    return tokens * CHARS_PER_TOKEN


@dataclass(frozen=True)
class LayerBudgets:
    """Token budget per layer after splitting the total."""

    user_tokens: int
    coach_tokens: int
    book_tokens: int

    @property
    def total(self) -> int:
        return self.user_tokens + self.coach_tokens + self.book_tokens


def _floor_share(total_budget: int, weight: float) -> int:
    # Decimal keeps 0.35 * 8000 at 2800 instead of 2799.999...
    return math.floor(Decimal(str(weight)) * total_budget)


def allocate_budget(total_budget: int, weights: ContextWeights) -> LayerBudgets:
    """Split a total budget three ways using floor rounding.

    Floor rounding may under-allocate by up to two units in total. That
    remainder is left unused so the sum never exceeds ``total_budget``.

    Args:
        total_budget: Total approximate token budget
        weights: Weight triple for the query type

    Returns:
        LayerBudgets for the user, coach and book layers

    Raises:
        ValueError: If total_budget is negative
    """
    if total_budget < 0:
        raise ValueError(f"total_budget must be non-negative, got {total_budget}")

    return LayerBudgets(
        user_tokens=_floor_share(total_budget, weights.user_weight),
        coach_tokens=_floor_share(total_budget, weights.coach_weight),
        book_tokens=_floor_share(total_budget, weights.book_weight),
    )


@dataclass
class BoundedAccumulator(Generic[T]):
    """Collects formatted items until the next one would exceed ``max_size``.

    The first item offered is always accepted, even when it alone is larger
    than the budget, so a non-empty result set never formats to nothing.
    Once an item is rejected the accumulator is closed and rejects the rest,
    which keeps truncation order-preserving.
    """

    max_size: int
    size_fn: Callable[[T], int] = len  # type: ignore[assignment]
    used: int = 0
    items: list[T] = field(default_factory=list)
    closed: bool = False

    def offer(self, item: T) -> bool:
        if self.closed:
            return False

        size = self.size_fn(item)
        if self.items and self.used + size > self.max_size:
            self.closed = True
            return False

        self.items.append(item)
        self.used += size
        return True

    def extend(self, items: Iterable[T]) -> int:
        """Offer items in order, stopping at the first rejection.

        Returns:
            Number of items accepted by this call
        """
        accepted = 0
        for item in items:
            if not self.offer(item):
                break
            accepted += 1
        return accepted

    def __len__(self) -> int:
        return len(self.items)


def accumulate_within(
    items: Iterable[T],
    max_size: int,
    *,
    size_fn: Callable[[T], int] = len,  # type: ignore[assignment]
    initial_size: int = 0,
) -> list[T]:
    """Return the longest prefix of ``items`` that fits, never fewer than one item."""
    accumulator: BoundedAccumulator[T] = BoundedAccumulator(max_size=max_size, size_fn=size_fn, used=initial_size)
    accumulator.extend(items)
    return accumulator.items
