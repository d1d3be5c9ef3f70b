"""Bounded fan-out/fan-in used at every concurrency level.

Documents, embedding batches and upsert batches all go through
:func:`gather_bounded` so that each level is tuned by a single integer and
results always come back in submission order.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def batched(items: Sequence[T], size: int) -> list[tuple[int, Sequence[T]]]:
    """Split *items* into contiguous ``(offset, slice)`` pairs of at most *size*."""
    if size <= 0:
        raise ValueError(f"batch size must be > 0, got {size}")
    return [(start, items[start : start + size]) for start in range(0, len(items), size)]


async def gather_bounded(
    items: Iterable[T],
    func: Callable[[T], Awaitable[R]],
    limit: int,
) -> list[R]:
    """Run ``func(item)`` for every item with at most *limit* in flight.

    Results are returned in the order of *items*, independent of
    completion order.  Exceptions raised by *func* propagate; callers that
    need per-item isolation catch inside *func*.
    """
    if limit <= 0:
        raise ValueError(f"concurrency limit must be > 0, got {limit}")
    semaphore = asyncio.Semaphore(limit)

    async def _run(item: T) -> R:
        async with semaphore:
            return await func(item)

    return list(await asyncio.gather(*(_run(item) for item in items)))


class ConsecutiveFailureGuard:
    """Trips after *threshold* consecutive failures; a success resets the streak.

    ``threshold=None`` (or ``0``) disables the guard.  All callers share one
    event loop, so plain attribute updates are safe without a lock.
    """

    def __init__(self, threshold: int | None) -> None:
        self.threshold = threshold or 0
        self._streak = 0
        self._tripped = False

    @property
    def tripped(self) -> bool:
        return self._tripped

    def record_success(self) -> None:
        if not self._tripped:
            self._streak = 0

    def record_failure(self) -> None:
        self._streak += 1
        if self.threshold and self._streak >= self.threshold and not self._tripped:
            self._tripped = True
            logger.warning("Abandoning work after %d consecutive failures", self._streak)
