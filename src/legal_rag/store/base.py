"""Abstract base class for vector-store backends.

Adding a new backend (Pinecone, Weaviate, …) only requires subclassing
:class:`VectorStoreBase` and implementing the abstract primitives.  Batch
partitioning, the concurrency bound, the single retry and the 413
splitting live here so every backend behaves the same.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from typing import Any

from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception, stop_after_attempt, wait_fixed

from legal_rag.concurrency import ConsecutiveFailureGuard, batched, gather_bounded
from legal_rag.errors import PayloadTooLarge, UpsertError
from legal_rag.retrieval.models import MetadataFilter
from legal_rag.store.models import CollectionConfig, Point, ScrollPage, UpsertReport

logger = logging.getLogger(__name__)


def _is_retryable(exc: BaseException) -> bool:
    # 413 is handled by splitting, not by resending the same body.
    return isinstance(exc, UpsertError) and not isinstance(exc, PayloadTooLarge)


class VectorStoreBase(ABC):
    """Backend-agnostic vector-store interface.

    Parameters
    ----------
    max_attempts:
        Attempts per upsert batch; the default of 2 is one retry.
    retry_wait:
        Seconds to wait before the retry.
    """

    def __init__(self, *, max_attempts: int = 2, retry_wait: float = 1.0) -> None:
        self.max_attempts = max_attempts
        self.retry_wait = retry_wait

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    async def ensure_collection(self, config: CollectionConfig) -> bool:
        """Create the collection if it does not exist.

        Returns ``True`` when the collection was created.  Raises
        :class:`~legal_rag.errors.StoreUnavailable` for anything other than
        a plain "not found" during the existence check, or when creation
        fails.
        """
        ...

    @abstractmethod
    async def upsert_points(self, collection: str, points: Sequence[Point]) -> None:
        """Insert-or-overwrite *points* by id in one call.

        Raises :class:`~legal_rag.errors.UpsertError` (or
        :class:`~legal_rag.errors.PayloadTooLarge`) on failure.
        """
        ...

    @abstractmethod
    async def scroll(self, collection: str, *, limit: int, offset: Any = None) -> ScrollPage:
        """Return one page of points (payload only) starting at *offset*."""
        ...

    @abstractmethod
    async def count_points(self, collection: str) -> int:
        """Return the number of points stored in *collection*."""
        ...

    @abstractmethod
    async def search(
        self,
        collection: str,
        vector: list[float],
        *,
        k: int = 5,
        filters: list[MetadataFilter] | None = None,
        score_threshold: float | None = None,
    ) -> list[dict[str, Any]]:
        """Return the top-*k* hits for *vector*.

        Each hit dict **must** contain ``"id"``, ``"score"`` (higher is more
        similar) and ``"payload"``.
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Return ``True`` when the backend is reachable and ready."""
        ...

    # -- optional overrides ---------------------------------------------------

    async def aclose(self) -> None:
        """Release backend resources.  No-op by default."""

    # -- shared behaviour -----------------------------------------------------

    async def iter_scroll(self, collection: str, *, page_size: int = 10000) -> AsyncIterator[ScrollPage]:
        """Yield every page of *collection* following the scroll cursor."""
        offset: Any = None
        while True:
            page = await self.scroll(collection, limit=page_size, offset=offset)
            if page.points:
                yield page
            if page.next_offset is None or not page.points:
                return
            offset = page.next_offset

    async def _upsert_with_retry(self, collection: str, points: Sequence[Point]) -> None:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.retry_wait),
            retry=retry_if_exception(_is_retryable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                await self.upsert_points(collection, points)

    async def _upsert_splitting(self, collection: str, points: Sequence[Point]) -> int:
        """Upsert *points*, halving the batch on 413.  Returns the number stored.

        Raises :class:`UpsertError` when the unsplit batch fails; failures of
        split halves are logged and reflected in the returned count.
        """
        try:
            await self._upsert_with_retry(collection, points)
            return len(points)
        except PayloadTooLarge:
            if len(points) <= 1:
                raise
        mid = len(points) // 2
        logger.warning("Batch of %d points too large; retrying as %d + %d", len(points), mid, len(points) - mid)
        stored = 0
        for half in (points[:mid], points[mid:]):
            try:
                stored += await self._upsert_splitting(collection, half)
            except UpsertError as exc:
                logger.error("Split upsert of %d points failed: %s", len(half), exc)
        return stored

    async def upsert_batches(
        self,
        collection: str,
        points: Sequence[Point],
        batch_size: int,
        max_concurrent_upserts: int,
        *,
        document_id: str | None = None,
        guard: ConsecutiveFailureGuard | None = None,
    ) -> UpsertReport:
        """Upsert *points* in contiguous batches with bounded concurrency.

        Parameters
        ----------
        collection:
            Target collection.
        points:
            Points to store; ids make re-sends overwrite, not duplicate.
        batch_size:
            Maximum points per request.
        max_concurrent_upserts:
            Maximum requests in flight.
        document_id:
            Source document, logged with failed batches for replay.
        guard:
            Optional failure guard; once tripped, batches that have not
            started yet are counted as failed without being sent.

        Returns
        -------
        UpsertReport
            ``inserted`` and ``failed`` point counts plus the offsets of the
            failed batches.  A failed batch never aborts its siblings.
        """
        report = UpsertReport()
        batches = batched(list(points), batch_size)

        async def _run(item: tuple[int, Sequence[Point]]) -> tuple[int, int, int]:
            offset, batch = item
            if guard is not None and guard.tripped:
                logger.error(
                    "Upsert batch skipped after consecutive failures: collection=%s document=%s offset=%d size=%d",
                    collection, document_id, offset, len(batch),
                )
                return offset, 0, len(batch)
            try:
                stored = await self._upsert_splitting(collection, batch)
            except UpsertError as exc:
                if guard is not None:
                    guard.record_failure()
                logger.error(
                    "Upsert batch failed: collection=%s document=%s offset=%d size=%d error=%s",
                    collection, document_id, offset, len(batch), exc,
                )
                return offset, 0, len(batch)
            failed = len(batch) - stored
            if failed:
                logger.error(
                    "Upsert batch partially failed: collection=%s document=%s offset=%d failed=%d/%d",
                    collection, document_id, offset, failed, len(batch),
                )
            if guard is not None:
                if failed:
                    guard.record_failure()
                else:
                    guard.record_success()
            return offset, stored, failed

        for offset, inserted, failed in await gather_bounded(batches, _run, max_concurrent_upserts):
            report.inserted += inserted
            report.failed += failed
            if failed:
                report.failed_offsets.append(offset)
        logger.debug(
            "Upserted %d/%d points into %s (%d batches)",
            report.inserted, len(points), collection, len(batches),
        )
        return report
