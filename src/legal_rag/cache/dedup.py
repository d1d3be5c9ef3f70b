"""Dedup index of already-ingested document identifiers.

Primary backing is a Redis set shared by every worker.  When Redis cannot
be reached at :meth:`DedupIndex.initialize` the index runs on an in-memory
set that is loaded from, and checkpointed to, a gzip-compressed JSON array
file.  A Redis failure later in the session degrades to the in-memory set
instead of surfacing: a missed id only costs a redundant re-embedding,
because upserts overwrite by point id.

Example::

    async with DedupIndex(redis_url="redis://localhost:6379/3") as index:
        await index.resync(store, "jurisprudencia")
        if not await index.exists("rol-1234-2021"):
            ...
"""

from __future__ import annotations

import asyncio
import gzip
import json
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING, Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from legal_rag.errors import CacheBackendDegraded

if TYPE_CHECKING:
    from legal_rag.config import Settings
    from legal_rag.store.base import VectorStoreBase

logger = logging.getLogger(__name__)

_REDIS_BATCH = 10000


class DedupIndex:
    """Set of document ids whose points are known to be in the vector store.

    Parameters
    ----------
    redis_url:
        Redis DSN; ``None`` runs on the file-backed memory set only.
    key:
        Name of the Redis set.
    cache_file:
        Gzip JSON checkpoint used when Redis is not the active backend.
    drift_threshold:
        :meth:`resync` rescans when the local size and the store's point
        count differ by more than this.
    page_size:
        Scroll page size used by :meth:`resync`.
    id_field:
        Payload key carrying the document id in stored points.
    failed_chunk_tolerance:
        Largest share of a document's chunks that may be missing from the
        store for :meth:`resync` to still count it as ingested.  Matches
        the rule the orchestrator applies before recording a document.
    redis_client:
        Pre-built async Redis client (tests, shared pools).
    """

    def __init__(
        self,
        *,
        redis_url: str | None = None,
        key: str = "existing_ids",
        cache_file: str | Path = "cache/existing_ids.json.gz",
        drift_threshold: int = 1000,
        page_size: int = 10000,
        id_field: str = "document_id",
        failed_chunk_tolerance: float = 0.0,
        redis_client: Any = None,
    ) -> None:
        self.redis_url = redis_url
        self.key = key
        self.cache_file = Path(cache_file)
        self.drift_threshold = drift_threshold
        self.page_size = page_size
        self.id_field = id_field
        self.failed_chunk_tolerance = failed_chunk_tolerance
        self._redis = redis_client
        self._use_redis = redis_client is not None or redis_url is not None
        self._memory: set[str] = set()
        self._initialized = False
        self._init_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, cfg: Settings) -> DedupIndex:
        return cls(
            redis_url=cfg.redis_url if cfg.cache_backend == "redis" else None,
            key=cfg.redis_key,
            cache_file=cfg.cache_file,
            drift_threshold=cfg.resync_drift_threshold,
            page_size=cfg.scroll_page_size,
            id_field=cfg.dedup_id_field,
            failed_chunk_tolerance=cfg.failed_chunk_tolerance,
        )

    @property
    def backend(self) -> str:
        """``"redis"`` or ``"memory"``."""
        return "redis" if self._use_redis else "memory"

    # -- lifecycle ------------------------------------------------------------

    async def initialize(self) -> None:
        """Connect to Redis, or fall back to the checkpoint file."""
        async with self._init_lock:
            if self._initialized:
                return
            if self._use_redis:
                try:
                    if self._redis is None:
                        self._redis = aioredis.from_url(self.redis_url, decode_responses=True)
                    await self._redis.ping()
                    count = await self._redis.scard(self.key)
                    logger.info("Dedup index on Redis set %r (%d ids)", self.key, count)
                    self._initialized = True
                    return
                except (RedisError, OSError) as exc:
                    logger.warning("Redis unavailable, using file cache %s: %s", self.cache_file, exc)
                    await self._drop_redis()
            self._memory |= self._load_file()
            logger.info("Dedup index on memory set (%d ids from %s)", len(self._memory), self.cache_file)
            self._initialized = True

    async def close(self) -> None:
        """Close Redis and checkpoint the memory set when it is the active backend."""
        if self._redis is not None:
            try:
                await self._redis.aclose()
            except (RedisError, OSError) as exc:
                logger.warning("Error closing Redis connection: %s", exc)
            self._redis = None
        if not self._use_redis:
            self.save_to_file()

    async def __aenter__(self) -> DedupIndex:
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # -- operations -----------------------------------------------------------

    async def exists(self, doc_id: object) -> bool:
        await self.initialize()
        key = str(doc_id)
        if self._use_redis:
            try:
                return bool(await self._redis.sismember(self.key, key))
            except (RedisError, OSError) as exc:
                await self._degrade(exc)
        return key in self._memory

    async def add(self, doc_id: object) -> None:
        await self.add_batch([doc_id])

    async def add_batch(self, ids: Iterable[object]) -> None:
        await self.initialize()
        keys = [str(i) for i in ids]
        if not keys:
            return
        client = self._redis if self._use_redis else None
        if client is not None:
            try:
                for start in range(0, len(keys), _REDIS_BATCH):
                    # Another task may degrade the index between awaits.
                    await client.sadd(self.key, *keys[start : start + _REDIS_BATCH])
            except (RedisError, OSError) as exc:
                await self._degrade(exc)
        # Memory always gets the ids as a backup.
        self._memory.update(keys)

    async def size(self) -> int:
        await self.initialize()
        if self._use_redis:
            try:
                return int(await self._redis.scard(self.key))
            except (RedisError, OSError) as exc:
                await self._degrade(exc)
        return len(self._memory)

    async def resync(self, store: VectorStoreBase, collection: str, *, force: bool = False) -> int:
        """Rebuild membership from a full scan of *collection*.

        Runs when the local set is empty, when it drifts from the store's
        point count by more than ``drift_threshold``, or when *force* is
        set.  Ids are added page by page, so an interrupted resync leaves
        a valid partial set and the next one simply rescans.

        A document is added once the distinct ``chunk_index`` values seen
        for it cover enough of its ``total_chunks`` to pass
        ``failed_chunk_tolerance``, so a partially stored document stays
        eligible for retry just as it does after a live run.  Points
        without chunk bookkeeping count their document as complete.

        Returns
        -------
        int
            Number of documents added to the index (0 when skipped).
        """
        local = await self.size()
        remote = await store.count_points(collection)
        logger.info("Resync check: %d local ids, %d points in %r", local, remote, collection)
        if remote == 0:
            return 0
        if not force and local > 0 and abs(local - remote) <= self.drift_threshold:
            logger.info("Dedup index already in sync")
            return 0

        chunks_seen: dict[str, set[int]] = {}
        totals: dict[str, int] = {}
        eligible: set[str] = set()
        scanned = 0
        async for page in store.iter_scroll(collection, page_size=self.page_size):
            ready: set[str] = set()
            for point in page.points:
                payload = point.get("payload") or {}
                if payload.get(self.id_field) is None:
                    continue
                doc_id = str(payload[self.id_field])
                if doc_id in eligible:
                    continue
                total = payload.get("total_chunks")
                index = payload.get("chunk_index")
                if not isinstance(total, int) or total <= 0 or not isinstance(index, int):
                    ready.add(doc_id)
                    continue
                indices = chunks_seen.setdefault(doc_id, set())
                indices.add(index)
                totals[doc_id] = total
                if self._complete(len(indices), total):
                    ready.add(doc_id)
            if ready:
                await self.add_batch(ready)
                eligible |= ready
                for doc_id in ready:
                    chunks_seen.pop(doc_id, None)
            scanned += len(page.points)
            logger.debug("Resync scanned %d/%d points", scanned, remote)
        for doc_id, indices in chunks_seen.items():
            logger.info(
                "Document %s left eligible for retry: %d/%d chunks stored",
                doc_id, len(indices), totals[doc_id],
            )
        logger.info("Resync added %d ids from %d points", len(eligible), scanned)
        if not self._use_redis:
            self.save_to_file()
        return len(eligible)

    def _complete(self, stored: int, total: int) -> bool:
        missing = max(total - stored, 0)
        return missing / total <= self.failed_chunk_tolerance

    # -- file checkpoint ------------------------------------------------------

    def _load_file(self) -> set[str]:
        if not self.cache_file.exists():
            logger.info("Cache file %s does not exist yet", self.cache_file)
            return set()
        try:
            with gzip.open(self.cache_file, "rt", encoding="utf-8") as fh:
                return {str(i) for i in json.load(fh)}
        except (OSError, ValueError) as exc:
            logger.error("Could not read cache file %s, starting empty: %s", self.cache_file, exc)
            return set()

    def save_to_file(self) -> None:
        """Write the memory set as a gzip-compressed JSON array."""
        self.cache_file.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.cache_file.with_name(self.cache_file.name + ".tmp")
        with gzip.open(tmp, "wt", encoding="utf-8") as fh:
            json.dump(sorted(self._memory), fh)
        tmp.replace(self.cache_file)
        logger.info("Saved %d ids to %s", len(self._memory), self.cache_file)

    # -- internals ------------------------------------------------------------

    async def _degrade(self, exc: BaseException) -> None:
        if not self._use_redis:
            return
        logger.warning("%s", CacheBackendDegraded(f"Redis failed, continuing on memory set: {exc}"))
        self._use_redis = False
        await self._drop_redis()
        # Merge the checkpoint so the next save never shrinks it.
        self._memory |= self._load_file()

    async def _drop_redis(self) -> None:
        self._use_redis = False
        if self._redis is None:
            return
        try:
            await self._redis.aclose()
        except (RedisError, OSError):
            logger.debug("Ignoring error while closing failed Redis client", exc_info=True)
        self._redis = None
