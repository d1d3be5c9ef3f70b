"""Shared pytest configuration, in-memory fakes and fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from typing import Any

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from legal_rag.cache.dedup import DedupIndex
from legal_rag.errors import EmbedError, PayloadTooLarge, StoreUnavailable, UpsertError
from legal_rag.ingestion.embedder import EmbeddingClient
from legal_rag.retrieval.models import MetadataFilter
from legal_rag.store.base import VectorStoreBase
from legal_rag.store.models import CollectionConfig, Point, ScrollPage

DIM = 8


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


# ── Fakes ───────────────────────────────────────────────────────────────


def default_vector(text: str) -> list[float]:
    return [float(len(text)), 1.0]


class FakeEmbedder(EmbeddingClient):
    """Embedding client answering from a local function.

    Any batch containing one of *fail_markers* fails on every attempt;
    the first *transient_failures* calls fail once each.
    """

    def __init__(
        self,
        target_dimension: int = DIM,
        *,
        vector_fn: Callable[[str], list[float]] = default_vector,
        fail_markers: Sequence[str] = (),
        transient_failures: int = 0,
    ) -> None:
        super().__init__(target_dimension, retry_wait=0.0)
        self.vector_fn = vector_fn
        self.fail_markers = tuple(fail_markers)
        self.transient_failures = transient_failures
        self.calls: list[list[str]] = []

    async def _request_vectors(self, inputs: str | list[str]) -> Any:
        texts = [inputs] if isinstance(inputs, str) else list(inputs)
        self.calls.append(texts)
        await asyncio.sleep(0)
        if self.transient_failures > 0:
            self.transient_failures -= 1
            raise EmbedError("embedding service returned HTTP 503")
        if any(marker in text for text in texts for marker in self.fail_markers):
            raise EmbedError("embedding service returned HTTP 500")
        if isinstance(inputs, str):
            return self.vector_fn(inputs)
        return [self.vector_fn(t) for t in texts]


class InMemoryVectorStore(VectorStoreBase):
    """Dict-backed store with knobs for the failure modes of a real backend."""

    def __init__(
        self,
        *,
        unavailable: bool = False,
        transient_upsert_failures: int = 0,
        max_body_points: int | None = None,
        reject_documents: Sequence[str] = (),
    ) -> None:
        super().__init__(retry_wait=0.0)
        self.unavailable = unavailable
        self.transient_upsert_failures = transient_upsert_failures
        self.max_body_points = max_body_points
        self.reject_documents = set(reject_documents)
        self.collections: dict[str, CollectionConfig] = {}
        self.points: dict[str, dict[str, Point]] = {}
        self.upsert_calls: list[int] = []
        self.ensure_calls = 0

    async def ensure_collection(self, config: CollectionConfig) -> bool:
        self.ensure_calls += 1
        if self.unavailable:
            raise StoreUnavailable("vector store is down")
        if config.name in self.collections:
            return False
        self.collections[config.name] = config
        self.points.setdefault(config.name, {})
        return True

    async def upsert_points(self, collection: str, points: Sequence[Point]) -> None:
        self.upsert_calls.append(len(points))
        await asyncio.sleep(0)
        if self.max_body_points is not None and len(points) > self.max_body_points:
            raise PayloadTooLarge("too large", status_code=413)
        if self.transient_upsert_failures > 0:
            self.transient_upsert_failures -= 1
            raise UpsertError("HTTP 503", status_code=503)
        if any(p.payload.get("document_id") in self.reject_documents for p in points):
            raise UpsertError("HTTP 400", status_code=400)
        stored = self.points.setdefault(collection, {})
        for p in points:
            stored[p.id] = p

    async def scroll(self, collection: str, *, limit: int, offset: Any = None) -> ScrollPage:
        ids = sorted(self.points.get(collection, {}))
        start = offset or 0
        page = ids[start : start + limit]
        next_offset = start + limit if start + limit < len(ids) else None
        stored = self.points[collection] if page else {}
        return ScrollPage(
            points=[{"id": pid, "payload": stored[pid].payload} for pid in page],
            next_offset=next_offset,
        )

    async def count_points(self, collection: str) -> int:
        return len(self.points.get(collection, {}))

    async def search(
        self,
        collection: str,
        vector: list[float],
        *,
        k: int = 5,
        filters: list[MetadataFilter] | None = None,
        score_threshold: float | None = None,
    ) -> list[dict[str, Any]]:
        hits = []
        for point in self.points.get(collection, {}).values():
            if any(point.payload.get(f.field) != f.value for f in filters or []):
                continue
            score = sum(a * b for a, b in zip(vector, point.vector))
            if score_threshold is not None and score < score_threshold:
                continue
            hits.append({"id": point.id, "score": score, "payload": point.payload})
        hits.sort(key=lambda h: h["score"], reverse=True)
        return hits[:k]

    async def health_check(self) -> bool:
        return not self.unavailable

    def document_ids(self, collection: str) -> set[str]:
        return {p.payload["document_id"] for p in self.points.get(collection, {}).values()}


class FakeRedis:
    """Subset of ``redis.asyncio.Redis`` used by the dedup index."""

    def __init__(self, *, fail: bool = False) -> None:
        self.sets: dict[str, set[str]] = {}
        self.fail = fail
        self.closed = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("Connection refused")

    async def ping(self) -> bool:
        self._check()
        return True

    async def scard(self, key: str) -> int:
        self._check()
        return len(self.sets.get(key, set()))

    async def sismember(self, key: str, member: str) -> int:
        self._check()
        return int(member in self.sets.get(key, set()))

    async def sadd(self, key: str, *members: str) -> int:
        self._check()
        target = self.sets.setdefault(key, set())
        before = len(target)
        target.update(members)
        return len(target) - before

    async def aclose(self) -> None:
        self.closed = True


# ── Fixtures ────────────────────────────────────────────────────────────


@pytest.fixture()
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture()
def store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture()
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture()
def cache_file(tmp_path) -> Any:
    return tmp_path / "cache" / "existing_ids.json.gz"


@pytest.fixture()
def dedup(cache_file) -> DedupIndex:
    return DedupIndex(cache_file=cache_file)
