"""Chroma implementation of the vector-store abstraction.

``chromadb``'s HTTP client is synchronous, so every call runs in a worker
thread via :func:`asyncio.to_thread`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

import chromadb

from legal_rag.errors import StoreUnavailable, UpsertError
from legal_rag.retrieval.models import MetadataFilter
from legal_rag.store.base import VectorStoreBase
from legal_rag.store.models import CollectionConfig, Distance, Point, ScrollPage

logger = logging.getLogger(__name__)

_SPACE = {Distance.COSINE: "cosine", Distance.EUCLID: "l2", Distance.DOT: "ip"}


def _build_chroma_where(filters: list[MetadataFilter]) -> dict[str, Any] | None:
    """Convert a list of :class:`MetadataFilter` to Chroma ``where`` syntax."""
    if not filters:
        return None

    _OP_MAP = {
        "eq": "$eq",
        "ne": "$ne",
        "gt": "$gt",
        "gte": "$gte",
        "lt": "$lt",
        "lte": "$lte",
        "in": "$in",
        "nin": "$nin",
    }

    clauses: list[dict[str, Any]] = []
    for f in filters:
        chroma_op = _OP_MAP.get(f.operator)
        if chroma_op is None:
            raise ValueError(f"Unsupported filter operator: {f.operator!r}")
        clauses.append({f.field: {chroma_op: f.value}})

    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def _flatten_payload(payload: dict[str, Any]) -> dict[str, Any]:
    # Chroma metadata values must be flat str/int/float/bool; chunk text is stored as the document.
    return {
        k: v
        for k, v in payload.items()
        if k != "chunk_text" and isinstance(v, (str, int, float, bool))
    }


class ChromaVectorStore(VectorStoreBase):
    """Chroma-backed vector store.

    Parameters
    ----------
    host:
        Chroma server hostname.
    port:
        Chroma server port.
    client:
        Pre-built ``chromadb`` client (tests, embedded mode).
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 8000,
        *,
        client: Any = None,
        max_attempts: int = 2,
        retry_wait: float = 1.0,
    ) -> None:
        super().__init__(max_attempts=max_attempts, retry_wait=retry_wait)
        self._host = host
        self._port = port
        self._client = client if client is not None else chromadb.HttpClient(host=host, port=port)
        self._collections: dict[str, Any] = {}

    async def _collection(self, name: str) -> Any:
        if name not in self._collections:
            self._collections[name] = await asyncio.to_thread(self._client.get_collection, name)
        return self._collections[name]

    # -- VectorStoreBase overrides --------------------------------------------

    async def ensure_collection(self, config: CollectionConfig) -> bool:
        try:
            listed = await asyncio.to_thread(self._client.list_collections)
            # chromadb < 0.6 lists Collection objects, newer versions list names.
            names = {getattr(c, "name", c) for c in listed}
            if config.name in names:
                logger.debug("Collection %r already exists", config.name)
                return False
            logger.info("Creating collection %r (distance=%s)", config.name, config.distance.value)
            self._collections[config.name] = await asyncio.to_thread(
                self._client.create_collection,
                name=config.name,
                metadata={"hnsw:space": _SPACE[config.distance]},
            )
            return True
        except Exception as exc:
            raise StoreUnavailable(f"Chroma collection setup for {config.name!r} failed: {exc!r}") from exc

    async def upsert_points(self, collection: str, points: Sequence[Point]) -> None:
        try:
            coll = await self._collection(collection)
            await asyncio.to_thread(
                coll.upsert,
                ids=[p.id for p in points],
                embeddings=[p.vector for p in points],
                documents=[str(p.payload.get("chunk_text", "")) for p in points],
                metadatas=[_flatten_payload(p.payload) for p in points],
            )
        except Exception as exc:
            raise UpsertError(f"Chroma upsert of {len(points)} points failed: {exc!r}") from exc

    async def scroll(self, collection: str, *, limit: int, offset: Any = None) -> ScrollPage:
        coll = await self._collection(collection)
        start = int(offset or 0)
        result = await asyncio.to_thread(coll.get, limit=limit, offset=start, include=["metadatas"])
        ids = result.get("ids") or []
        metas = result.get("metadatas") or [{}] * len(ids)
        points = [{"id": pid, "payload": meta or {}} for pid, meta in zip(ids, metas)]
        next_offset = start + len(ids) if len(ids) == limit else None
        return ScrollPage(points=points, next_offset=next_offset)

    async def count_points(self, collection: str) -> int:
        coll = await self._collection(collection)
        return int(await asyncio.to_thread(coll.count))

    async def search(
        self,
        collection: str,
        vector: list[float],
        *,
        k: int = 5,
        filters: list[MetadataFilter] | None = None,
        score_threshold: float | None = None,
    ) -> list[dict[str, Any]]:
        coll = await self._collection(collection)
        where = _build_chroma_where(filters) if filters else None
        results = await asyncio.to_thread(
            coll.query,
            query_embeddings=[vector],
            n_results=k,
            where=where,
            include=["documents", "metadatas", "distances"],
        )

        hits: list[dict[str, Any]] = []
        ids = results.get("ids", [[]])[0]
        docs = results.get("documents", [[]])[0]
        metas = results.get("metadatas", [[]])[0]
        distances = results.get("distances", [[]])[0]

        for point_id, content, meta, dist in zip(ids, docs, metas, distances):
            # Chroma returns distances; convert to a 0-1 similarity score.
            score = 1.0 / (1.0 + dist)
            if score_threshold is not None and score < score_threshold:
                continue
            hits.append({"id": point_id, "score": score, "payload": {**(meta or {}), "chunk_text": content or ""}})
        return hits

    async def health_check(self) -> bool:
        try:
            await asyncio.to_thread(self._client.heartbeat)
            return True
        except Exception:
            logger.warning("Chroma health-check failed", exc_info=True)
            return False
