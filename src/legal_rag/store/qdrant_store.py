"""Qdrant implementation of the vector-store abstraction (REST API over httpx)."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import httpx

from legal_rag.errors import PayloadTooLarge, StoreUnavailable, UpsertError
from legal_rag.retrieval.models import MetadataFilter
from legal_rag.store.base import VectorStoreBase
from legal_rag.store.models import CollectionConfig, Point, ScrollPage

logger = logging.getLogger(__name__)


def _build_qdrant_filter(filters: list[MetadataFilter]) -> dict[str, Any] | None:
    """Convert a list of :class:`MetadataFilter` to Qdrant ``filter`` syntax."""
    if not filters:
        return None

    _RANGE_OPS = {"gt": "gt", "gte": "gte", "lt": "lt", "lte": "lte"}

    must: list[dict[str, Any]] = []
    must_not: list[dict[str, Any]] = []
    for f in filters:
        if f.operator == "eq":
            must.append({"key": f.field, "match": {"value": f.value}})
        elif f.operator == "ne":
            must_not.append({"key": f.field, "match": {"value": f.value}})
        elif f.operator == "in":
            must.append({"key": f.field, "match": {"any": list(f.value)}})
        elif f.operator == "nin":
            must_not.append({"key": f.field, "match": {"any": list(f.value)}})
        elif f.operator in _RANGE_OPS:
            must.append({"key": f.field, "range": {_RANGE_OPS[f.operator]: f.value}})
        else:
            raise ValueError(f"Unsupported filter operator: {f.operator!r}")

    clause: dict[str, Any] = {}
    if must:
        clause["must"] = must
    if must_not:
        clause["must_not"] = must_not
    return clause


def _json_body(response: httpx.Response) -> dict[str, Any] | None:
    """Decoded JSON object of *response*, or ``None`` for any other body."""
    try:
        body = response.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


class QdrantVectorStore(VectorStoreBase):
    """Qdrant-backed vector store.

    Parameters
    ----------
    url:
        Qdrant base URL, e.g. ``http://localhost:6333``.
    client:
        Shared ``httpx.AsyncClient``; one is created (and owned) if omitted.
    api_key:
        Sent as the ``api-key`` header when set.
    """

    def __init__(
        self,
        url: str,
        *,
        client: httpx.AsyncClient | None = None,
        api_key: str = "",
        timeout: float = 120.0,
        max_attempts: int = 2,
        retry_wait: float = 1.0,
    ) -> None:
        super().__init__(max_attempts=max_attempts, retry_wait=retry_wait)
        self.url = url.rstrip("/")
        self._headers = {"api-key": api_key} if api_key else {}
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def _collection_url(self, collection: str, suffix: str = "") -> str:
        return f"{self.url}/collections/{collection}{suffix}"

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        return await self._client.request(method, url, headers=self._headers, **kwargs)

    # -- VectorStoreBase overrides --------------------------------------------

    async def collection_info(self, collection: str) -> dict[str, Any] | None:
        """Return the collection description, or ``None`` when it does not exist."""
        try:
            response = await self._request("GET", self._collection_url(collection))
        except httpx.HTTPError as exc:
            raise StoreUnavailable(f"Cannot reach Qdrant at {self.url}: {exc!r}") from exc
        if response.status_code == 404:
            return None
        if response.is_error:
            raise StoreUnavailable(f"Checking collection {collection!r} returned HTTP {response.status_code}")
        body = _json_body(response)
        if body is None:
            raise StoreUnavailable(
                f"Checking collection {collection!r} returned a non-JSON body: {response.text[:200]!r}"
            )
        return body.get("result") or {}

    async def ensure_collection(self, config: CollectionConfig) -> bool:
        info = await self.collection_info(config.name)
        if info is not None:
            vectors = info.get("config", {}).get("params", {}).get("vectors", {})
            size = vectors.get("size") if isinstance(vectors, dict) else None
            if size is not None and size != config.vector_size:
                logger.warning(
                    "Collection %r has vector size %s, expected %d",
                    config.name, size, config.vector_size,
                )
            logger.debug("Collection %r already exists", config.name)
            return False

        logger.info("Creating collection %r (size=%d, distance=%s)", config.name, config.vector_size, config.distance.value)
        body = {"vectors": {"size": config.vector_size, "distance": config.distance.value}}
        try:
            response = await self._request("PUT", self._collection_url(config.name), json=body)
        except httpx.HTTPError as exc:
            raise StoreUnavailable(f"Creating collection {config.name!r} failed: {exc!r}") from exc
        if response.status_code == 409:
            # Another worker created it between our check and our create.
            return False
        if response.is_error:
            raise StoreUnavailable(f"Creating collection {config.name!r} returned HTTP {response.status_code}")
        return True

    async def upsert_points(self, collection: str, points: Sequence[Point]) -> None:
        body = {"points": [p.model_dump() for p in points]}
        try:
            response = await self._request(
                "PUT", self._collection_url(collection, "/points"), params={"wait": "true"}, json=body
            )
        except httpx.HTTPError as exc:
            raise UpsertError(f"Upsert request failed: {exc!r}") from exc
        if response.status_code == 413:
            raise PayloadTooLarge(f"Upsert of {len(points)} points rejected as too large", status_code=413)
        if response.is_error:
            raise UpsertError(
                f"Upsert returned HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        body = _json_body(response)
        if body is None or body.get("status") != "ok":
            raise UpsertError(
                f"Unexpected Qdrant upsert response: {response.text[:200]!r}", status_code=response.status_code
            )

    async def scroll(self, collection: str, *, limit: int, offset: Any = None) -> ScrollPage:
        body: dict[str, Any] = {"limit": limit, "with_payload": True, "with_vector": False}
        if offset is not None:
            body["offset"] = offset
        response = await self._request("POST", self._collection_url(collection, "/points/scroll"), json=body)
        response.raise_for_status()
        result = response.json().get("result") or {}
        return ScrollPage(points=result.get("points") or [], next_offset=result.get("next_page_offset"))

    async def count_points(self, collection: str) -> int:
        response = await self._request(
            "POST", self._collection_url(collection, "/points/count"), json={"exact": True}
        )
        if response.status_code == 404:
            return 0
        response.raise_for_status()
        return int((response.json().get("result") or {}).get("count", 0))

    async def search(
        self,
        collection: str,
        vector: list[float],
        *,
        k: int = 5,
        filters: list[MetadataFilter] | None = None,
        score_threshold: float | None = None,
    ) -> list[dict[str, Any]]:
        body: dict[str, Any] = {"vector": vector, "limit": k, "with_payload": True, "with_vector": False}
        qdrant_filter = _build_qdrant_filter(filters) if filters else None
        if qdrant_filter:
            body["filter"] = qdrant_filter
        if score_threshold is not None:
            body["score_threshold"] = score_threshold
        response = await self._request("POST", self._collection_url(collection, "/points/search"), json=body)
        response.raise_for_status()
        return [
            {"id": hit.get("id"), "score": hit.get("score"), "payload": hit.get("payload") or {}}
            for hit in response.json().get("result") or []
        ]

    async def health_check(self) -> bool:
        try:
            response = await self._request("GET", f"{self.url}/readyz")
            return response.status_code == 200
        except httpx.HTTPError:
            logger.warning("Qdrant health-check failed", exc_info=True)
            return False

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
