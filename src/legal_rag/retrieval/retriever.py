"""Semantic retriever — payload-aware search with citation tracking.

Usage::

    retriever = SemanticRetriever(embedder, store, collection="jurisprudencia")
    results = await retriever.search("pensión alimenticia hijos menores", k=5)
    for r in results:
        print(r.citation.short_ref(), r.content[:80])
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from legal_rag.retrieval.models import Citation, MetadataFilter, RetrievalResult

if TYPE_CHECKING:
    from legal_rag.ingestion.embedder import EmbeddingClient
    from legal_rag.store.base import VectorStoreBase

logger = logging.getLogger(__name__)

_RESERVED = ("document_id", "chunk_index", "total_chunks", "chunk_text")


class SemanticRetriever:
    """High-level retriever over any :class:`VectorStoreBase`.

    Parameters
    ----------
    embedder:
        Client used to embed the query text.
    store:
        A concrete vector-store backend.
    collection:
        Collection to search.
    default_k:
        Default number of results returned by :meth:`search`.
    score_threshold:
        Minimum similarity score; results below this are discarded.
    """

    def __init__(
        self,
        embedder: EmbeddingClient,
        store: VectorStoreBase,
        collection: str,
        *,
        default_k: int = 5,
        score_threshold: float = 0.0,
    ) -> None:
        self._embedder = embedder
        self._store = store
        self.collection = collection
        self.default_k = default_k
        self.score_threshold = score_threshold

    # -- public API -----------------------------------------------------------

    async def search(
        self,
        query: str,
        *,
        k: int | None = None,
        filters: list[MetadataFilter] | None = None,
    ) -> list[RetrievalResult]:
        """Embed *query*, search the collection, and return cited results."""
        embedding = await self._embedder.embed_query(query)
        return await self.search_by_embedding(embedding, k=k, filters=filters)

    async def search_by_embedding(
        self,
        embedding: list[float],
        *,
        k: int | None = None,
        filters: list[MetadataFilter] | None = None,
    ) -> list[RetrievalResult]:
        """Same as :meth:`search` but accepts a pre-computed embedding."""
        k = k or self.default_k
        raw_hits = await self._store.search(self.collection, embedding, k=k, filters=filters)
        return self._to_results(raw_hits)

    # -- internals ------------------------------------------------------------

    def _to_results(self, raw_hits: list[dict[str, Any]]) -> list[RetrievalResult]:
        results: list[RetrievalResult] = []
        for hit in raw_hits:
            score = hit.get("score")
            if score is not None and score < self.score_threshold:
                continue

            payload = hit.get("payload") or {}
            citation = Citation(
                point_id=str(hit["id"]) if hit.get("id") is not None else None,
                document_id=str(payload.get("document_id", "unknown")),
                chunk_index=payload.get("chunk_index"),
                total_chunks=payload.get("total_chunks"),
                score=score,
                metadata={k: v for k, v in payload.items() if k not in _RESERVED},
            )
            results.append(RetrievalResult(content=payload.get("chunk_text", ""), citation=citation))
        logger.debug("Search returned %d/%d hits above threshold", len(results), len(raw_hits))
        return results
