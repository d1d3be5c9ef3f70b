"""
Vector store — collection setup, batched upserts, and paginated scans.

Public surface
--------------
- :class:`VectorStoreBase` — abstract backend with shared batching/retry.
- :class:`QdrantVectorStore` — default Qdrant backend (REST over httpx).
- :class:`ChromaVectorStore` — Chroma backend.
- :class:`CollectionConfig`, :class:`Distance`, :class:`Point`,
  :class:`ScrollPage`, :class:`UpsertReport` — data models.
- :func:`build_vector_store` — backend factory driven by settings.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from legal_rag.store.base import VectorStoreBase
from legal_rag.store.models import CollectionConfig, Distance, Point, ScrollPage, UpsertReport
from legal_rag.store.qdrant_store import QdrantVectorStore

if TYPE_CHECKING:
    import httpx

    from legal_rag.config import Settings

__all__ = [
    "ChromaVectorStore",
    "CollectionConfig",
    "Distance",
    "Point",
    "QdrantVectorStore",
    "ScrollPage",
    "UpsertReport",
    "VectorStoreBase",
    "build_vector_store",
]


def build_vector_store(cfg: Settings, client: httpx.AsyncClient | None = None) -> VectorStoreBase:
    """Return the backend named by ``cfg.vector_store_backend``."""
    backend = cfg.vector_store_backend.lower()
    if backend == "qdrant":
        return QdrantVectorStore(
            cfg.qdrant_url,
            client=client,
            api_key=cfg.qdrant_api_key,
            timeout=cfg.request_timeout,
            retry_wait=cfg.retry_wait_seconds,
        )
    if backend == "chroma":
        from legal_rag.store.chroma_store import ChromaVectorStore

        return ChromaVectorStore(cfg.chroma_host, cfg.chroma_port, retry_wait=cfg.retry_wait_seconds)
    raise ValueError(f"Unsupported vector_store_backend={cfg.vector_store_backend!r}")


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import ChromaVectorStore to avoid pulling in chromadb at import time."""
    if name == "ChromaVectorStore":
        from legal_rag.store.chroma_store import ChromaVectorStore

        return ChromaVectorStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
