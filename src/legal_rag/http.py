"""Shared ``httpx`` client for the embedding service and the Qdrant backend."""

from __future__ import annotations

import logging

import httpx

from legal_rag.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


def pool_size(cfg: Settings) -> int:
    """Connections needed so the pipeline never queues on its own pool.

    Embedding and upsert bounds apply per document, so the worst case is
    every in-flight document saturating both of its inner bounds at once.
    """
    per_document = cfg.max_concurrent_embeddings + cfg.max_concurrent_upserts
    return cfg.max_concurrent_docs * per_document + 2


def create_http_client(
    cfg: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Build the pooled ``httpx.AsyncClient`` shared by all remote collaborators."""
    cfg = cfg or default_settings
    size = pool_size(cfg)
    limits = httpx.Limits(max_connections=size, max_keepalive_connections=size)
    logger.debug("HTTP pool sized to %d connections", size)
    return httpx.AsyncClient(
        timeout=httpx.Timeout(cfg.request_timeout, connect=10.0),
        limits=limits,
        headers={"Content-Type": "application/json"},
        transport=transport,
    )
