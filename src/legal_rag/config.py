"""Shared configuration loaded from environment / .env file."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, populated from env vars or .env file."""

    # Embedding service
    embedding_url: str = Field(
        default="http://localhost:11441/embed",
        description="Batched embedding endpoint accepting ``{'inputs': [...]}``",
    )
    target_dimension: int = Field(default=1024, description="Length every stored vector must have")

    # Vector store
    vector_store_backend: str = Field(default="qdrant", description="``qdrant`` or ``chroma``")
    qdrant_url: str = "http://localhost:6333"
    qdrant_api_key: str = ""
    chroma_host: str = "localhost"
    chroma_port: int = 8000
    collection_name: str = "jurisprudencia"
    distance_metric: str = "Cosine"

    # Chunking
    chunk_strategy: str = Field(default="separators", description="``window`` | ``separators`` | ``recursive``")
    chunk_size: int = 800
    chunk_overlap: int = 80
    chunk_separators: list[str] = Field(default_factory=lambda: ["\n\n", "\n", ". ", ", ", " "])
    boundary_tolerance: int = Field(
        default=120,
        description="How far back from the hard window end a separator may move a chunk boundary",
    )

    # Concurrency
    embedding_batch_size: int = 20
    max_concurrent_embeddings: int = 3
    upsert_batch_size: int = 50
    max_concurrent_upserts: int = 2
    max_concurrent_docs: int = 5

    # Failure policy
    request_timeout: float = 120.0
    retry_wait_seconds: float = 2.0
    failed_chunk_tolerance: float = Field(
        default=0.0,
        description="Max failed-chunk ratio for which a document is still recorded as ingested",
    )
    max_consecutive_failures: int = Field(
        default=5,
        description="Consecutive terminal batch failures after which a document is abandoned",
    )

    # Dedup cache
    cache_backend: str = Field(default="redis", description="``redis`` (with file fallback) or ``file``")
    redis_url: str = "redis://localhost:6379/3"
    redis_key: str = "existing_ids"
    cache_file: str = "cache/existing_ids.json.gz"
    resync_drift_threshold: int = 1000
    scroll_page_size: int = 10000
    dedup_id_field: str = Field(default="document_id", description="Payload key holding the document id")

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton — import `settings` wherever needed.
settings = Settings()
