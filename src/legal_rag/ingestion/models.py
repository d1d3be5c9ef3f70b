"""Domain models for documents, chunks, and ingestion outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from legal_rag.errors import EmbedError, InvalidConfig
from legal_rag.store.models import Distance

if TYPE_CHECKING:
    from legal_rag.config import Settings


class Document(BaseModel):
    """A source document handed to the pipeline.  Never mutated."""

    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class Chunk(BaseModel):
    """A contiguous slice of a document's text.

    ``index`` is the chunk's ordinal within the document and is what ties
    an embedding vector back to its text once batches complete out of
    order.  ``start`` is the character offset in the source text.
    """

    model_config = ConfigDict(frozen=True)

    document_id: str
    index: int = Field(ge=0)
    text: str
    start: int = Field(default=0, ge=0)


@dataclass
class EmbeddingOutcome:
    """Per-chunk result of :meth:`EmbeddingClient.embed_batches`."""

    chunk: Chunk
    vector: list[float] | None = None
    error: EmbedError | None = None

    @property
    def ok(self) -> bool:
        return self.vector is not None and self.error is None


class ChunkingConfig(BaseModel):
    """How a document is cut into chunks.

    Attributes
    ----------
    strategy:
        ``window`` (hard character window), ``separators`` (window whose
        boundary moves back to a preferred separator), or ``recursive``
        (LangChain's recursive character splitter).
    chunk_size:
        Window length in characters.
    overlap:
        Characters shared by consecutive chunks; ``0 <= overlap < chunk_size``.
    separators:
        Preferred boundaries, highest priority first.
    boundary_tolerance:
        Maximum distance a boundary may move back from the hard window end.
    """

    strategy: str = "window"
    chunk_size: int = 800
    overlap: int = 80
    separators: list[str] = Field(default_factory=lambda: ["\n\n", "\n", ". ", ", ", " "])
    boundary_tolerance: int = 120

    @model_validator(mode="after")
    def _check(self) -> ChunkingConfig:
        if self.strategy not in ("window", "separators", "recursive"):
            raise InvalidConfig(f"Unknown chunk strategy: {self.strategy!r}")
        if self.chunk_size <= 0:
            raise InvalidConfig(f"chunk_size must be > 0, got {self.chunk_size}")
        if not 0 <= self.overlap < self.chunk_size:
            raise InvalidConfig(
                f"chunk_overlap ({self.overlap}) must be >= 0 and < chunk_size ({self.chunk_size})"
            )
        if self.boundary_tolerance < 0:
            raise InvalidConfig(f"boundary_tolerance must be >= 0, got {self.boundary_tolerance}")
        return self


class IngestOptions(BaseModel):
    """Per-run knobs for :class:`~legal_rag.ingestion.orchestrator.IngestionOrchestrator`.

    Invalid combinations raise :class:`~legal_rag.errors.InvalidConfig` at
    construction time, before any request is made.
    """

    collection: str = "jurisprudencia"
    vector_size: int = 1024
    distance: Distance = Distance.COSINE
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    embed_batch_size: int = 20
    max_concurrent_batches: int = 3
    upsert_batch_size: int = 50
    max_concurrent_upserts: int = 2
    max_concurrent_docs: int = 5
    failed_chunk_tolerance: float = 0.0
    max_consecutive_failures: int = 5
    skip_existing: bool = True

    @model_validator(mode="after")
    def _check(self) -> IngestOptions:
        for name in (
            "vector_size",
            "embed_batch_size",
            "max_concurrent_batches",
            "upsert_batch_size",
            "max_concurrent_upserts",
            "max_concurrent_docs",
        ):
            value = getattr(self, name)
            if value <= 0:
                raise InvalidConfig(f"{name} must be > 0, got {value}")
        if not 0.0 <= self.failed_chunk_tolerance <= 1.0:
            raise InvalidConfig(
                f"failed_chunk_tolerance must be within [0, 1], got {self.failed_chunk_tolerance}"
            )
        if self.max_consecutive_failures < 0:
            raise InvalidConfig("max_consecutive_failures must be >= 0")
        return self

    @classmethod
    def from_settings(cls, cfg: Settings, **overrides: Any) -> IngestOptions:
        """Build options from :class:`~legal_rag.config.Settings`."""
        try:
            distance = Distance.parse(cfg.distance_metric)
        except ValueError as exc:
            raise InvalidConfig(str(exc)) from exc
        values: dict[str, Any] = {
            "collection": cfg.collection_name,
            "vector_size": cfg.target_dimension,
            "distance": distance,
            "chunking": ChunkingConfig(
                strategy=cfg.chunk_strategy,
                chunk_size=cfg.chunk_size,
                overlap=cfg.chunk_overlap,
                separators=cfg.chunk_separators,
                boundary_tolerance=cfg.boundary_tolerance,
            ),
            "embed_batch_size": cfg.embedding_batch_size,
            "max_concurrent_batches": cfg.max_concurrent_embeddings,
            "upsert_batch_size": cfg.upsert_batch_size,
            "max_concurrent_upserts": cfg.max_concurrent_upserts,
            "max_concurrent_docs": cfg.max_concurrent_docs,
            "failed_chunk_tolerance": cfg.failed_chunk_tolerance,
            "max_consecutive_failures": cfg.max_consecutive_failures,
        }
        values.update(overrides)
        return cls(**values)


class DocumentState(str, Enum):
    PENDING = "PENDING"
    DEDUP_CHECKED = "DEDUP_CHECKED"
    CHUNKED = "CHUNKED"
    EMBEDDING = "EMBEDDING"
    UPSERTING = "UPSERTING"
    DONE = "DONE"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


@dataclass
class DocumentResult:
    """Statistics for one document run.

    ``failed_chunks`` counts chunks that produced no stored point, whether
    the embedding or the upsert failed.  ``timings`` holds milliseconds
    per phase (``chunk``, ``embed``, ``upsert``, ``total``).
    """

    document_id: str
    state: DocumentState = DocumentState.PENDING
    chunks: int = 0
    embedded: int = 0
    points_upserted: int = 0
    failed_chunks: int = 0
    marked_ingested: bool = False
    timings: dict[str, float] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    @property
    def failed_ratio(self) -> float:
        return self.failed_chunks / self.chunks if self.chunks else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "document_id": self.document_id,
            "state": self.state.value,
            "chunks": self.chunks,
            "embedded": self.embedded,
            "points_upserted": self.points_upserted,
            "failed_chunks": self.failed_chunks,
            "marked_ingested": self.marked_ingested,
            "timings": self.timings,
            "errors": self.errors,
        }


@dataclass
class CorpusResult:
    """Aggregate statistics over an :meth:`ingest_corpus` run."""

    results: list[DocumentResult] = field(default_factory=list)
    elapsed_ms: float = 0.0

    def count(self, state: DocumentState) -> int:
        return sum(1 for r in self.results if r.state is state)

    @property
    def done(self) -> int:
        return self.count(DocumentState.DONE)

    @property
    def skipped(self) -> int:
        return self.count(DocumentState.SKIPPED)

    @property
    def failed(self) -> int:
        return self.count(DocumentState.FAILED)

    @property
    def points_upserted(self) -> int:
        return sum(r.points_upserted for r in self.results)

    @property
    def failed_chunks(self) -> int:
        return sum(r.failed_chunks for r in self.results)

    def summary(self) -> dict[str, Any]:
        return {
            "documents": len(self.results),
            "done": self.done,
            "skipped": self.skipped,
            "failed": self.failed,
            "chunks": sum(r.chunks for r in self.results),
            "points_upserted": self.points_upserted,
            "failed_chunks": self.failed_chunks,
            "elapsed_ms": round(self.elapsed_ms, 1),
        }
