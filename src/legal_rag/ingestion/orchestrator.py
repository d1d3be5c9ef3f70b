"""Ingestion orchestrator — dedup, chunk, embed, upsert, record.

One document moves through::

    PENDING → DEDUP_CHECKED → CHUNKED → EMBEDDING → UPSERTING → DONE

with ``SKIPPED`` when the dedup index already holds its id and ``FAILED``
when chunking or collection setup fails, when the consecutive-failure
guard abandons it, or when none of its chunks could be embedded.  Partial
embedding or upsert failures leave the document ``DONE`` with a non-zero
``failed_chunks``.

A corpus run bounds documents, embedding batches and upsert batches
independently, all with :func:`~legal_rag.concurrency.gather_bounded`.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from legal_rag.concurrency import ConsecutiveFailureGuard, gather_bounded
from legal_rag.errors import IngestError, StoreUnavailable
from legal_rag.ingestion.chunker import chunk_document
from legal_rag.ingestion.models import (
    Chunk,
    CorpusResult,
    Document,
    DocumentResult,
    DocumentState,
    EmbeddingOutcome,
    IngestOptions,
)
from legal_rag.store.models import CollectionConfig, Point

if TYPE_CHECKING:
    from legal_rag.cache.dedup import DedupIndex
    from legal_rag.ingestion.embedder import EmbeddingClient
    from legal_rag.store.base import VectorStoreBase

logger = logging.getLogger(__name__)

PointIdFactory = Callable[[Chunk], str]

# Fixed namespace so the same (document, chunk) always maps to the same point id.
POINT_NAMESPACE = uuid.UUID("6f1c9a52-3d0e-4c57-9a51-0b8e2f4d7c13")


def deterministic_point_id(chunk: Chunk) -> str:
    """UUIDv5 of ``document_id:chunk_index``; re-ingesting overwrites, never duplicates."""
    return str(uuid.uuid5(POINT_NAMESPACE, f"{chunk.document_id}:{chunk.index}"))


def random_point_id(chunk: Chunk) -> str:  # noqa: ARG001
    return str(uuid.uuid4())


def _ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


class IngestionOrchestrator:
    """Drives documents through the pipeline.

    Parameters
    ----------
    embedder:
        Batched embedding client.
    store:
        Vector-store backend.
    dedup:
        Index of already-ingested document ids.
    options:
        Default run options; each call may override them.
    point_id_factory:
        Maps a chunk to its point id.  Defaults to
        :func:`deterministic_point_id`.
    """

    def __init__(
        self,
        embedder: EmbeddingClient,
        store: VectorStoreBase,
        dedup: DedupIndex,
        *,
        options: IngestOptions | None = None,
        point_id_factory: PointIdFactory | None = None,
    ) -> None:
        self.embedder = embedder
        self.store = store
        self.dedup = dedup
        self.options = options or IngestOptions()
        self.point_id_factory = point_id_factory or deterministic_point_id
        self._ready_collections: set[str] = set()
        self._collection_lock = asyncio.Lock()

    # -- public API -----------------------------------------------------------

    async def ingest_document(self, doc: Document, options: IngestOptions | None = None) -> DocumentResult:
        """Ingest one document and return its statistics.

        Embedding and upsert failures are contained in the result; only
        chunking and collection-setup errors end the document as
        ``FAILED``.
        """
        opts = options or self.options
        result = DocumentResult(document_id=doc.id)
        started = time.perf_counter()
        try:
            await self._run(doc, opts, result)
        finally:
            result.timings["total"] = _ms(started)
        logger.info(
            "Document %s %s: chunks=%d embedded=%d upserted=%d failed=%d (%.0f ms)",
            doc.id, result.state.value, result.chunks, result.embedded,
            result.points_upserted, result.failed_chunks, result.timings["total"],
        )
        return result

    async def ingest_corpus(self, documents: Iterable[Document], options: IngestOptions | None = None) -> CorpusResult:
        """Ingest many documents with at most ``max_concurrent_docs`` in flight.

        No document failure aborts its siblings; results come back in input
        order.
        """
        opts = options or self.options
        docs = list(documents)
        started = time.perf_counter()
        logger.info(
            "Ingesting %d documents into %r (docs=%d, embed batches=%d, upserts=%d)",
            len(docs), opts.collection, opts.max_concurrent_docs,
            opts.max_concurrent_batches, opts.max_concurrent_upserts,
        )

        async def _one(doc: Document) -> DocumentResult:
            try:
                return await self.ingest_document(doc, opts)
            except Exception as exc:
                logger.exception("Unexpected error ingesting document %s", doc.id)
                return DocumentResult(document_id=doc.id, state=DocumentState.FAILED, errors=[repr(exc)])

        results = await gather_bounded(docs, _one, opts.max_concurrent_docs)
        corpus = CorpusResult(results=results, elapsed_ms=_ms(started))
        logger.info("Corpus run finished: %s", corpus.summary())
        return corpus

    # -- pipeline -------------------------------------------------------------

    async def _run(self, doc: Document, opts: IngestOptions, result: DocumentResult) -> None:
        if opts.skip_existing and await self.dedup.exists(doc.id):
            result.state = DocumentState.SKIPPED
            return
        result.state = DocumentState.DEDUP_CHECKED

        t0 = time.perf_counter()
        try:
            chunks = chunk_document(doc, opts.chunking)
        except IngestError as exc:
            self._fail(result, f"chunking failed: {exc}")
            return
        result.timings["chunk"] = _ms(t0)
        result.chunks = len(chunks)
        result.state = DocumentState.CHUNKED

        try:
            await self._ensure_collection(opts)
        except StoreUnavailable as exc:
            self._fail(result, str(exc))
            return

        if not chunks:
            result.state = DocumentState.DONE
            await self._record(doc, opts, result)
            return

        guard = ConsecutiveFailureGuard(opts.max_consecutive_failures)

        result.state = DocumentState.EMBEDDING
        t0 = time.perf_counter()
        outcomes = await self.embedder.embed_batches(
            chunks, opts.embed_batch_size, opts.max_concurrent_batches, guard=guard
        )
        result.timings["embed"] = _ms(t0)
        embedded = [o for o in outcomes if o.ok]
        result.embedded = len(embedded)
        result.failed_chunks = len(chunks) - len(embedded)
        result.errors.extend(sorted({str(o.error) for o in outcomes if o.error is not None}))
        if guard.tripped or not embedded:
            reason = "abandoned after consecutive batch failures" if guard.tripped else "no chunk could be embedded"
            self._fail(result, reason)
            return

        result.state = DocumentState.UPSERTING
        points = self.build_points(doc, embedded, total_chunks=len(chunks))
        t0 = time.perf_counter()
        report = await self.store.upsert_batches(
            opts.collection,
            points,
            opts.upsert_batch_size,
            opts.max_concurrent_upserts,
            document_id=doc.id,
            guard=guard,
        )
        result.timings["upsert"] = _ms(t0)
        result.points_upserted = report.inserted
        result.failed_chunks += report.failed
        if report.failed:
            result.errors.append(f"{report.failed} points failed to upsert at offsets {report.failed_offsets}")
        if guard.tripped:
            self._fail(result, "abandoned after consecutive batch failures")
            return

        result.state = DocumentState.DONE
        await self._record(doc, opts, result)

    def build_points(self, doc: Document, outcomes: list[EmbeddingOutcome], *, total_chunks: int) -> list[Point]:
        """Assemble one point per successfully embedded chunk."""
        indexed_at = datetime.now(timezone.utc).isoformat()
        points: list[Point] = []
        for outcome in outcomes:
            chunk = outcome.chunk
            payload: dict[str, Any] = {
                **doc.metadata,
                "document_id": doc.id,
                "chunk_index": chunk.index,
                "total_chunks": total_chunks,
                "chunk_text": chunk.text,
                "indexed_at": indexed_at,
            }
            points.append(Point(id=self.point_id_factory(chunk), vector=outcome.vector, payload=payload))
        return points

    async def _ensure_collection(self, opts: IngestOptions) -> None:
        if opts.collection in self._ready_collections:
            return
        async with self._collection_lock:
            if opts.collection in self._ready_collections:
                return
            await self.store.ensure_collection(
                CollectionConfig(name=opts.collection, vector_size=opts.vector_size, distance=opts.distance)
            )
            self._ready_collections.add(opts.collection)

    async def _record(self, doc: Document, opts: IngestOptions, result: DocumentResult) -> None:
        if result.failed_ratio > opts.failed_chunk_tolerance:
            logger.warning(
                "Document %s left eligible for retry: %d/%d chunks failed",
                doc.id, result.failed_chunks, result.chunks,
            )
            return
        await self.dedup.add(doc.id)
        result.marked_ingested = True

    @staticmethod
    def _fail(result: DocumentResult, reason: str) -> None:
        result.state = DocumentState.FAILED
        result.errors.append(reason)
        logger.error("Document %s failed: %s", result.document_id, reason)
