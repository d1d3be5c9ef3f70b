"""Unit tests for the retrieval layer — models and SemanticRetriever."""

from __future__ import annotations

from typing import Any

import pytest

from conftest import FakeEmbedder, InMemoryVectorStore
from legal_rag.cache.dedup import DedupIndex
from legal_rag.ingestion.models import Document, IngestOptions
from legal_rag.ingestion.orchestrator import IngestionOrchestrator
from legal_rag.retrieval.models import Citation, MetadataFilter, RetrievalResult
from legal_rag.retrieval.retriever import SemanticRetriever


# ── Canned store for deterministic testing ──────────────────────────────


class CannedStore(InMemoryVectorStore):
    """Returns canned hits and records the query it received."""

    def __init__(self, hits: list[dict[str, Any]] | None = None) -> None:
        super().__init__()
        self._hits = hits or []
        self.last_query: dict[str, Any] = {}

    async def search(self, collection, vector, *, k=5, filters=None, score_threshold=None):
        self.last_query = {"collection": collection, "vector": vector, "k": k, "filters": filters}
        return self._hits[:k]


SAMPLE_HITS: list[dict[str, Any]] = [
    {
        "id": "pt-001",
        "score": 0.92,
        "payload": {
            "document_id": "rol-1234-2021",
            "chunk_index": 3,
            "total_chunks": 9,
            "chunk_text": "La Corte Suprema acoge el recurso de casación.",
            "tribunal": "Corte Suprema",
        },
    },
    {
        "id": "pt-002",
        "score": 0.87,
        "payload": {
            "document_id": "ley-19968",
            "chunk_index": 1,
            "total_chunks": 4,
            "chunk_text": "Crea los tribunales de familia.",
        },
    },
    {
        "id": "pt-003",
        "score": 0.45,
        "payload": {"chunk_text": "Texto sin identificador."},
    },
]


@pytest.fixture()
def canned_store() -> CannedStore:
    return CannedStore(hits=SAMPLE_HITS)


@pytest.fixture()
def retriever(canned_store: CannedStore) -> SemanticRetriever:
    return SemanticRetriever(FakeEmbedder(), canned_store, "juris", default_k=5)


# ── Citation model tests ───────────────────────────────────────────────


class TestCitation:
    def test_short_ref_with_chunk(self) -> None:
        c = Citation(document_id="rol-1234-2021", chunk_index=3)
        assert c.short_ref() == "[rol-1234-2021§3]"

    def test_short_ref_without_chunk(self) -> None:
        assert Citation(document_id="rol-1").short_ref() == "[rol-1§?]"

    def test_default_document_is_unknown(self) -> None:
        assert Citation().document_id == "unknown"

    def test_retrieved_at_is_set(self) -> None:
        assert Citation().retrieved_at is not None


# ── MetadataFilter tests ───────────────────────────────────────────────


class TestMetadataFilter:
    def test_equals_factory(self) -> None:
        f = MetadataFilter.equals("tribunal", "Corte Suprema")
        assert (f.field, f.operator, f.value) == ("tribunal", "eq", "Corte Suprema")

    def test_not_equals_factory(self) -> None:
        assert MetadataFilter.not_equals("estado", "derogada").operator == "ne"

    def test_one_of_factory(self) -> None:
        f = MetadataFilter.one_of("tipo", ["ley", "decreto"])
        assert f.operator == "in"
        assert f.value == ["ley", "decreto"]


class TestRetrievalResult:
    def test_str_includes_ref_and_content(self) -> None:
        r = RetrievalResult(content="Se acoge el recurso.", citation=Citation(document_id="rol-1", chunk_index=1))
        assert "[rol-1§1]" in str(r)
        assert "recurso" in str(r)


# ── SemanticRetriever tests ────────────────────────────────────────────


class TestSemanticRetriever:
    @pytest.mark.asyncio
    async def test_search_returns_cited_results(self, retriever: SemanticRetriever) -> None:
        results = await retriever.search("recurso de casación")
        assert len(results) == 3
        first = results[0]
        assert first.content.startswith("La Corte Suprema")
        assert first.citation.point_id == "pt-001"
        assert first.citation.document_id == "rol-1234-2021"
        assert (first.citation.chunk_index, first.citation.total_chunks) == (3, 9)
        assert first.citation.score == 0.92
        assert first.citation.metadata == {"tribunal": "Corte Suprema"}

    @pytest.mark.asyncio
    async def test_query_is_embedded_at_target_dimension(
        self, retriever: SemanticRetriever, canned_store: CannedStore
    ) -> None:
        await retriever.search("consulta")
        assert canned_store.last_query["collection"] == "juris"
        assert len(canned_store.last_query["vector"]) == 8

    @pytest.mark.asyncio
    async def test_explicit_k_overrides_default(self, retriever: SemanticRetriever) -> None:
        assert len(await retriever.search("anything", k=1)) == 1

    @pytest.mark.asyncio
    async def test_score_threshold_filters(self, canned_store: CannedStore) -> None:
        retriever = SemanticRetriever(FakeEmbedder(), canned_store, "juris", score_threshold=0.5)
        results = await retriever.search("query")
        assert [r.citation.point_id for r in results] == ["pt-001", "pt-002"]

    @pytest.mark.asyncio
    async def test_metadata_filters_forwarded(self, retriever: SemanticRetriever, canned_store: CannedStore) -> None:
        await retriever.search("familia", filters=[MetadataFilter.equals("tribunal", "Corte Suprema")])
        assert canned_store.last_query["filters"][0].field == "tribunal"

    @pytest.mark.asyncio
    async def test_missing_payload_fields_handled(self, retriever: SemanticRetriever) -> None:
        results = await retriever.search_by_embedding([0.1] * 8)
        last = results[-1].citation
        assert last.document_id == "unknown"
        assert last.chunk_index is None

    @pytest.mark.asyncio
    async def test_empty_store_returns_empty(self) -> None:
        retriever = SemanticRetriever(FakeEmbedder(), CannedStore(), "juris")
        assert await retriever.search("anything") == []


@pytest.mark.asyncio
async def test_search_finds_ingested_chunks(tmp_path) -> None:
    """Documents ingested through the orchestrator are searchable with filters."""
    embedder = FakeEmbedder()
    store = InMemoryVectorStore()
    dedup = DedupIndex(cache_file=tmp_path / "ids.json.gz")
    orchestrator = IngestionOrchestrator(embedder, store, dedup, options=IngestOptions(collection="juris", vector_size=8))
    await orchestrator.ingest_corpus(
        [
            Document(id="rol-1", text="Sentencia de familia.", metadata={"materia": "familia"}),
            Document(id="rol-2", text="Sentencia laboral sobre despido.", metadata={"materia": "laboral"}),
        ]
    )

    retriever = SemanticRetriever(embedder, store, "juris")
    results = await retriever.search("despido", filters=[MetadataFilter.equals("materia", "laboral")])
    assert [r.citation.document_id for r in results] == ["rol-2"]
    assert results[0].content == "Sentencia laboral sobre despido."
    assert results[0].citation.metadata["materia"] == "laboral"
