"""Unit tests for the chunker module."""

import pytest

from legal_rag.errors import InvalidConfig
from legal_rag.ingestion.chunker import (
    chunk_document,
    split_text,
    split_text_on_separators,
    split_text_recursive,
)
from legal_rag.ingestion.models import ChunkingConfig, Document


def _reconstruct(chunks) -> str:
    text = chunks[0].text if chunks else ""
    for prev, chunk in zip(chunks, chunks[1:]):
        text += chunk.text[prev.start + len(prev.text) - chunk.start :]
    return text


def test_window_split_1700_chars() -> None:
    """1700 chars at size 800 / overlap 80 yields 800 + 800 + 260."""
    text = "".join(chr(ord("a") + i % 26) for i in range(1700))
    chunks = split_text(text, 800, 80, document_id="doc-1")
    assert [len(c.text) for c in chunks] == [800, 800, 260]
    assert [c.start for c in chunks] == [0, 720, 1440]
    assert [c.index for c in chunks] == [0, 1, 2]
    assert all(c.document_id == "doc-1" for c in chunks)
    assert chunks[1].text[:80] == chunks[0].text[-80:]
    assert _reconstruct(chunks) == text


def test_window_split_short_text_is_one_chunk() -> None:
    chunks = split_text("Artículo 1.", 800, 80)
    assert len(chunks) == 1
    assert chunks[0].text == "Artículo 1."


def test_window_split_exact_multiple_has_no_empty_tail() -> None:
    chunks = split_text("x" * 1600, 800, 0)
    assert [len(c.text) for c in chunks] == [800, 800]


def test_empty_text_yields_no_chunks() -> None:
    assert split_text("", 800, 80) == []
    assert split_text_on_separators("", 800, 80) == []
    assert split_text_recursive("", 800, 80) == []


@pytest.mark.parametrize("size,overlap", [(0, 0), (100, 100), (100, 150), (100, -1)])
def test_invalid_window_parameters(size: int, overlap: int) -> None:
    with pytest.raises(InvalidConfig):
        split_text("some text", size, overlap)


def test_chunking_config_rejects_bad_values() -> None:
    with pytest.raises(InvalidConfig):
        ChunkingConfig(chunk_size=100, overlap=100)
    with pytest.raises(InvalidConfig):
        ChunkingConfig(strategy="sentences")


def test_separator_split_prefers_paragraph_boundary() -> None:
    """The cut moves back to the paragraph break when it lies within tolerance."""
    first = "A" * 90 + "\n\n"
    text = first + "B" * 150
    chunks = split_text_on_separators(text, 100, 0, tolerance=20)
    assert chunks[0].text == first
    assert chunks[1].start == len(first)
    assert "".join(c.text for c in chunks) == text


def test_separator_split_falls_back_to_hard_cut() -> None:
    """No separator within tolerance: cut exactly at chunk_size."""
    text = "word " * 10 + "x" * 300
    chunks = split_text_on_separators(text, 100, 0, tolerance=10)
    assert len(chunks[0].text) == 100


def test_separator_split_keeps_overlap_and_covers_text() -> None:
    sentences = " ".join(f"Considerando {i}: el tribunal resuelve." for i in range(60))
    chunks = split_text_on_separators(sentences, 200, 20, tolerance=60)
    assert len(chunks) > 1
    for prev, chunk in zip(chunks, chunks[1:]):
        assert chunk.start == prev.start + len(prev.text) - 20
        assert chunk.text[:20] == prev.text[-20:]
        assert len(prev.text) <= 200
    assert _reconstruct(chunks) == sentences


def test_recursive_split_offsets_point_into_text() -> None:
    text = "\n\n".join(f"Párrafo {i}. " + "texto " * 40 for i in range(8))
    chunks = split_text_recursive(text, 300, 30, document_id="doc-r")
    assert len(chunks) > 1
    for chunk in chunks:
        assert len(chunk.text) <= 300
        assert text[chunk.start : chunk.start + len(chunk.text)] == chunk.text


def test_chunk_document_dispatches_on_strategy() -> None:
    doc = Document(id="rol-1", text="x" * 1700)
    window = chunk_document(doc, ChunkingConfig(strategy="window", chunk_size=800, overlap=80))
    assert [c.start for c in window] == [0, 720, 1440]
    assert all(c.document_id == "rol-1" for c in window)
    recursive = chunk_document(doc, ChunkingConfig(strategy="recursive", chunk_size=800, overlap=80))
    assert recursive and all(c.document_id == "rol-1" for c in recursive)
