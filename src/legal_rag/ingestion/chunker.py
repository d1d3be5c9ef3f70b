"""Text chunking strategies.

Three strategies share one contract: the returned chunks are ordered,
carry their index and start offset, and together cover every character
of the source text.

* ``window`` — fixed window of ``chunk_size`` characters advancing by
  ``chunk_size - overlap``.
* ``separators`` — same window, but each boundary moves back to the
  highest-priority separator found within ``boundary_tolerance``
  characters of the hard end.  Used for normative texts whose paragraphs
  and sentences should stay intact.
* ``recursive`` — LangChain's ``RecursiveCharacterTextSplitter``.
"""

from __future__ import annotations

from collections.abc import Sequence

from langchain_text_splitters import RecursiveCharacterTextSplitter

from legal_rag.errors import InvalidConfig
from legal_rag.ingestion.models import Chunk, ChunkingConfig, Document


def _validate(chunk_size: int, overlap: int) -> None:
    if chunk_size <= 0:
        raise InvalidConfig(f"chunk_size must be > 0, got {chunk_size}")
    if not 0 <= overlap < chunk_size:
        raise InvalidConfig(f"chunk_overlap ({overlap}) must be >= 0 and < chunk_size ({chunk_size})")


def split_text(
    text: str,
    chunk_size: int,
    overlap: int = 0,
    *,
    document_id: str = "",
) -> list[Chunk]:
    """Split *text* with a hard sliding window.

    Parameters
    ----------
    text:
        Source text.  Empty text yields an empty list.
    chunk_size:
        Maximum number of characters per chunk.
    overlap:
        Number of characters shared by consecutive chunks.
    document_id:
        Identifier stamped on every chunk.

    Returns
    -------
    list[Chunk]
        Chunks in text order; only the last one may be shorter than
        *chunk_size*.
    """
    _validate(chunk_size, overlap)
    step = chunk_size - overlap
    chunks: list[Chunk] = []
    start = 0
    while start < len(text):
        end = min(start + chunk_size, len(text))
        chunks.append(Chunk(document_id=document_id, index=len(chunks), text=text[start:end], start=start))
        if end == len(text):
            break
        start += step
    return chunks


def _find_boundary(text: str, start: int, hard_end: int, separators: Sequence[str], tolerance: int, overlap: int) -> int:
    """Return the cut position for the window ``[start, hard_end)``.

    The cut lands right after a separator, never earlier than
    ``hard_end - tolerance`` and never at or before ``start + overlap`` so
    the next window still advances.
    """
    floor = max(hard_end - tolerance, start + overlap + 1)
    for sep in separators:
        if not sep:
            continue
        pos = text.rfind(sep, floor, hard_end)
        if pos != -1 and pos + len(sep) <= hard_end:
            return pos + len(sep)
    return hard_end


def split_text_on_separators(
    text: str,
    chunk_size: int,
    overlap: int = 0,
    *,
    separators: Sequence[str] = ("\n\n", "\n", ". ", ", ", " "),
    tolerance: int = 120,
    document_id: str = "",
) -> list[Chunk]:
    """Split *text* preferring natural boundaries near the window end.

    When none of *separators* occurs in the last *tolerance* characters of
    a window, the window is cut hard at ``chunk_size`` as in
    :func:`split_text`.  Each chunk after the first starts *overlap*
    characters before the previous cut.
    """
    _validate(chunk_size, overlap)
    if tolerance < 0:
        raise InvalidConfig(f"boundary_tolerance must be >= 0, got {tolerance}")
    chunks: list[Chunk] = []
    start = 0
    while start < len(text):
        hard_end = start + chunk_size
        if hard_end >= len(text):
            end = len(text)
        else:
            end = _find_boundary(text, start, hard_end, separators, tolerance, overlap)
        chunks.append(Chunk(document_id=document_id, index=len(chunks), text=text[start:end], start=start))
        if end == len(text):
            break
        start = end - overlap
    return chunks


def split_text_recursive(
    text: str,
    chunk_size: int,
    overlap: int = 0,
    *,
    separators: Sequence[str] = ("\n\n", "\n", ". ", ", ", " "),
    document_id: str = "",
) -> list[Chunk]:
    """Split *text* with LangChain's recursive character splitter.

    Whitespace around chunks is stripped by the splitter, so this strategy
    does not reproduce the text byte-for-byte; offsets still point at each
    chunk's first character.
    """
    _validate(chunk_size, overlap)
    if not text:
        return []
    splitter = RecursiveCharacterTextSplitter(
        chunk_size=chunk_size,
        chunk_overlap=overlap,
        length_function=len,
        separators=[*separators, ""],
        add_start_index=True,
    )
    docs = splitter.create_documents([text])
    return [
        Chunk(
            document_id=document_id,
            index=i,
            text=doc.page_content,
            start=max(doc.metadata.get("start_index", 0), 0),
        )
        for i, doc in enumerate(docs)
    ]


def chunk_document(document: Document, config: ChunkingConfig) -> list[Chunk]:
    """Split *document* using the strategy named in *config*."""
    if config.strategy == "window":
        return split_text(document.text, config.chunk_size, config.overlap, document_id=document.id)
    if config.strategy == "separators":
        return split_text_on_separators(
            document.text,
            config.chunk_size,
            config.overlap,
            separators=config.separators,
            tolerance=config.boundary_tolerance,
            document_id=document.id,
        )
    if config.strategy == "recursive":
        return split_text_recursive(
            document.text,
            config.chunk_size,
            config.overlap,
            separators=config.separators,
            document_id=document.id,
        )
    raise InvalidConfig(f"Unknown chunk strategy: {config.strategy!r}")
