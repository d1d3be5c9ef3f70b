"""Document loaders — turn extracted-text files into :class:`Document` objects."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from legal_rag.ingestion.models import Document

logger = logging.getLogger(__name__)

ID_KEYS = ("id", "document_id", "idSentence", "idNorm")
TEXT_KEYS = ("text", "planeText", "plainText")
TEXT_SUFFIXES = (".txt", ".md")


def _first(obj: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if obj.get(key) not in (None, ""):
            return obj[key]
    return None


def load_json_document(path: str | Path) -> Document | None:
    """Load one JSON record produced by the extraction step.

    Recognised shape::

        {"id" | "idSentence" | "idNorm": ..., "text" | "planeText": "...",
         "metadata": {...}}

    Without a ``metadata`` object, the remaining scalar top-level fields
    become the metadata.  The file stem is the fallback id.  Returns
    ``None`` for records without text.
    """
    path = Path(path)
    obj = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(obj, dict):
        raise ValueError(f"{path}: expected a JSON object, got {type(obj).__name__}")
    text = _first(obj, TEXT_KEYS)
    if not isinstance(text, str) or not text.strip():
        return None
    doc_id = _first(obj, ID_KEYS)
    metadata = obj.get("metadata")
    if not isinstance(metadata, dict):
        skip = {*ID_KEYS, *TEXT_KEYS, "metadata"}
        metadata = {k: v for k, v in obj.items() if k not in skip and isinstance(v, (str, int, float, bool))}
    return Document(
        id=str(doc_id) if doc_id is not None else path.stem,
        text=text,
        metadata={**metadata, "source": path.name},
    )


def load_text_document(path: str | Path) -> Document | None:
    """Load a plain-text or Markdown file; its stem becomes the id."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return None
    return Document(id=path.stem, text=text, metadata={"source": path.name})


def load_directory(path: str | Path, glob: str = "**/*") -> list[Document]:
    """Recursively load all supported documents from *path*.

    Parameters
    ----------
    path:
        Root directory containing extracted documents.
    glob:
        File-matching pattern; ``.json``, ``.txt`` and ``.md`` files are read.

    Returns
    -------
    list[Document]
        Documents sorted by file path.  Empty or unreadable files are
        skipped with a warning.
    """
    root = Path(path)
    if not root.is_dir():
        raise FileNotFoundError(f"Document directory does not exist: {root}")
    documents: list[Document] = []
    for fpath in sorted(p for p in root.glob(glob) if p.is_file()):
        suffix = fpath.suffix.lower()
        try:
            if suffix == ".json":
                doc = load_json_document(fpath)
            elif suffix in TEXT_SUFFIXES:
                doc = load_text_document(fpath)
            else:
                continue
        except (OSError, ValueError) as exc:
            logger.warning("Skipping %s: %s", fpath, exc)
            continue
        if doc is None:
            logger.warning("Skipping %s: no text", fpath)
            continue
        documents.append(doc)
    logger.info("Loaded %d documents from %s", len(documents), root)
    return documents
