"""Data models shared by every vector-store backend."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class Distance(str, Enum):
    """Similarity metric of a collection, spelled the way Qdrant spells it."""

    COSINE = "Cosine"
    EUCLID = "Euclid"
    DOT = "Dot"

    @classmethod
    def parse(cls, value: str | Distance) -> Distance:
        """Accept ``"cosine"``, ``"Euclidean"``, ``"dot"`` … case-insensitively."""
        if isinstance(value, Distance):
            return value
        key = value.strip().lower()
        aliases = {
            "cosine": cls.COSINE,
            "euclid": cls.EUCLID,
            "euclidean": cls.EUCLID,
            "l2": cls.EUCLID,
            "dot": cls.DOT,
            "ip": cls.DOT,
        }
        try:
            return aliases[key]
        except KeyError:
            raise ValueError(f"Unsupported distance metric: {value!r}") from None


class CollectionConfig(BaseModel):
    """Target collection and the vector layout it must have."""

    name: str
    vector_size: int = Field(gt=0)
    distance: Distance = Distance.COSINE


class Point(BaseModel):
    """One embedded chunk as stored in the vector database.

    Attributes
    ----------
    id:
        Point identifier; re-sending the same id overwrites the point.
    vector:
        Embedding of exactly the collection's vector size.
    payload:
        ``document_id``, ``chunk_index``, ``total_chunks``, ``chunk_text``
        plus the caller metadata.
    """

    id: str
    vector: list[float]
    payload: dict[str, Any] = Field(default_factory=dict)


@dataclass
class ScrollPage:
    """One page of a cursor-paginated scan."""

    points: list[dict[str, Any]]
    next_offset: Any = None


@dataclass
class UpsertReport:
    """Outcome of :meth:`VectorStoreBase.upsert_batches`."""

    inserted: int = 0
    failed: int = 0
    failed_offsets: list[int] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.inserted + self.failed
