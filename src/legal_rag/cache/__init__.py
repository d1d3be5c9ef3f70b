"""Dedup cache of already-ingested document identifiers."""

from legal_rag.cache.dedup import DedupIndex

__all__ = ["DedupIndex"]
