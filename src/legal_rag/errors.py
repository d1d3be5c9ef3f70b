"""Error taxonomy for the ingestion pipeline.

Only :class:`InvalidConfig` and :class:`StoreUnavailable` abort a
document.  Embedding and upsert errors are contained at batch granularity
and folded into the per-document result; :class:`CacheBackendDegraded`
is never raised to callers, only logged.
"""

from __future__ import annotations


class IngestError(Exception):
    """Base class for every pipeline error."""


class InvalidConfig(IngestError):
    """Bad chunking, batching or concurrency parameters (rejected before any I/O)."""


class EmbedError(IngestError):
    """An embedding batch failed: network error, non-2xx status, or malformed body."""

    def __init__(self, message: str, *, offset: int | None = None) -> None:
        super().__init__(message)
        self.offset = offset


class DimensionMismatch(EmbedError):
    """The service returned a vector longer than the target dimension."""


class StoreUnavailable(IngestError):
    """The target collection could not be checked or created."""


class UpsertError(IngestError):
    """An upsert batch was rejected or could not be delivered."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PayloadTooLarge(UpsertError):
    """The store refused the batch body as too large (HTTP 413)."""


class CacheBackendDegraded(IngestError):
    """The shared dedup backend failed; the index fell back to memory."""
