"""Embedding clients.

:class:`EmbeddingClient` owns everything that does not depend on the wire
protocol: batching, the concurrency bound, the single retry, dimension
normalisation and index-based re-association of vectors with chunks.
Backends only implement :meth:`EmbeddingClient._request_vectors`, one
remote call for a list of texts.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

from legal_rag.concurrency import ConsecutiveFailureGuard, batched, gather_bounded
from legal_rag.errors import DimensionMismatch, EmbedError
from legal_rag.ingestion.models import Chunk, EmbeddingOutcome

logger = logging.getLogger(__name__)


def _is_retryable(exc: BaseException) -> bool:
    # A too-long vector comes back identically on every attempt.
    return isinstance(exc, EmbedError) and not isinstance(exc, DimensionMismatch)


def normalise_vectors(payload: Any, expected: int) -> list[list[Any]]:
    """Coerce both documented response shapes to one vector per text.

    The service answers ``[[...], [...]]`` for a list of inputs and may
    answer a flat ``[...]`` for a single string input.
    """
    if not isinstance(payload, list) or not payload:
        raise EmbedError(f"Malformed embedding response: expected a non-empty list, got {type(payload).__name__}")
    if all(isinstance(row, list) for row in payload):
        vectors = payload
    elif all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in payload):
        vectors = [payload]
    else:
        raise EmbedError("Malformed embedding response: mixed or non-numeric entries")
    if len(vectors) != expected:
        raise EmbedError(f"Embedding response has {len(vectors)} vectors for {expected} inputs")
    return vectors


def fit_dimension(vector: Sequence[Any], target: int) -> list[float]:
    """Zero-pad *vector* to *target*; reject empty or longer vectors."""
    if len(vector) == 0:
        raise EmbedError("Empty embedding vector")
    if len(vector) > target:
        raise DimensionMismatch(f"Embedding has dimension {len(vector)}, expected at most {target}")
    try:
        values = [float(v) for v in vector]
    except (TypeError, ValueError) as exc:
        raise EmbedError(f"Non-numeric value in embedding: {exc}") from exc
    if len(values) < target:
        values.extend([0.0] * (target - len(values)))
    return values


class EmbeddingClient(ABC):
    """Backend-agnostic batched embedding client.

    Parameters
    ----------
    target_dimension:
        Length every returned vector must have after padding.
    max_attempts:
        Attempts per batch; the default of 2 is one retry.
    retry_wait:
        Seconds to wait before the retry.
    """

    def __init__(self, target_dimension: int, *, max_attempts: int = 2, retry_wait: float = 1.0) -> None:
        self.target_dimension = target_dimension
        self.max_attempts = max_attempts
        self.retry_wait = retry_wait

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    async def _request_vectors(self, inputs: str | list[str]) -> Any:
        """Send one remote call and return the decoded response body.

        Transport failures and non-2xx responses must be raised as
        :class:`~legal_rag.errors.EmbedError`.
        """
        ...

    # -- public API -----------------------------------------------------------

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        """Embed *texts* in one call (with retry) and return target-size vectors."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.retry_wait),
            retry=retry_if_exception(_is_retryable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                payload = await self._request_vectors(texts)
                vectors = [fit_dimension(v, self.target_dimension) for v in normalise_vectors(payload, len(texts))]
        return vectors

    async def embed_query(self, text: str) -> list[float]:
        """Embed a single search query."""
        payload = await self._request_vectors(text)
        return fit_dimension(normalise_vectors(payload, 1)[0], self.target_dimension)

    async def embed_batches(
        self,
        chunks: Sequence[Chunk],
        batch_size: int,
        max_concurrent_batches: int,
        *,
        guard: ConsecutiveFailureGuard | None = None,
    ) -> list[EmbeddingOutcome]:
        """Embed *chunks* in contiguous batches with bounded concurrency.

        Parameters
        ----------
        chunks:
            Chunks to embed, in document order.
        batch_size:
            Maximum number of texts per remote call.
        max_concurrent_batches:
            Maximum number of calls in flight.
        guard:
            Optional failure guard; once tripped, batches that have not
            started yet are not sent.

        Returns
        -------
        list[EmbeddingOutcome]
            One outcome per chunk, in the order of *chunks*.  A failed
            batch yields an error outcome for each of its chunks and does
            not affect sibling batches.
        """
        batches = batched(list(chunks), batch_size)
        logger.debug(
            "Embedding %d chunks in %d batches (batch_size=%d, concurrency=%d)",
            len(chunks), len(batches), batch_size, max_concurrent_batches,
        )

        async def _run(item: tuple[int, Sequence[Chunk]]) -> list[EmbeddingOutcome]:
            offset, batch = item
            if guard is not None and guard.tripped:
                err = EmbedError("batch abandoned after consecutive failures", offset=offset)
                return [EmbeddingOutcome(chunk=c, error=err) for c in batch]
            try:
                vectors = await self.embed_texts([c.text for c in batch])
            except EmbedError as exc:
                exc.offset = offset
                if guard is not None:
                    guard.record_failure()
                logger.error(
                    "Embedding batch failed: document=%s offset=%d size=%d error=%s",
                    batch[0].document_id, offset, len(batch), exc,
                )
                return [EmbeddingOutcome(chunk=c, error=exc) for c in batch]
            if guard is not None:
                guard.record_success()
            return [EmbeddingOutcome(chunk=c, vector=v) for c, v in zip(batch, vectors)]

        grouped = await gather_bounded(batches, _run, max_concurrent_batches)
        return [outcome for group in grouped for outcome in group]

    async def warmup(self) -> bool:
        """Embed two sample texts; return ``True`` if the service answered."""
        try:
            await self.embed_texts(["warmup text", "second warmup text"])
            return True
        except EmbedError as exc:
            logger.warning("Embedding service warmup failed: %s", exc)
            return False


class HttpEmbeddingClient(EmbeddingClient):
    """Client for an HTTP service taking ``{"inputs": str | list[str]}``.

    Parameters
    ----------
    url:
        Full embedding endpoint, e.g. ``http://localhost:11441/embed``.
    client:
        Shared ``httpx.AsyncClient``; one is created (and owned) if omitted.
    """

    def __init__(
        self,
        url: str,
        target_dimension: int,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 120.0,
        max_attempts: int = 2,
        retry_wait: float = 1.0,
    ) -> None:
        super().__init__(target_dimension, max_attempts=max_attempts, retry_wait=retry_wait)
        self.url = url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def _request_vectors(self, inputs: str | list[str]) -> Any:
        try:
            response = await self._client.post(self.url, json={"inputs": inputs})
        except httpx.HTTPError as exc:
            raise EmbedError(f"Embedding request failed: {exc!r}") from exc
        if response.is_error:
            raise EmbedError(f"Embedding service returned HTTP {response.status_code}: {response.text[:200]}")
        try:
            return response.json()
        except ValueError as exc:
            raise EmbedError("Embedding response is not valid JSON") from exc

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
