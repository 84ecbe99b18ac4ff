"""
Embedding Client  —  Batched Provider Calls with Empty-Input Tolerance
══════════════════════════════════════════════════════════════════════

Two layers:

  EmbeddingProvider       the black box: list[str] → list[vector].
                          OpenAIEmbeddingProvider is the production one.

  EmbeddingClient         what the pipeline and search call. Adds:
    • embed_one           single text; rejects empty input
    • embed_many          order-preserving batch embed; empty inputs are
                          skipped and hold None in the output
    • sub-batching        BATCH_SIZE texts per provider call, with a short
                          pause between calls to stay under rate limits
    • error mapping       provider exceptions → EmbeddingError with the
                          retryable flag set for rate-limit / timeout / 5xx

Batching strategy:
  Inputs are partitioned once into (original_index, text) pairs for the
  non-empty texts. Those are embedded in sub-batches and scattered back by
  original index, so output[i] always corresponds to input[i].

  A failed sub-batch aborts the rest; retrying the whole job is the queue's
  responsibility, not the client's.

Storage formats:
  bytes    float32 little-endian, 4 bytes per dimension
  literal  "[0.1,0.2,...]" (pgvector text form)
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Protocol, Sequence

import numpy as np

from lexsearch.core.errors import EmbeddingError, EmptyTextError, is_retryable

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

EMBEDDING_BATCH_SIZE   = 100    # texts per provider call
EMBEDDING_BATCH_DELAY  = 0.1    # seconds between sub-batches

Vector = list[float]


# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------

class EmbeddingProvider(Protocol):
    async def embed(self, texts: Sequence[str]) -> list[Vector]: ...


class OpenAIEmbeddingProvider:
    """
    OpenAI embeddings via openai.AsyncOpenAI.

    text-embedding-3-small → 1536 dims (default)
    The `dimensions` parameter is only sent when it differs from the
    model's native size.
    """

    NATIVE_DIMENSIONS = 1536

    def __init__(
        self,
        model:      str = "text-embedding-3-small",
        dimensions: int = 1536,
        api_key:    str = "",
    ) -> None:
        from openai import AsyncOpenAI

        self._model      = model
        self._dimensions = dimensions
        self._client     = AsyncOpenAI(api_key=api_key or self._get_api_key())

    def _get_api_key(self) -> str:
        from lexsearch.core.config import settings
        return settings.openai_api_key

    async def embed(self, texts: Sequence[str]) -> list[Vector]:
        kwargs: dict = {"model": self._model, "input": list(texts)}
        if self._dimensions != self.NATIVE_DIMENSIONS:
            kwargs["dimensions"] = self._dimensions

        t_api = time.monotonic()
        response = await self._client.embeddings.create(**kwargs)
        api_ms = (time.monotonic() - t_api) * 1000

        tokens_used = response.usage.total_tokens if response.usage else 0
        logger.debug(
            "OpenAI embeddings | size=%d tokens=%d api_ms=%.0f",
            len(texts), tokens_used, api_ms,
        )

        # The API returns items with an explicit index; keep input order.
        ordered = sorted(response.data, key=lambda item: item.index)
        return [item.embedding for item in ordered]


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class EmbeddingClient:
    """
    Usage:
        client  = EmbeddingClient(OpenAIEmbeddingProvider())
        vector  = await client.embed_one("requisitos de la licencia")
        vectors = await client.embed_many(["", "texto", ""])   # [None, [...], None]
    """

    def __init__(
        self,
        provider:    EmbeddingProvider,
        batch_size:  int   = EMBEDDING_BATCH_SIZE,
        batch_delay: float = EMBEDDING_BATCH_DELAY,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._provider    = provider
        self._batch_size  = batch_size
        self._batch_delay = batch_delay

    @classmethod
    def from_settings(cls) -> "EmbeddingClient":
        from lexsearch.core.config import settings

        provider = OpenAIEmbeddingProvider(
            model=settings.embedding_model,
            dimensions=settings.embedding_dimensions,
            api_key=settings.openai_api_key,
        )
        return cls(
            provider,
            batch_size=settings.embedding_batch_size,
            batch_delay=settings.embedding_batch_delay_ms / 1000,
        )

    async def embed_one(self, text: str) -> Vector:
        if not text or not text.strip():
            raise EmptyTextError("Cannot embed empty text")

        vectors = await self._call_provider([text], batch_idx=0)
        return vectors[0]

    async def embed_many(self, texts: Sequence[str]) -> list[Vector | None]:
        """
        Embed `texts` preserving order. Empty / whitespace-only entries are
        not sent to the provider and come back as None.
        """
        results: list[Vector | None] = [None] * len(texts)

        pending = [(i, t) for i, t in enumerate(texts) if t and t.strip()]
        if not pending:
            return results

        batches = [
            pending[i : i + self._batch_size]
            for i in range(0, len(pending), self._batch_size)
        ]

        logger.info(
            "EmbeddingClient | texts=%d skipped=%d batches=%d",
            len(texts), len(texts) - len(pending), len(batches),
        )

        for batch_idx, batch in enumerate(batches):
            if batch_idx > 0 and self._batch_delay > 0:
                await asyncio.sleep(self._batch_delay)

            vectors = await self._call_provider([t for _, t in batch], batch_idx)
            for (original_index, _), vector in zip(batch, vectors):
                results[original_index] = vector

        return results

    async def _call_provider(self, texts: list[str], batch_idx: int) -> list[Vector]:
        try:
            vectors = await self._provider.embed(texts)
        except Exception as exc:
            retryable = is_retryable(exc)
            logger.warning(
                "Embedding batch failed | batch=%d size=%d retryable=%s error=%s: %s",
                batch_idx, len(texts), retryable, type(exc).__name__, exc,
            )
            raise EmbeddingError(
                f"Embedding provider failed: {type(exc).__name__}: {exc}",
                retryable=retryable,
            ) from exc

        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Embedding provider returned {len(vectors)} vectors for {len(texts)} inputs",
                retryable=False,
            )
        return vectors


# ---------------------------------------------------------------------------
# Storage format conversion
# ---------------------------------------------------------------------------

def vector_to_bytes(vector: Sequence[float]) -> bytes:
    return np.asarray(vector, dtype="<f4").tobytes()


def bytes_to_vector(data: bytes) -> Vector:
    if len(data) % 4:
        raise ValueError(f"Embedding buffer length {len(data)} is not a multiple of 4")
    return np.frombuffer(data, dtype="<f4").astype(float).tolist()


def vector_to_literal(vector: Sequence[float]) -> str:
    return "[" + ",".join(repr(float(v)) for v in vector) + "]"


def literal_to_vector(literal: str) -> Vector:
    body = literal.strip()
    if not (body.startswith("[") and body.endswith("]")):
        raise ValueError(f"Not a vector literal: {literal[:40]!r}")
    body = body[1:-1].strip()
    if not body:
        return []
    return [float(part) for part in body.split(",")]
