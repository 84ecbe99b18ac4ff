"""
Unit Tests — EmbeddingClient / OpenAIEmbeddingProvider
═══════════════════════════════════════════════════════
All tests use FakeEmbeddingProvider from conftest.py or a patched
openai.AsyncOpenAI; no network calls.

Coverage targets:
  ✅ embed_many preserves input order, empty inputs → None, never sent
  ✅ All-empty input → no provider call
  ✅ Sub-batching by batch_size, pause between batches
  ✅ embed_one rejects empty text before calling the provider
  ✅ Provider errors → EmbeddingError with retryable classification
  ✅ Vector count mismatch → EmbeddingError
  ✅ OpenAI provider: response re-ordered by index, dimensions param
  ✅ Storage conversions: float32 bytes, pgvector literal
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from lexsearch.core.errors import EmbeddingError, EmptyTextError
from lexsearch.processing.embeddings import (
    EmbeddingClient,
    OpenAIEmbeddingProvider,
    bytes_to_vector,
    literal_to_vector,
    vector_to_bytes,
    vector_to_literal,
)
from tests.conftest import TEST_DIMENSIONS, FakeEmbeddingProvider, text_vector


class RateLimitError(Exception):
    """Same class name as openai.RateLimitError."""


# ─────────────────────────────────────────────────────────────────────────────
# EmbeddingClient
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestEmbedMany:

    async def test_preserves_order_and_skips_empty(self, embedder, fake_provider):
        vectors = await embedder.embed_many(["", "uno", "   ", "dos"])

        assert vectors[0] is None
        assert vectors[2] is None
        assert vectors[1] == text_vector("uno")
        assert vectors[3] == text_vector("dos")
        assert fake_provider.calls == [["uno", "dos"]]

    async def test_all_empty_makes_no_calls(self, embedder, fake_provider):
        vectors = await embedder.embed_many(["", " ", "\n"])

        assert vectors == [None, None, None]
        assert fake_provider.calls == []

    async def test_empty_list(self, embedder, fake_provider):
        assert await embedder.embed_many([]) == []
        assert fake_provider.calls == []

    async def test_sub_batches(self, fake_provider):
        client = EmbeddingClient(fake_provider, batch_size=2, batch_delay=0)
        texts = [f"texto {i}" for i in range(5)]

        vectors = await client.embed_many(texts)

        assert [len(c) for c in fake_provider.calls] == [2, 2, 1]
        assert vectors == [text_vector(t) for t in texts]

    async def test_pause_between_batches(self, fake_provider):
        client = EmbeddingClient(fake_provider, batch_size=2, batch_delay=0.25)

        with patch("lexsearch.processing.embeddings.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            await client.embed_many([f"texto {i}" for i in range(5)])

        assert mock_sleep.await_count == 2
        mock_sleep.assert_awaited_with(0.25)

    async def test_empty_inputs_keep_positions_across_batches(self, fake_provider):
        client = EmbeddingClient(fake_provider, batch_size=2, batch_delay=0)
        texts = ["a1", "", "a2", "a3", "", "a4"]

        vectors = await client.embed_many(texts)

        assert fake_provider.calls == [["a1", "a2"], ["a3", "a4"]]
        assert vectors[1] is None and vectors[4] is None
        assert vectors[5] == text_vector("a4")

    def test_rejects_zero_batch_size(self, fake_provider):
        with pytest.raises(ValueError):
            EmbeddingClient(fake_provider, batch_size=0)


@pytest.mark.unit
class TestEmbedOne:

    async def test_returns_vector(self, embedder):
        vector = await embedder.embed_one("requisitos de la licencia")
        assert len(vector) == TEST_DIMENSIONS

    @pytest.mark.parametrize("text", ["", "   "])
    async def test_rejects_empty(self, embedder, fake_provider, text):
        with pytest.raises(EmptyTextError):
            await embedder.embed_one(text)
        assert fake_provider.calls == []


@pytest.mark.unit
class TestProviderErrors:

    async def test_rate_limit_is_retryable(self, embedder, fake_provider):
        fake_provider.fail_with = RateLimitError("429 Too Many Requests")

        with pytest.raises(EmbeddingError) as exc_info:
            await embedder.embed_many(["texto"])

        assert exc_info.value.retryable is True
        assert isinstance(exc_info.value.__cause__, RateLimitError)

    async def test_other_errors_are_terminal(self, embedder, fake_provider):
        fake_provider.fail_with = ValueError("invalid input")

        with pytest.raises(EmbeddingError) as exc_info:
            await embedder.embed_one("texto")

        assert exc_info.value.retryable is False

    async def test_vector_count_mismatch(self):
        provider = MagicMock()
        provider.embed = AsyncMock(return_value=[[0.1, 0.2]])
        client = EmbeddingClient(provider, batch_delay=0)

        with pytest.raises(EmbeddingError, match="returned 1 vectors for 2 inputs"):
            await client.embed_many(["uno", "dos"])

    async def test_failed_batch_aborts_remaining(self):
        provider = FakeEmbeddingProvider()
        client = EmbeddingClient(provider, batch_size=1, batch_delay=0)
        provider.fail_with = TimeoutError("timed out")

        with pytest.raises(EmbeddingError):
            await client.embed_many(["uno", "dos", "tres"])

        assert len(provider.calls) == 1


# ─────────────────────────────────────────────────────────────────────────────
# OpenAIEmbeddingProvider
# ─────────────────────────────────────────────────────────────────────────────

def _openai_response(*items: tuple[int, list[float]]):
    return SimpleNamespace(
        data=[SimpleNamespace(index=i, embedding=v) for i, v in items],
        usage=SimpleNamespace(total_tokens=12),
    )


@pytest.mark.unit
class TestOpenAIProvider:

    async def test_orders_by_index(self):
        with patch("openai.AsyncOpenAI") as mock_cls:
            client = mock_cls.return_value
            client.embeddings.create = AsyncMock(
                return_value=_openai_response((1, [0.2]), (0, [0.1]))
            )
            provider = OpenAIEmbeddingProvider(api_key="sk-test")

            vectors = await provider.embed(["primero", "segundo"])

        assert vectors == [[0.1], [0.2]]

    async def test_native_dimensions_not_sent(self):
        with patch("openai.AsyncOpenAI") as mock_cls:
            client = mock_cls.return_value
            client.embeddings.create = AsyncMock(return_value=_openai_response((0, [0.1])))
            provider = OpenAIEmbeddingProvider(dimensions=1536, api_key="sk-test")

            await provider.embed(["texto"])

        kwargs = client.embeddings.create.await_args.kwargs
        assert kwargs == {"model": "text-embedding-3-small", "input": ["texto"]}

    async def test_reduced_dimensions_sent(self):
        with patch("openai.AsyncOpenAI") as mock_cls:
            client = mock_cls.return_value
            client.embeddings.create = AsyncMock(return_value=_openai_response((0, [0.1])))
            provider = OpenAIEmbeddingProvider(dimensions=512, api_key="sk-test")

            await provider.embed(["texto"])

        assert client.embeddings.create.await_args.kwargs["dimensions"] == 512


# ─────────────────────────────────────────────────────────────────────────────
# Storage conversions
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestVectorConversions:

    def test_bytes_are_float32(self):
        data = vector_to_bytes([0.5, -1.0, 2.0])

        assert len(data) == 12
        assert bytes_to_vector(data) == [0.5, -1.0, 2.0]

    def test_bytes_length_must_be_multiple_of_four(self):
        with pytest.raises(ValueError):
            bytes_to_vector(b"\x00\x00\x00")

    def test_literal_format(self):
        assert vector_to_literal([0.5, 1, -2.25]) == "[0.5,1.0,-2.25]"
        assert literal_to_vector(" [0.5, 1.0,-2.25] ") == [0.5, 1.0, -2.25]

    def test_empty_literal(self):
        assert literal_to_vector("[]") == []

    def test_invalid_literal(self):
        with pytest.raises(ValueError):
            literal_to_vector("0.5,1.0")
