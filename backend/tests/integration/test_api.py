"""
Integration Tests — /api/v1/documents/* and /api/v1/search
═══════════════════════════════════════════════════════════
These tests exercise the FULL FastAPI routing stack, including:
  - Dependency injection chain (every collaborator overridden)
  - Pydantic request validation and the structured error envelope
  - Exception handler mapping (400 / 404 / 422 / 503)
  - X-Request-ID propagation
  - Health endpoint

What is mocked vs real
──────────────────────
  ✅ Real: FastAPI routing, request parsing, schema validation,
           IngestionService, SearchService, DocumentProcessor, chunker,
           memory chunk store
  🔲 Mock: PostgreSQL        (InMemoryDocumentStore)
  🔲 Mock: Celery broker     (RecordingPublisher)
  🔲 Mock: OpenAI            (FakeEmbeddingProvider)
  🔲 Mock: check_db_health   (patched for /health)

How to run
──────────
  pytest -m integration tests/integration/test_api.py -v
"""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, patch

import pytest

from lexsearch.core.errors import JobEnqueueError
from tests.conftest import text_vector, vector_with_similarity

API = "/api/v1"


# ─────────────────────────────────────────────────────────────────────────────
# Document submission
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.integration
class TestIngestUrl:

    async def test_accepted(self, async_client, document_store, publisher, test_document_id):
        document_store.add(test_document_id)

        resp = await async_client.post(
            f"{API}/documents/{test_document_id}/ingest-url",
            json={"source_url": "  https://normas.example.gov.co/ley.pdf "},
        )

        assert resp.status_code == 202
        body = resp.json()
        assert body["document_id"] == str(test_document_id)
        assert body["job"] == "pdf-extraction"
        assert body["processing_status"] == "PENDING"
        assert publisher.jobs[0][1]["source_url"] == "https://normas.example.gov.co/ley.pdf"

    async def test_invalid_url(self, async_client, document_store, publisher, test_document_id):
        document_store.add(test_document_id)

        resp = await async_client.post(
            f"{API}/documents/{test_document_id}/ingest-url",
            json={"source_url": "ftp://normas.example.gov.co/ley.pdf"},
        )

        assert resp.status_code == 400
        assert resp.json()["error_code"] == "INVALID_SOURCE_URL"
        assert publisher.jobs == []

    async def test_unknown_document(self, async_client):
        resp = await async_client.post(
            f"{API}/documents/{uuid.uuid4()}/ingest-url",
            json={"source_url": "https://normas.example.gov.co/ley.pdf"},
        )

        assert resp.status_code == 404
        assert resp.json()["error_code"] == "DOCUMENT_NOT_FOUND"

    async def test_broker_unavailable(self, async_client, document_store, publisher, test_document_id):
        document_store.add(test_document_id)
        publisher.fail_with = JobEnqueueError("Connection refused")

        resp = await async_client.post(
            f"{API}/documents/{test_document_id}/ingest-url",
            json={"source_url": "https://normas.example.gov.co/ley.pdf"},
        )

        assert resp.status_code == 503
        assert resp.json()["error_code"] == "QUEUE_ERROR"

    async def test_malformed_document_id(self, async_client):
        resp = await async_client.post(
            f"{API}/documents/not-a-uuid/ingest-url",
            json={"source_url": "https://normas.example.gov.co/ley.pdf"},
        )

        assert resp.status_code == 422
        assert resp.json()["error_code"] == "VALIDATION_ERROR"


@pytest.mark.integration
class TestIngestTextAndReprocess:

    async def test_ingest_text(self, async_client, document_store, publisher, test_document_id):
        document_store.add(test_document_id)

        resp = await async_client.post(
            f"{API}/documents/{test_document_id}/ingest-text",
            json={"text": "ARTÍCULO 1. Objeto."},
        )

        assert resp.status_code == 202
        assert resp.json()["job"] == "embedding-generation"
        assert publisher.jobs == [("embedding-generation", {"document_id": str(test_document_id)})]

    async def test_whitespace_text_rejected(self, async_client, document_store, test_document_id):
        document_store.add(test_document_id)

        resp = await async_client.post(
            f"{API}/documents/{test_document_id}/ingest-text",
            json={"text": "   "},
        )

        assert resp.status_code == 400
        assert resp.json()["error_code"] == "EMPTY_TEXT"

    async def test_reprocess_without_text(self, async_client, document_store, test_document_id):
        document_store.add(test_document_id, full_text=None)

        resp = await async_client.post(f"{API}/documents/{test_document_id}/reprocess")

        assert resp.status_code == 400
        assert resp.json()["error_code"] == "MISSING_FULL_TEXT"


# ─────────────────────────────────────────────────────────────────────────────
# Status polling, end to end through the embedding stage
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.integration
class TestStatusPolling:

    async def test_status_after_embedding(
        self, async_client, document_store, publisher, make_processor, test_document_id,
    ):
        document_store.add(test_document_id)
        text = "\n\n".join(
            f"ARTÍCULO {n}. " + "El empleador afiliará a sus trabajadores al sistema. " * 20
            for n in range(1, 6)
        )

        await async_client.post(
            f"{API}/documents/{test_document_id}/ingest-text", json={"text": text},
        )
        pending = (await async_client.get(f"{API}/documents/{test_document_id}/status")).json()

        job_kind, payload = publisher.jobs[0]
        await make_processor().process(job_kind, payload)
        done = (await async_client.get(f"{API}/documents/{test_document_id}/status")).json()

        assert pending["embedding_status"] == "PENDING"
        assert pending["chunks_count"] == 0
        assert done["embedding_status"] == "COMPLETED"
        assert done["processing_status"] == "COMPLETED"
        assert done["chunks_count"] > 1
        assert done["embedding_error"] is None

    async def test_status_unknown_document(self, async_client):
        resp = await async_client.get(f"{API}/documents/{uuid.uuid4()}/status")
        assert resp.status_code == 404


# ─────────────────────────────────────────────────────────────────────────────
# Search
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.integration
class TestSearchEndpoint:

    async def test_results(self, async_client, chunk_store, fake_provider):
        from lexsearch.vectorstore.base import ChunkRecord

        query = "requisitos de la pensión"
        query_vector = text_vector("pension")
        fake_provider.vectors[query] = query_vector
        document_id = uuid.uuid4()
        chunk_store.set_document(document_id, title="Ley 100 de 1993")
        await chunk_store.replace_chunks(
            document_id,
            [
                ChunkRecord(
                    document_id=document_id,
                    chunk_index=0,
                    content="ARTÍCULO 33. Requisitos para obtener la pensión de vejez.",
                    embedding=vector_with_similarity(query_vector, 0.82),
                    article_ref="articulo-33",
                )
            ],
        )

        resp = await async_client.post(f"{API}/search", json={"query": query, "limit": 5})

        assert resp.status_code == 200
        body = resp.json()
        assert body["total"] == 1
        assert body["query"] == query
        [result] = body["results"]
        assert result["document_id"] == str(document_id)
        assert result["title"] == "Ley 100 de 1993"
        assert result["score"] == pytest.approx(0.82, abs=1e-3)
        assert result["article_ref"] == "articulo-33"
        assert result["snippet"].startswith("ARTÍCULO 33.")

    async def test_short_query(self, async_client):
        resp = await async_client.post(f"{API}/search", json={"query": " ab "})

        assert resp.status_code == 400
        assert resp.json()["error_code"] == "INVALID_QUERY"

    async def test_embedding_failure(self, async_client, fake_provider):
        fake_provider.fail_with = RuntimeError("provider down")

        resp = await async_client.post(f"{API}/search", json={"query": "requisitos"})

        assert resp.status_code == 400
        assert resp.json()["error_code"] == "QUERY_NOT_PROCESSED"

    @pytest.mark.parametrize("body", [
        {"query": "requisitos", "limit": 0},
        {"query": "requisitos", "limit": 51},
        {"query": "requisitos", "min_score": 1.5},
        {"limit": 5},
    ])
    async def test_invalid_body(self, async_client, body):
        resp = await async_client.post(f"{API}/search", json=body)

        assert resp.status_code == 422
        assert resp.json()["error_code"] == "VALIDATION_ERROR"

    async def test_request_id_echoed(self, async_client):
        resp = await async_client.post(
            f"{API}/search",
            json={"query": "requisitos"},
            headers={"X-Request-ID": "req-123"},
        )

        assert resp.headers["X-Request-ID"] == "req-123"


# ─────────────────────────────────────────────────────────────────────────────
# Health
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.integration
class TestHealth:

    async def test_healthy(self, async_client):
        with patch("lexsearch.main.check_db_health", AsyncMock(return_value={"status": "ok"})):
            resp = await async_client.get("/health")

        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    async def test_degraded(self, async_client):
        with patch(
            "lexsearch.main.check_db_health",
            AsyncMock(return_value={"status": "error", "error": "connection refused"}),
        ):
            resp = await async_client.get("/health")

        assert resp.status_code == 503
        assert resp.json()["status"] == "degraded"
