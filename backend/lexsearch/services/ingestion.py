"""
Document Submission Service

Attaches content to an existing document and enqueues processing:

  submit_url             store source_url, reset statuses, enqueue pdf-extraction
  submit_text            store raw text as full_text, enqueue embedding-generation
  reprocess_embeddings   re-run Stage B on the stored full_text (no re-fetch)
  get_status             read model: statuses, last error, chunk count

Input validation happens here, synchronously. Rejected input raises a
CallerInputError and nothing is enqueued.

Enqueueing returns as soon as the broker accepted the message; clients poll
get_status for progress.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from urllib.parse import urlparse
from uuid import UUID

from lexsearch.core.errors import (
    DocumentNotFoundError,
    EmptyTextError,
    InvalidSourceUrlError,
    JobEnqueueError,
    MissingTextError,
)
from lexsearch.models.documents import Document
from lexsearch.repositories.documents import DocumentStore
from lexsearch.schemas.documents import (
    DocumentStatusResponse,
    EmbeddingStatus,
    JobAcceptedResponse,
    ProcessingStatus,
)
from lexsearch.schemas.jobs import JOB_PAYLOADS, JobKind
from lexsearch.vectorstore.base import ChunkStoreBase

logger = logging.getLogger(__name__)

_ALLOWED_URL_SCHEMES = ("http", "https")


def validate_source_url(source_url: str) -> str:
    url = (source_url or "").strip()
    parsed = urlparse(url)
    if parsed.scheme.lower() not in _ALLOWED_URL_SCHEMES or not parsed.netloc:
        raise InvalidSourceUrlError(f"Invalid source URL: {url!r}. Expected an http(s) URL")
    return url


# ---------------------------------------------------------------------------
# Submission service
# ---------------------------------------------------------------------------

class IngestionService:
    """
    Stateless service object. All dependencies are injected
    (testable, no hidden globals).
    """

    def __init__(
        self,
        documents:   DocumentStore,
        chunk_store: ChunkStoreBase,
        publisher:   "JobPublisher",
    ) -> None:
        self._documents   = documents
        self._chunk_store = chunk_store
        self._publisher   = publisher

    async def submit_url(self, document_id: UUID, source_url: str) -> JobAcceptedResponse:
        url = validate_source_url(source_url)
        await self._require_document(document_id)

        await self._documents.update(
            document_id,
            source_url=url,
            processing_status=ProcessingStatus.PENDING,
            embedding_status=EmbeddingStatus.PENDING,
            embedding_error=None,
        )
        await self._publisher.enqueue(
            JobKind.PDF_EXTRACTION,
            {"document_id": str(document_id), "source_url": url},
        )

        logger.info("Submitted URL | doc=%s url=%s", document_id, url)
        return JobAcceptedResponse(
            document_id=document_id,
            job=JobKind.PDF_EXTRACTION.value,
            processing_status=ProcessingStatus.PENDING,
            embedding_status=EmbeddingStatus.PENDING,
        )

    async def submit_text(self, document_id: UUID, text: str) -> JobAcceptedResponse:
        if not text or not text.strip():
            raise EmptyTextError("Document text is empty")
        await self._require_document(document_id)

        await self._documents.update(
            document_id,
            full_text=text,
            processing_status=ProcessingStatus.COMPLETED,
            embedding_status=EmbeddingStatus.PENDING,
            embedding_error=None,
        )
        await self._publisher.enqueue(
            JobKind.EMBEDDING_GENERATION, {"document_id": str(document_id)}
        )

        logger.info("Submitted text | doc=%s chars=%d", document_id, len(text))
        return JobAcceptedResponse(
            document_id=document_id,
            job=JobKind.EMBEDDING_GENERATION.value,
            processing_status=ProcessingStatus.COMPLETED,
            embedding_status=EmbeddingStatus.PENDING,
        )

    async def reprocess_embeddings(self, document_id: UUID) -> JobAcceptedResponse:
        document = await self._require_document(document_id)
        if not document.full_text or not document.full_text.strip():
            raise MissingTextError(
                f"Document {document_id} has no extracted text; submit a source first"
            )

        await self._documents.update(
            document_id,
            embedding_status=EmbeddingStatus.PENDING,
            embedding_error=None,
        )
        await self._publisher.enqueue(
            JobKind.EMBEDDING_GENERATION, {"document_id": str(document_id)}
        )

        logger.info("Reprocess requested | doc=%s", document_id)
        return JobAcceptedResponse(
            document_id=document_id,
            job=JobKind.EMBEDDING_GENERATION.value,
            processing_status=ProcessingStatus(document.processing_status),
            embedding_status=EmbeddingStatus.PENDING,
        )

    async def get_status(self, document_id: UUID) -> DocumentStatusResponse:
        document = await self._require_document(document_id)
        chunks_count = await self._chunk_store.count(document_id)
        return DocumentStatusResponse(
            document_id=document_id,
            processing_status=ProcessingStatus(document.processing_status),
            embedding_status=EmbeddingStatus(document.embedding_status),
            embedding_error=document.embedding_error,
            chunks_count=chunks_count,
        )

    async def _require_document(self, document_id: UUID) -> Document:
        document = await self._documents.find_by_id(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        return document


# ---------------------------------------------------------------------------
# Job publisher: thin abstraction over Celery apply_async()
# Injected into IngestionService / DocumentProcessor so it can be mocked in tests.
# ---------------------------------------------------------------------------

class JobPublisher:
    """
    Sends jobs to the document-processing queue.
    Import is deferred so the broker connection is not required at module load time.
    """

    async def enqueue(self, job_kind: JobKind, payload: dict[str, Any]) -> None:
        """
        Dispatch the task for `job_kind` to the Celery worker.
        Runs in a thread executor to avoid blocking the async event loop.
        """
        from lexsearch.workers.tasks import TASKS_BY_KIND

        kind = JobKind(job_kind)
        # Validate before anything reaches the broker
        JOB_PAYLOADS[kind].model_validate(payload)
        task = TASKS_BY_KIND[kind]

        loop = asyncio.get_event_loop()
        try:
            result = await loop.run_in_executor(
                None,
                lambda: task.apply_async(kwargs={"payload": payload}),
            )
        except Exception as exc:
            logger.error("Failed to publish job | job=%s payload=%s error=%s", kind.value, payload, exc)
            raise JobEnqueueError(f"Could not enqueue {kind.value}: {exc}") from exc

        logger.info(
            "Job published | job=%s task_id=%s doc=%s",
            kind.value, result.id, payload.get("document_id"),
        )
