"""
Document Processor  —  Two-Stage Ingestion Pipeline
═══════════════════════════════════════════════════

Executes the jobs delivered by the document-processing queue.

  Stage A  pdf-extraction        fetch source_url → extract text → persist
                                 full_text → enqueue Stage B
  Stage B  embedding-generation  chunk full_text → embed chunks → embed the
                                 document context → replace the chunk set →
                                 persist the document vector

Status transitions written here:

  ┌────────────┬───────────────────────────────┬───────────────────────────────┐
  │  stage     │ success                       │ failure                       │
  ├────────────┼───────────────────────────────┼───────────────────────────────┤
  │  A start   │ processing_status=PROCESSING  │                               │
  │  A end     │ processing_status=COMPLETED   │ processing_status=FAILED      │
  │            │ embedding_status=PENDING      │ embedding_status=SKIPPED      │
  │            │ embedding_error=None          │ embedding_error=<truncated>   │
  │  B start   │ embedding_status=PROCESSING   │                               │
  │  B end     │ embedding_status=COMPLETED    │ embedding_status=FAILED       │
  │            │ embedding_error=None          │ embedding_error=<truncated>   │
  └────────────┴───────────────────────────────┴───────────────────────────────┘

Failures are written to the document and then re-raised so the Celery task
can decide whether to retry. If writing the failure itself fails, that is
logged and the ORIGINAL error is the one that propagates.

Stage B is idempotent: the chunk set is replaced as a whole, so a retried
or redelivered job leaves exactly one chunk set behind.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol
from uuid import UUID

from lexsearch.core.errors import (
    DocumentNotFoundError,
    EmbeddingError,
    ExtractionError,
    JobEnqueueError,
    truncate_error,
)
from lexsearch.models.documents import Document
from lexsearch.processing.chunking import (
    ChunkOptions,
    chunk_text,
    estimate_token_count,
    validate_chunks,
)
from lexsearch.processing.embeddings import EmbeddingClient
from lexsearch.processing.extractor import SourceFetcher, extract_text
from lexsearch.repositories.documents import DocumentStore
from lexsearch.schemas.documents import EmbeddingStatus, ProcessingStatus
from lexsearch.schemas.jobs import JOB_PAYLOADS, EmbeddingGenerationJob, JobKind, PdfExtractionJob
from lexsearch.vectorstore.base import ChunkRecord, ChunkStoreBase

logger = logging.getLogger(__name__)

DOCUMENT_CONTEXT_CHARS  = 8000
ERROR_MESSAGE_MAX_CHARS = 500


class JobPublisherProtocol(Protocol):
    async def enqueue(self, job_kind: JobKind, payload: dict[str, Any]) -> None: ...


class DocumentProcessor:
    """
    All collaborators are injected; one instance per worker process.

    Usage:
        processor = DocumentProcessor(documents, chunk_store, embedder, fetcher, publisher)
        await processor.process("pdf-extraction", {"document_id": ..., "source_url": ...})
    """

    def __init__(
        self,
        documents:       DocumentStore,
        chunk_store:     ChunkStoreBase,
        embedder:        EmbeddingClient,
        fetcher:         SourceFetcher,
        publisher:       JobPublisherProtocol,
        chunk_options:   ChunkOptions | None = None,
        context_chars:   int = DOCUMENT_CONTEXT_CHARS,
        error_max_chars: int = ERROR_MESSAGE_MAX_CHARS,
    ) -> None:
        self._documents       = documents
        self._chunk_store     = chunk_store
        self._embedder        = embedder
        self._fetcher         = fetcher
        self._publisher       = publisher
        self._chunk_options   = chunk_options or ChunkOptions()
        self._context_chars   = context_chars
        self._error_max_chars = error_max_chars

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def process(self, job_kind: JobKind | str, payload: dict[str, Any]) -> dict[str, Any]:
        """Validate the payload for `job_kind` and run the matching stage."""
        kind = JobKind(job_kind)
        job = JOB_PAYLOADS[kind].model_validate(payload)

        if isinstance(job, PdfExtractionJob):
            return await self.handle_extraction(job.document_id, job.source_url)
        if isinstance(job, EmbeddingGenerationJob):
            return await self.handle_embedding(job.document_id)
        raise ValueError(f"Unhandled job kind: {kind}")

    # ------------------------------------------------------------------
    # Stage A: extraction
    # ------------------------------------------------------------------

    async def handle_extraction(self, document_id: UUID, source_url: str) -> dict[str, Any]:
        t0 = time.monotonic()
        logger.info("Extraction start | doc=%s url=%s", document_id, source_url)

        await self._documents.update(document_id, processing_status=ProcessingStatus.PROCESSING)

        try:
            source = await self._fetcher.fetch(source_url)
            full_text = await extract_text(source)
        except Exception as exc:
            logger.error("Extraction failed | doc=%s error=%s", document_id, exc)
            await self._record_failure(
                document_id,
                exc,
                processing_status=ProcessingStatus.FAILED,
                embedding_status=EmbeddingStatus.SKIPPED,
            )
            raise

        await self._documents.update(
            document_id,
            full_text=full_text,
            processing_status=ProcessingStatus.COMPLETED,
            embedding_status=EmbeddingStatus.PENDING,
            embedding_error=None,
        )
        try:
            await self._publisher.enqueue(
                JobKind.EMBEDDING_GENERATION, {"document_id": str(document_id)}
            )
        except JobEnqueueError as exc:
            # full_text is kept; the task retry or the sweep queues Stage B later
            logger.error("Embedding enqueue failed | doc=%s error=%s", document_id, exc)
            await self._record_failure(document_id, exc)
            raise

        elapsed_ms = (time.monotonic() - t0) * 1000
        logger.info(
            "Extraction complete | doc=%s chars=%d content_type=%s elapsed_ms=%.0f",
            document_id, len(full_text), source.content_type, elapsed_ms,
        )
        return {
            "status":      ProcessingStatus.COMPLETED.value,
            "document_id": str(document_id),
            "chars":       len(full_text),
        }

    # ------------------------------------------------------------------
    # Stage B: chunk + embed
    # ------------------------------------------------------------------

    async def handle_embedding(self, document_id: UUID) -> dict[str, Any]:
        t0 = time.monotonic()
        logger.info("Embedding start | doc=%s", document_id)

        document = await self._documents.find_by_id(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)

        await self._documents.update(document_id, embedding_status=EmbeddingStatus.PROCESSING)

        try:
            chunk_count, tokens = await self._embed_document(document)
        except Exception as exc:
            logger.error("Embedding failed | doc=%s error=%s", document_id, exc)
            await self._record_failure(document_id, exc, embedding_status=EmbeddingStatus.FAILED)
            raise

        elapsed_ms = (time.monotonic() - t0) * 1000
        logger.info(
            "Embedding complete | doc=%s chunks=%d tokens_est=%d elapsed_ms=%.0f",
            document_id, chunk_count, tokens, elapsed_ms,
        )
        return {
            "status":      EmbeddingStatus.COMPLETED.value,
            "document_id": str(document_id),
            "chunks":      chunk_count,
        }

    async def _embed_document(self, document: Document) -> tuple[int, int]:
        if not document.full_text or not document.full_text.strip():
            raise ExtractionError(
                f"Document {document.id} has no extracted text", retryable=False,
            )

        context = self.build_document_context(document)

        chunks = chunk_text(document.full_text, self._chunk_options)
        validation = validate_chunks(document.full_text, chunks)
        if not validation.valid:
            raise ExtractionError(
                f"Chunking failed: {'; '.join(validation.issues)}", retryable=False,
            )

        prefix = self._chunk_prefix(document)
        inputs = [prefix + chunk.content for chunk in chunks]
        tokens = sum(estimate_token_count(text) for text in inputs)
        logger.info(
            "Chunked | doc=%s chunks=%d coverage=%.2f tokens_est=%d",
            document.id, len(chunks), validation.coverage, tokens,
        )

        vectors = await self._embedder.embed_many(inputs)
        missing = [chunk.index for chunk, vector in zip(chunks, vectors) if vector is None]
        if missing:
            raise EmbeddingError(
                f"No embedding returned for chunks {missing[:10]}", retryable=False,
            )

        document_vector = await self._embedder.embed_one(context)

        records = [
            ChunkRecord(
                document_id=document.id,
                chunk_index=chunk.index,
                content=chunk.content,
                article_ref=chunk.article_ref,
                embedding=vector,
            )
            for chunk, vector in zip(chunks, vectors)
        ]
        await self._chunk_store.replace_chunks(document.id, records)

        await self._documents.update(
            document.id,
            embedding=document_vector,
            embedding_status=EmbeddingStatus.COMPLETED,
            embedding_error=None,
        )
        return len(records), tokens

    # ------------------------------------------------------------------
    # Reconciliation: documents left behind by a dead worker or broker
    # ------------------------------------------------------------------

    async def reconcile_stuck(self, stuck_minutes: int, limit: int = 50) -> dict[str, int]:
        """
        Reset documents stuck in a PROCESSING state for longer than
        `stuck_minutes` back to PENDING and requeue the matching stage.
        Extracted documents whose embedding job was never queued
        (COMPLETED / PENDING past the cutoff) get Stage B queued again.
        """
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=stuck_minutes)
        stale = await self._documents.find_stale_processing(cutoff, limit=limit)

        requeued = failed = 0
        for document in stale:
            try:
                await self._requeue(document)
                requeued += 1
            except Exception as exc:
                failed += 1
                logger.error("Reconcile failed | doc=%s error=%s", document.id, exc)

        if stale:
            logger.info(
                "Reconcile sweep | stale=%d requeued=%d failed=%d cutoff=%s",
                len(stale), requeued, failed, cutoff.isoformat(),
            )
        return {"stale": len(stale), "requeued": requeued, "failed": failed}

    async def _requeue(self, document: Document) -> None:
        if document.processing_status == ProcessingStatus.PROCESSING.value:
            if not document.source_url:
                await self._documents.update(
                    document.id,
                    processing_status=ProcessingStatus.FAILED,
                    embedding_status=EmbeddingStatus.SKIPPED,
                    embedding_error="Extraction interrupted and no source_url to retry from",
                )
                return
            await self._documents.update(document.id, processing_status=ProcessingStatus.PENDING)
            await self._publisher.enqueue(
                JobKind.PDF_EXTRACTION,
                {"document_id": str(document.id), "source_url": document.source_url},
            )
            logger.info("Re-queued stuck extraction | doc=%s", document.id)
            return

        await self._documents.update(document.id, embedding_status=EmbeddingStatus.PENDING)
        await self._publisher.enqueue(
            JobKind.EMBEDDING_GENERATION, {"document_id": str(document.id)}
        )
        logger.info("Re-queued stuck embedding | doc=%s", document.id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def build_document_context(self, document: Document) -> str:
        """title + summary + full_text prefix, blank-line separated."""
        parts = [document.title, document.summary]
        if document.full_text:
            parts.append(document.full_text[: self._context_chars])
        return "\n\n".join(p for p in parts if p and p.strip())

    @staticmethod
    def _chunk_prefix(document: Document) -> str:
        parts = [p for p in (document.title, document.summary) if p and p.strip()]
        return "\n\n".join(parts) + "\n\n" if parts else ""

    async def _record_failure(self, document_id: UUID, exc: BaseException, **statuses: Any) -> None:
        try:
            await self._documents.update(
                document_id,
                embedding_error=truncate_error(exc, self._error_max_chars),
                **statuses,
            )
        except Exception as update_exc:
            logger.error(
                "Failed to record pipeline error | doc=%s error=%s original=%s",
                document_id, update_exc, exc,
            )
