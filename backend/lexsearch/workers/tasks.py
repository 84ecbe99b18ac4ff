"""
Celery Tasks — Document Processing Pipeline

Task: pdf-extraction          (payload: document_id, source_url)
  Stage A. Fetch the source, extract text, persist full_text, chain Stage B.

Task: embedding-generation    (payload: document_id)
  Stage B. Chunk full_text, embed, replace the chunk set, persist the
  document-level vector.

Task: reconcile-stuck-documents
  Beat task (every 5 minutes). Requeues documents a dead worker left in
  PROCESSING for longer than stuck_processing_minutes.

Task: health-check
  Worker liveness plus a database ping.

Retry policy (both stages):
  Up to queue_max_attempts attempts in total. Only retryable failures
  (network / timeout / provider rate limit / 5xx) are retried, with
  exponential backoff: queue_backoff_seconds × 2^retries. Terminal failures
  and exhausted retries propagate; the job ends FAILURE in the result backend.
"""

from __future__ import annotations

import asyncio
import logging
from functools import lru_cache
from typing import Any

from celery import Task

from lexsearch.core.config import settings
from lexsearch.core.errors import is_retryable
from lexsearch.schemas.jobs import JobKind
from lexsearch.workers.celery_app import HEALTH_TASK_NAME, RECONCILE_TASK_NAME, celery_app

logger = logging.getLogger(__name__)

RECONCILE_BATCH_LIMIT = 50


# ---------------------------------------------------------------------------
# Async task helper
# Run async coroutines inside Celery's synchronous task context.
# ---------------------------------------------------------------------------

_loop: asyncio.AbstractEventLoop | None = None


def run_async(coro):
    """
    Execute an async coroutine from a synchronous Celery task.

    One event loop per worker process, reused across tasks: the pooled
    asyncpg connections and the HTTP clients are bound to the loop that
    created them.
    """
    global _loop
    if _loop is None or _loop.is_closed():
        _loop = asyncio.new_event_loop()
    return _loop.run_until_complete(coro)


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------

@lru_cache(maxsize=1)
def _build_processor():
    """Process-wide DocumentProcessor wired from settings."""
    from lexsearch.db.session import AsyncSessionLocal
    from lexsearch.processing.chunking import ChunkOptions
    from lexsearch.processing.embeddings import EmbeddingClient
    from lexsearch.processing.extractor import SourceFetcher
    from lexsearch.repositories.documents import DocumentRepository
    from lexsearch.services.ingestion import JobPublisher
    from lexsearch.services.processor import DocumentProcessor
    from lexsearch.vectorstore.factory import get_chunk_store

    return DocumentProcessor(
        documents=DocumentRepository(AsyncSessionLocal),
        chunk_store=get_chunk_store(),
        embedder=EmbeddingClient.from_settings(),
        fetcher=SourceFetcher.from_settings(),
        publisher=JobPublisher(),
        chunk_options=ChunkOptions.from_settings(),
        context_chars=settings.document_context_chars,
        error_max_chars=settings.error_message_max_chars,
    )


def _run_stage(task: Task, kind: JobKind, payload: dict[str, Any]) -> dict[str, Any]:
    processor = _build_processor()
    try:
        return run_async(processor.process(kind, payload))
    except Exception as exc:
        retries = task.request.retries or 0
        if is_retryable(exc) and retries < task.max_retries:
            countdown = settings.queue_backoff_seconds * (2 ** retries)
            logger.warning(
                "Stage retry scheduled | job=%s doc=%s attempt=%d countdown=%.1fs error=%s",
                kind.value, payload.get("document_id"), retries + 1, countdown, exc,
            )
            raise task.retry(exc=exc, countdown=countdown)
        logger.error(
            "Stage failed permanently | job=%s doc=%s attempts=%d error=%s",
            kind.value, payload.get("document_id"), retries + 1, exc,
        )
        raise


# ---------------------------------------------------------------------------
# Pipeline tasks
# ---------------------------------------------------------------------------

@celery_app.task(
    name=JobKind.PDF_EXTRACTION.value,
    bind=True,
    max_retries=settings.queue_max_attempts - 1,
    acks_late=True,
    reject_on_worker_lost=True,
)
def pdf_extraction(self: Task, payload: dict[str, Any]) -> dict[str, Any]:
    """Stage A: fetch → extract → persist full_text → enqueue Stage B."""
    return _run_stage(self, JobKind.PDF_EXTRACTION, payload)


@celery_app.task(
    name=JobKind.EMBEDDING_GENERATION.value,
    bind=True,
    max_retries=settings.queue_max_attempts - 1,
    acks_late=True,
    reject_on_worker_lost=True,
)
def embedding_generation(self: Task, payload: dict[str, Any]) -> dict[str, Any]:
    """Stage B: chunk → embed → replace chunk set → persist document vector."""
    return _run_stage(self, JobKind.EMBEDDING_GENERATION, payload)


TASKS_BY_KIND: dict[JobKind, Task] = {
    JobKind.PDF_EXTRACTION:       pdf_extraction,
    JobKind.EMBEDDING_GENERATION: embedding_generation,
}


# ---------------------------------------------------------------------------
# Reconciliation sweep: runs every 5 minutes via Celery Beat
# ---------------------------------------------------------------------------

@celery_app.task(
    name=RECONCILE_TASK_NAME,
    acks_late=True,
    soft_time_limit=55,
    time_limit=60,
)
def reconcile_stuck_documents() -> dict[str, int]:
    """Requeue documents stuck in PROCESSING (worker crashed mid-stage)."""
    processor = _build_processor()
    return run_async(
        processor.reconcile_stuck(
            stuck_minutes=settings.stuck_processing_minutes,
            limit=RECONCILE_BATCH_LIMIT,
        )
    )


# ---------------------------------------------------------------------------
# Health check task
# ---------------------------------------------------------------------------

@celery_app.task(name=HEALTH_TASK_NAME)
def health_check() -> dict[str, str]:
    from lexsearch.db.session import check_db_health

    db = run_async(check_db_health())
    return {"status": "ok", "worker": "healthy", "database": db["status"]}
