"""
Celery Application Factory

Configures the Celery app for the two-stage document pipeline.
Broker: RabbitMQ (amqp://) in production; Redis (redis://) works for local dev.
Result backend: Redis. Failed jobs stay there for inspection (dead state)
until result_expires.

Queue topology:
  document-processing   pdf-extraction, embedding-generation,
                        reconcile-stuck-documents
  system.health         internal health-check tasks

Reliability:
  acks_late + prefetch 1 gives at-least-once delivery; a job whose worker
  dies is redelivered. Both stages are safe to re-run.
"""

from __future__ import annotations

import logging

from celery import Celery
from celery.signals import task_failure, task_postrun, task_prerun, task_retry
from kombu import Exchange, Queue

from lexsearch.core.config import settings
from lexsearch.schemas.jobs import QUEUE_NAME, JobKind

logger = logging.getLogger(__name__)

RECONCILE_TASK_NAME = "reconcile-stuck-documents"
HEALTH_TASK_NAME    = "health-check"
RECONCILE_INTERVAL_SECONDS = 300

# ---------------------------------------------------------------------------
# Queue and exchange definitions
# ---------------------------------------------------------------------------

DOCUMENTS_EXCHANGE = Exchange("documents", type="direct", durable=True)

TASK_QUEUES = (
    Queue(
        QUEUE_NAME,
        exchange=DOCUMENTS_EXCHANGE,
        routing_key=QUEUE_NAME,
        durable=True,
    ),
    Queue(
        "system.health",
        Exchange("system", type="direct"),
        routing_key="system.health",
        durable=True,
    ),
)

TASK_ROUTES = {
    JobKind.PDF_EXTRACTION.value:       {"queue": QUEUE_NAME},
    JobKind.EMBEDDING_GENERATION.value: {"queue": QUEUE_NAME},
    RECONCILE_TASK_NAME:                {"queue": QUEUE_NAME},
    HEALTH_TASK_NAME:                   {"queue": "system.health"},
}

# ---------------------------------------------------------------------------
# Celery app factory
# ---------------------------------------------------------------------------

def create_celery_app() -> Celery:
    app = Celery("lexsearch")

    app.conf.update(
        # --- Broker / Backend ---
        broker_url=settings.celery_broker_url,
        result_backend=settings.celery_result_backend,

        # --- Serialization (reject non-JSON messages) ---
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        event_serializer="json",

        # --- Queues ---
        task_queues=TASK_QUEUES,
        task_routes=TASK_ROUTES,
        task_default_queue=QUEUE_NAME,
        task_default_exchange="documents",
        task_default_routing_key=QUEUE_NAME,

        # --- Reliability ---
        task_acks_late=True,           # ack only after task completes
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,  # one job at a time per worker process
        worker_concurrency=settings.queue_concurrency,

        # --- Timeouts ---
        task_soft_time_limit=300,
        task_time_limit=360,

        # --- Results ---
        task_track_started=True,
        result_expires=7 * 24 * 3600,  # keep failed jobs a week for inspection

        # --- Timezone ---
        timezone="UTC",
        enable_utc=True,

        # --- Beat schedule (stuck-document sweep) ---
        beat_schedule={
            "reconcile-stuck-documents-every-5m": {
                "task":     RECONCILE_TASK_NAME,
                "schedule": RECONCILE_INTERVAL_SECONDS,
                "options":  {"queue": QUEUE_NAME},
            },
        },

        # --- Worker ---
        worker_max_tasks_per_child=200,   # recycle workers to prevent memory bloat
    )

    app.autodiscover_tasks(["lexsearch.workers"])

    return app


celery_app = create_celery_app()


# ---------------------------------------------------------------------------
# Celery signals: structured task lifecycle logging
# ---------------------------------------------------------------------------

def _document_id(kwargs: dict | None) -> str:
    payload = (kwargs or {}).get("payload") or {}
    return payload.get("document_id", "?")


@task_prerun.connect
def on_task_prerun(task_id, task, args, kwargs, **_):
    logger.info(
        "Task start | task_id=%s task=%s doc=%s attempt=%d",
        task_id, task.name, _document_id(kwargs), task.request.retries + 1,
    )


@task_postrun.connect
def on_task_postrun(task_id, task, args, kwargs, retval, state, **_):
    logger.info(
        "Task end | task_id=%s task=%s state=%s doc=%s",
        task_id, task.name, state, _document_id(kwargs),
    )


@task_retry.connect
def on_task_retry(request, reason, einfo, **_):
    logger.warning(
        "Task retry | task_id=%s task=%s doc=%s reason=%s",
        request.id, request.task, _document_id(request.kwargs), reason,
    )


@task_failure.connect
def on_task_failure(task_id, exception, args, kwargs, traceback, einfo, **_):
    logger.error(
        "Task failed | task_id=%s doc=%s error=%s",
        task_id, _document_id(kwargs), exception,
        exc_info=True,
    )
