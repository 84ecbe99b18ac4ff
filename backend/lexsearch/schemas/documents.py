"""
Document Ingestion — Pydantic Request/Response Schemas

Covers the submission and status endpoints under /api/v1/documents/{id}:
  - ingest-url / ingest-text / reprocess requests (202 Accepted)
  - status read model polled by clients
  - the uniform error envelope used by every 4xx/5xx response

Design decisions:
  - Documents are created by the editorial workflow; these endpoints only
    attach content to an existing document_id and enqueue processing.
  - processing_status and embedding_status are separate state machines.
"""

from __future__ import annotations

from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from lexsearch.core.errors import CallerInputError, DocumentNotFoundError


# ---------------------------------------------------------------------------
# Pipeline state machines
# ---------------------------------------------------------------------------

class ProcessingStatus(str, Enum):
    """
    Maps to documents.processing_status (Stage A, extraction).
    Transitions: PENDING → PROCESSING → COMPLETED | FAILED
    """
    PENDING    = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED  = "COMPLETED"
    FAILED     = "FAILED"


class EmbeddingStatus(str, Enum):
    """
    Maps to documents.embedding_status (Stage B, chunk + embed).
    SKIPPED is set when Stage A failed and Stage B will never run.
    """
    PENDING    = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED  = "COMPLETED"
    FAILED     = "FAILED"
    SKIPPED    = "SKIPPED"


class PublicationStatus(str, Enum):
    """Owned by the editorial workflow; only PUBLISHED is searchable."""
    DRAFT     = "DRAFT"
    IN_REVIEW = "IN_REVIEW"
    PUBLISHED = "PUBLISHED"
    ARCHIVED  = "ARCHIVED"
    DEROGATED = "DEROGATED"


# ---------------------------------------------------------------------------
# Submission requests
# ---------------------------------------------------------------------------

class IngestUrlRequest(BaseModel):
    """POST /documents/{id}/ingest-url"""
    source_url: str = Field(..., min_length=1, max_length=2048, description="http(s) URL of a PDF or text file")

    @field_validator("source_url")
    @classmethod
    def strip_url(cls, v: str) -> str:
        return v.strip()


class IngestTextRequest(BaseModel):
    """POST /documents/{id}/ingest-text — raw text, skips extraction."""
    text: str = Field(..., min_length=1, description="Full document text")


class JobAcceptedResponse(BaseModel):
    """
    Returned immediately after a job is enqueued.
    HTTP 202 — poll /documents/{id}/status for progress.
    """
    document_id:       UUID
    job:               str = Field(..., description="pdf-extraction | embedding-generation")
    processing_status: ProcessingStatus
    embedding_status:  EmbeddingStatus


# ---------------------------------------------------------------------------
# Document status response: GET /documents/{id}/status
# ---------------------------------------------------------------------------

class DocumentStatusResponse(BaseModel):
    """Polled by clients to track async processing progress."""
    document_id:       UUID
    processing_status: ProcessingStatus
    embedding_status:  EmbeddingStatus
    embedding_error:   str | None = None
    chunks_count:      int = Field(0, description="Chunks currently stored for the document")


# ---------------------------------------------------------------------------
# Structured error bodies
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    """Single structured error — may appear in a list."""
    field:   str | None = Field(None, description="Request field that caused the error, if applicable")
    message: str
    code:    str        = Field(..., description="Machine-readable error code for client handling")


class ErrorResponse(BaseModel):
    """
    Uniform error envelope for all 4xx/5xx responses.
    Clients should check `error_code` for programmatic handling.
    """
    error_code: str               = Field(..., description="Stable machine-readable code")
    message:    str               = Field(..., description="Human-readable summary")
    details:    list[ErrorDetail] = Field(default_factory=list)
    request_id: str | None        = Field(None, description="Trace ID for log correlation")


class ApiErrors:
    """Factories for every documented error case."""

    @staticmethod
    def invalid_input(exc: CallerInputError, field: str | None = None) -> ErrorResponse:
        return ErrorResponse(
            error_code=exc.error_code,
            message=str(exc),
            details=[ErrorDetail(field=field, message=str(exc), code=exc.error_code)],
        )

    @staticmethod
    def document_not_found(exc: DocumentNotFoundError) -> ErrorResponse:
        return ErrorResponse(
            error_code="DOCUMENT_NOT_FOUND",
            message=f"Document '{exc.document_id}' was not found.",
            details=[],
        )

    @staticmethod
    def query_not_processed(message: str) -> ErrorResponse:
        return ErrorResponse(
            error_code="QUERY_NOT_PROCESSED",
            message=message,
            details=[],
        )

    @staticmethod
    def queue_error() -> ErrorResponse:
        return ErrorResponse(
            error_code="QUEUE_ERROR",
            message="The document could not be queued for processing.",
            details=[
                ErrorDetail(
                    field=None,
                    message="The message broker may be temporarily unavailable. Retry the request.",
                    code="QUEUE_ERROR",
                )
            ],
        )

    @staticmethod
    def internal_error(request_id: str | None = None) -> ErrorResponse:
        return ErrorResponse(
            error_code="INTERNAL_ERROR",
            message="An unexpected error occurred.",
            details=[],
            request_id=request_id,
        )
