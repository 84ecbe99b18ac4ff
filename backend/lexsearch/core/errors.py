"""
Error taxonomy for the ingestion pipeline and search.

Three families:

  PipelineError      — raised inside a processing stage. Carries a
                       `retryable` flag the Celery task reads to decide
                       between self.retry() (transient) and a terminal
                       failure (recorded on the document, not retried).

  CallerInputError   — bad input rejected synchronously at the boundary
                       (short query, malformed URL, empty text). Never
                       enqueued; mapped to HTTP 400.

  QueryProcessingError / DocumentNotFoundError — request-time failures the
                       API layer maps to 400 / 404.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Retryable exception detection
# ---------------------------------------------------------------------------

_RETRYABLE_EXCEPTION_TYPES = (
    # openai
    "RateLimitError",
    "APITimeoutError",
    "APIConnectionError",
    "InternalServerError",
    # httpx / generic
    "TimeoutException",
    "ConnectTimeout",
    "ReadTimeout",
    "WriteTimeout",
    "PoolTimeout",
    "ConnectError",
    "ReadError",
    "RemoteProtocolError",
    "TimeoutError",
)


def is_retryable(exc: BaseException) -> bool:
    """True if the exception class name suggests a transient provider or network error."""
    if isinstance(exc, (PipelineError, JobEnqueueError)):
        return exc.retryable
    name = type(exc).__name__
    return any(name.endswith(r) for r in _RETRYABLE_EXCEPTION_TYPES)


def truncate_error(exc: BaseException | str, max_chars: int = 500) -> str:
    """Error text as stored on the document (embedding_error column)."""
    message = str(exc) or type(exc).__name__
    return message[:max_chars]


# ---------------------------------------------------------------------------
# Pipeline (worker-side) errors
# ---------------------------------------------------------------------------

class PipelineError(Exception):
    """A processing stage failed. `retryable` drives the queue's retry policy."""

    retryable: bool = False

    def __init__(self, message: str, *, retryable: bool | None = None) -> None:
        super().__init__(message)
        if retryable is not None:
            self.retryable = retryable


class SourceFetchError(PipelineError):
    """Download failed: network, timeout, HTTP status, content type or size."""


class ExtractionError(PipelineError):
    """Fetched content produced no usable text."""


class EmbeddingError(PipelineError):
    """The embedding provider call failed."""


class DocumentNotFoundError(PipelineError):
    def __init__(self, document_id: object) -> None:
        super().__init__(f"Document {document_id} not found", retryable=False)
        self.document_id = document_id


# ---------------------------------------------------------------------------
# Caller input errors (request-side, never enqueued)
# ---------------------------------------------------------------------------

class CallerInputError(ValueError):
    """Input rejected synchronously at the boundary."""

    error_code: str = "INVALID_INPUT"


class InvalidQueryError(CallerInputError):
    error_code = "INVALID_QUERY"


class InvalidSourceUrlError(CallerInputError):
    error_code = "INVALID_SOURCE_URL"


class EmptyTextError(CallerInputError):
    error_code = "EMPTY_TEXT"


class MissingTextError(CallerInputError):
    """Stage B was requested for a document that has no extracted text."""

    error_code = "MISSING_FULL_TEXT"


class QueryProcessingError(Exception):
    """The query embedding could not be produced. Not retried."""

    error_code = "QUERY_NOT_PROCESSED"


class JobEnqueueError(Exception):
    """The broker rejected or could not accept a job. Mapped to HTTP 503."""

    error_code = "QUEUE_ERROR"
    retryable  = True
