"""
FastAPI Application — Entry Point

Legal document ingestion and semantic search API.

Architecture:
  - All routes are versioned under /api/v1/
  - Heavy work (fetch, extraction, embedding) runs in Celery workers;
    the API only validates, records and enqueues
  - Structured JSON error responses on all 4xx/5xx

Middleware stack (innermost → outermost):
  1. CORS — restrict to configured origins
  2. Request ID injection — X-Request-ID header on every response
  3. Gzip — compress responses > 1 KB
  4. Request logging — structured log per request with latency
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from lexsearch.api.v1.documents import router as documents_router
from lexsearch.api.v1.search import router as search_router
from lexsearch.core.config import settings
from lexsearch.core.errors import (
    CallerInputError,
    DocumentNotFoundError,
    JobEnqueueError,
    QueryProcessingError,
)
from lexsearch.db.session import check_db_health
from lexsearch.schemas.documents import ApiErrors, ErrorDetail, ErrorResponse

logger = logging.getLogger(__name__)

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)


# ---------------------------------------------------------------------------
# Application lifespan: startup / shutdown hooks
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Run on startup: validate DB connectivity, log config summary.
    Run on shutdown: clean up connection pools.
    """
    logger.info(
        "Starting LexSearch | env=%s chunk_store=%s embedding_model=%s",
        settings.app_env, settings.chunk_store_backend, settings.embedding_model,
    )

    if settings.chunk_store_backend == "pgvector":
        db_health = await check_db_health()
        if db_health["status"] != "ok":
            logger.critical("Database health check failed at startup: %s", db_health)
            raise RuntimeError(f"DB unavailable: {db_health}")
        logger.info("Database: connected")

    yield

    logger.info("Shutting down LexSearch")
    from lexsearch.db.session import engine
    await engine.dispose()


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app() -> FastAPI:
    app = FastAPI(
        title="LexSearch",
        description=(
            "Legal document ingestion pipeline and semantic search API. "
            "Documents are chunked by article, embedded, and ranked by cosine similarity."
        ),
        version="1.0.0",
        docs_url="/api/docs" if not settings.is_production else None,
        redoc_url="/api/redoc" if not settings.is_production else None,
        openapi_url="/api/openapi.json" if not settings.is_production else None,
        lifespan=lifespan,
    )

    # ----------------------------------------------------------------
    # Middleware (applied in reverse order: last added = outermost)
    # ----------------------------------------------------------------

    app.add_middleware(GZipMiddleware, minimum_size=1024)

    allowed_origins = ["*"] if settings.app_env == "development" else []
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
    )

    @app.middleware("http")
    async def request_id_and_logging(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        start = time.perf_counter()

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request_id

        logger.info(
            "HTTP %s %s %d %.1fms | request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            request_id,
        )
        return response

    # ----------------------------------------------------------------
    # Exception handlers: uniform structured error responses
    # ----------------------------------------------------------------

    def _error(status_code: int, body: ErrorResponse, request: Request) -> JSONResponse:
        body.request_id = request.headers.get("X-Request-ID")
        return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))

    @app.exception_handler(CallerInputError)
    async def caller_input_handler(request: Request, exc: CallerInputError):
        return _error(status.HTTP_400_BAD_REQUEST, ApiErrors.invalid_input(exc), request)

    @app.exception_handler(QueryProcessingError)
    async def query_processing_handler(request: Request, exc: QueryProcessingError):
        return _error(status.HTTP_400_BAD_REQUEST, ApiErrors.query_not_processed(str(exc)), request)

    @app.exception_handler(DocumentNotFoundError)
    async def not_found_handler(request: Request, exc: DocumentNotFoundError):
        return _error(status.HTTP_404_NOT_FOUND, ApiErrors.document_not_found(exc), request)

    @app.exception_handler(JobEnqueueError)
    async def enqueue_handler(request: Request, exc: JobEnqueueError):
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, ApiErrors.queue_error(), request)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Convert Pydantic/FastAPI validation errors to structured ErrorResponse."""
        details = [
            ErrorDetail(
                field=" → ".join(str(loc) for loc in err["loc"]),
                message=err["msg"],
                code="VALIDATION_ERROR",
            )
            for err in exc.errors()
        ]
        body = ErrorResponse(
            error_code="VALIDATION_ERROR",
            message="Request validation failed.",
            details=details,
        )
        return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, body, request)

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Catch-all for unhandled exceptions — never expose stack traces."""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        logger.exception(
            "Unhandled exception | path=%s request_id=%s",
            request.url.path, request_id,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ApiErrors.internal_error(request_id).model_dump(mode="json"),
            headers={"X-Request-ID": request_id},
        )

    # ----------------------------------------------------------------
    # Routers
    # ----------------------------------------------------------------

    app.include_router(documents_router, prefix="/api/v1")
    app.include_router(search_router,    prefix="/api/v1")

    # ----------------------------------------------------------------
    # Health endpoint (used by load balancer)
    # ----------------------------------------------------------------

    @app.get(
        "/health",
        tags=["Operations"],
        summary="Health probe",
        description="Returns 200 when the database is reachable, 503 otherwise.",
    )
    async def health() -> JSONResponse:
        db_status = await check_db_health()
        if db_status["status"] != "ok":
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "degraded", "service": "lexsearch-api", "database": db_status},
            )
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"status": "ok", "service": "lexsearch-api", "database": db_status},
        )

    return app


# ---------------------------------------------------------------------------
# Application instance (imported by uvicorn)
# ---------------------------------------------------------------------------

app = create_app()


# ---------------------------------------------------------------------------
# Local development entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "lexsearch.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.app_env == "development",
        log_level="debug" if settings.debug else "info",
        access_log=True,
    )
