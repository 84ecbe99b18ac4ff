"""
Document Ingestion API Router

  POST /api/v1/documents/{document_id}/ingest-url    attach a source URL, run Stage A
  POST /api/v1/documents/{document_id}/ingest-text   attach raw text, run Stage B
  POST /api/v1/documents/{document_id}/reprocess     re-run Stage B on stored text
  GET  /api/v1/documents/{document_id}/status        poll pipeline progress

Request lifecycle:
  ┌─────────────────────────────────────────────────────────┐
  │ 1. Body validation (pydantic)                           │
  │ 2. Input checks in IngestionService (400 on rejection)  │
  │ 3. Document lookup (404 if unknown)                     │
  │ 4. Status fields reset, job published → 202             │
  └─────────────────────────────────────────────────────────┘

Error mapping lives in main.py exception handlers; routes stay thin.
"""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, status

from lexsearch.api.dependencies import Ingestion
from lexsearch.schemas.documents import (
    DocumentStatusResponse,
    ErrorResponse,
    IngestTextRequest,
    IngestUrlRequest,
    JobAcceptedResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/documents",
    tags=["Document Ingestion"],
)

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid input (URL, empty text, missing full_text)"},
    404: {"model": ErrorResponse, "description": "Document not found"},
    503: {"model": ErrorResponse, "description": "Message broker unavailable"},
}


@router.post(
    "/{document_id}/ingest-url",
    response_model=JobAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Fetch and process a source document",
    description=(
        "Stores the http(s) source URL and enqueues text extraction. "
        "Accepts application/pdf or text/plain sources up to 50 MB."
    ),
    responses=_ERROR_RESPONSES,
)
async def ingest_url(
    document_id: UUID,
    body:        IngestUrlRequest,
    service:     Ingestion,
) -> JobAcceptedResponse:
    return await service.submit_url(document_id, body.source_url)


@router.post(
    "/{document_id}/ingest-text",
    response_model=JobAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Process raw document text",
    description="Stores the text as full_text and enqueues chunking + embedding.",
    responses=_ERROR_RESPONSES,
)
async def ingest_text(
    document_id: UUID,
    body:        IngestTextRequest,
    service:     Ingestion,
) -> JobAcceptedResponse:
    return await service.submit_text(document_id, body.text)


@router.post(
    "/{document_id}/reprocess",
    response_model=JobAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Regenerate chunks and embeddings",
    description="Re-runs the embedding stage on the stored full_text without re-fetching.",
    responses=_ERROR_RESPONSES,
)
async def reprocess(document_id: UUID, service: Ingestion) -> JobAcceptedResponse:
    return await service.reprocess_embeddings(document_id)


@router.get(
    "/{document_id}/status",
    response_model=DocumentStatusResponse,
    summary="Pipeline status",
    responses={404: _ERROR_RESPONSES[404]},
)
async def get_status(document_id: UUID, service: Ingestion) -> DocumentStatusResponse:
    return await service.get_status(document_id)
