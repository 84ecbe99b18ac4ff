"""
Queue job kinds and type-safe payloads.

Payloads travel through the Celery broker as JSON, so ids are strings on
the wire and validated back into UUIDs by the worker.
"""

from __future__ import annotations

from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict

QUEUE_NAME = "document-processing"


class JobKind(str, Enum):
    PDF_EXTRACTION       = "pdf-extraction"
    EMBEDDING_GENERATION = "embedding-generation"


class PdfExtractionJob(BaseModel):
    """Stage A: fetch source_url, extract text."""
    document_id: UUID
    source_url:  str

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "document_id": "5b1f3c2e-9a4d-4f7e-8a51-0d3c2b1a9e77",
                "source_url":  "https://example.gov.co/leyes/ley-100-1993.pdf",
            }
        }
    )


class EmbeddingGenerationJob(BaseModel):
    """Stage B: chunk full_text, embed, replace the chunk set."""
    document_id: UUID


JOB_PAYLOADS: dict[JobKind, type[BaseModel]] = {
    JobKind.PDF_EXTRACTION:       PdfExtractionJob,
    JobKind.EMBEDDING_GENERATION: EmbeddingGenerationJob,
}
