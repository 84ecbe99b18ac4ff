"""
Search — Pydantic Request/Response Schemas for POST /api/v1/search
"""

from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel, Field


class SearchRequest(BaseModel):
    query:     str   = Field(..., max_length=1000, description="Free-text query (min 3 chars after trim)")
    limit:     int   = Field(10, ge=1, le=50, description="Maximum number of documents returned")
    min_score: float = Field(0.5, ge=0.0, le=1.0, description="Minimum cosine similarity")


class SearchResult(BaseModel):
    """Best-matching passage of one document."""
    document_id: UUID
    title:       str
    score:       float       = Field(..., description="Cosine similarity, rounded to 3 decimals")
    snippet:     str
    chunk_index: int
    article_ref: str | None = None


class SearchResponse(BaseModel):
    results:           list[SearchResult]
    total:             int
    query:             str
    execution_time_ms: float
