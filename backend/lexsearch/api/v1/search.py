"""
Semantic Search API Router
POST /api/v1/search
"""

from __future__ import annotations

from fastapi import APIRouter

from lexsearch.api.dependencies import Search
from lexsearch.schemas.documents import ErrorResponse
from lexsearch.schemas.search import SearchRequest, SearchResponse

router = APIRouter(tags=["Search"])


@router.post(
    "/search",
    response_model=SearchResponse,
    summary="Semantic search over published documents",
    description=(
        "Embeds the query and returns the best-matching passage of each "
        "published document, ranked by cosine similarity."
    ),
    responses={
        400: {"model": ErrorResponse, "description": "Query too short or could not be processed"},
    },
)
async def search(body: SearchRequest, service: Search) -> SearchResponse:
    return await service.search(body.query, limit=body.limit, min_score=body.min_score)
