"""
Semantic Search Service

Query flow:
  1. Validate the query (≥ 3 characters after trimming)
  2. Embed the query with the same model used for chunks
  3. Fetch limit × 5 nearest chunks from published, active documents
     above min_score
  4. Aggregate: best chunk per document (first one wins ties)
  5. Sort by score, truncate to limit
  6. Build a readable snippet around the query terms
  7. Round scores to 3 decimals
"""

from __future__ import annotations

import logging
import re
import time
from uuid import UUID

from lexsearch.core.errors import InvalidQueryError, QueryProcessingError
from lexsearch.processing.embeddings import EmbeddingClient
from lexsearch.schemas.search import SearchResponse, SearchResult
from lexsearch.vectorstore.base import ChunkMatch, ChunkStoreBase

logger = logging.getLogger(__name__)

MIN_QUERY_LENGTH  = 3
CANDIDATE_FACTOR  = 5      # chunks fetched per requested document
SNIPPET_MAX_CHARS = 350
SNIPPET_STEP      = 50

_WHITESPACE_RE = re.compile(r"\s+")


class SearchService:
    """
    Usage:
        service  = SearchService(chunk_store, embedder)
        response = await service.search("¿Cuáles son los requisitos?", limit=5)
    """

    def __init__(
        self,
        chunk_store:       ChunkStoreBase,
        embedder:          EmbeddingClient,
        default_limit:     int   = 10,
        default_min_score: float = 0.5,
        snippet_max_chars: int   = SNIPPET_MAX_CHARS,
        max_limit:         int   = 50,
    ) -> None:
        self._chunk_store       = chunk_store
        self._embedder          = embedder
        self._default_limit     = default_limit
        self._default_min_score = default_min_score
        self._snippet_max_chars = snippet_max_chars
        self._max_limit         = max_limit

    async def search(
        self,
        query:     str,
        limit:     int | None   = None,
        min_score: float | None = None,
    ) -> SearchResponse:
        t0 = time.monotonic()
        limit = min(limit if limit is not None else self._default_limit, self._max_limit)
        min_score = min_score if min_score is not None else self._default_min_score

        normalized = (query or "").strip()
        if len(normalized) < MIN_QUERY_LENGTH:
            raise InvalidQueryError(
                f"Search query must be at least {MIN_QUERY_LENGTH} characters"
            )

        logger.info("Search start | query=%r limit=%d min_score=%.2f", normalized[:50], limit, min_score)

        try:
            query_vector = await self._embedder.embed_one(normalized)
        except Exception as exc:
            logger.error("Search query embedding failed | error=%s", exc)
            raise QueryProcessingError("Failed to process search query") from exc

        matches = await self._chunk_store.search_published(
            query_vector,
            limit=limit * CANDIDATE_FACTOR,
            min_similarity=min_score,
        )

        best = aggregate_by_document(matches)
        ranked = sorted(best, key=lambda m: m.similarity, reverse=True)[:limit]

        results = [
            SearchResult(
                document_id=m.document_id,
                title=m.document_title,
                score=round(m.similarity, 3),
                snippet=build_snippet(m.content, normalized, self._snippet_max_chars),
                chunk_index=m.chunk_index,
                article_ref=m.article_ref,
            )
            for m in ranked
        ]

        elapsed_ms = (time.monotonic() - t0) * 1000
        logger.info(
            "Search complete | chunks=%d documents=%d elapsed_ms=%.0f",
            len(matches), len(results), elapsed_ms,
        )
        return SearchResponse(
            results=results,
            total=len(results),
            query=normalized,
            execution_time_ms=round(elapsed_ms, 1),
        )


def aggregate_by_document(matches: list[ChunkMatch]) -> list[ChunkMatch]:
    """Best chunk per document; a later chunk only replaces on a strictly higher score."""
    best: dict[UUID, ChunkMatch] = {}
    for match in matches:
        current = best.get(match.document_id)
        if current is None or match.similarity > current.similarity:
            best[match.document_id] = match
    return list(best.values())


def build_snippet(content: str, query: str, max_chars: int = SNIPPET_MAX_CHARS) -> str:
    """
    Whitespace-collapsed excerpt of `content` of at most `max_chars`
    (plus ellipses), centred on the window with the most query terms.
    """
    text = _WHITESPACE_RE.sub(" ", content).strip()
    if len(text) <= max_chars:
        return text

    terms = [t for t in query.lower().split() if len(t) > 2]
    lowered = text.lower()

    best_start, best_count = 0, 0
    for i in range(0, len(text) - max_chars, SNIPPET_STEP):
        window = lowered[i : i + max_chars]
        count = sum(1 for term in terms if term in window)
        if count > best_count:
            best_start, best_count = i, count

    start = best_start
    end = min(start + max_chars, len(text))

    # Snap to word boundaries
    if start > 0:
        space_after = text.find(" ", start)
        if space_after != -1 and space_after < start + 20:
            start = space_after + 1

    space_before = text.rfind(" ", 0, end + 1)
    if space_before > start + 100:
        end = space_before

    snippet = text[start:end]
    if start > 0:
        snippet = "..." + snippet
    if end < len(text):
        snippet += "..."
    return snippet
