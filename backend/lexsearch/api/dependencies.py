"""
FastAPI dependency providers.

Each collaborator has its own provider so tests can swap any of them with
app.dependency_overrides (e.g. an in-memory document store, a fake
embedding provider, a recording job publisher).
"""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from lexsearch.core.config import settings
from lexsearch.processing.embeddings import EmbeddingClient
from lexsearch.repositories.documents import DocumentRepository, DocumentStore
from lexsearch.services.ingestion import IngestionService, JobPublisher
from lexsearch.services.search import SearchService
from lexsearch.vectorstore.base import ChunkStoreBase
from lexsearch.vectorstore.factory import get_chunk_store


def get_document_store() -> DocumentStore:
    from lexsearch.db.session import AsyncSessionLocal
    return DocumentRepository(AsyncSessionLocal)


@lru_cache(maxsize=1)
def get_embedding_client() -> EmbeddingClient:
    return EmbeddingClient.from_settings()


def get_job_publisher() -> JobPublisher:
    return JobPublisher()


def get_ingestion_service(
    documents:   Annotated[DocumentStore, Depends(get_document_store)],
    chunk_store: Annotated[ChunkStoreBase, Depends(get_chunk_store)],
    publisher:   Annotated[JobPublisher, Depends(get_job_publisher)],
) -> IngestionService:
    return IngestionService(documents=documents, chunk_store=chunk_store, publisher=publisher)


def get_search_service(
    chunk_store: Annotated[ChunkStoreBase, Depends(get_chunk_store)],
    embedder:    Annotated[EmbeddingClient, Depends(get_embedding_client)],
) -> SearchService:
    return SearchService(
        chunk_store=chunk_store,
        embedder=embedder,
        default_limit=settings.search_default_limit,
        default_min_score=settings.search_default_min_score,
        snippet_max_chars=settings.snippet_max_chars,
        max_limit=settings.search_max_limit,
    )


# ---------------------------------------------------------------------------
# Annotated aliases for route signatures
# ---------------------------------------------------------------------------

Ingestion = Annotated[IngestionService, Depends(get_ingestion_service)]
Search    = Annotated[SearchService,    Depends(get_search_service)]
