"""
In-Memory Chunk Store

Local-development and test backend. Brute-force cosine similarity with
numpy over every stored chunk, which is fine for a few thousand chunks.

Embeddings are kept in the same float32 byte format the embedding client
produces for storage, so precision matches the pgvector column.

Publication state is not owned by this store: callers register document
title / visibility with set_document(). Unregistered documents are treated
as unpublished.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Sequence
from uuid import UUID

import numpy as np

from lexsearch.processing.embeddings import bytes_to_vector, vector_to_bytes
from lexsearch.vectorstore.base import ChunkMatch, ChunkRecord, ChunkStoreBase

logger = logging.getLogger(__name__)


@dataclass
class _StoredChunk:
    chunk_index: int
    content:     str
    article_ref: str | None
    embedding:   bytes


@dataclass
class _DocumentInfo:
    title:     str
    published: bool


class InMemoryChunkStore(ChunkStoreBase):

    def __init__(self) -> None:
        self._chunks: dict[UUID, list[_StoredChunk]] = {}
        self._documents: dict[UUID, _DocumentInfo] = {}
        self._lock = asyncio.Lock()

    def set_document(self, document_id: UUID, *, title: str = "", published: bool = True) -> None:
        """Register a document's title and whether it is published + active."""
        self._documents[document_id] = _DocumentInfo(title=title, published=published)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def replace_chunks(self, document_id: UUID, records: Sequence[ChunkRecord]) -> int:
        new_set = sorted(
            (
                _StoredChunk(
                    chunk_index=r.chunk_index,
                    content=r.content,
                    article_ref=r.article_ref,
                    embedding=vector_to_bytes(r.embedding),
                )
                for r in records
            ),
            key=lambda c: c.chunk_index,
        )
        async with self._lock:
            # Single assignment: readers see either the old list or the new one.
            self._chunks[document_id] = new_set
        logger.debug("Chunks replaced | document=%s inserted=%d", document_id, len(new_set))
        return len(new_set)

    async def delete_chunks(self, document_id: UUID) -> int:
        async with self._lock:
            removed = self._chunks.pop(document_id, [])
        return len(removed)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def count(self, document_id: UUID) -> int:
        return len(self._chunks.get(document_id, []))

    async def find_by_document(self, document_id: UUID) -> list[ChunkRecord]:
        return [
            ChunkRecord(
                document_id=document_id,
                chunk_index=c.chunk_index,
                content=c.content,
                article_ref=c.article_ref,
                embedding=bytes_to_vector(c.embedding),
            )
            for c in self._chunks.get(document_id, [])
        ]

    async def search_published(
        self,
        vector:         Sequence[float],
        limit:          int   = 50,
        min_similarity: float = 0.5,
    ) -> list[ChunkMatch]:
        published = [
            doc_id for doc_id, info in self._documents.items() if info.published
        ]
        return self._search(vector, limit, min_similarity, published)

    async def search(
        self,
        vector:         Sequence[float],
        limit:          int   = 10,
        min_similarity: float = 0.7,
        document_ids:   Sequence[UUID] | None = None,
    ) -> list[ChunkMatch]:
        candidates = list(document_ids) if document_ids else list(self._chunks)
        return self._search(vector, limit, min_similarity, candidates)

    def _search(
        self,
        vector:         Sequence[float],
        limit:          int,
        min_similarity: float,
        document_ids:   list[UUID],
    ) -> list[ChunkMatch]:
        query = np.asarray(vector, dtype=np.float32)
        query_norm = float(np.linalg.norm(query))
        if query_norm == 0.0:
            return []

        matches: list[ChunkMatch] = []
        for document_id in document_ids:
            info = self._documents.get(document_id)
            for chunk in self._chunks.get(document_id, []):
                stored = np.frombuffer(chunk.embedding, dtype="<f4")
                stored_norm = float(np.linalg.norm(stored))
                if stored_norm == 0.0:
                    continue
                similarity = float(np.dot(query, stored) / (query_norm * stored_norm))
                if similarity < min_similarity:
                    continue
                matches.append(
                    ChunkMatch(
                        document_id=document_id,
                        chunk_index=chunk.chunk_index,
                        content=chunk.content,
                        article_ref=chunk.article_ref,
                        similarity=similarity,
                        document_title=info.title if info else "",
                    )
                )

        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches[:limit]
