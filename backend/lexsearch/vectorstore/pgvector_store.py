"""
pgvector Chunk Store
════════════════════

Production backend: chunks live in PostgreSQL (document_chunks) with an
HNSW cosine index on the embedding column.

Atomic replacement:
  replace_chunks() runs in ONE transaction:

      SELECT pg_advisory_xact_lock(hashtext(:document_id))
      DELETE FROM document_chunks WHERE document_id = :document_id
      INSERT INTO document_chunks ... (all new rows)
      COMMIT

  The advisory lock serializes concurrent replacements of the same document
  (e.g. a redelivered job racing the original). It is released at commit.
  Readers under READ COMMITTED see the old set until commit, then the new.

Similarity search:
  similarity = 1 - (embedding <=> query)   (cosine distance operator)
  ORDER BY distance uses the HNSW index; the min-similarity filter is
  applied as distance <= 1 - min_similarity.
"""

from __future__ import annotations

import logging
import time
from typing import Sequence
from uuid import UUID

from sqlalchemy import delete, func, insert, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lexsearch.models.documents import Document, DocumentChunk
from lexsearch.schemas.documents import PublicationStatus
from lexsearch.vectorstore.base import ChunkMatch, ChunkRecord, ChunkStoreBase

logger = logging.getLogger(__name__)

# Rows per INSERT statement during replacement
_INSERT_BATCH_SIZE = 500


class PgVectorChunkStore(ChunkStoreBase):
    """
    Usage:
        store = PgVectorChunkStore(AsyncSessionLocal)
        await store.replace_chunks(document_id, records)
        matches = await store.search_published(query_vector, limit=50, min_similarity=0.5)
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def replace_chunks(self, document_id: UUID, records: Sequence[ChunkRecord]) -> int:
        t0 = time.monotonic()
        rows = [
            {
                "document_id": document_id,
                "chunk_index": r.chunk_index,
                "content":     r.content,
                "article_ref": r.article_ref,
                "embedding":   r.embedding,
            }
            for r in records
        ]

        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(
                    select(func.pg_advisory_xact_lock(func.hashtext(str(document_id))))
                )
                result = await session.execute(
                    delete(DocumentChunk).where(DocumentChunk.document_id == document_id)
                )
                for i in range(0, len(rows), _INSERT_BATCH_SIZE):
                    await session.execute(insert(DocumentChunk), rows[i : i + _INSERT_BATCH_SIZE])

        logger.info(
            "Chunks replaced | document=%s deleted=%d inserted=%d elapsed_ms=%.0f",
            document_id, result.rowcount or 0, len(rows), (time.monotonic() - t0) * 1000,
        )
        return len(rows)

    async def delete_chunks(self, document_id: UUID) -> int:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(DocumentChunk).where(DocumentChunk.document_id == document_id)
                )
        deleted = result.rowcount or 0
        logger.info("Chunks deleted | document=%s count=%d", document_id, deleted)
        return deleted

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def count(self, document_id: UUID) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count())
                .select_from(DocumentChunk)
                .where(DocumentChunk.document_id == document_id)
            )
            return int(result.scalar_one())

    async def find_by_document(self, document_id: UUID) -> list[ChunkRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(DocumentChunk)
                .where(DocumentChunk.document_id == document_id)
                .order_by(DocumentChunk.chunk_index)
            )
            return [
                ChunkRecord(
                    document_id=row.document_id,
                    chunk_index=row.chunk_index,
                    content=row.content,
                    article_ref=row.article_ref,
                    embedding=[float(v) for v in row.embedding],
                )
                for row in result.scalars()
            ]

    async def search_published(
        self,
        vector:         Sequence[float],
        limit:          int   = 50,
        min_similarity: float = 0.5,
    ) -> list[ChunkMatch]:
        return await self._search(
            vector,
            limit,
            min_similarity,
            Document.status == PublicationStatus.PUBLISHED.value,
            Document.is_active.is_(True),
        )

    async def search(
        self,
        vector:         Sequence[float],
        limit:          int   = 10,
        min_similarity: float = 0.7,
        document_ids:   Sequence[UUID] | None = None,
    ) -> list[ChunkMatch]:
        filters = []
        if document_ids:
            filters.append(DocumentChunk.document_id.in_(list(document_ids)))
        return await self._search(vector, limit, min_similarity, *filters)

    async def _search(self, vector, limit, min_similarity, *filters) -> list[ChunkMatch]:
        distance = DocumentChunk.embedding.cosine_distance(list(vector))
        stmt = (
            select(
                DocumentChunk.document_id,
                DocumentChunk.chunk_index,
                DocumentChunk.content,
                DocumentChunk.article_ref,
                Document.title,
                (1 - distance).label("similarity"),
            )
            .join(Document, Document.id == DocumentChunk.document_id)
            .where(distance <= 1 - min_similarity, *filters)
            .order_by(distance)
            .limit(limit)
        )

        t0 = time.monotonic()
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows = result.all()

        logger.debug(
            "Vector search | limit=%d min_similarity=%.2f hits=%d elapsed_ms=%.0f",
            limit, min_similarity, len(rows), (time.monotonic() - t0) * 1000,
        )
        return [
            ChunkMatch(
                document_id=row.document_id,
                chunk_index=row.chunk_index,
                content=row.content,
                article_ref=row.article_ref,
                document_title=row.title,
                similarity=float(row.similarity),
            )
            for row in rows
        ]
