"""
Document Repository

Narrow persistence interface over the documents table used by the
pipeline, the submission service and the reconciliation sweep.

Every method opens its own short transaction through the session
factory: a stage writes its status, does minutes of I/O without holding
a connection, then writes the outcome.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lexsearch.core.errors import DocumentNotFoundError
from lexsearch.models.documents import Document
from lexsearch.schemas.documents import EmbeddingStatus, ProcessingStatus

logger = logging.getLogger(__name__)

# Columns the pipeline is allowed to write
UPDATABLE_FIELDS = frozenset(
    {
        "full_text",
        "processing_status",
        "embedding_status",
        "embedding_error",
        "embedding",
        "status",
        "source_url",
    }
)


class DocumentStore(Protocol):
    async def find_by_id(self, document_id: UUID) -> Document | None: ...

    async def update(self, document_id: UUID, **fields: Any) -> None: ...

    async def find_stale_processing(self, older_than: datetime, limit: int = 50) -> list[Document]: ...


class DocumentRepository:
    """SQLAlchemy implementation of DocumentStore."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def find_by_id(self, document_id: UUID) -> Document | None:
        async with self._session_factory() as session:
            return await session.get(Document, document_id)

    async def update(self, document_id: UUID, **fields: Any) -> None:
        """
        Write `fields` to the document and bump updated_at.
        Raises DocumentNotFoundError when no row matched.
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable: {', '.join(sorted(unknown))}")

        values = {k: _plain(v) for k, v in fields.items()}
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(Document)
                    .where(Document.id == document_id)
                    .values(**values, updated_at=func.now())
                )

        if result.rowcount == 0:
            raise DocumentNotFoundError(document_id)

        logger.debug(
            "Document updated | id=%s fields=%s",
            document_id, ",".join(sorted(k for k in fields if k != "embedding")),
        )

    async def find_stale_processing(self, older_than: datetime, limit: int = 50) -> list[Document]:
        """
        Documents untouched since before `older_than` that are either stuck
        in a PROCESSING state or extracted but still waiting for Stage B.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                select(Document)
                .where(
                    or_(
                        Document.processing_status == ProcessingStatus.PROCESSING.value,
                        Document.embedding_status == EmbeddingStatus.PROCESSING.value,
                        and_(
                            Document.processing_status == ProcessingStatus.COMPLETED.value,
                            Document.embedding_status == EmbeddingStatus.PENDING.value,
                        ),
                    ),
                    Document.updated_at < older_than,
                )
                .order_by(Document.updated_at)
                .limit(limit)
            )
            return list(result.scalars())


def _plain(value: Any) -> Any:
    """Enum members are stored by value."""
    return value.value if isinstance(value, (ProcessingStatus, EmbeddingStatus)) else value
