"""
SQLAlchemy ORM Models — Documents & Chunks

Using SQLAlchemy mapped classes (2.x style) for full async support.
Vector columns use the pgvector extension (CREATE EXTENSION vector).

Ownership:
  documents        created and published by the editorial workflow; this
                   service only writes the processing / embedding fields,
                   full_text, source_url and the document-level embedding.
  document_chunks  owned entirely by the embedding stage; the set for a
                   document is always replaced as a whole.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from lexsearch.core.config import settings

EMBEDDING_DIMENSIONS = settings.embedding_dimensions


# ---------------------------------------------------------------------------
# Declarative base: shared across all models
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Document model: documents
# ---------------------------------------------------------------------------

class Document(Base):
    """
    A legal text unit (law, decree, resolution) under processing.

    Two state machines run side by side:

        processing_status   PENDING → PROCESSING → COMPLETED | FAILED
        embedding_status    PENDING → PROCESSING → COMPLETED | FAILED
                            (SKIPPED when extraction failed)

    Publication state (status) belongs to the editorial workflow. Only
    PUBLISHED + is_active documents are visible to search.
    """

    __tablename__ = "documents"
    __table_args__ = (
        CheckConstraint(
            "status IN ('DRAFT', 'IN_REVIEW', 'PUBLISHED', 'ARCHIVED', 'DEROGATED')",
            name="documents_status_check",
        ),
        CheckConstraint(
            "processing_status IN ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED')",
            name="documents_processing_status_check",
        ),
        CheckConstraint(
            "embedding_status IN ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED', 'SKIPPED')",
            name="documents_embedding_status_check",
        ),
        Index("idx_documents_status",            "status", "is_active"),
        Index("idx_documents_processing_status", "processing_status", "updated_at"),
        Index("idx_documents_embedding_status",  "embedding_status", "updated_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )

    title:   Mapped[str]           = mapped_column(Text, nullable=False)
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Publication workflow
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default="DRAFT",
        server_default="DRAFT",
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default="true",
    )

    # Content
    source_url: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Where the source PDF/text was fetched from",
    )
    full_text: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Extracted plain text; null until extraction succeeds",
    )

    # Pipeline state
    processing_status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="PENDING", server_default="PENDING",
    )
    embedding_status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="PENDING", server_default="PENDING",
    )
    embedding_error: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Last pipeline error, truncated to 500 chars",
    )

    # Whole-document vector (title + summary + text prefix)
    embedding: Mapped[Optional[list[float]]] = mapped_column(
        Vector(EMBEDDING_DIMENSIONS), nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    chunks: Mapped[list["DocumentChunk"]] = relationship(
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="DocumentChunk.chunk_index",
    )

    def __repr__(self) -> str:
        return (
            f"<Document id={self.id} status={self.status} "
            f"processing={self.processing_status} embedding={self.embedding_status}>"
        )


# ---------------------------------------------------------------------------
# Chunk model: document_chunks
# ---------------------------------------------------------------------------

class DocumentChunk(Base):
    """
    One retrieval passage of a Document.

    chunk_index is 0-based and dense within a document. The HNSW index
    serves cosine-distance (<=>) ordering for similarity search.
    """

    __tablename__ = "document_chunks"
    __table_args__ = (
        UniqueConstraint("document_id", "chunk_index", name="uq_document_chunks_position"),
        Index("idx_document_chunks_document_id", "document_id"),
        Index(
            "idx_document_chunks_embedding_hnsw",
            "embedding",
            postgresql_using="hnsw",
            postgresql_with={"m": 16, "ef_construction": 64},
            postgresql_ops={"embedding": "vector_cosine_ops"},
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )
    document_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    chunk_index: Mapped[int]           = mapped_column(Integer, nullable=False)
    content:     Mapped[str]           = mapped_column(Text, nullable=False)
    article_ref: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="e.g. articulo-49, articulo-107-paragrafo-2",
    )
    embedding: Mapped[list[float]] = mapped_column(Vector(EMBEDDING_DIMENSIONS), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    document: Mapped[Document] = relationship(back_populates="chunks")

    def __repr__(self) -> str:
        return (
            f"<DocumentChunk document={self.document_id} index={self.chunk_index} "
            f"ref={self.article_ref!r}>"
        )
