"""
Chunk Store — Abstract Base

Every concrete chunk store backend (pgvector, in-memory) implements this
interface. The pipeline and search only speak this protocol, so backends
are swappable without changing service code.

Consistency contract (enforced by ALL implementations):
  - replace_chunks() swaps a document's whole chunk set atomically:
    a concurrent reader sees either the old set or the new one, never a mix.
  - Concurrent replace_chunks() calls for the same document are serialized.
  - search_published() only returns chunks of documents whose publication
    status is PUBLISHED and that are active.
  - Similarity is cosine similarity (1 - cosine distance), higher is better.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Sequence
from uuid import UUID


# ---------------------------------------------------------------------------
# Shared data types
# ---------------------------------------------------------------------------

@dataclass
class ChunkRecord:
    """A chunk with its embedding, as written by the embedding stage."""
    document_id: UUID
    chunk_index: int
    content:     str
    embedding:   list[float]
    article_ref: str | None = None


@dataclass
class ChunkMatch:
    """One result returned from a similarity search."""
    document_id:    UUID
    chunk_index:    int
    content:        str
    similarity:     float
    article_ref:    str | None = None
    document_title: str = ""


# ---------------------------------------------------------------------------
# Abstract interface
# ---------------------------------------------------------------------------

class ChunkStoreBase(ABC):
    """Persistence and similarity search for document chunks."""

    @abstractmethod
    async def replace_chunks(self, document_id: UUID, records: Sequence[ChunkRecord]) -> int:
        """
        Delete every existing chunk of `document_id` and insert `records`,
        as one atomic unit. Returns the number of chunks inserted.
        """

    @abstractmethod
    async def delete_chunks(self, document_id: UUID) -> int:
        """Delete ALL chunks of a document. Returns the number deleted."""

    @abstractmethod
    async def count(self, document_id: UUID) -> int:
        """Number of chunks stored for a document."""

    @abstractmethod
    async def find_by_document(self, document_id: UUID) -> list[ChunkRecord]:
        """Chunks of a document ordered by chunk_index."""

    @abstractmethod
    async def search_published(
        self,
        vector:         Sequence[float],
        limit:          int   = 50,
        min_similarity: float = 0.5,
    ) -> list[ChunkMatch]:
        """
        Most similar chunks across published, active documents, ordered by
        similarity descending. Chunks below `min_similarity` are dropped.
        """

    @abstractmethod
    async def search(
        self,
        vector:         Sequence[float],
        limit:          int   = 10,
        min_similarity: float = 0.7,
        document_ids:   Sequence[UUID] | None = None,
    ) -> list[ChunkMatch]:
        """
        Similarity search without the publication filter, optionally
        restricted to `document_ids`. Used for internal tooling.
        """
