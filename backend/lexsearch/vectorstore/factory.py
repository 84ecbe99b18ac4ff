"""
Chunk Store Factory

Selects the correct backend (pgvector | memory) based on config.
The rest of the app only imports get_chunk_store() — never touches
the concrete classes directly.

Usage in a FastAPI route (via dependency):
    store: ChunkStoreBase = Depends(get_chunk_store)
"""

from __future__ import annotations

from functools import lru_cache

from lexsearch.core.config import settings
from lexsearch.vectorstore.base import ChunkStoreBase


@lru_cache(maxsize=1)
def get_chunk_store() -> ChunkStoreBase:
    """
    Return the process-wide chunk store for the configured backend.
    The memory backend must be shared so writes are visible to searches.
    """
    backend = settings.chunk_store_backend.lower()

    if backend == "pgvector":
        from lexsearch.db.session import AsyncSessionLocal
        from lexsearch.vectorstore.pgvector_store import PgVectorChunkStore
        return PgVectorChunkStore(AsyncSessionLocal)

    if backend == "memory":
        from lexsearch.vectorstore.memory_store import InMemoryChunkStore
        return InMemoryChunkStore()

    raise ValueError(
        f"Unknown chunk store backend: '{backend}'. "
        f"Valid options: 'pgvector', 'memory'"
    )
