from lexsearch.vectorstore.base import ChunkMatch, ChunkRecord, ChunkStoreBase
from lexsearch.vectorstore.factory import get_chunk_store

__all__ = ["ChunkStoreBase", "ChunkRecord", "ChunkMatch", "get_chunk_store"]
