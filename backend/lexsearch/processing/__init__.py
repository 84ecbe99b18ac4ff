"""
Document Processing Package
════════════════════════════

Building blocks of the ingestion pipeline:

  Source Fetch → Text Extraction → Chunking → Embedding

Modules
───────
  extractor.py  HTTP source fetch (timeout, size cap, content type) and pypdf extraction
  chunking.py   Break-point heuristic chunker with article reference tagging
  embeddings.py Batched embedding client, provider adapter, vector format conversion

Design principles
─────────────────
  • Every component is stateless and dependency-injected.
  • All heavy computation runs in the Celery worker, never in the API process.
  • Every step emits structured log lines.
"""

from lexsearch.processing.chunking import ChunkOptions, TextChunk, chunk_text
from lexsearch.processing.embeddings import EmbeddingClient, OpenAIEmbeddingProvider
from lexsearch.processing.extractor import FetchedSource, SourceFetcher, extract_text

__all__ = [
    "ChunkOptions",
    "TextChunk",
    "chunk_text",
    "EmbeddingClient",
    "OpenAIEmbeddingProvider",
    "FetchedSource",
    "SourceFetcher",
    "extract_text",
]
