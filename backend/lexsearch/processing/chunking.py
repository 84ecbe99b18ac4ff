"""
Legal Text Chunker  —  Break-Point Heuristic Segmentation
══════════════════════════════════════════════════════════

Splits normalized legal text into overlapping, retrieval-sized passages.
This is a character-offset splitter, not a sentence tokenizer: it walks the
text in target-sized steps and snaps each cut to the best nearby boundary.

Algorithm
─────────
  1. Normalize line endings and whitespace (see _normalize_text).
  2. From the cursor, tentatively cut at cursor + TARGET.
  3. Search backwards (at most 200 chars, never past cursor + MAX) for the
     best break point, by tier:

        paragraph  \\n\\n
        line       \\n
        sentence   . ! ?  + whitespace
        clause     ; :    + whitespace
        comma      ,      + whitespace
        word       any whitespace

     The last match at or before the tentative cut wins; the first tier
     with a match wins. No match → hard cut.
  4. Keep the trimmed slice if it reaches MIN chars (or is the tail).
  5. Advance to max(cursor + 1, end - OVERLAP).

Structural tagging
──────────────────
  Colombian/Ecuadorian legal texts declare articles as "ARTÍCULO 49." at
  the start of a line. Each chunk is tagged with the article it belongs to
  ("articulo-49", "articulo-107-paragrafo-2"); a chunk with no declaration
  inherits the tag of the nearest preceding chunk that had one. Text inside
  parentheses is ignored so cross-references like "(Ver Ley 100; Art. 84)"
  never become tags.

The chunker is a pure function — same input, same output, no module state.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from functools import reduce

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration constants
# ---------------------------------------------------------------------------

DEFAULT_TARGET_SIZE = 1200
DEFAULT_MIN_SIZE    = 500
DEFAULT_MAX_SIZE    = 1500
DEFAULT_OVERLAP     = 100

# How far back from the tentative cut the break-point search may look
BREAK_SEARCH_WINDOW = 200

# (pattern, chars to skip past the match start)
_BREAK_TIERS: tuple[tuple[re.Pattern[str], int], ...] = (
    (re.compile(r"\n\n"),     2),   # paragraph
    (re.compile(r"\n"),       1),   # line
    (re.compile(r"[.!?]\s"),  2),   # sentence end
    (re.compile(r"[;:]\s"),   2),   # clause
    (re.compile(r",\s"),      2),   # comma
    (re.compile(r"\s"),       1),   # any whitespace
)

_PARENS_RE = re.compile(r"\([^)]*\)")

# Main declaration: "ARTÍCULO 67." at line start
_ARTICLE_DECLARATION_RE = re.compile(r"(?:^|\n)\s*ART[ÍI]CULO\s+(\d+)\s*\.?", re.IGNORECASE)
# Uppercase "ARTÍCULO 67" anywhere (case-sensitive on purpose)
_ARTICLE_UPPER_RE = re.compile(r"ART[ÍI]CULO\s+(\d+)")
# Last resort: "Art. 67", "artículo 67"
_ARTICLE_ANY_RE = re.compile(r"(?:ART[ÍI]CULO|Art\.?)\s*(\d+)", re.IGNORECASE)

_PARAGRAPH_RE = re.compile(
    r"PAR[ÁA]GRAFO\s+(?P<transitory>TRANSITORIO)\s*(?P<tnum>\d+)?"
    r"|PAR[ÁA]GRAFO\s*(?P<num>\d+)?",
    re.IGNORECASE,
)


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ChunkOptions:
    """Chunk sizing, in characters."""
    target_size: int = DEFAULT_TARGET_SIZE
    min_size:    int = DEFAULT_MIN_SIZE
    max_size:    int = DEFAULT_MAX_SIZE
    overlap:     int = DEFAULT_OVERLAP

    @classmethod
    def from_settings(cls) -> "ChunkOptions":
        from lexsearch.core.config import settings
        return cls(
            target_size=settings.chunk_target_size,
            min_size=settings.chunk_min_size,
            max_size=settings.chunk_max_size,
            overlap=settings.chunk_overlap,
        )


@dataclass(frozen=True)
class TextChunk:
    """
    One passage of a document.

    start / end are offsets into the *normalized* text (end exclusive,
    before trimming) — useful for coverage checks and debugging.
    """
    index:       int
    content:     str
    article_ref: str | None = None
    start:       int = 0
    end:         int = 0


@dataclass
class ChunkValidation:
    valid:    bool
    coverage: float
    issues:   list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def chunk_text(text: str, options: ChunkOptions | None = None) -> list[TextChunk]:
    """
    Split `text` into overlapping chunks optimised for embedding.

    Returns an ordered list with dense indices 0..n-1. Empty or
    whitespace-only input returns [].
    """
    opts = options or ChunkOptions()
    normalized = _normalize_text(text)

    if not normalized:
        return []

    if len(normalized) <= opts.min_size:
        spans = [(0, len(normalized), normalized)]
    else:
        spans = list(_iter_spans(normalized, opts))

    chunks = _tag_references(spans)
    logger.debug(
        "Chunked | chars=%d chunks=%d target=%d overlap=%d",
        len(normalized), len(chunks), opts.target_size, opts.overlap,
    )
    return chunks


def extract_article_ref(content: str) -> str | None:
    """
    Return the article reference declared in `content`, or None.

    Priority:
      1. "ARTÍCULO N" at the start of a line (formal declaration)
      2. "ARTÍCULO N" in uppercase anywhere
      3. "Art. N" / "artículo N" anywhere
    Parenthesized text is ignored at every tier. A PARÁGRAFO marker in
    the same content refines the reference.
    """
    cleaned = _PARENS_RE.sub(" ", content)

    match = (
        _ARTICLE_DECLARATION_RE.search(cleaned)
        or _ARTICLE_UPPER_RE.search(cleaned)
        or _ARTICLE_ANY_RE.search(cleaned)
    )
    if not match:
        return None

    ref = f"articulo-{match.group(1)}"

    paragraph = _PARAGRAPH_RE.search(cleaned)
    if paragraph:
        if paragraph.group("transitory"):
            ref += f"-transitorio-{paragraph.group('tnum') or '1'}"
        else:
            ref += f"-paragrafo-{paragraph.group('num') or '1'}"

    return ref


def estimate_token_count(text: str) -> int:
    """Rough token estimate (1 token ≈ 4 chars) for cost logging."""
    return math.ceil(len(text) / 4)


def validate_chunks(original_text: str, chunks: list[TextChunk]) -> ChunkValidation:
    """
    Sanity-check a chunk list: no empty chunks, dense indices, and a rough
    coverage ratio (total chunk chars / original chars, capped at 1.0 —
    overlap is not subtracted).
    """
    issues: list[str] = []

    if not chunks:
        if original_text.strip():
            issues.append("No chunks generated for non-empty text")
        return ChunkValidation(valid=not issues, coverage=0.0, issues=issues)

    empty = [c for c in chunks if not c.content.strip()]
    if empty:
        issues.append(f"Found {len(empty)} empty chunks")

    for position, chunk in enumerate(chunks):
        if chunk.index != position:
            issues.append(f"Chunk index mismatch at position {position}")

    total = sum(len(c.content) for c in chunks)
    coverage = min(1.0, total / len(original_text)) if original_text else 0.0

    return ChunkValidation(valid=not issues, coverage=coverage, issues=issues)


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------

def _normalize_text(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = re.sub(r"[ \t]+", " ", text)
    return text.strip()


def _iter_spans(text: str, opts: ChunkOptions):
    """Yield (start, end, trimmed_content) for every chunk worth keeping."""
    length = len(text)
    pos = 0

    while pos < length:
        end = min(pos + opts.target_size, length)
        if end < length:
            end = _find_break_point(text, pos, end, opts.max_size)

        content = text[pos:end].strip()
        if content and (len(content) >= opts.min_size or end >= length):
            yield pos, end, content

        if end >= length:
            break

        pos = max(pos + 1, end - opts.overlap)


def _find_break_point(text: str, start: int, target_end: int, max_size: int) -> int:
    """Best cut position near `target_end`; falls back to a hard cut."""
    search_start = max(start, target_end - BREAK_SEARCH_WINDOW)
    search_end = min(len(text), start + max_size)
    window = text[search_start:search_end]
    limit = target_end - search_start

    for pattern, skip in _BREAK_TIERS:
        offset = _find_last_match(window, pattern, limit)
        if offset != -1:
            return search_start + offset + skip

    return target_end


def _find_last_match(window: str, pattern: re.Pattern[str], max_position: int) -> int:
    last = -1
    for match in pattern.finditer(window):
        if match.start() > max_position:
            break
        last = match.start()
    return last


def _tag_references(spans: list[tuple[int, int, str]]) -> list[TextChunk]:
    """
    Fold over the spans, carrying the most recent article reference.
    Accumulator: (chunks_so_far, carried_reference).
    """

    def step(
        acc: tuple[list[TextChunk], str | None],
        span: tuple[int, int, str],
    ) -> tuple[list[TextChunk], str | None]:
        chunks, carried = acc
        start, end, content = span
        own_ref = extract_article_ref(content)
        ref = own_ref or carried
        chunks.append(
            TextChunk(index=len(chunks), content=content, article_ref=ref, start=start, end=end)
        )
        return chunks, ref

    chunks, _ = reduce(step, spans, ([], None))
    return chunks
