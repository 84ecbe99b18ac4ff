"""
Source Fetch & Text Extraction
══════════════════════════════

Stage A of the ingestion pipeline in two steps:

  SourceFetcher.fetch(url)    download the source document over HTTP
  extract_text(source)        turn the downloaded bytes into plain text

Fetch limits:
  • hard timeout     FETCH_TIMEOUT_SECONDS (default 60 s), covering connect,
                     headers and the full body
  • size cap         FETCH_MAX_BYTES (default 50 MB), enforced on the
                     Content-Length header and again while streaming
  • content type     application/pdf or text/plain, anything else is rejected

Error classification (read by the Celery task to decide on retries):

  ┌──────────────────────────────────────────┬────────────┐
  │  failure                                 │ retryable  │
  ├──────────────────────────────────────────┼────────────┤
  │  timeout / connection / protocol error   │ yes        │
  │  HTTP 5xx, 429                           │ yes        │
  │  HTTP 4xx (other)                        │ no         │
  │  unsupported content type                │ no         │
  │  payload over the size cap               │ no         │
  │  unparseable PDF / no text               │ no         │
  └──────────────────────────────────────────┴────────────┘
"""

from __future__ import annotations

import asyncio
import io
import logging
import time
from dataclasses import dataclass

import httpx

from lexsearch.core.errors import ExtractionError, SourceFetchError

logger = logging.getLogger(__name__)

FETCH_TIMEOUT_SECONDS = 60.0
FETCH_MAX_BYTES       = 50 * 1024 * 1024
FETCH_USER_AGENT      = "LexSearch-Bot/1.0"

PDF_CONTENT_TYPE  = "application/pdf"
TEXT_CONTENT_TYPE = "text/plain"
SUPPORTED_CONTENT_TYPES = (PDF_CONTENT_TYPE, TEXT_CONTENT_TYPE)


# ---------------------------------------------------------------------------
# Result dataclass
# ---------------------------------------------------------------------------

@dataclass
class FetchedSource:
    url:          str
    content_type: str     # normalized media type, parameters stripped
    data:         bytes
    elapsed_ms:   float = 0.0

    @property
    def is_pdf(self) -> bool:
        return self.content_type == PDF_CONTENT_TYPE


# ---------------------------------------------------------------------------
# Fetcher
# ---------------------------------------------------------------------------

class SourceFetcher:
    """
    Downloads a source document with a timeout and size cap.

    `transport` is passed through to httpx.AsyncClient (tests inject an
    httpx.MockTransport).
    """

    def __init__(
        self,
        timeout:    float = FETCH_TIMEOUT_SECONDS,
        max_bytes:  int   = FETCH_MAX_BYTES,
        user_agent: str   = FETCH_USER_AGENT,
        transport:  httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout    = timeout
        self._max_bytes  = max_bytes
        self._user_agent = user_agent
        self._transport  = transport

    @classmethod
    def from_settings(cls) -> "SourceFetcher":
        from lexsearch.core.config import settings
        return cls(
            timeout=settings.fetch_timeout_seconds,
            max_bytes=settings.fetch_max_bytes,
            user_agent=settings.fetch_user_agent,
        )

    async def fetch(self, url: str) -> FetchedSource:
        t0 = time.monotonic()

        # httpx timeouts apply per connect/read; the deadline bounds the whole download
        try:
            async with asyncio.timeout(self._timeout):
                async with httpx.AsyncClient(
                    timeout=self._timeout,
                    transport=self._transport,
                    follow_redirects=True,
                    headers={"User-Agent": self._user_agent},
                ) as client:
                    async with client.stream("GET", url) as response:
                        self._check_status(url, response)
                        content_type = self._check_content_type(url, response)
                        self._check_declared_size(url, response)
                        data = await self._read_capped(url, response)
        except SourceFetchError:
            raise
        except TimeoutError as exc:
            raise SourceFetchError(
                f"Failed to fetch {url}: exceeded {self._timeout:g}s deadline",
                retryable=True,
            ) from exc
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise SourceFetchError(
                f"Failed to fetch {url}: {type(exc).__name__}: {exc}",
                retryable=True,
            ) from exc

        elapsed_ms = (time.monotonic() - t0) * 1000
        logger.info(
            "Source fetched | url=%s content_type=%s bytes=%d elapsed_ms=%.0f",
            url, content_type, len(data), elapsed_ms,
        )
        return FetchedSource(url=url, content_type=content_type, data=data, elapsed_ms=elapsed_ms)

    def _check_status(self, url: str, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        retryable = status >= 500 or status == 429
        raise SourceFetchError(
            f"Failed to fetch {url}: HTTP {status}",
            retryable=retryable,
        )

    def _check_content_type(self, url: str, response: httpx.Response) -> str:
        raw = response.headers.get("content-type", "")
        media_type = raw.split(";", 1)[0].strip().lower()
        if media_type not in SUPPORTED_CONTENT_TYPES:
            raise SourceFetchError(
                f"Invalid content type for {url}: {raw or 'missing'}. "
                f"Expected one of {', '.join(SUPPORTED_CONTENT_TYPES)}",
                retryable=False,
            )
        return media_type

    def _check_declared_size(self, url: str, response: httpx.Response) -> None:
        declared = response.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > self._max_bytes:
            raise SourceFetchError(
                f"Source {url} too large: {declared} bytes (max {self._max_bytes})",
                retryable=False,
            )

    async def _read_capped(self, url: str, response: httpx.Response) -> bytes:
        buffer = bytearray()
        async for piece in response.aiter_bytes():
            buffer.extend(piece)
            if len(buffer) > self._max_bytes:
                raise SourceFetchError(
                    f"Source {url} exceeded {self._max_bytes} bytes while downloading",
                    retryable=False,
                )
        return bytes(buffer)


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

async def extract_text(source: FetchedSource) -> str:
    """
    Plain text of a fetched source. PDF parsing is CPU-bound and runs in
    the default thread executor so the worker's event loop stays free.
    """
    loop = asyncio.get_event_loop()
    t0 = time.monotonic()

    try:
        if source.is_pdf:
            text = await loop.run_in_executor(None, _extract_pdf, source.data)
        else:
            text = _decode_text(source.data)
    except Exception as exc:
        logger.warning(
            "Text extraction failed | url=%s type=%s error=%s",
            source.url, source.content_type, exc,
        )
        raise ExtractionError(f"Could not extract text from {source.url}: {exc}") from exc

    if not text.strip():
        raise ExtractionError(f"No text could be extracted from {source.url}")

    logger.info(
        "Text extracted | url=%s chars=%d elapsed_ms=%.0f",
        source.url, len(text), (time.monotonic() - t0) * 1000,
    )
    return text


def _extract_pdf(data: bytes) -> str:
    """Extract text from PDF bytes using pypdf."""
    from pypdf import PdfReader

    reader = PdfReader(io.BytesIO(data))
    pages = [page.extract_text() or "" for page in reader.pages]
    return "\n\n".join(p.strip() for p in pages if p.strip())


def _decode_text(data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data.decode("latin-1", errors="replace")
