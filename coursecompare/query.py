"""coursecompare.query - page acquisition and one-call extraction.

Uses only the stdlib (``urllib``) for HTTP.

Basic usage::

    from coursecompare.query import extract_url

    record = extract_url("https://www.example.edu/programs/msc-data-science")
    print(record.title, record.institution, record.tuition)

From HTML you already have::

    from coursecompare.query import extract_html

    record = extract_html(html, url="https://www.example.edu/programs/msc")
"""

from __future__ import annotations

import gzip
import logging
import random
import time
import urllib.error
import urllib.request
import zlib
from typing import Any
from urllib.parse import urlparse

from coursecompare.errors import CourseCompareError
from coursecompare.extractors.engine import extract
from coursecompare.items import PageSnapshot, ProgramRecord
from coursecompare.settings import FETCH_MAX_RETRIES, FETCH_TIMEOUT

logger = logging.getLogger(__name__)

_DEFAULT_UA = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/122.0.0.0 Safari/537.36"
)

_RETRY_CODES: frozenset[int] = frozenset({429, 500, 502, 503, 504})


class FetchError(CourseCompareError):
    """Raised when a URL cannot be fetched.

    Attributes:
        url    -- the URL that failed
        status -- HTTP status code (0 if no response was received)
    """

    def __init__(self, message: str, url: str = "", status: int = 0) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


def _decode_body(raw: bytes, headers: Any, url: str) -> str:
    encoding = str(headers.get("Content-Encoding", "") or "").lower().strip()
    try:
        if encoding == "gzip":
            raw = gzip.decompress(raw)
        elif encoding in ("deflate", "zlib"):
            raw = zlib.decompress(raw)
    except (OSError, zlib.error) as exc:
        raise FetchError(f"{encoding} decompression failed for {url}: {exc}", url=url) from exc

    try:
        charset = headers.get_content_charset("utf-8") or "utf-8"
    except AttributeError:
        charset = "utf-8"
    try:
        return raw.decode(charset, errors="replace")
    except LookupError:
        return raw.decode("utf-8", errors="replace")


def _backoff(attempt: int, retry_after: int = 0) -> float:
    return max(retry_after, 2 ** attempt) + random.uniform(0, 1)


def fetch_html(
    url: str,
    *,
    timeout: int = FETCH_TIMEOUT,
    user_agent: str | None = None,
    max_retries: int = FETCH_MAX_RETRIES,
) -> str:
    """Fetch *url* and return the decoded response body.

    Retries up to *max_retries* times with jittered exponential backoff on
    429/5xx responses and network-level failures.

    Raises:
        FetchError: On HTTP errors, connection failures, or non-HTTP URLs.
    """
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise FetchError(f"Unsupported URL scheme: {parsed.scheme!r}", url=url)

    req = urllib.request.Request(
        url,
        headers={
            "User-Agent": user_agent or _DEFAULT_UA,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
            "Accept-Encoding": "gzip, deflate",
        },
    )

    last_exc: FetchError | None = None
    for attempt in range(max_retries + 1):
        try:
            with urllib.request.urlopen(req, timeout=timeout) as resp:
                return _decode_body(resp.read(), resp.headers, url)

        except urllib.error.HTTPError as exc:
            error = FetchError(
                f"HTTP {exc.code} fetching {url}: {exc.reason}", url=url, status=exc.code,
            )
            if exc.code in _RETRY_CODES and attempt < max_retries:
                ra_header = exc.headers.get("Retry-After", "") if exc.headers else ""
                retry_after = int(ra_header) if ra_header and ra_header.strip().isdigit() else 0
                delay = _backoff(attempt, retry_after)
                logger.debug(
                    "HTTP %d for %s, retrying in %.1fs (attempt %d/%d)",
                    exc.code, url, delay, attempt + 1, max_retries,
                )
                time.sleep(delay)
                last_exc = error
                continue
            raise error from exc

        except urllib.error.URLError as exc:
            error = FetchError(f"URL error fetching {url}: {exc.reason}", url=url)
            if attempt < max_retries:
                delay = _backoff(attempt)
                logger.debug(
                    "URL error for %s, retrying in %.1fs (attempt %d/%d): %s",
                    url, delay, attempt + 1, max_retries, exc.reason,
                )
                time.sleep(delay)
                last_exc = error
                continue
            raise error from exc

        except OSError as exc:
            error = FetchError(f"Network error fetching {url}: {exc}", url=url)
            if attempt < max_retries:
                delay = _backoff(attempt)
                logger.debug(
                    "Network error for %s, retrying in %.1fs (attempt %d/%d): %s",
                    url, delay, attempt + 1, max_retries, exc,
                )
                time.sleep(delay)
                last_exc = error
                continue
            raise error from exc

    raise last_exc or FetchError(f"All retries exhausted for {url}", url=url)


def extract_html(
    html: str,
    url: str = "",
    profile: dict[str, Any] | None = None,
) -> ProgramRecord:
    """Extract a record from an HTML string.  See :func:`coursecompare.extractors.engine.extract`."""
    return extract(PageSnapshot(html=html, url=url), profile=profile)


def extract_url(
    url: str,
    *,
    timeout: int = FETCH_TIMEOUT,
    profile: dict[str, Any] | None = None,
) -> ProgramRecord:
    """Fetch *url* and extract a record from it.

    Raises:
        FetchError:        the page could not be fetched.
        ExtractionFailure: title or institution could not be resolved.
    """
    html = fetch_html(url, timeout=timeout)
    return extract_html(html, url=url, profile=profile)
