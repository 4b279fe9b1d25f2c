"""Text cleanup helpers used by every extraction stage.

All functions here are total: they never raise, and on odd input they return
the (capped) input unchanged.
"""

from __future__ import annotations

import re
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from coursecompare.settings import MAX_FIELD_LENGTH

_WS_RE = re.compile(r"\s+")

_NUMBER_WORDS: dict[str, str] = {
    "one": "1",
    "two": "2",
    "three": "3",
    "four": "4",
    "five": "5",
    "six": "6",
}
_NUMBER_WORD_RE = re.compile(
    r"\b(" + "|".join(_NUMBER_WORDS) + r")\b",
    re.IGNORECASE,
)

# Separators sites put between the page name and the site name in <title>
_TITLE_SEPARATOR_RE = re.compile(r"\s*(?:\||\s-\s|\s–\s|\s—\s|::|»)\s*")

_MONEY_RE = re.compile(r"\$\s?(\d[\d,]*(?:\.\d+)?)")

# Query parameters that carry no meaning for program identity
_TRACKING_PARAMS: frozenset[str] = frozenset(
    {
        "utm_source",
        "utm_medium",
        "utm_campaign",
        "utm_term",
        "utm_content",
        "fbclid",
        "gclid",
        "msclkid",
        "_ga",
        "mc_cid",
        "mc_eid",
        "ref",
    },
)


def collapse(text: str | None) -> str:
    """Collapse whitespace runs to single spaces and trim, without capping."""
    if not text:
        return ""
    return _WS_RE.sub(" ", str(text)).strip()


def normalize(text: str | None, max_length: int = MAX_FIELD_LENGTH) -> str:
    """Collapse whitespace, trim, and cap to *max_length* characters."""
    return collapse(text)[:max_length].rstrip()


def word_to_digit(text: str | None) -> str:
    """Replace the whole words "one".."six" with digits, case-insensitively."""
    if not text:
        return ""
    return _NUMBER_WORD_RE.sub(lambda m: _NUMBER_WORDS[m.group(1).lower()], text)


def strip_title_separator(text: str | None) -> str:
    """Return the part of a document title before the first site separator.

    ``"MSc Data Science | Example University"`` -> ``"MSc Data Science"``
    """
    cleaned = collapse(text)
    if not cleaned:
        return ""
    head = _TITLE_SEPARATOR_RE.split(cleaned, maxsplit=1)[0].strip()
    return head or cleaned


def money_amount(text: str | None) -> float | None:
    """Return the first ``$``-prefixed amount in *text* as a float."""
    if not text:
        return None
    match = _MONEY_RE.search(text)
    if not match:
        return None
    try:
        return float(match.group(1).replace(",", ""))
    except ValueError:
        return None


def canonical_url(url: str | None) -> str:
    """Reduce *url* to a stable identity string for duplicate detection.

    Lowercases scheme and host, drops ``www.``, default ports, fragments,
    tracking parameters and a trailing slash.  Non-URLs are returned
    collapsed and lowercased.
    """
    raw = collapse(url)
    if not raw:
        return ""
    try:
        parsed = urlparse(raw)
        port = parsed.port
    except ValueError:
        return raw.lower()
    if not parsed.scheme or not parsed.netloc:
        return raw.lower()

    host = (parsed.hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    if port in (80, 443):
        port = None
    netloc = f"{host}:{port}" if port else host

    query = urlencode(
        sorted(
            (k, v)
            for k, v in parse_qsl(parsed.query, keep_blank_values=True)
            if k.lower() not in _TRACKING_PARAMS
        ),
    )
    path = parsed.path.rstrip("/")
    return urlunparse((parsed.scheme.lower(), netloc, path, "", query, ""))
