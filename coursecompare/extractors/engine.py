"""Field extraction engine.

Source order per field (first acceptable value wins):

    structured data -> selector/attribute rules -> regex over relevant
    sentences -> regex over the full page text -> field fallback

The engine parses its own tree from the snapshot HTML and never writes
anywhere; storing the result is the caller's decision.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlparse

from bs4 import BeautifulSoup, Tag
from bs4.element import Comment, Doctype, ProcessingInstruction

from coursecompare.errors import ExtractionFailure
from coursecompare.extractors.normalize import collapse, normalize, strip_title_separator
from coursecompare.extractors.patterns import (
    FIELDS,
    AttributeRule,
    FieldSpec,
    RegexRule,
    SelectorRule,
    StructuredRule,
    evaluate,
    with_selectors,
)
from coursecompare.extractors.semantic import relevant_sentences
from coursecompare.items import PageSnapshot, ProgramRecord

logger = logging.getLogger(__name__)

_INVISIBLE_TAGS: frozenset[str] = frozenset(
    {"script", "style", "noscript", "template", "title", "head", "meta", "svg"},
)

# Host labels that never name the institution
_GENERIC_HOST_LABELS: frozenset[str] = frozenset(
    {"www", "edu", "ac", "uk", "ca", "com", "org", "net", "au", "nz", "in", "co"},
)

_PROGRAM_URL_RE = re.compile(
    r"\.edu/|\.ac\.uk/|\.edu\.au/|/programs?/|/courses?/|/degrees?/|/admissions?/",
    re.IGNORECASE,
)
_PROGRAM_PAGE_KEYWORDS: tuple[str, ...] = (
    "bachelor", "master", "phd", "doctorate",
    "degree", "program", "major",
    "tuition", "semester", "credit",
    "admission", "application",
)


# ---------------------------------------------------------------------------
# Page view
# ---------------------------------------------------------------------------

@dataclass
class Page:
    """Parsed snapshot shared by all rules of one extraction run."""

    soup: BeautifulSoup
    text: str
    url: str
    document_title: str

    @classmethod
    def from_snapshot(cls, snapshot: PageSnapshot) -> Page:
        try:
            soup = BeautifulSoup(snapshot.html or "", "lxml")
        except Exception as exc:
            logger.debug("HTML parse failed for %s: %s", snapshot.url, exc)
            soup = BeautifulSoup("", "lxml")

        text = collapse(snapshot.text) if snapshot.text is not None else _visible_text(soup)

        document_title = snapshot.title
        if document_title is None:
            title_tag = soup.find("title")
            document_title = title_tag.get_text() if title_tag else ""
        return cls(soup=soup, text=text, url=snapshot.url, document_title=collapse(document_title))


def _visible_text(soup: BeautifulSoup) -> str:
    parts: list[str] = []
    for node in soup.find_all(string=True):
        if isinstance(node, (Comment, Doctype, ProcessingInstruction)):
            continue
        parent = node.parent
        if parent is not None and parent.name in _INVISIBLE_TAGS:
            continue
        parts.append(str(node))
    return collapse(" ".join(parts))


# ---------------------------------------------------------------------------
# Fallbacks
# ---------------------------------------------------------------------------

def _fallback_title(page: Page) -> Iterable[str]:
    for tag_name in ("h1", "h2"):
        heading = page.soup.find(tag_name)
        if isinstance(heading, Tag):
            yield heading.get_text(" ", strip=True)
    if page.document_title:
        yield strip_title_separator(page.document_title)


def institution_from_host(url: str) -> str:
    """Guess an institution name from the page host: ``www.stanford.edu`` -> ``Stanford``."""
    try:
        host = urlparse(url).hostname or ""
    except ValueError:
        return ""
    for label in reversed(host.split(".")):
        if label and label not in _GENERIC_HOST_LABELS:
            return label[:1].upper() + label[1:]
    return ""


def _fallback_institution(page: Page) -> Iterable[str]:
    name = institution_from_host(page.url)
    if name:
        yield name


_FALLBACKS: dict[str, Callable[[Page], Iterable[str]]] = {
    "title": _fallback_title,
    "institution": _fallback_institution,
}


# ---------------------------------------------------------------------------
# Cascade
# ---------------------------------------------------------------------------

def _acceptable(value: str, spec: FieldSpec) -> str | None:
    collapsed = collapse(value)
    if spec.min_length <= len(collapsed) <= spec.max_length:
        return normalize(collapsed)
    return None


def _first_acceptable(candidates: Iterable[str], spec: FieldSpec) -> str | None:
    for candidate in candidates:
        value = _acceptable(candidate, spec)
        if value:
            return value
    return None


def resolve_field(spec: FieldSpec, page: Page) -> tuple[str | None, str]:
    """Run the cascade for one field.

    Returns ``(value, source)`` where *source* names the stage that produced
    the value (``"none"`` when every stage came up empty).
    """
    structured = [r for r in spec.rules if isinstance(r, StructuredRule)]
    dom = [r for r in spec.rules if isinstance(r, (SelectorRule, AttributeRule))]
    regex = [r for r in spec.rules if isinstance(r, RegexRule)]

    for rule in structured:
        value = _first_acceptable(evaluate(rule, page.soup), spec)
        if value:
            return value, "structured"

    for rule in dom:
        value = _first_acceptable(evaluate(rule, page.soup), spec)
        if value:
            return value, "selector"

    sentences = relevant_sentences(page.text, spec.name)
    for rule in regex:
        for sentence in sentences:
            value = _first_acceptable(evaluate(rule, page.soup, sentence), spec)
            if value:
                return value, "semantic"

    for rule in regex:
        value = _first_acceptable(evaluate(rule, page.soup, page.text), spec)
        if value:
            return value, "fulltext"

    fallback = _FALLBACKS.get(spec.name)
    if fallback is not None:
        value = _first_acceptable(fallback(page), spec)
        if value:
            return value, "fallback"

    return None, "none"


def _field_specs(profile: dict[str, Any] | None) -> list[FieldSpec]:
    selectors = (profile or {}).get("selectors") or {}
    if not isinstance(selectors, dict):
        selectors = {}
    return [with_selectors(spec, selectors.get(name)) for name, spec in FIELDS.items()]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def extract_field(
    snapshot: PageSnapshot,
    field: str,
    profile: dict[str, Any] | None = None,
) -> str | None:
    """Return the value of a single *field*, or None when nothing matched."""
    specs = {spec.name: spec for spec in _field_specs(profile)}
    if field not in specs:
        raise KeyError(f"Unknown field: {field!r}")
    value, _ = resolve_field(specs[field], Page.from_snapshot(snapshot))
    return value


def extract(snapshot: PageSnapshot, profile: dict[str, Any] | None = None) -> ProgramRecord:
    """Extract a :class:`ProgramRecord` from *snapshot*.

    Args:
        snapshot: Page HTML (and optionally visible text / document title).
        profile:  Optional settings from :func:`coursecompare.profiles.load_profile`;
                  its ``selectors`` mapping adds site-specific CSS selectors.

    Raises:
        ExtractionFailure: when title or institution cannot be resolved.
    """
    page = Page.from_snapshot(snapshot)

    values: dict[str, str] = {}
    extra_fields: dict[str, str] = {}
    missing: list[str] = []
    for spec in _field_specs(profile):
        value, source = resolve_field(spec, page)
        logger.debug("Field %s -> %r (%s)", spec.name, value, source)
        if value is None:
            if spec.required:
                missing.append(spec.name)
            continue
        if spec.extra:
            extra_fields[spec.name] = value
        else:
            values[spec.name] = value

    if missing:
        logger.info("Extraction failed for %s: missing %s", snapshot.url or "<no url>", missing)
        raise ExtractionFailure(missing, url=snapshot.url)

    return ProgramRecord(
        source_url=snapshot.url,
        extra_fields=extra_fields,
        extracted_at=datetime.now(UTC).isoformat(),
        **values,
    )


def is_program_page(snapshot: PageSnapshot) -> bool:
    """Cheap check for whether a page looks like an academic program page."""
    if _PROGRAM_URL_RE.search((snapshot.url or "").lower()):
        return True
    text = Page.from_snapshot(snapshot).text.lower()
    hits = sum(1 for keyword in _PROGRAM_PAGE_KEYWORDS if keyword in text)
    return hits >= 3
