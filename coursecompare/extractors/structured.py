"""Author-declared structured data: JSON-LD blocks and schema.org microdata.

Only nodes typed as a course or educational program are considered.  This is
the highest-trust signal the extraction engine has, so it is consulted before
any selector or regex rule.  Malformed blocks are skipped, never raised.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterator
from typing import Any

from bs4 import BeautifulSoup, Tag

logger = logging.getLogger(__name__)

_PROGRAM_TYPES: frozenset[str] = frozenset(
    {
        "course",
        "courseinstance",
        "educationaloccupationalprogram",
        "educationalprogram",
        "workbasedprogram",
    },
)

# Field -> candidate property paths, tried in order
_FIELD_PATHS: dict[str, tuple[str, ...]] = {
    "title": ("name",),
    "institution": (
        "provider.name",
        "provider",
        "offeredBy.name",
        "offeredBy",
        "sourceOrganization.name",
    ),
    "location": (
        "location.name",
        "location.address.addressLocality",
        "location",
        "hasCourseInstance.location.name",
    ),
    "description": ("description",),
    "deadline": ("applicationDeadline",),
    "duration": ("timeToComplete", "timeRequired", "duration"),
    "credits": ("numberOfCredits", "numberOfCredits.value"),
    "format": ("educationalProgramMode", "hasCourseInstance.courseMode", "courseMode"),
}

_ISO_DURATION_RE = re.compile(
    r"^P(?:(?P<years>\d+(?:\.\d+)?)Y)?(?:(?P<months>\d+(?:\.\d+)?)M)?"
    r"(?:(?P<weeks>\d+)W)?(?:(?P<days>\d+)D)?$",
    re.IGNORECASE,
)

_MAX_DEPTH = 6


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _type_names(node: dict) -> list[str]:
    raw = node.get("@type", "")
    values = raw if isinstance(raw, list) else [raw]
    names: list[str] = []
    for value in values:
        if not isinstance(value, str):
            continue
        names.append(value.rstrip("/").rsplit("/", 1)[-1].lower())
    return names


def _is_program(node: dict) -> bool:
    return any(name in _PROGRAM_TYPES for name in _type_names(node))


def _walk(obj: Any, depth: int = 0) -> Iterator[dict]:
    """Yield every dict in a decoded JSON-LD tree, depth-first in document order."""
    if depth > _MAX_DEPTH:
        return
    if isinstance(obj, dict):
        yield obj
        for value in obj.values():
            if isinstance(value, (dict, list)):
                yield from _walk(value, depth + 1)
    elif isinstance(obj, list):
        for item in obj:
            yield from _walk(item, depth + 1)


def _resolve(node: Any, path: str) -> Any:
    """Follow a dotted property *path*; lists resolve to their first hit."""
    current: Any = node
    for part in path.split("."):
        if isinstance(current, list):
            hits = (_resolve(item, part) for item in current)
            current = next((hit for hit in hits if hit), None)
            continue
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    if isinstance(current, list):
        current = next((item for item in current if item), None)
    return current


def _scalar(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return value.strip() or None
    return None


def _humanize_duration(value: str) -> str:
    """Turn ISO 8601 durations such as ``P2Y`` into ``2 years``."""
    match = _ISO_DURATION_RE.match(value.strip())
    if not match or not any(match.groupdict().values()):
        return value
    parts: list[str] = []
    for unit in ("years", "months", "weeks", "days"):
        amount = match.group(unit)
        if amount:
            label = unit if amount not in ("1", "1.0") else unit[:-1]
            parts.append(f"{amount} {label}")
    return " ".join(parts)


def _price(node: dict) -> str | None:
    offers = _resolve(node, "offers")
    if not isinstance(offers, dict):
        return None
    price = _scalar(offers.get("price"))
    if not price:
        return None
    currency = _scalar(offers.get("priceCurrency")) or ""
    try:
        amount = float(price.replace(",", ""))
    except ValueError:
        return f"{currency} {price}".strip()
    formatted = f"{amount:,.0f}" if amount.is_integer() else f"{amount:,.2f}"
    if currency.upper() in ("", "USD"):
        return f"${formatted}"
    return f"{formatted} {currency}"


def _value_for(node: dict, field: str) -> str | None:
    if field == "tuition":
        return _price(node)
    for path in _FIELD_PATHS.get(field, ()):
        value = _scalar(_resolve(node, path))
        if value:
            if field == "duration":
                return _humanize_duration(value)
            return value
    return None


# ---------------------------------------------------------------------------
# JSON-LD
# ---------------------------------------------------------------------------

def _jsonld_nodes(soup: BeautifulSoup) -> Iterator[dict]:
    for script in soup.find_all("script", type="application/ld+json"):
        try:
            raw = json.loads(script.string or "")
        except (json.JSONDecodeError, TypeError) as exc:
            logger.debug("Skipping malformed JSON-LD block: %s", exc)
            continue
        for node in _walk(raw):
            if _is_program(node):
                yield node


# ---------------------------------------------------------------------------
# Microdata
# ---------------------------------------------------------------------------

def _prop_value(tag: Tag) -> Any:
    if tag.has_attr("itemscope"):
        return _microdata_to_dict(tag)
    if tag.name == "meta":
        return tag.get("content", "")
    if tag.name in ("a", "link"):
        return tag.get("href", "")
    if tag.name == "time" and tag.get("datetime"):
        return tag.get("datetime")
    if tag.has_attr("content"):
        return tag.get("content")
    return tag.get_text(" ", strip=True)


def _collect_props(scope: Tag, into: dict) -> None:
    for child in scope.children:
        if not isinstance(child, Tag):
            continue
        itemprop = child.get("itemprop")
        if itemprop:
            value = _prop_value(child)
            for name in str(itemprop).split():
                into.setdefault(name, value)
            continue
        if child.has_attr("itemscope"):
            # A separate top-level item; its properties are not ours
            continue
        _collect_props(child, into)


def _microdata_to_dict(scope: Tag) -> dict:
    node: dict[str, Any] = {}
    itemtype = scope.get("itemtype")
    if itemtype:
        node["@type"] = str(itemtype).split()
    _collect_props(scope, node)
    return node


def _microdata_nodes(soup: BeautifulSoup) -> Iterator[dict]:
    for scope in soup.find_all(attrs={"itemscope": True, "itemtype": True}):
        if not isinstance(scope, Tag):
            continue
        node = _microdata_to_dict(scope)
        if _is_program(node):
            yield node


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def structured_fields() -> frozenset[str]:
    """Fields this reader knows how to map."""
    return frozenset(_FIELD_PATHS) | {"tuition"}


def read_structured(soup: BeautifulSoup, field: str) -> str | None:
    """Return the first non-empty structured value for *field*, or None.

    JSON-LD blocks are scanned before microdata.  Any error while reading a
    single node only skips that node.
    """
    if field not in structured_fields():
        return None
    for source in (_jsonld_nodes, _microdata_nodes):
        try:
            for node in source(soup):
                try:
                    value = _value_for(node, field)
                except (AttributeError, TypeError, ValueError) as exc:
                    logger.debug("Skipping structured node for %s: %s", field, exc)
                    continue
                if value:
                    return value
        except Exception as exc:
            logger.debug("Structured data source %s failed: %s", source.__name__, exc)
    return None
