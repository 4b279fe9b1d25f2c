"""Per-field extraction rules and the single evaluator that runs them.

Each field owns an ordered tuple of rules.  Position is priority: structural
signals (class-scoped selectors, metadata attributes) come before free-text
regexes, which come before the loosest catch-all regexes.  The extraction
engine decides *when* each kind of rule runs; this module only describes the
rules and evaluates one rule at a time.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass

import dateparser
from bs4 import BeautifulSoup, Tag

from coursecompare.extractors.normalize import (
    collapse,
    money_amount,
    normalize,
    strip_title_separator,
    word_to_digit,
)
from coursecompare.extractors.structured import read_structured
from coursecompare.settings import MAX_FIELD_LENGTH, TUITION_MAX, TUITION_MIN

logger = logging.getLogger(__name__)

Transform = Callable[[str], str]
Predicate = Callable[[str], bool]


# ---------------------------------------------------------------------------
# Rule variants
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StructuredRule:
    """Read *field* from JSON-LD / microdata."""

    field: str


@dataclass(frozen=True)
class SelectorRule:
    """Text content of elements matching a CSS *selector*."""

    selector: str
    transform: Transform | None = None
    accept: Predicate | None = None


@dataclass(frozen=True)
class AttributeRule:
    """An *attribute* of elements matching a CSS *selector*."""

    selector: str
    attribute: str
    transform: Transform | None = None
    accept: Predicate | None = None


@dataclass(frozen=True)
class RegexRule:
    """Free-text match; *group* selects the captured value."""

    pattern: re.Pattern[str]
    group: int = 0
    transform: Transform | None = None
    accept: Predicate | None = None


ExtractionRule = StructuredRule | SelectorRule | AttributeRule | RegexRule


@dataclass(frozen=True)
class FieldSpec:
    """Ordered rules plus the accepted length window for one field."""

    name: str
    rules: tuple[ExtractionRule, ...]
    min_length: int = 2
    max_length: int = MAX_FIELD_LENGTH
    required: bool = False
    # Stored under ProgramRecord.extra_fields rather than as a top-level field
    extra: bool = False


def _re(pattern: str, flags: int = re.IGNORECASE) -> re.Pattern[str]:
    return re.compile(pattern, flags)


# ---------------------------------------------------------------------------
# Transforms and plausibility filters
# ---------------------------------------------------------------------------

def numeric(value: str) -> str:
    """Money, date and duration matches: spelled numbers to digits, then normalize."""
    return normalize(word_to_digit(value))


def plausible_tuition(value: str) -> bool:
    amount = money_amount(value)
    return amount is not None and TUITION_MIN <= amount <= TUITION_MAX


_ORDINAL_RE = re.compile(r"(\d)(?:st|nd|rd|th)\b", re.IGNORECASE)


def parses_as_date(value: str) -> bool:
    cleaned = _ORDINAL_RE.sub(r"\1", value)
    try:
        parsed = dateparser.parse(
            cleaned,
            settings={
                "PREFER_DAY_OF_MONTH": "first",
                "PREFER_LOCALE_DATE_ORDER": False,
            },
        )
    except Exception as exc:
        logger.debug("Date parse failed for %r: %s", value, exc)
        return False
    return parsed is not None


_DURATION_LIMITS: dict[str, float] = {
    "y": 8,
    "s": 16,
    "m": 72,
    "t": 24,
    "q": 24,
    "w": 260,
}
_DURATION_RE = _re(
    r"(\d+(?:\.\d+)?)[\s-]*(years?|yrs?|semesters?|months?|terms?|quarters?|weeks?)\b",
)


def plausible_duration(value: str) -> bool:
    match = _DURATION_RE.search(word_to_digit(value))
    if not match:
        return False
    amount = float(match.group(1))
    unit = match.group(2).lower()[0]
    return 0 < amount <= _DURATION_LIMITS.get(unit, 0)


def plausible_location(value: str) -> bool:
    return 5 <= len(collapse(value)) <= 50


def plausible_gpa(value: str) -> bool:
    try:
        gpa = float(value)
    except ValueError:
        return False
    return 0 < gpa <= 4.0


def plausible_credits(value: str) -> bool:
    digits = re.search(r"\d+", value)
    return bool(digits) and 0 < int(digits.group()) <= 200


_DEGREE_WORDS_RE = _re(
    r"\b(?:master|bachelor|doctor|phd|ph\.d|mba|msc|m\.s\.|m\.a\.|ms in|ma in|"
    r"graduate|degree|certificate|diploma|program|programme|course)\b",
)


def mentions_degree(value: str) -> bool:
    return bool(_DEGREE_WORDS_RE.search(value))


_INSTITUTION_WORDS_RE = _re(r"\b(?:university|college|institute|school|polytechnic|academy)\b")


def mentions_institution(value: str) -> bool:
    return bool(_INSTITUTION_WORDS_RE.search(value))


# ---- fixed-vocabulary transforms ----

_TEST_NAME_RE = _re(r"\b(gre|gmat)\b")


def _test_status(status: str) -> Transform:
    def transform(value: str) -> str:
        names = sorted({m.upper() for m in _TEST_NAME_RE.findall(value)})
        return f"{'/'.join(names) or 'Test'}: {status}"

    return transform


_FORMATS: tuple[tuple[re.Pattern[str], str], ...] = (
    (_re(r"hybrid|blended"), "Hybrid"),
    (_re(r"online|distance"), "Online"),
    (_re(r"in[\s-]person"), "In-person"),
    (_re(r"on[\s-]campus"), "On-campus"),
)


def canonical_format(value: str) -> str:
    for pattern, label in _FORMATS:
        if pattern.search(value):
            return label
    return normalize(value)


_LOGO_RE = _re(r"\s*\blogo\b\s*")


def strip_logo(value: str) -> str:
    return collapse(_LOGO_RE.sub(" ", value))


def _sentence_case(value: str) -> str:
    cleaned = normalize(value)
    return cleaned[:1].upper() + cleaned[1:].lower()


# ---- selector-text transforms: pull the value out of a labelled block ----

_MONTH = (
    r"(?:Jan(?:uary)?|Feb(?:ruary)?|Mar(?:ch)?|Apr(?:il)?|May|June?|July?|"
    r"Aug(?:ust)?|Sep(?:t(?:ember)?)?|Oct(?:ober)?|Nov(?:ember)?|Dec(?:ember)?)"
)
_DATE = (
    rf"(?:{_MONTH}\.?\s+\d{{1,2}}(?:st|nd|rd|th)?(?:,?\s+\d{{4}})?"
    rf"|\d{{1,2}}(?:st|nd|rd|th)?\s+{_MONTH}\.?(?:,?\s+\d{{4}})?"
    rf"|\d{{1,2}}/\d{{1,2}}/\d{{2,4}})"
)
_DATE_RE = _re(rf"\b{_DATE}")

_MONEY_PHRASE_RE = _re(
    r"\$\s?\d[\d,]*(?:\.\d{2})?(?:\s*(?:per\s+(?:academic\s+)?(?:year|annum|semester|term|credit)"
    r"|a\s+year|annually|/\s?(?:year|yr|semester|credit)))?",
)

_NUMBER_WORD = r"(?:\d+(?:\.\d+)?|one|two|three|four|five|six)"
_DURATION_PHRASE_RE = _re(
    rf"\b{_NUMBER_WORD}[\s-]*(?:years?|yrs?|semesters?|months?|terms?|quarters?)\b",
)


def _first(pattern: re.Pattern[str]) -> Transform:
    def transform(value: str) -> str:
        match = pattern.search(value)
        return numeric(match.group(0)) if match else ""

    return transform


first_money = _first(_MONEY_PHRASE_RE)
first_date = _first(_DATE_RE)
first_duration = _first(_DURATION_PHRASE_RE)


# ---------------------------------------------------------------------------
# Field rule tables
# ---------------------------------------------------------------------------

_CAP_WORD = r"[A-Z][\w'&-]*"

TITLE = FieldSpec(
    name="title",
    required=True,
    min_length=3,
    max_length=150,
    rules=(
        StructuredRule("title"),
        SelectorRule(".program-title"),
        SelectorRule(".course-title"),
        SelectorRule(".degree-title"),
        SelectorRule('[class*="program-name"]'),
        SelectorRule("h1", accept=mentions_degree),
        AttributeRule(
            'meta[property="og:title"]', "content",
            transform=strip_title_separator, accept=mentions_degree,
        ),
        RegexRule(
            _re(
                rf"\b(?:Master|Bachelor|Doctor)\s+of\s+{_CAP_WORD}"
                rf"(?:\s+(?:in\s+|of\s+|and\s+|&\s+)?{_CAP_WORD}){{0,6}}",
                0,
            ),
        ),
        RegexRule(
            _re(
                rf"\b(?:M\.?S\.?c?|M\.?A\.?|MBA|MEng|Ph\.?D\.?|B\.?Sc?\.?|B\.?A\.?)\s+in\s+"
                rf"{_CAP_WORD}(?:\s+(?:and\s+|&\s+)?{_CAP_WORD}){{0,5}}",
                0,
            ),
        ),
    ),
)

INSTITUTION = FieldSpec(
    name="institution",
    required=True,
    min_length=3,
    max_length=120,
    rules=(
        StructuredRule("institution"),
        SelectorRule(".university-name"),
        SelectorRule(".institution-name"),
        SelectorRule('[class*="university-name"]'),
        SelectorRule('[class*="school-name"]'),
        AttributeRule('meta[property="og:site_name"]', "content", transform=strip_title_separator),
        AttributeRule(
            '[class*="logo"] img', "alt", transform=strip_logo, accept=mentions_institution,
        ),
        RegexRule(
            _re(
                rf"\b(?:University|College|Institute)\s+of\s+{_CAP_WORD}"
                rf"(?:\s+{_CAP_WORD}){{0,4}}",
                0,
            ),
        ),
        RegexRule(
            _re(
                rf"\b(?:{_CAP_WORD}\s+){{1,4}}"
                r"(?:University|College|Institute\s+of\s+Technology|Institute|Polytechnic)\b",
                0,
            ),
        ),
    ),
)

TUITION = FieldSpec(
    name="tuition",
    max_length=120,
    rules=(
        StructuredRule("tuition"),
        SelectorRule('[class*="tuition"]', transform=first_money, accept=plausible_tuition),
        SelectorRule('[class*="cost"]', transform=first_money, accept=plausible_tuition),
        SelectorRule('[class*="fee"]', transform=first_money, accept=plausible_tuition),
        RegexRule(
            _re(
                r"\$\s?\d[\d,]*(?:\.\d{2})?\s*(?:per\s+(?:academic\s+)?(?:year|annum|semester|term)"
                r"|a\s+year|annually|/\s?(?:year|yr|semester))",
            ),
            transform=numeric,
            accept=plausible_tuition,
        ),
        RegexRule(
            _re(r"tuition(?:\s+(?:and|&)\s+fees)?(?:\s+is|\s+of|:)?\s*(\$\s?\d[\d,]*(?:\.\d{2})?)"),
            group=1,
            transform=numeric,
            accept=plausible_tuition,
        ),
        RegexRule(
            _re(r"\$\s?\d[\d,]*(?:\.\d{2})?\s*(?:in\s+)?(?:tuition|fees?)\b"),
            transform=numeric,
            accept=plausible_tuition,
        ),
        RegexRule(
            _re(r"\$\s?\d{1,3}(?:,\d{3})+(?:\.\d{2})?"),
            transform=numeric,
            accept=plausible_tuition,
        ),
    ),
)

DEADLINE = FieldSpec(
    name="deadline",
    max_length=60,
    rules=(
        StructuredRule("deadline"),
        AttributeRule('time[class*="deadline"]', "datetime"),
        SelectorRule('[class*="deadline"]', transform=first_date, accept=parses_as_date),
        RegexRule(
            _re(
                rf"(?:deadline|apply\s+by|due(?:\s+date)?|submit(?:ted)?\s+by)"
                rf"(?:\s+is)?[:\s]+({_DATE})",
            ),
            group=1,
            transform=numeric,
            accept=parses_as_date,
        ),
        RegexRule(
            _re(rf"({_DATE})[:\s]*(?:deadline|due)"),
            group=1,
            transform=numeric,
            accept=parses_as_date,
        ),
        RegexRule(_DATE_RE, transform=numeric, accept=parses_as_date),
    ),
)

DURATION = FieldSpec(
    name="duration",
    max_length=60,
    rules=(
        StructuredRule("duration"),
        SelectorRule('[class*="duration"]', transform=first_duration, accept=plausible_duration),
        SelectorRule('[class*="length"]', transform=first_duration, accept=plausible_duration),
        RegexRule(
            _re(rf"\b{_NUMBER_WORD}[\s-]*(?:years?|yrs?)\b(?:\s+(?:full|part)[\s-]time)?"),
            transform=numeric,
            accept=plausible_duration,
        ),
        RegexRule(
            _re(rf"\b{_NUMBER_WORD}[\s-]*(?:semesters?|terms?|quarters?)\b"),
            transform=numeric,
            accept=plausible_duration,
        ),
        RegexRule(
            _re(rf"\b{_NUMBER_WORD}[\s-]*months?\b"),
            transform=numeric,
            accept=plausible_duration,
        ),
    ),
)

LOCATION = FieldSpec(
    name="location",
    max_length=60,
    rules=(
        StructuredRule("location"),
        AttributeRule('meta[name="geo.placename"]', "content"),
        SelectorRule(".location", accept=plausible_location),
        SelectorRule('[class*="campus-location"]', accept=plausible_location),
        SelectorRule(".address", accept=plausible_location),
        SelectorRule(".campus", accept=plausible_location),
        SelectorRule(".city", accept=plausible_location),
        RegexRule(
            _re(
                r"(?:located|based|situated|campus)\s+in\s+"
                r"([A-Z][a-z]+(?:\s[A-Z][a-z]+){0,2}(?:,\s[A-Z][a-zA-Z]+(?:\s[A-Z][a-z]+)?)?)",
                0,
            ),
            group=1,
            accept=plausible_location,
        ),
        RegexRule(
            _re(r"\b[A-Z][a-z]+(?:\s[A-Z][a-z]+){0,2},\s[A-Z]{2}\b", 0),
            accept=plausible_location,
        ),
    ),
)

TEST_REQUIREMENT = FieldSpec(
    name="test_requirement",
    max_length=40,
    rules=(
        RegexRule(
            _re(
                r"\bno\s+(?:gre|gmat)\b|\b(?:gre|gmat)(?:\s+scores?)?\s+(?:is\s+|are\s+)?"
                r"(?:not\s+required|optional|waived)",
            ),
            transform=_test_status("Not required"),
        ),
        RegexRule(
            _re(r"\b(?:gre|gmat)(?:\s+scores?)?\s+(?:is\s+|are\s+)?required"),
            transform=_test_status("Required"),
        ),
        RegexRule(_re(r"\b(?:gre|gmat)\s+scores?\b"), transform=_test_status("Required")),
        RegexRule(_re(r"\b(?:gre|gmat)\b"), transform=_test_status("Check requirements")),
    ),
)

DESCRIPTION = FieldSpec(
    name="description",
    min_length=20,
    max_length=2_000,
    rules=(
        StructuredRule("description"),
        AttributeRule('meta[name="description"]', "content"),
        AttributeRule('meta[property="og:description"]', "content"),
        SelectorRule(".program-description"),
        SelectorRule(".program-overview p"),
        SelectorRule('[class*="overview"] p'),
    ),
)

# ---- extra fields ----

FORMAT = FieldSpec(
    name="format",
    extra=True,
    max_length=40,
    rules=(
        StructuredRule("format"),
        RegexRule(
            _re(r"\b(?:fully\s+)?online\b|\bhybrid\b|\bon[\s-]campus\b|\bin[\s-]person\b"),
            transform=canonical_format,
        ),
    ),
)

CREDITS = FieldSpec(
    name="credits",
    extra=True,
    max_length=40,
    rules=(
        StructuredRule("credits"),
        RegexRule(
            _re(r"\b\d{1,3}\s+(?:credits?(?:\s+hours?)?|semester\s+hours|units)\b"),
            transform=normalize,
            accept=plausible_credits,
        ),
    ),
)

MIN_GPA = FieldSpec(
    name="min_gpa",
    extra=True,
    min_length=1,
    max_length=10,
    rules=(
        RegexRule(
            _re(
                r"(?:minimum|min\.?)\s+(?:cumulative\s+|undergraduate\s+)?"
                r"(?:gpa|grade\s+point\s+average)(?:\s+(?:of|is))?[:\s]*([0-4](?:\.\d{1,2})?)",
            ),
            group=1,
            accept=plausible_gpa,
        ),
        RegexRule(
            _re(r"\bgpa\s+of\s+([0-4]\.\d{1,2})\s+or\s+(?:higher|above|better)"),
            group=1,
            accept=plausible_gpa,
        ),
    ),
)

FUNDING = FieldSpec(
    name="funding",
    extra=True,
    max_length=60,
    rules=(
        RegexRule(
            _re(
                r"\b(?:teaching|research|graduate)\s+assistantships?\b"
                r"|\bfellowships?\b|\bscholarships?\b|\bfinancial\s+aid\b",
            ),
            transform=_sentence_case,
        ),
    ),
)

FIELDS: dict[str, FieldSpec] = {
    spec.name: spec
    for spec in (
        TITLE,
        INSTITUTION,
        TUITION,
        DEADLINE,
        DURATION,
        LOCATION,
        TEST_REQUIREMENT,
        DESCRIPTION,
        FORMAT,
        CREDITS,
        MIN_GPA,
        FUNDING,
    )
}


def with_selectors(spec: FieldSpec, selectors: list[str] | None) -> FieldSpec:
    """Return *spec* with site-specific *selectors* ahead of its built-in selector rules."""
    if not selectors:
        return spec
    extra = tuple(SelectorRule(s) for s in selectors if isinstance(s, str) and s.strip())
    return FieldSpec(
        name=spec.name,
        rules=extra + spec.rules,
        min_length=spec.min_length,
        max_length=spec.max_length,
        required=spec.required,
        extra=spec.extra,
    )


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------

def _attr_str(val: object) -> str:
    if val is None:
        return ""
    if isinstance(val, list):
        return " ".join(str(v) for v in val)
    return str(val)


def _finish(raw: str, transform: Transform | None, accept: Predicate | None) -> str | None:
    value = transform(raw) if transform else raw
    if not value or not value.strip():
        return None
    if accept is not None and not accept(value):
        return None
    return value


def _eval_structured(rule: StructuredRule, soup: BeautifulSoup) -> Iterator[str]:
    value = read_structured(soup, rule.field)
    if value:
        yield value


def _eval_selector(rule: SelectorRule, soup: BeautifulSoup) -> Iterator[str]:
    for element in soup.select(rule.selector):
        if not isinstance(element, Tag):
            continue
        value = _finish(element.get_text(" ", strip=True), rule.transform, rule.accept)
        if value:
            yield value


def _eval_attribute(rule: AttributeRule, soup: BeautifulSoup) -> Iterator[str]:
    for element in soup.select(rule.selector):
        if not isinstance(element, Tag):
            continue
        value = _finish(_attr_str(element.get(rule.attribute)), rule.transform, rule.accept)
        if value:
            yield value


def _eval_regex(rule: RegexRule, text: str) -> Iterator[str]:
    for match in rule.pattern.finditer(text):
        raw = match.group(rule.group)
        if not raw:
            continue
        value = _finish(raw, rule.transform, rule.accept)
        if value:
            yield value


def evaluate(
    rule: ExtractionRule,
    soup: BeautifulSoup,
    text: str = "",
) -> Iterator[str]:
    """Yield candidate values produced by *rule*, best first.

    Structured, selector and attribute rules read *soup*; regex rules scan
    *text*.  Any error inside a rule ends that rule quietly.
    """
    if isinstance(rule, StructuredRule):
        source = _eval_structured(rule, soup)
    elif isinstance(rule, SelectorRule):
        source = _eval_selector(rule, soup)
    elif isinstance(rule, AttributeRule):
        source = _eval_attribute(rule, soup)
    elif isinstance(rule, RegexRule):
        source = _eval_regex(rule, text)
    else:
        raise TypeError(f"Unknown extraction rule: {rule!r}")
    try:
        yield from source
    except Exception as exc:
        logger.debug("Rule %r skipped: %s", rule, exc)
