"""Sentence-level relevance filtering ahead of regex extraction.

Regex rules first run over the sentences that mention a field's keywords and
only fall back to the whole page when that yields nothing, so a tuition-looking
dollar amount in an unrelated banner does not win over the one next to the
word "tuition".
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator

# Sentence boundary: terminal punctuation followed by whitespace or end of text.
# "3.5" and "$1,000.00" are not boundaries.
_SENTENCE_END_RE = re.compile(r"[.!?]+(?=\s|$)")

FIELD_KEYWORDS: dict[str, tuple[str, ...]] = {
    "title": (
        "program", "degree", "master", "bachelor", "phd", "doctor",
        "msc", "mba", "certificate", "diploma",
    ),
    "institution": ("university", "college", "institute", "school", "polytechnic"),
    "tuition": (
        "tuition", "cost", "fee", "price", "per year", "per credit",
        "annually", "per semester",
    ),
    "deadline": ("deadline", "apply", "application", "due", "priority", "submit"),
    "duration": (
        "duration", "length", "year", "semester", "month", "term",
        "full-time", "part-time", "complete",
    ),
    "location": ("located", "location", "campus", "city", "based in", "situated"),
    "test_requirement": ("gre", "gmat", "test", "exam", "score"),
    "description": ("overview", "designed", "prepares", "program", "curriculum"),
    "format": ("online", "hybrid", "campus", "in-person", "delivery", "format"),
    "credits": ("credit", "unit", "hour"),
    "min_gpa": ("gpa", "grade point"),
    "funding": (
        "funding", "financial aid", "assistantship", "fellowship",
        "scholarship", "stipend",
    ),
}


def split_sentences(text: str) -> Iterator[str]:
    """Yield the non-empty sentences of *text* in order."""
    start = 0
    for match in _SENTENCE_END_RE.finditer(text):
        sentence = text[start:match.end()].strip()
        start = match.end()
        if sentence:
            yield sentence
    tail = text[start:].strip()
    if tail:
        yield tail


def _keyword_re(keywords: Iterable[str]) -> re.Pattern[str] | None:
    words = [re.escape(k) for k in keywords if k]
    if not words:
        return None
    return re.compile(r"\b(?:" + "|".join(words) + ")", re.IGNORECASE)


class Sentences:
    """Lazy, restartable view of the sentences relevant to one field.

    Every iteration re-scans the source text, so the same object can be
    consumed once per regex rule.
    """

    def __init__(self, text: str, keywords: Iterable[str]) -> None:
        self._text = text or ""
        self._keywords = tuple(keywords)
        self._match = _keyword_re(self._keywords)

    def __iter__(self) -> Iterator[str]:
        if self._match is None:
            return
        for sentence in split_sentences(self._text):
            if self._match.search(sentence):
                yield sentence

    def __repr__(self) -> str:
        return f"Sentences(keywords={self._keywords!r})"


def relevant_sentences(text: str, field: str) -> Sentences:
    """Return the sentences of *text* mentioning any keyword of *field*.

    Unknown fields have no keywords and therefore no relevant sentences.
    """
    return Sentences(text, FIELD_KEYWORDS.get(field, ()))
