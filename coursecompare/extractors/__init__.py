"""Extraction sub-package: normalizer, rule library, structured data and sentence filtering.

The engine lives in :mod:`coursecompare.extractors.engine`; it is not
re-exported here because it depends on :mod:`coursecompare.items`.
"""

from .normalize import canonical_url, normalize, word_to_digit
from .patterns import FIELDS, FieldSpec, evaluate
from .semantic import relevant_sentences
from .structured import read_structured

__all__ = [
    "FIELDS",
    "FieldSpec",
    "canonical_url",
    "evaluate",
    "normalize",
    "read_structured",
    "relevant_sentences",
    "word_to_digit",
]
