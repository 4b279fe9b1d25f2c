"""coursecompare - extract academic program details from web pages and keep them for comparison.

Extract from HTML::

    from coursecompare import PageSnapshot, extract

    record = extract(PageSnapshot(html=html, url="https://www.example.edu/programs/msc"))
    print(record.title, record.institution, record.tuition)

Persist under the duplicate and free-tier rules::

    from coursecompare import JsonFileBackend, RecordStore

    with RecordStore(JsonFileBackend("~/.coursecompare")) as store:
        saved = store.add(record)
        print([r.title for r in store.list()])
"""

from coursecompare.backends import JsonFileBackend, KeyValueBackend, MemoryBackend
from coursecompare.errors import (
    CourseCompareError,
    DuplicateRecord,
    ExtractionFailure,
    QuotaExceeded,
    StoreError,
    StoreUnavailable,
)
from coursecompare.extractors.engine import extract, extract_field, is_program_page
from coursecompare.items import PageSnapshot, ProgramRecord, StoreState, TierState
from coursecompare.query import FetchError, extract_html, extract_url, fetch_html
from coursecompare.store import RecordStore

__version__ = "0.1.0"
__all__ = [
    "CourseCompareError",
    "DuplicateRecord",
    "ExtractionFailure",
    "FetchError",
    "JsonFileBackend",
    "KeyValueBackend",
    "MemoryBackend",
    "PageSnapshot",
    "ProgramRecord",
    "QuotaExceeded",
    "RecordStore",
    "StoreError",
    "StoreState",
    "StoreUnavailable",
    "TierState",
    "extract",
    "extract_field",
    "extract_html",
    "extract_url",
    "fetch_html",
    "is_program_page",
]
