"""Exception taxonomy shared by the extraction engine and the record store."""

from __future__ import annotations

from coursecompare.settings import QUOTA_HINT


class CourseCompareError(Exception):
    """Base class for every error raised by coursecompare."""


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

class ExtractionFailure(CourseCompareError):
    """A mandatory field (title or institution) could not be resolved.

    Attributes:
        missing -- names of the unresolved mandatory fields
        url     -- the page the snapshot came from (may be empty)
    """

    code = "MissingRequiredField"

    def __init__(self, missing: list[str], url: str = "") -> None:
        super().__init__(
            f"Could not extract required field(s): {', '.join(missing)}",
        )
        self.missing = list(missing)
        self.url = url


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class StoreError(CourseCompareError):
    """Base class for record store failures."""


class DuplicateRecord(StoreError):
    """The record shares its dedup key with an already stored record."""

    def __init__(self, existing_id: str | None) -> None:
        super().__init__("Program already saved!")
        self.existing_id = existing_id


class QuotaExceeded(StoreError):
    """The free tier ceiling has been reached."""

    def __init__(self, limit: int) -> None:
        super().__init__(QUOTA_HINT)
        self.limit = limit


class StoreUnavailable(StoreError):
    """The backing key-value resource timed out or failed.  Safe to retry."""
