"""Pydantic models for page snapshots, program records and persisted store state."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from coursecompare.extractors.normalize import canonical_url, collapse
from coursecompare.settings import DEFAULT_MAX_FREE_RECORDS, NOT_SPECIFIED

# Optional fields that carry the sentinel instead of an empty value
SENTINEL_FIELDS: tuple[str, ...] = (
    "tuition",
    "deadline",
    "duration",
    "location",
    "test_requirement",
    "description",
)


# ---------------------------------------------------------------------------
# Extraction input
# ---------------------------------------------------------------------------

class PageSnapshot(BaseModel):
    """Read-only view of a page handed to the extraction engine."""

    html: str = ""
    url: str = ""
    # Visible text; derived from ``html`` when not supplied
    text: str | None = None
    # Document title override (e.g. ``document.title`` from a live tab)
    title: str | None = None


# ---------------------------------------------------------------------------
# Program record
# ---------------------------------------------------------------------------

class ProgramRecord(BaseModel):
    """Canonical extracted program, the unit of persistence."""

    model_config = ConfigDict(frozen=True)

    # Identity
    id: str | None = None
    source_url: str = ""

    # Mandatory
    title: str = Field(min_length=1)
    institution: str = Field(min_length=1)

    # Optional, sentinel-carrying
    tuition: str = NOT_SPECIFIED
    deadline: str = NOT_SPECIFIED
    duration: str = NOT_SPECIFIED
    location: str = NOT_SPECIFIED
    test_requirement: str = NOT_SPECIFIED
    description: str = NOT_SPECIFIED

    extra_fields: dict[str, str] = Field(default_factory=dict)

    # Provenance
    extracted_at: str | None = None

    @field_validator("title", "institution", mode="before")
    @classmethod
    def collapse_required(cls, v: Any) -> Any:
        if isinstance(v, str):
            return collapse(v)
        return v

    @field_validator(*SENTINEL_FIELDS, mode="before")
    @classmethod
    def sentinel_for_empty(cls, v: Any) -> Any:
        if v is None:
            return NOT_SPECIFIED
        if isinstance(v, str) and not v.strip():
            return NOT_SPECIFIED
        return v

    @field_validator("source_url", mode="before")
    @classmethod
    def strip_url(cls, v: Any) -> Any:
        if v is None:
            return ""
        if isinstance(v, str):
            return v.strip()
        return v

    def dedup_key(self) -> tuple[str, str, str]:
        """Return ``(canonical_url, title, institution)`` used for duplicate detection."""
        return (
            canonical_url(self.source_url),
            self.title.lower(),
            self.institution.lower(),
        )

    def same_program(self, other: ProgramRecord) -> bool:
        """True when *other* denotes the same program.

        URLs decide when both records carry one; the case-insensitive
        (title, institution) pair is checked in every case.
        """
        url, title, institution = self.dedup_key()
        o_url, o_title, o_institution = other.dedup_key()
        if url and o_url and url == o_url:
            return True
        return title == o_title and institution == o_institution


# ---------------------------------------------------------------------------
# Store aggregate
# ---------------------------------------------------------------------------

class TierState(BaseModel):
    """Account capability governing the quota ceiling."""

    is_premium: bool = False
    max_free_records: int = Field(default=DEFAULT_MAX_FREE_RECORDS, ge=1)


class StoreState(BaseModel):
    """Everything persisted under the single store key."""

    records: list[ProgramRecord] = Field(default_factory=list)
    tier: TierState = Field(default_factory=TierState)

    def find(self, record_id: str) -> ProgramRecord | None:
        for record in self.records:
            if record.id == record_id:
                return record
        return None

    def duplicate_of(self, record: ProgramRecord) -> ProgramRecord | None:
        for existing in self.records:
            if existing.same_program(record):
                return existing
        return None

    def at_quota(self) -> bool:
        return not self.tier.is_premium and len(self.records) >= self.tier.max_free_records
