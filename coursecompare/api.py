"""In-process request/response boundary for presentation layers.

A UI (browser bridge, CLI, web view) only ever sends two kinds of request:

* :class:`ExtractRequest` - "extract a record from this page"
* :class:`StoreRequest`   - "add / remove / list / set tier"

and receives plain pydantic responses it can serialize as-is.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from coursecompare.errors import ExtractionFailure, StoreError
from coursecompare.extractors.engine import extract
from coursecompare.items import PageSnapshot, ProgramRecord, TierState
from coursecompare.store import RecordStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

class ExtractRequest(BaseModel):
    snapshot: PageSnapshot
    profile: dict[str, Any] | None = None


class ExtractResponse(BaseModel):
    record: ProgramRecord | None = None
    failure: str | None = None
    missing: list[str] = Field(default_factory=list)


def handle_extract(request: ExtractRequest) -> ExtractResponse:
    """Run extraction; a missing mandatory field becomes ``failure``, not an exception."""
    try:
        record = extract(request.snapshot, profile=request.profile)
    except ExtractionFailure as exc:
        return ExtractResponse(failure=exc.code, missing=exc.missing)
    return ExtractResponse(record=record)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class StoreOp(str, Enum):
    ADD = "add"
    REMOVE = "remove"
    LIST = "list"
    SET_TIER = "set_tier"


class StoreRequest(BaseModel):
    op: StoreOp
    # add: ProgramRecord fields; remove: {"id": ...}; set_tier: TierState fields
    payload: dict[str, Any] = Field(default_factory=dict)


class StoreResponse(BaseModel):
    records: list[ProgramRecord] = Field(default_factory=list)
    tier: TierState | None = None
    record: ProgramRecord | None = None
    # Error class name (DuplicateRecord, QuotaExceeded, StoreUnavailable, InvalidRequest)
    error: str | None = None
    message: str | None = None


def _apply(store: RecordStore, request: StoreRequest) -> ProgramRecord | None:
    if request.op is StoreOp.ADD:
        return store.add(ProgramRecord.model_validate(request.payload))
    if request.op is StoreOp.REMOVE:
        record_id = request.payload.get("id")
        if not isinstance(record_id, str) or not record_id:
            raise ValueError("remove requires a non-empty 'id'")
        store.remove(record_id)
    elif request.op is StoreOp.SET_TIER:
        store.set_tier(TierState.model_validate(request.payload))
    return None


def handle_store(store: RecordStore, request: StoreRequest) -> StoreResponse:
    """Apply *request* to *store* and report the resulting collection.

    Store errors are returned with their class name and message unchanged;
    the mutation is never silently dropped.
    """
    try:
        record = _apply(store, request)
    except StoreError as exc:
        logger.info("Store %s rejected: %s", request.op.value, exc)
        response = StoreResponse(error=type(exc).__name__, message=str(exc))
    except (ValidationError, ValueError) as exc:
        response = StoreResponse(error="InvalidRequest", message=str(exc))
    else:
        response = StoreResponse(record=record)

    if response.error == "StoreUnavailable":
        return response
    try:
        state = store.snapshot()
    except StoreError as exc:
        return StoreResponse(
            record=response.record,
            error=response.error or type(exc).__name__,
            message=response.message or str(exc),
        )
    return response.model_copy(update={"records": state.records, "tier": state.tier})
