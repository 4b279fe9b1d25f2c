"""Deduplicating, quota-enforcing record store.

Every mutation is one read-modify-write cycle over the whole
:class:`~coursecompare.items.StoreState` stored under a single key:

    read state -> check invariants -> compute new state -> write state

Mutations run one at a time behind a per-store lock, so two concurrent
``add`` calls can never both pass the duplicate/quota check against the same
snapshot.  Reads skip the lock: backends replace the stored value in one
step, so a reader sees the state before or after a mutation, never between.
A write that times out keeps the lock held until it lands and is rolled back.

Usage::

    from coursecompare.backends import JsonFileBackend
    from coursecompare.store import RecordStore

    store = RecordStore(JsonFileBackend("~/.coursecompare"))
    saved = store.add(record)
    store.remove(saved.id)
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import UTC, datetime
from functools import partial
from typing import TypeVar

from pydantic import ValidationError

from coursecompare.backends import KeyValueBackend
from coursecompare.errors import DuplicateRecord, QuotaExceeded, StoreUnavailable
from coursecompare.items import ProgramRecord, StoreState, TierState
from coursecompare.settings import STORE_KEY, STORE_TIMEOUT

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RecordStore:
    """Owns the persisted record collection and tier state.

    Args:
        backend:      Any :class:`~coursecompare.backends.KeyValueBackend`.
        key:          Key the whole store is persisted under.
        timeout:      Seconds to wait for the mutation gate and for each
                      backend call before raising :class:`StoreUnavailable`.
        default_tier: Tier used when the backend holds no state yet.
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        *,
        key: str = STORE_KEY,
        timeout: float = STORE_TIMEOUT,
        default_tier: TierState | None = None,
    ) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be > 0")
        self._backend = backend
        self._key = key
        self._timeout = timeout
        self._default_tier = default_tier or TierState()
        self._gate = threading.Lock()
        self._io = ThreadPoolExecutor(max_workers=4, thread_name_prefix="coursecompare-store")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        self._io.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> RecordStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Backend round trips
    # ------------------------------------------------------------------

    def _call(
        self,
        fn: Callable[..., T],
        *args: object,
        pending: list[Future] | None = None,
    ) -> T:
        """Run one backend call bounded by the store timeout.

        A call that times out but cannot be cancelled is still running; it is
        appended to *pending* so the caller can wait for it to settle.
        """
        try:
            future = self._io.submit(fn, *args)
        except RuntimeError as exc:
            raise StoreUnavailable(f"Store is closed: {exc}") from exc
        try:
            return future.result(timeout=self._timeout)
        except FutureTimeoutError as exc:
            if not future.cancel() and pending is not None:
                pending.append(future)
            logger.warning("Backend call %s timed out after %.1fs", fn.__name__, self._timeout)
            raise StoreUnavailable(
                f"Storage did not respond within {self._timeout:g}s",
            ) from exc
        except (OSError, ValueError) as exc:
            # ValueError covers undecodable bytes (UnicodeDecodeError) in the stored value
            logger.warning("Backend call %s failed: %s", fn.__name__, exc)
            raise StoreUnavailable(f"Storage error: {exc}") from exc

    def _read(self, pending: list[Future] | None = None) -> StoreState:
        raw = self._call(self._backend.get, self._key, pending=pending)
        if raw is None:
            return StoreState(tier=self._default_tier)
        try:
            return StoreState.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("Persisted store under %r is unreadable: %s", self._key, exc)
            raise StoreUnavailable(f"Persisted store under {self._key!r} is corrupt") from exc

    def _write(self, state: StoreState, pending: list[Future] | None = None) -> None:
        self._call(self._backend.set, self._key, state.model_dump_json(), pending=pending)

    def _settle(self, rollback: str | None, future: Future) -> None:
        """Release the gate once a timed-out backend call has finished.

        A write that lands after its caller was told ``StoreUnavailable`` is
        undone by writing back *rollback*, the state read before the change.
        """
        try:
            if rollback is not None and future.exception() is None:
                self._backend.set(self._key, rollback)
                logger.warning("Rolled back late write under %r", self._key)
        except Exception as exc:
            logger.error("Rollback under %r failed: %s", self._key, exc)
        finally:
            self._gate.release()

    def _mutate(self, change: Callable[[StoreState], StoreState | None]) -> StoreState:
        """Run *change* as the only read-modify-write cycle in flight.

        *change* returns the new state, or None to leave storage untouched.
        The gate stays held until any timed-out backend call has settled.
        """
        if not self._gate.acquire(timeout=self._timeout):
            raise StoreUnavailable(
                f"Another store operation is still running after {self._timeout:g}s",
            )
        pending: list[Future] = []
        state: StoreState | None = None
        try:
            state = self._read(pending)
            new_state = change(state)
            if new_state is None:
                return state
            self._write(new_state, pending)
            return new_state
        finally:
            if pending:
                # state is only set when the stuck call is the write
                rollback = state.model_dump_json() if state is not None else None
                pending[0].add_done_callback(partial(self._settle, rollback))
            else:
                self._gate.release()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def add(self, record: ProgramRecord) -> ProgramRecord:
        """Store *record* and return it with ``id``/``extracted_at`` assigned.

        Raises:
            DuplicateRecord:  a stored record has the same dedup key.
            QuotaExceeded:    free tier and the ceiling is reached.
            StoreUnavailable: the backend timed out or failed.
        """
        stored: list[ProgramRecord] = []

        def change(state: StoreState) -> StoreState:
            existing = state.duplicate_of(record)
            if existing is not None:
                raise DuplicateRecord(existing.id)
            if state.at_quota():
                raise QuotaExceeded(state.tier.max_free_records)
            new_record = record.model_copy(
                update={
                    "id": uuid.uuid4().hex,
                    "extracted_at": record.extracted_at or datetime.now(UTC).isoformat(),
                },
            )
            stored.append(new_record)
            return state.model_copy(update={"records": [*state.records, new_record]})

        self._mutate(change)
        logger.info("Stored program %r at %r (id=%s)", record.title, record.institution, stored[0].id)
        return stored[0]

    def remove(self, record_id: str) -> None:
        """Delete the record with *record_id*; absent ids are a no-op."""
        removed: list[ProgramRecord] = []

        def change(state: StoreState) -> StoreState | None:
            existing = state.find(record_id)
            if existing is None:
                return None
            removed.append(existing)
            return state.model_copy(
                update={"records": [r for r in state.records if r.id != record_id]},
            )

        self._mutate(change)
        if removed:
            logger.info("Removed program id=%s", record_id)
        else:
            logger.debug("Remove of unknown id=%s ignored", record_id)

    def set_tier(self, tier: TierState) -> None:
        """Replace the tier.  Already stored records are never evicted."""
        self._mutate(lambda state: state.model_copy(update={"tier": tier}))
        logger.info(
            "Tier set: premium=%s max_free_records=%d", tier.is_premium, tier.max_free_records,
        )

    def list(self) -> list[ProgramRecord]:
        """All records in insertion order."""
        return list(self._read().records)

    def tier(self) -> TierState:
        return self._read().tier

    def snapshot(self) -> StoreState:
        """Records and tier read together from one backend round trip."""
        return self._read()

    def get(self, record_id: str) -> ProgramRecord | None:
        return self._read().find(record_id)
