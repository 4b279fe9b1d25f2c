"""Tests for coursecompare.store and coursecompare.backends."""

from __future__ import annotations

import json
import logging
import threading
import time

import pytest

from coursecompare.backends import JsonFileBackend, KeyValueBackend, MemoryBackend
from coursecompare.errors import DuplicateRecord, QuotaExceeded, StoreUnavailable
from coursecompare.items import ProgramRecord, TierState
from coursecompare.settings import NOT_SPECIFIED, QUOTA_HINT, STORE_KEY
from coursecompare.store import RecordStore


def _record(n: int, url: str | None = None, **kwargs) -> ProgramRecord:
    return ProgramRecord(
        title=f"Master of Science {n}",
        institution="Example University",
        source_url=url if url is not None else f"https://www.example.edu/programs/{n}",
        **kwargs,
    )


@pytest.fixture
def store():
    with RecordStore(MemoryBackend(), timeout=2.0) as s:
        yield s


class SlowBackend(MemoryBackend):
    """Memory backend whose reads take a while, widening race windows."""

    def get(self, key):
        value = super().get(key)
        time.sleep(0.05)
        return value


class BlockingBackend:
    def __init__(self) -> None:
        self.release = threading.Event()

    def get(self, key):
        self.release.wait(5)
        return None

    def set(self, key, value):
        self.release.wait(5)


class BrokenBackend:
    def get(self, key):
        raise OSError("disk on fire")

    def set(self, key, value):
        raise OSError("disk on fire")


class FirstWriteSlow(MemoryBackend):
    """Memory backend whose first write outlives the store timeout."""

    def __init__(self, delay: float) -> None:
        super().__init__()
        self._delay = delay
        self._writes = 0

    def set(self, key, value):
        self._writes += 1
        if self._writes == 1:
            time.sleep(self._delay)
        super().set(key, value)


# ---------------------------------------------------------------------------
# Add / list / remove
# ---------------------------------------------------------------------------

class TestAdd:
    def test_assigns_id(self, store):
        saved = store.add(_record(1))
        assert saved.id
        assert store.list() == [saved]

    def test_ids_unique(self, store):
        a = store.add(_record(1))
        b = store.add(_record(2))
        assert a.id != b.id

    def test_keeps_extraction_time(self, store):
        saved = store.add(_record(1, extracted_at="2026-01-01T00:00:00+00:00"))
        assert saved.extracted_at == "2026-01-01T00:00:00+00:00"

    def test_sets_missing_extraction_time(self, store):
        assert store.add(_record(1)).extracted_at is not None

    def test_insertion_order(self, store):
        ids = [store.add(_record(n)).id for n in range(3)]
        assert [r.id for r in store.list()] == ids

    def test_sentinels_round_trip(self, store):
        saved = store.add(_record(1))
        (loaded,) = store.list()
        assert loaded.tuition == NOT_SPECIFIED
        assert loaded == saved


class TestDuplicates:
    def test_same_url(self, store):
        first = store.add(_record(1, url="https://www.example.edu/msc"))
        other = ProgramRecord(title="Other", institution="Else", source_url="https://example.edu/msc/")
        with pytest.raises(DuplicateRecord) as exc_info:
            store.add(other)
        assert exc_info.value.existing_id == first.id
        assert str(exc_info.value) == "Program already saved!"

    def test_same_title_and_institution_without_url(self, store):
        store.add(_record(1, url=""))
        with pytest.raises(DuplicateRecord):
            store.add(
                ProgramRecord(title="master of science 1", institution="EXAMPLE UNIVERSITY"),
            )

    def test_same_pair_different_url(self, store):
        store.add(_record(1, url="https://a.example.edu/x"))
        with pytest.raises(DuplicateRecord):
            store.add(_record(1, url="https://b.example.edu/y"))

    def test_rejected_duplicate_not_written(self, store):
        store.add(_record(1))
        with pytest.raises(DuplicateRecord):
            store.add(_record(1))
        assert len(store.list()) == 1

    def test_duplicate_checked_before_quota(self, store):
        for n in range(3):
            store.add(_record(n))
        with pytest.raises(DuplicateRecord):
            store.add(_record(0))


class TestQuota:
    def test_free_ceiling(self, store):
        for n in range(3):
            store.add(_record(n))
        with pytest.raises(QuotaExceeded) as exc_info:
            store.add(_record(3))
        assert exc_info.value.limit == 3
        assert str(exc_info.value) == QUOTA_HINT
        assert len(store.list()) == 3

    def test_premium_unlimited(self, store):
        store.set_tier(TierState(is_premium=True))
        for n in range(10):
            store.add(_record(n))
        assert len(store.list()) == 10

    def test_upgrade_after_rejection(self, store):
        for n in range(3):
            store.add(_record(n))
        with pytest.raises(QuotaExceeded):
            store.add(_record(3))
        store.set_tier(TierState(is_premium=True))
        saved = store.add(_record(3))
        assert [r.id for r in store.list()][-1] == saved.id
        assert len(store.list()) == 4

    def test_lowering_ceiling_keeps_records(self, store):
        for n in range(3):
            store.add(_record(n))
        store.set_tier(TierState(max_free_records=1))
        assert len(store.list()) == 3
        with pytest.raises(QuotaExceeded):
            store.add(_record(9))

    def test_downgrade_keeps_records(self, store):
        store.set_tier(TierState(is_premium=True))
        for n in range(5):
            store.add(_record(n))
        store.set_tier(TierState(is_premium=False))
        assert len(store.list()) == 5
        with pytest.raises(QuotaExceeded):
            store.add(_record(9))

    def test_remove_frees_a_slot(self, store):
        saved = [store.add(_record(n)) for n in range(3)]
        store.remove(saved[0].id)
        store.add(_record(3))
        assert len(store.list()) == 3

    def test_default_tier(self):
        with RecordStore(MemoryBackend(), default_tier=TierState(max_free_records=1)) as s:
            s.add(_record(1))
            with pytest.raises(QuotaExceeded):
                s.add(_record(2))

    def test_invalid_ceiling(self):
        with pytest.raises(ValueError):
            TierState(max_free_records=0)


class TestRemove:
    def test_removes(self, store):
        saved = store.add(_record(1))
        store.remove(saved.id)
        assert store.list() == []
        assert store.get(saved.id) is None

    def test_idempotent(self, store):
        saved = store.add(_record(1))
        store.remove(saved.id)
        store.remove(saved.id)
        store.remove("never-existed")
        assert store.list() == []

    def test_absent_id_does_not_write(self):
        backend = MemoryBackend()
        with RecordStore(backend) as s:
            s.remove("nothing")
        assert backend.get(STORE_KEY) is None

    def test_absent_id_not_logged_as_removed(self, store, caplog):
        with caplog.at_level(logging.INFO, logger="coursecompare.store"):
            store.remove("nothing")
        assert "Removed program" not in caplog.text

    def test_removal_logged(self, store, caplog):
        saved = store.add(_record(1))
        with caplog.at_level(logging.INFO, logger="coursecompare.store"):
            store.remove(saved.id)
        assert f"Removed program id={saved.id}" in caplog.text


# ---------------------------------------------------------------------------
# Concurrency and failures
# ---------------------------------------------------------------------------

class TestConcurrency:
    def test_concurrent_adds_at_boundary(self):
        with RecordStore(SlowBackend(), timeout=5.0) as s:
            s.add(_record(1))
            s.add(_record(2))
            outcomes: list[str] = []
            lock = threading.Lock()

            def worker(n: int) -> None:
                try:
                    s.add(_record(n))
                    result = "ok"
                except QuotaExceeded:
                    result = "quota"
                with lock:
                    outcomes.append(result)

            threads = [threading.Thread(target=worker, args=(n,)) for n in (10, 11)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

            assert sorted(outcomes) == ["ok", "quota"]
            assert len(s.list()) == 3

    def test_concurrent_duplicate_adds(self):
        with RecordStore(SlowBackend(), timeout=5.0) as s:
            errors: list[Exception] = []

            def worker() -> None:
                try:
                    s.add(_record(7))
                except DuplicateRecord as exc:
                    errors.append(exc)

            threads = [threading.Thread(target=worker) for _ in range(4)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

            assert len(s.list()) == 1
            assert len(errors) == 3


class TestUnavailable:
    def test_backend_timeout(self):
        backend = BlockingBackend()
        s = RecordStore(backend, timeout=0.1)
        try:
            with pytest.raises(StoreUnavailable):
                s.list()
        finally:
            backend.release.set()
            s.close()

    def test_gate_timeout(self):
        s = RecordStore(MemoryBackend(), timeout=0.1)
        s._gate.acquire()
        try:
            with pytest.raises(StoreUnavailable):
                s.add(_record(1))
        finally:
            s._gate.release()
            s.close()

    def test_backend_os_error(self):
        with RecordStore(BrokenBackend(), timeout=1.0) as s, pytest.raises(StoreUnavailable):
            s.add(_record(1))

    def test_corrupt_payload(self):
        backend = MemoryBackend()
        backend.set(STORE_KEY, "{not json")
        with RecordStore(backend) as s, pytest.raises(StoreUnavailable):
            s.list()

    def test_undecodable_file(self, tmp_path):
        (tmp_path / f"{STORE_KEY}.json").write_bytes(b"\xff\xfe{bad")
        with RecordStore(JsonFileBackend(tmp_path)) as s:
            with pytest.raises(StoreUnavailable):
                s.list()
            with pytest.raises(StoreUnavailable):
                s.add(_record(1))

    def test_late_write_does_not_clobber_next_add(self):
        with RecordStore(FirstWriteSlow(delay=1.0), timeout=0.2) as s:
            with pytest.raises(StoreUnavailable):
                s.add(_record(1))
            # gate stays held until the stuck write settles
            with pytest.raises(StoreUnavailable):
                s.add(_record(2))
            time.sleep(1.2)
            saved = s.add(_record(2))
            assert [r.id for r in s.list()] == [saved.id]

    def test_late_write_is_rolled_back(self):
        with RecordStore(FirstWriteSlow(delay=0.6), timeout=0.2) as s:
            with pytest.raises(StoreUnavailable):
                s.add(_record(1))
            time.sleep(0.8)
            assert s.list() == []

    def test_closed_store(self):
        s = RecordStore(MemoryBackend())
        s.close()
        with pytest.raises(StoreUnavailable):
            s.list()

    def test_invalid_timeout(self):
        with pytest.raises(ValueError):
            RecordStore(MemoryBackend(), timeout=0)


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------

class TestBackends:
    def test_protocol(self):
        assert isinstance(MemoryBackend(), KeyValueBackend)
        assert isinstance(JsonFileBackend("/tmp"), KeyValueBackend)

    def test_json_file_missing_key(self, tmp_path):
        assert JsonFileBackend(tmp_path).get("absent") is None

    def test_json_file_round_trip(self, tmp_path):
        backend = JsonFileBackend(tmp_path / "store")
        backend.set("k", '{"a": 1}')
        assert backend.get("k") == '{"a": 1}'
        assert (tmp_path / "store" / "k.json").exists()

    def test_json_file_no_temp_files_left(self, tmp_path):
        backend = JsonFileBackend(tmp_path)
        backend.set("k", "one")
        backend.set("k", "two")
        assert [p.name for p in tmp_path.iterdir()] == ["k.json"]

    def test_key_sanitized(self, tmp_path):
        backend = JsonFileBackend(tmp_path)
        backend.set("../escape", "x")
        assert backend.get("../escape") == "x"
        assert list(tmp_path.iterdir())[0].parent == tmp_path

    def test_store_persists_across_instances(self, tmp_path):
        with RecordStore(JsonFileBackend(tmp_path)) as s:
            saved = s.add(_record(1))
            s.set_tier(TierState(is_premium=True))
        with RecordStore(JsonFileBackend(tmp_path)) as s:
            assert s.list() == [saved]
            assert s.tier().is_premium

        payload = json.loads((tmp_path / f"{STORE_KEY}.json").read_text(encoding="utf-8"))
        assert set(payload) == {"records", "tier"}
