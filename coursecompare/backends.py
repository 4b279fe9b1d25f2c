"""Key-value backends the record store persists into.

A backend only has to read and write whole string values under a key, and
each ``set`` must replace the previous value in one step.  No transactions
are assumed; serialization of read-modify-write cycles is the store's job.

Custom backends follow the runtime-checkable :class:`KeyValueBackend`
protocol, so they need not inherit from anything::

    class RedisBackend:
        def __init__(self, client):
            self._client = client
        def get(self, key):
            raw = self._client.get(key)
            return raw.decode() if raw is not None else None
        def set(self, key, value):
            self._client.set(key, value)
"""

from __future__ import annotations

import contextlib
import logging
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

_SAFE_KEY_RE = re.compile(r"[^\w\-.]")


@runtime_checkable
class KeyValueBackend(Protocol):
    """Whole-value string storage addressed by key."""

    def get(self, key: str) -> str | None:
        """Return the stored value, or None when *key* was never written."""
        ...

    def set(self, key: str, value: str) -> None:
        """Replace the value stored under *key*."""
        ...


class MemoryBackend:
    """In-process backend; the default for tests and one-shot CLI runs."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value


class JsonFileBackend:
    """One ``<key>.json`` file per key inside *directory*.

    Writes go to a temporary file in the same directory and are moved into
    place with :func:`os.replace`, so readers see either the old or the new
    file, never a partial one.
    """

    def __init__(self, directory: str | Path) -> None:
        self._dir = Path(directory).expanduser()

    @property
    def directory(self) -> Path:
        return self._dir

    def _path(self, key: str) -> Path:
        safe = _SAFE_KEY_RE.sub("_", key) or "store"
        return self._dir / f"{safe}.json"

    def get(self, key: str) -> str | None:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{path.stem}-", suffix=".tmp", dir=str(path.parent),
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(value)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            with contextlib.suppress(OSError):
                os.unlink(tmp_name)
            raise
        logger.debug("Wrote %d bytes to %s", len(value), path)
