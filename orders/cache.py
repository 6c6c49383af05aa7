# orders/cache.py
import threading
from contextlib import contextmanager
from typing import Dict, Mapping, Optional, Tuple, Union

from orders.models import dump_payload


class _RWLock:
    """Many readers or one writer. Writers waiting block new readers."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self):
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self):
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class MirrorCache:
    """
    In-memory order mirror keyed by order identifier.
    Values are serialized JSON bytes, exactly what the read endpoint returns.
    """

    def __init__(self) -> None:
        self._by_id: Dict[str, bytes] = {}
        self._lock = _RWLock()

    def set(self, identifier: str, payload: bytes, overwrite: bool = True) -> bool:
        """
        Insert or replace one entry.
        overwrite=False only fills a missing entry (read-path backfill), so it never
        clobbers a newer value written by ingestion. Returns whether it was written.
        """
        with self._lock.write():
            if not overwrite and identifier in self._by_id:
                return False
            self._by_id[identifier] = payload
            return True

    def get(self, identifier: str) -> Tuple[Optional[bytes], bool]:
        with self._lock.read():
            payload = self._by_id.get(identifier)
        return payload, payload is not None

    def seed(self, entries: Mapping[str, Union[bytes, dict]]) -> int:
        """Bulk restore at startup; must finish before ingestion starts."""
        n = 0
        for identifier, doc in entries.items():
            payload = doc if isinstance(doc, (bytes, bytearray)) else dump_payload(doc)
            with self._lock.write():
                self._by_id[identifier] = bytes(payload)
            n += 1
        return n

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._by_id)

    def __contains__(self, identifier: object) -> bool:
        with self._lock.read():
            return identifier in self._by_id
