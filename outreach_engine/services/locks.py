import threading
from contextlib import contextmanager
from typing import Iterator, Optional


class KeyedLocks:
    """One lock per key, dropped once nobody holds or waits on it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, tuple[threading.Lock, int]] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock, users = self._locks.get(key, (None, 0))
            if lock is None:
                lock = threading.Lock()
            self._locks[key] = (lock, users + 1)

        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                current, users = self._locks[key]
                if users <= 1:
                    del self._locks[key]
                else:
                    self._locks[key] = (current, users - 1)

    def active_keys(self) -> list[str]:
        with self._guard:
            return list(self._locks)


_contact_locks: Optional[KeyedLocks] = None


def get_contact_locks() -> KeyedLocks:
    global _contact_locks
    if _contact_locks is None:
        _contact_locks = KeyedLocks()
    return _contact_locks
