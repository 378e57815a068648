"""
In-process per-label locks.

Serializes define/undefine calls for the same label while letting different
labels proceed concurrently.

Example:
    with locks.hold("api"):
        # only one pipeline for "api" runs here
        ...
"""
import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

logger = logging.getLogger(__name__)


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0  # holders plus waiters


class LabelLocks:
    """
    Lock per label, created on first use and dropped once its last holder or
    waiter releases it. Only labels currently in flight keep an entry.
    """

    def __init__(self):
        self._master = threading.Lock()
        self._locks: dict[str, _Entry] = {}

    def __len__(self) -> int:
        with self._master:
            return len(self._locks)

    def locked(self, label: str) -> bool:
        with self._master:
            entry = self._locks.get(label)
        return bool(entry and entry.lock.locked())

    def _checkout(self, label: str) -> _Entry:
        with self._master:
            entry = self._locks.get(label)
            if entry is None:
                entry = self._locks[label] = _Entry()
            entry.users += 1
            return entry

    def _checkin(self, label: str, entry: _Entry) -> None:
        with self._master:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[label]

    @contextmanager
    def hold(self, label: str) -> Iterator[None]:
        entry = self._checkout(label)
        try:
            if not entry.lock.acquire(blocking=False):
                logger.debug(f"Waiting for lock on {label}")
                entry.lock.acquire()
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._checkin(label, entry)
