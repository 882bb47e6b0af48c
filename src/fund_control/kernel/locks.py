"""
Per-key in-process locks

Commands on the same appropriation, approval request or budget must run
one at a time; commands on different keys may run in parallel. Keys are
always acquired in sorted order, so two commands that need overlapping
key sets cannot deadlock.

A key's lock only exists while some thread holds or waits for it, so the
registry stays as small as the set of keys currently in use.
"""

import threading
from contextlib import contextmanager
from typing import Iterator


class _KeyLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.users = 0


class StreamLocks:
    """Registry of one re-entrant lock per key in use"""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, _KeyLock] = {}

    def _checkout(self, key: str) -> _KeyLock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = _KeyLock()
                self._locks[key] = entry
            entry.users += 1
            return entry

    def _checkin(self, key: str, entry: _KeyLock) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, *keys: str | None) -> Iterator[None]:
        """Hold the locks for all given keys (None entries are ignored)"""
        ordered = sorted({key for key in keys if key})
        checked_out: list[tuple[str, _KeyLock]] = []
        acquired: list[threading.RLock] = []
        try:
            for key in ordered:
                entry = self._checkout(key)
                checked_out.append((key, entry))
                entry.lock.acquire()
                acquired.append(entry.lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for key, entry in reversed(checked_out):
                self._checkin(key, entry)

    def __len__(self) -> int:
        """Number of keys currently held or waited on"""
        with self._guard:
            return len(self._locks)
