"""
Per-key locks serializing hook mutations for the same inspected element.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import threading
from contextlib import contextmanager
from typing import Generator, Iterable


class KeyedLock:
    """One re-entrant lock per key, created on demand.

    Acquiring several keys always happens in sorted order so that two
    callers locking overlapping key sets cannot deadlock.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def _get(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, keys: Iterable[str]) -> Generator[None, None, None]:
        """Hold the locks for all `keys` for the duration of the block."""
        locks = [self._get(key) for key in sorted(set(keys))]
        acquired: list[threading.RLock] = []
        try:
            for lock in locks:
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
