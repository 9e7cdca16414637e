"""Per-key mutual exclusion for read-check-write sequences on shared maps."""

from __future__ import annotations

import threading
from typing import Hashable


class KeyedLocks:
    """
    Lazily allocated lock per key.

    Two callers touching the same operation serialize; callers on different
    operations do not contend beyond the brief allocation step.
    """

    def __init__(self) -> None:
        self._locks: dict[Hashable, threading.RLock] = {}
        self._guard = threading.Lock()

    def __call__(self, key: Hashable) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock
