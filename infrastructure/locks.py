from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class UserLocks:
    """
    Registry of one re-entrant lock per user id.

    Locks are created on first use and kept for the life of the process;
    there is one small lock object per user who ever staked.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def _get_lock(self, user_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[user_id] = lock
            return lock

    @contextmanager
    def hold(self, user_id: str) -> Iterator[None]:
        lock = self._get_lock(user_id)
        with lock:
            yield
