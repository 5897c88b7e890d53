from __future__ import annotations

import json
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator

from domain.repositories import KeyValueStore, StoreFailure


class InMemoryKeyValueStore(KeyValueStore):
    """
    Process-local implementation of `KeyValueStore`.

    Used for development (`DB_PATH=:memory:`) and by the test-suite. Values
    go through a JSON round-trip on the way in and out, so callers can never
    mutate stored data without calling `set`, and non-serialisable values
    fail the same way they would against SQLite.

    A transaction holds the store lock for its whole duration and restores
    a snapshot of the data if the block raises.
    """

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}
        self._lock = threading.RLock()
        self._depth = 0

    def get(self, key: str) -> Any:
        with self._lock:
            raw = self._data.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        try:
            raw = json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise StoreFailure(f"Value for {key!r} is not JSON serialisable") from exc
        with self._lock:
            self._data[key] = raw

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def has(self, key: str) -> bool:
        with self._lock:
            return key in self._data

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            snapshot = dict(self._data) if self._depth == 0 else None
            self._depth += 1
            try:
                yield
            except BaseException:
                if snapshot is not None:
                    self._data = snapshot
                raise
            finally:
                self._depth -= 1
