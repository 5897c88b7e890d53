from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import closing, contextmanager
from typing import Any, Iterator, Optional

from domain.repositories import KeyValueStore, StoreFailure


class SqliteKeyValueStore(KeyValueStore):
    """
    SQLite-backed implementation of `KeyValueStore`.

    Owns a single `heliactyl` table of `(key, value)` rows. Keys are stored
    as `{namespace}:{key}` and values as `{"value": ...}` JSON documents, the
    same layout the panel's database wrapper has always written. The table
    is created if needed.

    `transaction()` pins one connection to the calling thread and opens it
    with `BEGIN IMMEDIATE`, so writers from other threads or processes wait
    on SQLite's write lock until the block commits or rolls back.
    """

    def __init__(self, db_path: str, namespace: str = "heliactyl") -> None:
        self._db_path = db_path
        self._namespace = namespace
        self._local = threading.local()
        self._ensure_table()

    def _get_connection(self) -> sqlite3.Connection:
        return sqlite3.connect(self._db_path)

    def _full_key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    def _current(self) -> Optional[sqlite3.Connection]:
        return getattr(self._local, "conn", None)

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        conn = self._current()
        try:
            if conn is not None:
                yield conn
            else:
                with closing(self._get_connection()) as own_conn:
                    with own_conn:
                        yield own_conn
        except sqlite3.Error as exc:
            raise StoreFailure(f"SQLite error: {exc}") from exc

    def _ensure_table(self) -> None:
        with self._connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS heliactyl (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )

    def get(self, key: str) -> Any:
        with self._connection() as conn:
            cur = conn.cursor()
            cur.execute("SELECT value FROM heliactyl WHERE key = ?", (self._full_key(key),))
            row = cur.fetchone()
        if not row:
            return None
        try:
            return json.loads(row[0]).get("value")
        except (ValueError, AttributeError) as exc:
            raise StoreFailure(f"Corrupt value stored under {key!r}") from exc

    def set(self, key: str, value: Any) -> None:
        try:
            data = json.dumps({"value": value})
        except (TypeError, ValueError) as exc:
            raise StoreFailure(f"Value for {key!r} is not JSON serialisable") from exc

        with self._connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO heliactyl (key, value)
                VALUES (?, ?)
                ON CONFLICT (key)
                DO UPDATE SET value = excluded.value
                """,
                (self._full_key(key), data),
            )

    def delete(self, key: str) -> None:
        with self._connection() as conn:
            cur = conn.cursor()
            cur.execute("DELETE FROM heliactyl WHERE key = ?", (self._full_key(key),))

    def has(self, key: str) -> bool:
        with self._connection() as conn:
            cur = conn.cursor()
            cur.execute("SELECT 1 FROM heliactyl WHERE key = ?", (self._full_key(key),))
            return cur.fetchone() is not None

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if self._current() is not None:
            # Nested blocks join the outer transaction.
            yield
            return

        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as exc:
            conn.close()
            raise StoreFailure(f"Could not start transaction: {exc}") from exc

        self._local.conn = conn
        try:
            yield
        except BaseException:
            conn.rollback()
            raise
        else:
            try:
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                raise StoreFailure(f"Could not commit transaction: {exc}") from exc
        finally:
            self._local.conn = None
            conn.close()
