"""SQLite connection handling for the vector store."""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Sequence

SCHEMA_PATH = Path(__file__).with_name("schema.sql")

CONNECTION_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA foreign_keys=ON",
    "PRAGMA busy_timeout=5000",
)


class SQLiteDatabase:
    """A single lazily opened connection guarded by a re-entrant lock.

    Watcher timers, the drive poll loop and CLI commands all share one
    connection, so every statement runs under ``self.lock``. Writes go
    through :meth:`transaction`, which commits on success and rolls back
    on any exception.
    """

    def __init__(self, db_path: Path, timeout: float = 30.0) -> None:
        self.db_path = Path(db_path).expanduser()
        self.timeout = timeout
        self.lock = threading.RLock()
        self._conn: sqlite3.Connection | None = None

    @property
    def connection(self) -> sqlite3.Connection:
        with self.lock:
            if self._conn is None:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(str(self.db_path), timeout=self.timeout, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                for pragma in CONNECTION_PRAGMAS:
                    conn.execute(pragma)
                self._conn = conn
            return self._conn

    def close(self) -> None:
        with self.lock:
            if self._conn is not None:
                self._conn.close()
            self._conn = None

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        with self.lock:
            return self.connection.execute(sql, params).fetchall()

    def scalar(self, sql: str, params: Sequence[Any] = ()) -> Any:
        """First column of the first row, or ``None`` for an empty result."""
        rows = self.query(sql, params)
        return rows[0][0] if rows else None

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        with self.lock:
            conn = self.connection
            cursor = conn.cursor()
            try:
                yield cursor
            except BaseException:
                conn.rollback()
                raise
            else:
                conn.commit()
            finally:
                cursor.close()

    def executemany(self, sql: str, records: Sequence[Sequence[Any]], batch_size: int = 500) -> None:
        """Insert ``records`` in committed batches of ``batch_size``."""
        for start in range(0, len(records), batch_size):
            with self.transaction() as cursor:
                cursor.executemany(sql, records[start : start + batch_size])

    def ensure_schema(self) -> None:
        script = SCHEMA_PATH.read_text(encoding="utf-8")
        with self.lock:
            self.connection.executescript(script)


__all__ = ["SQLiteDatabase", "SCHEMA_PATH"]
