"""Shared SQLite connection wrapper.

All stores share one ``sqlite3.Connection`` opened in WAL mode.  Access to
the connection object is serialized by a re-entrant lock so that one
statement and its commit never interleave with another thread's.  Atomicity
of the marketplace invariants does not rely on this lock: every state change
is a single conditional ``UPDATE`` whose row count tells the caller whether
it won.
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import structlog

from bookswap.domain.errors import StorageError

logger = structlog.get_logger()


def open_database(db_path: Path | str) -> sqlite3.Connection:
    """Open a connection with WAL mode, foreign keys and dict-style rows.

    Args:
        db_path: Path to the SQLite database file, or ``":memory:"``.

    Returns:
        An open sqlite3.Connection usable from any thread.
    """
    conn = sqlite3.connect(str(db_path), check_same_thread=False, timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


class Database:
    """Thread-safe access to a shared SQLite connection.

    Args:
        conn: An open sqlite3.Connection (see ``open_database``).
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._lock = threading.RLock()

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    @contextmanager
    def session(self) -> Iterator[sqlite3.Connection]:
        """Hold the connection for one unit of work and commit it.

        ``sqlite3.IntegrityError`` propagates unchanged so stores can turn
        uniqueness violations into domain conflicts.  Any other
        ``sqlite3.Error`` is rolled back and re-raised as ``StorageError``.
        """
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except sqlite3.IntegrityError:
                self._conn.rollback()
                raise
            except sqlite3.Error as exc:
                self._conn.rollback()
                logger.error("storage_failure", error=str(exc))
                raise StorageError("The marketplace store failed to complete the operation") from exc
            except BaseException:
                self._conn.rollback()
                raise

    def fetch_one(self, sql: str, params: tuple[object, ...] = ()) -> sqlite3.Row | None:
        with self.session() as conn:
            row: sqlite3.Row | None = conn.execute(sql, params).fetchone()
            return row

    def fetch_all(self, sql: str, params: tuple[object, ...] | list[object] = ()) -> list[sqlite3.Row]:
        with self.session() as conn:
            return list(conn.execute(sql, params).fetchall())

    def execute(self, sql: str, params: tuple[object, ...] = ()) -> int:
        """Run one write statement and return the affected row count."""
        with self.session() as conn:
            return conn.execute(sql, params).rowcount

    def close(self) -> None:
        with self._lock:
            self._conn.close()
