"""SQLite connection factory for the submission ledger."""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path


class Database:
    """Thread-safe SQLite connection manager.

    Request handlers run on a thread pool, so each worker thread opens its
    own connection (WAL mode lets them read concurrently). Writes share one
    lock. Every connection opened is tracked so ``close`` can release them
    all, whichever thread calls it.
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = str(db_path)
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()
        self._write_lock = threading.Lock()
        self._conns_lock = threading.Lock()
        self._conns: list[sqlite3.Connection] = []
        self._closed = False

    @property
    def path(self) -> str:
        return self._db_path

    @property
    def open_connections(self) -> int:
        with self._conns_lock:
            return len(self._conns)

    def _get_conn(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            return conn
        with self._conns_lock:
            if self._closed:
                raise sqlite3.ProgrammingError(f"ledger database {self._db_path} is closed")
            conn = sqlite3.connect(self._db_path, check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL")
            conn.row_factory = sqlite3.Row
            self._conns.append(conn)
        self._local.conn = conn
        return conn

    def fetchone(self, sql: str, params: tuple = ()) -> sqlite3.Row | None:
        return self._get_conn().execute(sql, params).fetchone()

    def fetchall(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        return self._get_conn().execute(sql, params).fetchall()

    def write(self, sql: str, params: tuple = ()) -> int:
        """Execute one write under the lock and commit. Returns the rowcount."""
        with self._write_lock:
            conn = self._get_conn()
            cursor = conn.execute(sql, params)
            conn.commit()
            return cursor.rowcount

    def insert(self, sql: str, params: tuple = ()) -> int:
        """Like ``write`` but returns the new row's rowid."""
        with self._write_lock:
            conn = self._get_conn()
            cursor = conn.execute(sql, params)
            conn.commit()
            return int(cursor.lastrowid or 0)

    def write_script(self, sql: str) -> None:
        with self._write_lock:
            self._get_conn().executescript(sql)

    def close(self) -> None:
        """Close every connection opened by any thread. Further use raises."""
        with self._conns_lock:
            conns, self._conns = self._conns, []
            self._closed = True
        for conn in conns:
            conn.close()
        self._local = threading.local()
