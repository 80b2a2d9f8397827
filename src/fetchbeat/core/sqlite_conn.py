"""SQLite adapter shared by the lease, ledger and user-state stores."""

from __future__ import annotations

import sqlite3
import threading
from typing import Any

from fetchbeat.core.errors import StoreUnavailableError


class SqliteConnection:
    """Adapter: ``sqlite3.Connection`` → ``Connection`` protocol.

    The connection runs in autocommit mode, so every ``execute`` is its own
    transaction and conditional writes (upserts, version checks) are atomic
    across processes. A re-entrant lock serialises access from the event loop
    and from worker threads (lease renewals run in ``asyncio.to_thread``).

    ``sqlite3.OperationalError`` (locked database, missing file, disk I/O) is
    raised as ``StoreUnavailableError``.
    """

    def __init__(
        self,
        path: str = ":memory:",
        *,
        timeout: float = 5.0,
        row_factory: Any = sqlite3.Row,
    ) -> None:
        self.path = path
        try:
            self._conn = sqlite3.connect(
                path, timeout=timeout, check_same_thread=False, isolation_level=None
            )
        except sqlite3.OperationalError as exc:
            raise StoreUnavailableError(f"Cannot open database {path}", cause=exc) from exc
        self._conn.row_factory = row_factory
        self._lock = threading.RLock()
        if path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(f"PRAGMA busy_timeout={int(timeout * 1000)}")

    # -- Connection protocol -----------------------------------------------

    def execute(self, sql: str, params: tuple = ()) -> int:
        """Run a write statement and return the number of changed rows."""
        with self._lock:
            try:
                cursor = self._conn.execute(sql, params)
            except sqlite3.OperationalError as exc:
                raise StoreUnavailableError(str(exc), cause=exc) from exc
            return cursor.rowcount

    def fetchone(self, sql: str, params: tuple = ()) -> Any:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchone()
            except sqlite3.OperationalError as exc:
                raise StoreUnavailableError(str(exc), cause=exc) from exc

    def fetchall(self, sql: str, params: tuple = ()) -> list:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.OperationalError as exc:
                raise StoreUnavailableError(str(exc), cause=exc) from exc

    def executescript(self, script: str) -> None:
        with self._lock:
            try:
                self._conn.executescript(script)
            except sqlite3.OperationalError as exc:
                raise StoreUnavailableError(str(exc), cause=exc) from exc

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # -- convenience -------------------------------------------------------

    @property
    def raw(self) -> sqlite3.Connection:
        """Access the underlying ``sqlite3.Connection`` (e.g. for pragmas)."""
        return self._conn

    def __repr__(self) -> str:
        return f"SqliteConnection({self.path!r})"
