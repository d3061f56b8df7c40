"""
Key-value stores with compare-and-swap, using SQLite or process memory.

Both backends hold JSON-compatible values and hand out a fresh CAS token on
every successful add/replace. Values are serialized on the way in and
decoded on the way out, so callers never share mutable state with the store.

The SQLite store is safe to share between threads (one connection guarded
by a lock) and between processes (WAL journal, busy timeout).
"""

import json
import secrets
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

from .errors import (
    ConflictError,
    DuplicateKeyError,
    NotFoundError,
    StoreTimeoutError,
)
from .protocol import StoreRecord

# Lock wait used when no timeout is given (seconds, -1 blocks forever)
_BLOCK = -1
_MAX_BUSY_MS = 2**31 - 1


def _new_cas(previous: Optional[int] = None) -> int:
    """Random non-zero 63-bit token, never equal to ``previous``."""
    while True:
        cas = secrets.randbits(63)
        if cas and cas != previous:
            return cas


def _encode(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=True)


class MemoryStore:
    """
    In-memory store.

    - Process-local, not shared across processes.
    - Thread-safe via RLock.
    - Timeouts bound the wait for the lock.
    """

    def __init__(self):
        self._data: dict[str, tuple[str, int]] = {}
        self._lock = threading.RLock()

    @contextmanager
    def _locked(self, key: str, timeout: Optional[float]) -> Iterator[None]:
        if not self._lock.acquire(timeout=_BLOCK if timeout is None else timeout):
            raise StoreTimeoutError(f"Timed out waiting for store: {key}", key)
        try:
            yield
        finally:
            self._lock.release()

    def get(
        self,
        key: str,
        *,
        quiet: bool = False,
        timeout: Optional[float] = None,
    ) -> Optional[StoreRecord]:
        with self._locked(key, timeout):
            entry = self._data.get(key)
        if entry is None:
            if quiet:
                return None
            raise NotFoundError(f"Key not found: {key}", key)
        payload, cas = entry
        return StoreRecord(key, json.loads(payload), cas)

    def add(self, key: str, value: Any, *, timeout: Optional[float] = None) -> int:
        payload = _encode(value)
        with self._locked(key, timeout):
            if key in self._data:
                raise DuplicateKeyError(f"Key already exists: {key}", key)
            cas = _new_cas()
            self._data[key] = (payload, cas)
        return cas

    def replace(
        self,
        key: str,
        value: Any,
        cas: Optional[int] = None,
        *,
        timeout: Optional[float] = None,
    ) -> int:
        payload = _encode(value)
        with self._locked(key, timeout):
            entry = self._data.get(key)
            if entry is None:
                raise NotFoundError(f"Key not found: {key}", key)
            if cas is not None and entry[1] != cas:
                raise ConflictError(f"CAS mismatch for {key}", key)
            new_cas = _new_cas(entry[1])
            self._data[key] = (payload, new_cas)
        return new_cas

    def delete(
        self,
        key: str,
        cas: Optional[int] = None,
        *,
        quiet: bool = False,
        timeout: Optional[float] = None,
    ) -> None:
        with self._locked(key, timeout):
            entry = self._data.get(key)
            if entry is None:
                if quiet:
                    return
                raise NotFoundError(f"Key not found: {key}", key)
            if cas is not None and entry[1] != cas:
                raise ConflictError(f"CAS mismatch for {key}", key)
            del self._data[key]

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return sorted(k for k in self._data if k.startswith(prefix))

    def count(self) -> int:
        with self._lock:
            return len(self._data)

    def close(self) -> None:
        with self._lock:
            self._data.clear()


class SQLiteStore:
    """
    SQLite-backed store for documents and index pointer records.

    One table, one row per key. The CAS token is a column, so a conditional
    replace or delete is a single UPDATE/DELETE with the token in its WHERE
    clause, atomic in SQLite regardless of how many processes write.
    """

    def __init__(self, store_path: Path, timeout: Optional[float] = 5.0):
        """
        Args:
            store_path: Path to SQLite database file
            timeout: Default seconds to wait on a locked database
        """
        self._db_path = Path(store_path)
        self._timeout = timeout
        self._lock = threading.RLock()
        self._conn: Optional[sqlite3.Connection] = None
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(
            str(self._db_path),
            timeout=self._timeout if self._timeout is not None else _MAX_BUSY_MS / 1000,
            check_same_thread=False,  # shared across threads, guarded by _lock
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value_json TEXT NOT NULL,
                cas INTEGER NOT NULL,
                updated_at REAL NOT NULL
            )
        """)
        self._conn.commit()

    @property
    def path(self) -> Path:
        return self._db_path

    @contextmanager
    def _session(self, key: str, timeout: Optional[float]) -> Iterator[sqlite3.Connection]:
        """Hold the connection with a bounded wait, mapping busy errors to timeouts."""
        if self._conn is None:
            raise sqlite3.ProgrammingError("Cannot operate on a closed store.")
        wait = self._timeout if timeout is None else timeout
        if not self._lock.acquire(timeout=_BLOCK if wait is None else wait):
            raise StoreTimeoutError(f"Timed out waiting for store: {key}", key)
        try:
            busy_ms = _MAX_BUSY_MS if wait is None else int(wait * 1000)
            self._conn.execute(f"PRAGMA busy_timeout = {busy_ms}")
            yield self._conn
        except sqlite3.OperationalError as e:
            self._conn.rollback()
            msg = str(e).lower()
            if "locked" in msg or "busy" in msg:
                raise StoreTimeoutError(f"Timed out on {key}: {e}", key) from e
            raise
        finally:
            self._lock.release()

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def get(
        self,
        key: str,
        *,
        quiet: bool = False,
        timeout: Optional[float] = None,
    ) -> Optional[StoreRecord]:
        with self._session(key, timeout) as conn:
            row = conn.execute(
                "SELECT value_json, cas FROM kv WHERE key = ?", (key,)
            ).fetchone()
        if row is None:
            if quiet:
                return None
            raise NotFoundError(f"Key not found: {key}", key)
        return StoreRecord(key, json.loads(row["value_json"]), row["cas"])

    def keys(self, prefix: str = "") -> list[str]:
        """List keys starting with ``prefix``, sorted."""
        with self._session(prefix, None) as conn:
            cursor = conn.execute("""
                SELECT key FROM kv
                WHERE substr(key, 1, ?) = ?
                ORDER BY key
            """, (len(prefix), prefix))
            return [row["key"] for row in cursor]

    def count(self) -> int:
        with self._session("", None) as conn:
            return conn.execute("SELECT COUNT(*) FROM kv").fetchone()[0]

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def add(self, key: str, value: Any, *, timeout: Optional[float] = None) -> int:
        payload = _encode(value)
        cas = _new_cas()
        with self._session(key, timeout) as conn:
            try:
                conn.execute("""
                    INSERT INTO kv (key, value_json, cas, updated_at)
                    VALUES (?, ?, ?, ?)
                """, (key, payload, cas, time.time()))
                conn.commit()
            except sqlite3.IntegrityError:
                conn.rollback()
                raise DuplicateKeyError(f"Key already exists: {key}", key) from None
        return cas

    def replace(
        self,
        key: str,
        value: Any,
        cas: Optional[int] = None,
        *,
        timeout: Optional[float] = None,
    ) -> int:
        payload = _encode(value)
        with self._session(key, timeout) as conn:
            new_cas = _new_cas(cas)
            cursor = conn.execute("""
                UPDATE kv
                SET value_json = ?, cas = ?, updated_at = ?
                WHERE key = ? AND (? IS NULL OR cas = ?)
            """, (payload, new_cas, time.time(), key, cas, cas))
            conn.commit()
            if cursor.rowcount == 0:
                self._raise_missing_or_conflict(conn, key)
        return new_cas

    def delete(
        self,
        key: str,
        cas: Optional[int] = None,
        *,
        quiet: bool = False,
        timeout: Optional[float] = None,
    ) -> None:
        with self._session(key, timeout) as conn:
            cursor = conn.execute("""
                DELETE FROM kv
                WHERE key = ? AND (? IS NULL OR cas = ?)
            """, (key, cas, cas))
            conn.commit()
            if cursor.rowcount == 0:
                try:
                    self._raise_missing_or_conflict(conn, key)
                except NotFoundError:
                    if not quiet:
                        raise

    def _raise_missing_or_conflict(self, conn: sqlite3.Connection, key: str) -> None:
        exists = conn.execute("SELECT 1 FROM kv WHERE key = ?", (key,)).fetchone()
        if exists is None:
            raise NotFoundError(f"Key not found: {key}", key)
        raise ConflictError(f"CAS mismatch for {key}", key)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        self.close()
