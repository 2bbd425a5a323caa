# ============================================================================
# SQLITE STORE DRIVER
# ============================================================================
# STATUS: Infrastructure - SQLite backend
# PURPOSE: Single-file store for single-host deployments and tests
# EXPORTS: SQLiteDriver, SQLiteSession, translate_sqlite_error
# DEPENDENCIES: sqlite3 (standard library)
# ============================================================================
"""
SQLite Store Driver.

Same query templates as PostgreSQL: table placeholders become quoted bare
names (SQLite has no schemas) and "%s" parameters become "?".

Concurrency:
    Every session opens with BEGIN IMMEDIATE, taking the write lock up
    front so the busy timeout (DB_CONNECTION_TIMEOUT) applies instead of
    a lock-upgrade deadlock. A lock still held after the busy timeout
    surfaces as TransientStoreError and is retried by the atomic counter.
    A session opened with a timeout waits for the lock at most that long.

Timestamps:
    Stored as fixed-width UTC ISO-8601 text so lexical order equals
    chronological order. Columns declared TIMESTAMP come back as aware
    datetimes.

Statement timeout:
    Emulated with a progress handler that interrupts the running
    statement after the deadline (-> StoreTimeoutError).
"""

import sqlite3
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence
from uuid import UUID

from config import DatabaseBackend, DatabaseConfig
from core.utils import ensure_utc
from exceptions import (
    DatabaseError,
    StoreTimeoutError,
    StoreUnavailableError,
    TransientStoreError,
)
from util_logger import LoggerFactory, ComponentType

from .base import resolve_table_name
from .interface_repository import IStoreDriver, IStoreSession, TABLES

logger = LoggerFactory.create_logger(ComponentType.REPOSITORY, "SQLiteDriver")

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"

# Progress handler granularity (SQLite VM instructions between checks)
_PROGRESS_STEPS = 1000


def format_timestamp(value: datetime) -> str:
    """Fixed-width UTC text representation used for every stored timestamp."""
    return ensure_utc(value).astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def _convert_timestamp(raw: bytes) -> datetime:
    parsed = datetime.fromisoformat(raw.decode())
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


sqlite3.register_converter("TIMESTAMP", _convert_timestamp)


def translate_sqlite_error(exc: sqlite3.Error, phase: str) -> Exception:
    """
    Map a sqlite3 exception to the tracker hierarchy.

    Args:
        exc: Native exception
        phase: "connect", "execute" or "commit"
    """
    message = str(exc).lower()
    if isinstance(exc, sqlite3.OperationalError):
        if "locked" in message or "busy" in message:
            return TransientStoreError(f"Store contention: {exc}")
        if "interrupted" in message:
            return StoreTimeoutError(f"Statement timed out: {exc}")
        if phase in ("connect", "commit") or "unable to open" in message:
            return StoreUnavailableError(f"SQLite {phase} failure: {exc}")
    return DatabaseError(f"SQLite error ({type(exc).__name__}): {exc}")


def _adapt_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    return value


class SQLiteSession(IStoreSession):
    """One sqlite3 connection inside an IMMEDIATE transaction."""

    backend = DatabaseBackend.SQLITE

    def __init__(self, conn: sqlite3.Connection, driver: "SQLiteDriver"):
        self.conn = conn
        self.driver = driver

    def _execute_query(self, query: str, params: Optional[Sequence[Any]],
                       identifiers: Optional[Mapping[str, str]], fetch: Optional[str]):
        rendered = self.driver.render(query, identifiers)
        values = [_adapt_value(v) for v in (params or ())]
        try:
            cursor = self.conn.execute(rendered, values)
            try:
                if fetch == 'one':
                    row = cursor.fetchone()
                    # drain so RETURNING statements finish before commit
                    cursor.fetchall()
                    return dict(row) if row is not None else None
                if fetch == 'all':
                    return [dict(r) for r in cursor.fetchall()]
                return cursor.rowcount
            finally:
                cursor.close()
        except sqlite3.Error as e:
            raise translate_sqlite_error(e, "execute") from e

    def execute(self, query, params=None, identifiers=None) -> int:
        return self._execute_query(query, params, identifiers, None)

    def fetch_one(self, query, params=None, identifiers=None) -> Optional[Dict[str, Any]]:
        return self._execute_query(query, params, identifiers, 'one')

    def fetch_all(self, query, params=None, identifiers=None) -> List[Dict[str, Any]]:
        return self._execute_query(query, params, identifiers, 'all')


class SQLiteDriver(IStoreDriver):
    """
    SQLite backend.

    One connection per session; check_same_thread is off because sessions
    may be opened and closed on different worker threads.
    """

    backend = DatabaseBackend.SQLITE

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self.path = config.sqlite_path
        self._tables: Dict[str, str] = {
            table: self._quote(resolve_table_name(self.backend, table)[0])
            for table in TABLES
        }
        logger.debug(f"🪶 SQLiteDriver ready (path={self.path})")

    @staticmethod
    def _quote(name: str) -> str:
        return '"' + name.replace('"', '""') + '"'

    def render(self, template: str, identifiers: Optional[Mapping[str, str]] = None) -> str:
        names: Dict[str, str] = dict(self._tables)
        if identifiers:
            names.update({k: self._quote(v) for k, v in identifiers.items()})
        return template.format(**names).replace("%s", "?")

    def table_name(self, table: str) -> str:
        return ".".join(resolve_table_name(self.backend, table))

    def _connect(self) -> sqlite3.Connection:
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = sqlite3.connect(
                self.path,
                timeout=float(self.config.connection_timeout_seconds),
                isolation_level=None,
                detect_types=sqlite3.PARSE_DECLTYPES,
                check_same_thread=False,
            )
        except sqlite3.Error as e:
            logger.error(f"❌ SQLite connection error: {e}")
            raise translate_sqlite_error(e, "connect") from e
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def prepare(self) -> None:
        """Switch the file to WAL so readers never block the writer."""
        if self.path == ":memory:":
            return
        conn = self._connect()
        try:
            mode = conn.execute("PRAGMA journal_mode = WAL").fetchone()[0]
            logger.debug(f"SQLite journal_mode={mode}")
        except sqlite3.Error as e:
            raise translate_sqlite_error(e, "execute") from e
        finally:
            conn.close()

    def _busy_wait_ms(self, timeout: float) -> int:
        """Busy timeout for a session with its own budget, never above DB_CONNECTION_TIMEOUT."""
        cap = self.config.connection_timeout_seconds * 1000
        return max(1, min(cap, int(timeout * 1000)))

    @staticmethod
    def _install_deadline(conn: sqlite3.Connection, timeout_ms: int) -> None:
        deadline = time.monotonic() + timeout_ms / 1000.0

        def _check() -> int:
            return 1 if time.monotonic() > deadline else 0

        conn.set_progress_handler(_check, _PROGRESS_STEPS)

    @contextmanager
    def session(self, existing: Optional[IStoreSession] = None,
                timeout: Optional[float] = None) -> Iterator[IStoreSession]:
        if existing is not None:
            yield existing
            return

        conn = self._connect()
        try:
            try:
                if timeout is not None:
                    # Lock waits count against the caller's budget too
                    conn.execute(f"PRAGMA busy_timeout = {self._busy_wait_ms(timeout)}")
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise translate_sqlite_error(e, "execute") from e

            timeout_ms = int(timeout * 1000) if timeout is not None else self.config.statement_timeout_ms
            if timeout_ms > 0:
                self._install_deadline(conn, timeout_ms)

            try:
                yield SQLiteSession(conn, self)
            except BaseException:
                if conn.in_transaction:
                    try:
                        conn.execute("ROLLBACK")
                    except sqlite3.Error as rollback_error:
                        logger.warning(f"⚠️ Rollback failed: {rollback_error}")
                raise

            conn.set_progress_handler(None, 0)
            try:
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise translate_sqlite_error(e, "commit") from e
        finally:
            conn.close()
