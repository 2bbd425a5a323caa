# ============================================================================
# POSTGRESQL STORE DRIVER
# ============================================================================
# STATUS: Infrastructure - PostgreSQL backend
# PURPOSE: psycopg sessions, SQL composition and error translation
# EXPORTS: PostgreSQLDriver, PostgreSQLSession, translate_postgres_error
# DEPENDENCIES: psycopg, psycopg_pool
# ============================================================================
"""
PostgreSQL Store Driver.

Renders backend-neutral query templates with psycopg.sql so that every
table is a schema-qualified sql.Identifier and no value is ever
interpolated into SQL text.

Connection Lifecycle:
    1. Connect (single-use) or borrow from ConnectionPoolManager
    2. SET LOCAL statement_timeout for the transaction
    3. Yield session to caller
    4. On error: rollback. On success: commit
    5. Always: close / return to pool

Error Translation:
    Lock not available, serialization failure, deadlock,
    connect failure, pool timeout        -> TransientStoreError (retryable)
    Statement timeout (QueryCanceled)    -> StoreTimeoutError
    Failure during COMMIT                -> StoreUnavailableError (ambiguous)
    Other operational failures           -> StoreUnavailableError
    Anything else from psycopg           -> DatabaseError
"""

import math
from contextlib import contextmanager
from enum import Enum
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence
from uuid import UUID

import psycopg
from psycopg import errors as pg_errors
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import PoolTimeout

from config import DatabaseBackend, DatabaseConfig
from exceptions import (
    DatabaseError,
    StoreTimeoutError,
    StoreUnavailableError,
    TransientStoreError,
)
from util_logger import LoggerFactory, ComponentType

from .base import resolve_table_name
from .connection_pool import ConnectionPoolManager
from .interface_repository import IStoreDriver, IStoreSession, TABLES

logger = LoggerFactory.create_logger(ComponentType.REPOSITORY, "PostgreSQLDriver")

_TRANSIENT_ERRORS = (
    pg_errors.LockNotAvailable,
    pg_errors.SerializationFailure,
    pg_errors.DeadlockDetected,
)


def translate_postgres_error(exc: BaseException, phase: str) -> Exception:
    """
    Map a psycopg / psycopg_pool exception to the tracker hierarchy.

    Args:
        exc: Native exception
        phase: "connect", "execute" or "commit"
    """
    if isinstance(exc, PoolTimeout):
        return TransientStoreError(f"Timed out waiting for a pooled connection: {exc}")
    if isinstance(exc, _TRANSIENT_ERRORS):
        return TransientStoreError(f"Store contention ({type(exc).__name__}): {exc}")
    if isinstance(exc, pg_errors.QueryCanceled):
        return StoreTimeoutError(f"Statement timed out: {exc}")
    if phase == "commit":
        return StoreUnavailableError(f"Commit failed, outcome unknown: {exc}")
    if phase == "connect" and isinstance(exc, psycopg.OperationalError):
        return TransientStoreError(f"Could not connect to PostgreSQL: {exc}")
    if isinstance(exc, psycopg.OperationalError):
        return StoreUnavailableError(f"PostgreSQL connection failure: {exc}")
    return DatabaseError(f"PostgreSQL error ({type(exc).__name__}): {exc}")


def _adapt_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    return value


def _normalise_row(row: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    return {k: (str(v) if isinstance(v, UUID) else v) for k, v in row.items()}


class PostgreSQLSession(IStoreSession):
    """One psycopg connection inside an open transaction."""

    backend = DatabaseBackend.POSTGRESQL

    def __init__(self, conn: psycopg.Connection, driver: "PostgreSQLDriver"):
        self.conn = conn
        self.driver = driver

    def _execute_query(self, query: str, params: Optional[Sequence[Any]],
                       identifiers: Optional[Mapping[str, str]], fetch: Optional[str]):
        """
        Execute a rendered template.

        fetch: 'one' -> first row, 'all' -> all rows, None -> rowcount
        """
        composed = self.driver.render(query, identifiers)
        values = [_adapt_value(v) for v in (params or ())]
        try:
            with self.conn.cursor() as cursor:
                cursor.execute(composed, values)
                if fetch == 'one':
                    return _normalise_row(cursor.fetchone())
                if fetch == 'all':
                    return [_normalise_row(r) for r in cursor.fetchall()]
                return cursor.rowcount
        except psycopg.Error as e:
            raise translate_postgres_error(e, "execute") from e

    def execute(self, query, params=None, identifiers=None) -> int:
        return self._execute_query(query, params, identifiers, None)

    def fetch_one(self, query, params=None, identifiers=None) -> Optional[Dict[str, Any]]:
        return self._execute_query(query, params, identifiers, 'one')

    def fetch_all(self, query, params=None, identifiers=None) -> List[Dict[str, Any]]:
        return self._execute_query(query, params, identifiers, 'all')

    def set_statement_timeout(self, timeout_ms: int) -> None:
        """Transaction-local statement timeout; 0 disables it."""
        try:
            self.conn.execute(
                "SELECT set_config('statement_timeout', %s, true)",
                (str(int(timeout_ms)),)
            )
        except psycopg.Error as e:
            raise translate_postgres_error(e, "execute") from e


class PostgreSQLDriver(IStoreDriver):
    """
    PostgreSQL backend.

    Tables live in config.schema_name. Connections are single-use unless
    config.use_pool is set.
    """

    backend = DatabaseBackend.POSTGRESQL

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self.schema = config.schema_name
        self.conninfo = config.connection_string
        self._tables: Dict[str, sql.Identifier] = {
            table: sql.Identifier(*resolve_table_name(self.backend, table, self.schema))
            for table in TABLES
        }
        logger.debug(
            f"🐘 PostgreSQLDriver ready (schema={self.schema}, pool={config.use_pool})"
        )

    def render(self, template: str, identifiers: Optional[Mapping[str, str]] = None) -> sql.Composed:
        """Compose a template: tables and identifiers via sql.Identifier."""
        names: Dict[str, Any] = dict(self._tables)
        names["schema"] = sql.Identifier(self.schema)
        if identifiers:
            names.update({k: sql.Identifier(v) for k, v in identifiers.items()})
        return sql.SQL(template).format(**names)

    def table_name(self, table: str) -> str:
        return ".".join(resolve_table_name(self.backend, table, self.schema))

    @contextmanager
    def _get_connection(self, timeout: Optional[float] = None) -> Iterator[psycopg.Connection]:
        """Pooled or single-use connection; acquisition never waits longer than timeout."""
        wait = float(self.config.connection_timeout_seconds)
        if timeout is not None:
            wait = min(wait, timeout)

        if self.config.use_pool:
            with ConnectionPoolManager.get_connection(self.config, timeout=wait) as conn:
                yield conn
            return

        try:
            conn = psycopg.connect(
                self.conninfo,
                row_factory=dict_row,
                # libpq takes whole seconds
                connect_timeout=max(1, math.ceil(wait)),
            )
        except psycopg.Error as e:
            logger.error(f"❌ PostgreSQL connection error: {type(e).__name__}: {e}")
            raise translate_postgres_error(e, "connect") from e
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def session(self, existing: Optional[IStoreSession] = None,
                timeout: Optional[float] = None) -> Iterator[IStoreSession]:
        if existing is not None:
            yield existing
            return

        timeout_ms = int(timeout * 1000) if timeout is not None else self.config.statement_timeout_ms
        try:
            with self._get_connection(timeout) as conn:
                session = PostgreSQLSession(conn, self)
                try:
                    if timeout_ms > 0:
                        session.set_statement_timeout(timeout_ms)
                    yield session
                except BaseException:
                    try:
                        conn.rollback()
                    except psycopg.Error as rollback_error:
                        logger.warning(f"⚠️ Rollback failed: {rollback_error}")
                    raise
                try:
                    conn.commit()
                except psycopg.Error as e:
                    raise translate_postgres_error(e, "commit") from e
        except PoolTimeout as e:
            raise translate_postgres_error(e, "connect") from e

    def close(self) -> None:
        if self.config.use_pool:
            ConnectionPoolManager.shutdown()
