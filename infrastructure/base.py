# ============================================================================
# BASE REPOSITORY - STORAGE-NEUTRAL ROOT
# ============================================================================
# STATUS: Infrastructure - Repository hierarchy root
# PURPOSE: Table naming, error handling and logging shared by all repositories
# ============================================================================
"""
Base Repository.

Root of the repository hierarchy. Holds NO connection handling and NO
backend-specific SQL; every repository receives an IStoreDriver and gets
its sessions from it.

Architecture:
    BaseRepository (this file)
        |
    Domain repositories (TrackingRepository, MetricsRepository, RetentionRepository)
        |
    IStoreDriver (PostgreSQLDriver / SQLiteDriver)

Exports:
    BaseRepository: Abstract base class for repositories
    resolve_table_name: Pure table-name resolution per backend
"""

from abc import ABC
from contextlib import contextmanager
from typing import Optional, Tuple, Union

from config import DatabaseBackend
from exceptions import (
    BusinessLogicError, DatabaseError, InvalidArgumentError
)
from util_logger import LoggerFactory, ComponentType

from .interface_repository import IStoreDriver, IStoreSession, TABLES, validate_identifier


def resolve_table_name(
    backend: Union[DatabaseBackend, str],
    table: str,
    schema: Optional[str] = None
) -> Tuple[str, ...]:
    """
    Resolve a logical table name to its backend-qualified parts.

    PostgreSQL tables live in a named schema; SQLite has no schemas and
    uses the bare name. Pure function: no connection, no I/O.

    Args:
        backend: Target backend
        table: Logical table name (one of TABLES)
        schema: Schema name (PostgreSQL only)

    Returns:
        ("schema", "table") for PostgreSQL, ("table",) for SQLite

    Raises:
        InvalidArgumentError: Unknown table, backend or missing schema
    """
    if table not in TABLES:
        raise InvalidArgumentError(f"Unknown table: {table!r}")
    try:
        backend = DatabaseBackend(backend)
    except ValueError:
        raise InvalidArgumentError(f"Unknown backend: {backend!r}")

    if backend == DatabaseBackend.SQLITE:
        return (table,)
    if not schema:
        raise InvalidArgumentError("PostgreSQL table names require a schema")
    return (validate_identifier(schema), table)


class BaseRepository(ABC):
    """
    Base repository with common error handling and validation.

    Every public repository method takes an optional `session`. When given,
    the work joins that transaction; otherwise the method opens its own
    scoped session through the driver.
    """

    def __init__(self, driver: IStoreDriver):
        self.driver = driver
        self.logger = LoggerFactory.create_logger(
            ComponentType.REPOSITORY,
            self.__class__.__name__
        )
        self.logger.debug(f"🏛️ {self.__class__.__name__} initialized ({driver.backend.value})")

    def _session(self, session: Optional[IStoreSession] = None, timeout: Optional[float] = None):
        """Join `session` or open a new scoped one."""
        return self.driver.session(existing=session, timeout=timeout)

    @contextmanager
    def _error_context(self, operation: str, entity_id: Optional[str] = None):
        """
        Consistent error logging for repository operations.

        Caller errors (not found, invalid transition) log at WARNING;
        store failures and anything unexpected log at ERROR.
        The original exception is always re-raised.

        Usage:
            with self._error_context("run update", run_id):
                ...
        """
        label = f"{operation} for {entity_id}" if entity_id else operation
        try:
            yield
        except BusinessLogicError as e:
            if isinstance(e, DatabaseError):
                self.logger.error(f"❌ {label} failed: {type(e).__name__}: {e}")
            else:
                self.logger.warning(f"⚠️ {label} rejected: {e}")
            raise
        except Exception as e:
            self.logger.error(f"❌ {label} failed: {type(e).__name__}: {e}")
            raise
