"""
Store Driver Abstract Base Classes - Single Point of Truth.

Every repository talks to the store through these two interfaces, so the
same query logic runs against PostgreSQL and SQLite.

Query templates:
    Written once, backend-neutral. Table names appear as placeholders
    named after the table ("{task_runs}"), extra identifiers as named
    placeholders resolved from the `identifiers` mapping, and values
    always as "%s" parameters. Each driver renders the template:
    PostgreSQL via psycopg.sql composition (schema-qualified
    identifiers), SQLite via quoted bare names and "?" parameters.
    Templates must not contain literal "%" or braces; LIKE patterns are
    passed as parameters.

Exports:
    IStoreSession: One scoped connection + transaction
    IStoreDriver: Factory for scoped sessions
    TABLES: Logical table names
    validate_identifier: Identifier allow-list check
"""

import re
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from config import DatabaseBackend
from exceptions import InvalidArgumentError


TABLES: Tuple[str, ...] = (
    "stages",
    "tasks",
    "task_runs",
    "subtask_progress",
    "process_metrics",
    "reporter_status",
    "process_metrics_retention",
)

_IDENTIFIER_RE = re.compile(r"^[a-z_][a-z0-9_]*$")


def validate_identifier(name: str) -> str:
    """Reject anything that is not a plain lower-case SQL identifier."""
    if not isinstance(name, str) or not _IDENTIFIER_RE.match(name):
        raise InvalidArgumentError(f"Invalid SQL identifier: {name!r}")
    return name


class IStoreSession(ABC):
    """
    One scoped connection with an open transaction.

    Obtained from IStoreDriver.session(); commit/rollback/release are the
    driver's job, never the caller's.
    """

    backend: DatabaseBackend

    @abstractmethod
    def execute(self, query: str, params: Optional[Sequence[Any]] = None,
                identifiers: Optional[Mapping[str, str]] = None) -> int:
        """Run a statement; return affected row count."""
        pass

    @abstractmethod
    def fetch_one(self, query: str, params: Optional[Sequence[Any]] = None,
                  identifiers: Optional[Mapping[str, str]] = None) -> Optional[Dict[str, Any]]:
        """Run a query; return the first row as a dict or None."""
        pass

    @abstractmethod
    def fetch_all(self, query: str, params: Optional[Sequence[Any]] = None,
                  identifiers: Optional[Mapping[str, str]] = None) -> List[Dict[str, Any]]:
        """Run a query; return all rows as dicts."""
        pass

    def increment(
        self,
        table: str,
        column: str,
        delta: Any,
        match: Mapping[str, Any],
        also_set: Optional[Mapping[str, Any]] = None,
        guard: Optional[Tuple[str, Sequence[Any]]] = None
    ) -> Optional[Any]:
        """
        Atomically add delta to a numeric column in one UPDATE statement.

        The arithmetic happens inside the store:
            SET column = COALESCE(column, 0) + delta
        so concurrent callers never lose updates. No value is read first.

        Args:
            table: Logical table name (one of TABLES)
            column: Numeric column to advance
            delta: Amount to add
            match: Equality predicate (column -> value), ANDed
            also_set: Extra assignments made in the same statement
            guard: (column, allowed values) - row only matches while the
                column holds one of the values

        Returns:
            The new column value, or None when no row matched.
        """
        if table not in TABLES:
            raise InvalidArgumentError(f"Unknown table: {table!r}")
        if not match:
            raise InvalidArgumentError("increment requires a non-empty match predicate")

        identifiers: Dict[str, str] = {"c0": validate_identifier(column)}
        set_parts = ["{c0} = COALESCE({c0}, 0) + %s"]
        params: List[Any] = [delta]

        for i, (col, value) in enumerate((also_set or {}).items()):
            identifiers[f"s{i}"] = validate_identifier(col)
            set_parts.append(f"{{s{i}}} = %s")
            params.append(value)

        where_parts = []
        for i, (col, value) in enumerate(match.items()):
            identifiers[f"m{i}"] = validate_identifier(col)
            where_parts.append(f"{{m{i}}} = %s")
            params.append(value)

        if guard is not None:
            guard_col, allowed = guard
            if not allowed:
                raise InvalidArgumentError("guard requires at least one allowed value")
            identifiers["g0"] = validate_identifier(guard_col)
            where_parts.append("{g0} IN (" + ", ".join(["%s"] * len(allowed)) + ")")
            params.extend(allowed)

        query = (
            f"UPDATE {{{table}}} SET {', '.join(set_parts)} "
            f"WHERE {' AND '.join(where_parts)} RETURNING {{c0}}"
        )
        row = self.fetch_one(query, params, identifiers=identifiers)
        return row[column] if row else None


class IStoreDriver(ABC):
    """
    Backend driver: hands out scoped sessions and renders table names.
    """

    backend: DatabaseBackend

    @abstractmethod
    @contextmanager
    def session(self, existing: Optional[IStoreSession] = None,
                timeout: Optional[float] = None) -> Iterator[IStoreSession]:
        """
        Scoped session.

        With `existing`, yields it unchanged and leaves commit/rollback to
        whoever opened it. Otherwise acquires a connection, opens a
        transaction, commits on success, rolls back on error and always
        releases the connection.

        Args:
            existing: Session to join instead of opening a new one
            timeout: Statement timeout in seconds for this session
        """
        pass

    @abstractmethod
    def table_name(self, table: str) -> str:
        """Fully rendered table name for this backend (for logs/diagnostics)."""
        pass

    def prepare(self) -> None:
        """Backend-level setup that must run outside a transaction."""
        return None

    def close(self) -> None:
        """Release pooled resources, if any."""
        return None
