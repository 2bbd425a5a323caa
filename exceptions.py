# ============================================================================
# EXCEPTIONS
# ============================================================================
# STATUS: Shared - used by every layer
# PURPOSE: Exception hierarchy separating caller errors from store failures
# EXPORTS: TrackerError, BusinessLogicError, NotFoundError, InvalidArgumentError,
#          InvalidTransitionError, AmbiguousMatchError, ConcurrencyExhaustedError,
#          NoActiveContextError, CollectionError, ProcessDiedError, DatabaseError,
#          StoreUnavailableError, TransientStoreError, StoreTimeoutError,
#          ReporterAlreadyRunningError, ConfigurationError
# DEPENDENCIES: None (standard library only)
# ============================================================================

"""
Custom Exception Hierarchy

Distinguishes between:
1. Caller errors (bad identifiers, bad enum values, stale context)
2. Store failures (connection lost, lock contention, timeouts)

Only TransientStoreError is ever retried, and only inside the atomic
counter. Everything else propagates to the caller unchanged.
"""

from typing import List, Optional


class TrackerError(Exception):
    """Root of every error raised by the tracker."""
    pass


class BusinessLogicError(TrackerError):
    """
    Base class for expected runtime failures.

    These are normal failures that occur during system operation
    and should be handled by the caller without crashing.
    """
    pass


class NotFoundError(BusinessLogicError):
    """
    Referenced stage, task, run or subtask does not exist.

    Examples:
        - Increment on a subtask that was never started
        - Lookup by filename with no matching task
        - Completing a run_id that was never created
    """
    pass


class InvalidArgumentError(BusinessLogicError):
    """
    Argument rejected before touching the store.

    Examples:
        - Status string outside the allowed enumeration
        - Non-positive increment delta
        - Percent outside 0..100
    """
    pass


class InvalidTransitionError(InvalidArgumentError):
    """
    Mutation attempted on a run or subtask already in a terminal state.

    Terminal states are final. The guard is evaluated inside the UPDATE,
    so a concurrent terminal transition also surfaces here.
    """

    def __init__(self, message: str, current_status: Optional[str] = None):
        super().__init__(message)
        self.current_status = current_status


class AmbiguousMatchError(BusinessLogicError):
    """Partial name or filename lookup matched more than one task."""

    def __init__(self, message: str, candidates: Optional[List[str]] = None):
        super().__init__(message)
        self.candidates = candidates or []


class ConcurrencyExhaustedError(BusinessLogicError):
    """Atomic increment gave up after exhausting its retry budget."""

    def __init__(self, message: str, attempts: int = 0,
                 last_error: Optional[BaseException] = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class NoActiveContextError(BusinessLogicError):
    """Context-implicit call made with no active run or subtask."""
    pass


class CollectionError(BusinessLogicError):
    """
    Process metrics sampling failed.

    Never escapes the sampler: the reporter records these as metric rows
    with collection_error set. error_type carries the classification.
    """

    error_type = "UNKNOWN"

    def __init__(self, message: str, error_type: Optional[str] = None):
        super().__init__(message)
        if error_type:
            self.error_type = error_type


class ProcessDiedError(CollectionError):
    """Sampled PID no longer exists on this host."""

    error_type = "PROCESS_DIED"


class DatabaseError(BusinessLogicError):
    """
    Database operation failures.

    Examples:
        - Constraint violation
        - Schema missing
    """
    pass


class StoreUnavailableError(DatabaseError):
    """
    Connection or transaction failure.

    Raised directly when the outcome of a write is ambiguous (for example
    the connection dropped during COMMIT). Such failures are never retried.
    """
    pass


class TransientStoreError(StoreUnavailableError):
    """
    Contention or connection failure where the statement did not apply.

    Examples:
        - SQLite "database is locked"
        - PostgreSQL serialization failure or deadlock
        - Connection refused before any statement was sent
    """
    pass


class StoreTimeoutError(StoreUnavailableError):
    """Store operation exceeded its timeout."""
    pass


class ReporterAlreadyRunningError(BusinessLogicError):
    """A live reporter process is already registered for this host."""

    def __init__(self, message: str, hostname: str = "", process_id: Optional[int] = None):
        super().__init__(message)
        self.hostname = hostname
        self.process_id = process_id


class ConfigurationError(TrackerError):
    """
    System configuration error.

    These are typically fatal and indicate misconfiguration
    that prevents the system from operating.

    Examples:
        - Unknown DB_BACKEND value
        - Missing POSTGRES_HOST for the postgresql backend
        - Non-numeric retry settings
    """
    pass
