# ============================================================================
# ATOMIC SUBTASK COUNTER
# ============================================================================
# STATUS: Core - Concurrency-safe items_complete increments
# PURPOSE: Lost-update-free progress counting from many workers at once
# ============================================================================
"""
Atomic Subtask Counter.

Many workers (threads, processes, hosts) advance the same subtask's
items_complete. Each increment is one guarded UPDATE evaluated inside the
store, so concurrent increments never lose updates:

    UPDATE subtask_progress
       SET items_complete = COALESCE(items_complete, 0) + delta,
           last_update = now
     WHERE run_id = ? AND subtask_number = ?
       AND status IN (NOT_STARTED, STARTED, RUNNING)
    RETURNING items_complete

In the same transaction the subtask moves STARTED -> RUNNING and its
percent_complete is recomputed when items_total is known.

Retries:
    Only TransientStoreError (lock busy, serialization failure, deadlock,
    connection refused) is retried, with RetryPolicy backoff. An
    ambiguous failure (commit outcome unknown, statement timeout) is
    raised immediately: retrying it could double count.

Exports:
    AtomicCounter
"""

import time
from typing import Callable, Optional

from config import get_config
from exceptions import (
    ConcurrencyExhaustedError,
    InvalidArgumentError,
    InvalidTransitionError,
    NotFoundError,
    TransientStoreError,
)
from infrastructure.interface_repository import IStoreDriver, IStoreSession
from infrastructure.tracking_repository import TrackingRepository
from util_logger import LoggerFactory, ComponentType

from .logic.transitions import get_subtask_open_states, is_subtask_terminal
from .retry import RetryPolicy
from .utils import validate_run_id


class AtomicCounter:
    """
    Increment subtask item counters with bounded retry.

    Args:
        driver: Store driver
        repository: Tracking repository (created on driver when omitted)
        retry_policy: Default policy (from CounterConfig when omitted)
        sleep: Sleep function (injectable for tests)
        clock: Monotonic clock (injectable for tests)
    """

    def __init__(
        self,
        driver: IStoreDriver,
        repository: Optional[TrackingRepository] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        self.driver = driver
        self.repository = repository or TrackingRepository(driver)
        self.retry_policy = retry_policy or RetryPolicy.from_config(get_config().counter)
        self._sleep = sleep
        self._clock = clock
        self.logger = LoggerFactory.create_logger(ComponentType.STATE, "AtomicCounter")

    def increment(
        self,
        run_id: str,
        subtask_number: int,
        delta: int = 1,
        timeout: Optional[float] = None,
        retry_policy: Optional[RetryPolicy] = None,
        session: Optional[IStoreSession] = None
    ) -> int:
        """
        Add delta to items_complete for one subtask.

        Args:
            run_id: Run identifier (UUID)
            subtask_number: Subtask number within the run (>= 1)
            delta: Positive amount to add
            timeout: Wall-clock budget across all attempts (seconds)
            retry_policy: Override the default policy
            session: Join an existing transaction. No retry happens in
                that case: a failed statement aborts the caller's
                transaction, so the error is raised to the caller.

        Returns:
            items_complete after this increment.

        Raises:
            InvalidArgumentError: delta <= 0 or bad identifiers
            NotFoundError: Run or subtask does not exist
            InvalidTransitionError: Subtask already terminal
            ConcurrencyExhaustedError: Retries exhausted under contention
            StoreUnavailableError / StoreTimeoutError: Ambiguous store failure
        """
        if isinstance(delta, bool) or not isinstance(delta, int) or delta <= 0:
            raise InvalidArgumentError(f"delta must be a positive integer, got {delta!r}")
        if isinstance(subtask_number, bool) or not isinstance(subtask_number, int) or subtask_number < 1:
            raise InvalidArgumentError(f"subtask_number must be >= 1, got {subtask_number!r}")
        run_id = validate_run_id(run_id)

        if session is not None:
            return self._attempt(run_id, subtask_number, delta, session, None)

        policy = retry_policy or self.retry_policy
        if timeout is not None:
            policy = policy.with_timeout(timeout)
        deadline = self._clock() + policy.timeout if policy.timeout is not None else None

        attempt = 0
        last_error: Optional[TransientStoreError] = None
        while True:
            attempt += 1
            statement_timeout = None
            if deadline is not None:
                statement_timeout = max(deadline - self._clock(), 0.001)
            try:
                value = self._attempt(run_id, subtask_number, delta, None, statement_timeout)
                if attempt > 1:
                    self.logger.info(
                        f"✅ Increment on {run_id}#{subtask_number} succeeded after {attempt} attempts"
                    )
                return value
            except TransientStoreError as e:
                last_error = e

            if attempt >= policy.max_attempts:
                break
            wait = policy.delay(attempt)
            if deadline is not None and self._clock() + wait >= deadline:
                break
            self.logger.warning(
                f"⚠️ Increment on {run_id}#{subtask_number} attempt {attempt}/"
                f"{policy.max_attempts} hit contention; retrying in {wait:.3f}s: {last_error}"
            )
            self._sleep(wait)

        self.logger.error(
            f"❌ Increment on {run_id}#{subtask_number} gave up after {attempt} attempts: {last_error}"
        )
        raise ConcurrencyExhaustedError(
            f"Increment on run {run_id} subtask {subtask_number} failed after "
            f"{attempt} attempts under contention",
            attempts=attempt,
            last_error=last_error
        )

    def _attempt(self, run_id: str, subtask_number: int, delta: int,
                 session: Optional[IStoreSession], timeout: Optional[float]) -> int:
        with self.driver.session(existing=session, timeout=timeout) as s:
            value = self.repository.increment_items(
                run_id, subtask_number, delta, get_subtask_open_states(), s
            )
            if value is None:
                self._raise_for_missed_update(run_id, subtask_number, s)
            self.logger.debug(f"➕ {run_id}#{subtask_number} +{delta} -> {value}")
            return value

    def _raise_for_missed_update(self, run_id: str, subtask_number: int,
                                 session: IStoreSession) -> None:
        """Zero rows updated: work out why with one diagnostic read."""
        subtask = self.repository.get_subtask(run_id, subtask_number, session=session)
        if subtask is None:
            if self.repository.get_run(run_id, session=session) is None:
                raise NotFoundError(f"Run {run_id} not found")
            raise NotFoundError(f"Subtask {subtask_number} of run {run_id} was never started")
        if is_subtask_terminal(subtask.status):
            raise InvalidTransitionError(
                f"Subtask {subtask_number} of run {run_id} is already {subtask.status.value}; "
                f"increments after a terminal state are rejected",
                current_status=subtask.status.value
            )
        # Row changed between the UPDATE and this read
        raise TransientStoreError(
            f"Subtask {subtask_number} of run {run_id} changed concurrently"
        )
