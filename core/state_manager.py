# ============================================================================
# RUN / SUBTASK STATE MACHINE
# ============================================================================
# STATUS: Core component - Guarded state transitions for runs and subtasks
# PURPOSE: Every run and subtask status change, with terminal cascade and
#          retention scheduling in one transaction
# EXPORTS: RunStateMachine
# DEPENDENCIES: core.logic.transitions, infrastructure repositories, util_logger
# ============================================================================

"""
Run State Machine - Guarded Status Transitions

Run lifecycle:
    NOT_STARTED -> STARTED -> RUNNING -> COMPLETED | FAILED | SKIPPED | CANCELLED

Subtask lifecycle:
    NOT_STARTED -> STARTED -> RUNNING -> COMPLETED | FAILED | SKIPPED

Terminal states are final. Every transition is one UPDATE whose WHERE
clause lists the statuses allowed to reach the target, so two workers
racing to finish the same run cannot both win and a late update never
overwrites a terminal row. When the UPDATE matches nothing, one read in
the same transaction decides between NotFoundError and
InvalidTransitionError.

Terminal run transitions also:
    - move every open subtask of the run to the matching terminal status
      (FAILED subtasks get "Task failed - subtask terminated")
    - write the run's process metrics retention record
all inside the same transaction.

Usage:
    machine = RunStateMachine(driver)
    run = machine.start_run(task_id, total_subtasks=3)
    machine.start_subtask(run.run_id, 1, "Download", items_total=500)
    machine.complete_subtask(run.run_id, 1)
    machine.complete_run(run.run_id, message="done")
"""

import getpass
import os
import socket
from typing import Any, Dict, Optional, Union

from config import get_config
from exceptions import (
    InvalidArgumentError,
    InvalidTransitionError,
    NotFoundError,
)
from infrastructure.interface_repository import IStoreDriver, IStoreSession
from infrastructure.retention_repository import RetentionRepository
from infrastructure.tracking_repository import TrackingRepository
from util_logger import LoggerFactory, ComponentType

from .logic.transitions import (
    cascade_subtask_status,
    get_subtask_open_states,
    is_run_terminal,
    is_subtask_terminal,
    parse_run_status,
    parse_subtask_status,
    run_sources_for,
    subtask_sources_for,
)
from .models import (
    RunStatus,
    SubtaskProgressRecord,
    SubtaskStatus,
    TaskRunRecord,
)
from .utils import generate_run_id, utc_now, validate_run_id

FAILED_SUBTASK_MESSAGE = "Task failed - subtask terminated"


def _current_user() -> Optional[str]:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        # No passwd entry and no LOGNAME/USER (minimal containers)
        return None


def _check_percent(value: Optional[float], name: str) -> Optional[float]:
    if value is None:
        return None
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise InvalidArgumentError(f"{name} must be a number, got {value!r}")
    if not 0.0 <= value <= 100.0:
        raise InvalidArgumentError(f"{name} must be between 0 and 100, got {value}")
    return value


def _check_count(value: Optional[int], name: str, minimum: int = 0) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise InvalidArgumentError(f"{name} must be an integer >= {minimum}, got {value!r}")
    return value


class RunStateMachine:
    """
    Owns every run and subtask status change.

    Each public operation takes an optional `session`; without one it
    opens a scoped session (commit on success, rollback on error).

    Args:
        driver: Store driver
        tracking_repo: Optional repository override
        retention_repo: Optional repository override
        retention_days: Days before a finished run's metrics may be deleted
            (defaults to METRICS_RETENTION_DAYS)
        timeout: Statement timeout in seconds for sessions opened here
    """

    def __init__(
        self,
        driver: IStoreDriver,
        tracking_repo: Optional[TrackingRepository] = None,
        retention_repo: Optional[RetentionRepository] = None,
        retention_days: Optional[int] = None,
        timeout: Optional[float] = None
    ):
        self.driver = driver
        self.tracking = tracking_repo or TrackingRepository(driver)
        self.retention = retention_repo or RetentionRepository(driver)
        self.retention_days = (
            retention_days if retention_days is not None
            else get_config().retention.retention_days
        )
        self.timeout = timeout
        self.logger = LoggerFactory.create_logger(ComponentType.STATE, "RunStateMachine")

    def _open(self, session: Optional[IStoreSession]):
        return self.driver.session(existing=session, timeout=self.timeout)

    # ========================================================================
    # RUN OPERATIONS
    # ========================================================================

    def start_run(
        self,
        task_id: int,
        hostname: Optional[str] = None,
        process_id: Optional[int] = None,
        parent_pid: Optional[int] = None,
        total_subtasks: Optional[int] = None,
        message: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        user_name: Optional[str] = None,
        session: Optional[IStoreSession] = None
    ) -> TaskRunRecord:
        """
        Create a new run in STARTED with a fresh UUID.

        hostname, process_id, parent_pid and user_name default to the
        calling process so the host's reporter can find it.

        Raises:
            NotFoundError: task_id is not registered
            InvalidArgumentError: total_subtasks negative
        """
        _check_count(total_subtasks, "total_subtasks")
        if metadata is not None and not isinstance(metadata, dict):
            raise InvalidArgumentError("metadata must be a dict")

        run_id = generate_run_id()
        with self._open(session) as s:
            task = self.tracking.get_task(task_id, session=s)
            if task is None:
                raise NotFoundError(f"Task {task_id} not found")
            run = self.tracking.insert_run(
                run_id,
                task_id,
                RunStatus.STARTED,
                hostname=hostname or socket.gethostname(),
                process_id=process_id if process_id is not None else os.getpid(),
                parent_pid=parent_pid if parent_pid is not None else os.getppid(),
                total_subtasks=total_subtasks,
                message=message,
                user_name=user_name or _current_user(),
                metadata=metadata,
                session=s
            )

        self.logger.info(f"🚀 Run {run_id} started for task {task.label} (pid {run.process_id})")
        return run

    def update_run(
        self,
        run_id: str,
        status: Union[RunStatus, str] = RunStatus.RUNNING,
        current_subtask: Optional[int] = None,
        overall_percent: Optional[float] = None,
        message: Optional[str] = None,
        error_message: Optional[str] = None,
        error_detail: Optional[str] = None,
        session: Optional[IStoreSession] = None
    ) -> TaskRunRecord:
        """
        Progress update on an active run.

        A terminal status is routed to complete_run / fail_run / skip_run /
        cancel_run so the subtask cascade and retention record still happen.

        Raises:
            NotFoundError: Unknown run
            InvalidTransitionError: Run already terminal
            InvalidArgumentError: Bad status or percent
        """
        run_id = validate_run_id(run_id)
        target = parse_run_status(status)
        overall_percent = _check_percent(overall_percent, "overall_percent")
        _check_count(current_subtask, "current_subtask", minimum=1)

        if target == RunStatus.COMPLETED:
            return self.complete_run(run_id, message=message, session=session)
        if target == RunStatus.FAILED:
            return self.fail_run(run_id, error_message or message or "Task failed",
                                 error_detail=error_detail, session=session)
        if target == RunStatus.SKIPPED:
            return self.skip_run(run_id, message=message, session=session)
        if target == RunStatus.CANCELLED:
            return self.cancel_run(run_id, message=message, session=session)

        assignments: Dict[str, Any] = {"status": target}
        if current_subtask is not None:
            assignments["current_subtask"] = current_subtask
        if overall_percent is not None:
            assignments["overall_percent_complete"] = overall_percent
        if message is not None:
            assignments["overall_progress_message"] = message
        if error_message is not None:
            assignments["error_message"] = error_message
        if error_detail is not None:
            assignments["error_detail"] = error_detail

        with self._open(session) as s:
            run = self.tracking.update_run(run_id, run_sources_for(target), assignments, session=s)
            if run is None:
                self._raise_for_run(run_id, target, s)

        self.logger.debug(f"🔄 Run {run_id} -> {target.value} ({overall_percent}%)")
        return run

    def complete_run(self, run_id: str, message: Optional[str] = None,
                     session: Optional[IStoreSession] = None) -> TaskRunRecord:
        """COMPLETED at 100%; open subtasks complete with it."""
        return self._finish_run(run_id, RunStatus.COMPLETED, message=message, session=session)

    def fail_run(self, run_id: str, error_message: str, error_detail: Optional[str] = None,
                 session: Optional[IStoreSession] = None) -> TaskRunRecord:
        """FAILED; open subtasks fail with FAILED_SUBTASK_MESSAGE."""
        if not error_message:
            raise InvalidArgumentError("fail_run requires an error_message")
        return self._finish_run(
            run_id, RunStatus.FAILED,
            error_message=error_message,
            error_detail=error_detail,
            subtask_error=FAILED_SUBTASK_MESSAGE,
            session=session
        )

    def skip_run(self, run_id: str, message: Optional[str] = None,
                 session: Optional[IStoreSession] = None) -> TaskRunRecord:
        return self._finish_run(run_id, RunStatus.SKIPPED, message=message, session=session)

    def cancel_run(self, run_id: str, message: Optional[str] = None,
                   session: Optional[IStoreSession] = None) -> TaskRunRecord:
        """CANCELLED; open subtasks become SKIPPED."""
        return self._finish_run(run_id, RunStatus.CANCELLED, message=message, session=session)

    def _finish_run(
        self,
        run_id: str,
        target: RunStatus,
        message: Optional[str] = None,
        error_message: Optional[str] = None,
        error_detail: Optional[str] = None,
        subtask_error: Optional[str] = None,
        session: Optional[IStoreSession] = None
    ) -> TaskRunRecord:
        """Terminal transition + subtask cascade + retention record, one transaction."""
        run_id = validate_run_id(run_id)
        now = utc_now()
        assignments: Dict[str, Any] = {"status": target, "end_time": now, "last_update": now}
        if target == RunStatus.COMPLETED:
            assignments["overall_percent_complete"] = 100.0
        if message is not None:
            assignments["overall_progress_message"] = message
        if error_message is not None:
            assignments["error_message"] = error_message
        if error_detail is not None:
            assignments["error_detail"] = error_detail

        with self._open(session) as s:
            run = self.tracking.update_run(run_id, run_sources_for(target), assignments, session=s)
            if run is None:
                self._raise_for_run(run_id, target, s)
            cascaded = self.tracking.cascade_subtasks(
                run_id,
                cascade_subtask_status(target),
                get_subtask_open_states(),
                error_message=subtask_error,
                session=s
            )
            self.retention.schedule(run_id, run.end_time or now, self.retention_days, session=s)

        icon = "✅" if target == RunStatus.COMPLETED else "🛑"
        self.logger.info(
            f"{icon} Run {run_id} -> {target.value}"
            + (f" ({cascaded} open subtasks closed)" if cascaded else "")
        )
        return run

    def reset_task(self, task_id: int, run_id: Optional[str] = None,
                   session: Optional[IStoreSession] = None) -> int:
        """
        Delete a task's runs (or one run). Subtasks and metrics cascade.

        Returns:
            Number of runs deleted.
        """
        if run_id is not None:
            run_id = validate_run_id(run_id)
        with self._open(session) as s:
            deleted = self.tracking.delete_runs(task_id, run_id=run_id, session=s)
        self.logger.warning(
            f"🧹 Reset task {task_id}: {deleted} run(s) deleted"
            + (f" (run {run_id})" if run_id else "")
        )
        return deleted

    # ========================================================================
    # SUBTASK OPERATIONS
    # ========================================================================

    def start_subtask(
        self,
        run_id: str,
        subtask_number: int,
        name: Optional[str] = None,
        items_total: Optional[int] = None,
        message: Optional[str] = None,
        session: Optional[IStoreSession] = None
    ) -> SubtaskProgressRecord:
        """
        Create (or restart) a subtask in STARTED.

        The run moves STARTED -> RUNNING and current_subtask points at
        this subtask. A subtask that is already RUNNING or terminal is
        not restarted.

        Raises:
            NotFoundError: Unknown run
            InvalidTransitionError: Run terminal, or subtask past STARTED
        """
        run_id = validate_run_id(run_id)
        _check_count(subtask_number, "subtask_number", minimum=1)
        _check_count(items_total, "items_total")

        with self._open(session) as s:
            run = self.tracking.promote_run_for_subtask(run_id, subtask_number, session=s)
            if run is None:
                self._raise_for_run(run_id, RunStatus.RUNNING, s)
            subtask = self.tracking.start_subtask(
                run_id, subtask_number, name,
                subtask_sources_for(SubtaskStatus.STARTED),
                items_total=items_total,
                message=message,
                session=s
            )
            if subtask is None:
                self._raise_for_subtask(run_id, subtask_number, SubtaskStatus.STARTED, s)

        self.logger.info(
            f"▶️ Subtask {subtask_number} ({name or 'unnamed'}) started on run {run_id}"
            + (f" [{items_total} items]" if items_total else "")
        )
        return subtask

    def update_subtask(
        self,
        run_id: str,
        subtask_number: int,
        status: Union[SubtaskStatus, str] = SubtaskStatus.RUNNING,
        percent: Optional[float] = None,
        items_complete: Optional[int] = None,
        message: Optional[str] = None,
        error_message: Optional[str] = None,
        session: Optional[IStoreSession] = None
    ) -> SubtaskProgressRecord:
        """
        Progress update on an open subtask.

        items_complete here is an absolute value; use the atomic counter
        when several workers share a subtask.
        """
        run_id = validate_run_id(run_id)
        target = parse_subtask_status(status)
        percent = _check_percent(percent, "percent")
        _check_count(items_complete, "items_complete")

        if target == SubtaskStatus.COMPLETED:
            return self.complete_subtask(run_id, subtask_number, items_completed=items_complete,
                                         message=message, session=session)
        if target == SubtaskStatus.FAILED:
            return self.fail_subtask(run_id, subtask_number,
                                     error_message or message or "Subtask failed", session=session)
        if target == SubtaskStatus.SKIPPED:
            return self.skip_subtask(run_id, subtask_number, message=message, session=session)

        assignments: Dict[str, Any] = {"status": target}
        if percent is not None:
            assignments["percent_complete"] = percent
        if items_complete is not None:
            assignments["items_complete"] = items_complete
        if message is not None:
            assignments["progress_message"] = message
        if error_message is not None:
            assignments["error_message"] = error_message
        return self._transition_subtask(run_id, subtask_number, target, assignments, session)

    def complete_subtask(self, run_id: str, subtask_number: int,
                         items_completed: Optional[int] = None,
                         message: Optional[str] = None,
                         session: Optional[IStoreSession] = None) -> SubtaskProgressRecord:
        """COMPLETED at 100%. items_completed, when given, overwrites the counter."""
        run_id = validate_run_id(run_id)
        _check_count(items_completed, "items_completed")
        now = utc_now()
        assignments: Dict[str, Any] = {
            "status": SubtaskStatus.COMPLETED,
            "percent_complete": 100.0,
            "end_time": now,
            "last_update": now,
        }
        if items_completed is not None:
            assignments["items_complete"] = items_completed
        if message is not None:
            assignments["progress_message"] = message
        subtask = self._transition_subtask(run_id, subtask_number, SubtaskStatus.COMPLETED,
                                           assignments, session)
        self.logger.info(f"✅ Subtask {subtask_number} completed on run {run_id}")
        return subtask

    def fail_subtask(self, run_id: str, subtask_number: int, error_message: str,
                     session: Optional[IStoreSession] = None) -> SubtaskProgressRecord:
        run_id = validate_run_id(run_id)
        if not error_message:
            raise InvalidArgumentError("fail_subtask requires an error_message")
        now = utc_now()
        subtask = self._transition_subtask(
            run_id, subtask_number, SubtaskStatus.FAILED,
            {"status": SubtaskStatus.FAILED, "end_time": now, "last_update": now,
             "error_message": error_message},
            session
        )
        self.logger.warning(f"❌ Subtask {subtask_number} failed on run {run_id}: {error_message}")
        return subtask

    def skip_subtask(self, run_id: str, subtask_number: int, message: Optional[str] = None,
                     session: Optional[IStoreSession] = None) -> SubtaskProgressRecord:
        run_id = validate_run_id(run_id)
        now = utc_now()
        assignments: Dict[str, Any] = {"status": SubtaskStatus.SKIPPED, "end_time": now, "last_update": now}
        if message is not None:
            assignments["progress_message"] = message
        subtask = self._transition_subtask(run_id, subtask_number, SubtaskStatus.SKIPPED,
                                           assignments, session)
        self.logger.info(f"⏭️ Subtask {subtask_number} skipped on run {run_id}")
        return subtask

    def _transition_subtask(self, run_id: str, subtask_number: int, target: SubtaskStatus,
                            assignments: Dict[str, Any],
                            session: Optional[IStoreSession]) -> SubtaskProgressRecord:
        _check_count(subtask_number, "subtask_number", minimum=1)
        with self._open(session) as s:
            subtask = self.tracking.update_subtask(
                run_id, subtask_number, subtask_sources_for(target), assignments, session=s
            )
            if subtask is None:
                self._raise_for_subtask(run_id, subtask_number, target, s)
        return subtask

    # ========================================================================
    # DIAGNOSTICS (guard did not match)
    # ========================================================================

    def _raise_for_run(self, run_id: str, target: RunStatus, session: IStoreSession) -> None:
        run = self.tracking.get_run(run_id, session=session)
        if run is None:
            raise NotFoundError(f"Run {run_id} not found")
        if is_run_terminal(run.status):
            raise InvalidTransitionError(
                f"Run {run_id} is already {run.status.value}; cannot move to {target.value}",
                current_status=run.status.value
            )
        raise InvalidTransitionError(
            f"Run {run_id} cannot move {run.status.value} -> {target.value}",
            current_status=run.status.value
        )

    def _raise_for_subtask(self, run_id: str, subtask_number: int, target: SubtaskStatus,
                           session: IStoreSession) -> None:
        subtask = self.tracking.get_subtask(run_id, subtask_number, session=session)
        if subtask is None:
            if self.tracking.get_run(run_id, session=session) is None:
                raise NotFoundError(f"Run {run_id} not found")
            raise NotFoundError(f"Subtask {subtask_number} of run {run_id} was never started")
        if is_subtask_terminal(subtask.status):
            raise InvalidTransitionError(
                f"Subtask {subtask_number} of run {run_id} is already {subtask.status.value}; "
                f"cannot move to {target.value}",
                current_status=subtask.status.value
            )
        raise InvalidTransitionError(
            f"Subtask {subtask_number} of run {run_id} cannot move "
            f"{subtask.status.value} -> {target.value}",
            current_status=subtask.status.value
        )
