# ============================================================================
# TRACKER FACADE
# ============================================================================
# STATUS: Core - Context-aware entry point for instrumented scripts
# PURPOSE: task_* / subtask_* calls that default to the active run and subtask
# EXPORTS: Tracker
# ============================================================================
"""
Tracker - Context-Aware Facade.

Scripts call task_start() once, then subtask_* without repeating the
run_id. Every method also takes explicit identifiers, which always win
over the context.

Usage:
    tracker = Tracker()
    tracker.task_start(filename=__file__, total_subtasks=2)
    tracker.subtask_start("Download", items_total=len(urls))
    for url in urls:
        fetch(url)
        tracker.subtask_increment()
    tracker.subtask_complete()
    tracker.task_complete("All files fetched")

Worker processes:
    snapshot = tracker.export_context()          # parent
    worker = Tracker.for_worker(snapshot)        # child
    worker.subtask_increment()
"""

from typing import Any, Dict, List, Optional, Union

from exceptions import InvalidArgumentError
from infrastructure.interface_repository import IStoreDriver
from util_logger import LoggerFactory, ComponentType

from .context import ExecutionContext
from .counter import AtomicCounter
from .lookup import TaskResolver
from .models import (
    ContextSnapshot,
    RunStatus,
    SubtaskProgressRecord,
    SubtaskStatus,
    TaskRunRecord,
)
from .state_manager import RunStateMachine
from .utils import validate_run_id


class Tracker:
    """
    Task tracking facade bound to one ExecutionContext.

    Args:
        driver: Store driver (from configuration when omitted)
        context: Execution context (a fresh one when omitted)
    """

    def __init__(self, driver: Optional[IStoreDriver] = None,
                 context: Optional[ExecutionContext] = None,
                 state_machine: Optional[RunStateMachine] = None,
                 counter: Optional[AtomicCounter] = None):
        if driver is None:
            from infrastructure.factory import create_driver
            driver = create_driver()
        self.driver = driver
        self.context = context or ExecutionContext()
        self.state = state_machine or RunStateMachine(driver)
        self.counter = counter or AtomicCounter(driver, repository=self.state.tracking)
        self.resolver = TaskResolver(driver, tracking_repo=self.state.tracking,
                                     state_machine=self.state)
        self.logger = LoggerFactory.create_logger(ComponentType.CONTEXT, "Tracker")

    @classmethod
    def for_worker(cls, snapshot: Union[ContextSnapshot, str],
                   driver: Optional[IStoreDriver] = None) -> "Tracker":
        """Tracker for a worker thread or process, seeded from an exported context."""
        return cls(driver=driver, context=ExecutionContext.from_snapshot(snapshot))

    def export_context(self) -> ContextSnapshot:
        return self.context.export()

    # ------------------------------------------------------------------
    # identifier resolution
    # ------------------------------------------------------------------

    def _run_id(self, run_id: Optional[str]) -> str:
        if run_id is not None:
            return validate_run_id(run_id)
        return self.context.require_run()

    def _subtask_number(self, run_id: str, subtask_number: Optional[int]) -> int:
        if subtask_number is not None:
            return subtask_number
        if run_id != self.context.current_run():
            raise InvalidArgumentError(
                f"subtask_number is required for run {run_id}: it is not the active run"
            )
        return self.context.require_subtask()

    def _finished(self, run: TaskRunRecord) -> TaskRunRecord:
        if self.context.current_run() == run.run_id:
            self.context.clear()
        return run

    def attach(self, run_id: str) -> None:
        """Make an existing run active; subtask numbering continues after its highest subtask."""
        run_id = validate_run_id(run_id)
        highest = self.state.tracking.max_subtask_number(run_id)
        self.context.set_active_run(run_id, highest_subtask=highest)
        self.logger.debug(f"📎 Attached to run {run_id} (highest subtask {highest})")

    # ------------------------------------------------------------------
    # runs
    # ------------------------------------------------------------------

    def task_start(self, task_id: Optional[int] = None, stage=None, task=None,
                   filename: Optional[str] = None, total_subtasks: Optional[int] = None,
                   message: Optional[str] = None,
                   metadata: Optional[Dict[str, Any]] = None) -> TaskRunRecord:
        """Start a run (task by id, or resolved from stage/task/filename) and make it active."""
        if task_id is None:
            task_id = self.resolver.resolve_task(stage, task, filename).task_id
        run = self.state.start_run(task_id, total_subtasks=total_subtasks,
                                   message=message, metadata=metadata)
        self.context.set_active_run(run.run_id)
        return run

    def task_update(self, overall_percent: Optional[float] = None, message: Optional[str] = None,
                    status: Union[RunStatus, str] = RunStatus.RUNNING,
                    current_subtask: Optional[int] = None,
                    run_id: Optional[str] = None) -> TaskRunRecord:
        run = self.state.update_run(self._run_id(run_id), status=status,
                                    current_subtask=current_subtask,
                                    overall_percent=overall_percent, message=message)
        if run.is_terminal:
            self._finished(run)
        return run

    def task_complete(self, message: Optional[str] = None,
                      run_id: Optional[str] = None) -> TaskRunRecord:
        return self._finished(self.state.complete_run(self._run_id(run_id), message=message))

    def task_fail(self, error_message: str, error_detail: Optional[str] = None,
                  run_id: Optional[str] = None) -> TaskRunRecord:
        return self._finished(
            self.state.fail_run(self._run_id(run_id), error_message, error_detail=error_detail)
        )

    def task_skip(self, message: Optional[str] = None,
                  run_id: Optional[str] = None) -> TaskRunRecord:
        return self._finished(self.state.skip_run(self._run_id(run_id), message=message))

    def task_cancel(self, message: Optional[str] = None,
                    run_id: Optional[str] = None) -> TaskRunRecord:
        return self._finished(self.state.cancel_run(self._run_id(run_id), message=message))

    # ------------------------------------------------------------------
    # subtasks
    # ------------------------------------------------------------------

    def subtask_start(self, name: Optional[str] = None, items_total: Optional[int] = None,
                      message: Optional[str] = None, subtask_number: Optional[int] = None,
                      run_id: Optional[str] = None) -> SubtaskProgressRecord:
        """
        Start a subtask. Without subtask_number the next number for the
        active run is allocated; for a run that is not active the next
        number after the highest stored one is used.
        """
        run_id = self._run_id(run_id)
        active = run_id == self.context.current_run()
        reserved = None
        if subtask_number is None:
            if active:
                subtask_number = reserved = self.context.reserve_subtask_number()
            else:
                subtask_number = self.state.tracking.max_subtask_number(run_id) + 1

        # The context only moves once the subtask row exists
        try:
            subtask = self.state.start_subtask(run_id, subtask_number, name,
                                               items_total=items_total, message=message)
        except Exception:
            if reserved is not None:
                self.context.release_subtask_number(reserved)
            raise
        if active and self.context.current_run() == run_id:
            self.context.set_current_subtask(subtask_number)
        return subtask

    def subtask_update(self, percent: Optional[float] = None,
                       items_complete: Optional[int] = None,
                       message: Optional[str] = None,
                       status: Union[SubtaskStatus, str] = SubtaskStatus.RUNNING,
                       subtask_number: Optional[int] = None,
                       run_id: Optional[str] = None) -> SubtaskProgressRecord:
        run_id = self._run_id(run_id)
        return self.state.update_subtask(
            run_id, self._subtask_number(run_id, subtask_number), status=status,
            percent=percent, items_complete=items_complete, message=message
        )

    def subtask_complete(self, items_completed: Optional[int] = None,
                         message: Optional[str] = None,
                         subtask_number: Optional[int] = None,
                         run_id: Optional[str] = None) -> SubtaskProgressRecord:
        run_id = self._run_id(run_id)
        return self.state.complete_subtask(
            run_id, self._subtask_number(run_id, subtask_number),
            items_completed=items_completed, message=message
        )

    def subtask_fail(self, error_message: str, subtask_number: Optional[int] = None,
                     run_id: Optional[str] = None) -> SubtaskProgressRecord:
        run_id = self._run_id(run_id)
        return self.state.fail_subtask(run_id, self._subtask_number(run_id, subtask_number),
                                       error_message)

    def subtask_skip(self, message: Optional[str] = None, subtask_number: Optional[int] = None,
                     run_id: Optional[str] = None) -> SubtaskProgressRecord:
        run_id = self._run_id(run_id)
        return self.state.skip_subtask(run_id, self._subtask_number(run_id, subtask_number),
                                       message=message)

    def subtask_increment(self, delta: int = 1, subtask_number: Optional[int] = None,
                          run_id: Optional[str] = None,
                          timeout: Optional[float] = None) -> int:
        """Atomically add delta to the subtask's items_complete; returns the new value."""
        run_id = self._run_id(run_id)
        return self.counter.increment(run_id, self._subtask_number(run_id, subtask_number),
                                      delta=delta, timeout=timeout)

    # ------------------------------------------------------------------
    # lookup
    # ------------------------------------------------------------------

    def find_run(self, stage=None, task=None, filename: Optional[str] = None,
                 activate: bool = False) -> TaskRunRecord:
        """Latest run of a task; NotFoundError when it never ran."""
        run = self.resolver.resolve_run(stage, task, filename)
        if activate:
            self.attach(run.run_id)
        return run

    def find_or_start_run(self, stage=None, task=None, filename: Optional[str] = None,
                          **start_kwargs) -> TaskRunRecord:
        """Active run of a task, starting one (with a warning) when none is active. Activates it."""
        run = self.resolver.resolve_or_start_run(stage, task, filename, **start_kwargs)
        self.attach(run.run_id)
        return run

    def subtasks(self, run_id: Optional[str] = None) -> List[SubtaskProgressRecord]:
        return self.state.tracking.get_subtasks(self._run_id(run_id))
