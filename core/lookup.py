"""
Task and Run Lookup.

Resolves the (stage, task) pair a script belongs to, by order number,
partial name or script filename, and finds the run to report against.

Matching rules:
    - filename: directories are stripped, then case-insensitive substring
      match against script_filename
    - stage int: stage_order; stage str: substring of stage_name
    - task int: task_order; task str: substring of task_name or
      script_filename
    - a case-insensitive exact match wins over substring matches
    - more than one remaining candidate is AmbiguousMatchError, never
      "first match"

Exports:
    TaskResolver
"""

from typing import Callable, List, Optional, Union

from exceptions import AmbiguousMatchError, InvalidArgumentError, NotFoundError
from infrastructure.interface_repository import IStoreDriver, IStoreSession
from infrastructure.tracking_repository import TrackingRepository
from util_logger import LoggerFactory, ComponentType

from .logic.transitions import get_run_active_states
from .models import TaskRecord, TaskRunRecord
from .utils import script_basename

StageRef = Union[int, str, None]
TaskRef = Union[int, str, None]


def _is_order(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _pick(candidates: List[TaskRecord], needle: str,
          fields: Callable[[TaskRecord], List[Optional[str]]],
          what: str) -> TaskRecord:
    """Exactly one candidate whose fields contain needle (exact match preferred)."""
    needle_l = needle.lower()
    exact = [c for c in candidates
             if any(f and f.lower() == needle_l for f in fields(c))]
    if len(exact) == 1:
        return exact[0]
    partial = exact or [c for c in candidates
                        if any(f and needle_l in f.lower() for f in fields(c))]
    if not partial:
        raise NotFoundError(f"No task matches {what} {needle!r}")
    if len(partial) > 1:
        labels = sorted(c.label for c in partial)
        raise AmbiguousMatchError(
            f"{what.capitalize()} {needle!r} matches {len(partial)} tasks: {', '.join(labels)}",
            candidates=labels
        )
    return partial[0]


class TaskResolver:
    """
    Look up registered tasks and their runs.

    resolve_or_start_run needs a state machine to create runs; the plain
    resolve methods are read-only.
    """

    def __init__(self, driver: IStoreDriver,
                 tracking_repo: Optional[TrackingRepository] = None,
                 state_machine=None):
        self.driver = driver
        self.tracking = tracking_repo or TrackingRepository(driver)
        self._state_machine = state_machine
        self.logger = LoggerFactory.create_logger(ComponentType.CONTEXT, "TaskResolver")

    @property
    def state_machine(self):
        if self._state_machine is None:
            from .state_manager import RunStateMachine
            self._state_machine = RunStateMachine(self.driver, tracking_repo=self.tracking)
        return self._state_machine

    def resolve_task(self, stage: StageRef = None, task: TaskRef = None,
                     filename: Optional[str] = None,
                     session: Optional[IStoreSession] = None) -> TaskRecord:
        """
        Resolve exactly one registered task.

        Raises:
            InvalidArgumentError: Neither task nor filename given
            NotFoundError: Nothing matches
            AmbiguousMatchError: More than one task matches
        """
        if task is None and not filename:
            raise InvalidArgumentError("resolve_task needs a task or a filename")

        candidates = self.tracking.get_tasks(session=session)
        if stage is not None:
            candidates = self._filter_stage(candidates, stage)

        if filename:
            base = script_basename(filename)
            if not base:
                raise InvalidArgumentError(f"Empty filename after stripping directories: {filename!r}")
            return _pick(candidates, base, lambda t: [t.script_filename], "filename")

        if _is_order(task):
            matches = [t for t in candidates if t.task_order == task]
            if not matches:
                raise NotFoundError(f"No task with order {task}" + (f" in stage {stage!r}" if stage is not None else ""))
            if len(matches) > 1:
                labels = sorted(t.label for t in matches)
                raise AmbiguousMatchError(
                    f"Task order {task} matches {len(matches)} tasks: {', '.join(labels)}",
                    candidates=labels
                )
            return matches[0]

        if not isinstance(task, str) or not task.strip():
            raise InvalidArgumentError(f"task must be an order number or a name, got {task!r}")
        return _pick(candidates, task.strip(),
                     lambda t: [t.task_name, t.script_filename], "task")

    def _filter_stage(self, candidates: List[TaskRecord], stage) -> List[TaskRecord]:
        """Restrict candidates to the single stage stage refers to."""
        if _is_order(stage):
            stage_names = {t.stage_name for t in candidates if t.stage_order == stage}
        elif isinstance(stage, str) and stage.strip():
            needle = stage.strip().lower()
            names = {t.stage_name for t in candidates if t.stage_name}
            exact = {n for n in names if n.lower() == needle}
            stage_names = exact or {n for n in names if needle in n.lower()}
        else:
            raise InvalidArgumentError(f"stage must be an order number or a name, got {stage!r}")

        if not stage_names:
            raise NotFoundError(f"No stage matches {stage!r}")
        if len(stage_names) > 1:
            names = sorted(stage_names)
            raise AmbiguousMatchError(
                f"Stage {stage!r} matches {len(names)} stages: {', '.join(names)}",
                candidates=names
            )
        name = stage_names.pop()
        return [t for t in candidates if t.stage_name == name]

    def resolve_run(self, stage: StageRef = None, task: TaskRef = None,
                    filename: Optional[str] = None,
                    session: Optional[IStoreSession] = None) -> TaskRunRecord:
        """
        Latest run of the resolved task.

        Raises:
            NotFoundError: Task unknown or never run
        """
        resolved = self.resolve_task(stage, task, filename, session=session)
        run = self.tracking.latest_run_for_task(resolved.task_id, session=session)
        if run is None:
            raise NotFoundError(f"Task {resolved.label} has no runs")
        return run

    def resolve_or_start_run(self, stage: StageRef = None, task: TaskRef = None,
                             filename: Optional[str] = None,
                             **start_kwargs) -> TaskRunRecord:
        """
        Latest active run of the resolved task, creating one when none is active.

        Creating a run here is a side effect of what reads like a lookup,
        so it is logged at WARNING.
        """
        resolved = self.resolve_task(stage, task, filename)
        run = self.tracking.latest_run_for_task(resolved.task_id)
        if run is not None and run.status in get_run_active_states():
            return run

        run = self.state_machine.start_run(resolved.task_id, **start_kwargs)
        self.logger.warning(
            f"⚠️ No active run for {resolved.label}; started run {run.run_id} on lookup"
        )
        return run
