"""
Execution Context.

Holds the run (and subtask) that context-implicit calls act on. One
context per Tracker; safe to share between threads. To hand work to
another process, export() a ContextSnapshot and rebuild with
ExecutionContext.from_snapshot() on the other side.

Subtask numbers handed out by next_subtask_number() start at 1 and only
ever grow for a given run, even when subtasks are started out of order
with explicit numbers.

Exports:
    ExecutionContext
"""

import threading
from typing import Optional

from exceptions import NoActiveContextError

from .models import ContextSnapshot
from .utils import validate_run_id


class ExecutionContext:
    """Thread-safe holder for the active run and subtask."""

    def __init__(self, run_id: Optional[str] = None, subtask_number: Optional[int] = None):
        self._lock = threading.RLock()
        self._run_id: Optional[str] = None
        self._subtask: Optional[int] = None
        self._highest = 0
        if run_id is not None:
            self.set_active_run(run_id)
            if subtask_number is not None:
                self.set_current_subtask(subtask_number)

    def __repr__(self) -> str:
        return f"ExecutionContext(run_id={self._run_id!r}, subtask={self._subtask!r})"

    def set_active_run(self, run_id: str, highest_subtask: int = 0) -> None:
        """
        Make run_id the active run and reset subtask numbering.

        highest_subtask seeds numbering when resuming a run that already
        has subtasks.
        """
        run_id = validate_run_id(run_id)
        with self._lock:
            self._run_id = run_id
            self._subtask = None
            self._highest = max(int(highest_subtask or 0), 0)

    def current_run(self) -> Optional[str]:
        with self._lock:
            return self._run_id

    def require_run(self) -> str:
        with self._lock:
            if self._run_id is None:
                raise NoActiveContextError("No active run in this execution context")
            return self._run_id

    def next_subtask_number(self) -> int:
        """Allocate the next subtask number for the active run and make it current."""
        with self._lock:
            self._subtask = self.reserve_subtask_number()
            return self._subtask

    def reserve_subtask_number(self) -> int:
        """
        Allocate the next subtask number without making it current.

        Pair with set_current_subtask() once the subtask exists, or with
        release_subtask_number() when starting it failed.
        """
        with self._lock:
            self.require_run()
            self._highest += 1
            return self._highest

    def release_subtask_number(self, subtask_number: int) -> None:
        """Give back a reserved number; only the latest reservation can be reused."""
        with self._lock:
            if self._highest == subtask_number:
                self._highest -= 1

    def set_current_subtask(self, subtask_number: int) -> None:
        """Make an explicitly numbered subtask current."""
        with self._lock:
            self.require_run()
            self._subtask = int(subtask_number)
            self._highest = max(self._highest, self._subtask)

    def current_subtask(self) -> Optional[int]:
        with self._lock:
            return self._subtask

    def require_subtask(self) -> int:
        with self._lock:
            self.require_run()
            if self._subtask is None:
                raise NoActiveContextError(f"No active subtask for run {self._run_id}")
            return self._subtask

    def clear(self) -> None:
        with self._lock:
            self._run_id = None
            self._subtask = None
            self._highest = 0

    def export(self) -> ContextSnapshot:
        """Frozen, serialisable copy of this context."""
        with self._lock:
            return ContextSnapshot(run_id=self._run_id, subtask_number=self._subtask)

    @classmethod
    def from_snapshot(cls, snapshot: ContextSnapshot) -> "ExecutionContext":
        if isinstance(snapshot, str):
            snapshot = ContextSnapshot.from_json(snapshot)
        return cls(run_id=snapshot.run_id, subtask_number=snapshot.subtask_number)
