"""
Task Run and Subtask Progress Models.

Exports:
    TaskRunRecord: One execution instance of a task
    SubtaskProgressRecord: Progress row scoped to one run
    RunStatusView: Run joined with its task and stage (read-model)
"""

import json
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID
from pydantic import Field, field_validator

from .base import TrackerRecord
from .enums import RunStatus, SubtaskStatus


def _uuid_to_str(v: Any) -> Any:
    if isinstance(v, UUID):
        return str(v)
    return v


class TaskRunRecord(TrackerRecord):
    """
    Database representation of a task run.

    History is permanent: rows are only removed by a task reset or when
    the owning task is deleted.
    """

    run_id: str
    task_id: int
    hostname: Optional[str] = None
    process_id: Optional[int] = None
    parent_pid: Optional[int] = None
    status: RunStatus
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    last_update: Optional[datetime] = None
    total_subtasks: Optional[int] = None
    current_subtask: Optional[int] = None
    overall_percent_complete: Optional[float] = None
    overall_progress_message: Optional[str] = None
    error_message: Optional[str] = None
    error_detail: Optional[str] = None
    user_name: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("run_id", mode="before")
    @classmethod
    def coerce_run_id(cls, v: Any) -> Any:
        return _uuid_to_str(v)

    @field_validator("metadata", mode="before")
    @classmethod
    def parse_metadata(cls, v: Any) -> Any:
        if v is None:
            return {}
        if isinstance(v, str):
            return json.loads(v) if v else {}
        return v

    @property
    def is_terminal(self) -> bool:
        from ..logic.transitions import is_run_terminal
        return is_run_terminal(self.status)


class SubtaskProgressRecord(TrackerRecord):
    """Database representation of one subtask progress row."""

    progress_id: Optional[int] = None
    run_id: str
    subtask_number: int = Field(..., ge=1)
    subtask_name: Optional[str] = None
    status: SubtaskStatus
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    last_update: Optional[datetime] = None
    percent_complete: Optional[float] = None
    progress_message: Optional[str] = None
    items_total: Optional[int] = None
    items_complete: Optional[int] = None
    error_message: Optional[str] = None

    @field_validator("run_id", mode="before")
    @classmethod
    def coerce_run_id(cls, v: Any) -> Any:
        return _uuid_to_str(v)


class RunStatusView(TaskRunRecord):
    """Run joined with task and stage names, as returned by status queries."""

    stage_name: Optional[str] = None
    stage_order: Optional[int] = None
    task_name: Optional[str] = None
    task_order: Optional[int] = None
    task_type: Optional[str] = None
    script_filename: Optional[str] = None
    log_filename: Optional[str] = None
