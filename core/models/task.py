"""
Task Database Models - Persistence Boundary.

A task is a registered unit of work inside one stage.

Exports:
    TaskRecord: Task row (optionally joined with its stage)
    TaskRegistration: Input model for task upserts
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .base import TrackerRecord


class TaskRecord(TrackerRecord):
    """
    Database representation of a task.

    stage_name/stage_order are populated when the row was read through
    the stage join used by lookups.
    """

    task_id: int
    stage_id: int
    task_name: str
    task_type: Optional[str] = None
    task_order: Optional[int] = None
    description: Optional[str] = None
    script_path: Optional[str] = None
    script_filename: Optional[str] = None
    log_path: Optional[str] = None
    log_filename: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    stage_name: Optional[str] = None
    stage_order: Optional[int] = None

    @property
    def label(self) -> str:
        """Human readable 'stage / task' label."""
        if self.stage_name:
            return f"{self.stage_name} / {self.task_name}"
        return self.task_name


class TaskRegistration(BaseModel):
    """
    Input for registering (upserting) a task.

    Fields left as None keep whatever the store already holds.
    """

    model_config = ConfigDict(extra="forbid")

    stage_name: str = Field(..., min_length=1, description="Owning stage; created if missing")
    task_name: str = Field(..., min_length=1, description="Unique within the stage")
    task_type: Optional[str] = Field(default=None, description="R, python, sh ... (auto-detected from script)")
    stage_order: Optional[int] = Field(default=None, ge=0)
    task_order: Optional[int] = Field(default=None, ge=0)
    description: Optional[str] = None
    script_path: Optional[str] = None
    script_filename: Optional[str] = None
    log_path: Optional[str] = None
    log_filename: Optional[str] = None

    @field_validator("stage_name", "task_name")
    @classmethod
    def strip_names(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v
