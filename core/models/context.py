"""
Execution Context Snapshot.

Immutable, serialisable copy of an ExecutionContext used to hand the
active run and subtask to worker threads or processes.

Exports:
    ContextSnapshot: Frozen export of run_id + last started subtask number
"""

from datetime import datetime, timezone
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class ContextSnapshot(BaseModel):
    """
    Frozen export of an execution context.

    subtask_number is the last subtask started on the exporting side.
    Workers built from a snapshot target that subtask until they receive
    a newer snapshot.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    run_id: Optional[str] = Field(default=None, description="Active run at export time")
    subtask_number: Optional[int] = Field(default=None, ge=1, description="Last started subtask")
    exported_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, payload: str) -> "ContextSnapshot":
        return cls.model_validate_json(payload)
