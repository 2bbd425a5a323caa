"""
Stage Model.

A stage is a named pipeline phase. Created by registration, rarely
mutated, never auto-deleted.

Exports:
    StageRecord: Stage row
"""

from datetime import datetime
from typing import Optional

from .base import TrackerRecord


class StageRecord(TrackerRecord):
    """Database representation of a stage."""

    stage_id: int
    stage_name: str
    stage_order: Optional[int] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
