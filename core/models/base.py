"""
Shared base for store-backed records.

Rows come back from two drivers with slightly different native types
(PostgreSQL hands out UUID objects and aware datetimes, SQLite hands out
text and 0/1 integers). TrackerRecord normalises them at the boundary.

Exports:
    TrackerRecord: Base model for rows read from the store
"""

from datetime import datetime
from typing import Any
from pydantic import BaseModel, ConfigDict, field_validator

from core.utils import ensure_utc


class TrackerRecord(BaseModel):
    """Base model: every datetime field is aware UTC after validation."""

    model_config = ConfigDict(extra="ignore")

    @field_validator("*", mode="after")
    @classmethod
    def normalise_datetimes(cls, v: Any) -> Any:
        if isinstance(v, datetime):
            return ensure_utc(v)
        return v
