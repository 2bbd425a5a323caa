"""
Core utility functions.

Time and identifier helpers shared by models, repositories and services.
Every timestamp the tracker writes is produced here, timezone-aware in UTC.

Exports:
    utc_now: Current time as an aware UTC datetime
    ensure_utc: Normalise a datetime (naive is treated as UTC)
    generate_run_id: New UUID4 string for a task run
    script_basename: Strip directories from a script path
    validate_run_id: Reject run identifiers that are not UUIDs
"""

import os
import uuid
from datetime import datetime, timezone
from typing import Optional

from exceptions import InvalidArgumentError


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalise a datetime to aware UTC.

    Naive values are assumed to already be UTC, which is how the SQLite
    driver and PostgreSQL TIMESTAMPTZ both hand them back.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def generate_run_id() -> str:
    """New run identifier (UUID4, canonical string form)."""
    return str(uuid.uuid4())


def script_basename(path: str) -> str:
    """Basename of a script path, accepting both / and \\ separators."""
    return os.path.basename(path.replace("\\", "/")).strip()


def validate_run_id(run_id) -> str:
    """
    Canonical string form of a run identifier.

    Raises:
        InvalidArgumentError: run_id is not a UUID
    """
    if isinstance(run_id, uuid.UUID):
        return str(run_id)
    try:
        return str(uuid.UUID(str(run_id).strip()))
    except (ValueError, AttributeError, TypeError):
        raise InvalidArgumentError(f"Invalid run_id (expected UUID): {run_id!r}")
