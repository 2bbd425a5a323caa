"""
Process Metrics, Reporter Registration and Retention Models.

Exports:
    ProcessMetricRecord: One immutable process health sample
    ReporterRegistration: The per-host reporter row
    RetentionRecord: Metrics retention bookkeeping for one run
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID
from pydantic import Field, field_validator

from .base import TrackerRecord
from .enums import MetricErrorType


class ProcessMetricRecord(TrackerRecord):
    """
    Time-series sample for a run's OS process.

    Either a full sample (collection_error False) or an error sample
    carrying error_type. (run_id, timestamp) is unique.
    """

    metric_id: Optional[int] = None
    run_id: str
    timestamp: datetime
    process_id: Optional[int] = None
    hostname: Optional[str] = None
    is_alive: bool = False
    process_start_time: Optional[datetime] = None

    cpu_percent: Optional[float] = None
    cpu_cores: Optional[int] = None
    memory_mb: Optional[float] = None
    memory_vms_mb: Optional[float] = None
    memory_percent: Optional[float] = None
    num_threads: Optional[int] = None
    num_fds: Optional[int] = None
    open_files: Optional[int] = None
    io_read_bytes: Optional[int] = None
    io_write_bytes: Optional[int] = None

    child_count: Optional[int] = None
    child_total_cpu_percent: Optional[float] = None
    child_total_memory_mb: Optional[float] = None

    collection_error: bool = False
    error_type: Optional[MetricErrorType] = None
    error_message: Optional[str] = None
    collection_duration_ms: Optional[float] = None
    reporter_version: Optional[str] = None

    @field_validator("run_id", mode="before")
    @classmethod
    def coerce_run_id(cls, v: Any) -> Any:
        return str(v) if isinstance(v, UUID) else v


class ReporterRegistration(TrackerRecord):
    """One row per host naming its metrics reporter process."""

    hostname: str
    process_id: int
    started_at: Optional[datetime] = None
    last_heartbeat: Optional[datetime] = None
    version: Optional[str] = None
    shutdown_requested: bool = False


class RetentionRecord(TrackerRecord):
    """When a run's metrics become deletable, and whether they were."""

    run_id: str
    task_completed_at: Optional[datetime] = None
    metrics_delete_after: Optional[datetime] = None
    metrics_deleted: bool = False
    metrics_count: int = Field(default=0, ge=0)
    deleted_at: Optional[datetime] = None

    @field_validator("run_id", mode="before")
    @classmethod
    def coerce_run_id(cls, v: Any) -> Any:
        return str(v) if isinstance(v, UUID) else v
