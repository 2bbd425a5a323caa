"""
Pure Enumeration Types for Core Framework.

Defines valid states for task runs, subtasks and the metrics reporter.
No business logic - pure type definitions only.

Exports:
    RunStatus: Task run state enumeration
    SubtaskStatus: Subtask progress state enumeration
    ReporterState: Metrics reporter lifecycle enumeration
    MetricErrorType: Classification of failed metric samples
"""

from enum import Enum


class RunStatus(str, Enum):
    """
    Valid status values for task runs.

    State transitions:
    - NOT_STARTED -> STARTED -> RUNNING -> COMPLETED (normal flow)
    - STARTED/RUNNING -> FAILED | SKIPPED | CANCELLED
    """

    NOT_STARTED = "NOT_STARTED"
    STARTED = "STARTED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"
    CANCELLED = "CANCELLED"


class SubtaskStatus(str, Enum):
    """
    Valid status values for subtask progress rows.

    Same lifecycle as RunStatus without CANCELLED. A cancelled run
    resolves its open subtasks to SKIPPED.
    """

    NOT_STARTED = "NOT_STARTED"
    STARTED = "STARTED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class ReporterState(str, Enum):
    """Lifecycle of one metrics reporter process."""

    UNREGISTERED = "UNREGISTERED"
    RUNNING = "RUNNING"
    SHUTTING_DOWN = "SHUTTING_DOWN"
    TERMINATED = "TERMINATED"


class MetricErrorType(str, Enum):
    """
    Why a metric sample carries collection_error = true.

    PROCESS_DIED: PID no longer exists
    PID_REUSED: PID exists but belongs to a different process
    ZOMBIE_PROCESS: process exited, not yet reaped
    ACCESS_DENIED: OS refused to expose process details
    COLLECTION_TIMEOUT: sample did not finish within its timeout
    UNKNOWN: anything else
    """

    PROCESS_DIED = "PROCESS_DIED"
    PID_REUSED = "PID_REUSED"
    ZOMBIE_PROCESS = "ZOMBIE_PROCESS"
    ACCESS_DENIED = "ACCESS_DENIED"
    COLLECTION_TIMEOUT = "COLLECTION_TIMEOUT"
    UNKNOWN = "UNKNOWN"
