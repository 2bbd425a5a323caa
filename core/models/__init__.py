"""
Core Data Models Package.

Contains pure data structures without business logic.
All business logic is in the core.logic package.

Exports:
    RunStatus, SubtaskStatus, ReporterState, MetricErrorType: Enums
    StageRecord, TaskRecord, TaskRegistration: Registration models
    TaskRunRecord, SubtaskProgressRecord, RunStatusView: Run models
    ProcessMetricRecord, ReporterRegistration, RetentionRecord: Reporter models
    ContextSnapshot: Exported execution context
"""

# Enums
from .enums import (
    RunStatus,
    SubtaskStatus,
    ReporterState,
    MetricErrorType
)

# Registration models
from .stage import StageRecord
from .task import TaskRecord, TaskRegistration

# Run models
from .run import (
    TaskRunRecord,
    SubtaskProgressRecord,
    RunStatusView
)

# Reporter / retention models
from .metrics import (
    ProcessMetricRecord,
    ReporterRegistration,
    RetentionRecord
)

# Context models
from .context import ContextSnapshot

__all__ = [
    'RunStatus',
    'SubtaskStatus',
    'ReporterState',
    'MetricErrorType',
    'StageRecord',
    'TaskRecord',
    'TaskRegistration',
    'TaskRunRecord',
    'SubtaskProgressRecord',
    'RunStatusView',
    'ProcessMetricRecord',
    'ReporterRegistration',
    'RetentionRecord',
    'ContextSnapshot',
]
