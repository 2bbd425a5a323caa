"""
Services - Registration, Metrics Reporter and Retention.

Every service is listed here explicitly. If you don't see it below, it is
not part of the package surface.

    RegistrationService  stage/task upserts with script auto-detection
    ProcessSampler       psutil sample of one process
    ReporterService      per-host metrics reporter loop
    RetentionService     metrics retention sweeper
"""

from .registration_service import RegistrationService, detect_task_type, derive_log_filename
from .process_sampler import ProcessSampler
from .reporter_service import ReporterService, ReporterCycleResult
from .retention_service import RetentionService, RetentionSweepResult

__all__ = [
    'RegistrationService',
    'detect_task_type',
    'derive_log_filename',
    'ProcessSampler',
    'ReporterService',
    'ReporterCycleResult',
    'RetentionService',
    'RetentionSweepResult',
]
