"""
Tracker Behaviour Configuration.

Settings for the three runtime loops that are not about store connectivity:
the atomic counter retry policy, the metrics reporter and the retention
sweeper.

Exports:
    CounterConfig: Atomic increment retry settings
    ReporterConfig: Metrics reporter loop settings
    RetentionConfig: Metrics retention settings
"""

import os
from pydantic import BaseModel, Field, model_validator

from exceptions import ConfigurationError
from .defaults import CounterDefaults, ReporterDefaults, RetentionDefaults


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


class CounterConfig(BaseModel):
    """Retry policy for the atomic subtask counter."""

    max_attempts: int = Field(default=CounterDefaults.MAX_ATTEMPTS, ge=1)
    base_delay_seconds: float = Field(default=CounterDefaults.BASE_DELAY_SECONDS, ge=0)
    max_delay_seconds: float = Field(default=CounterDefaults.MAX_DELAY_SECONDS, ge=0)
    jitter_seconds: float = Field(default=CounterDefaults.JITTER_SECONDS, ge=0)

    @classmethod
    def from_environment(cls) -> "CounterConfig":
        return cls(
            max_attempts=_env_int("COUNTER_MAX_ATTEMPTS", CounterDefaults.MAX_ATTEMPTS),
            base_delay_seconds=_env_float("COUNTER_BASE_DELAY", CounterDefaults.BASE_DELAY_SECONDS),
            max_delay_seconds=_env_float("COUNTER_MAX_DELAY", CounterDefaults.MAX_DELAY_SECONDS),
            jitter_seconds=_env_float("COUNTER_JITTER", CounterDefaults.JITTER_SECONDS),
        )


class ReporterConfig(BaseModel):
    """
    Metrics reporter loop settings.

    sample_timeout_seconds bounds a single PID sample and must be shorter
    than the cycle interval.
    """

    interval_seconds: float = Field(default=ReporterDefaults.INTERVAL_SECONDS, gt=0)
    sample_timeout_seconds: float = Field(default=ReporterDefaults.SAMPLE_TIMEOUT_SECONDS, gt=0)
    cpu_sample_interval_seconds: float = Field(default=ReporterDefaults.CPU_SAMPLE_INTERVAL_SECONDS, ge=0)
    include_children: bool = Field(default=ReporterDefaults.INCLUDE_CHILDREN)
    pid_reuse_tolerance_seconds: float = Field(default=ReporterDefaults.PID_REUSE_TOLERANCE_SECONDS, ge=0)
    version: str = Field(default=ReporterDefaults.VERSION)

    @model_validator(mode="after")
    def check_timeout_below_interval(self) -> "ReporterConfig":
        if self.sample_timeout_seconds >= self.interval_seconds:
            raise ValueError(
                f"sample_timeout_seconds ({self.sample_timeout_seconds}) must be below "
                f"interval_seconds ({self.interval_seconds})"
            )
        return self

    @classmethod
    def from_environment(cls) -> "ReporterConfig":
        try:
            return cls(
                interval_seconds=_env_float("REPORTER_INTERVAL_SECONDS", ReporterDefaults.INTERVAL_SECONDS),
                sample_timeout_seconds=_env_float(
                    "REPORTER_SAMPLE_TIMEOUT_SECONDS", ReporterDefaults.SAMPLE_TIMEOUT_SECONDS),
                cpu_sample_interval_seconds=_env_float(
                    "REPORTER_CPU_SAMPLE_INTERVAL", ReporterDefaults.CPU_SAMPLE_INTERVAL_SECONDS),
                include_children=os.environ.get(
                    "REPORTER_INCLUDE_CHILDREN", str(ReporterDefaults.INCLUDE_CHILDREN)).lower() == "true",
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid reporter configuration: {e}") from e


class RetentionConfig(BaseModel):
    """Metrics retention window."""

    retention_days: int = Field(default=RetentionDefaults.RETENTION_DAYS, ge=0)

    @classmethod
    def from_environment(cls) -> "RetentionConfig":
        return cls(
            retention_days=_env_int("METRICS_RETENTION_DAYS", RetentionDefaults.RETENTION_DAYS),
        )
