# ============================================================================
# PROCESS METRICS REPORTER
# ============================================================================
# STATUS: Service - One long-lived reporter per host
# PURPOSE: Periodically sample every active run's process on this host
# EXPORTS: ReporterService, ReporterCycleResult
# ============================================================================
"""
Process Metrics Reporter Service.

Lifecycle (ReporterState):
    UNREGISTERED -> RUNNING -> SHUTTING_DOWN -> TERMINATED

Registration:
    At most one live reporter per host. register() refuses when the host
    row names another live process, and otherwise takes the row over with
    a conditional upsert that only succeeds while the row still names the
    stale PID it saw. Two reporters starting together cannot both win.

Cycle:
    1. stop when shutdown_requested is set or the row names another process
    2. active runs on this host (STARTED/RUNNING with a process id)
    3. previous process start times (PID reuse detection)
    4. one sample per run, each with its own timeout, one metric row each
    5. heartbeat; a heartbeat matching no row means we were replaced
    6. sleep the rest of the interval (a stop request wakes it early)

A single run's sampling or write failure never aborts the cycle, and a
store failure for the whole cycle is logged and retried next interval.
"""

import os
import socket
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import psutil

from config import ReporterConfig, get_config
from core.models import ReporterRegistration, ReporterState
from core.utils import ensure_utc, utc_now
from exceptions import DatabaseError, ReporterAlreadyRunningError
from infrastructure.interface_repository import IStoreDriver
from infrastructure.metrics_repository import MetricsRepository
from infrastructure.tracking_repository import TrackingRepository
from util_logger import LoggerFactory, ComponentType

from .process_sampler import ProcessSampler

logger = LoggerFactory.create_logger(ComponentType.SERVICE, "ReporterService")


# ============================================================================
# RESULT MODELS
# ============================================================================

@dataclass
class ReporterCycleResult:
    """Outcome of one reporter cycle."""

    keep_running: bool = True
    runs_found: int = 0
    metrics_written: int = 0
    sample_errors: int = 0
    write_errors: List[Dict[str, Any]] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    stop_reason: Optional[str] = None

    def complete(self, keep_running: bool = True, stop_reason: Optional[str] = None):
        self.completed_at = datetime.now(timezone.utc)
        self.keep_running = keep_running
        self.stop_reason = stop_reason

    @property
    def duration_ms(self) -> int:
        if self.completed_at:
            return int((self.completed_at - self.started_at).total_seconds() * 1000)
        return 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "keep_running": self.keep_running,
            "runs_found": self.runs_found,
            "metrics_written": self.metrics_written,
            "sample_errors": self.sample_errors,
            "write_errors": self.write_errors,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "stop_reason": self.stop_reason,
        }


# ============================================================================
# REPORTER SERVICE
# ============================================================================

class ReporterService:
    """
    Per-host process metrics reporter.

    Usage:
        reporter = ReporterService(driver)
        reporter.register()
        reporter.run()              # until stop() or a shutdown request
    """

    def __init__(
        self,
        driver: IStoreDriver,
        config: Optional[ReporterConfig] = None,
        hostname: Optional[str] = None,
        process_id: Optional[int] = None,
        sampler: Optional[ProcessSampler] = None,
        metrics_repo: Optional[MetricsRepository] = None,
        tracking_repo: Optional[TrackingRepository] = None,
        stop_event: Optional[threading.Event] = None
    ):
        self.driver = driver
        self.config = config or get_config().reporter
        self.hostname = hostname or socket.gethostname()
        self.process_id = process_id if process_id is not None else os.getpid()
        self.sampler = sampler or ProcessSampler(self.config, hostname=self.hostname)
        self.metrics = metrics_repo or MetricsRepository(driver)
        self.tracking = tracking_repo or TrackingRepository(driver)
        self.stop_event = stop_event or threading.Event()
        self.state = ReporterState.UNREGISTERED
        self.cycles = 0

    # ========================================================================
    # REGISTRATION
    # ========================================================================

    def _stale_after(self) -> timedelta:
        """A registration whose heartbeat is older than this is treated as dead."""
        return timedelta(seconds=max(self.config.interval_seconds * 3, 60.0))

    def is_registration_live(self, registration: ReporterRegistration) -> bool:
        """True when the registered PID exists here and its heartbeat is recent."""
        if not psutil.pid_exists(registration.process_id):
            return False
        if registration.last_heartbeat is None:
            return True
        age = utc_now() - ensure_utc(registration.last_heartbeat)
        return age <= self._stale_after()

    def register(self) -> ReporterRegistration:
        """
        Claim this host's reporter row.

        Raises:
            ReporterAlreadyRunningError: Another live reporter owns the row,
                or won the race for a stale one
        """
        existing = self.metrics.get_reporter(self.hostname)
        stale_pid: Optional[int] = None
        if existing is not None:
            if existing.process_id != self.process_id and self.is_registration_live(existing):
                raise ReporterAlreadyRunningError(
                    f"Reporter already running on {self.hostname} (pid {existing.process_id})",
                    hostname=self.hostname,
                    process_id=existing.process_id
                )
            stale_pid = existing.process_id
            if stale_pid != self.process_id:
                logger.warning(
                    f"⚠️ Taking over stale reporter registration on {self.hostname} "
                    f"(pid {stale_pid}, last heartbeat {existing.last_heartbeat})"
                )

        registration = self.metrics.claim_reporter(
            self.hostname, self.process_id, self.config.version, stale_pid
        )
        if registration is None:
            winner = self.metrics.get_reporter(self.hostname)
            raise ReporterAlreadyRunningError(
                f"Another reporter registered on {self.hostname} first",
                hostname=self.hostname,
                process_id=winner.process_id if winner else None
            )

        self.state = ReporterState.RUNNING
        logger.info(f"📡 Reporter registered on {self.hostname} (pid {self.process_id}, v{self.config.version})")
        return registration

    def deregister(self) -> bool:
        """Remove this reporter's row (only if it still names this process)."""
        removed = self.metrics.deregister(self.hostname, self.process_id)
        self.state = ReporterState.TERMINATED
        logger.info(f"📴 Reporter on {self.hostname} deregistered (row removed: {removed})")
        return removed

    def request_shutdown(self, hostname: Optional[str] = None) -> bool:
        """Ask the reporter on hostname (default: this host) to stop at its next cycle."""
        target = hostname or self.hostname
        flagged = self.metrics.request_shutdown(target)
        logger.info(f"🛑 Shutdown requested for reporter on {target}: {flagged}")
        return flagged

    def get_reporter_status(self, hostname: Optional[str] = None) -> Dict[str, Any]:
        """Registration row for a host plus liveness and heartbeat age."""
        target = hostname or self.hostname
        registration = self.metrics.get_reporter(target)
        if registration is None:
            return {"hostname": target, "registered": False, "is_alive": False}

        age = None
        if registration.last_heartbeat is not None:
            age = round((utc_now() - ensure_utc(registration.last_heartbeat)).total_seconds(), 1)
        status = registration.model_dump(mode="json")
        status.update({
            "registered": True,
            "heartbeat_age_seconds": age,
            # PID liveness is only meaningful for this host
            "is_alive": self.is_registration_live(registration) if target == self.hostname else None,
        })
        return status

    def stop(self) -> None:
        """Ask run() to finish after the current cycle."""
        self.stop_event.set()

    # ========================================================================
    # MAIN LOOP
    # ========================================================================

    def run(self, max_cycles: Optional[int] = None) -> int:
        """
        Report until stopped, shut down, replaced or max_cycles reached.

        Registers first when not yet registered. Always deregisters on exit.

        Returns:
            Number of cycles run.
        """
        if self.state != ReporterState.RUNNING:
            self.register()

        logger.info(
            f"▶️ Reporter loop started: interval={self.config.interval_seconds}s, "
            f"sample_timeout={self.config.sample_timeout_seconds}s"
        )
        try:
            while not self.stop_event.is_set():
                started = time.monotonic()
                try:
                    result = self.run_cycle()
                except DatabaseError as e:
                    logger.error(f"❌ Reporter cycle failed: {type(e).__name__}: {e}")
                    result = None

                self.cycles += 1
                if result is not None and not result.keep_running:
                    logger.info(f"⏹️ Reporter stopping: {result.stop_reason}")
                    break
                if max_cycles is not None and self.cycles >= max_cycles:
                    break

                remaining = self.config.interval_seconds - (time.monotonic() - started)
                if remaining > 0:
                    self.stop_event.wait(remaining)
        finally:
            self.state = ReporterState.SHUTTING_DOWN
            self.sampler.close()
            try:
                self.deregister()
            except DatabaseError as e:
                self.state = ReporterState.TERMINATED
                logger.error(f"❌ Reporter deregistration failed: {e}")

        logger.info(f"🏁 Reporter on {self.hostname} terminated after {self.cycles} cycle(s)")
        return self.cycles

    def run_cycle(self) -> ReporterCycleResult:
        """One reporting cycle. Store failures of the cycle itself propagate."""
        result = ReporterCycleResult()

        registration = self.metrics.get_reporter(self.hostname)
        if registration is None or registration.process_id != self.process_id:
            result.complete(keep_running=False, stop_reason="registration replaced")
            return result
        if registration.shutdown_requested:
            result.complete(keep_running=False, stop_reason="shutdown requested")
            return result

        runs = self.tracking.get_active_runs(hostname=self.hostname)
        result.runs_found = len(runs)
        previous = self.metrics.get_previous_start_times([r.run_id for r in runs])

        for run in runs:
            metric = self.sampler.sample_with_timeout(
                run.run_id,
                run.process_id,
                previous_start_time=previous.get(run.run_id),
                run_start_time=run.start_time,
            )
            if metric.collection_error:
                result.sample_errors += 1
                logger.warning(
                    f"⚠️ Run {run.run_id} (pid {run.process_id}): "
                    f"{metric.error_type.value if metric.error_type else 'UNKNOWN'} - {metric.error_message}"
                )
            try:
                if self.metrics.write_metric(metric):
                    result.metrics_written += 1
            except DatabaseError as e:
                result.write_errors.append({"run_id": run.run_id, "error": str(e)})

        if self.metrics.heartbeat(self.hostname, self.process_id) is None:
            result.complete(keep_running=False, stop_reason="registration replaced")
            return result

        result.complete()
        logger.debug(
            f"📊 Cycle: {result.runs_found} runs, {result.metrics_written} written, "
            f"{result.sample_errors} sample errors"
        )
        return result
