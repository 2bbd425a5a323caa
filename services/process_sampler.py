# ============================================================================
# PROCESS SAMPLER
# ============================================================================
# STATUS: Service - psutil health sample for one run's process
# PURPOSE: Turn a PID into a ProcessMetricRecord, never raising
# EXPORTS: ProcessSampler
# ============================================================================
"""
Process Sampler.

One call, one ProcessMetricRecord. Failures are data: a dead, reused,
zombie or unreadable PID yields a record with collection_error set and
error_type classified, so the reporter can write it like any sample.

PID reuse:
    A PID is considered reused when its process start time differs from
    the one recorded in the previous cycle by more than the tolerance, or
    when the process started after the run itself did.
"""

import socket
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import psutil

from config import ReporterConfig
from core.models import MetricErrorType, ProcessMetricRecord
from core.utils import ensure_utc, utc_now
from exceptions import CollectionError, ProcessDiedError
from util_logger import LoggerFactory, ComponentType

logger = LoggerFactory.create_logger(ComponentType.SERVICE, "ProcessSampler")

_MB = 1024.0 * 1024.0


def _optional(fn):
    """Value of fn(), or None when the platform or permissions hide it."""
    try:
        return fn()
    except (psutil.AccessDenied, NotImplementedError, AttributeError):
        return None


class ProcessSampler:
    """
    psutil-based sampler.

    Args:
        config: Reporter settings (cpu interval, timeout, children, tolerance)
        hostname: Recorded on every sample (defaults to this host)
    """

    def __init__(self, config: Optional[ReporterConfig] = None, hostname: Optional[str] = None):
        self.config = config or ReporterConfig()
        self.hostname = hostname or socket.gethostname()
        self._executor: Optional[ThreadPoolExecutor] = None

    def close(self) -> None:
        if self._executor is not None:
            # A hung sample thread cannot be interrupted; do not wait for it
            self._executor.shutdown(wait=False)
            self._executor = None

    # ------------------------------------------------------------------

    def sample(self, run_id: str, pid: Optional[int],
               previous_start_time: Optional[datetime] = None,
               run_start_time: Optional[datetime] = None) -> ProcessMetricRecord:
        """
        Sample one process. Never raises.

        Args:
            run_id: Run the sample is recorded against
            pid: OS process id of the run
            previous_start_time: Process start time seen in the previous cycle
            run_start_time: When the run was started
        """
        started = time.monotonic()
        timestamp = utc_now()
        try:
            if pid is None:
                raise ProcessDiedError("Run has no recorded process id")
            values = self._collect(int(pid), previous_start_time, run_start_time)
        except CollectionError as e:
            return self._error_record(run_id, pid, timestamp, started, e.error_type, str(e))
        except Exception as e:
            logger.error(f"❌ Unexpected sampling failure for pid {pid}: {type(e).__name__}: {e}")
            return self._error_record(run_id, pid, timestamp, started,
                                      MetricErrorType.UNKNOWN.value, f"{type(e).__name__}: {e}")

        return ProcessMetricRecord(
            run_id=run_id,
            timestamp=timestamp,
            process_id=pid,
            hostname=self.hostname,
            is_alive=True,
            collection_error=False,
            collection_duration_ms=round((time.monotonic() - started) * 1000.0, 3),
            reporter_version=self.config.version,
            **values
        )

    def sample_with_timeout(self, run_id: str, pid: Optional[int],
                            previous_start_time: Optional[datetime] = None,
                            run_start_time: Optional[datetime] = None,
                            timeout: Optional[float] = None) -> ProcessMetricRecord:
        """sample() bounded by timeout (REPORTER_SAMPLE_TIMEOUT_SECONDS by default)."""
        timeout = timeout if timeout is not None else self.config.sample_timeout_seconds
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="sampler")
        timestamp = utc_now()
        started = time.monotonic()
        future = self._executor.submit(self.sample, run_id, pid, previous_start_time, run_start_time)
        try:
            return future.result(timeout=timeout)
        except FuturesTimeoutError:
            future.cancel()
            # The hung psutil call keeps its thread; later samples get a fresh pool
            self.close()
            logger.warning(f"⏱️ Sampling pid {pid} for run {run_id} exceeded {timeout}s; sampler pool replaced")
            return self._error_record(run_id, pid, timestamp, started,
                                      MetricErrorType.COLLECTION_TIMEOUT.value,
                                      f"Sample did not finish within {timeout}s")

    # ------------------------------------------------------------------

    def _collect(self, pid: int, previous_start_time: Optional[datetime],
                 run_start_time: Optional[datetime]) -> Dict[str, Any]:
        try:
            proc = psutil.Process(pid)
            start_time = datetime.fromtimestamp(proc.create_time(), tz=timezone.utc)
            self._check_pid_reuse(pid, start_time, previous_start_time, run_start_time)

            if proc.status() == psutil.STATUS_ZOMBIE:
                raise CollectionError(f"Process {pid} is a zombie",
                                      error_type=MetricErrorType.ZOMBIE_PROCESS.value)

            # Blocking interval sample; must run outside oneshot()
            cpu_percent = proc.cpu_percent(interval=self.config.cpu_sample_interval_seconds or None)

            with proc.oneshot():
                mem = proc.memory_info()
                io = _optional(lambda: proc.io_counters())
                open_files = _optional(lambda: proc.open_files())
                values: Dict[str, Any] = {
                    "process_start_time": start_time,
                    "cpu_percent": round(cpu_percent, 2),
                    "cpu_cores": psutil.cpu_count(logical=True),
                    "memory_mb": round(mem.rss / _MB, 3),
                    "memory_vms_mb": round(mem.vms / _MB, 3),
                    "memory_percent": round(proc.memory_percent(), 3),
                    "num_threads": proc.num_threads(),
                    "num_fds": _optional(lambda: proc.num_fds()),
                    "open_files": len(open_files) if open_files is not None else None,
                    "io_read_bytes": io.read_bytes if io is not None else None,
                    "io_write_bytes": io.write_bytes if io is not None else None,
                }

            if self.config.include_children:
                values.update(self._children_totals(proc))
            return values

        except psutil.ZombieProcess:
            raise CollectionError(f"Process {pid} is a zombie",
                                  error_type=MetricErrorType.ZOMBIE_PROCESS.value)
        except psutil.NoSuchProcess:
            raise ProcessDiedError(f"Process {pid} no longer exists")
        except psutil.AccessDenied:
            raise CollectionError(f"Access denied reading process {pid}",
                                  error_type=MetricErrorType.ACCESS_DENIED.value)

    def _check_pid_reuse(self, pid: int, start_time: datetime,
                         previous_start_time: Optional[datetime],
                         run_start_time: Optional[datetime]) -> None:
        tolerance = timedelta(seconds=self.config.pid_reuse_tolerance_seconds)
        if previous_start_time is not None:
            previous = ensure_utc(previous_start_time)
            if abs(start_time - previous) > tolerance:
                raise CollectionError(
                    f"PID {pid} start time changed from {previous.isoformat()} to "
                    f"{start_time.isoformat()}",
                    error_type=MetricErrorType.PID_REUSED.value
                )
        if run_start_time is not None:
            run_start = ensure_utc(run_start_time)
            if start_time > run_start + tolerance:
                raise CollectionError(
                    f"PID {pid} started at {start_time.isoformat()}, after its run "
                    f"({run_start.isoformat()})",
                    error_type=MetricErrorType.PID_REUSED.value
                )

    @staticmethod
    def _children_totals(proc: "psutil.Process") -> Dict[str, Any]:
        count = 0
        cpu = 0.0
        rss = 0.0
        for child in proc.children(recursive=True):
            try:
                cpu += child.cpu_percent(interval=None)
                rss += child.memory_info().rss
                count += 1
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
        return {
            "child_count": count,
            "child_total_cpu_percent": round(cpu, 2),
            "child_total_memory_mb": round(rss / _MB, 3),
        }

    def _error_record(self, run_id: str, pid: Optional[int], timestamp: datetime,
                      started: float, error_type: str, message: str) -> ProcessMetricRecord:
        try:
            error_type = MetricErrorType(error_type)
        except ValueError:
            error_type = MetricErrorType.UNKNOWN
        return ProcessMetricRecord(
            run_id=run_id,
            timestamp=timestamp,
            process_id=pid,
            hostname=self.hostname,
            is_alive=error_type in (MetricErrorType.ACCESS_DENIED, MetricErrorType.COLLECTION_TIMEOUT),
            collection_error=True,
            error_type=error_type,
            error_message=message,
            collection_duration_ms=round((time.monotonic() - started) * 1000.0, 3),
            reporter_version=self.config.version,
        )
