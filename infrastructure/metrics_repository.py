# ============================================================================
# METRICS REPOSITORY
# ============================================================================
# STATUS: Infrastructure - Process metrics and reporter registration storage
# PURPOSE: Time-series process samples and the per-host reporter row
# ============================================================================
"""
Process Metrics Repository.

Tables:
    process_metrics  - one row per (run_id, timestamp) sample
    reporter_status  - one row per host naming its reporter process

Registration is a conditional upsert: a row is taken over only when it
still names the PID the caller saw as stale, so two reporters racing for
the same host cannot both win.

Usage:
    repo = MetricsRepository(driver)
    repo.write_metric(sample)
    starts = repo.get_previous_start_times([run_id])
    repo.heartbeat(hostname, os.getpid())
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from core.models import ProcessMetricRecord, ReporterRegistration
from core.utils import ensure_utc, utc_now

from .base import BaseRepository
from .interface_repository import IStoreSession

_METRIC_COLUMNS = (
    "run_id", "timestamp", "process_id", "hostname", "is_alive",
    "process_start_time", "cpu_percent", "cpu_cores", "memory_mb",
    "memory_vms_mb", "memory_percent", "num_threads", "num_fds",
    "open_files", "io_read_bytes", "io_write_bytes", "child_count",
    "child_total_cpu_percent", "child_total_memory_mb", "collection_error",
    "error_type", "error_message", "collection_duration_ms", "reporter_version",
)


class MetricsRepository(BaseRepository):
    """Process metrics and reporter registration."""

    # ========================================================================
    # PROCESS METRICS
    # ========================================================================

    def write_metric(self, metric: ProcessMetricRecord,
                     session: Optional[IStoreSession] = None) -> bool:
        """
        Insert one sample.

        Returns:
            False when a sample with the same (run_id, timestamp) exists.
        """
        columns = ", ".join(f'"{c}"' for c in _METRIC_COLUMNS)
        placeholders = ", ".join(["%s"] * len(_METRIC_COLUMNS))
        params = [getattr(metric, c) for c in _METRIC_COLUMNS]
        with self._error_context("metric write", metric.run_id):
            with self._session(session) as s:
                written = s.execute(
                    f"""
                    INSERT INTO {{process_metrics}} ({columns})
                    VALUES ({placeholders})
                    ON CONFLICT (run_id, "timestamp") DO NOTHING
                    """,
                    params
                )
        return written > 0

    def get_metrics(self, run_id: str, limit: Optional[int] = None,
                    session: Optional[IStoreSession] = None) -> List[ProcessMetricRecord]:
        """Samples for a run, oldest first."""
        query = 'SELECT * FROM {process_metrics} WHERE run_id = %s ORDER BY "timestamp"'
        params: List[Any] = [run_id]
        if limit is not None:
            query += " LIMIT %s"
            params.append(int(limit))
        with self._session(session) as s:
            rows = s.fetch_all(query, params)
        return [ProcessMetricRecord(**r) for r in rows]

    def get_latest_metric(self, run_id: str,
                          session: Optional[IStoreSession] = None) -> Optional[ProcessMetricRecord]:
        with self._session(session) as s:
            row = s.fetch_one(
                'SELECT * FROM {process_metrics} WHERE run_id = %s '
                'ORDER BY "timestamp" DESC LIMIT 1',
                [run_id]
            )
        return ProcessMetricRecord(**row) if row else None

    def count_metrics(self, run_id: str, session: Optional[IStoreSession] = None) -> int:
        with self._session(session) as s:
            row = s.fetch_one(
                "SELECT COUNT(*) AS metric_count FROM {process_metrics} WHERE run_id = %s",
                [run_id]
            )
        return int(row["metric_count"]) if row else 0

    def get_previous_start_times(self, run_ids: Sequence[str],
                                 session: Optional[IStoreSession] = None) -> Dict[str, datetime]:
        """
        Most recent recorded process start time per run.

        Used to detect PID reuse between reporter cycles.
        """
        if not run_ids:
            return {}
        placeholders = ", ".join(["%s"] * len(run_ids))
        with self._session(session) as s:
            rows = s.fetch_all(
                f"""
                SELECT m.run_id, m.process_start_time
                FROM {{process_metrics}} m
                WHERE m.run_id IN ({placeholders})
                  AND m.process_start_time IS NOT NULL
                  AND m."timestamp" = (
                      SELECT MAX(m2."timestamp") FROM {{process_metrics}} m2
                      WHERE m2.run_id = m.run_id AND m2.process_start_time IS NOT NULL
                  )
                """,
                list(run_ids)
            )
        result: Dict[str, datetime] = {}
        for row in rows:
            start = row["process_start_time"]
            if isinstance(start, str):
                start = datetime.fromisoformat(start)
            result[str(row["run_id"])] = ensure_utc(start)
        return result

    def delete_metrics(self, run_id: str, session: Optional[IStoreSession] = None) -> int:
        with self._error_context("metric delete", run_id):
            with self._session(session) as s:
                return s.execute("DELETE FROM {process_metrics} WHERE run_id = %s", [run_id])

    # ========================================================================
    # REPORTER REGISTRATION
    # ========================================================================

    def get_reporter(self, hostname: str,
                     session: Optional[IStoreSession] = None) -> Optional[ReporterRegistration]:
        with self._session(session) as s:
            row = s.fetch_one("SELECT * FROM {reporter_status} WHERE hostname = %s", [hostname])
        return ReporterRegistration(**row) if row else None

    def list_reporters(self, session: Optional[IStoreSession] = None) -> List[ReporterRegistration]:
        with self._session(session) as s:
            rows = s.fetch_all("SELECT * FROM {reporter_status} ORDER BY hostname")
        return [ReporterRegistration(**r) for r in rows]

    def claim_reporter(self, hostname: str, process_id: int, version: str,
                       stale_process_id: Optional[int],
                       session: Optional[IStoreSession] = None) -> Optional[ReporterRegistration]:
        """
        Insert the host row, or take it over from stale_process_id.

        Returns:
            The new registration, or None when another process holds the
            row (the row no longer names stale_process_id).
        """
        now = utc_now()
        with self._error_context("reporter register", hostname):
            with self._session(session) as s:
                row = s.fetch_one(
                    """
                    INSERT INTO {reporter_status} AS rs
                        (hostname, process_id, started_at, last_heartbeat, version, shutdown_requested)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    ON CONFLICT (hostname) DO UPDATE SET
                        process_id = EXCLUDED.process_id,
                        started_at = EXCLUDED.started_at,
                        last_heartbeat = EXCLUDED.last_heartbeat,
                        version = EXCLUDED.version,
                        shutdown_requested = EXCLUDED.shutdown_requested
                    WHERE rs.process_id = %s
                    RETURNING *
                    """,
                    [hostname, process_id, now, now, version, False, stale_process_id]
                )
        return ReporterRegistration(**row) if row else None

    def heartbeat(self, hostname: str, process_id: int,
                  session: Optional[IStoreSession] = None) -> Optional[ReporterRegistration]:
        """
        Refresh last_heartbeat for this reporter.

        Returns:
            Updated row, or None when the row now names another process.
        """
        with self._session(session) as s:
            row = s.fetch_one(
                """
                UPDATE {reporter_status} SET last_heartbeat = %s
                WHERE hostname = %s AND process_id = %s
                RETURNING *
                """,
                [utc_now(), hostname, process_id]
            )
        return ReporterRegistration(**row) if row else None

    def request_shutdown(self, hostname: str, session: Optional[IStoreSession] = None) -> bool:
        """Flag the host's reporter to stop at its next cycle."""
        with self._session(session) as s:
            return s.execute(
                "UPDATE {reporter_status} SET shutdown_requested = %s WHERE hostname = %s",
                [True, hostname]
            ) > 0

    def deregister(self, hostname: str, process_id: int,
                   session: Optional[IStoreSession] = None) -> bool:
        """Remove the host row if it still names process_id."""
        with self._session(session) as s:
            return s.execute(
                "DELETE FROM {reporter_status} WHERE hostname = %s AND process_id = %s",
                [hostname, process_id]
            ) > 0
