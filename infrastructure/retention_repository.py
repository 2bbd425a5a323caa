# ============================================================================
# RETENTION REPOSITORY
# ============================================================================
# STATUS: Infrastructure - Process metrics retention bookkeeping
# PURPOSE: Schedule, select and execute metrics deletion for finished runs
# ============================================================================
"""
Retention Repository.

A retention record is written when a run reaches a terminal state and is
updated once, by the sweeper, when the run's metrics are deleted.

select_eligible() is the single selection used by both dry-run and real
sweeps, so a dry run reports exactly what a real run would delete.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from core.logic.transitions import get_run_terminal_states
from core.models import RetentionRecord
from core.utils import ensure_utc, utc_now

from .base import BaseRepository
from .interface_repository import IStoreSession


class RetentionRepository(BaseRepository):
    """process_metrics_retention reads and writes."""

    def schedule(self, run_id: str, completed_at: datetime, retention_days: int,
                 session: Optional[IStoreSession] = None) -> None:
        """Record when a finished run's metrics become deletable. Idempotent."""
        completed_at = ensure_utc(completed_at)
        delete_after = completed_at + timedelta(days=retention_days)
        with self._error_context("retention schedule", run_id):
            with self._session(session) as s:
                s.execute(
                    """
                    INSERT INTO {process_metrics_retention}
                        (run_id, task_completed_at, metrics_delete_after, metrics_deleted, metrics_count)
                    VALUES (%s, %s, %s, %s, %s)
                    ON CONFLICT (run_id) DO NOTHING
                    """,
                    [run_id, completed_at, delete_after, False, 0]
                )

    def get_record(self, run_id: str,
                   session: Optional[IStoreSession] = None) -> Optional[RetentionRecord]:
        with self._session(session) as s:
            row = s.fetch_one(
                "SELECT * FROM {process_metrics_retention} WHERE run_id = %s",
                [run_id]
            )
        return RetentionRecord(**row) if row else None

    def select_eligible(self, cutoff: datetime,
                        session: Optional[IStoreSession] = None) -> List[Dict[str, Any]]:
        """
        Terminal runs that ended before cutoff and whose metrics were not yet deleted.

        Returns:
            Dicts with run_id, task_name, completed_at, metrics_count; oldest first.
        """
        terminal = [s.value for s in get_run_terminal_states()]
        placeholders = ", ".join(["%s"] * len(terminal))
        with self._session(session) as s:
            rows = s.fetch_all(
                f"""
                SELECT tr.run_id, t.task_name, tr.end_time AS completed_at,
                       COUNT(pm.metric_id) AS metrics_count
                FROM {{task_runs}} tr
                JOIN {{tasks}} t ON tr.task_id = t.task_id
                LEFT JOIN {{process_metrics}} pm ON pm.run_id = tr.run_id
                LEFT JOIN {{process_metrics_retention}} pr ON pr.run_id = tr.run_id
                WHERE tr.status IN ({placeholders})
                  AND tr.end_time IS NOT NULL
                  AND tr.end_time < %s
                  AND (pr.metrics_deleted IS NULL OR pr.metrics_deleted = %s)
                GROUP BY tr.run_id, t.task_name, tr.end_time
                ORDER BY tr.end_time
                """,
                terminal + [ensure_utc(cutoff), False]
            )

        eligible = []
        for row in rows:
            completed_at = row["completed_at"]
            if isinstance(completed_at, str):
                completed_at = datetime.fromisoformat(completed_at)
            eligible.append({
                "run_id": str(row["run_id"]),
                "task_name": row["task_name"],
                "completed_at": ensure_utc(completed_at),
                "metrics_count": int(row["metrics_count"] or 0),
            })
        return eligible

    def mark_deleted(self, run_id: str, completed_at: datetime, retention_days: int,
                     metrics_count: int,
                     session: Optional[IStoreSession] = None) -> RetentionRecord:
        """Upsert the retention record as executed."""
        completed_at = ensure_utc(completed_at)
        now = utc_now()
        with self._error_context("retention mark deleted", run_id):
            with self._session(session) as s:
                row = s.fetch_one(
                    """
                    INSERT INTO {process_metrics_retention}
                        (run_id, task_completed_at, metrics_delete_after,
                         metrics_deleted, metrics_count, deleted_at)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    ON CONFLICT (run_id) DO UPDATE SET
                        metrics_deleted = EXCLUDED.metrics_deleted,
                        metrics_count = EXCLUDED.metrics_count,
                        deleted_at = EXCLUDED.deleted_at
                    RETURNING *
                    """,
                    [run_id, completed_at, completed_at + timedelta(days=retention_days),
                     True, metrics_count, now]
                )
        return RetentionRecord(**row)
