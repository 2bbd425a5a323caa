# ============================================================================
# TRACKING REPOSITORY
# ============================================================================
# STATUS: Infrastructure - Stages, tasks, runs and subtask progress
# PURPOSE: All SQL for the stage -> task -> run -> subtask hierarchy
# EXPORTS: TrackingRepository
# ============================================================================
"""
Tracking Repository.

Owns every statement against stages, tasks, task_runs and
subtask_progress. State-changing statements carry their status guard in
the WHERE clause; a None result means the guard (or the key) did not
match and the caller decides which error that is.

Every public method accepts an optional `session` to join an existing
transaction.
"""

import json
from typing import Any, Dict, List, Mapping, Optional, Sequence

from core.models import (
    RunStatus,
    RunStatusView,
    StageRecord,
    SubtaskProgressRecord,
    SubtaskStatus,
    TaskRecord,
    TaskRunRecord,
)
from core.utils import utc_now

from .base import BaseRepository
from .interface_repository import IStoreSession, validate_identifier


_RUN_VIEW_SELECT = """
    SELECT tr.*,
           s.stage_name, s.stage_order,
           t.task_name, t.task_order, t.task_type,
           t.script_filename, t.log_filename
    FROM {task_runs} tr
    JOIN {tasks} t ON tr.task_id = t.task_id
    JOIN {stages} s ON t.stage_id = s.stage_id
"""

_TASK_SELECT = """
    SELECT t.*, s.stage_name, s.stage_order
    FROM {tasks} t
    JOIN {stages} s ON t.stage_id = s.stage_id
"""


def _placeholders(values: Sequence[Any]) -> str:
    return ", ".join(["%s"] * len(values))


def _status_values(statuses) -> List[str]:
    return [s.value for s in statuses]


class TrackingRepository(BaseRepository):
    """SQL for the tracking hierarchy."""

    # ========================================================================
    # GENERIC GUARDED UPDATE
    # ========================================================================

    def _guarded_update(
        self,
        table: str,
        key: Mapping[str, Any],
        allowed_statuses: Sequence[Any],
        assignments: Mapping[str, Any],
        session: IStoreSession
    ) -> Optional[Dict[str, Any]]:
        """
        UPDATE ... SET assignments WHERE key AND status IN allowed RETURNING *.

        Returns the updated row, or None when nothing matched.
        """
        identifiers: Dict[str, str] = {}
        set_parts: List[str] = []
        params: List[Any] = []

        for i, (col, value) in enumerate(assignments.items()):
            identifiers[f"a{i}"] = validate_identifier(col)
            set_parts.append(f"{{a{i}}} = %s")
            params.append(value)

        where_parts: List[str] = []
        for i, (col, value) in enumerate(key.items()):
            identifiers[f"k{i}"] = validate_identifier(col)
            where_parts.append(f"{{k{i}}} = %s")
            params.append(value)

        allowed = _status_values(allowed_statuses)
        where_parts.append(f"status IN ({_placeholders(allowed)})")
        params.extend(allowed)

        query = (
            f"UPDATE {{{table}}} SET {', '.join(set_parts)} "
            f"WHERE {' AND '.join(where_parts)} RETURNING *"
        )
        return session.fetch_one(query, params, identifiers=identifiers)

    # ========================================================================
    # STAGES
    # ========================================================================

    def upsert_stage(self, stage_name: str, stage_order: Optional[int] = None,
                     description: Optional[str] = None,
                     session: Optional[IStoreSession] = None) -> StageRecord:
        """Insert or update a stage by name; None fields keep stored values."""
        now = utc_now()
        with self._error_context("stage upsert", stage_name):
            with self._session(session) as s:
                row = s.fetch_one(
                    """
                    INSERT INTO {stages} AS st
                        (stage_name, stage_order, description, created_at, updated_at)
                    VALUES (%s, %s, %s, %s, %s)
                    ON CONFLICT (stage_name) DO UPDATE SET
                        stage_order = COALESCE(EXCLUDED.stage_order, st.stage_order),
                        description = COALESCE(EXCLUDED.description, st.description),
                        updated_at = EXCLUDED.updated_at
                    RETURNING *
                    """,
                    [stage_name, stage_order, description, now, now]
                )
            return StageRecord(**row)

    def get_stages(self, session: Optional[IStoreSession] = None) -> List[StageRecord]:
        with self._session(session) as s:
            rows = s.fetch_all(
                "SELECT * FROM {stages} ORDER BY stage_order, stage_name"
            )
        return [StageRecord(**r) for r in rows]

    def get_stage_by_name(self, stage_name: str,
                          session: Optional[IStoreSession] = None) -> Optional[StageRecord]:
        with self._session(session) as s:
            row = s.fetch_one(
                "SELECT * FROM {stages} WHERE stage_name = %s",
                [stage_name]
            )
        return StageRecord(**row) if row else None

    def delete_stage(self, stage_id: int, session: Optional[IStoreSession] = None) -> int:
        """Delete a stage; tasks, runs, subtasks and metrics cascade."""
        with self._error_context("stage delete", str(stage_id)):
            with self._session(session) as s:
                return s.execute("DELETE FROM {stages} WHERE stage_id = %s", [stage_id])

    def clear_registrations(self, session: Optional[IStoreSession] = None) -> int:
        """Delete every stage (and through cascade every task, run and metric)."""
        with self._error_context("registration clear"):
            with self._session(session) as s:
                return s.execute("DELETE FROM {stages}")

    # ========================================================================
    # TASKS
    # ========================================================================

    def upsert_task(
        self,
        stage_id: int,
        task_name: str,
        task_type: Optional[str] = None,
        task_order: Optional[int] = None,
        description: Optional[str] = None,
        script_path: Optional[str] = None,
        script_filename: Optional[str] = None,
        log_path: Optional[str] = None,
        log_filename: Optional[str] = None,
        session: Optional[IStoreSession] = None
    ) -> TaskRecord:
        """Insert or update a task by (stage_id, task_name); None fields keep stored values."""
        now = utc_now()
        with self._error_context("task upsert", task_name):
            with self._session(session) as s:
                row = s.fetch_one(
                    """
                    INSERT INTO {tasks} AS tk
                        (stage_id, task_name, task_type, task_order, description,
                         script_path, script_filename, log_path, log_filename,
                         created_at, updated_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (stage_id, task_name) DO UPDATE SET
                        task_type = COALESCE(EXCLUDED.task_type, tk.task_type),
                        task_order = COALESCE(EXCLUDED.task_order, tk.task_order),
                        description = COALESCE(EXCLUDED.description, tk.description),
                        script_path = COALESCE(EXCLUDED.script_path, tk.script_path),
                        script_filename = COALESCE(EXCLUDED.script_filename, tk.script_filename),
                        log_path = COALESCE(EXCLUDED.log_path, tk.log_path),
                        log_filename = COALESCE(EXCLUDED.log_filename, tk.log_filename),
                        updated_at = EXCLUDED.updated_at
                    RETURNING task_id
                    """,
                    [stage_id, task_name, task_type, task_order, description,
                     script_path, script_filename, log_path, log_filename, now, now]
                )
                return self.get_task(row["task_id"], session=s)

    def get_task(self, task_id: int, session: Optional[IStoreSession] = None) -> Optional[TaskRecord]:
        with self._session(session) as s:
            row = s.fetch_one(_TASK_SELECT + " WHERE t.task_id = %s", [task_id])
        return TaskRecord(**row) if row else None

    def get_tasks(self, stage_name: Optional[str] = None,
                  session: Optional[IStoreSession] = None) -> List[TaskRecord]:
        """Registered tasks ordered by stage then task order."""
        query = _TASK_SELECT
        params: List[Any] = []
        if stage_name is not None:
            query += " WHERE s.stage_name = %s"
            params.append(stage_name)
        query += " ORDER BY s.stage_order, s.stage_name, t.task_order, t.task_name"
        with self._session(session) as s:
            rows = s.fetch_all(query, params)
        return [TaskRecord(**r) for r in rows]

    def delete_task(self, task_id: int, session: Optional[IStoreSession] = None) -> int:
        with self._error_context("task delete", str(task_id)):
            with self._session(session) as s:
                return s.execute("DELETE FROM {tasks} WHERE task_id = %s", [task_id])

    # ========================================================================
    # TASK RUNS
    # ========================================================================

    def insert_run(
        self,
        run_id: str,
        task_id: int,
        status: RunStatus,
        hostname: Optional[str] = None,
        process_id: Optional[int] = None,
        parent_pid: Optional[int] = None,
        total_subtasks: Optional[int] = None,
        message: Optional[str] = None,
        user_name: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        session: Optional[IStoreSession] = None
    ) -> TaskRunRecord:
        now = utc_now()
        with self._error_context("run insert", run_id):
            with self._session(session) as s:
                row = s.fetch_one(
                    """
                    INSERT INTO {task_runs}
                        (run_id, task_id, hostname, process_id, parent_pid, status,
                         start_time, last_update, total_subtasks, current_subtask,
                         overall_percent_complete, overall_progress_message,
                         user_name, metadata)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    [run_id, task_id, hostname, process_id, parent_pid, status,
                     now, now, total_subtasks, None, 0.0, message,
                     user_name, json.dumps(metadata or {})]
                )
            return TaskRunRecord(**row)

    def get_run(self, run_id: str, session: Optional[IStoreSession] = None) -> Optional[TaskRunRecord]:
        with self._session(session) as s:
            row = s.fetch_one("SELECT * FROM {task_runs} WHERE run_id = %s", [run_id])
        return TaskRunRecord(**row) if row else None

    def update_run(self, run_id: str, allowed_statuses: Sequence[RunStatus],
                   assignments: Mapping[str, Any],
                   session: Optional[IStoreSession] = None) -> Optional[TaskRunRecord]:
        """Guarded run update; None when the run is missing or not in allowed_statuses."""
        values = dict(assignments)
        values.setdefault("last_update", utc_now())
        with self._session(session) as s:
            row = self._guarded_update("task_runs", {"run_id": run_id},
                                       allowed_statuses, values, s)
        return TaskRunRecord(**row) if row else None

    def promote_run_for_subtask(self, run_id: str, subtask_number: int,
                                session: Optional[IStoreSession] = None) -> Optional[TaskRunRecord]:
        """Move an active run STARTED -> RUNNING and point current_subtask at subtask_number."""
        with self._session(session) as s:
            row = s.fetch_one(
                """
                UPDATE {task_runs} SET
                    status = CASE WHEN status = %s THEN %s ELSE status END,
                    current_subtask = %s,
                    last_update = %s
                WHERE run_id = %s AND status IN (%s, %s)
                RETURNING *
                """,
                [RunStatus.STARTED, RunStatus.RUNNING, subtask_number, utc_now(),
                 run_id, RunStatus.STARTED, RunStatus.RUNNING]
            )
        return TaskRunRecord(**row) if row else None

    def latest_run_for_task(self, task_id: int,
                            session: Optional[IStoreSession] = None) -> Optional[TaskRunRecord]:
        with self._session(session) as s:
            row = s.fetch_one(
                """
                SELECT * FROM {task_runs}
                WHERE task_id = %s
                ORDER BY start_time DESC
                LIMIT 1
                """,
                [task_id]
            )
        return TaskRunRecord(**row) if row else None

    def delete_runs(self, task_id: int, run_id: Optional[str] = None,
                    session: Optional[IStoreSession] = None) -> int:
        """Delete runs of a task (optionally one run); subtasks and metrics cascade."""
        with self._error_context("run reset", run_id or str(task_id)):
            with self._session(session) as s:
                if run_id is None:
                    return s.execute("DELETE FROM {task_runs} WHERE task_id = %s", [task_id])
                return s.execute(
                    "DELETE FROM {task_runs} WHERE task_id = %s AND run_id = %s",
                    [task_id, run_id]
                )

    # ========================================================================
    # SUBTASKS
    # ========================================================================

    def start_subtask(
        self,
        run_id: str,
        subtask_number: int,
        subtask_name: Optional[str],
        allowed_statuses: Sequence[SubtaskStatus],
        items_total: Optional[int] = None,
        message: Optional[str] = None,
        session: Optional[IStoreSession] = None
    ) -> Optional[SubtaskProgressRecord]:
        """
        Upsert a subtask into STARTED.

        An existing row is reset only while its status is in
        allowed_statuses; otherwise None is returned.
        """
        now = utc_now()
        allowed = _status_values(allowed_statuses)
        with self._session(session) as s:
            row = s.fetch_one(
                f"""
                INSERT INTO {{subtask_progress}} AS sp
                    (run_id, subtask_number, subtask_name, status, start_time,
                     last_update, percent_complete, progress_message,
                     items_total, items_complete)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (run_id, subtask_number) DO UPDATE SET
                    subtask_name = COALESCE(EXCLUDED.subtask_name, sp.subtask_name),
                    status = EXCLUDED.status,
                    start_time = EXCLUDED.start_time,
                    end_time = NULL,
                    last_update = EXCLUDED.last_update,
                    percent_complete = EXCLUDED.percent_complete,
                    progress_message = EXCLUDED.progress_message,
                    items_total = EXCLUDED.items_total,
                    items_complete = EXCLUDED.items_complete,
                    error_message = NULL
                WHERE sp.status IN ({_placeholders(allowed)})
                RETURNING *
                """,
                [run_id, subtask_number, subtask_name, SubtaskStatus.STARTED, now,
                 now, 0.0, message, items_total, 0] + allowed
            )
        return SubtaskProgressRecord(**row) if row else None

    def get_subtask(self, run_id: str, subtask_number: int,
                    session: Optional[IStoreSession] = None) -> Optional[SubtaskProgressRecord]:
        with self._session(session) as s:
            row = s.fetch_one(
                "SELECT * FROM {subtask_progress} WHERE run_id = %s AND subtask_number = %s",
                [run_id, subtask_number]
            )
        return SubtaskProgressRecord(**row) if row else None

    def get_subtasks(self, run_id: str,
                     session: Optional[IStoreSession] = None) -> List[SubtaskProgressRecord]:
        with self._session(session) as s:
            rows = s.fetch_all(
                "SELECT * FROM {subtask_progress} WHERE run_id = %s ORDER BY subtask_number",
                [run_id]
            )
        return [SubtaskProgressRecord(**r) for r in rows]

    def max_subtask_number(self, run_id: str, session: Optional[IStoreSession] = None) -> int:
        """Highest subtask number recorded for a run (0 when none)."""
        with self._session(session) as s:
            row = s.fetch_one(
                "SELECT MAX(subtask_number) AS max_number FROM {subtask_progress} WHERE run_id = %s",
                [run_id]
            )
        return int(row["max_number"] or 0) if row else 0

    def update_subtask(self, run_id: str, subtask_number: int,
                       allowed_statuses: Sequence[SubtaskStatus],
                       assignments: Mapping[str, Any],
                       session: Optional[IStoreSession] = None) -> Optional[SubtaskProgressRecord]:
        """Guarded subtask update; None when missing or not in allowed_statuses."""
        values = dict(assignments)
        values.setdefault("last_update", utc_now())
        with self._session(session) as s:
            row = self._guarded_update(
                "subtask_progress",
                {"run_id": run_id, "subtask_number": subtask_number},
                allowed_statuses, values, s
            )
        return SubtaskProgressRecord(**row) if row else None

    def increment_items(self, run_id: str, subtask_number: int, delta: int,
                        allowed_statuses: Sequence[SubtaskStatus],
                        session: IStoreSession) -> Optional[int]:
        """
        items_complete += delta in one guarded statement.

        Then, in the same transaction, STARTED -> RUNNING and percent
        recomputed from items when items_total > 0.

        Returns:
            New items_complete, or None when the guard did not match.
        """
        new_value = session.increment(
            "subtask_progress",
            "items_complete",
            delta,
            match={"run_id": run_id, "subtask_number": subtask_number},
            also_set={"last_update": utc_now()},
            guard=("status", _status_values(allowed_statuses)),
        )
        if new_value is None:
            return None

        session.execute(
            """
            UPDATE {subtask_progress} SET
                status = CASE WHEN status = %s THEN %s ELSE status END,
                percent_complete = CASE
                    WHEN items_total IS NULL OR items_total <= 0 THEN percent_complete
                    WHEN items_complete >= items_total THEN 100.0
                    ELSE items_complete * 100.0 / items_total
                END
            WHERE run_id = %s AND subtask_number = %s
            """,
            [SubtaskStatus.STARTED, SubtaskStatus.RUNNING, run_id, subtask_number]
        )
        return int(new_value)

    def cascade_subtasks(self, run_id: str, target: SubtaskStatus,
                         open_statuses: Sequence[SubtaskStatus],
                         error_message: Optional[str] = None,
                         session: Optional[IStoreSession] = None) -> int:
        """Move every open subtask of a run to target. Returns rows changed."""
        now = utc_now()
        open_values = _status_values(open_statuses)
        percent_sql = "100.0" if target == SubtaskStatus.COMPLETED else "percent_complete"
        with self._session(session) as s:
            return s.execute(
                f"""
                UPDATE {{subtask_progress}} SET
                    status = %s,
                    end_time = %s,
                    last_update = %s,
                    percent_complete = {percent_sql},
                    error_message = COALESCE(error_message, %s)
                WHERE run_id = %s AND status IN ({_placeholders(open_values)})
                """,
                [target, now, now, error_message, run_id] + open_values
            )

    # ========================================================================
    # READ QUERIES
    # ========================================================================

    def get_active_runs(self, hostname: Optional[str] = None,
                        session: Optional[IStoreSession] = None) -> List[RunStatusView]:
        """Runs in STARTED/RUNNING, optionally on one host, with a known PID."""
        query = _RUN_VIEW_SELECT + " WHERE tr.status IN (%s, %s)"
        params: List[Any] = [RunStatus.STARTED, RunStatus.RUNNING]
        if hostname is not None:
            query += " AND tr.hostname = %s AND tr.process_id IS NOT NULL"
            params.append(hostname)
        query += " ORDER BY tr.start_time"
        with self._session(session) as s:
            rows = s.fetch_all(query, params)
        return [RunStatusView(**r) for r in rows]

    def get_run_status(
        self,
        run_id: Optional[str] = None,
        stage_name: Optional[str] = None,
        task_name: Optional[str] = None,
        status: Optional[RunStatus] = None,
        limit: int = 100,
        session: Optional[IStoreSession] = None
    ) -> List[RunStatusView]:
        """Runs joined with task and stage, newest first, filtered by any given field."""
        where: List[str] = []
        params: List[Any] = []
        if run_id is not None:
            where.append("tr.run_id = %s")
            params.append(run_id)
        if stage_name is not None:
            where.append("s.stage_name = %s")
            params.append(stage_name)
        if task_name is not None:
            where.append("t.task_name = %s")
            params.append(task_name)
        if status is not None:
            where.append("tr.status = %s")
            params.append(status)

        query = _RUN_VIEW_SELECT
        if where:
            query += " WHERE " + " AND ".join(where)
        query += " ORDER BY tr.start_time DESC LIMIT %s"
        params.append(int(limit))

        with self._session(session) as s:
            rows = s.fetch_all(query, params)
        return [RunStatusView(**r) for r in rows]

    def get_task_history(self, stage_name: Optional[str] = None,
                         task_name: Optional[str] = None, limit: int = 100,
                         session: Optional[IStoreSession] = None) -> List[RunStatusView]:
        """Execution history for a stage and/or task, newest first."""
        return self.get_run_status(stage_name=stage_name, task_name=task_name,
                                   limit=limit, session=session)
