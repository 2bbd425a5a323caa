# ============================================================================
# DATABASE INITIALIZER
# ============================================================================
# STATUS: Infrastructure - Schema bootstrap for both backends
# PURPOSE: Idempotent CREATE ... IF NOT EXISTS for all tracker tables
# EXPORTS: DatabaseInitializer, InitializationResult, StepResult, initialize_database
# DEPENDENCIES: infrastructure drivers
# ============================================================================
"""
Database Initializer.

Creates the seven tracker tables, their constraints and indexes. Safe to
run repeatedly. DDL is written once per table with backend-specific column
types substituted in, then rendered by the driver like any other query.

Steps:
    1. prepare      - backend setup outside a transaction (SQLite WAL)
    2. schema       - CREATE SCHEMA IF NOT EXISTS (PostgreSQL only)
    3. tables       - all tables, CHECK constraints, ON DELETE CASCADE
    4. indexes      - lookup indexes
    5. verify       - every table present

Usage:
    from infrastructure import create_driver
    from infrastructure.database_initializer import initialize_database

    result = initialize_database(create_driver())
    if not result.success:
        print(result.to_dict())
"""

import traceback
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from config import DatabaseBackend
from core.models import RunStatus, SubtaskStatus
from core.utils import utc_now
from util_logger import LoggerFactory, ComponentType

from .interface_repository import IStoreDriver, TABLES

logger = LoggerFactory.create_logger(ComponentType.SCHEMA, "DatabaseInitializer")


# ============================================================================
# DATA CLASSES
# ============================================================================

@dataclass
class StepResult:
    """Result of a single initialization step."""
    name: str
    status: str  # 'success', 'failed', 'skipped'
    message: str = ""
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class InitializationResult:
    """Complete result of database initialization."""
    backend: str
    target: str
    timestamp: str
    success: bool
    steps: List[StepResult] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "backend": self.backend,
            "target": self.target,
            "timestamp": self.timestamp,
            "success": self.success,
            "steps": [
                {
                    "name": s.name,
                    "status": s.status,
                    "message": s.message,
                    "error": s.error,
                    "details": s.details
                }
                for s in self.steps
            ],
            "errors": self.errors,
            "summary": {
                "total_steps": len(self.steps),
                "successful": len([s for s in self.steps if s.status == "success"]),
                "failed": len([s for s in self.steps if s.status == "failed"]),
                "skipped": len([s for s in self.steps if s.status == "skipped"])
            }
        }


# ============================================================================
# DDL
# ============================================================================

_COLUMN_TYPES = {
    DatabaseBackend.POSTGRESQL: {
        "pk": "BIGSERIAL PRIMARY KEY",
        "fk_int": "BIGINT",
        "uuid": "UUID",
        "ts": "TIMESTAMPTZ",
        "real": "DOUBLE PRECISION",
        "bigint": "BIGINT",
        "bool": "BOOLEAN",
        "false": "FALSE",
    },
    DatabaseBackend.SQLITE: {
        "pk": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "fk_int": "INTEGER",
        "uuid": "TEXT",
        "ts": "TIMESTAMP",
        "real": "REAL",
        "bigint": "INTEGER",
        "bool": "INTEGER",
        "false": "0",
    },
}


def _status_check(values) -> str:
    return ", ".join(f"'{v.value}'" for v in values)


def table_ddl(backend: DatabaseBackend) -> List[str]:
    """CREATE TABLE templates for a backend, in dependency order."""
    t = _COLUMN_TYPES[DatabaseBackend(backend)]
    run_statuses = _status_check(RunStatus)
    subtask_statuses = _status_check(SubtaskStatus)

    return [
        f"""
        CREATE TABLE IF NOT EXISTS {{stages}} (
            stage_id {t['pk']},
            stage_name TEXT NOT NULL UNIQUE,
            stage_order INTEGER,
            description TEXT,
            created_at {t['ts']} NOT NULL,
            updated_at {t['ts']} NOT NULL
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS {{tasks}} (
            task_id {t['pk']},
            stage_id {t['fk_int']} NOT NULL REFERENCES {{stages}} (stage_id) ON DELETE CASCADE,
            task_name TEXT NOT NULL,
            task_type TEXT,
            task_order INTEGER,
            description TEXT,
            script_path TEXT,
            script_filename TEXT,
            log_path TEXT,
            log_filename TEXT,
            created_at {t['ts']} NOT NULL,
            updated_at {t['ts']} NOT NULL,
            UNIQUE (stage_id, task_name)
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS {{task_runs}} (
            run_id {t['uuid']} PRIMARY KEY,
            task_id {t['fk_int']} NOT NULL REFERENCES {{tasks}} (task_id) ON DELETE CASCADE,
            hostname TEXT,
            process_id INTEGER,
            parent_pid INTEGER,
            status TEXT NOT NULL CHECK (status IN ({run_statuses})),
            start_time {t['ts']},
            end_time {t['ts']},
            last_update {t['ts']},
            total_subtasks INTEGER,
            current_subtask INTEGER,
            overall_percent_complete {t['real']} DEFAULT 0
                CHECK (overall_percent_complete BETWEEN 0 AND 100),
            overall_progress_message TEXT,
            error_message TEXT,
            error_detail TEXT,
            user_name TEXT,
            metadata TEXT
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS {{subtask_progress}} (
            progress_id {t['pk']},
            run_id {t['uuid']} NOT NULL REFERENCES {{task_runs}} (run_id) ON DELETE CASCADE,
            subtask_number INTEGER NOT NULL CHECK (subtask_number >= 1),
            subtask_name TEXT,
            status TEXT NOT NULL CHECK (status IN ({subtask_statuses})),
            start_time {t['ts']},
            end_time {t['ts']},
            last_update {t['ts']},
            percent_complete {t['real']} DEFAULT 0
                CHECK (percent_complete BETWEEN 0 AND 100),
            progress_message TEXT,
            items_total INTEGER,
            items_complete INTEGER DEFAULT 0 CHECK (items_complete >= 0),
            error_message TEXT,
            UNIQUE (run_id, subtask_number)
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS {{process_metrics}} (
            metric_id {t['pk']},
            run_id {t['uuid']} NOT NULL REFERENCES {{task_runs}} (run_id) ON DELETE CASCADE,
            "timestamp" {t['ts']} NOT NULL,
            process_id INTEGER,
            hostname TEXT,
            is_alive {t['bool']},
            process_start_time {t['ts']},
            cpu_percent {t['real']},
            cpu_cores INTEGER,
            memory_mb {t['real']},
            memory_vms_mb {t['real']},
            memory_percent {t['real']},
            num_threads INTEGER,
            num_fds INTEGER,
            open_files INTEGER,
            io_read_bytes {t['bigint']},
            io_write_bytes {t['bigint']},
            child_count INTEGER,
            child_total_cpu_percent {t['real']},
            child_total_memory_mb {t['real']},
            collection_error {t['bool']} NOT NULL DEFAULT {t['false']},
            error_type TEXT,
            error_message TEXT,
            collection_duration_ms {t['real']},
            reporter_version TEXT,
            UNIQUE (run_id, "timestamp")
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS {{reporter_status}} (
            hostname TEXT PRIMARY KEY,
            process_id INTEGER NOT NULL,
            started_at {t['ts']} NOT NULL,
            last_heartbeat {t['ts']} NOT NULL,
            version TEXT,
            shutdown_requested {t['bool']} NOT NULL DEFAULT {t['false']}
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS {{process_metrics_retention}} (
            run_id {t['uuid']} PRIMARY KEY REFERENCES {{task_runs}} (run_id) ON DELETE CASCADE,
            task_completed_at {t['ts']} NOT NULL,
            metrics_delete_after {t['ts']} NOT NULL,
            metrics_deleted {t['bool']} NOT NULL DEFAULT {t['false']},
            metrics_count INTEGER,
            deleted_at {t['ts']}
        )
        """,
    ]


INDEX_DDL: List[str] = [
    "CREATE INDEX IF NOT EXISTS idx_tasks_stage ON {tasks} (stage_id)",
    "CREATE INDEX IF NOT EXISTS idx_task_runs_task ON {task_runs} (task_id, start_time)",
    "CREATE INDEX IF NOT EXISTS idx_task_runs_host_status ON {task_runs} (hostname, status)",
    "CREATE INDEX IF NOT EXISTS idx_subtask_progress_run ON {subtask_progress} (run_id)",
    "CREATE INDEX IF NOT EXISTS idx_process_metrics_run_ts ON {process_metrics} (run_id, \"timestamp\")",
    "CREATE INDEX IF NOT EXISTS idx_retention_pending "
    "ON {process_metrics_retention} (metrics_deleted, metrics_delete_after)",
]


# ============================================================================
# DATABASE INITIALIZER
# ============================================================================

class DatabaseInitializer:
    """Idempotent schema bootstrap for the configured backend."""

    def __init__(self, driver: IStoreDriver):
        self.driver = driver
        self.backend = driver.backend

    def _target(self) -> str:
        config = getattr(self.driver, "config", None)
        if config is None:
            return self.backend.value
        if self.backend == DatabaseBackend.SQLITE:
            return config.sqlite_path
        return f"{config.host}/{config.database}/{config.schema_name}"

    def initialize_all(self) -> InitializationResult:
        """Run every step; stop at the first failed step."""
        result = InitializationResult(
            backend=self.backend.value,
            target=self._target(),
            timestamp=utc_now().isoformat(),
            success=False
        )

        logger.info("=" * 70)
        logger.info("🚀 DATABASE INITIALIZATION STARTED")
        logger.info(f"   Backend: {self.backend.value}  Target: {result.target}")
        logger.info("=" * 70)

        steps = [
            self._prepare,
            self._create_schema,
            self._create_tables,
            self._create_indexes,
            self._verify_tables,
        ]
        for step in steps:
            step_result = step()
            result.steps.append(step_result)
            if step_result.status == "failed":
                result.errors.append(f"{step_result.name} failed: {step_result.error}")
                break

        result.success = not result.errors

        summary = result.to_dict()["summary"]
        logger.info(f"🏁 INITIALIZATION {'COMPLETE' if result.success else 'FAILED'}")
        logger.info(
            f"   Steps: {summary['successful']} succeeded, {summary['failed']} failed, "
            f"{summary['skipped']} skipped"
        )
        if result.errors:
            logger.warning(f"   Errors: {result.errors}")
        return result

    def _run_step(self, name: str, func) -> StepResult:
        try:
            details = func() or {}
            logger.info(f"   ✅ {name}")
            return StepResult(name=name, status="success", details=details)
        except Exception as e:
            logger.error(f"   ❌ {name}: {e}")
            logger.debug(traceback.format_exc())
            return StepResult(name=name, status="failed", error=str(e))

    def _prepare(self) -> StepResult:
        return self._run_step("prepare", self.driver.prepare)

    def _create_schema(self) -> StepResult:
        if self.backend != DatabaseBackend.POSTGRESQL:
            return StepResult(name="schema", status="skipped", message="SQLite has no schemas")

        def _create():
            with self.driver.session() as session:
                session.execute("CREATE SCHEMA IF NOT EXISTS {schema}")
            return {"schema": self.driver.schema}

        return self._run_step("schema", _create)

    def _create_tables(self) -> StepResult:
        def _create():
            statements = table_ddl(self.backend)
            with self.driver.session() as session:
                for ddl in statements:
                    session.execute(ddl)
            return {"tables": list(TABLES)}

        return self._run_step("tables", _create)

    def _create_indexes(self) -> StepResult:
        def _create():
            with self.driver.session() as session:
                for ddl in INDEX_DDL:
                    session.execute(ddl)
            return {"indexes": len(INDEX_DDL)}

        return self._run_step("indexes", _create)

    def existing_tables(self) -> List[str]:
        """Tracker tables currently present in the store."""
        with self.driver.session() as session:
            if self.backend == DatabaseBackend.POSTGRESQL:
                rows = session.fetch_all(
                    "SELECT table_name AS name FROM information_schema.tables "
                    "WHERE table_schema = %s",
                    [self.driver.schema]
                )
            else:
                rows = session.fetch_all(
                    "SELECT name FROM sqlite_master WHERE type = 'table'"
                )
        present = {row["name"] for row in rows}
        return [t for t in TABLES if t in present]

    def _verify_tables(self) -> StepResult:
        def _verify():
            present = self.existing_tables()
            missing = [t for t in TABLES if t not in present]
            if missing:
                raise RuntimeError(f"Missing tables after initialization: {missing}")
            return {"tables_present": len(present)}

        return self._run_step("verify", _verify)


def initialize_database(driver: IStoreDriver) -> InitializationResult:
    """Convenience wrapper used by the reporter entry point and tests."""
    return DatabaseInitializer(driver).initialize_all()
