"""
Retention Service - Process Metrics Cleanup.

Deletes the process_metrics rows of runs that finished more than
retention_days ago and records the deletion in process_metrics_retention.

Selection is the same repository query in both modes, so a dry run lists
exactly what a real sweep would delete. Real sweeps use one transaction
per run; a failure on one run is recorded and the sweep moves on.

Exports:
    RetentionService: Sweep coordinator
    RetentionSweepResult: Result dataclass
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from config import RetentionConfig, get_config
from exceptions import DatabaseError, InvalidArgumentError
from infrastructure.interface_repository import IStoreDriver
from infrastructure.metrics_repository import MetricsRepository
from infrastructure.retention_repository import RetentionRepository
from util_logger import LoggerFactory, ComponentType

logger = LoggerFactory.create_logger(ComponentType.SERVICE, "RetentionService")


# ============================================================================
# RESULT MODELS
# ============================================================================

@dataclass
class RetentionSweepResult:
    """Result of a retention sweep."""

    dry_run: bool
    retention_days: int
    cutoff: datetime
    success: bool = False
    items: List[Dict[str, Any]] = field(default_factory=list)
    failures: List[Dict[str, Any]] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    error: Optional[str] = None

    def complete(self, success: bool = True, error: Optional[str] = None):
        """Mark the sweep as complete."""
        self.completed_at = datetime.now(timezone.utc)
        self.success = success
        self.error = error

    @property
    def runs_processed(self) -> int:
        return len(self.items)

    @property
    def metrics_deleted(self) -> int:
        return sum(item["metrics_deleted_count"] for item in self.items)

    @property
    def duration_ms(self) -> int:
        if self.completed_at:
            return int((self.completed_at - self.started_at).total_seconds() * 1000)
        return 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "retention_days": self.retention_days,
            "cutoff": self.cutoff.isoformat(),
            "success": self.success,
            "runs_processed": self.runs_processed,
            "metrics_deleted": self.metrics_deleted,
            "items": [
                {**item, "completed_at": item["completed_at"].isoformat()} for item in self.items
            ],
            "failures": self.failures,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "error": self.error,
        }


# ============================================================================
# RETENTION SERVICE
# ============================================================================

class RetentionService:
    """
    Metrics retention sweeper.

    Usage:
        service = RetentionService(driver)
        preview = service.sweep(dry_run=True)
        result = service.sweep()
        print(f"Deleted {result.metrics_deleted} samples from {result.runs_processed} runs")
    """

    def __init__(
        self,
        driver: IStoreDriver,
        config: Optional[RetentionConfig] = None,
        retention_repo: Optional[RetentionRepository] = None,
        metrics_repo: Optional[MetricsRepository] = None
    ):
        self.driver = driver
        self.config = config or get_config().retention
        self.retention = retention_repo or RetentionRepository(driver)
        self.metrics = metrics_repo or MetricsRepository(driver)

    def sweep(self, retention_days: Optional[int] = None, dry_run: bool = False,
              now: Optional[datetime] = None) -> RetentionSweepResult:
        """
        Delete (or, with dry_run, list) metrics of runs past retention.

        Args:
            retention_days: Override METRICS_RETENTION_DAYS
            dry_run: Report without deleting
            now: Reference time (defaults to the current time)

        Raises:
            InvalidArgumentError: Negative retention_days
            DatabaseError: The eligibility query itself failed
        """
        days = self.config.retention_days if retention_days is None else retention_days
        if isinstance(days, bool) or not isinstance(days, int) or days < 0:
            raise InvalidArgumentError(f"retention_days must be a non-negative integer, got {days!r}")

        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)
        result = RetentionSweepResult(dry_run=dry_run, retention_days=days, cutoff=cutoff)
        mode = "DRY RUN" if dry_run else "SWEEP"
        logger.info(f"🧹 [{mode}] Metrics retention: runs finished before {cutoff.isoformat()}")

        eligible = self.retention.select_eligible(cutoff)
        if not eligible:
            logger.info(f"🧹 [{mode}] Nothing past retention")
            result.complete(success=True)
            return result

        for candidate in eligible:
            run_id = candidate["run_id"]
            if dry_run:
                result.items.append(self._item(candidate, candidate["metrics_count"]))
                continue
            try:
                with self.driver.session() as s:
                    deleted = self.metrics.delete_metrics(run_id, session=s)
                    self.retention.mark_deleted(run_id, candidate["completed_at"], days,
                                                deleted, session=s)
            except DatabaseError as e:
                result.failures.append({"run_id": run_id, "error": f"{type(e).__name__}: {e}"})
                continue
            result.items.append(self._item(candidate, deleted))
            logger.debug(f"🗑️ Run {run_id} ({candidate['task_name']}): {deleted} samples deleted")

        if result.failures:
            result.complete(success=False,
                            error=f"{len(result.failures)} of {len(eligible)} runs failed")
            logger.warning(f"⚠️ [{mode}] Retention finished with {len(result.failures)} failure(s)")
        else:
            result.complete(success=True)
        logger.info(
            f"✅ [{mode}] {result.runs_processed} run(s), {result.metrics_deleted} sample(s)"
            + (" would be deleted" if dry_run else " deleted")
        )
        return result

    @staticmethod
    def _item(candidate: Dict[str, Any], deleted: int) -> Dict[str, Any]:
        return {
            "run_id": candidate["run_id"],
            "task_name": candidate["task_name"],
            "metrics_deleted_count": int(deleted),
            "completed_at": candidate["completed_at"],
        }
