"""
Metrics retention sweep: eligibility, dry run, execution and failure isolation.
"""

from datetime import timedelta

import pytest

from config import RetentionConfig
from core.models import ProcessMetricRecord
from core.utils import utc_now
from exceptions import DatabaseError, InvalidArgumentError
from infrastructure.metrics_repository import MetricsRepository
from infrastructure.retention_repository import RetentionRepository
from services.retention_service import RetentionService


@pytest.fixture
def metrics(driver):
    return MetricsRepository(driver)


@pytest.fixture
def retention(driver):
    return RetentionRepository(driver)


@pytest.fixture
def service(driver, metrics, retention):
    return RetentionService(driver, config=RetentionConfig(retention_days=30),
                            retention_repo=retention, metrics_repo=metrics)


@pytest.fixture
def finished_run(state_machine, registered_task, metrics):
    """Completed run with three samples."""
    def _make(samples=3):
        run = state_machine.start_run(registered_task.task_id)
        base = utc_now()
        for i in range(samples):
            metrics.write_metric(ProcessMetricRecord(
                run_id=run.run_id, timestamp=base + timedelta(seconds=i),
                process_id=run.process_id, is_alive=True, memory_mb=10.0 + i,
            ))
        return state_machine.complete_run(run.run_id)
    return _make


def _later(days):
    return utc_now() + timedelta(days=days)


class TestEligibility:

    def test_recent_runs_are_kept(self, service, finished_run, metrics):
        run = finished_run()
        result = service.sweep(now=_later(10))
        assert result.success
        assert result.runs_processed == 0
        assert metrics.count_metrics(run.run_id) == 3

    def test_active_runs_are_never_eligible(self, service, state_machine, registered_task, metrics):
        run = state_machine.start_run(registered_task.task_id)
        metrics.write_metric(ProcessMetricRecord(run_id=run.run_id, timestamp=utc_now(), is_alive=True))
        assert service.sweep(retention_days=0, now=_later(365)).runs_processed == 0

    def test_negative_days(self, service):
        with pytest.raises(InvalidArgumentError):
            service.sweep(retention_days=-1)


class TestSweep:

    def test_dry_run_changes_nothing(self, service, finished_run, metrics, retention):
        run = finished_run()
        result = service.sweep(dry_run=True, now=_later(31))
        assert result.dry_run is True
        assert result.runs_processed == 1
        assert result.metrics_deleted == 3
        assert result.items[0]["run_id"] == run.run_id
        assert metrics.count_metrics(run.run_id) == 3
        assert retention.get_record(run.run_id).metrics_deleted is False

    def test_sweep_deletes_and_records(self, service, finished_run, metrics, retention, state_machine):
        run = finished_run()
        result = service.sweep(now=_later(31))
        assert result.success
        assert result.metrics_deleted == 3
        assert metrics.count_metrics(run.run_id) == 0

        record = retention.get_record(run.run_id)
        assert record.metrics_deleted is True
        assert record.metrics_count == 3
        assert record.deleted_at is not None

        # run history itself is kept
        assert state_machine.tracking.get_run(run.run_id) is not None
        assert service.sweep(now=_later(31)).runs_processed == 0

    def test_dry_run_matches_real_sweep(self, service, finished_run):
        finished_run(samples=1)
        finished_run(samples=2)
        preview = service.sweep(dry_run=True, now=_later(40))
        real = service.sweep(now=_later(40))
        assert [i["run_id"] for i in preview.items] == [i["run_id"] for i in real.items]
        assert preview.metrics_deleted == real.metrics_deleted == 3

    def test_one_failure_does_not_stop_the_sweep(self, service, finished_run, metrics, monkeypatch):
        bad = finished_run()
        good = finished_run()
        original = metrics.delete_metrics

        def flaky_delete(run_id, session=None):
            if run_id == bad.run_id:
                raise DatabaseError("constraint violation")
            return original(run_id, session=session)

        monkeypatch.setattr(metrics, "delete_metrics", flaky_delete)
        result = service.sweep(now=_later(31))

        assert result.success is False
        assert [f["run_id"] for f in result.failures] == [bad.run_id]
        assert [i["run_id"] for i in result.items] == [good.run_id]
        assert metrics.count_metrics(bad.run_id) == 3
        assert metrics.count_metrics(good.run_id) == 0

    def test_result_serialises(self, service, finished_run):
        finished_run()
        payload = service.sweep(dry_run=True, now=_later(31)).to_dict()
        assert payload["runs_processed"] == 1
        assert isinstance(payload["items"][0]["completed_at"], str)
        assert payload["duration_ms"] >= 0
