"""
Metrics reporter: registration rules, cycles, shutdown and replacement.
"""

import os
import subprocess
import sys
import threading
from datetime import timedelta

import pytest

from config import ReporterConfig
from core.models import MetricErrorType, ReporterRegistration, ReporterState
from core.utils import utc_now
from exceptions import ReporterAlreadyRunningError
from infrastructure.metrics_repository import MetricsRepository
from services.reporter_service import ReporterService

HOST = "reporter-test-host"


@pytest.fixture
def reporter_config():
    return ReporterConfig(interval_seconds=0.5, sample_timeout_seconds=0.4,
                          cpu_sample_interval_seconds=0, include_children=False)


@pytest.fixture
def make_reporter(driver, reporter_config):
    created = []

    def _make(process_id=None):
        reporter = ReporterService(driver, config=reporter_config, hostname=HOST,
                                   process_id=process_id if process_id is not None else os.getpid())
        created.append(reporter)
        return reporter

    yield _make
    for reporter in created:
        reporter.sampler.close()


@pytest.fixture
def metrics(driver):
    return MetricsRepository(driver)


@pytest.fixture
def dead_pid():
    proc = subprocess.Popen([sys.executable, "-c", "pass"])
    proc.wait()
    return proc.pid


# ============================================================================
# REGISTRATION
# ============================================================================

class TestRegistration:

    def test_register_and_deregister(self, make_reporter, metrics):
        reporter = make_reporter()
        registration = reporter.register()
        assert registration.process_id == os.getpid()
        assert registration.version == "1.0.0"
        assert reporter.state == ReporterState.RUNNING
        assert reporter.deregister() is True
        assert metrics.get_reporter(HOST) is None
        assert reporter.state == ReporterState.TERMINATED

    def test_live_reporter_blocks_second(self, make_reporter):
        make_reporter(process_id=os.getppid()).register()
        with pytest.raises(ReporterAlreadyRunningError) as exc_info:
            make_reporter().register()
        assert exc_info.value.process_id == os.getppid()

    def test_dead_reporter_is_taken_over(self, make_reporter, metrics, dead_pid):
        make_reporter(process_id=dead_pid).register()
        make_reporter().register()
        assert metrics.get_reporter(HOST).process_id == os.getpid()

    def test_silent_reporter_is_taken_over(self, make_reporter, metrics, driver):
        make_reporter(process_id=os.getppid()).register()
        with driver.session() as s:
            s.execute("UPDATE {reporter_status} SET last_heartbeat = %s WHERE hostname = %s",
                      [utc_now() - timedelta(hours=1), HOST])
        make_reporter().register()
        assert metrics.get_reporter(HOST).process_id == os.getpid()

    def test_conditional_claim_loses_race(self, metrics, dead_pid):
        metrics.claim_reporter(HOST, dead_pid, "1.0.0", None)
        # Another reporter took the stale row first
        assert metrics.claim_reporter(HOST, 111, "1.0.0", dead_pid) is not None
        assert metrics.claim_reporter(HOST, 222, "1.0.0", dead_pid) is None
        assert metrics.get_reporter(HOST).process_id == 111

    def test_liveness_rules(self, make_reporter, dead_pid):
        reporter = make_reporter()
        fresh = ReporterRegistration(hostname=HOST, process_id=os.getpid(), last_heartbeat=utc_now())
        stale = fresh.model_copy(update={"last_heartbeat": utc_now() - timedelta(hours=1)})
        gone = fresh.model_copy(update={"process_id": dead_pid})
        assert reporter.is_registration_live(fresh)
        assert not reporter.is_registration_live(stale)
        assert not reporter.is_registration_live(gone)

    def test_status(self, make_reporter):
        reporter = make_reporter()
        assert reporter.get_reporter_status()["registered"] is False
        reporter.register()
        status = reporter.get_reporter_status()
        assert status["registered"] is True
        assert status["is_alive"] is True
        assert status["heartbeat_age_seconds"] >= 0


# ============================================================================
# CYCLES
# ============================================================================

class TestCycles:

    def test_samples_active_runs_on_this_host(self, make_reporter, metrics, state_machine,
                                              registered_task, dead_pid):
        live = state_machine.start_run(registered_task.task_id, hostname=HOST)
        gone = state_machine.start_run(registered_task.task_id, hostname=HOST, process_id=dead_pid)
        elsewhere = state_machine.start_run(registered_task.task_id, hostname="other-host")
        finished = state_machine.start_run(registered_task.task_id, hostname=HOST)
        state_machine.complete_run(finished.run_id)

        reporter = make_reporter()
        reporter.register()
        result = reporter.run_cycle()

        assert result.keep_running is True
        assert result.runs_found == 2
        assert result.metrics_written == 2
        assert result.sample_errors == 1

        live_metric = metrics.get_latest_metric(live.run_id)
        assert live_metric.collection_error is False
        assert live_metric.is_alive is True
        gone_metric = metrics.get_latest_metric(gone.run_id)
        assert gone_metric.error_type == MetricErrorType.PROCESS_DIED
        assert metrics.count_metrics(elsewhere.run_id) == 0
        assert metrics.count_metrics(finished.run_id) == 0

    def test_previous_start_time_is_recorded(self, make_reporter, metrics, state_machine,
                                             registered_task):
        run = state_machine.start_run(registered_task.task_id, hostname=HOST)
        reporter = make_reporter()
        reporter.register()
        reporter.run_cycle()
        starts = metrics.get_previous_start_times([run.run_id])
        assert starts[run.run_id] == metrics.get_latest_metric(run.run_id).process_start_time

    def test_run_bounded_by_max_cycles(self, make_reporter, metrics, state_machine, registered_task):
        run = state_machine.start_run(registered_task.task_id, hostname=HOST)
        reporter = make_reporter()
        assert reporter.run(max_cycles=2) == 2
        assert metrics.count_metrics(run.run_id) == 2
        assert metrics.get_reporter(HOST) is None

    def test_shutdown_request(self, make_reporter, metrics):
        reporter = make_reporter()
        reporter.register()
        assert reporter.request_shutdown() is True
        result = reporter.run_cycle()
        assert result.keep_running is False
        assert result.stop_reason == "shutdown requested"

    def test_replaced_reporter_stops_without_removing_successor(self, make_reporter, metrics):
        reporter = make_reporter()
        reporter.register()
        metrics.claim_reporter(HOST, 424242, "1.0.0", os.getpid())

        assert reporter.run(max_cycles=5) == 1
        assert metrics.get_reporter(HOST).process_id == 424242

    def test_stop_event_interrupts_sleep(self, make_reporter):
        reporter = make_reporter()
        reporter.config = reporter.config.model_copy(update={"interval_seconds": 30.0})
        cycles = []
        thread = threading.Thread(target=lambda: cycles.append(reporter.run()))
        thread.start()
        reporter.stop()
        thread.join(timeout=10)
        assert not thread.is_alive()
        assert cycles and cycles[0] >= 0
