"""
Process sampler tests against real processes (psutil) plus failure classification.
"""

import os
import subprocess
import sys
import threading
import time
from datetime import datetime, timedelta, timezone

import psutil
import pytest

from config import ReporterConfig
from core.models import MetricErrorType
from core.utils import generate_run_id
from services.process_sampler import ProcessSampler


@pytest.fixture
def sampler():
    s = ProcessSampler(ReporterConfig(cpu_sample_interval_seconds=0, include_children=True),
                       hostname="test-host")
    yield s
    s.close()


def _own_start_time() -> datetime:
    return datetime.fromtimestamp(psutil.Process(os.getpid()).create_time(), tz=timezone.utc)


@pytest.fixture
def dead_pid():
    proc = subprocess.Popen([sys.executable, "-c", "pass"])
    proc.wait()
    return proc.pid


# ============================================================================
# LIVE PROCESS
# ============================================================================

class TestLiveSample:

    def test_sample_own_process(self, sampler):
        run_id = generate_run_id()
        metric = sampler.sample(run_id, os.getpid())
        assert metric.run_id == run_id
        assert metric.is_alive is True
        assert metric.collection_error is False
        assert metric.error_type is None
        assert metric.hostname == "test-host"
        assert metric.memory_mb > 0
        assert metric.num_threads >= 1
        assert metric.cpu_cores >= 1
        assert metric.child_count is not None
        assert metric.process_start_time is not None
        assert metric.reporter_version == "1.0.0"
        assert metric.collection_duration_ms >= 0

    def test_matching_previous_start_time_is_same_process(self, sampler):
        metric = sampler.sample(generate_run_id(), os.getpid(),
                                previous_start_time=_own_start_time())
        assert metric.collection_error is False

    def test_children_skipped_when_disabled(self):
        s = ProcessSampler(ReporterConfig(cpu_sample_interval_seconds=0, include_children=False))
        try:
            assert s.sample(generate_run_id(), os.getpid()).child_count is None
        finally:
            s.close()

    def test_sample_with_timeout_returns_sample(self, sampler):
        metric = sampler.sample_with_timeout(generate_run_id(), os.getpid(), timeout=2.0)
        assert metric.collection_error is False


# ============================================================================
# ERROR CLASSIFICATION
# ============================================================================

class TestErrorSamples:

    def test_dead_pid(self, sampler, dead_pid):
        metric = sampler.sample(generate_run_id(), dead_pid)
        assert metric.collection_error is True
        assert metric.error_type == MetricErrorType.PROCESS_DIED
        assert metric.is_alive is False

    def test_missing_pid(self, sampler):
        metric = sampler.sample(generate_run_id(), None)
        assert metric.error_type == MetricErrorType.PROCESS_DIED

    def test_start_time_changed_means_reuse(self, sampler):
        metric = sampler.sample(generate_run_id(), os.getpid(),
                                previous_start_time=_own_start_time() - timedelta(hours=1))
        assert metric.error_type == MetricErrorType.PID_REUSED
        assert metric.is_alive is False

    def test_process_newer_than_run_means_reuse(self, sampler):
        metric = sampler.sample(generate_run_id(), os.getpid(),
                                run_start_time=_own_start_time() - timedelta(hours=1))
        assert metric.error_type == MetricErrorType.PID_REUSED

    def test_access_denied(self, sampler, monkeypatch):
        class DeniedProcess:
            def __init__(self, pid):
                self.pid = pid

            def create_time(self):
                raise psutil.AccessDenied(self.pid)

        monkeypatch.setattr(psutil, "Process", DeniedProcess)
        metric = sampler.sample(generate_run_id(), 4242)
        assert metric.error_type == MetricErrorType.ACCESS_DENIED
        assert metric.is_alive is True

    def test_unexpected_failure_is_unknown(self, sampler, monkeypatch):
        def explode(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(sampler, "_collect", explode)
        metric = sampler.sample(generate_run_id(), os.getpid())
        assert metric.error_type == MetricErrorType.UNKNOWN
        assert "boom" in metric.error_message

    def test_timeout(self, sampler, monkeypatch):
        def slow(*args, **kwargs):
            time.sleep(1.0)
            return {}

        monkeypatch.setattr(sampler, "_collect", slow)
        started = time.monotonic()
        metric = sampler.sample_with_timeout(generate_run_id(), os.getpid(), timeout=0.1)
        assert time.monotonic() - started < 0.9
        assert metric.error_type == MetricErrorType.COLLECTION_TIMEOUT
        assert metric.is_alive is True

    def test_hung_samples_do_not_starve_later_ones(self, sampler, monkeypatch):
        release = threading.Event()
        real_collect = sampler._collect
        calls = {"n": 0}

        def hang_first_five(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] <= 5:
                release.wait(10)
                return {}
            return real_collect(*args, **kwargs)

        monkeypatch.setattr(sampler, "_collect", hang_first_five)
        try:
            for _ in range(5):
                metric = sampler.sample_with_timeout(generate_run_id(), os.getpid(), timeout=0.1)
                assert metric.error_type == MetricErrorType.COLLECTION_TIMEOUT

            metric = sampler.sample_with_timeout(generate_run_id(), os.getpid(), timeout=5)
            assert metric.collection_error is False
            assert metric.is_alive is True
        finally:
            release.set()
