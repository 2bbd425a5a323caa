"""
Schema bootstrap, stage/task registration and the reporter entry point.
"""

import json

import pytest

from core.models import RunStatus
from exceptions import InvalidArgumentError, NotFoundError
from infrastructure.database_initializer import DatabaseInitializer, initialize_database
from infrastructure.interface_repository import TABLES
import reporter_main
from tests.factories.model_factories import make_task_registration


# ============================================================================
# SCHEMA
# ============================================================================

class TestSchema:

    def test_all_tables_present(self, driver):
        assert DatabaseInitializer(driver).existing_tables() == list(TABLES)

    def test_initialization_is_idempotent(self, driver):
        result = initialize_database(driver)
        assert result.success
        summary = result.to_dict()["summary"]
        assert summary["failed"] == 0
        assert summary["skipped"] == 1  # SQLite has no schemas

    def test_status_check_constraint(self, driver, state_machine, registered_task):
        run = state_machine.start_run(registered_task.task_id)
        with pytest.raises(Exception):
            with driver.session() as s:
                s.execute("UPDATE {task_runs} SET status = %s WHERE run_id = %s",
                          ["PAUSED", run.run_id])


# ============================================================================
# REGISTRATION
# ============================================================================

class TestRegistration:

    def test_register_with_detected_defaults(self, registration):
        task = registration.register_task(
            stage_name="DAILY", stage_order=2, task_name="load", task_order=1,
            script_path="/opt/jobs/daily/load_prices.R",
        )
        assert task.task_type == "R"
        assert task.script_filename == "load_prices.R"
        assert task.log_path == "/opt/jobs/daily"
        assert task.log_filename == "load_prices.Rout"
        assert task.stage_name == "DAILY"
        assert task.stage_order == 2

    def test_reregistration_is_an_upsert(self, registration):
        data = make_task_registration(stage_name="DAILY", task_name="load")
        first = registration.register_task(data)
        second = registration.register_task(stage_name="DAILY", task_name="load",
                                            task_type="R", description="changed")
        assert second.task_id == first.task_id
        assert second.description == "changed"
        assert second.script_path == first.script_path
        assert len(registration.get_tasks()) == 1

    def test_register_tasks_is_all_or_nothing(self, registration):
        good = make_task_registration(stage_name="S1")
        bad = make_task_registration(stage_name="S1", script_path="/opt/x/run.sql")
        with pytest.raises(InvalidArgumentError):
            registration.register_tasks([good, bad])
        assert registration.get_tasks() == []

    def test_stages_listed_in_order(self, registration):
        registration.register_stage("LATE", stage_order=9)
        registration.register_stage("EARLY", stage_order=1)
        assert [s.stage_name for s in registration.get_stages()] == ["EARLY", "LATE"]

    def test_blank_stage_rejected(self, registration):
        with pytest.raises(InvalidArgumentError):
            registration.register_stage("   ")

    def test_delete_stage_cascades(self, registration, state_machine):
        task = registration.register_task(make_task_registration(stage_name="GONE"))
        run = state_machine.start_run(task.task_id)
        state_machine.start_subtask(run.run_id, 1, "a")
        assert registration.delete_stage("GONE") == 1
        assert state_machine.tracking.get_run(run.run_id) is None
        assert state_machine.tracking.get_subtasks(run.run_id) == []

    def test_delete_unknown_stage(self, registration):
        with pytest.raises(NotFoundError):
            registration.delete_stage("NEVER")

    def test_clear_registrations(self, registration):
        registration.register_task(make_task_registration(stage_name="A"))
        registration.register_task(make_task_registration(stage_name="B"))
        assert registration.clear_registrations() == 2
        assert registration.get_stages() == []


# ============================================================================
# ENTRY POINT
# ============================================================================

class TestReporterMain:

    @pytest.fixture(autouse=True)
    def keep_signal_handlers(self, monkeypatch):
        monkeypatch.setattr(reporter_main.signal, "signal", lambda signum, handler: None)

    @pytest.fixture
    def env(self, monkeypatch, sqlite_config, driver):
        monkeypatch.setenv("DB_BACKEND", "sqlite")
        monkeypatch.setenv("SQLITE_PATH", sqlite_config.sqlite_path)
        monkeypatch.setenv("REPORTER_INTERVAL_SECONDS", "0.5")
        monkeypatch.setenv("REPORTER_SAMPLE_TIMEOUT_SECONDS", "0.4")
        return sqlite_config

    def _main(self, *argv):
        with pytest.raises(SystemExit) as exc_info:
            reporter_main.main(list(argv))
        return exc_info.value.code

    def test_init_db(self, env, capsys):
        assert self._main("init-db") == 0
        assert json.loads(capsys.readouterr().out)["success"] is True

    def test_status_unregistered(self, env, capsys):
        assert self._main("status", "--host", "nowhere") == 0
        assert json.loads(capsys.readouterr().out)["registered"] is False

    def test_shutdown_unknown_host(self, env):
        assert self._main("shutdown", "--host", "nowhere") == 1

    def test_run_one_cycle(self, env, state_machine, registered_task):
        run = state_machine.start_run(registered_task.task_id)
        assert self._main("run", "--max-cycles", "1") == 0
        assert state_machine.tracking.get_run(run.run_id).status == RunStatus.STARTED

    def test_sweep_dry_run(self, env, capsys):
        assert self._main("sweep", "--days", "0", "--dry-run") == 0
        assert json.loads(capsys.readouterr().out)["dry_run"] is True

    def test_bad_configuration(self, monkeypatch):
        monkeypatch.setenv("DB_BACKEND", "oracle")
        assert self._main("status") == 1
