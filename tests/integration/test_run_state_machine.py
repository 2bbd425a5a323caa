"""
Run and subtask state machine against a real (SQLite) store.
"""

import os
import socket
import threading
from datetime import timedelta

import pytest

from core.models import RunStatus, SubtaskStatus
from core.state_manager import FAILED_SUBTASK_MESSAGE
from core.utils import generate_run_id
from exceptions import InvalidArgumentError, InvalidTransitionError, NotFoundError
from infrastructure.retention_repository import RetentionRepository


@pytest.fixture
def run(state_machine, registered_task):
    return state_machine.start_run(registered_task.task_id, total_subtasks=3, message="go")


# ============================================================================
# RUNS
# ============================================================================

class TestStartRun:

    def test_defaults_to_calling_process(self, run):
        assert run.status == RunStatus.STARTED
        assert run.hostname == socket.gethostname()
        assert run.process_id == os.getpid()
        assert run.parent_pid == os.getppid()
        assert run.total_subtasks == 3
        assert run.overall_progress_message == "go"
        assert run.start_time is not None and run.start_time.tzinfo is not None

    def test_every_start_is_a_new_run(self, state_machine, registered_task):
        first = state_machine.start_run(registered_task.task_id)
        second = state_machine.start_run(registered_task.task_id)
        assert first.run_id != second.run_id

    def test_metadata_round_trip(self, state_machine, registered_task):
        run = state_machine.start_run(registered_task.task_id, metadata={"batch": "2026-10-01"})
        assert state_machine.tracking.get_run(run.run_id).metadata == {"batch": "2026-10-01"}

    def test_unknown_task(self, state_machine):
        with pytest.raises(NotFoundError):
            state_machine.start_run(999999)

    def test_negative_total(self, state_machine, registered_task):
        with pytest.raises(InvalidArgumentError):
            state_machine.start_run(registered_task.task_id, total_subtasks=-1)


class TestUpdateRun:

    def test_progress(self, state_machine, run):
        updated = state_machine.update_run(run.run_id, overall_percent=42.5, message="half way")
        assert updated.status == RunStatus.RUNNING
        assert updated.overall_percent_complete == pytest.approx(42.5)
        assert updated.overall_progress_message == "half way"

    @pytest.mark.parametrize("percent", [-0.1, 100.1, "lots"])
    def test_percent_range(self, state_machine, run, percent):
        with pytest.raises(InvalidArgumentError):
            state_machine.update_run(run.run_id, overall_percent=percent)

    def test_unknown_run(self, state_machine):
        with pytest.raises(NotFoundError):
            state_machine.update_run(generate_run_id(), overall_percent=1)

    def test_bad_status(self, state_machine, run):
        with pytest.raises(InvalidArgumentError):
            state_machine.update_run(run.run_id, status="DONE")

    def test_terminal_status_is_routed_to_finish(self, state_machine, run):
        state_machine.start_subtask(run.run_id, 1, "open")
        finished = state_machine.update_run(run.run_id, status="completed")
        assert finished.status == RunStatus.COMPLETED
        assert finished.end_time is not None
        assert state_machine.tracking.get_subtask(run.run_id, 1).status == SubtaskStatus.COMPLETED


# ============================================================================
# TERMINAL TRANSITIONS
# ============================================================================

class TestFinishRun:

    def test_complete_cascades_and_schedules_retention(self, state_machine, run, driver):
        state_machine.start_subtask(run.run_id, 1, "a", items_total=10)
        state_machine.start_subtask(run.run_id, 2, "b")
        state_machine.skip_subtask(run.run_id, 2, message="not needed")

        done = state_machine.complete_run(run.run_id, message="all good")
        assert done.status == RunStatus.COMPLETED
        assert done.overall_percent_complete == 100.0

        first, second = state_machine.tracking.get_subtasks(run.run_id)
        assert first.status == SubtaskStatus.COMPLETED
        assert first.percent_complete == 100.0
        assert first.end_time is not None
        assert second.status == SubtaskStatus.SKIPPED

        record = RetentionRepository(driver).get_record(run.run_id)
        assert record is not None
        assert record.metrics_deleted is False
        assert record.metrics_delete_after - record.task_completed_at == timedelta(days=30)

    def test_fail_cascades_with_message(self, state_machine, run):
        state_machine.start_subtask(run.run_id, 1, "done")
        state_machine.complete_subtask(run.run_id, 1)
        state_machine.start_subtask(run.run_id, 2, "open")

        failed = state_machine.fail_run(run.run_id, "disk full", error_detail="Traceback ...")
        assert failed.status == RunStatus.FAILED
        assert failed.error_message == "disk full"
        assert failed.error_detail == "Traceback ..."

        done, open_one = state_machine.tracking.get_subtasks(run.run_id)
        assert done.status == SubtaskStatus.COMPLETED
        assert done.error_message is None
        assert open_one.status == SubtaskStatus.FAILED
        assert open_one.error_message == FAILED_SUBTASK_MESSAGE

    def test_fail_requires_message(self, state_machine, run):
        with pytest.raises(InvalidArgumentError):
            state_machine.fail_run(run.run_id, "")

    def test_cancel_skips_open_subtasks(self, state_machine, run):
        state_machine.start_subtask(run.run_id, 1, "open")
        cancelled = state_machine.cancel_run(run.run_id)
        assert cancelled.status == RunStatus.CANCELLED
        assert state_machine.tracking.get_subtask(run.run_id, 1).status == SubtaskStatus.SKIPPED

    def test_skip_without_subtasks(self, state_machine, run):
        assert state_machine.skip_run(run.run_id).status == RunStatus.SKIPPED

    @pytest.mark.parametrize("finish", ["complete_run", "skip_run", "cancel_run"])
    def test_terminal_is_final(self, state_machine, run, finish):
        getattr(state_machine, finish)(run.run_id)
        with pytest.raises(InvalidTransitionError) as exc_info:
            state_machine.update_run(run.run_id, overall_percent=10)
        assert exc_info.value.current_status is not None
        with pytest.raises(InvalidTransitionError):
            state_machine.complete_run(run.run_id)
        with pytest.raises(InvalidTransitionError):
            state_machine.fail_run(run.run_id, "late failure")
        with pytest.raises(InvalidTransitionError):
            state_machine.start_subtask(run.run_id, 1, "late")

    @pytest.mark.parametrize("finish", ["complete_run", "cancel_run", "skip_run"])
    def test_second_finish_leaves_row_untouched(self, state_machine, run, finish):
        state_machine.update_run(run.run_id, overall_percent=40, message="partway")
        getattr(state_machine, finish)(run.run_id)
        before = state_machine.tracking.get_run(run.run_id)

        with pytest.raises(InvalidTransitionError):
            state_machine.complete_run(run.run_id, message="again")

        after = state_machine.tracking.get_run(run.run_id)
        assert after.status == before.status
        assert after.end_time == before.end_time
        assert after.overall_percent_complete == before.overall_percent_complete
        assert after.overall_progress_message == before.overall_progress_message

    def test_racing_finishers_one_wins(self, state_machine, run):
        outcomes = []
        barrier = threading.Barrier(2)

        def finish(op):
            barrier.wait()
            try:
                op()
                outcomes.append("won")
            except InvalidTransitionError:
                outcomes.append("lost")

        threads = [
            threading.Thread(target=finish, args=(lambda: state_machine.complete_run(run.run_id),)),
            threading.Thread(target=finish, args=(lambda: state_machine.fail_run(run.run_id, "x"),)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert sorted(outcomes) == ["lost", "won"]
        assert state_machine.tracking.get_run(run.run_id).is_terminal


# ============================================================================
# SUBTASKS
# ============================================================================

class TestSubtasks:

    def test_start_promotes_run(self, state_machine, run):
        subtask = state_machine.start_subtask(run.run_id, 2, "Download", items_total=500)
        assert subtask.status == SubtaskStatus.STARTED
        assert subtask.items_total == 500
        assert subtask.items_complete == 0
        current = state_machine.tracking.get_run(run.run_id)
        assert current.status == RunStatus.RUNNING
        assert current.current_subtask == 2

    def test_restart_before_running(self, state_machine, run):
        state_machine.start_subtask(run.run_id, 1, "first name", items_total=5)
        again = state_machine.start_subtask(run.run_id, 1, None, items_total=8)
        assert again.subtask_name == "first name"
        assert again.items_total == 8

    def test_no_restart_once_running(self, state_machine, run):
        state_machine.start_subtask(run.run_id, 1, "a")
        state_machine.update_subtask(run.run_id, 1, percent=10)
        with pytest.raises(InvalidTransitionError):
            state_machine.start_subtask(run.run_id, 1, "a")

    def test_update_and_complete(self, state_machine, run):
        state_machine.start_subtask(run.run_id, 1, "a", items_total=4)
        running = state_machine.update_subtask(run.run_id, 1, percent=50, items_complete=2, message="2/4")
        assert running.status == SubtaskStatus.RUNNING
        assert running.progress_message == "2/4"
        done = state_machine.complete_subtask(run.run_id, 1, items_completed=4)
        assert done.status == SubtaskStatus.COMPLETED
        assert done.items_complete == 4
        assert done.percent_complete == 100.0

    def test_terminal_subtask_is_final(self, state_machine, run):
        state_machine.start_subtask(run.run_id, 1, "a")
        state_machine.fail_subtask(run.run_id, 1, "bad input")
        with pytest.raises(InvalidTransitionError):
            state_machine.update_subtask(run.run_id, 1, percent=80)
        with pytest.raises(InvalidTransitionError):
            state_machine.complete_subtask(run.run_id, 1)
        with pytest.raises(InvalidTransitionError):
            state_machine.start_subtask(run.run_id, 1, "a")

    def test_update_status_routes_to_terminal(self, state_machine, run):
        state_machine.start_subtask(run.run_id, 1, "a")
        failed = state_machine.update_subtask(run.run_id, 1, status="FAILED", message="oops")
        assert failed.status == SubtaskStatus.FAILED
        assert failed.error_message == "oops"

    def test_never_started_subtask(self, state_machine, run):
        with pytest.raises(NotFoundError):
            state_machine.update_subtask(run.run_id, 9, percent=1)

    def test_subtask_of_unknown_run(self, state_machine):
        with pytest.raises(NotFoundError):
            state_machine.start_subtask(generate_run_id(), 1, "x")

    @pytest.mark.parametrize("number", [0, -1, True, "1"])
    def test_bad_subtask_number(self, state_machine, run, number):
        with pytest.raises(InvalidArgumentError):
            state_machine.start_subtask(run.run_id, number, "x")


# ============================================================================
# RESET AND STATUS QUERIES
# ============================================================================

class TestResetAndQueries:

    def test_reset_one_run(self, state_machine, registered_task):
        keep = state_machine.start_run(registered_task.task_id)
        drop = state_machine.start_run(registered_task.task_id)
        state_machine.start_subtask(drop.run_id, 1, "a")
        assert state_machine.reset_task(registered_task.task_id, run_id=drop.run_id) == 1
        assert state_machine.tracking.get_run(drop.run_id) is None
        assert state_machine.tracking.get_subtasks(drop.run_id) == []
        assert state_machine.tracking.get_run(keep.run_id) is not None

    def test_reset_all_runs(self, state_machine, registered_task):
        for _ in range(3):
            state_machine.start_run(registered_task.task_id)
        assert state_machine.reset_task(registered_task.task_id) == 3

    def test_run_status_view(self, state_machine, registered_task, run):
        views = state_machine.tracking.get_run_status(run_id=run.run_id)
        assert len(views) == 1
        assert views[0].task_name == registered_task.task_name
        assert views[0].stage_name == registered_task.stage_name

    def test_active_runs_by_host(self, state_machine, registered_task, run):
        other = state_machine.start_run(registered_task.task_id, hostname="elsewhere")
        here = {r.run_id for r in state_machine.tracking.get_active_runs(hostname=socket.gethostname())}
        assert run.run_id in here
        assert other.run_id not in here
        state_machine.complete_run(run.run_id)
        here = {r.run_id for r in state_machine.tracking.get_active_runs(hostname=socket.gethostname())}
        assert run.run_id not in here

    def test_task_history_newest_first(self, state_machine, registered_task):
        runs = [state_machine.start_run(registered_task.task_id) for _ in range(3)]
        history = state_machine.tracking.get_task_history(task_name=registered_task.task_name)
        assert [h.run_id for h in history] == [r.run_id for r in reversed(runs)]
