"""
Tracker facade: context-implicit calls, lookup by stage/task/filename,
worker hand-off and find-or-start.
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from core.models import RunStatus, SubtaskStatus
from core.tracker import Tracker
from exceptions import (
    AmbiguousMatchError,
    InvalidArgumentError,
    InvalidTransitionError,
    NoActiveContextError,
    NotFoundError,
)


@pytest.fixture
def pipeline(registration):
    """Two stages; DAILY holds two scripts whose names overlap."""
    return {
        "prices": registration.register_task(
            stage_name="DAILY", stage_order=1, task_name="load prices", task_order=1,
            script_path="/opt/jobs/daily/test_script_01.R"),
        "volumes": registration.register_task(
            stage_name="DAILY", stage_order=1, task_name="load volumes", task_order=2,
            script_path="/opt/jobs/daily/test_script_02.R"),
        "publish": registration.register_task(
            stage_name="WEEKLY", stage_order=2, task_name="publish", task_order=1,
            script_path="/opt/jobs/weekly/publish.py"),
    }


# ============================================================================
# CONTEXT-IMPLICIT FLOW
# ============================================================================

class TestContextFlow:

    def test_full_script_lifecycle(self, tracker, pipeline):
        run = tracker.task_start(filename="/somewhere/else/test_script_01.R", total_subtasks=2)
        assert run.task_id == pipeline["prices"].task_id

        first = tracker.subtask_start("Download", items_total=3)
        assert first.subtask_number == 1
        for _ in range(3):
            tracker.subtask_increment()
        tracker.subtask_complete()

        second = tracker.subtask_start("Transform")
        assert second.subtask_number == 2
        tracker.subtask_update(percent=50, message="halfway")
        tracker.task_update(overall_percent=75)

        done = tracker.task_complete("finished")
        assert done.status == RunStatus.COMPLETED
        assert tracker.context.current_run() is None

        subtasks = tracker.subtasks(run.run_id)
        assert [s.status for s in subtasks] == [SubtaskStatus.COMPLETED, SubtaskStatus.COMPLETED]
        assert subtasks[0].items_complete == 3

    def test_calls_without_run(self, tracker):
        with pytest.raises(NoActiveContextError):
            tracker.subtask_start("orphan")
        with pytest.raises(NoActiveContextError):
            tracker.task_complete()

    def test_calls_without_subtask(self, tracker, pipeline):
        tracker.task_start(pipeline["publish"].task_id)
        with pytest.raises(NoActiveContextError):
            tracker.subtask_increment()

    def test_explicit_ids_win_over_context(self, tracker, state_machine, pipeline):
        active = tracker.task_start(pipeline["prices"].task_id)
        other = state_machine.start_run(pipeline["volumes"].task_id)

        sub = tracker.subtask_start("side", run_id=other.run_id)
        assert sub.run_id == other.run_id
        assert sub.subtask_number == 1
        assert tracker.subtask_increment(run_id=other.run_id, subtask_number=1) == 1
        tracker.task_fail("side run broke", run_id=other.run_id)

        assert tracker.context.current_run() == active.run_id

    def test_subtask_number_required_for_inactive_run(self, tracker, state_machine, pipeline):
        tracker.task_start(pipeline["prices"].task_id)
        other = state_machine.start_run(pipeline["volumes"].task_id)
        state_machine.start_subtask(other.run_id, 1, "x")
        with pytest.raises(InvalidArgumentError):
            tracker.subtask_complete(run_id=other.run_id)

    def test_failed_task_fails_open_subtask(self, tracker, pipeline):
        tracker.task_start(pipeline["publish"].task_id)
        tracker.subtask_start("upload")
        tracker.task_fail("network down")
        subtask = tracker.state.tracking.get_subtask(
            tracker.state.tracking.latest_run_for_task(pipeline["publish"].task_id).run_id, 1)
        assert subtask.status == SubtaskStatus.FAILED

    def test_task_update_with_terminal_status_clears_context(self, tracker, pipeline):
        tracker.task_start(pipeline["publish"].task_id)
        tracker.task_update(status="SKIPPED", message="nothing to publish")
        assert tracker.context.current_run() is None

    def test_worker_snapshot(self, driver, tracker, pipeline):
        tracker.task_start(pipeline["prices"].task_id)
        tracker.subtask_start("fan out", items_total=10)
        worker = Tracker.for_worker(tracker.export_context(), driver=driver)
        assert worker.subtask_increment(delta=4) == 4
        assert tracker.subtask_increment(delta=6) == 10

    def test_late_increment_after_completion(self, driver, tracker, pipeline):
        tracker.task_start(pipeline["prices"].task_id)
        tracker.subtask_start("items")
        worker = Tracker.for_worker(tracker.export_context().to_json(), driver=driver)
        tracker.subtask_complete()
        with pytest.raises(InvalidTransitionError):
            worker.subtask_increment()

    def test_rejected_start_leaves_context_alone(self, tracker, pipeline):
        tracker.task_start(pipeline["prices"].task_id)
        with pytest.raises(InvalidArgumentError):
            tracker.subtask_start("bad", items_total=-1)
        assert tracker.context.current_subtask() is None
        assert tracker.export_context().subtask_number is None
        assert tracker.subtask_start("good").subtask_number == 1

    def test_rejected_start_keeps_previous_subtask_current(self, tracker, pipeline):
        tracker.task_start(pipeline["prices"].task_id)
        tracker.subtask_start("first")
        tracker.subtask_increment()
        with pytest.raises(InvalidArgumentError):
            tracker.subtask_start("bad", items_total=-1)
        with pytest.raises(InvalidTransitionError):
            tracker.subtask_start("again", subtask_number=1)
        assert tracker.context.current_subtask() == 1
        assert tracker.subtask_start("second").subtask_number == 2

    def test_workers_follow_reexported_context(self, driver, tracker, pipeline):
        tracker.task_start(pipeline["prices"].task_id)
        tracker.subtask_start("first", items_total=5)
        stale = tracker.export_context()
        tracker.subtask_complete()

        tracker.subtask_start("second", items_total=8)
        fresh = tracker.export_context()
        assert stale.subtask_number == 1
        assert fresh.subtask_number == 2

        def work(_):
            return Tracker.for_worker(fresh.to_json(), driver=driver).subtask_increment()

        with ThreadPoolExecutor(max_workers=8) as pool:
            values = sorted(pool.map(work, range(8)))

        assert values == list(range(1, 9))
        first, second = tracker.subtasks()
        assert first.status == SubtaskStatus.COMPLETED
        assert second.items_complete == 8
        assert second.percent_complete == 100.0
        with pytest.raises(InvalidTransitionError):
            Tracker.for_worker(stale, driver=driver).subtask_increment()


# ============================================================================
# LOOKUP
# ============================================================================

class TestLookup:

    def test_ambiguous_filename(self, tracker, pipeline):
        with pytest.raises(AmbiguousMatchError) as exc_info:
            tracker.task_start(filename="test_script")
        assert len(exc_info.value.candidates) == 2

    def test_exact_filename(self, tracker, pipeline):
        run = tracker.task_start(filename="test_script_02.R")
        assert run.task_id == pipeline["volumes"].task_id

    def test_unknown_filename(self, tracker, pipeline):
        with pytest.raises(NotFoundError):
            tracker.task_start(filename="nope.R")

    def test_stage_and_task_orders(self, tracker, pipeline):
        task = tracker.resolver.resolve_task(stage=1, task=2)
        assert task.task_id == pipeline["volumes"].task_id

    def test_task_order_is_ambiguous_without_stage(self, tracker, pipeline):
        with pytest.raises(AmbiguousMatchError):
            tracker.resolver.resolve_task(task=1)

    def test_partial_names(self, tracker, pipeline):
        task = tracker.resolver.resolve_task(stage="week", task="pub")
        assert task.task_id == pipeline["publish"].task_id

    def test_stage_filter_narrows_partial_task_name(self, tracker, pipeline):
        with pytest.raises(AmbiguousMatchError):
            tracker.resolver.resolve_task(task="load")
        assert tracker.resolver.resolve_task(stage="DAILY", task="volumes").task_id == \
            pipeline["volumes"].task_id

    def test_unknown_stage(self, tracker, pipeline):
        with pytest.raises(NotFoundError):
            tracker.resolver.resolve_task(stage="MONTHLY", task="publish")

    def test_needs_task_or_filename(self, tracker, pipeline):
        with pytest.raises(InvalidArgumentError):
            tracker.resolver.resolve_task(stage="DAILY")

    def test_find_run_latest(self, tracker, state_machine, pipeline):
        state_machine.start_run(pipeline["publish"].task_id)
        latest = state_machine.start_run(pipeline["publish"].task_id)
        assert tracker.find_run(task="publish").run_id == latest.run_id

    def test_find_run_never_run(self, tracker, pipeline):
        with pytest.raises(NotFoundError):
            tracker.find_run(task="publish")

    def test_find_run_activate_resumes_numbering(self, tracker, state_machine, pipeline):
        run = state_machine.start_run(pipeline["publish"].task_id)
        state_machine.start_subtask(run.run_id, 1, "a")
        state_machine.start_subtask(run.run_id, 2, "b")
        tracker.find_run(filename="publish.py", activate=True)
        assert tracker.subtask_start("c").subtask_number == 3


class TestFindOrStart:

    def test_returns_active_run(self, tracker, state_machine, pipeline):
        active = state_machine.start_run(pipeline["publish"].task_id)
        found = tracker.find_or_start_run(task="publish")
        assert found.run_id == active.run_id
        assert tracker.context.current_run() == active.run_id

    def test_starts_when_latest_is_terminal(self, tracker, state_machine, pipeline):
        old = state_machine.start_run(pipeline["publish"].task_id)
        state_machine.complete_run(old.run_id)
        started = tracker.find_or_start_run(task="publish", total_subtasks=4)
        assert started.run_id != old.run_id
        assert started.status == RunStatus.STARTED
        assert started.total_subtasks == 4

    def test_starts_when_never_run(self, tracker, pipeline):
        started = tracker.find_or_start_run(filename="test_script_01.R")
        assert started.task_id == pipeline["prices"].task_id
        assert tracker.subtask_start("first").subtask_number == 1
