"""
State Transition Logic for Task Runs and Subtasks.

Contains business rules for valid state transitions.
Separated from data models for clean architecture.

Terminal states are final: unlike non-terminal states, a terminal state
does not even allow a transition to itself.

Exports:
    can_run_transition: Check if run state transition is valid
    can_subtask_transition: Check if subtask state transition is valid
    get_run_terminal_states / get_subtask_terminal_states
    get_run_active_states / get_subtask_active_states
    get_run_open_states / get_subtask_open_states
    is_run_terminal / is_subtask_terminal
    cascade_subtask_status: Subtask outcome implied by a terminal run
    parse_run_status / parse_subtask_status: Boundary validation
    run_sources_for / subtask_sources_for: Statuses allowed to reach a target

Dependencies:
    core.models.enums: RunStatus, SubtaskStatus
    exceptions: InvalidArgumentError
"""

from enum import Enum
from typing import List, Union

from exceptions import InvalidArgumentError
from ..models.enums import RunStatus, SubtaskStatus


def can_run_transition(current: RunStatus, target: RunStatus) -> bool:
    """
    Check if a task run can transition from current to target status.

    Args:
        current: Current run status
        target: Target run status

    Returns:
        True if transition is valid, False otherwise
    """
    if current == target:
        return not is_run_terminal(current)

    transitions = {
        RunStatus.NOT_STARTED: [
            RunStatus.STARTED,
            RunStatus.SKIPPED,
            RunStatus.CANCELLED
        ],
        RunStatus.STARTED: [
            RunStatus.RUNNING,
            RunStatus.COMPLETED,
            RunStatus.FAILED,
            RunStatus.SKIPPED,
            RunStatus.CANCELLED
        ],
        RunStatus.RUNNING: [
            RunStatus.COMPLETED,
            RunStatus.FAILED,
            RunStatus.SKIPPED,
            RunStatus.CANCELLED
        ],
        RunStatus.COMPLETED: [],  # Terminal state
        RunStatus.FAILED: [],  # Terminal state
        RunStatus.SKIPPED: [],  # Terminal state
        RunStatus.CANCELLED: []  # Terminal state
    }

    return target in transitions.get(current, [])


def can_subtask_transition(current: SubtaskStatus, target: SubtaskStatus) -> bool:
    """
    Check if a subtask can transition from current to target status.

    Args:
        current: Current subtask status
        target: Target subtask status

    Returns:
        True if transition is valid, False otherwise
    """
    if current == target:
        return not is_subtask_terminal(current)

    transitions = {
        SubtaskStatus.NOT_STARTED: [
            SubtaskStatus.STARTED,
            SubtaskStatus.SKIPPED
        ],
        SubtaskStatus.STARTED: [
            SubtaskStatus.RUNNING,
            SubtaskStatus.COMPLETED,
            SubtaskStatus.FAILED,
            SubtaskStatus.SKIPPED
        ],
        SubtaskStatus.RUNNING: [
            SubtaskStatus.COMPLETED,
            SubtaskStatus.FAILED,
            SubtaskStatus.SKIPPED
        ],
        SubtaskStatus.COMPLETED: [],  # Terminal state
        SubtaskStatus.FAILED: [],  # Terminal state
        SubtaskStatus.SKIPPED: []  # Terminal state
    }

    return target in transitions.get(current, [])


def get_run_terminal_states() -> List[RunStatus]:
    """
    Get list of terminal states for task runs.

    Returns:
        List of terminal run statuses
    """
    return [
        RunStatus.COMPLETED,
        RunStatus.FAILED,
        RunStatus.SKIPPED,
        RunStatus.CANCELLED
    ]


def get_run_active_states() -> List[RunStatus]:
    """
    Get list of states in which a run has a live process.

    Returns:
        List of active run statuses
    """
    return [
        RunStatus.STARTED,
        RunStatus.RUNNING
    ]


def get_run_open_states() -> List[RunStatus]:
    """Non-terminal run states (active plus NOT_STARTED)."""
    return [RunStatus.NOT_STARTED] + get_run_active_states()


def get_subtask_terminal_states() -> List[SubtaskStatus]:
    """
    Get list of terminal states for subtasks.

    Returns:
        List of terminal subtask statuses
    """
    return [
        SubtaskStatus.COMPLETED,
        SubtaskStatus.FAILED,
        SubtaskStatus.SKIPPED
    ]


def get_subtask_active_states() -> List[SubtaskStatus]:
    """
    Get list of states in which a subtask accepts increments.

    Returns:
        List of active subtask statuses
    """
    return [
        SubtaskStatus.STARTED,
        SubtaskStatus.RUNNING
    ]


def get_subtask_open_states() -> List[SubtaskStatus]:
    """Non-terminal subtask states (active plus NOT_STARTED)."""
    return [SubtaskStatus.NOT_STARTED] + get_subtask_active_states()


def is_run_terminal(status: RunStatus) -> bool:
    """
    Check if run is in terminal state.

    Args:
        status: Run status to check

    Returns:
        True if status is terminal
    """
    return status in get_run_terminal_states()


def is_subtask_terminal(status: SubtaskStatus) -> bool:
    """
    Check if subtask is in terminal state.

    Args:
        status: Subtask status to check

    Returns:
        True if status is terminal
    """
    return status in get_subtask_terminal_states()


def cascade_subtask_status(run_status: RunStatus) -> SubtaskStatus:
    """
    Terminal subtask status applied to a run's open subtasks when the run ends.

    A cancelled run has no subtask equivalent; its open subtasks are skipped.

    Raises:
        InvalidArgumentError: run_status is not terminal
    """
    mapping = {
        RunStatus.COMPLETED: SubtaskStatus.COMPLETED,
        RunStatus.FAILED: SubtaskStatus.FAILED,
        RunStatus.SKIPPED: SubtaskStatus.SKIPPED,
        RunStatus.CANCELLED: SubtaskStatus.SKIPPED,
    }
    if run_status not in mapping:
        raise InvalidArgumentError(f"{run_status.value} is not a terminal run status")
    return mapping[run_status]


def parse_run_status(value: Union[str, RunStatus]) -> RunStatus:
    """
    Validate a run status at the API boundary.

    Accepts an enum member or its (case-insensitive) string value.

    Raises:
        InvalidArgumentError: value is not a RunStatus
    """
    if isinstance(value, RunStatus):
        return value
    if isinstance(value, Enum):
        value = value.value
    try:
        return RunStatus(str(value).strip().upper())
    except ValueError:
        raise InvalidArgumentError(
            f"Invalid run status: {value!r}. Must be one of: "
            f"{', '.join(s.value for s in RunStatus)}"
        )


def parse_subtask_status(value: Union[str, SubtaskStatus]) -> SubtaskStatus:
    """
    Validate a subtask status at the API boundary.

    Raises:
        InvalidArgumentError: value is not a SubtaskStatus
    """
    if isinstance(value, SubtaskStatus):
        return value
    if isinstance(value, Enum):
        value = value.value
    try:
        return SubtaskStatus(str(value).strip().upper())
    except ValueError:
        raise InvalidArgumentError(
            f"Invalid subtask status: {value!r}. Must be one of: "
            f"{', '.join(s.value for s in SubtaskStatus)}"
        )


def run_sources_for(target: RunStatus) -> List[RunStatus]:
    """Run statuses from which target is reachable (UPDATE guard values)."""
    return [s for s in RunStatus if can_run_transition(s, target)]


def subtask_sources_for(target: SubtaskStatus) -> List[SubtaskStatus]:
    """Subtask statuses from which target is reachable (UPDATE guard values)."""
    return [s for s in SubtaskStatus if can_subtask_transition(s, target)]
