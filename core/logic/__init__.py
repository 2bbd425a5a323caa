"""
Core Business Logic Package.

Contains business logic that operates on pure data models.
Separated from models to maintain clean architecture.

Exports:
    State transitions: can_run_transition, can_subtask_transition, is_run_terminal, ...
    Calculations: calculate_completion_percentage, items_weighted_percent, ...
"""

# State transitions
from .transitions import (
    can_run_transition,
    can_subtask_transition,
    get_run_terminal_states,
    get_run_active_states,
    get_run_open_states,
    get_subtask_terminal_states,
    get_subtask_active_states,
    get_subtask_open_states,
    is_run_terminal,
    is_subtask_terminal,
    cascade_subtask_status,
    parse_run_status,
    parse_subtask_status,
    run_sources_for,
    subtask_sources_for
)

# Calculations
from .calculations import (
    calculate_completion_percentage,
    items_weighted_percent
)

__all__ = [
    # State transitions
    'can_run_transition',
    'can_subtask_transition',
    'get_run_terminal_states',
    'get_run_active_states',
    'get_run_open_states',
    'get_subtask_terminal_states',
    'get_subtask_active_states',
    'get_subtask_open_states',
    'is_run_terminal',
    'is_subtask_terminal',
    'cascade_subtask_status',
    'parse_run_status',
    'parse_subtask_status',
    'run_sources_for',
    'subtask_sources_for',

    # Calculations
    'calculate_completion_percentage',
    'items_weighted_percent',
]
