# ============================================================================
# PROGRESS CALCULATIONS FOR RUNS AND SUBTASKS
# ============================================================================
# STATUS: Core - Pure calculation functions
# PURPOSE: Percent complete and items-weighted rollup
# ============================================================================
"""
Progress Calculations for Runs and Subtasks.

The store never derives a run's overall percent from its subtasks.
Callers that want a rollup compute it here and pass it to task_update.

Exports:
    calculate_completion_percentage: Percent of items done
    items_weighted_percent: Rollup across subtasks weighted by items_total
"""

from typing import Iterable

from ..models.enums import SubtaskStatus
from ..models.run import SubtaskProgressRecord


def calculate_completion_percentage(completed: int, total: int) -> float:
    """
    Calculate completion percentage.

    Args:
        completed: Number of completed items
        total: Total number of items

    Returns:
        Completion percentage between 0.0 and 100.0 (capped)
    """
    if not total or total <= 0:
        return 0.0
    return min(100.0, (max(completed, 0) / total) * 100.0)


def items_weighted_percent(subtasks: Iterable[SubtaskProgressRecord]) -> float:
    """
    Items-weighted percent complete across subtasks.

    Completed subtasks count as fully done. Subtasks without items_total
    contribute their own percent_complete with weight 1.
    """
    weighted = 0.0
    weight = 0.0
    for st in subtasks:
        if st.items_total and st.items_total > 0:
            w = float(st.items_total)
            if st.status == SubtaskStatus.COMPLETED:
                pct = 100.0
            else:
                pct = calculate_completion_percentage(st.items_complete or 0, st.items_total)
        else:
            w = 1.0
            if st.status == SubtaskStatus.COMPLETED:
                pct = 100.0
            else:
                pct = st.percent_complete or 0.0
        weighted += w * pct
        weight += w
    if weight == 0:
        return 0.0
    return round(weighted / weight, 2)
