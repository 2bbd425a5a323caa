"""
Progress calculation tests.
"""

import pytest

from core.logic.calculations import (
    calculate_completion_percentage,
    items_weighted_percent,
)
from core.models import SubtaskProgressRecord, SubtaskStatus
from tests.factories.model_factories import make_subtask_record


def _subtask(**fields) -> SubtaskProgressRecord:
    return SubtaskProgressRecord(**make_subtask_record(**fields))


class TestCompletionPercentage:

    @pytest.mark.parametrize("completed,total,expected", [
        (0, 10, 0.0),
        (5, 10, 50.0),
        (10, 10, 100.0),
        (15, 10, 100.0),
        (3, 0, 0.0),
        (-2, 10, 0.0),
    ])
    def test_values(self, completed, total, expected):
        assert calculate_completion_percentage(completed, total) == pytest.approx(expected)

    def test_none_total(self):
        assert calculate_completion_percentage(4, None) == 0.0


class TestItemsWeightedPercent:

    def test_empty(self):
        assert items_weighted_percent([]) == 0.0

    def test_weighted_by_items_total(self):
        big = _subtask(subtask_number=1, items_total=900, items_complete=0)
        small = _subtask(subtask_number=2, items_total=100, items_complete=100)
        assert items_weighted_percent([big, small]) == pytest.approx(10.0)

    def test_completed_subtask_counts_as_done(self):
        done = _subtask(status=SubtaskStatus.COMPLETED, items_total=50, items_complete=10)
        assert items_weighted_percent([done]) == pytest.approx(100.0)

    def test_subtask_without_items_uses_its_percent(self):
        plain = _subtask(items_total=None, items_complete=None, percent_complete=40.0)
        counted = _subtask(items_total=1, items_complete=0)
        assert items_weighted_percent([plain, counted]) == pytest.approx(20.0)
