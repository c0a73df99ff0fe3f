"""
Tests for CAT stopping rules.

Tests cover:
- SE threshold rule gated by minimum items
- Maximum items rule
- Global time limit rule
- Priority: time limit > max items > SE threshold
- Disabled limits
- Status mapping for every stop reason
- Diagnostic details and input validation
"""
import math

import pytest

from libs.domain_types import SessionStatus, StopReason
from iqcat.core.cat.stopping_rules import (
    MAX_ITEMS,
    MIN_ITEMS,
    SE_THRESHOLD,
    STATUS_FOR_REASON,
    TIME_LIMIT_SECONDS,
    check_stopping_criteria,
)


class TestSEThreshold:
    def test_stops_at_threshold_after_min_items(self):
        decision = check_stopping_criteria(se=SE_THRESHOLD, num_items=MIN_ITEMS)
        assert decision.should_stop is True
        assert decision.reason == StopReason.SE_THRESHOLD
        assert decision.status == SessionStatus.COMPLETED_BY_PRECISION

    def test_not_before_min_items(self):
        decision = check_stopping_criteria(se=0.1, num_items=MIN_ITEMS - 1)
        assert decision.should_stop is False
        assert decision.reason is None
        assert decision.status is None

    def test_above_threshold_continues(self):
        decision = check_stopping_criteria(se=SE_THRESHOLD + 0.01, num_items=10)
        assert decision.should_stop is False

    def test_zero_threshold_never_stops_on_precision(self):
        decision = check_stopping_criteria(se=1e-6, num_items=10, se_threshold=0.0)
        assert decision.should_stop is False


class TestMaxItems:
    def test_stops_at_max_regardless_of_se(self):
        decision = check_stopping_criteria(se=2.0, num_items=MAX_ITEMS)
        assert decision.should_stop is True
        assert decision.reason == StopReason.MAX_ITEMS
        assert decision.status == SessionStatus.COMPLETED_BY_ITEM_LIMIT

    def test_small_budget(self):
        decision = check_stopping_criteria(
            se=0.9, num_items=3, min_items=0, max_items=3
        )
        assert decision.reason == StopReason.MAX_ITEMS


class TestTimeLimit:
    def test_stops_when_expired(self):
        decision = check_stopping_criteria(
            se=0.9, num_items=2, elapsed_seconds=TIME_LIMIT_SECONDS
        )
        assert decision.reason == StopReason.TIME_LIMIT
        assert decision.status == SessionStatus.COMPLETED_BY_TIMEOUT

    def test_disabled_time_limit(self):
        decision = check_stopping_criteria(
            se=0.9, num_items=2, elapsed_seconds=1e9, time_limit_seconds=math.inf
        )
        assert decision.should_stop is False


class TestPriority:
    def test_time_beats_max_items_and_precision(self):
        decision = check_stopping_criteria(
            se=0.1,
            num_items=MAX_ITEMS,
            elapsed_seconds=TIME_LIMIT_SECONDS + 1,
        )
        assert decision.reason == StopReason.TIME_LIMIT

    def test_max_items_beats_precision(self):
        decision = check_stopping_criteria(se=0.1, num_items=MAX_ITEMS)
        assert decision.reason == StopReason.MAX_ITEMS


class TestDetails:
    def test_details_populated(self):
        decision = check_stopping_criteria(se=0.5, num_items=4, elapsed_seconds=12.0)
        assert decision.details == {
            "se": 0.5,
            "num_items": 4,
            "elapsed_seconds": 12.0,
            "se_threshold": SE_THRESHOLD,
            "min_items_met": False,
            "at_max_items": False,
            "time_expired": False,
        }


class TestValidation:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"se": -0.1, "num_items": 1},
            {"se": float("nan"), "num_items": 1},
            {"se": 0.5, "num_items": -1},
            {"se": 0.5, "num_items": 1, "elapsed_seconds": -1.0},
            {"se": 0.5, "num_items": 1, "elapsed_seconds": float("nan")},
        ],
    )
    def test_invalid_inputs(self, kwargs):
        with pytest.raises(ValueError):
            check_stopping_criteria(**kwargs)


def test_every_stop_reason_has_a_terminal_status():
    assert set(STATUS_FOR_REASON) == set(StopReason)
    assert all(status.is_terminal for status in STATUS_FOR_REASON.values())
    assert (
        STATUS_FOR_REASON[StopReason.SELECTION_EXHAUSTED]
        == SessionStatus.COMPLETED_BY_ITEM_LIMIT
    )
