"""Tests for shared domain types package."""

import json

from libs.domain_types import (
    IQClassification,
    ItemCategory,
    SessionStatus,
    StopReason,
)


class TestItemCategory:
    """Tests for ItemCategory enum."""

    def test_values(self):
        assert {c.value for c in ItemCategory} == {
            "pattern_recognition",
            "spatial_reasoning",
            "logical_deduction",
            "numerical_reasoning",
            "short_term_memory",
        }

    def test_str_mixin(self):
        assert ItemCategory("spatial_reasoning") == ItemCategory.SPATIAL_REASONING

    def test_json_serializable(self):
        assert json.dumps(ItemCategory.SHORT_TERM_MEMORY) == '"short_term_memory"'

    def test_count(self):
        assert len(ItemCategory) == 5


class TestSessionStatus:
    """Tests for SessionStatus enum."""

    def test_non_terminal_states(self):
        assert not SessionStatus.NOT_STARTED.is_terminal
        assert not SessionStatus.IN_PROGRESS.is_terminal

    def test_terminal_states(self):
        terminal = {s for s in SessionStatus if s.is_terminal}
        assert terminal == {
            SessionStatus.COMPLETED_BY_PRECISION,
            SessionStatus.COMPLETED_BY_ITEM_LIMIT,
            SessionStatus.COMPLETED_BY_TIMEOUT,
            SessionStatus.ABANDONED,
        }


class TestStopReason:
    def test_string_values(self):
        assert StopReason.SE_THRESHOLD.value == "se_threshold"
        assert StopReason.SELECTION_EXHAUSTED.value == "selection_exhausted"


class TestIQClassification:
    def test_count(self):
        assert len(IQClassification) == 7
