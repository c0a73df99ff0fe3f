"""Shared domain types for the iqcat engine.

This package is the single source of truth for the closed enumerations that
cross the engine boundary: item categories, session status, stop reasons and
the IQ classification bands reported to the display layer.

Usage:
    from libs.domain_types import ItemCategory, SessionStatus
"""

import enum


class ItemCategory(str, enum.Enum):
    """Cognitive categories an item can belong to."""

    PATTERN_RECOGNITION = "pattern_recognition"
    SPATIAL_REASONING = "spatial_reasoning"
    LOGICAL_DEDUCTION = "logical_deduction"
    NUMERICAL_REASONING = "numerical_reasoning"
    SHORT_TERM_MEMORY = "short_term_memory"


class SessionStatus(str, enum.Enum):
    """Lifecycle status of an adaptive test session."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED_BY_PRECISION = "completed_by_precision"
    COMPLETED_BY_ITEM_LIMIT = "completed_by_item_limit"
    COMPLETED_BY_TIMEOUT = "completed_by_timeout"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self not in (SessionStatus.NOT_STARTED, SessionStatus.IN_PROGRESS)


class StopReason(str, enum.Enum):
    """Why a session reached a terminal status."""

    SE_THRESHOLD = "se_threshold"
    MAX_ITEMS = "max_items"
    SELECTION_EXHAUSTED = "selection_exhausted"
    TIME_LIMIT = "time_limit"
    ABANDONED = "abandoned"


class IQClassification(str, enum.Enum):
    """Descriptive IQ bands (Wechsler convention)."""

    VERY_SUPERIOR = "very_superior"
    SUPERIOR = "superior"
    HIGH_AVERAGE = "high_average"
    AVERAGE = "average"
    LOW_AVERAGE = "low_average"
    BORDERLINE = "borderline"
    EXTREMELY_LOW = "extremely_low"


__all__ = [
    "ItemCategory",
    "SessionStatus",
    "StopReason",
    "IQClassification",
]
