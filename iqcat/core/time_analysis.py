"""
Response time analysis and anomaly detection.

Identifies timing patterns of a finished session that may indicate validity
concerns such as random clicking, automation or external assistance. The
analysis reads only the session's own responses; it never influences
ability estimation or termination.

Anomaly Thresholds:
- Too fast: < 2 seconds (likely random clicking)
- Too slow: longer than the item's time limit
- Rushed session: < 5 seconds average
- Uniform timing: coefficient of variation < 0.1 over >= 3 responses
- Hard items: > 90% correct on items with difficulty label > 7
"""

import logging
import statistics
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)


# =============================================================================
# RESPONSE TIME ANOMALY THRESHOLDS
# =============================================================================

# Minimum time to reasonably read and answer an item (seconds)
MIN_RESPONSE_TIME_SECONDS = 2.0

# Minimum average time per item for a valid session (seconds)
MIN_AVERAGE_TIME_SECONDS = 5.0

# Share of too-fast responses that flags the session
RAPID_RESPONSE_RATIO = 0.3

# Share of too-slow responses that flags the session
EXTENDED_RESPONSE_RATIO = 0.1

# Latencies more uniform than this coefficient of variation suggest automation
MIN_COEFFICIENT_OF_VARIATION = 0.1
MIN_RESPONSES_FOR_VARIATION = 3

# Accuracy on hard items above this share is suspicious
HARD_ITEM_DIFFICULTY_LABEL = 7
HARD_ITEM_ACCURACY_THRESHOLD = 0.9
MIN_HARD_ITEMS_FOR_ACCURACY_CHECK = 3

# Flags that, when present, mark the session as a validity concern
VALIDITY_CONCERN_FLAGS = frozenset(
    {
        "rushed_session",
        "multiple_rapid_responses",
        "uniform_response_times",
        "high_accuracy_on_hard_items",
    }
)


@dataclass(frozen=True)
class TimedResponse:
    """Timing view of one answered item."""

    item_id: str
    latency_seconds: float
    is_correct: bool
    difficulty_label: int
    time_limit_seconds: float
    timed_out: bool = False


def analyze_response_times(responses: Sequence[TimedResponse]) -> Dict[str, Any]:
    """
    Analyze response time patterns for one session.

    Args:
        responses: Answered items in administration order. Pending
            (unanswered) items must not be included.

    Returns:
        Dictionary containing timing analysis:
        {
            "total_time_seconds": float,         # Sum of all latencies
            "mean_time_per_question": float,     # Average latency
            "median_time_per_question": float,   # Median latency
            "std_time_per_question": float,      # Standard deviation
            "coefficient_of_variation": float,   # std / mean
            "response_count": int,
            "timed_out_count": int,              # No-answer timeouts
            "anomalies": [                       # Per-item anomalies
                {
                    "item_id": str,
                    "time_seconds": float,
                    "anomaly_type": str,         # "too_fast" or "too_slow"
                    "z_score": float or None,
                    "difficulty_label": int
                }
            ],
            "flags": [str],                      # Summary flags for the session
            "validity_concern": bool,            # True if significant concerns exist
            "rapid_response_count": int,
            "extended_response_count": int
        }
    """
    if not responses:
        return _create_empty_analysis()

    times = [r.latency_seconds for r in responses]
    total_time = sum(times)
    mean_time = statistics.mean(times)
    median_time = statistics.median(times)

    std_time: Optional[float] = None
    if len(times) >= 2:
        std_time = statistics.stdev(times)

    coefficient_of_variation: Optional[float] = None
    if std_time is not None and mean_time > 0:
        coefficient_of_variation = std_time / mean_time

    anomalies: List[Dict[str, Any]] = []
    rapid_count = 0
    extended_count = 0

    for r in responses:
        z_score = None
        if std_time:
            z_score = round((r.latency_seconds - mean_time) / std_time, 3)

        # Timeouts are counted separately, never as too slow
        anomaly_type = None
        if r.timed_out:
            anomaly_type = None
        elif r.latency_seconds < MIN_RESPONSE_TIME_SECONDS:
            anomaly_type = "too_fast"
            rapid_count += 1
        elif r.latency_seconds > r.time_limit_seconds:
            anomaly_type = "too_slow"
            extended_count += 1

        if anomaly_type is not None:
            anomalies.append(
                {
                    "item_id": r.item_id,
                    "time_seconds": r.latency_seconds,
                    "anomaly_type": anomaly_type,
                    "z_score": z_score,
                    "difficulty_label": r.difficulty_label,
                }
            )

    flags = []

    if mean_time < MIN_AVERAGE_TIME_SECONDS:
        flags.append("rushed_session")

    if rapid_count > len(responses) * RAPID_RESPONSE_RATIO:
        flags.append("multiple_rapid_responses")

    if extended_count > len(responses) * EXTENDED_RESPONSE_RATIO:
        flags.append("multiple_extended_times")

    if (
        len(responses) >= MIN_RESPONSES_FOR_VARIATION
        and coefficient_of_variation is not None
        and coefficient_of_variation < MIN_COEFFICIENT_OF_VARIATION
    ):
        flags.append("uniform_response_times")

    hard = [r for r in responses if r.difficulty_label > HARD_ITEM_DIFFICULTY_LABEL]
    if len(hard) >= MIN_HARD_ITEMS_FOR_ACCURACY_CHECK:
        hard_accuracy = sum(1 for r in hard if r.is_correct) / len(hard)
        if hard_accuracy > HARD_ITEM_ACCURACY_THRESHOLD:
            flags.append("high_accuracy_on_hard_items")

    validity_concern = any(flag in VALIDITY_CONCERN_FLAGS for flag in flags)

    logger.debug(
        f"Analyzed {len(responses)} responses: mean={mean_time:.1f}s, "
        f"anomalies={len(anomalies)}, flags={flags}, "
        f"validity_concern={validity_concern}"
    )

    return {
        "total_time_seconds": round(total_time, 3),
        "mean_time_per_question": round(mean_time, 2),
        "median_time_per_question": round(median_time, 2),
        "std_time_per_question": round(std_time, 2) if std_time is not None else None,
        "coefficient_of_variation": (
            round(coefficient_of_variation, 4)
            if coefficient_of_variation is not None
            else None
        ),
        "response_count": len(responses),
        "timed_out_count": sum(1 for r in responses if r.timed_out),
        "anomalies": anomalies,
        "flags": flags,
        "validity_concern": validity_concern,
        "rapid_response_count": rapid_count,
        "extended_response_count": extended_count,
    }


def _create_empty_analysis() -> Dict[str, Any]:
    """Analysis result for sessions with no answered items."""
    return {
        "total_time_seconds": 0.0,
        "mean_time_per_question": None,
        "median_time_per_question": None,
        "std_time_per_question": None,
        "coefficient_of_variation": None,
        "response_count": 0,
        "timed_out_count": 0,
        "anomalies": [],
        "flags": ["no_responses"],
        "validity_concern": False,
        "rapid_response_count": 0,
        "extended_response_count": 0,
    }


def get_session_time_summary(analysis: Dict[str, Any]) -> Dict[str, Any]:
    """
    Compact summary of a response time analysis for storage.

    Args:
        analysis: Full analysis result from analyze_response_times()

    Returns:
        {
            "rapid_responses": int,
            "extended_times": int,
            "rushed_session": bool,
            "validity_concern": bool,
            "mean_time": float or None,
            "flags": [str]
        }
    """
    return {
        "rapid_responses": analysis.get("rapid_response_count", 0),
        "extended_times": analysis.get("extended_response_count", 0),
        "rushed_session": "rushed_session" in analysis.get("flags", []),
        "validity_concern": analysis.get("validity_concern", False),
        "mean_time": analysis.get("mean_time_per_question"),
        "flags": analysis.get("flags", []),
    }
