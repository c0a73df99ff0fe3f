"""
Stopping rules for Computerized Adaptive Testing (CAT).

Evaluated after every response. The test stops if any of the following
holds, checked in priority order:

    1. Time limit: elapsed session time reached the global limit (forced,
       regardless of precision)
    2. Maximum items: the item budget has been used
    3. SE threshold: SE(theta) <= SE_THRESHOLD, once MIN_ITEMS have been
       administered

A fourth condition, selection exhaustion (no eligible item left), is only
known once the next selection has been attempted. The session engine checks
it after these rules report that the test should continue, so it has the
lowest priority.

The minimum item count guards against stopping on a spuriously low early SE.
Any limit may be disabled by passing an unreachable bound: ``math.inf`` for
time, ``0.0`` for precision (SE is floored above zero), a very large item
count.

References:
    - Weiss, D. J., & Kingsbury, G. G. (1984). Application of computerized
      adaptive testing to educational problems. Journal of Educational
      Measurement, 21(4), 361-375.
    - van der Linden, W. J., & Glas, C. A. W. (Eds.). (2010). Elements of
      adaptive testing. New York: Springer.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Optional

from libs.domain_types import SessionStatus, StopReason

logger = logging.getLogger(__name__)

# Primary stopping criterion: SE(theta) threshold
# SE = 0.30 corresponds to reliability ~0.91 (reliability = 1 - SE²)
SE_THRESHOLD = 0.30

# Minimum items before precision stopping is allowed
MIN_ITEMS = 8

# Maximum items (safety limit to prevent excessive test length)
MAX_ITEMS = 15

# Global session time limit in seconds
TIME_LIMIT_SECONDS = 1800.0

# Terminal status reached for each stop reason
STATUS_FOR_REASON = {
    StopReason.TIME_LIMIT: SessionStatus.COMPLETED_BY_TIMEOUT,
    StopReason.MAX_ITEMS: SessionStatus.COMPLETED_BY_ITEM_LIMIT,
    StopReason.SE_THRESHOLD: SessionStatus.COMPLETED_BY_PRECISION,
    StopReason.SELECTION_EXHAUSTED: SessionStatus.COMPLETED_BY_ITEM_LIMIT,
    StopReason.ABANDONED: SessionStatus.ABANDONED,
}


@dataclass
class StoppingDecision:
    """
    Result of evaluating stopping criteria for a CAT session.

    Attributes:
        should_stop: Whether the test should terminate.
        reason: Primary reason for stopping (if should_stop=True), or None.
        details: Diagnostic information including:
            - se: Current standard error of theta
            - num_items: Number of items administered
            - elapsed_seconds: Elapsed session time
            - se_threshold: Configured SE threshold
            - min_items_met: Whether minimum items requirement is satisfied
            - at_max_items: Whether maximum items limit has been reached
            - time_expired: Whether the global time limit has been reached
    """

    should_stop: bool
    reason: Optional[StopReason]
    details: Dict[str, Any]

    @property
    def status(self) -> Optional[SessionStatus]:
        """Terminal status implied by ``reason``, or None when continuing."""
        if self.reason is None:
            return None
        return STATUS_FOR_REASON[self.reason]


def check_stopping_criteria(
    se: float,
    num_items: int,
    elapsed_seconds: float = 0.0,
    se_threshold: float = SE_THRESHOLD,
    min_items: int = MIN_ITEMS,
    max_items: int = MAX_ITEMS,
    time_limit_seconds: float = TIME_LIMIT_SECONDS,
) -> StoppingDecision:
    """
    Evaluate all stopping criteria and determine whether the session should stop.

    Args:
        se: Current standard error of the ability estimate.
        num_items: Number of items administered so far.
        elapsed_seconds: Elapsed global session time.
        se_threshold: Target SE for stopping.
        min_items: Minimum items before precision stopping is allowed.
        max_items: Maximum items.
        time_limit_seconds: Global session time limit.

    Returns:
        StoppingDecision with should_stop flag, reason, and diagnostic details.

    Raises:
        ValueError: If se is negative or NaN, num_items is negative, or
            elapsed_seconds is negative or NaN.
    """
    if math.isnan(se) or se < 0:
        raise ValueError(f"Standard error must be non-negative, got {se}")
    if num_items < 0:
        raise ValueError(f"Number of items must be non-negative, got {num_items}")
    if math.isnan(elapsed_seconds) or elapsed_seconds < 0:
        raise ValueError(
            f"Elapsed time must be non-negative, got {elapsed_seconds}"
        )

    details: Dict[str, Any] = {
        "se": se,
        "num_items": num_items,
        "elapsed_seconds": elapsed_seconds,
        "se_threshold": se_threshold,
        "min_items_met": num_items >= min_items,
        "at_max_items": num_items >= max_items,
        "time_expired": elapsed_seconds >= time_limit_seconds,
    }

    # Rule 1: Time limit, forced stop regardless of precision
    if details["time_expired"]:
        logger.info(
            f"Stopping: time limit reached ({elapsed_seconds:.1f}s "
            f">= {time_limit_seconds:.1f}s) after {num_items} items"
        )
        return StoppingDecision(
            should_stop=True, reason=StopReason.TIME_LIMIT, details=details
        )

    # Rule 2: Maximum items
    if details["at_max_items"]:
        logger.info(f"Stopping: reached maximum items ({num_items}/{max_items})")
        return StoppingDecision(
            should_stop=True, reason=StopReason.MAX_ITEMS, details=details
        )

    # Rule 3: SE threshold, gated by minimum items
    if details["min_items_met"] and se <= se_threshold:
        logger.info(
            f"Stopping: SE threshold met (SE={se:.4f} <= {se_threshold:.4f}) "
            f"after {num_items} items"
        )
        return StoppingDecision(
            should_stop=True, reason=StopReason.SE_THRESHOLD, details=details
        )

    logger.debug(
        f"Continuing: SE={se:.4f} (threshold={se_threshold:.4f}), "
        f"items={num_items}/{max_items} (min {min_items})"
    )
    return StoppingDecision(should_stop=False, reason=None, details=details)
