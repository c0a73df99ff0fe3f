r"""
Reliability statistics for adaptive test results.

Per session:
    - Cronbach's alpha computed from the session's own binary responses.
      An adaptive session has a single response vector, so the responses are
      folded into consecutive pairs (1st/2nd, 3rd/4th, ...). Each pair is an
      observation and the two positions are the parts of a two-part alpha:

          α = (k / (k-1)) × (1 - Σσ²ᵢ / σ²ₜ),  k = 2

      Items differ across sessions and within a pair, so this is a
      split-half style proxy, not a fixed-form alpha. It is None when there
      are fewer than two pairs or the pair totals have zero variance.
    - Marginal reliability: 1 - SE² / σ²_prior, clamped to [0, 1].
    - Measurement precision: 1 / SE.

Across sessions (offline bank analysis):
    - :func:`cronbachs_alpha` on a complete sessions × items matrix.
    - :func:`alpha_across_results` builds that matrix from finalized results,
      keeping items answered in enough sessions and sessions that answered
      all of them.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Sequence, TypedDict

import numpy as np

if TYPE_CHECKING:
    from iqcat.core.cat.scoring import Result

logger = logging.getLogger(__name__)

# Standard psychometric thresholds for reliability interpretation.
ALPHA_THRESHOLDS = {
    "excellent": 0.90,  # α ≥ 0.90: Excellent internal consistency
    "good": 0.80,  # α ≥ 0.80: Good internal consistency
    "acceptable": 0.70,  # α ≥ 0.70: Acceptable internal consistency
    "questionable": 0.60,  # α ≥ 0.60: Questionable internal consistency
    "poor": 0.50,  # α ≥ 0.50: Poor internal consistency
    # α < 0.50: Unacceptable
}

# Minimum alpha considered acceptable for a released bank
ALPHA_ACCEPTABLE_THRESHOLD = 0.70

# Items must appear in at least this share of sessions for cross-session alpha
MIN_ITEM_APPEARANCE_RATIO = 0.30

INSUFFICIENT_DATA = "insufficient_data"


@dataclass(frozen=True)
class ReliabilityReport:
    """
    Reliability statistics of one session.

    Attributes:
        cronbachs_alpha: Two-part alpha over consecutive response pairs,
            or None when undefined.
        num_pairs: Number of complete response pairs used.
        marginal_reliability: 1 - SE² / prior variance, in [0, 1].
        precision: 1 / SE.
        interpretation: Band of ``cronbachs_alpha`` ("excellent" ...
            "unacceptable"), or "insufficient_data".
    """

    cronbachs_alpha: Optional[float]
    num_pairs: int
    marginal_reliability: float
    precision: float
    interpretation: str


class CronbachsAlphaResult(TypedDict):
    """
    Result structure for cross-session Cronbach's alpha.

    Fields:
        cronbachs_alpha: The alpha coefficient, or None if it could not be
            computed.
        num_sessions: Number of sessions (rows) used.
        num_items: Number of items (columns) used.
        interpretation: Band of the alpha value, or None.
        meets_threshold: Whether alpha >= ALPHA_ACCEPTABLE_THRESHOLD.
        error: Error message if calculation failed, None otherwise.
        insufficient_data: True if calculation failed for lack of data.
    """

    cronbachs_alpha: Optional[float]
    num_sessions: int
    num_items: int
    interpretation: Optional[str]
    meets_threshold: bool
    error: Optional[str]
    insufficient_data: bool


def interpret_alpha(alpha: float) -> str:
    """
    Interpretation string for a Cronbach's alpha value.

    Returns:
        "excellent", "good", "acceptable", "questionable", "poor", or
        "unacceptable"
    """
    if alpha >= ALPHA_THRESHOLDS["excellent"]:
        return "excellent"
    elif alpha >= ALPHA_THRESHOLDS["good"]:
        return "good"
    elif alpha >= ALPHA_THRESHOLDS["acceptable"]:
        return "acceptable"
    elif alpha >= ALPHA_THRESHOLDS["questionable"]:
        return "questionable"
    elif alpha >= ALPHA_THRESHOLDS["poor"]:
        return "poor"
    else:
        return "unacceptable"


def cronbachs_alpha(matrix: Sequence[Sequence[float]]) -> Optional[float]:
    """
    Cronbach's alpha of a complete observations × items score matrix.

    Uses sample variances (ddof=1).

    Returns:
        Alpha, or None with fewer than 2 rows, fewer than 2 columns, or zero
        total-score variance.

    Raises:
        ValueError: If the rows are ragged.
    """
    scores = np.asarray(matrix, dtype=float)
    if scores.ndim != 2:
        raise ValueError("Score matrix must be two-dimensional with equal-length rows")

    n_obs, k = scores.shape
    if n_obs < 2 or k < 2:
        return None

    total_variance = float(np.var(scores.sum(axis=1), ddof=1))
    if total_variance == 0.0:
        return None

    item_variance_sum = float(np.var(scores, axis=0, ddof=1).sum())
    return (k / (k - 1)) * (1.0 - item_variance_sum / total_variance)


def session_alpha(outcomes: Sequence[bool]) -> Optional[float]:
    """Two-part alpha over consecutive pairs of a single response vector."""
    pairs = [
        (float(outcomes[i]), float(outcomes[i + 1]))
        for i in range(0, len(outcomes) - 1, 2)
    ]
    if len(pairs) < 2:
        return None
    return cronbachs_alpha(pairs)


def marginal_reliability(se: float, prior_sd: float = 1.0) -> float:
    """1 - SE² / prior variance, clamped to [0, 1]."""
    if se < 0:
        raise ValueError(f"se must be non-negative, got {se}")
    if prior_sd <= 0:
        raise ValueError(f"prior_sd must be positive, got {prior_sd}")
    return max(0.0, min(1.0, 1.0 - (se**2) / (prior_sd**2)))


def build_reliability_report(
    outcomes: Sequence[bool],
    se: float,
    prior_sd: float = 1.0,
) -> ReliabilityReport:
    """
    Reliability statistics of one session from its actual responses.

    Args:
        outcomes: Correctness of each answered item, in administration order.
        se: Final standard error of theta (must be positive).
        prior_sd: SD of the ability prior, the reference variance for
            marginal reliability.
    """
    if se <= 0:
        raise ValueError(f"se must be positive, got {se}")

    alpha = session_alpha(outcomes)
    interpretation = INSUFFICIENT_DATA if alpha is None else interpret_alpha(alpha)

    return ReliabilityReport(
        cronbachs_alpha=alpha,
        num_pairs=len(outcomes) // 2,
        marginal_reliability=marginal_reliability(se, prior_sd),
        precision=1.0 / se,
        interpretation=interpretation,
    )


def alpha_across_results(
    results: Iterable["Result"],
    min_appearance_ratio: float = MIN_ITEM_APPEARANCE_RATIO,
) -> CronbachsAlphaResult:
    """
    Cronbach's alpha across finalized sessions.

    Builds a sessions × items matrix where values are 1 (correct) or 0
    (incorrect). Adaptive sessions see different items, so only items
    answered in at least ``min_appearance_ratio`` of sessions are kept, and
    only sessions that answered all kept items contribute rows.

    Args:
        results: Finalized session results.
        min_appearance_ratio: Minimum share of sessions an item must appear in.

    Returns:
        CronbachsAlphaResult.
    """
    result: CronbachsAlphaResult = {
        "cronbachs_alpha": None,
        "num_sessions": 0,
        "num_items": 0,
        "interpretation": None,
        "meets_threshold": False,
        "error": None,
        "insufficient_data": False,
    }

    session_responses: List[Dict[str, int]] = []
    item_sessions: Dict[str, int] = defaultdict(int)
    for session_result in results:
        answers = {
            step.item_id: 1 if step.is_correct else 0
            for step in session_result.progression
        }
        session_responses.append(answers)
        for item_id in answers:
            item_sessions[item_id] += 1

    num_sessions = len(session_responses)
    min_appearances = max(2, int(num_sessions * min_appearance_ratio))
    eligible_items = sorted(
        item_id for item_id, count in item_sessions.items() if count >= min_appearances
    )

    if len(eligible_items) < 2:
        result["error"] = (
            f"Insufficient items: only {len(eligible_items)} items appear "
            f"in enough sessions (need at least 2)"
        )
        result["insufficient_data"] = True
        logger.warning(
            f"Cronbach's alpha: not enough common items. Only "
            f"{len(eligible_items)} items appear in >= {min_appearances} sessions"
        )
        return result

    matrix = [
        [answers[item_id] for item_id in eligible_items]
        for answers in session_responses
        if all(item_id in answers for item_id in eligible_items)
    ]
    result["num_items"] = len(eligible_items)
    result["num_sessions"] = len(matrix)

    alpha = cronbachs_alpha(matrix) if matrix else None
    if alpha is None:
        result["error"] = (
            f"Insufficient data: {len(matrix)} complete sessions over "
            f"{len(eligible_items)} items, or zero score variance"
        )
        result["insufficient_data"] = True
        return result

    result["cronbachs_alpha"] = round(alpha, 4)
    result["interpretation"] = interpret_alpha(alpha)
    result["meets_threshold"] = alpha >= ALPHA_ACCEPTABLE_THRESHOLD

    logger.info(
        f"Cronbach's alpha calculated: {alpha:.4f} ({result['interpretation']}) "
        f"from {len(matrix)} sessions and {len(eligible_items)} items"
    )
    return result
