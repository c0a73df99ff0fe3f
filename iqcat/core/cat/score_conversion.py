"""
IRT-based score conversion for Computerized Adaptive Testing.

Converts final theta (ability) estimates to IQ scores, confidence intervals,
percentile ranks and descriptive classifications, and summarises per-category
performance from the adaptive response pattern.

IQ Scale Transformation:
    IQ = 100 + (θ × 15)

    Where:
        θ = ability estimate (mean 0, SD 1 on the latent trait scale)
        15 = IQ standard deviation (Wechsler convention)
        100 = IQ mean

Confidence Interval:
    CI = IQ ± (z × SE(θ) × 15)

    z is the two-sided standard normal quantile for the configured confidence
    level (1.96 for 95%). Multiplying SE(θ) by 15 converts it to IQ-scale SEM.

Percentile Rank:
    percentile = Φ(θ) × 100

    Where Φ is the standard normal CDF. Uses the theta directly (equivalent
    to using unclamped IQ) to avoid distortion from boundary clamping.
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

from scipy.stats import norm

from libs.domain_types import IQClassification, ItemCategory

logger = logging.getLogger(__name__)

# IQ scale parameters
IQ_MEAN = 100.0
IQ_POPULATION_SD = 15.0

# Display range for IQ scores and CI bounds
IQ_LOWER_BOUND = 40
IQ_UPPER_BOUND = 160

DEFAULT_CONFIDENCE_LEVEL = 0.95

# Lower bound (inclusive) of each classification band, highest first
IQ_CLASSIFICATION_BANDS: Tuple[Tuple[int, IQClassification], ...] = (
    (130, IQClassification.VERY_SUPERIOR),
    (120, IQClassification.SUPERIOR),
    (110, IQClassification.HIGH_AVERAGE),
    (90, IQClassification.AVERAGE),
    (80, IQClassification.LOW_AVERAGE),
    (70, IQClassification.BORDERLINE),
)


@dataclass(frozen=True)
class IQResult:
    """Result of converting a theta estimate to the IQ scale.

    Attributes:
        iq_score: IQ score clamped to [40, 160].
        ci_lower: Lower bound of the CI, clamped to [40, 160].
        ci_upper: Upper bound of the CI, clamped to [40, 160].
        se: Standard error on the IQ scale (SE(theta) × 15).
        percentile: Percentile rank (0-100) from the standard normal CDF.
            Uses the unclamped theta for accuracy at extremes.
        confidence_level: Coverage of the CI (e.g. 0.95).
        classification: Descriptive band of ``iq_score``.
    """

    iq_score: int
    ci_lower: int
    ci_upper: int
    se: float
    percentile: float
    confidence_level: float
    classification: IQClassification


@dataclass(frozen=True)
class CategoryScore:
    """Per-category performance summary from adaptive responses.

    ``accuracy`` is on a 0-100 scale and is None (undefined, not zero) when no
    item of the category was answered. The means are None for the same reason.
    """

    category: ItemCategory
    items_administered: int
    correct_count: int
    accuracy: Optional[float]
    mean_latency_seconds: Optional[float]
    mean_difficulty_label: Optional[float]


def z_for_confidence(confidence_level: float) -> float:
    """Two-sided standard normal quantile, e.g. 1.96 for 0.95."""
    if not (0.0 < confidence_level < 1.0):
        raise ValueError(
            f"confidence_level must be in (0, 1), got {confidence_level}"
        )
    return float(norm.ppf(0.5 + confidence_level / 2.0))


def classify_iq(iq_score: float) -> IQClassification:
    """
    Descriptive classification of an IQ score.

    Very Superior (>=130), Superior (120-129), High Average (110-119),
    Average (90-109), Low Average (80-89), Borderline (70-79),
    Extremely Low (<70).
    """
    for lower, classification in IQ_CLASSIFICATION_BANDS:
        if iq_score >= lower:
            return classification
    return IQClassification.EXTREMELY_LOW


def theta_to_iq(
    theta: float,
    se: float,
    confidence_level: float = DEFAULT_CONFIDENCE_LEVEL,
) -> IQResult:
    """
    Convert a theta ability estimate to an IQ-scale result.

    The confidence interval is computed from the unclamped IQ to preserve
    statistical validity, then clamped to [40, 160] for display. The
    percentile is computed from the unclamped theta to avoid distortion
    at the boundaries.

    Args:
        theta: Ability estimate (typically in [-4, 4]).
        se: Standard error of the theta estimate. Must be non-negative.
        confidence_level: Coverage of the confidence interval.

    Returns:
        IQResult with IQ score, CI bounds, IQ-scale SE, percentile and
        classification.

    Raises:
        ValueError: If se is negative, if theta/se is NaN or infinite, or if
            confidence_level is outside (0, 1).

    Examples:
        >>> result = theta_to_iq(0.0, 0.30)
        >>> result.iq_score
        100
        >>> result.percentile
        50.0

        >>> theta_to_iq(1.0, 0.28).iq_score
        115
    """
    if math.isnan(theta) or math.isinf(theta):
        raise ValueError(f"theta must be finite, got {theta}")
    if math.isnan(se) or math.isinf(se):
        raise ValueError(f"se must be finite, got {se}")
    if se < 0:
        raise ValueError(f"se must be non-negative, got {se}")

    z = z_for_confidence(confidence_level)

    # Convert theta to IQ (unclamped for internal calculations)
    raw_iq = IQ_MEAN + (theta * IQ_POPULATION_SD)

    # Clamp IQ for display
    iq_score = int(max(IQ_LOWER_BOUND, min(IQ_UPPER_BOUND, round(raw_iq))))

    # Convert SE to IQ scale
    iq_se = se * IQ_POPULATION_SD

    # CI from unclamped IQ, then clamp bounds
    margin = z * iq_se
    ci_lower = int(max(IQ_LOWER_BOUND, min(IQ_UPPER_BOUND, round(raw_iq - margin))))
    ci_upper = int(max(IQ_LOWER_BOUND, min(IQ_UPPER_BOUND, round(raw_iq + margin))))

    # Percentile from unclamped theta (avoids clamping distortion)
    percentile = round(float(norm.cdf(theta)) * 100, 1)

    logger.debug(
        f"theta_to_iq: theta={theta:.3f}, se={se:.3f} -> "
        f"IQ={iq_score}, CI=[{ci_lower}, {ci_upper}], percentile={percentile}"
    )

    return IQResult(
        iq_score=iq_score,
        ci_lower=ci_lower,
        ci_upper=ci_upper,
        se=round(iq_se, 2),
        percentile=percentile,
        confidence_level=confidence_level,
        classification=classify_iq(iq_score),
    )


def calculate_category_scores(
    responses: Iterable[Tuple[ItemCategory, bool, float, int]],
) -> Dict[ItemCategory, CategoryScore]:
    """
    Per-category accuracy and detail from adaptive test responses.

    Every category appears in the result. Categories with no responses
    report ``accuracy=None`` rather than 0.

    Note: these are accuracy-based metrics, not per-category ability
    estimates. A short adaptive test rarely gives enough items per category
    for a stable per-category theta.

    Args:
        responses: (category, is_correct, latency_seconds, difficulty_label)
            tuples, one per answered item.

    Returns:
        Dictionary mapping category to CategoryScore.

    Examples:
        >>> scores = calculate_category_scores([
        ...     (ItemCategory.PATTERN_RECOGNITION, True, 10.0, 5),
        ...     (ItemCategory.PATTERN_RECOGNITION, False, 20.0, 6),
        ... ])
        >>> scores[ItemCategory.PATTERN_RECOGNITION].accuracy
        50.0
        >>> scores[ItemCategory.SHORT_TERM_MEMORY].accuracy is None
        True
    """
    totals: Dict[ItemCategory, Dict[str, float]] = {
        category: {"total": 0, "correct": 0, "latency": 0.0, "label": 0}
        for category in ItemCategory
    }

    for category, is_correct, latency, label in responses:
        stats = totals[category]
        stats["total"] += 1
        stats["latency"] += latency
        stats["label"] += label
        if is_correct:
            stats["correct"] += 1

    result: Dict[ItemCategory, CategoryScore] = {}
    for category, stats in totals.items():
        total = int(stats["total"])
        correct = int(stats["correct"])
        if total == 0:
            result[category] = CategoryScore(
                category=category,
                items_administered=0,
                correct_count=0,
                accuracy=None,
                mean_latency_seconds=None,
                mean_difficulty_label=None,
            )
            continue
        result[category] = CategoryScore(
            category=category,
            items_administered=total,
            correct_count=correct,
            accuracy=round(correct / total * 100, 1),
            mean_latency_seconds=round(stats["latency"] / total, 3),
            mean_difficulty_label=round(stats["label"] / total, 2),
        )

    return result
