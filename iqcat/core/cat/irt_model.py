"""
Three-parameter logistic (3PL) IRT model.

Response probability for an item with discrimination ``a``, difficulty ``b``
and pseudo-guessing ``c`` at ability ``theta``:

    P(theta) = c + (1 - c) / (1 + exp(-a * (theta - b)))

Fisher information:

    I(theta) = a^2 * (P - c)^2 * (1 - P) / ((1 - c)^2 * P)

Writing ``s = 1 / (1 + exp(-a * (theta - b)))`` gives ``P - c = (1 - c) * s``
and ``1 - P = (1 - c) * (1 - s)``, so information reduces to

    I(theta) = a^2 * (1 - c) * s^2 * (1 - s) / P

which is what is computed here. The logistic is evaluated in its
overflow-free form and ``P`` is clamped away from zero before dividing.

All functions are pure and deterministic.
"""

import math
from typing import Iterable, NamedTuple

# Lower clamp applied to P(theta) before it is used as a divisor or log argument.
PROB_EPSILON = 1e-10

# Floor for summed test information, so SE = 1/sqrt(info) stays finite.
MIN_TEST_INFORMATION = 1e-12

# SE is never reported as zero or negative.
SE_FLOOR = 1e-6


class ItemParameters(NamedTuple):
    """Calibrated 3PL parameters of one item."""

    a: float  # discrimination
    b: float  # difficulty
    c: float  # pseudo-guessing


def validate_parameters(a: float, b: float, c: float) -> None:
    """
    Check that (a, b, c) lie in the 3PL domain.

    Raises:
        ValueError: If a is not a positive finite number, b is not finite,
            or c is outside [0, 1).
    """
    if not math.isfinite(a) or a <= 0:
        raise ValueError(f"Discrimination parameter must be positive, got {a}")
    if not math.isfinite(b):
        raise ValueError(f"Difficulty parameter must be finite, got {b}")
    if not math.isfinite(c) or not (0.0 <= c < 1.0):
        raise ValueError(f"Guessing parameter must be in [0, 1), got {c}")


def logistic(logit: float) -> float:
    """Numerically stable sigmoid."""
    if logit >= 0:
        return 1.0 / (1.0 + math.exp(-logit))
    exp_logit = math.exp(logit)
    return exp_logit / (1.0 + exp_logit)


def probability_3pl(theta: float, a: float, b: float, c: float) -> float:
    """
    Probability of a correct response under the 3PL model.

    Args:
        theta: Ability value.
        a: Discrimination (> 0).
        b: Difficulty.
        c: Pseudo-guessing, in [0, 1).

    Returns:
        P(correct | theta), in [c, 1].
    """
    validate_parameters(a, b, c)
    return c + (1.0 - c) * logistic(a * (theta - b))


def fisher_information_3pl(theta: float, a: float, b: float, c: float) -> float:
    """
    Fisher information of a 3PL item at ``theta``.

    Args:
        theta: Ability value.
        a: Discrimination (> 0).
        b: Difficulty.
        c: Pseudo-guessing, in [0, 1).

    Returns:
        Information value (non-negative, finite).

    Raises:
        ValueError: If the parameters are outside the 3PL domain.
    """
    validate_parameters(a, b, c)
    s = logistic(a * (theta - b))
    prob = max(PROB_EPSILON, c + (1.0 - c) * s)
    return (a**2) * (1.0 - c) * (s**2) * (1.0 - s) / prob


def total_information(theta: float, items: Iterable[ItemParameters]) -> float:
    """Sum of item information at ``theta`` over ``items``."""
    return sum(fisher_information_3pl(theta, p.a, p.b, p.c) for p in items)


def standard_error(theta: float, items: Iterable[ItemParameters]) -> float:
    """
    Standard error of measurement at ``theta``: ``1 / sqrt(test information)``.

    Information is floored at ``MIN_TEST_INFORMATION`` and the result at
    ``SE_FLOOR`` so the value is always finite and strictly positive.
    """
    information = max(MIN_TEST_INFORMATION, total_information(theta, items))
    return max(SE_FLOOR, 1.0 / math.sqrt(information))
