"""
Ability estimation for Computerized Adaptive Testing under the 3PL model.

Two estimators are provided. A session picks one and uses it for every update.

EAP (Expected A Posteriori, default):
    theta_hat = integral(theta * L(theta) * prior(theta)) / integral(L(theta) * prior(theta))
    SE = posterior standard deviation

    Evaluated by rectangular quadrature over the configured theta range with a
    normal prior. Robust to all-correct / all-incorrect patterns, and the
    posterior mean moves up after every correct response and down after every
    incorrect one (Bock & Mislevy, 1982).

MLE (Maximum Likelihood):
    Newton-Raphson on the log-likelihood using expected information as the
    curvature (Fisher scoring), SE = 1 / sqrt(sum of item information).

    The likelihood of an all-correct or all-incorrect pattern is monotonic and
    has no interior maximum, so until both outcomes have been observed theta is
    moved by a fixed step in the direction of the responses, capped at the
    theta range. The same step update is used when Newton-Raphson produces a
    non-finite value, fails to converge or converges onto a range bound.

    Every update is bounded by the direction of the latest response: after a
    correct answer theta never falls below the previous estimate, after an
    incorrect one it never rises above it. SE is evaluated at the bounded
    theta.
"""

import logging
import math
from typing import Optional, Sequence, Tuple

import numpy as np

from iqcat.core.cat.irt_model import (
    SE_FLOOR,
    ItemParameters,
    fisher_information_3pl,
    probability_3pl,
    standard_error,
)

logger = logging.getLogger(__name__)

# Quadrature configuration
QUADRATURE_POINTS = 61
QUADRATURE_RANGE = (-4.0, 4.0)

# MLE configuration
MLE_STEP_SIZE = 0.7
MLE_MAX_ITERATIONS = 50
MLE_TOLERANCE = 0.001
# Largest single Newton step; larger proposals are truncated.
MLE_MAX_NEWTON_STEP = 1.0
# SE reported before any item is answered under MLE, and its ceiling after.
MLE_INITIAL_SE = 10.0

ScoredResponse = Tuple[ItemParameters, bool]


def estimate_ability_eap(
    responses: Sequence[ScoredResponse],
    prior_mean: float = 0.0,
    prior_sd: float = 1.0,
    theta_range: Tuple[float, float] = QUADRATURE_RANGE,
    n_points: int = QUADRATURE_POINTS,
) -> Tuple[float, float]:
    """
    Estimate ability using Expected A Posteriori (EAP) with numerical quadrature.

    Args:
        responses: Sequence of (item parameters, is_correct) pairs.
        prior_mean: Mean of the Gaussian prior on theta.
        prior_sd: Standard deviation of the Gaussian prior on theta.
        theta_range: Integration bounds.
        n_points: Number of evenly spaced quadrature points.

    Returns:
        Tuple of (theta_estimate, standard_error). SE is the posterior SD,
        floored at ``SE_FLOOR``.

    Raises:
        ValueError: If prior_sd is not positive or any discrimination is not
            positive.
    """
    if prior_sd <= 0:
        raise ValueError(f"prior_sd must be positive, got {prior_sd}")

    # Edge case: no responses, return the prior
    if not responses:
        return (prior_mean, prior_sd)

    for i, (params, _) in enumerate(responses):
        if params.a <= 0:
            raise ValueError(
                f"Discrimination parameter must be positive, got {params.a} "
                f"for response {i}"
            )

    theta_min, theta_max = theta_range
    theta_points = np.linspace(theta_min, theta_max, n_points)

    # Normalising constant cancels, only the kernel is needed
    log_posterior = -0.5 * ((theta_points - prior_mean) / prior_sd) ** 2
    log_posterior = log_posterior + _compute_log_likelihoods(theta_points, responses)

    # Normalize using log-sum-exp for numerical stability
    weights = np.exp(log_posterior - np.max(log_posterior))
    weight_sum = float(np.sum(weights))

    if weight_sum == 0.0 or not math.isfinite(weight_sum):
        logger.warning(
            "Posterior collapsed at all quadrature points. Returning prior estimate."
        )
        return (prior_mean, prior_sd)

    probs = weights / weight_sum
    theta_hat = float(np.sum(theta_points * probs))
    posterior_variance = float(np.sum((theta_points - theta_hat) ** 2 * probs))
    se = max(SE_FLOOR, math.sqrt(max(0.0, posterior_variance)))

    return (theta_hat, se)


def _compute_log_likelihoods(
    theta_points: np.ndarray,
    responses: Sequence[ScoredResponse],
) -> np.ndarray:
    """
    Log-likelihood of the response vector at each quadrature point.

    log(1 + exp(x)) is evaluated with ``np.logaddexp`` so extreme logits never
    overflow:
        log s       = -log(1 + exp(-logit))
        log (1 - s) = -log(1 + exp(logit))
        log P       = log(c + (1 - c) * s)
        log (1 - P) = log(1 - c) + log(1 - s)
    """
    log_lik = np.zeros_like(theta_points)
    for params, is_correct in responses:
        logit = params.a * (theta_points - params.b)
        if is_correct:
            log_s = -np.logaddexp(0.0, -logit)
            if params.c > 0.0:
                log_lik += np.logaddexp(
                    math.log(params.c), math.log1p(-params.c) + log_s
                )
            else:
                log_lik += log_s
        else:
            log_lik += math.log1p(-params.c) - np.logaddexp(0.0, logit)
    return log_lik


def estimate_ability_mle(
    responses: Sequence[ScoredResponse],
    current_theta: float = 0.0,
    theta_range: Tuple[float, float] = QUADRATURE_RANGE,
    step_size: float = MLE_STEP_SIZE,
    max_iterations: int = MLE_MAX_ITERATIONS,
    tolerance: float = MLE_TOLERANCE,
) -> Tuple[float, float]:
    """
    Estimate ability by maximum likelihood with a bounded step fallback.

    Args:
        responses: Sequence of (item parameters, is_correct) pairs, in
            administration order.
        current_theta: Estimate before the latest response. Used as the
            Newton starting point, the origin of the step update and the
            directional bound on the result.
        theta_range: Bounds theta is clamped to.
        step_size: Fixed increment of the step update.
        max_iterations: Newton-Raphson iteration cap.
        tolerance: Convergence threshold on |theta_t - theta_(t-1)|.

    Returns:
        Tuple of (theta_estimate, standard_error). SE is
        ``1 / sqrt(total information)`` floored at ``SE_FLOOR`` and capped at
        ``MLE_INITIAL_SE``.
    """
    theta_min, theta_max = theta_range
    start = _clamp(current_theta, theta_min, theta_max)

    if not responses:
        return (start, MLE_INITIAL_SE)

    outcomes = {is_correct for _, is_correct in responses}
    if len(outcomes) == 1:
        direction = 1.0 if True in outcomes else -1.0
        theta = _clamp(start + direction * step_size, theta_min, theta_max)
        logger.debug(
            f"MLE undefined for uniform pattern ({len(responses)} responses), "
            f"step update {start:.3f} -> {theta:.3f}"
        )
    else:
        theta = _newton_raphson(responses, start, theta_range, max_iterations, tolerance)
        if theta is None:
            direction = 1.0 if responses[-1][1] else -1.0
            theta = _clamp(start + direction * step_size, theta_min, theta_max)
            logger.warning(
                f"Newton-Raphson failed after {len(responses)} responses, "
                f"falling back to step update {start:.3f} -> {theta:.3f}"
            )

    # Directional bound relative to the estimate before the latest response
    if responses[-1][1]:
        bounded = max(start, theta)
    else:
        bounded = min(start, theta)
    if bounded != theta:
        logger.debug(
            f"MLE estimate {theta:.3f} moved against the latest response, "
            f"held at {bounded:.3f}"
        )
        theta = bounded

    items = [params for params, _ in responses]
    se = min(MLE_INITIAL_SE, standard_error(theta, items))
    return (theta, se)


def _newton_raphson(
    responses: Sequence[ScoredResponse],
    start: float,
    theta_range: Tuple[float, float],
    max_iterations: int,
    tolerance: float,
) -> Optional[float]:
    """
    Fisher-scoring Newton-Raphson on the 3PL log-likelihood.

    Score contribution of item i:
        a * (u - P) * (P - c) / (P * (1 - c))

    Returns the converged theta, or None on divergence, a non-finite value,
    or hitting the iteration cap.
    """
    theta_min, theta_max = theta_range
    theta = start
    boundary_hits = 0

    for _ in range(max_iterations):
        score = 0.0
        information = 0.0
        for params, is_correct in responses:
            a, b, c = params
            prob = probability_3pl(theta, a, b, c)
            prob = min(max(prob, 1e-10), 1.0 - 1e-10)
            residual = (1.0 if is_correct else 0.0) - prob
            score += a * residual * (prob - c) / (prob * (1.0 - c))
            information += fisher_information_3pl(theta, a, b, c)

        if information <= 0.0 or not math.isfinite(score):
            return None

        step = score / information
        if not math.isfinite(step):
            return None
        step = _clamp(step, -MLE_MAX_NEWTON_STEP, MLE_MAX_NEWTON_STEP)

        new_theta = _clamp(theta + step, theta_min, theta_max)
        if new_theta in (theta_min, theta_max):
            boundary_hits += 1
            # Repeatedly pushed against the bound: no interior maximum
            if boundary_hits >= 3:
                return None

        if abs(new_theta - theta) < tolerance:
            # Settling on a bound means the maximum lies outside the range
            if new_theta in (theta_min, theta_max):
                return None
            return new_theta
        theta = new_theta

    return None


def _clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))
