"""
CAT Simulation Engine for validating adaptive testing algorithms.

Simulates N examinees with known ability levels taking adaptive tests through
the real :class:`CATSessionManager` state machine. Collects metrics to
validate stopping criteria, precision targets, category balancing and the
no-repeat guarantee of item selection.

Key Features:
- Monte Carlo simulation with configurable N and theta distribution
- Synthetic 3PL item banks with realistic parameter distributions
- Quintile-based analysis stratified by ability level
- Re-administration check over every simulated session

References:
    - Weiss, D. J. (2004). Computerized adaptive testing for effective and
      efficient measurement in counseling and education. Measurement and
      Evaluation in Counseling and Development, 37(2), 70-84.
    - Kingsbury, G. G., & Zara, A. R. (1989). Procedures for selecting items
      for computerized adaptive tests. Applied Measurement in Education, 2(4), 359-375.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from libs.domain_types import ItemCategory
from iqcat.core.cat.engine import CATSessionManager
from iqcat.core.cat.irt_model import probability_3pl
from iqcat.core.cat.item_bank import (
    DEFAULT_GUESSING,
    DIFFICULTY_LABEL_MAX,
    DIFFICULTY_LABEL_MIN,
    Item,
    ItemBank,
    ItemContent,
)
from iqcat.core.cat.item_selection import LABEL_CENTER, LABEL_SCALE
from iqcat.core.cat.session import SessionConfig

logger = logging.getLogger(__name__)

# Synthetic item parameter distributions (Lord, 1980)
DISCRIMINATION_LOGNORMAL_MEAN = 0.0
DISCRIMINATION_LOGNORMAL_SD = 0.3
DISCRIMINATION_MIN = 0.5
DISCRIMINATION_MAX = 2.5
DIFFICULTY_NORMAL_MEAN = 0.0
DIFFICULTY_NORMAL_SD = 1.0
DIFFICULTY_MIN = -3.0
DIFFICULTY_MAX = 3.0

SIMULATED_OPTION_COUNT = 4

# Latency of every simulated response, in seconds
SIMULATED_LATENCY_SECONDS = 20.0

# Ability quintiles for stratified analysis
QUINTILE_BOUNDARIES = [
    ("Very Low", -3.0, -1.2),
    ("Low", -1.2, -0.4),
    ("Average", -0.4, 0.4),
    ("High", 0.4, 1.2),
    ("Very High", 1.2, 3.0),
]


@dataclass
class SimulationConfig:
    """Configuration for a CAT simulation run."""

    n_examinees: int = 1000  # Number of simulated examinees
    theta_mean: float = 0.0  # Mean of theta distribution
    theta_sd: float = 1.0  # SD of theta distribution
    seed: int = 42  # Random seed for reproducibility


@dataclass
class ExamineeResult:
    """Per-examinee simulation results."""

    true_theta: float  # True ability
    estimated_theta: float  # Final theta estimate
    final_se: float  # Final standard error
    bias: float  # estimated_theta - true_theta
    items_administered: int  # Test length
    stopping_reason: str  # Why the test stopped
    converged: bool  # Whether SE <= threshold
    category_coverage: Dict[str, int]  # Items per category
    administered_item_ids: List[str] = field(default_factory=list)
    se_history: List[float] = field(default_factory=list)  # SE after each response

    @property
    def has_repeated_items(self) -> bool:
        return len(set(self.administered_item_ids)) != len(self.administered_item_ids)


@dataclass
class QuintileMetrics:
    """Metrics for an ability quintile."""

    label: str  # e.g., "Very Low"
    theta_range: Tuple[float, float]  # (min, max)
    n: int  # Count of examinees in this quintile
    mean_items: float
    median_items: float
    mean_se: float
    mean_bias: float
    rmse: float
    convergence_rate: float  # Proportion achieving SE <= threshold


@dataclass
class SimulationResult:
    """Aggregate simulation results."""

    config: SimulationConfig
    examinee_results: List[ExamineeResult]
    overall_mean_items: float
    overall_median_items: float
    overall_mean_se: float
    overall_mean_bias: float
    overall_rmse: float
    overall_convergence_rate: float
    quintile_metrics: List[QuintileMetrics]
    stopping_reason_counts: Dict[str, int]
    sessions_with_repeats: int
    se_increase_rate: float  # Share of steps where SE rose
    mean_se_by_position: List[float]  # Mean SE after the k-th response


def difficulty_label_for(b: float) -> int:
    """Nearest 1-10 difficulty label for a difficulty parameter."""
    label = round(b / LABEL_SCALE + LABEL_CENTER)
    return int(max(DIFFICULTY_LABEL_MIN, min(DIFFICULTY_LABEL_MAX, label)))


def generate_item_bank(
    n_items_per_category: int = 10,
    categories: Optional[Sequence[ItemCategory]] = None,
    guessing: float = DEFAULT_GUESSING,
    seed: int = 42,
) -> ItemBank:
    """
    Generate a synthetic item bank with realistic 3PL parameters.

    Item parameters are drawn from distributions that match typical
    operational item banks (Lord, 1980):
        - Discrimination (a) ~ LogNormal(mean=0.0, sd=0.3), clipped to [0.5, 2.5]
        - Difficulty (b) ~ Normal(0.0, 1.0), clipped to [-3.0, 3.0]
        - Guessing (c) fixed at ``guessing``

    Args:
        n_items_per_category: Number of items to generate per category.
        categories: Categories to cover. Defaults to all of ItemCategory.
        guessing: Pseudo-guessing parameter for every item.
        seed: Random seed for reproducibility.

    Returns:
        A validated ItemBank with placeholder content.
    """
    if categories is None:
        categories = list(ItemCategory)

    rng = np.random.default_rng(seed)
    items = []
    item_number = 1

    for category in categories:
        for _ in range(n_items_per_category):
            a = rng.lognormal(
                mean=DISCRIMINATION_LOGNORMAL_MEAN, sigma=DISCRIMINATION_LOGNORMAL_SD
            )
            a = float(np.clip(a, DISCRIMINATION_MIN, DISCRIMINATION_MAX))

            b = rng.normal(loc=DIFFICULTY_NORMAL_MEAN, scale=DIFFICULTY_NORMAL_SD)
            b = float(np.clip(b, DIFFICULTY_MIN, DIFFICULTY_MAX))

            items.append(
                Item(
                    id=f"sim-{item_number:04d}",
                    category=category,
                    difficulty_label=difficulty_label_for(b),
                    a=a,
                    b=b,
                    c=guessing,
                    content=ItemContent(
                        prompt=f"Simulated item {item_number}",
                        options=tuple(
                            f"Option {i + 1}" for i in range(SIMULATED_OPTION_COUNT)
                        ),
                        correct_option=0,
                    ),
                )
            )
            item_number += 1

    logger.info(
        f"Generated item bank: {len(items)} items across {len(categories)} "
        f"categories ({n_items_per_category} per category)"
    )

    return ItemBank(items, locale="sim")


def simulate_response(
    true_theta: float,
    a: float,
    b: float,
    c: float,
    rng: random.Random,
) -> bool:
    """
    Generate a simulated response using the 3PL IRT model.

    Args:
        true_theta: True ability level of the examinee.
        a: Item discrimination parameter.
        b: Item difficulty parameter.
        c: Item pseudo-guessing parameter.
        rng: Random number generator for reproducibility.

    Returns:
        True if the simulated response is correct, False otherwise.
    """
    return rng.random() < probability_3pl(true_theta, a, b, c)


def run_simulation(
    item_bank: ItemBank,
    session_config: Optional[SessionConfig] = None,
    config: Optional[SimulationConfig] = None,
) -> SimulationResult:
    """
    Run simulated examinees through the CATSessionManager.

    For each simulated examinee:
    1. Draw true_theta from N(config.theta_mean, config.theta_sd)
    2. Start a session at the configured prior
    3. Loop: current item -> simulate 3PL response -> submit_response,
       until the session is terminal
    4. Record ExamineeResult with metrics

    Args:
        item_bank: Item bank to administer from.
        session_config: Session configuration. Defaults to settings.
        config: Simulation configuration.

    Returns:
        SimulationResult with per-examinee and aggregate metrics.
    """
    config = config or SimulationConfig()
    rng = random.Random(config.seed)
    np_rng = np.random.default_rng(config.seed)
    manager = CATSessionManager(item_bank, session_config, rng=rng)

    logger.info(
        f"Starting CAT simulation: N={config.n_examinees}, "
        f"theta ~ N({config.theta_mean}, {config.theta_sd}²)"
    )

    examinee_results = []

    for examinee_id in range(1, config.n_examinees + 1):
        true_theta = float(np_rng.normal(loc=config.theta_mean, scale=config.theta_sd))

        session = manager.start_session(session_id=f"sim-{examinee_id}")
        while not session.is_terminal:
            item = manager.current_item(session)
            is_correct = simulate_response(true_theta, item.a, item.b, item.c, rng)
            correct_option = item.content.correct_option
            chosen = (
                correct_option
                if is_correct
                else (correct_option + 1) % len(item.content.options)
            )
            session = manager.submit_response(
                session, chosen, latency_seconds=SIMULATED_LATENCY_SECONDS
            )

        coverage: Dict[str, int] = {}
        for administered in session.administered:
            key = administered.category.value
            coverage[key] = coverage.get(key, 0) + 1

        examinee_results.append(
            ExamineeResult(
                true_theta=true_theta,
                estimated_theta=session.theta,
                final_se=session.se,
                bias=session.theta - true_theta,
                items_administered=len(session.administered),
                stopping_reason=session.stop_reason.value,
                converged=session.se <= manager.config.se_threshold,
                category_coverage=coverage,
                administered_item_ids=[a.item_id for a in session.administered],
                se_history=list(session.se_history),
            )
        )

        if examinee_id % 100 == 0:
            logger.info(f"Completed {examinee_id}/{config.n_examinees} examinees")

    return _aggregate_results(config, manager.config.se_threshold, examinee_results)


def _aggregate_results(
    config: SimulationConfig,
    se_threshold: float,
    examinee_results: List[ExamineeResult],
) -> SimulationResult:
    """
    Compute aggregate metrics from individual examinee results.

    Returns:
        SimulationResult with overall and quintile-stratified metrics.
    """
    if not examinee_results:
        raise ValueError("Cannot aggregate results from empty examinee list")

    items_administered = [r.items_administered for r in examinee_results]
    standard_errors = [r.final_se for r in examinee_results]
    biases = [r.bias for r in examinee_results]
    converged_count = sum(1 for r in examinee_results if r.converged)

    overall_mean_items = float(np.mean(items_administered))
    overall_median_items = float(np.median(items_administered))
    overall_mean_se = float(np.mean(standard_errors))
    overall_mean_bias = float(np.mean(biases))
    overall_rmse = float(np.sqrt(np.mean([b**2 for b in biases])))
    overall_convergence_rate = converged_count / len(examinee_results)

    stopping_reason_counts: Dict[str, int] = {}
    for result in examinee_results:
        reason = result.stopping_reason
        stopping_reason_counts[reason] = stopping_reason_counts.get(reason, 0) + 1

    sessions_with_repeats = sum(1 for r in examinee_results if r.has_repeated_items)
    if sessions_with_repeats:
        logger.error(
            f"{sessions_with_repeats} simulated sessions re-administered an item"
        )

    se_increase_rate, mean_se_by_position = compute_se_trajectory(examinee_results)

    quintile_metrics = compute_quintile_metrics(examinee_results, se_threshold)

    logger.info(
        f"Simulation complete: "
        f"mean_items={overall_mean_items:.1f}, "
        f"median_items={overall_median_items:.1f}, "
        f"mean_SE={overall_mean_se:.3f}, "
        f"RMSE={overall_rmse:.3f}, "
        f"SE_increase_rate={se_increase_rate:.1%}, "
        f"convergence_rate={overall_convergence_rate:.1%}"
    )

    return SimulationResult(
        config=config,
        examinee_results=examinee_results,
        overall_mean_items=overall_mean_items,
        overall_median_items=overall_median_items,
        overall_mean_se=overall_mean_se,
        overall_mean_bias=overall_mean_bias,
        overall_rmse=overall_rmse,
        overall_convergence_rate=overall_convergence_rate,
        quintile_metrics=quintile_metrics,
        stopping_reason_counts=stopping_reason_counts,
        sessions_with_repeats=sessions_with_repeats,
        se_increase_rate=se_increase_rate,
        mean_se_by_position=mean_se_by_position,
    )


def compute_quintile_metrics(
    examinee_results: List[ExamineeResult],
    se_threshold: float,
) -> List[QuintileMetrics]:
    """
    Compute stratified metrics for each ability quintile.

    Quintiles are defined by true_theta (not estimated theta) to avoid
    regression to the mean artifacts. The first and last quintiles are
    open-ended.

    Args:
        examinee_results: List of per-examinee results.
        se_threshold: SE threshold for convergence rate calculation.

    Returns:
        List of QuintileMetrics, one per quintile.
    """
    quintile_metrics = []

    for label, theta_min, theta_max in QUINTILE_BOUNDARIES:
        quintile_results = []
        for r in examinee_results:
            if label == "Very Low" and r.true_theta < theta_max:
                quintile_results.append(r)
            elif label == "Very High" and r.true_theta >= theta_min:
                quintile_results.append(r)
            elif theta_min <= r.true_theta < theta_max:
                quintile_results.append(r)

        if not quintile_results:
            quintile_metrics.append(
                QuintileMetrics(
                    label=label,
                    theta_range=(theta_min, theta_max),
                    n=0,
                    mean_items=0.0,
                    median_items=0.0,
                    mean_se=0.0,
                    mean_bias=0.0,
                    rmse=0.0,
                    convergence_rate=0.0,
                )
            )
            continue

        items = [r.items_administered for r in quintile_results]
        biases = [r.bias for r in quintile_results]
        converged = sum(1 for r in quintile_results if r.final_se <= se_threshold)

        quintile_metrics.append(
            QuintileMetrics(
                label=label,
                theta_range=(theta_min, theta_max),
                n=len(quintile_results),
                mean_items=float(np.mean(items)),
                median_items=float(np.median(items)),
                mean_se=float(np.mean([r.final_se for r in quintile_results])),
                mean_bias=float(np.mean(biases)),
                rmse=float(np.sqrt(np.mean([b**2 for b in biases]))),
                convergence_rate=converged / len(quintile_results),
            )
        )

    return quintile_metrics


def compute_se_trajectory(
    examinee_results: List[ExamineeResult],
) -> Tuple[float, List[float]]:
    """
    Summarize how SE evolves as items are administered.

    SE need not fall after every single response (a surprising answer can
    widen the posterior), but it should fall on average.

    Returns:
        Tuple of (share of consecutive steps where SE increased, mean SE
        after the k-th response over the sessions that reached it).
    """
    steps = 0
    increases = 0
    sums: List[float] = []
    counts: List[int] = []

    for result in examinee_results:
        history = result.se_history
        for previous, current in zip(history, history[1:]):
            steps += 1
            if current > previous:
                increases += 1
        for position, se in enumerate(history):
            if position == len(sums):
                sums.append(0.0)
                counts.append(0)
            sums[position] += se
            counts[position] += 1

    increase_rate = increases / steps if steps else 0.0
    return increase_rate, [total / n for total, n in zip(sums, counts)]
