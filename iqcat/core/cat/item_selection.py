"""
Maximum Fisher Information (MFI) item selection for Computerized Adaptive Testing.

Selects the next item from an eligible pool that maximizes 3PL Fisher
information at the current ability estimate (theta).

The selection pipeline:
1. Filter out items already administered in this session
2. Apply category balancing (exclude saturated categories while any other
   category still has eligible items)
3. Compute Fisher information for each eligible item at current theta
4. Rank by information, breaking ties by closeness of the item's difficulty
   label to theta's label position, then by lowest historical exposure,
   then by item id
5. Optionally apply randomesque selection among the top-K ranked items

The first item of a session is selected at the prior mean, i.e. the most
informative item for an average examinee.

References:
    - van der Linden, W.J. (1998). Bayesian item selection criteria for
      adaptive testing.
    - Kingsbury, G.G., & Zara, A.R. (1989). Procedures for selecting items for
      computerized adaptive tests.
"""

import logging
import math
import random
from typing import AbstractSet, Iterable, List, Mapping, Optional, Tuple

from libs.domain_types import ItemCategory
from iqcat.core.cat.content_balancing import apply_category_balance
from iqcat.core.cat.exposure_control import (
    DEFAULT_RANDOMESQUE_K,
    ItemCandidate,
    apply_randomesque,
)
from iqcat.core.cat.irt_model import fisher_information_3pl
from iqcat.core.cat.item_bank import DIFFICULTY_LABEL_MAX, DIFFICULTY_LABEL_MIN, Item

logger = logging.getLogger(__name__)

# Items whose information differs by less than this are treated as tied.
INFORMATION_TIE_TOLERANCE = 1e-9

# Label scale position of theta: label = theta / LABEL_SCALE + LABEL_CENTER.
# Inverse of the calibration convention b = (label - 5.5) * 0.6.
LABEL_SCALE = 0.6
LABEL_CENTER = 5.5


def theta_to_difficulty_label(theta: float) -> float:
    """
    Position of ``theta`` on the 1-10 difficulty-label scale.

    Non-finite or out-of-range values are clamped to the scale bounds.
    """
    if math.isnan(theta):
        raise ValueError("theta must not be NaN")
    position = theta / LABEL_SCALE + LABEL_CENTER
    return max(float(DIFFICULTY_LABEL_MIN), min(float(DIFFICULTY_LABEL_MAX), position))


def rank_candidates(
    eligible: Iterable[Item],
    theta_estimate: float,
) -> List[ItemCandidate]:
    """
    Rank items best-first for administration at ``theta_estimate``.

    Items are ordered by Fisher information (descending). Items within
    ``INFORMATION_TIE_TOLERANCE`` of each other are ordered by distance of
    their difficulty label from theta's label position, then by
    ``times_administered`` (least exposed first), then by id.

    Returns:
        List of ItemCandidate, best first.
    """
    target_label = theta_to_difficulty_label(theta_estimate)
    candidates = [
        ItemCandidate(
            item=item,
            information=fisher_information_3pl(theta_estimate, item.a, item.b, item.c),
        )
        for item in eligible
    ]
    candidates.sort(key=lambda c: c.information, reverse=True)

    # Group near-equal information values, then order each group by tie-break.
    ranked: List[ItemCandidate] = []
    group: List[ItemCandidate] = []
    for candidate in candidates:
        if group and (
            group[0].information - candidate.information > INFORMATION_TIE_TOLERANCE
        ):
            ranked.extend(sorted(group, key=lambda c: _tie_break_key(c, target_label)))
            group = []
        group.append(candidate)
    ranked.extend(sorted(group, key=lambda c: _tie_break_key(c, target_label)))
    return ranked


def _tie_break_key(candidate: ItemCandidate, target_label: float) -> Tuple:
    item = candidate.item
    return (
        abs(item.difficulty_label - target_label),
        item.usage.times_administered,
        item.id,
    )


def select_next_item(
    item_pool: Iterable[Item],
    theta_estimate: float,
    administered_ids: AbstractSet[str],
    category_coverage: Mapping[ItemCategory, int],
    category_targets: Mapping[ItemCategory, float],
    max_items: int,
    randomesque_k: int = DEFAULT_RANDOMESQUE_K,
    rng: Optional[random.Random] = None,
) -> Optional[Item]:
    """
    Select the next item using Maximum Fisher Information with constraints.

    Args:
        item_pool: Items of the bank.
        theta_estimate: Current ability estimate.
        administered_ids: Ids already administered in this session.
        category_coverage: Administered count per category.
        category_targets: Target share of ``max_items`` per category.
            Categories not present are unconstrained.
        max_items: Total item budget, used to size category caps.
        randomesque_k: Select uniformly among the top-K ranked items.
            1 (the default) always returns the best item.
        rng: Optional Random instance for reproducible randomesque selection.

    Returns:
        The selected Item, or None if no eligible items remain
        (selection exhausted).
    """
    eligible = [item for item in item_pool if item.id not in administered_ids]

    if not eligible:
        logger.warning(
            "No eligible items remaining after filtering. "
            f"administered: {len(administered_ids)}"
        )
        return None

    eligible = apply_category_balance(
        eligible=eligible,
        coverage=category_coverage,
        category_targets=category_targets,
        max_items=max_items,
    )

    ranked = rank_candidates(eligible, theta_estimate)
    selected = apply_randomesque(ranked, k=randomesque_k, rng=rng)

    logger.debug(
        f"Item selection: theta={theta_estimate:.3f}, "
        f"eligible={len(ranked)}, "
        f"selected {selected.item.id} "
        f"(a={selected.item.a:.2f}, b={selected.item.b:.2f}, "
        f"c={selected.item.c:.2f}, info={selected.information:.4f})"
    )

    return selected.item
