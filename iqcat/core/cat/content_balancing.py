"""
Category balancing for Computerized Adaptive Testing.

Each category may be given a target share of the total item budget. Once a
category has been administered ``target_share * max_items`` times it is
saturated, and further items from it are excluded from selection unless no
other category still has eligible items.

Categories without a target are never capped.

References:
    - van der Linden, W.J. (2005). Linear Models for Optimal Test Design.
    - Kingsbury, G.G., & Zara, A.R. (1991). A comparison of procedures for
      content-sensitive item selection in computerized adaptive tests.
"""

import logging
from typing import Dict, Iterable, List, Mapping, Sequence, Set

from libs.domain_types import ItemCategory
from iqcat.core.cat.item_bank import Item

logger = logging.getLogger(__name__)


def track_category_coverage(
    categories: Iterable[ItemCategory],
) -> Dict[ItemCategory, int]:
    """
    Count administered items per category.

    Every category appears in the result, with zero for those never
    administered.
    """
    coverage = {category: 0 for category in ItemCategory}
    for category in categories:
        coverage[category] += 1
    return coverage


def category_caps(
    category_targets: Mapping[ItemCategory, float],
    max_items: int,
) -> Dict[ItemCategory, float]:
    """
    Item budget per category: ``target_share * max_items``.

    Args:
        category_targets: Target share per category (0.0-1.0).
        max_items: Total item budget of the session.

    Returns:
        Dict mapping category to its (possibly fractional) item cap.
    """
    return {
        category: share * max_items for category, share in category_targets.items()
    }


def saturated_categories(
    coverage: Mapping[ItemCategory, int],
    category_targets: Mapping[ItemCategory, float],
    max_items: int,
) -> Set[ItemCategory]:
    """Categories whose administered count has reached their cap."""
    caps = category_caps(category_targets, max_items)
    return {
        category
        for category, cap in caps.items()
        if coverage.get(category, 0) >= cap
    }


def apply_category_balance(
    eligible: Sequence[Item],
    coverage: Mapping[ItemCategory, int],
    category_targets: Mapping[ItemCategory, float],
    max_items: int,
) -> List[Item]:
    """
    Drop items from saturated categories.

    If every eligible item belongs to a saturated category the pool is
    returned unchanged, so balancing never causes selection to fail on its own.

    Args:
        eligible: Not-yet-administered items.
        coverage: Administered count per category.
        category_targets: Target share per category.
        max_items: Total item budget of the session.

    Returns:
        Filtered list of eligible items.
    """
    if not category_targets:
        return list(eligible)

    saturated = saturated_categories(coverage, category_targets, max_items)
    if not saturated:
        return list(eligible)

    balanced = [item for item in eligible if item.category not in saturated]
    if balanced:
        return balanced

    logger.debug(
        f"Category balancing relaxed: all {len(eligible)} eligible items are in "
        f"saturated categories {sorted(c.value for c in saturated)}"
    )
    return list(eligible)
