"""
Exposure control and exposure bookkeeping for Computerized Adaptive Testing.

Over-exposure occurs when a small subset of items is administered
disproportionately often, compromising item security and bank longevity.
Two mechanisms address it:

    - Historical exposure (``ItemUsage.times_administered``) is a secondary
      tie-break in item selection: among equally informative items the
      least-used one wins. It never filters items out.
    - Randomesque selection (Kingsbury & Zara, 1989) optionally picks at
      random among the top-K most informative items. K = 1 disables it.

:class:`ExposureMonitor` is the offline side: it aggregates administrations
from finalized results and produces a new item bank carrying updated usage
statistics. Live sessions never read or write it.

References:
    - Kingsbury, G.G., & Zara, A.R. (1989). Procedures for selecting items for
      computerized adaptive tests.
    - Stocking, M.L., & Lewis, C. (1998). Controlling item exposure conditional
      on ability in computerized adaptive testing.
"""

import logging
import random
import threading
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from iqcat.core.cat.item_bank import ItemBank, ItemUsage

if TYPE_CHECKING:
    from iqcat.core.cat.scoring import Result

logger = logging.getLogger(__name__)

# Randomesque disabled by default: always take the most informative item.
DEFAULT_RANDOMESQUE_K = 1

# Default exposure rate threshold for logging alerts (15%)
DEFAULT_EXPOSURE_ALERT_THRESHOLD = 0.15


@dataclass
class ItemCandidate:
    """An item with its computed Fisher information value."""

    item: Any
    information: float


def apply_randomesque(
    ranked_items: List[ItemCandidate],
    k: int = DEFAULT_RANDOMESQUE_K,
    rng: Optional[random.Random] = None,
) -> ItemCandidate:
    """
    Select randomly from the top-K items.

    Args:
        ranked_items: Candidates sorted best-first.
        k: Number of top items to select from. 1 returns ``ranked_items[0]``.
        rng: Optional Random instance for reproducible selection.

    Returns:
        The selected ItemCandidate.

    Raises:
        ValueError: If ranked_items is empty or k is not positive.
    """
    if not ranked_items:
        raise ValueError("Cannot select from empty ranked_items list")
    if k <= 0:
        raise ValueError(f"k must be positive, got {k}")

    if k == 1:
        return ranked_items[0]

    top_k = ranked_items[: min(k, len(ranked_items))]
    selected = (rng or random).choice(top_k)

    logger.debug(
        f"Randomesque selection: chose item {selected.item.id} from top-{len(top_k)} "
        f"(info={selected.information:.4f})"
    )
    return selected


class ExposureMonitor:
    """
    Aggregates per-item exposure from finalized results.

    Thread-safe. Uses in-memory counters; a deployment persists
    :meth:`apply_to_bank` output to its calibration store.

    Exposure rate is defined as:
        rate_i = administrations_i / sessions_recorded

    Items exceeding ``alert_threshold`` are logged as warnings by
    :meth:`check_and_alert`.

    Example usage:
        monitor = ExposureMonitor(alert_threshold=0.15)
        for result in finalized_results:
            monitor.record_result(result)
        monitor.check_and_alert()
        next_bank = monitor.apply_to_bank(current_bank)
    """

    def __init__(self, alert_threshold: float = DEFAULT_EXPOSURE_ALERT_THRESHOLD):
        """
        Initialize the exposure monitor.

        Args:
            alert_threshold: Exposure rate threshold for alerts (default 0.15).

        Raises:
            ValueError: If alert_threshold is not in range [0.0, 1.0].
        """
        if not (0.0 <= alert_threshold <= 1.0):
            raise ValueError(
                f"alert_threshold must be in [0.0, 1.0], got {alert_threshold}"
            )

        self._lock = threading.Lock()
        self._administered: Dict[str, int] = {}
        self._correct: Dict[str, int] = {}
        self._sessions = 0
        self.alert_threshold = alert_threshold

    def record_result(self, result: "Result") -> None:
        """Record every answered item of a finalized session."""
        with self._lock:
            for step in result.progression:
                self._administered[step.item_id] = (
                    self._administered.get(step.item_id, 0) + 1
                )
                if step.is_correct:
                    self._correct[step.item_id] = self._correct.get(step.item_id, 0) + 1
            self._sessions += 1

    def get_exposure_rate(self, item_id: str) -> float:
        """Administrations of ``item_id`` per recorded session (0.0 if none)."""
        with self._lock:
            if self._sessions == 0:
                return 0.0
            return self._administered.get(item_id, 0) / self._sessions

    def get_exposure_rates(self) -> Dict[str, float]:
        """Exposure rate for every item administered at least once."""
        with self._lock:
            if self._sessions == 0:
                return {}
            return {
                item_id: count / self._sessions
                for item_id, count in self._administered.items()
            }

    def get_overexposed_items(self) -> List[Tuple[str, float]]:
        """(item_id, rate) pairs above the threshold, highest rate first."""
        overexposed = [
            (item_id, rate)
            for item_id, rate in self.get_exposure_rates().items()
            if rate > self.alert_threshold
        ]
        overexposed.sort(key=lambda x: x[1], reverse=True)
        return overexposed

    def check_and_alert(self) -> List[Tuple[str, float]]:
        """
        Check for overexposed items and log warnings.

        Returns:
            List of (item_id, exposure_rate) tuples for overexposed items.
        """
        overexposed = self.get_overexposed_items()
        if overexposed:
            logger.warning(
                f"Exposure alert: {len(overexposed)} items exceed "
                f"{self.alert_threshold:.1%} threshold"
            )
            for item_id, rate in overexposed[:10]:
                logger.warning(f"  Item {item_id}: {rate:.1%} exposure")
            if len(overexposed) > 10:
                logger.warning(f"  ... and {len(overexposed) - 10} more items")
        return overexposed

    def apply_to_bank(self, bank: ItemBank) -> ItemBank:
        """
        Return a new bank whose usage statistics include the recorded counts.

        The input bank is not modified. Items never recorded keep their usage.
        """
        with self._lock:
            administered = dict(self._administered)
            correct = dict(self._correct)

        updated = []
        for item in bank:
            extra = administered.get(item.id, 0)
            if extra:
                usage = ItemUsage(
                    times_administered=item.usage.times_administered + extra,
                    times_correct=item.usage.times_correct + correct.get(item.id, 0),
                )
                item = replace(item, usage=usage)
            updated.append(item)
        return ItemBank(updated, locale=bank.locale)

    @property
    def sessions_recorded(self) -> int:
        with self._lock:
            return self._sessions

    def reset(self) -> None:
        """Reset all counters, e.g. after a calibration cycle."""
        with self._lock:
            self._administered.clear()
            self._correct.clear()
            self._sessions = 0
            logger.info("ExposureMonitor counters reset")
