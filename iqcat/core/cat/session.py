"""
Session data model for adaptive test sessions.

A :class:`Session` is an immutable value. Every transition performed by
:mod:`iqcat.core.cat.engine` returns a new Session; callers own persistence of
the latest value. A Session never references the item bank: each
administered item is snapshotted as an :class:`AdministeredItem`, so a
Session (and the Result derived from it) can be reconstructed from its own
data alone.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, List, Literal, Mapping, Optional, Sequence, Tuple

from libs.domain_types import ItemCategory, SessionStatus, StopReason
from iqcat.core.cat.ability_estimation import (
    MLE_INITIAL_SE,
    MLE_MAX_ITERATIONS,
    MLE_STEP_SIZE,
    MLE_TOLERANCE,
    ScoredResponse,
    estimate_ability_eap,
    estimate_ability_mle,
)
from iqcat.core.cat.exposure_control import DEFAULT_RANDOMESQUE_K
from iqcat.core.cat.irt_model import ItemParameters
from iqcat.core.cat.item_bank import Item
from iqcat.core.cat.stopping_rules import (
    MAX_ITEMS,
    MIN_ITEMS,
    SE_THRESHOLD,
    TIME_LIMIT_SECONDS,
)


class SessionStateError(RuntimeError):
    """
    Caller-contract violation on a session.

    Raised when a transition is requested that the session's current state
    does not permit, e.g. submitting a response to a terminal session.
    This is a programming error in the integration layer, not a domain error.
    """


def _default_category_targets() -> Dict[ItemCategory, float]:
    share = 1.0 / len(ItemCategory)
    return {category: share for category in ItemCategory}


@dataclass(frozen=True)
class SessionConfig:
    """
    Per-session configuration.

    Any termination limit may be disabled by setting it to an unreachable
    bound. SE is floored above zero, so ``se_threshold=0.0`` never stops on
    precision; ``time_limit_seconds=math.inf`` never times out.
    """

    estimation_method: Literal["eap", "mle"] = "eap"
    prior_mean: float = 0.0
    prior_sd: float = 1.0
    theta_min: float = -4.0
    theta_max: float = 4.0
    se_threshold: float = SE_THRESHOLD
    min_items: int = MIN_ITEMS
    max_items: int = MAX_ITEMS
    time_limit_seconds: float = TIME_LIMIT_SECONDS
    # Per-item budget; an item's own time limit applies when it is shorter.
    item_time_limit_seconds: float = 60.0
    category_targets: Mapping[ItemCategory, float] = field(
        default_factory=_default_category_targets
    )
    randomesque_k: int = DEFAULT_RANDOMESQUE_K
    confidence_level: float = 0.95
    mle_step_size: float = MLE_STEP_SIZE
    mle_max_iterations: int = MLE_MAX_ITERATIONS
    mle_tolerance: float = MLE_TOLERANCE

    def __post_init__(self):
        if self.estimation_method not in ("eap", "mle"):
            raise ValueError(
                f"estimation_method must be 'eap' or 'mle', "
                f"got {self.estimation_method!r}"
            )
        if not math.isfinite(self.prior_mean):
            raise ValueError(f"prior_mean must be finite, got {self.prior_mean}")
        if not (math.isfinite(self.prior_sd) and self.prior_sd > 0):
            raise ValueError(f"prior_sd must be positive, got {self.prior_sd}")
        if not self.theta_min < self.theta_max:
            raise ValueError(
                f"theta_min ({self.theta_min}) must be below "
                f"theta_max ({self.theta_max})"
            )
        if not math.isfinite(self.se_threshold) or self.se_threshold < 0:
            raise ValueError(
                f"se_threshold must be finite and non-negative, "
                f"got {self.se_threshold}"
            )
        if self.max_items < 1:
            raise ValueError(f"max_items must be at least 1, got {self.max_items}")
        if not (0 <= self.min_items <= self.max_items):
            raise ValueError(
                f"min_items must be in [0, max_items], got {self.min_items} "
                f"(max_items={self.max_items})"
            )
        for name in ("time_limit_seconds", "item_time_limit_seconds"):
            value = getattr(self, name)
            if math.isnan(value) or value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")
        for category, share in self.category_targets.items():
            if not isinstance(category, ItemCategory):
                raise ValueError(f"Unknown category in targets: {category!r}")
            if share < 0:
                raise ValueError(
                    f"Category target must be non-negative, got {share} "
                    f"for '{category.value}'"
                )
        if self.randomesque_k < 1:
            raise ValueError(
                f"randomesque_k must be at least 1, got {self.randomesque_k}"
            )
        if not (0.0 < self.confidence_level < 1.0):
            raise ValueError(
                f"confidence_level must be in (0, 1), got {self.confidence_level}"
            )

    @classmethod
    def from_settings(cls, settings=None, **overrides) -> "SessionConfig":
        """
        Build a config from :class:`~iqcat.core.config.Settings`.

        Keyword overrides replace individual fields.
        """
        if settings is None:
            from iqcat.core.config import settings

        values = dict(
            estimation_method=settings.CAT_ESTIMATION_METHOD,
            prior_mean=settings.CAT_PRIOR_MEAN,
            prior_sd=settings.CAT_PRIOR_SD,
            theta_min=settings.CAT_THETA_MIN,
            theta_max=settings.CAT_THETA_MAX,
            se_threshold=settings.CAT_SE_THRESHOLD,
            min_items=settings.CAT_MIN_ITEMS,
            max_items=settings.CAT_MAX_ITEMS,
            time_limit_seconds=settings.CAT_TIME_LIMIT_SECONDS,
            item_time_limit_seconds=settings.CAT_ITEM_TIME_LIMIT_SECONDS,
            category_targets={
                ItemCategory(key): share
                for key, share in settings.CAT_CATEGORY_TARGETS.items()
            },
            randomesque_k=settings.CAT_RANDOMESQUE_K,
            confidence_level=settings.CAT_CONFIDENCE_LEVEL,
            mle_step_size=settings.CAT_MLE_STEP_SIZE,
            mle_max_iterations=settings.CAT_MLE_MAX_ITERATIONS,
            mle_tolerance=settings.CAT_MLE_TOLERANCE,
        )
        values.update(overrides)
        return cls(**values)

    @property
    def theta_range(self) -> Tuple[float, float]:
        return (self.theta_min, self.theta_max)

    @property
    def initial_se(self) -> float:
        """SE reported before any response."""
        if self.estimation_method == "mle":
            return MLE_INITIAL_SE
        return self.prior_sd

    def estimate_ability(
        self,
        responses: Sequence[ScoredResponse],
        current_theta: float,
    ) -> Tuple[float, float]:
        """Run the configured estimator. Returns (theta, se)."""
        if self.estimation_method == "mle":
            return estimate_ability_mle(
                responses,
                current_theta=current_theta,
                theta_range=self.theta_range,
                step_size=self.mle_step_size,
                max_iterations=self.mle_max_iterations,
                tolerance=self.mle_tolerance,
            )
        return estimate_ability_eap(
            responses,
            prior_mean=self.prior_mean,
            prior_sd=self.prior_sd,
            theta_range=self.theta_range,
        )


@dataclass(frozen=True)
class AdministeredItem:
    """Snapshot of an item at the moment it was administered."""

    item_id: str
    category: ItemCategory
    difficulty_label: int
    a: float
    b: float
    c: float
    correct_option: int
    option_count: int
    time_limit_seconds: float
    theta_at_selection: float

    @property
    def parameters(self) -> ItemParameters:
        return ItemParameters(self.a, self.b, self.c)

    @classmethod
    def from_item(
        cls, item: Item, theta_at_selection: float, item_time_limit_seconds: float
    ) -> "AdministeredItem":
        return cls(
            item_id=item.id,
            category=item.category,
            difficulty_label=item.difficulty_label,
            a=item.a,
            b=item.b,
            c=item.c,
            correct_option=item.content.correct_option,
            option_count=len(item.content.options),
            time_limit_seconds=min(item.time_limit_seconds, item_time_limit_seconds),
            theta_at_selection=theta_at_selection,
        )


@dataclass(frozen=True)
class Response:
    """
    Response to one administered item.

    ``chosen_option`` is None when no answer was given (including per-item
    timeout); such a response is scored incorrect.
    """

    item_id: str
    chosen_option: Optional[int]
    is_correct: bool
    latency_seconds: float
    theta_at_selection: float
    timed_out: bool = False


@dataclass(frozen=True)
class Session:
    """
    Immutable state of one adaptive test attempt.

    Invariants:
        - ``len(responses) <= len(administered)``, and at most one item is
          pending (administered but unanswered).
        - ``theta_history[i]`` / ``se_history[i]`` are the estimates after
          response ``i``.
    """

    session_id: str
    config: SessionConfig
    status: SessionStatus = SessionStatus.NOT_STARTED
    theta: float = 0.0
    se: float = 1.0
    administered: Tuple[AdministeredItem, ...] = ()
    responses: Tuple[Response, ...] = ()
    theta_history: Tuple[float, ...] = ()
    se_history: Tuple[float, ...] = ()
    elapsed_seconds: float = 0.0
    stop_reason: Optional[StopReason] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def pending_item(self) -> Optional[AdministeredItem]:
        """The administered item awaiting a response, if any."""
        if len(self.administered) > len(self.responses):
            return self.administered[-1]
        return None

    @property
    def num_answered(self) -> int:
        return len(self.responses)

    @property
    def correct_count(self) -> int:
        return sum(1 for r in self.responses if r.is_correct)

    @property
    def administered_ids(self) -> frozenset:
        return frozenset(item.item_id for item in self.administered)

    def answered_items(self) -> List[AdministeredItem]:
        """Administered items that have a response, index-aligned with responses."""
        return list(self.administered[: len(self.responses)])

    def scored_responses(self) -> List[ScoredResponse]:
        """(item parameters, is_correct) pairs in administration order."""
        return [
            (item.parameters, response.is_correct)
            for item, response in zip(self.administered, self.responses)
        ]
