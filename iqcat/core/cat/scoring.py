"""
Final result of an adaptive test session.

:func:`build_result` is a pure function of a terminal :class:`Session`. The
ability trajectory is recomputed from the session's item snapshots and
responses by re-running the configured estimator over each response prefix,
so the Result carries no state that the Session does not, and building it
twice yields identical values.

An item that was administered but never answered (pending when the session
timed out or was abandoned) is excluded from scoring and counted in
``items_unanswered``.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from libs.domain_types import IQClassification, ItemCategory, SessionStatus, StopReason
from iqcat.core.cat.irt_model import fisher_information_3pl
from iqcat.core.cat.score_conversion import (
    CategoryScore,
    calculate_category_scores,
    theta_to_iq,
)
from iqcat.core.cat.session import Session, SessionStateError
from iqcat.core.reliability import ReliabilityReport, build_reliability_report
from iqcat.core.time_analysis import TimedResponse, analyze_response_times

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressionStep:
    """
    One answered item in administration order.

    ``theta_at_selection`` is the estimate the item was selected at, and
    ``information`` the item's Fisher information there. ``theta`` / ``se``
    are the estimates after the response.
    """

    index: int
    item_id: str
    category: ItemCategory
    is_correct: bool
    timed_out: bool
    latency_seconds: float
    theta_at_selection: float
    difficulty: float
    difficulty_label: int
    information: float
    theta: float
    se: float


@dataclass(frozen=True)
class Result:
    """Scored outcome of a terminal session. The sole contract for reporting."""

    session_id: str
    status: SessionStatus
    stop_reason: Optional[StopReason]
    theta: float
    se: float
    iq_score: int
    percentile: float
    ci_lower: int
    ci_upper: int
    confidence_level: float
    iq_se: float
    classification: IQClassification
    category_scores: Dict[ItemCategory, CategoryScore]
    reliability: ReliabilityReport
    progression: Tuple[ProgressionStep, ...]
    timing: Dict[str, Any]
    items_administered: int
    items_answered: int
    items_unanswered: int
    correct_count: int
    elapsed_seconds: float

    @property
    def theta_progression(self) -> List[float]:
        return [step.theta for step in self.progression]

    @property
    def difficulty_progression(self) -> List[float]:
        return [step.difficulty for step in self.progression]

    @property
    def information_progression(self) -> List[float]:
        return [step.information for step in self.progression]

    @property
    def se_progression(self) -> List[float]:
        return [step.se for step in self.progression]


def recompute_progression(session: Session) -> Tuple[ProgressionStep, ...]:
    """
    Rebuild the per-item trajectory from the session's history alone.

    Starting from the prior, the configured estimator is applied to every
    response prefix in order, exactly as during the live session.
    """
    config = session.config
    theta = config.prior_mean
    steps: List[ProgressionStep] = []
    scored = session.scored_responses()

    for index, (item, response) in enumerate(
        zip(session.answered_items(), session.responses)
    ):
        theta_at_selection = theta
        information = fisher_information_3pl(theta_at_selection, item.a, item.b, item.c)
        theta, se = config.estimate_ability(scored[: index + 1], current_theta=theta)
        steps.append(
            ProgressionStep(
                index=index,
                item_id=item.item_id,
                category=item.category,
                is_correct=response.is_correct,
                timed_out=response.timed_out,
                latency_seconds=response.latency_seconds,
                theta_at_selection=theta_at_selection,
                difficulty=item.b,
                difficulty_label=item.difficulty_label,
                information=information,
                theta=theta,
                se=se,
            )
        )
    return tuple(steps)


def build_result(session: Session) -> Result:
    """
    Score a terminal session.

    Raises:
        SessionStateError: If the session is not terminal.
    """
    if not session.is_terminal:
        raise SessionStateError(
            f"Cannot finalize session {session.session_id} in status "
            f"'{session.status.value}'"
        )

    config = session.config
    progression = recompute_progression(session)
    if progression:
        theta, se = progression[-1].theta, progression[-1].se
    else:
        theta, se = config.prior_mean, config.initial_se

    iq = theta_to_iq(theta, se, confidence_level=config.confidence_level)

    answered = session.answered_items()
    category_scores = calculate_category_scores(
        (
            item.category,
            response.is_correct,
            response.latency_seconds,
            item.difficulty_label,
        )
        for item, response in zip(answered, session.responses)
    )
    reliability = build_reliability_report(
        [step.is_correct for step in progression], se=se, prior_sd=config.prior_sd
    )
    timing = analyze_response_times(
        [
            TimedResponse(
                item_id=item.item_id,
                latency_seconds=response.latency_seconds,
                is_correct=response.is_correct,
                difficulty_label=item.difficulty_label,
                time_limit_seconds=item.time_limit_seconds,
                timed_out=response.timed_out,
            )
            for item, response in zip(answered, session.responses)
        ]
    )

    return Result(
        session_id=session.session_id,
        status=session.status,
        stop_reason=session.stop_reason,
        theta=theta,
        se=se,
        iq_score=iq.iq_score,
        percentile=iq.percentile,
        ci_lower=iq.ci_lower,
        ci_upper=iq.ci_upper,
        confidence_level=iq.confidence_level,
        iq_se=iq.se,
        classification=iq.classification,
        category_scores=category_scores,
        reliability=reliability,
        progression=progression,
        timing=timing,
        items_administered=len(session.administered),
        items_answered=len(session.responses),
        items_unanswered=len(session.administered) - len(session.responses),
        correct_count=session.correct_count,
        elapsed_seconds=session.elapsed_seconds,
    )
