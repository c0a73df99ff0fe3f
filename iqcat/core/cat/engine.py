"""
CATSessionManager: Orchestrator for adaptive test sessions.

Manages item selection, ability estimation and stopping criteria during a
Computerized Adaptive Testing (CAT) session. The manager holds only the
read-only item bank and the session configuration; all per-attempt state
lives in immutable :class:`Session` values. Every transition takes a Session
and returns a new one, so any number of sessions can be driven by one
manager, from any thread.

State machine:

    not_started -> in_progress -> completed_by_precision
                               -> completed_by_item_limit
                               -> completed_by_timeout
                               -> abandoned

No transition leaves a terminal state. Timers are not run here: per-item
and global timeouts arrive as :meth:`CATSessionManager.expire_item` and
:meth:`CATSessionManager.expire_session` calls from the host.
"""

import logging
import math
import random
import uuid
from dataclasses import replace
from typing import Optional

from libs.domain_types import SessionStatus, StopReason
from iqcat.core.cat.content_balancing import track_category_coverage
from iqcat.core.cat.item_bank import Item, ItemBank
from iqcat.core.cat.item_selection import select_next_item
from iqcat.core.cat.scoring import Result, build_result
from iqcat.core.cat.session import (
    AdministeredItem,
    Response,
    Session,
    SessionConfig,
    SessionStateError,
)
from iqcat.core.cat.stopping_rules import STATUS_FOR_REASON, check_stopping_criteria

logger = logging.getLogger(__name__)


class CATSessionManager:
    """
    Orchestrator for Computerized Adaptive Testing sessions.

    Manages:
    - Session initialization at the prior ability estimate
    - Item selection by maximum information with category balancing
    - Response processing and ability re-estimation (EAP or MLE)
    - Stopping criteria evaluation (time limit, max items, SE threshold,
      selection exhaustion)
    - Timeout and abandonment signals
    - Final result calculation
    """

    def __init__(
        self,
        item_bank: ItemBank,
        config: Optional[SessionConfig] = None,
        rng: Optional[random.Random] = None,
    ):
        """
        Args:
            item_bank: Validated, read-only item bank shared by all sessions.
            config: Session configuration. Defaults to
                ``SessionConfig.from_settings()``.
            rng: Random source for randomesque selection. Only consulted when
                ``config.randomesque_k > 1``.
        """
        self.item_bank = item_bank
        self.config = config if config is not None else SessionConfig.from_settings()
        self.rng = rng

        logger.info(
            f"CATSessionManager initialized: {len(item_bank)} items "
            f"(locale={item_bank.locale}), estimator={self.config.estimation_method}, "
            f"items={self.config.min_items}-{self.config.max_items}, "
            f"se_threshold={self.config.se_threshold}"
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def new_session(self, session_id: Optional[str] = None) -> Session:
        """Create a not-started session at the prior."""
        return Session(
            session_id=session_id or uuid.uuid4().hex,
            config=self.config,
            status=SessionStatus.NOT_STARTED,
            theta=self.config.prior_mean,
            se=self.config.initial_se,
        )

    def begin(self, session: Session) -> Session:
        """
        Move a not-started session to in-progress by administering its first item.

        The first item is selected at the prior mean. If the bank offers no
        eligible item the session ends immediately with
        ``StopReason.SELECTION_EXHAUSTED``.

        Raises:
            SessionStateError: If the session has already started.
        """
        if session.status != SessionStatus.NOT_STARTED:
            raise SessionStateError(
                f"Session {session.session_id} already started "
                f"(status '{session.status.value}')"
            )

        session = replace(session, status=SessionStatus.IN_PROGRESS)
        logger.info(
            f"Started CAT session {session.session_id} with prior "
            f"theta={session.theta:.3f}, SE={session.se:.3f}",
            extra={"theta": session.theta, "se": session.se},
        )
        return self._administer_next(session)

    def start_session(self, session_id: Optional[str] = None) -> Session:
        """Create a session and administer its first item."""
        return self.begin(self.new_session(session_id))

    def current_item(self, session: Session) -> Optional[Item]:
        """The item awaiting a response, or None if the session is terminal."""
        if session.is_terminal:
            return None
        pending = session.pending_item
        if pending is None:
            return None
        if pending.item_id not in self.item_bank:
            raise SessionStateError(
                f"Pending item {pending.item_id} of session {session.session_id} "
                f"is not in this item bank"
            )
        return self.item_bank.get(pending.item_id)

    def submit_response(
        self,
        session: Session,
        chosen_option: Optional[int],
        latency_seconds: float,
        elapsed_seconds: Optional[float] = None,
    ) -> Session:
        """
        Record the answer to the pending item and advance by exactly one step.

        The response is scored, theta and SE are re-estimated from the full
        response history, stopping rules are evaluated, and if the session
        continues the next item is administered.

        Args:
            session: Current in-progress session.
            chosen_option: Index of the chosen option, or None for no answer
                (scored incorrect).
            latency_seconds: Time spent on the item.
            elapsed_seconds: Global elapsed session time after this response.
                Defaults to the previous elapsed time plus ``latency_seconds``.

        Returns:
            The new Session value.

        Raises:
            SessionStateError: If the session is terminal or has no pending item.
            ValueError: If chosen_option is out of range, latency is negative
                or not finite, or elapsed time goes backwards.
        """
        pending = self._require_pending(session)
        return self._record_response(
            session,
            pending,
            chosen_option=chosen_option,
            latency_seconds=latency_seconds,
            elapsed_seconds=elapsed_seconds,
            timed_out=False,
        )

    def expire_item(
        self,
        session: Session,
        elapsed_seconds: Optional[float] = None,
    ) -> Session:
        """
        Per-item timeout: record a no-answer response for the pending item.

        The latency recorded is the item's time limit. Normal stopping
        evaluation then proceeds.
        """
        pending = self._require_pending(session)
        logger.info(
            f"Session {session.session_id}: item {pending.item_id} timed out "
            f"after {pending.time_limit_seconds:.1f}s",
            extra={"item_id": pending.item_id},
        )
        return self._record_response(
            session,
            pending,
            chosen_option=None,
            latency_seconds=pending.time_limit_seconds,
            elapsed_seconds=elapsed_seconds,
            timed_out=True,
        )

    def expire_session(self, session: Session, elapsed_seconds: float) -> Session:
        """
        Global timeout: force the session to ``completed_by_timeout``.

        A pending unanswered item stays in the administered list but is not
        scored. Only an in-progress session can time out; a session that never
        started has no clock running and should be abandoned instead.

        Raises:
            SessionStateError: If the session is terminal or not started.
            ValueError: If elapsed time goes backwards.
        """
        if session.is_terminal:
            raise SessionStateError(
                f"Cannot expire terminal session {session.session_id} "
                f"(status '{session.status.value}')"
            )
        if session.status == SessionStatus.NOT_STARTED:
            raise SessionStateError(
                f"Cannot expire session {session.session_id}: not started"
            )
        elapsed = self._validate_elapsed(session, elapsed_seconds)
        return self._terminate(
            replace(session, elapsed_seconds=elapsed), StopReason.TIME_LIMIT
        )

    def abandon(self, session: Session) -> Session:
        """
        External cancel signal. One-way and idempotent.

        Recorded responses are kept. Abandoning an already abandoned session
        returns it unchanged.

        Raises:
            SessionStateError: If the session completed by any other means.
        """
        if session.status == SessionStatus.ABANDONED:
            return session
        if session.is_terminal:
            raise SessionStateError(
                f"Cannot abandon session {session.session_id}: already "
                f"'{session.status.value}'"
            )
        return self._terminate(session, StopReason.ABANDONED)

    def finalize(self, session: Session) -> Result:
        """
        Convert a terminal session into its Result.

        Idempotent: the Result is a pure function of the session.

        Raises:
            SessionStateError: If the session is not terminal.
        """
        result = build_result(session)
        logger.info(
            f"Finalized session {session.session_id}: IQ={result.iq_score}, "
            f"theta={result.theta:.3f}, SE={result.se:.3f}, "
            f"items={result.items_answered}, status={result.status.value}",
            extra={
                "theta": result.theta,
                "se": result.se,
                "status": result.status.value,
            },
        )
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_pending(self, session: Session) -> AdministeredItem:
        if session.is_terminal:
            raise SessionStateError(
                f"Session {session.session_id} is terminal "
                f"('{session.status.value}'); no further responses accepted"
            )
        pending = session.pending_item
        if pending is None:
            raise SessionStateError(
                f"Session {session.session_id} has no item awaiting a response"
            )
        return pending

    @staticmethod
    def _validate_elapsed(session: Session, elapsed_seconds: float) -> float:
        if math.isnan(elapsed_seconds) or elapsed_seconds < session.elapsed_seconds:
            raise ValueError(
                f"elapsed_seconds must not go backwards: {elapsed_seconds} < "
                f"{session.elapsed_seconds}"
            )
        return elapsed_seconds

    def _record_response(
        self,
        session: Session,
        pending: AdministeredItem,
        chosen_option: Optional[int],
        latency_seconds: float,
        elapsed_seconds: Optional[float],
        timed_out: bool,
    ) -> Session:
        if chosen_option is not None and not (
            0 <= chosen_option < pending.option_count
        ):
            raise ValueError(
                f"chosen_option must be in [0, {pending.option_count}) or None, "
                f"got {chosen_option}"
            )
        if not math.isfinite(latency_seconds) or latency_seconds < 0:
            raise ValueError(
                f"latency_seconds must be non-negative and finite, "
                f"got {latency_seconds}"
            )
        if elapsed_seconds is None:
            elapsed = session.elapsed_seconds + latency_seconds
        else:
            elapsed = self._validate_elapsed(session, elapsed_seconds)

        response = Response(
            item_id=pending.item_id,
            chosen_option=chosen_option,
            is_correct=chosen_option == pending.correct_option,
            latency_seconds=latency_seconds,
            theta_at_selection=pending.theta_at_selection,
            timed_out=timed_out,
        )
        session = replace(
            session,
            responses=session.responses + (response,),
            elapsed_seconds=elapsed,
        )

        # Re-estimate from the full history, never incrementally skipped
        theta, se = session.config.estimate_ability(
            session.scored_responses(), current_theta=session.theta
        )
        session = replace(
            session,
            theta=theta,
            se=se,
            theta_history=session.theta_history + (theta,),
            se_history=session.se_history + (se,),
        )

        logger.debug(
            f"Session {session.session_id}: Response #{session.num_answered} "
            f"({pending.item_id}, correct={response.is_correct}, "
            f"timed_out={timed_out}) -> theta={theta:.3f}, SE={se:.3f}",
            extra={"item_id": pending.item_id, "theta": theta, "se": se},
        )

        config = session.config
        decision = check_stopping_criteria(
            se=se,
            num_items=len(session.administered),
            elapsed_seconds=elapsed,
            se_threshold=config.se_threshold,
            min_items=config.min_items,
            max_items=config.max_items,
            time_limit_seconds=config.time_limit_seconds,
        )
        if decision.should_stop:
            return self._terminate(session, decision.reason)

        return self._administer_next(session)

    def _administer_next(self, session: Session) -> Session:
        config = session.config
        coverage = track_category_coverage(
            administered.category for administered in session.administered
        )
        item = select_next_item(
            item_pool=self.item_bank,
            theta_estimate=session.theta,
            administered_ids=session.administered_ids,
            category_coverage=coverage,
            category_targets=config.category_targets,
            max_items=config.max_items,
            randomesque_k=config.randomesque_k,
            rng=self.rng,
        )
        if item is None:
            logger.warning(
                f"Session {session.session_id}: selection exhausted after "
                f"{len(session.administered)} items"
            )
            return self._terminate(session, StopReason.SELECTION_EXHAUSTED)

        administered = AdministeredItem.from_item(
            item,
            theta_at_selection=session.theta,
            item_time_limit_seconds=config.item_time_limit_seconds,
        )
        return replace(session, administered=session.administered + (administered,))

    def _terminate(self, session: Session, reason: StopReason) -> Session:
        status = STATUS_FOR_REASON[reason]
        logger.info(
            f"Session {session.session_id}: {status.value} ({reason.value}) "
            f"after {session.num_answered} responses, theta={session.theta:.3f}, "
            f"SE={session.se:.3f}",
            extra={"status": status.value, "stop_reason": reason.value},
        )
        return replace(session, status=status, stop_reason=reason)
