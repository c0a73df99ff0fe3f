"""
Tests for the CAT session manager.

Tests cover:
- Session initialization at the prior and first-item selection
- Full session flow on the five-item bank (all correct)
- Item-limit termination regardless of precision
- Undefined (None) sub-scores for categories never administered
- Selection exhaustion
- Precision stopping after the minimum item count
- Per-item and global timeouts
- Abandonment (idempotent, keeps responses)
- Caller-contract violations (SessionStateError) and input validation
- Immutability of session values and finalize idempotence
- MLE estimation through the engine
- Theta never moves against the latest response (EAP and MLE)
"""
import dataclasses
import math
import random

import pytest

from conftest import make_item
from libs.domain_types import ItemCategory, SessionStatus, StopReason
from iqcat.core.cat.engine import CATSessionManager
from iqcat.core.cat.item_bank import ItemBank
from iqcat.core.cat.session import SessionConfig, SessionStateError


def _answer(manager, session, correct=True, latency=12.0, **kwargs):
    item = manager.current_item(session)
    option = item.content.correct_option
    if not correct:
        option = (option + 1) % len(item.content.options)
    return manager.submit_response(session, option, latency, **kwargs)


def _run(manager, session, correct=True, latency=12.0):
    while not session.is_terminal:
        session = _answer(manager, session, correct=correct, latency=latency)
    return session


class TestSessionInitialization:
    def test_new_session_at_prior(self, scenario_bank):
        manager = CATSessionManager(scenario_bank, SessionConfig(prior_mean=0.2))
        session = manager.new_session("abc")
        assert session.session_id == "abc"
        assert session.status == SessionStatus.NOT_STARTED
        assert session.theta == 0.2
        assert session.se == 1.0
        assert session.administered == ()
        assert manager.current_item(session) is None

    def test_generated_ids_unique(self, scenario_bank):
        manager = CATSessionManager(scenario_bank, SessionConfig())
        assert manager.new_session().session_id != manager.new_session().session_id

    def test_start_selects_first_item_at_prior(self, scenario_bank):
        manager = CATSessionManager(scenario_bank, SessionConfig())
        session = manager.start_session()
        assert session.status == SessionStatus.IN_PROGRESS
        assert len(session.administered) == 1
        pending = session.pending_item
        assert pending.theta_at_selection == 0.0
        assert manager.current_item(session).id == pending.item_id

    def test_begin_twice_rejected(self, scenario_bank):
        manager = CATSessionManager(scenario_bank, SessionConfig())
        session = manager.start_session()
        with pytest.raises(SessionStateError, match="already started"):
            manager.begin(session)

    def test_mle_initial_se(self, scenario_bank):
        manager = CATSessionManager(scenario_bank, SessionConfig(estimation_method="mle"))
        assert manager.new_session().se == 10.0

    def test_default_config_from_settings(self, scenario_bank):
        manager = CATSessionManager(scenario_bank)
        assert manager.config.max_items == 15
        assert manager.config.estimation_method == "eap"


class TestEndToEnd:
    def test_five_item_bank_all_correct(self, scenario_bank):
        manager = CATSessionManager(scenario_bank, SessionConfig())
        session = _run(manager, manager.start_session())

        assert session.num_answered == 5
        assert session.theta > 0.0
        assert session.se < 1.0
        # Bank runs dry before any limit
        assert session.stop_reason == StopReason.SELECTION_EXHAUSTED
        assert session.status == SessionStatus.COMPLETED_BY_ITEM_LIMIT

        result = manager.finalize(session)
        assert result.theta > 0.0
        assert result.se < 1.0
        assert result.iq_score > 100
        assert result.correct_count == 5
        assert len(result.progression) == 5

    def test_theta_rises_after_every_correct_answer(self, scenario_bank):
        manager = CATSessionManager(scenario_bank, SessionConfig())
        session = _run(manager, manager.start_session())
        history = (0.0,) + session.theta_history
        assert all(b > a for a, b in zip(history, history[1:]))

    def test_item_limit_regardless_of_precision(self, scenario_bank):
        config = SessionConfig(max_items=3, min_items=3, se_threshold=0.0)
        manager = CATSessionManager(scenario_bank, config)
        session = _run(manager, manager.start_session())

        assert session.num_answered == 3
        assert session.status == SessionStatus.COMPLETED_BY_ITEM_LIMIT
        assert session.stop_reason == StopReason.MAX_ITEMS
        assert session.pending_item is None

    def test_unadministered_category_is_undefined(self, scenario_bank):
        config = SessionConfig(max_items=3, min_items=3)
        manager = CATSessionManager(scenario_bank, config)
        result = manager.finalize(_run(manager, manager.start_session()))

        seen = {step.category for step in result.progression}
        unseen = set(ItemCategory) - seen
        assert len(unseen) == 2
        for category in unseen:
            score = result.category_scores[category]
            assert score.items_administered == 0
            assert score.accuracy is None
        for category in seen:
            assert result.category_scores[category].accuracy == 100.0

    def test_precision_stop_after_min_items(self, bank_50):
        config = SessionConfig(se_threshold=0.65, min_items=4, max_items=20)
        manager = CATSessionManager(bank_50, config)
        session = manager.start_session()
        pattern = [True, False] * 10
        for correct in pattern:
            if session.is_terminal:
                break
            session = _answer(manager, session, correct=correct)

        assert session.status == SessionStatus.COMPLETED_BY_PRECISION
        assert session.stop_reason == StopReason.SE_THRESHOLD
        assert session.num_answered >= 4
        assert session.se <= 0.65

    def test_never_repeats_items(self, bank_50):
        manager = CATSessionManager(
            bank_50, SessionConfig(max_items=30, min_items=30, se_threshold=0.0)
        )
        session = _run(manager, manager.start_session())
        ids = [item.item_id for item in session.administered]
        assert len(ids) == len(set(ids)) == 30

    def test_category_balance_over_session(self, bank_50):
        config = SessionConfig(max_items=10, min_items=10, se_threshold=0.0)
        manager = CATSessionManager(bank_50, config)
        session = _run(manager, manager.start_session())
        counts = {}
        for item in session.administered:
            counts[item.category] = counts.get(item.category, 0) + 1
        # Equal shares of 10 items: two per category
        assert counts == {category: 2 for category in ItemCategory}

    def test_mle_session(self, scenario_bank):
        manager = CATSessionManager(scenario_bank, SessionConfig(estimation_method="mle"))
        session = manager.start_session()
        session = _answer(manager, session, correct=True)
        assert session.theta == pytest.approx(0.7)
        session = _answer(manager, session, correct=False)
        session = _run(manager, session)
        result = manager.finalize(session)
        assert math.isfinite(result.theta)
        assert result.se < 10.0

    @pytest.mark.parametrize("method", ["eap", "mle"])
    def test_theta_direction_follows_each_response(self, bank_50, method):
        config = SessionConfig(
            estimation_method=method, min_items=20, max_items=20, se_threshold=0.0
        )
        manager = CATSessionManager(bank_50, config)
        rng = random.Random(2024)
        moved_wrong_way = []

        for _ in range(100):
            session = manager.start_session()
            while not session.is_terminal:
                previous = session.theta
                session = _answer(manager, session, correct=rng.random() < 0.5)
                last = session.responses[-1]
                if last.is_correct and session.theta < previous - 1e-12:
                    moved_wrong_way.append((True, previous, session.theta))
                if not last.is_correct and session.theta > previous + 1e-12:
                    moved_wrong_way.append((False, previous, session.theta))

        assert moved_wrong_way == []


class TestResponses:
    def test_incorrect_option_scored(self, scenario_bank):
        manager = CATSessionManager(scenario_bank, SessionConfig())
        session = _answer(manager, manager.start_session(), correct=False)
        assert session.responses[0].is_correct is False
        assert session.theta < 0.0

    def test_no_answer_is_incorrect(self, scenario_bank):
        manager = CATSessionManager(scenario_bank, SessionConfig())
        session = manager.submit_response(manager.start_session(), None, 30.0)
        assert session.responses[0].chosen_option is None
        assert session.responses[0].is_correct is False

    @pytest.mark.parametrize("option", [-1, 4])
    def test_option_out_of_range(self, scenario_bank, option):
        manager = CATSessionManager(scenario_bank, SessionConfig())
        with pytest.raises(ValueError, match="chosen_option"):
            manager.submit_response(manager.start_session(), option, 5.0)

    @pytest.mark.parametrize("latency", [-1.0, float("nan"), float("inf")])
    def test_invalid_latency(self, scenario_bank, latency):
        manager = CATSessionManager(scenario_bank, SessionConfig())
        with pytest.raises(ValueError, match="latency"):
            manager.submit_response(manager.start_session(), 0, latency)

    def test_elapsed_accumulates_latency(self, scenario_bank):
        manager = CATSessionManager(scenario_bank, SessionConfig())
        session = _answer(manager, manager.start_session(), latency=7.5)
        session = _answer(manager, session, latency=2.5)
        assert session.elapsed_seconds == pytest.approx(10.0)

    def test_elapsed_must_not_go_backwards(self, scenario_bank):
        manager = CATSessionManager(scenario_bank, SessionConfig())
        session = _answer(manager, manager.start_session(), elapsed_seconds=50.0)
        with pytest.raises(ValueError, match="backwards"):
            _answer(manager, session, elapsed_seconds=40.0)

    def test_session_values_are_not_mutated(self, scenario_bank):
        manager = CATSessionManager(scenario_bank, SessionConfig())
        before = manager.start_session()
        after = _answer(manager, before)
        assert before.responses == ()
        assert len(before.administered) == 1
        assert len(after.responses) == 1
        with pytest.raises(dataclasses.FrozenInstanceError):
            before.theta = 3.0

    def test_same_state_same_next_item(self, scenario_bank):
        manager = CATSessionManager(scenario_bank, SessionConfig())
        session = manager.start_session("fixed")
        first = _answer(manager, session)
        second = _answer(manager, session)
        assert first.pending_item == second.pending_item
        assert first.theta == second.theta

    def test_submit_to_terminal_rejected(self, scenario_bank):
        manager = CATSessionManager(scenario_bank, SessionConfig())
        session = _run(manager, manager.start_session())
        with pytest.raises(SessionStateError, match="terminal"):
            manager.submit_response(session, 0, 5.0)

    def test_submit_before_start_rejected(self, scenario_bank):
        manager = CATSessionManager(scenario_bank, SessionConfig())
        with pytest.raises(SessionStateError, match="no item"):
            manager.submit_response(manager.new_session(), 0, 5.0)

    def test_pending_item_missing_from_bank(self, scenario_bank):
        manager = CATSessionManager(scenario_bank, SessionConfig())
        session = manager.start_session()
        other = CATSessionManager(ItemBank([make_item("unrelated")]), SessionConfig())
        with pytest.raises(SessionStateError, match="not in this item bank"):
            other.current_item(session)


class TestTimeouts:
    def test_item_timeout_records_incorrect(self, scenario_bank):
        manager = CATSessionManager(scenario_bank, SessionConfig())
        session = manager.expire_item(manager.start_session())
        response = session.responses[0]
        assert response.timed_out is True
        assert response.chosen_option is None
        assert response.is_correct is False
        assert response.latency_seconds == 60.0
        assert session.status == SessionStatus.IN_PROGRESS

    def test_item_timeout_uses_shorter_limit(self):
        bank = ItemBank([make_item("q1", time_limit_seconds=20.0), make_item("q2")])
        manager = CATSessionManager(bank, SessionConfig(item_time_limit_seconds=45.0))
        session = manager.start_session()
        expected = 20.0 if session.pending_item.item_id == "q1" else 45.0
        session = manager.expire_item(session)
        assert session.responses[0].latency_seconds == expected

    def test_global_timeout_leaves_pending_unscored(self, scenario_bank):
        manager = CATSessionManager(scenario_bank, SessionConfig())
        session = _answer(manager, manager.start_session())
        session = _answer(manager, session)
        session = manager.expire_session(session, elapsed_seconds=1800.0)

        assert session.status == SessionStatus.COMPLETED_BY_TIMEOUT
        assert session.stop_reason == StopReason.TIME_LIMIT
        result = manager.finalize(session)
        assert result.items_administered == 3
        assert result.items_answered == 2
        assert result.items_unanswered == 1
        assert len(result.progression) == 2

    def test_time_limit_reached_by_response(self, scenario_bank):
        manager = CATSessionManager(scenario_bank, SessionConfig(time_limit_seconds=30.0))
        session = _answer(manager, manager.start_session(), latency=31.0)
        assert session.status == SessionStatus.COMPLETED_BY_TIMEOUT

    def test_time_limit_beats_item_limit(self, scenario_bank):
        config = SessionConfig(max_items=1, min_items=1, time_limit_seconds=10.0)
        manager = CATSessionManager(scenario_bank, config)
        session = _answer(manager, manager.start_session(), latency=11.0)
        assert session.stop_reason == StopReason.TIME_LIMIT

    def test_expire_terminal_rejected(self, scenario_bank):
        manager = CATSessionManager(scenario_bank, SessionConfig())
        session = manager.abandon(manager.start_session())
        with pytest.raises(SessionStateError):
            manager.expire_session(session, 2000.0)
        with pytest.raises(SessionStateError):
            manager.expire_item(session)

    def test_expire_not_started_rejected(self, scenario_bank):
        manager = CATSessionManager(scenario_bank, SessionConfig())
        session = manager.new_session()
        with pytest.raises(SessionStateError, match="not started"):
            manager.expire_session(session, 10.0)
        assert manager.abandon(session).status == SessionStatus.ABANDONED


class TestAbandon:
    def test_abandon_keeps_responses(self, scenario_bank):
        manager = CATSessionManager(scenario_bank, SessionConfig())
        session = _answer(manager, manager.start_session())
        session = manager.abandon(session)

        assert session.status == SessionStatus.ABANDONED
        assert session.stop_reason == StopReason.ABANDONED
        assert len(session.responses) == 1
        assert manager.current_item(session) is None

    def test_abandon_is_idempotent(self, scenario_bank):
        manager = CATSessionManager(scenario_bank, SessionConfig())
        session = manager.abandon(manager.start_session())
        assert manager.abandon(session) is session

    def test_abandon_not_started(self, scenario_bank):
        manager = CATSessionManager(scenario_bank, SessionConfig())
        session = manager.abandon(manager.new_session())
        result = manager.finalize(session)
        assert result.items_answered == 0
        assert result.theta == 0.0
        assert result.se == 1.0
        assert result.iq_score == 100

    def test_cannot_abandon_completed(self, scenario_bank):
        manager = CATSessionManager(scenario_bank, SessionConfig())
        session = _run(manager, manager.start_session())
        with pytest.raises(SessionStateError, match="Cannot abandon"):
            manager.abandon(session)


class TestFinalize:
    def test_in_progress_rejected(self, scenario_bank):
        manager = CATSessionManager(scenario_bank, SessionConfig())
        with pytest.raises(SessionStateError, match="Cannot finalize"):
            manager.finalize(manager.start_session())

    def test_idempotent(self, bank_50):
        config = SessionConfig(max_items=8, min_items=8)
        manager = CATSessionManager(bank_50, config)
        session = manager.start_session()
        for correct in [True, False, True, True, False, True, False, True]:
            session = _answer(manager, session, correct=correct)
        assert manager.finalize(session) == manager.finalize(session)

    def test_progression_matches_live_estimates(self, bank_50):
        config = SessionConfig(max_items=6, min_items=6)
        manager = CATSessionManager(bank_50, config)
        session = manager.start_session()
        for correct in [True, True, False, True, False, False]:
            session = _answer(manager, session, correct=correct)
        result = manager.finalize(session)

        assert result.theta_progression == pytest.approx(list(session.theta_history))
        assert result.se_progression == pytest.approx(list(session.se_history))
        assert [s.theta_at_selection for s in result.progression] == pytest.approx(
            [item.theta_at_selection for item in session.administered]
        )
        assert result.difficulty_progression == [
            item.b for item in session.administered
        ]
        assert all(info > 0 for info in result.information_progression)

    def test_result_fields(self, bank_50):
        config = SessionConfig(max_items=8, min_items=8)
        manager = CATSessionManager(bank_50, config)
        session = manager.start_session()
        for correct in [True, False] * 4:
            session = _answer(manager, session, correct=correct, latency=15.0)
        result = manager.finalize(session)

        assert result.session_id == session.session_id
        assert 40 <= result.ci_lower <= result.iq_score <= result.ci_upper <= 160
        assert 0.0 <= result.percentile <= 100.0
        assert result.confidence_level == 0.95
        assert result.reliability.num_pairs == 4
        assert result.reliability.precision == pytest.approx(1.0 / result.se)
        assert 0.0 <= result.reliability.marginal_reliability <= 1.0
        assert result.timing["response_count"] == 8
        assert result.timing["mean_time_per_question"] == 15.0
        assert result.elapsed_seconds == pytest.approx(120.0)
