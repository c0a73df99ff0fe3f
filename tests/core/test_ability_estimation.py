"""
Tests for EAP and MLE ability estimation.

Tests cover:
- EAP returns the prior with no responses
- EAP theta moves up after correct and down after incorrect responses
- EAP SE shrinks as items are answered
- EAP stays finite for all-correct / all-incorrect patterns
- MLE step fallback for uniform patterns, clamped to the theta range
- MLE Newton-Raphson convergence on mixed patterns
- MLE updates never move against the latest response
- Input validation
"""
import math

import pytest

from iqcat.core.cat.ability_estimation import (
    MLE_INITIAL_SE,
    MLE_STEP_SIZE,
    estimate_ability_eap,
    estimate_ability_mle,
)
from iqcat.core.cat.irt_model import ItemParameters, standard_error

MEDIUM = ItemParameters(1.0, 0.0, 0.25)


def _bank_params(n):
    return [ItemParameters(1.2, -1.5 + 3.0 * i / max(1, n - 1), 0.2) for i in range(n)]


class TestEAP:
    def test_no_responses_returns_prior(self):
        assert estimate_ability_eap([], prior_mean=0.3, prior_sd=1.2) == (0.3, 1.2)

    def test_correct_response_raises_theta(self):
        theta, _ = estimate_ability_eap([(MEDIUM, True)])
        assert theta > 0.0

    def test_incorrect_response_lowers_theta(self):
        theta, _ = estimate_ability_eap([(MEDIUM, False)])
        assert theta < 0.0

    def test_monotone_update_along_a_sequence(self):
        """Each correct answer moves theta up, each incorrect one down."""
        params = _bank_params(8)
        pattern = [True, True, False, True, False, False, True, True]
        responses = []
        previous, _ = estimate_ability_eap([])
        for p, correct in zip(params, pattern):
            responses.append((p, correct))
            theta, _ = estimate_ability_eap(responses)
            if correct:
                assert theta > previous
            else:
                assert theta < previous
            previous = theta

    def test_se_decreases_with_more_items(self):
        params = _bank_params(10)
        se_short = estimate_ability_eap([(p, True) for p in params[:2]])[1]
        se_long = estimate_ability_eap([(p, i % 2 == 0) for i, p in enumerate(params)])[1]
        assert se_long < se_short < 1.0

    @pytest.mark.parametrize("outcome", [True, False])
    def test_uniform_pattern_is_finite_and_bounded(self, outcome):
        responses = [(p, outcome) for p in _bank_params(15)]
        theta, se = estimate_ability_eap(responses)
        assert math.isfinite(theta)
        assert -4.0 <= theta <= 4.0
        assert 0.0 < se < 1.0
        if outcome:
            assert theta > 1.0
        else:
            assert theta < -1.0

    def test_extreme_items_do_not_overflow(self):
        responses = [(ItemParameters(3.0, 8.0, 0.0), True)] * 20
        theta, se = estimate_ability_eap(responses)
        assert math.isfinite(theta)
        assert math.isfinite(se)

    def test_prior_mean_shifts_estimate(self):
        low = estimate_ability_eap([(MEDIUM, True)], prior_mean=-1.0)[0]
        high = estimate_ability_eap([(MEDIUM, True)], prior_mean=1.0)[0]
        assert low < high

    def test_invalid_prior_sd(self):
        with pytest.raises(ValueError, match="prior_sd"):
            estimate_ability_eap([(MEDIUM, True)], prior_sd=0.0)

    def test_invalid_discrimination(self):
        with pytest.raises(ValueError, match="Discrimination"):
            estimate_ability_eap([(ItemParameters(0.0, 0.0, 0.25), True)])


class TestMLE:
    def test_no_responses(self):
        assert estimate_ability_mle([], current_theta=0.4) == (0.4, MLE_INITIAL_SE)

    def test_all_correct_steps_up(self):
        theta, se = estimate_ability_mle([(MEDIUM, True)], current_theta=0.0)
        assert theta == pytest.approx(MLE_STEP_SIZE)
        assert 0.0 < se <= MLE_INITIAL_SE

    def test_all_incorrect_steps_down(self):
        theta, _ = estimate_ability_mle(
            [(MEDIUM, False), (MEDIUM, False)], current_theta=0.5
        )
        assert theta == pytest.approx(0.5 - MLE_STEP_SIZE)

    def test_step_clamped_to_range(self):
        theta, _ = estimate_ability_mle(
            [(MEDIUM, True)], current_theta=3.8, theta_range=(-4.0, 4.0)
        )
        assert theta == 4.0

    def test_mixed_pattern_converges_to_symmetric_maximum(self):
        """One right, one wrong on identical 2PL items: the MLE is b."""
        item = ItemParameters(1.0, 0.0, 0.0)
        theta, se = estimate_ability_mle(
            [(item, True), (item, False)], current_theta=1.0
        )
        assert theta == pytest.approx(0.0, abs=1e-3)
        # Two items at theta = b each contribute 0.25
        assert se == pytest.approx(1.0 / math.sqrt(0.5), rel=1e-3)

    def test_mixed_pattern_within_range(self):
        params = _bank_params(10)
        responses = [(p, i < 6) for i, p in enumerate(params)]
        theta, se = estimate_ability_mle(responses, current_theta=0.0)
        assert -4.0 <= theta <= 4.0
        assert se < MLE_INITIAL_SE

    def test_monotone_update_along_a_sequence(self):
        """A correct answer never lowers theta, an incorrect one never raises it."""
        params = _bank_params(8)
        pattern = [True, True, False, True, False, False, True, True]
        responses = []
        previous, _ = estimate_ability_mle([], current_theta=0.0)
        for p, correct in zip(params, pattern):
            responses.append((p, correct))
            theta, _ = estimate_ability_mle(responses, current_theta=previous)
            if correct:
                assert theta >= previous
            else:
                assert theta <= previous
            previous = theta

    def test_correct_answer_after_misses_does_not_lower_theta(self):
        # Two steps down, then the full-pattern maximum lies below -1.4
        responses = [(MEDIUM, False), (MEDIUM, False), (MEDIUM, True)]
        theta, se = estimate_ability_mle(responses, current_theta=-1.4)
        assert theta >= -1.4
        assert se == pytest.approx(
            min(MLE_INITIAL_SE, standard_error(theta, [MEDIUM] * 3))
        )

    def test_incorrect_answer_after_hits_does_not_raise_theta(self):
        # Full-pattern maximum is near 0.22, above the previous estimate
        responses = [(MEDIUM, True), (MEDIUM, True), (MEDIUM, False)]
        theta, _ = estimate_ability_mle(responses, current_theta=-0.5)
        assert theta <= -0.5

    def test_convergence_onto_bound_uses_step_update(self):
        """Five misses then a hit: the maximum sits at the lower bound."""
        responses = [(MEDIUM, False)] * 5 + [(MEDIUM, True)]
        theta, _ = estimate_ability_mle(responses, current_theta=-3.5)
        assert theta == pytest.approx(-3.5 + MLE_STEP_SIZE)
