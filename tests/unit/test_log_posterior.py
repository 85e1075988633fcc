"""Tests for the LogPosterior target adapter."""

import math

import numpy as np
import pytest

from scanmc.posterior import LogPosterior, flat_prior, gaussian_prior
from scanmc.sampling.exceptions import ConfigurationError, EvaluationError
from tests.conftest import CorrelatedGaussianLikelihood

EPS = 1e-9


@pytest.fixture
def box_posterior():
    posterior = LogPosterior(lambda x: -0.5 * float(x @ x))
    posterior.add(flat_prior("a", -1.0, 2.0))
    posterior.add(flat_prior("b", 0.0, 5.0))
    return posterior


# ============================================================================
# Registration
# ============================================================================


class TestRegistration:
    def test_order_is_registration_order(self, box_posterior):
        descriptions = box_posterior.parameter_descriptions()
        assert [d.name for d in descriptions] == ["a", "b"]
        assert descriptions[0].minimum == -1.0
        assert descriptions[0].prior_kind == "flat"
        assert not descriptions[1].nuisance

    def test_duplicate_rejected(self, box_posterior):
        original = box_posterior.prior("a")
        assert box_posterior.add(flat_prior("a", -100.0, 100.0)) is False
        assert box_posterior.prior("a") is original
        assert box_posterior.dimension == 2

    def test_nuisance_mask(self):
        posterior = LogPosterior(lambda x: 0.0)
        posterior.add(flat_prior("a", 0.0, 1.0))
        posterior.add(gaussian_prior("n", 0.9, 1.0, 1.1, n_sigmas=3), nuisance=True)
        assert posterior.nuisance_mask.tolist() == [False, True]
        assert posterior.parameter_descriptions()[1].prior_kind == "gaussian"

    def test_bounds(self, box_posterior):
        np.testing.assert_array_equal(box_posterior.bounds, [[-1.0, 2.0], [0.0, 5.0]])


# ============================================================================
# Evaluation
# ============================================================================


class TestEvaluate:
    def test_finite_inside(self, box_posterior):
        for point in ([-1.0 + EPS, EPS], [2.0 - EPS, 5.0 - EPS], [0.5, 2.5]):
            assert math.isfinite(box_posterior.evaluate(np.array(point)))

    @pytest.mark.parametrize(
        "point",
        [[-1.0 - EPS, 1.0], [2.0 + EPS, 1.0], [0.0, -EPS], [0.0, 5.0 + EPS]],
    )
    def test_minus_infinity_outside(self, box_posterior, point):
        assert box_posterior.evaluate(np.array(point)) == -np.inf

    def test_value_is_prior_plus_likelihood(self, box_posterior):
        x = np.array([1.0, 2.0])
        expected = -math.log(3.0) - math.log(5.0) - 0.5 * 5.0
        assert box_posterior.evaluate(x) == pytest.approx(expected)
        assert box_posterior(x) == pytest.approx(expected)

    def test_wrong_dimension(self, box_posterior):
        with pytest.raises(ConfigurationError, match="wrong dimension"):
            box_posterior.evaluate(np.array([0.0]))

    def test_non_finite_likelihood_recovered(self):
        posterior = LogPosterior(lambda x: float("nan"))
        posterior.add(flat_prior("a", 0.0, 1.0))
        assert posterior.evaluate(np.array([0.5])) == -np.inf
        assert posterior.evaluation_failures == 1

    def test_evaluation_error_recovered(self):
        def failing(x):
            raise EvaluationError("no convergence")

        posterior = LogPosterior(failing)
        posterior.add(flat_prior("a", 0.0, 1.0))
        assert posterior.evaluate(np.array([0.5])) == -np.inf
        assert posterior.evaluation_failures == 1

    def test_other_exceptions_propagate(self):
        def broken(x):
            raise RuntimeError("bug")

        posterior = LogPosterior(broken)
        posterior.add(flat_prior("a", 0.0, 1.0))
        with pytest.raises(RuntimeError):
            posterior.evaluate(np.array([0.5]))

    def test_evaluate_many(self, box_posterior):
        values = box_posterior.evaluate_many(np.array([[0.0, 1.0], [3.0, 1.0]]))
        assert math.isfinite(values[0])
        assert values[1] == -np.inf


# ============================================================================
# Cloning and sampling
# ============================================================================


class TestClone:
    def test_shares_registry(self, correlated_posterior):
        clone = correlated_posterior.clone()
        assert clone.parameters is correlated_posterior.parameters

    def test_clones_likelihood_state(self, correlated_posterior):
        clone = correlated_posterior.clone()
        x = np.array([0.0, 0.0])
        assert clone.evaluate(x) == correlated_posterior.evaluate(x)
        assert clone._log_likelihood is not correlated_posterior._log_likelihood
        assert clone._log_likelihood.calls == 1

    def test_counters_diverge(self, box_posterior):
        clone = box_posterior.clone()
        clone.evaluate(np.array([0.0, 1.0]))
        assert clone.evaluations == box_posterior.evaluations + 1

    def test_registration_after_clone_not_shared(self, box_posterior):
        clone = box_posterior.clone()
        box_posterior.add(flat_prior("c", 0.0, 1.0))
        assert clone.dimension == 2


def test_sample_point_inside_range(box_posterior, rng):
    for _ in range(20):
        assert box_posterior.in_range(box_posterior.sample_point(rng))


def test_sample_point_needs_parameters(rng):
    with pytest.raises(ConfigurationError):
        LogPosterior(lambda x: 0.0).sample_point(rng)


# ============================================================================
# Optimization
# ============================================================================


class TestOptimize:
    def test_finds_mode(self, box_posterior):
        result = box_posterior.optimize([1.5, 3.0])
        assert result.converged
        assert result.method == "Nelder-Mead"
        np.testing.assert_allclose(result.point, [0.0, 0.0], atol=1e-3)
        assert result.log_posterior == pytest.approx(box_posterior.evaluate(result.point))
        np.testing.assert_array_equal(result.start, [1.5, 3.0])

    def test_correlated_mode(self):
        posterior = LogPosterior(CorrelatedGaussianLikelihood([1.0, -0.5], [[1.0, 0.6], [0.6, 2.0]]))
        posterior.add(flat_prior("a", -10.0, 10.0))
        posterior.add(flat_prior("b", -10.0, 10.0))
        result = posterior.optimize([-3.0, 4.0])
        np.testing.assert_allclose(result.point, [1.0, -0.5], atol=1e-3)

    def test_start_drawn_from_priors(self, box_posterior, rng):
        result = box_posterior.optimize(rng=rng)
        assert box_posterior.in_range(result.start)
        assert result.evaluations > 0
        assert result.to_dict()["point"] == result.point.tolist()

    def test_wrong_dimension(self, box_posterior):
        with pytest.raises(ConfigurationError, match="dimension"):
            box_posterior.optimize([0.5])

    def test_start_outside_range(self, box_posterior):
        with pytest.raises(ConfigurationError, match="outside"):
            box_posterior.optimize([3.0, 1.0])
