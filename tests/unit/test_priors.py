"""Tests for prior variants and their dispatch functions."""

import math

import numpy as np
import pytest

from scanmc.posterior.priors import (
    FlatPrior,
    GaussianPrior,
    flat_prior,
    gaussian_prior,
    log_prior_density,
    prior_variance,
    sample_prior,
)
from scanmc.sampling.exceptions import ConfigurationError

# ============================================================================
# Flat prior
# ============================================================================


class TestFlatPrior:
    def test_density_inside_range(self):
        prior = flat_prior("x", -10.0, 10.0)
        assert log_prior_density(prior, 0.0) == pytest.approx(-math.log(20.0))
        assert log_prior_density(prior, 10.0) == pytest.approx(-math.log(20.0))

    def test_density_outside_range(self):
        prior = flat_prior("x", -10.0, 10.0)
        assert log_prior_density(prior, 10.0 + 1e-9) == -np.inf
        assert log_prior_density(prior, -10.0 - 1e-9) == -np.inf

    def test_invalid_range(self):
        with pytest.raises(ConfigurationError):
            FlatPrior("x", 1.0, 1.0)
        with pytest.raises(ConfigurationError):
            FlatPrior("x", 0.0, np.inf)

    def test_n_sigmas_rejected(self):
        with pytest.raises(ConfigurationError, match="number of sigmas"):
            flat_prior("x", 0.0, 1.0, n_sigmas=3)

    def test_samples_in_range(self, rng):
        prior = flat_prior("x", 2.0, 3.0)
        values = [sample_prior(prior, rng) for _ in range(200)]
        assert min(values) >= 2.0
        assert max(values) <= 3.0

    def test_variance(self):
        assert prior_variance(flat_prior("x", 0.0, 6.0)) == pytest.approx(3.0)


# ============================================================================
# Gaussian prior
# ============================================================================


class TestGaussianPrior:
    def test_requires_ordered_interval(self):
        with pytest.raises(ConfigurationError, match="lower < central < upper"):
            GaussianPrior("g", -5.0, 5.0, 1.0, 0.0, 2.0)

    def test_symmetric_density_matches_normal(self):
        prior = GaussianPrior("g", -10.0, 10.0, -1.0, 0.0, 1.0)
        expected = -0.5 * math.log(2.0 * math.pi) - 0.5 * 0.25
        assert log_prior_density(prior, 0.5) == pytest.approx(expected)

    def test_asymmetric_widths(self):
        prior = GaussianPrior("g", -10.0, 10.0, -1.0, 0.0, 2.0)
        assert prior.sigma_lower == 1.0
        assert prior.sigma_upper == 2.0
        # One sigma on either side gives the same density
        assert log_prior_density(prior, -1.0) == pytest.approx(log_prior_density(prior, 2.0))

    def test_n_sigmas_range(self):
        prior = gaussian_prior("g", 0.8, 1.0, 1.5, n_sigmas=2)
        assert prior.minimum == pytest.approx(0.6)
        assert prior.maximum == pytest.approx(2.0)

    def test_n_sigmas_clipped_to_hard_range(self):
        prior = gaussian_prior("g", 0.8, 1.0, 1.5, n_sigmas=2, hard_range=(0.7, 1.8))
        assert prior.minimum == pytest.approx(0.7)
        assert prior.maximum == pytest.approx(1.8)

    @pytest.mark.parametrize("n_sigmas", [-1.0, 10.5])
    def test_n_sigmas_bounds(self, n_sigmas):
        with pytest.raises(ConfigurationError):
            gaussian_prior("g", 0.8, 1.0, 1.5, n_sigmas=n_sigmas)

    def test_needs_some_range(self):
        with pytest.raises(ConfigurationError):
            gaussian_prior("g", 0.8, 1.0, 1.5)

    def test_samples_follow_widths(self, rng):
        prior = gaussian_prior("g", -1.0, 0.0, 2.0, n_sigmas=8)
        values = np.array([sample_prior(prior, rng) for _ in range(4000)])
        assert np.all((values >= prior.minimum) & (values <= prior.maximum))
        # One third of the mass lies below the central value
        assert np.mean(values < 0.0) == pytest.approx(1.0 / 3.0, abs=0.03)

    def test_unsampleable_range(self, rng):
        prior = GaussianPrior("g", 100.0, 100.1, -1.0, 0.0, 1.0)
        with pytest.raises(ConfigurationError, match="Could not sample"):
            sample_prior(prior, rng)

    def test_variance_uses_narrower_scale(self):
        wide = GaussianPrior("g", -100.0, 100.0, -1.0, 0.0, 1.0)
        narrow = GaussianPrior("g", -0.1, 0.1, -1.0, 0.0, 1.0)
        assert prior_variance(wide) == pytest.approx(1.0)
        assert prior_variance(narrow) == pytest.approx(0.2**2 / 12.0)


def test_unknown_prior_type():
    with pytest.raises(TypeError):
        log_prior_density(object(), 0.0)
