"""
Pytest Configuration and Fixtures for scanmc
============================================

Shared fixtures, configuration, and test utilities for the entire test suite.
"""

import tempfile
from pathlib import Path

import numpy as np
import pytest

from scanmc.posterior import LogPosterior, flat_prior, gaussian_prior
from scanmc.sampling.storage import SampleStore

# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests for individual components")
    config.addinivalue_line("markers", "integration: Integration tests for workflows")
    config.addinivalue_line("markers", "mcmc: MCMC statistical tests")
    config.addinivalue_line("markers", "slow: Slow tests (> 5 seconds)")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        path = str(item.fspath)
        if "unit" in path:
            item.add_marker(pytest.mark.unit)
        elif "integration" in path:
            item.add_marker(pytest.mark.integration)
            item.add_marker(pytest.mark.slow)


# ============================================================================
# Likelihoods
# ============================================================================


def standard_normal_log_likelihood(x):
    """Unnormalized log-density of a standard normal in any dimension."""
    return -0.5 * float(np.dot(x, x))


class CorrelatedGaussianLikelihood:
    """Gaussian likelihood with a full covariance and a clone() hook."""

    def __init__(self, mean, covariance):
        self.mean = np.asarray(mean, dtype=float)
        self.precision = np.linalg.inv(np.asarray(covariance, dtype=float))
        self.calls = 0

    def __call__(self, x):
        self.calls += 1
        d = x - self.mean
        return -0.5 * float(d @ self.precision @ d)

    def clone(self):
        other = CorrelatedGaussianLikelihood.__new__(CorrelatedGaussianLikelihood)
        other.mean = self.mean
        other.precision = self.precision
        other.calls = 0
        return other


# ============================================================================
# Core Fixtures
# ============================================================================


@pytest.fixture
def temp_dir():
    """Temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def rng():
    """Seeded generator for reproducible test data."""
    return np.random.default_rng(12345)


@pytest.fixture
def gaussian_posterior():
    """1-D standard Gaussian target with a flat prior on [-10, 10]."""
    posterior = LogPosterior(standard_normal_log_likelihood)
    posterior.add(flat_prior("x", -10.0, 10.0))
    return posterior


@pytest.fixture
def correlated_posterior():
    """2-D correlated Gaussian target; the second parameter is a nuisance."""
    likelihood = CorrelatedGaussianLikelihood([1.0, -0.5], [[1.0, 0.6], [0.6, 2.0]])
    posterior = LogPosterior(likelihood)
    posterior.add(flat_prior("a", -10.0, 10.0))
    posterior.add(gaussian_prior("b", -2.0, -0.5, 1.0, n_sigmas=5), nuisance=True)
    return posterior


@pytest.fixture
def memory_store():
    """In-memory HDF5 sample store."""
    store = SampleStore.in_memory()
    yield store
    store.close()


@pytest.fixture
def file_store(temp_dir):
    """HDF5 sample store on disk."""
    store = SampleStore.open(temp_dir / "samples.h5", "w")
    yield store
    store.close()
