"""scanmc: MCMC and Population Monte Carlo parameter scans
=======================================================

Bayesian inference for models whose likelihood is an opaque function of a
parameter vector. Multi-chain adaptive Metropolis-Hastings explores the
posterior; Population Monte Carlo refines a mixture proposal built from the
chains into a weighted posterior sample.

Quick Start:
    >>> from scanmc import LogPosterior, MarkovChainSampler, MCMCConfig, flat_prior
    >>>
    >>> posterior = LogPosterior(lambda x: -0.5 * float(x @ x))
    >>> posterior.add(flat_prior("x", -10.0, 10.0))
    >>> sampler = MarkovChainSampler(posterior, MCMCConfig(seed=42))
    >>> status = sampler.run()
"""

from scanmc._version import version as __version__
from scanmc.config import ConfigManager
from scanmc.posterior import (
    FlatPrior,
    GaussianPrior,
    LogPosterior,
    flat_prior,
    gaussian_prior,
)
from scanmc.sampling import (
    ConfigurationError,
    ConvergenceWarning,
    EvaluationError,
    MarkovChainSampler,
    MCMCConfig,
    MixtureModel,
    PMCConfig,
    PMCResult,
    PopulationMonteCarloSampler,
    SampleStore,
    ScanError,
    StorageError,
)

__all__ = [
    "__version__",
    "ConfigManager",
    "LogPosterior",
    "FlatPrior",
    "GaussianPrior",
    "flat_prior",
    "gaussian_prior",
    "MCMCConfig",
    "PMCConfig",
    "MarkovChainSampler",
    "PopulationMonteCarloSampler",
    "PMCResult",
    "MixtureModel",
    "SampleStore",
    "ScanError",
    "ConfigurationError",
    "EvaluationError",
    "StorageError",
    "ConvergenceWarning",
]
