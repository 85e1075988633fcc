"""Target density: priors and the log-posterior adapter."""

from scanmc.posterior.log_posterior import (
    LogPosterior,
    OptimizationResult,
    Parameter,
    ParameterDescription,
)
from scanmc.posterior.priors import (
    FlatPrior,
    GaussianPrior,
    flat_prior,
    gaussian_prior,
    log_prior_density,
    prior_variance,
    sample_prior,
)

__all__ = [
    "LogPosterior",
    "OptimizationResult",
    "Parameter",
    "ParameterDescription",
    "FlatPrior",
    "GaussianPrior",
    "flat_prior",
    "gaussian_prior",
    "log_prior_density",
    "sample_prior",
    "prior_variance",
]
