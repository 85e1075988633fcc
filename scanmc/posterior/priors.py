"""Prior distributions for scan and nuisance parameters.

Priors are plain frozen dataclasses (one per kind). Their behaviour lives in
module-level functions dispatching on the prior type, so a new kind is added
by defining its dataclass and registering one case per function:

    @log_prior_density.register
    def _(prior: MyPrior, value: float) -> float:
        ...
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from functools import singledispatch
from typing import Union

import numpy as np

from scanmc.sampling.exceptions import ConfigurationError
from scanmc.utils.logging import get_logger

logger = get_logger(__name__)

MAX_N_SIGMAS = 10.0
_MAX_REJECTION_ROUNDS = 1000


@dataclass(frozen=True)
class FlatPrior:
    """Uniform prior on ``[minimum, maximum]``."""

    name: str
    minimum: float
    maximum: float

    def __post_init__(self):
        _check_range(self.name, self.minimum, self.maximum)

    @property
    def kind(self) -> str:
        return "flat"


@dataclass(frozen=True)
class GaussianPrior:
    """Asymmetric Gaussian prior truncated to ``[minimum, maximum]``.

    ``lower`` and ``upper`` are the one-sigma boundaries around ``central``;
    both sides may have different widths.
    """

    name: str
    minimum: float
    maximum: float
    lower: float
    central: float
    upper: float

    def __post_init__(self):
        _check_range(self.name, self.minimum, self.maximum)
        if not (self.lower < self.central < self.upper):
            raise ConfigurationError(
                f"Gaussian prior for '{self.name}' needs lower < central < upper",
                error_context={
                    "lower": self.lower,
                    "central": self.central,
                    "upper": self.upper,
                },
            )

    @property
    def kind(self) -> str:
        return "gaussian"

    @property
    def sigma_lower(self) -> float:
        return self.central - self.lower

    @property
    def sigma_upper(self) -> float:
        return self.upper - self.central


Prior = Union[FlatPrior, GaussianPrior]


def _check_range(name: str, minimum: float, maximum: float) -> None:
    if not (np.isfinite(minimum) and np.isfinite(maximum)):
        raise ConfigurationError(
            f"Parameter '{name}' needs a finite range",
            error_context={"min": minimum, "max": maximum},
        )
    if minimum >= maximum:
        raise ConfigurationError(
            f"Invalid range for '{name}': min ({minimum}) >= max ({maximum})",
            error_context={"min": minimum, "max": maximum},
        )


def flat_prior(name: str, minimum: float, maximum: float, n_sigmas: float = 0.0) -> FlatPrior:
    """Build a flat prior, rejecting a sigma-based range."""
    if n_sigmas:
        raise ConfigurationError(
            f"Can't specify number of sigmas for flat prior of '{name}'"
        )
    return FlatPrior(name, float(minimum), float(maximum))


def gaussian_prior(
    name: str,
    lower: float,
    central: float,
    upper: float,
    n_sigmas: float = 0.0,
    hard_range: tuple[float, float] | None = None,
) -> GaussianPrior:
    """Build a Gaussian prior whose range may be derived from its widths.

    Parameters
    ----------
    name : str
        Parameter name.
    lower, central, upper : float
        One-sigma interval around the central value.
    n_sigmas : float
        If positive, the range is ``central -/+ n_sigmas`` times the lower/upper
        width, clipped to ``hard_range`` when one is given.
    hard_range : tuple of float, optional
        Hard bounds supplied by the user.

    Raises
    ------
    ConfigurationError
        If neither a usable range nor ``n_sigmas`` is given.
    """
    minimum, maximum = hard_range if hard_range is not None else (-np.inf, np.inf)

    if n_sigmas:
        if not 0.0 < n_sigmas <= MAX_N_SIGMAS:
            raise ConfigurationError(
                f"number of sigmas for '{name}' must be in (0, {MAX_N_SIGMAS}]",
                error_context={"n_sigmas": n_sigmas},
            )
        minimum = max(minimum, central - n_sigmas * (central - lower))
        maximum = min(maximum, central + n_sigmas * (upper - central))

    return GaussianPrior(
        name, float(minimum), float(maximum), float(lower), float(central), float(upper)
    )


@singledispatch
def log_prior_density(prior, value: float) -> float:
    """Log-density of ``prior`` at ``value``; ``-inf`` outside the range."""
    raise TypeError(f"Unsupported prior type: {type(prior).__name__}")


@log_prior_density.register
def _(prior: FlatPrior, value: float) -> float:
    if not prior.minimum <= value <= prior.maximum:
        return -np.inf
    return -math.log(prior.maximum - prior.minimum)


@log_prior_density.register
def _(prior: GaussianPrior, value: float) -> float:
    if not prior.minimum <= value <= prior.maximum:
        return -np.inf
    sigma = prior.sigma_lower if value < prior.central else prior.sigma_upper
    norm = 2.0 / (math.sqrt(2.0 * math.pi) * (prior.sigma_lower + prior.sigma_upper))
    chi = (value - prior.central) / sigma
    return math.log(norm) - 0.5 * chi * chi


@singledispatch
def sample_prior(prior, rng: np.random.Generator) -> float:
    """Draw one value from ``prior``."""
    raise TypeError(f"Unsupported prior type: {type(prior).__name__}")


@sample_prior.register
def _(prior: FlatPrior, rng: np.random.Generator) -> float:
    return float(rng.uniform(prior.minimum, prior.maximum))


@sample_prior.register
def _(prior: GaussianPrior, rng: np.random.Generator) -> float:
    p_lower = prior.sigma_lower / (prior.sigma_lower + prior.sigma_upper)
    for _ in range(_MAX_REJECTION_ROUNDS):
        offset = abs(rng.standard_normal())
        if rng.uniform() < p_lower:
            value = prior.central - offset * prior.sigma_lower
        else:
            value = prior.central + offset * prior.sigma_upper
        if prior.minimum <= value <= prior.maximum:
            return float(value)

    raise ConfigurationError(
        f"Could not sample a value for '{prior.name}' inside its range",
        error_context={"min": prior.minimum, "max": prior.maximum},
    )


@singledispatch
def prior_variance(prior) -> float:
    """Variance scale used to seed proposal covariances."""
    raise TypeError(f"Unsupported prior type: {type(prior).__name__}")


@prior_variance.register
def _(prior: FlatPrior) -> float:
    return (prior.maximum - prior.minimum) ** 2 / 12.0


@prior_variance.register
def _(prior: GaussianPrior) -> float:
    sigma = 0.5 * (prior.sigma_lower + prior.sigma_upper)
    width = prior.maximum - prior.minimum
    return min(sigma, width / math.sqrt(12.0)) ** 2


def describe_prior(prior) -> str:
    """Human readable one-line description used in run logs."""
    if isinstance(prior, GaussianPrior):
        return (
            f"Parameter: {prior.name}, prior type: gaussian, "
            f"range: [{prior.minimum}, {prior.maximum}], "
            f"x = {prior.central} +{prior.sigma_upper} -{prior.sigma_lower}"
        )
    return (
        f"Parameter: {prior.name}, prior type: {prior.kind}, "
        f"range: [{prior.minimum}, {prior.maximum}]"
    )
