"""Target adapter: log-likelihood x priors with hard parameter ranges.

The :class:`LogPosterior` turns an opaque log-likelihood callable into the
target density explored by the samplers. Parameter ranges and priors are
registered once and shared read-only between clones, so every worker can own
a cheap private copy.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np
from scipy.optimize import minimize

from scanmc.posterior.priors import (
    Prior,
    describe_prior,
    log_prior_density,
    prior_variance,
    sample_prior,
)
from scanmc.sampling.exceptions import ConfigurationError, EvaluationError
from scanmc.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Parameter:
    """A registered parameter: its prior carries name and hard range."""

    prior: Prior
    nuisance: bool = False

    @property
    def name(self) -> str:
        return self.prior.name

    @property
    def minimum(self) -> float:
        return self.prior.minimum

    @property
    def maximum(self) -> float:
        return self.prior.maximum


@dataclass(frozen=True)
class ParameterDescription:
    """Read-only summary of a registered parameter."""

    name: str
    minimum: float
    maximum: float
    prior_kind: str
    nuisance: bool


@dataclass(frozen=True)
class OptimizationResult:
    """Outcome of a posterior maximization."""

    point: np.ndarray
    log_posterior: float
    start: np.ndarray
    converged: bool
    iterations: int
    evaluations: int
    method: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "point": self.point.tolist(),
            "log_posterior": self.log_posterior,
            "start": self.start.tolist(),
            "converged": self.converged,
            "iterations": self.iterations,
            "evaluations": self.evaluations,
            "method": self.method,
            "message": self.message,
        }


class LogPosterior:
    """Log-posterior = sum of log-priors + log-likelihood.

    Parameters
    ----------
    log_likelihood : callable
        ``log_likelihood(point) -> float`` evaluated for in-range points. If
        the object has a ``clone()`` method it is called by :meth:`clone` so
        per-worker state can be duplicated.

    Examples
    --------
    >>> posterior = LogPosterior(lambda x: -0.5 * float(x @ x))
    >>> posterior.add(FlatPrior("x", -10.0, 10.0))
    True
    >>> posterior.evaluate(np.array([0.0]))
    -2.995732273553991
    """

    def __init__(self, log_likelihood: Callable[[np.ndarray], float]):
        self._log_likelihood = log_likelihood
        # Tuples are replaced, never mutated: clones keep a consistent view.
        self._parameters: tuple[Parameter, ...] = ()
        self.evaluations = 0
        self.evaluation_failures = 0

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def add(self, prior: Prior, nuisance: bool = False) -> bool:
        """Register ``prior`` for a new parameter.

        Returns
        -------
        bool
            False if a prior for the same parameter name exists already; the
            existing registration is left untouched.
        """
        if any(p.name == prior.name for p in self._parameters):
            logger.warning(
                f"Parameter '{prior.name}' already has a prior; ignoring new {prior.kind} prior"
            )
            return False

        self._parameters = self._parameters + (Parameter(prior, bool(nuisance)),)
        logger.debug(describe_prior(prior) + (" (nuisance)" if nuisance else ""))
        return True

    def prior(self, name: str) -> Prior:
        for parameter in self._parameters:
            if parameter.name == name:
                return parameter.prior
        raise KeyError(name)

    @property
    def parameters(self) -> tuple[Parameter, ...]:
        return self._parameters

    @property
    def dimension(self) -> int:
        return len(self._parameters)

    @property
    def names(self) -> list[str]:
        return [p.name for p in self._parameters]

    @property
    def bounds(self) -> np.ndarray:
        """Hard ranges as a ``(dimension, 2)`` array."""
        return np.array([[p.minimum, p.maximum] for p in self._parameters], dtype=float).reshape(-1, 2)

    @property
    def nuisance_mask(self) -> np.ndarray:
        return np.array([p.nuisance for p in self._parameters], dtype=bool)

    def parameter_descriptions(self) -> list[ParameterDescription]:
        """Descriptions in registration order."""
        return [
            ParameterDescription(p.name, p.minimum, p.maximum, p.prior.kind, p.nuisance)
            for p in self._parameters
        ]

    def prior_variances(self) -> np.ndarray:
        return np.array([prior_variance(p.prior) for p in self._parameters], dtype=float)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def _check_point(self, point: Sequence[float] | np.ndarray) -> np.ndarray:
        x = np.asarray(point, dtype=float)
        if x.shape != (self.dimension,):
            raise ConfigurationError(
                "Parameter point has wrong dimension",
                error_context={"expected": self.dimension, "got": x.shape},
            )
        return x

    def in_range(self, point: Sequence[float] | np.ndarray) -> bool:
        x = self._check_point(point)
        bounds = self.bounds
        return bool(np.all((x >= bounds[:, 0]) & (x <= bounds[:, 1])))

    def log_prior(self, point: Sequence[float] | np.ndarray) -> float:
        x = self._check_point(point)
        return float(sum(log_prior_density(p.prior, v) for p, v in zip(self._parameters, x)))

    def log_likelihood(self, point: Sequence[float] | np.ndarray) -> float:
        x = self._check_point(point)
        return float(self._log_likelihood(x))

    def evaluate(self, point: Sequence[float] | np.ndarray) -> float:
        """Log-posterior at ``point``.

        Out-of-range points give ``-inf``. A likelihood raising
        :class:`EvaluationError` or returning a non-finite value also gives
        ``-inf``; such events are counted in ``evaluation_failures``.
        """
        x = self._check_point(point)
        self.evaluations += 1

        if not self.in_range(x):
            return -np.inf

        log_prior = self.log_prior(x)
        if not math.isfinite(log_prior):
            return -np.inf

        try:
            log_likelihood = float(self._log_likelihood(x))
        except EvaluationError as e:
            self.evaluation_failures += 1
            logger.debug(f"Likelihood evaluation failed at {x}: {e}")
            return -np.inf

        if not math.isfinite(log_likelihood):
            self.evaluation_failures += 1
            logger.debug(f"Non-finite likelihood {log_likelihood} at {x}")
            return -np.inf

        return log_prior + log_likelihood

    __call__ = evaluate

    def evaluate_many(self, points: np.ndarray) -> np.ndarray:
        """Evaluate every row of ``points``."""
        points = np.atleast_2d(np.asarray(points, dtype=float))
        return np.array([self.evaluate(row) for row in points], dtype=float)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def sample_point(self, rng: np.random.Generator) -> np.ndarray:
        """Draw a point from the product of all priors."""
        if not self._parameters:
            raise ConfigurationError("No parameters registered; cannot sample a starting point")
        return np.array([sample_prior(p.prior, rng) for p in self._parameters], dtype=float)

    def optimize(
        self,
        start: Sequence[float] | np.ndarray | None = None,
        rng: np.random.Generator | None = None,
        max_iterations: int = 10000,
        tolerance: float = 1e-6,
    ) -> OptimizationResult:
        """Locate the posterior mode.

        Nelder-Mead within the hard ranges, falling back to Powell when the
        simplex search does not converge. Without ``start`` the search begins
        at a draw from the priors.

        Raises
        ------
        ConfigurationError
            If ``start`` has the wrong dimension or lies outside the ranges.
        """
        if start is None:
            start = self.sample_point(rng if rng is not None else np.random.default_rng())
        x0 = self._check_point(start)
        if not self.in_range(x0):
            raise ConfigurationError(
                "Starting point outside the parameter ranges",
                error_context={"start": x0.tolist()},
            )
        logger.info(f"Starting optimization at {np.array2string(x0, precision=4)}")

        def negative_log_posterior(x: np.ndarray) -> float:
            value = self.evaluate(x)
            return -value if math.isfinite(value) else np.inf

        bounds = [tuple(b) for b in self.bounds]
        method = "Nelder-Mead"
        result = minimize(
            negative_log_posterior,
            x0,
            method=method,
            bounds=bounds,
            options={"maxiter": max_iterations, "xatol": tolerance, "fatol": tolerance},
        )
        evaluations = int(result.nfev)

        if not result.success:
            logger.warning(f"Nelder-Mead did not converge ({result.message}); trying Powell")
            method = "Powell"
            result = minimize(
                negative_log_posterior,
                result.x,
                method=method,
                bounds=bounds,
                options={"maxiter": max_iterations, "xtol": tolerance, "ftol": tolerance},
            )
            evaluations += int(result.nfev)

        optimum = OptimizationResult(
            point=np.asarray(result.x, dtype=float),
            log_posterior=float(-result.fun),
            start=x0,
            converged=bool(result.success),
            iterations=int(getattr(result, "nit", 0)),
            evaluations=evaluations,
            method=method,
            message=str(result.message),
        )
        logger.info(
            f"Best result: log(posterior) at {np.array2string(optimum.point, precision=6)} "
            f"= {optimum.log_posterior:.6g} ({method}, converged={optimum.converged})"
        )
        return optimum

    def clone(self) -> LogPosterior:
        """Independent copy for a worker.

        The parameter registry is shared (it is immutable); counters start
        from the current values and diverge afterwards.
        """
        likelihood: Any = self._log_likelihood
        if hasattr(likelihood, "clone"):
            likelihood = likelihood.clone()

        other = LogPosterior.__new__(LogPosterior)
        other._log_likelihood = likelihood
        other._parameters = self._parameters
        other.evaluations = self.evaluations
        other.evaluation_failures = self.evaluation_failures
        return other

    def __repr__(self) -> str:
        return f"LogPosterior(parameters={self.names})"
