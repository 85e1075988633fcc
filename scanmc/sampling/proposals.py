"""Local proposal densities for the Metropolis-Hastings chains.

Both proposals are random walks centred on the current point, so the
Metropolis acceptance probability only involves the target ratio. Their
covariance is adapted between pre-run blocks from the chain's own history.
"""

from __future__ import annotations

import numpy as np

from scanmc.sampling.exceptions import ConfigurationError
from scanmc.utils.logging import get_logger

logger = get_logger(__name__)

# Optimal random-walk scaling (Gelman, Roberts & Gilks 1996)
OPTIMAL_SCALE = 2.38
TARGET_ACCEPTANCE = (0.15, 0.35)
_SCALE_STEP = 1.5
_SCALE_LIMITS = (1e-3, 1e3)
_JITTER = 1e-12


def cholesky_factor(covariance: np.ndarray) -> np.ndarray:
    """Cholesky factor, adding diagonal jitter until it succeeds."""
    covariance = np.atleast_2d(np.asarray(covariance, dtype=float))
    scale = float(np.max(np.abs(np.diag(covariance)))) or 1.0
    jitter = 0.0
    for _ in range(10):
        try:
            return np.linalg.cholesky(covariance + jitter * np.eye(covariance.shape[0]))
        except np.linalg.LinAlgError:
            jitter = _JITTER * scale if jitter == 0.0 else jitter * 100.0
    raise ConfigurationError(
        "Proposal covariance is not positive definite",
        error_context={"diagonal": np.diag(covariance).tolist()},
    )


class MultivariateGaussianProposal:
    """Gaussian random walk ``x' = x + L z`` with ``L L^T`` = covariance."""

    kind = "MultivariateGaussian"

    def __init__(self, covariance: np.ndarray, scale: float = 1.0):
        self.scale = float(scale)
        self._set_covariance(covariance)

    def _set_covariance(self, covariance: np.ndarray) -> None:
        self._covariance = np.atleast_2d(np.asarray(covariance, dtype=float))
        self._cholesky = cholesky_factor(self.scale * self._covariance)

    @property
    def covariance(self) -> np.ndarray:
        """Effective covariance including the acceptance-driven scale."""
        return self.scale * self._covariance

    @property
    def dimension(self) -> int:
        return self._covariance.shape[0]

    def _step(self, rng: np.random.Generator) -> np.ndarray:
        return self._cholesky @ rng.standard_normal(self.dimension)

    def propose(self, rng: np.random.Generator, current: np.ndarray) -> np.ndarray:
        return current + self._step(rng)

    def adapt(
        self,
        history: np.ndarray,
        acceptance_rate: float,
        scale_reduction: float = 1.0,
    ) -> None:
        """Re-estimate the covariance from ``history``.

        The new covariance is ``2.38^2 / d`` times the sample covariance of
        the history divided by ``scale_reduction``. The scale factor moves by
        a fixed step whenever the acceptance rate of the block left the
        15-35 % band.
        """
        low, high = TARGET_ACCEPTANCE
        if acceptance_rate < low:
            self.scale /= _SCALE_STEP
        elif acceptance_rate > high:
            self.scale *= _SCALE_STEP
        self.scale = float(np.clip(self.scale, *_SCALE_LIMITS))

        history = np.asarray(history, dtype=float)
        d = self.dimension
        covariance = self._covariance
        if history.ndim == 2 and history.shape[0] > d + 1:
            sample_cov = np.atleast_2d(np.cov(history, rowvar=False))
            if np.all(np.isfinite(sample_cov)) and np.all(np.diag(sample_cov) > 0):
                covariance = (OPTIMAL_SCALE**2 / d) * sample_cov / scale_reduction
                # Chains that got stuck produce a (near) singular history.
                covariance = covariance + _JITTER * np.diag(np.diag(covariance))
            else:
                logger.debug("Degenerate chain history; keeping previous proposal covariance")

        self._set_covariance(covariance)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(dimension={self.dimension}, scale={self.scale:.3g})"


class MultivariateStudentTProposal(MultivariateGaussianProposal):
    """Heavy-tailed random walk ``x' = x + L z / sqrt(u)``, ``u ~ chi2(nu)/nu``."""

    kind = "MultivariateStudentT"

    def __init__(self, covariance: np.ndarray, degrees_of_freedom: float, scale: float = 1.0):
        if degrees_of_freedom is None or not degrees_of_freedom > 0:
            raise ConfigurationError(
                "No (or non-positive) degree of freedom for MultivariateStudentT specified",
                error_context={"degrees_of_freedom": degrees_of_freedom},
            )
        self.degrees_of_freedom = float(degrees_of_freedom)
        super().__init__(covariance, scale)

    def _step(self, rng: np.random.Generator) -> np.ndarray:
        u = rng.chisquare(self.degrees_of_freedom) / self.degrees_of_freedom
        return super()._step(rng) / np.sqrt(u)


def build_proposal(
    kind: str,
    covariance: np.ndarray,
    degrees_of_freedom: float | None = None,
) -> MultivariateGaussianProposal:
    """Create a proposal of the configured kind."""
    if kind == MultivariateGaussianProposal.kind:
        return MultivariateGaussianProposal(covariance)
    if kind == MultivariateStudentTProposal.kind:
        return MultivariateStudentTProposal(covariance, degrees_of_freedom)
    raise ConfigurationError(f"Unknown proposal kind: {kind}")
