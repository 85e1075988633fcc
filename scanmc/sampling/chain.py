"""A single Metropolis-Hastings chain.

A chain owns its private random generator, its current point and an
adaptive proposal. It evaluates a cloned :class:`LogPosterior`, so chains
share no mutable state and can run on separate worker threads.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from scanmc.sampling.proposals import MultivariateGaussianProposal
from scanmc.utils.logging import get_logger

if TYPE_CHECKING:
    from scanmc.posterior.log_posterior import LogPosterior

logger = get_logger(__name__)


@dataclass
class ChainHistory:
    """Samples produced by one call to :meth:`MarkovChain.run`."""

    chain: int
    points: np.ndarray
    log_posterior: np.ndarray
    accepted: int
    first_iteration: int

    @property
    def size(self) -> int:
        return self.points.shape[0]

    @property
    def acceptance_rate(self) -> float:
        return self.accepted / self.size if self.size else 0.0

    @property
    def iterations(self) -> np.ndarray:
        return np.arange(self.first_iteration, self.first_iteration + self.size, dtype=np.int64)


class MarkovChain:
    """Random-walk Metropolis chain.

    Parameters
    ----------
    index : int
        Chain id, recorded as ``group`` of its samples.
    posterior : LogPosterior
        Private copy of the target.
    proposal : MultivariateGaussianProposal
        Local proposal (Gaussian or Student-t).
    start : np.ndarray
        Starting point.
    rng : np.random.Generator
        Private generator.
    """

    def __init__(
        self,
        index: int,
        posterior: LogPosterior,
        proposal: MultivariateGaussianProposal,
        start: np.ndarray,
        rng: np.random.Generator,
    ):
        self.index = index
        self.posterior = posterior
        self.proposal = proposal
        self.rng = rng
        self.current = np.array(start, dtype=float)
        self.current_log_posterior = posterior.evaluate(self.current)
        self.iteration = 0

        self.proposed = 0
        self.accepted = 0
        self.total_proposed = 0
        self.total_accepted = 0

        if not math.isfinite(self.current_log_posterior):
            logger.warning(
                f"Chain {index} starts at a point with log-posterior "
                f"{self.current_log_posterior}"
            )

    def step(self) -> bool:
        """One Metropolis step; returns True if the proposal was accepted."""
        candidate = self.proposal.propose(self.rng, self.current)
        candidate_log_posterior = self.posterior.evaluate(candidate)
        log_u = math.log(self.rng.random())

        self.proposed += 1
        self.total_proposed += 1

        if candidate_log_posterior == -math.inf:
            return False
        if self.current_log_posterior == -math.inf or (
            log_u < candidate_log_posterior - self.current_log_posterior
        ):
            self.current = candidate
            self.current_log_posterior = candidate_log_posterior
            self.accepted += 1
            self.total_accepted += 1
            return True
        return False

    def run(self, n_steps: int) -> ChainHistory:
        """Run ``n_steps`` steps and return every visited point.

        A rejected proposal repeats the current point, so the history always
        has exactly ``n_steps`` rows.
        """
        d = self.current.size
        points = np.empty((n_steps, d))
        log_posterior = np.empty(n_steps)
        accepted = 0
        first_iteration = self.iteration

        for i in range(n_steps):
            accepted += self.step()
            points[i] = self.current
            log_posterior[i] = self.current_log_posterior

        self.iteration += n_steps
        return ChainHistory(self.index, points, log_posterior, accepted, first_iteration)

    @property
    def acceptance_rate(self) -> float:
        """Acceptance rate since the last :meth:`reset_statistics`."""
        return self.accepted / self.proposed if self.proposed else 0.0

    @property
    def total_acceptance_rate(self) -> float:
        return self.total_accepted / self.total_proposed if self.total_proposed else 0.0

    def reset_statistics(self) -> None:
        self.proposed = 0
        self.accepted = 0

    def __repr__(self) -> str:
        return (
            f"MarkovChain(index={self.index}, iteration={self.iteration}, "
            f"acceptance={self.total_acceptance_rate:.3f})"
        )
