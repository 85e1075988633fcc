"""Multi-chain Metropolis-Hastings sampler.

The sampler drives a set of independent :class:`MarkovChain` objects through
an adaptive pre-run and a main run:

1. **Initializing**: validate the configuration, derive per-chain generators
   from one seed and pick starting points.
2. **PreRun**: blocks of ``prerun_iterations_update`` steps; after each block
   every proposal is adapted and the R-value across chains is checked.
3. **MainRun**: ``chunks`` chunks of ``chunk_size`` steps per chain, one
   durable store write per chunk and chain.
4. **Finished**: acceptance rates are logged and stored; chains released.

Chains share no mutable state. In parallel mode every block runs one chain
per worker thread and synchronizes at the block boundary.
"""

from __future__ import annotations

import time
import warnings
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

import numpy as np

from scanmc.sampling.chain import ChainHistory, MarkovChain
from scanmc.sampling.config import MCMCConfig
from scanmc.sampling.diagnostics import (
    acceptance_summary,
    compute_r_values,
    max_r_value,
    r_value_dict,
)
from scanmc.sampling.exceptions import (
    ConfigurationError,
    ConvergenceWarning,
    ScanError,
    StorageError,
)
from scanmc.sampling.proposals import build_proposal
from scanmc.sampling.storage import SampleStore, make_records
from scanmc.utils.logging import get_logger, log_operation, with_context
from scanmc.utils.progress import SamplingProgress

if TYPE_CHECKING:
    from scanmc.posterior.log_posterior import LogPosterior

logger = get_logger(__name__)

MCMC_GROUP = "mcmc"
PRERUN_PREFIX = "mcmc/prerun"
MAIN_PREFIX = "mcmc/main"


def chain_stream(prefix: str, index: int) -> str:
    return f"{prefix}/chain_{index:03d}"


class MCMCState(Enum):
    INITIALIZING = "initializing"
    PRERUN = "prerun"
    MAIN_RUN = "main_run"
    FINISHED = "finished"


@dataclass
class MCMCStatus:
    """Progress and diagnostics of a :class:`MarkovChainSampler` run."""

    state: MCMCState = MCMCState.INITIALIZING
    converged: bool = False
    seed: int | None = None
    prerun_iterations: int = 0
    main_iterations: int = 0
    r_values: dict[str, float] = field(default_factory=dict)
    max_r_value_history: list[float] = field(default_factory=list)
    acceptance_rates: dict[int, float] = field(default_factory=dict)
    failed_chains: dict[int, str] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "converged": self.converged,
            "seed": self.seed,
            "prerun_iterations": self.prerun_iterations,
            "main_iterations": self.main_iterations,
            "r_values": dict(self.r_values),
            "max_r_value_history": list(self.max_r_value_history),
            "acceptance_rates": {str(k): v for k, v in self.acceptance_rates.items()},
            "failed_chains": {str(k): v for k, v in self.failed_chains.items()},
            "warnings": list(self.warnings),
        }


def _starting_points(
    posterior: LogPosterior,
    config: MCMCConfig,
    rngs: list[np.random.Generator],
) -> np.ndarray:
    """One starting point per chain, shape ``(n_chains, dimension)``."""
    n_chains, d = config.number_of_chains, posterior.dimension

    if config.starting_points is None:
        return np.array([posterior.sample_point(rng) for rng in rngs])

    points = np.asarray(config.starting_points, dtype=float)
    if points.ndim == 1:
        points = np.tile(points, (n_chains, 1))
    if points.ndim != 2 or points.shape != (n_chains, d):
        raise ConfigurationError(
            "Starting points do not match the number of chains and parameters",
            error_context={"expected": (n_chains, d), "got": points.shape},
        )
    for i, point in enumerate(points):
        if not posterior.in_range(point):
            raise ConfigurationError(
                "Starting point outside the parameter ranges",
                error_context={"chain": i, "point": point.tolist()},
            )
    return points


def read_chain_histories(store: SampleStore, prefix: str = MAIN_PREFIX) -> list[np.ndarray]:
    """Points of every chain stream below ``prefix``, ordered by chain id."""
    return [store.read(stream)["point"] for stream in store.streams(prefix)]


class MarkovChainSampler:
    """Adaptive multi-chain Metropolis-Hastings sampler.

    Parameters
    ----------
    posterior : LogPosterior
        Target density. Every chain evaluates its own clone.
    config : MCMCConfig
        Complete sampler configuration; validated before any work starts.
    store : SampleStore, optional
        Output store. Without one, ``config.output_file`` is opened or, if
        unset, an in-memory store is used.

    Raises
    ------
    ConfigurationError
        For invalid configurations, starting points of the wrong shape or
        priors that cannot be sampled.

    Examples
    --------
    >>> sampler = MarkovChainSampler(posterior, MCMCConfig(seed=42))
    >>> status = sampler.run()
    >>> status.acceptance_rates
    {0: 0.27, 1: 0.29, 2: 0.26, 3: 0.28}
    """

    def __init__(
        self,
        posterior: LogPosterior,
        config: MCMCConfig | None = None,
        store: SampleStore | None = None,
    ):
        self.config = config or MCMCConfig()
        self.config.ensure_valid()
        if posterior.dimension == 0:
            raise ConfigurationError("No parameters registered for sampling")

        self.posterior = posterior
        self.status = MCMCStatus()

        seed = self.config.seed
        if seed is None:
            seed = int(time.time())
            logger.info(f"No seed given; using wall-clock seed {seed}")
        self.status.seed = seed

        children = np.random.SeedSequence(seed).spawn(self.config.number_of_chains)
        rngs = [np.random.default_rng(child) for child in children]
        starts = _starting_points(posterior, self.config, rngs)

        covariance = np.diag(posterior.prior_variances()) * self.config.proposal_initial_scale**2
        self._chains = [
            MarkovChain(
                i,
                posterior.clone(),
                build_proposal(
                    self.config.proposal,
                    covariance,
                    self.config.student_t_degrees_of_freedom,
                ),
                starts[i],
                rngs[i],
            )
            for i in range(self.config.number_of_chains)
        ]

        self._owns_store = store is None
        if store is None:
            # A new run replaces the previous contents of its output file
            store = (
                SampleStore.open(self.config.output_file, "w")
                if self.config.output_file
                else SampleStore.in_memory()
            )
        elif store.streams(MCMC_GROUP):
            raise StorageError(
                "Store already holds Markov chain samples",
                error_context={"store": store.path, "streams": len(store.streams(MCMC_GROUP))},
            )
        self.store = store
        self.store.write_parameter_descriptions(posterior.parameter_descriptions())
        self.store.set_metadata(MCMC_GROUP, {"config": self.config.to_dict(), "seed": seed})

        logger.info(
            f"MCMC sampler initialized: {self.config.number_of_chains} chains, "
            f"{posterior.dimension} parameters, proposal={self.config.proposal}, seed={seed}"
        )

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self) -> MCMCStatus:
        return self.status

    def set_status(self, converged: bool) -> None:
        """Manual override of the pre-run convergence flag."""
        self.status.converged = bool(converged)

    @property
    def chains(self) -> list[MarkovChain]:
        return list(self._chains)

    def _active_chains(self) -> list[MarkovChain]:
        return [c for c in self._chains if c.index not in self.status.failed_chains]

    # ------------------------------------------------------------------
    # Blocks
    # ------------------------------------------------------------------

    def _run_chain(self, chain: MarkovChain, n_steps: int, prefix: str | None) -> ChainHistory:
        history = chain.run(n_steps)
        if prefix is not None:
            records = make_records(
                history.points,
                history.log_posterior,
                1.0,
                chain.index,
                history.iterations,
            )
            self.store.append(chain_stream(prefix, chain.index), records)
        return history

    def _mark_failed(self, chain: MarkovChain, error: Exception) -> None:
        with_context(logger, chain=chain.index).error(f"Chain failed: {error}")
        self.status.failed_chains[chain.index] = str(error)

    def _run_block(
        self,
        n_steps: int,
        prefix: str | None,
        progress: SamplingProgress | None = None,
    ) -> dict[int, ChainHistory]:
        """Advance every active chain by ``n_steps``.

        A chain raising an exception is marked failed and excluded from all
        later blocks; the run raises only once every chain has failed.
        """
        chains = self._active_chains()
        histories: dict[int, ChainHistory] = {}
        last_error: Exception | None = None

        if self.config.parallelize and len(chains) > 1:
            max_workers = self.config.max_workers or len(chains)
            with ThreadPoolExecutor(max_workers=max_workers) as executor:
                futures = {
                    executor.submit(self._run_chain, chain, n_steps, prefix): chain
                    for chain in chains
                }
                for future in as_completed(futures):
                    chain = futures[future]
                    try:
                        histories[chain.index] = future.result()
                    except Exception as e:
                        self._mark_failed(chain, e)
                        last_error = e
                    if progress is not None:
                        progress.update(n_steps)
        else:
            for chain in chains:
                try:
                    histories[chain.index] = self._run_chain(chain, n_steps, prefix)
                except Exception as e:
                    self._mark_failed(chain, e)
                    last_error = e
                if progress is not None:
                    progress.update(n_steps)

        if not histories:
            raise ScanError(
                "All Markov chains failed",
                error_context={"failed_chains": dict(self.status.failed_chains)},
            ) from last_error

        return dict(sorted(histories.items()))

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _prerun(self) -> None:
        config = self.config
        self.status.state = MCMCState.PRERUN
        prefix = PRERUN_PREFIX if config.store_prerun else None

        if config.prerun_iterations_max == 0:
            logger.info("Pre-run skipped: prerun_iterations_max is 0")
            return

        progress = SamplingProgress(
            config.prerun_iterations_max * len(self._active_chains()),
            desc="Pre-run",
            verbose=config.show_progress,
        )
        with progress, log_operation("MCMC pre-run", logger):
            while True:
                histories = self._run_block(config.prerun_iterations_update, prefix, progress)
                self.status.prerun_iterations += config.prerun_iterations_update
                iterations = self.status.prerun_iterations

                for chain in self._active_chains():
                    history = histories[chain.index]
                    chain.proposal.adapt(
                        history.points, history.acceptance_rate, config.scale_reduction
                    )
                    chain.reset_statistics()

                r_values = compute_r_values(
                    [h.points for h in histories.values()],
                    strict=config.use_strict_rvalue_definition,
                )
                worst = max_r_value(r_values)
                self.status.r_values = r_value_dict(self.posterior.names, r_values)
                self.status.max_r_value_history.append(worst)

                logger.info(f"Pre-run after {iterations} iterations: max R = {worst:.4f}")
                logger.debug(
                    "Block acceptance: "
                    + acceptance_summary({k: h.acceptance_rate for k, h in histories.items()})
                )

                if self.status.converged:
                    logger.info("Pre-run convergence set manually")
                    break
                if iterations >= config.prerun_iterations_min:
                    if np.isnan(worst):
                        # R is undefined for a single chain; the minimum length decides.
                        self.status.converged = True
                        break
                    if worst < config.rvalue_criterion:
                        self.status.converged = True
                        logger.info(
                            f"Pre-run converged after {iterations} iterations "
                            f"(max R = {worst:.4f} < {config.rvalue_criterion})"
                        )
                        break
                if iterations >= config.prerun_iterations_max:
                    self._warn(
                        f"Pre-run not converged after {iterations} iterations "
                        f"(max R = {worst:.4f}, criterion {config.rvalue_criterion})"
                    )
                    break

        self.store.set_metadata(
            MCMC_GROUP,
            {"prerun_converged": self.status.converged, "r_values": self.status.r_values},
        )

    def _main_run(self) -> None:
        config = self.config
        self.status.state = MCMCState.MAIN_RUN
        for chain in self._active_chains():
            chain.reset_statistics()

        progress = SamplingProgress(
            config.chunks * config.chunk_size * len(self._active_chains()),
            desc="Main run",
            verbose=config.show_progress,
        )
        with progress, log_operation("MCMC main run", logger):
            for chunk in range(config.chunks):
                self._run_block(config.chunk_size, MAIN_PREFIX, progress)
                self.status.main_iterations += config.chunk_size
                logger.debug(f"Main run chunk {chunk + 1}/{config.chunks} committed")

    def _finish(self) -> None:
        self.status.state = MCMCState.FINISHED
        self.status.acceptance_rates = {
            chain.index: (
                chain.acceptance_rate
                if self.config.need_main_run
                else chain.total_acceptance_rate
            )
            for chain in self._active_chains()
        }
        logger.info("Acceptance rates: " + acceptance_summary(self.status.acceptance_rates))

        failures = sum(chain.posterior.evaluation_failures for chain in self._chains)
        if failures:
            logger.info(f"{failures} likelihood evaluations failed and were rejected")

        self.store.set_metadata(MCMC_GROUP, {"status": self.status.to_dict()})
        self._chains = []

    def _warn(self, message: str) -> None:
        warnings.warn(message, ConvergenceWarning, stacklevel=3)
        logger.warning(message)
        self.status.warnings.append(message)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self) -> MCMCStatus:
        """Run the configured phases and return the final status."""
        if self.status.state is MCMCState.FINISHED:
            raise ScanError("Sampler has already finished; create a new one to sample again")

        if self.config.need_prerun:
            self._prerun()
        if self.config.need_main_run:
            self._main_run()
        self._finish()
        return self.status

    def samples(self, prerun: bool = False) -> list[np.ndarray]:
        """Stored points per chain (main run, or pre-run if ``prerun``)."""
        return read_chain_histories(self.store, PRERUN_PREFIX if prerun else MAIN_PREFIX)

    def close(self) -> None:
        """Close the store if this sampler opened it."""
        if self._owns_store:
            self.store.close()

    def __enter__(self) -> MarkovChainSampler:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
