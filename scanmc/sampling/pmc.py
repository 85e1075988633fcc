"""Population Monte Carlo sampler.

Adapts a :class:`MixtureModel` proposal to the posterior by importance
sampling (Cappé et al. 2008):

1. draw ``samples_per_component * adjust_sample_size`` points per component,
2. weigh them with ``target(x) / mixture(x)``,
3. re-estimate component weights, means and covariances from the weighted,
   responsibility-assigned draws,

until the normalized effective sample size or the normalized perplexity
``exp(H) / N`` of the weights stabilizes, or ``max_updates`` is reached. A
final, larger draw from the frozen mixture is the posterior approximation.

Draws and weights can also be produced separately (``draw_samples`` and
``calculate_weights`` over row ranges) so that the expensive target
evaluations can be distributed over several processes or machines.
"""

from __future__ import annotations

import logging
import os
import time
import warnings
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

import numpy as np

from scanmc.sampling.config import PMCConfig
from scanmc.sampling.diagnostics import (
    effective_sample_size,
    normalized_effective_sample_size,
    normalized_perplexity,
    relative_std_deviation,
)
from scanmc.sampling.exceptions import ConfigurationError, ConvergenceWarning, ScanError
from scanmc.sampling.mcmc import MAIN_PREFIX, PRERUN_PREFIX, read_chain_histories
from scanmc.sampling.mixture import MixtureComponent, MixtureModel, group_chains
from scanmc.sampling.storage import SampleStore, make_records
from scanmc.utils.logging import get_logger, log_operation, log_performance
from scanmc.utils.progress import SamplingProgress

if TYPE_CHECKING:
    from scanmc.posterior.log_posterior import LogPosterior

logger = get_logger(__name__)

PMC_GROUP = "pmc"
DRAWS_STREAM = "pmc/draws"
WEIGHTS_PREFIX = "pmc/weights"
SAMPLES_STREAM = "pmc/samples"
COMPONENTS_STREAM = "pmc/components"
FINAL_STREAM = "pmc/final"


class PMCState(Enum):
    UNINITIALIZED = "uninitialized"
    SAMPLING = "sampling"
    UPDATING = "updating"
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"


@dataclass
class PMCStatus:
    """Progress and convergence monitors of a PMC run."""

    state: PMCState = PMCState.UNINITIALIZED
    converged: bool = False
    updates: int = 0
    seed: int | None = None
    effective_sample_sizes: list[float] = field(default_factory=list)
    perplexities: list[float] = field(default_factory=list)
    group_assignment: list[int] = field(default_factory=list)
    stable_steps: int = 0
    convergence_reason: str | None = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "converged": self.converged,
            "updates": self.updates,
            "seed": self.seed,
            "effective_sample_sizes": list(self.effective_sample_sizes),
            "perplexities": list(self.perplexities),
            "stable_steps": self.stable_steps,
            "group_assignment": list(self.group_assignment),
            "convergence_reason": self.convergence_reason,
            "warnings": list(self.warnings),
        }


@dataclass
class PMCResult:
    """Weighted posterior sample from the final mixture."""

    points: np.ndarray
    weights: np.ndarray
    log_posterior: np.ndarray
    components: np.ndarray
    mixture: MixtureModel
    status: PMCStatus

    @property
    def converged(self) -> bool:
        return self.status.converged

    @property
    def effective_sample_size(self) -> float:
        return effective_sample_size(self.weights)

    def weighted_mean(self) -> np.ndarray:
        return np.average(self.points, axis=0, weights=self.weights)

    def weighted_covariance(self) -> np.ndarray:
        return np.atleast_2d(np.cov(self.points, rowvar=False, aweights=self.weights))


def normalize_weights(log_weights: np.ndarray, crop_highest: int = 0) -> np.ndarray:
    """Normalized importance weights from their logarithms.

    Non-finite log-weights give weight 0. The ``crop_highest`` largest
    weights are cropped to the largest remaining weight (truncated
    importance sampling), so cropping more never raises the maximum
    normalized weight. All-zero input returns zeros.
    """
    log_weights = np.asarray(log_weights, dtype=float)
    weights = np.zeros_like(log_weights)
    finite = np.isfinite(log_weights)
    if not np.any(finite):
        return weights

    weights[finite] = np.exp(log_weights[finite] - np.max(log_weights[finite]))

    n_positive = int(np.count_nonzero(weights > 0))
    crop = min(int(crop_highest), n_positive - 1)
    if crop > 0:
        order = np.argsort(weights, kind="stable")[::-1]
        weights[order[:crop]] = weights[order[crop]]

    return weights / np.sum(weights)


def _open_source(source: str | Path | SampleStore | None, default: SampleStore) -> tuple[SampleStore, bool]:
    """Resolve ``source`` to a store; the flag tells whether to close it."""
    if source is None:
        return default, False
    if isinstance(source, SampleStore):
        return source, False
    if default.path is not None and Path(default.path).resolve() == Path(source).resolve():
        return default, False
    return SampleStore.open(source, "r"), True


class PopulationMonteCarloSampler:
    """Importance-sampling refinement of a mixture proposal.

    Parameters
    ----------
    posterior : LogPosterior
        Target density.
    config : PMCConfig
        Complete sampler configuration; validated before any work starts.
    mixture : MixtureModel, optional
        Initial proposal. Takes precedence over ``initialize_from``.
    initialize_from : str, Path or SampleStore, optional
        MCMC output to build the initial mixture from or, with ``update``,
        a PMC output whose last stored mixture is resumed.
    store : SampleStore, optional
        Output store; defaults to ``config.output_file`` or memory.
    update : bool
        Resume from the last mixture in ``pmc/components``.

    Raises
    ------
    ConfigurationError
        For invalid configurations, missing or mismatching initial mixtures.
    """

    def __init__(
        self,
        posterior: LogPosterior,
        config: PMCConfig | None = None,
        mixture: MixtureModel | None = None,
        initialize_from: str | Path | SampleStore | None = None,
        store: SampleStore | None = None,
        update: bool = False,
    ):
        self.config = config or PMCConfig()
        self.config.ensure_valid()
        self.posterior = posterior
        self.status = PMCStatus(converged=self.config.converged)

        seed = self.config.seed
        if seed is None:
            seed = int(time.time())
            logger.info(f"No seed given; using wall-clock seed {seed}")
        self.status.seed = seed
        self.rng = np.random.default_rng(np.random.SeedSequence(seed))

        if mixture is None and initialize_from is None and not update:
            raise ConfigurationError(
                "PMC needs an initial mixture: pass one, or MCMC output to build it from"
            )

        self._owns_store = store is None
        if store is None:
            store = (
                SampleStore.open(self.config.output_file, "a")
                if self.config.output_file
                else SampleStore.in_memory()
            )
        self.store = store

        resumed = False
        try:
            if mixture is None:
                mixture, resumed = self._initial_mixture(initialize_from, update)
            if mixture.dimension != posterior.dimension:
                raise ConfigurationError(
                    "Mixture dimension does not match the number of parameters",
                    error_context={"mixture": mixture.dimension, "parameters": posterior.dimension},
                )
        except ScanError:
            self.close()
            raise
        self.mixture = mixture

        self.store.write_parameter_descriptions(posterior.parameter_descriptions())
        self.store.set_metadata(PMC_GROUP, {"config": self.config.to_dict(), "seed": seed})
        if not resumed:
            self.store.append(COMPONENTS_STREAM, self.mixture.to_records(self.status.updates))

        logger.info(
            f"PMC sampler initialized: {len(self.mixture)} component(s), "
            f"{posterior.dimension} parameters, update step {self.status.updates}, seed={seed}"
        )

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def _initial_mixture(
        self, source: str | Path | SampleStore | None, update: bool
    ) -> tuple[MixtureModel, bool]:
        store, close = _open_source(source, self.store)
        try:
            if update:
                if not store.has_stream(COMPONENTS_STREAM):
                    raise ConfigurationError(
                        "No stored mixture to resume from",
                        error_context={"store": store.path},
                    )
                records = store.read(COMPONENTS_STREAM)
                mixture = MixtureModel.from_records(records)
                self.status.updates = int(records["step"].max())
                previous = store.metadata(PMC_GROUP).get("status", {})
                self.status.effective_sample_sizes = list(previous.get("effective_sample_sizes", []))
                self.status.perplexities = list(previous.get("perplexities", []))
                self.status.stable_steps = int(previous.get("stable_steps", 0))
                self.status.group_assignment = list(previous.get("group_assignment", []))
                logger.info(f"Resuming PMC from update step {self.status.updates}")
                if store is not self.store:
                    self.store.append(COMPONENTS_STREAM, records[records["step"] == self.status.updates])
                return mixture, True

            histories = read_chain_histories(store, MAIN_PREFIX) or read_chain_histories(
                store, PRERUN_PREFIX
            )
            if not histories:
                raise ConfigurationError(
                    "No Markov chain samples found to initialize the mixture",
                    error_context={"store": store.path},
                )
            skip = int(self.config.skip_initial * min(len(h) for h in histories))
            groups = group_chains(
                [h[skip:] for h in histories], self.config, self.posterior.nuisance_mask
            )
            self.status.group_assignment = groups
            mixture = MixtureModel.from_chains(
                histories, self.config, groups, self.posterior.nuisance_mask
            )
            return mixture, False
        finally:
            if close:
                store.close()

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self) -> PMCStatus:
        return self.status

    def set_status(self, converged: bool) -> None:
        """Manual convergence override; takes effect at the next check."""
        self.status.converged = bool(converged)

    # ------------------------------------------------------------------
    # Target evaluation
    # ------------------------------------------------------------------

    def _evaluate(self, points: np.ndarray) -> np.ndarray:
        """Log-posterior of every row; batched over worker threads if enabled."""
        n_workers = self.config.max_workers or os.cpu_count() or 1
        n_workers = min(n_workers, len(points))
        if not self.config.parallelize or n_workers < 2:
            return self.posterior.evaluate_many(points)

        batches = np.array_split(points, n_workers)
        clones = [self.posterior.clone() for _ in batches]
        results: list[np.ndarray | None] = [None] * len(batches)

        with ThreadPoolExecutor(max_workers=n_workers) as executor:
            futures = {
                executor.submit(clone.evaluate_many, batch): i
                for i, (clone, batch) in enumerate(zip(clones, batches))
            }
            for future in as_completed(futures):
                results[futures[future]] = future.result()

        base = self.posterior.evaluation_failures
        self.posterior.evaluation_failures += sum(c.evaluation_failures - base for c in clones)
        return np.concatenate(results)

    def _weigh(self, points: np.ndarray, components: np.ndarray, iteration: int | np.ndarray) -> np.ndarray:
        log_posterior = self._evaluate(points)
        log_weights = log_posterior - self.mixture.log_density(points)
        weights = normalize_weights(log_weights, self.config.crop_highest_weights)
        if not np.any(weights > 0):
            logger.warning(f"All {len(points)} importance weights vanish")
        return make_records(points, log_posterior, weights, components, iteration)

    def _append_chunked(self, stream: str, records: np.ndarray) -> None:
        for start in range(0, len(records), self.config.chunk_size):
            self.store.append(stream, records[start : start + self.config.chunk_size])

    # ------------------------------------------------------------------
    # Distributed steps
    # ------------------------------------------------------------------

    def draw_samples(self) -> np.ndarray:
        """Draw from the current mixture and store the draws unweighted.

        The draws go to ``pmc/draws`` with NaN log-posterior and weight so
        :meth:`calculate_weights` can process them range by range.
        """
        self.status.state = PMCState.SAMPLING
        points, components = self.mixture.sample(self.rng, self.config.draws_per_component())
        offset = self.store.rows(DRAWS_STREAM)
        records = make_records(
            points, np.nan, np.nan, components, offset + np.arange(len(points))
        )
        self._append_chunked(DRAWS_STREAM, records)
        self.store.set_metadata(
            DRAWS_STREAM,
            {"step": self.status.updates, "start": offset, "stop": offset + len(records)},
        )
        logger.info(f"Stored {len(records)} draws from {len(self.mixture)} component(s)")
        return records

    @log_performance(logger, threshold=1.0)
    def calculate_weights(
        self,
        file: str | Path | SampleStore | None = None,
        range_min: int = 0,
        range_max: int | None = None,
    ) -> np.ndarray:
        """Importance weights of the draws ``[range_min, range_max)``.

        The weights are normalized over the range and stored in
        ``pmc/weights/<min>_<max>``, so each range can be restarted on its
        own.
        """
        source, close = _open_source(file, self.store)
        try:
            draws = source.read(DRAWS_STREAM, range_min, range_max)
        finally:
            if close:
                source.close()

        if draws.size == 0:
            raise ConfigurationError(
                "No draws in the requested range",
                error_context={"range_min": range_min, "range_max": range_max},
            )

        records = self._weigh(draws["point"], draws["group"], draws["iteration"])
        stop = range_min + len(records)
        stream = f"{WEIGHTS_PREFIX}/{range_min}_{stop}"
        self._append_chunked(stream, records)
        self.store.set_metadata(stream, {"step": self.status.updates})
        logger.info(
            f"Weighted draws [{range_min}, {stop}): "
            f"normalized ESS {normalized_effective_sample_size(records['weight']):.4f}"
        )
        return records

    def _gather_weighted_draws(self) -> np.ndarray:
        """Weighted ranges of the last draw batch taken from the current mixture."""
        step = self.status.updates
        batch = self.store.metadata(DRAWS_STREAM) if self.store.has_stream(DRAWS_STREAM) else {}
        if batch.get("step") != step:
            raise ConfigurationError(
                "No draws from the current mixture to update from",
                error_context={"update": step, "draw_step": batch.get("step")},
            )
        start, stop = int(batch["start"]), int(batch["stop"])

        parts = []
        for stream in self.store.streams(WEIGHTS_PREFIX):
            if self.store.metadata(stream).get("step") != step:
                continue
            records = self.store.read(stream)
            in_batch = (records["iteration"] >= start) & (records["iteration"] < stop)
            parts.append(records[in_batch])
        records = np.concatenate(parts) if parts else np.empty(0)
        if records.size == 0:
            raise ConfigurationError(
                "No weighted draws for the current update step",
                error_context={"update": step, "draws": f"[{start}, {stop})"},
            )

        # Ranges weighed twice contribute once
        _, first = np.unique(records["iteration"], return_index=True)
        records = records[first]
        missing = (stop - start) - len(records)
        if missing:
            logger.warning(f"{missing} of {stop - start} draws carry no weight; updating from the rest")
        return records

    def update_from_weights(self) -> MixtureModel:
        """Update the mixture from the stored weight ranges of the last draw.

        Completes a distributed step: the ranges written by
        :meth:`calculate_weights` were each normalized on their own, so the
        weights are recomputed from the stored log-posterior values against
        the current mixture before the update. Convergence is checked
        afterwards.

        Raises
        ------
        ConfigurationError
            If no draws or weights exist for the current update step.
        """
        stored = self._gather_weighted_draws()
        points = stored["point"]
        log_weights = stored["log_posterior"] - self.mixture.log_density(points)
        weights = normalize_weights(log_weights, self.config.crop_highest_weights)
        records = make_records(
            points, stored["log_posterior"], weights, stored["group"], stored["iteration"]
        )

        self._record_monitors(records["weight"])
        self.update(records)
        logger.info(
            f"PMC update {self.status.updates} from {len(records)} stored draws: "
            f"normalized ESS {self.status.effective_sample_sizes[-1]:.4f}"
        )
        self._check_convergence()
        self.store.set_metadata(PMC_GROUP, {"status": self.status.to_dict()})
        return self.mixture

    def _record_monitors(self, weights: np.ndarray) -> None:
        status = self.status
        window = self.config.minimum_steps
        status.effective_sample_sizes.append(normalized_effective_sample_size(weights))
        status.perplexities.append(normalized_perplexity(weights))

        stable = (
            len(status.perplexities) >= window
            and relative_std_deviation(status.perplexities[-window:])
            < self.config.maximum_relative_std_deviation
        )
        status.stable_steps = status.stable_steps + 1 if stable else 0

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    @log_performance(logger, level=logging.DEBUG, threshold=0.0)
    def update(self, records: np.ndarray) -> MixtureModel:
        """One PMC update of the mixture from weighted draws.

        Components whose new weight falls below
        ``minimum_component_weight`` are pruned.

        Raises
        ------
        ScanError
            If the draws carry no weight or every component is pruned.
        """
        points = records["point"]
        weights = np.where(np.isfinite(records["weight"]), records["weight"], 0.0)
        total = float(np.sum(weights))
        if not total > 0.0:
            raise ScanError(
                "Cannot update the mixture: all importance weights vanish",
                error_context={"draws": len(records), "update": self.status.updates},
            )
        weights = weights / total

        self.status.state = PMCState.UPDATING
        responsibilities = self.mixture.responsibilities(points)
        d = self.mixture.dimension
        components: list[MixtureComponent] = []

        for k, old in enumerate(self.mixture.components):
            r = weights * responsibilities[:, k]
            alpha = float(np.sum(r))
            if alpha < self.config.minimum_component_weight or alpha <= 0.0:
                logger.info(f"Pruning component {k} (weight {alpha:.3g})")
                continue

            if old.is_student_t:
                delta = np.linalg.solve(old.cholesky, (points - old.mean).T)
                tau = (old.dof + d) / (old.dof + np.sum(delta**2, axis=0))
            else:
                tau = np.ones(len(points))

            rt = r * tau
            mean = rt @ points / np.sum(rt)
            centered = points - mean
            covariance = (rt[:, None] * centered).T @ centered / alpha
            components.append(MixtureComponent(mean, covariance, alpha, old.dof))

        if not components:
            raise ScanError("Every mixture component was pruned", error_context={"update": self.status.updates})

        self.mixture = MixtureModel(components)
        self.status.updates += 1
        self.store.append(COMPONENTS_STREAM, self.mixture.to_records(self.status.updates))
        return self.mixture

    # ------------------------------------------------------------------
    # Convergence
    # ------------------------------------------------------------------

    def _check_convergence(self) -> bool:
        """Set the terminal state if a stopping rule applies."""
        config = self.config
        status = self.status

        if status.converged:
            status.convergence_reason = status.convergence_reason or "manual"
        elif (
            not config.ignore_eff_sample_size
            and status.effective_sample_sizes
            and status.effective_sample_sizes[-1] >= config.minimum_eff_sample_size
        ):
            status.convergence_reason = "effective sample size"
        elif status.stable_steps >= config.minimum_steps:
            status.convergence_reason = "perplexity"
        elif status.updates >= config.max_updates:
            status.state = PMCState.EXHAUSTED
            status.convergence_reason = "max_updates"
            message = (
                f"PMC not converged after {status.updates} updates "
                f"(last normalized ESS {status.effective_sample_sizes[-1]:.4f}, "
                f"perplexity {status.perplexities[-1]:.4f})"
                if status.perplexities
                else f"PMC not converged after {status.updates} updates"
            )
            warnings.warn(message, ConvergenceWarning, stacklevel=3)
            logger.warning(message)
            status.warnings.append(message)
            return True
        else:
            return False

        status.converged = True
        status.state = PMCState.CONVERGED
        logger.info(f"PMC converged after {status.updates} updates ({status.convergence_reason})")
        return True

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self) -> PMCResult:
        """Adapt the mixture until convergence, then draw the final sample."""
        config = self.config
        draws = config.draws_per_component()

        with log_operation("PMC adaptation", logger):
            while not self._check_convergence():
                self.status.state = PMCState.SAMPLING
                points, components = self.mixture.sample(self.rng, draws)
                records = self._weigh(points, components, self.status.updates)
                self._append_chunked(SAMPLES_STREAM, records)

                self._record_monitors(records["weight"])

                self.update(records)
                logger.info(
                    f"PMC update {self.status.updates}: {len(self.mixture)} component(s), "
                    f"normalized ESS {self.status.effective_sample_sizes[-1]:.4f}, "
                    f"perplexity {self.status.perplexities[-1]:.4f}"
                )
                self.store.set_metadata(PMC_GROUP, {"status": self.status.to_dict()})

        return self._final_draw()

    def _final_draw(self) -> PMCResult:
        counts = self.mixture.allocate(self.config.final_samples)
        with SamplingProgress(
            self.config.final_samples,
            desc="Final draw",
            unit="draw",
            verbose=self.config.show_progress,
        ) as progress:
            points, components = self.mixture.sample(self.rng, counts)
            records = self._weigh(points, components, self.status.updates)
            self._append_chunked(FINAL_STREAM, records)
            progress.update(len(records))

        self.store.set_metadata(FINAL_STREAM, {"converged": self.status.converged})
        self.store.set_metadata(
            PMC_GROUP, {"converged": self.status.converged, "status": self.status.to_dict()}
        )
        logger.info(
            f"Final sample: {len(records)} draws, "
            f"normalized ESS {normalized_effective_sample_size(records['weight']):.4f}, "
            f"converged={self.status.converged}"
        )
        return PMCResult(
            points=records["point"],
            weights=records["weight"],
            log_posterior=records["log_posterior"],
            components=records["group"],
            mixture=self.mixture,
            status=self.status,
        )

    def close(self) -> None:
        """Close the store if this sampler opened it."""
        if self._owns_store:
            self.store.close()

    def __enter__(self) -> PopulationMonteCarloSampler:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
