"""Gaussian / Student-t mixture densities used as PMC proposals.

A :class:`MixtureModel` is built from MCMC output: chains are grouped by
R-value proximity (or explicit ids), every chain history is cut into windows
whose moments seed candidate components, and the candidates are merged or
split until the requested number of components is reached.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
from scipy import stats
from scipy.special import logsumexp

from scanmc.sampling.config import PMCConfig
from scanmc.sampling.diagnostics import compute_r_values, max_r_value
from scanmc.sampling.exceptions import ConfigurationError
from scanmc.sampling.proposals import cholesky_factor
from scanmc.utils.logging import get_logger

logger = get_logger(__name__)


def component_dtype(dimension: int) -> np.dtype:
    """Record type of the ``pmc/components`` stream."""
    return np.dtype(
        [
            ("step", np.int32),
            ("index", np.int32),
            ("weight", np.float64),
            ("dof", np.float64),
            ("mean", np.float64, (dimension,)),
            ("covariance", np.float64, (dimension, dimension)),
        ]
    )


@dataclass
class MixtureComponent:
    """One mixture component.

    ``dof <= 0`` selects a Gaussian; otherwise ``covariance`` is the shape
    matrix of a multivariate Student-t with ``dof`` degrees of freedom.
    """

    mean: np.ndarray
    covariance: np.ndarray
    weight: float = 1.0
    dof: float = -1.0

    def __post_init__(self):
        self.mean = np.atleast_1d(np.asarray(self.mean, dtype=float))
        covariance = np.atleast_2d(np.asarray(self.covariance, dtype=float))
        covariance = 0.5 * (covariance + covariance.T)
        if covariance.shape != (self.mean.size, self.mean.size):
            raise ConfigurationError(
                "Component covariance does not match its mean",
                error_context={"mean": self.mean.shape, "covariance": covariance.shape},
            )
        self.cholesky = cholesky_factor(covariance)
        self.covariance = self.cholesky @ self.cholesky.T
        self.weight = float(self.weight)
        self.dof = float(self.dof)

    @property
    def dimension(self) -> int:
        return self.mean.size

    @property
    def is_student_t(self) -> bool:
        return self.dof > 0

    def log_density(self, x: np.ndarray) -> np.ndarray:
        """Log-density at every row of ``x``."""
        x = np.asarray(x, dtype=float).reshape(-1, self.dimension)
        if self.is_student_t:
            values = stats.multivariate_t(loc=self.mean, shape=self.covariance, df=self.dof).logpdf(x)
        else:
            values = stats.multivariate_normal(mean=self.mean, cov=self.covariance).logpdf(x)
        return np.atleast_1d(values).reshape(x.shape[0])

    def sample(self, rng: np.random.Generator, n: int) -> np.ndarray:
        """``n`` draws as an ``(n, dimension)`` array."""
        z = rng.standard_normal((n, self.dimension)) @ self.cholesky.T
        if self.is_student_t:
            u = rng.chisquare(self.dof, size=n) / self.dof
            z = z / np.sqrt(u)[:, None]
        return self.mean + z

    def with_weight(self, weight: float) -> MixtureComponent:
        return MixtureComponent(self.mean, self.covariance, weight, self.dof)


def merge_components(a: MixtureComponent, b: MixtureComponent) -> MixtureComponent:
    """Moment-matching merge of two components (keeps the dof of ``b``)."""
    weight = a.weight + b.weight
    fa, fb = a.weight / weight, b.weight / weight
    mean = fa * a.mean + fb * b.mean
    da, db = a.mean - mean, b.mean - mean
    covariance = fa * (a.covariance + np.outer(da, da)) + fb * (b.covariance + np.outer(db, db))
    return MixtureComponent(mean, covariance, weight, b.dof)


def split_component(component: MixtureComponent) -> tuple[MixtureComponent, MixtureComponent]:
    """Split along the principal axis; merging the halves restores the input."""
    eigenvalues, eigenvectors = np.linalg.eigh(component.covariance)
    lam, axis = eigenvalues[-1], eigenvectors[:, -1]
    offset = 0.5 * np.sqrt(lam) * axis
    covariance = component.covariance - 0.25 * lam * np.outer(axis, axis)
    half = 0.5 * component.weight
    return (
        MixtureComponent(component.mean - offset, covariance, half, component.dof),
        MixtureComponent(component.mean + offset, covariance, half, component.dof),
    )


class MixtureModel:
    """Ordered, weighted set of components; weights are normalized to 1.

    Raises
    ------
    ConfigurationError
        For an empty component list, non-positive total weight or
        components of different dimension.
    """

    def __init__(self, components: Sequence[MixtureComponent]):
        components = list(components)
        if not components:
            raise ConfigurationError("A mixture needs at least one component")

        dimensions = {c.dimension for c in components}
        if len(dimensions) != 1:
            raise ConfigurationError(
                "Mixture components differ in dimension",
                error_context={"dimensions": sorted(dimensions)},
            )

        weights = np.array([c.weight for c in components], dtype=float)
        total = float(np.sum(weights))
        if not (np.isfinite(total) and total > 0.0) or np.any(weights < 0):
            raise ConfigurationError(
                "Mixture weights must be non-negative with positive sum",
                error_context={"weights": weights.tolist()},
            )

        self.components = tuple(c.with_weight(w / total) for c, w in zip(components, weights))

    @property
    def dimension(self) -> int:
        return self.components[0].dimension

    @property
    def weights(self) -> np.ndarray:
        return np.array([c.weight for c in self.components])

    @property
    def means(self) -> np.ndarray:
        return np.array([c.mean for c in self.components])

    def __len__(self) -> int:
        return len(self.components)

    def __repr__(self) -> str:
        return f"MixtureModel(components={len(self)}, dimension={self.dimension})"

    # ------------------------------------------------------------------
    # Density
    # ------------------------------------------------------------------

    def component_log_densities(self, x: np.ndarray) -> np.ndarray:
        """``log w_k + log p_k(x_i)`` as an ``(n, K)`` array."""
        with np.errstate(divide="ignore"):
            log_weights = np.log(self.weights)
        return np.column_stack(
            [lw + c.log_density(x) for lw, c in zip(log_weights, self.components)]
        )

    def log_density(self, x: np.ndarray) -> np.ndarray:
        return logsumexp(self.component_log_densities(x), axis=1)

    def responsibilities(self, x: np.ndarray) -> np.ndarray:
        """Posterior component probabilities ``w_k p_k(x_i) / q(x_i)``."""
        log_terms = self.component_log_densities(x)
        return np.exp(log_terms - logsumexp(log_terms, axis=1, keepdims=True))

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    def sample(
        self,
        rng: np.random.Generator,
        n_per_component: int | Sequence[int],
    ) -> tuple[np.ndarray, np.ndarray]:
        """Draw from every component.

        Returns
        -------
        points : np.ndarray
            ``(N, dimension)`` draws, component after component.
        components : np.ndarray
            Index of the component each draw came from.
        """
        counts = np.broadcast_to(np.asarray(n_per_component, dtype=int), (len(self),))
        points = [c.sample(rng, int(n)) for c, n in zip(self.components, counts)]
        labels = [np.full(int(n), k, dtype=np.int32) for k, n in enumerate(counts)]
        return np.concatenate(points), np.concatenate(labels)

    def allocate(self, n: int) -> np.ndarray:
        """Split ``n`` draws over the components in proportion to their weight.

        Largest-remainder rounding, so the counts always sum to ``n``.
        """
        exact = self.weights * n
        counts = np.floor(exact).astype(int)
        remainder = n - int(counts.sum())
        if remainder > 0:
            order = np.argsort(-(exact - counts), kind="stable")
            counts[order[:remainder]] += 1
        return counts

    # ------------------------------------------------------------------
    # Reduction
    # ------------------------------------------------------------------

    def reduce(self, target: int) -> MixtureModel:
        """Merge or split components until exactly ``target`` remain.

        The lightest component is merged into the one whose mean is closest
        in the lightest component's metric; missing components come from
        splitting the heaviest one along its principal axis.
        """
        components = list(self.components)

        while len(components) > target:
            k = int(np.argmin([c.weight for c in components]))
            lightest = components.pop(k)
            inverse = np.linalg.inv(lightest.covariance)
            distances = [
                float((c.mean - lightest.mean) @ inverse @ (c.mean - lightest.mean))
                for c in components
            ]
            j = int(np.argmin(distances))
            components[j] = merge_components(lightest, components[j])

        while len(components) < target:
            k = int(np.argmax([c.weight for c in components]))
            first, second = split_component(components[k])
            components[k : k + 1] = [first, second]

        return MixtureModel(components)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_records(self, step: int) -> np.ndarray:
        records = np.empty(len(self), dtype=component_dtype(self.dimension))
        for k, c in enumerate(self.components):
            records[k] = (step, k, c.weight, c.dof, c.mean, c.covariance)
        return records

    @classmethod
    def from_records(cls, records: np.ndarray, step: int | None = None) -> MixtureModel:
        """Rebuild the mixture of ``step`` (default: the last stored step)."""
        if records.size == 0:
            raise ConfigurationError("No stored mixture components")
        if step is None:
            step = int(records["step"].max())
        selected = np.sort(records[records["step"] == step], order="index")
        if selected.size == 0:
            raise ConfigurationError(f"No mixture components stored for step {step}")
        return cls(
            [
                MixtureComponent(r["mean"], r["covariance"], r["weight"], r["dof"])
                for r in selected
            ]
        )

    # ------------------------------------------------------------------
    # Initialization from Markov chains
    # ------------------------------------------------------------------

    @classmethod
    def from_chains(
        cls,
        histories: Sequence[np.ndarray],
        config: PMCConfig,
        groups: Sequence[int] | None = None,
        nuisance_mask: np.ndarray | None = None,
    ) -> MixtureModel:
        """Initial PMC proposal from MCMC chain histories.

        Parameters
        ----------
        histories : sequence of np.ndarray
            Points of every chain, ``(n_samples, dimension)`` each.
        config : PMCConfig
            Uses ``skip_initial``, ``patch_length``, ``degrees_of_freedom``,
            ``ignore_groups`` and ``target_ncomponents``.
        groups : sequence of int, optional
            Group id per chain; computed with :func:`group_chains` if omitted.
        """
        if len(histories) == 0:
            raise ConfigurationError("Cannot build a mixture without Markov chains")

        skipped = [_skip_initial(h, config.skip_initial) for h in histories]
        if groups is None:
            groups = group_chains(skipped, config, nuisance_mask)
        if len(groups) != len(skipped):
            raise ConfigurationError(
                "Group assignment does not match the number of chains",
                error_context={"chains": len(skipped), "groups": len(groups)},
            )

        selected = [g for g in sorted(set(groups)) if g not in config.ignore_groups]
        n_chains = sum(1 for g in groups if g in selected)
        candidates: list[MixtureComponent] = []

        for group in selected:
            members = [h for h, g in zip(skipped, groups) if g == group]
            windows = [w for h in members for w in _windows(h, config.patch_length)]
            if not windows:
                logger.warning(f"Chain group {group} has no usable sample windows; skipped")
                continue
            group_weight = len(members) / n_chains
            for window in windows:
                candidates.append(
                    MixtureComponent(
                        window.mean(axis=0),
                        np.atleast_2d(np.cov(window, rowvar=False)),
                        group_weight / len(windows),
                        config.degrees_of_freedom,
                    )
                )

        if not candidates:
            raise ConfigurationError(
                "No chain group left to initialize the mixture",
                error_context={"groups": sorted(set(groups)), "ignored": list(config.ignore_groups)},
            )

        logger.info(
            f"Mixture initialized from {len(candidates)} windows of {len(selected)} chain group(s); "
            f"reducing to {config.target_ncomponents} component(s)"
        )
        return cls(candidates).reduce(config.target_ncomponents)


def _skip_initial(history: np.ndarray, fraction: float) -> np.ndarray:
    history = np.asarray(history, dtype=float)
    if history.ndim == 1:
        history = history[:, None]
    return history[int(fraction * history.shape[0]) :]


def _windows(history: np.ndarray, patch_length: int) -> list[np.ndarray]:
    """Non-overlapping windows of ``patch_length`` samples.

    A history shorter than one window is used as a whole. Windows without
    spread in some parameter (stuck chains) are dropped.
    """
    n, d = history.shape
    if n < 2:
        return []
    if n < patch_length:
        windows = [history]
    else:
        windows = [history[i : i + patch_length] for i in range(0, n - patch_length + 1, patch_length)]
    return [w for w in windows if w.shape[0] > 1 and np.all(np.var(w, axis=0) > 0)]


def group_chains(
    histories: Sequence[np.ndarray],
    config: PMCConfig,
    nuisance_mask: np.ndarray | None = None,
) -> list[int]:
    """Assign a group id to every chain.

    Explicit ``config.chain_groups`` win. Otherwise each chain joins the
    first group whose strict R-value together with the chain stays below
    ``config.group_by_r_value``, or opens a new group.
    """
    if config.chain_groups is not None:
        if len(config.chain_groups) != len(histories):
            raise ConfigurationError(
                "chain_groups must name one group per chain",
                error_context={"chains": len(histories), "chain_groups": len(config.chain_groups)},
            )
        return [int(g) for g in config.chain_groups]

    histories = [np.asarray(h, dtype=float).reshape(len(h), -1) for h in histories]
    columns = np.ones(histories[0].shape[1], dtype=bool)
    if config.r_value_no_nuisance and nuisance_mask is not None and not np.all(nuisance_mask):
        columns = ~np.asarray(nuisance_mask, dtype=bool)

    members: list[list[int]] = []
    assignment: list[int] = []
    for i, history in enumerate(histories):
        for group, chains in enumerate(members):
            r_values = compute_r_values(
                [histories[j][:, columns] for j in chains] + [history[:, columns]],
                strict=True,
            )
            if max_r_value(r_values) < config.group_by_r_value:
                chains.append(i)
                assignment.append(group)
                break
        else:
            members.append([i])
            assignment.append(len(members) - 1)

    logger.info(f"Grouped {len(histories)} chains into {len(members)} group(s): {assignment}")
    return assignment
