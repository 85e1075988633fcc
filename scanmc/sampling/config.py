"""Sampler configuration values and validation.

:class:`MCMCConfig` and :class:`PMCConfig` are immutable values handed to the
sampler constructors. How they are produced (YAML file, command line, test
fixture) is the caller's business; the samplers only call
:meth:`ensure_valid`, which raises :class:`ConfigurationError` listing every
problem found.

Example YAML sections::

    mcmc:
      number_of_chains: 4
      chunk_size: 1000
      chunks: 10
      prerun:
        need_prerun: true
        iterations_min: 1000
        iterations_max: 10000
        iterations_update: 500
      proposal:
        kind: MultivariateStudentT
        degrees_of_freedom: 5
    pmc:
      target_ncomponents: 3
      samples_per_component: 5000
      convergence:
        max_updates: 20
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from typing import Any

from scanmc.sampling.exceptions import ConfigurationError
from scanmc.utils.logging import get_logger

logger = get_logger(__name__)

PROPOSAL_KINDS = ("MultivariateGaussian", "MultivariateStudentT")


def _positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _non_negative_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _optional_tuple(value: Any) -> tuple | None:
    if value is None:
        return None
    return tuple(tuple(v) if isinstance(v, (list, tuple)) else v for v in value)


class _ConfigMixin:
    """Shared helpers for the configuration dataclasses."""

    def validate(self) -> list[str]:  # pragma: no cover - overridden
        raise NotImplementedError

    def is_valid(self) -> bool:
        return len(self.validate()) == 0

    def ensure_valid(self) -> None:
        """Raise :class:`ConfigurationError` if :meth:`validate` finds problems."""
        errors = self.validate()
        if errors:
            raise ConfigurationError(
                f"Invalid {type(self).__name__}: " + "; ".join(errors),
                errors=errors,
            )

    def with_overrides(self, **changes: Any):
        """Copy of this configuration with some fields replaced."""
        return replace(self, **changes)


@dataclass(frozen=True)
class MCMCConfig(_ConfigMixin):
    """Configuration of the multi-chain Metropolis-Hastings sampler.

    Attributes
    ----------
    number_of_chains : int
        Number of independent chains.
    chunk_size : int
        Steps per chain and chunk; one chunk is one durable store write.
    chunks : int
        Number of main-run chunks per chain.
    need_prerun, store_prerun, need_main_run : bool
        Phase switches. ``store_prerun`` keeps the adaptive warm-up samples.
    prerun_iterations_min, prerun_iterations_max, prerun_iterations_update : int
        Minimum/maximum pre-run length and the adaptation block length.
    rvalue_criterion : float
        Pre-run passes once max R over all parameters drops below this value.
    use_strict_rvalue_definition : bool
        Select the strict (Brooks-Gelman) or relaxed (Gelman-Rubin) R.
    proposal : str
        ``"MultivariateGaussian"`` or ``"MultivariateStudentT"``.
    student_t_degrees_of_freedom : float | None
        Required (> 0) for the Student-t proposal.
    scale_reduction : float
        Divides the adapted proposal covariance (>= 1 narrows the proposal).
    proposal_initial_scale : float
        Initial proposal width relative to the prior standard deviations.
    seed : int | None
        Top-level seed; ``None`` derives one from the wall clock.
    parallelize : bool
        Run one worker thread per chain.
    max_workers : int | None
        Worker cap for the parallel mode.
    starting_points : tuple | None
        One point for all chains, or one point per chain.
    output_file : str | None
        HDF5 output path; ``None`` keeps samples in memory.
    show_progress : bool
        Draw tqdm progress bars.
    """

    number_of_chains: int = 4
    chunk_size: int = 1000
    chunks: int = 10

    need_prerun: bool = True
    store_prerun: bool = False
    need_main_run: bool = True
    prerun_iterations_min: int = 1000
    prerun_iterations_max: int = 10000
    prerun_iterations_update: int = 500

    rvalue_criterion: float = 1.1
    use_strict_rvalue_definition: bool = True

    proposal: str = "MultivariateGaussian"
    student_t_degrees_of_freedom: float | None = None
    scale_reduction: float = 1.0
    proposal_initial_scale: float = 0.1

    seed: int | None = None
    parallelize: bool = False
    max_workers: int | None = None
    starting_points: tuple | None = None

    output_file: str | None = None
    show_progress: bool = False

    @classmethod
    def quick(cls) -> MCMCConfig:
        """Short runs for exploratory scans and tests."""
        return cls(
            chunk_size=1000,
            chunks=5,
            prerun_iterations_min=500,
            prerun_iterations_max=5000,
            prerun_iterations_update=500,
        )

    @classmethod
    def prerun_only(cls, **kwargs: Any) -> MCMCConfig:
        """Only run (and store) the adaptive pre-run."""
        return cls(need_prerun=True, store_prerun=True, need_main_run=False, **kwargs)

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> MCMCConfig:
        """Create MCMCConfig from a (possibly nested) configuration dictionary.

        Flat keys use the field names; the nested ``prerun`` and ``proposal``
        sections of the YAML layout are accepted as well.
        """
        data = {k: v for k, v in config_dict.items() if k not in ("prerun", "proposal")}

        prerun = config_dict.get("prerun", {}) or {}
        for key in ("need_prerun", "store_prerun"):
            if key in prerun:
                data[key] = prerun[key]
        for key in ("min", "max", "update"):
            for name in (key, f"iterations_{key}"):
                if name in prerun:
                    data[f"prerun_iterations_{key}"] = prerun[name]
        if "rvalue_criterion" in prerun:
            data["rvalue_criterion"] = prerun["rvalue_criterion"]
        if "strict_rvalue" in prerun:
            data["use_strict_rvalue_definition"] = prerun["strict_rvalue"]

        proposal = config_dict.get("proposal")
        if isinstance(proposal, dict):
            if "kind" in proposal:
                data["proposal"] = proposal["kind"]
            if "degrees_of_freedom" in proposal:
                data["student_t_degrees_of_freedom"] = proposal["degrees_of_freedom"]
            if "scale_reduction" in proposal:
                data["scale_reduction"] = proposal["scale_reduction"]
            if "initial_scale" in proposal:
                data["proposal_initial_scale"] = proposal["initial_scale"]
        elif proposal is not None:
            data["proposal"] = proposal

        known = cls.__dataclass_fields__.keys()
        unknown = sorted(set(data) - set(known))
        if unknown:
            raise ConfigurationError(
                f"Unknown MCMC options: {unknown}", error_context={"known": sorted(known)}
            )

        if "starting_points" in data:
            data["starting_points"] = _optional_tuple(data["starting_points"])

        config = cls(**data)
        for error in config.validate():
            logger.warning(f"MCMC config validation: {error}")
        return config

    def validate(self) -> list[str]:
        """Validate configuration values.

        Returns
        -------
        list[str]
            List of validation error messages (empty if valid).
        """
        errors: list[str] = []

        for name in ("number_of_chains", "chunk_size", "prerun_iterations_update"):
            value = getattr(self, name)
            if not _positive_int(value):
                errors.append(f"{name} must be positive int, got: {value}")

        for name in ("chunks", "prerun_iterations_min", "prerun_iterations_max"):
            value = getattr(self, name)
            if not _non_negative_int(value):
                errors.append(f"{name} must be non-negative int, got: {value}")

        if (
            _non_negative_int(self.prerun_iterations_min)
            and _non_negative_int(self.prerun_iterations_max)
            and self.prerun_iterations_min > self.prerun_iterations_max
        ):
            errors.append(
                f"prerun_iterations_min ({self.prerun_iterations_min}) > "
                f"prerun_iterations_max ({self.prerun_iterations_max})"
            )

        if not self.need_prerun and not self.need_main_run:
            errors.append("nothing to do: need_prerun and need_main_run are both false")

        if self.store_prerun and not self.need_prerun:
            errors.append("store_prerun requires need_prerun")

        if not isinstance(self.rvalue_criterion, (int, float)) or self.rvalue_criterion < 1.0:
            errors.append(f"rvalue_criterion must be >= 1.0, got: {self.rvalue_criterion}")

        if self.proposal not in PROPOSAL_KINDS:
            errors.append(f"proposal must be one of {list(PROPOSAL_KINDS)}, got: {self.proposal}")
        elif self.proposal == "MultivariateStudentT":
            dof = self.student_t_degrees_of_freedom
            if dof is None or not dof > 0:
                errors.append(
                    "No (or non-positive) degree of freedom for MultivariateStudentT specified"
                )

        if not self.scale_reduction > 0:
            errors.append(f"scale_reduction must be positive, got: {self.scale_reduction}")
        if not self.proposal_initial_scale > 0:
            errors.append(
                f"proposal_initial_scale must be positive, got: {self.proposal_initial_scale}"
            )

        if self.seed is not None and (not isinstance(self.seed, int) or self.seed < 0):
            errors.append(f"seed must be a non-negative int or None, got: {self.seed}")

        if self.max_workers is not None and not _positive_int(self.max_workers):
            errors.append(f"max_workers must be positive int or None, got: {self.max_workers}")

        return errors

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary."""
        data = asdict(self)
        if self.starting_points is not None:
            data["starting_points"] = [list(p) if isinstance(p, tuple) else p for p in self.starting_points]
        return data


@dataclass(frozen=True)
class PMCConfig(_ConfigMixin):
    """Configuration of the Population Monte Carlo sampler.

    Attributes
    ----------
    target_ncomponents : int
        Number of mixture components built from the MCMC output.
    patch_length : int
        Window length used to cut chain histories into candidate components.
    skip_initial : float
        Fraction of each chain history skipped before cutting windows.
    degrees_of_freedom : float
        Student-t dof of the mixture components; ``<= 0`` means Gaussian.
    ignore_groups : tuple[int, ...]
        Chain groups left out of the initial mixture.
    chain_groups : tuple[int, ...] | None
        Explicit group id per chain; ``None`` groups by R-value.
    group_by_r_value : float
        Chains join a group while their joint R-value stays below this.
    r_value_no_nuisance : bool
        Ignore nuisance parameters when grouping chains.
    samples_per_component : int
        Draws per component and update step.
    adjust_sample_size : float
        Global factor applied to ``samples_per_component``.
    final_samples : int
        Size of the final draw from the converged mixture.
    crop_highest_weights : int
        Number of highest importance weights cropped before normalization.
    ignore_eff_sample_size : bool
        Skip the effective-sample-size convergence criterion.
    minimum_eff_sample_size : float
        Normalized ESS (in (0, 1]) above which the run is converged.
    max_updates : int
        Hard cap on the number of updates.
    maximum_relative_std_deviation : float
        Perplexity stabilization threshold.
    minimum_steps : int
        Window of updates for the perplexity relative standard deviation,
        and the number of consecutive updates it must stay below the
        threshold.
    minimum_component_weight : float
        Components lighter than this after an update are pruned.
    seed : int | None
        Top-level seed; ``None`` derives one from the wall clock.
    parallelize : bool
        Evaluate the target on worker threads.
    max_workers : int | None
        Worker cap for the parallel mode.
    converged : bool
        Manual override: skip adaptation and go to the final draw.
    chunk_size : int
        Records per store write.
    output_file : str | None
        HDF5 output path; ``None`` keeps samples in memory.
    show_progress : bool
        Draw tqdm progress bars.
    """

    target_ncomponents: int = 1
    patch_length: int = 200
    skip_initial: float = 0.2
    degrees_of_freedom: float = -1.0
    ignore_groups: tuple[int, ...] = ()
    chain_groups: tuple[int, ...] | None = None
    group_by_r_value: float = 1.5
    r_value_no_nuisance: bool = True

    samples_per_component: int = 10000
    adjust_sample_size: float = 1.0
    final_samples: int = 100000
    crop_highest_weights: int = 0

    ignore_eff_sample_size: bool = False
    minimum_eff_sample_size: float = 0.9
    max_updates: int = 20
    maximum_relative_std_deviation: float = 0.01
    minimum_steps: int = 3
    minimum_component_weight: float = 1e-4

    seed: int | None = None
    parallelize: bool = False
    max_workers: int | None = None
    converged: bool = False

    chunk_size: int = 10000
    output_file: str | None = None
    show_progress: bool = False

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> PMCConfig:
        """Create PMCConfig from a (possibly nested) configuration dictionary."""
        data = {
            k: v
            for k, v in config_dict.items()
            if k not in ("initialization", "convergence", "sampling")
        }
        for section in ("initialization", "convergence", "sampling"):
            data.update(config_dict.get(section, {}) or {})

        known = cls.__dataclass_fields__.keys()
        unknown = sorted(set(data) - set(known))
        if unknown:
            raise ConfigurationError(
                f"Unknown PMC options: {unknown}", error_context={"known": sorted(known)}
            )

        if "ignore_groups" in data:
            data["ignore_groups"] = tuple(int(g) for g in data["ignore_groups"] or ())
        if data.get("chain_groups") is not None:
            data["chain_groups"] = tuple(int(g) for g in data["chain_groups"])

        config = cls(**data)
        for error in config.validate():
            logger.warning(f"PMC config validation: {error}")
        return config

    def validate(self) -> list[str]:
        """Validate configuration values.

        Returns
        -------
        list[str]
            List of validation error messages (empty if valid).
        """
        errors: list[str] = []

        for name in (
            "target_ncomponents",
            "patch_length",
            "samples_per_component",
            "final_samples",
            "max_updates",
            "minimum_steps",
            "chunk_size",
        ):
            value = getattr(self, name)
            if not _positive_int(value):
                errors.append(f"{name} must be positive int, got: {value}")

        if not _non_negative_int(self.crop_highest_weights):
            errors.append(
                f"crop_highest_weights must be non-negative int, got: {self.crop_highest_weights}"
            )

        if not 0.0 <= self.skip_initial < 1.0:
            errors.append(f"skip_initial must be in [0, 1), got: {self.skip_initial}")

        if not self.adjust_sample_size > 0:
            errors.append(f"adjust_sample_size must be positive, got: {self.adjust_sample_size}")

        if not self.group_by_r_value >= 1.0:
            errors.append(f"group_by_r_value must be >= 1.0, got: {self.group_by_r_value}")

        if not 0.0 < self.minimum_eff_sample_size <= 1.0:
            errors.append(
                f"minimum_eff_sample_size must be in (0, 1], got: {self.minimum_eff_sample_size}"
            )

        if not self.maximum_relative_std_deviation > 0:
            errors.append(
                "maximum_relative_std_deviation must be positive, got: "
                f"{self.maximum_relative_std_deviation}"
            )

        if not 0.0 <= self.minimum_component_weight < 1.0:
            errors.append(
                f"minimum_component_weight must be in [0, 1), got: {self.minimum_component_weight}"
            )

        if self.seed is not None and (not isinstance(self.seed, int) or self.seed < 0):
            errors.append(f"seed must be a non-negative int or None, got: {self.seed}")

        if self.max_workers is not None and not _positive_int(self.max_workers):
            errors.append(f"max_workers must be positive int or None, got: {self.max_workers}")

        if self.chain_groups is not None and any(g < 0 for g in self.chain_groups):
            errors.append(f"chain_groups must be non-negative ids, got: {self.chain_groups}")

        return errors

    def draws_per_component(self) -> int:
        return max(1, int(round(self.samples_per_component * self.adjust_sample_size)))

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary."""
        data = asdict(self)
        data["ignore_groups"] = list(self.ignore_groups)
        if self.chain_groups is not None:
            data["chain_groups"] = list(self.chain_groups)
        return data


__all__ = ["MCMCConfig", "PMCConfig", "PROPOSAL_KINDS"]
