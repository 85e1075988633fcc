"""Configuration Management for scanmc
===================================

Loads a YAML/JSON run description and turns it into the immutable values the
samplers consume: a :class:`LogPosterior`, an :class:`MCMCConfig` and a
:class:`PMCConfig`.

Example file::

    parameters:
      - name: mass
        min: 4.0
        max: 5.0
      - name: width
        prior: gaussian
        lower: 0.9
        central: 1.0
        upper: 1.2
        n_sigmas: 3
        nuisance: true
    likelihood: mypackage.models:log_likelihood
    mcmc:
      number_of_chains: 4
      seed: 42
    pmc:
      target_ncomponents: 2
    output:
      directory: results
    logging:
      level: INFO
"""

from __future__ import annotations

import importlib
import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import yaml

from scanmc.posterior.log_posterior import LogPosterior
from scanmc.posterior.priors import flat_prior, gaussian_prior
from scanmc.sampling.config import MCMCConfig, PMCConfig
from scanmc.sampling.exceptions import ConfigurationError
from scanmc.utils.logging import get_logger

logger = get_logger(__name__)

KNOWN_SECTIONS = (
    "metadata",
    "parameters",
    "likelihood",
    "mcmc",
    "pmc",
    "optimize",
    "output",
    "logging",
)
PRIOR_KINDS = ("flat", "gaussian")

DEFAULT_OUTPUT = {
    "directory": ".",
    "mcmc_file": "mcmc.h5",
    "pmc_file": "pmc.h5",
    "optimize_file": "optimize.h5",
}

DEFAULT_OPTIMIZE = {
    "starting_point": None,
    "max_iterations": 10000,
    "tolerance": 1e-6,
    "seed": None,
}


def load_likelihood(reference: str | dict[str, Any]) -> Callable[[Any], float]:
    """Resolve a ``"package.module:attribute"`` reference.

    A mapping ``{"callable": "...", "arguments": {...}}`` calls the resolved
    object with the arguments and uses the return value, which allows
    likelihood classes configured from the file.
    """
    arguments: dict[str, Any] | None = None
    if isinstance(reference, dict):
        arguments = reference.get("arguments") or {}
        reference = reference.get("callable", "")

    module_name, _, attribute = str(reference).partition(":")
    if not module_name or not attribute:
        raise ConfigurationError(
            "likelihood must be given as 'package.module:callable'",
            error_context={"likelihood": reference},
        )

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(
            f"Cannot import likelihood module: {e}", error_context={"module": module_name}
        ) from e

    target: Any = module
    for part in attribute.split("."):
        if not hasattr(target, part):
            raise ConfigurationError(
                "Likelihood not found in module",
                error_context={"module": module_name, "attribute": attribute},
            )
        target = getattr(target, part)

    if arguments is not None:
        target = target(**arguments)
    if not callable(target):
        raise ConfigurationError(
            "Likelihood is not callable", error_context={"likelihood": reference}
        )
    return target


class ConfigManager:
    """Configuration manager for scanmc runs.

    Usage:
        config_manager = ConfigManager("scan.yaml")
        posterior = config_manager.build_posterior()
        mcmc_config = config_manager.get_mcmc_config()

    Unlike a best-effort loader, problems are fatal: a missing file,
    unparsable content or an invalid section raise
    :class:`ConfigurationError` before any sampling starts.
    """

    def __init__(
        self,
        config_file: str | Path | None = None,
        config_override: dict[str, Any] | None = None,
    ):
        """Initialize configuration manager.

        Parameters
        ----------
        config_file : str or Path, optional
            Path to YAML/JSON configuration file
        config_override : dict, optional
            Configuration data used instead of loading a file
        """
        self.config_file = config_file
        self.config: dict[str, Any] = {}

        if config_override is not None:
            self.config = dict(config_override)
            logger.info("Configuration loaded from override data")
        elif config_file is not None:
            self.load_config()
        else:
            raise ConfigurationError("Either config_file or config_override is required")

        self._validate_sections()

    def load_config(self) -> None:
        """Load and parse the YAML/JSON configuration file."""
        config_path = Path(self.config_file)
        if not config_path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {self.config_file}",
                error_context={"path": str(config_path)},
            )

        try:
            with open(config_path, encoding="utf-8") as f:
                if config_path.suffix.lower() == ".json":
                    data = json.load(f)
                else:
                    data = yaml.safe_load(f)
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigurationError(
                f"Cannot parse configuration file: {e}",
                error_context={"path": str(config_path)},
            ) from e

        if not isinstance(data, dict):
            raise ConfigurationError(
                "Configuration file must contain a mapping",
                error_context={"path": str(config_path)},
            )

        self.config = data
        logger.info(f"Configuration loaded from: {self.config_file}")

        if "metadata" in data and isinstance(data["metadata"], dict):
            version = data["metadata"].get("config_version", "Unknown")
            logger.info(f"Configuration version: {version}")

    def _validate_sections(self) -> None:
        unknown = sorted(set(self.config) - set(KNOWN_SECTIONS))
        if unknown:
            raise ConfigurationError(
                f"Unknown configuration sections: {unknown}",
                error_context={"known": list(KNOWN_SECTIONS)},
            )

    # ------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------

    def get_config(self) -> dict[str, Any]:
        return self.config

    def get_section(self, name: str) -> dict[str, Any]:
        section = self.config.get(name) or {}
        if not isinstance(section, dict):
            raise ConfigurationError(f"Section '{name}' must be a mapping")
        return section

    def get_parameters(self) -> list[dict[str, Any]]:
        parameters = self.config.get("parameters") or []
        if not isinstance(parameters, list) or not parameters:
            raise ConfigurationError("Section 'parameters' must be a non-empty list")
        return parameters

    def get_mcmc_config(self, **overrides: Any) -> MCMCConfig:
        """MCMC configuration; ``None`` overrides are ignored."""
        data = dict(self.get_section("mcmc"))
        data.setdefault("output_file", self.output_path("mcmc_file"))
        data.update({k: v for k, v in overrides.items() if v is not None})
        config = MCMCConfig.from_dict(data)
        config.ensure_valid()
        return config

    def get_pmc_config(self, **overrides: Any) -> PMCConfig:
        """PMC configuration; ``None`` overrides are ignored."""
        data = dict(self.get_section("pmc"))
        data.setdefault("output_file", self.output_path("pmc_file"))
        data.update({k: v for k, v in overrides.items() if v is not None})
        config = PMCConfig.from_dict(data)
        config.ensure_valid()
        return config

    def get_optimize_options(self, **overrides: Any) -> dict[str, Any]:
        """Options of the mode search; ``None`` overrides are ignored."""
        section = self.get_section("optimize")
        unknown = sorted(set(section) - set(DEFAULT_OPTIMIZE))
        if unknown:
            raise ConfigurationError(
                "Unknown options in section 'optimize'", error_context={"options": unknown}
            )
        options = {**DEFAULT_OPTIMIZE, **section}
        options.update({k: v for k, v in overrides.items() if v is not None})

        errors: list[str] = []
        if options["starting_point"] is not None:
            try:
                options["starting_point"] = [float(v) for v in options["starting_point"]]
            except (TypeError, ValueError):
                errors.append("starting_point must be a list of numbers")
        if not isinstance(options["max_iterations"], int) or options["max_iterations"] <= 0:
            errors.append(f"max_iterations must be a positive integer, got: {options['max_iterations']}")
        try:
            tolerance = float(options["tolerance"])
        except (TypeError, ValueError):
            tolerance = float("nan")
        if not tolerance > 0.0:
            errors.append(f"tolerance must be positive, got: {options['tolerance']}")
        if errors:
            raise ConfigurationError("Invalid optimize section", errors=errors)

        options["tolerance"] = tolerance
        options.setdefault("output_file", self.output_path("optimize_file"))
        return options

    def get_logging_config(self) -> dict[str, Any]:
        section = self.get_section("logging")
        return {"level": section.get("level", "INFO"), "log_file": section.get("file")}

    def output_path(self, key: str) -> str:
        output = {**DEFAULT_OUTPUT, **self.get_section("output")}
        return str(Path(output["directory"]) / output[key])

    # ------------------------------------------------------------------
    # Target
    # ------------------------------------------------------------------

    def build_posterior(self, log_likelihood: Callable[[Any], float] | None = None) -> LogPosterior:
        """Create the target from the ``parameters`` and ``likelihood`` sections.

        Raises
        ------
        ConfigurationError
            For duplicate parameter names, unknown prior kinds or missing
            range information.
        """
        if log_likelihood is None:
            if "likelihood" not in self.config:
                raise ConfigurationError("Missing required section 'likelihood'")
            log_likelihood = load_likelihood(self.config["likelihood"])

        posterior = LogPosterior(log_likelihood)
        for entry in self.get_parameters():
            prior = self._build_prior(entry)
            if not posterior.add(prior, bool(entry.get("nuisance", False))):
                raise ConfigurationError(
                    f"Parameter '{prior.name}' is defined more than once",
                    error_context={"parameter": prior.name},
                )

        logger.info(f"Target built with {posterior.dimension} parameter(s): {posterior.names}")
        return posterior

    @staticmethod
    def _build_prior(entry: dict[str, Any]):
        if not isinstance(entry, dict) or "name" not in entry:
            raise ConfigurationError("Every parameter needs a 'name'", error_context={"entry": entry})

        name = str(entry["name"])
        kind = str(entry.get("prior", "flat")).lower()
        n_sigmas = float(entry.get("n_sigmas", 0.0))
        has_range = "min" in entry and "max" in entry

        try:
            if kind == "flat":
                if not has_range:
                    raise ConfigurationError(f"Flat prior for '{name}' needs 'min' and 'max'")
                return flat_prior(name, float(entry["min"]), float(entry["max"]), n_sigmas)

            if kind == "gaussian":
                missing = [k for k in ("lower", "central", "upper") if k not in entry]
                if missing:
                    raise ConfigurationError(
                        f"Gaussian prior for '{name}' is missing {missing}"
                    )
                if not has_range and not n_sigmas:
                    raise ConfigurationError(
                        f"Gaussian prior for '{name}' needs 'min'/'max' or 'n_sigmas'"
                    )
                hard_range = (float(entry["min"]), float(entry["max"])) if has_range else None
                return gaussian_prior(
                    name,
                    float(entry["lower"]),
                    float(entry["central"]),
                    float(entry["upper"]),
                    n_sigmas=n_sigmas,
                    hard_range=hard_range,
                )
        except (TypeError, ValueError) as e:
            if isinstance(e, ConfigurationError):
                raise
            raise ConfigurationError(
                f"Invalid prior for '{name}': {e}", error_context={"entry": entry}
            ) from e

        raise ConfigurationError(
            f"Unknown prior '{kind}' for '{name}'", error_context={"known": list(PRIOR_KINDS)}
        )
