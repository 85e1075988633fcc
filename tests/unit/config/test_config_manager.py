"""Unit tests for configuration management.

Tests for ConfigManager file loading, posterior construction and the
sampler configuration sections.
"""

import json
import math

import numpy as np
import pytest
import yaml

from scanmc.config import ConfigManager, load_likelihood
from scanmc.posterior.priors import GaussianPrior
from scanmc.sampling.exceptions import ConfigurationError

SCAN_CONFIG = {
    "metadata": {"config_version": "1.0"},
    "parameters": [
        {"name": "mass", "min": -5.0, "max": 5.0},
        {
            "name": "width",
            "prior": "gaussian",
            "lower": 0.9,
            "central": 1.0,
            "upper": 1.2,
            "n_sigmas": 3,
            "nuisance": True,
        },
    ],
    "likelihood": "tests.conftest:standard_normal_log_likelihood",
    "mcmc": {"number_of_chains": 2, "seed": 3, "prerun": {"iterations_min": 100}},
    "pmc": {"target_ncomponents": 2, "convergence": {"max_updates": 4}},
    "output": {"directory": "results"},
    "logging": {"level": "DEBUG"},
}


@pytest.fixture
def config_file(temp_dir):
    path = temp_dir / "scan.yaml"
    path.write_text(yaml.safe_dump(SCAN_CONFIG))
    return path


class TestConfigLoading:
    """Tests for reading configuration files."""

    def test_load_yaml(self, config_file):
        manager = ConfigManager(config_file)
        assert manager.get_config()["mcmc"]["number_of_chains"] == 2

    def test_load_json(self, temp_dir):
        path = temp_dir / "scan.json"
        path.write_text(json.dumps(SCAN_CONFIG))
        assert ConfigManager(path).get_section("pmc")["target_ncomponents"] == 2

    def test_missing_file(self, temp_dir):
        with pytest.raises(ConfigurationError, match="not found"):
            ConfigManager(temp_dir / "missing.yaml")

    def test_unparsable_file(self, temp_dir):
        path = temp_dir / "bad.yaml"
        path.write_text("parameters: [unclosed")
        with pytest.raises(ConfigurationError, match="Cannot parse"):
            ConfigManager(path)

    def test_not_a_mapping(self, temp_dir):
        path = temp_dir / "list.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ConfigurationError, match="mapping"):
            ConfigManager(path)

    def test_unknown_section(self):
        with pytest.raises(ConfigurationError, match="Unknown configuration sections"):
            ConfigManager(config_override={"parameters": [], "plots": {}})

    def test_nothing_given(self):
        with pytest.raises(ConfigurationError):
            ConfigManager()


class TestBuildPosterior:
    """Tests for turning the parameters section into a LogPosterior."""

    def test_parameters_in_order(self):
        posterior = ConfigManager(config_override=SCAN_CONFIG).build_posterior()
        assert posterior.names == ["mass", "width"]
        assert posterior.nuisance_mask.tolist() == [False, True]
        assert isinstance(posterior.prior("width"), GaussianPrior)
        assert posterior.prior("width").maximum == pytest.approx(1.6)

    def test_likelihood_resolved(self):
        posterior = ConfigManager(config_override=SCAN_CONFIG).build_posterior()
        assert math.isfinite(posterior.evaluate(np.array([0.0, 1.0])))

    def test_explicit_likelihood_wins(self):
        config = {k: v for k, v in SCAN_CONFIG.items() if k != "likelihood"}
        posterior = ConfigManager(config_override=config).build_posterior(lambda x: 0.0)
        assert posterior.dimension == 2

    def test_missing_likelihood(self):
        config = {k: v for k, v in SCAN_CONFIG.items() if k != "likelihood"}
        with pytest.raises(ConfigurationError, match="likelihood"):
            ConfigManager(config_override=config).build_posterior()

    def test_duplicate_parameter(self):
        config = dict(SCAN_CONFIG)
        config["parameters"] = SCAN_CONFIG["parameters"] + [{"name": "mass", "min": 0.0, "max": 1.0}]
        with pytest.raises(ConfigurationError, match="more than once"):
            ConfigManager(config_override=config).build_posterior()

    @pytest.mark.parametrize(
        "entry, message",
        [
            ({"name": "x", "prior": "lognormal", "min": 0.0, "max": 1.0}, "Unknown prior"),
            ({"name": "x", "min": 0.0}, "needs 'min' and 'max'"),
            ({"name": "x", "prior": "gaussian", "central": 1.0, "n_sigmas": 2}, "missing"),
            ({"name": "x", "prior": "gaussian", "lower": 0.0, "central": 1.0, "upper": 2.0}, "n_sigmas"),
            ({"min": 0.0, "max": 1.0}, "name"),
            ({"name": "x", "min": "low", "max": 1.0}, "Invalid prior"),
        ],
    )
    def test_invalid_prior_entries(self, entry, message):
        config = {"parameters": [entry], "likelihood": SCAN_CONFIG["likelihood"]}
        with pytest.raises(ConfigurationError, match=message):
            ConfigManager(config_override=config).build_posterior()

    def test_empty_parameters(self):
        with pytest.raises(ConfigurationError, match="non-empty"):
            ConfigManager(config_override={"parameters": []}).build_posterior(lambda x: 0.0)


class TestSamplerSections:
    """Tests for the mcmc, pmc, output and logging sections."""

    def test_mcmc_config(self):
        config = ConfigManager(config_override=SCAN_CONFIG).get_mcmc_config()
        assert config.number_of_chains == 2
        assert config.prerun_iterations_min == 100
        assert config.output_file.endswith("mcmc.h5")
        assert config.output_file.startswith("results")

    def test_overrides_ignore_none(self):
        config = ConfigManager(config_override=SCAN_CONFIG).get_mcmc_config(seed=None, parallelize=True)
        assert config.seed == 3
        assert config.parallelize

    def test_invalid_mcmc_section(self):
        config = dict(SCAN_CONFIG, mcmc={"proposal": {"kind": "MultivariateStudentT"}})
        with pytest.raises(ConfigurationError) as exc_info:
            ConfigManager(config_override=config).get_mcmc_config()
        assert any("degree of freedom" in e for e in exc_info.value.errors)

    def test_pmc_config(self):
        config = ConfigManager(config_override=SCAN_CONFIG).get_pmc_config(seed=11)
        assert config.target_ncomponents == 2
        assert config.max_updates == 4
        assert config.seed == 11
        assert config.output_file.endswith("pmc.h5")

    def test_optimize_defaults(self):
        options = ConfigManager(config_override=SCAN_CONFIG).get_optimize_options()
        assert options["starting_point"] is None
        assert options["max_iterations"] == 10000
        assert options["tolerance"] == 1e-6
        assert options["output_file"].endswith("optimize.h5")

    def test_optimize_overrides(self):
        config = dict(SCAN_CONFIG, optimize={"starting_point": [1, 2], "tolerance": "1e-4"})
        options = ConfigManager(config_override=config).get_optimize_options(
            seed=5, output_file="mode.h5", starting_point=None
        )
        assert options["starting_point"] == [1.0, 2.0]
        assert options["tolerance"] == 1e-4
        assert options["seed"] == 5
        assert options["output_file"] == "mode.h5"

    def test_unknown_optimize_option(self):
        config = dict(SCAN_CONFIG, optimize={"method": "BFGS"})
        with pytest.raises(ConfigurationError, match="Unknown options"):
            ConfigManager(config_override=config).get_optimize_options()

    def test_invalid_optimize_section(self):
        config = dict(SCAN_CONFIG, optimize={"max_iterations": 0, "tolerance": -1.0})
        with pytest.raises(ConfigurationError) as exc_info:
            ConfigManager(config_override=config).get_optimize_options()
        assert len(exc_info.value.errors) == 2

    def test_logging_config(self):
        assert ConfigManager(config_override=SCAN_CONFIG).get_logging_config() == {
            "level": "DEBUG",
            "log_file": None,
        }

    def test_section_must_be_mapping(self):
        with pytest.raises(ConfigurationError, match="mapping"):
            ConfigManager(config_override={"mcmc": [1, 2]}).get_section("mcmc")


class TestLoadLikelihood:
    """Tests for resolving likelihood references."""

    def test_module_attribute(self):
        assert load_likelihood("math:fabs")(-2.0) == 2.0

    def test_factory_with_arguments(self):
        likelihood = load_likelihood(
            {
                "callable": "tests.conftest:CorrelatedGaussianLikelihood",
                "arguments": {"mean": [0.0], "covariance": [[1.0]]},
            }
        )
        assert likelihood(np.array([0.0])) == 0.0

    @pytest.mark.parametrize("reference", ["math", "math:", ":fabs"])
    def test_malformed(self, reference):
        with pytest.raises(ConfigurationError, match="package.module:callable"):
            load_likelihood(reference)

    def test_missing_module(self):
        with pytest.raises(ConfigurationError, match="Cannot import"):
            load_likelihood("no_such_module_xyz:f")

    def test_missing_attribute(self):
        with pytest.raises(ConfigurationError, match="not found"):
            load_likelihood("math:no_such_function")

    def test_not_callable(self):
        with pytest.raises(ConfigurationError, match="not callable"):
            load_likelihood("math:pi")
