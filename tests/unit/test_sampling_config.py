"""Tests for MCMCConfig and PMCConfig."""

import pytest

from scanmc.sampling.config import MCMCConfig, PMCConfig
from scanmc.sampling.exceptions import ConfigurationError

# ============================================================================
# MCMCConfig
# ============================================================================


class TestMCMCConfig:
    def test_defaults_are_valid(self):
        config = MCMCConfig()
        assert config.validate() == []
        assert config.number_of_chains == 4
        assert config.chunk_size == 1000
        assert config.need_prerun
        assert config.use_strict_rvalue_definition

    def test_frozen(self):
        config = MCMCConfig()
        with pytest.raises(AttributeError):
            config.chunk_size = 10

    def test_student_t_requires_dof(self):
        config = MCMCConfig(proposal="MultivariateStudentT")
        errors = config.validate()
        assert any("degree of freedom" in e for e in errors)
        with pytest.raises(ConfigurationError) as exc_info:
            config.ensure_valid()
        assert exc_info.value.errors == errors

    @pytest.mark.parametrize("dof", [0, -2.0])
    def test_student_t_non_positive_dof(self, dof):
        config = MCMCConfig(proposal="MultivariateStudentT", student_t_degrees_of_freedom=dof)
        assert not config.is_valid()

    def test_prerun_min_above_max(self):
        config = MCMCConfig(prerun_iterations_min=5000, prerun_iterations_max=1000)
        assert any("prerun_iterations_min" in e for e in config.validate())

    def test_nothing_to_do(self):
        config = MCMCConfig(need_prerun=False, need_main_run=False)
        assert any("nothing to do" in e for e in config.validate())

    def test_unknown_proposal(self):
        assert not MCMCConfig(proposal="Cauchy").is_valid()

    def test_prerun_only(self):
        config = MCMCConfig.prerun_only(seed=3)
        assert config.store_prerun and not config.need_main_run
        assert config.seed == 3
        assert config.is_valid()

    def test_from_dict_nested_sections(self):
        config = MCMCConfig.from_dict(
            {
                "number_of_chains": 6,
                "prerun": {"iterations_min": 200, "max": 800, "update": 100, "strict_rvalue": False},
                "proposal": {"kind": "MultivariateStudentT", "degrees_of_freedom": 5},
                "starting_points": [[0.0, 1.0], [1.0, 2.0]],
            }
        )
        assert config.number_of_chains == 6
        assert config.prerun_iterations_min == 200
        assert config.prerun_iterations_max == 800
        assert config.prerun_iterations_update == 100
        assert not config.use_strict_rvalue_definition
        assert config.proposal == "MultivariateStudentT"
        assert config.student_t_degrees_of_freedom == 5
        assert config.starting_points == ((0.0, 1.0), (1.0, 2.0))

    def test_from_dict_unknown_key(self):
        with pytest.raises(ConfigurationError, match="Unknown MCMC options"):
            MCMCConfig.from_dict({"chains": 4})

    def test_to_dict_round_trip(self):
        config = MCMCConfig(seed=7, starting_points=((0.0,), (1.0,)))
        assert MCMCConfig.from_dict(config.to_dict()) == config

    def test_with_overrides(self):
        config = MCMCConfig().with_overrides(seed=9, parallelize=True)
        assert config.seed == 9
        assert config.parallelize


# ============================================================================
# PMCConfig
# ============================================================================


class TestPMCConfig:
    def test_defaults_are_valid(self):
        assert PMCConfig().validate() == []

    def test_from_dict_sections(self):
        config = PMCConfig.from_dict(
            {
                "target_ncomponents": 3,
                "initialization": {"patch_length": 100, "ignore_groups": [1], "chain_groups": [0, 0, 1]},
                "convergence": {"max_updates": 5, "ignore_eff_sample_size": True},
                "sampling": {"samples_per_component": 2000, "adjust_sample_size": 1.5},
            }
        )
        assert config.target_ncomponents == 3
        assert config.patch_length == 100
        assert config.ignore_groups == (1,)
        assert config.chain_groups == (0, 0, 1)
        assert config.max_updates == 5
        assert config.ignore_eff_sample_size
        assert config.draws_per_component() == 3000

    def test_from_dict_unknown_key(self):
        with pytest.raises(ConfigurationError, match="Unknown PMC options"):
            PMCConfig.from_dict({"convergence": {"tolerance": 0.1}})

    @pytest.mark.parametrize(
        "field, value",
        [
            ("skip_initial", 1.0),
            ("minimum_eff_sample_size", 0.0),
            ("crop_highest_weights", -1),
            ("group_by_r_value", 0.5),
            ("max_updates", 0),
            ("adjust_sample_size", 0.0),
        ],
    )
    def test_invalid_values(self, field, value):
        assert not PMCConfig(**{field: value}).is_valid()

    def test_draws_per_component_at_least_one(self):
        assert PMCConfig(samples_per_component=1, adjust_sample_size=0.1).draws_per_component() == 1

    def test_to_dict_round_trip(self):
        config = PMCConfig(seed=1, ignore_groups=(2,), chain_groups=(0, 1, 2))
        assert PMCConfig.from_dict(config.to_dict()) == config
