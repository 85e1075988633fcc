"""Sampling engine: multi-chain MCMC and Population Monte Carlo.

Typical use::

    from scanmc.sampling import MCMCConfig, MarkovChainSampler, PMCConfig
    from scanmc.sampling import PopulationMonteCarloSampler

    mcmc = MarkovChainSampler(posterior, MCMCConfig(seed=1, output_file="scan.h5"))
    mcmc.run()
    mcmc.close()

    pmc = PopulationMonteCarloSampler(
        posterior, PMCConfig(seed=2, output_file="pmc.h5"), initialize_from="scan.h5"
    )
    result = pmc.run()
"""

from scanmc.sampling.chain import ChainHistory, MarkovChain
from scanmc.sampling.config import PROPOSAL_KINDS, MCMCConfig, PMCConfig
from scanmc.sampling.diagnostics import (
    compute_r_values,
    effective_sample_size,
    normalized_effective_sample_size,
    normalized_perplexity,
    relative_std_deviation,
)
from scanmc.sampling.exceptions import (
    ConfigurationError,
    ConvergenceWarning,
    EvaluationError,
    ScanError,
    StorageError,
)
from scanmc.sampling.mcmc import MarkovChainSampler, MCMCState, MCMCStatus
from scanmc.sampling.mixture import MixtureComponent, MixtureModel, group_chains
from scanmc.sampling.pmc import (
    PMCResult,
    PMCState,
    PMCStatus,
    PopulationMonteCarloSampler,
    normalize_weights,
)
from scanmc.sampling.proposals import (
    MultivariateGaussianProposal,
    MultivariateStudentTProposal,
    build_proposal,
)
from scanmc.sampling.storage import SampleStore, make_records, record_dtype

__all__ = [
    # Configuration
    "MCMCConfig",
    "PMCConfig",
    "PROPOSAL_KINDS",
    # Errors
    "ScanError",
    "ConfigurationError",
    "EvaluationError",
    "StorageError",
    "ConvergenceWarning",
    # MCMC
    "MarkovChain",
    "ChainHistory",
    "MarkovChainSampler",
    "MCMCState",
    "MCMCStatus",
    "MultivariateGaussianProposal",
    "MultivariateStudentTProposal",
    "build_proposal",
    # PMC
    "MixtureComponent",
    "MixtureModel",
    "group_chains",
    "PopulationMonteCarloSampler",
    "PMCState",
    "PMCStatus",
    "PMCResult",
    "normalize_weights",
    # Diagnostics
    "compute_r_values",
    "effective_sample_size",
    "normalized_effective_sample_size",
    "normalized_perplexity",
    "relative_std_deviation",
    # Storage
    "SampleStore",
    "make_records",
    "record_dtype",
]
