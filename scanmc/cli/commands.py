"""Command dispatch for the scanmc CLI.

The CLI is a thin driving layer: it loads the configuration file, applies
command-line overrides and hands complete configuration values to the
samplers.
"""

from __future__ import annotations

import argparse
from typing import Any

import numpy as np

from scanmc.config.manager import ConfigManager
from scanmc.sampling.exceptions import ScanError
from scanmc.sampling.mcmc import MarkovChainSampler
from scanmc.sampling.pmc import PopulationMonteCarloSampler
from scanmc.sampling.storage import SampleStore, make_records
from scanmc.utils.logging import configure_logging, get_logger, log_operation

logger = get_logger(__name__)

OPTIMIZE_STREAM = "optimize/mode"


def _configure_logging(args: argparse.Namespace, config: ConfigManager) -> None:
    logging_cfg = config.get_logging_config()
    level = "DEBUG" if args.verbose else logging_cfg["level"]
    configure_logging(level=level, log_file=logging_cfg["log_file"])


def _common_overrides(args: argparse.Namespace) -> dict[str, Any]:
    return {
        "seed": args.seed,
        "output_file": str(args.output) if args.output is not None else None,
        "parallelize": True if args.parallel else None,
        "show_progress": True if args.progress else None,
    }


def run_mcmc(args: argparse.Namespace, config: ConfigManager) -> dict[str, Any]:
    overrides = _common_overrides(args)
    if args.prerun_only:
        overrides.update(need_prerun=True, store_prerun=True, need_main_run=False)
    mcmc_config = config.get_mcmc_config(**overrides)
    posterior = config.build_posterior()

    with MarkovChainSampler(posterior, mcmc_config) as sampler:
        status = sampler.run()

    return {
        "success": True,
        "status": status.to_dict(),
        "output_file": mcmc_config.output_file,
    }


def run_pmc(args: argparse.Namespace, config: ConfigManager) -> dict[str, Any]:
    overrides = _common_overrides(args)
    if args.final:
        overrides["converged"] = True
    pmc_config = config.get_pmc_config(**overrides)
    posterior = config.build_posterior()

    with PopulationMonteCarloSampler(
        posterior,
        pmc_config,
        initialize_from=args.initialize_from,
        update=args.update,
    ) as sampler:
        if args.draw_samples:
            records = sampler.draw_samples()
            return {"success": True, "draws": len(records), "output_file": pmc_config.output_file}

        if args.calculate_weights is not None:
            source, low, high = args.calculate_weights
            records = sampler.calculate_weights(source, int(low), int(high))
            return {"success": True, "weighted": len(records), "output_file": pmc_config.output_file}

        if args.update and not args.final:
            sampler.update_from_weights()
            return {
                "success": True,
                "converged": sampler.status.converged,
                "status": sampler.status.to_dict(),
                "output_file": pmc_config.output_file,
            }

        result = sampler.run()

    return {
        "success": True,
        "converged": result.converged,
        "status": result.status.to_dict(),
        "output_file": pmc_config.output_file,
    }


def run_optimize(args: argparse.Namespace, config: ConfigManager) -> dict[str, Any]:
    options = config.get_optimize_options(
        starting_point=args.starting_point,
        seed=args.seed,
        output_file=str(args.output) if args.output is not None else None,
    )
    posterior = config.build_posterior()
    rng = np.random.default_rng(options["seed"])

    with log_operation("Posterior optimization", logger):
        result = posterior.optimize(
            options["starting_point"],
            rng,
            max_iterations=options["max_iterations"],
            tolerance=options["tolerance"],
        )

    with SampleStore.open(options["output_file"], "w") as store:
        store.write_parameter_descriptions(posterior.parameter_descriptions())
        store.append(
            OPTIMIZE_STREAM,
            make_records(result.point, result.log_posterior, 1.0, 0, result.iterations),
        )
        store.set_metadata(OPTIMIZE_STREAM, result.to_dict())

    return {
        "success": True,
        "converged": result.converged,
        "result": result.to_dict(),
        "output_file": options["output_file"],
    }


def dispatch_command(args: argparse.Namespace) -> dict[str, Any]:
    """Dispatch command based on parsed CLI arguments.

    Returns
    -------
    dict
        Command execution result with success status and details
    """
    try:
        config = ConfigManager(args.config)
        _configure_logging(args, config)
        logger.info(f"Dispatching scanmc {args.command} (config={args.config})")

        if args.command == "mcmc":
            return run_mcmc(args, config)
        if args.command == "optimize":
            return run_optimize(args, config)
        return run_pmc(args, config)

    except ScanError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return {"success": False, "error": str(e)}
