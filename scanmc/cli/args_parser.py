"""Argument Parser for the scanmc CLI
==================================

Three subcommands share the run-level options:

- ``scanmc mcmc CONFIG``: multi-chain Metropolis-Hastings scan
- ``scanmc pmc CONFIG``: Population Monte Carlo, either a full run or one
  of the distributed steps (draw samples, weigh a range of draws, update
  the mixture from the weighed ranges)
- ``scanmc optimize CONFIG``: search for the posterior mode
"""

import argparse
from pathlib import Path

from scanmc._version import version as __version__


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "config",
        type=Path,
        help="Path to configuration file (YAML or JSON)",
    )
    parser.add_argument(
        "--seed",
        type=int,
        help="Top-level random seed (overrides config)",
    )
    parser.add_argument(
        "--output",
        type=Path,
        help="Output HDF5 file (overrides config)",
    )
    parser.add_argument(
        "--parallel",
        action="store_true",
        help="Evaluate chains / weight batches on worker threads",
    )
    parser.add_argument(
        "--progress",
        action="store_true",
        help="Show progress bars",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the main argument parser for the scanmc CLI."""
    epilog_text = f"""
Examples:
  %(prog)s mcmc scan.yaml                              # adaptive MCMC
  %(prog)s mcmc scan.yaml --seed 42 --parallel         # reproducible, threaded
  %(prog)s pmc scan.yaml --initialize-from mcmc.h5     # PMC seeded by MCMC output
  %(prog)s pmc scan.yaml --initialize-from pmc.h5 --update --final
  %(prog)s pmc scan.yaml --update --draw-samples       # store draws only
  %(prog)s pmc scan.yaml --update --calculate-weights pmc.h5 0 5000
  %(prog)s pmc scan.yaml --update                      # update from stored weights
  %(prog)s optimize scan.yaml --starting-point 4.5 1.0 # posterior mode

scanmc v{__version__}
        """

    parser = argparse.ArgumentParser(
        prog="scanmc",
        description="MCMC and Population Monte Carlo parameter scans",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=epilog_text,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"scanmc v{__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    mcmc = subparsers.add_parser("mcmc", help="Run the multi-chain MCMC sampler")
    _add_common_arguments(mcmc)
    mcmc.add_argument(
        "--prerun-only",
        action="store_true",
        help="Only run and store the adaptive pre-run",
    )

    pmc = subparsers.add_parser("pmc", help="Run the Population Monte Carlo sampler")
    _add_common_arguments(pmc)
    pmc.add_argument(
        "--initialize-from",
        type=Path,
        metavar="FILE",
        help="MCMC output to build the initial mixture from (or PMC output with --update)",
    )
    pmc.add_argument(
        "--update",
        action="store_true",
        help=(
            "Resume from the last stored mixture; without another mode, update it "
            "from the stored weights of its draws"
        ),
    )
    pmc.add_argument(
        "--final",
        action="store_true",
        help="Skip adaptation and only draw the final sample",
    )
    pmc.add_argument(
        "--draw-samples",
        action="store_true",
        help="Draw from the current mixture and store the unweighted draws",
    )
    pmc.add_argument(
        "--calculate-weights",
        nargs=3,
        metavar=("FILE", "MIN", "MAX"),
        help="Weigh stored draws [MIN, MAX) of FILE",
    )

    optimize = subparsers.add_parser("optimize", help="Search for the posterior mode")
    optimize.add_argument(
        "config",
        type=Path,
        help="Path to configuration file (YAML or JSON)",
    )
    optimize.add_argument(
        "--starting-point",
        type=float,
        nargs="+",
        metavar="VALUE",
        help="Start of the search, one value per parameter (default: prior draw)",
    )
    optimize.add_argument(
        "--seed",
        type=int,
        help="Seed for drawing the starting point",
    )
    optimize.add_argument(
        "--output",
        type=Path,
        help="Output HDF5 file (overrides config)",
    )
    optimize.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )

    return parser


def validate_args(args: argparse.Namespace) -> list[str]:
    """Return problems with argument combinations (empty if valid)."""
    errors: list[str] = []

    if not args.config.exists():
        errors.append(f"Configuration file not found: {args.config}")

    if args.seed is not None and args.seed < 0:
        errors.append(f"--seed must be non-negative, got: {args.seed}")

    if args.command == "pmc":
        modes = [args.final, args.draw_samples, args.calculate_weights is not None]
        if sum(modes) > 1:
            errors.append("--final, --draw-samples and --calculate-weights are exclusive")

        if args.calculate_weights is not None:
            _, low, high = args.calculate_weights
            try:
                low_i, high_i = int(low), int(high)
            except ValueError:
                errors.append("--calculate-weights MIN and MAX must be integers")
            else:
                if not 0 <= low_i < high_i:
                    errors.append(f"--calculate-weights needs 0 <= MIN < MAX, got: {low_i} {high_i}")

    return errors
