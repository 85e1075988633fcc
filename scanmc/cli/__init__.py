"""Command Line Interface for scanmc
==================================

Usage:
    scanmc mcmc scan.yaml --seed 42
    scanmc pmc scan.yaml --initialize-from mcmc.h5
    scanmc optimize scan.yaml --starting-point 0.5
"""

from scanmc.cli.args_parser import create_parser, validate_args
from scanmc.cli.commands import dispatch_command
from scanmc.cli.main import main

__all__ = [
    "main",
    "create_parser",
    "dispatch_command",
    "validate_args",
]
