"""Minimal utilities for the scanmc package."""

from scanmc.utils.logging import (
    configure_logging,
    get_logger,
    log_operation,
    log_performance,
    with_context,
)
from scanmc.utils.progress import SamplingProgress

__all__ = [
    # Logging utilities
    "get_logger",
    "configure_logging",
    "with_context",
    "log_performance",
    "log_operation",
    # Progress
    "SamplingProgress",
]
