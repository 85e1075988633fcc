"""Exceptions and warnings raised by the scanmc samplers.

Exception Hierarchy:
    ScanError (base)
    ├── ConfigurationError (invalid options, duplicate parameters, bad shapes)
    ├── EvaluationError (scoring function could not be evaluated)
    └── StorageError (sample store unreachable or corrupted)

    ConvergenceWarning (UserWarning; iteration caps reached)

Configuration errors are raised before any sampling work starts. Evaluation
errors never leave :meth:`scanmc.posterior.LogPosterior.evaluate`; they are
turned into a log-posterior of ``-inf``, i.e. a zero acceptance probability.
Storage errors are fatal for the affected chain or run only.

Examples
--------
>>> try:
...     sampler = MarkovChainSampler(posterior, MCMCConfig(number_of_chains=0))
... except ConfigurationError as e:
...     print(e.error_context)
"""

from __future__ import annotations


class ScanError(Exception):
    """Base exception for all scanmc errors.

    Attributes
    ----------
    error_context : dict
        Additional context about the error (parameter names, file paths, ...)
    """

    def __init__(self, message: str, error_context: dict | None = None):
        super().__init__(message)
        self.error_context = error_context or {}

    def __str__(self) -> str:
        """Return formatted error message with context."""
        base_msg = super().__str__()
        if self.error_context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.error_context.items())
            return f"{base_msg} (context: {context_str})"
        return base_msg


class ConfigurationError(ScanError, ValueError):
    """Raised for invalid sampler or parameter configuration.

    Common Causes
    -------------
    - The same parameter registered twice in a configuration file
    - Non-positive degrees of freedom for a Student-t proposal
    - Starting points whose dimension differs from the number of parameters
    - Missing required options (e.g. no initial mixture for PMC)
    """

    def __init__(self, message: str, error_context: dict | None = None, errors: list[str] | None = None):
        super().__init__(message, error_context)
        self.errors = list(errors or [])


class EvaluationError(ScanError):
    """Raised by a scoring function that cannot be evaluated at a point.

    The target adapter recovers from it locally; it is part of the public
    interface so likelihood implementations have a dedicated way to signal
    failure.
    """


class StorageError(ScanError, OSError):
    """Raised when the persistent sample store cannot be read or written.

    A partially written chunk detected on reopen is reported with the stream
    name and the committed/actual row counts in ``error_context``.
    """


class ConvergenceWarning(UserWarning):
    """Issued when a pre-run or PMC iteration cap is hit without convergence.

    Sampling continues; the condition is recorded in the sampler status and
    in the store metadata.
    """
