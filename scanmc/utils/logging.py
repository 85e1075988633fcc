"""
Minimal logging infrastructure for the scanmc package.

All loggers live below the ``scanmc`` root logger so that a single call to
:func:`configure_logging` controls the verbosity of the samplers, the storage
layer and the command-line driver alike.
"""

import functools
import inspect
import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Optional, Union

_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


class MinimalLogger:
    """Simplified logger manager for the scanmc package."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._configured = False
        self._root_logger_name = "scanmc"
        self._initialized = True

    def configure(
        self,
        level: str = "INFO",
        log_file: Optional[Union[str, Path]] = None,
        force: bool = False,
    ):
        """Configure basic logging."""
        if self._configured and not force:
            return

        root_logger = logging.getLogger(self._root_logger_name)
        root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

        formatter = logging.Formatter(_FORMAT)

        # Add console handler if none exists
        if not any(
            isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
            for h in root_logger.handlers
        ):
            handler = logging.StreamHandler()
            handler.setFormatter(formatter)
            root_logger.addHandler(handler)

        if log_file is not None:
            # One log file at a time; reconfiguring replaces it
            for handler in list(root_logger.handlers):
                if isinstance(handler, logging.FileHandler):
                    root_logger.removeHandler(handler)
                    handler.close()
            file_handler = logging.FileHandler(str(log_file), encoding="utf-8")
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

        self._configured = True

    def get_logger(self, name: str) -> logging.Logger:
        """Get or create a logger with hierarchical naming."""

        # Ensure we have a fully qualified name
        if not name.startswith(self._root_logger_name):
            if name == "__main__":
                full_name = f"{self._root_logger_name}.main"
            else:
                full_name = f"{self._root_logger_name}.{name}"
        else:
            full_name = name

        if not self._configured:
            self.configure()

        return logging.getLogger(full_name)


# Global logger manager instance
_logger_manager = MinimalLogger()


class ContextAdapter(logging.LoggerAdapter):
    """Logger adapter that prefixes messages with ``[key=value ...]``."""

    def process(self, msg, kwargs):
        if not self.extra:
            return msg, kwargs
        prefix = " ".join(f"{k}={v}" for k, v in self.extra.items())
        return f"[{prefix}] {msg}", kwargs


def with_context(
    logger: Union[logging.Logger, logging.LoggerAdapter], **context: Any
) -> ContextAdapter:
    """
    Attach key/value context to a logger.

    Nested calls merge contexts, inner values override outer ones and
    ``None`` values are dropped.

    Args:
        logger: Logger or previously contextualised adapter.
        **context: Context entries, e.g. ``chain=3``.

    Returns:
        Adapter emitting messages prefixed with the merged context.
    """
    merged: dict[str, Any] = {}
    base = logger
    if isinstance(logger, ContextAdapter):
        merged.update(logger.extra)
        base = logger.logger
    merged.update({k: v for k, v in context.items() if v is not None})
    return ContextAdapter(base, merged)


def configure_logging(
    level: str = "INFO",
    log_file: Optional[Union[str, Path]] = None,
) -> logging.Logger:
    """
    (Re)configure the ``scanmc`` root logger.

    Args:
        level: Logging level name.
        log_file: Optional file receiving a copy of every record.

    Returns:
        The package root logger.
    """
    _logger_manager.configure(level=level, log_file=log_file, force=True)
    return logging.getLogger(_logger_manager._root_logger_name)


def get_logger(
    name: Optional[str] = None,
    context: Optional[dict[str, Any]] = None,
) -> Union[logging.Logger, ContextAdapter]:
    """
    Get a logger instance with automatic naming.

    Args:
        name: Logger name. If None, uses caller's module name.
        context: Optional context attached via :func:`with_context`.

    Returns:
        Configured logger instance.
    """
    if name is None:
        # Auto-discover caller's module
        frame = inspect.currentframe()
        try:
            caller_frame = frame.f_back
            if caller_frame:
                name = caller_frame.f_globals.get("__name__", "unknown")
        finally:
            del frame

    logger = _logger_manager.get_logger(name or "unknown")
    if context:
        return with_context(logger, **context)
    return logger


def log_performance(
    logger: Optional[logging.Logger] = None,
    level: int = logging.INFO,
    threshold: float = 0.1,
):
    """
    Decorator to log function performance.

    Args:
        logger: Logger to use. If None, creates one for the module.
        level: Logging level to use.
        threshold: Minimum duration (seconds) to log.
    """

    def decorator(func):
        nonlocal logger
        if logger is None:
            logger = get_logger(func.__module__)

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            func_name = f"{func.__module__}.{func.__qualname__}"

            try:
                result = func(*args, **kwargs)
                duration = time.perf_counter() - start_time

                if duration >= threshold:
                    logger.log(level, f"Performance: {func_name} completed in {duration:.3f}s")

                return result

            except Exception as e:
                duration = time.perf_counter() - start_time
                logger.log(
                    logging.ERROR,
                    f"Performance: {func_name} failed after {duration:.3f}s: {e}",
                )
                raise

        return wrapper

    return decorator


@contextmanager
def log_operation(
    operation_name: str,
    logger: Optional[logging.Logger] = None,
    level: int = logging.INFO,
):
    """
    Context manager for logging operations.

    Args:
        operation_name: Name of the operation.
        logger: Logger to use. If None, creates one for caller's module.
        level: Logging level to use.
    """
    if logger is None:
        logger = get_logger()

    logger.log(level, f"Starting operation: {operation_name}")
    start_time = time.perf_counter()

    try:
        yield logger
        duration = time.perf_counter() - start_time
        logger.log(level, f"Completed operation: {operation_name} in {duration:.3f}s")
    except Exception as e:
        duration = time.perf_counter() - start_time
        logger.log(
            logging.ERROR,
            f"Failed operation: {operation_name} after {duration:.3f}s: {e}",
        )
        raise


# Configure default logging on import
_logger_manager.configure()
