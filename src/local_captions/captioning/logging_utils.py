"""Logging utilities with custom trace level."""

import logging
from typing import Any

# Define custom TRACE level (lower than DEBUG)
TRACE_LEVEL = 5

DETAILED_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
SIMPLE_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def add_trace_level() -> None:
    """Add a custom TRACE logging level."""
    logging.addLevelName(TRACE_LEVEL, "TRACE")

    def trace(self: logging.Logger, message: str, *args: Any, **kwargs: Any) -> None:
        """Log a message with severity 'TRACE'."""
        if self.isEnabledFor(TRACE_LEVEL):
            self._log(TRACE_LEVEL, message, args, **kwargs)

    logging.Logger.trace = trace


def get_logger(name: str) -> logging.Logger:
    """Get a logger with trace support."""
    if not hasattr(logging.Logger, "trace"):
        add_trace_level()

    return logging.getLogger(name)


def configure_logging(verbose: bool = False, trace: bool = False) -> int:
    """
    Configure root logging for command-line use.

    Args:
        verbose: Enable DEBUG output
        trace: Enable TRACE output (takes precedence over verbose)

    Returns:
        The level that was configured
    """
    add_trace_level()

    if trace:
        level = TRACE_LEVEL
        log_format = DETAILED_FORMAT
    elif verbose:
        level = logging.DEBUG
        log_format = DETAILED_FORMAT
    else:
        level = logging.INFO
        log_format = SIMPLE_FORMAT

    logging.basicConfig(level=level, format=log_format)

    # faster-whisper is chatty at INFO; only surface it when debugging
    whisper_level = logging.INFO if (trace or verbose) else logging.WARNING
    logging.getLogger("faster_whisper").setLevel(whisper_level)

    return level
