"""Common utilities and shared functionality."""

from .exceptions import (
    BinaryNotFoundError,
    ConfigurationError,
    ProcessError,
    SchedulerError,
    TunnelGuardError,
    TunnelStartError,
)
from .logging import get_logger, setup_logging
from .utils import (
    MAX_PORT,
    MIN_PORT,
    binary_name,
    split_remote_host,
    tail_lines,
    validate_non_empty_string,
    validate_port,
)

__all__ = [
    # Exceptions
    "TunnelGuardError",
    "ConfigurationError",
    "ProcessError",
    "TunnelStartError",
    "BinaryNotFoundError",
    "SchedulerError",
    # Logging
    "get_logger",
    "setup_logging",
    # Utils
    "validate_port",
    "validate_non_empty_string",
    "split_remote_host",
    "binary_name",
    "tail_lines",
    "MIN_PORT",
    "MAX_PORT",
]
