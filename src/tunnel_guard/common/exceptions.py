"""Custom exceptions for tunnel guard."""


class TunnelGuardError(Exception):
    """Base exception for all tunnel guard errors."""
    pass


class ConfigurationError(TunnelGuardError):
    """Raised when configuration is invalid."""
    pass


class ProcessError(TunnelGuardError):
    """Raised when tunnel process operations fail."""
    pass


class TunnelStartError(ProcessError):
    """Raised when the tunnel process cannot be launched or fails verification."""
    pass


class BinaryNotFoundError(TunnelStartError):
    """Raised when the ssh binary is not found or not executable."""
    pass


class SchedulerError(TunnelGuardError):
    """Raised when background task registration fails."""
    pass
