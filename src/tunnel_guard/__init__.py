"""Tunnel Guard - keeps an SSH local port forward alive."""

__version__ = "0.1.0"

from .common.exceptions import (  # noqa: E402
    BinaryNotFoundError,
    ConfigurationError,
    ProcessError,
    SchedulerError,
    TunnelGuardError,
    TunnelStartError,
)
from .common.logging import get_logger, setup_logging  # noqa: E402
from .config import RemoteHost, TunnelConfig, load_config  # noqa: E402
from .inspectors import (  # noqa: E402
    ProcessInfo,
    ProcessInspector,
    PsutilProcessInspector,
    PsutilSocketInspector,
    SocketInspector,
)
from .probes import ConnectivityProber, HealthChecker, PortChecker  # noqa: E402
from .process import ProcessController, TunnelProcessHandle  # noqa: E402
from .scheduler import CrontabScheduler, TaskScheduler  # noqa: E402
from .status import StatusReporter, StatusSnapshot, render  # noqa: E402
from .supervisor import (  # noqa: E402
    CycleResult,
    HealthSnapshot,
    Supervisor,
    TunnelAction,
    TunnelState,
    find_supervisor_loops,
    is_supervisor_loop,
    stop_supervisor_loops,
)

__all__ = [
    # Configuration
    "TunnelConfig",
    "RemoteHost",
    "load_config",
    # Checks
    "ConnectivityProber",
    "PortChecker",
    "HealthChecker",
    # Process control
    "ProcessController",
    "TunnelProcessHandle",
    "ProcessInfo",
    "ProcessInspector",
    "SocketInspector",
    "PsutilProcessInspector",
    "PsutilSocketInspector",
    # Supervisor
    "Supervisor",
    "HealthSnapshot",
    "CycleResult",
    "TunnelState",
    "TunnelAction",
    "is_supervisor_loop",
    "find_supervisor_loops",
    "stop_supervisor_loops",
    # Status
    "StatusReporter",
    "StatusSnapshot",
    "render",
    # Scheduling
    "TaskScheduler",
    "CrontabScheduler",
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
]
