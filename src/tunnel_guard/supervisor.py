"""Polling loop that keeps the tunnel alive."""

import signal
import threading
import time
from collections.abc import Callable, Collection, Sequence
from enum import Enum
from types import FrameType

from pydantic import BaseModel, ConfigDict, Field

from .common.exceptions import ProcessError
from .common.logging import get_logger
from .common.utils import binary_name
from .config import TunnelConfig
from .inspectors import (
    ProcessInfo,
    ProcessInspector,
    PsutilProcessInspector,
    PsutilSocketInspector,
    SocketInspector,
)
from .probes import ConnectivityProber, HealthChecker, PortChecker
from .process import ProcessController, TunnelProcessHandle

logger = get_logger(__name__)


class TunnelState(str, Enum):
    """Observed tunnel state for one cycle."""

    DISCONNECTED = "disconnected"
    NOT_RUNNING = "not_running"
    UNHEALTHY = "unhealthy"
    HEALTHY = "healthy"


class TunnelAction(str, Enum):
    """Action taken in response to the observed state."""

    NONE = "none"
    START = "start"
    RESTART = "restart"


class HealthSnapshot(BaseModel):
    """Ground truth gathered in one evaluation; never reused across cycles."""

    model_config = ConfigDict(frozen=True)

    network_reachable: bool = False
    port_listening: bool = False
    tunnel_healthy: bool = False
    process: TunnelProcessHandle | None = None

    @property
    def state(self) -> TunnelState:
        if not self.network_reachable:
            return TunnelState.DISCONNECTED
        if not self.port_listening:
            return TunnelState.NOT_RUNNING
        if not self.tunnel_healthy:
            return TunnelState.UNHEALTHY
        return TunnelState.HEALTHY


class CycleResult(BaseModel):
    """Outcome of one supervisor cycle."""

    model_config = ConfigDict(frozen=True)

    snapshot: HealthSnapshot
    action: TunnelAction = TunnelAction.NONE
    succeeded: bool = True
    error: str | None = Field(default=None)

    @property
    def state(self) -> TunnelState:
        return self.snapshot.state


class Supervisor:
    """Checks connectivity, port and health in order and repairs the tunnel.

    There is no backoff and no retry ceiling. A lost network or a failing
    tunnel is retried every interval for as long as the loop runs.
    """

    def __init__(
        self,
        config: TunnelConfig,
        prober: ConnectivityProber,
        port_checker: PortChecker,
        health_checker: HealthChecker,
        controller: ProcessController,
    ):
        self.config = config
        self.prober = prober
        self.port_checker = port_checker
        self.health_checker = health_checker
        self.controller = controller
        self._stop_event = threading.Event()
        self._last_state: TunnelState | None = None

    @classmethod
    def from_config(
        cls,
        config: TunnelConfig,
        processes: ProcessInspector | None = None,
        sockets: SocketInspector | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "Supervisor":
        """Wire a supervisor with the default OS-backed components."""
        health_checker = HealthChecker(timeout=config.connect_timeout)
        controller = ProcessController(
            config,
            processes or PsutilProcessInspector(),
            health_checker,
            sleep=sleep,
        )
        return cls(
            config,
            prober=ConnectivityProber(
                port=config.probe_port or 22,
                timeout=config.connect_timeout,
                method=config.probe_method,
            ),
            port_checker=PortChecker(sockets or PsutilSocketInspector()),
            health_checker=health_checker,
            controller=controller,
        )

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def observe(self) -> HealthSnapshot:
        """Run the checks in order, stopping at the first that fails."""
        probe_host = self.config.probe_host or self.config.remote_host.host
        if not self.prober.probe(probe_host):
            return HealthSnapshot(network_reachable=False)

        port = self.config.local_port
        if not self.port_checker.is_port_listening(port):
            return HealthSnapshot(network_reachable=True, port_listening=False)

        return HealthSnapshot(
            network_reachable=True,
            port_listening=True,
            tunnel_healthy=self.health_checker.is_healthy(port),
        )

    def run_cycle(self) -> CycleResult:
        """Evaluate the tunnel once and act on what was observed."""
        snapshot = self.observe()
        state = snapshot.state
        self._log_transition(state)

        if state is TunnelState.DISCONNECTED:
            logger.info("network unreachable, skipping cycle", probe_host=self.config.probe_host)
            return CycleResult(snapshot=snapshot)

        if state is TunnelState.HEALTHY:
            logger.debug("tunnel healthy", port=self.config.local_port)
            return CycleResult(snapshot=snapshot)

        if state is TunnelState.NOT_RUNNING:
            logger.info("tunnel not running, starting", port=self.config.local_port)
            action = TunnelAction.START
        else:
            logger.warning("tunnel unhealthy, restarting", port=self.config.local_port)
            action = TunnelAction.RESTART

        try:
            if action is TunnelAction.RESTART:
                self.controller.stop()
            handle = self.controller.start()
        except ProcessError as e:
            # Covers TunnelStartError; retried next cycle
            logger.warning("Tunnel action failed, retrying next cycle", action=action.value, error=str(e))
            return CycleResult(snapshot=snapshot, action=action, succeeded=False, error=str(e))

        return CycleResult(
            snapshot=snapshot.model_copy(update={"process": handle}),
            action=action,
        )

    def _log_transition(self, state: TunnelState) -> None:
        if state is not self._last_state:
            logger.info(
                "Tunnel state changed",
                previous=self._last_state.value if self._last_state else None,
                state=state.value,
            )
            self._last_state = state

    def request_stop(self) -> None:
        """Ask the loop to exit; wakes it from the interval wait."""
        self._stop_event.set()

    def _handle_signal(self, signum: int, frame: FrameType | None) -> None:
        logger.info("Received signal, stopping supervisor", signal=signal.Signals(signum).name)
        self.request_stop()

    def install_signal_handlers(self) -> None:
        """Stop the loop on SIGINT and SIGTERM (main thread only)."""
        if threading.current_thread() is not threading.main_thread():
            return
        signal.signal(signal.SIGINT, self._handle_signal)
        signal.signal(signal.SIGTERM, self._handle_signal)

    def run_forever(self, max_cycles: int | None = None) -> int:
        """Run cycles every ``check_interval`` seconds until stopped.

        The tunnel process is left running when the loop exits.

        Args:
            max_cycles: Optional cycle limit, mainly for ``--once``

        Returns:
            Number of cycles run
        """
        logger.info(
            "Supervisor started",
            local_port=self.config.local_port,
            remote_host=str(self.config.remote_host),
            remote_port=self.config.remote_port,
            interval=self.config.check_interval,
        )
        cycles = 0
        while not self._stop_event.is_set():
            self.run_cycle()
            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break
            self._stop_event.wait(self.config.check_interval)

        logger.info("Supervisor stopped, tunnel process left running", cycles=cycles)
        return cycles


MODULE_NAME = "tunnel_guard"
SCRIPT_NAME = "tunnel-guard"

# Modes that exit after one action and never loop
ONE_SHOT_FLAGS = frozenset(
    {"--status", "--stop", "--install", "--uninstall", "--once", "--version", "-h", "--help"}
)


def _cli_arguments(cmdline: Sequence[str]) -> list[str] | None:
    """Arguments following the tunnel guard entry point, or None if absent."""
    for i, arg in enumerate(cmdline):
        if arg == "-m" and i + 1 < len(cmdline) and cmdline[i + 1] == MODULE_NAME:
            return list(cmdline[i + 2:])
        # The script runs as the interpreter's first argument or directly
        if i <= 1 and not arg.startswith("-") and binary_name(arg) == SCRIPT_NAME:
            return list(cmdline[i + 1:])
    return None


def is_supervisor_loop(cmdline: Sequence[str]) -> bool:
    """Check whether a command line runs the supervisor loop.

    Matches both ``python -m tunnel_guard`` and the ``tunnel-guard`` script,
    including when wrapped in ``flock``. One-shot modes do not count.
    """
    arguments = _cli_arguments(cmdline)
    if arguments is None:
        return False
    return not any(arg.partition("=")[0] in ONE_SHOT_FLAGS for arg in arguments)


def find_supervisor_loops(
    processes: ProcessInspector,
    exclude_pids: Collection[int] = (),
) -> list[ProcessInfo]:
    """List running supervisor loops, skipping ``exclude_pids``.

    Args:
        processes: Process table access
        exclude_pids: Pids to ignore, typically this process and its parent

    Returns:
        Matching processes in process-table order
    """
    return [
        info
        for info in processes.list_processes()
        if info.pid not in exclude_pids and is_supervisor_loop(info.cmdline)
    ]


def stop_supervisor_loops(
    processes: ProcessInspector,
    exclude_pids: Collection[int] = (),
) -> list[int]:
    """Kill every running supervisor loop so none can restart the tunnel.

    Returns:
        Pids that were killed

    Raises:
        ProcessError: If a supervisor could not be killed
    """
    killed = []
    for info in find_supervisor_loops(processes, exclude_pids):
        logger.info("Stopping background supervisor", pid=info.pid)
        if processes.kill(info.pid):
            killed.append(info.pid)
    if not killed:
        logger.info("no background supervisor found")
    return killed
