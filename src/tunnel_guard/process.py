"""Lifecycle management for the SSH tunnel process."""

import time
from collections.abc import Callable, Sequence

from pydantic import BaseModel, ConfigDict, Field

from .common.exceptions import BinaryNotFoundError, TunnelStartError
from .common.logging import get_logger
from .common.utils import binary_name
from .config import TunnelConfig
from .inspectors import ProcessInspector
from .probes import HealthChecker

logger = get_logger(__name__)


class TunnelProcessHandle(BaseModel):
    """Identity of the running tunnel process."""

    model_config = ConfigDict(frozen=True)

    pid: int = Field(..., ge=1)
    signature: tuple[str, ...] = Field(..., description="Launch arguments identifying the tunnel")


class ProcessController:
    """Starts, finds and stops the managed tunnel process.

    The controller keeps no handle on the child. The tunnel is spawned detached
    and rediscovered from the process table by its launch arguments on every
    call, so it survives supervisor restarts and a dead child simply stops
    showing up.
    """

    def __init__(
        self,
        config: TunnelConfig,
        processes: ProcessInspector,
        health_checker: HealthChecker,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize ProcessController.

        Args:
            config: Supervisor configuration
            processes: Process table access
            health_checker: Used to verify a fresh launch
            sleep: Blocking wait used for the launch grace period
        """
        self.config = config
        self.processes = processes
        self.health_checker = health_checker
        self._sleep = sleep

    @property
    def destination(self) -> str:
        return self.config.remote_host.destination

    def build_command(self) -> list[str]:
        """Build the ssh command line for the tunnel."""
        cfg = self.config
        cmd = [
            cfg.ssh_binary,
            "-N",
            "-L", cfg.forward_spec,
            "-o", f"ServerAliveInterval={cfg.server_alive_interval}",
            "-o", f"ServerAliveCountMax={cfg.server_alive_count_max}",
            "-o", "ExitOnForwardFailure=yes",
            "-o", "StrictHostKeyChecking=no",
            "-o", "UserKnownHostsFile=/dev/null",
            "-o", "BatchMode=yes",
            "-o", f"ConnectTimeout={max(1, int(cfg.connect_timeout))}",
        ]
        if cfg.remote_host.port:
            cmd.extend(["-p", str(cfg.remote_host.port)])
        if cfg.identity_file:
            cmd.extend(["-i", str(cfg.identity_file.expanduser())])
        cmd.append(self.destination)
        return cmd

    def matches(self, cmdline: Sequence[str]) -> bool:
        """Check whether a command line belongs to the managed tunnel.

        It must carry a forward for the configured local port and target the
        configured remote host.
        """
        host = self.config.remote_host.host

        has_forward = any(self._forwards_local_port(arg) for arg in cmdline)
        has_host = any(
            arg == self.destination or arg == host or arg.endswith(f"@{host}")
            for arg in cmdline[1:]
        )
        return has_forward and has_host

    def _forwards_local_port(self, arg: str) -> bool:
        # [bind_address:]port:host:hostport, optionally glued to -L
        parts = arg.removeprefix("-L").split(":")
        port = str(self.config.local_port)
        if len(parts) == 3:
            return parts[0] == port
        if len(parts) == 4:
            return parts[1] == port
        return False

    def find_managed_process(self) -> TunnelProcessHandle | None:
        """Locate the tunnel process in the OS process table.

        Returns:
            Handle of the first matching process, or None
        """
        for info in self.processes.list_processes(binary_name(self.config.ssh_binary)):
            if self.matches(info.cmdline):
                return TunnelProcessHandle(pid=info.pid, signature=info.cmdline)
        return None

    def start(self) -> TunnelProcessHandle:
        """Launch the tunnel and verify that it forwards traffic.

        Returns:
            Handle of the verified tunnel process

        Raises:
            BinaryNotFoundError: If the ssh binary is missing or not executable
            TunnelStartError: If the launch fails or the tunnel is unhealthy
                after the grace period
        """
        cmd = self.build_command()
        logger.info("Starting tunnel", command=" ".join(cmd))

        try:
            pid = self.processes.spawn(cmd)
        except (FileNotFoundError, PermissionError) as e:
            logger.error("SSH binary not usable", binary=self.config.ssh_binary, error=str(e))
            raise BinaryNotFoundError(f"SSH binary not usable: {self.config.ssh_binary}: {e}") from e
        except OSError as e:
            logger.error("Failed to launch tunnel", error=str(e))
            raise TunnelStartError(f"Failed to launch tunnel: {e}") from e

        logger.debug("Waiting for tunnel handshake", pid=pid, grace_period=self.config.grace_period)
        self._sleep(self.config.grace_period)

        if not self.health_checker.is_healthy(self.config.local_port):
            logger.error("Tunnel failed health check after launch, killing it", pid=pid)
            try:
                self.processes.kill(pid)
            except Exception as e:
                logger.warning("Could not kill failed tunnel", pid=pid, error=str(e))
            raise TunnelStartError(
                f"Tunnel on port {self.config.local_port} not healthy after "
                f"{self.config.grace_period}s (PID: {pid})"
            )

        logger.info(f"tunnel started successfully (PID: {pid})", pid=pid)
        return TunnelProcessHandle(pid=pid, signature=tuple(cmd))

    def stop(self) -> bool:
        """Kill the managed tunnel process.

        Returns:
            True if a process was killed, False if none was found

        Raises:
            ProcessError: If the process could not be killed
        """
        handle = self.find_managed_process()
        if handle is None:
            logger.info("no tunnel process found", port=self.config.local_port)
            return False

        logger.info("Stopping tunnel", pid=handle.pid)
        if self.processes.kill(handle.pid):
            logger.info("Tunnel stopped", pid=handle.pid)
        else:
            logger.info("Tunnel already exited", pid=handle.pid)
        return True

    def restart(self) -> TunnelProcessHandle:
        """Stop any running tunnel, then start a fresh one."""
        self.stop()
        return self.start()
