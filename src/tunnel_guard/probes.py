"""Connectivity, port and health checks.

All checks return plain booleans. A host that cannot be reached or a tunnel
that does not answer is a normal observation, so nothing here raises.
"""

import platform
import shutil
import socket
import subprocess
from typing import Literal

from .common.logging import get_logger
from .inspectors import SocketInspector

logger = get_logger(__name__)

LOOPBACK = "127.0.0.1"


class ConnectivityProber:
    """Coarse reachability check against a well-known host."""

    def __init__(
        self,
        port: int = 22,
        timeout: float = 3.0,
        method: Literal["tcp", "icmp"] = "tcp",
    ):
        self.port = port
        self.timeout = timeout
        self.method = method

    def probe(self, host: str) -> bool:
        """Check whether ``host`` is reachable.

        Args:
            host: Hostname or address to probe

        Returns:
            True if a single bounded attempt succeeded
        """
        if self.method == "icmp":
            return self._ping(host)
        return self._tcp_connect(host)

    def _tcp_connect(self, host: str) -> bool:
        try:
            with socket.create_connection((host, self.port), timeout=self.timeout):
                return True
        except OSError as e:
            # socket.gaierror and TimeoutError are both OSError subclasses
            logger.debug("Probe failed", host=host, port=self.port, error=str(e))
            return False

    def _ping(self, host: str) -> bool:
        ping = shutil.which("ping")
        if ping is None:
            logger.warning("ping not found, falling back to TCP probe")
            return self._tcp_connect(host)

        if platform.system().lower() == "windows":
            cmd = [ping, "-n", "1", "-w", str(int(self.timeout * 1000)), host]
        else:
            cmd = [ping, "-c", "1", "-W", str(max(1, int(self.timeout))), host]

        try:
            result = subprocess.run(
                cmd,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=self.timeout + 1,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug("Ping failed", host=host, error=str(e))
            return False
        return result.returncode == 0


class PortChecker:
    """Checks whether the local forwarding port is bound by a listener."""

    def __init__(self, sockets: SocketInspector):
        self.sockets = sockets

    def is_port_listening(self, port: int) -> bool:
        """Check the listening-socket table for ``port``."""
        try:
            return self.sockets.is_listening(port)
        except Exception as e:
            logger.warning("Could not read socket table", port=port, error=str(e))
            return False


class HealthChecker:
    """Checks that the tunnel actually accepts connections.

    A port can appear in the listening table while the process behind it is
    wedged, so a successful connect here is what counts as healthy.
    """

    def __init__(self, timeout: float = 3.0, host: str = LOOPBACK):
        self.timeout = timeout
        self.host = host

    def is_healthy(self, port: int) -> bool:
        """Connect to the local tunnel endpoint and close again."""
        try:
            with socket.create_connection((self.host, port), timeout=self.timeout):
                return True
        except OSError as e:
            logger.debug("Health check failed", port=port, error=str(e))
            return False
