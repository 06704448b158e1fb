"""OS process and socket table access.

The supervisor never talks to the OS directly. Everything it needs to know
about processes and listening sockets goes through the two protocols below, so
the core can run against scripted tables in tests.
"""

import errno
import socket
import subprocess
from collections.abc import Sequence
from typing import Protocol

import psutil
from pydantic import BaseModel, ConfigDict, Field

from .common.exceptions import ProcessError
from .common.logging import get_logger
from .common.utils import binary_name

logger = get_logger(__name__)


class ProcessInfo(BaseModel):
    """One row of the OS process table."""

    model_config = ConfigDict(frozen=True)

    pid: int = Field(..., ge=0)
    name: str = Field(default="")
    cmdline: tuple[str, ...] = Field(default=())
    memory_rss: int | None = Field(default=None, description="Resident set size in bytes")
    create_time: float | None = Field(default=None, description="Start time as a UNIX timestamp")


class ProcessInspector(Protocol):
    """Query, spawn and kill OS processes."""

    def list_processes(self, name: str | None = None) -> list[ProcessInfo]:
        """List processes whose executable name matches ``name``, or all of them."""
        ...

    def get_process(self, pid: int) -> ProcessInfo | None:
        """Describe a single process, or None if it no longer exists."""
        ...

    def spawn(self, argv: Sequence[str]) -> int:
        """Launch ``argv`` detached from this process and return its pid."""
        ...

    def kill(self, pid: int) -> bool:
        """Forcefully kill ``pid``. Returns False if it was already gone."""
        ...


class SocketInspector(Protocol):
    """Query the local TCP listening-socket table."""

    def is_listening(self, port: int) -> bool:
        """Check if anything is listening on TCP ``port``."""
        ...


class PsutilProcessInspector:
    """ProcessInspector backed by psutil."""

    def __init__(self, kill_timeout: float = 3.0):
        self.kill_timeout = kill_timeout
        self._children: list[subprocess.Popen[bytes]] = []

    def list_processes(self, name: str | None = None) -> list[ProcessInfo]:
        self._reap()
        wanted = binary_name(name) if name is not None else None
        matches = []
        for proc in psutil.process_iter(["pid", "name", "cmdline"]):
            try:
                proc_name = binary_name(proc.info["name"] or "")
                if wanted is not None and proc_name != wanted:
                    continue
                matches.append(
                    ProcessInfo(
                        pid=proc.info["pid"],
                        name=proc_name,
                        cmdline=tuple(proc.info["cmdline"] or ()),
                    )
                )
            except (psutil.NoSuchProcess, psutil.ZombieProcess):
                continue
        return matches

    def get_process(self, pid: int) -> ProcessInfo | None:
        try:
            proc = psutil.Process(pid)
            with proc.oneshot():
                if proc.status() == psutil.STATUS_ZOMBIE:
                    return None
                try:
                    memory_rss: int | None = proc.memory_info().rss
                except psutil.AccessDenied:
                    memory_rss = None
                return ProcessInfo(
                    pid=pid,
                    name=binary_name(proc.name()),
                    cmdline=tuple(proc.cmdline()),
                    memory_rss=memory_rss,
                    create_time=proc.create_time(),
                )
        except (psutil.NoSuchProcess, psutil.ZombieProcess):
            return None
        except psutil.AccessDenied:
            logger.debug("Access denied reading process", pid=pid)
            return ProcessInfo(pid=pid)

    def spawn(self, argv: Sequence[str]) -> int:
        self._reap()
        # New session, no inherited stdio: the tunnel outlives the supervisor
        process = subprocess.Popen(
            list(argv),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            close_fds=True,
            start_new_session=True,
        )
        # Held only so an exited tunnel is reaped instead of lingering as a zombie
        self._children.append(process)
        return process.pid

    def _reap(self) -> None:
        self._children = [child for child in self._children if child.poll() is None]

    def kill(self, pid: int) -> bool:
        try:
            proc = psutil.Process(pid)
            proc.kill()
            proc.wait(timeout=self.kill_timeout)
            return True
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied as e:
            raise ProcessError(f"Permission denied terminating process {pid}") from e
        except psutil.TimeoutExpired as e:
            raise ProcessError(f"Process {pid} did not exit after kill") from e


class PsutilSocketInspector:
    """SocketInspector backed by psutil, with a bind probe fallback."""

    def is_listening(self, port: int) -> bool:
        try:
            connections = psutil.net_connections(kind="tcp")
        except psutil.AccessDenied:
            # macOS needs root for the full table
            return self._bind_probe(port)

        return any(
            conn.status == psutil.CONN_LISTEN and conn.laddr and conn.laddr.port == port
            for conn in connections
        )

    def _bind_probe(self, port: int) -> bool:
        """Infer a listener from a failed bind on the loopback address."""
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
                sock.bind(("127.0.0.1", port))
                return False
        except OSError as e:
            return e.errno == errno.EADDRINUSE
