"""One-shot status report of the tunnel and its surroundings."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .common.logging import get_logger
from .common.utils import tail_lines
from .config import TunnelConfig
from .inspectors import ProcessInspector
from .probes import ConnectivityProber, HealthChecker, PortChecker
from .process import ProcessController, TunnelProcessHandle
from .scheduler import TaskScheduler
from .supervisor import HealthSnapshot, Supervisor, TunnelState

logger = get_logger(__name__)


class StatusSnapshot(BaseModel):
    """Everything ``--status`` prints."""

    model_config = ConfigDict(frozen=True)

    local_port: int
    remote: str
    remote_port: int
    probe_host: str
    health: HealthSnapshot
    memory_rss: int | None = Field(default=None, description="Tunnel process RSS in bytes")
    started_at: datetime | None = None
    scheduled: bool | None = Field(default=None, description="None when the scheduler cannot be queried")
    recent_logs: list[str] = Field(default_factory=list)

    @property
    def state(self) -> TunnelState:
        return self.health.state

    @property
    def memory_mb(self) -> float | None:
        if self.memory_rss is None:
            return None
        return self.memory_rss / (1024 * 1024)


class StatusReporter:
    """Re-runs every check once without touching the tunnel."""

    def __init__(
        self,
        config: TunnelConfig,
        prober: ConnectivityProber,
        port_checker: PortChecker,
        health_checker: HealthChecker,
        controller: ProcessController,
        processes: ProcessInspector,
        scheduler: TaskScheduler | None = None,
        log_lines: int = 5,
    ):
        self.config = config
        self.prober = prober
        self.port_checker = port_checker
        self.health_checker = health_checker
        self.controller = controller
        self.processes = processes
        self.scheduler = scheduler
        self.log_lines = log_lines

    @classmethod
    def from_supervisor(
        cls,
        supervisor: Supervisor,
        scheduler: TaskScheduler | None = None,
        log_lines: int = 5,
    ) -> "StatusReporter":
        """Share the supervisor's checkers and process controller."""
        return cls(
            supervisor.config,
            prober=supervisor.prober,
            port_checker=supervisor.port_checker,
            health_checker=supervisor.health_checker,
            controller=supervisor.controller,
            processes=supervisor.controller.processes,
            scheduler=scheduler,
            log_lines=log_lines,
        )

    def _scheduled(self) -> bool | None:
        if self.scheduler is None:
            return None
        try:
            return self.scheduler.is_installed()
        except Exception as e:
            logger.debug("Scheduler state unavailable", error=str(e))
            return None

    def report(self) -> StatusSnapshot:
        """Collect a fresh snapshot. Never starts or stops anything."""
        cfg = self.config
        probe_host = cfg.probe_host or cfg.remote_host.host
        handle: TunnelProcessHandle | None = self.controller.find_managed_process()

        health = HealthSnapshot(
            network_reachable=self.prober.probe(probe_host),
            port_listening=self.port_checker.is_port_listening(cfg.local_port),
            tunnel_healthy=self.health_checker.is_healthy(cfg.local_port),
            process=handle,
        )

        memory_rss = None
        started_at = None
        if handle is not None:
            info = self.processes.get_process(handle.pid)
            if info is not None:
                memory_rss = info.memory_rss
                if info.create_time is not None:
                    started_at = datetime.fromtimestamp(info.create_time)

        return StatusSnapshot(
            local_port=cfg.local_port,
            remote=str(cfg.remote_host),
            remote_port=cfg.remote_port,
            probe_host=probe_host,
            health=health,
            memory_rss=memory_rss,
            started_at=started_at,
            scheduled=self._scheduled(),
            recent_logs=tail_lines(cfg.log_file, self.log_lines),
        )


def render(snapshot: StatusSnapshot) -> str:
    """Format a status snapshot for the terminal."""
    health = snapshot.health

    if health.tunnel_healthy:
        tunnel = "HEALTHY"
    elif health.process is None and not health.port_listening:
        tunnel = "NOT RUNNING"
    else:
        tunnel = "UNHEALTHY"

    if health.process is None:
        process = "NOT RUNNING"
    else:
        process = f"PID {health.process.pid}"
        if snapshot.memory_mb is not None:
            process += f" (memory: {snapshot.memory_mb:.1f} MB)"
        if snapshot.started_at is not None:
            process += f", started {snapshot.started_at:%Y-%m-%d %H:%M:%S}"

    scheduled = {True: "INSTALLED", False: "NOT INSTALLED", None: "UNKNOWN"}[snapshot.scheduled]

    lines = [
        f"Tunnel:          localhost:{snapshot.local_port} -> {snapshot.remote} (remote port {snapshot.remote_port})",
        f"Network:         {'CONNECTED' if health.network_reachable else 'DISCONNECTED'} (probe {snapshot.probe_host})",
        f"Port listening:  {'YES' if health.port_listening else 'NO'}",
        f"Tunnel health:   {tunnel}",
        f"Process:         {process}",
        f"Background task: {scheduled}",
    ]
    if snapshot.recent_logs:
        lines.append("")
        lines.append("Recent log:")
        lines.extend(f"  {line}" for line in snapshot.recent_logs)
    return "\n".join(lines)
