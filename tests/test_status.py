"""Tests for the status reporter."""

from unittest.mock import Mock

from fakes import FakeProcessInspector, FakeSocketInspector, tunnel_cmdline
from tunnel_guard.probes import ConnectivityProber, HealthChecker, PortChecker
from tunnel_guard.process import ProcessController
from tunnel_guard.scheduler import CrontabScheduler
from tunnel_guard.status import StatusReporter, StatusSnapshot, render
from tunnel_guard.supervisor import HealthSnapshot, TunnelState


def make_reporter(config, processes, reachable=True, listening=True, healthy=True, scheduler=None):
    prober = Mock(spec=ConnectivityProber)
    prober.probe.return_value = reachable
    health = Mock(spec=HealthChecker)
    health.is_healthy.return_value = healthy
    sockets = FakeSocketInspector(listening=[config.local_port] if listening else [])
    return StatusReporter(
        config,
        prober=prober,
        port_checker=PortChecker(sockets),
        health_checker=health,
        controller=ProcessController(config, processes, health),
        processes=processes,
        scheduler=scheduler,
    )


class TestStatusReporter:
    """Test StatusReporter.report()."""

    def test_healthy_report(self, config):
        """Healthy tunnel reports CONNECTED / YES / HEALTHY with PID and memory"""
        processes = FakeProcessInspector()
        processes.add(4242, tunnel_cmdline(), memory_rss=6 * 1024 * 1024)
        scheduler = Mock(spec=CrontabScheduler)
        scheduler.is_installed.return_value = True

        snapshot = make_reporter(config, processes, scheduler=scheduler).report()
        output = render(snapshot)

        assert snapshot.state is TunnelState.HEALTHY
        assert snapshot.health.process.pid == 4242
        assert snapshot.memory_mb == 6.0
        assert "CONNECTED" in output
        assert "DISCONNECTED" not in output
        assert "Port listening:  YES" in output
        assert "Tunnel health:   HEALTHY" in output
        assert "PID 4242 (memory: 6.0 MB)" in output
        assert "Background task: INSTALLED" in output

    def test_nothing_running_is_a_status(self, config):
        """Down network and absent tunnel are reported, not raised"""
        processes = FakeProcessInspector()

        snapshot = make_reporter(
            config, processes, reachable=False, listening=False, healthy=False
        ).report()
        output = render(snapshot)

        assert snapshot.state is TunnelState.DISCONNECTED
        assert "DISCONNECTED" in output
        assert "Port listening:  NO" in output
        assert "Tunnel health:   NOT RUNNING" in output
        assert "Process:         NOT RUNNING" in output
        assert "Background task: UNKNOWN" in output

    def test_runs_every_check(self, config):
        """Unlike the loop, status does not short-circuit"""
        processes = FakeProcessInspector()
        reporter = make_reporter(config, processes, reachable=False, listening=False, healthy=False)

        reporter.report()

        reporter.prober.probe.assert_called_once()
        reporter.health_checker.is_healthy.assert_called_once_with(2222)

    def test_read_only(self, config):
        """Status never starts or kills anything"""
        processes = FakeProcessInspector()
        processes.add(4242, tunnel_cmdline())

        make_reporter(config, processes, healthy=False).report()

        assert processes.spawned == []
        assert processes.killed == []

    def test_unhealthy_listener(self, config):
        processes = FakeProcessInspector()
        processes.add(4242, tunnel_cmdline())

        output = render(make_reporter(config, processes, healthy=False).report())

        assert "Tunnel health:   UNHEALTHY" in output

    def test_scheduler_failure_is_unknown(self, config):
        scheduler = Mock(spec=CrontabScheduler)
        scheduler.is_installed.side_effect = RuntimeError("crontab exploded")

        snapshot = make_reporter(config, FakeProcessInspector(), scheduler=scheduler).report()

        assert snapshot.scheduled is None

    def test_recent_logs_included(self, config, log_file):
        log_file.write_text("line 1\nline 2\ntunnel started successfully (PID: 1)\n")

        snapshot = make_reporter(config, FakeProcessInspector()).report()

        assert snapshot.recent_logs[-1] == "tunnel started successfully (PID: 1)"
        assert "Recent log:" in render(snapshot)


class TestRender:
    """Test plain rendering edge cases."""

    def test_process_without_memory(self):
        snapshot = StatusSnapshot(
            local_port=2222,
            remote="bastion",
            remote_port=80,
            probe_host="bastion",
            health=HealthSnapshot(network_reachable=True, port_listening=True, tunnel_healthy=True),
            scheduled=False,
        )

        output = render(snapshot)

        assert "NOT INSTALLED" in output
        assert "Recent log:" not in output
