"""Tests for connectivity, port and health checks."""

import socket
import subprocess
from unittest.mock import Mock, patch

from fakes import FakeSocketInspector
from tunnel_guard.probes import ConnectivityProber, HealthChecker, PortChecker


class TestConnectivityProber:
    """Test ConnectivityProber."""

    def test_reachable_host(self, listening_port):
        """A host accepting TCP connections is reachable"""
        prober = ConnectivityProber(port=listening_port, timeout=1.0)
        assert prober.probe("127.0.0.1") is True

    def test_refused_connection(self, closed_port):
        """Connection refused means unreachable"""
        prober = ConnectivityProber(port=closed_port, timeout=1.0)
        assert prober.probe("127.0.0.1") is False

    @patch("tunnel_guard.probes.socket.create_connection")
    def test_dns_failure(self, mock_connect):
        """Unresolvable names are unreachable, not errors"""
        mock_connect.side_effect = socket.gaierror("Name or service not known")

        prober = ConnectivityProber(port=22, timeout=1.0)

        assert prober.probe("no-such-host.invalid") is False

    @patch("tunnel_guard.probes.socket.create_connection")
    def test_timeout(self, mock_connect):
        """Timeouts are unreachable and use the configured bound"""
        mock_connect.side_effect = TimeoutError("timed out")

        prober = ConnectivityProber(port=22, timeout=2.5)

        assert prober.probe("10.255.255.1") is False
        mock_connect.assert_called_once_with(("10.255.255.1", 22), timeout=2.5)

    @patch("tunnel_guard.probes.subprocess.run")
    @patch("tunnel_guard.probes.shutil.which", return_value="/bin/ping")
    def test_icmp_success(self, mock_which, mock_run):
        """ICMP mode sends a single ping"""
        mock_run.return_value = Mock(returncode=0)

        prober = ConnectivityProber(timeout=2.0, method="icmp")

        assert prober.probe("bastion") is True
        cmd = mock_run.call_args[0][0]
        assert cmd[0] == "/bin/ping"
        assert "bastion" in cmd
        assert mock_run.call_args.kwargs["timeout"] == 3.0

    @patch("tunnel_guard.probes.subprocess.run")
    @patch("tunnel_guard.probes.shutil.which", return_value="/bin/ping")
    def test_icmp_no_reply(self, mock_which, mock_run):
        """Non-zero ping exit means unreachable"""
        mock_run.return_value = Mock(returncode=1)

        assert ConnectivityProber(method="icmp").probe("bastion") is False

    @patch("tunnel_guard.probes.subprocess.run")
    @patch("tunnel_guard.probes.shutil.which", return_value="/bin/ping")
    def test_icmp_hang(self, mock_which, mock_run):
        """A ping that overruns its timeout is unreachable"""
        mock_run.side_effect = subprocess.TimeoutExpired("ping", 4)

        assert ConnectivityProber(method="icmp").probe("bastion") is False

    @patch("tunnel_guard.probes.shutil.which", return_value=None)
    def test_icmp_without_ping_falls_back(self, mock_which, listening_port):
        """Without a ping binary the TCP probe is used"""
        prober = ConnectivityProber(port=listening_port, timeout=1.0, method="icmp")
        assert prober.probe("127.0.0.1") is True


class TestPortChecker:
    """Test PortChecker."""

    def test_listening(self):
        checker = PortChecker(FakeSocketInspector(listening=[2222]))
        assert checker.is_port_listening(2222) is True

    def test_not_listening(self):
        checker = PortChecker(FakeSocketInspector(listening=[22]))
        assert checker.is_port_listening(2222) is False

    def test_inspector_failure_is_not_listening(self):
        """A failing socket table query never raises"""
        sockets = Mock()
        sockets.is_listening.side_effect = RuntimeError("boom")

        assert PortChecker(sockets).is_port_listening(2222) is False


class TestHealthChecker:
    """Test HealthChecker."""

    def test_healthy_when_connect_succeeds(self, listening_port):
        assert HealthChecker(timeout=1.0).is_healthy(listening_port) is True

    def test_unhealthy_when_refused(self, closed_port):
        assert HealthChecker(timeout=1.0).is_healthy(closed_port) is False

    @patch("tunnel_guard.probes.socket.create_connection")
    def test_unhealthy_on_timeout(self, mock_connect):
        """A wedged listener that never accepts is unhealthy"""
        mock_connect.side_effect = TimeoutError("timed out")

        checker = HealthChecker(timeout=3.0)

        assert checker.is_healthy(2222) is False
        mock_connect.assert_called_once_with(("127.0.0.1", 2222), timeout=3.0)
