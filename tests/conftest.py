"""Shared pytest fixtures for tunnel guard tests."""

import logging
import socket

import pytest
import structlog

from fakes import FakeProcessInspector, FakeSocketInspector
from tunnel_guard.common.exceptions import ProcessError
from tunnel_guard.config import TunnelConfig


@pytest.fixture
def log_file(tmp_path):
    return tmp_path / "tunnel.log"


@pytest.fixture
def config(log_file):
    """Configuration with no grace period so tests never wait."""
    return TunnelConfig(
        local_port=2222,
        remote_host="deploy@bastion.example.com",
        remote_port=8080,
        grace_period=0,
        check_interval=0.01,
        log_file=log_file,
    )


@pytest.fixture
def fake_processes():
    return FakeProcessInspector()


@pytest.fixture
def fake_sockets():
    return FakeSocketInspector()


@pytest.fixture
def sleeps():
    """Record requested sleeps instead of sleeping."""
    calls: list[float] = []
    return calls


@pytest.fixture
def fake_sleep(sleeps):
    return sleeps.append


@pytest.fixture
def listening_port():
    """A real loopback port that accepts connections."""
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(16)
    yield server.getsockname()[1]
    server.close()


@pytest.fixture
def closed_port():
    """A loopback port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    return port


@pytest.fixture
def permission_denied():
    return ProcessError("Permission denied terminating process")


@pytest.fixture(autouse=True)
def reset_logging():
    """Reset logging configuration after each test.

    setup_logging() installs file handlers on the root logger; drop them so
    tests do not write into each other's log files.
    """
    yield
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()
    structlog.reset_defaults()
