"""Tunnel configuration models and loading."""

import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from .common.exceptions import ConfigurationError
from .common.logging import get_logger
from .common.utils import split_remote_host, validate_non_empty_string

logger = get_logger(__name__)

ENV_PREFIX = "TUNNEL_GUARD_"
DEFAULT_LOG_FILE = Path.home() / ".tunnel-guard" / "tunnel.log"
DEFAULT_SSH_PORT = 22


class RemoteHost(BaseModel):
    """SSH destination: ``[user@]host[:port]``."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True, extra="forbid")

    user: str | None = Field(default=None, description="Login user")
    host: str = Field(..., min_length=1, description="Hostname or address")
    port: int | None = Field(default=None, ge=1, le=65535, description="SSH port")

    @classmethod
    def parse(cls, spec: str) -> "RemoteHost":
        """Parse a ``[user@]host[:port]`` string."""
        user, host, port = split_remote_host(spec)
        return cls(user=user, host=host, port=port)

    @property
    def destination(self) -> str:
        """Destination argument as passed to ssh."""
        return f"{self.user}@{self.host}" if self.user else self.host

    def __str__(self) -> str:
        suffix = f":{self.port}" if self.port else ""
        return f"{self.destination}{suffix}"


class TunnelConfig(BaseModel):
    """Immutable supervisor configuration, built once at startup."""

    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
        extra="forbid",
    )

    local_port: int = Field(..., ge=1, le=65535, description="Local bind port")
    remote_host: RemoteHost = Field(..., description="SSH destination")
    remote_port: int = Field(..., ge=1, le=65535, description="Port forwarded on the remote side")
    forward_host: str = Field(default="localhost", min_length=1, description="Forward target as seen from the remote host")

    ssh_binary: str = Field(default="ssh", min_length=1, description="SSH client binary")
    identity_file: Path | None = Field(default=None, description="Private key passed with -i")
    server_alive_interval: int = Field(default=30, ge=1, le=3600)
    server_alive_count_max: int = Field(default=3, ge=1, le=100)

    probe_host: str | None = Field(default=None, description="Connectivity probe target")
    probe_port: int | None = Field(default=None, ge=1, le=65535, description="TCP probe port")
    probe_method: Literal["tcp", "icmp"] = Field(default="tcp")

    check_interval: float = Field(default=60.0, gt=0, description="Seconds between checks")
    grace_period: float = Field(default=5.0, ge=0, le=120, description="Wait after launch before verifying")
    connect_timeout: float = Field(default=3.0, gt=0, le=30, description="Timeout for every network call")

    log_file: Path = Field(default=DEFAULT_LOG_FILE, description="Append-only log file")
    log_level: str = Field(default="INFO")

    @field_validator("remote_host", mode="before")
    @classmethod
    def parse_remote_host(cls, v: Any) -> Any:
        """Accept ``user@host:port`` strings."""
        if isinstance(v, str):
            return RemoteHost.parse(v)
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is a known logging level"""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator("probe_host")
    @classmethod
    def validate_probe_host(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return validate_non_empty_string(v, "Probe host")

    @model_validator(mode="after")
    def fill_probe_defaults(self) -> "TunnelConfig":
        """Probe the SSH server itself unless told otherwise.

        The SSH port is only a sensible default for the SSH host, so a custom
        TCP probe host needs its own port.
        """
        if self.probe_host is None:
            object.__setattr__(self, "probe_host", self.remote_host.host)
            if self.probe_port is None:
                object.__setattr__(self, "probe_port", self.remote_host.port or DEFAULT_SSH_PORT)
        elif self.probe_port is None:
            if self.probe_method == "tcp":
                raise ValueError("probe_port is required when probe_host is set and probe_method is tcp")
            object.__setattr__(self, "probe_port", DEFAULT_SSH_PORT)
        return self

    @property
    def forward_spec(self) -> str:
        """``-L`` argument for the tunnel."""
        return f"{self.local_port}:{self.forward_host}:{self.remote_port}"


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(f"Config file not found: {path}") from e
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigurationError(f"Cannot read config file {path}: {e}") from e

    section = data.get("tunnel", data)
    if not isinstance(section, dict):
        raise ConfigurationError(f"[tunnel] in {path} must be a table")
    return dict(section)


def _read_environ(environ: Mapping[str, str]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for name in TunnelConfig.model_fields:
        key = f"{ENV_PREFIX}{name.upper()}"
        if environ.get(key):
            values[name] = environ[key]
    return values


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item["loc"]) or "config"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)


def load_config(
    path: str | Path | None = None,
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> TunnelConfig:
    """Build the supervisor configuration.

    Sources are merged in order, later ones winning: the ``[tunnel]`` table of
    a TOML file, ``TUNNEL_GUARD_*`` environment variables, then explicit
    overrides (CLI flags). ``None`` override values are ignored.

    Args:
        path: Optional TOML config file
        overrides: Field values taking precedence over every other source
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        Validated, immutable configuration

    Raises:
        ConfigurationError: If any source is unreadable or a value is invalid
    """
    values: dict[str, Any] = {}
    if path is not None:
        values.update(_read_toml(Path(path).expanduser()))
    values.update(_read_environ(os.environ if environ is None else environ))
    if overrides:
        values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        config = TunnelConfig.model_validate(values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {_format_validation_error(e)}") from e
    except ValueError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e

    logger.debug(
        "Configuration loaded",
        local_port=config.local_port,
        remote_host=str(config.remote_host),
        remote_port=config.remote_port,
    )
    return config
