"""Utility functions for tunnel guard."""

import re
from collections.abc import Iterable
from pathlib import Path

# Port range constants
MIN_PORT = 1
MAX_PORT = 65535

_REMOTE_HOST_RE = re.compile(
    r"^(?:(?P<user>[^@\s]+)@)?(?P<host>\[[^\]]+\]|[^:@\s]+)(?::(?P<port>\d+))?$"
)


def validate_port(port: int, port_name: str = "Port") -> int:
    """Validate port number range.

    Args:
        port: Port number to validate
        port_name: Name of the port for error messages

    Returns:
        The validated port

    Raises:
        ValueError: If port is not in valid range (1-65535)
    """
    if isinstance(port, bool) or not isinstance(port, int) or not (MIN_PORT <= port <= MAX_PORT):
        raise ValueError(f"{port_name} must be between {MIN_PORT} and {MAX_PORT}")
    return port


def validate_non_empty_string(value: str, field_name: str) -> str:
    """Validate that a string is not empty or only whitespace.

    Args:
        value: String value to validate
        field_name: Name of the field for error messages

    Returns:
        Stripped string value

    Raises:
        ValueError: If string is empty or only whitespace
    """
    if not value or not value.strip():
        raise ValueError(f"{field_name} cannot be empty")
    return value.strip()


def split_remote_host(spec: str) -> tuple[str | None, str, int | None]:
    """Split a ``[user@]host[:port]`` specification into its parts.

    IPv6 literals must be bracketed (``user@[::1]:2200``).

    Raises:
        ValueError: If the specification is empty or malformed
    """
    spec = validate_non_empty_string(spec, "Remote host")
    match = _REMOTE_HOST_RE.match(spec)
    if not match:
        raise ValueError(f"Invalid remote host specification: {spec!r}")

    host = match.group("host").strip("[]")
    port = match.group("port")
    return (
        match.group("user"),
        validate_non_empty_string(host, "Remote host"),
        validate_port(int(port), "Remote SSH port") if port else None,
    )


def binary_name(binary_path: str) -> str:
    """Return the process name a binary shows up as in the process table."""
    name = Path(binary_path).name.lower()
    if name.endswith(".exe"):
        name = name[:-4]
    return name


def tail_lines(path: str | Path, count: int = 5) -> list[str]:
    """Return the last ``count`` non-empty lines of a text file.

    A missing or unreadable file yields an empty list.
    """
    try:
        with open(Path(path).expanduser(), encoding="utf-8", errors="replace") as f:
            lines: Iterable[str] = f.readlines()
    except OSError:
        return []
    stripped = [line.rstrip("\n") for line in lines if line.strip()]
    return stripped[-count:] if count > 0 else []
