"""Utility functions for the forwarder."""

from typing import Any

# Port range constants
MIN_PORT = 1
MAX_PORT = 65535


def validate_port(port: int, port_name: str = "Port") -> None:
    """Validate port number range.

    Args:
        port: Port number to validate
        port_name: Name of the port for error messages

    Raises:
        ValueError: If port is not in valid range (1-65535)
    """
    if not isinstance(port, int) or not (MIN_PORT <= port <= MAX_PORT):
        raise ValueError(f"{port_name} must be between {MIN_PORT} and {MAX_PORT}")


def format_host_port(host: str, port: int) -> str:
    """Join host and port, bracketing IPv6 literals.

    Args:
        host: Hostname or IP literal
        port: Port number

    Returns:
        ``host:port`` string
    """
    if ":" in host and not host.startswith("["):
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def format_peer(peername: Any) -> str:
    """Render a socket peer name for log output."""
    if isinstance(peername, tuple) and len(peername) >= 2:
        return format_host_port(str(peername[0]), int(peername[1]))
    if peername:
        return str(peername)
    return "<unknown>"
