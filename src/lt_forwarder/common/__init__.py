"""Common utilities and shared functionality."""

from .exceptions import (
    ConfigurationError,
    DialCancelledError,
    DialError,
    FatalDialError,
    ForwarderError,
    TunnelClosedError,
    TunnelError,
    TunnelLostError,
)
from .logging import get_logger, setup_logging
from .utils import MAX_PORT, MIN_PORT, format_host_port, format_peer, validate_port

__all__ = [
    # Exceptions
    "ForwarderError",
    "ConfigurationError",
    "TunnelError",
    "TunnelClosedError",
    "TunnelLostError",
    "DialError",
    "DialCancelledError",
    "FatalDialError",
    # Logging
    "get_logger",
    "setup_logging",
    # Utils
    "validate_port",
    "format_host_port",
    "format_peer",
    "MIN_PORT",
    "MAX_PORT",
]
