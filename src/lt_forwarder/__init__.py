"""lt-forwarder - forward tunneled connections to a local service."""

from .common.exceptions import (
    ConfigurationError,
    DialCancelledError,
    DialError,
    FatalDialError,
    ForwarderError,
    TunnelClosedError,
    TunnelError,
    TunnelLostError,
)
from .common.logging import get_logger, setup_logging
from .config import DialFailurePolicy, ForwarderConfig, TLSPolicy, UpstreamAddress
from .dialer import UpstreamDialer
from .forwarder import ConnectionForwarder
from .lifecycle import AcceptLoop, LoopState
from .relay import Connection, RelayStats, relay
from .runner import serve
from .shutdown import ShutdownSignal, TunnelGuard
from .tunnel import ListenerTunnel, TunnelHandle

__version__ = "0.1.0"

__all__ = [
    # Engine
    "UpstreamDialer",
    "ConnectionForwarder",
    "AcceptLoop",
    "LoopState",
    "Connection",
    "RelayStats",
    "relay",
    "serve",
    # Shutdown
    "ShutdownSignal",
    "TunnelGuard",
    # Tunnels
    "TunnelHandle",
    "ListenerTunnel",
    # Configuration
    "ForwarderConfig",
    "UpstreamAddress",
    "TLSPolicy",
    "DialFailurePolicy",
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
]
