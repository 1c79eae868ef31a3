"""Tunnel collaborators feeding downstream connections to the forwarder."""

from .interfaces import TunnelHandle
from .listener import ListenerTunnel

__all__ = [
    "TunnelHandle",
    "ListenerTunnel",
]
