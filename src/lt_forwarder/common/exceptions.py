"""Custom exceptions for the forwarding engine."""


class ForwarderError(Exception):
    """Base exception for all forwarder errors."""
    pass


class ConfigurationError(ForwarderError):
    """Raised when configuration is invalid."""
    pass


class TunnelError(ForwarderError):
    """Base exception for tunnel handle failures."""
    pass


class TunnelClosedError(TunnelError):
    """Raised by accept() once the tunnel handle has been closed."""
    pass


class TunnelLostError(TunnelError):
    """Raised when the tunnel closed without a shutdown being requested."""
    pass


class DialError(ForwarderError):
    """Raised when the upstream service cannot be reached.

    Covers DNS and connect failures, connect timeouts and TLS handshake
    failures alike.
    """

    def __init__(self, address: str, reason: str):
        super().__init__(f"failed to connect to {address}: {reason}")
        self.address = address
        self.reason = reason


class DialCancelledError(ForwarderError):
    """Raised when a dial is aborted because shutdown was requested."""
    pass


class FatalDialError(ForwarderError):
    """Raised when a dial failure must stop the whole process."""

    def __init__(self, cause: DialError):
        super().__init__(str(cause))
        self.cause = cause
