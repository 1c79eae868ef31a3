"""Forwarding of one downstream connection to the upstream service."""

import structlog

from .common.exceptions import DialCancelledError, DialError, FatalDialError
from .common.logging import get_logger
from .config import (
    DEFAULT_BUFFER_SIZE,
    HALF_CLOSE_TIMEOUT,
    DialFailurePolicy,
    ForwarderConfig,
)
from .dialer import UpstreamDialer
from .relay import Connection, RelayStats, relay
from .shutdown import ShutdownSignal

logger = get_logger(__name__)


class ConnectionForwarder:
    """Dials upstream for each downstream connection and relays between them."""

    def __init__(
        self,
        dialer: UpstreamDialer,
        *,
        dial_failure_policy: DialFailurePolicy = DialFailurePolicy.DROP,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        half_close_timeout: float = HALF_CLOSE_TIMEOUT,
    ):
        self.dialer = dialer
        self.dial_failure_policy = dial_failure_policy
        self.buffer_size = buffer_size
        self.half_close_timeout = half_close_timeout

    @classmethod
    def from_config(cls, config: ForwarderConfig) -> "ConnectionForwarder":
        return cls(
            UpstreamDialer.from_config(config),
            dial_failure_policy=config.dial_failure_policy,
            buffer_size=config.buffer_size,
            half_close_timeout=config.half_close_timeout,
        )

    async def forward(
        self, downstream: Connection, shutdown: ShutdownSignal | None = None
    ) -> RelayStats | None:
        """Forward one downstream connection until its relay ends.

        The downstream connection is closed on every path.

        Args:
            downstream: Connection accepted from the tunnel
            shutdown: Aborts the upstream dial when it fires

        Returns:
            Relay statistics, or None if no upstream connection was made

        Raises:
            FatalDialError: If the dial failed under the FATAL policy
        """
        logger.info("new connection", peer=downstream.label)
        try:
            with structlog.contextvars.bound_contextvars(peer=downstream.label):
                return await self._dial_and_relay(downstream, shutdown)
        finally:
            await downstream.close()

    async def _dial_and_relay(
        self, downstream: Connection, shutdown: ShutdownSignal | None
    ) -> RelayStats | None:
        try:
            upstream = await self.dialer.dial(shutdown)
        except DialCancelledError:
            logger.debug("Forward abandoned on shutdown")
            return None
        except DialError as e:
            logger.error(
                "failed to connect to upstream service",
                peer=downstream.label,
                upstream=e.address,
                error=e.reason,
            )
            if self.dial_failure_policy is DialFailurePolicy.FATAL:
                raise FatalDialError(e) from e
            return None

        return await relay(
            downstream,
            upstream,
            buffer_size=self.buffer_size,
            half_close_timeout=self.half_close_timeout,
        )
