"""Upstream dialer for connections to the local service."""

import asyncio
import socket
import ssl

from .common.exceptions import DialCancelledError, DialError
from .common.logging import get_logger
from .config import ForwarderConfig, TLSPolicy, UpstreamAddress
from .relay import Connection
from .shutdown import ShutdownSignal

logger = get_logger(__name__)


class UpstreamDialer:
    """Opens connections to the upstream service, optionally over TLS."""

    def __init__(
        self,
        address: UpstreamAddress,
        tls_policy: TLSPolicy | None = None,
        *,
        connect_timeout: float = 10.0,
        keepalive: bool = True,
    ):
        """Initialize the dialer.

        Args:
            address: Upstream host and port
            tls_policy: TLS settings, None for plaintext
            connect_timeout: Seconds before a connect attempt fails
            keepalive: Enable TCP keep-alive probes on upstream sockets

        Raises:
            ConfigurationError: If the TLS material cannot be loaded
        """
        self.address = address
        self.tls_policy = tls_policy
        self.connect_timeout = connect_timeout
        self.keepalive = keepalive
        self._ssl_context = tls_policy.build_ssl_context() if tls_policy else None

    @classmethod
    def from_config(cls, config: ForwarderConfig) -> "UpstreamDialer":
        return cls(
            config.upstream,
            config.tls,
            connect_timeout=config.connect_timeout,
            keepalive=config.keepalive,
        )

    async def dial(self, shutdown: ShutdownSignal | None = None) -> Connection:
        """Connect to the upstream service.

        Args:
            shutdown: Aborts the dial when it fires

        Returns:
            Live upstream connection (TLS handshake already done)

        Raises:
            DialCancelledError: If shutdown fired before the dial completed
            DialError: If the connect or the TLS handshake failed
        """
        if shutdown is None:
            return await self._connect()

        if shutdown.is_set():
            raise DialCancelledError(f"dial to {self.address} cancelled")

        connect = asyncio.create_task(self._connect())
        waiter = asyncio.create_task(shutdown.wait())
        try:
            done, _ = await asyncio.wait(
                {connect, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            connect.cancel()
            await self._discard(connect)
            raise
        finally:
            waiter.cancel()

        if connect in done:
            return connect.result()

        connect.cancel()
        await self._discard(connect)
        logger.debug("Dial cancelled by shutdown", upstream=str(self.address))
        raise DialCancelledError(f"dial to {self.address} cancelled")

    async def _discard(self, connect: "asyncio.Task[Connection]") -> None:
        """Wait for an abandoned connect and close whatever it produced."""
        (result,) = await asyncio.gather(connect, return_exceptions=True)
        if isinstance(result, Connection):
            await result.close()

    async def _connect(self) -> Connection:
        address = str(self.address)
        server_hostname = None
        if self._ssl_context is not None and self.tls_policy is not None:
            server_hostname = self.tls_policy.server_name

        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(
                    self.address.host,
                    self.address.port,
                    ssl=self._ssl_context,
                    server_hostname=server_hostname,
                ),
                timeout=self.connect_timeout,
            )
        except asyncio.TimeoutError as e:
            raise DialError(address, "connect timed out") from e
        except (OSError, ssl.CertificateError) as e:
            raise DialError(address, str(e) or e.__class__.__name__) from e

        if self.keepalive:
            sock = writer.get_extra_info("socket")
            if sock is not None:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)

        logger.debug(
            "Connected to upstream",
            upstream=address,
            tls=self._ssl_context is not None,
        )
        return Connection(reader, writer, label=f"upstream {address}")
