"""Tunnel handle backed by a local listening socket.

Connections accepted on the socket are handed to the forwarder exactly like
connections arriving from a remote relay. Useful for running the engine
without a relay and for testing.
"""

import asyncio
import socket

from ..common.exceptions import TunnelClosedError
from ..common.logging import get_logger
from ..common.utils import format_host_port, format_peer
from ..relay import Connection

logger = get_logger(__name__)


class ListenerTunnel:
    """TunnelHandle accepting downstream connections on a TCP socket."""

    def __init__(self, sock: socket.socket):
        sock.setblocking(False)
        self._sock = sock
        self._closed = False
        self._pending: asyncio.Future[tuple[socket.socket, object]] | None = None
        host, port = sock.getsockname()[:2]
        self._host = host
        self._port = port

    @classmethod
    async def open(
        cls, host: str = "127.0.0.1", port: int = 0, backlog: int = 100
    ) -> "ListenerTunnel":
        """Bind a listening socket and wrap it.

        Args:
            host: Address to bind
            port: Port to bind (0 picks a free port)
            backlog: Listen backlog

        Returns:
            Open ListenerTunnel
        """
        sock = socket.create_server((host, port), backlog=backlog)
        tunnel = cls(sock)
        logger.info("Listening for downstream connections", url=tunnel.url)
        return tunnel

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        return self._port

    @property
    def url(self) -> str:
        return f"tcp://{format_host_port(self._host, self._port)}"

    @property
    def closed(self) -> bool:
        return self._closed

    async def accept(self) -> Connection:
        if self._closed:
            raise TunnelClosedError("listener was closed")

        loop = asyncio.get_running_loop()
        self._pending = asyncio.ensure_future(loop.sock_accept(self._sock))
        try:
            conn, addr = await self._pending
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if self._closed and (current is None or not current.cancelling()):
                raise TunnelClosedError("listener was closed") from None
            raise
        except OSError:
            if self._closed:
                raise TunnelClosedError("listener was closed") from None
            raise
        finally:
            self._pending = None

        try:
            reader, writer = await asyncio.open_connection(sock=conn)
        except BaseException:
            conn.close()
            raise
        return Connection(reader, writer, label=format_peer(addr))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
            # Let the loop unregister the socket before it is closed
            await asyncio.sleep(0)
        self._sock.close()
