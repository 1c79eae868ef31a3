"""Bidirectional byte relay between two live connections."""

import asyncio
from dataclasses import dataclass, field

from .common.logging import get_logger
from .common.utils import format_peer
from .config import DEFAULT_BUFFER_SIZE, HALF_CLOSE_TIMEOUT

logger = get_logger(__name__)

CLOSE_TIMEOUT = 1.0


class Connection:
    """A live byte stream backed by an asyncio reader/writer pair."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        label: str | None = None,
    ):
        self.reader = reader
        self.writer = writer
        self.label = label or format_peer(writer.get_extra_info("peername"))
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def get_extra_info(self, name: str, default: object = None) -> object:
        """Proxy to the underlying transport's extra info."""
        return self.writer.get_extra_info(name, default)

    def shutdown_write(self) -> bool:
        """Send EOF to the peer while still reading from it.

        Returns:
            True if EOF was sent, False if the transport cannot half-close
        """
        if self._closed or not self.writer.can_write_eof():
            return False
        try:
            self.writer.write_eof()
        except OSError:
            return False
        return True

    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self.writer.close()
        try:
            await asyncio.wait_for(self.writer.wait_closed(), timeout=CLOSE_TIMEOUT)
        except (OSError, asyncio.TimeoutError):
            # Peer already gone, nothing left to flush
            pass

    def __repr__(self) -> str:
        return f"Connection({self.label!r}, closed={self._closed})"


@dataclass
class RelayStats:
    """Outcome of one relay."""

    bytes_a_to_b: int = 0
    bytes_b_to_a: int = 0
    errors: list[BaseException] = field(default_factory=list)


async def _copy(
    src: Connection, dst: Connection, buffer_size: int, counter: list[int]
) -> None:
    """Pipe data from src to dst until EOF or error."""
    while True:
        data = await src.reader.read(buffer_size)
        if not data:
            break
        dst.writer.write(data)
        await dst.writer.drain()
        counter[0] += len(data)


async def relay(
    a: Connection,
    b: Connection,
    *,
    buffer_size: int = DEFAULT_BUFFER_SIZE,
    half_close_timeout: float = HALF_CLOSE_TIMEOUT,
) -> RelayStats:
    """Copy bytes both ways between ``a`` and ``b``.

    When one direction reaches EOF cleanly, EOF is passed on to the other
    connection and the remaining direction keeps running for up to
    ``half_close_timeout`` seconds, so a reply to a half-closed request
    still arrives. When a direction fails, both connections are closed at
    once. Either way both copy tasks are awaited before returning.

    Args:
        a: First connection (usually downstream)
        b: Second connection (usually upstream)
        buffer_size: Read size used by each direction
        half_close_timeout: Seconds the surviving direction may run after
            the other one finished

    Returns:
        Byte counts per direction and the reported stream errors
    """
    a_to_b = [0]
    b_to_a = [0]
    forward = asyncio.create_task(_copy(a, b, buffer_size, a_to_b))
    backward = asyncio.create_task(_copy(b, a, buffer_size, b_to_a))
    targets = {forward: b, backward: a}
    stats = RelayStats()

    try:
        done, pending = await asyncio.wait(
            {forward, backward}, return_when=asyncio.FIRST_COMPLETED
        )
        _collect_errors(done, stats, a, b)

        if pending and not stats.errors:
            for task in done:
                targets[task].shutdown_write()
            finished, _ = await asyncio.wait(pending, timeout=half_close_timeout)
            if not finished:
                logger.debug(
                    "half-closed relay timed out",
                    a=a.label,
                    b=b.label,
                    timeout=half_close_timeout,
                )
            _collect_errors(finished, stats, a, b)
    finally:
        await asyncio.gather(a.close(), b.close(), return_exceptions=True)
        results = await asyncio.gather(forward, backward, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException) and result not in stats.errors:
                logger.debug("stream closed by peer", error=repr(result))

    stats.bytes_a_to_b = a_to_b[0]
    stats.bytes_b_to_a = b_to_a[0]
    logger.debug(
        "relay finished",
        a=a.label,
        b=b.label,
        sent=stats.bytes_a_to_b,
        received=stats.bytes_b_to_a,
    )
    return stats


def _collect_errors(
    tasks: set["asyncio.Task[None]"], stats: RelayStats, a: Connection, b: Connection
) -> None:
    for task in tasks:
        error = task.exception()
        if error is not None:
            stats.errors.append(error)
            logger.warning("stream error", a=a.label, b=b.label, error=str(error))
