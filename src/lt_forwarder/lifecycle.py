"""Accept loop and lifecycle control for a tunnel."""

import asyncio
from enum import Enum

from .common.exceptions import FatalDialError, TunnelClosedError, TunnelLostError
from .common.logging import get_logger
from .forwarder import ConnectionForwarder
from .relay import Connection, RelayStats
from .shutdown import ShutdownSignal, TunnelGuard
from .tunnel.interfaces import TunnelHandle

logger = get_logger(__name__)

ACCEPT_RETRY_DELAY = 0.05


class LoopState(str, Enum):
    """Accept loop state enumeration."""

    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


class AcceptLoop:
    """Accepts downstream connections and forwards each one concurrently.

    The loop stops when the tunnel reports it is closed. If the shutdown
    signal had fired, that is a clean stop; otherwise the tunnel was lost
    and run() raises TunnelLostError. Forwards still in flight when run()
    returns are left alone; use wait_in_flight() to drain them.
    """

    def __init__(
        self,
        tunnel: TunnelHandle,
        forwarder: ConnectionForwarder,
        shutdown: ShutdownSignal | None = None,
        *,
        max_connections: int = 10,
        slots: asyncio.Semaphore | None = None,
    ):
        """Initialize the loop.

        Args:
            tunnel: Tunnel to accept downstream connections from
            forwarder: Handles each accepted connection
            shutdown: Shared shutdown signal (created if omitted)
            max_connections: Concurrent forward cap when ``slots`` is omitted
            slots: Semaphore shared with other loops so that forwards left
                over from an earlier tunnel count toward the same cap
        """
        self.tunnel = tunnel
        self.forwarder = forwarder
        self.shutdown = shutdown or ShutdownSignal()
        self.guard = TunnelGuard(tunnel)
        self.shutdown.attach(self.guard)
        self.accepted = 0

        if slots is None:
            slots = asyncio.Semaphore(max_connections)
        self._slots = slots
        self._tasks: set[asyncio.Task[RelayStats | None]] = set()
        self._fatal: FatalDialError | None = None
        self._state = LoopState.RUNNING
        self._started = False

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def fatal(self) -> FatalDialError | None:
        """First FATAL dial failure reported by a forward, if any."""
        return self._fatal

    @property
    def in_flight(self) -> int:
        """Number of forwards still running."""
        return len(self._tasks)

    async def run(self) -> None:
        """Accept until the tunnel closes.

        Raises:
            TunnelLostError: If the tunnel closed without a shutdown request
            FatalDialError: If a forward failed under the FATAL dial policy
            RuntimeError: If the loop already ran
        """
        if self._started:
            raise RuntimeError("Accept loop can only run once")
        self._started = True

        logger.info("Accept loop running", url=self.tunnel.url)
        try:
            await self._accept_until_closed()
        finally:
            self._state = LoopState.STOPPED
            logger.info(
                "Accept loop stopped", accepted=self.accepted, in_flight=self.in_flight
            )

        if self._fatal is not None:
            raise self._fatal

    def request_shutdown(self, reason: str = "requested") -> bool:
        """Fire the shared shutdown signal."""
        return self.shutdown.trigger(reason)

    async def wait_in_flight(self, timeout: float | None = None) -> int:
        """Wait for in-flight forwards to finish.

        Args:
            timeout: Seconds to wait, None to wait indefinitely

        Returns:
            Number of forwards still running when the wait ended
        """
        if not self._tasks:
            return 0
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        return len(pending)

    async def cancel_in_flight(self) -> None:
        """Cancel remaining forwards; their relays close both connections."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _accept_until_closed(self) -> None:
        while True:
            if self.shutdown.is_set():
                self._enter_draining()
                return

            if not await self._acquire_slot():
                self._enter_draining()
                return

            try:
                downstream = await self.tunnel.accept()
            except TunnelClosedError:
                self._slots.release()
                self._enter_draining()
                if self.shutdown.is_set():
                    return
                logger.warning("tunnel lost", url=self.tunnel.url)
                raise TunnelLostError(f"tunnel {self.tunnel.url} closed unexpectedly")
            except Exception as e:
                self._slots.release()
                logger.warning("failed to accept connection", error=str(e))
                await asyncio.sleep(ACCEPT_RETRY_DELAY)
                continue

            self.accepted += 1
            self._dispatch(downstream)

    async def _acquire_slot(self) -> bool:
        """Take a connection slot, or return False if shutdown fires first."""
        if not self._slots.locked():
            await self._slots.acquire()
            return True

        logger.debug("Connection limit reached, waiting for a free slot")
        acquire = asyncio.create_task(self._slots.acquire())
        waiter = asyncio.create_task(self.shutdown.wait())
        try:
            done, _ = await asyncio.wait(
                {acquire, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            waiter.cancel()

        if acquire in done:
            return True

        acquire.cancel()
        (acquired,) = await asyncio.gather(acquire, return_exceptions=True)
        if acquired is True:
            self._slots.release()
        return False

    def _dispatch(self, downstream: Connection) -> None:
        task = asyncio.create_task(self.forwarder.forward(downstream, self.shutdown))
        self._tasks.add(task)
        task.add_done_callback(self._on_forward_done)

    def _on_forward_done(self, task: "asyncio.Task[RelayStats | None]") -> None:
        self._tasks.discard(task)
        self._slots.release()

        if task.cancelled():
            return

        error = task.exception()
        if isinstance(error, FatalDialError):
            if self._fatal is None:
                self._fatal = error
            self.shutdown.trigger("upstream unreachable")
        elif error is not None:
            logger.error("Forward failed", error=repr(error))

    def _enter_draining(self) -> None:
        if self._state is LoopState.RUNNING:
            self._state = LoopState.DRAINING
            logger.info("Accept loop draining", in_flight=self.in_flight)
