"""Process-wide shutdown signal and one-shot tunnel close."""

import asyncio
import signal
from collections.abc import Iterable

from .common.logging import get_logger
from .tunnel.interfaces import TunnelHandle

logger = get_logger(__name__)

DEFAULT_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class TunnelGuard:
    """Closes a tunnel handle exactly once.

    Every caller of close() gets the same task, so the handle's own close()
    runs once no matter how many paths ask for it.
    """

    def __init__(self, tunnel: TunnelHandle):
        self.tunnel = tunnel
        self._task: asyncio.Task[bool] | None = None

    @property
    def closing(self) -> bool:
        return self._task is not None

    def close(self) -> "asyncio.Task[bool]":
        """Start closing the tunnel, or return the close already underway."""
        if self._task is None:
            self._task = asyncio.ensure_future(self._close())
        return self._task

    async def _close(self) -> bool:
        try:
            await self.tunnel.close()
        except Exception as e:
            logger.error("failed to close tunnel", url=self.tunnel.url, error=str(e))
            return False
        logger.info("tunnel closed", url=self.tunnel.url)
        return True


class ShutdownSignal:
    """Cancellation context shared by the accept loop and the dialer.

    Fires at most once. Firing closes the attached tunnel through its
    TunnelGuard, which makes a pending accept() return TunnelClosedError.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None
        self._guard: TunnelGuard | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._signals: list[signal.Signals] = []

    @property
    def reason(self) -> str | None:
        return self._reason

    def is_set(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def attach(self, guard: TunnelGuard) -> None:
        """Set the tunnel to close when the signal fires."""
        self._guard = guard
        if self.is_set():
            guard.close()

    def trigger(self, reason: str = "requested") -> bool:
        """Fire the signal.

        Args:
            reason: Short description for the logs

        Returns:
            True if this call fired the signal, False if it had already fired
        """
        if self._event.is_set():
            logger.debug("Shutdown already in progress", reason=reason)
            return False

        self._reason = reason
        self._event.set()
        logger.info("Shutdown requested", reason=reason)

        if self._guard is not None:
            self._guard.close()
        return True

    def install_signal_handlers(
        self,
        signals: Iterable[signal.Signals] = DEFAULT_SIGNALS,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """Fire on SIGINT/SIGTERM from the running event loop."""
        self._loop = loop or asyncio.get_running_loop()
        for sig in signals:
            try:
                self._loop.add_signal_handler(sig, self._on_signal, sig)
            except NotImplementedError:
                logger.debug("Signal handlers not supported", signal=sig.name)
                continue
            self._signals.append(sig)

    def remove_signal_handlers(self) -> None:
        if self._loop is None:
            return
        for sig in self._signals:
            self._loop.remove_signal_handler(sig)
        self._signals = []

    def _on_signal(self, sig: signal.Signals) -> None:
        if self.is_set():
            logger.info("Signal ignored, already exiting", signal=sig.name)
            return
        print(f"{sig.name} received, exiting...")
        self.trigger(sig.name)
