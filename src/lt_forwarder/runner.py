"""Process-level wiring: tunnel, accept loop, signals and drain."""

import asyncio
from collections.abc import Awaitable, Callable

from .common.exceptions import TunnelLostError
from .common.logging import get_logger
from .config import ForwarderConfig
from .forwarder import ConnectionForwarder
from .lifecycle import AcceptLoop
from .shutdown import ShutdownSignal
from .tunnel.interfaces import TunnelHandle

logger = get_logger(__name__)

TunnelFactory = Callable[[], Awaitable[TunnelHandle]]


async def serve(
    tunnel_factory: TunnelFactory,
    config: ForwarderConfig,
    *,
    shutdown: ShutdownSignal | None = None,
    install_signals: bool = True,
    on_ready: Callable[[str], None] | None = None,
) -> None:
    """Forward tunnel connections to the upstream service until shutdown.

    Opens the tunnel, runs the accept loop, and after it stops gives active
    relays ``config.drain_timeout`` seconds before cancelling them. A lost
    tunnel is reopened up to ``config.reconnect_attempts`` times.

    Args:
        tunnel_factory: Coroutine function returning an open tunnel
        config: Forwarder configuration
        shutdown: Shared shutdown signal (created if omitted)
        install_signals: Fire the signal on SIGINT/SIGTERM
        on_ready: Called with the public URL each time a tunnel opens

    Raises:
        TunnelLostError: If the tunnel was lost and could not be reopened
        FatalDialError: If a dial failed under the FATAL policy
        ConfigurationError: If the TLS material cannot be loaded
    """
    shutdown = shutdown or ShutdownSignal()
    forwarder = ConnectionForwarder.from_config(config)
    slots = asyncio.Semaphore(config.max_connections)
    loops: list[AcceptLoop] = []
    attempts = 0

    if install_signals:
        shutdown.install_signal_handlers()

    try:
        while True:
            tunnel = await tunnel_factory()
            if on_ready is not None:
                on_ready(tunnel.url)

            loop = AcceptLoop(tunnel, forwarder, shutdown, slots=slots)
            loops.append(loop)

            try:
                await loop.run()
                break
            except TunnelLostError:
                await loop.guard.close()
                if shutdown.is_set() or attempts >= config.reconnect_attempts:
                    raise
                attempts += 1
                logger.warning(
                    "Reopening tunnel",
                    attempt=attempts,
                    max_attempts=config.reconnect_attempts,
                )
                if await _wait_or_shutdown(shutdown, config.reconnect_delay):
                    break
    finally:
        for loop in loops:
            await loop.guard.close()
        for loop in loops:
            await _drain(loop, config.drain_timeout)
        if install_signals:
            shutdown.remove_signal_handlers()

    # Forwards from an earlier tunnel may have failed fatally after it was lost
    for loop in loops:
        if loop.fatal is not None:
            raise loop.fatal


async def _wait_or_shutdown(shutdown: ShutdownSignal, delay: float) -> bool:
    """Sleep for ``delay`` seconds; return True if shutdown fired meanwhile."""
    try:
        await asyncio.wait_for(shutdown.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return False
    return True


async def _drain(loop: AcceptLoop, timeout: float) -> None:
    if loop.in_flight == 0:
        return
    logger.info("Waiting for active connections", count=loop.in_flight)
    pending = await loop.wait_in_flight(timeout)
    if pending:
        logger.warning("Closing active connections", count=pending)
        await loop.cancel_in_flight()
