"""Tests for the shutdown signal and one-shot tunnel close."""

import asyncio
import signal
import sys

import pytest

from lt_forwarder.shutdown import ShutdownSignal, TunnelGuard


class SlowTunnel:
    url = "fake://slow"

    def __init__(self, fail: bool = False):
        self.close_calls = 0
        self.fail = fail

    async def accept(self):
        raise NotImplementedError

    async def close(self):
        self.close_calls += 1
        await asyncio.sleep(0.01)
        if self.fail:
            raise OSError("close failed")


class TestTunnelGuard:
    """Test TunnelGuard close-once behaviour"""

    @pytest.mark.asyncio
    async def test_concurrent_closes_run_once(self):
        tunnel = SlowTunnel()
        guard = TunnelGuard(tunnel)

        results = await asyncio.gather(guard.close(), guard.close(), guard.close())

        assert results == [True, True, True]
        assert tunnel.close_calls == 1
        assert guard.closing

    @pytest.mark.asyncio
    async def test_close_failure_is_reported_not_raised(self):
        tunnel = SlowTunnel(fail=True)
        guard = TunnelGuard(tunnel)

        assert await guard.close() is False
        assert await guard.close() is False
        assert tunnel.close_calls == 1


class TestShutdownSignal:
    """Test ShutdownSignal firing and signal handling"""

    @pytest.mark.asyncio
    async def test_fires_at_most_once(self):
        shutdown = ShutdownSignal()

        assert not shutdown.is_set()
        assert shutdown.trigger("first") is True
        assert shutdown.trigger("second") is False
        assert shutdown.reason == "first"
        await asyncio.wait_for(shutdown.wait(), timeout=1.0)

    @pytest.mark.asyncio
    async def test_trigger_closes_attached_tunnel(self):
        tunnel = SlowTunnel()
        guard = TunnelGuard(tunnel)
        shutdown = ShutdownSignal()
        shutdown.attach(guard)

        shutdown.trigger()
        shutdown.trigger()
        await guard.close()

        assert tunnel.close_calls == 1

    @pytest.mark.asyncio
    async def test_attach_after_fire_closes_immediately(self):
        tunnel = SlowTunnel()
        guard = TunnelGuard(tunnel)
        shutdown = ShutdownSignal()
        shutdown.trigger()

        shutdown.attach(guard)

        assert guard.closing
        await guard.close()
        assert tunnel.close_calls == 1

    @pytest.mark.asyncio
    async def test_repeated_signals_print_once(self, capsys):
        tunnel = SlowTunnel()
        guard = TunnelGuard(tunnel)
        shutdown = ShutdownSignal()
        shutdown.attach(guard)

        shutdown._on_signal(signal.SIGINT)
        shutdown._on_signal(signal.SIGTERM)
        await guard.close()

        out = capsys.readouterr().out
        assert out.count("received, exiting...") == 1
        assert "SIGINT received, exiting..." in out
        assert shutdown.reason == "SIGINT"
        assert tunnel.close_calls == 1

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals only")
    @pytest.mark.asyncio
    async def test_real_signal_fires(self, capsys):
        shutdown = ShutdownSignal()
        shutdown.install_signal_handlers(signals=[signal.SIGUSR1])
        try:
            signal.raise_signal(signal.SIGUSR1)
            await asyncio.wait_for(shutdown.wait(), timeout=1.0)
        finally:
            shutdown.remove_signal_handlers()

        assert shutdown.reason == "SIGUSR1"
        assert "SIGUSR1 received, exiting..." in capsys.readouterr().out
