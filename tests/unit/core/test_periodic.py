"""Tests for PeriodicTask — tick scheduling, error survival and clean shutdown."""

from __future__ import annotations

import asyncio

import pytest

from ecanmesh.core.periodic import PeriodicTask
from ecanmesh.errors import LoopAlreadyRunningError


class TestConstruction:
    def test_non_positive_interval_rejected(self):
        async def _tick() -> None:
            return None

        with pytest.raises(ValueError):
            PeriodicTask("bad", 0.0, _tick)


class TestTicking:
    @pytest.mark.asyncio
    async def test_ticks_repeatedly(self):
        calls = 0

        async def _tick() -> None:
            nonlocal calls
            calls += 1

        loop = PeriodicTask("counter", 0.01, _tick)
        loop.start()
        await asyncio.sleep(0.1)
        await loop.stop()

        assert calls >= 2
        assert loop.tick_count == calls

    @pytest.mark.asyncio
    async def test_first_tick_waits_one_interval(self):
        calls = 0

        async def _tick() -> None:
            nonlocal calls
            calls += 1

        loop = PeriodicTask("slow", 10.0, _tick)
        loop.start()
        await asyncio.sleep(0.02)
        await loop.stop()

        assert calls == 0

    @pytest.mark.asyncio
    async def test_survives_tick_errors(self):
        calls = 0

        async def _tick() -> None:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("spread failure")

        loop = PeriodicTask("flaky", 0.01, _tick)
        loop.start()
        await asyncio.sleep(0.1)
        await loop.stop()

        assert loop.error_count == 1
        assert loop.tick_count >= 1
        assert loop.state.error_count == 1


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_double_start_raises(self):
        async def _tick() -> None:
            return None

        loop = PeriodicTask("once", 1.0, _tick)
        loop.start()
        try:
            with pytest.raises(LoopAlreadyRunningError):
                loop.start()
        finally:
            await loop.stop()

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_progress_tick(self):
        started = asyncio.Event()
        finished = False

        async def _tick() -> None:
            nonlocal finished
            started.set()
            await asyncio.sleep(0.05)
            finished = True

        loop = PeriodicTask("cycle", 0.01, _tick)
        loop.start()
        await asyncio.wait_for(started.wait(), timeout=1.0)
        await loop.stop()

        assert finished is True
        assert not loop.running

    @pytest.mark.asyncio
    async def test_stop_cancels_after_grace(self):
        started = asyncio.Event()

        async def _tick() -> None:
            started.set()
            await asyncio.sleep(10)

        loop = PeriodicTask("stuck", 0.01, _tick, grace_s=0.05)
        loop.start()
        await asyncio.wait_for(started.wait(), timeout=1.0)
        await asyncio.wait_for(loop.stop(), timeout=1.0)

        assert not loop.running

    @pytest.mark.asyncio
    async def test_stop_when_not_running_is_noop(self):
        async def _tick() -> None:
            return None

        loop = PeriodicTask("idle", 1.0, _tick)
        await loop.stop()
        assert not loop.running

    @pytest.mark.asyncio
    async def test_restart_after_stop(self):
        async def _tick() -> None:
            return None

        loop = PeriodicTask("again", 0.01, _tick)
        loop.start()
        await loop.stop()
        loop.start()
        assert loop.running
        await loop.stop()
