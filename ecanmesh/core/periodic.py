"""
ecanmesh — Periodic Loop Runtime

Every background activity in ecanmesh (heartbeat health check, metrics
collection, rebalancing, the attention cycle) runs as a PeriodicTask:
a ticker with its own stop signal.

A loop never dies from a failed tick. Exceptions are caught, logged and
counted, and the next tick is scheduled as usual.

Shutdown is clean: stop() raises the stop signal, which interrupts the
sleep between ticks immediately, and then waits for a tick that is
already running to finish. Only if that tick overruns the grace period
is the task cancelled.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Callable, Coroutine
from typing import Any

import structlog

from ecanmesh.core.types import LoopState
from ecanmesh.errors import LoopAlreadyRunningError

logger = structlog.get_logger("ecanmesh.core.periodic")

TickCallback = Callable[[], Coroutine[Any, Any, Any]]

# Default time stop() waits for an in-progress tick
_DEFAULT_GRACE_S: float = 5.0


class PeriodicTask:
    """
    Runs an async callback every ``interval_s`` seconds until stopped.

    The first tick fires one interval after start(), matching a timer
    that is armed at start-up. Overruns (a tick longer than the interval)
    are counted and the next tick starts immediately.
    """

    def __init__(
        self,
        name: str,
        interval_s: float,
        tick: TickCallback,
        grace_s: float = _DEFAULT_GRACE_S,
    ) -> None:
        if interval_s <= 0:
            raise ValueError(f"interval_s must be positive, got {interval_s}")
        self._name = name
        self._interval_s = interval_s
        self._tick = tick
        self._grace_s = grace_s
        self._logger = logger.bind(component="periodic", loop=name)

        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._running: bool = False

        self._tick_count: int = 0
        self._error_count: int = 0
        self._overrun_count: int = 0
        self._last_elapsed_ms: float = 0.0

    # ─── Control ─────────────────────────────────────────────────────

    def start(self) -> asyncio.Task[None]:
        """Start the loop. Returns the background task handle."""
        if self._running:
            raise LoopAlreadyRunningError(f"Loop {self._name!r} is already running")

        self._running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop(), name=f"ecanmesh_{self._name}")
        self._logger.info("loop_started", interval_s=self._interval_s)
        return self._task

    async def stop(self) -> None:
        """Signal the loop to stop and wait for any in-progress tick."""
        if not self._running:
            return
        self._stop_event.set()
        task = self._task
        if task is not None and not task.done():
            done, _ = await asyncio.wait({task}, timeout=self._grace_s)
            if not done:
                self._logger.warning("loop_stop_grace_exceeded", grace_s=self._grace_s)
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._task = None
        self._running = False
        self._logger.info(
            "loop_stopped",
            ticks=self._tick_count,
            errors=self._error_count,
            overruns=self._overrun_count,
        )

    # ─── State ───────────────────────────────────────────────────────

    @property
    def name(self) -> str:
        return self._name

    @property
    def running(self) -> bool:
        return self._running

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def error_count(self) -> int:
        return self._error_count

    @property
    def state(self) -> LoopState:
        return LoopState(
            name=self._name,
            running=self._running,
            interval_s=self._interval_s,
            tick_count=self._tick_count,
            error_count=self._error_count,
            overrun_count=self._overrun_count,
            last_elapsed_ms=round(self._last_elapsed_ms, 3),
        )

    # ─── Loop ────────────────────────────────────────────────────────

    async def _run_loop(self) -> None:
        delay_s = self._interval_s
        while True:
            if await self._wait_for_stop(delay_s):
                return

            t0 = time.monotonic()
            try:
                await self._tick()
                self._tick_count += 1
            except asyncio.CancelledError:
                self._logger.info("loop_cancelled")
                raise
            except Exception as exc:
                self._error_count += 1
                self._logger.error(
                    "loop_tick_error",
                    error=str(exc),
                    error_type=type(exc).__name__,
                    error_count=self._error_count,
                )

            elapsed_s = time.monotonic() - t0
            self._last_elapsed_ms = elapsed_s * 1000.0
            if elapsed_s > self._interval_s:
                self._overrun_count += 1
                if self._overrun_count % 100 == 1:
                    self._logger.warning(
                        "loop_overrun",
                        elapsed_ms=round(self._last_elapsed_ms, 2),
                        budget_ms=round(self._interval_s * 1000.0, 2),
                    )
            delay_s = max(0.0, self._interval_s - elapsed_s)

    async def _wait_for_stop(self, timeout_s: float) -> bool:
        """Sleep up to timeout_s. Returns True if the stop signal was raised."""
        if self._stop_event.is_set():
            return True
        if timeout_s <= 0:
            return False
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=timeout_s)
        except TimeoutError:
            return False
        return True
