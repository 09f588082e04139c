"""Fixed-interval tick loop that never overlaps its own invocations."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

TickAction = Callable[[], Awaitable[None]]


class PublishScheduler:
    """Fire a tick action every *period* seconds, skipping firings while one is in flight.

    A firing that finds the previous tick still running is dropped, not
    queued, so a slow location fix can never pile up concurrent cycles.
    Ticks are spaced on the loop clock and do not drift with tick duration.
    """

    def __init__(self, *, warmup: float = 1.0, logger: logging.Logger | None = None) -> None:
        self._warmup = warmup
        self._logger = logger or logging.getLogger(__name__)
        self._timer: asyncio.Task[None] | None = None
        self._inflight: asyncio.Task[None] | None = None
        self._in_progress = False
        self._skipped = 0

    @property
    def is_running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def in_progress(self) -> bool:
        """Whether a tick is currently executing."""
        return self._in_progress

    @property
    def skipped_ticks(self) -> int:
        return self._skipped

    def start(self, period: float, tick_action: TickAction, *, delay: float | None = None) -> None:
        """Schedule *tick_action* after *delay* (default: warm-up), then every *period* seconds."""
        if period <= 0:
            raise ValueError(f"period must be positive, got {period}")
        self.stop()
        first_delay = self._warmup if delay is None else delay
        self._timer = asyncio.get_running_loop().create_task(self._run(period, tick_action, first_delay))

    def stop(self) -> None:
        """Cancel future firings. An in-flight tick is left to finish."""
        timer = self._timer
        self._timer = None
        if timer is not None and not timer.done():
            timer.cancel()

    async def run_now(self, tick_action: TickAction) -> bool:
        """Run one tick immediately under the same guard. Returns ``False`` if one was already running."""
        if self._in_progress:
            self._skipped += 1
            return False
        self._in_progress = True
        self._inflight = asyncio.get_running_loop().create_task(self._invoke(tick_action))
        await self.wait_idle()
        return True

    async def wait_idle(self) -> None:
        """Wait for the in-flight tick, if any, to complete."""
        inflight = self._inflight
        if inflight is not None and not inflight.done():
            await asyncio.shield(inflight)

    async def _run(self, period: float, tick_action: TickAction, first_delay: float) -> None:
        loop = asyncio.get_running_loop()
        next_at = loop.time() + first_delay
        while True:
            await asyncio.sleep(max(0.0, next_at - loop.time()))
            self._fire(tick_action)
            next_at += period

    def _fire(self, tick_action: TickAction) -> None:
        if self._in_progress:
            self._skipped += 1
            self._logger.debug("Previous tick still running, skipping this one")
            return
        self._in_progress = True
        self._inflight = asyncio.get_running_loop().create_task(self._invoke(tick_action))

    async def _invoke(self, tick_action: TickAction) -> None:
        try:
            await tick_action()
        except Exception:
            self._logger.warning("Tick failed", exc_info=True)
        finally:
            self._in_progress = False
