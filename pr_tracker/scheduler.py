"""Visibility-aware periodic refresh with a single in-flight guard."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum

DEFAULT_ACTIVE_INTERVAL_SECONDS = 120.0
DEFAULT_BACKGROUND_INTERVAL_SECONDS = 600.0

RefreshCallback = Callable[[], Awaitable[None]]
SleepFunction = Callable[[float], Awaitable[None]]

logger = logging.getLogger(__name__)


class SchedulerState(StrEnum):
    """Refresh cadence states."""

    UNAUTHENTICATED = "unauthenticated"
    ACTIVE = "active"
    BACKGROUNDED = "backgrounded"


class RefreshScheduler:
    """Drive refreshes on a timer whose interval follows UI visibility.

    The timer is a task owned by the scheduler that only sleeps; each due
    tick runs in its own task, so cancelling the timer never interrupts a
    refresh. Each timer carries a generation number that is bumped on every
    restart or stop.
    """

    def __init__(
        self,
        refresh: RefreshCallback,
        *,
        active_interval: float = DEFAULT_ACTIVE_INTERVAL_SECONDS,
        background_interval: float = DEFAULT_BACKGROUND_INTERVAL_SECONDS,
        sleep: SleepFunction | None = None,
    ) -> None:
        if active_interval <= 0:
            raise ValueError("active_interval must be positive")
        if background_interval <= active_interval:
            raise ValueError("background_interval must be greater than active_interval")
        self._refresh = refresh
        self._active_interval = active_interval
        self._background_interval = background_interval
        self._sleep = sleep or asyncio.sleep
        self._state = SchedulerState.UNAUTHENTICATED
        self._visible = True
        self._in_flight = False
        self._generation = 0
        self._timer: asyncio.Task[None] | None = None
        self._ticks: set[asyncio.Task[None]] = set()

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def visible(self) -> bool:
        return self._visible

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def current_interval(self) -> float | None:
        if self._state is SchedulerState.ACTIVE:
            return self._active_interval
        if self._state is SchedulerState.BACKGROUNDED:
            return self._background_interval
        return None

    def _visible_state(self) -> SchedulerState:
        return SchedulerState.ACTIVE if self._visible else SchedulerState.BACKGROUNDED

    async def activate(self) -> None:
        """Leave the unauthenticated state, start the timer and refresh now."""
        if self._state is SchedulerState.UNAUTHENTICATED:
            self._state = self._visible_state()
            self._restart_timer()
        await self.tick()

    def set_visibility(self, visible: bool) -> None:
        """Switch between active and backgrounded cadence."""
        self._visible = visible
        if self._state is SchedulerState.UNAUTHENTICATED:
            return
        new_state = self._visible_state()
        if new_state is self._state:
            return
        logger.debug("Refresh cadence %s -> %s.", self._state, new_state)
        self._state = new_state
        self._restart_timer()

    async def tick(self) -> bool:
        """Run one refresh unless unauthenticated or one is already running."""
        if self._state is SchedulerState.UNAUTHENTICATED:
            return False
        if self._in_flight:
            logger.debug("Refresh already in flight; skipping tick.")
            return False
        self._in_flight = True
        try:
            await self._refresh()
        finally:
            self._in_flight = False
        return True

    def stop(self) -> None:
        """Return to unauthenticated: cancel the timer and clear the in-flight flag."""
        self._state = SchedulerState.UNAUTHENTICATED
        self._in_flight = False
        self._cancel_timer()

    async def aclose(self) -> None:
        """Stop, then wait for the timer task and any running scheduled refresh."""
        timer = self._timer
        self.stop()
        if timer is not None:
            try:
                await timer
            except asyncio.CancelledError:
                pass
        if self._ticks:
            await asyncio.gather(*self._ticks, return_exceptions=True)

    def _cancel_timer(self) -> None:
        self._generation += 1
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()

    def _restart_timer(self) -> None:
        self._cancel_timer()
        interval = self.current_interval
        if interval is None:
            return
        self._timer = asyncio.create_task(self._run_timer(self._generation, interval))

    async def _run_timer(self, generation: int, interval: float) -> None:
        while generation == self._generation:
            await self._sleep(interval)
            if generation != self._generation:
                return
            tick = asyncio.create_task(self._run_tick())
            self._ticks.add(tick)
            tick.add_done_callback(self._ticks.discard)

    async def _run_tick(self) -> None:
        try:
            await self.tick()
        except Exception:
            logger.exception("Scheduled refresh failed.")
