"""
services/session_clock.py

Countdown for one exam session.

Remaining time is derived from the time source on every read, so missed or
coalesced ticks never skew it; it clamps at zero. Expiry and the low-time
warning are one-shot notifications. The warning only fires when remaining
time drops to the threshold, so a session shorter than the threshold never
warns.
"""

import asyncio
import logging
import time
from typing import Callable, List, Optional

from .subscriptions import Subscription, subscribe

logger = logging.getLogger(__name__)


class SessionClock:

    def __init__(
        self,
        duration_seconds: int,
        low_time_threshold: Optional[int] = 300,
        time_source: Callable[[], float] = time.time,
        tick_interval: Optional[float] = 1.0,
    ):
        if duration_seconds <= 0:
            raise ValueError("duration_seconds must be a positive integer")
        self.duration_seconds = duration_seconds
        self.low_time_threshold = low_time_threshold
        self.tick_interval = tick_interval
        self._time = time_source

        self._started_at: Optional[float] = None
        self._frozen_remaining: Optional[float] = None
        self._expired = False
        self._warned = False
        self._stopped = False
        self._expiry_listeners: List[Callable[[], None]] = []
        self._warning_listeners: List[Callable[[float], None]] = []
        self._task: Optional[asyncio.Task] = None

    @property
    def started_at(self) -> Optional[float]:
        return self._started_at

    @property
    def expired(self) -> bool:
        return self._expired

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def low_time_warned(self) -> bool:
        return self._warned

    def on_expiry(self, callback: Callable[[], None]) -> Subscription:
        return subscribe(self._expiry_listeners, callback)

    def on_low_time(self, callback: Callable[[float], None]) -> Subscription:
        return subscribe(self._warning_listeners, callback)

    def start(self) -> None:
        """Begin counting down. With a tick interval, also runs a background ticker."""
        if self._started_at is not None or self._stopped:
            return
        self._started_at = self._time()
        if self.tick_interval is not None:
            self._task = asyncio.get_running_loop().create_task(self._run())

    def elapsed(self) -> float:
        return self.duration_seconds - self.remaining()

    def remaining(self) -> float:
        """Seconds left, never negative."""
        if self._frozen_remaining is not None:
            return self._frozen_remaining
        if self._started_at is None:
            return float(self.duration_seconds)
        left = self.duration_seconds - (self._time() - self._started_at)
        # clock drift either way stays inside [0, duration]
        return min(float(self.duration_seconds), max(0.0, left))

    def tick(self) -> float:
        """Evaluate the countdown once and fire any due notifications."""
        if self._stopped or self._started_at is None:
            return self.remaining()
        left = self.remaining()
        if left <= 0:
            self._expire()
            return 0.0
        if (
            not self._warned
            and self.low_time_threshold is not None
            and self.duration_seconds > self.low_time_threshold
            and left <= self.low_time_threshold
        ):
            self._warned = True
            logger.info("Low time warning: %.0fs remaining", left)
            for listener in list(self._warning_listeners):
                listener(left)
        return left

    def stop(self) -> None:
        """Cancel future ticks and expiry. Idempotent."""
        if self._stopped:
            return
        self._frozen_remaining = self.remaining()
        self._stopped = True
        self._cancel_task()

    def _expire(self) -> None:
        if self._expired:
            return
        self._expired = True
        self._frozen_remaining = 0.0
        self._stopped = True
        self._cancel_task()
        logger.info("Session clock expired after %ss", self.duration_seconds)
        for listener in list(self._expiry_listeners):
            listener()

    def _cancel_task(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        # the ticker may be the one stopping the clock (expiry callback chain)
        if task is not current:
            task.cancel()

    async def _run(self) -> None:
        while not self._stopped:
            left = self.tick()
            if self._stopped:
                break
            await asyncio.sleep(min(self.tick_interval, max(left, 0.01)))
