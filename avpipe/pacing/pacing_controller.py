"""
Pacing Controller.

Triggers frame captures at the source's frame rate on the asyncio loop.

A scheduler tick runs every min(target_interval / 2, 16.67 ms). A capture
fires when the time since the last capture reaches the target interval
minus the accumulated overrun (frame_delay). Slow captures shorten the
next wait instead of queuing a backlog.
"""

from __future__ import annotations

import asyncio
import math
import time
from typing import Callable, Optional

from loguru import logger

from avpipe.core.contracts import PlaybackQuality


DEFAULT_FRAME_RATE = 30.0
MAX_TICK_PERIOD_MS = 16.67


def frame_rate_to_interval_ms(
    frame_rate: Optional[float],
    fallback: float = DEFAULT_FRAME_RATE,
) -> float:
    """Target interval for frame_rate, falling back when it is unusable."""
    if frame_rate is None or not math.isfinite(frame_rate) or frame_rate <= 0:
        frame_rate = fallback
    return 1000.0 / frame_rate


def estimate_frame_rate(
    nominal: Optional[float],
    quality: Optional[PlaybackQuality] = None,
    fallback: float = DEFAULT_FRAME_RATE,
) -> float:
    """
    Estimate the source frame rate.

    Uses the container's nominal rate, then frames decoded per second
    played since the last seek, then fallback.
    """
    candidates = [nominal]
    if quality is not None and quality.played_seconds > 0:
        candidates.append(quality.played_video_frames / quality.played_seconds)

    for rate in candidates:
        if rate is not None and math.isfinite(rate) and rate > 0:
            return float(rate)
    return fallback


class PacingController:
    """
    Self-correcting capture timer.

    Guarantees:
    - Ticks never overlap (single task, synchronous callback)
    - start() while running is a no-op
    - stop() is always safe
    - Callback errors are logged and never stop the loop
    """

    def __init__(
        self,
        callback: Callable[[], None],
        clock: Callable[[], float] = time.perf_counter,
    ):
        """
        Initialize pacing controller.

        Args:
            callback: Capture callback invoked once per paced frame
            clock: Monotonic clock in seconds
        """
        self._callback = callback
        self._clock = clock

        self._running = False
        self._task: Optional[asyncio.Task] = None

        self.target_interval_ms: float = 1000.0 / DEFAULT_FRAME_RATE
        self.frame_delay_ms: float = 0.0
        self._last_process_time: float = 0.0

        # Stats
        self.captures: int = 0
        self.last_process_time_ms: float = 0.0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def tick_period_ms(self) -> float:
        return min(self.target_interval_ms / 2.0, MAX_TICK_PERIOD_MS)

    def start(self, target_interval_ms: float) -> bool:
        """
        Start pacing.

        Without a running event loop the controller is armed but must be
        driven by calling tick() directly.

        Returns:
            True if pacing started, False if it was already running
        """
        if self._running:
            return False

        if not math.isfinite(target_interval_ms) or target_interval_ms <= 0:
            target_interval_ms = frame_rate_to_interval_ms(None)

        self.target_interval_ms = float(target_interval_ms)
        self.frame_delay_ms = 0.0
        self._last_process_time = self._clock()
        self._running = True

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None:
            self._task = loop.create_task(self._run())

        logger.debug(
            f"Pacing started: interval={self.target_interval_ms:.2f}ms "
            f"tick={self.tick_period_ms:.2f}ms"
        )
        return True

    def stop(self):
        """Stop pacing. Safe to call at any time."""
        if not self._running and self._task is None:
            return

        self._running = False
        if self._task is not None:
            if not self._task.done():
                self._task.cancel()
            self._task = None
        logger.debug("Pacing stopped")

    def tick(self, now: Optional[float] = None) -> bool:
        """
        Run one scheduler tick.

        Args:
            now: Current clock reading in seconds (read from clock if None)

        Returns:
            True if the capture callback fired
        """
        if not self._running:
            return False

        if now is None:
            now = self._clock()

        elapsed_ms = (now - self._last_process_time) * 1000.0
        if elapsed_ms < self.target_interval_ms - self.frame_delay_ms:
            return False

        process_start = self._clock()
        try:
            self._callback()
        except Exception as e:
            logger.error(f"Capture callback failed: {e}")
        process_ms = (self._clock() - process_start) * 1000.0

        self.frame_delay_ms = max(0.0, process_ms - (self.target_interval_ms - elapsed_ms))
        self._last_process_time = now
        self.captures += 1
        self.last_process_time_ms = process_ms
        return True

    async def _run(self):
        period = self.tick_period_ms / 1000.0
        while self._running:
            await asyncio.sleep(period)
            if not self._running:
                break
            self.tick()
