from __future__ import annotations

import asyncio
import math

import pytest

from avpipe.core.contracts import PlaybackQuality
from avpipe.pacing.pacing_controller import (
    DEFAULT_FRAME_RATE,
    PacingController,
    estimate_frame_rate,
    frame_rate_to_interval_ms,
)
from conftest import FakeClock


def _controller(clock, calls, process_s=0.0):
    """Controller whose callback takes process_s of clock time (first call only)."""
    def callback():
        if not calls and process_s:
            clock.advance(process_s)
        calls.append(clock())

    return PacingController(callback, clock=clock)


def test_capture_waits_for_the_target_interval():
    clock = FakeClock(0.0)
    calls = []
    pacing = _controller(clock, calls)
    assert pacing.start(125.0)

    clock.advance(0.0625)
    assert not pacing.tick()
    clock.advance(0.0625)
    assert pacing.tick()
    assert len(calls) == 1
    assert pacing.frame_delay_ms == 0.0


def test_slow_capture_shortens_the_next_wait():
    clock = FakeClock(0.0)
    calls = []
    pacing = _controller(clock, calls, process_s=0.03125)
    pacing.start(125.0)

    clock.advance(0.125)
    assert pacing.tick()
    assert pacing.frame_delay_ms == pytest.approx(31.25)

    # Next capture is due target - delay after the previous tick time
    now = 0.125 + 0.09375
    assert not pacing.tick(now=now - 0.015625)
    assert pacing.tick(now=now)
    assert pacing.captures == 2


def test_overrun_fires_on_the_next_tick():
    clock = FakeClock(0.0)
    calls = []
    pacing = _controller(clock, calls, process_s=0.25)
    pacing.start(125.0)

    clock.advance(0.125)
    assert pacing.tick()
    assert pacing.frame_delay_ms == pytest.approx(250.0)
    assert pacing.tick()


def test_callback_errors_do_not_stop_pacing():
    clock = FakeClock(0.0)

    def callback():
        raise RuntimeError("capture failed")

    pacing = PacingController(callback, clock=clock)
    pacing.start(125.0)
    clock.advance(0.125)
    assert pacing.tick()
    assert pacing.is_running


def test_start_is_idempotent_and_stop_is_always_safe():
    pacing = PacingController(lambda: None, clock=FakeClock())
    pacing.stop()

    assert pacing.start(40.0)
    assert not pacing.start(10.0)
    assert pacing.target_interval_ms == 40.0

    pacing.stop()
    pacing.stop()
    assert not pacing.is_running
    assert not pacing.tick(now=1000.0)


def test_tick_period_is_capped():
    pacing = PacingController(lambda: None, clock=FakeClock())
    pacing.start(100.0)
    assert pacing.tick_period_ms == pytest.approx(16.67)
    pacing.stop()

    pacing.start(20.0)
    assert pacing.tick_period_ms == pytest.approx(10.0)


@pytest.mark.parametrize("rate", [None, float("nan"), 0.0, -5.0, float("inf")])
def test_unusable_frame_rate_falls_back_to_default(rate):
    assert frame_rate_to_interval_ms(rate) == pytest.approx(1000.0 / DEFAULT_FRAME_RATE)


def test_frame_rate_to_interval():
    assert frame_rate_to_interval_ms(25.0) == pytest.approx(40.0)


def test_estimate_frame_rate_prefers_nominal_rate():
    # Few frames decoded after a seek must not drag the rate down
    quality = PlaybackQuality(total_video_frames=1, played_video_frames=1, played_seconds=0.0)
    assert estimate_frame_rate(25.0, quality) == 25.0

    quality = PlaybackQuality(total_video_frames=3, played_video_frames=3, played_seconds=8.0)
    assert estimate_frame_rate(25.0, quality) == 25.0


def test_estimate_frame_rate_from_played_span():
    quality = PlaybackQuality(total_video_frames=900, played_video_frames=240, played_seconds=10.0)
    assert estimate_frame_rate(None, quality) == pytest.approx(24.0)
    assert estimate_frame_rate(math.nan, quality) == pytest.approx(24.0)


def test_estimate_frame_rate_falls_back():
    assert estimate_frame_rate(None) == DEFAULT_FRAME_RATE
    assert estimate_frame_rate(0.0, PlaybackQuality(), fallback=12.0) == 12.0
    assert estimate_frame_rate(None, PlaybackQuality(played_video_frames=0, played_seconds=5.0)) == DEFAULT_FRAME_RATE


def test_runs_on_the_event_loop():
    calls = []

    async def scenario():
        pacing = PacingController(lambda: calls.append(1))
        pacing.start(10.0)
        await asyncio.sleep(0.2)
        pacing.stop()
        stopped_at = len(calls)
        await asyncio.sleep(0.05)
        return pacing, stopped_at

    pacing, stopped_at = asyncio.run(scenario())
    assert stopped_at >= 3
    assert len(calls) == stopped_at
    assert not pacing.is_running
