from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import List, Optional

import numpy as np
import pytest

from avpipe.capture.decode_surface import DecodeSurface
from avpipe.core.contracts import HAVE_ENOUGH_DATA, HAVE_NOTHING, PlaybackQuality
from avpipe.core.errors import AutoplayBlockedError


class FakeClock:
    """Manually advanced monotonic clock (seconds)."""

    def __init__(self, t: float = 0.0):
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, dt: float):
        self.t += dt


class FakeSurface(DecodeSurface):
    """In-memory decode surface with a uniform RGBA image."""

    def __init__(
        self,
        width: int = 320,
        height: int = 180,
        color=(10, 20, 30, 255),
        fps: Optional[float] = 25.0,
        ready_after_open: bool = True,
        open_delay: float = 0.0,
        open_error: Optional[Exception] = None,
        autoplay_blocked: bool = False,
    ):
        self.width = width
        self.height = height
        self.color = color
        self.fps = fps
        self.ready_after_open = ready_after_open
        self.open_delay = open_delay
        self.open_error = open_error
        self.autoplay_blocked = autoplay_blocked
        self.error = None

        self.state = HAVE_NOTHING
        self.is_paused = True
        self.is_ended = False
        self.time = 0.0
        self.closed = False
        self.reads = 0

    async def open(self) -> None:
        if self.open_delay:
            await asyncio.sleep(self.open_delay)
        if self.open_error is not None:
            raise self.open_error
        if self.ready_after_open:
            self.state = HAVE_ENOUGH_DATA

    def close(self) -> None:
        self.closed = True

    @property
    def ready_state(self) -> int:
        return self.state

    @property
    def paused(self) -> bool:
        return self.is_paused

    @property
    def ended(self) -> bool:
        return self.is_ended

    @property
    def current_time(self) -> float:
        return self.time

    @property
    def video_width(self) -> int:
        return self.width

    @property
    def video_height(self) -> int:
        return self.height

    @property
    def nominal_frame_rate(self):
        return self.fps

    def playback_quality(self) -> PlaybackQuality:
        return PlaybackQuality(total_video_frames=0)

    def play(self) -> None:
        if self.autoplay_blocked:
            raise AutoplayBlockedError("play() requires a user gesture")
        self.is_paused = False
        self.is_ended = False

    def pause(self) -> None:
        self.is_paused = True

    def seek(self, time_s: float) -> None:
        self.time = float(time_s)
        self.is_ended = False

    def read_pixels(self):
        self.reads += 1
        pixels = np.empty((self.height, self.width, 4), dtype=np.uint8)
        pixels[:] = self.color
        return pixels


class FakeNode:
    """Audio graph node recording its connections."""

    def __init__(self, name: str):
        self.name = name
        self.outputs: List["FakeNode"] = []
        self.disconnects = 0

    def connect(self, destination):
        self.outputs.append(destination)
        return destination

    def disconnect(self):
        self.outputs.clear()
        self.disconnects += 1


class FakeAudioContext:
    def __init__(self, state: str = "running"):
        self.state = state
        self.sample_rate = 48000
        self.destination = FakeNode("destination")
        self.taps: List[FakeNode] = []

    def create_media_element_source(self, media):
        tap = FakeNode("tap")
        tap.media = media
        self.taps.append(tap)
        return tap

    async def resume(self):
        self.state = "running"


def make_texture_extension(source_id="video0", width=64, height=36, fmt="RGBA", ring_buffer=None, max_frames=3):
    info = {"width": width, "height": height, "format": fmt}
    texture = SimpleNamespace(user_data={"mpeg_texture_info": info})
    source = SimpleNamespace(ring_buffer=ring_buffer, max_frames=max_frames)
    return SimpleNamespace(textures={source_id: texture}, sources={source_id: source})


def make_audio_extension(context=None):
    context = context or FakeAudioContext()
    sources = {
        "speaker": SimpleNamespace(type="Object", gain_node=FakeNode("gain"), panner_node=FakeNode("panner")),
        "ambience": SimpleNamespace(type="HOA", gain_node=FakeNode("gain"), hoa_renderer=FakeNode("hoa")),
    }
    return SimpleNamespace(audio_context=context, sources=sources)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(100.0)


@pytest.fixture
def surface() -> FakeSurface:
    return FakeSurface()
