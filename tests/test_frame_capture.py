from __future__ import annotations

import pytest

from avpipe.capture.frame_capture import FrameCapture, letterbox_rect
from avpipe.core.contracts import (
    HAVE_ENOUGH_DATA,
    HAVE_METADATA,
    CapturePolicy,
    PixelFormat,
    TargetSpec,
)
from conftest import FakeSurface


TARGET = TargetSpec.for_dimensions(100, 100, PixelFormat.RGBA)


@pytest.fixture
def playing():
    surface = FakeSurface(width=200, height=100, color=(200, 100, 50, 255))
    surface.state = HAVE_ENOUGH_DATA
    surface.is_paused = False
    surface.time = 1.0
    return surface


def test_missing_surface_is_skipped():
    capture = FrameCapture()
    assert capture.capture(None, TARGET) is None
    assert capture.stats.skipped_no_surface == 1


def test_paused_or_ended_is_skipped(playing):
    capture = FrameCapture()
    playing.is_paused = True
    assert capture.capture(playing, TARGET) is None

    playing.is_paused = False
    playing.is_ended = True
    assert capture.capture(playing, TARGET) is None

    assert capture.stats.skipped_not_playing == 2
    assert playing.reads == 0


def test_not_ready_is_skipped(playing):
    playing.state = HAVE_METADATA
    capture = FrameCapture()
    assert capture.capture(playing, TARGET) is None
    assert capture.stats.skipped_not_ready == 1


def test_zero_dimensions_are_skipped(playing):
    playing.width = 0
    capture = FrameCapture()
    assert capture.capture(playing, TARGET) is None
    assert capture.stats.skipped_zero_dimensions == 1
    assert playing.reads == 0


def test_captures_closer_than_min_spacing_are_skipped(playing):
    capture = FrameCapture()

    assert capture.capture(playing, TARGET) is not None
    playing.time = 1.010
    assert capture.capture(playing, TARGET) is None
    playing.time = 1.020
    assert capture.capture(playing, TARGET) is not None

    assert capture.stats.skipped_too_soon == 1


def test_backwards_seek_is_not_treated_as_duplicate(playing):
    capture = FrameCapture()
    assert capture.capture(playing, TARGET) is not None
    playing.time = 0.5
    frame = capture.capture(playing, TARGET)
    assert frame is not None
    assert frame.timestamp == 0.5


def test_reset_forgets_last_capture(playing):
    capture = FrameCapture()
    capture.capture(playing, TARGET)
    capture.reset()
    assert capture.capture(playing, TARGET) is not None


def test_letterbox_pads_with_opaque_black(playing):
    frame = FrameCapture(CapturePolicy.LETTERBOX).capture(playing, TARGET)

    assert (frame.width, frame.height) == (100, 100)
    assert frame.pixels[0, 50].tolist() == [0, 0, 0, 255]
    assert frame.pixels[99, 50].tolist() == [0, 0, 0, 255]
    assert frame.pixels[50, 50].tolist() == [200, 100, 50, 255]
    # Image spans rows 25..74
    assert frame.pixels[25, 0].tolist() == [200, 100, 50, 255]
    assert frame.pixels[24, 0].tolist() == [0, 0, 0, 255]


def test_letterbox_frames_do_not_share_pixels(playing):
    capture = FrameCapture()
    first = capture.capture(playing, TARGET)
    playing.time = 2.0
    playing.color = (1, 2, 3, 255)
    capture.capture(playing, TARGET)
    assert first.pixels[50, 50].tolist() == [200, 100, 50, 255]


def test_letterbox_without_target_is_skipped(playing):
    capture = FrameCapture(CapturePolicy.LETTERBOX)
    assert capture.capture(playing, None) is None
    assert capture.stats.skipped_invalid_target == 1


def test_stretch_keeps_native_resolution(playing):
    frame = FrameCapture(CapturePolicy.STRETCH).capture(playing, TARGET)
    assert (frame.width, frame.height) == (200, 100)
    assert frame.pixels.shape == (100, 200, 4)


def test_read_errors_are_counted(playing):
    def broken():
        raise RuntimeError("decoder lost")

    playing.read_pixels = broken
    capture = FrameCapture()
    assert capture.capture(playing, TARGET) is None
    assert capture.stats.capture_failures == 1


@pytest.mark.parametrize(
    "source, target, expected",
    [
        ((1920, 1080), (640, 360), (0, 0, 640, 360)),
        ((200, 100), (100, 100), (0, 25, 100, 50)),
        ((100, 200), (100, 100), (25, 0, 50, 100)),
        ((640, 480), (640, 360), (80, 0, 480, 360)),
    ],
)
def test_letterbox_rect(source, target, expected):
    assert letterbox_rect(*source, *target) == expected
