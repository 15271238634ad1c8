"""
Frame Capture.

Produces one Frame from the decode surface per pacing tick.

Guards (checked in order, any failure skips the tick silently):
1. Decode surface absent
2. Playback paused or ended
3. Readiness below HAVE_CURRENT_DATA
4. Zero source dimensions
5. Less than min_spacing_s of media time since the last accepted capture
"""

from __future__ import annotations

from typing import Optional, Tuple

import cv2
import numpy as np
from numpy.typing import NDArray
from loguru import logger

from avpipe.core.contracts import (
    HAVE_CURRENT_DATA,
    CapturePolicy,
    Frame,
    PipelineStats,
    TargetSpec,
)
from avpipe.core.errors import InvalidTargetError


DEFAULT_MIN_SPACING_S = 1.0 / 60.0


def letterbox_rect(
    source_width: int,
    source_height: int,
    target_width: int,
    target_height: int,
) -> Tuple[int, int, int, int]:
    """
    Fit the source inside the target keeping its aspect ratio.

    Returns:
        (offset_x, offset_y, draw_width, draw_height)
    """
    source_aspect = source_width / source_height
    target_aspect = target_width / target_height

    if source_aspect > target_aspect:
        # Wider source: full width, bars top and bottom
        draw_width = target_width
        draw_height = max(1, int(round(target_width / source_aspect)))
    else:
        # Taller source: full height, bars left and right
        draw_height = target_height
        draw_width = max(1, int(round(target_height * source_aspect)))

    offset_x = (target_width - draw_width) // 2
    offset_y = (target_height - draw_height) // 2
    return offset_x, offset_y, draw_width, draw_height


class FrameCapture:
    """
    Capture step of the pipeline.

    Tracks the media time of the last accepted capture for
    de-duplication; call reset() after a seek.
    """

    def __init__(
        self,
        policy: CapturePolicy = CapturePolicy.LETTERBOX,
        min_spacing_s: float = DEFAULT_MIN_SPACING_S,
        stats: Optional[PipelineStats] = None,
    ):
        self.policy = policy
        self.min_spacing_s = min_spacing_s
        self.stats = stats or PipelineStats()

        self._last_frame_time: Optional[float] = None
        self._canvas: Optional[NDArray[np.uint8]] = None

    def reset(self):
        """Forget the last accepted capture time."""
        self._last_frame_time = None

    def release(self):
        """Free the letterbox canvas."""
        self._canvas = None

    def capture(self, surface, target: Optional[TargetSpec]) -> Optional[Frame]:
        """
        Capture the current frame of surface.

        Args:
            surface: Decode surface (may be None)
            target: Active target spec (letterbox canvas size)

        Returns:
            Captured Frame, or None if the tick was skipped
        """
        stats = self.stats

        if surface is None:
            stats.skipped_no_surface += 1
            return None

        if surface.paused or surface.ended:
            stats.skipped_not_playing += 1
            return None

        if surface.ready_state < HAVE_CURRENT_DATA:
            stats.skipped_not_ready += 1
            return None

        source_width = surface.video_width
        source_height = surface.video_height
        if not source_width or not source_height:
            stats.skipped_zero_dimensions += 1
            logger.debug("Invalid source dimensions, skipping frame")
            return None

        timestamp = surface.current_time
        if (
            self._last_frame_time is not None
            and 0 <= timestamp - self._last_frame_time < self.min_spacing_s
        ):
            stats.skipped_too_soon += 1
            return None

        try:
            pixels = surface.read_pixels()
            if pixels is None:
                stats.capture_failures += 1
                return None

            if self.policy is CapturePolicy.LETTERBOX:
                pixels = self._draw_letterboxed(pixels, target)
            else:
                pixels = np.ascontiguousarray(pixels)
        except InvalidTargetError as e:
            stats.skipped_invalid_target += 1
            logger.debug(f"Skipping frame: {e}")
            return None
        except Exception as e:
            stats.capture_failures += 1
            logger.error(f"Error capturing video frame: {e}")
            return None

        self._last_frame_time = timestamp
        height, width = pixels.shape[:2]
        return Frame(pixels=pixels, width=width, height=height, timestamp=timestamp)

    def _draw_letterboxed(
        self,
        pixels: NDArray[np.uint8],
        target: Optional[TargetSpec],
    ) -> NDArray[np.uint8]:
        """Draw pixels centered on a black canvas of the target size."""
        if target is None or not target.width or not target.height:
            raise InvalidTargetError(f"Cannot letterbox into target {target}")

        source_height, source_width = pixels.shape[:2]
        offset_x, offset_y, draw_width, draw_height = letterbox_rect(
            source_width, source_height, target.width, target.height
        )

        shape = (target.height, target.width, 4)
        if self._canvas is None or self._canvas.shape != shape:
            self._canvas = np.empty(shape, dtype=np.uint8)

        canvas = self._canvas
        canvas[:] = 0
        canvas[:, :, 3] = 255  # opaque black

        if (draw_width, draw_height) == (source_width, source_height):
            drawn = pixels
        else:
            drawn = cv2.resize(
                pixels,
                (draw_width, draw_height),
                interpolation=cv2.INTER_LINEAR,
            )
        canvas[offset_y:offset_y + draw_height, offset_x:offset_x + draw_width] = drawn

        # The frame owns its pixels; the canvas is reused next tick
        return canvas.copy()
