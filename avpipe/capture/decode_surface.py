"""
Decode Surfaces.

A decode surface is the live image of the currently playing media frame.
The pipeline only reads from it; segment fetching and bitrate selection
belong to whatever player feeds it.

To add a new surface:
1. Inherit from DecodeSurface
2. Implement the abstract members
3. Pass a factory to AVPipeline(surface_factory=...)
"""

from __future__ import annotations

import asyncio
import time
import threading
from abc import ABC, abstractmethod
from typing import Optional

import cv2
import numpy as np
from numpy.typing import NDArray
from loguru import logger

from avpipe.core.contracts import (
    HAVE_ENOUGH_DATA,
    HAVE_NOTHING,
    PlaybackQuality,
)
from avpipe.core.errors import InitializationError


class DecodeSurface(ABC):
    """Abstract base class for decode surfaces.

    Attributes:
        ready_state: Readiness level (HAVE_NOTHING .. HAVE_ENOUGH_DATA)
        paused: True unless playing
        ended: True once the stream played to its end
        current_time: Media position in seconds
        video_width / video_height: Decoded frame size (0 until known)
        error: Decode error message, if any
    """

    error: Optional[str] = None

    @abstractmethod
    async def open(self) -> None:
        """Start loading the media. Raises on an unrecoverable open error."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the decoder and all resources."""
        pass

    @property
    @abstractmethod
    def ready_state(self) -> int:
        pass

    @property
    @abstractmethod
    def paused(self) -> bool:
        pass

    @property
    @abstractmethod
    def ended(self) -> bool:
        pass

    @property
    @abstractmethod
    def current_time(self) -> float:
        pass

    @property
    @abstractmethod
    def video_width(self) -> int:
        pass

    @property
    @abstractmethod
    def video_height(self) -> int:
        pass

    @abstractmethod
    def play(self) -> None:
        """Start or resume playback.

        Raises:
            AutoplayBlockedError: playback requires a user gesture
        """
        pass

    @abstractmethod
    def pause(self) -> None:
        pass

    @abstractmethod
    def seek(self, time_s: float) -> None:
        pass

    @abstractmethod
    def read_pixels(self) -> Optional[NDArray[np.uint8]]:
        """Current frame as H x W x 4 RGBA at native resolution."""
        pass

    @property
    def nominal_frame_rate(self) -> Optional[float]:
        """Container frame rate, if known."""
        return None

    def playback_quality(self) -> PlaybackQuality:
        return PlaybackQuality()


class VideoFileSurface(DecodeSurface):
    """Decode surface backed by cv2.VideoCapture.

    Opens anything the local FFmpeg build can: files, http(s) URLs and
    DASH/HLS manifests. Media time advances with the wall clock while
    playing; read_pixels decodes forward until it reaches that time.
    """

    def __init__(self, url: str, loop: bool = False):
        """Initialize video file surface.

        Args:
            url: File path or stream URL
            loop: Restart from zero instead of ending
        """
        self.url = url
        self.loop = loop
        self.error = None

        self._cap: Optional[cv2.VideoCapture] = None
        self._lock = threading.Lock()
        self._ready_state = HAVE_NOTHING

        self._fps: Optional[float] = None
        self._duration: float = 0.0
        self._width = 0
        self._height = 0

        # Playback clock
        self._paused = True
        self._ended = False
        self._base_time = 0.0
        self._play_started: Optional[float] = None

        # Decoder position
        self._frame: Optional[NDArray[np.uint8]] = None
        self._frame_time = -1.0
        self._decoded = 0
        self._dropped = 0

        # Span since the last seek, for frame rate estimates
        self._span_start = 0.0
        self._span_frames = 0

        self._closed = False

    async def open(self) -> None:
        await asyncio.to_thread(self._open_blocking)

    def _open_blocking(self):
        cap = cv2.VideoCapture(self.url)
        if not cap.isOpened():
            cap.release()
            self.error = f"Could not open media: {self.url}"
            raise InitializationError(self.error)

        fps = cap.get(cv2.CAP_PROP_FPS)
        frame_count = cap.get(cv2.CAP_PROP_FRAME_COUNT)

        with self._lock:
            if self._closed:
                # close() ran while the open was in flight
                cap.release()
                logger.debug(f"Decode surface closed during open: {self.url}")
                return

            self._cap = cap
            self._fps = fps if fps and fps > 0 else None
            self._duration = frame_count / fps if self._fps and frame_count > 0 else 0.0
            self._decode_next()

            if self._frame is None:
                self.error = f"No decodable video frames in {self.url}"
                raise InitializationError(self.error)

            self._height, self._width = self._frame.shape[:2]
            self._ready_state = HAVE_ENOUGH_DATA

        logger.info(
            f"Decode surface opened: {self.url} "
            f"{self._width}x{self._height} @ {self._fps or 'unknown'}fps, "
            f"duration={self._duration:.1f}s"
        )

    def close(self) -> None:
        with self._lock:
            self._closed = True
            if self._cap is not None:
                self._cap.release()
                self._cap = None
            self._frame = None
            self._paused = True
            self._ready_state = HAVE_NOTHING
        logger.debug(f"Decode surface closed: {self.url}")

    @property
    def ready_state(self) -> int:
        return self._ready_state

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def ended(self) -> bool:
        # Reading current_time latches the end of stream
        self.current_time
        return self._ended

    @property
    def current_time(self) -> float:
        t = self._base_time
        if not self._paused and self._play_started is not None:
            t += time.monotonic() - self._play_started

        if self._duration > 0 and t >= self._duration:
            if self.loop:
                self.seek(0.0)
                return 0.0
            self._end_of_stream(self._duration)
            return self._duration
        return t

    @property
    def video_width(self) -> int:
        return self._width

    @property
    def video_height(self) -> int:
        return self._height

    @property
    def nominal_frame_rate(self) -> Optional[float]:
        return self._fps

    def playback_quality(self) -> PlaybackQuality:
        return PlaybackQuality(
            total_video_frames=self._decoded,
            dropped_video_frames=self._dropped,
            played_video_frames=self._span_frames,
            played_seconds=max(0.0, self.current_time - self._span_start),
        )

    def play(self) -> None:
        if self._ended:
            self.seek(0.0)
        if self._paused:
            self._paused = False
            self._play_started = time.monotonic()

    def pause(self) -> None:
        if not self._paused:
            self._base_time = self.current_time
            self._paused = True
            self._play_started = None

    def seek(self, time_s: float) -> None:
        time_s = max(0.0, float(time_s))
        if self._duration > 0:
            time_s = min(time_s, self._duration)

        with self._lock:
            self._base_time = time_s
            self._ended = False
            if not self._paused:
                self._play_started = time.monotonic()
            self._span_start = time_s
            self._span_frames = 0
            if self._cap is not None:
                self._cap.set(cv2.CAP_PROP_POS_MSEC, time_s * 1000.0)
                self._frame_time = -1.0
                self._decode_next()

    def read_pixels(self) -> Optional[NDArray[np.uint8]]:
        now = self.current_time
        with self._lock:
            if self._cap is None:
                return None

            # Decode forward to the playback clock, counting skipped frames
            skipped = 0
            while self._frame_time + self._frame_interval <= now:
                if not self._decode_next():
                    break
                skipped += 1
            if skipped > 1:
                self._dropped += skipped - 1

            return self._frame

    @property
    def _frame_interval(self) -> float:
        return 1.0 / (self._fps or 30.0)

    def _decode_next(self) -> bool:
        """Decode one frame. Caller holds the lock."""
        ret, bgr = self._cap.read()
        if not ret or bgr is None:
            if self._frame is not None and self._duration <= 0:
                # Live/unknown-length stream ran dry
                self._end_of_stream(max(self._frame_time, 0.0))
            return False

        self._frame = cv2.cvtColor(bgr, cv2.COLOR_BGR2RGBA)
        pos_ms = self._cap.get(cv2.CAP_PROP_POS_MSEC)
        if pos_ms and pos_ms > 0:
            self._frame_time = pos_ms / 1000.0
        else:
            self._frame_time = self._frame_time + self._frame_interval if self._frame_time >= 0 else 0.0
        self._decoded += 1
        self._span_frames += 1
        return True

    def _end_of_stream(self, at: float):
        if not self._ended:
            logger.info(f"End of stream reached: {self.url}")
        self._ended = True
        self._paused = True
        self._base_time = at
        self._play_started = None
