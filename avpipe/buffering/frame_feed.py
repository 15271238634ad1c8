"""
Frame Feed.

Admits converted frames into a bound ring buffer with an
overwrite-oldest policy:
- Size / dimension mismatches are dropped, never resized
- When the binding is full, exactly one frame is evicted first
- When the ring still lacks room for a whole frame, more are evicted;
  a frame that cannot fit is dropped, so only whole frames are stored
- Failures are logged and contained
"""

from __future__ import annotations

from typing import Callable, Optional, Union

import numpy as np
from numpy.typing import NDArray
from loguru import logger

from avpipe.core.contracts import RingBufferBinding, VideoFrameEvent


Payload = Union[bytes, bytearray, memoryview, NDArray[np.uint8]]


def _payload_length(payload: Payload) -> int:
    if isinstance(payload, np.ndarray):
        return int(payload.nbytes)
    if isinstance(payload, memoryview):
        return payload.nbytes
    return len(payload)


class FrameFeed:
    """
    Producer side of a ring buffer binding.

    The buffer is treated as an opaque byte store; resident frame count is
    tracked on the binding.
    """

    def __init__(self):
        # Reused eviction scratch, keyed by frame size
        self._discard: Optional[NDArray[np.uint8]] = None

    def admit(
        self,
        binding: RingBufferBinding,
        payload: Payload,
        width: int,
        height: int,
    ) -> bool:
        """
        Push one frame into the binding's buffer.

        Args:
            binding: Target binding
            payload: Frame bytes in the binding's target format
            width: Payload width in pixels
            height: Payload height in pixels

        Returns:
            True if the frame was admitted, False if it was dropped
        """
        ring = binding.ring_buffer
        target = binding.target

        if ring is None:
            return self._drop(binding, "no ring buffer attached")

        size = _payload_length(payload)
        if size != target.frame_byte_size:
            return self._drop(
                binding,
                f"payload is {size} bytes, expected {target.frame_byte_size}",
            )

        if width != target.width or height != target.height:
            return self._drop(
                binding,
                f"frame is {width}x{height}, expected {target.width}x{target.height}",
            )

        try:
            if binding.count >= binding.max_frames:
                self._evict_oldest(binding)

            # A ring smaller than max_frames frames fills up first
            while ring.available_write() < size and binding.count > 0:
                self._evict_oldest(binding)

            free = ring.available_write()
            if free < size:
                return self._drop(
                    binding,
                    f"ring buffer has {free} free bytes, frame needs {size} "
                    f"(capacity {ring.capacity})",
                )

            written = ring.push(payload)
        except Exception as e:
            return self._drop(binding, f"ring buffer error: {e}")

        if written != size:
            return self._drop(binding, f"short write into ring buffer: {written}/{size} bytes")

        binding.count += 1
        binding.frames_admitted += 1
        return True

    def _evict_oldest(self, binding: RingBufferBinding):
        """Pop and discard exactly one frame-worth of bytes."""
        size = binding.target.frame_byte_size
        if self._discard is None or self._discard.size != size:
            self._discard = np.empty(size, dtype=np.uint8)

        binding.ring_buffer.pop(self._discard)
        binding.count -= 1
        binding.frames_evicted += 1

    def _drop(self, binding: RingBufferBinding, reason: str) -> bool:
        binding.frames_dropped += 1
        logger.warning(f"[{binding.source_id}] Frame dropped: {reason}")
        return False

    def make_frame_listener(
        self,
        binding: RingBufferBinding,
    ) -> Callable[[VideoFrameEvent], None]:
        """Listener that admits every videoFrame event into binding."""

        def on_video_frame(event: VideoFrameEvent):
            self.admit(binding, event.data, event.width, event.height)

        on_video_frame.binding = binding
        return on_video_frame

    def release(self):
        """Free the eviction scratch."""
        self._discard = None
