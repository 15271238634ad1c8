"""
Frame Converter.

Transforms a captured four-channel frame into a target payload:
1. Strip alpha (RGBA -> RGB) when the color model requires it
2. Resize with linear interpolation to the exact target size
3. Expand / reorder channels to the target pixel format

Aspect ratio is NOT preserved here; letterboxing happens at capture.
"""

from __future__ import annotations

from contextlib import ExitStack
from typing import Dict, Optional, Tuple

import cv2
import numpy as np
from numpy.typing import NDArray
from loguru import logger

from avpipe.core.contracts import Frame, PixelFormat, TargetSpec
from avpipe.core.errors import InvalidTargetError
from avpipe.convert.scratch_pool import ScratchPool


# (source channels, target format) -> cv2 color conversion code.
# Source frames are RGB-ordered; None means the layout already matches.
_COLOR_CODES: Dict[Tuple[int, PixelFormat], Optional[int]] = {
    (4, PixelFormat.RGBA): None,
    (4, PixelFormat.BGRA): cv2.COLOR_RGBA2BGRA,
    (4, PixelFormat.RGB): cv2.COLOR_RGBA2RGB,
    (4, PixelFormat.BGR): cv2.COLOR_RGBA2BGR,
    (4, PixelFormat.GRAY): cv2.COLOR_RGBA2GRAY,
    (3, PixelFormat.RGBA): cv2.COLOR_RGB2RGBA,
    (3, PixelFormat.BGRA): cv2.COLOR_RGB2BGRA,
    (3, PixelFormat.RGB): None,
    (3, PixelFormat.BGR): cv2.COLOR_RGB2BGR,
    (3, PixelFormat.GRAY): cv2.COLOR_RGB2GRAY,
    (1, PixelFormat.RGBA): cv2.COLOR_GRAY2RGBA,
    (1, PixelFormat.BGRA): cv2.COLOR_GRAY2BGRA,
    (1, PixelFormat.RGB): cv2.COLOR_GRAY2RGB,
    (1, PixelFormat.BGR): cv2.COLOR_GRAY2BGR,
    (1, PixelFormat.GRAY): None,
}


def _shape(height: int, width: int, channels: int):
    return (height, width) if channels == 1 else (height, width, channels)


class FrameConverter:
    """
    Stateless-per-call frame converter.

    Guarantees:
    - Output length == target.frame_byte_size
    - Every scratch buffer leased during a call is returned before it exits
    """

    def __init__(self, strip_alpha: bool = True, pool: Optional[ScratchPool] = None):
        """
        Initialize frame converter.

        Args:
            strip_alpha: Work in three channels between read-back and output
            pool: Scratch pool (a private one is created if omitted)
        """
        self.strip_alpha = strip_alpha
        self._pool = pool or ScratchPool()

    @property
    def pool(self) -> ScratchPool:
        return self._pool

    @staticmethod
    def is_passthrough(frame: Frame, target: TargetSpec) -> bool:
        """True if frame already has the target size and layout."""
        return (
            frame.width == target.width
            and frame.height == target.height
            and frame.channels == 4
            and target.format == PixelFormat.RGBA
        )

    def convert(self, frame: Frame, target: Optional[TargetSpec]) -> bytes:
        """
        Convert frame to target.

        Args:
            frame: Captured RGBA frame at source (or letterboxed) size
            target: Consumer target specification

        Returns:
            Payload of exactly target.frame_byte_size bytes

        Raises:
            InvalidTargetError: target is missing or has a zero dimension
        """
        if target is None or not target.width or not target.height:
            raise InvalidTargetError(f"Invalid conversion target: {target}")

        src = np.ascontiguousarray(frame.pixels)
        height, width = src.shape[:2]

        with ExitStack() as stack:
            work = src

            # Step 1: strip alpha
            if self.strip_alpha and work.ndim == 3 and work.shape[2] == 4:
                rgb = stack.enter_context(self._pool.lease((height, width, 3)))
                work = cv2.cvtColor(work, cv2.COLOR_RGBA2RGB, dst=rgb)

            # Step 2: resize
            if (width, height) != (target.width, target.height):
                channels = 1 if work.ndim == 2 else work.shape[2]
                resized = stack.enter_context(
                    self._pool.lease(_shape(target.height, target.width, channels))
                )
                work = cv2.resize(
                    work,
                    (target.width, target.height),
                    dst=resized,
                    interpolation=cv2.INTER_LINEAR,
                )

            # Step 3: target channel layout
            channels = 1 if work.ndim == 2 else work.shape[2]
            code = _COLOR_CODES[(channels, target.format)]
            if code is not None:
                out = stack.enter_context(self._pool.lease(target.shape))
                work = cv2.cvtColor(work, code, dst=out)

            payload = work.tobytes()

        if len(payload) != target.frame_byte_size:
            # Only reachable with a malformed source frame
            raise InvalidTargetError(
                f"Converted payload is {len(payload)} bytes, "
                f"expected {target.frame_byte_size}"
            )
        return payload

    def release(self):
        """Free pooled scratch buffers."""
        self._pool.release()
        logger.debug("Frame converter scratch released")
