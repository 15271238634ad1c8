"""
Conversion Module.

Converts captured frames to a consumer's target size and pixel format.
"""

from .frame_converter import FrameConverter
from .scratch_pool import ScratchPool
