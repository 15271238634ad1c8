"""
Buffering Module.

Responsibilities:
- Byte ring buffer (reference implementation of the consumer contract)
- Overwrite-oldest admission of frames into a bound buffer
"""

from .ring_buffer import ByteRingBuffer
from .frame_feed import FrameFeed
