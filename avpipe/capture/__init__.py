"""
Capture Module.

Responsibilities:
- Decode surface abstraction and OpenCV-backed implementation
- Per-tick frame capture with guards and capture policies
"""

from .decode_surface import DecodeSurface, VideoFileSurface
from .frame_capture import FrameCapture, letterbox_rect
