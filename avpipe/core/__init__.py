"""
Core contracts and errors shared by every pipeline component.

Data flow (one direction only):
1. Decode surface
2. Capture
3. Convert
4. Notify listeners
5. Admit into ring buffer
"""

from .contracts import (
    Frame,
    TargetSpec,
    PixelFormat,
    PipelineState,
    CapturePolicy,
    RingBufferBinding,
    AudioBinding,
    AudioRenderType,
    VideoFrameEvent,
    PlaybackQuality,
    PipelineStats,
)
from .errors import (
    PipelineError,
    InitializationError,
    NotReadyError,
    SourceNotFoundError,
    AutoplayBlockedError,
    InvalidTargetError,
)
