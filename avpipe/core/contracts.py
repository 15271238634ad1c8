"""
Core data contracts for the AV frame pipeline.

All components exchange these types:
- Frames captured from the decode surface
- Target specifications supplied by the texture consumer
- Ring buffer bindings owned by the orchestrator
- Audio bindings into the spatial audio graph
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Protocol, Union, runtime_checkable

import numpy as np
from numpy.typing import NDArray


# ============================================================
# ENUMERATIONS
# ============================================================

class PixelFormat(Enum):
    """Pixel layouts a texture consumer may request."""
    RGBA = "RGBA"
    BGRA = "BGRA"
    RGB = "RGB"
    BGR = "BGR"
    GRAY = "GRAY"

    @property
    def channels(self) -> int:
        return _CHANNELS[self]

    @property
    def bytes_per_pixel(self) -> int:
        # All supported formats are 8 bits per channel
        return _CHANNELS[self]

    @property
    def has_alpha(self) -> bool:
        return self in (PixelFormat.RGBA, PixelFormat.BGRA)

    @classmethod
    def parse(cls, value: Union[str, "PixelFormat"]) -> "PixelFormat":
        if isinstance(value, PixelFormat):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            available = ", ".join(f.value for f in cls)
            raise ValueError(f"Unknown pixel format '{value}'. Available: {available}")


_CHANNELS = {
    PixelFormat.RGBA: 4,
    PixelFormat.BGRA: 4,
    PixelFormat.RGB: 3,
    PixelFormat.BGR: 3,
    PixelFormat.GRAY: 1,
}


class PipelineState(Enum):
    """Lifecycle states of one pipeline instance."""
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    PLAYING = "playing"
    PAUSED = "paused"
    ENDED = "ended"
    DISPOSED = "disposed"

    @property
    def is_ready(self) -> bool:
        """True once READY (or any later non-terminal state) was reached."""
        return self in (
            PipelineState.READY,
            PipelineState.PLAYING,
            PipelineState.PAUSED,
            PipelineState.ENDED,
        )


class CapturePolicy(Enum):
    """How the decode surface is drawn before read-back."""
    LETTERBOX = "letterbox"  # aspect-preserving, black padding, target dims
    STRETCH = "stretch"      # native source resolution


class AudioRenderType(Enum):
    """Spatial rendering mode of an audio source."""
    OBJECT = "Object"
    HOA = "HOA"

    @classmethod
    def parse(cls, value: Union[str, "AudioRenderType"]) -> "AudioRenderType":
        if isinstance(value, AudioRenderType):
            return value
        text = str(value).strip().lower()
        if text in ("object", "point"):
            return cls.OBJECT
        if text in ("hoa", "higherorderambisonics", "higher_order_ambisonics"):
            return cls.HOA
        raise ValueError(f"Unknown audio source type '{value}'")


# Readiness levels reported by a decode surface (HTMLMediaElement numbering)
HAVE_NOTHING = 0
HAVE_METADATA = 1
HAVE_CURRENT_DATA = 2
HAVE_FUTURE_DATA = 3
HAVE_ENOUGH_DATA = 4


# ============================================================
# CORE DATA STRUCTURES
# ============================================================

@dataclass(frozen=True)
class Frame:
    """
    One captured frame.

    width/height always describe what was drawn from the decode surface,
    not the consumer's target.
    """
    pixels: NDArray[np.uint8]  # H x W x 4 (RGBA)
    width: int
    height: int
    timestamp: float  # seconds of media time

    @property
    def channels(self) -> int:
        return 1 if self.pixels.ndim == 2 else int(self.pixels.shape[2])


@dataclass(frozen=True)
class TargetSpec:
    """
    Output contract required by a texture consumer.

    frame_byte_size must equal width * height * bytes_per_pixel(format).
    """
    width: int
    height: int
    format: PixelFormat = PixelFormat.RGBA
    frame_byte_size: int = -1

    def __post_init__(self):
        fmt = PixelFormat.parse(self.format)
        object.__setattr__(self, "format", fmt)
        expected = int(self.width) * int(self.height) * fmt.bytes_per_pixel
        if self.frame_byte_size < 0:
            object.__setattr__(self, "frame_byte_size", expected)
        elif self.frame_byte_size != expected:
            raise ValueError(
                f"frame_byte_size {self.frame_byte_size} does not match "
                f"{self.width}x{self.height} {fmt.value} ({expected} bytes)"
            )

    @classmethod
    def for_dimensions(
        cls,
        width: int,
        height: int,
        fmt: Union[str, PixelFormat] = PixelFormat.RGBA,
    ) -> "TargetSpec":
        return cls(width=int(width), height=int(height), format=PixelFormat.parse(fmt))

    @classmethod
    def from_texture_info(cls, info: Mapping[str, Any]) -> "TargetSpec":
        """Build a spec from texture metadata (mpeg texture info style keys)."""
        size = info.get("frame_byte_size", info.get("frameSize", -1))
        return cls(
            width=int(info.get("width", 0)),
            height=int(info.get("height", 0)),
            format=PixelFormat.parse(info.get("format", "RGBA")),
            frame_byte_size=int(size) if size is not None else -1,
        )

    @property
    def shape(self):
        """numpy shape of one frame in this spec."""
        if self.format.channels == 1:
            return (self.height, self.width)
        return (self.height, self.width, self.format.channels)

    @property
    def is_valid(self) -> bool:
        return self.width > 0 and self.height > 0


@dataclass
class RingBufferBinding:
    """
    Association between a source id and a ring buffer.

    count and max_frames are tracked here by the producer, not by the
    buffer itself.
    """
    source_id: str
    ring_buffer: Optional["RingBuffer"]
    target: TargetSpec
    max_frames: int = 3
    count: int = 0

    # Admission counters
    frames_admitted: int = 0
    frames_evicted: int = 0
    frames_dropped: int = 0


@dataclass
class AudioBinding:
    """Route from the pipeline's audio tap into a spatial audio source."""
    source_id: str
    render_type: AudioRenderType
    nodes: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class VideoFrameEvent:
    """Payload of the videoFrame notification."""
    data: bytes
    width: int
    height: int
    timestamp: float


@dataclass(frozen=True)
class PlaybackQuality:
    """Decode statistics reported by the decode surface.

    played_video_frames / played_seconds cover only the span since the
    last seek (or open), so their ratio is a usable frame rate.
    """
    total_video_frames: int = 0
    dropped_video_frames: int = 0
    played_video_frames: int = 0
    played_seconds: float = 0.0


@dataclass
class PipelineStats:
    """Counters for capture ticks."""
    ticks: int = 0
    frames_emitted: int = 0
    frames_converted: int = 0
    skipped_no_surface: int = 0
    skipped_not_playing: int = 0
    skipped_not_ready: int = 0
    skipped_zero_dimensions: int = 0
    skipped_too_soon: int = 0
    skipped_invalid_target: int = 0
    capture_failures: int = 0

    @property
    def frames_skipped(self) -> int:
        return (
            self.skipped_no_surface
            + self.skipped_not_playing
            + self.skipped_not_ready
            + self.skipped_zero_dimensions
            + self.skipped_too_soon
            + self.skipped_invalid_target
            + self.capture_failures
        )


# ============================================================
# EXTERNAL COLLABORATOR PROTOCOLS
# ============================================================

@runtime_checkable
class RingBuffer(Protocol):
    """Fixed-capacity single-producer/single-consumer byte store."""

    @property
    def capacity(self) -> int: ...

    def push(self, data) -> int: ...

    def pop(self, destination) -> int: ...

    def available_write(self) -> int: ...


class AudioNode(Protocol):
    """A node of the host audio graph."""

    def connect(self, destination: "AudioNode") -> Any: ...

    def disconnect(self) -> None: ...


class AudioContext(Protocol):
    """The host audio graph's context."""

    state: str
    sample_rate: int
    destination: AudioNode

    def create_media_element_source(self, media: Any) -> AudioNode: ...

    def resume(self) -> Any: ...


class TextureExtension(Protocol):
    """Scene extension exposing video textures and their sources by id."""

    textures: Mapping[str, Any]
    sources: Mapping[str, Any]


class AudioExtension(Protocol):
    """Scene extension exposing spatial audio sources by id."""

    audio_context: AudioContext
    sources: Mapping[str, Any]
