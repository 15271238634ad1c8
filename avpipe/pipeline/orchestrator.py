"""
Pipeline Orchestrator.

Owns one media source end to end:

1. Open the decode surface (initialize)
2. Pace captures at the source frame rate
3. Capture a frame from the decode surface
4. Convert it to the active target spec
5. Notify videoFrame listeners
6. Admit the payload into each bound ring buffer

State machine:
    UNINITIALIZED -initialize()-> INITIALIZING -(surface ready)-> READY
    READY/PAUSED/ENDED -play()-> PLAYING -pause()-> PAUSED
    PLAYING -(stream ends)-> ENDED
    any -dispose()-> DISPOSED (terminal, later calls are no-ops)
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Dict, Mapping, Optional, Union

from loguru import logger

from avpipe.audio.audio_router import AudioRouter
from avpipe.buffering.frame_feed import FrameFeed
from avpipe.buffering.ring_buffer import ByteRingBuffer
from avpipe.capture.decode_surface import DecodeSurface, VideoFileSurface
from avpipe.capture.frame_capture import FrameCapture
from avpipe.config import InitializeConfig, PipelineConfig
from avpipe.convert.frame_converter import FrameConverter
from avpipe.core.contracts import (
    HAVE_CURRENT_DATA,
    HAVE_METADATA,
    AudioBinding,
    PipelineState,
    PipelineStats,
    RingBufferBinding,
    TargetSpec,
    VideoFrameEvent,
)
from avpipe.core.errors import (
    AutoplayBlockedError,
    InitializationError,
    InvalidTargetError,
    NotReadyError,
    SourceNotFoundError,
)
from avpipe.pacing.pacing_controller import (
    PacingController,
    estimate_frame_rate,
    frame_rate_to_interval_ms,
)
from avpipe.pipeline.notifier import Notifier


READINESS_POLL_S = 0.1


def _texture_info(texture: Any) -> Mapping[str, Any]:
    """Target metadata recorded on a texture (mpeg texture info)."""
    user_data = getattr(texture, "user_data", None)
    if user_data is None:
        user_data = getattr(texture, "userData", None)
    if user_data is None and isinstance(texture, Mapping):
        user_data = texture.get("user_data", texture.get("userData"))
    user_data = user_data or {}

    info = user_data.get("mpeg_texture_info", user_data.get("mpegTextureInfo"))
    if info is None:
        raise SourceNotFoundError("Texture has no MPEG texture metadata")
    return info


def _source_field(source: Any, name: str) -> Any:
    if isinstance(source, Mapping):
        return source.get(name)
    return getattr(source, name, None)


def _set_source_field(source: Any, name: str, value: Any):
    if isinstance(source, dict):
        source[name] = value
    else:
        setattr(source, name, value)


class AVPipeline:
    """
    Media pipeline for one source.

    Guarantees:
    - All state changes happen on the event loop thread
    - Per-frame failures never stop pacing or reach the caller
    - Setup failures propagate from initialize()/play()/connect_*()
    - No timers or tasks survive stop()/dispose()
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        surface_factory: Optional[Callable[[str], DecodeSurface]] = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        """
        Initialize the pipeline.

        Args:
            config: Pipeline configuration
            surface_factory: Builds a decode surface from a manifest URL
            clock: Monotonic clock in seconds for pacing
        """
        self.config = config or PipelineConfig()
        self._surface_factory = surface_factory or (
            lambda url: VideoFileSurface(url, loop=self.config.loop)
        )

        self._state = PipelineState.UNINITIALIZED
        self._surface: Optional[DecodeSurface] = None
        self._init_task: Optional[asyncio.Task] = None
        self._target: TargetSpec = self.config.default_target

        self.stats = PipelineStats()
        self._capture = FrameCapture(
            policy=self.config.capture_policy,
            min_spacing_s=self.config.min_capture_spacing_s,
            stats=self.stats,
        )
        self._converter = FrameConverter(strip_alpha=self.config.strip_alpha)
        self._feed = FrameFeed()
        self._pacing = PacingController(self._on_pacing_tick, clock=clock)
        self._audio = AudioRouter()

        self._frame_listeners: Notifier[VideoFrameEvent] = Notifier("videoFrame")
        self._ended_listeners: Notifier[None] = Notifier("ended")

        # source_id -> binding / listener handle
        self._bindings: Dict[str, RingBufferBinding] = {}
        self._binding_handles: Dict[str, int] = {}

    # ============================================================
    # PROPERTIES
    # ============================================================

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def surface(self) -> Optional[DecodeSurface]:
        return self._surface

    @property
    def target(self) -> TargetSpec:
        """Target spec captures are converted to."""
        return self._target

    @property
    def bindings(self) -> Dict[str, RingBufferBinding]:
        return dict(self._bindings)

    @property
    def audio_binding(self) -> Optional[AudioBinding]:
        return self._audio.binding

    @property
    def is_pacing(self) -> bool:
        return self._pacing.is_running

    # ============================================================
    # LISTENERS
    # ============================================================

    def add_frame_listener(self, listener: Callable[[VideoFrameEvent], None]) -> int:
        """Register a videoFrame listener. Returns a handle for removal."""
        return self._frame_listeners.add(listener)

    def remove_frame_listener(self, handle: int) -> bool:
        return self._frame_listeners.remove(handle)

    def add_ended_listener(self, listener: Callable[[None], None]) -> int:
        return self._ended_listeners.add(listener)

    # ============================================================
    # LIFECYCLE
    # ============================================================

    async def initialize(self, config: Union[InitializeConfig, Mapping[str, Any], str]):
        """
        Open the media and wait until its video metadata is known.

        Idempotent once READY (or later) was reached.

        Raises:
            InitializationError: open failure, decode error or timeout
        """
        if self._state is PipelineState.DISPOSED or self._state.is_ready:
            return

        if self._init_task is not None:
            # Already initializing: wait for that attempt
            await asyncio.shield(self._init_task)
            return

        init = InitializeConfig.from_value(config)
        if init.texture_requirements is not None:
            self._target = init.texture_requirements

        self._state = PipelineState.INITIALIZING
        logger.info(f"Initializing pipeline: {init.manifest_url}")

        self._init_task = asyncio.ensure_future(self._open_surface(init.manifest_url))
        try:
            await self._init_task
        except asyncio.CancelledError:
            if self._state is PipelineState.DISPOSED:
                raise InitializationError("Pipeline disposed during initialization") from None
            self._abort_initialization()
            raise
        except InitializationError as e:
            logger.error(f"Initialization failed: {e}")
            self._abort_initialization()
            raise
        finally:
            self._init_task = None

        # dispose() may run after the open finished but before we resume
        if self._state is PipelineState.DISPOSED:
            raise InitializationError("Pipeline disposed during initialization")

        self._state = PipelineState.READY
        logger.info(
            f"Pipeline ready: source {self._surface.video_width}x"
            f"{self._surface.video_height}, target {self._target.width}x"
            f"{self._target.height} {self._target.format.value}"
        )

    async def _open_surface(self, url: str):
        surface = self._surface_factory(url)
        self._surface = surface

        try:
            await asyncio.wait_for(surface.open(), timeout=self.config.manifest_timeout_s)
        except asyncio.TimeoutError:
            raise InitializationError(
                f"Timeout loading manifest after {self.config.manifest_timeout_s}s: {url}"
            ) from None
        except InitializationError:
            raise
        except Exception as e:
            raise InitializationError(f"Failed to open {url}: {e}") from e

        try:
            await asyncio.wait_for(
                self._wait_for_ready(surface, HAVE_METADATA),
                timeout=self.config.metadata_timeout_s,
            )
        except asyncio.TimeoutError:
            raise InitializationError(
                f"Timeout waiting for video metadata after {self.config.metadata_timeout_s}s"
            ) from None

    async def _wait_for_ready(self, surface: DecodeSurface, level: int):
        while surface.ready_state < level:
            if surface.error:
                raise InitializationError(f"Video load error: {surface.error}")
            await asyncio.sleep(READINESS_POLL_S)
        if surface.error:
            raise InitializationError(f"Video load error: {surface.error}")

    def _abort_initialization(self):
        if self._surface is not None:
            self._surface.close()
            self._surface = None
        self._state = PipelineState.UNINITIALIZED

    async def play(self):
        """
        Start or resume playback and pacing.

        Raises:
            NotReadyError: called before READY
            InitializationError: media never became playable
            AutoplayBlockedError: playback needs a user gesture first
        """
        if self._state is PipelineState.DISPOSED:
            return
        self._require_ready("play")

        await self._audio.resume()

        try:
            await asyncio.wait_for(
                self._wait_for_ready(self._surface, HAVE_CURRENT_DATA),
                timeout=self.config.media_timeout_s,
            )
        except asyncio.TimeoutError:
            raise InitializationError("Timeout waiting for media") from None

        if self._state is PipelineState.DISPOSED:
            return

        if self._state is PipelineState.ENDED:
            self.seek(0.0)

        try:
            self._surface.play()
        except AutoplayBlockedError:
            logger.warning("Autoplay blocked: waiting for a user gesture")
            raise

        self._state = PipelineState.PLAYING
        logger.info(f"Video playing: time={self._surface.current_time:.3f}s")
        self._start_pacing()

    def pause(self):
        """Pause playback and stop pacing. Safe from any state."""
        if self._state is PipelineState.DISPOSED:
            return

        self._pacing.stop()
        if self._surface is not None:
            self._surface.pause()
        if self._state is PipelineState.PLAYING:
            self._state = PipelineState.PAUSED
            logger.info("Video paused")

    def stop(self):
        """Pause and rewind to the start."""
        if self._state is PipelineState.DISPOSED:
            return
        self.pause()
        self.seek(0.0)

    def seek(self, time_s: float):
        """Move the decode surface position. Does not resume pacing."""
        if self._state is PipelineState.DISPOSED or self._surface is None:
            return
        self._surface.seek(time_s)
        self._capture.reset()

    def get_current_time(self) -> float:
        if self._surface is None:
            return 0.0
        return self._surface.current_time

    def dispose(self):
        """Tear everything down. Later calls are no-ops."""
        if self._state is PipelineState.DISPOSED:
            return

        self._pacing.stop()
        self._state = PipelineState.DISPOSED

        if self._init_task is not None and not self._init_task.done():
            self._init_task.cancel()

        self._converter.release()
        self._capture.release()
        self._feed.release()
        self._audio.close()

        if self._surface is not None:
            self._surface.pause()
            self._surface.close()
            self._surface = None

        self._frame_listeners.clear()
        self._ended_listeners.clear()
        self._bindings.clear()
        self._binding_handles.clear()
        logger.info("Pipeline disposed")

    # ============================================================
    # SOURCE BINDING
    # ============================================================

    def connect_video_texture(self, texture_extension, source_id: str) -> Optional[RingBufferBinding]:
        """
        Bind a texture's ring buffer to this pipeline's frames.

        Rebinding a source id replaces its previous binding. While playing,
        pacing is stopped before the new target is installed and restarted
        afterwards.

        Frames are produced for a single target: the most recently
        connected texture. Bindings of other sources whose size or
        format differ will drop every frame until they are reconnected.

        Raises:
            NotReadyError: called before READY
            SourceNotFoundError: texture, metadata or video source missing
        """
        if self._state is PipelineState.DISPOSED:
            return None
        self._require_ready("connect video texture")

        texture = texture_extension.textures.get(source_id)
        if texture is None:
            available = ", ".join(str(k) for k in texture_extension.textures.keys())
            raise SourceNotFoundError(f"Texture {source_id} not found. Available: {available}")

        target = TargetSpec.from_texture_info(_texture_info(texture))
        if not target.is_valid:
            raise InvalidTargetError(f"Texture {source_id} has invalid dimensions {target}")

        video_source = texture_extension.sources.get(source_id)
        if video_source is None:
            available = ", ".join(str(k) for k in texture_extension.sources.keys())
            raise SourceNotFoundError(f"Video source {source_id} not found. Available: {available}")

        max_frames = int(_source_field(video_source, "max_frames") or self.config.max_frames)
        ring = _source_field(video_source, "ring_buffer")
        if ring is None:
            ring = ByteRingBuffer(max_frames * target.frame_byte_size)
            _set_source_field(video_source, "ring_buffer", ring)

        was_pacing = self._pacing.is_running
        self._pacing.stop()

        previous = self._bindings.get(source_id)
        handle = self._binding_handles.pop(source_id, None)
        if handle is not None:
            self._frame_listeners.remove(handle)

        count = 0
        if previous is not None and previous.ring_buffer is ring:
            if previous.target.frame_byte_size == target.frame_byte_size:
                count = previous.count
            elif hasattr(ring, "clear"):
                ring.clear()

        binding = RingBufferBinding(
            source_id=source_id,
            ring_buffer=ring,
            target=target,
            max_frames=max_frames,
            count=count,
        )
        self._bindings[source_id] = binding
        self._binding_handles[source_id] = self._frame_listeners.add(
            self._feed.make_frame_listener(binding)
        )
        self._target = target

        logger.info(
            f"Video texture connected: {source_id} {target.width}x{target.height} "
            f"{target.format.value} ({target.frame_byte_size} bytes/frame, "
            f"max {max_frames} frames)"
        )

        if was_pacing and self._state is PipelineState.PLAYING:
            self._start_pacing()
        return binding

    def connect_audio_source(self, audio_extension, source_id: str) -> Optional[AudioBinding]:
        """
        Route this pipeline's audio into a spatial audio source.

        Raises:
            NotReadyError: called before READY
            SourceNotFoundError: no audio source under source_id
        """
        if self._state is PipelineState.DISPOSED:
            return None
        self._require_ready("connect audio source")
        return self._audio.connect(audio_extension, source_id, self._surface)

    def _require_ready(self, action: str):
        if not self._state.is_ready:
            raise NotReadyError(f"Cannot {action}: pipeline is {self._state.value}")

    # ============================================================
    # FRAME PRODUCTION
    # ============================================================

    def _start_pacing(self):
        surface = self._surface
        rate = estimate_frame_rate(
            surface.nominal_frame_rate,
            surface.playback_quality(),
            fallback=self.config.fallback_frame_rate,
        )
        self._pacing.start(frame_rate_to_interval_ms(rate, self.config.fallback_frame_rate))

    def _on_pacing_tick(self):
        """Capture, convert and dispatch one frame."""
        self.stats.ticks += 1
        surface = self._surface

        if surface is not None and self._state is PipelineState.PLAYING:
            if surface.error:
                logger.error(f"Video error: {surface.error}")
                self._pacing.stop()
                self._state = PipelineState.PAUSED
                return
            if surface.ended:
                self._handle_ended()
                return

        frame = self._capture.capture(surface, self._target)
        if frame is None:
            return

        target = self._target
        try:
            if FrameConverter.is_passthrough(frame, target):
                payload = frame.pixels.tobytes()
                width, height = frame.width, frame.height
            else:
                payload = self._converter.convert(frame, target)
                width, height = target.width, target.height
                self.stats.frames_converted += 1
        except InvalidTargetError as e:
            self.stats.skipped_invalid_target += 1
            logger.debug(f"Skipping frame: {e}")
            return
        except Exception as e:
            self.stats.capture_failures += 1
            logger.error(f"Error converting video frame: {e}")
            return

        event = VideoFrameEvent(
            data=payload,
            width=width,
            height=height,
            timestamp=frame.timestamp,
        )
        self._frame_listeners.emit(event)
        self.stats.frames_emitted += 1

    def _handle_ended(self):
        self._pacing.stop()
        self._state = PipelineState.ENDED
        logger.info("Video ended")
        self._ended_listeners.emit(None)
