"""
Audio Router.

Routes the decode surface's audio into the host spatial audio graph:

    media tap -> gain -> panner (Object)        -> destination
    media tap -> gain -> HOA renderer (HOA)     -> destination

The media tap is created once per router and reused when rebinding.
Node implementations belong to the host audio subsystem.
"""

from __future__ import annotations

import inspect
from typing import Any, Optional

from loguru import logger

from avpipe.core.contracts import AudioBinding, AudioRenderType
from avpipe.core.errors import SourceNotFoundError


def _lookup(descriptor: Any, *names: str) -> Any:
    """Read the first present attribute (or mapping key) of descriptor."""
    for name in names:
        if isinstance(descriptor, dict):
            value = descriptor.get(name)
        else:
            value = getattr(descriptor, name, None)
        if value is not None:
            return value
    return None


class AudioRouter:
    """
    Binds one pipeline's audio output into a spatial audio source.

    Rules:
    - Exactly one media tap, created lazily, reused on rebind
    - At most one active binding
    - close() detaches everything this router connected
    """

    def __init__(self):
        self._audio_context = None
        self._media_tap = None
        self._binding: Optional[AudioBinding] = None

    @property
    def binding(self) -> Optional[AudioBinding]:
        return self._binding

    @property
    def audio_context(self):
        return self._audio_context

    def connect(self, audio_extension, source_id: str, media) -> AudioBinding:
        """
        Bind media audio into the source registered under source_id.

        Args:
            audio_extension: Object exposing audio_context and sources
            source_id: Audio source id
            media: Decode surface providing the audio

        Returns:
            The installed AudioBinding

        Raises:
            ValueError: invalid parameters or malformed source descriptor
            SourceNotFoundError: no source registered under source_id
        """
        if audio_extension is None or not source_id:
            raise ValueError(
                f"Invalid audio connection parameters: "
                f"extension={audio_extension is not None}, source_id={source_id!r}"
            )

        source = audio_extension.sources.get(source_id)
        if source is None:
            available = ", ".join(str(k) for k in audio_extension.sources.keys())
            raise SourceNotFoundError(
                f"Audio source '{source_id}' not found. Available: {available}"
            )

        render_type = AudioRenderType.parse(_lookup(source, "type", "render_type") or "Object")
        gain = _lookup(source, "gain_node", "gainNode", "gain")
        if render_type is AudioRenderType.HOA:
            spatial = _lookup(source, "hoa_renderer", "ambisonics_node", "hoaRenderer", "renderer")
        else:
            spatial = _lookup(source, "panner_node", "panner", "pannerNode")

        if gain is None or spatial is None:
            raise ValueError(
                f"Audio source '{source_id}' is missing its gain or "
                f"{render_type.value} node"
            )

        if self._audio_context is None:
            self._audio_context = audio_extension.audio_context

        if self._media_tap is None:
            self._media_tap = self._audio_context.create_media_element_source(media)
        elif self._binding is not None:
            logger.info(
                f"Rebinding audio from '{self._binding.source_id}' to '{source_id}'"
            )
            self._media_tap.disconnect()

        self._media_tap.connect(gain)
        gain.connect(spatial)
        spatial.connect(self._audio_context.destination)

        self._binding = AudioBinding(
            source_id=source_id,
            render_type=render_type,
            nodes={"tap": self._media_tap, "gain": gain, "spatial": spatial},
        )

        logger.info(
            f"Audio connection established: source={source_id} "
            f"type={render_type.value} context={getattr(self._audio_context, 'state', '?')} "
            f"sample_rate={getattr(self._audio_context, 'sample_rate', '?')}"
        )
        return self._binding

    async def resume(self) -> bool:
        """Resume a suspended audio context. Returns True if resumed."""
        context = self._audio_context
        if context is None or getattr(context, "state", None) != "suspended":
            return False

        result = context.resume()
        if inspect.isawaitable(result):
            await result
        logger.info(f"Audio context resumed: {getattr(context, 'state', '?')}")
        return True

    def close(self):
        """Disconnect the media tap and drop the binding."""
        if self._media_tap is not None:
            try:
                self._media_tap.disconnect()
            except Exception as e:
                logger.warning(f"Error disconnecting audio tap: {e}")
        self._media_tap = None
        self._binding = None
        self._audio_context = None
