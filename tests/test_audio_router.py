from __future__ import annotations

import asyncio

import pytest

from avpipe.audio.audio_router import AudioRouter
from avpipe.core.contracts import AudioRenderType
from avpipe.core.errors import SourceNotFoundError
from conftest import FakeAudioContext, FakeNode, make_audio_extension


MEDIA = object()


def test_object_source_routes_through_panner():
    extension = make_audio_extension()
    router = AudioRouter()

    binding = router.connect(extension, "speaker", MEDIA)

    source = extension.sources["speaker"]
    tap = binding.nodes["tap"]
    assert binding.render_type is AudioRenderType.OBJECT
    assert tap.media is MEDIA
    assert tap.outputs == [source.gain_node]
    assert source.gain_node.outputs == [source.panner_node]
    assert source.panner_node.outputs == [extension.audio_context.destination]


def test_hoa_source_routes_through_renderer():
    extension = make_audio_extension()
    binding = AudioRouter().connect(extension, "ambience", MEDIA)

    source = extension.sources["ambience"]
    assert binding.render_type is AudioRenderType.HOA
    assert binding.nodes["spatial"] is source.hoa_renderer
    assert source.hoa_renderer.outputs == [extension.audio_context.destination]


def test_mapping_descriptors_are_accepted():
    extension = make_audio_extension()
    extension.sources["dict"] = {"type": "object", "gainNode": FakeNode("g"), "pannerNode": FakeNode("p")}
    binding = AudioRouter().connect(extension, "dict", MEDIA)
    assert binding.nodes["spatial"].name == "p"


def test_unknown_source_raises():
    with pytest.raises(SourceNotFoundError, match="nowhere"):
        AudioRouter().connect(make_audio_extension(), "nowhere", MEDIA)


def test_descriptor_without_nodes_is_rejected():
    extension = make_audio_extension()
    extension.sources["bare"] = {"type": "HOA", "gain_node": FakeNode("g")}
    with pytest.raises(ValueError):
        AudioRouter().connect(extension, "bare", MEDIA)


def test_rebind_reuses_the_media_tap():
    extension = make_audio_extension()
    router = AudioRouter()

    first = router.connect(extension, "speaker", MEDIA)
    second = router.connect(extension, "ambience", MEDIA)

    assert len(extension.audio_context.taps) == 1
    assert first.nodes["tap"] is second.nodes["tap"]
    assert second.nodes["tap"].disconnects == 1
    assert second.nodes["tap"].outputs == [extension.sources["ambience"].gain_node]
    assert router.binding is second


def test_close_disconnects_tap():
    extension = make_audio_extension()
    router = AudioRouter()
    tap = router.connect(extension, "speaker", MEDIA).nodes["tap"]

    router.close()

    assert tap.disconnects == 1
    assert router.binding is None
    assert router.audio_context is None


def test_resume_only_when_suspended():
    context = FakeAudioContext(state="suspended")
    router = AudioRouter()

    assert not asyncio.run(router.resume())

    router.connect(make_audio_extension(context), "speaker", MEDIA)
    assert asyncio.run(router.resume())
    assert context.state == "running"
    assert not asyncio.run(router.resume())
