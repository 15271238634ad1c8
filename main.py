#!/usr/bin/env python3
"""
AV Pipeline - live media stream into a rolling frame buffer

Main entry point. Plays a stream headless, feeds converted frames into an
in-memory ring buffer and drains it from a separate consumer coroutine
(standing in for a texture uploader).

Usage:
    python main.py --url URL [--config settings.yaml] [--width W --height H]
                   [--format RGBA] [--max-frames N] [--policy letterbox|stretch]
                   [--duration SECONDS]
"""

from __future__ import annotations

import asyncio
import sys
import time
from pathlib import Path
from types import SimpleNamespace
from typing import Optional

import numpy as np
from loguru import logger

from avpipe.config import PipelineConfig, load_config, parse_args
from avpipe.core.contracts import RingBufferBinding
from avpipe.core.errors import AutoplayBlockedError, PipelineError
from avpipe.pipeline.orchestrator import AVPipeline


SOURCE_ID = "video0"


# ============================================================
# LOGGING CONFIGURATION
# ============================================================

def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None):
    """Configure logging."""
    logger.remove()  # Remove default handler

    # Console output with colors
    logger.add(
        sys.stderr,
        level=log_level,
        format="<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{module}</cyan>:<cyan>{line}</cyan> | <level>{message}</level>",
        colorize=True,
    )

    # File output
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            level="DEBUG",
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {module}:{line} | {message}",
            rotation="10 MB",
            retention="7 days",
        )


# ============================================================
# TEXTURE CONSUMER
# ============================================================

def build_texture_extension(config: PipelineConfig) -> SimpleNamespace:
    """In-memory texture extension with one video texture."""
    target = config.default_target
    texture = SimpleNamespace(user_data={
        "mpeg_texture_info": {
            "width": target.width,
            "height": target.height,
            "format": target.format.value,
            "frameSize": target.frame_byte_size,
        }
    })
    source = SimpleNamespace(ring_buffer=None, max_frames=config.max_frames)
    return SimpleNamespace(textures={SOURCE_ID: texture}, sources={SOURCE_ID: source})


async def drain(binding: RingBufferBinding, fps: float, stop: asyncio.Event) -> int:
    """Consume frames at fps, as a texture uploader would."""
    frame = np.empty(binding.target.frame_byte_size, dtype=np.uint8)
    uploaded = 0

    while not stop.is_set():
        await asyncio.sleep(1.0 / fps)
        if binding.count <= 0:
            continue
        if binding.ring_buffer.pop(frame) == frame.size:
            binding.count -= 1
            uploaded += 1
    return uploaded


# ============================================================
# MAIN APPLICATION
# ============================================================

async def run(args) -> int:
    config = load_config(args)
    pipeline = AVPipeline(config)
    extension = build_texture_extension(config)
    ended = asyncio.Event()
    pipeline.add_ended_listener(lambda _: ended.set())

    try:
        await pipeline.initialize({"manifest_url": args.url})
        binding = pipeline.connect_video_texture(extension, SOURCE_ID)
        await pipeline.play()
    except AutoplayBlockedError as e:
        logger.error(f"Playback needs a user gesture: {e}")
        pipeline.dispose()
        return 2
    except PipelineError as e:
        logger.error(f"Pipeline setup failed: {e}")
        pipeline.dispose()
        return 1

    stop = asyncio.Event()
    consumer = asyncio.create_task(drain(binding, fps=20.0, stop=stop))
    start = time.perf_counter()

    try:
        await asyncio.wait_for(ended.wait(), timeout=args.duration)
    except asyncio.TimeoutError:
        pass
    finally:
        stop.set()
        uploaded = await consumer
        elapsed = time.perf_counter() - start
        stats = pipeline.stats
        pipeline.dispose()

    logger.info(
        f"Played {elapsed:.1f}s: emitted={stats.frames_emitted} "
        f"({stats.frames_emitted / max(elapsed, 1e-6):.1f}fps) "
        f"skipped={stats.frames_skipped} admitted={binding.frames_admitted} "
        f"evicted={binding.frames_evicted} dropped={binding.frames_dropped} "
        f"uploaded={uploaded}"
    )
    return 0


# ============================================================
# ENTRY POINT
# ============================================================

def main():
    """Main entry point."""
    args = parse_args()

    # Setup logging
    setup_logging(args.log_level, args.log_file)

    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")


if __name__ == "__main__":
    main()
