"""
Configuration module for the AV frame pipeline.

Settings come from (lowest to highest priority):
1. PipelineConfig defaults
2. An optional YAML settings file (--config)
3. Command-line arguments
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml
from loguru import logger

from avpipe.core.contracts import CapturePolicy, PixelFormat, TargetSpec


DEFAULT_TARGET = TargetSpec.for_dimensions(640, 360, PixelFormat.RGBA)


@dataclass
class PipelineConfig:
    """Configuration for one pipeline instance.

    Attributes:
        max_frames: Resident frame cap for each ring buffer binding
        capture_policy: LETTERBOX (aspect-preserving) or STRETCH
        strip_alpha: Convert through three channels
        min_capture_spacing_s: Minimum media time between accepted captures
        fallback_frame_rate: Used when the source rate is unknown
        manifest_timeout_s: Max wait for the media to open
        metadata_timeout_s: Max wait for video dimensions
        media_timeout_s: Max wait for decodable data before play
        loop: Restart the stream instead of ending
        default_target: Capture target until a texture is connected
    """
    max_frames: int = 3
    capture_policy: CapturePolicy = CapturePolicy.LETTERBOX
    strip_alpha: bool = True
    min_capture_spacing_s: float = 1.0 / 60.0
    fallback_frame_rate: float = 30.0

    # Setup timeouts
    manifest_timeout_s: float = 30.0
    metadata_timeout_s: float = 10.0
    media_timeout_s: float = 30.0

    loop: bool = False
    default_target: TargetSpec = field(default_factory=lambda: DEFAULT_TARGET)

    def __post_init__(self):
        if isinstance(self.capture_policy, str):
            self.capture_policy = CapturePolicy(self.capture_policy.lower())
        if isinstance(self.default_target, Mapping):
            self.default_target = TargetSpec.from_texture_info(self.default_target)
        if self.max_frames < 1:
            raise ValueError(f"max_frames must be >= 1, got {self.max_frames}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PipelineConfig":
        """Build a config from a mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {sorted(unknown)}")
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class InitializeConfig:
    """Arguments of AVPipeline.initialize()."""
    manifest_url: str
    texture_requirements: Optional[TargetSpec] = None

    @classmethod
    def from_value(cls, value: Union["InitializeConfig", Mapping[str, Any], str]) -> "InitializeConfig":
        if isinstance(value, InitializeConfig):
            return value
        if isinstance(value, str):
            return cls(manifest_url=value)

        url = value.get("manifest_url", value.get("manifestUrl"))
        if not url:
            raise ValueError("initialize() requires a manifest_url")

        requirements = value.get("texture_requirements", value.get("textureRequirements"))
        if requirements is not None and not isinstance(requirements, TargetSpec):
            requirements = TargetSpec.from_texture_info(requirements)
        return cls(manifest_url=str(url), texture_requirements=requirements)


def load_settings(path: Optional[Union[str, Path]]) -> Dict[str, Any]:
    """Load a YAML settings file. Missing path -> empty settings."""
    if not path:
        return {}

    path = Path(path)
    if not path.exists():
        logger.warning(f"Settings file not found: {path}")
        return {}

    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Settings file {path} must contain a mapping")
    return data


def load_config(args: Optional[argparse.Namespace] = None) -> PipelineConfig:
    """Load configuration from settings file and command-line args.

    Args:
        args: Parsed command-line arguments, or None for defaults

    Returns:
        PipelineConfig with all settings
    """
    if args is None:
        return PipelineConfig()

    settings = load_settings(getattr(args, "config", None))
    pipeline_settings = dict(settings.get("pipeline", settings))

    if getattr(args, "max_frames", None) is not None:
        pipeline_settings["max_frames"] = args.max_frames
    if getattr(args, "policy", None):
        pipeline_settings["capture_policy"] = args.policy
    if getattr(args, "loop", False):
        pipeline_settings["loop"] = True

    width = getattr(args, "width", None)
    height = getattr(args, "height", None)
    fmt = getattr(args, "format", None)
    if width or height or fmt:
        base = PipelineConfig.from_dict(pipeline_settings).default_target
        pipeline_settings["default_target"] = TargetSpec.for_dimensions(
            width or base.width,
            height or base.height,
            fmt or base.format,
        )

    return PipelineConfig.from_dict(pipeline_settings)


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        description="AV pipeline - play a stream into a rolling frame buffer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --url video.mp4                       # 640x360 RGBA, letterboxed
  python main.py --url stream.mpd --policy stretch     # Stretch to target
  python main.py --url video.mp4 --width 1280 --height 720 --max-frames 5
        """
    )

    parser.add_argument('--url', required=True, help='Media file or manifest URL')
    parser.add_argument('--config', type=str, default=None, help='YAML settings file')
    parser.add_argument('--width', type=int, default=None, help='Target texture width')
    parser.add_argument('--height', type=int, default=None, help='Target texture height')
    parser.add_argument(
        '--format',
        choices=[f.value for f in PixelFormat],
        default=None,
        help='Target pixel format (default: RGBA)'
    )
    parser.add_argument('--max-frames', type=int, default=None, help='Resident frame cap')
    parser.add_argument(
        '--policy',
        choices=[p.value for p in CapturePolicy],
        default=None,
        help='Capture policy (default: letterbox)'
    )
    parser.add_argument('--duration', type=float, default=10.0, help='Seconds to play')
    parser.add_argument('--loop', action='store_true', help='Loop the stream')
    parser.add_argument('--log-level', default='INFO', help='Console log level')
    parser.add_argument('--log-file', default=None, help='Optional log file')

    return parser.parse_args(argv)
