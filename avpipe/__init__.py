"""
AV Pipeline

Decodes a continuously playing media stream into frames, converts each
frame to a texture consumer's target format and feeds the payloads into a
fixed-capacity rolling buffer that the consumer drains at its own pace.

Top Priorities (strict order):
1. Never block or crash the event loop on a bad frame
2. Track the live video clock
3. Bounded memory under back-pressure (oldest frames are evicted)
"""

__version__ = "0.1.0"

from avpipe.config import PipelineConfig, InitializeConfig
from avpipe.pipeline.orchestrator import AVPipeline
