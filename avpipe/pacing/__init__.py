"""
Pacing Module.

Drives captures at the live video cadence.
"""

from .pacing_controller import (
    PacingController,
    frame_rate_to_interval_ms,
    estimate_frame_rate,
)
