"""
Audio Module.

Routes pipeline audio into the host spatial audio graph.
"""

from .audio_router import AudioRouter
