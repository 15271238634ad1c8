"""
Main Pipeline Module.

Orchestrates capture, conversion, notification and admission for one
media source.
"""

from .orchestrator import AVPipeline
from .notifier import Notifier
