"""
Pipeline error taxonomy.

Setup errors propagate to the caller. Per-frame failures are contained
inside the capture and admission steps and never raised out of them.
"""


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class InitializationError(PipelineError):
    """Manifest/metadata timeout, decode error or open failure during setup."""


class NotReadyError(PipelineError):
    """A source was bound before the pipeline reached READY."""


class SourceNotFoundError(PipelineError, KeyError):
    """No texture, video source or audio source matches the given id."""

    def __str__(self) -> str:
        # KeyError quotes its message; keep it readable
        return Exception.__str__(self)


class AutoplayBlockedError(PipelineError):
    """Playback was refused until the user interacts with the page."""


class InvalidTargetError(PipelineError, ValueError):
    """Target dimensions are zero or missing."""
