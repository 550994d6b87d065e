"""
Error taxonomy for the analysis pipeline.

Every exception raised across a component boundary derives from
WavscopeError and carries a numeric ErrorCode so callers (UI, CLI)
can report failures without string matching.
"""

from __future__ import annotations

from typing import Optional

from .config import ErrorCode


class WavscopeError(Exception):
    """Base class for all pipeline errors."""

    code: int = ErrorCode.UNKNOWN

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class InsufficientData(WavscopeError):
    """Track is too short for the requested analysis."""

    code = ErrorCode.INSUFFICIENT_DATA


class Cancelled(WavscopeError):
    """Work was aborted by the user or superseded by a reload."""

    code = ErrorCode.ANALYSIS_CANCELLED

    def __init__(self, message: str = "cancelled"):
        super().__init__(message)


class AnalysisFailed(WavscopeError):
    """
    A pipeline stage failed.

    Attributes:
        stage: Stage name ("waveform", "spectrum", "beats")
        cause: The underlying exception, if any
    """

    code = ErrorCode.ANALYSIS_FAILED

    def __init__(self, stage: str, cause: object):
        self.stage = stage
        self.cause = cause
        super().__init__(f"{stage} analysis failed: {cause}")


class Busy(WavscopeError):
    """An analysis or load is already in flight; the request was not queued."""

    code = ErrorCode.COORDINATOR_BUSY

    def __init__(self, current_message: str):
        self.current_message = current_message
        super().__init__(f"analysis in progress: {current_message}")


class VisualizationUnavailable(WavscopeError):
    """Mode is not cached and no pipeline run can produce it."""

    code = ErrorCode.VISUALIZATION_UNAVAILABLE

    def __init__(self, mode: object, reason: str = "no audio data available"):
        self.mode = mode
        super().__init__(f"{getattr(mode, 'label', mode)} visualization unavailable: {reason}")


class LoadFailed(WavscopeError):
    """I/O, network or decode error while loading a track."""

    code = ErrorCode.LOAD_FAILED

    def __init__(self, cause: object, code: Optional[int] = None):
        self.cause = cause
        super().__init__(f"Load failed: {cause}", code)
