"""
Analysis Configuration Module

Centralized configuration for the analysis pipeline.
All constants and defaults are defined here for easy modification.
"""

from dataclasses import dataclass, fields
from typing import Any, Dict, Optional
import os


@dataclass
class AnalysisConfig:
    """
    Configuration for the analysis coordinator and its stages.

    Attributes:
        window_size: Samples per analysis window (STFT frame)
        hop_size: Sample advance between consecutive windows
        fft_size: FFT length; windows are zero-padded up to this size
        max_workers: Worker pool size per stage (None = os.cpu_count())
        eta_min_bytes: Bytes that must be read before a load ETA is shown
        read_chunk_size: Read size for file/HTTP streaming
        http_timeout: Connect/read timeout for downloads (seconds)
        status_interval: Minimum seconds between load status updates
        raw_sample_rate: Sample rate assumed for headerless PCM
        raw_channels: Channel count assumed for headerless PCM
        verbose: Enable debug logging
        log_file: Optional path for a log file
    """
    # STFT
    window_size: int = 2048
    hop_size: int = 512
    fft_size: int = 2048

    # Worker Configuration
    max_workers: Optional[int] = None

    # Loading
    eta_min_bytes: int = 512 * 1024
    read_chunk_size: int = 64 * 1024
    http_timeout: float = 30.0
    status_interval: float = 0.1

    # Headerless PCM fallback
    raw_sample_rate: int = 44100
    raw_channels: int = 2

    # Logging
    verbose: bool = False
    log_file: Optional[str] = None

    def __post_init__(self):
        """Validate parameters."""
        for name in ("window_size", "hop_size", "fft_size", "read_chunk_size",
                     "raw_sample_rate", "raw_channels"):
            value = getattr(self, name)
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")
        if self.window_size > self.fft_size:
            raise ValueError(
                f"window_size ({self.window_size}) must not exceed fft_size ({self.fft_size})"
            )
        if self.max_workers is not None and self.max_workers <= 0:
            raise ValueError(f"max_workers must be positive, got {self.max_workers}")
        if self.eta_min_bytes < 0:
            raise ValueError(f"eta_min_bytes must be non-negative, got {self.eta_min_bytes}")

    @property
    def worker_count(self) -> int:
        """Effective pool size."""
        return self.max_workers or os.cpu_count() or 1

    def with_overrides(self, overrides: Dict[str, Any]) -> "AnalysisConfig":
        """Return a copy with the given fields replaced (validated again)."""
        known = {f.name for f in fields(self)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ValueError(f"Unknown config keys: {unknown}")
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values.update(overrides)
        return AnalysisConfig(**values)

    @classmethod
    def from_env(cls) -> "AnalysisConfig":
        """
        Create config from environment variables.

        Environment Variables:
            WAVSCOPE_WINDOW_SIZE: Analysis window size
            WAVSCOPE_HOP_SIZE: Hop size
            WAVSCOPE_FFT_SIZE: FFT size
            WAVSCOPE_MAX_WORKERS: Worker pool size
            WAVSCOPE_HTTP_TIMEOUT: Download timeout in seconds
            WAVSCOPE_LOG_FILE: Log file path
            WAVSCOPE_VERBOSE: Enable verbose mode (1/true/yes)
        """
        workers = os.getenv("WAVSCOPE_MAX_WORKERS")
        return cls(
            window_size=int(os.getenv("WAVSCOPE_WINDOW_SIZE", 2048)),
            hop_size=int(os.getenv("WAVSCOPE_HOP_SIZE", 512)),
            fft_size=int(os.getenv("WAVSCOPE_FFT_SIZE", 2048)),
            max_workers=int(workers) if workers else None,
            http_timeout=float(os.getenv("WAVSCOPE_HTTP_TIMEOUT", 30.0)),
            log_file=os.getenv("WAVSCOPE_LOG_FILE"),
            verbose=os.getenv("WAVSCOPE_VERBOSE", "").lower() in ("1", "true", "yes"),
        )


# Analysis stages (for progress reporting and dependency ordering)
class AnalysisStage:
    """
    Enum-like class for pipeline stage identifiers.
    Stages always run in ORDER; each depends on the previous one's output.
    """
    WAVEFORM = "waveform"
    SPECTRUM = "spectrum"
    BEATS = "beats"

    ORDER = (WAVEFORM, SPECTRUM, BEATS)

    # Relative share of the progress bar when a stage runs.
    # Normalized over the stages a request actually needs.
    WEIGHTS = {
        WAVEFORM: 0.3,
        SPECTRUM: 0.3,
        BEATS: 0.4,
    }

    MESSAGES = {
        WAVEFORM: "Analyzing waveform...",
        SPECTRUM: "Computing frequency analysis...",
        BEATS: "Detecting beats and tempo...",
    }


# Error Codes
class ErrorCode:
    """
    Error codes for structured error reporting.
    """
    # General errors (1xx)
    UNKNOWN = 100
    INVALID_CONFIG = 101

    # Analysis errors (2xx)
    ANALYSIS_FAILED = 200
    ANALYSIS_CANCELLED = 202
    INSUFFICIENT_DATA = 203

    # Audio errors (3xx)
    DECODE_FAILED = 300

    # File / network errors (5xx)
    LOAD_FAILED = 500
    FILE_NOT_FOUND = 501
    DOWNLOAD_FAILED = 502

    # Coordinator errors (9xx)
    COORDINATOR_BUSY = 900
    VISUALIZATION_UNAVAILABLE = 901


# Default configuration instance
DEFAULT_CONFIG = AnalysisConfig()
