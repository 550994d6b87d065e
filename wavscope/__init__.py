"""
wavscope

Audio analysis for terminal visualizations: mono waveform, magnitude
spectrogram, tempo and beat positions, computed on demand by a
cancellable background pipeline.
"""

__version__ = "0.1.0"

# coordinator first: the analysis modules import its worker primitives
from .coordinator import (
    AnalysisCoordinator,
    CancelToken,
    ProcessingState,
    ProcessingStatus,
)
from .config import AnalysisConfig, AnalysisStage, ErrorCode, DEFAULT_CONFIG
from .config_loader import ConfigLoader, ConfigLoadError, load_analysis_config
from .errors import (
    WavscopeError,
    InsufficientData,
    Cancelled,
    AnalysisFailed,
    Busy,
    VisualizationUnavailable,
    LoadFailed,
)
from .audio_model import AudioModel
from .waveform_source import (
    WaveformSource,
    Decoder,
    DecodedPCM,
    DecodeError,
    SoundFileDecoder,
    RawPCMDecoder,
    AutoDecoder,
)
from .spectral_analyzer import SpectralAnalyzer, SpectralResult
from .beat_tracker import OnsetBeatTracker, BeatResult
from .track_loader import TrackMetadata, extract_metadata, stream_source
from .visualization import (
    VisualizationMode,
    VisualizationCache,
    VisualizationManager,
    VizCommand,
    Resize,
    parse_viz_command,
)

__all__ = [
    "__version__",
    "AnalysisCoordinator",
    "CancelToken",
    "ProcessingState",
    "ProcessingStatus",
    "AnalysisConfig",
    "AnalysisStage",
    "ErrorCode",
    "DEFAULT_CONFIG",
    "ConfigLoader",
    "ConfigLoadError",
    "load_analysis_config",
    "WavscopeError",
    "InsufficientData",
    "Cancelled",
    "AnalysisFailed",
    "Busy",
    "VisualizationUnavailable",
    "LoadFailed",
    "AudioModel",
    "WaveformSource",
    "Decoder",
    "DecodedPCM",
    "DecodeError",
    "SoundFileDecoder",
    "RawPCMDecoder",
    "AutoDecoder",
    "SpectralAnalyzer",
    "SpectralResult",
    "OnsetBeatTracker",
    "BeatResult",
    "TrackMetadata",
    "extract_metadata",
    "stream_source",
    "VisualizationMode",
    "VisualizationCache",
    "VisualizationManager",
    "VizCommand",
    "Resize",
    "parse_viz_command",
]
