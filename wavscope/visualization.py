"""
Visualization artifacts, cache and view state.

The coordinator turns a populated AudioModel into one immutable
artifact per visualization mode. Artifacts hold read-only views of the
model arrays plus what a renderer needs to lay them out; drawing them
is left to the front end.

VisualizationManager keeps the pan/zoom view state shared by all modes
and cycles between the modes that are already cached.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

import numpy as np

from .audio_model import AudioModel
from .config import AnalysisStage
from .errors import VisualizationUnavailable

logger = logging.getLogger(__name__)


class VisualizationMode(Enum):
    """Render modes, in cycling order."""
    WAVEFORM = "waveform"
    SPECTROGRAM = "spectrogram"
    DENSITY = "density"
    TEMPO = "tempo"
    BEAT_MAP = "beatmap"

    @property
    def label(self) -> str:
        return self.value

    @property
    def required_stages(self) -> Tuple[str, ...]:
        """Analysis stages this mode needs, in dependency order."""
        return _REQUIRED_STAGES[self]

    @classmethod
    def parse(cls, name: str) -> "VisualizationMode":
        """Look up a mode by label or member name ("beatmap", "beat_map", "BEAT-MAP")."""
        key = name.strip().lower().replace("-", "_")
        for mode in cls:
            if key in (mode.value, mode.name.lower()):
                return mode
        raise ValueError(f"Unknown visualization mode: {name!r}")


_REQUIRED_STAGES = {
    VisualizationMode.WAVEFORM: (AnalysisStage.WAVEFORM,),
    VisualizationMode.DENSITY: (AnalysisStage.WAVEFORM,),
    VisualizationMode.SPECTROGRAM: (AnalysisStage.WAVEFORM, AnalysisStage.SPECTRUM),
    VisualizationMode.TEMPO: AnalysisStage.ORDER,
    VisualizationMode.BEAT_MAP: AnalysisStage.ORDER,
}


# =============================================================================
# ARTIFACTS
# =============================================================================

def _read_only(array: np.ndarray) -> np.ndarray:
    view = array.view()
    view.setflags(write=False)
    return view


@dataclass(frozen=True)
class WaveformArtifact:
    samples: np.ndarray
    sample_rate: int
    duration: float

    name = "Waveform"
    description = "Amplitude over time"


@dataclass(frozen=True)
class DensityArtifact:
    """Sample data for the density map (energy per column is taken at render time)."""
    samples: np.ndarray
    sample_rate: int
    duration: float
    window_size: int = 1024

    name = "Density Map"
    description = "Shows audio density over time with intensity mapping"


@dataclass(frozen=True)
class SpectrogramArtifact:
    spectrogram: np.ndarray
    freq_bands: np.ndarray
    sample_rate: int
    hop_size: int
    duration: float

    name = "Spectrogram"
    description = "Frequency content over time"


@dataclass(frozen=True)
class TempoArtifact:
    envelope: np.ndarray
    rms_energy: np.ndarray
    tempo_bpm: float
    sample_rate: int
    hop_size: int
    duration: float

    name = "Tempo"
    description = "Onset energy and estimated tempo"


@dataclass(frozen=True)
class BeatMapArtifact:
    envelope: np.ndarray
    onsets: np.ndarray
    tempo_bpm: float
    sample_rate: int
    hop_size: int
    duration: float

    name = "Beat Map"
    description = "Detected beat positions"

    @property
    def beat_times(self) -> List[float]:
        step = self.hop_size / float(self.sample_rate)
        return [float(i) * step for i in np.flatnonzero(self.onsets)]


Artifact = Union[WaveformArtifact, DensityArtifact, SpectrogramArtifact, TempoArtifact, BeatMapArtifact]


def build_artifact(mode: VisualizationMode, model: AudioModel) -> Artifact:
    """
    Snapshot the model fields ``mode`` renders from.

    Raises:
        VisualizationUnavailable: A required analysis field is empty
    """
    missing = [
        stage for stage, ready in (
            (AnalysisStage.WAVEFORM, model.has_waveform),
            (AnalysisStage.SPECTRUM, model.has_spectrum),
            (AnalysisStage.BEATS, model.has_beats),
        )
        if stage in mode.required_stages and not ready
    ]
    if missing:
        raise VisualizationUnavailable(mode, f"missing {', '.join(missing)} analysis")

    duration = model.duration
    if mode is VisualizationMode.WAVEFORM:
        return WaveformArtifact(_read_only(model.raw_samples), model.sample_rate, duration)
    if mode is VisualizationMode.DENSITY:
        return DensityArtifact(_read_only(model.raw_samples), model.sample_rate, duration)
    if mode is VisualizationMode.SPECTROGRAM:
        return SpectrogramArtifact(
            _read_only(model.spectrogram), _read_only(model.freq_bands),
            model.sample_rate, model.hop_size, duration,
        )
    if mode is VisualizationMode.TEMPO:
        return TempoArtifact(
            _read_only(model.beat_envelope), _read_only(model.rms_energy),
            model.estimated_tempo_bpm, model.sample_rate, model.hop_size, duration,
        )
    return BeatMapArtifact(
        _read_only(model.beat_envelope), _read_only(model.beat_onsets),
        model.estimated_tempo_bpm, model.sample_rate, model.hop_size, duration,
    )


class VisualizationCache:
    """Mode -> artifact. Replaced wholesale on track reload, never merged."""

    def __init__(self):
        self._artifacts: Dict[VisualizationMode, Artifact] = {}

    def get(self, mode: VisualizationMode) -> Optional[Artifact]:
        return self._artifacts.get(mode)

    def put(self, mode: VisualizationMode, artifact: Artifact) -> None:
        self._artifacts[mode] = artifact

    def modes(self) -> List[VisualizationMode]:
        """Cached modes in cycling order."""
        return [mode for mode in VisualizationMode if mode in self._artifacts]

    def clear(self) -> None:
        self._artifacts.clear()

    def __contains__(self, mode: object) -> bool:
        return mode in self._artifacts

    def __len__(self) -> int:
        return len(self._artifacts)


# =============================================================================
# INPUT COMMANDS
# =============================================================================

class VizCommand(Enum):
    NEXT = "next"
    PREV = "prev"
    ZOOM_IN = "zoom-in"
    ZOOM_OUT = "zoom-out"
    PAN_LEFT = "left"
    PAN_RIGHT = "right"
    RESET = "reset"


@dataclass(frozen=True)
class Resize:
    width: int
    height: int


Command = Union[VizCommand, Resize]

_KEY_ALIASES = {
    "tab": VizCommand.NEXT,
    "shift+tab": VizCommand.PREV,
    "previous": VizCommand.PREV,
    "+": VizCommand.ZOOM_IN,
    "=": VizCommand.ZOOM_IN,
    "-": VizCommand.ZOOM_OUT,
    "_": VizCommand.ZOOM_OUT,
    "h": VizCommand.PAN_LEFT,
    "l": VizCommand.PAN_RIGHT,
    "0": VizCommand.RESET,
}

_RESIZE_RE = re.compile(r"^resize:(\d+)x(\d+)$")


def parse_viz_command(text: str) -> Command:
    """
    Parse a key or command string.

    Accepts command names ("next", "zoom-in", "left"...), key aliases
    ("tab", "+", "h", "0"...) and "resize:WIDTHxHEIGHT".

    Raises:
        ValueError: Unrecognized input
    """
    key = text.strip().lower()
    match = _RESIZE_RE.match(key)
    if match:
        return Resize(int(match.group(1)), int(match.group(2)))
    if key in _KEY_ALIASES:
        return _KEY_ALIASES[key]
    try:
        return VizCommand(key)
    except ValueError:
        raise ValueError(f"Unknown visualization command: {text!r}") from None


# =============================================================================
# VIEW STATE
# =============================================================================

MIN_ZOOM = 0.1
MAX_ZOOM = 10.0


@dataclass
class ViewState:
    """Pan/zoom state shared by all modes. Offsets are in seconds."""
    zoom: float = 1.0
    offset: float = 0.0
    width: int = 80
    height: int = 24
    window_seconds: float = 10.0
    scroll_seconds: float = 1.0
    total_duration: float = 0.0


@dataclass
class VisualizationManager:
    """
    Active mode plus view state over a VisualizationCache.

    Not thread-safe; the coordinator serializes access.
    """
    cache: VisualizationCache
    zoom_factor: float = 1.2
    state: ViewState = field(default_factory=ViewState)
    current_mode: Optional[VisualizationMode] = None

    def set_mode(self, mode: VisualizationMode) -> None:
        artifact = self.cache.get(mode)
        if artifact is None:
            raise VisualizationUnavailable(mode, "not cached")
        self.current_mode = mode
        self.state.total_duration = artifact.duration

    def reset(self) -> None:
        """Forget the active mode and view (track replaced)."""
        self.current_mode = None
        self.state = ViewState(width=self.state.width, height=self.state.height)

    def handle_input(self, cmd: Command) -> bool:
        """Apply one command; returns True if it was handled."""
        if isinstance(cmd, Resize):
            self.state.width = max(1, cmd.width)
            self.state.height = max(1, cmd.height)
            return True

        state = self.state
        if cmd is VizCommand.PAN_LEFT:
            if state.offset > 0:
                state.offset = max(0.0, state.offset - state.scroll_seconds * state.zoom)
            return True

        if cmd is VizCommand.PAN_RIGHT:
            max_offset = max(0.0, state.total_duration - state.window_seconds / state.zoom)
            state.offset = min(max_offset, state.offset + state.scroll_seconds * state.zoom)
            return True

        if cmd is VizCommand.ZOOM_IN:
            if state.zoom < MAX_ZOOM:
                state.zoom *= self.zoom_factor
                # keep the same point under the view origin
                state.offset *= self.zoom_factor
            return True

        if cmd is VizCommand.ZOOM_OUT:
            if state.zoom > MIN_ZOOM:
                state.zoom /= self.zoom_factor
                state.offset /= self.zoom_factor
            return True

        if cmd is VizCommand.RESET:
            state.zoom = 1.0
            state.offset = 0.0
            return True

        if cmd in (VizCommand.NEXT, VizCommand.PREV):
            return self._cycle(1 if cmd is VizCommand.NEXT else -1)

        return False

    def _cycle(self, direction: int) -> bool:
        modes = self.cache.modes()
        if self.current_mode is None or len(modes) < 2:
            return False
        index = modes.index(self.current_mode) if self.current_mode in modes else 0
        self.set_mode(modes[(index + direction) % len(modes)])
        logger.debug(f"Cycled to {self.current_mode.label} visualization")
        return True

    def visible_window(self) -> Tuple[float, float]:
        """(start, end) seconds currently in view."""
        span = self.state.window_seconds / self.state.zoom
        start = self.state.offset
        end = min(self.state.total_duration, start + span) if self.state.total_duration else start + span
        return start, end
