"""
Analysis Coordinator

Owns one loaded track and turns it into visualization artifacts on
demand:

    load_track(source)          IDLE -> LOADING -> IDLE
    request_visualization(mode) IDLE -> ANALYZING -> IDLE

Only one load or analysis is in flight at a time. Work runs on a single
background thread; the stages inside it fan out to worker pools. Callers
never block: they poll get_status() for progress, ETA and the outcome.

Shared state (track bytes, AudioModel, cache, status) is only written by
the coordinator, under the exclusive side of a ReadWriteLock, and only
by a run whose CancelToken is still current. A cancelled or superseded
run therefore never publishes anything.
"""

from __future__ import annotations

import functools
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, List, Optional, Union

from ..audio_model import AudioModel
from ..beat_tracker import OnsetBeatTracker
from ..config import AnalysisConfig, AnalysisStage, DEFAULT_CONFIG
from ..errors import (
    AnalysisFailed,
    Busy,
    Cancelled,
    InsufficientData,
    LoadFailed,
    VisualizationUnavailable,
    WavscopeError,
)
from ..spectral_analyzer import SpectralAnalyzer
from ..track_loader import (
    ByteStreamer,
    TrackMetadata,
    extract_metadata,
    is_url,
    stream_source,
)
from ..visualization import (
    Artifact,
    Command,
    ViewState,
    VisualizationCache,
    VisualizationManager,
    VisualizationMode,
    VizCommand,
    build_artifact,
    parse_viz_command,
)
from ..waveform_source import AutoDecoder, Decoder, WaveformSource
from .worker import CancelToken, ProgressCallback, ReadWriteLock

logger = logging.getLogger(__name__)

MetadataExtractor = Callable[[bytes], TrackMetadata]


class ProcessingState(Enum):
    IDLE = "idle"
    LOADING = "loading"
    ANALYZING = "analyzing"


@dataclass(frozen=True)
class ProcessingStatus:
    """Immutable snapshot of what the coordinator is doing."""
    state: ProcessingState = ProcessingState.IDLE
    message: str = ""
    progress: float = 0.0
    cancelable: bool = False
    start_time: Optional[float] = None
    bytes_loaded: int = 0
    total_bytes: int = 0

    @property
    def is_idle(self) -> bool:
        return self.state is ProcessingState.IDLE

    @property
    def elapsed(self) -> float:
        return 0.0 if self.start_time is None else time.time() - self.start_time


def format_eta(seconds: float) -> str:
    """Human-readable remaining time."""
    if seconds > 3600:
        return f"{seconds / 3600:.1f} hours"
    if seconds > 60:
        return f"{seconds / 60:.1f} minutes"
    return f"{seconds:.0f} seconds"


def stage_ranges(stages: List[str]) -> List[tuple]:
    """
    (stage, start, span) for each stage, with the base weights
    normalized over the stages that will actually run.
    """
    total = sum(AnalysisStage.WEIGHTS[s] for s in stages)
    ranges = []
    start = 0.0
    for stage in stages:
        span = AnalysisStage.WEIGHTS[stage] / total
        ranges.append((stage, start, span))
        start += span
    return ranges


class AnalysisCoordinator:
    """
    Dependency-ordered, cancellable analysis pipeline with a per-mode cache.

    Args:
        config: Analysis settings (DEFAULT_CONFIG if omitted)
        streamer: Byte streaming primitive (file / http by default)
        decoder: Decode-to-PCM primitive (soundfile with raw fallback by default)
        metadata_extractor: bytes -> TrackMetadata
    """

    def __init__(
        self,
        config: Optional[AnalysisConfig] = None,
        streamer: Optional[ByteStreamer] = None,
        decoder: Optional[Decoder] = None,
        metadata_extractor: Optional[MetadataExtractor] = None,
    ):
        self.config = config or DEFAULT_CONFIG
        cfg = self.config
        workers = cfg.worker_count

        self._streamer = streamer or functools.partial(
            stream_source, chunk_size=cfg.read_chunk_size, timeout=cfg.http_timeout
        )
        self._extract_metadata = metadata_extractor or functools.partial(
            extract_metadata, raw_sample_rate=cfg.raw_sample_rate, raw_channels=cfg.raw_channels
        )
        self._waveform = WaveformSource(
            decoder or AutoDecoder(cfg.raw_sample_rate, cfg.raw_channels), workers
        )
        self._spectral = SpectralAnalyzer(workers)
        self._beats = OnsetBeatTracker(workers)

        self._lock = ReadWriteLock()
        self._status = ProcessingStatus()
        self._cancel = CancelToken()

        self._data: Optional[bytes] = None
        self._metadata: Optional[TrackMetadata] = None
        self._model: Optional[AudioModel] = None
        self._cache = VisualizationCache()
        self._viz = VisualizationManager(self._cache)

        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="wavscope-coordinator")
        self._closed = False

    # -------------------------------------------------------------------------
    # Read-only views
    # -------------------------------------------------------------------------

    def get_status(self) -> ProcessingStatus:
        with self._lock.read():
            return self._status

    @property
    def metadata(self) -> Optional[TrackMetadata]:
        with self._lock.read():
            return self._metadata

    @property
    def audio_model(self) -> Optional[AudioModel]:
        with self._lock.read():
            return self._model

    @property
    def active_mode(self) -> Optional[VisualizationMode]:
        with self._lock.read():
            return self._viz.current_mode

    @property
    def view_state(self) -> ViewState:
        with self._lock.read():
            return replace(self._viz.state)

    def cached_modes(self) -> List[VisualizationMode]:
        with self._lock.read():
            return self._cache.modes()

    def get_artifact(self, mode: VisualizationMode) -> Optional[Artifact]:
        with self._lock.read():
            return self._cache.get(mode)

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def load_track(self, source: str) -> None:
        """
        Start loading ``source`` in the background.

        Cancels any in-flight work and discards the current track,
        model and cache first. The outcome is reported via get_status().
        """
        self._ensure_open()
        message = "Downloading..." if is_url(source) else "Loading file..."
        with self._lock.write():
            token = self._replace_token()
            self._clear_track()
            self._status = ProcessingStatus(
                state=ProcessingState.LOADING,
                message=message,
                cancelable=True,
                start_time=time.time(),
            )
        logger.info(f"Loading track: {source}")
        self._executor.submit(self._run_load, source, token, message)

    def request_visualization(self, mode: VisualizationMode) -> str:
        """
        Switch to ``mode``, analyzing the track first if needed.

        Returns immediately with a status message; a new analysis
        completes in the background.

        Raises:
            Busy: A load or analysis is already in flight (not queued)
            VisualizationUnavailable: No track is loaded
        """
        self._ensure_open()
        with self._lock.write():
            if not self._status.is_idle:
                raise Busy(self._status.message)
            if self._data is None or self._model is None:
                raise VisualizationUnavailable(mode)

            if mode in self._cache:
                self._viz.set_mode(mode)
                message = f"Switched to {mode.label} visualization"
                self._status = replace(self._status, message=message)
                return message

            token = self._cancel
            data, model = self._data, self._model
            message = f"Preparing {mode.label} visualization..."
            self._status = ProcessingStatus(
                state=ProcessingState.ANALYZING,
                message=message,
                cancelable=True,
                start_time=time.time(),
            )

        self._executor.submit(self._run_analysis, mode, data, model, token)
        return message

    def cancel_processing(self) -> None:
        """Abort the in-flight load or analysis, if any."""
        with self._lock.write():
            self._replace_token()
            if not self._status.is_idle:
                self._status = ProcessingStatus(message="Processing cancelled")
        logger.info("Processing cancelled")

    def handle_visualization_input(self, cmd: Union[Command, str]) -> bool:
        """
        Forward a pan/zoom/cycle/resize command to the active view.

        Returns False while busy, when nothing is cached, or for an
        unrecognized key string.
        """
        if isinstance(cmd, str):
            try:
                cmd = parse_viz_command(cmd)
            except ValueError:
                return False
        with self._lock.write():
            if not self._status.is_idle or self._viz.current_mode is None:
                return False
            handled = self._viz.handle_input(cmd)
            if handled and cmd in (VizCommand.NEXT, VizCommand.PREV):
                self._status = replace(
                    self._status,
                    message=f"Switched to {self._viz.current_mode.label} visualization",
                )
            return handled

    def unload(self) -> None:
        """Cancel any work and drop the current track."""
        with self._lock.write():
            self._replace_token()
            self._clear_track()
            self._status = ProcessingStatus(message="Track unloaded")

    def shutdown(self, wait: bool = True) -> None:
        """Cancel outstanding work and stop the background thread."""
        with self._lock.write():
            self._replace_token()
            self._closed = True
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "AnalysisCoordinator":
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()

    # -------------------------------------------------------------------------
    # Internals (called with the write lock held)
    # -------------------------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("AnalysisCoordinator has been shut down")

    def _replace_token(self) -> CancelToken:
        self._cancel.cancel()
        self._cancel = CancelToken()
        return self._cancel

    def _clear_track(self) -> None:
        self._data = None
        self._metadata = None
        self._model = None
        self._cache.clear()
        self._viz.reset()

    def _is_current(self, token: CancelToken) -> bool:
        return token is self._cancel and not token.cancelled

    def _publish_status(self, token: CancelToken, status: ProcessingStatus) -> bool:
        with self._lock.write():
            if not self._is_current(token):
                return False
            self._status = status
            return True

    # -------------------------------------------------------------------------
    # Background: loading
    # -------------------------------------------------------------------------

    def _run_load(self, source: str, token: CancelToken, verb: str) -> None:
        cfg = self.config
        started = time.time()
        last_update = [0.0]

        def on_bytes(loaded: int, total: int) -> None:
            now = time.time()
            if now - last_update[0] < cfg.status_interval and loaded < total:
                return
            last_update[0] = now

            elapsed = now - started
            if loaded < cfg.eta_min_bytes or total <= 0 or elapsed <= 0:
                eta = "calculating..."
            else:
                rate = loaded / elapsed
                eta = format_eta((total - loaded) / rate)

            with self._lock.write():
                if not self._is_current(token):
                    return
                self._status = replace(
                    self._status,
                    message=f"{verb} (ETA: {eta})",
                    progress=max(self._status.progress, loaded / total if total > 0 else 0.0),
                    bytes_loaded=loaded,
                    total_bytes=total,
                )

        try:
            data = self._streamer(source, on_bytes, token)
            token.raise_if_cancelled()
            metadata = self._extract_metadata(data)
        except Cancelled:
            logger.info(f"Load of {source} cancelled")
            return
        except LoadFailed as e:
            logger.error(f"Failed to load {source}: {e}")
            self._publish_status(token, ProcessingStatus(message=str(e)))
            return
        except Exception as e:
            logger.exception(f"Unexpected error loading {source}")
            self._publish_status(token, ProcessingStatus(message=str(LoadFailed(e))))
            return

        with self._lock.write():
            if not self._is_current(token):
                return
            self._data = data
            self._metadata = metadata
            self._model = AudioModel(
                sample_rate=metadata.sample_rate,
                window_size=cfg.window_size,
                hop_size=cfg.hop_size,
                fft_size=cfg.fft_size,
            )
            self._status = ProcessingStatus(
                message="File loaded successfully",
                progress=1.0,
                start_time=started,
                bytes_loaded=len(data),
                total_bytes=len(data),
            )
        logger.info(
            f"Loaded {len(data)} bytes ({metadata.format}, {metadata.sample_rate} Hz, "
            f"{metadata.channels} ch, {metadata.duration:.1f}s) in {time.time() - started:.2f}s"
        )

    # -------------------------------------------------------------------------
    # Background: analysis
    # -------------------------------------------------------------------------

    def _pending_stages(self, mode: VisualizationMode, model: AudioModel) -> List[str]:
        done = {
            AnalysisStage.WAVEFORM: model.has_waveform,
            AnalysisStage.SPECTRUM: model.has_spectrum,
            AnalysisStage.BEATS: model.has_beats,
        }
        return [stage for stage in mode.required_stages if not done[stage]]

    def _progress_reporter(
        self, token: CancelToken, start: float, span: float, message: str
    ) -> ProgressCallback:
        def report(fraction: float) -> None:
            with self._lock.write():
                if not self._is_current(token):
                    return
                status = self._status
                progress = max(status.progress, min(1.0, start + span * fraction))
                text = message
                if 0 < progress < 1 and status.start_time is not None:
                    elapsed = time.time() - status.start_time
                    text = f"{message} (ETA: {format_eta(elapsed / progress - elapsed)})"
                self._status = replace(status, progress=progress, message=text)
            logger.debug(f"{message} {progress:.1%}")
        return report

    def _run_analysis(
        self,
        mode: VisualizationMode,
        data: bytes,
        model: AudioModel,
        token: CancelToken,
    ) -> None:
        with self._lock.read():
            stages = self._pending_stages(mode, model)
        started = time.time()

        try:
            for stage, start, span in stage_ranges(stages):
                token.raise_if_cancelled()
                message = AnalysisStage.MESSAGES[stage]
                report = self._progress_reporter(token, start, span, message)
                report(0.0)
                logger.info(f"Stage {stage} started for {mode.label}")
                stage_started = time.time()
                self._run_stage(stage, data, model, token, report)
                logger.info(f"Stage {stage} finished in {time.time() - stage_started:.2f}s")

            with self._lock.write():
                if not self._is_current(token):
                    return
                self._cache.put(mode, build_artifact(mode, model))
                self._viz.set_mode(mode)
                self._status = ProcessingStatus(
                    message=f"{mode.label.capitalize()} visualization ready",
                    progress=1.0,
                    start_time=started,
                )
        except Cancelled:
            logger.info(f"Analysis for {mode.label} cancelled")
        except WavscopeError as e:
            logger.error(f"Analysis for {mode.label} failed: {e}")
            self._publish_status(token, ProcessingStatus(message=f"Analysis failed: {e}"))
        except Exception as e:
            logger.exception(f"Unexpected error preparing {mode.label} visualization")
            self._publish_status(token, ProcessingStatus(message=f"Analysis failed: {e}"))
        else:
            logger.info(f"{mode.label} visualization ready in {time.time() - started:.2f}s")

    def _run_stage(
        self,
        stage: str,
        data: bytes,
        model: AudioModel,
        token: CancelToken,
        report: ProgressCallback,
    ) -> None:
        """Compute one stage off-lock, then publish its fields atomically."""
        cfg = self.config
        try:
            if stage == AnalysisStage.WAVEFORM:
                samples, sample_rate = self._waveform.decode(data, report, token)

                def publish() -> None:
                    model.raw_samples = samples
                    model.sample_rate = sample_rate

            elif stage == AnalysisStage.SPECTRUM:
                spectral = self._spectral.analyze(
                    model.raw_samples,
                    model.sample_rate,
                    window_size=cfg.window_size,
                    hop_size=cfg.hop_size,
                    fft_size=cfg.fft_size,
                    on_progress=report,
                    cancel=token,
                )

                def publish() -> None:
                    model.freq_bands = spectral.freq_bands
                    model.spectral_flux = spectral.spectral_flux
                    model.peak_frequencies = spectral.peak_frequencies
                    model.rms_energy = spectral.rms_energy
                    model.spectrogram = spectral.spectrogram

            else:
                beats = self._beats.detect_beats(
                    model.spectrogram,
                    model.sample_rate,
                    cfg.hop_size,
                    cfg.fft_size,
                    cancel=token,
                    on_progress=report,
                )

                def publish() -> None:
                    model.beat_envelope = beats.envelope
                    model.estimated_tempo_bpm = beats.tempo_bpm
                    model.beat_onsets = beats.onsets

        except (Cancelled, InsufficientData, AnalysisFailed):
            raise
        except WavscopeError as e:
            logger.error(f"{stage} stage failed: {e}")
            raise AnalysisFailed(stage, e) from e
        except Exception as e:
            logger.exception(f"{stage} stage raised")
            raise AnalysisFailed(stage, e) from e

        with self._lock.write():
            if not self._is_current(token):
                raise Cancelled()
            publish()
