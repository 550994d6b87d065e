"""
Onset Beat Tracker - Tempo and beat positions from a spectrogram

Pipeline:
1. Envelope: low-frequency energy per frame (bins below fft_size / 4)
2. Onsets: frame energy above 1.3x the mean of the nonzero energies in
   the trailing ~1 s history (43 frames, current frame included)
3. Tempo: modal distance between onset events (first frame of each run
   of flagged frames)
4. Refinement: walk the predicted beat grid from the first onset and
   keep the strongest frame near each prediction if it clears a local
   mean + 1.5 std threshold
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .coordinator.worker import (
    CancelToken,
    ProgressCallback,
    chunk_bounds,
    run_indexed,
)
from .errors import AnalysisFailed, Cancelled

logger = logging.getLogger(__name__)

# Onset history length in frames (~1 s at hop 512 / 44.1 kHz)
HISTORY_FRAMES = 43
ONSET_RATIO = 1.3

# Refinement
SEARCH_FRACTION = 0.1
THRESHOLD_RADIUS = HISTORY_FRAMES // 2
THRESHOLD_STD = 1.5

DEFAULT_TEMPO_BPM = 120.0

# Share of the stage's progress per step
_ENVELOPE_SHARE = 0.4
_ONSET_SHARE = 0.3


@dataclass(frozen=True)
class BeatResult:
    """Output of OnsetBeatTracker.detect_beats()."""
    envelope: np.ndarray
    onsets: np.ndarray
    tempo_bpm: float

    @property
    def beat_count(self) -> int:
        return int(np.count_nonzero(self.onsets))


def onset_events(onsets: np.ndarray) -> np.ndarray:
    """Indices of the first frame of every run of consecutive onset flags."""
    flags = np.asarray(onsets, dtype=bool)
    if flags.size == 0:
        return np.zeros(0, dtype=np.int64)
    previous = np.concatenate(([False], flags[:-1]))
    return np.flatnonzero(flags & ~previous)


def estimate_period(onsets: np.ndarray) -> Optional[int]:
    """
    Modal distance (in frames) between onset events.

    Ties go to the shorter period. Returns None with fewer than two events.
    """
    events = onset_events(onsets)
    if len(events) < 2:
        return None
    intervals = np.floor(np.diff(events) + 0.5).astype(np.int64)
    return int(np.argmax(np.bincount(intervals)))


def local_threshold(envelope: np.ndarray, pos: int) -> float:
    """mean + 1.5 std of the envelope over pos +/- 21 frames (clipped)."""
    start = max(0, pos - THRESHOLD_RADIUS)
    end = min(len(envelope) - 1, pos + THRESHOLD_RADIUS)
    window = envelope[start:end + 1]
    return float(window.mean() + THRESHOLD_STD * window.std())


class OnsetBeatTracker:
    """
    Energy-envelope beat tracker.

    The envelope and onset flags are computed in contiguous chunks on a
    worker pool. Each onset chunk seeds its history with the frames
    before it, so results do not depend on the number of workers.
    """

    def __init__(self, max_workers: int = 1):
        self.max_workers = max_workers

    def detect_beats(
        self,
        spectrogram: Optional[np.ndarray],
        sample_rate: int,
        hop_size: int,
        fft_size: int,
        cancel: Optional[CancelToken] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> BeatResult:
        """
        Detect onsets, estimate tempo and refine beat positions.

        Raises:
            AnalysisFailed: Missing/malformed spectrogram or any internal error
            Cancelled: The token was cancelled
        """
        cancel = cancel or CancelToken()
        report = on_progress or (lambda fraction: None)
        try:
            if spectrogram is None or spectrogram.ndim != 2 or spectrogram.shape[0] == 0:
                raise ValueError("spectrogram not computed")

            envelope = self.compute_envelope(spectrogram, fft_size, cancel)
            report(_ENVELOPE_SHARE)
            raw_onsets = self.detect_onsets(envelope, cancel)
            report(_ENVELOPE_SHARE + _ONSET_SHARE)

            period = estimate_period(raw_onsets)
            if period is None:
                logger.info(f"No onset intervals found, assuming {DEFAULT_TEMPO_BPM:.0f} BPM")
                report(1.0)
                return BeatResult(envelope=envelope, onsets=raw_onsets, tempo_bpm=DEFAULT_TEMPO_BPM)

            tempo = 60.0 / (period * hop_size / float(sample_rate))
            refined = self.refine_beats(envelope, raw_onsets, tempo, sample_rate, hop_size, cancel)
            report(1.0)
        except (Cancelled, AnalysisFailed):
            raise
        except Exception as e:
            raise AnalysisFailed("beats", e) from e

        logger.info(f"Tempo {tempo:.1f} BPM (period {period} frames), {int(refined.sum())} beats")
        return BeatResult(envelope=envelope, onsets=refined, tempo_bpm=tempo)

    def compute_envelope(
        self, spectrogram: np.ndarray, fft_size: int, cancel: CancelToken
    ) -> np.ndarray:
        """Per-frame sqrt of summed squared magnitude below fft_size / 4."""
        frames = spectrogram.shape[0]
        low_bins = max(1, fft_size // 4)
        envelope = np.empty(frames, dtype=np.float64)
        bounds = chunk_bounds(frames, self.max_workers)

        def chunk(index: int) -> None:
            start, end = bounds[index]
            low = spectrogram[start:end, :low_bins]
            envelope[start:end] = np.sqrt(np.sum(low * low, axis=1))

        run_indexed(chunk, len(bounds), self.max_workers, cancel, "wavscope-envelope")
        return envelope

    def detect_onsets(self, envelope: np.ndarray, cancel: CancelToken) -> np.ndarray:
        """Raw onset flags from the trailing-history energy ratio."""
        frames = len(envelope)
        onsets = np.zeros(frames, dtype=bool)
        bounds = chunk_bounds(frames, self.max_workers)

        def chunk(index: int) -> None:
            start, end = bounds[index]
            seed = max(0, start - (HISTORY_FRAMES - 1))
            values = envelope[seed:end]
            sums = np.concatenate(([0.0], np.cumsum(values)))
            counts = np.concatenate(([0], np.cumsum(values > 0)))

            positions = np.arange(start, end) - seed
            lows = np.maximum(0, positions - (HISTORY_FRAMES - 1))
            total = sums[positions + 1] - sums[lows]
            nonzero = counts[positions + 1] - counts[lows]

            # the envelope is non-negative, so the sum over nonzero frames is the window sum
            mean = np.divide(total, nonzero, out=np.zeros(len(positions)), where=nonzero > 0)
            onsets[start:end] = (nonzero > 0) & (values[positions] > ONSET_RATIO * mean)

        run_indexed(chunk, len(bounds), self.max_workers, cancel, "wavscope-onsets")
        return onsets

    def refine_beats(
        self,
        envelope: np.ndarray,
        onsets: np.ndarray,
        tempo_bpm: float,
        sample_rate: int,
        hop_size: int,
        cancel: CancelToken,
    ) -> np.ndarray:
        """Snap the predicted beat grid to local envelope peaks."""
        frames = len(onsets)
        refined = np.zeros(frames, dtype=bool)
        flagged = np.flatnonzero(onsets)
        if len(flagged) == 0:
            return refined

        frames_per_beat = (60.0 / tempo_bpm) * sample_rate / hop_size
        search = int(frames_per_beat * SEARCH_FRACTION)

        first = int(flagged[0])
        refined[first] = True

        expected = float(first)
        while expected < frames:
            cancel.raise_if_cancelled()
            pos = int(np.floor(expected + 0.5))
            start = max(0, pos - search)
            end = min(frames - 1, pos + search)

            max_energy = 0.0
            max_pos = pos
            for i in range(start, end + 1):
                if envelope[i] > max_energy:
                    max_energy = envelope[i]
                    max_pos = i

            if max_energy > local_threshold(envelope, max_pos):
                refined[max_pos] = True
            expected += frames_per_beat

        return refined
