"""
Audio Model - Derived signals for one loaded track

The model is populated lazily, one stage at a time, by the analysis
coordinator. Each field is either fully computed or None; a cancelled
or failed stage never leaves a truncated array behind.

Dependency order:
    raw_samples -> spectrogram (+ freq_bands, flux, peaks, rms)
                -> beat_envelope, beat_onsets, estimated_tempo_bpm
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

import numpy as np


@dataclass
class AudioModel:
    """
    Analysis results for one track.

    Attributes:
        sample_rate: Sample rate of raw_samples in Hz
        window_size: STFT window length in samples
        hop_size: STFT hop in samples
        fft_size: FFT length (bins = fft_size // 2)
        raw_samples: Mono PCM in [-1, 1]
        spectrogram: frames x (fft_size // 2) magnitudes
        freq_bands: Center frequency of each bin in Hz
        spectral_flux: Positive magnitude change vs. previous frame
        peak_frequencies: Frequency of the loudest bin per frame
        rms_energy: RMS of the magnitude spectrum per frame
        beat_envelope: Low-frequency energy per frame
        beat_onsets: Refined beat flag per frame
        estimated_tempo_bpm: Tempo estimate in BPM
    """
    sample_rate: int
    window_size: int = 2048
    hop_size: int = 512
    fft_size: int = 2048

    raw_samples: Optional[np.ndarray] = None

    spectrogram: Optional[np.ndarray] = None
    freq_bands: Optional[np.ndarray] = None
    spectral_flux: Optional[np.ndarray] = None
    peak_frequencies: Optional[np.ndarray] = None
    rms_energy: Optional[np.ndarray] = None

    beat_envelope: Optional[np.ndarray] = None
    beat_onsets: Optional[np.ndarray] = None
    estimated_tempo_bpm: Optional[float] = None

    @property
    def has_waveform(self) -> bool:
        return self.raw_samples is not None

    @property
    def has_spectrum(self) -> bool:
        return self.spectrogram is not None

    @property
    def has_beats(self) -> bool:
        return self.beat_onsets is not None

    @property
    def num_frames(self) -> int:
        return 0 if self.spectrogram is None else int(self.spectrogram.shape[0])

    @property
    def frame_duration(self) -> float:
        """Seconds between consecutive frames."""
        return self.hop_size / float(self.sample_rate)

    @property
    def duration(self) -> float:
        """Track length in seconds (0.0 before the waveform stage)."""
        if self.raw_samples is None:
            return 0.0
        return len(self.raw_samples) / float(self.sample_rate)

    def _frame_at(self, seconds: float) -> int:
        return int(seconds * self.sample_rate / self.hop_size)

    def beat_times(self) -> List[float]:
        """Timestamps (seconds) of the detected beats."""
        if self.beat_onsets is None:
            return []
        return [float(i) * self.frame_duration for i in np.flatnonzero(self.beat_onsets)]

    def frequency_response(self, seconds: float) -> Optional[np.ndarray]:
        """Magnitude spectrum of the frame at ``seconds``, or None if out of range."""
        if self.spectrogram is None:
            return None
        frame = self._frame_at(seconds)
        if frame < 0 or frame >= self.num_frames:
            return None
        return self.spectrogram[frame]

    def envelope_segment(self, start: float, end: float) -> np.ndarray:
        """RMS energy for frames between ``start`` and ``end`` seconds."""
        if self.rms_energy is None:
            return np.zeros(0)
        first = max(0, self._frame_at(start))
        last = min(len(self.rms_energy) - 1, self._frame_at(end))
        if last <= first:
            return np.zeros(0)
        return self.rms_energy[first:last]

    def spectral_centroid(self, start: float, end: float) -> np.ndarray:
        """Per-frame spectral centroid (Hz) between ``start`` and ``end`` seconds."""
        if self.spectrogram is None or self.freq_bands is None:
            return np.zeros(0)
        first = max(0, self._frame_at(start))
        last = min(self.num_frames - 1, self._frame_at(end))
        if last <= first:
            return np.zeros(0)
        frames = self.spectrogram[first:last]
        totals = frames.sum(axis=1)
        weighted = frames @ self.freq_bands
        centroids = np.zeros(len(frames))
        nonzero = totals > 0
        centroids[nonzero] = weighted[nonzero] / totals[nonzero]
        return centroids
