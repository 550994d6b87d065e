"""
Spectral Analyzer - Short-time magnitude spectrum

Slides a Hann window over mono PCM and takes the magnitude of a
zero-padded real FFT per frame. Frames are independent, so blocks of
frames are handed to a worker pool that writes into disjoint rows of
one preallocated matrix.

Per-frame features derived from the spectrogram:
- spectral_flux: summed positive magnitude change vs. the previous frame
- peak_frequencies: frequency of the loudest bin
- rms_energy: RMS of the magnitude spectrum
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy.signal import get_window

from .coordinator.worker import (
    CancelToken,
    ProgressCallback,
    ProgressCounter,
    run_indexed,
)
from .errors import InsufficientData

logger = logging.getLogger(__name__)

# Frames transformed per worker task
FRAMES_PER_TASK = 64

# Rows per step when deriving flux, to bound temporary memory
FEATURE_BLOCK = 1024


@dataclass(frozen=True)
class SpectralResult:
    """Output of SpectralAnalyzer.analyze()."""
    spectrogram: np.ndarray
    freq_bands: np.ndarray
    spectral_flux: np.ndarray
    peak_frequencies: np.ndarray
    rms_energy: np.ndarray

    @property
    def num_frames(self) -> int:
        return int(self.spectrogram.shape[0])


def frame_count(num_samples: int, window_size: int, hop_size: int) -> int:
    """Number of complete analysis frames for ``num_samples`` of audio."""
    return (num_samples - window_size) // hop_size


def frequency_bands(sample_rate: int, fft_size: int) -> np.ndarray:
    """Linear bin center frequencies from 0 up to (not including) Nyquist."""
    bins = fft_size // 2
    return np.arange(bins, dtype=np.float64) * (sample_rate / 2.0) / bins


class SpectralAnalyzer:
    """
    Windowed FFT over PCM samples.

    Args:
        max_workers: Worker pool size for the FFT frames
    """

    def __init__(self, max_workers: int = 1):
        self.max_workers = max_workers

    def analyze(
        self,
        raw_samples: np.ndarray,
        sample_rate: int,
        window_size: int = 2048,
        hop_size: int = 512,
        fft_size: int = 2048,
        on_progress: Optional[ProgressCallback] = None,
        cancel: Optional[CancelToken] = None,
    ) -> SpectralResult:
        """
        Compute the magnitude spectrogram and derived features.

        Returns:
            SpectralResult with ``frames x fft_size // 2`` magnitudes

        Raises:
            ValueError: window_size exceeds fft_size
            InsufficientData: Fewer samples than one window plus one hop
            Cancelled: The token was cancelled before all frames ran
        """
        if window_size > fft_size:
            raise ValueError(f"window_size ({window_size}) must not exceed fft_size ({fft_size})")

        cancel = cancel or CancelToken()
        samples = np.asarray(raw_samples, dtype=np.float64)
        frames = frame_count(len(samples), window_size, hop_size)
        if frames < 1:
            raise InsufficientData(
                f"{len(samples)} samples is too short for window {window_size} / hop {hop_size}"
            )

        bins = fft_size // 2
        window = get_window("hann", window_size)
        offsets = np.arange(window_size)
        spectrogram = np.empty((frames, bins), dtype=np.float64)

        tasks = (frames + FRAMES_PER_TASK - 1) // FRAMES_PER_TASK
        progress = ProgressCounter(frames, on_progress)

        def transform(task: int) -> None:
            cancel.raise_if_cancelled()
            first = task * FRAMES_PER_TASK
            last = min(first + FRAMES_PER_TASK, frames)
            starts = np.arange(first, last) * hop_size
            block = samples[starts[:, None] + offsets] * window
            spectrum = np.fft.rfft(block, n=fft_size, axis=1)
            spectrogram[first:last] = np.abs(spectrum[:, :bins])
            progress.advance(last - first)

        logger.debug(f"STFT: {frames} frames, {bins} bins, {self.max_workers} worker(s)")
        run_indexed(transform, tasks, self.max_workers, cancel, "wavscope-fft")

        freq_bands = frequency_bands(sample_rate, fft_size)
        flux = spectral_flux(spectrogram, cancel)
        peak_frequencies = freq_bands[np.argmax(spectrogram, axis=1)]
        rms_energy = np.sqrt(np.mean(spectrogram ** 2, axis=1))

        return SpectralResult(
            spectrogram=spectrogram,
            freq_bands=freq_bands,
            spectral_flux=flux,
            peak_frequencies=peak_frequencies,
            rms_energy=rms_energy,
        )


def spectral_flux(spectrogram: np.ndarray, cancel: Optional[CancelToken] = None) -> np.ndarray:
    """Summed positive magnitude increase per frame (0 for the first frame)."""
    frames = spectrogram.shape[0]
    flux = np.zeros(frames, dtype=np.float64)
    for start in range(1, frames, FEATURE_BLOCK):
        if cancel is not None:
            cancel.raise_if_cancelled()
        end = min(start + FEATURE_BLOCK, frames)
        diff = spectrogram[start:end] - spectrogram[start - 1:end - 1]
        flux[start:end] = np.clip(diff, 0.0, None).sum(axis=1)
    return flux
