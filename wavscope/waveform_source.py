"""
Waveform Source - Track bytes to mono float PCM

Decoding is split in two:

1. A Decoder turns container bytes (WAV, FLAC, OGG, headerless PCM...)
   into interleaved 16-bit little-endian PCM plus channel count and
   sample rate.
2. WaveformSource mixes that PCM down to mono float64 in [-1, 1],
   converting frame-aligned chunks in parallel and reporting progress
   by bytes processed.

Usage:
    source = WaveformSource(AutoDecoder())
    samples, sr = source.decode(data, on_progress=print, cancel=CancelToken())
"""

from __future__ import annotations

import io
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
import soundfile as sf

from .config import ErrorCode
from .coordinator.worker import (
    CancelToken,
    ProgressCallback,
    ProgressCounter,
    chunk_bounds,
    run_indexed,
)
from .errors import InsufficientData, WavscopeError

logger = logging.getLogger(__name__)

PCM_SAMPLE_BYTES = 2
PCM_SCALE = 32768.0

# Cancellation is checked at least this often inside a chunk
SUB_CHUNK_FRAMES = 16384

# Chunks smaller than this are not worth a separate worker
MIN_CHUNK_BYTES = 64 * 1024


class DecodeError(WavscopeError):
    """The decoder could not turn the bytes into PCM."""

    code = ErrorCode.DECODE_FAILED


@dataclass(frozen=True)
class DecodedPCM:
    """Interleaved signed 16-bit little-endian PCM."""
    pcm: bytes
    sample_rate: int
    channels: int


class Decoder(ABC):
    """Decode-to-PCM primitive (container/codec specific)."""

    name = "decoder"

    @abstractmethod
    def decode(self, data: bytes) -> DecodedPCM:
        """Decode ``data`` or raise DecodeError."""


class SoundFileDecoder(Decoder):
    """WAV/FLAC/OGG/AIFF via libsndfile."""

    name = "soundfile"

    def decode(self, data: bytes) -> DecodedPCM:
        try:
            frames, sr = sf.read(io.BytesIO(data), dtype="int16", always_2d=True)
        except (RuntimeError, TypeError, ValueError) as e:
            raise DecodeError(f"soundfile could not decode stream: {e}") from e
        pcm = np.ascontiguousarray(frames, dtype="<i2").tobytes()
        return DecodedPCM(pcm=pcm, sample_rate=int(sr), channels=int(frames.shape[1]))


class RawPCMDecoder(Decoder):
    """Headerless 16-bit little-endian PCM at a fixed rate/channel count."""

    name = "raw"

    def __init__(self, sample_rate: int = 44100, channels: int = 1):
        self.sample_rate = sample_rate
        self.channels = channels

    def decode(self, data: bytes) -> DecodedPCM:
        return DecodedPCM(pcm=bytes(data), sample_rate=self.sample_rate, channels=self.channels)


class AutoDecoder(Decoder):
    """Try soundfile first; treat unrecognized containers as raw PCM."""

    name = "auto"

    def __init__(self, raw_sample_rate: int = 44100, raw_channels: int = 2):
        self._container = SoundFileDecoder()
        self._raw = RawPCMDecoder(raw_sample_rate, raw_channels)

    def decode(self, data: bytes) -> DecodedPCM:
        try:
            return self._container.decode(data)
        except DecodeError as e:
            logger.debug(f"Falling back to raw PCM: {e}")
            return self._raw.decode(data)


class WaveformSource:
    """
    Mono mixdown of decoded PCM.

    Chunks are frame-aligned and independent, so any number of workers
    produce the same samples.
    """

    def __init__(self, decoder: Optional[Decoder] = None, max_workers: int = 1):
        self.decoder = decoder or AutoDecoder()
        self.max_workers = max_workers

    def decode(
        self,
        data: bytes,
        on_progress: Optional[ProgressCallback] = None,
        cancel: Optional[CancelToken] = None,
    ) -> Tuple[np.ndarray, int]:
        """
        Decode ``data`` to (samples, sample_rate).

        Raises:
            InsufficientData: Fewer than 2 bytes, or less than one PCM frame
            DecodeError: The decoder rejected the data
            Cancelled: The token was cancelled; nothing is returned
        """
        cancel = cancel or CancelToken()
        if len(data) < PCM_SAMPLE_BYTES:
            raise InsufficientData(f"need at least {PCM_SAMPLE_BYTES} bytes of audio, got {len(data)}")

        decoded = self.decoder.decode(data)
        cancel.raise_if_cancelled()

        frame_bytes = PCM_SAMPLE_BYTES * decoded.channels
        usable = len(decoded.pcm) - len(decoded.pcm) % frame_bytes
        if usable < frame_bytes:
            raise InsufficientData("decoded stream holds no complete PCM frame")

        ints = np.frombuffer(decoded.pcm, dtype="<i2", count=usable // PCM_SAMPLE_BYTES)
        samples = np.empty(usable // frame_bytes, dtype=np.float64)

        chunks = max(1, min(self.max_workers, usable // MIN_CHUNK_BYTES))
        bounds = chunk_bounds(usable, chunks, align=frame_bytes)
        progress = ProgressCounter(usable, on_progress)
        channels = decoded.channels

        def convert(chunk: int) -> None:
            start, end = bounds[chunk]
            first, last = start // frame_bytes, end // frame_bytes
            for lo in range(first, last, SUB_CHUNK_FRAMES):
                cancel.raise_if_cancelled()
                hi = min(lo + SUB_CHUNK_FRAMES, last)
                block = ints[lo * channels:hi * channels].reshape(-1, channels)
                samples[lo:hi] = block.mean(axis=1) / PCM_SCALE
                progress.advance((hi - lo) * frame_bytes)

        run_indexed(convert, len(bounds), self.max_workers, cancel, "wavscope-decode")
        logger.debug(
            f"Decoded {len(samples)} samples at {decoded.sample_rate} Hz "
            f"({decoded.channels} ch) with {self.decoder.name} decoder"
        )
        return samples, decoded.sample_rate
