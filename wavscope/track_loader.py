"""
Track loading collaborators.

- stream_source(): reads a local file or downloads an http(s) URL into
  memory, reporting (loaded, total) bytes and honoring a CancelToken
- extract_metadata(): sample rate, channels and duration of the loaded
  bytes, with a raw-PCM fallback for unrecognized containers
"""

from __future__ import annotations

import io
import logging
import os
from dataclasses import dataclass
from typing import Callable, Optional

import requests
import soundfile as sf

from .config import DEFAULT_CONFIG, ErrorCode
from .coordinator.worker import CancelToken
from .errors import LoadFailed

logger = logging.getLogger(__name__)

# (bytes_loaded, total_bytes); total is 0 when unknown
ByteProgress = Callable[[int, int], None]

# (source, on_progress, cancel) -> bytes
ByteStreamer = Callable[[str, Optional[ByteProgress], CancelToken], bytes]


def is_url(source: str) -> bool:
    return source.startswith(("http://", "https://"))


def stream_file(
    path: str,
    on_progress: Optional[ByteProgress] = None,
    cancel: Optional[CancelToken] = None,
    chunk_size: int = DEFAULT_CONFIG.read_chunk_size,
) -> bytes:
    """
    Read a local file in chunks.

    Raises:
        LoadFailed: Missing or unreadable file
        Cancelled: The token was cancelled mid-read
    """
    cancel = cancel or CancelToken()
    try:
        total = os.path.getsize(path)
        buffer = bytearray()
        with open(path, "rb") as f:
            while True:
                cancel.raise_if_cancelled()
                chunk = f.read(chunk_size)
                if not chunk:
                    break
                buffer.extend(chunk)
                if on_progress:
                    on_progress(len(buffer), total)
    except FileNotFoundError as e:
        raise LoadFailed(f"file not found: {path}", ErrorCode.FILE_NOT_FOUND) from e
    except OSError as e:
        raise LoadFailed(e) from e

    logger.debug(f"Read {len(buffer)} bytes from {path}")
    return bytes(buffer)


def stream_url(
    url: str,
    on_progress: Optional[ByteProgress] = None,
    cancel: Optional[CancelToken] = None,
    chunk_size: int = DEFAULT_CONFIG.read_chunk_size,
    timeout: float = DEFAULT_CONFIG.http_timeout,
) -> bytes:
    """
    Download ``url`` with a streaming GET.

    Raises:
        LoadFailed: Network error or a status other than 200
        Cancelled: The token was cancelled mid-download
    """
    cancel = cancel or CancelToken()
    try:
        with requests.get(url, stream=True, timeout=timeout) as response:
            if response.status_code != 200:
                raise LoadFailed(
                    f"bad status: {response.status_code} {response.reason}",
                    ErrorCode.DOWNLOAD_FAILED,
                )
            total = int(response.headers.get("Content-Length") or 0)
            buffer = bytearray()
            for chunk in response.iter_content(chunk_size=chunk_size):
                cancel.raise_if_cancelled()
                if not chunk:
                    continue
                buffer.extend(chunk)
                if on_progress:
                    on_progress(len(buffer), total)
    except requests.RequestException as e:
        raise LoadFailed(e, ErrorCode.DOWNLOAD_FAILED) from e

    logger.debug(f"Downloaded {len(buffer)} bytes from {url}")
    return bytes(buffer)


def stream_source(
    source: str,
    on_progress: Optional[ByteProgress] = None,
    cancel: Optional[CancelToken] = None,
    chunk_size: int = DEFAULT_CONFIG.read_chunk_size,
    timeout: float = DEFAULT_CONFIG.http_timeout,
) -> bytes:
    """Default ByteStreamer: download URLs, read everything else from disk."""
    if is_url(source):
        return stream_url(source, on_progress, cancel, chunk_size=chunk_size, timeout=timeout)
    return stream_file(source, on_progress, cancel, chunk_size=chunk_size)


@dataclass(frozen=True)
class TrackMetadata:
    sample_rate: int
    channels: int
    duration: float
    format: str
    size_bytes: int


def extract_metadata(
    data: bytes,
    raw_sample_rate: int = DEFAULT_CONFIG.raw_sample_rate,
    raw_channels: int = DEFAULT_CONFIG.raw_channels,
) -> TrackMetadata:
    """
    Describe the loaded bytes.

    Containers libsndfile cannot identify are treated as headerless
    16-bit PCM at ``raw_sample_rate`` / ``raw_channels``.
    """
    try:
        info = sf.info(io.BytesIO(data))
    except (RuntimeError, TypeError, ValueError) as e:
        logger.debug(f"Unrecognized container, assuming raw PCM: {e}")
        bytes_per_second = raw_sample_rate * raw_channels * 2
        return TrackMetadata(
            sample_rate=raw_sample_rate,
            channels=raw_channels,
            duration=len(data) / float(bytes_per_second),
            format="RAW",
            size_bytes=len(data),
        )

    return TrackMetadata(
        sample_rate=int(info.samplerate),
        channels=int(info.channels),
        duration=float(info.duration),
        format=str(info.format),
        size_bytes=len(data),
    )
