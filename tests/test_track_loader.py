"""Tests for byte streaming and metadata extraction."""
from pathlib import Path
from unittest.mock import MagicMock, patch

import numpy as np
import pytest
import requests

from conftest import make_sine, to_pcm16
from wavscope.config import ErrorCode
from wavscope.coordinator.worker import CancelToken
from wavscope.errors import Cancelled, LoadFailed
from wavscope.track_loader import (
    extract_metadata,
    is_url,
    stream_file,
    stream_source,
    stream_url,
)


def _response(status=200, chunks=(b"abc", b"def"), length=None, reason="OK"):
    response = MagicMock()
    response.status_code = status
    response.reason = reason
    response.headers = {} if length is None else {"Content-Length": str(length)}
    response.iter_content.return_value = iter(chunks)
    response.__enter__.return_value = response
    response.__exit__.return_value = False
    return response


class TestIsUrl:

    def test_schemes(self):
        assert is_url("http://example.com/a.wav")
        assert is_url("https://example.com/a.wav")
        assert not is_url("/tmp/a.wav")
        assert not is_url("ftp://example.com/a.wav")


class TestStreamFile:

    def test_reads_whole_file(self, temp_dir):
        path = Path(temp_dir) / "blob.bin"
        payload = bytes(range(256)) * 1000
        path.write_bytes(payload)
        assert stream_file(str(path)) == payload

    def test_reports_progress_per_chunk(self, temp_dir):
        path = Path(temp_dir) / "blob.bin"
        path.write_bytes(b"x" * 250)
        reports = []
        stream_file(str(path), on_progress=lambda loaded, total: reports.append((loaded, total)), chunk_size=100)
        assert reports == [(100, 250), (200, 250), (250, 250)]

    def test_missing_file(self, temp_dir):
        with pytest.raises(LoadFailed) as excinfo:
            stream_file(str(Path(temp_dir) / "missing.wav"))
        assert excinfo.value.code == ErrorCode.FILE_NOT_FOUND
        assert str(excinfo.value).startswith("Load failed:")

    def test_cancel_mid_read(self, temp_dir):
        path = Path(temp_dir) / "blob.bin"
        path.write_bytes(b"x" * 1000)
        token = CancelToken()

        def on_progress(loaded, total):
            token.cancel()

        with pytest.raises(Cancelled):
            stream_file(str(path), on_progress=on_progress, cancel=token, chunk_size=100)


class TestStreamUrl:

    def test_downloads_chunks(self):
        reports = []
        with patch("wavscope.track_loader.requests.get", return_value=_response(length=6)) as get:
            data = stream_url("https://example.com/a.wav", lambda l, t: reports.append((l, t)), timeout=5)
        assert data == b"abcdef"
        assert reports == [(3, 6), (6, 6)]
        get.assert_called_once_with("https://example.com/a.wav", stream=True, timeout=5)

    def test_unknown_length(self):
        reports = []
        with patch("wavscope.track_loader.requests.get", return_value=_response()):
            stream_url("http://example.com/a.wav", lambda l, t: reports.append((l, t)))
        assert reports == [(3, 0), (6, 0)]

    def test_bad_status(self):
        with patch("wavscope.track_loader.requests.get", return_value=_response(status=404, reason="Not Found")):
            with pytest.raises(LoadFailed, match="bad status: 404") as excinfo:
                stream_url("https://example.com/missing.wav")
        assert excinfo.value.code == ErrorCode.DOWNLOAD_FAILED

    def test_network_error(self):
        with patch("wavscope.track_loader.requests.get", side_effect=requests.ConnectionError("refused")):
            with pytest.raises(LoadFailed) as excinfo:
                stream_url("https://example.com/a.wav")
        assert excinfo.value.code == ErrorCode.DOWNLOAD_FAILED

    def test_cancel_mid_download(self):
        token = CancelToken()
        with patch("wavscope.track_loader.requests.get", return_value=_response()):
            with pytest.raises(Cancelled):
                stream_url("https://example.com/a.wav", lambda l, t: token.cancel(), cancel=token)

    def test_stream_source_dispatch(self, temp_dir):
        path = Path(temp_dir) / "local.bin"
        path.write_bytes(b"local")
        assert stream_source(str(path)) == b"local"
        with patch("wavscope.track_loader.requests.get", return_value=_response()):
            assert stream_source("https://example.com/a.wav") == b"abcdef"


class TestExtractMetadata:

    def test_wav(self, write_wav):
        path = write_wav(make_sine(440, 2.0, 22050), sr=22050, channels=2)
        data = Path(path).read_bytes()
        metadata = extract_metadata(data)
        assert metadata.sample_rate == 22050
        assert metadata.channels == 2
        assert metadata.duration == pytest.approx(2.0)
        assert metadata.format == "WAV"
        assert metadata.size_bytes == len(data)

    def test_raw_fallback(self):
        data = to_pcm16(np.zeros(44100), channels=2)
        metadata = extract_metadata(data)
        assert metadata.format == "RAW"
        assert metadata.sample_rate == 44100
        assert metadata.channels == 2
        assert metadata.duration == pytest.approx(1.0)

    def test_raw_fallback_custom_layout(self):
        metadata = extract_metadata(b"\x00" * 16000, raw_sample_rate=8000, raw_channels=1)
        assert metadata.duration == pytest.approx(1.0)
