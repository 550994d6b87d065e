"""
Pytest fixtures for wavscope tests.
"""
import pytest
import sys
import time
from pathlib import Path
import tempfile
import shutil

import numpy as np
import soundfile as sf

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


def make_sine(freq, duration, sr=44100, amplitude=0.5):
    t = np.arange(int(duration * sr)) / sr
    return amplitude * np.sin(2 * np.pi * freq * t)


def make_click_track(bpm=120.0, duration=30.0, sr=44100, first=None, amplitude=0.9):
    """Single-sample impulses every beat, starting half a beat in."""
    samples = np.zeros(int(duration * sr))
    period = int(round(60.0 / bpm * sr))
    start = period // 2 if first is None else first
    samples[start::period] = amplitude
    return samples


def to_pcm16(samples, channels=1):
    """Interleaved little-endian int16 bytes, same signal on every channel."""
    ints = np.clip(np.round(samples * 32767), -32768, 32767).astype("<i2")
    if channels > 1:
        ints = np.repeat(ints[:, None], channels, axis=1)
    return ints.tobytes()


def wait_until_idle(coordinator, timeout=30.0, interval=0.01):
    """Poll get_status() until IDLE; fails the test on timeout."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        status = coordinator.get_status()
        if status.is_idle:
            return status
        time.sleep(interval)
    pytest.fail(f"coordinator still busy after {timeout}s: {coordinator.get_status()}")


def wait_for(predicate, timeout=10.0, interval=0.005):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return False


@pytest.fixture
def sample_rate():
    """Standard sample rate for tests."""
    return 44100


@pytest.fixture
def temp_dir():
    """Create temporary directory for test outputs."""
    tmp = tempfile.mkdtemp()
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def temp_yaml_file(temp_dir):
    """Create temporary YAML file for config tests."""
    yaml_path = Path(temp_dir) / "test_config.yaml"
    return yaml_path


@pytest.fixture
def write_wav(temp_dir, sample_rate):
    """Factory: write samples to a 16-bit WAV in temp_dir and return its path."""
    def _write(samples, name="track.wav", sr=None, channels=1):
        data = np.asarray(samples)
        if channels > 1:
            data = np.repeat(data[:, None], channels, axis=1)
        path = Path(temp_dir) / name
        sf.write(str(path), data, sr or sample_rate, subtype="PCM_16")
        return str(path)
    return _write


@pytest.fixture
def click_track(sample_rate):
    """10 seconds of clicks at 120 BPM."""
    return make_click_track(bpm=120.0, duration=10.0, sr=sample_rate)
