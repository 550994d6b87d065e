"""Tests for SpectralAnalyzer."""
import numpy as np
import pytest

from conftest import make_sine
from wavscope.coordinator.worker import CancelToken
from wavscope.errors import Cancelled, InsufficientData
from wavscope.spectral_analyzer import (
    SpectralAnalyzer,
    frame_count,
    frequency_bands,
    spectral_flux,
)


class TestFrameLayout:

    @pytest.mark.parametrize("n,window,hop", [
        (2048 + 512, 2048, 512),
        (10000, 2048, 512),
        (44100, 1024, 256),
        (4097, 2048, 1024),
    ])
    def test_frame_count_property(self, n, window, hop):
        result = SpectralAnalyzer().analyze(np.zeros(n), 44100, window, hop, 2048)
        assert result.spectrogram.shape == ((n - window) // hop, 1024)

    def test_three_minute_track_dimensions(self):
        # 180 s at 44.1 kHz -> floor((7938000 - 2048) / 512)
        assert frame_count(180 * 44100, 2048, 512) == 15499

    def test_freq_bands(self):
        bands = frequency_bands(44100, 2048)
        assert len(bands) == 1024
        assert bands[0] == 0.0
        assert bands[1] == pytest.approx(22050 / 1024)
        assert bands[1023] == pytest.approx(1023 * 22050 / 1024)
        assert bands[-1] < 22050

    def test_too_short(self):
        analyzer = SpectralAnalyzer()
        with pytest.raises(InsufficientData):
            analyzer.analyze(np.zeros(2048), 44100)
        with pytest.raises(InsufficientData):
            analyzer.analyze(np.zeros(100), 44100)

    def test_window_larger_than_fft(self):
        with pytest.raises(ValueError):
            SpectralAnalyzer().analyze(np.zeros(10000), 44100, window_size=4096, fft_size=2048)


class TestMagnitudes:

    def test_hann_window_single_frame(self, sample_rate):
        rng = np.random.default_rng(1)
        samples = rng.normal(size=2048 + 512)
        result = SpectralAnalyzer().analyze(samples, sample_rate)

        i = np.arange(2048)
        window = 0.5 * (1 - np.cos(2 * np.pi * i / 2048))
        expected = np.abs(np.fft.fft(samples[:2048] * window))[:1024]
        np.testing.assert_allclose(result.spectrogram[0], expected, rtol=1e-9, atol=1e-9)

    def test_zero_padding(self, sample_rate):
        samples = make_sine(1000, 0.2, sample_rate)
        result = SpectralAnalyzer().analyze(samples, sample_rate, window_size=1024, hop_size=512, fft_size=4096)
        assert result.spectrogram.shape[1] == 2048
        assert len(result.freq_bands) == 2048

    def test_sine_peak_frequency(self, sample_rate):
        samples = make_sine(1000, 1.0, sample_rate)
        result = SpectralAnalyzer().analyze(samples, sample_rate)
        bin_width = sample_rate / 2048
        assert np.all(np.abs(result.peak_frequencies - 1000) <= bin_width)

    def test_silence_is_zero(self, sample_rate):
        result = SpectralAnalyzer().analyze(np.zeros(sample_rate), sample_rate)
        assert not result.spectrogram.any()
        assert not result.rms_energy.any()
        assert not result.spectral_flux.any()

    @pytest.mark.parametrize("workers", [2, 5])
    def test_worker_count_does_not_change_result(self, sample_rate, workers):
        rng = np.random.default_rng(3)
        samples = rng.normal(size=sample_rate * 2)
        reference = SpectralAnalyzer(max_workers=1).analyze(samples, sample_rate)
        result = SpectralAnalyzer(max_workers=workers).analyze(samples, sample_rate)
        np.testing.assert_array_equal(result.spectrogram, reference.spectrogram)


class TestDerivedFeatures:

    def test_rms_matches_definition(self, sample_rate):
        samples = make_sine(440, 0.5, sample_rate)
        result = SpectralAnalyzer().analyze(samples, sample_rate)
        expected = np.sqrt(np.mean(result.spectrogram ** 2, axis=1))
        np.testing.assert_allclose(result.rms_energy, expected)

    def test_flux_counts_only_increases(self):
        spectrogram = np.array([
            [1.0, 2.0, 3.0],
            [2.0, 1.0, 3.0],
            [0.0, 0.0, 0.0],
            [1.0, 1.0, 1.0],
        ])
        np.testing.assert_allclose(spectral_flux(spectrogram), [0.0, 1.0, 0.0, 3.0])

    def test_flux_rises_at_onset(self, sample_rate):
        samples = np.concatenate([np.zeros(sample_rate // 2), make_sine(440, 0.5, sample_rate)])
        result = SpectralAnalyzer().analyze(samples, sample_rate)
        onset_frame = int(np.argmax(result.spectral_flux))
        onset_time = onset_frame * 512 / sample_rate
        assert 0.4 < onset_time < 0.55


class TestProgressAndCancel:

    def test_progress_is_throttled_and_completes(self, sample_rate):
        reports = []
        SpectralAnalyzer(max_workers=2).analyze(
            np.zeros(sample_rate * 10), sample_rate, on_progress=reports.append
        )
        assert max(reports) == pytest.approx(1.0)
        # ~0.5% steps, never per frame
        assert len(reports) <= 210

    def test_cancel_mid_run(self, sample_rate):
        token = CancelToken()

        def on_progress(fraction):
            token.cancel()

        with pytest.raises(Cancelled):
            SpectralAnalyzer(max_workers=1).analyze(
                np.zeros(sample_rate * 10), sample_rate, on_progress=on_progress, cancel=token
            )

    def test_pre_cancelled(self, sample_rate):
        token = CancelToken()
        token.cancel()
        with pytest.raises(Cancelled):
            SpectralAnalyzer().analyze(np.zeros(sample_rate), sample_rate, cancel=token)
