"""Tests for AudioModel query helpers."""
import numpy as np
import pytest

from wavscope.audio_model import AudioModel


def _model_with_spectrum(frames=100, bins=4, sr=1000, hop=10):
    model = AudioModel(sample_rate=sr, window_size=20, hop_size=hop, fft_size=bins * 2)
    model.raw_samples = np.zeros(frames * hop + 20)
    model.spectrogram = np.ones((frames, bins))
    model.freq_bands = np.arange(bins, dtype=float) * 100.0
    model.rms_energy = np.arange(frames, dtype=float)
    return model


class TestAudioModelState:

    def test_empty_model(self):
        model = AudioModel(sample_rate=44100)
        assert not model.has_waveform
        assert not model.has_spectrum
        assert not model.has_beats
        assert model.num_frames == 0
        assert model.duration == 0.0
        assert model.beat_times() == []

    def test_duration_and_frame_duration(self):
        model = AudioModel(sample_rate=44100)
        model.raw_samples = np.zeros(44100 * 3)
        assert model.duration == pytest.approx(3.0)
        assert model.frame_duration == pytest.approx(512 / 44100)

    def test_stage_flags(self):
        model = _model_with_spectrum()
        assert model.has_waveform
        assert model.has_spectrum
        assert not model.has_beats
        assert model.num_frames == 100


class TestQueries:

    def test_beat_times(self):
        model = AudioModel(sample_rate=1000, hop_size=10)
        onsets = np.zeros(50, dtype=bool)
        onsets[[0, 25, 49]] = True
        model.beat_onsets = onsets
        assert model.beat_times() == pytest.approx([0.0, 0.25, 0.49])

    def test_frequency_response(self):
        model = _model_with_spectrum()
        model.spectrogram[30] = [1.0, 2.0, 3.0, 4.0]
        np.testing.assert_array_equal(model.frequency_response(0.305), [1.0, 2.0, 3.0, 4.0])

    def test_frequency_response_out_of_range(self):
        model = _model_with_spectrum()
        assert model.frequency_response(-0.5) is None
        assert model.frequency_response(10.0) is None
        assert AudioModel(sample_rate=1000).frequency_response(0.0) is None

    def test_envelope_segment(self):
        model = _model_with_spectrum()
        np.testing.assert_array_equal(model.envelope_segment(0.105, 0.205), np.arange(10, 20))

    def test_envelope_segment_clipped(self):
        model = _model_with_spectrum()
        segment = model.envelope_segment(0.905, 5.0)
        np.testing.assert_array_equal(segment, np.arange(90, 99))
        assert len(model.envelope_segment(0.5, 0.5)) == 0

    def test_spectral_centroid(self):
        model = _model_with_spectrum()
        # flat spectrum over 0/100/200/300 Hz
        np.testing.assert_allclose(model.spectral_centroid(0.0, 0.105), 150.0)

    def test_spectral_centroid_silent_frames(self):
        model = _model_with_spectrum()
        model.spectrogram[:] = 0.0
        np.testing.assert_array_equal(model.spectral_centroid(0.0, 0.105), np.zeros(10))

    def test_spectral_centroid_without_spectrum(self):
        assert len(AudioModel(sample_rate=1000).spectral_centroid(0.0, 1.0)) == 0
