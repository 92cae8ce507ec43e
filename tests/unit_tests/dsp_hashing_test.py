import numpy as np
import pytest
from unittest.mock import patch

from audio_phash.core.config import FingerprintConfig, FrameConfig
from audio_phash.core.errors import InsufficientFramesError, InvalidFrameConfig, InvalidSampleBufferError
from audio_phash.core.types import AudioHash, SampleBuffer
from audio_phash.services.perceptual_branch.dsp import (
    FrameSpectralAnalyzer,
    HashEncoder,
    bark_filter_bank,
    compute_audio_hash,
    hz_to_bark,
    bark_to_hz,
)
from audio_phash.services.perceptual_branch.matcher import compute_similarity


def _noise(n, seed=0):
    return np.random.default_rng(seed).standard_normal(n).astype(np.float32) * 0.1


class TestFrameSpectralAnalyzer:

    def test_frame_count_for_silence_scenario(self):
        analyzer = FrameSpectralAnalyzer()
        # floor((50000 - 4096) / 128) + 1 = floor(358.625) + 1
        assert analyzer.frame_count(50000) == 359

        energies = analyzer.analyze(SampleBuffer(np.zeros(50000), 8000))
        assert energies.shape == (359, 33)

    def test_buffer_shorter_than_a_frame_gives_no_frames(self):
        energies = FrameSpectralAnalyzer().analyze(SampleBuffer(np.zeros(4095), 8000))
        assert energies.shape == (0, 33)

    def test_trailing_partial_frame_is_dropped(self):
        analyzer = FrameSpectralAnalyzer()
        # 4096 + 128 + 127 samples: the third window would need one more sample
        assert analyzer.frame_count(4096 + 128 + 127) == 2
        assert analyzer.analyze(SampleBuffer(_noise(4096 + 128 + 127), 8000)).shape == (2, 33)

    def test_energies_are_non_negative(self):
        energies = FrameSpectralAnalyzer().analyze(SampleBuffer(_noise(12000), 8000))
        assert np.all(energies >= 0)
        assert np.any(energies > 0)

    @pytest.mark.parametrize(
        "frame_config",
        [
            FrameConfig(frame_length=0),
            FrameConfig(frame_length=-4096),
            FrameConfig(overlap=1.0),
            FrameConfig(bands=0),
            FrameConfig(min_freq=3000.0, max_freq=300.0),
        ],
    )
    def test_invalid_frame_config(self, frame_config):
        with pytest.raises(InvalidFrameConfig):
            FrameSpectralAnalyzer(frame_config)

    def test_bark_range_above_nyquist_is_rejected(self):
        # 400 Hz sampling -> nyquist 200 Hz, below the 300 Hz lower edge
        with pytest.raises(InvalidFrameConfig):
            FrameSpectralAnalyzer().analyze(SampleBuffer(np.zeros(5000), 400))


class TestBarkFilterBank:

    def test_bark_scale_round_trip(self):
        freqs = np.array([0.0, 300.0, 1000.0, 3000.0])
        assert np.allclose(bark_to_hz(hz_to_bark(freqs)), freqs)

    def test_shape_and_support(self):
        bank = bark_filter_bank(8000, 4096, 33, 300.0, 3000.0)
        fft_freqs = np.arange(4096 // 2 + 1) * 8000 / 4096

        assert bank.shape == (33, 2049)
        assert np.all(bank >= 0) and np.all(bank <= 1.0)
        # Nothing outside 300 - 3000 Hz contributes
        assert np.all(bank[:, fft_freqs <= 300.0] == 0)
        assert np.all(bank[:, fft_freqs >= 3000.0] == 0)
        # Every band sees some bins
        assert np.all(bank.sum(axis=1) > 0)

    def test_low_bands_are_narrower_than_high_bands(self):
        bank = bark_filter_bank(8000, 4096, 33, 300.0, 3000.0)
        widths = (bank > 0).sum(axis=1)
        assert widths[0] < widths[-1]

    def test_bank_is_shared_read_only(self):
        bank = bark_filter_bank(8000, 4096, 33, 300.0, 3000.0)
        assert bank is bark_filter_bank(8000, 4096, 33, 300.0, 3000.0)
        with pytest.raises(ValueError):
            bank[0, 0] = 1.0


class TestHashEncoder:

    def test_bit_order_band_pair_zero_is_msb(self):
        energies = np.zeros((2, 33))
        # S_1[0] = E[0] - E[1] = -1 (bit 31 -> 0), S_1[1] = E[1] - E[2] = +1 (bit 30 -> 1)
        energies[1, 1] = 1.0

        phash = HashEncoder().encode(energies)

        assert list(phash) == [0x7FFFFFFF]

    def test_last_band_pair_is_lsb(self):
        energies = np.zeros((2, 33))
        energies[1, 32] = 1.0  # S_1[31] = E[31] - E[32] = -1
        assert list(HashEncoder().encode(energies)) == [0xFFFFFFFE]

    def test_temporal_difference_not_absolute_level(self):
        # Same spectral shape in both frames -> every temporal derivative is 0 -> all ones
        shape = np.linspace(5.0, 1.0, 33)
        energies = np.vstack([shape, shape * 1.0])
        assert list(HashEncoder().encode(energies)) == [0xFFFFFFFF]

    def test_needs_two_frames(self):
        with pytest.raises(InsufficientFramesError):
            HashEncoder().encode(np.zeros((1, 33)))

    def test_band_count_must_match_bit_table(self):
        with pytest.raises(InvalidFrameConfig):
            HashEncoder().encode(np.zeros((5, 32)))

    def test_rejects_non_matrix_input(self):
        with pytest.raises(InvalidSampleBufferError):
            HashEncoder().encode(np.zeros(33))


class TestComputeAudioHash:

    def test_silence_scenario(self):
        phash = compute_audio_hash(SampleBuffer(np.zeros(50000, dtype=np.float32), 8000))

        assert isinstance(phash, AudioHash)
        assert len(phash) == 358
        assert all(word == 0xFFFFFFFF for word in phash)

    def test_empty_buffer_is_insufficient_frames(self):
        with pytest.raises(InsufficientFramesError):
            compute_audio_hash(SampleBuffer(np.zeros(0), 8000))

    def test_one_frame_is_insufficient(self):
        with pytest.raises(InsufficientFramesError):
            compute_audio_hash(SampleBuffer(np.zeros(4096), 8000))

    def test_two_frames_give_one_word(self):
        assert len(compute_audio_hash(SampleBuffer(_noise(4096 + 128), 8000))) == 1

    def test_deterministic(self):
        samples = _noise(24000, seed=7)
        first = compute_audio_hash(SampleBuffer(samples, 8000))
        second = compute_audio_hash(SampleBuffer(samples.copy(), 8000))
        assert first == second
        assert first.to_bytes() == second.to_bytes()

    def test_raw_array_with_explicit_rate(self):
        samples = _noise(12000, seed=3)
        assert compute_audio_hash(samples, sample_rate=8000) == compute_audio_hash(SampleBuffer(samples, 8000))

    def test_conflicting_rate_is_rejected(self):
        with pytest.raises(InvalidSampleBufferError):
            compute_audio_hash(SampleBuffer(np.zeros(10000), 8000), sample_rate=16000)

    def test_volume_change_keeps_the_hash(self):
        # Halving scales every energy by the same factor, so the signs of the differences survive
        samples = _noise(24000, seed=11)
        loud = compute_audio_hash(SampleBuffer(samples, 8000))
        quiet = compute_audio_hash(SampleBuffer(samples * 0.5, 8000))
        assert compute_similarity(loud, quiet) >= 0.99

    def test_unrelated_audio_scores_low(self):
        a = compute_audio_hash(SampleBuffer(_noise(16000, seed=1), 8000))
        b = compute_audio_hash(SampleBuffer(_noise(16000, seed=2), 8000))
        assert compute_similarity(a, b) < 0.75

    def test_custom_frame_config(self):
        config = FingerprintConfig(frame=FrameConfig(frame_length=1024, overlap=0.75))
        # hop = 256 -> floor((8000 - 1024) / 256) + 1 = 28 frames -> 27 words
        assert len(compute_audio_hash(SampleBuffer(_noise(8000), 8000), config)) == 27

    def test_band_count_other_than_33_fails_before_analysis(self):
        config = FingerprintConfig(frame=FrameConfig(bands=24))
        with patch.object(FrameSpectralAnalyzer, "analyze") as mock_analyze:
            with pytest.raises(InvalidFrameConfig):
                compute_audio_hash(SampleBuffer(_noise(8000), 8000), config)
        mock_analyze.assert_not_called()
