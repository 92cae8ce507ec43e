from functools import lru_cache
from typing import Optional, Union

import librosa
import numpy as np
from loguru import logger

from audio_phash.core.config import (
    BIT_ORDER,
    HASH_BITS,
    FingerprintConfig,
    FrameConfig,
    validate_sample_rate,
)
from audio_phash.core.errors import InsufficientFramesError, InvalidFrameConfig, InvalidSampleBufferError
from audio_phash.core.types import AudioHash, SampleBuffer

"""
PERCEPTUAL HASHING

    SampleBuffer (8 kHz mono)
            ↓  frame: 4096 samples every 128 samples (31/32 overlap), last partial frame dropped
    Hamming window + real FFT  ->  magnitude spectrum (2049 bins per frame)
            ↓  33 triangular filters spaced evenly on the Bark scale (300 - 3000 Hz)
    Bark energies  (frames x 33)
            ↓  spectral difference between neighbouring bands, then its change since the previous frame
    one 32 bit word per frame (the first frame is context only)

Why differences and not energies: re-encoding, a volume change or light noise moves
every energy a little, but rarely flips which of two neighbouring bands gained more
energy than the frame before. Those signs are the bits.
"""


# --- BARK SCALE ---
def hz_to_bark(freq):
    return 6.0 * np.arcsinh(np.asarray(freq, dtype=np.float64) / 600.0)


def bark_to_hz(bark):
    return 600.0 * np.sinh(np.asarray(bark, dtype=np.float64) / 6.0)


@lru_cache(maxsize=32)
def bark_filter_bank(sample_rate: int, n_fft: int, n_bands: int, min_freq: float, max_freq: float) -> np.ndarray:
    """
    Triangular Bark filter bank, shape (n_bands, n_fft // 2 + 1).

    n_bands + 2 edge frequencies are spaced evenly on the Bark scale between min_freq and
    min(max_freq, nyquist). Filter b rises from edge b to a peak of 1 at edge b+1, then
    falls back to 0 at edge b+2, so low bands are narrow in Hz and high bands are wide.

    Depends only on its arguments, cached and returned read-only so it can be shared
    between threads.
    """
    top = min(float(max_freq), sample_rate / 2.0)
    if not 0.0 <= min_freq < top:
        raise InvalidFrameConfig(
            f"Bark range {min_freq} - {max_freq} Hz is empty at {sample_rate} Hz (nyquist {sample_rate / 2} Hz)"
        )

    fft_freqs = librosa.fft_frequencies(sr=sample_rate, n_fft=n_fft)
    edges = bark_to_hz(np.linspace(hz_to_bark(min_freq), hz_to_bark(top), n_bands + 2))

    weights = np.zeros((n_bands, fft_freqs.shape[0]), dtype=np.float64)
    for b in range(n_bands):
        lower, center, upper = edges[b], edges[b + 1], edges[b + 2]
        rising = (fft_freqs - lower) / (center - lower)
        falling = (upper - fft_freqs) / (upper - center)
        weights[b] = np.maximum(0.0, np.minimum(rising, falling))

    weights.setflags(write=False)
    return weights


class FrameSpectralAnalyzer:
    """
    Input: SampleBuffer
    Output: Bark energies, shape (frames, bands), one row (FrameEnergyVector) per analysis frame

    frame_length = 4096 at 8 kHz is 0.512 sec per frame; frequency resolution 8000 / 4096 ≈ 1.95 Hz.
    hop = 128 samples (16 ms), so about 62 frames per second of audio.
    """

    def __init__(self, frame_config: Optional[FrameConfig] = None):
        self.frame_config = (frame_config or FrameConfig()).validate()

    def frame_count(self, n_samples: int) -> int:
        L = self.frame_config.frame_length
        if n_samples < L:
            return 0
        return (n_samples - L) // self.frame_config.hop_length + 1

    def analyze(self, buffer: SampleBuffer) -> np.ndarray:
        cfg = self.frame_config
        n_frames = self.frame_count(len(buffer))

        if n_frames == 0:
            # Not an error here: downstream decides that nothing is hashable
            logger.debug(f"Buffer of {len(buffer)} samples is shorter than one frame ({cfg.frame_length})")
            return np.zeros((0, cfg.bands), dtype=np.float64)

        # Filter bank first, so an impossible Bark range fails before the FFT work
        bank = bark_filter_bank(buffer.sample_rate, cfg.frame_length, cfg.bands, cfg.min_freq, cfg.max_freq)

        magnitude = self._compute_spectrogram(buffer.samples)
        energies = (bank @ magnitude).T  # (frames, bands)

        logger.debug(f"Analyzed {n_frames} frames x {cfg.bands} Bark bands (hop {cfg.hop_length})")
        return np.ascontiguousarray(energies)

    def _compute_spectrogram(self, y: np.ndarray) -> np.ndarray:
        """
        STFT -> Magnitude, shape (n_fft // 2 + 1, frames).

        center=False: frames start at sample 0 and the trailing window that does not fit is
        dropped instead of zero padded (padding would inject artificial energy).
        Computed in float64 so every run and machine sees the same numbers.
        """
        cfg = self.frame_config
        return np.abs(
            librosa.stft(
                y.astype(np.float64),
                n_fft=cfg.frame_length,
                hop_length=cfg.hop_length,
                window="hamming",
                center=False,
            )
        )


class HashEncoder:
    """
    Input: Bark energies (frames x 33)
    Output: AudioHash with frames - 1 words

    For frame i and band pair m (bands m and m+1):
        spectral derivative   S_i[m] = E_i[m] - E_i[m+1]
        temporal derivative   D_i[m] = S_i[m] - S_(i-1)[m]
        bit                   1 if D_i[m] >= 0 else 0

    33 bands give 32 band pairs -> 32 bits. BIT_ORDER (core/config.py) places band pair m at
    bit 31 - m. A derivative of exactly 0 is a 1 bit, so silence hashes to 0xFFFFFFFF.
    """

    def __init__(self):
        self.weights = np.array([1 << position for position in BIT_ORDER], dtype=np.uint64)

    def encode(self, energies: np.ndarray) -> AudioHash:
        energies = np.asarray(energies, dtype=np.float64)
        if energies.ndim != 2:
            raise InvalidSampleBufferError(f"expected a (frames, bands) energy matrix, got shape {energies.shape}")

        n_frames, n_bands = energies.shape
        if n_bands != HASH_BITS + 1:
            raise InvalidFrameConfig(f"hash table needs {HASH_BITS + 1} Bark bands, got {n_bands}")
        if n_frames < 2:
            raise InsufficientFramesError(f"need at least 2 frames to hash, got {n_frames}")

        spectral = energies[:, :-1] - energies[:, 1:]
        temporal = spectral[1:] - spectral[:-1]
        bits = (temporal >= 0).astype(np.uint64)

        words = (bits * self.weights).sum(axis=1).astype(np.uint32)
        logger.debug(f"Encoded {words.shape[0]} hash words from {n_frames} frames")
        return AudioHash(words)


def compute_audio_hash(
    buffer: Union[SampleBuffer, np.ndarray],
    config: Optional[FingerprintConfig] = None,
    sample_rate: Optional[int] = None,
) -> AudioHash:
    """
    The Pure Logic: takes samples, returns the audio hash. Does not care where the audio came from.

    `buffer` is a SampleBuffer, or a raw 1-D array together with `sample_rate`.
    An explicit `sample_rate` must agree with the buffer's own rate.
    """
    config = (config or FingerprintConfig()).validate()

    if isinstance(buffer, SampleBuffer):
        if sample_rate is not None and validate_sample_rate(sample_rate) != buffer.sample_rate:
            raise InvalidSampleBufferError(
                f"sample_rate={sample_rate} disagrees with the buffer's {buffer.sample_rate} Hz"
            )
    else:
        buffer = SampleBuffer(buffer, sample_rate if sample_rate is not None else config.sample_rate)

    energies = FrameSpectralAnalyzer(config.frame).analyze(buffer)
    return HashEncoder().encode(energies)
