from functools import cached_property
from pathlib import Path
from typing import Optional, Union

from loguru import logger

from audio_phash.core.audio import read_audio
from audio_phash.core.config import FingerprintConfig
from audio_phash.core.types import AudioHash, ComparisonResult
from audio_phash.services.perceptual_branch.dsp import compute_audio_hash
from audio_phash.services.perceptual_branch.matcher import compare, compute_similarity


def audio_hash(
    path: Union[str, Path],
    max_duration: float = 0.0,
    config: Optional[FingerprintConfig] = None,
) -> AudioHash:
    """
    File on disk -> AudioHash.

        read_audio (decode, mono, resample to config.sample_rate)
            ↓
        compute_audio_hash

    Any stage failure propagates unchanged, so the caller sees exactly one error
    from the stage that produced it.
    """
    config = config or FingerprintConfig()
    buffer = read_audio(path, sample_rate=config.sample_rate, max_duration=max_duration)
    phash = compute_audio_hash(buffer, config)
    logger.info(f"🔍 Hashed {Path(path).name}: {len(phash)} words from {buffer.duration:.1f}s of audio")
    return phash


class AudioFingerprint:
    """
    An audio file and its perceptual hash, computed on first use and cached.

        a = AudioFingerprint("song.mp3")
        b = AudioFingerprint("song_128kbps.ogg", max_duration=30)
        a.similarity(b)   # -> 0.93
    """

    def __init__(
        self,
        path: Union[str, Path],
        max_duration: float = 0.0,
        config: Optional[FingerprintConfig] = None,
    ):
        self.path = Path(path)
        self.max_duration = max_duration
        self.config = config or FingerprintConfig()

    @cached_property
    def phash(self) -> AudioHash:
        return audio_hash(self.path, self.max_duration, self.config)

    def _other_hash(self, other) -> AudioHash:
        return other.phash if isinstance(other, AudioFingerprint) else other

    def _check_comparable(self, other):
        # before any decoding happens on either side
        if not isinstance(other, (AudioFingerprint, AudioHash)):
            raise TypeError(f"cannot compare AudioFingerprint with {type(other).__name__}")

    def similarity(self, other, threshold: Optional[float] = None, block_size: Optional[int] = None) -> float:
        self._check_comparable(other)
        return compute_similarity(
            self.phash,
            self._other_hash(other),
            self.config.threshold if threshold is None else threshold,
            self.config.block_size if block_size is None else block_size,
        )

    def compare(self, other, threshold: Optional[float] = None, block_size: Optional[int] = None) -> ComparisonResult:
        self._check_comparable(other)
        return compare(
            self.phash,
            self._other_hash(other),
            self.config.threshold if threshold is None else threshold,
            self.config.block_size if block_size is None else block_size,
        )

    def __repr__(self):
        return f"<AudioFingerprint(path={self.path.name}, max_duration={self.max_duration})>"
