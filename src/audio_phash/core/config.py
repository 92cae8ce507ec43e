# src/audio_phash/core/config.py

import os
from dataclasses import dataclass, field
from pathlib import Path
from dotenv import load_dotenv
from loguru import logger

from audio_phash.core.errors import (
    InvalidBlockSizeError,
    InvalidFrameConfig,
    InvalidSampleRateError,
    InvalidThresholdError,
)

load_dotenv()

# Audio Params
# 8 kHz covers the whole Bark filter bank (300 - 3000 Hz) and keeps buffers small
SAMPLE_RATE = 8000
CHANNELS = 1

# Framing Params
FRAME_LENGTH = 4096  # 4096 / 8000 = 0.512 sec per frame
OVERLAP = 31 / 32  # hop = 128 samples = 16 ms
MIN_FREQ = 300.0
MAX_FREQ = 3000.0

# Scoring Params
BLOCK_SIZE = 256
THRESHOLD = 0.25
RECOMMENDED_THRESHOLDS = (0.25, 0.30, 0.35)

# Hash Format
# Bumping HASH_FORMAT_VERSION is required whenever BIT_ORDER, the Bark table or the window changes:
# hashes written by different versions are NOT comparable.
HASH_FORMAT_VERSION = 1
HASH_BITS = 32
BARK_BANDS = HASH_BITS + 1
# band pair m (bands m, m+1) -> bit position. Band pair 0 is the MSB.
BIT_ORDER = tuple(HASH_BITS - 1 - m for m in range(HASH_BITS))

# Environment overrides, only applied through FingerprintConfig.from_env()
ENV_PREFIX = "AUDIO_PHASH_"

# Paths
BASE_DIR = Path(__file__).resolve().parent.parent.parent
LOG_FILE_PATH = Path(os.getenv("AUDIO_PHASH_LOG_FILE", str(BASE_DIR / "logs" / "audio_phash.log")))
LOG_LEVEL = os.getenv("AUDIO_PHASH_LOG_LEVEL", "INFO")


def ensure_directories():
    """Creates necessary local storage folders before logging starts."""
    LOG_FILE_PATH.parent.mkdir(parents=True, exist_ok=True)


def setup_logging(level: str = LOG_LEVEL, log_file: Path = LOG_FILE_PATH) -> int:
    """
    Attaches the rotating file sink. Importing the package never adds sinks,
    so applications call this once at startup. Returns the loguru handler id.
    """
    log_file = Path(log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler_id = logger.add(str(log_file), rotation="10 MB", retention="10 days", level=level)
    logger.info(f"📝 audio_phash logging to {log_file} at {level}")
    return handler_id


@dataclass(frozen=True)
class FrameConfig:
    """
    How the sample buffer is cut into frames and folded into Bark bands.

    frame_length=4096, overlap=31/32 -> hop = 4096 - int(4096 * 31/32) = 128 samples.
    Heavy overlap keeps successive frames strongly correlated, which is what makes the
    temporal differencing in the hash stable.
    """
    frame_length: int = FRAME_LENGTH
    overlap: float = OVERLAP
    bands: int = BARK_BANDS
    min_freq: float = MIN_FREQ
    max_freq: float = MAX_FREQ

    @property
    def hop_length(self) -> int:
        return self.frame_length - int(self.frame_length * self.overlap)

    def validate(self) -> "FrameConfig":
        if self.frame_length <= 0:
            raise InvalidFrameConfig(f"frame_length must be > 0, got {self.frame_length}")
        if not 0.0 <= self.overlap < 1.0:
            raise InvalidFrameConfig(f"overlap must be in [0, 1), got {self.overlap}")
        if self.hop_length <= 0:
            raise InvalidFrameConfig(
                f"hop length resolved to {self.hop_length} (frame_length={self.frame_length}, overlap={self.overlap})"
            )
        if self.bands <= 0:
            raise InvalidFrameConfig(f"bands must be > 0, got {self.bands}")
        if not 0.0 <= self.min_freq < self.max_freq:
            raise InvalidFrameConfig(f"need 0 <= min_freq < max_freq, got {self.min_freq} / {self.max_freq}")
        return self


@dataclass(frozen=True)
class FingerprintConfig:
    """Everything a hash + compare run depends on. Passed explicitly, never mutated."""
    sample_rate: int = SAMPLE_RATE
    frame: FrameConfig = field(default_factory=FrameConfig)
    threshold: float = THRESHOLD
    block_size: int = BLOCK_SIZE

    def validate(self) -> "FingerprintConfig":
        validate_sample_rate(self.sample_rate)
        self.frame.validate()
        if self.frame.bands != BARK_BANDS:
            # one bit per neighbouring band pair
            raise InvalidFrameConfig(f"hashing needs {BARK_BANDS} Bark bands, got {self.frame.bands}")
        validate_threshold(self.threshold)
        validate_block_size(self.block_size)
        return self

    @classmethod
    def from_env(cls) -> "FingerprintConfig":
        """
        Builds a config from AUDIO_PHASH_* variables (and .env), falling back to the
        literal defaults. Nothing else in the package reads the environment for hashing.
        """
        return cls(
            sample_rate=int(os.getenv(f"{ENV_PREFIX}SAMPLE_RATE", SAMPLE_RATE)),
            frame=FrameConfig(
                frame_length=int(os.getenv(f"{ENV_PREFIX}FRAME_LENGTH", FRAME_LENGTH)),
                overlap=float(os.getenv(f"{ENV_PREFIX}OVERLAP", OVERLAP)),
            ),
            threshold=float(os.getenv(f"{ENV_PREFIX}THRESHOLD", THRESHOLD)),
            block_size=int(os.getenv(f"{ENV_PREFIX}BLOCK_SIZE", BLOCK_SIZE)),
        ).validate()


def validate_sample_rate(sample_rate) -> int:
    if sample_rate is None or int(sample_rate) != sample_rate or sample_rate <= 0:
        raise InvalidSampleRateError(f"sample rate must be a positive integer, got {sample_rate!r}")
    return int(sample_rate)


def validate_threshold(threshold) -> float:
    if threshold is None or not 0.0 <= float(threshold) <= 1.0:
        raise InvalidThresholdError(f"threshold must be in [0, 1], got {threshold!r}")
    return float(threshold)


def validate_block_size(block_size) -> int:
    if block_size is None or int(block_size) != block_size or block_size <= 0:
        raise InvalidBlockSizeError(f"block size must be a positive integer, got {block_size!r}")
    return int(block_size)
