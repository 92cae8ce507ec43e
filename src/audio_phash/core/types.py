# src/audio_phash/core/types.py

import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Union

import numpy as np

from audio_phash.core.config import HASH_FORMAT_VERSION, validate_sample_rate
from audio_phash.core.errors import HashFormatError, InvalidSampleBufferError

"""
The values that flow between pipeline stages:

    SampleBuffer  --(dsp)-->  AudioHash  --(matcher)-->  ConfidenceVector / ComparisonResult

Each one owns its own read-only numpy array. A stage copies what it receives,
so nothing downstream can mutate what an upstream caller still holds.
"""


def _frozen(array: np.ndarray) -> np.ndarray:
    array.setflags(write=False)
    return array


@dataclass(frozen=True, eq=False)
class SampleBuffer:
    """Mono float32 PCM at a fixed sample rate."""
    samples: np.ndarray
    sample_rate: int

    def __post_init__(self):
        validate_sample_rate(self.sample_rate)
        samples = np.array(self.samples, dtype=np.float32, copy=True)
        if samples.ndim != 1:
            raise InvalidSampleBufferError(f"SampleBuffer must be mono (1-D), got shape {samples.shape}")
        object.__setattr__(self, "samples", _frozen(samples))
        object.__setattr__(self, "sample_rate", int(self.sample_rate))

    def __len__(self) -> int:
        return self.samples.shape[0]

    @property
    def duration(self) -> float:
        """Length in seconds."""
        return len(self) / self.sample_rate

    def __repr__(self):
        return f"<SampleBuffer(samples={len(self)}, sample_rate={self.sample_rate})>"


# --- AUDIO HASH ---
# File layout: b"APHS" | version (1 byte) | word count (big-endian uint32) | words (big-endian uint32)
_MAGIC = b"APHS"
_HEADER = struct.Struct(">4sBI")
_WORD_DTYPE = np.dtype(">u4")


class AudioHash:
    """
    Ordered sequence of 32-bit hash words, one per analysis frame (minus the context frame).

    Words are only meaningful when scored against another AudioHash by the matcher.
    Equality here is whole-sequence value equality, which exists so serialization
    round-trips can be checked; it is not a similarity measure.
    """

    __slots__ = ("_words",)

    def __init__(self, words):
        words = np.asarray(words)
        if words.ndim != 1:
            raise HashFormatError(f"AudioHash must be 1-D, got shape {words.shape}")
        if words.size and words.dtype.kind not in "ui":
            raise HashFormatError(f"AudioHash words must be integers, got {words.dtype}")
        if words.size and (words.min() < 0 or words.max() > 0xFFFFFFFF):
            raise HashFormatError("AudioHash words must fit in 32 unsigned bits")
        self._words = _frozen(words.astype(np.uint32, copy=True))

    @property
    def words(self) -> np.ndarray:
        return self._words

    def __len__(self) -> int:
        return self._words.shape[0]

    def __iter__(self) -> Iterator[int]:
        return (int(w) for w in self._words)

    def __getitem__(self, index):
        if isinstance(index, slice):
            return AudioHash(self._words[index])
        return int(self._words[index])

    def __eq__(self, other):
        if not isinstance(other, AudioHash):
            return NotImplemented
        return np.array_equal(self._words, other._words)

    def __hash__(self):
        return hash(self._words.tobytes())

    def __repr__(self):
        head = ", ".join(f"0x{w:08x}" for w in self._words[:3])
        more = ", ..." if len(self) > 3 else ""
        return f"<AudioHash(len={len(self)}, words=[{head}{more}])>"

    # --- SERIALIZATION ---
    def to_bytes(self) -> bytes:
        """Big-endian words, no header."""
        return self._words.astype(_WORD_DTYPE).tobytes()

    @classmethod
    def from_bytes(cls, data: bytes) -> "AudioHash":
        if len(data) % 4:
            raise HashFormatError(f"byte length {len(data)} is not a multiple of 4")
        return cls(np.frombuffer(data, dtype=_WORD_DTYPE))

    def to_hex(self) -> str:
        return self.to_bytes().hex()

    @classmethod
    def from_hex(cls, text: str) -> "AudioHash":
        try:
            data = bytes.fromhex(text)
        except ValueError as e:
            raise HashFormatError(f"invalid hex hash: {e}") from e
        return cls.from_bytes(data)

    def save(self, path: Union[str, Path]) -> Path:
        path = Path(path)
        with open(path, "wb") as f:
            f.write(_HEADER.pack(_MAGIC, HASH_FORMAT_VERSION, len(self)))
            f.write(self.to_bytes())
        return path

    @classmethod
    def load(cls, path: Union[str, Path]) -> "AudioHash":
        with open(path, "rb") as f:
            blob = f.read()

        if len(blob) < _HEADER.size:
            raise HashFormatError(f"{path}: file too short for a hash header")
        magic, version, count = _HEADER.unpack_from(blob)
        if magic != _MAGIC:
            raise HashFormatError(f"{path}: not an audio hash file")
        if version != HASH_FORMAT_VERSION:
            raise HashFormatError(
                f"{path}: written with hash format v{version}, this build reads v{HASH_FORMAT_VERSION}"
            )
        payload = blob[_HEADER.size:]
        if len(payload) != count * 4:
            raise HashFormatError(f"{path}: header says {count} words, payload has {len(payload)} bytes")
        return cls.from_bytes(payload)


@dataclass(frozen=True, eq=False)
class ComparisonResult:
    """
    A ConfidenceVector plus what callers usually want from it.

    The scorer never drops low-confidence offsets; is_match is the caller-side
    classification (best block BER at or below threshold).
    """
    confidences: np.ndarray
    block_size: int
    threshold: float

    @property
    def similarity(self) -> float:
        return float(self.confidences.max())

    @property
    def best_offset(self) -> int:
        return int(np.argmax(self.confidences))

    @property
    def is_match(self) -> bool:
        return self.similarity >= 1.0 - self.threshold

    def __len__(self) -> int:
        return self.confidences.shape[0]
