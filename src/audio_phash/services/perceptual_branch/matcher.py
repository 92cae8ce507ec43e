from typing import Optional, Union

import numpy as np
from loguru import logger

from audio_phash.core.config import (
    BLOCK_SIZE,
    HASH_BITS,
    THRESHOLD,
    validate_block_size,
    validate_threshold,
)
from audio_phash.core.errors import DegenerateBlockError, EmptyHashError
from audio_phash.core.types import AudioHash, ComparisonResult

HashLike = Union[AudioHash, np.ndarray, list]


def _as_hash(value: HashLike) -> AudioHash:
    return value if isinstance(value, AudioHash) else AudioHash(value)


def _bit_errors(words_a: np.ndarray, words_b: np.ndarray) -> np.ndarray:
    """popcount(a XOR b) per word pair."""
    xor = np.bitwise_xor(words_a, words_b).astype(">u4")
    return np.unpackbits(xor.view(np.uint8)).reshape(-1, HASH_BITS).sum(axis=1, dtype=np.int64)


def _effective_block(hash_a: AudioHash, hash_b: AudioHash, block_size: int) -> int:
    """Validated block size clamped to both hash lengths (K')."""
    n_a, n_b = len(hash_a), len(hash_b)
    if n_a == 0 or n_b == 0:
        raise EmptyHashError(f"cannot compare an empty hash (lengths {n_a} and {n_b})")

    # Clamp rather than fail when the requested block is longer than either hash
    effective = min(block_size, n_a, n_b)
    # Unreachable after the checks above; guards the K' division below
    if effective == 0:
        raise DegenerateBlockError(f"block size {block_size} resolved to 0 for lengths {n_a} and {n_b}")
    if effective != block_size:
        logger.debug(f"Block size {block_size} clamped to {effective} (hash lengths {n_a}, {n_b})")
    return effective


def _block_confidences(hash_a: AudioHash, hash_b: AudioHash, effective: int) -> np.ndarray:
    n = min(len(hash_a), len(hash_b))
    errors = _bit_errors(hash_a.words[:n], hash_b.words[:n])

    # Exact integer prefix sums: errors in block [o, o + K') = prefix[o + K'] - prefix[o]
    prefix = np.concatenate(([0], np.cumsum(errors)))
    block_errors = prefix[effective:] - prefix[:-effective]

    confidences = 1.0 - block_errors / float(effective * HASH_BITS)
    confidences.setflags(write=False)
    return confidences


def _score(hash_a: HashLike, hash_b: HashLike, threshold, block_size):
    """Validation in order: threshold, block size, empty hash, degenerate block."""
    threshold = validate_threshold(threshold)
    block_size = validate_block_size(block_size)
    hash_a, hash_b = _as_hash(hash_a), _as_hash(hash_b)
    effective = _effective_block(hash_a, hash_b, block_size)
    return _block_confidences(hash_a, hash_b, effective), effective, threshold


def compute_distance(
    hash_a: HashLike,
    hash_b: HashLike,
    threshold: float = THRESHOLD,
    block_size: int = BLOCK_SIZE,
) -> np.ndarray:
    """
    Block-wise bit error rate between two hashes -> ConfidenceVector.

    Both hashes are read at the same offset o; a block of K' words starting at o is compared:

        BER(o)        = sum_j popcount(A[o+j] XOR B[o+j]) / (K' * 32)
        confidence(o) = 1 - BER(o)

    for o = 0 .. min(Na, Nb) - K', with K' = min(block_size, Na, Nb).

    Why blocks: the same recording with a different silence pad or a trimmed intro is
    shifted a little. Sliding a fixed block and keeping the best aligned score survives
    that, a single global BER would not.

    `threshold` is validated but not applied: every offset is returned and classifying
    "match / no match" is the caller's decision (see ComparisonResult.is_match).
    """
    confidences, _, _ = _score(hash_a, hash_b, threshold, block_size)
    return confidences


def compute_similarity(
    hash_a: HashLike,
    hash_b: HashLike,
    threshold: float = THRESHOLD,
    block_size: int = BLOCK_SIZE,
) -> float:
    """Best block confidence, in [0, 1]. similarity(A, A) == 1.0 for any non-empty A."""
    return float(compute_distance(hash_a, hash_b, threshold, block_size).max())


def compare(
    hash_a: HashLike,
    hash_b: HashLike,
    threshold: float = THRESHOLD,
    block_size: int = BLOCK_SIZE,
) -> ComparisonResult:
    confidences, effective, threshold = _score(hash_a, hash_b, threshold, block_size)
    return ComparisonResult(confidences=confidences, block_size=effective, threshold=threshold)

class HashDistanceScorer:
    """
    Holds a threshold and block size for repeated comparisons.

    Immutable after construction, so one scorer can be shared across threads.
    """

    def __init__(self, threshold: float = THRESHOLD, block_size: int = BLOCK_SIZE):
        self._threshold = validate_threshold(threshold)
        self._block_size = validate_block_size(block_size)

    @property
    def threshold(self) -> float:
        return self._threshold

    @property
    def block_size(self) -> int:
        return self._block_size

    def distance(self, hash_a: HashLike, hash_b: HashLike) -> np.ndarray:
        return compute_distance(hash_a, hash_b, self._threshold, self._block_size)

    def similarity(self, hash_a: HashLike, hash_b: HashLike) -> float:
        return compute_similarity(hash_a, hash_b, self._threshold, self._block_size)

    def compare(self, hash_a: HashLike, hash_b: HashLike, threshold: Optional[float] = None) -> ComparisonResult:
        threshold = self._threshold if threshold is None else threshold
        return compare(hash_a, hash_b, threshold, self._block_size)

    def __repr__(self):
        return f"<HashDistanceScorer(threshold={self._threshold}, block_size={self._block_size})>"
