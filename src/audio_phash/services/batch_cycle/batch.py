from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Union

import numpy as np
from joblib import Parallel, delayed
from loguru import logger

from audio_phash.core.config import BLOCK_SIZE, THRESHOLD, FingerprintConfig, validate_block_size, validate_threshold
from audio_phash.core.errors import AudioPhashError, EmptyHashError
from audio_phash.core.types import AudioHash
from audio_phash.services.perceptual_branch.fingerprint import audio_hash
from audio_phash.services.perceptual_branch.matcher import compute_similarity

"""
Many files in, many hashes out.

Every (file -> hash) and (hash, hash -> similarity) job is independent: no shared
mutable state, each call owns its own buffers, so joblib can fan them out freely.

A file that cannot be decoded or is too short to hash does not abort the batch;
its error is reported in BatchHashResult.failures. Anything that is not an
AudioPhashError is a bug and propagates.
"""


@dataclass
class BatchHashResult:
    hashes: Dict[str, AudioHash] = field(default_factory=dict)
    failures: Dict[str, AudioPhashError] = field(default_factory=dict)

    @property
    def success_count(self) -> int:
        return len(self.hashes)

    @property
    def fail_count(self) -> int:
        return len(self.failures)


def _hash_one(path: str, max_duration: float, config: FingerprintConfig):
    try:
        return path, audio_hash(path, max_duration, config), None
    except AudioPhashError as e:
        return path, None, e


def hash_files(
    paths: Iterable[Union[str, Path]],
    config: Optional[FingerprintConfig] = None,
    max_duration: float = 0.0,
    n_jobs: int = 1,
) -> BatchHashResult:
    """
    Hashes every path (n_jobs=-1 uses all cores). Result dicts keep input order.
    """
    config = (config or FingerprintConfig()).validate()
    paths = [str(p) for p in paths]
    logger.info(f"🚀 Hashing {len(paths)} files (n_jobs={n_jobs})...")

    outcomes = Parallel(n_jobs=n_jobs)(delayed(_hash_one)(p, max_duration, config) for p in paths)

    result = BatchHashResult()
    for path, phash, error in outcomes:
        if error is None:
            result.hashes[path] = phash
        else:
            logger.warning(f"⚠️ Skipped {path}: {type(error).__name__}: {error}")
            result.failures[path] = error

    logger.info(f"🏁 Hashing complete. Success: {result.success_count} | Failed: {result.fail_count}")
    return result


def similarity_matrix(
    hashes: Sequence[AudioHash],
    threshold: float = THRESHOLD,
    block_size: int = BLOCK_SIZE,
    n_jobs: int = 1,
) -> np.ndarray:
    """
    Pairwise similarity, shape (n, n). Symmetric with 1.0 on the diagonal.
    Only the upper triangle is computed; similarity(A, B) == similarity(B, A).
    """
    validate_threshold(threshold)
    validate_block_size(block_size)
    hashes = list(hashes)
    for index, phash in enumerate(hashes):
        if len(phash) == 0:
            raise EmptyHashError(f"hash #{index} is empty")

    n = len(hashes)
    pairs: List[tuple] = [(i, j) for i in range(n) for j in range(i + 1, n)]

    scores = Parallel(n_jobs=n_jobs)(
        delayed(compute_similarity)(hashes[i], hashes[j], threshold, block_size) for i, j in pairs
    )

    matrix = np.eye(n, dtype=np.float64)
    for (i, j), score in zip(pairs, scores):
        matrix[i, j] = matrix[j, i] = score

    logger.debug(f"Scored {len(pairs)} pairs across {n} hashes")
    return matrix
