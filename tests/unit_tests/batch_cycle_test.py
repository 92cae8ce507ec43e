import numpy as np
import pytest
from unittest.mock import patch

from audio_phash.core.errors import DecodeError, EmptyHashError, InsufficientFramesError, InvalidBlockSizeError
from audio_phash.core.types import AudioHash
from audio_phash.services.batch_cycle.batch import hash_files, similarity_matrix


def _random_hash(n, seed):
    return AudioHash(np.random.default_rng(seed).integers(0, 2**32, size=n, dtype=np.uint64))


class TestHashFiles:

    # n_jobs=1 keeps joblib in-process, so the patch is visible to the workers
    @patch("audio_phash.services.batch_cycle.batch.audio_hash")
    def test_collects_hashes_and_failures(self, mock_hash):
        good = AudioHash([1, 2, 3])

        def fake_hash(path, max_duration, config):
            if path == "broken.mp3":
                raise DecodeError("could not decode broken.mp3")
            if path == "blip.wav":
                raise InsufficientFramesError("need at least 2 frames to hash, got 0")
            return good

        mock_hash.side_effect = fake_hash

        result = hash_files(["a.mp3", "broken.mp3", "b.mp3", "blip.wav"], n_jobs=1)

        assert list(result.hashes) == ["a.mp3", "b.mp3"]
        assert result.hashes["a.mp3"] == good
        assert isinstance(result.failures["broken.mp3"], DecodeError)
        assert isinstance(result.failures["blip.wav"], InsufficientFramesError)
        assert result.success_count == 2
        assert result.fail_count == 2

    @patch("audio_phash.services.batch_cycle.batch.audio_hash")
    def test_unexpected_errors_propagate(self, mock_hash):
        mock_hash.side_effect = RuntimeError("bug")

        with pytest.raises(RuntimeError):
            hash_files(["a.mp3"], n_jobs=1)

    @patch("audio_phash.services.batch_cycle.batch.audio_hash")
    def test_passes_duration_and_config(self, mock_hash):
        mock_hash.return_value = AudioHash([7])

        hash_files(["a.mp3"], max_duration=20, n_jobs=1)

        path, max_duration, config = mock_hash.call_args.args
        assert path == "a.mp3"
        assert max_duration == 20
        assert config.sample_rate == 8000


class TestSimilarityMatrix:

    def test_symmetric_with_unit_diagonal(self):
        hashes = [_random_hash(40, seed=s) for s in range(4)]

        matrix = similarity_matrix(hashes, block_size=16)

        assert matrix.shape == (4, 4)
        assert np.array_equal(matrix, matrix.T)
        assert np.all(np.diag(matrix) == 1.0)
        assert np.all((matrix >= 0) & (matrix <= 1))

    def test_identical_entries_score_one(self):
        a = _random_hash(30, seed=1)
        matrix = similarity_matrix([a, _random_hash(30, seed=2), a], block_size=8)
        assert matrix[0, 2] == 1.0

    def test_empty_hash_is_rejected(self):
        with pytest.raises(EmptyHashError):
            similarity_matrix([AudioHash([])])

    def test_validates_block_size_even_without_pairs(self):
        with pytest.raises(InvalidBlockSizeError):
            similarity_matrix([_random_hash(5, seed=0)], block_size=0)

    def test_no_hashes(self):
        assert similarity_matrix([]).shape == (0, 0)
