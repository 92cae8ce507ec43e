import io
from pathlib import Path
from typing import Optional, Union

import librosa
import numpy as np
from pydub import AudioSegment
from loguru import logger

from audio_phash.core.config import SAMPLE_RATE, CHANNELS, validate_sample_rate
from audio_phash.core.errors import DecodeError, EmptyResultError, InvalidDurationError
from audio_phash.core.types import SampleBuffer


def _validate_duration(max_duration) -> float:
    if max_duration is None:
        return 0.0
    max_duration = float(max_duration)
    if max_duration < 0 or np.isnan(max_duration):
        raise InvalidDurationError(f"max_duration must be >= 0 seconds (0 = whole file), got {max_duration}")
    return max_duration


def _finish(samples: np.ndarray, sample_rate: int, max_duration: float, source: str) -> SampleBuffer:
    """Applies the deterministic duration cut and the empty check shared by both decoders."""
    if max_duration > 0:
        samples = samples[: int(round(max_duration * sample_rate))]

    if samples.size == 0:
        logger.warning(f"⚠️ Decoding {source} produced no samples")
        raise EmptyResultError(f"decoding {source} produced zero samples")

    buffer = SampleBuffer(samples, sample_rate)
    logger.debug(f"Decoded {source}: {len(buffer)} samples @ {sample_rate} Hz ({buffer.duration:.2f}s)")
    return buffer


def read_audio(path: Union[str, Path], sample_rate: int = SAMPLE_RATE, max_duration: float = 0.0) -> SampleBuffer:
    """
    Read-and-resample: decodes any file librosa understands into mono float32 PCM at exactly `sample_rate`.

    librosa.load:
        decodes WAV / MP3 / FLAC
        converts to mono
        rescales samples to float32
        resamples to `sample_rate`

    max_duration = 0 reads the entire file, otherwise the buffer is cut to
    round(max_duration * sample_rate) samples.
    """
    sample_rate = validate_sample_rate(sample_rate)
    max_duration = _validate_duration(max_duration)

    try:
        y, _ = librosa.load(
            str(path),
            sr=sample_rate,
            mono=True,
            duration=max_duration if max_duration > 0 else None,
        )
    except Exception as e:
        logger.error(f"❌ Failed to decode {path}: {e}")
        raise DecodeError(f"could not decode {path}: {e}") from e

    return _finish(np.asarray(y, dtype=np.float32), sample_rate, max_duration, str(path))


def read_audio_bytes(
    audio_bytes: bytes,
    sample_rate: int = SAMPLE_RATE,
    max_duration: float = 0.0,
    format: Optional[str] = None,
) -> SampleBuffer:
    """
    Same contract as read_audio for an in-memory stream (uploads, sockets...).
    The byte stream is decoded in RAM (io.BytesIO) to avoid slow disk I/O.

    Without `format` pydub sniffs the container through ffmpeg; format="wav" is decoded natively.
    """
    sample_rate = validate_sample_rate(sample_rate)
    max_duration = _validate_duration(max_duration)

    try:
        # Pydub can auto-detect the format from the byte header (wav, webm, ogg, mp4, etc.)
        audio = AudioSegment.from_file(io.BytesIO(audio_bytes), format=format)
        audio = audio.set_frame_rate(sample_rate).set_channels(CHANNELS)
    except Exception as e:
        logger.error(f"❌ Failed to decode incoming audio bytes: {e}")
        raise DecodeError(f"could not decode audio bytes: {e}") from e

    samples = np.array(audio.get_array_of_samples())

    # AudioSegment returns integer PCM (int16 is -32768 to 32767); scale it to [-1.0, 1.0)
    full_scale = float(1 << (8 * audio.sample_width - 1))
    samples = samples.astype(np.float32) / full_scale

    return _finish(samples, sample_rate, max_duration, "audio bytes")
