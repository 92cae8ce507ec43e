# src/audio_phash/core/errors.py

"""
Every failure the pipeline can report.

Three families, so a caller can tell them apart:
    ConfigurationError  -> the caller asked for something impossible (bad rate, frame size, block size...)
    DecodeError         -> the audio could not be read at all
    DegenerateDataError -> the audio was read, but there is nothing to hash or compare

A full path -> similarity chain surfaces exactly one of these, raised by the stage that failed.
"""


class AudioPhashError(Exception):
    """Base class for everything raised by audio_phash."""


# --- 1. INPUT VALIDATION ---
class ConfigurationError(AudioPhashError, ValueError):
    pass


class InvalidSampleRateError(ConfigurationError):
    pass


class InvalidDurationError(ConfigurationError):
    pass


class InvalidFrameConfig(ConfigurationError):
    pass


class InvalidBlockSizeError(ConfigurationError):
    pass


class InvalidThresholdError(ConfigurationError):
    pass


class InvalidSampleBufferError(AudioPhashError, ValueError):
    pass


class HashFormatError(AudioPhashError, ValueError):
    """A serialized AudioHash is malformed or was written by another format version."""


# --- 2. RESOURCE ERRORS ---
class DecodeError(AudioPhashError):
    """The source could not be opened or decoded. Never retried here; retry policy belongs to the caller."""


# --- 3. DEGENERATE DATA ---
class DegenerateDataError(AudioPhashError):
    pass


class EmptyResultError(DegenerateDataError):
    """Decoding succeeded but produced zero samples."""


class InsufficientFramesError(DegenerateDataError):
    """Fewer than two analysis frames, so no hash word can be derived."""


class EmptyHashError(DegenerateDataError):
    pass


class DegenerateBlockError(DegenerateDataError):
    """The effective block size resolved to zero."""
