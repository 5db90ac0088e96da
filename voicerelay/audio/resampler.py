"""
voicerelay/audio/resampler.py
=============================
PCM Resampler — VoiceRelay

Responsibility:
    - Convert 16-bit PCM from the transport format (typically 48 kHz stereo)
      to the translation service format (16 kHz mono)
    - Down-mix N channels to mono by averaging each source frame
    - Change sample rate by linear interpolation between neighbouring frames

Numeric rules:
    - Output frame count is floor(source_frames / (source_rate / target_rate))
    - Intermediate values are float64
    - Output samples are floored to int16 (down-mix and interpolation alike)
    - A trailing partial frame is dropped

This module does NOT:
    - Decode compressed audio
    - Perform voice activity detection
    - Upmix (mono to stereo)
"""

import logging
import math

import numpy as np

from voicerelay.errors import AudioProcessingError
from voicerelay.models import SAMPLE_WIDTH

logger = logging.getLogger("voicerelay.audio.resampler")

_PCM_DTYPE = np.dtype("<i2")
_INT16_MIN = -32768
_INT16_MAX = 32767


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def resample(
    pcm: bytes,
    source_rate: int,
    source_channels: int,
    target_rate: int,
    target_channels: int = 1,
) -> bytes:
    """
    Resample interleaved 16-bit little-endian PCM.

    When rate and channel count already match, ``pcm`` is returned as-is
    (the same object, no copy).

    Args:
        pcm:             Interleaved 16-bit PCM bytes.
        source_rate:     Sample rate of ``pcm`` in Hz.
        source_channels: Channel count of ``pcm``.
        target_rate:     Desired sample rate in Hz.
        target_channels: Desired channel count. Must be 1 or equal to
                         ``source_channels``.

    Returns:
        Resampled PCM bytes in the target format.

    Raises:
        AudioProcessingError: If rates or channel counts are invalid, or the
                              requested channel conversion is unsupported.
    """
    if source_rate == target_rate and source_channels == target_channels:
        return pcm

    _validate_format(source_rate, source_channels, target_rate, target_channels)

    frames = pcm_to_frames(pcm, source_channels)
    if frames.shape[0] == 0:
        return b""

    if target_channels == 1 and source_channels != 1:
        frames = downmix_to_mono(frames)

    if source_rate != target_rate:
        frames = interpolate(frames, source_rate / target_rate)

    logger.debug(
        "Resampled %d bytes %d Hz/%dch -> %d frames %d Hz/%dch",
        len(pcm),
        source_rate,
        source_channels,
        frames.shape[0],
        target_rate,
        target_channels,
    )
    return frames_to_pcm(frames)


def output_frame_count(source_frames: int, source_rate: int, target_rate: int) -> int:
    """Number of frames ``resample`` produces for ``source_frames`` input frames."""
    if source_rate == target_rate:
        return source_frames
    return math.floor(source_frames / (source_rate / target_rate))


# ---------------------------------------------------------------------------
# Building blocks
# ---------------------------------------------------------------------------


def pcm_to_frames(pcm: bytes, channels: int) -> np.ndarray:
    """
    Decode PCM bytes into a (frames, channels) float64 array.

    Bytes beyond the last complete frame are ignored.
    """
    frame_bytes = channels * SAMPLE_WIDTH
    frame_count = len(pcm) // frame_bytes
    if frame_count == 0:
        return np.empty((0, channels), dtype=np.float64)
    samples = np.frombuffer(pcm, dtype=_PCM_DTYPE, count=frame_count * channels)
    return samples.reshape(frame_count, channels).astype(np.float64)


def downmix_to_mono(frames: np.ndarray) -> np.ndarray:
    """Average the channels of each frame, flooring the result."""
    return np.floor(frames.sum(axis=1) / frames.shape[1])[:, np.newaxis]


def interpolate(frames: np.ndarray, ratio: float) -> np.ndarray:
    """
    Linearly interpolate ``frames`` at source positions ``i * ratio``.

    Each output frame blends the frame at floor(position) with the
    following frame by the fractional part of the position. The final
    source frame has no successor and is copied unchanged.

    Args:
        frames: (source_frames, channels) float64 array.
        ratio:  source_rate / target_rate.

    Returns:
        (floor(source_frames / ratio), channels) float64 array of floored values.
    """
    source_frames = frames.shape[0]
    target_frames = math.floor(source_frames / ratio)
    if target_frames <= 0:
        return np.empty((0, frames.shape[1]), dtype=np.float64)

    positions = np.arange(target_frames, dtype=np.float64) * ratio
    index = np.minimum(np.floor(positions).astype(np.int64), source_frames - 1)
    fraction = (positions - index)[:, np.newaxis]

    has_next = index + 1 < source_frames
    next_index = np.where(has_next, index + 1, index)

    current = frames[index]
    following = frames[next_index]
    blended = np.floor(current * (1.0 - fraction) + following * fraction)

    return np.where(has_next[:, np.newaxis], blended, current)


def frames_to_pcm(frames: np.ndarray) -> bytes:
    """Encode a (frames, channels) array as interleaved 16-bit PCM bytes."""
    clipped = np.clip(frames, _INT16_MIN, _INT16_MAX)
    return clipped.astype(_PCM_DTYPE).tobytes()


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _validate_format(
    source_rate: int,
    source_channels: int,
    target_rate: int,
    target_channels: int,
) -> None:
    if source_rate <= 0 or target_rate <= 0:
        raise AudioProcessingError(
            f"Sample rates must be positive (source={source_rate}, target={target_rate})"
        )
    if source_channels <= 0 or target_channels <= 0:
        raise AudioProcessingError(
            f"Channel counts must be positive "
            f"(source={source_channels}, target={target_channels})"
        )
    if target_channels != 1 and target_channels != source_channels:
        raise AudioProcessingError(
            f"Unsupported channel conversion {source_channels} -> {target_channels}"
        )
