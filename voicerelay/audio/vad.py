"""
voicerelay/audio/vad.py
=======================
Voice Activity Gate — VoiceRelay

Responsibility:
    - Decide whether a flushed mono 16-bit PCM block contains speech
    - Uses mean absolute amplitude against a fixed threshold (no model)

The gate runs once per utterance, after resampling, so the threshold is on
the 16 kHz mono int16 scale.

This module does NOT:
    - Find speech boundaries inside a block (the transport's speaking
      signals define utterance boundaries)
    - Modify the audio
"""

import logging

import numpy as np

logger = logging.getLogger("voicerelay.audio.vad")

# Mean |sample| above which a block counts as speech (int16 scale)
VAD_THRESHOLD: int = 100


def mean_amplitude(pcm: bytes) -> float:
    """
    Mean absolute sample value of 16-bit little-endian mono PCM.

    Returns 0.0 for input shorter than one sample.
    """
    count = len(pcm) // 2
    if count == 0:
        return 0.0
    samples = np.frombuffer(pcm, dtype="<i2", count=count).astype(np.int32)
    return float(np.abs(samples).mean())


def has_voice_activity(
    pcm: bytes,
    enabled: bool = True,
    threshold: float = VAD_THRESHOLD,
) -> bool:
    """
    Classify a mono PCM block as speech or silence.

    Args:
        pcm:       Mono 16-bit little-endian PCM bytes.
        enabled:   When False the gate is open and always returns True.
        threshold: Mean absolute amplitude that must be exceeded.

    Returns:
        True if the block should be treated as speech.
    """
    if not enabled:
        return True

    if len(pcm) < 2:
        return False

    amplitude = mean_amplitude(pcm)
    active = amplitude > threshold

    if not active:
        logger.debug(
            "No voice activity: mean amplitude %.1f <= threshold %s",
            amplitude,
            threshold,
        )
    return active
