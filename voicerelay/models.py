"""
voicerelay/models.py
====================
Data types — VoiceRelay

Responsibility:
    - Describe audio formats flowing through the pipeline
    - Define the immutable Utterance handed from the segmenter to the
      translation dispatcher
    - Define the TranslationRequest / ServiceResponse exchanged with the
      remote translation service
    - Define the TranslationResult delivered to sinks

This module does NOT:
    - Perform audio processing or translation
    - Hold per-session or per-speaker mutable state
"""

from dataclasses import asdict, dataclass
from typing import Any

# 16-bit signed PCM everywhere
SAMPLE_WIDTH: int = 2


# ---------------------------------------------------------------------------
# Audio formats
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AudioFormat:
    """Sample rate and channel layout of a 16-bit PCM stream."""

    sample_rate: int
    channels: int

    @property
    def frame_bytes(self) -> int:
        return self.channels * SAMPLE_WIDTH

    def duration_ms(self, byte_count: int) -> float:
        """Duration in milliseconds of ``byte_count`` bytes in this format."""
        frames = byte_count // self.frame_bytes
        return frames * 1000.0 / self.sample_rate


# What the transport delivers (Discord-style Opus decodes to this)
WIRE_FORMAT = AudioFormat(sample_rate=48000, channels=2)

# What the translation service requires
SERVICE_FORMAT = AudioFormat(sample_rate=16000, channels=1)


# ---------------------------------------------------------------------------
# Pipeline units
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Utterance:
    """One flushed span of a single speaker's speech, already 16 kHz mono."""

    speaker_id: str
    display_name: str
    payload: bytes
    captured_at: float
    target_language: str
    source_language: str | None = None

    @property
    def duration_ms(self) -> float:
        return SERVICE_FORMAT.duration_ms(len(self.payload))


@dataclass(frozen=True)
class TranslationRequest:
    """What the dispatcher sends to the translation service."""

    payload: bytes
    target_language: str
    speaker_id: str
    source_language: str | None = None


@dataclass(frozen=True)
class ServiceResponse:
    """Validated shape of a translation service reply."""

    transcript: str
    translation: str
    detected_language: str
    confidence: float | None = None
    degraded: bool = False


@dataclass(frozen=True)
class TranslationResult:
    """Translated text for one utterance, ready for delivery."""

    speaker_id: str
    display_name: str
    original_text: str
    translated_text: str
    source_language: str
    target_language: str
    captured_at: float
    confidence: float | None = None
    degraded: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
