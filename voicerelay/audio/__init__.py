# voicerelay/audio/__init__.py
# ============================
# Audio Layer — VoiceRelay
#
# Per-speaker pipeline, leaves first:
#   - vad.py        mean-amplitude voice activity gate
#   - resampler.py  48 kHz stereo -> 16 kHz mono (linear interpolation)
#   - buffer.py     raw fragment accumulation for one speaker
#   - segmenter.py  IDLE / ACCUMULATING / FLUSHING state machine per speaker

from voicerelay.audio.buffer import SpeakerBuffer  # noqa: F401
from voicerelay.audio.resampler import resample  # noqa: F401
from voicerelay.audio.segmenter import SegmenterState, SpeakerSegmenter  # noqa: F401
from voicerelay.audio.vad import VAD_THRESHOLD, has_voice_activity  # noqa: F401

__all__ = [
    "SpeakerBuffer",
    "resample",
    "SegmenterState",
    "SpeakerSegmenter",
    "VAD_THRESHOLD",
    "has_voice_activity",
]
