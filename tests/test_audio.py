"""
tests/test_audio.py
===================
Audio Layer Tests — resampler, voice activity gate, speaker buffer

Test categories:
    1. Resampler: identity fast path, output length, floor rounding,
       down-mix, interpolation, last-frame handling, invalid formats
    2. VAD: silence, disabled gate, threshold boundary, short input
    3. SpeakerBuffer: append / drain / clear

All tests are offline and deterministic.
"""

import os
import sys
import unittest

import numpy as np

# Ensure project root and tests/ are on sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from fakes import silence, tone
from voicerelay.audio.buffer import SpeakerBuffer
from voicerelay.audio.resampler import frames_to_pcm, output_frame_count, resample
from voicerelay.audio.vad import has_voice_activity, mean_amplitude
from voicerelay.errors import AudioProcessingError


def _mono(*samples: int) -> bytes:
    return np.array(samples, dtype="<i2").tobytes()


def _samples(pcm: bytes) -> list[int]:
    return np.frombuffer(pcm, dtype="<i2").tolist()


# ===================================================================
# 1. RESAMPLER
# ===================================================================


class TestResampler(unittest.TestCase):

    def test_identity_returns_same_object(self):
        """Matching rate and channels must skip all work."""
        pcm = tone(480, channels=1)
        self.assertIs(resample(pcm, 16000, 1, 16000, 1), pcm)

    def test_wire_to_service_length(self):
        """100 ms of 48 kHz stereo becomes 1600 mono frames."""
        out = resample(tone(4800), 48000, 2, 16000, 1)
        self.assertEqual(len(out), 1600 * 2)

    def test_output_frame_count_floors(self):
        self.assertEqual(output_frame_count(4800, 48000, 16000), 1600)
        self.assertEqual(output_frame_count(10, 48000, 16000), 3)
        self.assertEqual(output_frame_count(2, 48000, 16000), 0)
        self.assertEqual(output_frame_count(7, 16000, 16000), 7)

    def test_length_matches_frame_count(self):
        for frames in (1, 2, 3, 10, 959, 961):
            with self.subTest(frames=frames):
                out = resample(tone(frames), 48000, 2, 16000, 1)
                self.assertEqual(len(out) // 2, output_frame_count(frames, 48000, 16000))

    def test_empty_input(self):
        self.assertEqual(resample(b"", 48000, 2, 16000, 1), b"")

    def test_trailing_partial_frame_dropped(self):
        """Odd trailing bytes never produce a sample."""
        pcm = tone(6, channels=2) + b"\x01"
        out = resample(pcm, 48000, 2, 16000, 1)
        self.assertEqual(len(out), 2 * 2)

    def test_downmix_floors_average(self):
        pcm = _mono(1, 2, -1, -2, 100, 300)  # three stereo frames
        out = resample(pcm, 16000, 2, 16000, 1)
        self.assertEqual(_samples(out), [1, -2, 200])

    def test_interpolation_blends_neighbours(self):
        """24 kHz -> 16 kHz samples at positions 0, 1.5, 3, 4.5."""
        pcm = _mono(0, 300, 600, 900, 1200, 1500)
        out = resample(pcm, 24000, 1, 16000, 1)
        self.assertEqual(_samples(out), [0, 450, 900, 1350])

    def test_interpolation_floors_fraction(self):
        pcm = _mono(0, 1, 0, 1, 0, 1)
        out = resample(pcm, 24000, 1, 16000, 1)
        # position 1.5 -> 0.5, floored to 0
        self.assertEqual(_samples(out), [0, 0, 1, 0])

    def test_last_frame_copied_unchanged(self):
        """The final source frame has no successor to blend with."""
        out = resample(_mono(100, 200), 8000, 1, 16000, 1)
        self.assertEqual(_samples(out), [100, 150, 200, 200])

    def test_constant_signal_preserved(self):
        out = resample(tone(960, amplitude=-1234), 48000, 2, 16000, 1)
        self.assertTrue(all(s == -1234 for s in _samples(out)))

    def test_per_channel_rate_change(self):
        """Same channel count keeps channels apart while changing rate."""
        pcm = _mono(10, -10, 20, -20, 30, -30, 40, -40)
        out = resample(pcm, 16000, 2, 8000, 2)
        self.assertEqual(_samples(out), [10, -10, 30, -30])

    def test_upmix_rejected(self):
        with self.assertRaises(AudioProcessingError):
            resample(tone(10, channels=1), 48000, 1, 16000, 2)

    def test_invalid_rate_rejected(self):
        with self.assertRaises(AudioProcessingError):
            resample(tone(10), 0, 2, 16000, 1)

    def test_frames_to_pcm_clips(self):
        out = frames_to_pcm(np.array([[40000.0], [-40000.0]]))
        self.assertEqual(_samples(out), [32767, -32768])


# ===================================================================
# 2. VOICE ACTIVITY GATE
# ===================================================================


class TestVoiceActivity(unittest.TestCase):

    def test_all_zero_is_silence(self):
        self.assertFalse(has_voice_activity(silence(1600, channels=1)))

    def test_disabled_gate_always_open(self):
        self.assertTrue(has_voice_activity(silence(1600, channels=1), enabled=False))
        self.assertTrue(has_voice_activity(b"", enabled=False))

    def test_speech_passes(self):
        self.assertTrue(has_voice_activity(tone(1600, channels=1)))

    def test_threshold_is_exclusive(self):
        """Mean amplitude must exceed the threshold, not merely reach it."""
        self.assertFalse(has_voice_activity(_mono(100, -100)))
        self.assertTrue(has_voice_activity(_mono(101, -101)))

    def test_custom_threshold(self):
        self.assertFalse(has_voice_activity(tone(10, 500, 1), threshold=500))
        self.assertTrue(has_voice_activity(tone(10, 500, 1), threshold=499))

    def test_short_input_is_silence(self):
        self.assertFalse(has_voice_activity(b""))
        self.assertFalse(has_voice_activity(b"\x7f"))

    def test_mean_amplitude_handles_int16_min(self):
        self.assertEqual(mean_amplitude(_mono(-32768)), 32768.0)


# ===================================================================
# 3. SPEAKER BUFFER
# ===================================================================


class TestSpeakerBuffer(unittest.TestCase):

    def test_append_and_drain(self):
        buf = SpeakerBuffer("u1", "Alice")
        buf.append(b"ab")
        buf.append(b"cde")
        self.assertEqual(len(buf), 5)
        self.assertEqual(buf.fragment_count, 2)

        self.assertEqual(buf.drain(), [b"ab", b"cde"])
        self.assertTrue(buf.is_empty)
        self.assertEqual(len(buf), 0)

    def test_empty_fragment_ignored(self):
        buf = SpeakerBuffer("u1", "Alice")
        buf.append(b"")
        self.assertTrue(buf.is_empty)
        self.assertEqual(buf.fragment_count, 0)

    def test_clear(self):
        buf = SpeakerBuffer("u1", "Alice")
        buf.append(b"xyz")
        buf.clear()
        self.assertTrue(buf.is_empty)
        self.assertEqual(buf.drain(), [])


if __name__ == "__main__":
    unittest.main()
