"""
voicerelay/audio/buffer.py
==========================
Per-Speaker Buffer — VoiceRelay

Responsibility:
    - Hold raw PCM fragments for one speaker between utterance boundaries
    - Track the accumulated byte count
    - Hand out a contiguous snapshot and clear itself in one step

A buffer belongs to exactly one SpeakerSegmenter; nothing else mutates it.

This module does NOT:
    - Decode, resample or gate audio
    - Know about other speakers or sessions
"""


class SpeakerBuffer:
    """Append-only fragment list for one speaker."""

    def __init__(self, speaker_id: str, display_name: str):
        self.speaker_id = speaker_id
        self.display_name = display_name
        self._fragments: list[bytes] = []
        self._byte_count = 0

    def __len__(self) -> int:
        return self._byte_count

    def __repr__(self) -> str:
        return (
            f"SpeakerBuffer(speaker_id={self.speaker_id!r}, "
            f"fragments={len(self._fragments)}, bytes={self._byte_count})"
        )

    @property
    def fragment_count(self) -> int:
        return len(self._fragments)

    @property
    def is_empty(self) -> bool:
        return self._byte_count == 0

    def append(self, fragment: bytes) -> None:
        """Append a raw fragment verbatim. Empty fragments are ignored."""
        if not fragment:
            return
        self._fragments.append(bytes(fragment))
        self._byte_count += len(fragment)

    def fragments(self) -> list[bytes]:
        """Copy of the fragment list, in arrival order."""
        return list(self._fragments)

    def drain(self) -> list[bytes]:
        """Return all fragments in arrival order and clear the buffer."""
        fragments = self._fragments
        self._fragments = []
        self._byte_count = 0
        return fragments

    def clear(self) -> None:
        self._fragments = []
        self._byte_count = 0
