"""
voicerelay/voice/transport.py
=============================
Voice Transport Contract — VoiceRelay

A transport joins a voice channel and reports, per call:
    - speaking start / stop for each speaker
    - raw audio frames per speaker, in send order
    - an unrecoverable disconnect

Listener callbacks run on the event loop thread. Transports that receive
audio on another thread must marshal onto the loop before calling them
(``loop.call_soon_threadsafe``).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


class TransportListener(ABC):
    """Receives the events of one call."""

    @abstractmethod
    def on_speaking(self, speaker_id: str, display_name: str, speaking: bool) -> None:
        ...

    @abstractmethod
    def on_frame(self, speaker_id: str, frame: bytes) -> None:
        ...

    @abstractmethod
    def on_disconnect(self, reason: str) -> None:
        ...


@dataclass
class CallConnection:
    """Handle returned by ``VoiceTransport.connect``."""

    call_id: str
    channel_id: str
    handle: Any = field(default=None, repr=False)


class VoiceTransport(ABC):
    """Voice channel transport (join, receive, leave)."""

    @abstractmethod
    async def connect(
        self, call_id: str, channel_id: str, listener: TransportListener
    ) -> CallConnection:
        """Join ``channel_id`` and start reporting events to ``listener``."""

    @abstractmethod
    async def disconnect(self, connection: CallConnection) -> None:
        """Leave the channel. Events stop before this returns."""

    async def release(self, call_id: str) -> None:
        """Drop whatever a failed ``connect`` left behind. Default: nothing."""
