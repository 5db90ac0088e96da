"""
tests/fakes.py
==============
Shared test doubles — no network, no real delays.
"""

import asyncio

import numpy as np

from voicerelay.models import TranslationRequest, Utterance
from voicerelay.translation.service import TranslationService
from voicerelay.voice.transport import CallConnection, TransportListener, VoiceTransport


def tone(frames: int, amplitude: int = 1000, channels: int = 2) -> bytes:
    """Constant-amplitude 16-bit PCM, loud enough to pass the VAD gate."""
    return np.full(frames * channels, amplitude, dtype="<i2").tobytes()


def silence(frames: int, channels: int = 2) -> bytes:
    return bytes(frames * channels * 2)


def make_utterance(
    speaker_id: str = "u1",
    payload: bytes = b"\x10\x00" * 160,
    target_language: str = "ja",
    display_name: str | None = None,
) -> Utterance:
    return Utterance(
        speaker_id=speaker_id,
        display_name=display_name or speaker_id.upper(),
        payload=payload,
        captured_at=1700000000.0,
        target_language=target_language,
    )


def reply_for(request: TranslationRequest) -> dict:
    return {
        "transcription": f"hello from {request.speaker_id}",
        "translation": f"[{request.target_language}] hello from {request.speaker_id}",
        "detectedLanguage": "en",
        "confidence": 0.9,
    }


class FakeTranslationService(TranslationService):
    """
    Records requests and answers with a JSON-shaped mapping.

    ``failures`` makes the first N calls raise. ``gates`` maps a payload to
    an asyncio.Event the call waits on before answering.
    """

    def __init__(self, failures: int = 0, always_fail: bool = False, fail_payloads=()):
        self.calls: list[TranslationRequest] = []
        self.failures = failures
        self.always_fail = always_fail
        self.fail_payloads = set(fail_payloads)
        self.gates: dict[bytes, asyncio.Event] = {}
        self.closed = False

    async def translate(self, request: TranslationRequest):
        self.calls.append(request)
        gate = self.gates.get(request.payload)
        if gate is not None:
            await gate.wait()
        if self.always_fail or request.payload in self.fail_payloads:
            raise RuntimeError(f"service unavailable (call {len(self.calls)})")
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError(f"service unavailable (call {len(self.calls)})")
        return reply_for(request)

    async def aclose(self) -> None:
        self.closed = True


class RecordingSleep:
    """Stand-in for asyncio.sleep that records delays and returns at once."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeTransport(VoiceTransport):
    """Transport that keeps listeners in memory; failures are opt-in."""

    def __init__(self, fail_connect: bool = False, fail_disconnect: bool = False):
        self.fail_connect = fail_connect
        self.fail_disconnect = fail_disconnect
        self.listeners: dict[str, TransportListener] = {}
        self.connects: list[str] = []
        self.disconnects: list[str] = []
        self.released: list[str] = []

    async def connect(self, call_id, channel_id, listener) -> CallConnection:
        self.connects.append(call_id)
        if self.fail_connect:
            raise ConnectionError(f"cannot reach channel {channel_id}")
        self.listeners[call_id] = listener
        return CallConnection(call_id=call_id, channel_id=channel_id)

    async def disconnect(self, connection: CallConnection) -> None:
        self.disconnects.append(connection.call_id)
        self.listeners.pop(connection.call_id, None)
        if self.fail_disconnect:
            raise ConnectionError("gateway went away")

    async def release(self, call_id: str) -> None:
        self.released.append(call_id)
