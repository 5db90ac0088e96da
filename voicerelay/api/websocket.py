"""
voicerelay/api/websocket.py
===========================
WebSocket Audio Transport — VoiceRelay

A VoiceTransport whose "voice channel" is a WebSocket opened by an external
media bridge at ``/api/v1/calls/{call_id}/audio`` after the call was joined.

Wire protocol (one socket per call):
    - text:   {"type": "speaking", "speaker_id": "...",
               "display_name": "...", "speaking": true|false}
    - binary: <speaker-id length: u16 big-endian><speaker id, UTF-8><PCM>
    - close:  terminal disconnect for the call

Malformed messages are logged and skipped; they never end the call.
"""

import json
import logging
import struct

from fastapi import WebSocket

from voicerelay.errors import VoiceChannelError
from voicerelay.voice.transport import CallConnection, TransportListener, VoiceTransport

logger = logging.getLogger("voicerelay.api.websocket")

_HEADER = struct.Struct(">H")

# Application close codes sent before accept
CLOSE_UNKNOWN_CALL = 4404
CLOSE_ALREADY_STREAMING = 4409


def encode_frame(speaker_id: str, pcm: bytes) -> bytes:
    """Binary message carrying one speaker's audio frame."""
    encoded = speaker_id.encode("utf-8")
    return _HEADER.pack(len(encoded)) + encoded + pcm


def decode_frame(message: bytes) -> tuple[str, bytes]:
    """
    Split a binary message into (speaker_id, pcm).

    Raises:
        ValueError: If the message is truncated or the id is not UTF-8.
    """
    if len(message) < _HEADER.size:
        raise ValueError(f"binary message too short ({len(message)} bytes)")
    (length,) = _HEADER.unpack_from(message)
    end = _HEADER.size + length
    if length == 0 or len(message) < end:
        raise ValueError(f"invalid speaker id length {length} for {len(message)}-byte message")
    speaker_id = message[_HEADER.size:end].decode("utf-8")
    return speaker_id, message[end:]


class WebSocketTransport(VoiceTransport):
    """Calls are joined by registering a listener; audio arrives over a socket."""

    def __init__(self):
        self._listeners: dict[str, TransportListener] = {}
        self._sockets: dict[str, WebSocket] = {}

    def is_registered(self, call_id: str) -> bool:
        return call_id in self._listeners

    async def connect(
        self, call_id: str, channel_id: str, listener: TransportListener
    ) -> CallConnection:
        if call_id in self._listeners:
            raise VoiceChannelError(f"Call {call_id} is already registered")
        self._listeners[call_id] = listener
        logger.info("Awaiting audio socket for call %s (channel %s)", call_id, channel_id)
        return CallConnection(call_id=call_id, channel_id=channel_id)

    async def disconnect(self, connection: CallConnection) -> None:
        self._listeners.pop(connection.call_id, None)
        websocket = self._sockets.pop(connection.call_id, None)
        if websocket is not None:
            await websocket.close(code=1000)
            logger.info("Closed audio socket for call %s", connection.call_id)

    async def release(self, call_id: str) -> None:
        self._listeners.pop(call_id, None)

    async def serve(self, call_id: str, websocket: WebSocket) -> None:
        """Pump one socket's messages into the call's listener until it closes."""
        listener = self._listeners.get(call_id)
        if listener is None:
            logger.warning("Rejecting audio socket for unknown call %s", call_id)
            await websocket.close(code=CLOSE_UNKNOWN_CALL)
            return
        if call_id in self._sockets:
            logger.warning("Rejecting second audio socket for call %s", call_id)
            await websocket.close(code=CLOSE_ALREADY_STREAMING)
            return

        await websocket.accept()
        self._sockets[call_id] = websocket
        logger.info("Audio socket connected for call %s", call_id)

        reason = "audio socket closed"
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    reason = f"audio socket closed (code {message.get('code', 1000)})"
                    break
                if message.get("bytes") is not None:
                    self._on_binary(call_id, listener, message["bytes"])
                elif message.get("text") is not None:
                    self._on_text(call_id, listener, message["text"])
        finally:
            if self._sockets.get(call_id) is websocket:
                del self._sockets[call_id]
            # Still registered means the peer hung up rather than a leave()
            if self._listeners.get(call_id) is listener:
                del self._listeners[call_id]
                listener.on_disconnect(reason)

    def _on_binary(self, call_id: str, listener: TransportListener, message: bytes) -> None:
        try:
            speaker_id, pcm = decode_frame(message)
        except ValueError as exc:
            logger.warning("Skipping malformed audio frame for call %s: %s", call_id, exc)
            return
        listener.on_frame(speaker_id, pcm)

    def _on_text(self, call_id: str, listener: TransportListener, text: str) -> None:
        try:
            event = json.loads(text)
        except json.JSONDecodeError as exc:
            logger.warning("Skipping non-JSON message for call %s: %s", call_id, exc)
            return

        if not isinstance(event, dict) or event.get("type") != "speaking":
            logger.warning("Skipping unsupported message for call %s: %.100s", call_id, text)
            return

        speaker_id = event.get("speaker_id")
        if not isinstance(speaker_id, str) or not speaker_id:
            logger.warning("Skipping speaking event without speaker_id for call %s", call_id)
            return

        listener.on_speaking(
            speaker_id,
            str(event.get("display_name") or speaker_id),
            bool(event.get("speaking", False)),
        )
