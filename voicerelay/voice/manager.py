"""
voicerelay/voice/manager.py
===========================
Voice Call Manager — VoiceRelay

Responsibility:
    - Join a voice channel for a call and open its session only after the
      transport connected
    - Leave a call: disconnect the transport, then close the session
    - Forward transport events to the session registry
    - Close the session when the transport reports a terminal disconnect

Errors:
    Join / leave failures surface as VoiceChannelError chained to the
    transport's exception. A failed leave still closes the session.
"""

import asyncio
import logging

from voicerelay.errors import VoiceChannelError
from voicerelay.session.registry import Session, SessionRegistry
from voicerelay.session.sink import ResultSink
from voicerelay.voice.transport import CallConnection, TransportListener, VoiceTransport

logger = logging.getLogger("voicerelay.voice.manager")


class _CallListener(TransportListener):
    """Routes one call's transport events into the registry."""

    def __init__(self, manager: "VoiceCallManager", call_id: str):
        self._manager = manager
        self._call_id = call_id
        self._names: dict[str, str] = {}

    def on_speaking(self, speaker_id: str, display_name: str, speaking: bool) -> None:
        registry = self._manager.registry
        if display_name:
            self._names[speaker_id] = display_name
        if speaking:
            registry.speaking_started(self._call_id, speaker_id, display_name or None)
        else:
            registry.speaking_stopped(self._call_id, speaker_id)

    def on_frame(self, speaker_id: str, frame: bytes) -> None:
        self._manager.registry.push_frame(
            self._call_id, speaker_id, frame, self._names.get(speaker_id)
        )

    def on_disconnect(self, reason: str) -> None:
        self._manager.handle_disconnect(self._call_id, reason)


class VoiceCallManager:
    """Join / leave calls and keep sessions in step with the transport."""

    def __init__(self, transport: VoiceTransport, registry: SessionRegistry):
        self.transport = transport
        self.registry = registry
        self._connections: dict[str, CallConnection] = {}
        self._closing: set[asyncio.Task] = set()

    def is_connected(self, call_id: str) -> bool:
        return call_id in self._connections

    async def join(
        self,
        call_id: str,
        channel_id: str,
        sink_id: str,
        target_language: str | None = None,
        sink: ResultSink | None = None,
    ) -> Session:
        """
        Join ``channel_id`` and open the session for ``call_id``.

        Raises:
            VoiceChannelError: If the call already has a session or the
                               transport could not connect.
        """
        if call_id in self.registry or call_id in self._connections:
            raise VoiceChannelError(f"Already connected to a voice channel for call {call_id}")

        listener = _CallListener(self, call_id)
        try:
            connection = await self.transport.connect(call_id, channel_id, listener)
        except Exception as exc:
            logger.error("Failed to join voice channel %s for call %s: %s", channel_id, call_id, exc)
            try:
                await self.transport.release(call_id)
            except Exception as release_exc:
                logger.warning("Cleanup after failed join of %s failed: %s", call_id, release_exc)
            raise VoiceChannelError(
                f"Failed to join voice channel {channel_id}", exc
            ) from exc

        self._connections[call_id] = connection
        session = self.registry.open(
            call_id,
            sink_id,
            target_language,
            channel_id=channel_id,
            sink=sink,
        )
        logger.info("Joined voice channel %s for call %s", channel_id, call_id)
        return session

    async def leave(self, call_id: str) -> None:
        """
        Leave the call. Leaving a call that is not joined is a no-op.

        Raises:
            VoiceChannelError: If the transport failed to disconnect. The
                               session is closed regardless.
        """
        connection = self._connections.pop(call_id, None)
        failure: Exception | None = None

        if connection is not None:
            try:
                await self.transport.disconnect(connection)
            except Exception as exc:
                logger.error("Failed to disconnect call %s: %s", call_id, exc)
                failure = exc

        await self.registry.close(call_id)

        if failure is not None:
            raise VoiceChannelError(f"Failed to leave voice channel for call {call_id}", failure) from failure
        if connection is not None:
            logger.info("Left voice channel %s for call %s", connection.channel_id, call_id)

    def handle_disconnect(self, call_id: str, reason: str) -> None:
        """Transport gave up on the call; close its session in the background."""
        if self._connections.pop(call_id, None) is None and call_id not in self.registry:
            return
        logger.warning("Voice connection for call %s lost: %s", call_id, reason)
        task = asyncio.get_running_loop().create_task(
            self.registry.close(call_id), name=f"disconnect:{call_id}"
        )
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def disconnect_all(self) -> None:
        """Leave every joined call (shutdown)."""
        for call_id in list(self._connections):
            try:
                await self.leave(call_id)
            except VoiceChannelError as exc:
                logger.error("Error during shutdown of call %s: %s", call_id, exc)
        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)
