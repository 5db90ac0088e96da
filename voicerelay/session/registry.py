"""
voicerelay/session/registry.py
==============================
Session Registry — VoiceRelay

Responsibility:
    - Own one Session per active call (at most one per call id)
    - Route transport events (speaking start/stop, raw frames) to the
      speaker's SpeakerSegmenter, creating it lazily
    - Mirror the active-speaker set for status reporting
    - Feed each session's utterances through the dispatcher's stream and
      deliver results to the session's sink while the session is live
    - Tear sessions down explicitly: cancel segmenters, discard unflushed
      audio, discard results that complete after close

Concurrency:
    All mutation happens on the event loop thread; transport callbacks must
    be marshalled onto it. Each speaker has its own segmenter worker and its
    own delivery lane inside the session's delivery task, so a slow sink call
    for one speaker never holds up another.

This module does NOT:
    - Talk to the transport (see voicerelay.voice.manager)
    - Resample, gate or translate audio itself
"""

import asyncio
import logging
import time
from typing import AsyncIterator, Callable

from voicerelay.audio.segmenter import FrameDecoder, SpeakerSegmenter
from voicerelay.audio.vad import VAD_THRESHOLD
from voicerelay.config import RelaySettings
from voicerelay.errors import AudioProcessingError, RelayError, VoiceChannelError
from voicerelay.languages import language_name
from voicerelay.models import WIRE_FORMAT, AudioFormat, Utterance
from voicerelay.session.sink import LoggingSink, ResultSink
from voicerelay.translation.dispatcher import TranslationDispatcher

logger = logging.getLogger("voicerelay.session.registry")

ErrorSink = Callable[[str, RelayError], None]

_CLOSED = object()


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class Session:
    """Translation context bound to one active call."""

    def __init__(
        self,
        session_id: str,
        sink_id: str,
        target_language: str,
        sink: ResultSink,
        channel_id: str | None = None,
        created_at: float | None = None,
    ):
        self.session_id = session_id
        self.sink_id = sink_id
        self.channel_id = channel_id
        self.target_language = target_language
        self.sink = sink
        self.created_at = time.time() if created_at is None else created_at
        self.active_speakers: set[str] = set()
        self.live = True

        self.segmenters: dict[str, SpeakerSegmenter] = {}
        self.utterances_flushed = 0
        self.results_delivered = 0
        self.errors = 0
        self.last_error: str | None = None

        self._utterances: asyncio.Queue = asyncio.Queue()
        self.delivery_task: asyncio.Task | None = None

    def __repr__(self) -> str:
        return (
            f"Session(session_id={self.session_id!r}, target_language={self.target_language!r}, "
            f"speakers={len(self.segmenters)}, live={self.live})"
        )

    def current_target_language(self) -> str:
        return self.target_language

    def enqueue(self, utterance: Utterance) -> None:
        self.utterances_flushed += 1
        self._utterances.put_nowait(utterance)

    def end_utterances(self) -> None:
        self._utterances.put_nowait(_CLOSED)

    async def utterances(self) -> AsyncIterator[Utterance]:
        """Flushed utterances in flush order until the session closes."""
        while True:
            item = await self._utterances.get()
            if item is _CLOSED:
                return
            yield item


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class SessionRegistry:
    """Indexed storage session -> speaker -> segmenter, plus delivery."""

    def __init__(
        self,
        dispatcher: TranslationDispatcher,
        sink: ResultSink | None = None,
        *,
        default_target_language: str = "ja",
        source_format: AudioFormat = WIRE_FORMAT,
        vad_enabled: bool = True,
        vad_threshold: float = VAD_THRESHOLD,
        silence_timeout: float | None = None,
        decoder: FrameDecoder | None = None,
        error_sink: ErrorSink | None = None,
    ):
        self.dispatcher = dispatcher
        self.sink = sink or LoggingSink()
        self.default_target_language = default_target_language
        self.source_format = source_format
        self.vad_enabled = vad_enabled
        self.vad_threshold = vad_threshold
        self.silence_timeout = silence_timeout
        self.decoder = decoder
        self.error_sink = error_sink

        self._sessions: dict[str, Session] = {}
        self._draining: set[asyncio.Task] = set()

    @classmethod
    def from_settings(
        cls,
        dispatcher: TranslationDispatcher,
        settings: RelaySettings,
        sink: ResultSink | None = None,
        decoder: FrameDecoder | None = None,
        error_sink: ErrorSink | None = None,
    ) -> "SessionRegistry":
        return cls(
            dispatcher,
            sink,
            default_target_language=settings.default_target_language,
            source_format=settings.source_format,
            vad_enabled=settings.vad_enabled,
            vad_threshold=settings.vad_threshold,
            silence_timeout=settings.silence_timeout_ms / 1000.0,
            decoder=decoder,
            error_sink=error_sink,
        )

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def sessions(self) -> list[Session]:
        return list(self._sessions.values())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(
        self,
        session_id: str,
        sink_id: str,
        target_language: str | None = None,
        *,
        channel_id: str | None = None,
        sink: ResultSink | None = None,
    ) -> Session:
        """
        Create the session for ``session_id``.

        Raises:
            VoiceChannelError: If a session with this id already exists.
        """
        if session_id in self._sessions:
            raise VoiceChannelError(f"Session {session_id} already exists")

        session = Session(
            session_id=session_id,
            sink_id=sink_id,
            target_language=target_language or self.default_target_language,
            sink=sink or self.sink,
            channel_id=channel_id,
        )
        self._sessions[session_id] = session

        logger.info(
            "Opened session %s (sink=%s, target=%s)",
            session_id,
            sink_id,
            session.target_language,
        )
        return session

    async def close(self, session_id: str) -> None:
        """
        Close a session. Closing an unknown session is a no-op.

        Unflushed audio is discarded. Utterances already handed to the
        dispatcher finish in the background; their results are dropped.
        """
        session = self._sessions.pop(session_id, None)
        if session is None:
            logger.debug("Close requested for unknown session %s", session_id)
            return

        session.live = False
        segmenters = list(session.segmenters.values())
        session.segmenters.clear()
        session.active_speakers.clear()

        await asyncio.gather(*(segmenter.aclose() for segmenter in segmenters))

        session.end_utterances()
        task = session.delivery_task
        if task is not None and not task.done():
            self._draining.add(task)
            task.add_done_callback(self._draining.discard)

        logger.info(
            "Closed session %s (%d speaker(s) released, %d result(s) delivered)",
            session_id,
            len(segmenters),
            session.results_delivered,
        )

    async def shutdown(self, timeout: float | None = 10.0) -> None:
        """Close every session and wait for in-flight deliveries to settle."""
        for session_id in list(self._sessions):
            await self.close(session_id)

        if not self._draining:
            return
        _, still_running = await asyncio.wait(set(self._draining), timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
            logger.warning("Cancelled %d delivery task(s) at shutdown", len(still_running))

    def set_target_language(self, session_id: str, language: str) -> None:
        """Change the target language for future flushes. No-op if absent."""
        session = self._sessions.get(session_id)
        if session is None:
            return
        session.target_language = language
        logger.info("Updated target language for session %s: %s", session_id, language)

    # ------------------------------------------------------------------
    # Active speakers (status only)
    # ------------------------------------------------------------------

    def track_speaker_start(self, session_id: str, speaker_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is not None:
            session.active_speakers.add(speaker_id)
            logger.debug("Added active speaker %s to session %s", speaker_id, session_id)

    def track_speaker_stop(self, session_id: str, speaker_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is not None:
            session.active_speakers.discard(speaker_id)
            logger.debug("Removed active speaker %s from session %s", speaker_id, session_id)

    # ------------------------------------------------------------------
    # Transport event routing
    # ------------------------------------------------------------------

    def speaking_started(
        self, session_id: str, speaker_id: str, display_name: str | None = None
    ) -> None:
        session = self._live_session(session_id, "speaking start")
        if session is None:
            return
        self.track_speaker_start(session_id, speaker_id)
        self._segmenter(session, speaker_id, display_name).start()

    def speaking_stopped(self, session_id: str, speaker_id: str) -> None:
        session = self._live_session(session_id, "speaking stop")
        if session is None:
            return
        self.track_speaker_stop(session_id, speaker_id)
        segmenter = session.segmenters.get(speaker_id)
        if segmenter is not None:
            segmenter.stop()

    def push_frame(
        self,
        session_id: str,
        speaker_id: str,
        frame: bytes,
        display_name: str | None = None,
    ) -> None:
        session = self._live_session(session_id, "audio frame")
        if session is None:
            return
        self._segmenter(session, speaker_id, display_name).feed(frame)

    def cancel_speaker(self, session_id: str, speaker_id: str) -> None:
        """Drop a speaker's current utterance without translating it."""
        session = self._sessions.get(session_id)
        if session is None:
            return
        segmenter = session.segmenters.get(speaker_id)
        if segmenter is not None:
            segmenter.cancel()

    async def wait_idle(self, session_id: str) -> None:
        """Wait until every segmenter of the session has processed its signals."""
        session = self._sessions.get(session_id)
        if session is None:
            return
        await asyncio.gather(
            *(segmenter.wait_idle() for segmenter in session.segmenters.values())
        )

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self, session_id: str, now: float | None = None) -> dict | None:
        """Snapshot used by the control API; None for unknown sessions."""
        session = self._sessions.get(session_id)
        if session is None:
            return None

        uptime = max(0, int((time.time() if now is None else now) - session.created_at))
        return {
            "session_id": session.session_id,
            "sink_id": session.sink_id,
            "channel_id": session.channel_id,
            "target_language": session.target_language,
            "target_language_name": language_name(session.target_language),
            "live": session.live,
            "created_at": session.created_at,
            "uptime_seconds": uptime,
            "uptime": format_uptime(uptime),
            "active_speakers": sorted(session.active_speakers),
            "speakers": {
                speaker_id: segmenter.state.value
                for speaker_id, segmenter in session.segmenters.items()
            },
            "utterances_flushed": session.utterances_flushed,
            "results_delivered": session.results_delivered,
            "errors": session.errors,
            "last_error": session.last_error,
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _live_session(self, session_id: str, event: str) -> Session | None:
        session = self._sessions.get(session_id)
        if session is None or not session.live:
            logger.warning("Received %s for non-existent session %s", event, session_id)
            return None
        return session

    def _segmenter(
        self, session: Session, speaker_id: str, display_name: str | None
    ) -> SpeakerSegmenter:
        segmenter = session.segmenters.get(speaker_id)
        if segmenter is None:
            segmenter = SpeakerSegmenter(
                speaker_id,
                display_name or speaker_id,
                language_provider=session.current_target_language,
                on_utterance=lambda utterance: self._on_utterance(session, utterance),
                on_error=lambda exc: self._on_error(session, exc),
                source_format=self.source_format,
                decoder=self.decoder,
                vad_enabled=self.vad_enabled,
                vad_threshold=self.vad_threshold,
                silence_timeout=self.silence_timeout,
                session_id=session.session_id,
            )
            session.segmenters[speaker_id] = segmenter
            logger.debug("Created segmenter for %s in session %s", speaker_id, session.session_id)
        elif display_name and display_name != segmenter.display_name:
            segmenter.display_name = display_name
        return segmenter

    def _on_utterance(self, session: Session, utterance: Utterance) -> None:
        if not session.live:
            return
        session.enqueue(utterance)
        if session.delivery_task is None:
            session.delivery_task = asyncio.get_running_loop().create_task(
                self._deliver(session), name=f"delivery:{session.session_id}"
            )

    def _on_error(self, session: Session, exc: AudioProcessingError) -> None:
        session.errors += 1
        session.last_error = str(exc)
        if self.error_sink is not None:
            self.error_sink(session.session_id, exc)

    async def _deliver(self, session: Session) -> None:
        lanes: dict[str, asyncio.Queue] = {}
        workers: list[asyncio.Task] = []
        try:
            async for result in self.dispatcher.translate_stream(session.utterances()):
                lane = lanes.get(result.speaker_id)
                if lane is None:
                    lane = lanes[result.speaker_id] = asyncio.Queue()
                    workers.append(
                        asyncio.get_running_loop().create_task(
                            self._deliver_lane(session, lane),
                            name=f"deliver:{session.session_id}:{result.speaker_id}",
                        )
                    )
                lane.put_nowait(result)

            for lane in lanes.values():
                lane.put_nowait(_CLOSED)
            await asyncio.gather(*workers)
        finally:
            for worker in workers:
                if not worker.done():
                    worker.cancel()

    async def _deliver_lane(self, session: Session, lane: asyncio.Queue) -> None:
        # One lane per speaker: sink calls for a speaker stay in flush order
        while True:
            result = await lane.get()
            if result is _CLOSED:
                return
            if not session.live or self._sessions.get(session.session_id) is not session:
                logger.info(
                    "Discarding result for closed session %s (speaker %s)",
                    session.session_id,
                    result.speaker_id,
                )
                continue
            try:
                await session.sink.deliver(session.sink_id, result)
            except Exception:
                logger.exception(
                    "Failed to deliver result for speaker %s to sink %s",
                    result.speaker_id,
                    session.sink_id,
                )
                continue
            session.results_delivered += 1


def format_uptime(seconds: int) -> str:
    """``1h 5m`` above an hour, ``5m 12s`` below."""
    minutes, secs = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m {secs}s"
