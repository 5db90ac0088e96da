"""
voicerelay/audio/segmenter.py
=============================
Utterance Segmenter — VoiceRelay

Responsibility:
    - Run the per-speaker state machine IDLE -> ACCUMULATING -> FLUSHING -> IDLE
    - Accept transport signals (start / frame / stop / cancel) on a
      per-speaker queue and process them in order on one worker task
    - On flush: decode fragments, resample to 16 kHz mono, VAD-gate, and
      emit an immutable Utterance
    - Optionally end an utterance after a silence timeout when the
      transport stops sending frames without a stop signal

Failure policy:
    A decode or resample failure drops the utterance. The buffer is already
    cleared, the state returns to IDLE, and the error is reported through
    ``on_error`` as AudioProcessingError. The worker keeps running.

This module does NOT:
    - Call the translation service (utterances are handed to ``on_utterance``)
    - Share state with other speakers
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

from voicerelay.audio.buffer import SpeakerBuffer
from voicerelay.audio.resampler import resample
from voicerelay.audio.vad import VAD_THRESHOLD, has_voice_activity
from voicerelay.errors import AudioProcessingError
from voicerelay.models import SERVICE_FORMAT, WIRE_FORMAT, AudioFormat, Utterance

logger = logging.getLogger("voicerelay.audio.segmenter")

FrameDecoder = Callable[[bytes], "bytes | Awaitable[bytes]"]
UtteranceHandler = Callable[[Utterance], None]
ErrorHandler = Callable[[AudioProcessingError], None]


class SegmenterState(str, Enum):
    """Lifecycle of one speaker's current utterance."""

    IDLE = "idle"
    ACCUMULATING = "accumulating"
    FLUSHING = "flushing"


class _SignalKind(str, Enum):
    START = "start"
    FRAME = "frame"
    STOP = "stop"
    CANCEL = "cancel"


@dataclass(frozen=True)
class _Signal:
    kind: _SignalKind
    frame: bytes = b""


@dataclass
class SegmenterStats:
    """Counters for status reporting."""

    frames_received: int = 0
    utterances_emitted: int = 0
    utterances_discarded: int = 0
    errors: int = 0


class SpeakerSegmenter:
    """
    Turns one speaker's signal stream into Utterances.

    Signal methods (``start``, ``feed``, ``stop``, ``cancel``) never block;
    they enqueue and return. They must be called from the event loop thread.
    """

    def __init__(
        self,
        speaker_id: str,
        display_name: str,
        *,
        language_provider: Callable[[], str],
        on_utterance: UtteranceHandler,
        on_error: ErrorHandler | None = None,
        source_format: AudioFormat = WIRE_FORMAT,
        target_format: AudioFormat = SERVICE_FORMAT,
        decoder: FrameDecoder | None = None,
        vad_enabled: bool = True,
        vad_threshold: float = VAD_THRESHOLD,
        silence_timeout: float | None = None,
        session_id: str = "",
        clock: Callable[[], float] = time.time,
    ):
        self.speaker_id = speaker_id
        self.display_name = display_name
        self.session_id = session_id
        self.source_format = source_format
        self.target_format = target_format
        self.state = SegmenterState.IDLE
        self.stats = SegmenterStats()

        self._language_provider = language_provider
        self._on_utterance = on_utterance
        self._on_error = on_error
        self._decoder = decoder
        self._vad_enabled = vad_enabled
        self._vad_threshold = vad_threshold
        self._silence_timeout = silence_timeout
        self._clock = clock

        self._buffer: SpeakerBuffer | None = None
        self._queue: asyncio.Queue[_Signal] = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._closed = False

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Speaker started talking."""
        self._submit(_Signal(_SignalKind.START))

    def feed(self, frame: bytes) -> None:
        """Raw frame from the transport, in send order."""
        if not frame:
            return
        self._submit(_Signal(_SignalKind.FRAME, bytes(frame)))

    def stop(self) -> None:
        """Speaker stopped talking; flush the current utterance."""
        self._submit(_Signal(_SignalKind.STOP))

    def cancel(self) -> None:
        """Discard the current utterance without emitting anything."""
        self._submit(_Signal(_SignalKind.CANCEL))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def buffered_bytes(self) -> int:
        return len(self._buffer) if self._buffer is not None else 0

    @property
    def closed(self) -> bool:
        return self._closed

    async def wait_idle(self) -> None:
        """Wait until every signal submitted so far has been processed."""
        await self._queue.join()

    async def aclose(self) -> None:
        """Stop the worker and discard any audio that was not flushed."""
        if self._closed:
            return
        self._closed = True

        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()

        if self._buffer is not None and not self._buffer.is_empty:
            logger.info(
                "Discarding %d unflushed bytes for speaker %s (session %s)",
                len(self._buffer),
                self.speaker_id,
                self.session_id,
            )
            self._buffer.clear()
        self.state = SegmenterState.IDLE

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _submit(self, signal: _Signal) -> None:
        if self._closed:
            logger.debug(
                "Ignoring %s for closed segmenter %s", signal.kind.value, self.speaker_id
            )
            return
        if self._worker is None:
            self._worker = asyncio.get_running_loop().create_task(
                self._run(), name=f"segmenter:{self.session_id}:{self.speaker_id}"
            )
        self._queue.put_nowait(signal)

    async def _run(self) -> None:
        while True:
            timeout = (
                self._silence_timeout
                if self.state is SegmenterState.ACCUMULATING
                else None
            )
            try:
                signal = await asyncio.wait_for(self._queue.get(), timeout)
            except asyncio.TimeoutError:
                logger.debug(
                    "Silence timeout for speaker %s after %.0f ms",
                    self.speaker_id,
                    (self._silence_timeout or 0) * 1000,
                )
                try:
                    await self._flush()
                except Exception:
                    logger.exception(
                        "Unexpected failure flushing after silence for speaker %s",
                        self.speaker_id,
                    )
                continue

            try:
                await self._handle(signal)
            except Exception:
                logger.exception(
                    "Unexpected failure handling %s for speaker %s",
                    signal.kind.value,
                    self.speaker_id,
                )
            finally:
                self._queue.task_done()

    async def _handle(self, signal: _Signal) -> None:
        if signal.kind is _SignalKind.START:
            if self.state is SegmenterState.IDLE:
                self._begin()

        elif signal.kind is _SignalKind.FRAME:
            if self.state is SegmenterState.IDLE:
                logger.debug("Frame before start signal for %s; starting utterance", self.speaker_id)
                self._begin()
            if self._buffer is None:
                self._buffer = SpeakerBuffer(self.speaker_id, self.display_name)
            self.stats.frames_received += 1
            self._buffer.append(signal.frame)

        elif signal.kind is _SignalKind.STOP:
            if self.state is SegmenterState.ACCUMULATING:
                await self._flush()

        elif signal.kind is _SignalKind.CANCEL:
            if self._buffer is not None:
                self._buffer.clear()
            self.state = SegmenterState.IDLE

    def _begin(self) -> None:
        # Buffer is allocated by the first frame, not by the start signal
        self.state = SegmenterState.ACCUMULATING

    # ------------------------------------------------------------------
    # Flush
    # ------------------------------------------------------------------

    async def _flush(self) -> None:
        self.state = SegmenterState.FLUSHING
        fragments = self._buffer.drain() if self._buffer is not None else []

        try:
            utterance = await self._build_utterance(fragments)
        except AudioProcessingError as exc:
            self._report(exc)
            return
        except Exception as exc:
            self._report(
                AudioProcessingError(
                    f"Failed to process audio for speaker {self.speaker_id}", exc
                )
            )
            return
        finally:
            self.state = SegmenterState.IDLE

        if utterance is None:
            self.stats.utterances_discarded += 1
            return

        self.stats.utterances_emitted += 1
        logger.info(
            "Utterance from %s (%s): %.0f ms, target=%s",
            self.display_name,
            self.speaker_id,
            utterance.duration_ms,
            utterance.target_language,
        )
        try:
            self._on_utterance(utterance)
        except Exception:
            logger.exception("Utterance handler failed for speaker %s", self.speaker_id)

    async def _build_utterance(self, fragments: list[bytes]) -> Utterance | None:
        if not fragments:
            return None

        decoded = [await self._decode(fragment) for fragment in fragments]
        pcm = b"".join(decoded)

        mono = resample(
            pcm,
            self.source_format.sample_rate,
            self.source_format.channels,
            self.target_format.sample_rate,
            self.target_format.channels,
        )

        if not mono:
            logger.debug("Flush for %s produced no samples", self.speaker_id)
            return None

        if not has_voice_activity(mono, self._vad_enabled, self._vad_threshold):
            logger.debug("Discarding silent utterance from %s", self.speaker_id)
            return None

        return Utterance(
            speaker_id=self.speaker_id,
            display_name=self.display_name,
            payload=mono,
            captured_at=self._clock(),
            target_language=self._language_provider(),
        )

    async def _decode(self, fragment: bytes) -> bytes:
        if self._decoder is None:
            return fragment
        try:
            decoded = self._decoder(fragment)
            if inspect.isawaitable(decoded):
                decoded = await decoded
        except Exception as exc:
            raise AudioProcessingError(
                f"Failed to decode audio frame for speaker {self.speaker_id}", exc
            ) from exc
        return decoded

    def _report(self, exc: AudioProcessingError) -> None:
        self.stats.errors += 1
        logger.error(
            "Dropping utterance for speaker %s (session %s): %s",
            self.speaker_id,
            self.session_id,
            exc,
        )
        if self._on_error is None:
            return
        try:
            self._on_error(exc)
        except Exception:
            logger.exception("Error handler failed for speaker %s", self.speaker_id)
