"""
voicerelay/translation/dispatcher.py
====================================
Translation Dispatcher — VoiceRelay

Responsibility:
    - Turn a flushed Utterance into a TranslationRequest
    - Call the translation service with a bounded, fixed-delay retry loop
    - Validate the reply (degraded fallback instead of a parse failure)
    - Produce a TranslationResult carrying the target language captured at
      flush time
    - Stream variant: translate an async sequence of utterances, releasing
      results in flush order per speaker without blocking across speakers
    - Batch variant: translate a collection concurrently with partial-failure
      semantics

Retry policy:
    ``max_retries`` total attempts, ``retry_delay`` seconds between attempts.
    Each failed attempt is logged with its attempt number; the last error is
    raised as TranslationError after the final attempt.

This module does NOT:
    - Resample, gate or buffer audio
    - Deliver results to sinks
"""

import asyncio
import functools
import logging
from collections import deque
from typing import AsyncIterable, AsyncIterator, Awaitable, Callable, Iterable

from voicerelay.config import RelaySettings
from voicerelay.errors import TranslationError
from voicerelay.models import TranslationRequest, TranslationResult, Utterance
from voicerelay.translation.response import parse_service_response
from voicerelay.translation.service import ServicePayload, TranslationService

logger = logging.getLogger("voicerelay.translation.dispatcher")

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

DEFAULT_MAX_RETRIES: int = 3       # total attempts, not additional ones
DEFAULT_RETRY_DELAY: float = 1.0   # seconds, fixed between attempts
DEFAULT_TARGET_LANGUAGE: str = "ja"

_END_OF_STREAM = object()

FailureHandler = Callable[[Utterance, BaseException], None]


class TranslationDispatcher:
    """Drives the translation service for flushed utterances."""

    def __init__(
        self,
        service: TranslationService,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        auto_detect_language: bool = True,
        default_target_language: str = DEFAULT_TARGET_LANGUAGE,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {max_retries}")
        if retry_delay < 0:
            raise ValueError(f"retry_delay must not be negative, got {retry_delay}")

        self.service = service
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.auto_detect_language = auto_detect_language
        self.default_target_language = default_target_language
        self._sleep = sleep

        logger.info(
            "TranslationDispatcher initialized (max_retries=%d, retry_delay=%.2fs, auto_detect=%s)",
            max_retries,
            retry_delay,
            auto_detect_language,
        )

    @classmethod
    def from_settings(
        cls, service: TranslationService, settings: RelaySettings
    ) -> "TranslationDispatcher":
        return cls(
            service,
            max_retries=settings.max_retries,
            retry_delay=settings.retry_delay,
            auto_detect_language=settings.auto_detect_language,
            default_target_language=settings.default_target_language,
        )

    # ------------------------------------------------------------------
    # Single utterance
    # ------------------------------------------------------------------

    def build_request(
        self, utterance: Utterance, target_language: str | None = None
    ) -> TranslationRequest:
        """Request for ``utterance``; source language omitted under auto-detect."""
        return TranslationRequest(
            payload=utterance.payload,
            target_language=(
                target_language
                or utterance.target_language
                or self.default_target_language
            ),
            speaker_id=utterance.speaker_id,
            source_language=None if self.auto_detect_language else utterance.source_language,
        )

    async def translate(
        self, utterance: Utterance, target_language: str | None = None
    ) -> TranslationResult:
        """
        Translate one utterance.

        Args:
            utterance:       Flushed 16 kHz mono utterance.
            target_language: Override; defaults to the language captured on
                             the utterance at flush time.

        Returns:
            TranslationResult (``degraded`` when the reply was unparseable).

        Raises:
            TranslationError: If the payload is empty or every attempt failed.
        """
        if not utterance.payload:
            raise TranslationError(
                f"Utterance payload is empty for speaker {utterance.speaker_id}"
            )

        request = self.build_request(utterance, target_language)

        logger.debug(
            "Dispatching utterance from %s: %d bytes -> %s",
            utterance.speaker_id,
            len(request.payload),
            request.target_language,
        )

        raw = await self._call_with_retry(request)
        response = parse_service_response(raw, request.source_language)

        result = TranslationResult(
            speaker_id=utterance.speaker_id,
            display_name=utterance.display_name,
            original_text=response.transcript,
            translated_text=response.translation,
            source_language=response.detected_language,
            target_language=request.target_language,
            captured_at=utterance.captured_at,
            confidence=response.confidence,
            degraded=response.degraded,
        )

        logger.info(
            "Translation completed for %s: %s -> %s (confidence=%s%s)",
            utterance.speaker_id,
            result.source_language,
            result.target_language,
            "n/a" if result.confidence is None else f"{result.confidence:.2f}",
            ", degraded" if result.degraded else "",
        )
        return result

    async def _call_with_retry(self, request: TranslationRequest) -> ServicePayload:
        last_exc: Exception | None = None

        for attempt in range(1, self.max_retries + 1):
            try:
                return await self.service.translate(request)
            except Exception as exc:
                last_exc = exc

                if attempt < self.max_retries:
                    logger.warning(
                        "Translation failed for %s (attempt %d/%d): %s; retrying in %.1fs",
                        request.speaker_id,
                        attempt,
                        self.max_retries,
                        exc,
                        self.retry_delay,
                    )
                    await self._sleep(self.retry_delay)
                else:
                    logger.error(
                        "Translation failed for %s after %d attempts: %s",
                        request.speaker_id,
                        self.max_retries,
                        exc,
                    )

        raise TranslationError(
            f"Failed to translate audio for speaker {request.speaker_id} "
            f"after {self.max_retries} attempts",
            last_exc,
        ) from last_exc

    # ------------------------------------------------------------------
    # Stream
    # ------------------------------------------------------------------

    async def translate_stream(
        self, utterances: AsyncIterable[Utterance]
    ) -> AsyncIterator[TranslationResult]:
        """
        Translate utterances as they arrive.

        Every utterance is dispatched as soon as it is received. Results for
        one speaker are yielded in arrival order; a slow utterance (retrying,
        say) holds back later results of the same speaker only. Failed
        utterances are logged and produce no result.

        Raises:
            Whatever the ``utterances`` iterable raises, after its pending
            dispatches are cancelled.
        """
        loop = asyncio.get_running_loop()
        ready: asyncio.Queue = asyncio.Queue()
        lanes: dict[str, deque[asyncio.Task]] = {}
        pending: set[asyncio.Task] = set()

        def release(speaker_id: str) -> None:
            lane = lanes.get(speaker_id)
            while lane and lane[0].done():
                task = lane.popleft()
                if not task.cancelled() and task.result() is not None:
                    ready.put_nowait(task.result())
            if lane is not None and not lane:
                del lanes[speaker_id]

        def on_done(task: asyncio.Task, speaker_id: str) -> None:
            pending.discard(task)
            release(speaker_id)

        async def feed() -> None:
            try:
                async for utterance in utterances:
                    task = loop.create_task(self._translate_or_none(utterance))
                    pending.add(task)
                    lanes.setdefault(utterance.speaker_id, deque()).append(task)
                    task.add_done_callback(
                        functools.partial(on_done, speaker_id=utterance.speaker_id)
                    )
                if pending:
                    await asyncio.wait(set(pending))
                for speaker_id in list(lanes):
                    release(speaker_id)
            finally:
                ready.put_nowait(_END_OF_STREAM)

        feeder = loop.create_task(feed())
        try:
            while True:
                item = await ready.get()
                if item is _END_OF_STREAM:
                    break
                yield item
            await feeder
        finally:
            if not feeder.done():
                feeder.cancel()
            for task in list(pending):
                task.cancel()

    async def _translate_or_none(self, utterance: Utterance) -> TranslationResult | None:
        try:
            return await self.translate(utterance)
        except TranslationError as exc:
            logger.error("Dropping utterance from %s: %s", utterance.speaker_id, exc)
        except Exception:
            logger.exception("Unexpected failure translating utterance from %s", utterance.speaker_id)
        return None

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    async def translate_batch(
        self,
        utterances: Iterable[Utterance],
        on_failure: FailureHandler | None = None,
    ) -> list[TranslationResult]:
        """
        Translate a fixed collection concurrently.

        One failing utterance never affects its siblings.

        Args:
            utterances: Utterances to translate.
            on_failure: Called with (utterance, error) for each failure.

        Returns:
            Successful results, in the original relative order.
        """
        batch = list(utterances)
        logger.info("Processing batch of %d utterance(s)", len(batch))

        outcomes = await asyncio.gather(
            *(self.translate(utterance) for utterance in batch),
            return_exceptions=True,
        )

        successful: list[TranslationResult] = []
        failed = 0
        for utterance, outcome in zip(batch, outcomes):
            if isinstance(outcome, BaseException):
                failed += 1
                logger.error(
                    "Batch item failed for speaker %s: %s", utterance.speaker_id, outcome
                )
                if on_failure is not None:
                    on_failure(utterance, outcome)
            else:
                successful.append(outcome)

        logger.info(
            "Batch processing completed: %d successful, %d failed",
            len(successful),
            failed,
        )
        return successful
