"""
voicerelay/session/sink.py
==========================
Result Sinks — VoiceRelay

Responsibility:
    - Deliver TranslationResults to the end user's destination
    - Report delivery failures to the log; never retry indefinitely

Implementations:
    - LoggingSink: writes "**name**: translated text" to the log
    - MemorySink:  keeps results per sink id (tests, status polling)
    - WebhookSink: one aiohttp POST per result (JSON body)

This module does NOT:
    - Translate or buffer audio
    - Decide whether a session is still live (the registry does)
"""

import asyncio
import logging
from abc import ABC, abstractmethod

import aiohttp

from voicerelay.models import TranslationResult

logger = logging.getLogger("voicerelay.session.sink")


def format_result_message(result: TranslationResult) -> str:
    """Chat-style line shown to users: display name and translated text."""
    return f"**{result.display_name}**: {result.translated_text}"


class ResultSink(ABC):
    """Destination for translated utterances."""

    @abstractmethod
    async def deliver(self, sink_id: str, result: TranslationResult) -> None:
        """Deliver one result. Failures are logged, not raised."""

    async def aclose(self) -> None:
        """Release resources. Default: nothing to release."""


class LoggingSink(ResultSink):
    """Writes each result to the ``voicerelay.session.sink`` logger."""

    async def deliver(self, sink_id: str, result: TranslationResult) -> None:
        logger.info("[%s] %s", sink_id, format_result_message(result))


class MemorySink(ResultSink):
    """Keeps delivered results in memory, keyed by sink id."""

    def __init__(self):
        self.results: dict[str, list[TranslationResult]] = {}
        self._delivered = asyncio.Condition()

    async def deliver(self, sink_id: str, result: TranslationResult) -> None:
        async with self._delivered:
            self.results.setdefault(sink_id, []).append(result)
            self._delivered.notify_all()

    def all(self) -> list[TranslationResult]:
        return [result for results in self.results.values() for result in results]

    async def wait_for(self, count: int, timeout: float = 5.0) -> list[TranslationResult]:
        """Wait until at least ``count`` results were delivered across all sinks."""
        async with self._delivered:
            await asyncio.wait_for(
                self._delivered.wait_for(lambda: len(self.all()) >= count), timeout
            )
        return self.all()


class WebhookSink(ResultSink):
    """POSTs each result as JSON to a webhook URL."""

    def __init__(self, url: str, timeout: float = 30.0):
        self.url = url
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: aiohttp.ClientSession | None = None

    async def deliver(self, sink_id: str, result: TranslationResult) -> None:
        payload = {
            "sink_id": sink_id,
            "message": format_result_message(result),
            "result": result.to_dict(),
        }
        try:
            session = self._ensure_session()
            async with session.post(
                self.url,
                json=payload,
                headers={"Content-Type": "application/json"},
            ) as resp:
                if resp.status >= 400:
                    logger.error(
                        "Webhook POST to %s for sink %s failed with status %d",
                        self.url,
                        sink_id,
                        resp.status,
                    )
                else:
                    logger.debug("Webhook POST to %s: status %d", self.url, resp.status)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.error("Webhook POST to %s for sink %s failed: %s", self.url, sink_id, exc)

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def aclose(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
