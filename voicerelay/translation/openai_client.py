"""
voicerelay/translation/openai_client.py
=======================================
OpenAI Translation Service — VoiceRelay

Responsibility:
    - Wrap utterance PCM (16 kHz mono) in a WAV container
    - Send it to an audio-capable OpenAI chat model with a
      transcribe-and-translate prompt
    - Return the model's raw text reply for the dispatcher to validate

A single attempt per call: retries belong to the dispatcher.

This module does NOT:
    - Retry failed calls
    - Parse or validate the reply (see response.py)
    - Resample audio
"""

import base64
import io
import logging
import wave

from openai import AsyncOpenAI

from voicerelay.config import RelaySettings
from voicerelay.errors import TranslationError
from voicerelay.models import SAMPLE_WIDTH, SERVICE_FORMAT, TranslationRequest
from voicerelay.translation.service import TranslationService

logger = logging.getLogger("voicerelay.translation.openai")

_RESPONSE_SHAPE: str = (
    "Return ONLY a JSON object with keys: "
    '"transcription" (original text), '
    '"translation" (translated text), '
    '"detectedLanguage" (ISO 639-1 code of the spoken language), '
    '"confidence" (number between 0 and 1).'
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def pcm_to_wav(
    pcm: bytes,
    sample_rate: int = SERVICE_FORMAT.sample_rate,
    channels: int = SERVICE_FORMAT.channels,
) -> bytes:
    """Wrap 16-bit PCM in a RIFF/WAVE container."""
    out = io.BytesIO()
    with wave.open(out, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(SAMPLE_WIDTH)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)
    return out.getvalue()


def build_prompt(target_language: str, source_language: str | None = None) -> str:
    """Instruction text sent alongside the audio."""
    if source_language:
        lead = (
            f"Transcribe the following audio in {source_language} "
            f"and translate it to {target_language}."
        )
    else:
        lead = (
            "Transcribe the following audio (auto-detect the language) "
            f"and translate it to {target_language}."
        )
    return f"{lead} {_RESPONSE_SHAPE}"


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class OpenAITranslationService(TranslationService):
    """Transcribe + translate one utterance per request via OpenAI audio input."""

    def __init__(
        self,
        api_key: str,
        model: str,
        client: AsyncOpenAI | None = None,
        timeout: float = 60.0,
    ):
        if client is None:
            client = AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        self._client = client
        self.model = model

    @classmethod
    def from_settings(cls, settings: RelaySettings) -> "OpenAITranslationService":
        """
        Build the service from settings.

        Raises:
            ConfigurationError: If OPENAI_API_KEY is missing.
        """
        return cls(api_key=settings.require_api_key(), model=settings.translation_model)

    async def translate(self, request: TranslationRequest) -> str:
        if not request.payload:
            raise TranslationError("Audio data is required for translation")

        audio_b64 = base64.b64encode(pcm_to_wav(request.payload)).decode("ascii")
        prompt = build_prompt(request.target_language, request.source_language)

        logger.debug(
            "Requesting translation for speaker %s: %d bytes -> %s",
            request.speaker_id,
            len(request.payload),
            request.target_language,
        )

        response = await self._client.chat.completions.create(
            model=self.model,
            modalities=["text"],
            temperature=0.0,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {
                            "type": "input_audio",
                            "input_audio": {"data": audio_b64, "format": "wav"},
                        },
                    ],
                }
            ],
        )

        content = response.choices[0].message.content or ""
        logger.debug(
            "Received %d chars from %s for speaker %s",
            len(content),
            self.model,
            request.speaker_id,
        )
        return content

    async def aclose(self) -> None:
        await self._client.close()
