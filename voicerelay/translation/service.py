"""
voicerelay/translation/service.py
=================================
Translation Service Contract — VoiceRelay

Responsibility:
    - Define the interface the dispatcher expects from a remote
      transcription/translation backend

A service receives one TranslationRequest (16 kHz mono PCM plus languages)
and returns either a mapping with the keys ``transcription``,
``translation``, ``detectedLanguage`` and ``confidence``, or the raw text
reply of the model. Validation and fallback are the dispatcher's job.
Any exception counts as a failed attempt and is retried by the dispatcher.

This module does NOT:
    - Retry, validate or parse responses
"""

from abc import ABC, abstractmethod
from typing import Any, Mapping

from voicerelay.models import TranslationRequest

ServicePayload = Mapping[str, Any] | str


class TranslationService(ABC):
    """Remote transcription + translation backend."""

    @abstractmethod
    async def translate(self, request: TranslationRequest) -> ServicePayload:
        """Transcribe ``request.payload`` and translate it to ``request.target_language``."""

    async def aclose(self) -> None:
        """Release network resources. Default: nothing to release."""
