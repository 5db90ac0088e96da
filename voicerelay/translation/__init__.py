# voicerelay/translation/__init__.py
# ==================================
# Translation Layer — VoiceRelay
#
#   - service.py        TranslationService contract
#   - response.py       reply validation with degraded fallback
#   - openai_client.py  OpenAI audio-input implementation of the contract
#   - dispatcher.py     bounded retry, stream and batch dispatch

from voicerelay.translation.dispatcher import TranslationDispatcher  # noqa: F401
from voicerelay.translation.response import (  # noqa: F401
    FALLBACK_CONFIDENCE,
    parse_service_response,
)
from voicerelay.translation.service import TranslationService  # noqa: F401

__all__ = [
    "TranslationDispatcher",
    "TranslationService",
    "FALLBACK_CONFIDENCE",
    "parse_service_response",
]
