"""
voicerelay/translation/response.py
==================================
Service Response Parsing — VoiceRelay

Responsibility:
    - Turn a raw translation service reply into a ServiceResponse
    - Accept a mapping, a bare JSON object, a JSON object wrapped in
      markdown fences, or a JSON object embedded in prose
    - Substitute a degraded response when the reply has no usable
      transcription/translation pair

The degraded response uses the raw reply text as both transcript and
translation, the declared source language (or "unknown"), and
FALLBACK_CONFIDENCE. Parsing never raises.

This module does NOT:
    - Call the service or retry
"""

import json
import logging
import re
from typing import Any, Mapping

from voicerelay.models import ServiceResponse

logger = logging.getLogger("voicerelay.translation.response")

FALLBACK_CONFIDENCE: float = 0.5
UNKNOWN_LANGUAGE: str = "unknown"

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_OBJECT_PATTERN = re.compile(r"\{.*\}", re.DOTALL)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def parse_service_response(
    raw: Mapping[str, Any] | str | None,
    source_language: str | None = None,
) -> ServiceResponse:
    """
    Validate a service reply, falling back to a degraded response.

    Args:
        raw:             Mapping or raw text returned by the service.
        source_language: Declared source language, used by the fallback.

    Returns:
        ServiceResponse. ``degraded`` is True when the fallback was used.
    """
    fallback_language = source_language or UNKNOWN_LANGUAGE

    if isinstance(raw, Mapping):
        parsed = _from_mapping(raw, fallback_language)
        if parsed is not None:
            return parsed
        return _degraded(_dump(raw), fallback_language, "mapping is missing transcription/translation")

    text = "" if raw is None else str(raw)
    payload = _extract_json_object(text)
    if payload is not None:
        parsed = _from_mapping(payload, fallback_language)
        if parsed is not None:
            return parsed
        return _degraded(text, fallback_language, "JSON object is missing transcription/translation")

    return _degraded(text, fallback_language, "reply is not a JSON object")


def clamp_confidence(value: Any) -> float | None:
    """Coerce a confidence value into [0, 1]; None for non-numeric input."""
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number:  # NaN
        return None
    return min(1.0, max(0.0, number))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _from_mapping(payload: Mapping[str, Any], fallback_language: str) -> ServiceResponse | None:
    transcript = _text_field(payload, "transcription", "transcript", "originalText")
    translation = _text_field(payload, "translation", "translatedText")
    if not transcript or not translation:
        return None

    detected = _text_field(payload, "detectedLanguage", "detected_language", "sourceLanguage")
    return ServiceResponse(
        transcript=transcript,
        translation=translation,
        detected_language=detected or fallback_language,
        confidence=clamp_confidence(payload.get("confidence")),
    )


def _text_field(payload: Mapping[str, Any], *keys: str) -> str:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def _extract_json_object(text: str) -> dict[str, Any] | None:
    candidates: list[str] = [text.strip()]
    candidates.extend(match.strip() for match in _FENCE_PATTERN.findall(text))
    embedded = _OBJECT_PATTERN.search(text)
    if embedded:
        candidates.append(embedded.group(0))

    for candidate in candidates:
        if not candidate:
            continue
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def _degraded(text: str, language: str, reason: str) -> ServiceResponse:
    logger.warning("Unparseable translation reply (%s); using raw text fallback", reason)
    return ServiceResponse(
        transcript=text,
        translation=text,
        detected_language=language,
        confidence=FALLBACK_CONFIDENCE,
        degraded=True,
    )


def _dump(payload: Mapping[str, Any]) -> str:
    try:
        return json.dumps(dict(payload), ensure_ascii=False)
    except (TypeError, ValueError):
        return str(payload)
