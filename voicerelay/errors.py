"""
voicerelay/errors.py
====================
Error taxonomy — VoiceRelay

Responsibility:
    - Define the exception hierarchy shared by every layer
    - Tag each error with an ``ErrorType`` so callers can map it to a
      user-facing message or an HTTP status

Recovery policy:
    - ConfigurationError:   fatal at startup
    - AudioProcessingError: the current utterance is dropped, session continues
    - TranslationError:     the current utterance is dropped, session continues
    - VoiceChannelError:    surfaced to the caller (join / leave / transport)

This module does NOT:
    - Log anything
    - Decide whether a session survives an error
"""

from enum import Enum


class ErrorType(str, Enum):
    """Categories of relay failures."""

    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    AUDIO_PROCESSING_ERROR = "AUDIO_PROCESSING_ERROR"
    TRANSLATION_ERROR = "TRANSLATION_ERROR"
    VOICE_CHANNEL_ERROR = "VOICE_CHANNEL_ERROR"


class RelayError(Exception):
    """Base class for all VoiceRelay errors."""

    error_type: ErrorType = ErrorType.TRANSLATION_ERROR

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message


class ConfigurationError(RelayError):
    """Raised when required settings or credentials are missing or invalid."""

    error_type = ErrorType.CONFIGURATION_ERROR


class AudioProcessingError(RelayError):
    """Raised when decoding or resampling a speaker's audio fails."""

    error_type = ErrorType.AUDIO_PROCESSING_ERROR


class TranslationError(RelayError):
    """Raised when an utterance cannot be translated."""

    error_type = ErrorType.TRANSLATION_ERROR


class VoiceChannelError(RelayError):
    """Raised when joining, leaving or talking to a voice call fails."""

    error_type = ErrorType.VOICE_CHANNEL_ERROR
