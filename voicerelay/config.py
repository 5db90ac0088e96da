"""
voicerelay/config.py
====================
Settings — VoiceRelay

Responsibility:
    - Load relay settings from environment variables (``.env`` supported)
    - Validate numeric settings and fail fast with ConfigurationError
    - Expose the audio formats used on the wire and by the service

Target format is fixed at 16 kHz mono by the translation service; only the
source (transport) format is configurable.

This module does NOT:
    - Create service clients or sinks
    - Configure logging handlers (see main.py)
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from voicerelay.errors import ConfigurationError
from voicerelay.languages import SUPPORTED_LANGUAGES, is_supported
from voicerelay.models import SERVICE_FORMAT, AudioFormat

load_dotenv()


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_TARGET_LANGUAGE = "ja"
DEFAULT_TRANSLATION_MODEL = "gpt-4o-audio-preview"
DEFAULT_SOURCE_SAMPLE_RATE = 48000
DEFAULT_SOURCE_CHANNELS = 2
DEFAULT_SILENCE_TIMEOUT_MS = 300
DEFAULT_VAD_THRESHOLD = 100
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_MS = 1000

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class RelaySettings:
    """Resolved relay configuration."""

    openai_api_key: str | None = None
    translation_model: str = DEFAULT_TRANSLATION_MODEL
    default_target_language: str = DEFAULT_TARGET_LANGUAGE
    auto_detect_language: bool = True
    vad_enabled: bool = True
    vad_threshold: int = DEFAULT_VAD_THRESHOLD
    source_sample_rate: int = DEFAULT_SOURCE_SAMPLE_RATE
    source_channels: int = DEFAULT_SOURCE_CHANNELS
    silence_timeout_ms: int = DEFAULT_SILENCE_TIMEOUT_MS
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS
    webhook_url: str | None = None
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.source_sample_rate <= 0:
            raise ConfigurationError(
                f"SOURCE_SAMPLE_RATE must be positive, got {self.source_sample_rate}"
            )
        if self.source_channels <= 0:
            raise ConfigurationError(
                f"SOURCE_CHANNELS must be positive, got {self.source_channels}"
            )
        if self.max_retries < 1:
            raise ConfigurationError(
                f"MAX_RETRIES must be at least 1, got {self.max_retries}"
            )
        if self.retry_delay_ms < 0:
            raise ConfigurationError(
                f"RETRY_DELAY_MS must not be negative, got {self.retry_delay_ms}"
            )
        if self.silence_timeout_ms <= 0:
            raise ConfigurationError(
                f"SILENCE_TIMEOUT_MS must be positive, got {self.silence_timeout_ms}"
            )
        if not self.default_target_language:
            raise ConfigurationError("DEFAULT_TARGET_LANGUAGE must not be empty")
        if not is_supported(self.default_target_language):
            raise ConfigurationError(
                f"DEFAULT_TARGET_LANGUAGE must be one of "
                f"{', '.join(SUPPORTED_LANGUAGES)}, got {self.default_target_language!r}"
            )

    @property
    def source_format(self) -> AudioFormat:
        return AudioFormat(self.source_sample_rate, self.source_channels)

    @property
    def target_format(self) -> AudioFormat:
        return SERVICE_FORMAT

    @property
    def retry_delay(self) -> float:
        """Delay between translation attempts, in seconds."""
        return self.retry_delay_ms / 1000.0

    def require_api_key(self) -> str:
        """
        Return the OpenAI API key.

        Raises:
            ConfigurationError: If OPENAI_API_KEY is not set.
        """
        if not self.openai_api_key or not self.openai_api_key.strip():
            raise ConfigurationError("OPENAI_API_KEY environment variable is not set.")
        return self.openai_api_key


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_settings(environ: dict[str, str] | None = None) -> RelaySettings:
    """
    Build RelaySettings from environment variables.

    Args:
        environ: Mapping to read from. Defaults to ``os.environ``.

    Returns:
        Validated RelaySettings.

    Raises:
        ConfigurationError: If a value cannot be parsed or is out of range.
    """
    env = os.environ if environ is None else environ

    return RelaySettings(
        openai_api_key=env.get("OPENAI_API_KEY") or None,
        translation_model=env.get("OPENAI_TRANSLATION_MODEL", DEFAULT_TRANSLATION_MODEL),
        default_target_language=env.get("DEFAULT_TARGET_LANGUAGE", DEFAULT_TARGET_LANGUAGE),
        auto_detect_language=_env_bool(env, "AUTO_DETECT_LANGUAGE", True),
        vad_enabled=_env_bool(env, "VAD_ENABLED", True),
        vad_threshold=_env_int(env, "VAD_THRESHOLD", DEFAULT_VAD_THRESHOLD),
        source_sample_rate=_env_int(env, "SOURCE_SAMPLE_RATE", DEFAULT_SOURCE_SAMPLE_RATE),
        source_channels=_env_int(env, "SOURCE_CHANNELS", DEFAULT_SOURCE_CHANNELS),
        silence_timeout_ms=_env_int(env, "SILENCE_TIMEOUT_MS", DEFAULT_SILENCE_TIMEOUT_MS),
        max_retries=_env_int(env, "MAX_RETRIES", DEFAULT_MAX_RETRIES),
        retry_delay_ms=_env_int(env, "RETRY_DELAY_MS", DEFAULT_RETRY_DELAY_MS),
        webhook_url=env.get("WEBHOOK_URL") or None,
        log_level=env.get("LOG_LEVEL", "INFO").upper(),
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _env_int(env, key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}", exc) from exc


def _env_bool(env, key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    raise ConfigurationError(f"{key} must be a boolean, got {raw!r}")
