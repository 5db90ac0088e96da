"""
voicerelay/languages.py
=======================
Supported Target Languages — VoiceRelay

Codes accepted as a translation target, with the display names used in
status replies.
"""

SUPPORTED_LANGUAGES: dict[str, str] = {
    "ja": "Japanese (日本語)",
    "en": "English",
    "ko": "Korean (한국어)",
    "zh": "Chinese (中文)",
    "es": "Spanish (Español)",
    "fr": "French (Français)",
    "de": "German (Deutsch)",
    "it": "Italian (Italiano)",
    "pt": "Portuguese (Português)",
    "ru": "Russian (Русский)",
}


def is_supported(code: str) -> bool:
    return code in SUPPORTED_LANGUAGES


def language_name(code: str) -> str:
    """Display name for a language code; unknown codes are returned as-is."""
    return SUPPORTED_LANGUAGES.get(code, code)


def check_language(code: str) -> str:
    """Return ``code`` if supported, otherwise raise ValueError."""
    if not is_supported(code):
        raise ValueError(
            f"unsupported target language {code!r}; "
            f"expected one of {', '.join(SUPPORTED_LANGUAGES)}"
        )
    return code
