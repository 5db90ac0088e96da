# voicerelay/session/__init__.py
# ==============================
# Session Layer — VoiceRelay
#
#   - registry.py  per-call sessions, speaker routing, result delivery
#   - sink.py      destinations for translated utterances

from voicerelay.session.registry import Session, SessionRegistry  # noqa: F401
from voicerelay.session.sink import (  # noqa: F401
    LoggingSink,
    MemorySink,
    ResultSink,
    WebhookSink,
    format_result_message,
)

__all__ = [
    "Session",
    "SessionRegistry",
    "LoggingSink",
    "MemorySink",
    "ResultSink",
    "WebhookSink",
    "format_result_message",
]
