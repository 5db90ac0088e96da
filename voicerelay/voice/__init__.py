# voicerelay/voice/__init__.py
# ============================
# Voice Layer — VoiceRelay
#
#   - transport.py  VoiceTransport / TransportListener contract
#   - manager.py    join / leave and event forwarding to the session registry

from voicerelay.voice.manager import VoiceCallManager  # noqa: F401
from voicerelay.voice.transport import (  # noqa: F401
    CallConnection,
    TransportListener,
    VoiceTransport,
)

__all__ = [
    "VoiceCallManager",
    "CallConnection",
    "TransportListener",
    "VoiceTransport",
]
