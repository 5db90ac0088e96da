# voicerelay/api/__init__.py
# ==========================
# API Layer — VoiceRelay
#
#   - control.py    FastAPI app: join / leave / language / status
#   - websocket.py  WebSocket audio ingest transport

from voicerelay.api.control import create_app  # noqa: F401
from voicerelay.api.websocket import WebSocketTransport  # noqa: F401

__all__ = ["create_app", "WebSocketTransport"]
