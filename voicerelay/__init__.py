# voicerelay/__init__.py
# ======================
# VoiceRelay — live call translation relay
#
# Layers:
#   - voicerelay.audio        per-speaker buffering, segmentation, resampling, VAD
#   - voicerelay.translation  translation service contract and dispatcher
#   - voicerelay.session      session registry and result sinks
#   - voicerelay.voice        call transport contract and call manager
#   - voicerelay.api          FastAPI control surface and WebSocket ingest

__version__ = "1.0.0"
