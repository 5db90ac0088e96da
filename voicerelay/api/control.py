"""
voicerelay/api/control.py
=========================
Control API — VoiceRelay

Responsibility:
    - POST   /api/v1/calls                     join a call (open a session)
    - DELETE /api/v1/calls/{call_id}           leave a call (idempotent)
    - PUT    /api/v1/calls/{call_id}/language  change the target language
    - GET    /api/v1/calls/{call_id}           session status
    - GET    /api/v1/calls                     status of every session
    - WS     /api/v1/calls/{call_id}/audio     audio ingest for a joined call

Error mapping:
    VoiceChannelError on an existing session -> 409
    VoiceChannelError from the transport     -> 502
    Unknown call                             -> 404

The translation service is created at app construction; a missing
OPENAI_API_KEY raises ConfigurationError before the server starts.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Response, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, field_validator

from voicerelay import __version__
from voicerelay.api.websocket import WebSocketTransport
from voicerelay.config import RelaySettings
from voicerelay.errors import VoiceChannelError
from voicerelay.languages import check_language, language_name
from voicerelay.session.registry import SessionRegistry
from voicerelay.session.sink import LoggingSink, ResultSink, WebhookSink
from voicerelay.translation.dispatcher import TranslationDispatcher
from voicerelay.translation.openai_client import OpenAITranslationService
from voicerelay.translation.service import TranslationService
from voicerelay.voice.manager import VoiceCallManager

logger = logging.getLogger("voicerelay.api")


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


class JoinCallRequest(BaseModel):
    call_id: str = Field(min_length=1)
    channel_id: str = Field(min_length=1)
    sink_id: str = Field(min_length=1)
    target_language: str | None = None

    @field_validator("target_language")
    @classmethod
    def _supported_language(cls, value: str | None) -> str | None:
        return value if value is None else check_language(value)


class LanguageRequest(BaseModel):
    target_language: str = Field(min_length=1)

    @field_validator("target_language")
    @classmethod
    def _supported_language(cls, value: str) -> str:
        return check_language(value)


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


def create_app(
    settings: RelaySettings,
    service: TranslationService | None = None,
    sink: ResultSink | None = None,
) -> FastAPI:
    """
    Wire service, dispatcher, registry, transport and manager into an app.

    Args:
        settings: Resolved relay settings.
        service:  Translation service; defaults to OpenAI built from settings.
        sink:     Result sink; defaults to a WebhookSink when WEBHOOK_URL is
                  set, otherwise a LoggingSink.
    """
    if service is None:
        service = OpenAITranslationService.from_settings(settings)
    if sink is None:
        sink = WebhookSink(settings.webhook_url) if settings.webhook_url else LoggingSink()

    dispatcher = TranslationDispatcher.from_settings(service, settings)
    registry = SessionRegistry.from_settings(dispatcher, settings, sink)
    transport = WebSocketTransport()
    manager = VoiceCallManager(transport, registry)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "VoiceRelay %s ready (default target=%s, model=%s)",
            __version__,
            settings.default_target_language,
            settings.translation_model,
        )
        yield
        logger.info("Shutting down: leaving %d call(s)", len(registry))
        await manager.disconnect_all()
        await registry.shutdown()
        await sink.aclose()
        await service.aclose()

    app = FastAPI(
        title="VoiceRelay",
        description="Real-time per-speaker voice translation relay.",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.registry = registry
    app.state.manager = manager
    app.state.transport = transport

    # -----------------------------------------------------------------------
    # Endpoints
    # -----------------------------------------------------------------------

    @app.post("/api/v1/calls", status_code=201)
    async def join_call(body: JoinCallRequest):
        """Join a voice channel and start translating for ``sink_id``."""
        if body.call_id in registry:
            raise HTTPException(
                status_code=409,
                detail=f"Already connected to a voice channel for call {body.call_id}",
            )
        try:
            await manager.join(
                body.call_id,
                body.channel_id,
                body.sink_id,
                body.target_language,
            )
        except VoiceChannelError as exc:
            if body.call_id in registry:
                raise HTTPException(status_code=409, detail=exc.message)
            raise HTTPException(status_code=502, detail=str(exc))

        return registry.status(body.call_id)

    @app.delete("/api/v1/calls/{call_id}", status_code=204)
    async def leave_call(call_id: str):
        """Leave the call; unknown calls are accepted silently."""
        try:
            await manager.leave(call_id)
        except VoiceChannelError as exc:
            raise HTTPException(status_code=502, detail=str(exc))
        return Response(status_code=204)

    @app.put("/api/v1/calls/{call_id}/language")
    async def set_language(call_id: str, body: LanguageRequest):
        """Change the target language used by future flushes."""
        if call_id not in registry:
            raise HTTPException(status_code=404, detail=f"No active session for call {call_id}")
        registry.set_target_language(call_id, body.target_language)
        return {
            "call_id": call_id,
            "target_language": body.target_language,
            "target_language_name": language_name(body.target_language),
        }

    @app.get("/api/v1/calls/{call_id}")
    async def call_status(call_id: str):
        status = registry.status(call_id)
        if status is None:
            raise HTTPException(status_code=404, detail=f"No active session for call {call_id}")
        return status

    @app.get("/api/v1/calls")
    async def list_calls():
        return [registry.status(session.session_id) for session in registry.sessions()]

    @app.websocket("/api/v1/calls/{call_id}/audio")
    async def audio_ingest(websocket: WebSocket, call_id: str):
        await transport.serve(call_id, websocket)

    return app
