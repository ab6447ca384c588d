"""FastAPI application exposing the signaling relay over HTTP."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .config import Settings
from .errors import BadRequest, RoomNotFound
from .logging_config import get_logger, setup_logging
from .relay import PollResult, RoomInfo, SignalingRelay
from .store import RoomStore

logger = get_logger(__name__)


class SignalMessage(BaseModel):
    kind: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None


class SubmitRequest(BaseModel):
    """Setup message posted by one participant.

    Every field is optional at the schema level so missing fields surface as
    a 400 with an ``error`` body rather than a validation error.
    """

    model_config = ConfigDict(populate_by_name=True)

    room_id: Optional[str] = Field(default=None, alias="roomId")
    participant_id: Optional[str] = Field(default=None, alias="participantId")
    message: Optional[SignalMessage] = None


class ParticipantRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    participant_id: Optional[str] = Field(default=None, alias="participantId")


def _serialize_poll(result: PollResult) -> Dict[str, object]:
    return {
        "messages": [message.to_dict() for message in result.messages],
        "isHost": result.is_host,
        "participants": list(result.participants),
        "expiresInSeconds": result.expires_in_seconds,
        "role": result.role.value if result.role else None,
    }


def _serialize_room(info: RoomInfo) -> Dict[str, object]:
    return {
        "roomId": info.room_id,
        "available": info.available,
        "availableSlots": [slot.value for slot in info.available_slots],
        "participantCount": info.participant_count,
        "expiresInSeconds": info.expires_in_seconds,
    }


def _join_url(request: Request, room_id: str) -> str:
    """Shareable link a guest opens to join ``room_id``.

    A configured public URL wins, then the caller's origin, then the host the
    request reached (honouring proxy headers).
    """

    settings: Settings = request.app.state.settings
    base = settings.public_url or request.headers.get("origin")
    if not base:
        host = (
            request.headers.get("x-forwarded-host")
            or request.headers.get("host")
            or request.url.netloc
        )
        scheme = request.headers.get("x-forwarded-proto") or request.url.scheme
        base = f"{scheme}://{host}"
    return f"{base.rstrip('/')}/?room={room_id}"


def _relay(request: Request) -> SignalingRelay:
    return request.app.state.relay


def create_app(
    settings: Optional[Settings] = None, store: Optional[RoomStore] = None
) -> FastAPI:
    """Build the relay application around its own :class:`RoomStore`."""

    settings = settings or Settings.from_env()
    setup_logging(log_level=settings.log_level, log_file=settings.log_file)

    app = FastAPI(
        title="peerplay",
        description="Signaling relay for peer-to-peer turn-based games",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )
    app.state.settings = settings
    app.state.relay = SignalingRelay(
        store or RoomStore(ttl_seconds=settings.room_ttl_seconds)
    )

    @app.exception_handler(BadRequest)
    async def bad_request_handler(request: Request, exc: BadRequest) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.post("/api/signal")
    def submit_signal(body: SubmitRequest, request: Request) -> Dict[str, object]:
        message = body.message or SignalMessage()
        try:
            result = _relay(request).submit(
                body.room_id, body.participant_id, message.kind, message.payload
            )
        except RoomNotFound as exc:
            raise HTTPException(status_code=404, detail="Room not found") from exc
        return {
            "accepted": result.accepted,
            "participantCount": result.participant_count,
            "messageCount": result.message_count,
        }

    @app.get("/api/signal")
    def poll_signal(
        request: Request,
        room_id: Optional[str] = Query(default=None, alias="roomId"),
        participant_id: Optional[str] = Query(default=None, alias="participantId"),
        verify: bool = False,
    ) -> Dict[str, object]:
        result = _relay(request).poll(room_id, participant_id, want_all=verify)
        return _serialize_poll(result)

    @app.post("/api/room")
    def create_room(body: ParticipantRequest, request: Request) -> Dict[str, object]:
        info = _relay(request).create_room(body.participant_id)
        response = _serialize_room(info)
        response["joinUrl"] = _join_url(request, info.room_id)
        return response

    @app.get("/api/room/{room_id}")
    def inspect_room(room_id: str, request: Request) -> Dict[str, object]:
        try:
            info = _relay(request).inspect(room_id.strip())
        except RoomNotFound as exc:
            raise HTTPException(status_code=404, detail="Room not found") from exc
        return _serialize_room(info)

    @app.post("/api/room/{room_id}/leave")
    def leave_room(
        room_id: str, body: ParticipantRequest, request: Request
    ) -> Dict[str, bool]:
        if not body.participant_id:
            raise BadRequest("Missing required fields: participantId")
        try:
            closed = _relay(request).leave(room_id.strip(), body.participant_id)
        except RoomNotFound as exc:
            raise HTTPException(status_code=404, detail="Room not found") from exc
        return {"closed": closed}

    @app.get("/healthz")
    def health(request: Request) -> Dict[str, object]:
        return {"status": "ok", "rooms": len(_relay(request).store)}

    logger.info("Signaling relay application initialized")
    return app


app = create_app()

