"""Envelopes exchanged over the data channel once peers are connected."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import EnvelopeError

Color = Literal["w", "b"]
COLORS = ("w", "b")


def opposite(color: str) -> str:
    if color not in COLORS:
        raise ValueError(f"Unknown color {color!r}")
    return "b" if color == "w" else "w"


class EnvelopeKind(str, Enum):
    MOVE = "move"
    CHAT = "chat"
    CLOCK_SYNC = "clock-sync"
    GAME_START = "game-start"
    HANDSHAKE_COMPLETE = "handshake-complete"
    DISCONNECT = "disconnect"


class MovePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    from_square: str = Field(alias="from", min_length=1)
    to_square: str = Field(alias="to", min_length=1)


class ChatPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str
    sender: Optional[Color] = None
    timestamp: int = Field(ge=0)
    is_system: bool = Field(default=False, alias="isSystem")


class ClockSyncPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    time_white: int = Field(alias="timeWhite", ge=0)
    time_black: int = Field(alias="timeBlack", ge=0)


class GameStartPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    host_color: Color = Field(alias="hostColor")


PAYLOAD_MODELS: Dict[EnvelopeKind, Optional[Type[BaseModel]]] = {
    EnvelopeKind.MOVE: MovePayload,
    EnvelopeKind.CHAT: ChatPayload,
    EnvelopeKind.CLOCK_SYNC: ClockSyncPayload,
    EnvelopeKind.GAME_START: GameStartPayload,
    EnvelopeKind.HANDSHAKE_COMPLETE: None,
    EnvelopeKind.DISCONNECT: None,
}


@dataclass(frozen=True)
class Envelope:
    kind: EnvelopeKind
    payload: Optional[BaseModel] = None


def build_envelope(
    kind: Union[EnvelopeKind, str],
    payload: Union[BaseModel, Dict[str, Any], None] = None,
) -> Envelope:
    """Validate ``payload`` against the model registered for ``kind``."""

    try:
        kind = EnvelopeKind(kind)
    except ValueError as exc:
        raise EnvelopeError(f"Unknown envelope type {kind!r}") from exc

    model = PAYLOAD_MODELS[kind]
    if model is None:
        if payload:
            raise EnvelopeError(f"{kind.value} envelopes carry no payload")
        return Envelope(kind=kind)

    if isinstance(payload, model):
        return Envelope(kind=kind, payload=payload)
    if not isinstance(payload, dict):
        raise EnvelopeError(f"{kind.value} envelope requires an object payload")
    try:
        return Envelope(kind=kind, payload=model.model_validate(payload))
    except ValidationError as exc:
        raise EnvelopeError(f"Invalid {kind.value} payload: {exc}") from exc


def encode_envelope(envelope: Envelope) -> str:
    payload = envelope.payload.model_dump(by_alias=True) if envelope.payload else None
    return json.dumps(
        {"type": envelope.kind.value, "payload": payload}, separators=(",", ":")
    )


def decode_envelope(text: Union[str, bytes]) -> Envelope:
    try:
        data = json.loads(text)
    except ValueError as exc:
        raise EnvelopeError(f"Envelope is not valid JSON: {exc}") from exc
    if not isinstance(data, dict) or "type" not in data:
        raise EnvelopeError("Envelope must be an object with a type")
    return build_envelope(data["type"], data.get("payload"))


Handler = Callable[[Envelope], None]


class EnvelopeDispatcher:
    """Routes decoded envelopes to the handlers registered for their kind."""

    def __init__(self) -> None:
        self._handlers: Dict[EnvelopeKind, List[Handler]] = {
            kind: [] for kind in EnvelopeKind
        }

    def register(self, kind: Union[EnvelopeKind, str], handler: Handler) -> None:
        self._handlers[EnvelopeKind(kind)].append(handler)

    def dispatch(self, envelope: Envelope) -> int:
        handlers = list(self._handlers[envelope.kind])
        for handler in handlers:
            handler(envelope)
        return len(handlers)
