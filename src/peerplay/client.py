"""HTTP client for the signaling relay, used by peers during negotiation."""

from __future__ import annotations

from typing import Any, Dict, Optional, Protocol

import httpx

from .errors import BadRequest, RoomNotFound, TransportError
from .logging_config import get_logger
from .relay import PollResult, RoomInfo, SubmitResult
from .store import MessageKind, Role, SetupMessage

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 10.0


class RelayTransport(Protocol):
    """Operations a peer needs from the relay.

    Implemented by :class:`RelayClient` over HTTP and directly by
    :class:`peerplay.relay.SignalingRelay` in-process.
    """

    def create_room(self, participant_id: str) -> RoomInfo: ...

    def submit(
        self,
        room_id: str,
        participant_id: str,
        kind: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> SubmitResult: ...

    def poll(
        self, room_id: str, participant_id: str, want_all: bool = False
    ) -> PollResult: ...

    def leave(self, room_id: str, participant_id: str) -> bool: ...


def _parse_message(raw: Dict[str, Any]) -> Optional[SetupMessage]:
    try:
        kind = MessageKind(raw.get("kind"))
    except ValueError:
        logger.warning(f"Dropping relay message with unknown kind {raw.get('kind')!r}")
        return None
    return SetupMessage(
        kind=kind,
        participant_id=str(raw.get("participantId", "")),
        payload=raw.get("payload") or {},
    )


def _parse_room(data: Dict[str, Any]) -> RoomInfo:
    return RoomInfo(
        room_id=data["roomId"],
        participant_count=int(data.get("participantCount", 0)),
        available_slots=[Role(slot) for slot in data.get("availableSlots", [])],
        expires_in_seconds=int(data.get("expiresInSeconds", 0)),
        join_url=data.get("joinUrl"),
    )


class RelayClient:
    """Talks to the relay's ``/api`` endpoints with an :class:`httpx.Client`.

    Any httpx client works, including FastAPI's ``TestClient``.
    """

    def __init__(
        self,
        base_url: str = "",
        http: Optional[httpx.Client] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.http = http or httpx.Client(base_url=base_url, timeout=timeout)

    def close(self) -> None:
        self.http.close()

    def create_room(self, participant_id: str) -> RoomInfo:
        data = self._request(
            "POST", "/api/room", json={"participantId": participant_id}
        ).json()
        return _parse_room(data)

    def submit(
        self,
        room_id: str,
        participant_id: str,
        kind: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> SubmitResult:
        body = {
            "roomId": room_id,
            "participantId": participant_id,
            "message": {"kind": kind, "payload": payload},
        }
        data = self._request("POST", "/api/signal", json=body).json()
        return SubmitResult(
            accepted=bool(data.get("accepted")),
            participant_count=int(data.get("participantCount", 0)),
            message_count=int(data.get("messageCount", 0)),
        )

    def poll(
        self, room_id: str, participant_id: str, want_all: bool = False
    ) -> PollResult:
        params = {
            "roomId": room_id,
            "participantId": participant_id,
            "verify": "true" if want_all else "false",
        }
        data = self._request("GET", "/api/signal", params=params).json()
        messages = [
            message
            for message in (_parse_message(raw) for raw in data.get("messages", []))
            if message is not None
        ]
        raw_role = data.get("role")
        role = Role(raw_role) if raw_role in {r.value for r in Role} else None
        return PollResult(
            messages=messages,
            is_host=bool(data.get("isHost")),
            participants=list(data.get("participants", [])),
            expires_in_seconds=int(data.get("expiresInSeconds", 0)),
            role=role,
        )

    def inspect(self, room_id: str) -> RoomInfo:
        return _parse_room(self._request("GET", f"/api/room/{room_id}").json())

    def leave(self, room_id: str, participant_id: str) -> bool:
        data = self._request(
            "POST", f"/api/room/{room_id}/leave", json={"participantId": participant_id}
        ).json()
        return bool(data.get("closed"))

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self.http.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise TransportError(f"{method} {path} failed: {exc}") from exc

        if response.status_code >= 500:
            raise TransportError(f"{method} {path} returned {response.status_code}")
        if response.status_code == 404:
            raise RoomNotFound(response.json().get("detail", "Room not found"))
        if response.status_code >= 400:
            try:
                detail = response.json().get("error") or response.text
            except ValueError:
                detail = response.text
            raise BadRequest(f"{method} {path} rejected: {detail}")
        return response
