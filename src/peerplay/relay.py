"""Signaling relay operations over a :class:`RoomStore`.

The relay is stateless apart from the store it is given. Every operation
sweeps expired rooms first so the TTL is enforced lazily at access time.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .config import MAX_ACTIVE_PARTICIPANTS, ROOM_CODE_LENGTH
from .errors import BadRequest, RoomAlreadyExists, RoomNotFound
from .logging_config import get_logger
from .store import MessageKind, Role, RoomStore, SetupMessage

logger = get_logger(__name__)

ROOM_ALLOCATION_ATTEMPTS = 10


@dataclass
class SubmitResult:
    accepted: bool
    participant_count: int
    message_count: int


@dataclass
class PollResult:
    """Messages visible to one participant plus room liveness details.

    An empty message list and ``expires_in_seconds <= 0`` both mean the
    caller should treat the room as gone.
    """

    messages: List[SetupMessage] = field(default_factory=list)
    is_host: bool = False
    participants: List[str] = field(default_factory=list)
    expires_in_seconds: int = 0
    role: Optional[Role] = None

    @property
    def gone(self) -> bool:
        return self.expires_in_seconds <= 0


@dataclass
class RoomInfo:
    room_id: str
    participant_count: int
    available_slots: List[Role]
    expires_in_seconds: int
    join_url: Optional[str] = None

    @property
    def available(self) -> bool:
        return bool(self.available_slots)


def _generate_room_code() -> str:
    return uuid.uuid4().hex[:ROOM_CODE_LENGTH]


def _parse_kind(kind: Any) -> MessageKind:
    try:
        return MessageKind(kind)
    except ValueError as exc:
        raise BadRequest(f"Unknown message kind {kind!r}") from exc


class SignalingRelay:
    """Accepts, stores and filters session-setup messages."""

    def __init__(self, store: RoomStore) -> None:
        self.store = store

    def create_room(self, participant_id: Optional[str]) -> RoomInfo:
        if not participant_id:
            raise BadRequest("Missing required fields: participantId")
        self.store.sweep_expired()
        for _ in range(ROOM_ALLOCATION_ATTEMPTS):
            room_id = _generate_room_code()
            try:
                self.store.create(room_id)
            except RoomAlreadyExists:
                continue
            break
        else:
            raise RuntimeError("Unable to allocate room")

        self.store.register(room_id, participant_id)
        logger.info(f"Participant {participant_id} created room {room_id} as host")
        return self._info(room_id)

    def submit(
        self,
        room_id: Optional[str],
        participant_id: Optional[str],
        kind: Optional[str],
        payload: Optional[Dict[str, Any]] = None,
    ) -> SubmitResult:
        missing = [
            name
            for name, value in (
                ("roomId", room_id),
                ("participantId", participant_id),
                ("message.kind", kind),
            )
            if not value
        ]
        if missing:
            logger.warning(f"Rejected submission, missing {', '.join(missing)}")
            raise BadRequest(f"Missing required fields: {', '.join(missing)}")
        message_kind = _parse_kind(kind)

        self.store.sweep_expired()
        self.store.get_or_create(room_id)
        role = self.store.register(room_id, participant_id)
        if role is Role.OBSERVER:
            session = self.store.snapshot(room_id)
            logger.info(
                f"Ignored {message_kind.value} from observer {participant_id} "
                f"in room {room_id}"
            )
            return SubmitResult(
                accepted=False,
                participant_count=len(session.participants),
                message_count=len(session.messages),
            )

        message = SetupMessage(
            kind=message_kind, participant_id=participant_id, payload=payload or {}
        )
        message_count = self.store.append(room_id, participant_id, message)
        participant_count = len(self.store.participants_of(room_id))
        logger.info(
            f"Accepted {message_kind.value} from {role.value} {participant_id} "
            f"in room {room_id}"
        )
        return SubmitResult(
            accepted=True,
            participant_count=participant_count,
            message_count=message_count,
        )

    def poll(
        self,
        room_id: Optional[str],
        participant_id: Optional[str],
        want_all: bool = False,
    ) -> PollResult:
        if not room_id or not participant_id:
            return PollResult()
        self.store.sweep_expired()
        try:
            role = self.store.register(room_id, participant_id)
            session = self.store.snapshot(room_id)
            expires_in = self.store.expires_in(room_id)
        except RoomNotFound:
            logger.debug(f"Poll for unknown or expired room {room_id}")
            return PollResult()

        if role is Role.OBSERVER:
            messages = []
        elif want_all:
            messages = list(session.messages)
        elif role is Role.HOST:
            messages = [m for m in session.messages if m.participant_id != participant_id]
        else:
            messages = [m for m in session.messages if m.participant_id == session.host]

        return PollResult(
            messages=messages,
            is_host=role is Role.HOST,
            participants=list(session.participants),
            expires_in_seconds=expires_in,
            role=role,
        )

    def inspect(self, room_id: str) -> RoomInfo:
        self.store.sweep_expired()
        return self._info(room_id)

    def leave(self, room_id: str, participant_id: str) -> bool:
        """Close the room when one of its players leaves."""

        self.store.sweep_expired()
        session = self.store.snapshot(room_id)
        if session.role_of(participant_id) is Role.OBSERVER:
            return False
        self.store.close(room_id)
        logger.info(f"Participant {participant_id} left room {room_id}")
        return True

    def _info(self, room_id: str) -> RoomInfo:
        session = self.store.snapshot(room_id)
        slots = [Role.HOST, Role.GUEST][len(session.participants):MAX_ACTIVE_PARTICIPANTS]
        return RoomInfo(
            room_id=room_id,
            participant_count=len(session.participants),
            available_slots=slots,
            expires_in_seconds=self.store.expires_in(room_id),
        )
