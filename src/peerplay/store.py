"""In-memory room table holding signaling sessions and their setup-message logs."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .config import MAX_ACTIVE_PARTICIPANTS, ROOM_TTL_SECONDS
from .errors import RoomAlreadyExists, RoomNotFound
from .logging_config import get_logger

logger = get_logger(__name__)


class MessageKind(str, Enum):
    OFFER = "offer"
    ANSWER = "answer"
    CANDIDATE = "candidate"


class Role(str, Enum):
    HOST = "host"
    GUEST = "guest"
    OBSERVER = "observer"


@dataclass(frozen=True)
class SetupMessage:
    """One offer, answer or candidate posted through the relay."""

    kind: MessageKind
    participant_id: str
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "participantId": self.participant_id,
            "payload": self.payload,
        }


@dataclass
class Session:
    """A signaling room.

    The host is always ``participants[0]`` and the guest ``participants[1]``;
    roles are derived from that order and never stored.
    """

    room_id: str
    created_at: float
    participants: List[str] = field(default_factory=list)
    messages: List[SetupMessage] = field(default_factory=list)
    closed: bool = False

    @property
    def host(self) -> Optional[str]:
        return self.participants[0] if self.participants else None

    def role_of(self, participant_id: str) -> Role:
        try:
            index = self.participants.index(participant_id)
        except ValueError:
            return Role.OBSERVER
        if index == 0:
            return Role.HOST
        if index < MAX_ACTIVE_PARTICIPANTS:
            return Role.GUEST
        return Role.OBSERVER

    def copy(self) -> "Session":
        return replace(
            self, participants=list(self.participants), messages=list(self.messages)
        )


class RoomStore:
    """Thread-safe table of sessions with lazy TTL expiry."""

    def __init__(
        self,
        ttl_seconds: int = ROOM_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._rooms: Dict[str, Session] = {}
        self._lock = threading.Lock()

    def __contains__(self, room_id: object) -> bool:
        with self._lock:
            return room_id in self._rooms

    def __len__(self) -> int:
        with self._lock:
            return len(self._rooms)

    def create(self, room_id: str) -> Session:
        with self._lock:
            if room_id in self._rooms:
                raise RoomAlreadyExists(f"Room {room_id} already exists")
            session = Session(room_id=room_id, created_at=self.clock())
            self._rooms[room_id] = session
        logger.info(f"Created room {room_id}")
        return session

    def get_or_create(self, room_id: str) -> Session:
        with self._lock:
            session = self._rooms.get(room_id)
            if session is not None:
                return session
            session = Session(room_id=room_id, created_at=self.clock())
            self._rooms[room_id] = session
        logger.info(f"Created room {room_id} on first submission")
        return session

    def register(self, room_id: str, participant_id: str) -> Role:
        """Add ``participant_id`` to the room if a player slot is free.

        Participants beyond the two players are observers and leave the
        session untouched.
        """

        with self._lock:
            session = self._require(room_id)
            if participant_id not in session.participants:
                if len(session.participants) >= MAX_ACTIVE_PARTICIPANTS:
                    return Role.OBSERVER
                session.participants.append(participant_id)
                logger.debug(
                    f"Registered {participant_id} in room {room_id} "
                    f"({len(session.participants)}/{MAX_ACTIVE_PARTICIPANTS})"
                )
            return session.role_of(participant_id)

    def append(self, room_id: str, participant_id: str, message: SetupMessage) -> int:
        with self._lock:
            session = self._require(room_id)
            session.messages.append(message)
            count = len(session.messages)
        logger.debug(
            f"Stored {message.kind.value} from {participant_id} in room {room_id} "
            f"(messages={count})"
        )
        return count

    def participants_of(self, room_id: str) -> List[str]:
        with self._lock:
            return list(self._require(room_id).participants)

    def snapshot(self, room_id: str) -> Session:
        with self._lock:
            return self._require(room_id).copy()

    def close(self, room_id: str) -> None:
        with self._lock:
            self._require(room_id).closed = True
        logger.info(f"Room {room_id} closed, it will be removed on the next sweep")

    def expires_in(self, room_id: str, now: Optional[float] = None) -> int:
        now = self.clock() if now is None else now
        with self._lock:
            session = self._require(room_id)
            return round(self.ttl_seconds - (now - session.created_at))

    def sweep_expired(self, now: Optional[float] = None) -> List[str]:
        """Drop sessions older than the TTL and sessions already closed."""

        now = self.clock() if now is None else now
        with self._lock:
            removed = [
                room_id
                for room_id, session in self._rooms.items()
                if session.closed or now - session.created_at > self.ttl_seconds
            ]
            for room_id in removed:
                self._rooms.pop(room_id, None)
        for room_id in removed:
            logger.info(f"Room {room_id} removed by sweep")
        return removed

    def _require(self, room_id: str) -> Session:
        session = self._rooms.get(room_id)
        if session is None:
            raise RoomNotFound(f"Room {room_id} not found")
        return session
