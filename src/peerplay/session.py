"""Player-facing session: negotiation, game envelopes, clocks and notices."""

from __future__ import annotations

import random
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel

from .clock import GameClock
from .client import RelayTransport
from .collaborators import RulesEngine
from .config import EXPIRY_WARNING_SECONDS
from .connection import (
    CLOSE_CHANNEL,
    CLOSE_EXPIRED,
    CLOSE_ICE_FAILURE,
    CLOSE_LOCAL,
    CLOSE_PEER,
    PeerConnector,
)
from .errors import (
    BadRequest,
    ChannelFailure,
    EnvelopeError,
    NegotiationError,
    ProtocolDesync,
    RoomNotFound,
    TransportError,
)
from .logging_config import get_logger
from .peer import ConnectionState, PeerConnection
from .protocol import (
    COLORS,
    ChatPayload,
    Envelope,
    EnvelopeDispatcher,
    EnvelopeKind,
    GameStartPayload,
    Handler,
    build_envelope,
    decode_envelope,
    encode_envelope,
    opposite,
)
from .relay import PollResult
from .retry import (
    NEGOTIATION_POLL,
    OFFER_DISCOVERY,
    TRANSPORT,
    RetryPolicy,
    call_with_retries,
)
from .store import Role

logger = get_logger(__name__)


@dataclass
class Notice:
    """A message meant for the player rather than the log."""

    level: str
    text: str


class PeerSession:
    """One player's end of a peer-to-peer game.

    ``peer_factory`` builds a fresh :class:`PeerConnection` for every
    negotiation. ``rules`` replays the opponent's moves; without one, moves
    are passed to handlers unchecked.
    """

    def __init__(
        self,
        relay: RelayTransport,
        peer_factory: Callable[[], PeerConnection],
        rules: Optional[RulesEngine] = None,
        *,
        participant_id: Optional[str] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
        offer_policy: RetryPolicy = OFFER_DISCOVERY,
        poll_policy: RetryPolicy = NEGOTIATION_POLL,
        transport_policy: RetryPolicy = TRANSPORT,
    ) -> None:
        self.relay = relay
        self.peer_factory = peer_factory
        self.rules = rules
        self.participant_id = participant_id or uuid.uuid4().hex[:8]
        self.sleep = sleep
        self.clock = clock
        self.rng = rng or random.Random()
        self.offer_policy = offer_policy
        self.poll_policy = poll_policy
        self.transport_policy = transport_policy

        self.connector: Optional[PeerConnector] = None
        self.game_clock = GameClock()
        self.chat_log: List[ChatPayload] = []
        self.notices: List[Notice] = []
        self.rejoin_room_id: Optional[str] = None
        self.expires_in: Optional[int] = None
        self.game_started = False
        self.handshake_complete = False

        self._handlers = EnvelopeDispatcher()
        self._builtin: Dict[EnvelopeKind, Callable[[Envelope], bool]] = {
            EnvelopeKind.MOVE: self._on_move,
            EnvelopeKind.CHAT: self._on_chat,
            EnvelopeKind.CLOCK_SYNC: self._on_clock_sync,
            EnvelopeKind.GAME_START: self._on_game_start,
            EnvelopeKind.HANDSHAKE_COMPLETE: self._on_handshake_complete,
            EnvelopeKind.DISCONNECT: self._on_disconnect,
        }
        self._game_start_sent = False
        self._expiry_warned = False
        self._leaving = False

    # ---- state ----

    @property
    def room_id(self) -> Optional[str]:
        return self.connector.room_id if self.connector else None

    @property
    def color(self) -> Optional[str]:
        return self.connector.color if self.connector else None

    @property
    def is_host(self) -> bool:
        return bool(self.connector) and self.connector.role is Role.HOST

    @property
    def is_spectator(self) -> bool:
        return bool(self.connector) and self.connector.spectator

    @property
    def state(self) -> ConnectionState:
        return self.connector.state if self.connector else ConnectionState.IDLE

    @property
    def is_connected(self) -> bool:
        return bool(self.connector) and self.connector.channel_open

    # ---- negotiation ----

    def create_session(self) -> str:
        """Allocate a room, publish the offer and return the room id."""

        info = call_with_retries(
            lambda: self.relay.create_room(self.participant_id),
            self.transport_policy,
            self.sleep,
            description="room creation",
        )
        connector = self._new_connector()
        host_color = self.rng.choice(COLORS)
        connector.start_host(info.room_id, host_color)
        self.rejoin_room_id = info.room_id
        logger.info(f"Hosting room {info.room_id} as {host_color}")
        return info.room_id

    def join_session(self, room_id: str) -> Optional[str]:
        """Answer the offer in ``room_id``; returns the local color.

        ``None`` means the room was full and this session is a spectator.
        """

        room_id = room_id.strip()
        connector = self._new_connector()
        try:
            color = connector.start_guest(room_id)
        except (NegotiationError, TransportError) as exc:
            self._notify("error", f"Could not join room {room_id}: {exc}")
            raise
        self.rejoin_room_id = room_id
        return color

    def rejoin(self) -> Optional[str]:
        if not self.rejoin_room_id:
            raise RoomNotFound("No previous room to rejoin")
        logger.info(f"Rejoining room {self.rejoin_room_id}")
        return self.join_session(self.rejoin_room_id)

    def poll(self) -> int:
        return self.connector.poll_once() if self.connector else 0

    def wait_until_established(self, policy: Optional[RetryPolicy] = None) -> bool:
        if self.connector is None:
            return False
        return self.connector.wait_until_established(policy)

    # ---- envelopes ----

    def on(self, kind: Union[EnvelopeKind, str], handler: Handler) -> None:
        self._handlers.register(kind, handler)

    def send_envelope(
        self,
        kind: Union[EnvelopeKind, str],
        payload: Union[BaseModel, Dict[str, Any], None] = None,
    ) -> None:
        envelope = build_envelope(kind, payload)
        if envelope.kind is EnvelopeKind.DISCONNECT:
            self.disconnect()
            return
        if envelope.kind is EnvelopeKind.GAME_START:
            self._announce_game_start()
            return
        self._send(envelope)
        if envelope.kind is EnvelopeKind.MOVE and self.is_host:
            self._sync_clock()
        elif envelope.kind is EnvelopeKind.CHAT:
            self.chat_log.append(envelope.payload)

    def send_chat(self, text: str) -> ChatPayload:
        payload = ChatPayload(
            text=text, sender=self.color, timestamp=int(self.clock() * 1000)
        )
        self.send_envelope(EnvelopeKind.CHAT, payload)
        return payload

    def tick_clock(self, elapsed: int, turn: str) -> None:
        """Charge time to ``turn`` and broadcast the clocks (host only)."""

        if not self.game_started or not self.is_host:
            return
        self.game_clock.tick(elapsed, turn)
        if self.is_connected:
            self._sync_clock()

    def disconnect(self) -> None:
        """Tell the peer we are leaving, then tear everything down."""

        connector = self.connector
        if connector is None:
            return
        self._leaving = True
        if connector.channel_open:
            try:
                self._send(build_envelope(EnvelopeKind.DISCONNECT))
            except ChannelFailure as exc:
                logger.debug(f"Disconnect envelope not delivered: {exc}")
        if connector.room_id and not connector.spectator:
            try:
                self.relay.leave(connector.room_id, self.participant_id)
            except (BadRequest, RoomNotFound, TransportError) as exc:
                logger.debug(f"Leave request for room {connector.room_id} failed: {exc}")
        connector.close(CLOSE_LOCAL)
        self._reset()

    def _send(self, envelope: Envelope) -> None:
        if self.connector is None:
            raise ChannelFailure("No active connection")
        self.connector.send(encode_envelope(envelope))

    def _sync_clock(self) -> None:
        self._send(build_envelope(EnvelopeKind.CLOCK_SYNC, self.game_clock.as_payload()))

    # ---- receive path ----

    def _receive(self, data: str) -> None:
        try:
            envelope = decode_envelope(data)
        except EnvelopeError as exc:
            logger.warning(f"Dropping malformed envelope: {exc}")
            return
        if self._builtin[envelope.kind](envelope):
            self._handlers.dispatch(envelope)
        if envelope.kind is EnvelopeKind.DISCONNECT and self.connector:
            self.connector.close(CLOSE_PEER)
            self._reset()

    def _on_move(self, envelope: Envelope) -> bool:
        if self.rules is None:
            return True
        move = envelope.payload
        if self.rules.apply_move(move.from_square, move.to_square) is None:
            desync = ProtocolDesync(
                f"Opponent move {move.from_square}->{move.to_square} is not legal here"
            )
            logger.warning(str(desync))
            self._notify("warning", "Received a move that could not be applied")
            return False
        return True

    def _on_chat(self, envelope: Envelope) -> bool:
        self.chat_log.append(envelope.payload)
        return True

    def _on_clock_sync(self, envelope: Envelope) -> bool:
        if self.is_host:
            logger.warning("Ignoring clock-sync received by the host")
            return False
        payload = envelope.payload
        self.game_clock.overwrite(payload.time_white, payload.time_black)
        return True

    def _on_game_start(self, envelope: Envelope) -> bool:
        if self.is_host:
            logger.warning("Ignoring game-start received by the host")
            return False
        host_color = envelope.payload.host_color
        connector = self.connector
        if connector and connector.host_color != host_color:
            logger.warning(
                f"Host announced {host_color}, offer said {connector.host_color}; "
                "adopting the announced colors"
            )
            connector.host_color = host_color
            connector.color = opposite(host_color)
        self._start_game()
        return True

    def _on_handshake_complete(self, envelope: Envelope) -> bool:
        if self.handshake_complete:
            logger.debug("Duplicate handshake-complete")
        self.handshake_complete = True
        return True

    def _on_disconnect(self, envelope: Envelope) -> bool:
        logger.info(f"Peer left room {self.room_id}")
        self._notify("info", "Your opponent has left the game")
        self._leaving = True
        return True

    # ---- connector hooks ----

    def _new_connector(self) -> PeerConnector:
        if self.connector is not None and not self.connector.closed:
            raise NegotiationError("A session is already active")
        self._reset()
        connector = PeerConnector(
            self.relay,
            self.peer_factory(),
            self.participant_id,
            sleep=self.sleep,
            offer_policy=self.offer_policy,
            poll_policy=self.poll_policy,
            transport_policy=self.transport_policy,
        )
        connector.on_channel_open = self._on_channel_open
        connector.on_established = self._on_established
        connector.on_message = self._receive
        connector.on_poll = self._on_poll
        connector.on_closed = self._on_closed
        self.connector = connector
        return connector

    def _on_channel_open(self) -> None:
        if self.is_host and not self._game_start_sent:
            self._announce_game_start()

    def _on_established(self) -> None:
        self.handshake_complete = True
        self._send(build_envelope(EnvelopeKind.HANDSHAKE_COMPLETE))

    def _on_poll(self, result: PollResult) -> None:
        if result.role is None:
            return
        self.expires_in = result.expires_in_seconds
        if 0 < self.expires_in < EXPIRY_WARNING_SECONDS and not self._expiry_warned:
            self._expiry_warned = True
            self._notify("warning", f"Room expires in {self.expires_in} seconds")

    def _on_closed(self, reason: str) -> None:
        if self._leaving:
            return
        if reason == CLOSE_EXPIRED:
            self._notify("error", "The room has expired")
        elif reason in (CLOSE_CHANNEL, CLOSE_ICE_FAILURE):
            self._notify("warning", "Connection to your opponent was lost")

    # ---- helpers ----

    def _announce_game_start(self) -> bool:
        """Send the single host-authored game-start."""

        if not self.is_host:
            logger.warning("Only the host announces game-start")
            return False
        if self._game_start_sent:
            logger.warning(f"game-start already sent in room {self.room_id}")
            return False
        self._send(
            build_envelope(
                EnvelopeKind.GAME_START,
                GameStartPayload(host_color=self.connector.host_color),
            )
        )
        self._game_start_sent = True
        self._start_game()
        return True

    def _start_game(self) -> None:
        # Clocks reset once per game; later changes arrive only as clock-sync.
        if self.game_started:
            return
        logger.info(f"Game started in room {self.room_id}")
        self.game_started = True
        self.game_clock.reset()

    def _notify(self, level: str, text: str) -> None:
        logger.info(f"Notice ({level}): {text}")
        self.notices.append(Notice(level=level, text=text))

    def _reset(self) -> None:
        self.game_started = False
        self.handshake_complete = False
        self.game_clock.reset()
        self.expires_in = None
        self._game_start_sent = False
        self._expiry_warned = False
        self._leaving = False
