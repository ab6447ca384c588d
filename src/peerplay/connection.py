"""Negotiates one peer connection through the signaling relay.

A :class:`PeerConnector` plays either the host or the guest side. The host
publishes an offer and waits for an answer; the guest discovers the offer,
answers it and then both sides trade candidates until the data channel opens.
Everything is driven synchronously: callers advance negotiation with
:meth:`PeerConnector.poll_once` or :meth:`PeerConnector.wait_until_established`.
"""

from __future__ import annotations

import json
import time
from typing import Callable, Dict, List, Optional, Set

from .client import RelayTransport
from .errors import (
    ChannelFailure,
    NegotiationError,
    NoOfferFound,
    StaleOrMisroutedMessage,
    TransportError,
)
from .logging_config import get_logger
from .peer import (
    CHANNEL_OPTIONS,
    NEGOTIATION_ORDER,
    Candidate,
    ConnectionState,
    DataChannel,
    Description,
    NetworkState,
    PeerConnection,
)
from .protocol import COLORS, opposite
from .relay import PollResult
from .retry import (
    NEGOTIATION_POLL,
    OFFER_DISCOVERY,
    TRANSPORT,
    RetryPolicy,
    call_with_retries,
    poll_until,
)
from .store import MessageKind, Role, SetupMessage

logger = get_logger(__name__)

CLOSE_LOCAL = "local teardown"
CLOSE_EXPIRED = "room expired"
CLOSE_PEER = "peer disconnected"
CLOSE_CHANNEL = "channel closed"
CLOSE_OBSERVER = "room full"
CLOSE_FAILURE = "connection failure"
CLOSE_ICE_FAILURE = "ICE restart failed"


def _candidate_key(candidate: Candidate) -> str:
    return json.dumps(candidate, sort_keys=True)


def _strip_color(payload: Dict) -> Description:
    return {key: value for key, value in payload.items() if key != "hostColor"}


class PeerConnector:
    def __init__(
        self,
        relay: RelayTransport,
        peer: PeerConnection,
        participant_id: str,
        *,
        sleep: Callable[[float], None] = time.sleep,
        offer_policy: RetryPolicy = OFFER_DISCOVERY,
        poll_policy: RetryPolicy = NEGOTIATION_POLL,
        transport_policy: RetryPolicy = TRANSPORT,
    ) -> None:
        self.relay = relay
        self.peer = peer
        self.participant_id = participant_id
        self.sleep = sleep
        self.offer_policy = offer_policy
        self.poll_policy = poll_policy
        self.transport_policy = transport_policy

        self.state = ConnectionState.IDLE
        self.role: Optional[Role] = None
        self.room_id: Optional[str] = None
        self.color: Optional[str] = None
        self.host_color: Optional[str] = None
        self.channel: Optional[DataChannel] = None
        self.spectator = False
        self.network_connected = False
        self.channel_open = False
        self.close_reason: Optional[str] = None
        self.failure: Optional[ChannelFailure] = None

        # Hooks for the owning session.
        self.on_channel_open: Optional[Callable[[], None]] = None
        self.on_established: Optional[Callable[[], None]] = None
        self.on_message: Optional[Callable[[str], None]] = None
        self.on_poll: Optional[Callable[[PollResult], None]] = None
        self.on_closed: Optional[Callable[[str], None]] = None

        self._offer_sent = False
        self._remote_applied = False
        self._applied_offer: Optional[SetupMessage] = None
        self._cursor = 0
        self._pending_candidates: List[Candidate] = []
        self._seen_candidates: Set[str] = set()

        peer.on_local_candidate = self._on_local_candidate
        peer.on_network_state = self._on_network_state
        peer.on_channel = self._attach_channel

    # ---- public API ----

    @property
    def closed(self) -> bool:
        return self.state is ConnectionState.CLOSED

    def start_host(self, room_id: str, host_color: str) -> None:
        """Publish an offer carrying ``host_color`` and confirm the relay kept it."""

        if host_color not in COLORS:
            raise ValueError(f"Unknown color {host_color!r}")
        self._begin(Role.HOST, room_id)
        self.color = host_color
        self.host_color = host_color

        self._attach_channel(self.peer.open_channel(**CHANNEL_OPTIONS))
        offer = self.peer.create_local_description(MessageKind.OFFER.value)
        self._submit(MessageKind.OFFER, dict(offer, hostColor=host_color))
        self._offer_sent = True
        self._verify_offer()
        self._advance(ConnectionState.AWAITING_REMOTE_DESCRIPTION)

    def start_guest(self, room_id: str) -> Optional[str]:
        """Answer the host's offer and return the color this side plays.

        Returns ``None`` when the room already has two players, in which case
        the connector is marked as a spectator and stops.
        """

        self._begin(Role.GUEST, room_id)
        self._advance(ConnectionState.AWAITING_REMOTE_DESCRIPTION)

        result = poll_until(
            self._poll_relay,
            lambda r: r.role is Role.OBSERVER or self._find_offer(r) is not None,
            self.offer_policy,
            sleep=self.sleep,
        )
        if result is None:
            self.close(CLOSE_FAILURE)
            raise NoOfferFound(
                f"No offer found in room {room_id} after "
                f"{self.offer_policy.max_attempts} attempts"
            )
        if result.role is Role.OBSERVER:
            self._become_spectator()
            return None

        offer = self._find_offer(result)
        host_color = offer.payload.get("hostColor")
        if host_color not in COLORS:
            self.close(CLOSE_FAILURE)
            raise NegotiationError(f"Offer in room {room_id} carries no host color")
        self.host_color = host_color
        self.color = opposite(host_color)

        self.peer.apply_remote_description(_strip_color(offer.payload))
        self._applied_offer = offer
        self._remote_applied = True
        self._consume(result)
        self._flush_candidates()

        self.peer.create_local_description(MessageKind.ANSWER.value)
        self._advance(ConnectionState.GATHERING_CANDIDATES)
        self.peer.wait_for_gathering()
        self._submit(MessageKind.ANSWER, dict(self.peer.local_description or {}))
        logger.info(f"Answered offer in room {room_id}, playing {self.color}")
        return self.color

    def poll_once(self) -> int:
        """Fetch and apply new setup messages; returns how many were handled."""

        if self.closed or self.channel_open or self.room_id is None:
            return 0
        result = self._poll_relay()
        if result.role is Role.OBSERVER:
            self._become_spectator()
            return 0
        if result.gone:
            logger.info(f"Room {self.room_id} is gone, stopping negotiation")
            self.close(CLOSE_EXPIRED)
            return 0
        return self._consume(result)

    def wait_until_established(self, policy: Optional[RetryPolicy] = None) -> bool:
        """Poll until the data channel opens or the negotiation ends."""

        poll_until(
            self.poll_once,
            lambda _: self.channel_open,
            policy or self.poll_policy,
            sleep=self.sleep,
            stop=lambda: self.closed,
        )
        return self.channel_open

    def send(self, data: str) -> None:
        if self.channel is None or not self.channel.is_open:
            raise ChannelFailure("Data channel is not open")
        self.channel.send(data)

    def close(self, reason: str = CLOSE_LOCAL) -> None:
        if self.closed:
            return
        previous = self.state
        self.state = ConnectionState.CLOSED
        self.close_reason = reason
        self.network_connected = False
        self.channel_open = False
        logger.info(f"Connection {previous.value} -> closed ({reason})")

        channel, self.channel = self.channel, None
        for resource in (channel, self.peer):
            if resource is None:
                continue
            try:
                resource.close()
            except Exception:
                logger.warning(f"Error closing {type(resource).__name__}", exc_info=True)
        self._pending_candidates.clear()

        if self.on_closed:
            self.on_closed(reason)

    # ---- negotiation ----

    def _begin(self, role: Role, room_id: str) -> None:
        if self.state is not ConnectionState.IDLE:
            raise NegotiationError(f"Negotiation already {self.state.value}")
        self.role = role
        self.room_id = room_id
        self._advance(ConnectionState.NEGOTIATING)
        logger.info(f"Negotiating as {role.value} in room {room_id}")

    def _verify_offer(self) -> None:
        result = call_with_retries(
            lambda: self.relay.poll(self.room_id, self.participant_id, want_all=True),
            self.transport_policy,
            self.sleep,
            description="offer verification",
        )
        stored = any(
            m.kind is MessageKind.OFFER and m.participant_id == self.participant_id
            for m in result.messages
        )
        if not stored:
            self.close(CLOSE_FAILURE)
            raise NegotiationError(f"Offer was not stored in room {self.room_id}")

    def _find_offer(self, result: PollResult) -> Optional[SetupMessage]:
        for message in result.messages:
            if message.kind is MessageKind.OFFER:
                return message
        return None

    def _consume(self, result: PollResult) -> int:
        new_messages = result.messages[self._cursor:]
        self._cursor = len(result.messages)
        for message in new_messages:
            try:
                self._handle(message)
            except StaleOrMisroutedMessage as exc:
                logger.warning(f"Dropped setup message: {exc}")
        return len(new_messages)

    def _handle(self, message: SetupMessage) -> None:
        if message.kind is MessageKind.CANDIDATE:
            self._handle_candidate(message.payload)
        elif message.kind is MessageKind.ANSWER:
            self._handle_answer(message)
        elif message != self._applied_offer:
            raise StaleOrMisroutedMessage(
                f"offer from {message.participant_id} in room {self.room_id}"
            )

    def _handle_answer(self, message: SetupMessage) -> None:
        if self.role is not Role.HOST:
            raise StaleOrMisroutedMessage(f"answer delivered to {self.role.value}")
        if not self._offer_sent:
            raise StaleOrMisroutedMessage("answer arrived before any offer was sent")
        if self._remote_applied:
            raise StaleOrMisroutedMessage("answer arrived after one was applied")

        self._remote_applied = True
        self.peer.apply_remote_description(_strip_color(message.payload))
        self._advance(ConnectionState.GATHERING_CANDIDATES)
        self._flush_candidates()
        logger.info(f"Applied answer from {message.participant_id}")

    def _handle_candidate(self, candidate: Candidate) -> None:
        key = _candidate_key(candidate)
        if key in self._seen_candidates:
            logger.debug("Ignoring duplicate candidate")
            return
        self._seen_candidates.add(key)
        if not self._remote_applied:
            self._pending_candidates.append(candidate)
            return
        self._add_candidate(candidate)

    def _flush_candidates(self) -> None:
        pending, self._pending_candidates = self._pending_candidates, []
        for candidate in pending:
            self._add_candidate(candidate)

    def _add_candidate(self, candidate: Candidate) -> None:
        try:
            self.peer.add_candidate(candidate)
        except Exception:
            logger.warning("Failed to add remote candidate", exc_info=True)

    def _submit(self, kind: MessageKind, payload: Dict) -> None:
        call_with_retries(
            lambda: self.relay.submit(
                self.room_id, self.participant_id, kind.value, payload
            ),
            self.transport_policy,
            self.sleep,
            description=f"{kind.value} submission",
        )

    def _poll_relay(self) -> PollResult:
        result = call_with_retries(
            lambda: self.relay.poll(self.room_id, self.participant_id),
            self.transport_policy,
            self.sleep,
            description="relay poll",
        )
        if self.on_poll:
            self.on_poll(result)
        return result

    def _become_spectator(self) -> None:
        logger.info(f"Room {self.room_id} is full, joining as spectator")
        self.spectator = True
        self.role = Role.OBSERVER
        self.color = None
        self.close(CLOSE_OBSERVER)

    # ---- state ----

    def _advance(self, target: ConnectionState) -> None:
        """Move forward along the negotiation order, never backward."""

        current = self.state
        if current is ConnectionState.CLOSED:
            return
        if current is ConnectionState.FAILED:
            if target is not ConnectionState.NEGOTIATING:
                return
        elif NEGOTIATION_ORDER.index(target) <= NEGOTIATION_ORDER.index(current):
            return
        self.state = target
        logger.debug(f"Connection {current.value} -> {target.value}")

    def _check_established(self) -> None:
        if self.network_connected and self.channel_open:
            if self.state is ConnectionState.ESTABLISHED:
                return
            self._advance(ConnectionState.ESTABLISHED)
            logger.info(f"Connection established in room {self.room_id}")
            if self.on_established:
                self.on_established()

    # ---- platform callbacks ----

    def _on_local_candidate(self, candidate: Optional[Candidate]) -> None:
        if candidate is None:
            logger.debug("Local candidate gathering complete")
            return
        if self.closed or self.room_id is None:
            return
        try:
            self._submit(MessageKind.CANDIDATE, candidate)
        except TransportError as exc:
            logger.error(f"Could not publish local candidate: {exc}")

    def _on_network_state(self, state: NetworkState) -> None:
        if self.closed:
            return
        if state is NetworkState.CONNECTING:
            self._advance(ConnectionState.CHANNEL_CONNECTING)
        elif state is NetworkState.CONNECTED:
            self.network_connected = True
            self._advance(ConnectionState.CHANNEL_CONNECTING)
            self._check_established()
        elif state is NetworkState.DISCONNECTED:
            self.network_connected = False
            logger.warning("Peer network disconnected, waiting for recovery")
        elif state is NetworkState.FAILED:
            self.network_connected = False
            self.state = ConnectionState.FAILED
            self._restart_ice()
        elif state is NetworkState.CLOSED:
            self.close(CLOSE_CHANNEL)

    def _restart_ice(self) -> None:
        logger.warning("Peer connection failed, restarting ICE")
        try:
            self.peer.restart_ice()
        except Exception as exc:
            self.failure = ChannelFailure(f"ICE restart failed: {exc}")
            logger.error(str(self.failure))
            self.close(CLOSE_ICE_FAILURE)
            return
        self._advance(ConnectionState.NEGOTIATING)

    def _attach_channel(self, channel: DataChannel) -> None:
        self.channel = channel
        channel.on_open = self._on_channel_open
        channel.on_close = self._on_channel_close
        channel.on_message = self._on_channel_message
        if channel.is_open:
            self._on_channel_open()

    def _on_channel_open(self) -> None:
        if self.closed or self.channel_open:
            return
        self.channel_open = True
        self._advance(ConnectionState.CHANNEL_OPEN)
        logger.info(f"Data channel open in room {self.room_id}")
        if self.on_channel_open:
            self.on_channel_open()
        self._check_established()

    def _on_channel_close(self) -> None:
        if self.closed:
            return
        self.channel_open = False
        self.close(CLOSE_CHANNEL)

    def _on_channel_message(self, data: str) -> None:
        if self.on_message and not self.closed:
            self.on_message(data)
