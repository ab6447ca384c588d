"""Shared fakes: a controllable clock, in-memory peer connections and rules."""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient

from peerplay.client import RelayClient
from peerplay.config import Settings
from peerplay.peer import DataChannel, NetworkState, PeerConnection
from peerplay.relay import SignalingRelay
from peerplay.server import create_app
from peerplay.store import RoomStore


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeChannel(DataChannel):
    def __init__(self, label: str) -> None:
        self.label = label
        self.remote: Optional["FakeChannel"] = None
        self.sent: List[str] = []
        self.closed = False
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        self._open = True
        if self.on_open:
            self.on_open()

    def send(self, data: str) -> None:
        if not self._open:
            raise RuntimeError("channel is not open")
        self.sent.append(data)
        remote = self.remote
        if remote is not None and remote.is_open and remote.on_message:
            remote.on_message(data)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._open = False
        if self.on_close:
            self.on_close()


class FakePeer(PeerConnection):
    def __init__(self, network: "FakePeerNetwork", name: str) -> None:
        self.network = network
        self.name = name
        self.remote_description: Optional[Dict] = None
        self.candidates: List[Dict] = []
        self.channel: Optional[FakeChannel] = None
        self.channel_options: Dict = {}
        self.gathering_waits = 0
        self.restarts = 0
        self.fail_restart = False
        self.closed = False
        self._local: Optional[Dict] = None

    @property
    def local_description(self) -> Optional[Dict]:
        return self._local

    def create_local_description(self, kind: str) -> Dict:
        self._local = {"type": kind, "sdp": f"v=0 {self.name} {kind}"}
        if self.on_local_candidate:
            self.on_local_candidate(self.network.candidate_for(self))
            self.on_local_candidate(None)
        return dict(self._local)

    def apply_remote_description(self, description: Dict) -> None:
        self.remote_description = description
        self.network.maybe_connect()

    def add_candidate(self, candidate: Dict) -> None:
        self.candidates.append(candidate)

    def open_channel(
        self, label: str, ordered: bool = True, max_retransmits: int = 0
    ) -> FakeChannel:
        self.channel = FakeChannel(label)
        self.channel_options = {"ordered": ordered, "max_retransmits": max_retransmits}
        return self.channel

    def wait_for_gathering(self) -> None:
        self.gathering_waits += 1

    def restart_ice(self) -> None:
        if self.fail_restart:
            raise RuntimeError("restart refused")
        self.restarts += 1

    def close(self) -> None:
        self.closed = True

    def report(self, state: NetworkState) -> None:
        if self.on_network_state:
            self.on_network_state(state)


class FakePeerNetwork:
    """Connects two :class:`FakePeer` objects once both have descriptions."""

    def __init__(self) -> None:
        self.peers: List[FakePeer] = []
        self.connected = False

    def peer(self) -> FakePeer:
        peer = FakePeer(self, f"peer{len(self.peers)}")
        self.peers.append(peer)
        return peer

    def candidate_for(self, peer: FakePeer) -> Dict:
        return {"candidate": f"candidate:{peer.name} 1 udp", "sdpMid": "0", "sdpMLineIndex": 0}

    def maybe_connect(self) -> None:
        ready = [p for p in self.peers if p.remote_description and p.local_description]
        offerer = next((p for p in ready if p.channel is not None), None)
        answerer = next((p for p in ready if p.channel is None), None)
        if self.connected or offerer is None or answerer is None:
            return
        self.connected = True

        remote_channel = FakeChannel(offerer.channel.label)
        remote_channel.remote = offerer.channel
        offerer.channel.remote = remote_channel
        if answerer.on_channel:
            answerer.on_channel(remote_channel)
        for peer in (answerer, offerer):
            peer.report(NetworkState.CONNECTING)
        for peer in (answerer, offerer):
            peer.report(NetworkState.CONNECTED)
        # Both ends are usable before either side hears about it.
        remote_channel._open = True
        offerer.channel._open = True
        for channel in (remote_channel, offerer.channel):
            if channel.on_open:
                channel.on_open()


class FakeRules:
    """Accepts only the moves listed in ``legal``."""

    def __init__(self, legal: Optional[List[Tuple[str, str]]] = None) -> None:
        self.legal = set(legal or [])
        self.applied: List[Tuple[str, str]] = []

    def legal_moves(self, square: str) -> List[str]:
        return sorted(to for frm, to in self.legal if frm == square)

    def apply_move(self, from_square: str, to_square: str) -> Optional[Dict]:
        if (from_square, to_square) not in self.legal:
            return None
        self.applied.append((from_square, to_square))
        return {"from": from_square, "to": to_square}

    def is_game_over(self) -> bool:
        return False

    def is_check(self) -> bool:
        return False


class NoSleep:
    def __init__(self) -> None:
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> RoomStore:
    return RoomStore(clock=clock)


@pytest.fixture
def relay(store: RoomStore) -> SignalingRelay:
    return SignalingRelay(store)


@pytest.fixture
def app(store: RoomStore):
    return create_app(settings=Settings(log_level="DEBUG"), store=store)


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


@pytest.fixture
def relay_client(client: TestClient) -> RelayClient:
    return RelayClient(http=client)


@pytest.fixture
def network() -> FakePeerNetwork:
    return FakePeerNetwork()


@pytest.fixture
def sleep() -> NoSleep:
    return NoSleep()
