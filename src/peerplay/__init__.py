"""peerplay package exposing the signaling relay, its client and peer sessions."""

from .client import RelayClient
from .connection import PeerConnector
from .protocol import EnvelopeKind
from .relay import SignalingRelay
from .server import app, create_app
from .session import PeerSession
from .store import RoomStore

__all__ = [
    "EnvelopeKind",
    "PeerConnector",
    "PeerSession",
    "RelayClient",
    "RoomStore",
    "SignalingRelay",
    "app",
    "create_app",
]
