"""Interfaces for the platform peer-connection primitives.

The negotiation logic only ever talks to these two abstractions, so any
WebRTC binding (or a test double) can sit underneath it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Dict, Optional

Description = Dict[str, Any]
Candidate = Dict[str, Any]


class ConnectionState(str, Enum):
    IDLE = "idle"
    NEGOTIATING = "negotiating"
    AWAITING_REMOTE_DESCRIPTION = "awaiting-remote-description"
    GATHERING_CANDIDATES = "gathering-candidates"
    CHANNEL_CONNECTING = "channel-connecting"
    CHANNEL_OPEN = "channel-open"
    ESTABLISHED = "established"
    FAILED = "failed"
    CLOSED = "closed"


# Forward order of a successful negotiation. FAILED and CLOSED sit outside it.
NEGOTIATION_ORDER = (
    ConnectionState.IDLE,
    ConnectionState.NEGOTIATING,
    ConnectionState.AWAITING_REMOTE_DESCRIPTION,
    ConnectionState.GATHERING_CANDIDATES,
    ConnectionState.CHANNEL_CONNECTING,
    ConnectionState.CHANNEL_OPEN,
    ConnectionState.ESTABLISHED,
)


class NetworkState(str, Enum):
    """Connectivity reported by the peer connection itself."""

    NEW = "new"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"
    CLOSED = "closed"


# The game channel is ordered but never retransmits.
CHANNEL_OPTIONS = {"label": "game", "ordered": True, "max_retransmits": 0}


class DataChannel(ABC):
    """A bidirectional message channel carrying JSON text frames."""

    on_open: Optional[Callable[[], None]] = None
    on_message: Optional[Callable[[str], None]] = None
    on_close: Optional[Callable[[], None]] = None

    @property
    @abstractmethod
    def is_open(self) -> bool:
        ...

    @abstractmethod
    def send(self, data: str) -> None:
        ...

    @abstractmethod
    def close(self) -> None:
        ...


class PeerConnection(ABC):
    """One side of a peer-to-peer connection.

    Implementations report progress through the ``on_*`` callbacks:
    ``on_local_candidate`` receives each discovered candidate and ``None``
    once gathering completes, ``on_network_state`` receives
    :class:`NetworkState` changes and ``on_channel`` receives a channel opened
    by the remote side.
    """

    on_local_candidate: Optional[Callable[[Optional[Candidate]], None]] = None
    on_network_state: Optional[Callable[[NetworkState], None]] = None
    on_channel: Optional[Callable[[DataChannel], None]] = None

    @property
    @abstractmethod
    def local_description(self) -> Optional[Description]:
        """The current local description including gathered candidates."""

    @abstractmethod
    def create_local_description(self, kind: str) -> Description:
        """Create an ``offer`` or ``answer`` and apply it locally."""

    @abstractmethod
    def apply_remote_description(self, description: Description) -> None:
        ...

    @abstractmethod
    def add_candidate(self, candidate: Candidate) -> None:
        ...

    @abstractmethod
    def open_channel(
        self, label: str, ordered: bool = True, max_retransmits: int = 0
    ) -> DataChannel:
        ...

    @abstractmethod
    def wait_for_gathering(self) -> None:
        """Block until local candidate gathering has finished."""

    @abstractmethod
    def restart_ice(self) -> None:
        ...

    @abstractmethod
    def close(self) -> None:
        ...
