"""Error taxonomy shared by the relay, the client transport and the peer session."""

from __future__ import annotations


class PeerPlayError(Exception):
    """Base class for every error raised by peerplay."""


class BadRequest(PeerPlayError):
    """A setup-message submission is missing required fields."""


class RoomNotFound(PeerPlayError):
    """The room is unknown, expired or already closed."""


class RoomAlreadyExists(PeerPlayError):
    """A room with the requested id is already registered."""


class NegotiationError(PeerPlayError):
    """The offer/answer exchange could not be completed."""


class NoOfferFound(NegotiationError):
    """The guest exhausted its offer-discovery attempts."""


class StaleOrMisroutedMessage(PeerPlayError):
    """A setup message arrived with no matching pending negotiation."""


class ChannelFailure(PeerPlayError):
    """The direct channel or its ICE transport failed and could not recover."""


class ProtocolDesync(PeerPlayError):
    """A replayed move failed local legality checks."""


class TransportError(PeerPlayError):
    """The relay could not be reached after the configured retries."""


class EnvelopeError(PeerPlayError, ValueError):
    """An envelope received over the channel could not be decoded."""
