"""Tests for relay submission, filtering and room lifecycle."""

from __future__ import annotations

import pytest

from peerplay.errors import BadRequest, RoomNotFound
from peerplay.store import MessageKind, Role


def _kinds(result):
    return [(m.kind.value, m.participant_id) for m in result.messages]


def test_first_submitter_becomes_host(relay):
    result = relay.submit("room1", "host", "offer", {"sdp": "x"})
    assert result.accepted
    assert result.participant_count == 1
    assert result.message_count == 1
    assert relay.store.participants_of("room1") == ["host"]


def test_submit_requires_fields_and_known_kind(relay):
    with pytest.raises(BadRequest):
        relay.submit(None, "host", "offer")
    with pytest.raises(BadRequest):
        relay.submit("room1", "", "offer")
    with pytest.raises(BadRequest):
        relay.submit("room1", "host", None)
    with pytest.raises(BadRequest):
        relay.submit("room1", "host", "renegotiate")


def test_host_and_guest_filtering(relay):
    relay.submit("room1", "host", "offer", {"sdp": "o"})
    relay.submit("room1", "host", "candidate", {"candidate": "h1"})
    relay.submit("room1", "guest", "answer", {"sdp": "a"})
    relay.submit("room1", "guest", "candidate", {"candidate": "g1"})

    host_view = relay.poll("room1", "host")
    assert host_view.is_host
    assert host_view.role is Role.HOST
    assert _kinds(host_view) == [("answer", "guest"), ("candidate", "guest")]

    guest_view = relay.poll("room1", "guest")
    assert not guest_view.is_host
    assert _kinds(guest_view) == [("offer", "host"), ("candidate", "host")]


def test_want_all_returns_full_log(relay):
    relay.submit("room1", "host", "offer", {"sdp": "o"})
    relay.submit("room1", "guest", "answer", {"sdp": "a"})
    result = relay.poll("room1", "host", want_all=True)
    assert _kinds(result) == [("offer", "host"), ("answer", "guest")]


def test_third_participant_is_observer_without_messages(relay):
    relay.submit("room1", "host", "offer", {"sdp": "o"})
    relay.poll("room1", "guest")

    observer_view = relay.poll("room1", "carol", want_all=True)
    assert observer_view.role is Role.OBSERVER
    assert observer_view.messages == []

    submitted = relay.submit("room1", "carol", "answer", {"sdp": "late"})
    assert not submitted.accepted
    assert submitted.participant_count == 2
    assert _kinds(relay.poll("room1", "host")) == []


def test_poll_unknown_room_is_empty(relay):
    result = relay.poll("nope", "someone")
    assert result.messages == []
    assert result.gone
    assert result.role is None


def test_duplicate_candidates_are_stored(relay):
    relay.submit("room1", "host", "offer", {"sdp": "o"})
    relay.submit("room1", "host", "candidate", {"candidate": "same"})
    relay.submit("room1", "host", "candidate", {"candidate": "same"})
    guest_view = relay.poll("room1", "guest")
    assert [m.kind for m in guest_view.messages].count(MessageKind.CANDIDATE) == 2


def test_room_expires_after_ttl(relay, clock):
    relay.submit("room1", "host", "offer", {"sdp": "o"})
    clock.advance(1199)
    assert relay.poll("room1", "host", want_all=True).expires_in_seconds == 1

    clock.advance(2)
    result = relay.poll("room1", "host")
    assert result.gone
    assert "room1" not in relay.store


def test_create_room_registers_host(relay):
    info = relay.create_room("host")
    assert len(info.room_id) == 6
    assert info.participant_count == 1
    assert info.available_slots == [Role.GUEST]
    assert relay.poll(info.room_id, "host").is_host


def test_inspect_reports_slots(relay):
    info = relay.create_room("host")
    relay.poll(info.room_id, "guest")
    full = relay.inspect(info.room_id)
    assert not full.available
    assert full.participant_count == 2
    with pytest.raises(RoomNotFound):
        relay.inspect("missing")


def test_leave_closes_room_for_players_only(relay):
    info = relay.create_room("host")
    relay.poll(info.room_id, "guest")
    assert relay.leave(info.room_id, "carol") is False
    assert relay.leave(info.room_id, "guest") is True
    assert relay.poll(info.room_id, "host").gone
