"""Tests for retry policies and polling."""

from __future__ import annotations

import pytest

from peerplay.errors import TransportError
from peerplay.retry import RetryPolicy, call_with_retries, poll_until


def test_poll_until_gives_up_after_max_attempts(sleep):
    calls = []

    def fetch():
        calls.append(1)
        return None

    result = poll_until(fetch, lambda r: r is not None, RetryPolicy(10, 1.0), sleep)
    assert result is None
    assert len(calls) == 10
    assert sleep.calls == [1.0] * 9


def test_poll_until_returns_first_accepted_result(sleep):
    values = iter([None, None, "offer"])
    result = poll_until(lambda: next(values), bool, RetryPolicy(5, 0.5), sleep)
    assert result == "offer"
    assert sleep.calls == [0.5, 0.5]


def test_poll_until_honours_stop(sleep):
    result = poll_until(lambda: None, bool, RetryPolicy(None, 1.0), sleep, stop=lambda: True)
    assert result is None
    assert sleep.calls == []


def test_jitter_stays_within_bounds():
    policy = RetryPolicy(3, interval=1.0, jitter=0.25)
    assert policy.delay(lambda: 0.0) == pytest.approx(0.75)
    assert policy.delay(lambda: 1.0) == pytest.approx(1.25)


def test_call_with_retries_recovers_from_transport_errors(sleep):
    attempts = []

    def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise TransportError("503")
        return "ok"

    assert call_with_retries(flaky, RetryPolicy(3, 1.0), sleep) == "ok"
    assert sleep.calls == [1.0, 1.0]


def test_call_with_retries_surfaces_after_exhaustion(sleep):
    def broken():
        raise TransportError("down")

    with pytest.raises(TransportError):
        call_with_retries(broken, RetryPolicy(3, 1.0), sleep)
    assert len(sleep.calls) == 2


def test_call_with_retries_does_not_retry_other_errors(sleep):
    def invalid():
        raise ValueError("bad")

    with pytest.raises(ValueError):
        call_with_retries(invalid, RetryPolicy(3, 1.0), sleep)
    assert sleep.calls == []


def test_poll_until_stops_without_sleeping_after_stop_fires(sleep):
    state = {"closed": False}

    def fetch():
        state["closed"] = True
        return None

    result = poll_until(
        fetch, bool, RetryPolicy(None, 1.0), sleep, stop=lambda: state["closed"]
    )
    assert result is None
    assert sleep.calls == []
