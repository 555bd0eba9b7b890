"""Tests for failure classification and reconnection backoff."""

import asyncio

import pytest
from pymongo.errors import AutoReconnect, OperationFailure, ServerSelectionTimeoutError

from rolereactor.database.errors import ConnectionTimeoutError
from rolereactor.database.reconnect import FailureKind, ReconnectionState, classify_failure


@pytest.mark.parametrize(
    "exc, expected",
    [
        (ServerSelectionTimeoutError("querySrv ETIMEOUT _mongodb._tcp.cluster0.example.net"), FailureKind.DNS_TIMEOUT),
        (ServerSelectionTimeoutError("The DNS operation timed out"), FailureKind.DNS_TIMEOUT),
        (ServerSelectionTimeoutError("getaddrinfo ENOTFOUND cluster0.example.net"), FailureKind.DNS_NOT_FOUND),
        (ServerSelectionTimeoutError("The DNS query name does not exist: _mongodb._tcp.x"), FailureKind.DNS_NOT_FOUND),
        (ServerSelectionTimeoutError("No servers found yet"), FailureKind.TIMEOUT),
        (ConnectionTimeoutError(30), FailureKind.TIMEOUT),
        (asyncio.TimeoutError(), FailureKind.TIMEOUT),
        (AutoReconnect("connection ETIMEOUT"), FailureKind.TIMEOUT),
        (OperationFailure("bad auth"), FailureKind.OTHER),
    ],
)
def test_classify_failure(exc, expected):
    assert classify_failure(exc) is expected


def test_initial_state():
    state = ReconnectionState()
    assert state.max_attempts == 5
    assert state.attempts == 0
    assert state.delay == 2.0
    assert state.is_connected is False
    assert state.can_retry is True


def test_other_failures_back_off_linearly():
    state = ReconnectionState(base_delay=2.0)
    state.record_failure(FailureKind.OTHER)
    assert state.next_delay() == pytest.approx(2.0)
    state.record_failure(FailureKind.OTHER)
    assert state.next_delay() == pytest.approx(4.0)
    state.record_failure(FailureKind.OTHER)
    assert state.next_delay() == pytest.approx(6.0)


@pytest.mark.parametrize(
    "kind, multiplier, cap",
    [
        (FailureKind.DNS_TIMEOUT, 1.5, 30.0),
        (FailureKind.TIMEOUT, 1.2, 20.0),
        (FailureKind.DNS_NOT_FOUND, 2.0, 60.0),
    ],
)
def test_classified_failures_stretch_the_delay_up_to_a_cap(kind, multiplier, cap):
    state = ReconnectionState(max_attempts=50, base_delay=2.0)
    state.record_failure(kind)
    assert state.delay == pytest.approx(2.0 * multiplier)

    for _ in range(40):
        state.record_failure(kind)
    assert state.delay == pytest.approx(cap)


def test_retries_stop_at_max_attempts():
    state = ReconnectionState(max_attempts=5)
    for _ in range(4):
        state.record_failure()
        assert state.can_retry
    state.record_failure()
    assert state.attempts == 5
    assert state.can_retry is False
    assert state.exhausted is True


def test_success_resets_counters():
    state = ReconnectionState()
    state.record_failure(FailureKind.DNS_NOT_FOUND)
    state.record_failure(FailureKind.DNS_NOT_FOUND)
    state.record_success()
    assert state.is_connected is True
    assert state.attempts == 0
    assert state.delay == 2.0
