"""
Reconnection bookkeeping for the MongoDB connection manager.

The connection manager drives a small state machine::

    DISCONNECTED -> CONNECTING -> CONNECTED
                         |            |
                         v            v  (failed ping)
                    RECONNECTING <----+
                         |
                         v  (attempts exhausted)
                       FAILED

Delays are computed here and scheduled through a ``Scheduler`` so tests can
drive every transition without sleeping.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Protocol

from pymongo.errors import NetworkTimeout, ServerSelectionTimeoutError

from rolereactor.database.errors import ConnectionTimeoutError


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


class FailureKind(Enum):
    """How a connect failure should stretch the next backoff delay."""

    DNS_TIMEOUT = "dns_timeout"
    TIMEOUT = "timeout"
    DNS_NOT_FOUND = "dns_not_found"
    OTHER = "other"


# kind -> (multiplier, cap in seconds)
BACKOFF_POLICY: dict[FailureKind, tuple[float, float]] = {
    FailureKind.DNS_TIMEOUT: (1.5, 30.0),
    FailureKind.TIMEOUT: (1.2, 20.0),
    FailureKind.DNS_NOT_FOUND: (2.0, 60.0),
}

_DNS_TIMEOUT_MARKERS = ("querySrv ETIMEOUT", "DNS operation timed out", "resolution lifetime expired")
_TIMEOUT_MARKERS = ("ETIMEOUT", "timed out")
_DNS_NOT_FOUND_MARKERS = ("ENOTFOUND", "DNS query name does not exist", "Name or service not known", "nodename nor servname")


def classify_failure(exc: BaseException) -> FailureKind:
    """Map a connect failure to its backoff class.

    SRV lookup timeouts are checked before generic timeouts because the
    driver wraps both in ``ServerSelectionTimeoutError``.
    """
    message = str(exc)
    if any(marker in message for marker in _DNS_TIMEOUT_MARKERS):
        return FailureKind.DNS_TIMEOUT
    if any(marker in message for marker in _DNS_NOT_FOUND_MARKERS):
        return FailureKind.DNS_NOT_FOUND
    if isinstance(exc, (ConnectionTimeoutError, NetworkTimeout, ServerSelectionTimeoutError, asyncio.TimeoutError)):
        return FailureKind.TIMEOUT
    if any(marker in message for marker in _TIMEOUT_MARKERS):
        return FailureKind.TIMEOUT
    return FailureKind.OTHER


@dataclass
class ReconnectionState:
    """
    Retry counters for one connection manager.

    ``attempts`` counts consecutive failures. It resets on success and the
    manager stops scheduling retries once it reaches ``max_attempts``.
    ``delay`` is the per-attempt base, stretched by the failure class and
    multiplied by ``attempts`` when a retry is scheduled.
    """

    max_attempts: int = 5
    base_delay: float = 2.0
    is_connected: bool = False
    attempts: int = 0
    delay: float = field(init=False)

    def __post_init__(self) -> None:
        self.delay = self.base_delay

    @property
    def can_retry(self) -> bool:
        return self.attempts < self.max_attempts

    @property
    def exhausted(self) -> bool:
        return not self.can_retry

    def record_success(self) -> None:
        self.is_connected = True
        self.attempts = 0
        self.delay = self.base_delay

    def record_failure(self, kind: FailureKind = FailureKind.OTHER) -> None:
        self.is_connected = False
        self.attempts += 1
        policy = BACKOFF_POLICY.get(kind)
        if policy is not None:
            multiplier, cap = policy
            self.delay = min(self.delay * multiplier, cap)

    def next_delay(self) -> float:
        """Seconds to wait before the next attempt."""
        return self.delay * max(self.attempts, 1)


class TimerHandle(Protocol):
    def cancel(self) -> Any: ...


class Scheduler(Protocol):
    """Anything that can run a callback later, like ``loop.call_later``."""

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle: ...


class LoopScheduler:
    """Schedules callbacks on the running asyncio loop.

    Loop timers never keep the interpreter alive by themselves, so a pending
    retry does not delay shutdown.
    """

    def call_later(self, delay: float, callback: Callable[[], Any]) -> asyncio.TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)
