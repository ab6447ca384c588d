"""Retry policies and the polling primitive used during negotiation."""

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from .errors import TransportError
from .logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how many times an operation is re-attempted.

    ``max_attempts=None`` retries until the predicate is satisfied or the
    caller's stop condition fires.
    """

    max_attempts: Optional[int] = 10
    interval: float = 1.0
    jitter: float = 0.0

    def delay(self, rng: Callable[[], float] = random.random) -> float:
        if not self.jitter:
            return self.interval
        return max(0.0, self.interval + (rng() * 2 - 1) * self.jitter)

    def allows(self, attempt: int) -> bool:
        """Whether attempt number ``attempt`` (1-based) may run."""

        return self.max_attempts is None or attempt <= self.max_attempts


OFFER_DISCOVERY = RetryPolicy(max_attempts=10, interval=1.0)
TRANSPORT = RetryPolicy(max_attempts=3, interval=1.0)
NEGOTIATION_POLL = RetryPolicy(max_attempts=None, interval=1.0)


def poll_until(
    fetch: Callable[[], T],
    predicate: Callable[[T], bool],
    policy: RetryPolicy,
    sleep: Callable[[float], None] = time.sleep,
    stop: Optional[Callable[[], bool]] = None,
) -> Optional[T]:
    """Call ``fetch`` until ``predicate`` accepts its result.

    Returns the accepted result, or ``None`` once the policy's attempts are
    exhausted or ``stop`` reports true. No sleep follows the final attempt
    or a stop.
    """

    attempt = 1
    while policy.allows(attempt):
        if stop is not None and stop():
            return None
        result = fetch()
        if predicate(result):
            return result
        if stop is not None and stop():
            return None
        attempt += 1
        if policy.allows(attempt):
            sleep(policy.delay())
    return None


def call_with_retries(
    operation: Callable[[], T],
    policy: RetryPolicy = TRANSPORT,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "relay request",
) -> T:
    """Run ``operation``, retrying :class:`TransportError` at a fixed interval."""

    attempt = 1
    while True:
        try:
            return operation()
        except TransportError as exc:
            if not policy.allows(attempt + 1):
                logger.error(f"{description} failed after {attempt} attempts: {exc}")
                raise
            logger.warning(f"{description} failed (attempt {attempt}), retrying: {exc}")
        attempt += 1
        sleep(policy.delay())
