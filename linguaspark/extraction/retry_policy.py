"""
Retry policies for extraction sessions.

A policy is a pure decision: given how many retries a session has already
used, may it try again, and how long should the caller wait first. The
session manager only asks; it never sleeps on the caller's behalf.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

DEFAULT_MAX_RETRIES = 3


def may_retry(retry_count: int, max_retries: int = DEFAULT_MAX_RETRIES) -> bool:
    """True while fewer than max_retries retries have been used."""
    return retry_count < max_retries


@runtime_checkable
class RetryPolicy(Protocol):
    """Decides whether another attempt is permitted."""

    max_retries: int

    def may_retry(self, retry_count: int) -> bool:
        ...

    def delay_before(self, retry_count: int) -> float:
        """Seconds the caller should wait before retry number retry_count + 1."""
        ...


@dataclass(frozen=True)
class BoundedRetryPolicy:
    """Fixed cap, no waiting."""

    max_retries: int = DEFAULT_MAX_RETRIES

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")

    def may_retry(self, retry_count: int) -> bool:
        return may_retry(retry_count, self.max_retries)

    def delay_before(self, retry_count: int) -> float:
        return 0.0


@dataclass(frozen=True)
class ExponentialBackoffPolicy:
    """
    Fixed cap with exponential waits between attempts.

    Delays run base_delay, 2 * base_delay, 4 * base_delay, ... up to max_delay.
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay: float = 1.0
    max_delay: float = 30.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")

    def may_retry(self, retry_count: int) -> bool:
        return may_retry(retry_count, self.max_retries)

    def delay_before(self, retry_count: int) -> float:
        if not self.may_retry(retry_count):
            return 0.0
        return min(self.base_delay * (2 ** retry_count), self.max_delay)
