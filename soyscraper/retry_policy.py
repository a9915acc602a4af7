from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from .logging_utils import _scraper_event

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with full jitter for discovery calls.

    ``retries`` counts the attempts made after the first one.
    """

    retries: int = 10
    base_delay_s: float = 2.0
    jitter_max_s: float = 0.25

    @classmethod
    def from_ms(cls, retries: int, base_delay_ms: int) -> "RetryPolicy":
        return cls(retries=max(0, retries), base_delay_s=max(0, base_delay_ms) / 1000.0)

    @property
    def max_attempts(self) -> int:
        return self.retries + 1


def compute_backoff_seconds(
    attempt_index: int,
    policy: RetryPolicy,
    rng: Optional[random.Random] = None,
) -> float:
    """Return the delay after the given failed attempt (1-based)."""

    jitter = (rng or random).uniform(0, policy.jitter_max_s) if policy.jitter_max_s > 0 else 0.0
    return policy.base_delay_s * (2 ** max(0, attempt_index - 1)) + jitter


def call_with_retries(
    task: Callable[[int], T],
    policy: RetryPolicy,
    *,
    label: str = "task",
    sleep: Callable[[float], None] = time.sleep,
    rng: Optional[random.Random] = None,
) -> T:
    """Run ``task(attempt)`` until it returns, retrying on any exception.

    The last exception propagates once ``policy.max_attempts`` is used up.
    """

    attempt = 1
    while True:
        try:
            return task(attempt)
        except Exception as exc:  # noqa: BLE001
            will_retry = attempt < policy.max_attempts
            backoff = compute_backoff_seconds(attempt, policy, rng) if will_retry else None
            _scraper_event(
                "state",
                phase="retry_decision",
                label=label,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                will_retry=will_retry,
                backoff_seconds=round(backoff, 3) if backoff is not None else None,
                error=str(exc),
            )
            if not will_retry:
                raise
            sleep(backoff)
            attempt += 1


__all__ = ["RetryPolicy", "compute_backoff_seconds", "call_with_retries"]
