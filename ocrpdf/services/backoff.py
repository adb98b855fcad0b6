"""Exponential backoff schedule with a cap and additive jitter.

The schedule is deterministic given a seeded `random.Random`, which is how the
tests pin exact waits. `tenacity_wait()` adapts the policy to tenacity's
`wait=` hook so the invoker can keep using `Retrying` for the loop itself.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from tenacity import RetryCallState

from ocrpdf.config import AppConfig


@dataclass(frozen=True, slots=True)
class BackoffDelay:
    nominal: float
    jitter: float = 0.0

    @property
    def seconds(self) -> float:
        return self.nominal + self.jitter


@dataclass(frozen=True)
class BackoffPolicy:
    base: float = 1.0
    cap: float = 60.0
    jitter: float = 2.0
    rng: Optional[random.Random] = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        if self.base <= 0:
            raise ValueError("backoff base must be positive")
        if self.cap < self.base:
            raise ValueError("backoff cap must be >= base")
        if self.jitter < 0:
            raise ValueError("backoff jitter must be non-negative")

    @classmethod
    def from_config(
        cls, config: AppConfig, *, rng: Optional[random.Random] = None
    ) -> "BackoffPolicy":
        return cls(
            base=config.backoff_base_seconds,
            cap=config.backoff_cap_seconds,
            jitter=config.backoff_jitter_seconds,
            rng=rng,
        )

    def next_delay(
        self, attempt_number: int, previous_delay: Optional[float] = None
    ) -> BackoffDelay:
        """Delay to wait after failed attempt `attempt_number` (1-based)."""
        if attempt_number <= 1 or previous_delay is None:
            nominal = self.base
        else:
            nominal = min(previous_delay * 2, self.cap)
        return BackoffDelay(nominal=nominal, jitter=self._draw_jitter())

    def nominal_schedule(self, count: int) -> List[float]:
        schedule: List[float] = []
        previous: Optional[float] = None
        for _ in range(count):
            nominal = self.base if previous is None else min(previous * 2, self.cap)
            schedule.append(nominal)
            previous = nominal
        return schedule

    def tenacity_wait(self) -> Callable[[RetryCallState], float]:
        """Fresh stateful wait callable; create one per logical call."""
        previous: List[Optional[float]] = [None]

        def _wait(retry_state: RetryCallState) -> float:
            delay = self.next_delay(retry_state.attempt_number, previous[0])
            previous[0] = delay.nominal
            return delay.seconds

        return _wait

    def _draw_jitter(self) -> float:
        if self.jitter == 0:
            return 0.0
        source = self.rng if self.rng is not None else random
        return source.uniform(0.0, self.jitter)


__all__ = ["BackoffDelay", "BackoffPolicy"]
