"""Exponential backoff with proportional jitter."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Callable


@dataclass(frozen=True)
class BackoffPolicy:
    base: float = 1.0
    factor: float = 2.0
    cap: float = 60.0
    jitter: float = 0.2
    rng: Callable[[], float] = field(default=random.random, compare=False, repr=False)

    def raw_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based), without jitter."""

        exponent = max(attempt, 1) - 1
        return min(self.base * (self.factor ** exponent), self.cap)

    def delay(self, attempt: int) -> float:
        raw = self.raw_delay(attempt)
        if not self.jitter:
            return raw
        spread = raw * self.jitter
        return min(self.cap, max(0.0, raw - spread + 2 * spread * self.rng()))
