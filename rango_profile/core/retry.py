"""Bounded retry with jittered exponential backoff."""

from __future__ import annotations

import random
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple, Type, TypeVar

from .config import Settings

T = TypeVar("T")


@dataclass
class RetryPolicy:
    attempts: int = 3
    base_seconds: float = 0.05
    max_seconds: float = 1.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)
    rng: Callable[[], float] = field(default=random.random, repr=False)

    @classmethod
    def from_settings(cls, settings: Settings, attempts: int, **overrides) -> "RetryPolicy":
        return cls(
            attempts=max(1, attempts),
            base_seconds=settings.retry_backoff_seconds,
            max_seconds=settings.retry_backoff_max_seconds,
            **overrides,
        )

    def delay(self, attempt: int) -> float:
        """Full jitter: uniform in [0, min(cap, base * 2**(attempt-1)))."""
        ceiling = min(self.max_seconds, self.base_seconds * (2 ** (attempt - 1)))
        return ceiling * self.rng()

    def run(
        self,
        fn: Callable[[], T],
        retry_on: Tuple[Type[BaseException], ...],
        on_retry: Optional[Callable[[int, BaseException], None]] = None,
    ) -> T:
        """Call ``fn`` until it succeeds; re-raise the last error once attempts run out."""
        attempt = 1
        while True:
            try:
                return fn()
            except retry_on as exc:
                if attempt >= self.attempts:
                    raise
                if on_retry is not None:
                    on_retry(attempt, exc)
                pause = self.delay(attempt)
                if pause > 0:
                    self.sleep(pause)
                attempt += 1
