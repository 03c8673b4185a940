from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from ai_router.constants import RATE_LIMIT_WINDOW_SECONDS
from ai_router.schemas import RateLimitStatus


Clock = Callable[[], float]


@dataclass
class _Window:
    count: int = 0
    reset_at: float = 0.0


class RateLimitTracker:
    """Fixed-window request and token counters for a single backend.

    Windows are rolled over lazily: the first admission check after a window
    expires replaces it with an empty one ending ``window_seconds`` from now.
    All state changes happen under one lock owned by this tracker, so two
    backends never contend with each other.
    """

    def __init__(
        self,
        rpm: int,
        tpm: int,
        *,
        window_seconds: float = RATE_LIMIT_WINDOW_SECONDS,
        clock: Clock = time.monotonic,
    ) -> None:
        if rpm < 1 or tpm < 1:
            raise ValueError("rate limits must be positive")
        self.rpm = rpm
        self.tpm = tpm
        self._window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        # reset_at=0 makes the first check open a fresh window.
        self._requests = _Window()
        self._tokens = _Window()

    def _roll_over(self, now: float) -> None:
        if now >= self._requests.reset_at:
            self._requests = _Window(count=0, reset_at=now + self._window_seconds)
        if now >= self._tokens.reset_at:
            self._tokens = _Window(count=0, reset_at=now + self._window_seconds)

    def can_admit(self) -> bool:
        with self._lock:
            self._roll_over(self._clock())
            return self._requests.count < self.rpm and self._tokens.count < self.tpm

    def record_usage(self, tokens: int) -> None:
        with self._lock:
            self._roll_over(self._clock())
            self._requests.count += 1
            self._tokens.count += max(0, tokens)

    def seconds_until_reset(self) -> float:
        """Time until the window that is currently blocking admission resets."""
        with self._lock:
            now = self._clock()
            waits = []
            if self._requests.count >= self.rpm:
                waits.append(self._requests.reset_at - now)
            if self._tokens.count >= self.tpm:
                waits.append(self._tokens.reset_at - now)
            if not waits:
                waits.append(self._requests.reset_at - now)
            return max(0.0, max(waits))

    @property
    def request_count(self) -> int:
        with self._lock:
            return self._requests.count

    @property
    def token_count(self) -> int:
        with self._lock:
            return self._tokens.count

    def status(self) -> RateLimitStatus:
        with self._lock:
            now = self._clock()
            self._roll_over(now)
            return RateLimitStatus(
                remaining_requests=max(0, self.rpm - self._requests.count),
                remaining_tokens=max(0, self.tpm - self._tokens.count),
                resets_in_s=round(max(0.0, self._requests.reset_at - now), 3),
            )
