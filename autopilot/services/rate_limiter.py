"""
Rate limiter for provider (Replicate) API calls.

Keeps the service within Replicate's usage policy:
- Token bucket sized for the configured requests per minute and burst
- Minimum spacing between consecutive requests
- Exponential backoff after 429 responses (30s base, capped at 5 minutes)

One limiter is shared by every transport in the process; it is created by
the application factory and passed to transports explicitly.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from datetime import datetime
from typing import Callable, Optional

from autopilot.config import RateLimitConfig

logger = logging.getLogger(__name__)

BASE_BACKOFF_SECONDS = 30.0
MAX_BACKOFF_SECONDS = 300.0


class ProviderRateLimiter:
    """
    Thread-safe token bucket limiter for provider API calls.

    `clock` and `sleep` are injectable so the limiter can be driven by a fake
    clock in tests.
    """

    def __init__(
        self,
        max_requests_per_minute: int = 5,
        burst_capacity: int = 3,
        min_interval_seconds: float = 1.2,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.max_requests_per_minute = max_requests_per_minute
        self.burst_capacity = burst_capacity
        self.min_interval_seconds = min_interval_seconds
        self._clock = clock
        self._sleep = sleep

        # Token bucket state
        self.tokens = float(burst_capacity)
        self.max_tokens = float(burst_capacity)
        self.refill_rate = max_requests_per_minute / 60.0  # Tokens per second
        self.last_refill = clock()

        self.request_times: deque = deque(maxlen=max_requests_per_minute)
        self.last_request_time: Optional[float] = None

        # 429 backoff state
        self.rate_limited_until: Optional[float] = None
        self.consecutive_429s = 0
        self.backoff_multiplier = 1.0

        self.lock = threading.RLock()

        logger.info(
            "Provider rate limiter initialized: %d req/min, burst: %d, min interval: %.1fs",
            max_requests_per_minute,
            burst_capacity,
            min_interval_seconds,
        )

    @classmethod
    def from_config(cls, config: RateLimitConfig) -> "ProviderRateLimiter":
        return cls(
            max_requests_per_minute=config.max_requests_per_minute,
            burst_capacity=config.burst_capacity,
            min_interval_seconds=config.min_interval_seconds,
        )

    def _refill_tokens(self) -> None:
        now = self._clock()
        elapsed = now - self.last_refill
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    def _is_rate_limited(self) -> bool:
        if self.rate_limited_until is None:
            return False

        if self._clock() < self.rate_limited_until:
            return True

        # Backoff period expired; keep the reduced capacity until successes
        # restore it.
        self.rate_limited_until = None
        logger.info("Rate limit backoff period expired, resuming requests")
        return False

    def _calculate_backoff(self) -> float:
        # First 429: 30s, second: 60s, third: 120s, ...
        exponential_factor = 2 ** (self.consecutive_429s - 1)
        return min(BASE_BACKOFF_SECONDS * exponential_factor, MAX_BACKOFF_SECONDS)

    def _spacing_remaining(self, now: float) -> float:
        if self.last_request_time is None:
            return 0.0
        return max(0.0, self.min_interval_seconds - (now - self.last_request_time))

    def acquire(self, timeout: Optional[float] = None) -> bool:
        """
        Block until a request may be made or `timeout` seconds have passed.

        Returns:
            True if permission was granted, False on timeout.
        """
        start_time = self._clock()

        while True:
            with self.lock:
                now = self._clock()
                if self._is_rate_limited():
                    wait_time = self.rate_limited_until - now
                    logger.warning(
                        "Rate limited: %.1fs until next request (consecutive 429s: %d)",
                        wait_time,
                        self.consecutive_429s,
                    )
                    delay = min(1.0, wait_time)
                else:
                    self._refill_tokens()
                    spacing = self._spacing_remaining(now)
                    if self.tokens >= 1.0 and spacing > 0:
                        # Wait out the minimum interval without holding the lock.
                        delay = spacing
                    elif self.tokens >= 1.0:
                        self.tokens -= 1.0
                        self.last_request_time = now
                        self.request_times.append(now)
                        logger.debug(
                            "Rate limiter: token acquired (%.1f/%.1f remaining)",
                            self.tokens,
                            self.max_tokens,
                        )
                        return True
                    else:
                        delay = 0.1

            if timeout is not None and self._clock() - start_time >= timeout:
                logger.error("Rate limiter timeout reached after %.1fs", timeout)
                return False

            self._sleep(delay)

    def report_429(self) -> None:
        """Record a 429 response: back off and shrink the burst capacity."""
        with self.lock:
            self.consecutive_429s += 1
            backoff = self._calculate_backoff()
            self.rate_limited_until = self._clock() + backoff

            self.backoff_multiplier = max(0.5, self.backoff_multiplier * 0.8)
            self.max_tokens = self.burst_capacity * self.backoff_multiplier
            self.tokens = min(self.tokens, self.max_tokens)

            logger.error(
                "Provider 429 (consecutive: %d). Backing off for %.1fs, burst capacity now %.1f",
                self.consecutive_429s,
                backoff,
                self.max_tokens,
            )

    def report_success(self) -> None:
        """Record a successful request, gradually restoring capacity."""
        with self.lock:
            if self.consecutive_429s > 0:
                self.backoff_multiplier = min(1.0, self.backoff_multiplier * 1.1)
                self.max_tokens = self.burst_capacity * self.backoff_multiplier
                self.consecutive_429s -= 1
                logger.info("Request succeeded, 429 counter now %d", self.consecutive_429s)

    def get_stats(self) -> dict:
        with self.lock:
            now = self._clock()
            cutoff = now - 60.0
            recent_requests = sum(1 for t in self.request_times if t > cutoff)
            limited = self._is_rate_limited()
            remaining = self.rate_limited_until - now if limited else 0.0

            return {
                "tokens_available": self.tokens,
                "max_tokens": self.max_tokens,
                "requests_last_minute": recent_requests,
                "max_requests_per_minute": self.max_requests_per_minute,
                "is_rate_limited": limited,
                "consecutive_429s": self.consecutive_429s,
                "backoff_multiplier": self.backoff_multiplier,
                "backoff_remaining_s": remaining,
                "checked_at": datetime.now().isoformat(),
            }
