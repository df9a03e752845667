"""
Rate Limiter module for the provider autoconfig system.

This module provides per-provider rate limiting for dynamic catalogs:
- Serial access per provider slug while a request slot is being claimed
- A sliding one-minute window bounded by ``requests_per_minute``
- Adaptive delay calculation for 429/503 responses
"""

import asyncio
import time
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from .provider_config import RateLimitConfig

WINDOW_SECONDS = 60.0


@dataclass
class RateLimitStatus:
    """Result of a rate limit check."""

    allowed: bool
    wait_seconds: float
    reason: Optional[str] = None


class RateLimiter:
    """
    Sliding-window rate limiter keyed by provider slug.

    Providers without a RateLimitConfig are never delayed.
    """

    # Maximum adaptive delay in seconds
    MAX_ADAPTIVE_DELAY = 120.0

    def __init__(self) -> None:
        self._request_times: dict[str, list[float]] = defaultdict(list)
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._consecutive_errors: dict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def acquire(
        self,
        key: str,
        config: Optional[RateLimitConfig],
    ) -> AsyncIterator[RateLimitStatus]:
        """
        Check whether a request to ``key`` may be made now.

        Holds the per-key lock while the caller's block runs.

        Usage:
            async with limiter.acquire(slug, config.rate_limit) as status:
                if not status.allowed:
                    await asyncio.sleep(status.wait_seconds)
                limiter.record_request(slug)
        """
        async with self._locks[key]:
            wait_seconds, reason = self._calculate_wait_time(key, config)
            yield RateLimitStatus(
                allowed=wait_seconds <= 0,
                wait_seconds=max(0.0, wait_seconds),
                reason=reason,
            )

    async def wait_for_slot(self, key: str, config: Optional[RateLimitConfig]) -> float:
        """
        Wait until a request may be made, then record it.

        Returns:
            The number of seconds spent waiting
        """
        waited = 0.0
        async with self.acquire(key, config) as status:
            if not status.allowed:
                await asyncio.sleep(status.wait_seconds)
                waited = status.wait_seconds
            self.record_request(key)
        return waited

    def _calculate_wait_time(
        self,
        key: str,
        config: Optional[RateLimitConfig],
    ) -> tuple[float, Optional[str]]:
        if config is None or config.requests_per_minute <= 0:
            return 0.0, None

        current_time = time.monotonic()
        window_start = current_time - WINDOW_SECONDS
        self._request_times[key] = [
            t for t in self._request_times[key] if t > window_start
        ]

        request_count = len(self._request_times[key])
        if request_count < config.requests_per_minute:
            return 0.0, None

        oldest_request = min(self._request_times[key])
        wait_seconds = max(0.0, oldest_request + WINDOW_SECONDS - current_time)
        return (
            wait_seconds,
            f"Rate limit reached for {key}: {request_count}/{config.requests_per_minute} per minute",
        )

    def record_request(self, key: str) -> None:
        """Record that a request was made for ``key``."""
        self._request_times[key].append(time.monotonic())

    def request_count(self, key: str) -> int:
        return len(self._request_times[key])

    def apply_adaptive_delay(
        self,
        key: str,
        config: Optional[RateLimitConfig],
        status_code: int,
    ) -> float:
        """
        Calculate the wait time after a 429/503 response.

        With exponential backoff enabled the delay doubles for each
        consecutive error, otherwise it stays at the configured default.

        Returns:
            Recommended wait time in seconds (0 for other status codes)
        """
        if status_code not in (429, 503):
            return 0.0

        self._consecutive_errors[key] += 1
        consecutive = self._consecutive_errors[key]

        rule = config or RateLimitConfig()
        delay = rule.retry_after_default_seconds
        if rule.use_exponential_backoff:
            delay = delay * (2 ** (consecutive - 1))

        return min(delay, self.MAX_ADAPTIVE_DELAY)

    def reset_error_count(self, key: str) -> None:
        self._consecutive_errors[key] = 0
