"""Per-provider request rate limiter using asyncio primitives."""

import asyncio
import time
import logging
from typing import Dict, List


class ProviderRateLimiter:
    """
    Sliding-window rate limiter for one inference provider.

    Every adapter that talks to the same provider shares one instance
    (see ``ProviderRateLimits``), so concurrent domain tasks and batch
    members draw from a single per-minute budget.
    """

    def __init__(self, requests_per_minute: int = 60, window_seconds: float = 60.0):
        self.requests_per_minute = requests_per_minute
        self.window_seconds = window_seconds

        self._timestamps: List[float] = []
        self._lock = asyncio.Lock()
        self.logger = logging.getLogger(__name__)

    async def acquire(self) -> None:
        """
        Acquire permission to make one provider request.

        Blocks until a slot is available within the sliding window.
        A non-positive limit disables limiting.
        """
        if self.requests_per_minute <= 0:
            return

        while True:
            async with self._lock:
                now = time.monotonic()

                # Drop timestamps that have left the window
                self._timestamps = [t for t in self._timestamps if t > now - self.window_seconds]

                if len(self._timestamps) < self.requests_per_minute:
                    self._timestamps.append(now)
                    return

                oldest = self._timestamps[0]
                wait_time = self.window_seconds - (now - oldest) + 0.1  # +0.1s buffer

            # Wait outside the lock, then loop back to retry
            self.logger.info(f"Rate limiter: waiting {wait_time:.1f}s for provider window")
            await asyncio.sleep(wait_time)

    @property
    def in_window(self) -> int:
        """Requests currently counted against the window."""
        now = time.monotonic()
        return len([t for t in self._timestamps if t > now - self.window_seconds])


class ProviderRateLimits:
    """
    One limiter per provider name.

    Created by the caller (API app state, runner, tests) and handed to the
    dispatcher so limits persist across analyses without module globals.
    """

    def __init__(self, requests_per_minute: int = 60):
        self.requests_per_minute = requests_per_minute
        self._limiters: Dict[str, ProviderRateLimiter] = {}

    def for_provider(self, provider: str) -> ProviderRateLimiter:
        limiter = self._limiters.get(provider)
        if limiter is None:
            limiter = ProviderRateLimiter(requests_per_minute=self.requests_per_minute)
            self._limiters[provider] = limiter
        return limiter
