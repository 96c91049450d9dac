"""Rate limiting for backend API calls."""

import asyncio
import time


class RateLimiter:
    """Token bucket rate limiter shared by concurrent calls of one client."""

    def __init__(self, requests_per_second: float = 10.0):
        """Initialize rate limiter.

        Args:
            requests_per_second: Maximum requests per second allowed
        """
        if requests_per_second <= 0:
            raise ValueError('requests_per_second must be positive')

        self.requests_per_second = requests_per_second
        self.capacity = max(1.0, requests_per_second)
        self.tokens = self.capacity
        self.last_update = time.monotonic()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self.last_update
        self.tokens = min(self.capacity, self.tokens + elapsed * self.requests_per_second)
        self.last_update = now

    async def acquire(self) -> None:
        """Acquire a token for making a request.

        Blocks until a token is available. Waiters are served in arrival order.
        """
        async with self._lock:
            self._refill()

            if self.tokens < 1:
                await asyncio.sleep(self.time_until_next_request())
                self._refill()

            self.tokens -= 1

    def time_until_next_request(self) -> float:
        """Get time until next request can be made.

        Returns:
            Seconds until next request is allowed
        """
        if self.tokens >= 1:
            return 0.0

        return (1 - self.tokens) / self.requests_per_second
