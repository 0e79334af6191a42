"""Sliding-window rate limiting for provider requests."""

import time
from collections import deque
from collections.abc import Callable


class RateLimiter:
    """Sliding window rate limiter.

    Keeps the timestamps of recent requests and sleeps just long enough that
    no more than ``requests_per_period`` fall inside any window of
    ``period_seconds``. ``clock`` and ``sleep`` are injectable so tests can
    drive the limiter without waiting.

    Example:
        >>> limiter = RateLimiter(requests_per_period=60, period_seconds=60)
        >>> limiter.wait_if_needed()  # Blocks if rate limit would be exceeded
    """

    def __init__(
        self,
        requests_per_period: int,
        period_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if requests_per_period < 1:
            raise ValueError("requests_per_period must be at least 1")
        self.requests_per_period = requests_per_period
        self.period_seconds = period_seconds
        self._clock = clock
        self._sleep = sleep
        self.request_times: deque[float] = deque()

    def _expire(self, now: float) -> None:
        while self.request_times and self.request_times[0] <= now - self.period_seconds:
            self.request_times.popleft()

    def delay(self) -> float:
        """Seconds the next request would have to wait (0 if none)."""
        now = self._clock()
        self._expire(now)
        if len(self.request_times) < self.requests_per_period:
            return 0.0
        return max(0.0, self.period_seconds - (now - self.request_times[0]))

    def wait_if_needed(self) -> float:
        """Sleep if another request now would exceed the limit, then record it.

        Returns:
            Seconds slept
        """
        wait = self.delay()
        if wait > 0:
            self._sleep(wait)
            self._expire(self._clock())
        self.request_times.append(self._clock())
        return wait

    def reset(self) -> None:
        self.request_times.clear()
