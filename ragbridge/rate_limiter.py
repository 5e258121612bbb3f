"""Per-caller minimum-interval rate limiter."""
import asyncio
import time
from collections import OrderedDict
from typing import Callable
import structlog

log = structlog.get_logger()


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


class CallerRateLimiter:
    """
    Allows at most one request per ``60000 / rate_per_minute`` ms per caller.

    Only the last accepted request time is remembered, so this is a
    minimum-interval gate rather than a token bucket. Throttled calls leave
    the caller's window untouched.
    """

    def __init__(
        self,
        max_entries: int | None = None,
        clock: Callable[[], float] = _monotonic_ms,
    ):
        """
        Initialize rate limiter.

        Args:
            max_entries: Optional bound on tracked callers; least recently
                accepted callers are evicted first. None keeps every caller.
            clock: Millisecond clock, injectable for tests.
        """
        if max_entries is not None and max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self._clock = clock
        self._last_accepted: OrderedDict[str, float] = OrderedDict()

    @staticmethod
    def window_ms(rate_per_minute: float) -> float:
        if rate_per_minute <= 0:
            raise ValueError("rate_per_minute must be positive")
        return 60000 / rate_per_minute

    def check_and_record(self, caller_id: str, rate_per_minute: float) -> bool:
        """
        Check whether the caller may proceed, recording the request if so.

        Returns:
            True if the request is accepted, False if throttled
        """
        window = self.window_ms(rate_per_minute)
        now = self._clock()
        last = self._last_accepted.get(caller_id)

        if last is not None and now - last < window:
            log.debug("rate_limit.throttled", caller_id=caller_id, window_ms=window)
            return False

        self._last_accepted[caller_id] = now
        self._last_accepted.move_to_end(caller_id)
        if self.max_entries is not None:
            while len(self._last_accepted) > self.max_entries:
                evicted, _ = self._last_accepted.popitem(last=False)
                log.debug("rate_limit.evicted", caller_id=evicted)
        return True

    def retry_after_ms(self, caller_id: str, rate_per_minute: float) -> int:
        """Milliseconds until the caller's next request would be accepted."""
        last = self._last_accepted.get(caller_id)
        if last is None:
            return 0
        remaining = self.window_ms(rate_per_minute) - (self._clock() - last)
        return max(0, int(remaining + 0.999))

    def sweep(self, max_age_ms: float) -> int:
        """
        Drop callers whose last accepted request is older than ``max_age_ms``.

        Returns:
            Number of entries removed
        """
        cutoff = self._clock() - max_age_ms
        stale = [caller for caller, ts in self._last_accepted.items() if ts < cutoff]
        for caller in stale:
            del self._last_accepted[caller]
        if stale:
            log.info("rate_limit.swept", removed=len(stale), remaining=len(self._last_accepted))
        return len(stale)

    async def sweep_periodically(self, rate_per_minute: float, interval_s: float):
        """
        Sweep every ``interval_s`` seconds until cancelled.

        Callers idle for a full window would be accepted anyway, so dropping
        them never changes a decision.
        """
        max_age_ms = self.window_ms(rate_per_minute)
        while True:
            await asyncio.sleep(interval_s)
            self.sweep(max_age_ms)

    def __len__(self) -> int:
        return len(self._last_accepted)

    def __contains__(self, caller_id: str) -> bool:
        return caller_id in self._last_accepted
