"""Per-host request pacing for upstream API calls.

Each host gets a token bucket expressed as a theoretical arrival time
(GCRA): a caller reserves the next send slot synchronously and then sleeps
until it, so concurrent category fetches queue up in reservation order.
"""

import asyncio
import time
from typing import Dict


class TokenBucket:
    """Token bucket allowing `burst` immediate requests, then `rpm` per minute."""

    def __init__(self, rpm: float, burst: int):
        self.interval = 60.0 / rpm
        self.tolerance = self.interval * max(burst - 1, 0)
        self._tat = 0.0  # theoretical arrival time of the next request

    def reserve(self) -> float:
        """Claim the next slot and return how long to wait for it."""
        now = time.monotonic()
        tat = max(self._tat, now)
        self._tat = tat + self.interval
        return max(0.0, tat - self.tolerance - now)

    async def acquire(self) -> None:
        delay = self.reserve()
        if delay > 0:
            await asyncio.sleep(delay)


class DomainRateLimiter:
    """Per-domain rate limiter; each upstream host gets its own bucket."""

    # Requests per minute for known upstream hosts
    DOMAIN_LIMITS_RPM = {
        "api.woot.com": 60,
        "developer.woot.com": 60,
    }

    DEFAULT_RPM = 30

    def __init__(self):
        self._buckets: Dict[str, TokenBucket] = {}

    def bucket(self, domain: str) -> TokenBucket:
        if domain not in self._buckets:
            rpm = self.DOMAIN_LIMITS_RPM.get(domain, self.DEFAULT_RPM)
            # Bursts up to 10% of the per-minute rate, at least 2
            self._buckets[domain] = TokenBucket(rpm, burst=max(2, rpm // 10))
        return self._buckets[domain]

    async def acquire(self, domain: str) -> None:
        """Block until the domain's rate limit allows the request."""
        await self.bucket(domain).acquire()
