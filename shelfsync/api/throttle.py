"""
Catalog request throttling.

TMDB answers 429 when a key sends requests too quickly. Requests are
paced with a sliding window per endpoint, and a 429 puts the endpoint
into a backoff that grows with repeated strikes.
"""

import asyncio
import logging
import random
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Optional

logger = logging.getLogger(__name__)

# Seconds to back off when a 429 carries no usable Retry-After
DEFAULT_RETRY_AFTER = 10

# Backoff multiplier by consecutive 429 count; the last value is the cap
STRIKE_MULTIPLIERS = (1.0, 1.5, 2.0, 3.0)


@dataclass
class RateLimit:
    """At most ``calls`` requests in any ``window_seconds`` span."""
    calls: int
    window_seconds: int


@dataclass
class EndpointWindow:
    """Pacing state for one endpoint."""
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    sent: Deque[float] = field(default_factory=deque)
    backoff_until: Optional[float] = None
    strikes: int = 0
    multiplier: float = 1.0

    def prune(self, now: float, window_seconds: int) -> None:
        while self.sent and self.sent[0] <= now - window_seconds:
            self.sent.popleft()


class ThrottleManager:
    """
    Paces catalog requests and backs off after rate-limit responses.

    Callers wait before each request and report 429s; a success clears the
    strike count::

        await throttle.wait_if_needed('search/multi')
        response = await client.get(...)
        if response.status_code == 429:
            throttle.handle_rate_limit('search/multi', retry_after=10)
        else:
            throttle.reset_backoff_multiplier('search/multi')
    """

    def __init__(self, default_limit: RateLimit, adaptive: bool = True):
        """
        Args:
            default_limit: Window applied to every endpoint
            adaptive: Forget the recorded window when a 429 arrives, so pacing
                restarts from the backoff point
        """
        self.default_limit = default_limit
        self.adaptive = adaptive
        self._windows: Dict[str, EndpointWindow] = {}

    def _window(self, endpoint: str) -> EndpointWindow:
        window = self._windows.get(endpoint)
        if window is None:
            window = self._windows[endpoint] = EndpointWindow()
        return window

    async def wait_if_needed(self, endpoint: str) -> float:
        """
        Sleep until a request to ``endpoint`` is allowed, then record it.

        Returns:
            Seconds slept (0.0 when the request could go out immediately)
        """
        window = self._window(endpoint)

        async with window.lock:
            delay = 0.0
            now = time.time()

            if window.backoff_until is not None:
                if now < window.backoff_until:
                    delay = window.backoff_until - now
                    logger.warning(f"Backing off {endpoint} for {delay:.1f}s after rate limit")
                else:
                    logger.info(f"Rate limit backoff ended for {endpoint}")
                window.backoff_until = None
            else:
                window.prune(now, self.default_limit.window_seconds)
                if len(window.sent) >= self.default_limit.calls:
                    delay = window.sent[0] + self.default_limit.window_seconds - now
                    logger.debug(f"Throttling {endpoint}: window full, waiting {delay:.1f}s")

            if delay > 0:
                await asyncio.sleep(delay)
            else:
                delay = 0.0

            window.sent.append(time.time())
            return delay

    def handle_rate_limit(self, endpoint: str, retry_after: Optional[int] = None) -> None:
        """
        Record a 429 for ``endpoint``.

        The next ``wait_if_needed`` call sleeps for ``retry_after`` scaled by
        the strike multiplier, with +/-10% jitter.
        """
        window = self._window(endpoint)
        base = retry_after if retry_after is not None else DEFAULT_RETRY_AFTER

        window.strikes += 1
        step = STRIKE_MULTIPLIERS[min(window.strikes, len(STRIKE_MULTIPLIERS)) - 1]
        window.multiplier = step * random.uniform(0.9, 1.1)

        backoff = base * window.multiplier
        window.backoff_until = time.time() + backoff
        if self.adaptive:
            window.sent.clear()

        logger.warning(
            f"Rate limited on {endpoint} (strike {window.strikes}): "
            f"backing off {backoff:.1f}s ({base}s x {step:.1f})"
        )

    def reset_backoff_multiplier(self, endpoint: str) -> None:
        """Clear the strike count after a request that was not rate limited."""
        window = self._windows.get(endpoint)
        if window is None or window.strikes == 0:
            return
        logger.info(f"{endpoint} recovered after {window.strikes} rate-limit strikes")
        window.strikes = 0
        window.multiplier = 1.0

    def get_stats(self, endpoint: str) -> dict:
        """Snapshot of the pacing state for ``endpoint``."""
        window = self._windows.get(endpoint, EndpointWindow())
        now = time.time()
        recent = sum(1 for sent_at in window.sent if sent_at > now - self.default_limit.window_seconds)
        remaining = max(0.0, window.backoff_until - now) if window.backoff_until is not None else 0.0

        return {
            'endpoint': endpoint,
            'recent_calls': recent,
            'limit': self.default_limit.calls,
            'window_seconds': self.default_limit.window_seconds,
            'backoff_remaining': remaining,
            'in_backoff': remaining > 0,
            'backoff_multiplier': window.multiplier,
            'consecutive_429s': window.strikes,
        }
