"""
Per-origin Rate Limiter.

This module spaces out requests to the same origin (scheme://host[:port])
so that a crawl honours robots.txt Crawl-delay or a configured default.
Requests to different origins never wait on each other.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from scrapture.constants import DEFAULT_REQUEST_DELAY_MS

logger = logging.getLogger(__name__)


@dataclass
class OriginMetrics:
    """Wait statistics for a single origin."""
    origin: str
    last_request_time: datetime | None
    total_requests: int
    total_wait_time: float


class DomainRateLimiter:
    """
    Rate limiter keyed by origin.

    Features:
    - Minimum spacing between permitted requests to one origin
    - Per-origin asyncio.Lock so same-origin callers serialize
    - Cooperative sleeping (cancellable, never busy-polls)
    """

    def __init__(self, default_delay_ms: int = DEFAULT_REQUEST_DELAY_MS):
        """
        Initialize rate limiter.

        Args:
            default_delay_ms: Spacing used when wait() is not given a delay
        """
        self.default_delay_ms = default_delay_ms

        self._last_request: Dict[str, float] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

        # Statistics
        self._requests: Dict[str, int] = {}
        self._wait_time: Dict[str, float] = {}

    def _lock_for(self, origin: str) -> asyncio.Lock:
        lock = self._locks.get(origin)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[origin] = lock
        return lock

    async def wait(self, origin: str, delay_ms: Optional[int] = None) -> float:
        """
        Wait until the origin may be requested again.

        Args:
            origin: Rate-limit key, usually from get_origin()
            delay_ms: Required spacing; defaults to default_delay_ms

        Returns:
            Actual time waited (seconds)
        """
        delay = (self.default_delay_ms if delay_ms is None else delay_ms) / 1000.0

        async with self._lock_for(origin):
            last = self._last_request.get(origin)
            if last is not None:
                wait_time = max(0.0, delay - (time.monotonic() - last))
            else:
                wait_time = 0.0

            if wait_time > 0:
                logger.debug(f"Rate limiter: waiting {wait_time:.2f}s for {origin}")
                await asyncio.sleep(wait_time)
                self._wait_time[origin] = self._wait_time.get(origin, 0.0) + wait_time

            self._last_request[origin] = time.monotonic()
            self._requests[origin] = self._requests.get(origin, 0) + 1
            return wait_time

    def last_request_time(self, origin: str) -> Optional[float]:
        """Monotonic timestamp of the last permitted request, or None."""
        return self._last_request.get(origin)

    def get_metrics(self, origin: str) -> OriginMetrics:
        """
        Get wait statistics for an origin.

        Returns:
            OriginMetrics snapshot
        """
        last = self._last_request.get(origin)
        last_wall = None
        if last is not None:
            last_wall = datetime.fromtimestamp(time.time() - (time.monotonic() - last))

        return OriginMetrics(
            origin=origin,
            last_request_time=last_wall,
            total_requests=self._requests.get(origin, 0),
            total_wait_time=self._wait_time.get(origin, 0.0),
        )

    def reset(self) -> None:
        """Reset rate limiter to initial state."""
        self._last_request.clear()
        self._locks.clear()
        self._requests.clear()
        self._wait_time.clear()

    @property
    def origins(self) -> list[str]:
        """Origins that have been requested at least once."""
        return list(self._last_request)
