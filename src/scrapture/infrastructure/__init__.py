"""
Infrastructure Package.

Provides politeness primitives shared by a crawl session.
"""

from .rate_limiter import (
    DomainRateLimiter,
    OriginMetrics,
)

__all__ = [
    # Rate Limiter
    "DomainRateLimiter",
    "OriginMetrics",
]
