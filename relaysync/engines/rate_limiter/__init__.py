"""Rate limiter engine: pacing, retry classification and quota per provider."""

from relaysync.engines.rate_limiter.limiter import RateLimiter
from relaysync.engines.rate_limiter.models import (
    RATE_LIMIT_REASONS,
    Quota,
    RateLimitWindow,
    RetryDecision,
    RetryReason,
)

__all__ = [
    "RATE_LIMIT_REASONS",
    "Quota",
    "RateLimitWindow",
    "RateLimiter",
    "RetryDecision",
    "RetryReason",
]
