"""Data models for the rate limiter."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

RetryReason = Literal[
    "primary_rate_limit",
    "secondary_rate_limit",
    "server_error",
    "network_error",
    "not_retriable",
]

RATE_LIMIT_REASONS: frozenset[str] = frozenset({"primary_rate_limit", "secondary_rate_limit"})


@dataclass
class RateLimitWindow:
    """Pacing and quota state for one provider+verb key.

    Mutated only by :class:`RateLimiter`. ``last_request_ended_at`` and
    ``secondary_block_until`` are monotonic-clock readings; ``reset_at`` is a
    unix timestamp as reported by the host.
    """

    last_request_ended_at: float | None = None
    remaining: int | None = None
    limit: int | None = None
    reset_at: float | None = None
    secondary_block_until: float | None = None
    updated_at: float | None = None


@dataclass(frozen=True)
class RetryDecision:
    retry: bool
    wait: float  # seconds
    reason: RetryReason


@dataclass(frozen=True)
class Quota:
    """Advisory view of the host-reported quota; never blocks by itself."""

    remaining: int | None = None
    limit: int | None = None
    reset_at: float | None = None
