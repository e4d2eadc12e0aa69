"""Typed runtime settings with environment overrides."""

from __future__ import annotations

import os

from pydantic import BaseModel, ConfigDict, Field

_ENV_PREFIX = "RELAYSYNC_"


class SyncSettings(BaseModel):
    """Tunables for the limiter, the publisher and the import pipeline.

    Durations are in seconds.
    """

    model_config = ConfigDict(frozen=True)

    seconds_between_requests: float = Field(default=0.25, ge=0)
    secondary_rate_wait: float = Field(default=60.0, ge=0)
    max_retries: int = Field(default=3, ge=1)
    request_timeout: float = Field(default=30.0, gt=0)

    relay_batch_size: int = Field(default=30, ge=1)
    relay_batch_delay: float = Field(default=0.25, ge=0)
    publish_concurrency: int = Field(default=10, ge=1)

    page_size: int = Field(default=100, ge=1, le=100)
    relay_query_limit: int = Field(default=500, ge=1)
    fork_poll_attempts: int = Field(default=10, ge=1)
    fork_poll_interval: float = Field(default=2.0, ge=0)
    import_concurrency: int = Field(default=3, ge=1)

    @classmethod
    def from_env(cls, **overrides: object) -> SyncSettings:
        """Build settings from ``RELAYSYNC_*`` variables; *overrides* win."""
        values: dict[str, object] = {}
        for name in cls.model_fields:
            raw = os.environ.get(_ENV_PREFIX + name.upper())
            if raw is not None:
                values[name] = raw
        values.update(overrides)
        return cls.model_validate(values)
