"""Per-provider request pacing, failure classification and quota tracking."""

from __future__ import annotations

import asyncio
import re
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from contextlib import asynccontextmanager
from email.utils import parsedate_to_datetime

import httpx
import structlog

from relaysync.core.config import SyncSettings
from relaysync.core.errors import (
    AuthError,
    HostNotFoundError,
    HostRequestError,
    RateLimited,
    TransientHostError,
)
from relaysync.engines.rate_limiter.models import (
    RATE_LIMIT_REASONS,
    Quota,
    RateLimitWindow,
    RetryDecision,
)

log = structlog.get_logger("relaysync.engine")

# "You have exceeded a secondary rate limit", "abuse detection mechanism",
# "API rate limit exceeded" without quota headers
_SECONDARY_MARKER_RE = re.compile(r"abuse|rate[ -]limit", re.IGNORECASE)

_REMAINING_HEADERS = ("x-ratelimit-remaining", "ratelimit-remaining")
_LIMIT_HEADERS = ("x-ratelimit-limit", "ratelimit-limit")
_RESET_HEADERS = ("x-ratelimit-reset", "ratelimit-reset")

SendFn = Callable[[], Awaitable[httpx.Response]]


class RateLimiter:
    """Keyed registry of :class:`RateLimitWindow` with internal synchronization.

    One instance is shared by every provider client (and every concurrent
    import) talking to the same hosts, so quota is tracked provider-wide.
    Calls for the same provider+verb key are serialized by :meth:`throttle`;
    different keys proceed independently.
    """

    def __init__(
        self,
        settings: SyncSettings | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings or SyncSettings()
        self._clock = clock
        self._wall_clock = wall_clock
        self._sleep = sleep
        self._windows: dict[tuple[str, str], RateLimitWindow] = {}
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    @property
    def settings(self) -> SyncSettings:
        return self._settings

    def window(self, provider_key: str, verb: str) -> RateLimitWindow:
        key = (provider_key, verb)
        window = self._windows.get(key)
        if window is None:
            window = self._windows[key] = RateLimitWindow()
        return window

    # ── pacing ─────────────────────────────────────────────────────────────

    @asynccontextmanager
    async def throttle(self, provider_key: str, verb: str) -> AsyncIterator[RateLimitWindow]:
        """Wait until it is safe to call, hold the key for the call's duration.

        The idle gap is measured from the end of the previous call on this key
        to the start of the next one, so a slow call never causes drift.
        """
        key = (provider_key, verb)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        async with lock:
            window = self.window(provider_key, verb)
            while True:
                wait = self._pending_wait(provider_key, window)
                if wait <= 0:
                    break
                await self._sleep(wait)
            try:
                yield window
            finally:
                window.last_request_ended_at = self._clock()

    def _pending_wait(self, provider_key: str, window: RateLimitWindow) -> float:
        now = self._clock()
        wait = 0.0
        if window.last_request_ended_at is not None:
            wait = window.last_request_ended_at + self._settings.seconds_between_requests - now
        # A secondary limit blocks every verb of the provider.
        for (provider, _verb), other in self._windows.items():
            if provider == provider_key and other.secondary_block_until is not None:
                wait = max(wait, other.secondary_block_until - now)
        return wait

    # ── classification ─────────────────────────────────────────────────────

    def classify_failure(
        self,
        status: int | None,
        headers: Mapping[str, str] | None,
        body: str | None,
        attempt: int = 1,
    ) -> RetryDecision:
        """Decide whether a failed call is retried and for how long to wait.

        *status* is ``None`` for transport-level failures (connection errors,
        timeouts), which are treated like 5xx responses.
        """
        h = {k.lower(): v for k, v in (headers or {}).items()}

        if status is not None and status >= 400:
            retry_after = self._parse_retry_after(h.get("retry-after"))
            if retry_after is not None:
                return RetryDecision(True, retry_after, "primary_rate_limit")

            remaining = _parse_int(_first(h, _REMAINING_HEADERS))
            reset = _parse_float(_first(h, _RESET_HEADERS))
            if status in (403, 429) and remaining == 0 and reset is not None:
                return RetryDecision(
                    True, max(reset - self._wall_clock(), 0.0), "primary_rate_limit"
                )

            secondary = status == 429 or (
                status == 403 and _SECONDARY_MARKER_RE.search(body or "") is not None
            )
            if secondary:
                wait = self._settings.secondary_rate_wait
                return RetryDecision(True, wait, "secondary_rate_limit")

        backoff = float(2 ** max(attempt - 1, 0))
        if status is None:
            return RetryDecision(True, backoff, "network_error")
        if status >= 500:
            return RetryDecision(True, backoff, "server_error")
        return RetryDecision(False, 0.0, "not_retriable")

    def _parse_retry_after(self, value: str | None) -> float | None:
        if value is None:
            return None
        value = value.strip()
        try:
            return max(float(value), 0.0)
        except ValueError:
            pass
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        return max(when.timestamp() - self._wall_clock(), 0.0)

    # ── quota ──────────────────────────────────────────────────────────────

    def record_success(self, provider_key: str, verb: str, headers: Mapping[str, str]) -> None:
        """Refresh the advisory quota from a successful response's headers."""
        h = {k.lower(): v for k, v in headers.items()}
        window = self.window(provider_key, verb)
        remaining = _parse_int(_first(h, _REMAINING_HEADERS))
        limit = _parse_int(_first(h, _LIMIT_HEADERS))
        reset = _parse_float(_first(h, _RESET_HEADERS))
        if remaining is not None:
            window.remaining = remaining
        if limit is not None:
            window.limit = limit
        if reset is not None:
            window.reset_at = reset
        window.secondary_block_until = None
        window.updated_at = self._clock()

    def quota(self, provider_key: str) -> Quota:
        """Latest quota reported by *provider_key*, across all verbs."""
        latest: RateLimitWindow | None = None
        for (provider, _verb), window in self._windows.items():
            if provider != provider_key or window.updated_at is None:
                continue
            if latest is None or (latest.updated_at or 0) < window.updated_at:
                latest = window
        if latest is None:
            return Quota()
        return Quota(remaining=latest.remaining, limit=latest.limit, reset_at=latest.reset_at)

    # ── retry loop ─────────────────────────────────────────────────────────

    async def call(self, provider_key: str, verb: str, send: SendFn) -> httpx.Response:
        """Run *send* under the throttle gate with transparent retries.

        Raises :class:`AuthError` on 401, :class:`HostNotFoundError` on 404,
        :class:`HostRequestError` on other non-retriable statuses, and
        :class:`RateLimited` / :class:`TransientHostError` once
        ``max_retries`` attempts (including the first) are spent.
        """
        max_attempts = self._settings.max_retries
        decision: RetryDecision | None = None
        last_status: int | None = None

        for attempt in range(1, max_attempts + 1):
            response: httpx.Response | None = None
            transport_error: httpx.HTTPError | None = None
            async with self.throttle(provider_key, verb):
                try:
                    response = await send()
                except (httpx.TimeoutException, httpx.TransportError) as exc:
                    transport_error = exc

            if response is not None:
                last_status = response.status_code
                if response.status_code < 400:
                    self.record_success(provider_key, verb, response.headers)
                    return response
                if response.status_code == 401:
                    raise AuthError(f"{provider_key} rejected the credentials ({verb})")
                decision = self.classify_failure(
                    response.status_code, response.headers, _safe_text(response), attempt
                )
                if not decision.retry:
                    if response.status_code == 404:
                        raise HostNotFoundError(f"{provider_key}: not found ({verb})")
                    raise HostRequestError(
                        response.status_code,
                        f"{provider_key}: {verb} failed with HTTP {response.status_code}",
                    )
            else:
                last_status = None
                decision = self.classify_failure(None, None, str(transport_error), attempt)

            if decision.reason == "secondary_rate_limit":
                self.window(provider_key, verb).secondary_block_until = (
                    self._clock() + decision.wait
                )
            log.warning(
                "ratelimit.retry",
                provider=provider_key,
                verb=verb,
                reason=decision.reason,
                status=last_status,
                wait_seconds=decision.wait,
                attempt=attempt,
                max_retries=max_attempts,
            )
            if attempt < max_attempts:
                await self._sleep(decision.wait)

        if decision is None:
            raise RuntimeError(f"max_retries must allow at least one attempt, got {max_attempts}")
        if decision.reason in RATE_LIMIT_REASONS:
            raise RateLimited(decision.reason, max_attempts, retry_after=decision.wait)
        raise TransientHostError(decision.reason, max_attempts, status=last_status)


# ── helpers ───────────────────────────────────────────────────────────────


def _first(headers: Mapping[str, str], names: tuple[str, ...]) -> str | None:
    for name in names:
        if name in headers:
            return headers[name]
    return None


def _parse_int(value: str | None) -> int | None:
    """Safely parse an integer header value."""
    if value is None:
        return None
    try:
        return int(value)
    except (ValueError, TypeError):
        return None


def _parse_float(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (ValueError, TypeError):
        return None


def _safe_text(response: httpx.Response) -> str:
    try:
        return response.text
    except (UnicodeDecodeError, httpx.ResponseNotRead):
        return ""
