"""Exception taxonomy shared by every engine."""

from __future__ import annotations


class SyncError(Exception):
    """Base exception for all relaysync errors."""


class AuthError(SyncError):
    """Bad or missing host credentials (fatal, never retried)."""


class OwnershipError(SyncError):
    """Source repository is not owned and forking is not permitted."""


class ProviderDetectionError(SyncError):
    """The repository URL does not map to a supported provider."""


class HostNotFoundError(SyncError):
    """A single host resource does not exist (HTTP 404)."""


class HostRequestError(SyncError):
    """Non-retriable host failure that is neither auth nor not-found."""

    def __init__(self, status: int | None, message: str) -> None:
        self.status = status
        super().__init__(message)


class RateLimited(SyncError):
    """Rate limit still in force after the retry budget was spent."""

    def __init__(self, reason: str, attempts: int, retry_after: float | None = None) -> None:
        self.reason = reason
        self.attempts = attempts
        self.retry_after = retry_after
        super().__init__(f"rate limited ({reason}) after {attempts} attempts")


class TransientHostError(SyncError):
    """5xx / network failure still failing after the retry budget was spent."""

    def __init__(self, reason: str, attempts: int, status: int | None = None) -> None:
        self.reason = reason
        self.attempts = attempts
        self.status = status
        super().__init__(f"host unavailable ({reason}) after {attempts} attempts")


class ConversionError(SyncError):
    """A single upstream item could not be converted into an event."""

    def __init__(self, item_kind: str, item_id: str | None, message: str) -> None:
        self.item_kind = item_kind
        self.item_id = item_id
        super().__init__(f"cannot convert {item_kind} {item_id or '?'}: {message}")


class PublishError(SyncError):
    """A single event was not accepted by any relay."""

    def __init__(self, event_id: str, errors: list[str]) -> None:
        self.event_id = event_id
        self.errors = errors
        super().__init__(f"publish failed for {event_id}: {'; '.join(errors) or 'rejected'}")


class CancellationRequested(SyncError):
    """An import was asked to stop; pending events are still flushed."""


class NoSignerAvailable(SyncError):
    """No signing identity is active."""


class GitEngineError(SyncError):
    """The local git engine reported a failure."""
