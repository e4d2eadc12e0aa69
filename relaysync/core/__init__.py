"""Cross-cutting pieces: settings, logging and the error taxonomy."""

from relaysync.core.config import SyncSettings
from relaysync.core.errors import (
    AuthError,
    CancellationRequested,
    ConversionError,
    GitEngineError,
    HostNotFoundError,
    HostRequestError,
    NoSignerAvailable,
    OwnershipError,
    ProviderDetectionError,
    PublishError,
    RateLimited,
    SyncError,
    TransientHostError,
)
from relaysync.core.logging import setup_logging

__all__ = [
    "AuthError",
    "CancellationRequested",
    "ConversionError",
    "GitEngineError",
    "HostNotFoundError",
    "HostRequestError",
    "NoSignerAvailable",
    "OwnershipError",
    "ProviderDetectionError",
    "PublishError",
    "RateLimited",
    "SyncError",
    "SyncSettings",
    "TransientHostError",
    "setup_logging",
]
