"""relaysync: mirror git hosting repositories onto nostr relays."""

__version__ = "0.1.0"

from relaysync.core import SyncError, SyncSettings, setup_logging
from relaysync.engines.importer import (
    CancelToken,
    ImportPipeline,
    ImportRequest,
    ImportResult,
    ImportRunner,
)
from relaysync.engines.providers import HostProvider, ProviderKind, create_provider, detect_provider
from relaysync.engines.publisher import BatchPublisher
from relaysync.engines.rate_limiter import RateLimiter
from relaysync.models import Event, EventKind, UnsignedEvent

__all__ = [
    "BatchPublisher",
    "CancelToken",
    "Event",
    "EventKind",
    "HostProvider",
    "ImportPipeline",
    "ImportRequest",
    "ImportResult",
    "ImportRunner",
    "ProviderKind",
    "RateLimiter",
    "SyncError",
    "SyncSettings",
    "UnsignedEvent",
    "create_provider",
    "detect_provider",
    "setup_logging",
]
