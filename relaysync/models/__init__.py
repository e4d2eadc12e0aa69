"""Shared data models: events, host data and collaborator interfaces."""

from relaysync.models.event import (
    STATUS_KINDS,
    Event,
    EventKind,
    Tag,
    Tags,
    UnsignedEvent,
    compute_event_id,
    repo_address,
    split_address,
)
from relaysync.models.host import (
    CommentTarget,
    HostComment,
    HostIssue,
    HostPullRequest,
    HostRepo,
    HostUser,
    Page,
    parse_datetime,
)
from relaysync.models.ports import Filter, PublishOutcome, RelayTransport, Signer

__all__ = [
    "STATUS_KINDS",
    "CommentTarget",
    "Event",
    "EventKind",
    "Filter",
    "HostComment",
    "HostIssue",
    "HostPullRequest",
    "HostRepo",
    "HostUser",
    "Page",
    "PublishOutcome",
    "RelayTransport",
    "Signer",
    "Tag",
    "Tags",
    "UnsignedEvent",
    "compute_event_id",
    "parse_datetime",
    "repo_address",
    "split_address",
]
