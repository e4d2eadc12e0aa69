"""Normalized host data shared by every provider variant.

These are pure data structures. Each provider maps its own JSON payloads
onto them so the import pipeline never sees host-specific shapes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Generic, Literal, TypeVar

from relaysync.core.errors import ConversionError

T = TypeVar("T")

ItemState = Literal["open", "closed", "merged"]


@dataclass
class HostUser:
    login: str
    id: str | None = None
    name: str | None = None
    avatar_url: str | None = None
    bio: str | None = None
    website: str | None = None
    html_url: str | None = None


@dataclass
class HostRepo:
    owner: str
    name: str
    description: str | None = None
    html_url: str | None = None
    clone_urls: list[str] = field(default_factory=list)
    default_branch: str | None = None
    topics: list[str] = field(default_factory=list)
    is_fork: bool = False
    parent_full_name: str | None = None  # "owner/name" of the fork source
    created_at: datetime | None = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass
class HostIssue:
    number: int
    title: str
    state: ItemState = "open"
    body: str | None = None
    author: str | None = None
    labels: list[str] = field(default_factory=list)
    html_url: str | None = None
    created_at: datetime | None = None
    closed_at: datetime | None = None


@dataclass
class HostPullRequest:
    number: int
    title: str
    state: ItemState = "open"
    body: str | None = None
    author: str | None = None
    labels: list[str] = field(default_factory=list)
    html_url: str | None = None
    head_ref: str | None = None
    head_sha: str | None = None
    base_ref: str | None = None
    base_sha: str | None = None
    head_clone_url: str | None = None
    is_draft: bool = False
    created_at: datetime | None = None
    closed_at: datetime | None = None
    merged_at: datetime | None = None
    merge_commit_sha: str | None = None


@dataclass(frozen=True)
class CommentTarget:
    """Issue or pull request whose comments are listed."""

    kind: Literal["issue", "pull"]
    number: int


@dataclass
class HostComment:
    id: str
    body: str
    author: str | None = None
    html_url: str | None = None
    created_at: datetime | None = None
    in_reply_to: str | None = None  # host id of the parent comment, if threaded


@dataclass
class Page(Generic[T]):
    """One page of a listing call.

    ``skipped`` holds the records of this page that could not be mapped.
    """

    items: list[T]
    number: int = 1
    has_next: bool = False
    skipped: list[ConversionError] = field(default_factory=list)


def parse_datetime(value: str | None) -> datetime | None:
    """Parse an ISO-8601 datetime string, returning None on failure."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        return None
