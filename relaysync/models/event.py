"""Signed event records and tag helpers."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

Tag = tuple[str, ...]
Tags = tuple[Tag, ...]


class EventKind(IntEnum):
    """Event kinds used by the Git-over-events protocol."""

    PROFILE = 0
    COMMENT = 1111
    PATCH = 1617
    PULL_REQUEST = 1618
    PULL_REQUEST_UPDATE = 1619
    ISSUE = 1621
    STATUS_OPEN = 1630
    STATUS_APPLIED = 1631
    STATUS_CLOSED = 1632
    STATUS_DRAFT = 1633
    LABEL = 1985
    REPO_ANNOUNCEMENT = 30617
    REPO_STATE = 30618


STATUS_KINDS: frozenset[int] = frozenset(
    {
        EventKind.STATUS_OPEN,
        EventKind.STATUS_APPLIED,
        EventKind.STATUS_CLOSED,
        EventKind.STATUS_DRAFT,
    }
)


def normalize_tags(tags: Iterable[Sequence[Any]]) -> Tags:
    """Coerce any nested sequence into an immutable tuple-of-tuples of str."""
    return tuple(tuple(str(part) for part in tag) for tag in tags if len(tag) > 0)


def compute_event_id(pubkey: str, created_at: int, kind: int, tags: Tags, content: str) -> str:
    """SHA-256 over the canonical ``[0, pubkey, created_at, kind, tags, content]`` array."""
    payload = json.dumps(
        [0, pubkey, created_at, kind, [list(t) for t in tags], content],
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class _TagAccess:
    tags: Tags

    def tags_named(self, name: str) -> list[Tag]:
        return [t for t in self.tags if t[0] == name]

    def tag_value(self, name: str) -> str | None:
        """First value of the first tag called *name*."""
        for t in self.tags:
            if t[0] == name and len(t) > 1:
                return t[1]
        return None

    def tag_values(self, name: str) -> list[str]:
        """Second element of every tag called *name*."""
        return [t[1] for t in self.tags if t[0] == name and len(t) > 1]


@dataclass(frozen=True)
class UnsignedEvent(_TagAccess):
    """Event template produced by conversion, awaiting a signature."""

    kind: int
    created_at: int
    tags: Tags = ()
    content: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", int(self.kind))
        object.__setattr__(self, "tags", normalize_tags(self.tags))


@dataclass(frozen=True)
class Event(_TagAccess):
    """Immutable signed record.

    Superseding state is expressed by publishing a new event, never by
    mutating an existing one.
    """

    id: str
    pubkey: str
    kind: int
    created_at: int
    tags: Tags = ()
    content: str = ""
    sig: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", int(self.kind))
        object.__setattr__(self, "tags", normalize_tags(self.tags))

    @property
    def address(self) -> str | None:
        """``kind:pubkey:d`` coordinate for addressable events."""
        if 30000 <= self.kind < 40000:
            return f"{self.kind}:{self.pubkey}:{self.tag_value('d') or ''}"
        return None

    @classmethod
    def from_unsigned(cls, unsigned: UnsignedEvent, pubkey: str, sig: str = "") -> Event:
        event_id = compute_event_id(
            pubkey, unsigned.created_at, unsigned.kind, unsigned.tags, unsigned.content
        )
        return cls(
            id=event_id,
            pubkey=pubkey,
            kind=unsigned.kind,
            created_at=unsigned.created_at,
            tags=unsigned.tags,
            content=unsigned.content,
            sig=sig,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Event:
        return cls(
            id=data["id"],
            pubkey=data["pubkey"],
            kind=int(data["kind"]),
            created_at=int(data["created_at"]),
            tags=data.get("tags") or (),
            content=data.get("content") or "",
            sig=data.get("sig") or "",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "pubkey": self.pubkey,
            "kind": self.kind,
            "created_at": self.created_at,
            "tags": [list(t) for t in self.tags],
            "content": self.content,
            "sig": self.sig,
        }


def repo_address(pubkey: str, identifier: str) -> str:
    """Coordinate of a repository announcement."""
    return f"{int(EventKind.REPO_ANNOUNCEMENT)}:{pubkey}:{identifier}"


def split_address(address: str) -> tuple[int, str, str] | None:
    """Split ``kind:pubkey:identifier``; ``None`` when malformed."""
    parts = address.split(":", 2)
    if len(parts) < 3 or not parts[0].isdigit():
        return None
    return int(parts[0]), parts[1], parts[2]
