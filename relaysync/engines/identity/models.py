"""Repository identity types."""

from __future__ import annotations

from dataclasses import dataclass

from relaysync.models.event import Event


@dataclass(frozen=True)
class RepoIdentity:
    """Derived identity of a logical repository; never stored.

    ``clone_urls`` are normalized (see :func:`normalize_clone_url`).
    """

    earliest_unique_commit: str | None = None
    name: str | None = None
    clone_urls: frozenset[str] = frozenset()


@dataclass(frozen=True)
class RepoGroup:
    """Announcements of one repository across authors, grouped by EUC."""

    euc: str
    announcements: tuple[Event, ...]
    names: frozenset[str]
    clone_urls: frozenset[str]
    web: frozenset[str]
    relays: frozenset[str]

    @property
    def authors(self) -> frozenset[str]:
        return frozenset(e.pubkey for e in self.announcements)
