"""Decentralized variant: repositories announced on relay nodes."""

from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import datetime, timezone

import structlog

from relaysync.core.config import SyncSettings
from relaysync.core.errors import AuthError, HostNotFoundError, HostRequestError
from relaysync.engines.providers.models import ProviderKind
from relaysync.models.event import Event, EventKind, repo_address
from relaysync.models.host import (
    CommentTarget,
    HostComment,
    HostIssue,
    HostPullRequest,
    HostRepo,
    HostUser,
    Page,
)
from relaysync.models.ports import Filter, RelayTransport

log = structlog.get_logger("relaysync.engine")


class RelayProvider:
    """Host capabilities answered from relay queries.

    Relays have no pagination: page 1 is one bounded pull of at most
    ``relay_query_limit`` events and every later page is empty. *owner* is the
    announcing pubkey and *name* the announcement identifier. Issues and
    pull requests are numbered by their order of creation; the number is only
    meaningful to this instance, which remembers it to list comments.
    """

    kind = ProviderKind.RELAY

    def __init__(
        self,
        transport: RelayTransport,
        relays: Sequence[str],
        *,
        pubkey: str | None = None,
        settings: SyncSettings | None = None,
    ) -> None:
        self._transport = transport
        self._relays = list(relays)
        self._pubkey = pubkey
        self._limit = (settings or SyncSettings()).relay_query_limit
        self._roots: dict[tuple[str, str, str, int], str] = {}

    @property
    def provider_key(self) -> str:
        return "relay:" + ",".join(sorted(self._relays))

    async def close(self) -> None:
        return None

    async def list_repos(self, page: int = 1) -> Page[HostRepo]:
        if page > 1:
            return Page(items=[], number=page)
        flt: Filter = {"kinds": [int(EventKind.REPO_ANNOUNCEMENT)], "limit": self._limit}
        if self._pubkey:
            flt["authors"] = [self._pubkey]
        latest: dict[str, Event] = {}
        for event in await self._collect([flt]):
            address = event.address or event.id
            current = latest.get(address)
            if current is None or (event.created_at, event.id) > (current.created_at, current.id):
                latest[address] = event
        repos = [_repo(e) for e in sorted(latest.values(), key=lambda e: (e.created_at, e.id))]
        return Page(items=repos, number=1)

    async def get_repo(self, owner: str, name: str) -> HostRepo:
        flt: Filter = {
            "kinds": [int(EventKind.REPO_ANNOUNCEMENT)],
            "authors": [owner],
            "#d": [name],
            "limit": self._limit,
        }
        events = await self._collect([flt])
        if not events:
            raise HostNotFoundError(f"no announcement for {repo_address(owner, name)}")
        return _repo(max(events, key=lambda e: (e.created_at, e.id)))

    async def fork(self, owner: str, name: str) -> HostRepo:
        raise HostRequestError(None, "relay repositories cannot be forked through a host API")

    async def list_issues(self, owner: str, name: str, page: int = 1) -> Page[HostIssue]:
        if page > 1:
            return Page(items=[], number=page)
        events = await self._subjects(owner, name, [EventKind.ISSUE])
        items: list[HostIssue] = []
        for number, event in enumerate(events, start=1):
            self._roots[(owner, name, "issue", number)] = event.id
            items.append(
                HostIssue(
                    number=number,
                    title=event.tag_value("subject") or _first_line(event.content),
                    body=event.content,
                    author=event.pubkey,
                    labels=event.tag_values("t"),
                    created_at=_timestamp(event.created_at),
                )
            )
        return Page(items=items, number=1)

    async def list_pull_requests(
        self, owner: str, name: str, page: int = 1
    ) -> Page[HostPullRequest]:
        if page > 1:
            return Page(items=[], number=page)
        events = await self._subjects(owner, name, [EventKind.PATCH, EventKind.PULL_REQUEST])
        items: list[HostPullRequest] = []
        for number, event in enumerate(events, start=1):
            self._roots[(owner, name, "pull", number)] = event.id
            items.append(
                HostPullRequest(
                    number=number,
                    title=event.tag_value("subject") or _first_line(event.content),
                    body=event.content,
                    author=event.pubkey,
                    labels=event.tag_values("t"),
                    head_ref=event.tag_value("branch-name"),
                    head_sha=event.tag_value("c") or event.tag_value("commit"),
                    base_sha=event.tag_value("merge-base") or event.tag_value("parent-commit"),
                    head_clone_url=event.tag_value("clone"),
                    created_at=_timestamp(event.created_at),
                )
            )
        return Page(items=items, number=1)

    async def list_comments(
        self, owner: str, name: str, target: CommentTarget, page: int = 1
    ) -> Page[HostComment]:
        root_id = self._roots.get((owner, name, target.kind, target.number))
        if page > 1 or root_id is None:
            return Page(items=[], number=page)
        flt: Filter = {"kinds": [int(EventKind.COMMENT)], "#E": [root_id], "limit": self._limit}
        events = sorted(await self._collect([flt]), key=lambda e: (e.created_at, e.id))
        items = []
        for event in events:
            parent = event.tag_value("e")
            items.append(
                HostComment(
                    id=event.id,
                    body=event.content,
                    author=event.pubkey,
                    created_at=_timestamp(event.created_at),
                    in_reply_to=parent if parent and parent != root_id else None,
                )
            )
        return Page(items=items, number=1)

    async def get_user(self, login: str | None = None) -> HostUser:
        """Profile of *login* (default: the signer).

        A pubkey without a kind-0 profile still exists; it gets a short name
        derived from the key.
        """
        pubkey = login or self._pubkey
        if not pubkey:
            raise AuthError("no active pubkey for the relay provider")
        flt: Filter = {"kinds": [int(EventKind.PROFILE)], "authors": [pubkey], "limit": 1}
        events = await self._collect([flt])
        if not events:
            log.debug("relay.no_profile", pubkey=pubkey)
            return HostUser(login=pubkey, id=pubkey, name=pubkey[:8])
        return _user(max(events, key=lambda e: (e.created_at, e.id)))

    # ── internal ───────────────────────────────────────────────────────────

    async def _subjects(self, owner: str, name: str, kinds: list[EventKind]) -> list[Event]:
        flt: Filter = {
            "kinds": [int(k) for k in kinds],
            "#a": [repo_address(owner, name)],
            "limit": self._limit,
        }
        return sorted(await self._collect([flt]), key=lambda e: (e.created_at, e.id))

    async def _collect(self, filters: list[Filter]) -> list[Event]:
        seen: dict[str, Event] = {}
        async for event in self._transport.query(filters, self._relays):
            if event.id in seen:
                continue
            seen[event.id] = event
            if len(seen) >= self._limit:
                log.debug("relay.query_truncated", limit=self._limit, relays=self._relays)
                break
        return list(seen.values())


def _timestamp(created_at: int) -> datetime:
    return datetime.fromtimestamp(created_at, tz=timezone.utc)


def _first_line(content: str) -> str:
    return content.strip().splitlines()[0] if content.strip() else ""


def _repo(event: Event) -> HostRepo:
    return HostRepo(
        owner=event.pubkey,
        name=event.tag_value("d") or "",
        description=event.tag_value("description"),
        html_url=event.tag_value("web"),
        clone_urls=[v for t in event.tags_named("clone") for v in t[1:] if v],
        default_branch=None,
        topics=event.tag_values("t"),
        created_at=_timestamp(event.created_at),
    )


def _user(event: Event) -> HostUser:
    try:
        profile = json.loads(event.content or "{}")
    except json.JSONDecodeError:
        profile = {}
    if not isinstance(profile, dict):
        profile = {}
    return HostUser(
        login=event.pubkey,
        id=event.pubkey,
        name=profile.get("display_name") or profile.get("name"),
        avatar_url=profile.get("picture"),
        bio=profile.get("about"),
        website=profile.get("website"),
    )
