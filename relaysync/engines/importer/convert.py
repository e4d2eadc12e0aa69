"""Turn normalized host data into unsigned events.

Every converter validates the fields it needs and raises
:class:`~relaysync.core.errors.ConversionError` for a malformed item, which
the streaming phases skip.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime

from relaysync.core.errors import ConversionError
from relaysync.models.event import EventKind, Tag, UnsignedEvent
from relaysync.models.host import HostComment, HostIssue, HostPullRequest, HostRepo, HostUser


@dataclass(frozen=True)
class RepoContext:
    """What every converted event needs to point back at its repository."""

    pubkey: str  # signer, owner of the announcement
    identifier: str
    address: str
    relays: tuple[str, ...] = ()
    euc: str | None = None

    def repo_tags(self) -> list[Tag]:
        relay_hint = self.relays[0] if self.relays else ""
        tags: list[Tag] = [("a", self.address, relay_hint), ("p", self.pubkey)]
        if self.euc:
            tags.append(("r", self.euc))
        return tags


def to_timestamp(value: datetime | None, fallback: int) -> int:
    return int(value.timestamp()) if value is not None else fallback


def _require_number(item_kind: str, number: object) -> int:
    if isinstance(number, bool) or not isinstance(number, int) or number <= 0:
        raise ConversionError(item_kind, str(number) if number is not None else None, "no number")
    return number


def repo_announcement(
    repo: HostRepo,
    ctx: RepoContext,
    *,
    created_at: int,
    maintainers: tuple[str, ...] = (),
) -> UnsignedEvent:
    if not repo.name:
        raise ConversionError("repo", repo.html_url, "repository has no name")
    tags: list[Tag] = [("d", ctx.identifier), ("name", repo.name)]
    if repo.description:
        tags.append(("description", repo.description))
    if repo.html_url:
        tags.append(("web", repo.html_url))
    if repo.clone_urls:
        tags.append(("clone", *repo.clone_urls))
    if ctx.relays:
        tags.append(("relays", *ctx.relays))
    tags.append(("maintainers", *dict.fromkeys((ctx.pubkey, *maintainers))))
    if ctx.euc:
        tags.append(("r", ctx.euc, "euc"))
    tags.extend(("t", topic) for topic in repo.topics if topic)
    return UnsignedEvent(kind=EventKind.REPO_ANNOUNCEMENT, created_at=created_at, tags=tags)


def issue_event(issue: HostIssue, ctx: RepoContext, *, now: int) -> UnsignedEvent:
    number = _require_number("issue", issue.number)
    if not isinstance(issue.title, str) or not issue.title.strip():
        raise ConversionError("issue", str(number), "missing title")
    tags = ctx.repo_tags()
    tags.append(("subject", issue.title.strip()))
    tags.extend(("t", label) for label in issue.labels if label)
    if issue.html_url:
        tags.append(("imported-from", issue.html_url))
    return UnsignedEvent(
        kind=EventKind.ISSUE,
        created_at=to_timestamp(issue.created_at, now),
        tags=tags,
        content=issue.body or "",
    )


def pull_request_event(pr: HostPullRequest, ctx: RepoContext, *, now: int) -> UnsignedEvent:
    number = _require_number("pull_request", pr.number)
    if not isinstance(pr.title, str) or not pr.title.strip():
        raise ConversionError("pull_request", str(number), "missing title")
    if not pr.head_sha:
        raise ConversionError("pull_request", str(number), "missing head commit")
    tags = ctx.repo_tags()
    tags.append(("subject", pr.title.strip()))
    tags.append(("c", pr.head_sha))
    if pr.head_ref:
        tags.append(("branch-name", pr.head_ref))
    if pr.base_sha:
        tags.append(("merge-base", pr.base_sha))
    if pr.head_clone_url:
        tags.append(("clone", pr.head_clone_url))
    tags.extend(("t", label) for label in pr.labels if label)
    if pr.html_url:
        tags.append(("imported-from", pr.html_url))
    return UnsignedEvent(
        kind=EventKind.PULL_REQUEST,
        created_at=to_timestamp(pr.created_at, now),
        tags=tags,
        content=pr.body or "",
    )


def status_event(
    kind: EventKind,
    subject_id: str,
    ctx: RepoContext,
    *,
    created_at: int,
    content: str = "",
) -> UnsignedEvent:
    tags: list[Tag] = [("e", subject_id, "", "root"), *ctx.repo_tags()]
    return UnsignedEvent(kind=kind, created_at=created_at, tags=tags, content=content)


def comment_event(
    comment: HostComment,
    ctx: RepoContext,
    *,
    root_id: str,
    root_kind: EventKind,
    parent_id: str | None = None,
    now: int,
) -> UnsignedEvent:
    """NIP-22 comment: uppercase tags scope the root, lowercase the parent."""
    if not comment.id:
        raise ConversionError("comment", None, "missing id")
    if not isinstance(comment.body, str) or not comment.body.strip():
        raise ConversionError("comment", comment.id, "empty body")
    parent = parent_id or root_id
    parent_kind = EventKind.COMMENT if parent_id else root_kind
    tags: list[Tag] = [
        ("E", root_id, "", ctx.pubkey),
        ("K", str(int(root_kind))),
        ("P", ctx.pubkey),
        ("e", parent, "", ctx.pubkey),
        ("k", str(int(parent_kind))),
        ("p", ctx.pubkey),
        ("a", ctx.address),
    ]
    if comment.html_url:
        tags.append(("imported-from", comment.html_url))
    return UnsignedEvent(
        kind=EventKind.COMMENT,
        created_at=to_timestamp(comment.created_at, now),
        tags=tags,
        content=comment.body,
    )


def profile_event(user: HostUser, *, created_at: int) -> UnsignedEvent:
    profile = {
        "name": user.login,
        "display_name": user.name,
        "about": user.bio,
        "picture": user.avatar_url,
        "website": user.website or user.html_url,
    }
    content = json.dumps({k: v for k, v in profile.items() if v}, separators=(",", ":"))
    return UnsignedEvent(kind=EventKind.PROFILE, created_at=created_at, content=content)
