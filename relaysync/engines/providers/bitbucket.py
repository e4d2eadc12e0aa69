"""Bitbucket Cloud REST variant (API 2.0)."""

from __future__ import annotations

from typing import Any

import httpx

from relaysync.core.config import SyncSettings
from relaysync.engines.providers.base import (
    LISTING_ITEM_KINDS,
    RestTransport,
    dig,
    map_records,
    required_field,
)
from relaysync.engines.providers.models import ProviderKind
from relaysync.engines.rate_limiter import RateLimiter
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

_CLOSED_ISSUE_STATES = frozenset({"resolved", "closed", "invalid", "duplicate", "wontfix"})
_PR_STATES = ("OPEN", "MERGED", "DECLINED", "SUPERSEDED")


class BitbucketProvider:
    """Bitbucket: ``pagelen``/``page`` pagination, ``next`` link in the body.

    Pages are wrapped in ``{"values": [...], "next": ...}``. A repository
    with its issue tracker disabled answers 404, i.e. an empty listing.
    """

    kind = ProviderKind.BITBUCKET

    def __init__(
        self,
        token: str | None = None,
        *,
        limiter: RateLimiter,
        base_url: str = "https://api.bitbucket.org/2.0",
        settings: SyncSettings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers: dict[str, str] = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._rest = RestTransport(
            self.kind, base_url, limiter=limiter, headers=headers, settings=settings, client=client
        )

    @property
    def provider_key(self) -> str:
        return self._rest.provider_key

    async def close(self) -> None:
        await self._rest.close()

    async def list_repos(self, page: int = 1) -> Page[HostRepo]:
        return await self._list("list_repos", "/repositories", page, _repo, {"role": "member"})

    async def get_repo(self, owner: str, name: str) -> HostRepo:
        return _repo(await self._rest.get_json("get_repo", f"/repositories/{owner}/{name}"))

    async def fork(self, owner: str, name: str) -> HostRepo:
        response = await self._rest.request(
            "fork", "POST", f"/repositories/{owner}/{name}/forks", json={}
        )
        return _repo(response.json())

    async def list_issues(self, owner: str, name: str, page: int = 1) -> Page[HostIssue]:
        return await self._list("list_issues", f"/repositories/{owner}/{name}/issues", page, _issue)

    async def list_pull_requests(
        self, owner: str, name: str, page: int = 1
    ) -> Page[HostPullRequest]:
        return await self._list(
            "list_pull_requests",
            f"/repositories/{owner}/{name}/pullrequests",
            page,
            _pull,
            {"state": list(_PR_STATES)},
        )

    async def list_comments(
        self, owner: str, name: str, target: CommentTarget, page: int = 1
    ) -> Page[HostComment]:
        collection = "issues" if target.kind == "issue" else "pullrequests"
        path = f"/repositories/{owner}/{name}/{collection}/{target.number}/comments"
        return await self._list("list_comments", path, page, _comment)

    async def get_user(self, login: str | None = None) -> HostUser:
        path = "/user" if login is None else f"/users/{login}"
        return _user(await self._rest.get_json("get_user", path))

    async def _list(
        self,
        verb: str,
        path: str,
        page: int,
        convert: Any,
        params: dict[str, Any] | None = None,
    ) -> Page[Any]:
        query = dict(params or {})
        query.update(pagelen=min(self._rest.page_size, 100), page=page)
        response = await self._rest.list_response(verb, path, query)
        if response is None:
            return Page(items=[], number=page)
        data = response.json()
        values = data.get("values") if isinstance(data, dict) else None
        raw = values if isinstance(values, list) else []
        items, skipped = map_records(raw, convert, LISTING_ITEM_KINDS[verb])
        has_next = isinstance(data, dict) and bool(data.get("next"))
        return Page(items=items, number=page, has_next=has_next, skipped=skipped)


def _repo(data: dict[str, Any]) -> HostRepo:
    full_name = data.get("full_name") or ""
    owner, _, slug = full_name.partition("/")
    hrefs = [dig(link, "href") for link in dig(data, "links", "clone") or []]
    clone_urls = [href for href in hrefs if isinstance(href, str) and href]
    return HostRepo(
        owner=owner or dig(data, "workspace", "slug") or "",
        name=slug or data.get("slug") or data.get("name") or "",
        description=data.get("description") or None,
        html_url=dig(data, "links", "html", "href"),
        clone_urls=clone_urls,
        default_branch=dig(data, "mainbranch", "name"),
        is_fork=data.get("parent") is not None,
        parent_full_name=dig(data, "parent", "full_name"),
        created_at=parse_datetime(data.get("created_on")),
    )


def _issue(data: dict[str, Any]) -> HostIssue:
    state = "closed" if data.get("state") in _CLOSED_ISSUE_STATES else "open"
    kind = data.get("kind")
    return HostIssue(
        number=data.get("id"),
        title=data.get("title") or "",
        state=state,
        body=dig(data, "content", "raw"),
        author=dig(data, "reporter", "nickname") or dig(data, "reporter", "display_name"),
        labels=[kind] if kind else [],
        html_url=dig(data, "links", "html", "href"),
        created_at=parse_datetime(data.get("created_on")),
        closed_at=parse_datetime(data.get("updated_on")) if state == "closed" else None,
    )


def _pull(data: dict[str, Any]) -> HostPullRequest:
    state = data.get("state")
    if state == "MERGED":
        mapped = "merged"
    elif state in ("DECLINED", "SUPERSEDED"):
        mapped = "closed"
    else:
        mapped = "open"
    source_repo = dig(data, "source", "repository", "full_name")
    return HostPullRequest(
        number=data.get("id"),
        title=data.get("title") or "",
        state=mapped,
        body=data.get("description"),
        author=dig(data, "author", "nickname") or dig(data, "author", "display_name"),
        html_url=dig(data, "links", "html", "href"),
        head_ref=dig(data, "source", "branch", "name"),
        head_sha=dig(data, "source", "commit", "hash"),
        base_ref=dig(data, "destination", "branch", "name"),
        base_sha=dig(data, "destination", "commit", "hash"),
        head_clone_url=f"https://bitbucket.org/{source_repo}.git" if source_repo else None,
        is_draft=bool(data.get("draft")),
        created_at=parse_datetime(data.get("created_on")),
        closed_at=parse_datetime(data.get("updated_on")) if mapped != "open" else None,
        merged_at=parse_datetime(data.get("updated_on")) if mapped == "merged" else None,
        merge_commit_sha=dig(data, "merge_commit", "hash"),
    )


def _comment(data: dict[str, Any]) -> HostComment | None:
    if data.get("deleted"):
        return None
    parent_id = dig(data, "parent", "id")
    return HostComment(
        id=str(data.get("id") or ""),
        body=dig(data, "content", "raw") or "",
        author=dig(data, "user", "nickname") or dig(data, "user", "display_name"),
        html_url=dig(data, "links", "html", "href"),
        created_at=parse_datetime(data.get("created_on")),
        in_reply_to=str(parent_id) if parent_id is not None else None,
    )


def _user(data: dict[str, Any]) -> HostUser:
    return HostUser(
        login=required_field(data, "user", "username", "nickname", "uuid"),
        id=data.get("uuid"),
        name=data.get("display_name"),
        avatar_url=dig(data, "links", "avatar", "href"),
        html_url=dig(data, "links", "html", "href"),
    )
