"""GitHub REST variant (github.com and GitHub Enterprise)."""

from __future__ import annotations

from typing import Any

import httpx

from relaysync.core.config import SyncSettings
from relaysync.engines.providers.base import (
    LISTING_ITEM_KINDS,
    RestTransport,
    dig,
    label_names,
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


class GitHubProvider:
    """GitHub: ``per_page``/``page`` pagination, ``Link: rel="next"`` continuation."""

    kind = ProviderKind.GITHUB

    def __init__(
        self,
        token: str | None = None,
        *,
        limiter: RateLimiter,
        base_url: str = "https://api.github.com",
        settings: SyncSettings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers: dict[str, str] = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            headers["Authorization"] = f"token {token}"
        self._rest = RestTransport(
            self.kind, base_url, limiter=limiter, headers=headers, settings=settings, client=client
        )

    @property
    def provider_key(self) -> str:
        return self._rest.provider_key

    async def close(self) -> None:
        await self._rest.close()

    async def __aenter__(self) -> GitHubProvider:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ── capabilities ───────────────────────────────────────────────────────

    async def list_repos(self, page: int = 1) -> Page[HostRepo]:
        return await self._list("list_repos", "/user/repos", page, _repo, {"sort": "updated"})

    async def get_repo(self, owner: str, name: str) -> HostRepo:
        return _repo(await self._rest.get_json("get_repo", f"/repos/{owner}/{name}"))

    async def fork(self, owner: str, name: str) -> HostRepo:
        response = await self._rest.request("fork", "POST", f"/repos/{owner}/{name}/forks")
        return _repo(response.json())

    async def list_issues(self, owner: str, name: str, page: int = 1) -> Page[HostIssue]:
        # The issues endpoint also returns pull requests; _issue drops them.
        return await self._list(
            "list_issues", f"/repos/{owner}/{name}/issues", page, _issue, {"state": "all"}
        )

    async def list_pull_requests(
        self, owner: str, name: str, page: int = 1
    ) -> Page[HostPullRequest]:
        return await self._list(
            "list_pull_requests", f"/repos/{owner}/{name}/pulls", page, _pull, {"state": "all"}
        )

    async def list_comments(
        self, owner: str, name: str, target: CommentTarget, page: int = 1
    ) -> Page[HostComment]:
        # Conversation comments of pull requests live on the issue endpoint too.
        path = f"/repos/{owner}/{name}/issues/{target.number}/comments"
        return await self._list("list_comments", path, page, _comment)

    async def get_user(self, login: str | None = None) -> HostUser:
        path = "/user" if login is None else f"/users/{login}"
        return _user(await self._rest.get_json("get_user", path))

    # ── internal ───────────────────────────────────────────────────────────

    async def _list(
        self,
        verb: str,
        path: str,
        page: int,
        convert: Any,
        params: dict[str, Any] | None = None,
    ) -> Page[Any]:
        query = dict(params or {})
        query.update(per_page=self._rest.page_size, page=page)
        response = await self._rest.list_response(verb, path, query)
        if response is None:
            return Page(items=[], number=page)
        data = response.json()
        raw = data if isinstance(data, list) else []
        items, skipped = map_records(raw, convert, LISTING_ITEM_KINDS[verb])
        has_next = self._rest.has_next_link(response)
        return Page(items=items, number=page, has_next=has_next, skipped=skipped)


# ── mapping ───────────────────────────────────────────────────────────────


def _repo(data: dict[str, Any]) -> HostRepo:
    clone_urls = [u for u in (data.get("clone_url"), data.get("ssh_url")) if u]
    return HostRepo(
        owner=dig(data, "owner", "login") or "",
        name=data.get("name") or "",
        description=data.get("description"),
        html_url=data.get("html_url"),
        clone_urls=clone_urls,
        default_branch=data.get("default_branch"),
        topics=list(data.get("topics") or []),
        is_fork=bool(data.get("fork")),
        parent_full_name=dig(data, "parent", "full_name"),
        created_at=parse_datetime(data.get("created_at")),
    )


def _issue(data: dict[str, Any]) -> HostIssue | None:
    if "pull_request" in data:
        return None
    return HostIssue(
        number=data.get("number"),
        title=data.get("title") or "",
        state="closed" if data.get("state") == "closed" else "open",
        body=data.get("body"),
        author=dig(data, "user", "login"),
        labels=label_names(data.get("labels")),
        html_url=data.get("html_url"),
        created_at=parse_datetime(data.get("created_at")),
        closed_at=parse_datetime(data.get("closed_at")),
    )


def _pull(data: dict[str, Any]) -> HostPullRequest:
    if data.get("merged_at"):
        state = "merged"
    elif data.get("state") == "closed":
        state = "closed"
    else:
        state = "open"
    return HostPullRequest(
        number=data.get("number"),
        title=data.get("title") or "",
        state=state,
        body=data.get("body"),
        author=dig(data, "user", "login"),
        labels=label_names(data.get("labels")),
        html_url=data.get("html_url"),
        head_ref=dig(data, "head", "ref"),
        head_sha=dig(data, "head", "sha"),
        base_ref=dig(data, "base", "ref"),
        base_sha=dig(data, "base", "sha"),
        head_clone_url=dig(data, "head", "repo", "clone_url"),
        is_draft=bool(data.get("draft")),
        created_at=parse_datetime(data.get("created_at")),
        closed_at=parse_datetime(data.get("closed_at")),
        merged_at=parse_datetime(data.get("merged_at")),
        merge_commit_sha=data.get("merge_commit_sha"),
    )


def _comment(data: dict[str, Any]) -> HostComment:
    return HostComment(
        id=str(data.get("id") or ""),
        body=data.get("body") or "",
        author=dig(data, "user", "login"),
        html_url=data.get("html_url"),
        created_at=parse_datetime(data.get("created_at")),
    )


def _user(data: dict[str, Any]) -> HostUser:
    return HostUser(
        login=required_field(data, "user", "login"),
        id=str(data["id"]) if data.get("id") is not None else None,
        name=data.get("name"),
        avatar_url=data.get("avatar_url"),
        bio=data.get("bio"),
        website=data.get("blog") or None,
        html_url=data.get("html_url"),
    )
