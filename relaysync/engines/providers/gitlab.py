"""GitLab REST variant (gitlab.com and self-managed instances)."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

import httpx

from relaysync.core.config import SyncSettings
from relaysync.core.errors import HostNotFoundError
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


def _project_id(owner: str, name: str) -> str:
    """URL-encoded ``namespace/path`` accepted wherever GitLab wants a project id."""
    return quote(f"{owner}/{name}", safe="")


class GitLabProvider:
    """GitLab: ``per_page``/``page`` pagination, ``X-Next-Page`` continuation.

    Pull requests are merge requests; issues and merge requests are addressed
    by their project-scoped ``iid``. System notes are not comments.
    """

    kind = ProviderKind.GITLAB

    def __init__(
        self,
        token: str | None = None,
        *,
        limiter: RateLimiter,
        base_url: str = "https://gitlab.com/api/v4",
        settings: SyncSettings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers: dict[str, str] = {"Accept": "application/json"}
        if token:
            headers["PRIVATE-TOKEN"] = token
        self._rest = RestTransport(
            self.kind, base_url, limiter=limiter, headers=headers, settings=settings, client=client
        )

    @property
    def provider_key(self) -> str:
        return self._rest.provider_key

    async def close(self) -> None:
        await self._rest.close()

    async def list_repos(self, page: int = 1) -> Page[HostRepo]:
        return await self._list(
            "list_repos", "/projects", page, _repo, {"membership": "true", "order_by": "updated_at"}
        )

    async def get_repo(self, owner: str, name: str) -> HostRepo:
        return _repo(await self._rest.get_json("get_repo", f"/projects/{_project_id(owner, name)}"))

    async def fork(self, owner: str, name: str) -> HostRepo:
        response = await self._rest.request(
            "fork", "POST", f"/projects/{_project_id(owner, name)}/fork"
        )
        return _repo(response.json())

    async def list_issues(self, owner: str, name: str, page: int = 1) -> Page[HostIssue]:
        path = f"/projects/{_project_id(owner, name)}/issues"
        return await self._list("list_issues", path, page, _issue, {"scope": "all"})

    async def list_pull_requests(
        self, owner: str, name: str, page: int = 1
    ) -> Page[HostPullRequest]:
        path = f"/projects/{_project_id(owner, name)}/merge_requests"
        return await self._list("list_pull_requests", path, page, _merge_request, {"scope": "all"})

    async def list_comments(
        self, owner: str, name: str, target: CommentTarget, page: int = 1
    ) -> Page[HostComment]:
        collection = "issues" if target.kind == "issue" else "merge_requests"
        path = f"/projects/{_project_id(owner, name)}/{collection}/{target.number}/notes"
        return await self._list("list_comments", path, page, _note, {"sort": "asc"})

    async def get_user(self, login: str | None = None) -> HostUser:
        if login is None:
            return _user(await self._rest.get_json("get_user", "/user"))
        matches = await self._rest.get_json("get_user", "/users", {"username": login})
        if not matches:
            raise HostNotFoundError(f"{self.provider_key}: user {login!r} not found")
        return _user(matches[0])

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
        has_next = bool(response.headers.get("X-Next-Page", "").strip())
        return Page(items=items, number=page, has_next=has_next, skipped=skipped)


def _repo(data: dict[str, Any]) -> HostRepo:
    clone_urls = [u for u in (data.get("http_url_to_repo"), data.get("ssh_url_to_repo")) if u]
    parent = data.get("forked_from_project")
    return HostRepo(
        owner=dig(data, "namespace", "full_path") or "",
        name=data.get("path") or data.get("name") or "",
        description=data.get("description"),
        html_url=data.get("web_url"),
        clone_urls=clone_urls,
        default_branch=data.get("default_branch"),
        topics=list(data.get("topics") or data.get("tag_list") or []),
        is_fork=parent is not None,
        parent_full_name=dig(data, "forked_from_project", "path_with_namespace"),
        created_at=parse_datetime(data.get("created_at")),
    )


def _issue(data: dict[str, Any]) -> HostIssue:
    return HostIssue(
        number=data.get("iid"),
        title=data.get("title") or "",
        state="closed" if data.get("state") == "closed" else "open",
        body=data.get("description"),
        author=dig(data, "author", "username"),
        labels=label_names(data.get("labels")),
        html_url=data.get("web_url"),
        created_at=parse_datetime(data.get("created_at")),
        closed_at=parse_datetime(data.get("closed_at")),
    )


def _merge_request(data: dict[str, Any]) -> HostPullRequest:
    state = data.get("state")
    if state == "merged":
        mapped = "merged"
    elif state in ("closed", "locked"):
        mapped = "closed"
    else:
        mapped = "open"
    return HostPullRequest(
        number=data.get("iid"),
        title=data.get("title") or "",
        state=mapped,
        body=data.get("description"),
        author=dig(data, "author", "username"),
        labels=label_names(data.get("labels")),
        html_url=data.get("web_url"),
        head_ref=data.get("source_branch"),
        head_sha=data.get("sha"),
        base_ref=data.get("target_branch"),
        base_sha=dig(data, "diff_refs", "base_sha"),
        is_draft=bool(data.get("draft") or data.get("work_in_progress")),
        created_at=parse_datetime(data.get("created_at")),
        closed_at=parse_datetime(data.get("closed_at")),
        merged_at=parse_datetime(data.get("merged_at")),
        merge_commit_sha=data.get("merge_commit_sha"),
    )


def _note(data: dict[str, Any]) -> HostComment | None:
    if data.get("system"):
        return None
    return HostComment(
        id=str(data.get("id") or ""),
        body=data.get("body") or "",
        author=dig(data, "author", "username"),
        created_at=parse_datetime(data.get("created_at")),
    )


def _user(data: dict[str, Any]) -> HostUser:
    return HostUser(
        login=required_field(data, "user", "username"),
        id=str(data["id"]) if data.get("id") is not None else None,
        name=data.get("name"),
        avatar_url=data.get("avatar_url"),
        bio=data.get("bio") or None,
        website=data.get("website_url") or None,
        html_url=data.get("web_url"),
    )
