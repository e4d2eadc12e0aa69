"""Capability contract shared by every provider variant, plus the REST plumbing."""

from __future__ import annotations

import re
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Protocol, TypeVar, runtime_checkable

import httpx

from relaysync.core.config import SyncSettings
from relaysync.core.errors import ConversionError, HostNotFoundError
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
)

T = TypeVar("T")

_NEXT_LINK_RE = re.compile(r'<([^>]+)>;\s*rel="next"')

# Item kind reported for records of each listing verb that fail to map.
LISTING_ITEM_KINDS = {
    "list_repos": "repo",
    "list_issues": "issue",
    "list_pull_requests": "pull_request",
    "list_comments": "comment",
}


@runtime_checkable
class HostProvider(Protocol):
    """Interface that every provider variant must satisfy.

    Listing calls return one :class:`Page` per call and treat a missing
    resource as an empty page; single-resource calls raise
    :class:`~relaysync.core.errors.HostNotFoundError`.
    """

    kind: ProviderKind

    async def list_repos(self, page: int = 1) -> Page[HostRepo]: ...

    async def get_repo(self, owner: str, name: str) -> HostRepo: ...

    async def fork(self, owner: str, name: str) -> HostRepo: ...

    async def list_issues(self, owner: str, name: str, page: int = 1) -> Page[HostIssue]: ...

    async def list_pull_requests(
        self, owner: str, name: str, page: int = 1
    ) -> Page[HostPullRequest]: ...

    async def list_comments(
        self, owner: str, name: str, target: CommentTarget, page: int = 1
    ) -> Page[HostComment]: ...

    async def get_user(self, login: str | None = None) -> HostUser: ...

    async def close(self) -> None: ...


async def iter_pages(
    fetch: Callable[[int], Awaitable[Page[T]]],
    start: int = 1,
) -> AsyncIterator[Page[T]]:
    """Yield pages lazily, one request per pull.

    Restart from any page by passing *start*; nothing is prefetched.
    """
    number = start
    while True:
        page = await fetch(number)
        yield page
        if not page.has_next:
            return
        number += 1


class RestTransport:
    """httpx client whose every request goes through the shared limiter."""

    def __init__(
        self,
        kind: ProviderKind,
        base_url: str,
        *,
        limiter: RateLimiter,
        headers: dict[str, str] | None = None,
        settings: SyncSettings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings or limiter.settings
        self._limiter = limiter
        host = httpx.URL(base_url).host
        self.provider_key = f"{kind.value}:{host}"
        if client is None:
            client = httpx.AsyncClient(
                base_url=base_url,
                headers=headers or {},
                timeout=self._settings.request_timeout,
            )
        elif headers:
            client.headers.update(headers)
        self._client = client

    @property
    def page_size(self) -> int:
        return self._settings.page_size

    async def close(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        verb: str,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> httpx.Response:
        async def send() -> httpx.Response:
            return await self._client.request(method, path, params=params, json=json)

        return await self._limiter.call(self.provider_key, verb, send)

    async def get_json(self, verb: str, path: str, params: dict[str, Any] | None = None) -> Any:
        response = await self.request(verb, "GET", path, params=params)
        return response.json()

    async def list_response(
        self, verb: str, path: str, params: dict[str, Any] | None = None
    ) -> httpx.Response | None:
        """GET a listing endpoint; ``None`` when the resource does not exist."""
        try:
            return await self.request(verb, "GET", path, params=params)
        except HostNotFoundError:
            return None

    @staticmethod
    def has_next_link(response: httpx.Response) -> bool:
        return _NEXT_LINK_RE.search(response.headers.get("Link", "")) is not None


def dig(data: Any, *path: str) -> Any:
    """Walk nested dicts, returning ``None`` at the first missing key."""
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def map_records(
    raw: Any, convert: Callable[[dict[str, Any]], T | None], item_kind: str
) -> tuple[list[T], list[ConversionError]]:
    """Map a listing payload record by record.

    A record the mapper cannot handle becomes a :class:`ConversionError` for
    that record alone; ``None`` from the mapper drops the record silently.
    """
    items: list[T] = []
    skipped: list[ConversionError] = []
    for record in raw if isinstance(raw, list) else []:
        if not isinstance(record, dict):
            skipped.append(ConversionError(item_kind, None, "record is not an object"))
            continue
        try:
            item = convert(record)
        except ConversionError as exc:
            skipped.append(exc)
            continue
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            record_id = record.get("number") or record.get("iid") or record.get("id")
            skipped.append(
                ConversionError(
                    item_kind,
                    str(record_id) if record_id is not None else None,
                    f"malformed record ({type(exc).__name__}: {exc})",
                )
            )
            continue
        if item is not None:
            items.append(item)
    return items, skipped


def label_names(labels: Any) -> list[str]:
    """Names of a host label list; entries without a name are ignored."""
    names = []
    for label in labels if isinstance(labels, list) else []:
        name = label.get("name") if isinstance(label, dict) else label
        if isinstance(name, str) and name:
            names.append(name)
    return names


def required_field(data: dict[str, Any], item_kind: str, *keys: str) -> str:
    """First non-empty value among *keys*, as a string.

    Raises :class:`ConversionError` when the record carries none of them.
    """
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return str(value)
    record_id = data.get("id")
    raise ConversionError(
        item_kind, str(record_id) if record_id is not None else None, f"missing {keys[0]}"
    )
