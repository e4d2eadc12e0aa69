"""Tests for the host provider engine (HTTP mocked with httpx.MockTransport)."""

from __future__ import annotations

import httpx
import pytest

from relaysync.core.config import SyncSettings
from relaysync.core.errors import (
    ConversionError,
    HostNotFoundError,
    HostRequestError,
    ProviderDetectionError,
)
from relaysync.engines.providers import (
    BitbucketProvider,
    GiteaProvider,
    GitHubProvider,
    GitLabProvider,
    HostProvider,
    ProviderKind,
    RelayProvider,
    create_provider,
    detect_provider,
    iter_pages,
    register_provider,
)
from relaysync.engines.providers.registry import PROVIDER_REGISTRY
from relaysync.engines.rate_limiter import RateLimiter
from relaysync.models.event import Event, EventKind, repo_address
from relaysync.models.host import CommentTarget, Page

OWNER_PK = "b" * 64


def _client(handler, base_url: str) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=base_url)


@pytest.fixture
def limiter(clock):
    return RateLimiter(
        SyncSettings(seconds_between_requests=0), clock=clock, sleep=clock.sleep
    )


# ── TestDetectProvider ────────────────────────────────────────────────────


class TestDetectProvider:
    def test_github_https(self):
        loc = detect_provider("https://github.com/octo/hello.git")
        assert loc.kind is ProviderKind.GITHUB
        assert (loc.host, loc.owner, loc.name) == ("github.com", "octo", "hello")
        assert loc.api_base_url == "https://api.github.com"

    def test_github_scp(self):
        loc = detect_provider("git@github.com:octo/hello.git")
        assert loc.kind is ProviderKind.GITHUB
        assert loc.full_name == "octo/hello"

    def test_ssh_scheme(self):
        loc = detect_provider("ssh://git@codeberg.org/forge/tool.git")
        assert loc.kind is ProviderKind.GITEA
        assert loc.api_base_url == "https://codeberg.org/api/v1"

    def test_gitlab_subgroups(self):
        loc = detect_provider("https://gitlab.com/group/sub/project/-/tree/main")
        assert loc.kind is ProviderKind.GITLAB
        assert loc.owner == "group/sub"
        assert loc.name == "project"

    def test_self_hosted_by_host_name(self):
        assert detect_provider("https://gitlab.example.org/a/b").kind is ProviderKind.GITLAB
        assert detect_provider("https://git.forgejo.dev/a/b").kind is ProviderKind.GITEA

    def test_bare_host_path(self):
        loc = detect_provider("bitbucket.org/team/repo")
        assert loc.kind is ProviderKind.BITBUCKET
        assert loc.api_base_url == "https://api.bitbucket.org/2.0"

    def test_hint_overrides_host(self):
        loc = detect_provider("https://code.example.com/team/repo", hint="gitea")
        assert loc.kind is ProviderKind.GITEA

    def test_enterprise_github_api(self):
        loc = detect_provider("https://code.example.com/a/b", hint=ProviderKind.GITHUB)
        assert loc.api_base_url == "https://code.example.com/api/v3"

    def test_unknown_host_without_hint(self):
        with pytest.raises(ProviderDetectionError):
            detect_provider("https://code.example.com/team/repo")

    def test_missing_name(self):
        with pytest.raises(ProviderDetectionError):
            detect_provider("https://github.com/octo")

    def test_empty(self):
        with pytest.raises(ProviderDetectionError):
            detect_provider("   ")

    def test_nostr_url(self):
        loc = detect_provider(f"nostr://{OWNER_PK}/my-repo")
        assert loc.kind is ProviderKind.RELAY
        assert (loc.owner, loc.name) == (OWNER_PK, "my-repo")
        assert loc.api_base_url is None

    def test_address_form(self):
        loc = detect_provider(f"30617:{OWNER_PK}:my-repo")
        assert loc.kind is ProviderKind.RELAY
        assert loc.name == "my-repo"

    def test_bad_nostr_pubkey(self):
        with pytest.raises(ProviderDetectionError):
            detect_provider("nostr://npub-not-hex/my-repo")


# ── TestIterPages ─────────────────────────────────────────────────────────


class TestIterPages:
    @pytest.mark.anyio
    async def test_stops_on_last_page(self):
        requested = []

        async def fetch(number: int) -> Page[int]:
            requested.append(number)
            return Page(items=[number], number=number, has_next=number < 3)

        pages = [p async for p in iter_pages(fetch)]
        assert [p.number for p in pages] == [1, 2, 3]
        assert requested == [1, 2, 3]

    @pytest.mark.anyio
    async def test_restart_from_page(self):
        async def fetch(number: int) -> Page[int]:
            return Page(items=[], number=number, has_next=False)

        pages = [p async for p in iter_pages(fetch, start=4)]
        assert [p.number for p in pages] == [4]

    @pytest.mark.anyio
    async def test_lazy(self):
        requested = []

        async def fetch(number: int) -> Page[int]:
            requested.append(number)
            return Page(items=[], number=number, has_next=True)

        async for _ in iter_pages(fetch):
            break
        assert requested == [1]


# ── TestGitHubProvider ────────────────────────────────────────────────────


def _gh_issue(number, **extra):
    data = {
        "number": number,
        "title": f"Issue {number}",
        "state": "open",
        "body": "body",
        "user": {"login": "alice"},
        "labels": [{"name": "bug"}],
        "html_url": f"https://github.com/octo/hello/issues/{number}",
        "created_at": "2024-01-02T03:04:05Z",
    }
    data.update(extra)
    return data


class TestGitHubProvider:
    @pytest.mark.anyio
    async def test_list_issues_skips_pull_requests_and_follows_link(self, limiter):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            link = '<https://api.github.com/repos/octo/hello/issues?page=2>; rel="next"'
            body = [_gh_issue(1), _gh_issue(2, pull_request={"url": "x"})]
            return httpx.Response(200, json=body, headers={"Link": link})

        gh = GitHubProvider(
            "tok", limiter=limiter, client=_client(handler, "https://api.github.com")
        )
        page = await gh.list_issues("octo", "hello", 1)
        await gh.close()

        assert [i.number for i in page.items] == [1]
        assert page.items[0].labels == ["bug"]
        assert page.items[0].created_at is not None
        assert page.has_next is True
        request = seen[0]
        assert request.url.path == "/repos/octo/hello/issues"
        assert request.url.params["state"] == "all"
        assert request.url.params["per_page"] == "100"
        assert request.headers["Authorization"] == "token tok"

    @pytest.mark.anyio
    async def test_missing_listing_is_empty_page(self, limiter):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"message": "Not Found"})

        gh = GitHubProvider(limiter=limiter, client=_client(handler, "https://api.github.com"))
        page = await gh.list_pull_requests("octo", "gone", 1)
        assert page.items == []
        assert page.has_next is False

    @pytest.mark.anyio
    async def test_get_repo_not_found_raises(self, limiter):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404)

        gh = GitHubProvider(limiter=limiter, client=_client(handler, "https://api.github.com"))
        with pytest.raises(HostNotFoundError):
            await gh.get_repo("octo", "gone")

    @pytest.mark.anyio
    async def test_repo_mapping(self, limiter):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "name": "hello",
                    "owner": {"login": "me"},
                    "description": "demo",
                    "html_url": "https://github.com/me/hello",
                    "clone_url": "https://github.com/me/hello.git",
                    "ssh_url": "git@github.com:me/hello.git",
                    "topics": ["nostr"],
                    "fork": True,
                    "parent": {"full_name": "octo/hello"},
                },
            )

        gh = GitHubProvider(limiter=limiter, client=_client(handler, "https://api.github.com"))
        repo = await gh.get_repo("me", "hello")
        assert repo.full_name == "me/hello"
        assert repo.is_fork and repo.parent_full_name == "octo/hello"
        assert repo.clone_urls == ["https://github.com/me/hello.git", "git@github.com:me/hello.git"]
        assert repo.topics == ["nostr"]

    @pytest.mark.anyio
    async def test_pull_request_states(self, limiter):
        def handler(request: httpx.Request) -> httpx.Response:
            base = {
                "title": "t",
                "head": {"sha": "c" * 40, "ref": "feat"},
                "base": {"sha": "d" * 40},
            }
            return httpx.Response(
                200,
                json=[
                    {**base, "number": 1, "state": "open", "draft": True},
                    {**base, "number": 2, "state": "closed", "merged_at": "2024-02-01T00:00:00Z"},
                    {**base, "number": 3, "state": "closed"},
                ],
            )

        gh = GitHubProvider(limiter=limiter, client=_client(handler, "https://api.github.com"))
        page = await gh.list_pull_requests("octo", "hello")
        assert [(p.number, p.state, p.is_draft) for p in page.items] == [
            (1, "open", True),
            (2, "merged", False),
            (3, "closed", False),
        ]
        assert page.items[0].head_sha == "c" * 40

    @pytest.mark.anyio
    async def test_fork_posts(self, limiter):
        methods = []

        def handler(request: httpx.Request) -> httpx.Response:
            methods.append((request.method, request.url.path))
            return httpx.Response(202, json={"name": "hello", "owner": {"login": "me"}})

        gh = GitHubProvider(limiter=limiter, client=_client(handler, "https://api.github.com"))
        repo = await gh.fork("octo", "hello")
        assert methods == [("POST", "/repos/octo/hello/forks")]
        assert repo.owner == "me"


# ── TestOtherRestProviders ────────────────────────────────────────────────


class TestGitLabProvider:
    @pytest.mark.anyio
    async def test_issues_use_iid_and_next_page_header(self, limiter):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["PRIVATE-TOKEN"] == "glpat"
            return httpx.Response(
                200,
                json=[{"iid": 7, "id": 9001, "title": "Crash", "state": "closed"}],
                headers={"X-Next-Page": "2"},
            )

        gl = GitLabProvider(
            "glpat", limiter=limiter, client=_client(handler, "https://gitlab.com/api/v4")
        )
        page = await gl.list_issues("group/sub", "project")
        assert [(i.number, i.state) for i in page.items] == [(7, "closed")]
        assert page.has_next is True

    @pytest.mark.anyio
    async def test_system_notes_are_skipped(self, limiter):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path.endswith("/merge_requests/3/notes")
            return httpx.Response(
                200,
                json=[
                    {"id": 1, "body": "changed the description", "system": True},
                    {"id": 2, "body": "LGTM", "system": False, "author": {"username": "bob"}},
                ],
                headers={"X-Next-Page": ""},
            )

        gl = GitLabProvider(limiter=limiter, client=_client(handler, "https://gitlab.com/api/v4"))
        page = await gl.list_comments("g", "p", CommentTarget("pull", 3))
        assert [c.id for c in page.items] == ["2"]
        assert page.has_next is False


class TestGiteaProvider:
    @pytest.mark.anyio
    async def test_full_page_means_more(self, clock):
        limiter = RateLimiter(
            SyncSettings(seconds_between_requests=0, page_size=2), clock=clock, sleep=clock.sleep
        )

        def handler(request: httpx.Request) -> httpx.Response:
            page = int(request.url.params["page"])
            assert request.url.params["limit"] == "2"
            items = [{"number": n, "title": "t"} for n in ((1, 2) if page == 1 else (3,))]
            return httpx.Response(200, json=items)

        client = _client(handler, "https://codeberg.org/api/v1")
        gt = GiteaProvider(limiter=limiter, client=client)
        pages = [p async for p in iter_pages(lambda n: gt.list_issues("o", "r", n))]
        assert [len(p.items) for p in pages] == [2, 1]


class TestBitbucketProvider:
    @pytest.mark.anyio
    async def test_values_and_next(self, limiter):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "values": [
                        {"id": 5, "title": "Bug", "state": "resolved", "kind": "bug"},
                        {"id": 6, "title": "Task", "state": "new"},
                    ],
                    "next": "https://api.bitbucket.org/2.0/repositories/t/r/issues?page=2",
                },
            )

        bb = BitbucketProvider(
            limiter=limiter, client=_client(handler, "https://api.bitbucket.org/2.0")
        )
        page = await bb.list_issues("t", "r")
        assert [(i.number, i.state, i.labels) for i in page.items] == [
            (5, "closed", ["bug"]),
            (6, "open", []),
        ]
        assert page.has_next is True

    @pytest.mark.anyio
    async def test_comment_threading_and_deleted(self, limiter):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "values": [
                        {"id": 1, "content": {"raw": "first"}},
                        {"id": 2, "content": {"raw": "reply"}, "parent": {"id": 1}},
                        {"id": 3, "content": {"raw": ""}, "deleted": True},
                    ]
                },
            )

        bb = BitbucketProvider(
            limiter=limiter, client=_client(handler, "https://api.bitbucket.org/2.0")
        )
        page = await bb.list_comments("t", "r", CommentTarget("issue", 5))
        assert [(c.id, c.in_reply_to) for c in page.items] == [("1", None), ("2", "1")]
        assert page.has_next is False


# ── TestRelayProvider ─────────────────────────────────────────────────────


def _event(eid, kind, created_at, tags=(), content="", pubkey=OWNER_PK):
    return Event(
        id=eid, pubkey=pubkey, kind=kind, created_at=created_at, tags=tags, content=content
    )


class TestRelayProvider:
    def _stored(self):
        address = repo_address(OWNER_PK, "my-repo")
        return [
            _event("ann1", EventKind.REPO_ANNOUNCEMENT, 10, [("d", "my-repo"), ("name", "old")]),
            _event(
                "ann2",
                EventKind.REPO_ANNOUNCEMENT,
                20,
                [("d", "my-repo"), ("clone", "https://git.example/my-repo.git")],
            ),
            _event("iss-b", EventKind.ISSUE, 200, [("a", address), ("subject", "Second")]),
            _event("iss-a", EventKind.ISSUE, 100, [("a", address), ("subject", "First")]),
            _event("c1", EventKind.COMMENT, 300, [("E", "iss-a"), ("e", "iss-a")], "hi"),
            _event("c2", EventKind.COMMENT, 301, [("E", "iss-a"), ("e", "c1")], "re: hi"),
        ]

    @pytest.mark.anyio
    async def test_get_repo_latest_announcement(self, relay):
        relay.stored = self._stored()
        provider = RelayProvider(relay, ["wss://r.example"])
        repo = await provider.get_repo(OWNER_PK, "my-repo")
        assert repo.clone_urls == ["https://git.example/my-repo.git"]

    @pytest.mark.anyio
    async def test_get_repo_missing(self, relay):
        provider = RelayProvider(relay, ["wss://r.example"])
        with pytest.raises(HostNotFoundError):
            await provider.get_repo(OWNER_PK, "nope")

    @pytest.mark.anyio
    async def test_issues_numbered_by_creation_and_comments_resolved(self, relay):
        relay.stored = self._stored()
        provider = RelayProvider(relay, ["wss://r.example"])
        issues = await provider.list_issues(OWNER_PK, "my-repo")
        assert [(i.number, i.title) for i in issues.items] == [(1, "First"), (2, "Second")]

        comments = await provider.list_comments(OWNER_PK, "my-repo", CommentTarget("issue", 1))
        assert [(c.id, c.in_reply_to) for c in comments.items] == [("c1", None), ("c2", "c1")]
        assert (await provider.list_issues(OWNER_PK, "my-repo", 2)).items == []

    @pytest.mark.anyio
    async def test_user_without_profile(self, relay):
        provider = RelayProvider(relay, ["wss://r.example"], pubkey=OWNER_PK)
        user = await provider.get_user()
        assert user.login == OWNER_PK
        assert user.name == OWNER_PK[:8]

    @pytest.mark.anyio
    async def test_user_from_latest_profile(self, relay):
        relay.stored = [
            _event("p1", EventKind.PROFILE, 10, content='{"name": "old"}'),
            _event("p2", EventKind.PROFILE, 20, content='{"display_name": "Bee"}'),
        ]
        provider = RelayProvider(relay, ["wss://r.example"], pubkey=OWNER_PK)
        assert (await provider.get_user()).name == "Bee"

    @pytest.mark.anyio
    async def test_fork_unsupported(self, relay):
        provider = RelayProvider(relay, [])
        with pytest.raises(HostRequestError):
            await provider.fork(OWNER_PK, "my-repo")


# ── TestRegistry ──────────────────────────────────────────────────────────


class TestRegistry:
    def test_create_github(self, limiter):
        provider = create_provider("github", token="t", limiter=limiter, base_url=None)
        assert isinstance(provider, GitHubProvider)
        assert isinstance(provider, HostProvider)

    def test_create_relay(self, relay):
        provider = create_provider(ProviderKind.RELAY, transport=relay, relays=["wss://x"])
        assert isinstance(provider, RelayProvider)

    def test_unknown_kind(self):
        with pytest.raises(ProviderDetectionError):
            create_provider("sourcehut")

    def test_register_provider_replaces_factory(self, limiter):
        built = []

        def factory(**kwargs):
            built.append(kwargs)
            return GitHubProvider(limiter=limiter)

        original = PROVIDER_REGISTRY[ProviderKind.GITEA]
        register_provider(ProviderKind.GITEA, factory)
        try:
            provider = create_provider("gitea", token="t", base_url=None)
        finally:
            register_provider(ProviderKind.GITEA, original)
        assert isinstance(provider, GitHubProvider)
        assert built == [{"token": "t"}]
        assert PROVIDER_REGISTRY[ProviderKind.GITEA] is GiteaProvider


# ── TestMalformedRecords ──────────────────────────────────────────────────


def _gh_min_issue(number, **extra):
    data = {
        "number": number,
        "title": f"Issue {number}",
        "state": "open",
        "user": {"login": "octo"},
        "labels": [],
    }
    data.update(extra)
    return data


class TestMalformedRecords:
    @pytest.mark.anyio
    async def test_label_without_name_is_ignored(self, limiter):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json=[
                    _gh_min_issue(1),
                    _gh_min_issue(2, labels=[{"id": 9}, {"name": "bug"}, None]),
                    _gh_min_issue(3),
                ],
            )

        gh = GitHubProvider(limiter=limiter, client=_client(handler, "https://api.github.com"))
        page = await gh.list_issues("octo", "hello")
        assert [i.number for i in page.items] == [1, 2, 3]
        assert page.items[1].labels == ["bug"]
        assert page.skipped == []

    @pytest.mark.anyio
    async def test_unmappable_record_is_skipped_alone(self, limiter):
        def handler(request: httpx.Request) -> httpx.Response:
            good = {"id": 1, "name": "hello", "owner": {"login": "octo"}}
            bad = {"id": 3, "name": "broken", "topics": 5}
            return httpx.Response(200, json=[good, "garbage", bad])

        gh = GitHubProvider(limiter=limiter, client=_client(handler, "https://api.github.com"))
        page = await gh.list_repos()
        assert [r.name for r in page.items] == ["hello"]
        assert len(page.skipped) == 2
        assert all(isinstance(e, ConversionError) for e in page.skipped)
        assert page.skipped[1].item_kind == "repo"
        assert page.skipped[1].item_id == "3"

    @pytest.mark.anyio
    async def test_gitea_user_falls_back_to_username(self, limiter):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"id": 4, "username": "forge"})

        client = _client(handler, "https://codeberg.org/api/v1")
        gitea = GiteaProvider(limiter=limiter, client=client)
        assert (await gitea.get_user()).login == "forge"

    @pytest.mark.anyio
    async def test_user_without_login_is_a_conversion_error(self, limiter):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"id": 7, "name": "Nameless"})

        gh = GitHubProvider(limiter=limiter, client=_client(handler, "https://api.github.com"))
        with pytest.raises(ConversionError) as exc_info:
            await gh.get_user()
        assert exc_info.value.item_kind == "user"
        assert exc_info.value.item_id == "7"

    @pytest.mark.anyio
    async def test_bitbucket_clone_link_without_href(self, limiter):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "full_name": "team/repo",
                    "links": {
                        "clone": [{"name": "ssh"}, {"href": "https://bitbucket.org/team/repo.git"}]
                    },
                },
            )

        bb = BitbucketProvider(
            limiter=limiter, client=_client(handler, "https://api.bitbucket.org/2.0")
        )
        repo = await bb.get_repo("team", "repo")
        assert repo.clone_urls == ["https://bitbucket.org/team/repo.git"]

    @pytest.mark.anyio
    async def test_gitlab_string_labels(self, limiter):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200, json=[{"iid": 1, "title": "t", "labels": ["bug", "", {"name": "ui"}]}]
            )

        gl = GitLabProvider(limiter=limiter, client=_client(handler, "https://gitlab.com/api/v4"))
        page = await gl.list_issues("group", "proj")
        assert page.items[0].labels == ["bug", "ui"]
