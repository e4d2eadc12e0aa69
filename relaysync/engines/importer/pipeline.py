"""Import state machine: host repository → signed events on relays.

Phases run strictly forward:

    parse_and_detect → validate → fork_if_needed → fetch_repo_metadata →
    publish_repo_events → stream_issues → stream_pull_requests →
    stream_comments → publish_profiles → complete

``failed`` and ``cancelled`` end an import from any phase. Streaming phases
hold one page of host data at a time; only the id maps in
:class:`ImportCursor` survive a page. Whatever was queued is flushed before
:meth:`ImportPipeline.run` returns, whichever way it ends.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

import structlog

from relaysync.core.config import SyncSettings
from relaysync.core.logging import import_log_context
from relaysync.core.errors import (
    CancellationRequested,
    ConversionError,
    HostNotFoundError,
    OwnershipError,
    TransientHostError,
)
from relaysync.engines.importer import convert
from relaysync.engines.importer.cancel import CancelToken
from relaysync.engines.importer.convert import RepoContext
from relaysync.engines.importer.cursor import ImportCursor
from relaysync.engines.importer.models import (
    ImportPhase,
    ImportRequest,
    ImportResult,
)
from relaysync.engines.importer.progress import ImportProgressTracker, ProgressCallback
from relaysync.engines.providers import (
    HostProvider,
    ProviderKind,
    RepoLocator,
    create_provider,
    detect_provider,
    iter_pages,
)
from relaysync.engines.publisher import BatchPublisher, PublishSummary
from relaysync.engines.rate_limiter import RateLimiter
from relaysync.models.event import Event, EventKind, UnsignedEvent, repo_address
from relaysync.models.host import CommentTarget, HostRepo, HostUser, Page
from relaysync.models.ports import RelayTransport, Signer

log = structlog.get_logger("relaysync.engine")

ProviderFactory = Callable[[RepoLocator, ImportRequest], HostProvider]
PublisherFactory = Callable[[Sequence[str]], BatchPublisher]

COUNT_KEYS = ("repos", "issues", "pull_requests", "comments", "statuses", "profiles", "skipped")


class _ImportRun:
    """Mutable state of one pipeline invocation."""

    def __init__(
        self, request: ImportRequest, tracker: ImportProgressTracker, counts: dict[str, int]
    ) -> None:
        self.request = request
        self.tracker = tracker
        self.counts = counts
        self.cursor = ImportCursor()
        self.warnings: list[str] = []
        self.publisher: BatchPublisher | None = None
        self.provider: HostProvider | None = None
        self.locator: RepoLocator | None = None
        self.ctx: RepoContext | None = None
        self.ended_in: ImportPhase | None = None


class ImportPipeline:
    """Runs imports; one instance can serve many concurrent imports.

    The :class:`RateLimiter` is shared by every import started from the same
    pipeline, so the quota of a host is tracked across all of them. Each
    import gets its own cursor and its own publisher queue.
    """

    def __init__(
        self,
        signer: Signer,
        transport: RelayTransport,
        relays: Sequence[str] = (),
        settings: SyncSettings | None = None,
        *,
        limiter: RateLimiter | None = None,
        provider_factory: ProviderFactory | None = None,
        publisher_factory: PublisherFactory | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings or SyncSettings()
        self._signer = signer
        self._transport = transport
        self._relays = list(relays)
        self.limiter = limiter or RateLimiter(self._settings)
        self._provider_factory = provider_factory or self._default_provider
        self._publisher_factory = publisher_factory or self._default_publisher
        self._clock = clock
        self._sleep = sleep

    @property
    def settings(self) -> SyncSettings:
        return self._settings

    # ── public ─────────────────────────────────────────────────────────────

    async def run(
        self,
        request: ImportRequest | dict[str, Any],
        *,
        progress: ProgressCallback | None = None,
        cancel: CancelToken | None = None,
    ) -> ImportResult:
        """Run one import to its end and describe how it ended.

        Fatal errors do not propagate: they end the import with
        ``status="failed"``, the last completed phase and the partial counts.
        Invalid requests raise ``pydantic.ValidationError`` before anything
        starts.
        """
        req = ImportRequest.model_validate(request)
        token = cancel or CancelToken()
        counts = dict.fromkeys(COUNT_KEYS, 0)
        tracker = ImportProgressTracker(counts)
        if progress is not None:
            tracker.callbacks.append(progress)
        run = _ImportRun(req, tracker, counts)

        status = "completed"
        error: str | None = None
        with import_log_context(req.url):
            try:
                await self._run_phases(run, token)
            except CancellationRequested as exc:
                status, error = "cancelled", str(exc)
                self._end(run, ImportPhase.CANCELLED, error)
                log.info("import.cancelled", phase=_phase_name(run), reason=error)
            except Exception as exc:
                status, error = "failed", f"{type(exc).__name__}: {exc}"
                self._end(run, ImportPhase.FAILED, error)
                log.error("import.phase_failed", phase=_phase_name(run), error=error)
            finally:
                publish = await self._close(run)

        if status == "completed":
            tracker.finish(counts["issues"])
        else:
            tracker.fail(_phase_name(run), error or status)

        result = ImportResult(
            status=status,
            url=req.url,
            repo_address=run.ctx.address if run.ctx else None,
            last_completed_phase=run.cursor.last_completed_phase,
            error=error,
            counts=dict(counts),
            warnings=list(run.warnings),
            publish=publish,
            phases=tracker.outcomes(),
        )
        log.info(
            "import.finished",
            url=req.url,
            status=status,
            published=publish.published,
            publish_failed=publish.failed,
            **counts,
        )
        return result

    # ── phases ─────────────────────────────────────────────────────────────

    async def _run_phases(self, run: _ImportRun, token: CancelToken) -> None:
        req = run.request

        self._enter(run, token, ImportPhase.PARSE_AND_DETECT)
        locator = detect_provider(req.url, req.provider)
        run.locator = locator
        provider = self._provider_factory(locator, req)
        run.provider = provider
        detected = f"{locator.kind.value}:{locator.full_name}"
        self._complete(run, ImportPhase.PARSE_AND_DETECT, detected)

        self._enter(run, token, ImportPhase.VALIDATE)
        user = await provider.get_user()
        source = await provider.get_repo(locator.owner, locator.name)
        self._complete(run, ImportPhase.VALIDATE, f"authenticated as {user.login}")

        metadata_repo = await self._fork_if_needed(run, token, provider, user, source)

        self._enter(run, token, ImportPhase.FETCH_REPO_METADATA)
        if metadata_repo is not source:
            metadata_repo = await provider.get_repo(metadata_repo.owner, metadata_repo.name)
        identifier = req.identifier or metadata_repo.name
        relays = tuple(req.relays or self._relays)
        run.ctx = RepoContext(
            pubkey=self._signer.pubkey,
            identifier=identifier,
            address=repo_address(self._signer.pubkey, identifier),
            relays=relays,
            euc=req.earliest_unique_commit,
        )
        run.publisher = self._publisher_factory(relays)
        self._complete(run, ImportPhase.FETCH_REPO_METADATA, metadata_repo.full_name)

        self._enter(run, token, ImportPhase.PUBLISH_REPO_EVENTS)
        await self._publish(
            run,
            convert.repo_announcement(metadata_repo, run.ctx, created_at=self._now()),
        )
        run.counts["repos"] += 1
        await self._end_phase(run, ImportPhase.PUBLISH_REPO_EVENTS, "1 announcement")

        if req.import_issues:
            await self._stream_issues(run, token, locator)
        else:
            self._skip(run, ImportPhase.STREAM_ISSUES, "disabled")

        if req.import_pull_requests:
            await self._stream_pull_requests(run, token, locator)
        else:
            self._skip(run, ImportPhase.STREAM_PULL_REQUESTS, "disabled")

        if req.import_comments:
            await self._stream_comments(run, token, locator)
        else:
            self._skip(run, ImportPhase.STREAM_COMMENTS, "disabled")

        if req.import_profiles:
            self._enter(run, token, ImportPhase.PUBLISH_PROFILES)
            await self._publish(run, convert.profile_event(user, created_at=self._now()))
            run.counts["profiles"] += 1
            await self._end_phase(run, ImportPhase.PUBLISH_PROFILES, user.login)
        else:
            self._skip(run, ImportPhase.PUBLISH_PROFILES, "disabled")

        token.raise_if_cancelled()
        run.cursor.advance(ImportPhase.COMPLETE)
        run.cursor.mark_completed()

    async def _fork_if_needed(
        self,
        run: _ImportRun,
        token: CancelToken,
        provider: HostProvider,
        user: HostUser,
        source: HostRepo,
    ) -> HostRepo:
        """Repository whose metadata gets announced: the source or the user's fork."""
        if user.login.lower() == source.owner.lower():
            self._skip(run, ImportPhase.FORK_IF_NEEDED, "source is owned")
            return source

        existing = await self._existing_fork(provider, user.login, source)
        if existing is not None:
            self._skip(run, ImportPhase.FORK_IF_NEEDED, f"already forked as {existing.full_name}")
            return existing

        if not run.request.allow_fork:
            raise OwnershipError(
                f"{source.full_name} is not owned by {user.login} and forking is not allowed"
            )

        self._enter(run, token, ImportPhase.FORK_IF_NEEDED)
        fork = await provider.fork(source.owner, source.name)
        ready = await self._wait_for_fork(provider, fork.owner or user.login, fork.name, token)
        self._complete(run, ImportPhase.FORK_IF_NEEDED, f"forked as {ready.full_name}")
        return ready

    async def _existing_fork(
        self, provider: HostProvider, login: str, source: HostRepo
    ) -> HostRepo | None:
        try:
            candidate = await provider.get_repo(login, source.name)
        except HostNotFoundError:
            return None
        if not candidate.is_fork:
            return None
        parent = candidate.parent_full_name
        if parent is not None and parent.lower() != source.full_name.lower():
            return None
        return candidate

    async def _wait_for_fork(
        self, provider: HostProvider, owner: str, name: str, token: CancelToken
    ) -> HostRepo:
        attempts = self._settings.fork_poll_attempts
        for attempt in range(1, attempts + 1):
            token.raise_if_cancelled()
            try:
                return await provider.get_repo(owner, name)
            except HostNotFoundError:
                log.debug("import.fork_pending", owner=owner, name=name, attempt=attempt)
            if attempt < attempts:
                await self._sleep(self._settings.fork_poll_interval)
        raise TransientHostError("fork_not_ready", attempts)

    async def _stream_issues(
        self, run: _ImportRun, token: CancelToken, locator: RepoLocator
    ) -> None:
        phase = ImportPhase.STREAM_ISSUES
        self._enter(run, token, phase)
        provider, ctx = _streaming_state(run)

        async def fetch(number: int) -> Page[Any]:
            token.raise_if_cancelled()
            return await provider.list_issues(locator.owner, locator.name, number)

        async for page in iter_pages(fetch):
            run.cursor.page = page.number
            self._skip_items(run, phase, page)
            for issue in page.items:
                token.raise_if_cancelled()
                try:
                    unsigned = convert.issue_event(issue, ctx, now=self._now())
                except ConversionError as exc:
                    self._skip_item(run, phase, exc)
                    continue
                event = await self._publish(run, unsigned)
                run.cursor.issue_event_ids[issue.number] = event.id
                run.counts["issues"] += 1
                if issue.state == "closed":
                    closed_at = convert.to_timestamp(issue.closed_at, event.created_at)
                    await self._publish(
                        run,
                        convert.status_event(
                            EventKind.STATUS_CLOSED, event.id, ctx, created_at=closed_at
                        ),
                    )
                    run.counts["statuses"] += 1
            run.tracker.page_done(phase, run.counts["issues"])
        await self._end_phase(run, phase, f"{run.counts['issues']} issues")

    async def _stream_pull_requests(
        self, run: _ImportRun, token: CancelToken, locator: RepoLocator
    ) -> None:
        phase = ImportPhase.STREAM_PULL_REQUESTS
        self._enter(run, token, phase)
        provider, ctx = _streaming_state(run)

        async def fetch(number: int) -> Page[Any]:
            token.raise_if_cancelled()
            return await provider.list_pull_requests(locator.owner, locator.name, number)

        async for page in iter_pages(fetch):
            run.cursor.page = page.number
            self._skip_items(run, phase, page)
            for pr in page.items:
                token.raise_if_cancelled()
                try:
                    unsigned = convert.pull_request_event(pr, ctx, now=self._now())
                except ConversionError as exc:
                    self._skip_item(run, phase, exc)
                    continue
                event = await self._publish(run, unsigned)
                run.cursor.pr_event_ids[pr.number] = event.id
                run.counts["pull_requests"] += 1
                status = _pull_request_status(pr.state, pr.is_draft)
                if status is not None:
                    when = pr.merged_at or pr.closed_at
                    await self._publish(
                        run,
                        convert.status_event(
                            status,
                            event.id,
                            ctx,
                            created_at=convert.to_timestamp(when, event.created_at),
                            content=pr.merge_commit_sha or "",
                        ),
                    )
                    run.counts["statuses"] += 1
            run.tracker.page_done(phase, run.counts["pull_requests"])
        await self._end_phase(run, phase, f"{run.counts['pull_requests']} pull requests")

    async def _stream_comments(
        self, run: _ImportRun, token: CancelToken, locator: RepoLocator
    ) -> None:
        phase = ImportPhase.STREAM_COMMENTS
        self._enter(run, token, phase)
        provider, ctx = _streaming_state(run)

        targets: list[tuple[CommentTarget, str, EventKind]] = [
            (CommentTarget("issue", number), event_id, EventKind.ISSUE)
            for number, event_id in run.cursor.issue_event_ids.items()
        ]
        targets += [
            (CommentTarget("pull", number), event_id, EventKind.PULL_REQUEST)
            for number, event_id in run.cursor.pr_event_ids.items()
        ]

        for target, root_id, root_kind in targets:

            async def fetch(number: int, target: CommentTarget = target) -> Page[Any]:
                token.raise_if_cancelled()
                return await provider.list_comments(locator.owner, locator.name, target, number)

            async for page in iter_pages(fetch):
                run.cursor.page = page.number
                self._skip_items(run, phase, page)
                for comment in page.items:
                    token.raise_if_cancelled()
                    parent_id = None
                    if comment.in_reply_to:
                        parent_id = run.cursor.comment_event_ids.get(comment.in_reply_to)
                    try:
                        unsigned = convert.comment_event(
                            comment,
                            ctx,
                            root_id=root_id,
                            root_kind=root_kind,
                            parent_id=parent_id,
                            now=self._now(),
                        )
                    except ConversionError as exc:
                        self._skip_item(run, phase, exc)
                        continue
                    event = await self._publish(run, unsigned)
                    run.cursor.comment_event_ids[comment.id] = event.id
                    run.counts["comments"] += 1
                run.tracker.page_done(phase, run.counts["comments"])
        await self._end_phase(run, phase, f"{run.counts['comments']} comments")

    # ── helpers ────────────────────────────────────────────────────────────

    async def _publish(self, run: _ImportRun, unsigned: UnsignedEvent) -> Event:
        event = await self._signer.sign(unsigned)
        await _publisher(run).enqueue(event)
        return event

    def _enter(self, run: _ImportRun, token: CancelToken, phase: ImportPhase) -> None:
        token.raise_if_cancelled()
        run.cursor.advance(phase)
        run.tracker.start_phase(phase)
        log.debug("import.phase_started", phase=phase.value)

    def _complete(self, run: _ImportRun, phase: ImportPhase, detail: str = "") -> None:
        run.cursor.mark_completed()
        run.tracker.complete_phase(phase, detail)

    async def _end_phase(self, run: _ImportRun, phase: ImportPhase, detail: str) -> None:
        """Flush everything queued during *phase*, then mark it complete."""
        publisher = _publisher(run)
        await publisher.flush_all()
        if publisher.summary.failed:
            detail = f"{detail}, {publisher.summary.failed} publish failures so far"
        self._complete(run, phase, detail)

    def _skip(self, run: _ImportRun, phase: ImportPhase, reason: str) -> None:
        run.cursor.advance(phase)
        run.cursor.mark_completed()
        run.tracker.skip_phase(phase, reason)

    def _skip_item(self, run: _ImportRun, phase: ImportPhase, exc: ConversionError) -> None:
        run.counts["skipped"] += 1
        run.warnings.append(str(exc))
        log.warning(
            "import.item_skipped",
            phase=phase.value,
            item_kind=exc.item_kind,
            item_id=exc.item_id,
            error=str(exc),
        )

    def _skip_items(self, run: _ImportRun, phase: ImportPhase, page: Page[Any]) -> None:
        for exc in page.skipped:
            self._skip_item(run, phase, exc)

    def _end(self, run: _ImportRun, terminal: ImportPhase, error: str) -> None:
        if run.cursor.phase is not None:
            run.tracker.fail_phase(run.cursor.phase, error)
        run.ended_in = run.cursor.phase
        run.cursor.advance(terminal)

    async def _close(self, run: _ImportRun) -> PublishSummary:
        """Flush what is still queued and release the provider."""
        summary = PublishSummary()
        try:
            if run.publisher is not None:
                await run.publisher.flush_all()
                summary = run.publisher.summary
        finally:
            if run.provider is not None:
                await run.provider.close()
        return summary

    def _now(self) -> int:
        return int(self._clock())

    def _default_provider(self, locator: RepoLocator, request: ImportRequest) -> HostProvider:
        if locator.kind is ProviderKind.RELAY:
            return create_provider(
                locator.kind,
                transport=self._transport,
                relays=request.relays or self._relays,
                pubkey=self._signer.pubkey,
                settings=self._settings,
            )
        return create_provider(
            locator.kind,
            token=request.token,
            limiter=self.limiter,
            base_url=locator.api_base_url,
            settings=self._settings,
        )

    def _default_publisher(self, relays: Sequence[str]) -> BatchPublisher:
        return BatchPublisher(self._transport, relays, self._settings)


def _publisher(run: _ImportRun) -> BatchPublisher:
    if run.publisher is None:
        raise RuntimeError("no publisher before fetch_repo_metadata has run")
    return run.publisher


def _streaming_state(run: _ImportRun) -> tuple[HostProvider, RepoContext]:
    if run.provider is None or run.ctx is None:
        raise RuntimeError("streaming phase entered before the repository was resolved")
    return run.provider, run.ctx


def _phase_name(run: _ImportRun) -> str:
    phase = run.ended_in or run.cursor.phase
    return phase.value if phase is not None else "not_started"


def _pull_request_status(state: str, is_draft: bool) -> EventKind | None:
    if state == "merged":
        return EventKind.STATUS_APPLIED
    if state == "closed":
        return EventKind.STATUS_CLOSED
    if is_draft:
        return EventKind.STATUS_DRAFT
    return None
