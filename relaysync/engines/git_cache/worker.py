"""Async request/response channel in front of a blocking git engine."""

from __future__ import annotations

import asyncio
import re
import threading
import uuid
from collections.abc import AsyncIterator, Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import structlog

from relaysync.core.errors import CancellationRequested
from relaysync.engines.git_cache.cache import DataLevel, RepoDataCache
from relaysync.engines.git_cache.engine import GitEngine, PushResult

log = structlog.get_logger("relaysync.engine")

GitOp = Literal["ensure_level", "fetch", "push"]

_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class GitProgress:
    """Out-of-band progress message for one request."""

    request_id: str
    repo_key: str
    phase: str
    loaded: int | None = None
    total: int | None = None


@dataclass
class GitRequest:
    """Handle for a submitted operation; ``await request`` yields its result."""

    id: str
    op: GitOp
    repo_key: str
    task: asyncio.Task[Any] = field(repr=False)
    cancel_event: threading.Event = field(default_factory=threading.Event, repr=False)

    def __await__(self):
        return self.task.__await__()


class GitWorker:
    """Runs git engine calls off the event loop.

    At most one operation per repository key is in flight; different keys run
    in parallel threads. Progress is published on :meth:`progress` and
    cancellation is a message (:meth:`cancel`) the engine observes between
    steps, never a thread interrupt.
    """

    def __init__(
        self,
        engine: GitEngine,
        workdir: Path,
        cache: RepoDataCache | None = None,
    ) -> None:
        self._engine = engine
        self._workdir = Path(workdir)
        self.cache = cache or RepoDataCache()
        self._locks: dict[str, asyncio.Lock] = {}
        self._requests: dict[str, GitRequest] = {}
        self._progress: asyncio.Queue[GitProgress | None] = asyncio.Queue()

    def repo_dir(self, repo_key: str) -> Path:
        return self._workdir / _UNSAFE_CHARS_RE.sub("_", repo_key)

    # ── request channel ────────────────────────────────────────────────────

    def submit_ensure_level(
        self, repo_key: str, url: str, level: DataLevel, request_id: str | None = None
    ) -> GitRequest:
        return self._submit(
            "ensure_level", repo_key, request_id, lambda req: self._ensure_level(req, url, level)
        )

    def submit_fetch(
        self,
        repo_key: str,
        refs: Sequence[str] = (),
        level: DataLevel = DataLevel.REFS,
        request_id: str | None = None,
    ) -> GitRequest:
        return self._submit(
            "fetch", repo_key, request_id, lambda req: self._fetch(req, list(refs), level)
        )

    def submit_push(
        self, repo_key: str, ref: str, force: bool = False, request_id: str | None = None
    ) -> GitRequest:
        return self._submit("push", repo_key, request_id, lambda req: self._push(req, ref, force))

    async def ensure_level(self, repo_key: str, url: str, level: DataLevel) -> bool:
        """Make sure *repo_key* has at least *level* locally; True if git ran."""
        return await self.submit_ensure_level(repo_key, url, level)

    async def fetch(
        self, repo_key: str, refs: Sequence[str] = (), level: DataLevel = DataLevel.REFS
    ) -> bool:
        """Fetch *refs* unless the cache already holds *level*; True if git ran."""
        return await self.submit_fetch(repo_key, refs, level)

    async def push(self, repo_key: str, ref: str, force: bool = False) -> PushResult:
        return await self.submit_push(repo_key, ref, force)

    def cancel(self, request_id: str) -> bool:
        """Ask a pending or running request to stop; False if it is unknown."""
        request = self._requests.get(request_id)
        if request is None:
            return False
        request.cancel_event.set()
        log.info("git.cancel_requested", request_id=request_id, repo_key=request.repo_key)
        return True

    async def progress(self) -> AsyncIterator[GitProgress]:
        """Progress messages of every request until :meth:`close`."""
        while True:
            message = await self._progress.get()
            if message is None:
                return
            yield message

    async def close(self) -> None:
        for request in list(self._requests.values()):
            request.cancel_event.set()
        pending = [r.task for r in self._requests.values()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._progress.put_nowait(None)

    # ── internal ───────────────────────────────────────────────────────────

    def _submit(
        self,
        op: GitOp,
        repo_key: str,
        request_id: str | None,
        run: Callable[[GitRequest], Any],
    ) -> GitRequest:
        rid = request_id or uuid.uuid4().hex
        holder: dict[str, GitRequest] = {}

        async def _guarded() -> Any:
            request = holder["request"]
            lock = self._locks.setdefault(repo_key, asyncio.Lock())
            try:
                async with lock:
                    if request.cancel_event.is_set():
                        raise CancellationRequested(f"git {op} {rid} cancelled before start")
                    return await run(request)
            except CancellationRequested:
                log.info("git.cancelled", request_id=rid, op=op, repo_key=repo_key)
                raise
            except Exception as exc:
                log.error("git.op_failed", request_id=rid, op=op, repo_key=repo_key, error=str(exc))
                raise
            finally:
                self._requests.pop(rid, None)

        task = asyncio.ensure_future(_guarded())
        request = GitRequest(id=rid, op=op, repo_key=repo_key, task=task)
        holder["request"] = request
        self._requests[rid] = request
        return request

    def _reporter(self, request: GitRequest) -> Callable[[str, int | None, int | None], None]:
        loop = asyncio.get_running_loop()

        def report(phase: str, loaded: int | None, total: int | None) -> None:
            message = GitProgress(request.id, request.repo_key, phase, loaded, total)
            loop.call_soon_threadsafe(self._progress.put_nowait, message)

        return report

    async def _ensure_level(self, request: GitRequest, url: str, level: DataLevel) -> bool:
        key = request.repo_key
        if self._cached(key, level):
            return False
        dest = self.repo_dir(key)
        progress = self._reporter(request)
        cancelled = request.cancel_event.is_set
        if self.cache.level(key) == DataLevel.NONE or not dest.exists():
            await asyncio.to_thread(self._engine.clone, url, dest, level, progress, cancelled)
        else:
            await asyncio.to_thread(self._engine.fetch, dest, [], level, progress, cancelled)
        new_level = self.cache.record_fetch(key, level)
        log.info("git.level_reached", repo_key=key, level=new_level.name)
        return True

    async def _fetch(self, request: GitRequest, refs: list[str], level: DataLevel) -> bool:
        if self._cached(request.repo_key, level):
            return False
        progress = self._reporter(request)
        await asyncio.to_thread(
            self._engine.fetch,
            self.repo_dir(request.repo_key),
            refs,
            level,
            progress,
            request.cancel_event.is_set,
        )
        self.cache.record_fetch(request.repo_key, level)
        return True

    def _cached(self, key: str, level: DataLevel) -> bool:
        if not self.cache.should_skip(key, level):
            return False
        cached = self.cache.level(key).name
        log.debug("git.skip", repo_key=key, cached=cached, requested=level.name)
        return True

    async def _push(self, request: GitRequest, ref: str, force: bool) -> PushResult:
        progress = self._reporter(request)
        result = await asyncio.to_thread(
            self._engine.push,
            self.repo_dir(request.repo_key),
            ref,
            force,
            progress,
            request.cancel_event.is_set,
        )
        if result.rejected or result.forced:
            # Local history no longer matches the remote.
            self.cache.invalidate(request.repo_key)
            log.warning(
                "git.cache_invalidated",
                repo_key=request.repo_key,
                ref=ref,
                rejected=result.rejected,
                forced=result.forced,
            )
        return result
