"""Queue converted events and push them to relays in paced batches."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence

import structlog

from relaysync.core.config import SyncSettings
from relaysync.core.errors import PublishError
from relaysync.engines.publisher.models import PublishSummary
from relaysync.models.event import Event
from relaysync.models.ports import RelayTransport

log = structlog.get_logger("relaysync.engine")

RelayKey = frozenset[str]


class BatchPublisher:
    """Write side of the sync engine.

    One pending queue is kept per target relay set. Reaching
    ``relay_batch_size`` triggers a flush from :meth:`enqueue`. A flush fans
    out in parallel (at most *max_parallel* publishes in flight) and waits for
    every publish to settle, so one rejected event never aborts its siblings.
    Batches are serialized: a batch starts no earlier than
    ``relay_batch_delay`` after the previous batch finished. Failed publishes
    are counted, never retried.
    """

    def __init__(
        self,
        transport: RelayTransport,
        relays: Sequence[str],
        settings: SyncSettings | None = None,
        *,
        max_parallel: int | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings or SyncSettings()
        self._transport = transport
        self._default_relays: RelayKey = frozenset(relays)
        self._max_parallel = max_parallel or self._settings.publish_concurrency
        self._clock = clock
        self._sleep = sleep
        self._queues: dict[RelayKey, list[Event]] = {}
        self._batch_lock = asyncio.Lock()
        self._last_batch_ended_at: float | None = None
        self._summary = PublishSummary()
        self.auto_flushes = 0

    @property
    def summary(self) -> PublishSummary:
        """Totals since construction."""
        return self._summary

    def pending(self, relays: Sequence[str] | None = None) -> int:
        return len(self._queues.get(self._key(relays), []))

    # ── public ─────────────────────────────────────────────────────────────

    async def enqueue(self, event: Event, relays: Sequence[str] | None = None) -> None:
        key = self._key(relays)
        queue = self._queues.setdefault(key, [])
        queue.append(event)
        if len(queue) >= self._settings.relay_batch_size:
            self.auto_flushes += 1
            await self._flush_key(key)

    async def flush(self, relays: Sequence[str] | None = None) -> PublishSummary:
        """Publish everything queued for one relay set."""
        return await self._flush_key(self._key(relays))

    async def flush_all(self) -> PublishSummary:
        """Publish every pending queue; called at the end of each phase."""
        result = PublishSummary()
        for key in list(self._queues):
            result.add(await self._flush_key(key))
        return result

    # ── internal ───────────────────────────────────────────────────────────

    def _key(self, relays: Sequence[str] | None) -> RelayKey:
        return self._default_relays if relays is None else frozenset(relays)

    async def _flush_key(self, key: RelayKey) -> PublishSummary:
        result = PublishSummary()
        async with self._batch_lock:
            queue = self._queues.get(key)
            while queue:
                size = self._settings.relay_batch_size
                batch, queue[:] = queue[:size], queue[size:]
                await self._wait_for_batch_slot()
                try:
                    result.add(await self._publish_batch(batch, sorted(key)))
                finally:
                    self._last_batch_ended_at = self._clock()
        self._summary.add(result)
        return result

    async def _wait_for_batch_slot(self) -> None:
        if self._last_batch_ended_at is None:
            return
        wait = self._last_batch_ended_at + self._settings.relay_batch_delay - self._clock()
        if wait > 0:
            await self._sleep(wait)

    async def _publish_batch(self, batch: list[Event], relays: list[str]) -> PublishSummary:
        sem = asyncio.Semaphore(self._max_parallel)

        async def _publish_one(event: Event) -> None:
            async with sem:
                outcome = await self._transport.publish(event, relays)
            if not outcome.ok:
                raise PublishError(event.id, list(outcome.errors))

        results = await asyncio.gather(*(_publish_one(e) for e in batch), return_exceptions=True)

        summary = PublishSummary(batches=1)
        for event, res in zip(batch, results):
            if res is None:
                summary.published += 1
                continue
            if not isinstance(res, Exception):
                raise res
            error = str(res) if isinstance(res, PublishError) else f"{event.id}: {res}"
            summary.failed += 1
            summary.errors.append(error)
            log.warning("publish.event_failed", event_id=event.id, kind=event.kind, error=error)
        log.info(
            "publish.batch_done",
            relays=len(relays),
            size=len(batch),
            published=summary.published,
            failed=summary.failed,
        )
        return summary
