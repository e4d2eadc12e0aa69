"""ImportRunner: several imports with bounded concurrency."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from typing import Any

import structlog

from relaysync.engines.importer.cancel import CancelToken
from relaysync.engines.importer.models import ImportProgress, ImportRequest, ImportResult
from relaysync.engines.importer.pipeline import ImportPipeline

log = structlog.get_logger("relaysync.engine")

RunnerProgress = Callable[[int, ImportProgress], None]


class ImportRunner:
    """Run a list of imports through one :class:`ImportPipeline`.

    Imports share the pipeline's rate limiter, so concurrent imports against
    the same host are paced together. Each import keeps its own cursor and
    publisher queue.
    """

    def __init__(self, pipeline: ImportPipeline, concurrency: int | None = None) -> None:
        self._pipeline = pipeline
        self._concurrency = concurrency or pipeline.settings.import_concurrency
        self._tokens: dict[int, CancelToken] = {}

    def cancel(self, index: int, reason: str = "import cancelled") -> bool:
        """Cancel the import at *index*; False if it is not running."""
        token = self._tokens.get(index)
        if token is None:
            return False
        token.cancel(reason)
        return True

    def cancel_all(self, reason: str = "import cancelled") -> None:
        for token in self._tokens.values():
            token.cancel(reason)

    async def run_all(
        self,
        requests: Sequence[ImportRequest | dict[str, Any]],
        progress: RunnerProgress | None = None,
    ) -> list[ImportResult]:
        """Run every request; results come back in request order."""
        sem = asyncio.Semaphore(self._concurrency)

        async def _run(index: int, request: ImportRequest | dict[str, Any]) -> ImportResult:
            token = CancelToken()
            self._tokens[index] = token
            callback = None
            if progress is not None:

                def callback(message: ImportProgress) -> None:
                    progress(index, message)

            try:
                async with sem:
                    return await self._pipeline.run(request, progress=callback, cancel=token)
            except Exception as exc:
                url = request.url if isinstance(request, ImportRequest) else request.get("url", "")
                log.error("import.runner_failed", index=index, url=url, error=str(exc))
                return ImportResult(
                    status="failed", url=str(url), error=f"{type(exc).__name__}: {exc}"
                )
            finally:
                self._tokens.pop(index, None)

        results = await asyncio.gather(*(_run(i, r) for i, r in enumerate(requests)))
        completed = sum(1 for r in results if r.ok)
        log.info("import.runner_done", total=len(results), completed=completed)
        return list(results)
