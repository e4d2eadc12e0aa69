"""Progress tracking for the import pipeline."""

from __future__ import annotations

import dataclasses
import time
from collections.abc import Callable

import structlog

from relaysync.engines.importer.models import (
    ImportPhase,
    ImportProgress,
    PhaseOutcome,
    PhaseStatus,
)

log = structlog.get_logger("relaysync.engine")

ProgressCallback = Callable[[ImportProgress], None]


class ImportProgressTracker:
    """Record phase outcomes and emit :class:`ImportProgress` messages.

    Messages go out at phase transitions, at page boundaries and once at the
    end. A failing callback is logged and never interrupts the import.
    """

    def __init__(self, counts: dict[str, int], clock: Callable[[], float] = time.monotonic) -> None:
        self.callbacks: list[ProgressCallback] = []
        self.last_message: ImportProgress | None = None
        self._outcomes: dict[ImportPhase, PhaseOutcome] = {}
        self._counts = counts
        self._clock = clock

    def start_phase(self, phase: ImportPhase) -> None:
        self._outcomes[phase] = PhaseOutcome(phase, "running", started_at=self._clock())
        self._emit(ImportProgress(step=phase.value))

    def complete_phase(self, phase: ImportPhase, detail: str = "") -> None:
        self._close(phase, "completed", detail=detail)

    def fail_phase(self, phase: ImportPhase, error: str) -> None:
        self._close(phase, "failed", error=error)

    def skip_phase(self, phase: ImportPhase, reason: str) -> None:
        self._outcomes[phase] = PhaseOutcome(phase, "skipped", detail=reason)
        self._emit(ImportProgress(step=phase.value))

    def page_done(self, phase: ImportPhase, current: int, total: int | None = None) -> None:
        self._emit(ImportProgress(step=phase.value, current=current, total=total))

    def finish(self, current: int) -> None:
        self._emit(
            ImportProgress(
                step=ImportPhase.COMPLETE.value,
                current=current,
                total=current,
                is_complete=True,
            )
        )

    def fail(self, step: str, error: str) -> None:
        self._emit(ImportProgress(step=step, error=error))

    def outcomes(self) -> list[PhaseOutcome]:
        """Copies of the phase outcomes, in the order the phases ran."""
        return [dataclasses.replace(o) for o in self._outcomes.values()]

    def _close(
        self, phase: ImportPhase, status: PhaseStatus, *, detail: str = "", error: str | None = None
    ) -> None:
        outcome = self._outcomes.get(phase)
        # A phase that never started (or was skipped) keeps its record as is.
        if outcome is None or outcome.status != "running":
            return
        outcome.status = status
        outcome.ended_at = self._clock()
        outcome.detail = detail
        outcome.error = error

    def _emit(self, message: ImportProgress) -> None:
        message.counts = dict(self._counts)
        self.last_message = message
        for cb in self.callbacks:
            try:
                cb(message)
            except Exception:
                log.debug("import.progress_callback_error", step=message.step, exc_info=True)
