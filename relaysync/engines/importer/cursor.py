"""The only state an import keeps across pages."""

from __future__ import annotations

from dataclasses import dataclass, field

from relaysync.engines.importer.models import PHASE_ORDER, TERMINAL_PHASES, ImportPhase


@dataclass
class ImportCursor:
    """Current phase and page plus the host id to event id maps.

    Issue and pull request maps are keyed by the host's item number, the
    comment map by the host's comment id. Raw page data is never kept here.
    """

    phase: ImportPhase | None = None
    page: int = 0
    issue_event_ids: dict[int, str] = field(default_factory=dict)
    pr_event_ids: dict[int, str] = field(default_factory=dict)
    comment_event_ids: dict[str, str] = field(default_factory=dict)
    last_completed_phase: ImportPhase | None = None

    def advance(self, phase: ImportPhase) -> None:
        """Move to *phase*; phases only move forward and never re-enter."""
        if self.phase in TERMINAL_PHASES:
            raise RuntimeError(f"import already ended in {self.phase.value}")
        if phase not in (ImportPhase.FAILED, ImportPhase.CANCELLED) and self.phase is not None:
            if PHASE_ORDER.index(phase) <= PHASE_ORDER.index(self.phase):
                raise RuntimeError(f"cannot move from {self.phase.value} to {phase.value}")
        self.phase = phase
        self.page = 0

    def mark_completed(self) -> None:
        self.last_completed_phase = self.phase
