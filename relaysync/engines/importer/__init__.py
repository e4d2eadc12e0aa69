"""Import pipeline engine: host repository to signed relay events."""

from relaysync.engines.importer.cancel import CancelToken
from relaysync.engines.importer.convert import RepoContext
from relaysync.engines.importer.cursor import ImportCursor
from relaysync.engines.importer.models import (
    PHASE_ORDER,
    ImportPhase,
    ImportProgress,
    ImportRequest,
    ImportResult,
    PhaseOutcome,
)
from relaysync.engines.importer.pipeline import ImportPipeline
from relaysync.engines.importer.progress import ImportProgressTracker
from relaysync.engines.importer.runner import ImportRunner

__all__ = [
    "PHASE_ORDER",
    "CancelToken",
    "ImportCursor",
    "ImportPhase",
    "ImportPipeline",
    "ImportProgress",
    "ImportProgressTracker",
    "ImportRequest",
    "ImportResult",
    "ImportRunner",
    "PhaseOutcome",
    "RepoContext",
]
