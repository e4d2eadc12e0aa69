"""Data models for the import pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from relaysync.engines.providers import ProviderKind
from relaysync.engines.publisher import PublishSummary


class ImportPhase(str, Enum):
    PARSE_AND_DETECT = "parse_and_detect"
    VALIDATE = "validate"
    FORK_IF_NEEDED = "fork_if_needed"
    FETCH_REPO_METADATA = "fetch_repo_metadata"
    PUBLISH_REPO_EVENTS = "publish_repo_events"
    STREAM_ISSUES = "stream_issues"
    STREAM_PULL_REQUESTS = "stream_pull_requests"
    STREAM_COMMENTS = "stream_comments"
    PUBLISH_PROFILES = "publish_profiles"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"


PHASE_ORDER: tuple[ImportPhase, ...] = (
    ImportPhase.PARSE_AND_DETECT,
    ImportPhase.VALIDATE,
    ImportPhase.FORK_IF_NEEDED,
    ImportPhase.FETCH_REPO_METADATA,
    ImportPhase.PUBLISH_REPO_EVENTS,
    ImportPhase.STREAM_ISSUES,
    ImportPhase.STREAM_PULL_REQUESTS,
    ImportPhase.STREAM_COMMENTS,
    ImportPhase.PUBLISH_PROFILES,
    ImportPhase.COMPLETE,
)

TERMINAL_PHASES = frozenset({ImportPhase.COMPLETE, ImportPhase.FAILED, ImportPhase.CANCELLED})


class ImportRequest(BaseModel):
    """One repository to import, validated at the pipeline boundary."""

    model_config = ConfigDict(frozen=True)

    url: str
    token: str | None = None
    provider: ProviderKind | None = None  # forces the variant for unknown hosts
    identifier: str | None = None  # announcement "d" tag; defaults to the repo name
    earliest_unique_commit: str | None = Field(default=None, pattern=r"^[0-9a-f]{40}$")
    relays: list[str] = Field(default_factory=list)
    allow_fork: bool = True
    import_issues: bool = True
    import_pull_requests: bool = True
    import_comments: bool = True
    # Publishing kind 0 replaces the signer's own profile, so it is opt-in.
    import_profiles: bool = False

    @field_validator("url")
    @classmethod
    def _url_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("url must not be empty")
        return value


@dataclass
class ImportProgress:
    """Progress message; counts are literal, never percentages."""

    step: str
    current: int | None = None
    total: int | None = None
    is_complete: bool = False
    error: str | None = None
    counts: dict[str, int] = field(default_factory=dict)


PhaseStatus = Literal["running", "completed", "failed", "skipped"]


@dataclass
class PhaseOutcome:
    """How one phase of an import went; skipped phases never start."""

    phase: ImportPhase
    status: PhaseStatus
    detail: str = ""
    error: str | None = None
    started_at: float | None = None
    ended_at: float | None = None

    @property
    def duration(self) -> float | None:
        if self.started_at is None or self.ended_at is None:
            return None
        return round(self.ended_at - self.started_at, 3)


ImportStatus = Literal["completed", "failed", "cancelled"]


@dataclass
class ImportResult:
    status: ImportStatus
    url: str
    repo_address: str | None = None
    last_completed_phase: ImportPhase | None = None
    error: str | None = None
    counts: dict[str, int] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    publish: PublishSummary = field(default_factory=PublishSummary)
    phases: list[PhaseOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == "completed"
