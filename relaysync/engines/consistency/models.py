"""Projections computed by the consistency reducers.

All of these are recomputed from the current event set on demand and are
never authoritative state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from relaysync.models.event import Event

StatusState = Literal["draft", "open", "applied", "closed"]
BranchChangeKind = Literal["added", "updated", "removed"]


@dataclass(frozen=True)
class RefHead:
    commit: str
    updated_at: int
    updated_by: str
    event_id: str


@dataclass(frozen=True)
class RepoState:
    """Merged ref heads of one repository."""

    refs: dict[str, RefHead] = field(default_factory=dict)
    head: str | None = None  # symbolic target, e.g. "refs/heads/main"
    head_event_id: str | None = None

    @property
    def branches(self) -> dict[str, str]:
        """Branch name (without ``refs/heads/``) to commit."""
        return {
            ref.removeprefix("refs/heads/"): h.commit
            for ref, h in self.refs.items()
            if ref.startswith("refs/heads/")
        }

    @property
    def tags(self) -> dict[str, str]:
        return {
            ref.removeprefix("refs/tags/"): h.commit
            for ref, h in self.refs.items()
            if ref.startswith("refs/tags/")
        }

    @property
    def head_commit(self) -> str | None:
        if self.head is None or self.head not in self.refs:
            return None
        return self.refs[self.head].commit


@dataclass(frozen=True)
class PatchNode:
    event: Event
    parent_ids: frozenset[str]
    child_ids: frozenset[str]
    is_root: bool
    is_revision: bool

    @property
    def id(self) -> str:
        return self.event.id


@dataclass(frozen=True)
class PatchGraph:
    """DAG of patches linked by their parent references.

    ``missing_parents`` maps a node to the parents it names that are not in
    the event set. ``order`` is a topological order (parents first) with
    ``(created_at, id)`` as the tie-break.
    """

    nodes: dict[str, PatchNode]
    roots: tuple[str, ...]
    orphans: tuple[str, ...]
    revisions: tuple[str, ...]
    missing_parents: dict[str, frozenset[str]]
    order: tuple[str, ...]

    def children(self, event_id: str) -> list[PatchNode]:
        node = self.nodes.get(event_id)
        if node is None:
            return []
        return [self.nodes[c] for c in sorted(node.child_ids)]


@dataclass(frozen=True)
class Thread:
    root_id: str
    root: Event | None
    comments: tuple[Event, ...]
    statuses: tuple[Event, ...] = ()


@dataclass(frozen=True)
class StatusRecord:
    state: StatusState
    event: Event | None = None
    is_default: bool = False


@dataclass(frozen=True)
class EffectiveLabelSet:
    flat: frozenset[str]
    by_namespace: dict[str, frozenset[str]]


@dataclass(frozen=True)
class BranchChange:
    name: str
    change: BranchChangeKind
    old_oid: str | None = None
    new_oid: str | None = None


@dataclass(frozen=True)
class RoleAssignments:
    assignees: frozenset[str] = frozenset()
    reviewers: frozenset[str] = frozenset()
