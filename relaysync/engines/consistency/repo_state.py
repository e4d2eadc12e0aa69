"""Repository ref state: authorized merge and branch diffs."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import TypeVar

from relaysync.engines.consistency.models import BranchChange, RefHead, RepoState
from relaysync.models.event import Event, EventKind

_SYMREF_PREFIX = "ref: "

E = TypeVar("E", bound=Event)


def merge_repo_state(
    events: Iterable[Event],
    maintainers: Iterable[str],
    repo_author: str | None = None,
) -> RepoState:
    """Merge repo-state events into one :class:`RepoState`.

    Only events by a maintainer or *repo_author* are eligible. Each ref takes
    the commit from the newest eligible event that names it. ``HEAD`` is
    resolved the same way, independently of the branch refs, and under the
    same authorization filter. Exact timestamp ties go to the greater id.
    """
    eligible = set(maintainers)
    if repo_author:
        eligible.add(repo_author)

    refs: dict[str, RefHead] = {}
    head: tuple[int, str, str] | None = None  # (created_at, event_id, target)

    for event in events:
        if event.kind != EventKind.REPO_STATE or event.pubkey not in eligible:
            continue
        for tag in event.tags:
            if len(tag) < 2 or not tag[1]:
                continue
            name, value = tag[0], tag[1]
            if name == "HEAD":
                target = value.removeprefix(_SYMREF_PREFIX).strip()
                candidate = (event.created_at, event.id, target)
                if head is None or candidate[:2] > head[:2]:
                    head = candidate
            elif name.startswith("refs/"):
                current = refs.get(name)
                if current is None or (event.created_at, event.id) > (
                    current.updated_at,
                    current.event_id,
                ):
                    refs[name] = RefHead(
                        commit=value,
                        updated_at=event.created_at,
                        updated_by=event.pubkey,
                        event_id=event.id,
                    )

    return RepoState(
        refs=dict(sorted(refs.items())),
        head=head[2] if head else None,
        head_event_id=head[1] if head else None,
    )


def diff_branch_heads(current: Mapping[str, str], remote: Mapping[str, str]) -> list[BranchChange]:
    """Changes that turn *current* branch heads into *remote* ones.

    Keys are ref names; the reported names drop the ``refs/heads/`` prefix.
    """
    updates: list[BranchChange] = []
    for ref, new_oid in remote.items():
        old_oid = current.get(ref)
        name = ref.removeprefix("refs/heads/")
        if not old_oid:
            updates.append(BranchChange(name, "added", new_oid=new_oid))
        elif old_oid != new_oid:
            updates.append(BranchChange(name, "updated", old_oid=old_oid, new_oid=new_oid))
    for ref, old_oid in current.items():
        if ref not in remote:
            name = ref.removeprefix("refs/heads/")
            updates.append(BranchChange(name, "removed", old_oid=old_oid))
    return updates


def branch_update_dedupe_key(repos: Mapping[str, Sequence[BranchChange]]) -> str:
    """Stable key for a set of per-repository branch updates.

    Used to avoid announcing the same batch of updates twice.
    """
    parts = []
    for repo_id, updates in repos.items():
        update_key = "|".join(
            f"{u.name}:{u.change}:{u.old_oid or ''}:{u.new_oid or ''}"
            for u in sorted(updates, key=lambda u: u.name)
        )
        parts.append(f"{repo_id}:{update_key}")
    return "||".join(sorted(parts))


def overlay_latest_repo_states(base: Mapping[str, E], optimistic: Mapping[str, E]) -> dict[str, E]:
    """Overlay locally published states on relay-sourced ones; newer or equal wins."""
    out = dict(base)
    for repo_id, state in optimistic.items():
        existing = out.get(repo_id)
        if existing is None or state.created_at >= existing.created_at:
            out[repo_id] = state
    return out
