"""Patch DAG construction."""

from __future__ import annotations

import heapq
from collections import defaultdict
from collections.abc import Iterable

from relaysync.engines.consistency.models import PatchGraph, PatchNode
from relaysync.models.event import Event


def parent_ids(event: Event) -> frozenset[str]:
    """Parents declared by *event*.

    ``e`` tags marked ``reply`` win; without any, ``e`` tags marked ``root``
    are used. ``in-reply-to`` tags always count.
    """
    reply = [t[1] for t in event.tags_named("e") if len(t) > 3 and t[3] == "reply" and t[1]]
    if not reply:
        reply = [t[1] for t in event.tags_named("e") if len(t) > 3 and t[3] == "root" and t[1]]
    parents = set(reply)
    parents.update(v for v in event.tag_values("in-reply-to") if v)
    parents.discard(event.id)
    return frozenset(parents)


def build_patch_graph(events: Iterable[Event]) -> PatchGraph:
    """Link patches to their parents; nothing is dropped.

    A node without parents is a root only when tagged ``t root`` or
    ``t root-revision``; otherwise it is kept as an orphan.
    """
    by_id: dict[str, Event] = {}
    for event in events:
        by_id.setdefault(event.id, event)

    parents = {eid: parent_ids(ev) for eid, ev in by_id.items()}
    children: dict[str, set[str]] = defaultdict(set)
    for eid, pids in parents.items():
        for pid in pids:
            if pid in by_id:
                children[pid].add(eid)

    nodes: dict[str, PatchNode] = {}
    roots, orphans, revisions = [], [], []
    missing: dict[str, frozenset[str]] = {}
    for eid in sorted(by_id):
        event = by_id[eid]
        hashtags = set(event.tag_values("t"))
        is_revision = "root-revision" in hashtags
        is_root = is_revision or "root" in hashtags
        nodes[eid] = PatchNode(
            event=event,
            parent_ids=parents[eid],
            child_ids=frozenset(children.get(eid, ())),
            is_root=is_root,
            is_revision=is_revision,
        )
        if is_root:
            roots.append(eid)
        elif not parents[eid]:
            orphans.append(eid)
        if is_revision:
            revisions.append(eid)
        absent = frozenset(p for p in parents[eid] if p not in by_id)
        if absent:
            missing[eid] = absent

    return PatchGraph(
        nodes=nodes,
        roots=tuple(roots),
        orphans=tuple(orphans),
        revisions=tuple(revisions),
        missing_parents=missing,
        order=_topological_order(by_id, parents, children),
    )


def _topological_order(
    by_id: dict[str, Event],
    parents: dict[str, frozenset[str]],
    children: dict[str, set[str]],
) -> tuple[str, ...]:
    indegree = {eid: sum(1 for p in parents[eid] if p in by_id) for eid in by_id}
    ready = [(by_id[eid].created_at, eid) for eid, n in indegree.items() if n == 0]
    heapq.heapify(ready)
    order: list[str] = []
    while ready:
        _, eid = heapq.heappop(ready)
        order.append(eid)
        for child in children.get(eid, ()):
            indegree[child] -= 1
            if indegree[child] == 0:
                heapq.heappush(ready, (by_id[child].created_at, child))
    if len(order) < len(by_id):
        # Cycles: append the rest deterministically.
        placed = set(order)
        rest = sorted((by_id[e].created_at, e) for e in by_id if e not in placed)
        order.extend(eid for _, eid in rest)
    return tuple(order)
