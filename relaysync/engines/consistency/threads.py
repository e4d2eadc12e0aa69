"""Issue / patch thread assembly."""

from __future__ import annotations

from collections.abc import Iterable

from relaysync.engines.consistency.models import Thread
from relaysync.models.event import STATUS_KINDS, Event


def targets_root(event: Event, root_id: str) -> bool:
    """True when the scope tag of *event* names *root_id* directly.

    The scope tag is the NIP-22 uppercase ``E`` tag, or a lowercase ``e`` tag
    carrying the ``root`` marker.
    """
    for tag in event.tags:
        if len(tag) < 2 or tag[1] != root_id:
            continue
        if tag[0] == "E":
            return True
        if tag[0] == "e" and len(tag) > 3 and tag[3] == "root":
            return True
    return False


def _parent_comment(event: Event) -> str | None:
    return event.tag_value("e")


def _dedupe(events: Iterable[Event]) -> dict[str, Event]:
    seen: dict[str, Event] = {}
    for event in events:
        seen.setdefault(event.id, event)
    return seen


def assemble_thread(
    root_id: str,
    candidate_comments: Iterable[Event],
    statuses: Iterable[Event] = (),
    root: Event | None = None,
    include_replies: bool = False,
) -> Thread:
    """Root plus the comments scoped to it, deduplicated by id.

    With *include_replies*, comments that reply to an already included
    comment are pulled in as well, even if their own scope tag is missing.
    """
    candidates = _dedupe(candidate_comments)
    included = {eid: ev for eid, ev in candidates.items() if targets_root(ev, root_id)}

    if include_replies:
        changed = True
        while changed:
            changed = False
            for eid, ev in candidates.items():
                if eid not in included and _parent_comment(ev) in included:
                    included[eid] = ev
                    changed = True

    status_events = [
        ev
        for ev in _dedupe(statuses).values()
        if ev.kind in STATUS_KINDS and root_id in ev.tag_values("e")
    ]
    return Thread(
        root_id=root_id,
        root=root,
        comments=tuple(sorted(included.values(), key=lambda e: (e.created_at, e.id))),
        statuses=tuple(sorted(status_events, key=lambda e: (e.created_at, e.id))),
    )
