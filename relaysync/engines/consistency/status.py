"""Status precedence for issues and patches."""

from __future__ import annotations

from collections.abc import Iterable

from relaysync.engines.consistency.models import StatusRecord, StatusState
from relaysync.models.event import Event, EventKind

STATUS_BY_KIND: dict[int, StatusState] = {
    EventKind.STATUS_OPEN: "open",
    EventKind.STATUS_APPLIED: "applied",
    EventKind.STATUS_CLOSED: "closed",
    EventKind.STATUS_DRAFT: "draft",
}

# Only breaks exact timestamp ties; never overrides recency.
STATUS_RANK: dict[StatusState, int] = {"draft": 0, "open": 1, "applied": 2, "closed": 3}


def resolve_status(
    events: Iterable[Event],
    authorized_keys: Iterable[str],
    subject_author: str | None = None,
    subject_id: str | None = None,
) -> StatusRecord:
    """Effective status of one subject.

    Only status events by the subject's author or an authorized key count;
    without any the subject is implicitly open. Among those, the newest wins,
    then the higher kind rank, then the greater event id.
    """
    authorized = set(authorized_keys)
    if subject_author:
        authorized.add(subject_author)

    best: Event | None = None
    best_key: tuple[int, int, str] | None = None
    for event in events:
        state = STATUS_BY_KIND.get(event.kind)
        if state is None or event.pubkey not in authorized:
            continue
        if subject_id is not None and subject_id not in event.tag_values("e"):
            continue
        key = (event.created_at, STATUS_RANK[state], event.id)
        if best_key is None or key > best_key:
            best, best_key = event, key

    if best is None:
        return StatusRecord(state="open", event=None, is_default=True)
    return StatusRecord(state=STATUS_BY_KIND[best.kind], event=best)
