"""NIP-32 label aggregation and label presentation helpers."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable

from relaysync.engines.consistency.models import EffectiveLabelSet, RoleAssignments
from relaysync.models.event import Event, EventKind, Tag, UnsignedEvent

DEFAULT_NAMESPACE = "ugc"
HASHTAG_NAMESPACE = "t"

STATUS_NS = "org.nostr.git.status"
TYPE_NS = "org.nostr.git.type"
AREA_NS = "org.nostr.git.area"
ROLE_NS = "org.nostr.git.role"
ROLES = ("assignee", "reviewer")

LABEL_GROUPS = ("Status", "Type", "Area", "Tags", "Role", "Other")
_GROUP_BY_NAMESPACE = {
    STATUS_NS: "Status",
    TYPE_NS: "Type",
    AREA_NS: "Area",
    HASHTAG_NAMESPACE: "Tags",
    ROLE_NS: "Role",
}


def _labels_from_tags(tags: Iterable[Tag]) -> list[tuple[str, str]]:
    """``(namespace, value)`` pairs from ``l`` tags (namespace defaults to ``ugc``)."""
    pairs = []
    for tag in tags:
        if tag[0] != "l" or len(tag) < 2 or not tag[1].strip():
            continue
        namespace = tag[2] if len(tag) > 2 and tag[2] else DEFAULT_NAMESPACE
        pairs.append((namespace, tag[1].strip()))
    return pairs


def _addresses(event: Event, subject_id: str) -> bool:
    return subject_id in event.tag_values("e") or subject_id in event.tag_values("a")


def effective_labels(
    subject_id: str,
    self_tags: Iterable[Tag] | Event,
    external_label_events: Iterable[Event],
) -> EffectiveLabelSet:
    """Union of the subject's own labels and the label events pointing at it.

    Free-form ``t`` tags fold into the ``t`` namespace. The result is
    deduplicated and independent of input order.
    """
    tags = self_tags.tags if isinstance(self_tags, Event) else tuple(self_tags)
    by_namespace: dict[str, set[str]] = defaultdict(set)

    for namespace, value in _labels_from_tags(tags):
        by_namespace[namespace].add(value)
    for tag in tags:
        if tag[0] == "t" and len(tag) > 1 and tag[1].strip():
            by_namespace[HASHTAG_NAMESPACE].add(tag[1].strip())

    for event in external_label_events:
        if event.kind != EventKind.LABEL or not _addresses(event, subject_id):
            continue
        for namespace, value in _labels_from_tags(event.tags):
            by_namespace[namespace].add(value)

    frozen = {ns: frozenset(values) for ns, values in sorted(by_namespace.items())}
    flat = frozenset(f"{ns}/{v}" for ns, values in frozen.items() for v in values)
    return EffectiveLabelSet(flat=flat, by_namespace=frozen)


def to_natural_label(label: str) -> str:
    """Drop the namespace prefix (or a leading ``#``) for display."""
    trimmed = label.strip()
    if not trimmed:
        return ""
    idx = trimmed.rfind("/")
    if 0 <= idx < len(trimmed) - 1:
        return trimmed[idx + 1 :]
    return trimmed.removeprefix("#")


def group_labels(labels: EffectiveLabelSet) -> dict[str, list[str]]:
    """Natural labels grouped by well-known namespace, sorted within each group."""
    groups: dict[str, set[str]] = {name: set() for name in LABEL_GROUPS}
    for namespace, values in labels.by_namespace.items():
        group = _GROUP_BY_NAMESPACE.get(namespace, "Other")
        groups[group].update(to_natural_label(v) for v in values)
    return {name: sorted(values - {""}) for name, values in groups.items()}


def _role_people(event: Event) -> tuple[bool, bool, list[str]]:
    roles = {t[1] for t in event.tags_named("l") if len(t) > 2 and t[2] == ROLE_NS}
    return "assignee" in roles, "reviewer" in roles, event.tag_values("p")


def _is_role_label(event: Event) -> bool:
    if event.kind != EventKind.LABEL:
        return False
    return any(len(t) > 1 and t[1] == ROLE_NS for t in event.tags_named("L"))


def build_role_label_event(
    root_id: str,
    role: str,
    pubkeys: Iterable[str],
    *,
    created_at: int,
    repo_address: str | None = None,
) -> UnsignedEvent:
    """Label event naming *pubkeys* as assignees or reviewers of *root_id*.

    The result reads back through :func:`extract_role_assignments`.
    """
    if role not in ROLES:
        raise ValueError(f"unknown role {role!r}; expected one of {ROLES}")
    people = list(dict.fromkeys(pk for pk in pubkeys if pk))
    if not people:
        raise ValueError("a role label needs at least one pubkey")
    tags: list[Tag] = [("L", ROLE_NS), ("l", role, ROLE_NS), ("e", root_id)]
    if repo_address:
        tags.append(("a", repo_address))
    tags += [("p", pk) for pk in people]
    return UnsignedEvent(kind=EventKind.LABEL, created_at=created_at, tags=tags)


def extract_role_assignments(
    events: Iterable[Event], root_id: str | None = None
) -> RoleAssignments:
    """Assignees and reviewers declared by role label events.

    With *root_id*, only label events pointing at that root count.
    """
    assignees: set[str] = set()
    reviewers: set[str] = set()
    for event in events:
        if not _is_role_label(event):
            continue
        if root_id and root_id not in event.tag_values("e"):
            continue
        is_assignee, is_reviewer, people = _role_people(event)
        if is_assignee:
            assignees.update(people)
        if is_reviewer:
            reviewers.update(people)
    return RoleAssignments(assignees=frozenset(assignees), reviewers=frozenset(reviewers))


def assignments_for(events: Iterable[Event], root_ids: Iterable[str]) -> dict[str, RoleAssignments]:
    """:func:`extract_role_assignments` for several roots in one pass."""
    wanted = list(dict.fromkeys(root_ids))
    assignees: dict[str, set[str]] = {rid: set() for rid in wanted}
    reviewers: dict[str, set[str]] = {rid: set() for rid in wanted}
    for event in events:
        if not _is_role_label(event):
            continue
        is_assignee, is_reviewer, people = _role_people(event)
        for rid in event.tag_values("e"):
            if rid not in assignees:
                continue
            if is_assignee:
                assignees[rid].update(people)
            if is_reviewer:
                reviewers[rid].update(people)
    return {
        rid: RoleAssignments(frozenset(assignees[rid]), frozenset(reviewers[rid]))
        for rid in wanted
    }
