"""Announcement selection, EUC grouping and maintainer derivation."""

from __future__ import annotations

import re
from collections import defaultdict
from collections.abc import Iterable, Mapping

from relaysync.engines.identity.models import RepoGroup
from relaysync.engines.identity.resolver import normalize_clone_url
from relaysync.models.event import Event, EventKind, repo_address

_HEX_PUBKEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")


def _newer(a: Event, b: Event) -> bool:
    return (a.created_at, a.id) > (b.created_at, b.id)


def repo_euc(event: Event) -> str | None:
    """Earliest-unique-commit declared by an announcement (``["r", c, "euc"]``)."""
    for tag in event.tags_named("r"):
        if len(tag) > 2 and tag[2] == "euc" and tag[1]:
            return tag[1]
    return None


def listed_maintainers(event: Event) -> list[str]:
    """Hex pubkeys from every ``maintainers`` tag, in order, without duplicates."""
    seen: dict[str, None] = {}
    for tag in event.tags_named("maintainers"):
        for value in tag[1:]:
            if _HEX_PUBKEY_RE.match(value):
                seen.setdefault(value.lower(), None)
    return list(seen)


def latest_announcements(events: Iterable[Event]) -> list[Event]:
    """Latest announcement per ``kind:pubkey:d`` address.

    An address whose latest announcement is tagged ``deleted`` is dropped.
    Ties on ``created_at`` go to the greater event id.
    """
    latest: dict[str, Event] = {}
    for event in events:
        if event.kind != EventKind.REPO_ANNOUNCEMENT or event.address is None:
            continue
        current = latest.get(event.address)
        if current is None or _newer(event, current):
            latest[event.address] = event
    return sorted(
        (e for e in latest.values() if not e.tags_named("deleted")),
        key=lambda e: e.address or "",
    )


def group_by_euc(events: Iterable[Event]) -> list[RepoGroup]:
    """Group the latest announcements by EUC; announcements without one are skipped."""
    buckets: dict[str, list[Event]] = defaultdict(list)
    for event in latest_announcements(events):
        euc = repo_euc(event)
        if euc:
            buckets[euc].append(event)

    groups = []
    for euc in sorted(buckets):
        members = tuple(sorted(buckets[euc], key=lambda e: (e.created_at, e.id)))
        names = {e.tag_value("name") or e.tag_value("d") or "" for e in members}
        clone_urls = {normalize_clone_url(u) for u in _all_values(members, "clone")}
        groups.append(
            RepoGroup(
                euc=euc,
                announcements=members,
                names=frozenset(names - {""}),
                clone_urls=frozenset(clone_urls - {""}),
                web=frozenset(_all_values(members, "web")),
                relays=frozenset(_all_values(members, "relays")),
            )
        )
    return groups


def _all_values(events: Iterable[Event], name: str) -> list[str]:
    return [v for e in events for tag in e.tags_named(name) for v in tag[1:] if v]


def count_by_euc(events: Iterable[Event]) -> dict[str, int]:
    """Number of live announcements per EUC."""
    return {g.euc: len(g.announcements) for g in group_by_euc(events)}


def derive_maintainers(group: RepoGroup) -> frozenset[str]:
    """Every author in the group plus every maintainer they list."""
    keys: set[str] = set()
    for event in group.announcements:
        keys.add(event.pubkey)
        keys.update(listed_maintainers(event))
    return frozenset(keys)


def effective_maintainers(announcement: Event, by_address: Mapping[str, Event]) -> frozenset[str]:
    """Owner plus the listed maintainers whose own announcement agrees.

    A listed maintainer counts only if they published an announcement with the
    same ``d`` identifier and the same EUC (or neither side declares one). A
    maintainer list alone cannot grant authority to someone who never
    announced the repository.
    """
    identifier = announcement.tag_value("d") or ""
    owner = announcement.pubkey
    effective = {owner}
    if not identifier:
        return frozenset(effective)
    owner_euc = repo_euc(announcement)
    for pubkey in listed_maintainers(announcement):
        candidate = by_address.get(repo_address(pubkey, identifier))
        if candidate is None:
            continue
        candidate_euc = repo_euc(candidate)
        if owner_euc or candidate_euc:
            if owner_euc == candidate_euc:
                effective.add(pubkey)
        else:
            effective.add(pubkey)
    return frozenset(effective)


def effective_maintainers_by_address(events: Iterable[Event]) -> dict[str, frozenset[str]]:
    """:func:`effective_maintainers` for every live announcement, keyed by address."""
    latest = latest_announcements(events)
    by_address = {e.address: e for e in latest if e.address}
    return {
        e.address: effective_maintainers(e, by_address)
        for e in latest
        if e.address and e.tag_value("d")
    }


def effective_repo_addresses(
    maintainers_by_address: Mapping[str, frozenset[str]],
) -> dict[str, frozenset[str]]:
    """Addresses of the same repository as announced by each effective maintainer."""
    result: dict[str, frozenset[str]] = {}
    for address, maintainers in maintainers_by_address.items():
        kind, _, identifier = (address.split(":", 2) + ["", ""])[:3]
        if not identifier:
            continue
        result[address] = frozenset(f"{kind}:{pk}:{identifier}" for pk in maintainers if pk)
    return result
