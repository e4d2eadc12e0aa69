"""Canonical repository identity and order-independent grouping."""

from __future__ import annotations

import re
from collections import defaultdict
from collections.abc import Iterable
from urllib.parse import urlsplit, urlunsplit

from relaysync.engines.identity.models import RepoIdentity
from relaysync.models.event import Event, EventKind, split_address

# Path segments that look like an author key: hex pubkey or npub.
_AUTHOR_SEGMENT_RE = re.compile(r"^(?:[0-9a-fA-F]{64}|npub1[02-9ac-hj-np-z]{20,})$")
_COMMIT_RE = re.compile(r"^[0-9a-f]{40}$")
_SCP_RE = re.compile(r"^(?P<user>[\w.-]+@)?(?P<host>[\w.-]+):(?P<path>[^/].*)$")


def normalize_clone_url(url: str) -> str:
    """Trim, drop trailing ``/`` and ``.git``, case-fold scheme and host.

    Path segments that look like author keys are removed, so the same
    repository served under per-author namespaces compares equal.
    """
    value = url.strip()
    while value.endswith("/") or value.endswith(".git"):
        value = value[:-1] if value.endswith("/") else value[:-4]
    if not value:
        return ""

    if "://" in value:
        parts = urlsplit(value)
        netloc = parts.netloc.lower()
        path = _strip_author_segments(parts.path)
        return urlunsplit((parts.scheme.lower(), netloc, path, parts.query, parts.fragment))

    match = _SCP_RE.match(value)
    if match:
        user = match.group("user") or ""
        return f"{user}{match.group('host').lower()}:{_strip_author_segments(match.group('path'))}"
    return _strip_author_segments(value)


def _strip_author_segments(path: str) -> str:
    segments = path.split("/")
    kept = [s for s in segments if not _AUTHOR_SEGMENT_RE.match(s)]
    return "/".join(kept)


def _euc(event: Event) -> str | None:
    for tag in event.tags_named("r"):
        if len(tag) > 2 and tag[2] == "euc" and tag[1]:
            return tag[1]
    if event.kind != EventKind.REPO_ANNOUNCEMENT:
        # Issues and patches carry the bare commit as their ``r`` tag.
        for value in event.tag_values("r"):
            if _COMMIT_RE.match(value):
                return value
    return None


def _name(event: Event) -> str | None:
    if event.kind == EventKind.REPO_ANNOUNCEMENT:
        return event.tag_value("name") or event.tag_value("d")
    for value in event.tag_values("a"):
        parsed = split_address(value)
        if parsed and parsed[0] == EventKind.REPO_ANNOUNCEMENT and parsed[2]:
            return parsed[2]
    return event.tag_value("name")


def extract_identity(event: Event) -> RepoIdentity:
    urls = {
        normalize_clone_url(value)
        for tag in event.tags_named("clone")
        for value in tag[1:]
        if value.strip()
    }
    urls.discard("")
    return RepoIdentity(
        earliest_unique_commit=_euc(event),
        name=_name(event),
        clone_urls=frozenset(urls),
    )


def composite_key(identity: RepoIdentity) -> str:
    """``EUC:name:sortedNormalizedCloneUrls``; independent of URL order."""
    urls = ",".join(sorted(identity.clone_urls))
    return f"{identity.earliest_unique_commit or ''}:{identity.name or ''}:{urls}"


def grouping_key(identity: RepoIdentity) -> str:
    """Key under which :func:`group_by_identity` files an identity.

    An EUC alone identifies a repository, so EUC-bearing identities collapse
    onto the EUC-only composite key.
    """
    if identity.earliest_unique_commit:
        return composite_key(RepoIdentity(earliest_unique_commit=identity.earliest_unique_commit))
    return composite_key(identity)


def group_by_identity(events: Iterable[Event]) -> dict[str, frozenset[Event]]:
    """Group events describing the same logical repository.

    Pure and order-independent: any permutation of the same events yields an
    equal mapping.
    """
    groups: dict[str, set[Event]] = defaultdict(set)
    for event in events:
        groups[grouping_key(extract_identity(event))].add(event)
    return {key: frozenset(members) for key, members in sorted(groups.items())}


def matches(event: Event, identity: RepoIdentity) -> bool:
    """EUC equality when both sides have one, composite key equality otherwise."""
    own = extract_identity(event)
    if own.earliest_unique_commit and identity.earliest_unique_commit:
        return own.earliest_unique_commit == identity.earliest_unique_commit
    return composite_key(own) == composite_key(identity)
