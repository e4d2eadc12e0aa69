"""Identity engine: which events describe the same logical repository."""

from relaysync.engines.identity.maintainers import (
    count_by_euc,
    derive_maintainers,
    effective_maintainers,
    effective_maintainers_by_address,
    effective_repo_addresses,
    group_by_euc,
    latest_announcements,
    listed_maintainers,
    repo_euc,
)
from relaysync.engines.identity.models import RepoGroup, RepoIdentity
from relaysync.engines.identity.resolver import (
    composite_key,
    extract_identity,
    group_by_identity,
    grouping_key,
    matches,
    normalize_clone_url,
)

__all__ = [
    "RepoGroup",
    "RepoIdentity",
    "composite_key",
    "count_by_euc",
    "derive_maintainers",
    "effective_maintainers",
    "effective_maintainers_by_address",
    "effective_repo_addresses",
    "extract_identity",
    "group_by_euc",
    "group_by_identity",
    "grouping_key",
    "latest_announcements",
    "listed_maintainers",
    "matches",
    "normalize_clone_url",
    "repo_euc",
]
