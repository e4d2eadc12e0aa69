"""Resolve a repository URL to a provider variant."""

from __future__ import annotations

import re
from urllib.parse import urlparse

from relaysync.core.errors import ProviderDetectionError
from relaysync.engines.providers.models import ProviderKind, RepoLocator
from relaysync.models.event import EventKind

_KNOWN_HOSTS: dict[str, ProviderKind] = {
    "github.com": ProviderKind.GITHUB,
    "gitlab.com": ProviderKind.GITLAB,
    "bitbucket.org": ProviderKind.BITBUCKET,
    "codeberg.org": ProviderKind.GITEA,
}

# Host-name fragments of self-hosted instances, checked in order.
_HOST_HINTS: tuple[tuple[str, ProviderKind], ...] = (
    ("gitlab", ProviderKind.GITLAB),
    ("gitea", ProviderKind.GITEA),
    ("forgejo", ProviderKind.GITEA),
    ("bitbucket", ProviderKind.BITBUCKET),
    ("github", ProviderKind.GITHUB),
)

_SCP_RE = re.compile(r"^(?:[\w.-]+@)?(?P<host>[\w.-]+):(?P<path>[^/].*)$")
_PUBKEY_RE = re.compile(r"^[0-9a-f]{64}$")


def detect_provider(url: str, hint: ProviderKind | str | None = None) -> RepoLocator:
    """Parse *url* into a :class:`RepoLocator`.

    Handles:
      - https://github.com/owner/repo(.git)
      - https://gitlab.example.com/group/subgroup/repo
      - git@github.com:owner/repo.git and ssh://git@host/owner/repo.git
      - nostr://<pubkey>/<identifier> and 30617:<pubkey>:<identifier>

    *hint* forces the variant for hosts that cannot be recognized by name.
    Raises :class:`ProviderDetectionError` when nothing matches.
    """
    raw = url.strip()
    if not raw:
        raise ProviderDetectionError("empty repository URL")

    relay = _parse_relay(raw)
    if relay is not None:
        return relay

    host, path = _split_host_path(raw)
    if not host:
        raise ProviderDetectionError(f"cannot parse repository URL: {url!r}")

    segments = [s for s in path.strip("/").split("/") if s]
    if segments and segments[-1].endswith(".git"):
        segments[-1] = segments[-1][:-4]
    # GitLab web URLs may carry "/-/tree/..." after the project path.
    if "-" in segments:
        segments = segments[: segments.index("-")]
    if len(segments) < 2 or not all(segments):
        raise ProviderDetectionError(f"cannot find owner/name in {url!r}")

    kind = _kind_for(host, hint)
    if kind is None:
        raise ProviderDetectionError(f"unrecognized git host {host!r}; pass a provider hint")
    if kind is ProviderKind.RELAY:
        raise ProviderDetectionError(f"{url!r} is not a relay address")

    if kind is ProviderKind.GITLAB:
        owner, name = "/".join(segments[:-1]), segments[-1]
    else:
        owner, name = segments[0], segments[1]
    return RepoLocator(kind=kind, host=host, owner=owner, name=name, url=raw)


def _parse_relay(raw: str) -> RepoLocator | None:
    if raw.startswith("nostr://"):
        parts = [p for p in raw[len("nostr://") :].split("/") if p]
        if len(parts) != 2 or not _PUBKEY_RE.match(parts[0].lower()):
            raise ProviderDetectionError(f"expected nostr://<pubkey>/<identifier>, got {raw!r}")
        return RepoLocator(ProviderKind.RELAY, "", parts[0].lower(), parts[1], raw)
    prefix = f"{int(EventKind.REPO_ANNOUNCEMENT)}:"
    if raw.startswith(prefix):
        _, pubkey, identifier = (raw.split(":", 2) + ["", ""])[:3]
        if not _PUBKEY_RE.match(pubkey.lower()) or not identifier:
            raise ProviderDetectionError(f"malformed repository address {raw!r}")
        return RepoLocator(ProviderKind.RELAY, "", pubkey.lower(), identifier, raw)
    return None


def _split_host_path(raw: str) -> tuple[str, str]:
    if "://" in raw:
        parsed = urlparse(raw)
        return (parsed.hostname or "").lower(), parsed.path
    match = _SCP_RE.match(raw)
    if match:
        return match.group("host").lower(), match.group("path")
    # Bare "host/owner/repo"
    host, _, path = raw.partition("/")
    return (host.lower() if "." in host else ""), path


def _kind_for(host: str, hint: ProviderKind | str | None) -> ProviderKind | None:
    if hint is not None:
        try:
            return ProviderKind(hint)
        except ValueError:
            raise ProviderDetectionError(f"unsupported provider hint: {hint!r}") from None
    if host in _KNOWN_HOSTS:
        return _KNOWN_HOSTS[host]
    for fragment, kind in _HOST_HINTS:
        if fragment in host:
            return kind
    return None
