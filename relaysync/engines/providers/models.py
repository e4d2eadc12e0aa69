"""Provider tags and repository locators."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ProviderKind(str, Enum):
    GITHUB = "github"
    GITLAB = "gitlab"
    GITEA = "gitea"
    BITBUCKET = "bitbucket"
    RELAY = "relay"


@dataclass(frozen=True)
class RepoLocator:
    """A repository URL resolved to a provider variant.

    For the relay variant *owner* is the announcing pubkey and *name* the
    announcement's ``d`` identifier; *host* is empty.
    """

    kind: ProviderKind
    host: str
    owner: str
    name: str
    url: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @property
    def api_base_url(self) -> str | None:
        """REST root for this host, ``None`` for the relay variant."""
        if self.kind is ProviderKind.GITHUB:
            if self.host == "github.com":
                return "https://api.github.com"
            return f"https://{self.host}/api/v3"
        if self.kind is ProviderKind.GITLAB:
            return f"https://{self.host}/api/v4"
        if self.kind is ProviderKind.GITEA:
            return f"https://{self.host}/api/v1"
        if self.kind is ProviderKind.BITBUCKET:
            if self.host == "bitbucket.org":
                return "https://api.bitbucket.org/2.0"
            return f"https://{self.host}/2.0"
        return None
