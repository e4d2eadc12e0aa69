"""Host provider engine: one capability contract over several host APIs."""

from relaysync.engines.providers.base import HostProvider, RestTransport, iter_pages
from relaysync.engines.providers.bitbucket import BitbucketProvider
from relaysync.engines.providers.detect import detect_provider
from relaysync.engines.providers.gitea import GiteaProvider
from relaysync.engines.providers.github import GitHubProvider
from relaysync.engines.providers.gitlab import GitLabProvider
from relaysync.engines.providers.models import ProviderKind, RepoLocator
from relaysync.engines.providers.registry import (
    PROVIDER_REGISTRY,
    create_provider,
    register_provider,
)
from relaysync.engines.providers.relay import RelayProvider

__all__ = [
    "PROVIDER_REGISTRY",
    "BitbucketProvider",
    "GitHubProvider",
    "GitLabProvider",
    "GiteaProvider",
    "HostProvider",
    "ProviderKind",
    "RelayProvider",
    "RepoLocator",
    "RestTransport",
    "create_provider",
    "detect_provider",
    "iter_pages",
    "register_provider",
]
