"""Provider registry: map a :class:`ProviderKind` tag to its variant factory."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from relaysync.core.errors import ProviderDetectionError
from relaysync.engines.providers.base import HostProvider
from relaysync.engines.providers.bitbucket import BitbucketProvider
from relaysync.engines.providers.gitea import GiteaProvider
from relaysync.engines.providers.github import GitHubProvider
from relaysync.engines.providers.gitlab import GitLabProvider
from relaysync.engines.providers.models import ProviderKind
from relaysync.engines.providers.relay import RelayProvider

ProviderFactory = Callable[..., HostProvider]

PROVIDER_REGISTRY: dict[ProviderKind, ProviderFactory] = {
    ProviderKind.GITHUB: GitHubProvider,
    ProviderKind.GITLAB: GitLabProvider,
    ProviderKind.GITEA: GiteaProvider,
    ProviderKind.BITBUCKET: BitbucketProvider,
    ProviderKind.RELAY: RelayProvider,
}


def register_provider(kind: ProviderKind, factory: ProviderFactory) -> None:
    """Register (or replace) the factory used for *kind*."""
    PROVIDER_REGISTRY[kind] = factory


def create_provider(kind: ProviderKind | str, **kwargs: Any) -> HostProvider:
    """Build the variant for *kind*; keyword arguments go to its constructor.

    REST variants take ``token``, ``limiter``, ``base_url``, ``settings`` and
    ``client``; the relay variant takes ``transport``, ``relays``, ``pubkey``
    and ``settings``.
    """
    try:
        tag = ProviderKind(kind)
    except ValueError:
        raise ProviderDetectionError(f"unsupported provider: {kind!r}") from None
    factory = PROVIDER_REGISTRY.get(tag)
    if factory is None:
        raise ProviderDetectionError(f"no provider registered for {tag.value}")
    if kwargs.get("base_url") is None:
        kwargs.pop("base_url", None)
    return factory(**kwargs)
