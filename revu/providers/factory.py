import logging

import httpx

from revu.hooks import Hooks
from revu.providers.azure import AzureProvider
from revu.providers.base import Provider, ProviderConfig, ProviderType
from revu.providers.bitbucket import BitbucketProvider
from revu.providers.compat import CompatProvider
from revu.providers.gitea import GiteaProvider
from revu.providers.github import GitHubProvider
from revu.providers.gitlab import GitLabProvider
from revu.providers.unsupported import UnsupportedProvider

logger = logging.getLogger(__name__)


def create_provider(
    config: ProviderConfig,
    client: httpx.AsyncClient | None = None,
    hooks: Hooks | None = None,
) -> CompatProvider:
    """Build the adapter for ``config.type`` and wrap it for the extension surface."""
    provider: Provider
    match config.type:
        case ProviderType.GITHUB:
            provider = GitHubProvider(config, client=client, hooks=hooks)
        case ProviderType.GITLAB:
            provider = GitLabProvider(config, client=client, hooks=hooks)
        case ProviderType.BITBUCKET:
            provider = BitbucketProvider(config, client=client, hooks=hooks)
        case ProviderType.AZURE:
            provider = AzureProvider(config, client=client, hooks=hooks)
        case ProviderType.GITEA:
            provider = GiteaProvider(config, client=client, hooks=hooks)
        case _:
            logger.warning("No adapter for provider type %r", config.type)
            provider = UnsupportedProvider(config.type)
    return CompatProvider(provider)
