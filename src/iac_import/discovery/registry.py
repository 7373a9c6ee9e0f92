"""Explicit registry of discovery providers and executor factories.

Built once at startup (see ``build_default_registry``) and passed to the
discovery engine and the workflow; nothing looks providers up through
module-level state.
"""

import functools
from collections.abc import Callable
from typing import Any

from iac_import.client.exceptions import ConfigurationError, InvalidInputError
from iac_import.discovery.base import DiscoveryProvider
from iac_import.models import Provider
from iac_import.utils.logging import get_logger

logger = get_logger(__name__)

ExecutorFactory = Callable[..., Any]


class ProviderRegistry:
    """Lookup table for providers and executors."""

    def __init__(self) -> None:
        self._providers: dict[Provider, DiscoveryProvider] = {}
        self._executors: dict[str, ExecutorFactory] = {}

    def register_provider(self, provider: DiscoveryProvider) -> "ProviderRegistry":
        if not isinstance(provider, DiscoveryProvider):
            raise ConfigurationError(f"{provider!r} does not implement the provider interface")
        self._providers[provider.provider] = provider
        logger.debug("provider_registered", provider=provider.provider.value)
        return self

    def register_executor(self, name: str, factory: ExecutorFactory) -> "ProviderRegistry":
        self._executors[name] = factory
        logger.debug("executor_registered", executor=name)
        return self

    def provider(self, provider: Provider) -> DiscoveryProvider:
        try:
            return self._providers[provider]
        except KeyError:
            raise InvalidInputError(f"No discovery provider registered for {provider.value}") from None

    def executor(self, name: str, **kwargs: Any) -> Any:
        """Build an executor by name."""
        try:
            factory = self._executors[name]
        except KeyError:
            raise ConfigurationError(
                f"Unknown executor '{name}' (registered: {', '.join(sorted(self._executors))})"
            ) from None
        return factory(**kwargs)

    @property
    def providers(self) -> list[Provider]:
        return sorted(self._providers, key=lambda p: p.value)

    @property
    def executors(self) -> list[str]:
        return sorted(self._executors)


def build_default_registry(config: Any) -> ProviderRegistry:
    """Register every built-in provider and executor.

    Args:
        config: ImportConfig supplying provider credentials and settings
    """
    from iac_import.client.executor import OpenTofuExecutor
    from iac_import.discovery.providers.aws import AWSProvider
    from iac_import.discovery.providers.azure import AzureProvider
    from iac_import.discovery.providers.gcp import GCPProvider
    from iac_import.discovery.providers.manual import ManualProvider

    registry = ProviderRegistry()
    registry.register_provider(AWSProvider(profile=config.providers.aws.profile))
    registry.register_provider(AzureProvider(subscription_id=config.providers.azure.subscription_id))
    registry.register_provider(GCPProvider(project_id=config.providers.gcp.project_id))
    registry.register_provider(ManualProvider())
    registry.register_executor("opentofu", OpenTofuExecutor)
    registry.register_executor("terraform", functools.partial(OpenTofuExecutor, binary="terraform"))
    return registry
