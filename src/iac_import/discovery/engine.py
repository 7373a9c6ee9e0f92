"""Discovery engine.

Fans one discover call out into independent (resource type, region) queries
that run concurrently under a semaphore, then merges the results. Failed
queries are reported next to the results of the queries that completed.
"""

import asyncio
import itertools
from collections import deque

from iac_import.client.exceptions import (
    AuthenticationError,
    IacImportError,
    ProviderApiError,
    UnsupportedResourceTypeError,
)
from iac_import.config import DiscoveryConfig
from iac_import.discovery.base import DiscoveryProvider, ResourceRecord
from iac_import.discovery.providers.manual import ManualProvider
from iac_import.discovery.registry import ProviderRegistry
from iac_import.models import (
    DiscoveredResource,
    DiscoveryFilter,
    DiscoveryResult,
    DiscoveryScope,
    Provider,
)
from iac_import.utils.logging import get_logger
from iac_import.utils.retry import retry_on_throttle

logger = get_logger(__name__)


class DiscoveryEngine:
    """Runs provider queries and normalizes their results.

    Only completed calls are appended to ``history``, which keeps the last
    ``history_size`` results; a cancelled call leaves no trace there and
    never disturbs results of earlier calls.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        config: DiscoveryConfig | None = None,
        history_size: int = 20,
    ):
        self.registry = registry
        self.config = config or DiscoveryConfig()
        self.history: deque[DiscoveryResult] = deque(maxlen=history_size)

    def _resolve_provider(
        self, provider: Provider, descriptors: list[DiscoveredResource] | None
    ) -> DiscoveryProvider:
        if descriptors is not None:
            if provider is not Provider.MANUAL:
                logger.warning(
                    "descriptors_imply_manual_provider", requested_provider=provider.value
                )
            return ManualProvider(descriptors)
        return self.registry.provider(provider)

    async def discover(
        self,
        provider: Provider,
        scope: DiscoveryScope | None = None,
        resource_type_filter: list[str] | None = None,
        tag_filter: dict[str, str] | None = None,
        descriptors: list[DiscoveredResource] | None = None,
        resource_filter: DiscoveryFilter | None = None,
    ) -> DiscoveryResult:
        """Discover resources for one provider.

        Args:
            provider: Provider variant to query
            scope: Regions and account/subscription/project to query
            resource_type_filter: Native types to query (default: all supported)
            tag_filter: Tags every returned resource must carry
            descriptors: Caller-supplied resources; forces the manual provider
            resource_filter: Extra post-query filter (name pattern, regions, limit)

        Returns:
            DiscoveryResult with deduplicated resources and per-query failures

        Raises:
            AuthenticationError: If the provider rejected the credentials
        """
        scope = scope or DiscoveryScope()
        source = self._resolve_provider(provider, descriptors)
        supported = set(source.supported_resource_types())

        failures: list[Exception] = []
        if resource_type_filter:
            types = []
            for resource_type in dict.fromkeys(resource_type_filter):
                if resource_type in supported:
                    types.append(resource_type)
                else:
                    failures.append(UnsupportedResourceTypeError(provider.value, resource_type))
        else:
            types = sorted(supported)

        queries = list(itertools.product(types, scope.region_list()))
        logger.info(
            "discovery_started",
            provider=provider.value,
            resource_types=len(types),
            queries=len(queries),
            max_concurrent=self.config.max_concurrent,
        )

        semaphore = asyncio.Semaphore(self.config.max_concurrent)

        async def run_query(resource_type: str, region: str | None) -> list[ResourceRecord]:
            async with semaphore:
                return await retry_on_throttle(
                    source.discover,
                    scope,
                    resource_type,
                    region,
                    max_attempts=self.config.retry_attempts,
                    min_wait=self.config.retry_min_wait,
                    max_wait=self.config.retry_max_wait,
                )

        # Cancellation of this call propagates into gather, which cancels the
        # in-flight queries; nothing gathered so far escapes this frame.
        outcomes = await asyncio.gather(
            *(run_query(resource_type, region) for resource_type, region in queries),
            return_exceptions=True,
        )

        auth_error: AuthenticationError | None = None
        resources: list[DiscoveredResource] = []
        seen: set[tuple[str, str, str]] = set()
        tags = tag_filter or {}

        for (resource_type, region), outcome in zip(queries, outcomes):
            if isinstance(outcome, AuthenticationError):
                auth_error = auth_error or outcome
                continue
            if isinstance(outcome, IacImportError):
                failures.append(outcome)
                logger.warning(
                    "discovery_query_failed",
                    provider=provider.value,
                    resource_type=resource_type,
                    region=region,
                    error=str(outcome),
                )
                continue
            if isinstance(outcome, Exception):
                failures.append(
                    ProviderApiError(provider.value, str(outcome), resource_type, region)
                )
                logger.warning(
                    "discovery_query_failed",
                    provider=provider.value,
                    resource_type=resource_type,
                    region=region,
                    error=str(outcome),
                    error_type=type(outcome).__name__,
                )
                continue
            if isinstance(outcome, BaseException):
                raise outcome

            for record in outcome:
                resource = record.to_resource(provider)
                if any(resource.tags.get(k) != v for k, v in tags.items()):
                    continue
                if resource.key in seen:
                    continue
                seen.add(resource.key)
                resources.append(resource)

        if auth_error is not None:
            logger.error("discovery_authentication_failed", provider=provider.value)
            raise auth_error

        if resource_filter is not None:
            resources = resource_filter.apply(resources)

        result = DiscoveryResult(provider=provider, resources=resources, failures=failures)
        self.history.append(result)

        logger.info(
            "discovery_completed",
            provider=provider.value,
            resources=len(resources),
            failures=len(failures),
            partial=result.is_partial,
        )
        return result
