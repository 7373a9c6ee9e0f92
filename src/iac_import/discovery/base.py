"""Provider capability interface for discovery.

Every provider variant (AWS, Azure, GCP, Manual) offers the same two
capabilities: list the resource types it can query, and run one query for a
resource type in a region. Providers are plain classes satisfying this
protocol; none inherits from another.
"""

import asyncio
from collections.abc import Callable
from typing import Any, NamedTuple, Protocol, TypeVar, runtime_checkable

from iac_import.models import DiscoveredResource, DiscoveryScope, Provider

T = TypeVar("T")


class ResourceRecord(NamedTuple):
    """Normalized row returned by a provider query."""

    resource_type: str
    resource_id: str
    attributes: dict[str, Any]
    tags: dict[str, str]
    name: str | None = None
    region: str | None = None
    provider: Provider | None = None  # Set by manual descriptors that carry their own

    def to_resource(self, provider: Provider) -> DiscoveredResource:
        return DiscoveredResource(
            provider=self.provider or provider,
            resource_type=self.resource_type,
            resource_id=self.resource_id,
            attributes=dict(self.attributes),
            tags=dict(self.tags),
            name=self.name,
            region=self.region,
        )


@runtime_checkable
class DiscoveryProvider(Protocol):
    """Capability set shared by all discovery providers."""

    provider: Provider

    def supported_resource_types(self) -> list[str]:
        """Native resource types this provider can query."""
        ...

    async def discover(
        self, scope: DiscoveryScope, resource_type: str, region: str | None
    ) -> list[ResourceRecord]:
        """Run one query. Raises AuthenticationError or ProviderApiError."""
        ...


async def run_blocking(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a blocking SDK call in a worker thread."""
    return await asyncio.to_thread(func, *args, **kwargs)


def tags_from_pairs(pairs: list[dict[str, Any]] | None, key: str = "Key", value: str = "Value") -> dict[str, str]:
    """Convert ``[{"Key": k, "Value": v}, ...]`` tag lists into a mapping."""
    return {str(p[key]): str(p.get(value, "")) for p in pairs or [] if key in p}
