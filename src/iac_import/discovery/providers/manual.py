"""Manual discovery provider.

Serves caller-supplied descriptors (hand-written batches, inventory exports)
through the same capability interface as the cloud providers. It never
touches the network.
"""

from iac_import import resources
from iac_import.discovery.base import ResourceRecord
from iac_import.models import DiscoveredResource, DiscoveryScope, Provider


class ManualProvider:
    """Discovery provider backed by an in-memory list of descriptors."""

    provider = Provider.MANUAL

    def __init__(self, descriptors: list[DiscoveredResource] | None = None):
        self.descriptors: list[DiscoveredResource] = list(descriptors or [])

    def supported_resource_types(self) -> list[str]:
        present = {d.resource_type for d in self.descriptors}
        return sorted(present | set(resources.supported_types(Provider.MANUAL)))

    async def discover(
        self, scope: DiscoveryScope, resource_type: str, region: str | None
    ) -> list[ResourceRecord]:
        return [
            ResourceRecord(
                resource_type=d.resource_type,
                resource_id=d.resource_id,
                attributes=dict(d.attributes),
                tags=dict(d.tags),
                name=d.name,
                region=d.region,
                provider=d.provider,
            )
            for d in self.descriptors
            if d.resource_type == resource_type and (region is None or d.region == region)
        ]
