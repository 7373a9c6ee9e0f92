"""GCP discovery provider built on google-cloud-compute and google-cloud-storage."""

from collections.abc import Callable
from typing import Any

from google.api_core import exceptions as gcp_exceptions
from google.auth.exceptions import DefaultCredentialsError
from google.cloud import compute_v1, storage

from iac_import.client.exceptions import (
    AuthenticationError,
    InvalidInputError,
    ProviderApiError,
    ProviderThrottlingError,
)
from iac_import.discovery.base import ResourceRecord, run_blocking
from iac_import.models import DiscoveryScope, Provider
from iac_import.utils.logging import get_logger

logger = get_logger(__name__)

_SELF_LINK_PREFIX = "https://www.googleapis.com/compute/v1/"


def short_link(self_link: str | None) -> str | None:
    """Strip the API prefix from a self link, giving the engine's import id form."""
    if not self_link:
        return self_link
    return self_link.removeprefix(_SELF_LINK_PREFIX)


def _region_of(scope_name: str) -> str | None:
    """Turn an aggregated-list key (``regions/x`` or ``zones/x-a``) into a region."""
    kind, _, name = scope_name.partition("/")
    if kind == "regions":
        return name
    if kind == "zones":
        return name.rsplit("-", 1)[0]
    return None


def _networks(clients: dict[str, Any], project: str, region: str | None) -> list[ResourceRecord]:
    return [
        ResourceRecord(
            "compute:network",
            short_link(network.self_link),
            {"auto_create_subnetworks": network.auto_create_subnetworks},
            {},
            network.name,
            None,
        )
        for network in clients["networks"].list(project=project)
    ]


def _subnetworks(clients: dict[str, Any], project: str, region: str | None) -> list[ResourceRecord]:
    records = []
    for scope_name, scoped in clients["subnetworks"].aggregated_list(project=project):
        subnet_region = _region_of(scope_name)
        if region is not None and subnet_region != region:
            continue
        for subnet in scoped.subnetworks:
            records.append(
                ResourceRecord(
                    "compute:subnetwork",
                    short_link(subnet.self_link),
                    {
                        "network": short_link(subnet.network),
                        "ip_cidr_range": subnet.ip_cidr_range,
                    },
                    {},
                    subnet.name,
                    subnet_region,
                )
            )
    return records


def _firewalls(clients: dict[str, Any], project: str, region: str | None) -> list[ResourceRecord]:
    return [
        ResourceRecord(
            "compute:firewall",
            short_link(rule.self_link),
            {"network": short_link(rule.network), "direction": rule.direction},
            {},
            rule.name,
            None,
        )
        for rule in clients["firewalls"].list(project=project)
    ]


def _instances(clients: dict[str, Any], project: str, region: str | None) -> list[ResourceRecord]:
    records = []
    for scope_name, scoped in clients["instances"].aggregated_list(project=project):
        instance_region = _region_of(scope_name)
        if region is not None and instance_region != region:
            continue
        for instance in scoped.instances:
            interfaces = list(instance.network_interfaces)
            records.append(
                ResourceRecord(
                    "compute:instance",
                    short_link(instance.self_link),
                    {
                        "machine_type": instance.machine_type.rsplit("/", 1)[-1],
                        "subnetworks": [short_link(i.subnetwork) for i in interfaces],
                    },
                    dict(instance.labels),
                    instance.name,
                    instance_region,
                )
            )
    return records


def _buckets(clients: dict[str, Any], project: str, region: str | None) -> list[ResourceRecord]:
    return [
        ResourceRecord(
            "storage:bucket",
            bucket.name,
            {"location": bucket.location, "storage_class": bucket.storage_class},
            dict(bucket.labels or {}),
            bucket.name,
            (bucket.location or "").lower() or None,
        )
        for bucket in clients["storage"].list_buckets()
        if region is None or (bucket.location or "").lower() == region.lower()
    ]


QUERIES: dict[str, Callable[[dict[str, Any], str, str | None], list[ResourceRecord]]] = {
    "compute:network": _networks,
    "compute:subnetwork": _subnetworks,
    "compute:firewall": _firewalls,
    "compute:instance": _instances,
    "storage:bucket": _buckets,
}
# Listed once per discover call; region filtering does not apply
GLOBAL_TYPES = {"compute:network", "compute:firewall"}


def translate_error(exc: Exception, resource_type: str, region: str | None) -> Exception:
    """Map a google-api-core exception onto the import error taxonomy."""
    if isinstance(exc, (DefaultCredentialsError, gcp_exceptions.Unauthenticated)):
        return AuthenticationError("gcp", str(exc))
    if isinstance(exc, (gcp_exceptions.TooManyRequests, gcp_exceptions.ResourceExhausted)):
        return ProviderThrottlingError("gcp", str(exc), resource_type, region)
    if isinstance(exc, gcp_exceptions.GoogleAPICallError):
        return ProviderApiError("gcp", str(exc), resource_type, region)
    return exc


class GCPProvider:
    """Discovery provider for one GCP project."""

    provider = Provider.GCP

    def __init__(self, project_id: str | None = None, clients: dict[str, Any] | None = None):
        """Initialize the provider.

        Args:
            project_id: Project to inventory (may come from the scope instead)
            clients: Pre-built clients keyed "networks", "subnetworks", "firewalls",
                "instances", "storage"
        """
        self.project_id = project_id
        self._clients = clients

    def supported_resource_types(self) -> list[str]:
        return sorted(QUERIES)

    def _get_clients(self, project: str) -> dict[str, Any]:
        if self._clients is None:
            self._clients = {
                "networks": compute_v1.NetworksClient(),
                "subnetworks": compute_v1.SubnetworksClient(),
                "firewalls": compute_v1.FirewallsClient(),
                "instances": compute_v1.InstancesClient(),
                "storage": storage.Client(project=project),
            }
        return self._clients

    async def discover(
        self, scope: DiscoveryScope, resource_type: str, region: str | None
    ) -> list[ResourceRecord]:
        project = scope.project_id or self.project_id
        if not project:
            raise InvalidInputError("GCP discovery requires a project_id")
        if resource_type in GLOBAL_TYPES and region != scope.region_list()[0]:
            return []

        logger.debug("gcp_query_started", resource_type=resource_type, region=region)
        try:
            clients = self._get_clients(project)
            return await run_blocking(QUERIES[resource_type], clients, project, region)
        except (DefaultCredentialsError, gcp_exceptions.GoogleAPICallError) as e:
            raise translate_error(e, resource_type, region) from e
