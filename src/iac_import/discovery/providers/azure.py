"""Azure discovery provider built on the azure-mgmt-* clients."""

import re
from collections.abc import Callable
from typing import Any

from azure.core.exceptions import ClientAuthenticationError, HttpResponseError
from azure.identity import DefaultAzureCredential
from azure.mgmt.compute import ComputeManagementClient
from azure.mgmt.network import NetworkManagementClient
from azure.mgmt.resource import ResourceManagementClient

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

_RESOURCE_GROUP_RE = re.compile(r"^(/subscriptions/[^/]+/resourceGroups/[^/]+)", re.IGNORECASE)


def resource_group_id(resource_id: str) -> str | None:
    """Extract the resource group id prefix from an ARM resource id."""
    match = _RESOURCE_GROUP_RE.match(resource_id or "")
    return match.group(1) if match else None


def _in_region(obj: Any, region: str | None) -> bool:
    if region is None:
        return True
    return (getattr(obj, "location", None) or "").lower() == region.lower()


def _resource_groups(clients: dict[str, Any], region: str | None) -> list[ResourceRecord]:
    return [
        ResourceRecord(
            "resourcegroup",
            group.id,
            {"location": group.location},
            dict(group.tags or {}),
            group.name,
            group.location,
        )
        for group in clients["resource"].resource_groups.list()
        if _in_region(group, region)
    ]


def _virtual_networks(clients: dict[str, Any], region: str | None) -> list[ResourceRecord]:
    records = []
    for vnet in clients["network"].virtual_networks.list_all():
        if not _in_region(vnet, region):
            continue
        address_space = getattr(vnet, "address_space", None)
        records.append(
            ResourceRecord(
                "network:vnet",
                vnet.id,
                {
                    "resource_group_id": resource_group_id(vnet.id),
                    "address_space": list(getattr(address_space, "address_prefixes", None) or []),
                },
                dict(vnet.tags or {}),
                vnet.name,
                vnet.location,
            )
        )
    return records


def _subnets(clients: dict[str, Any], region: str | None) -> list[ResourceRecord]:
    records = []
    for vnet in clients["network"].virtual_networks.list_all():
        if not _in_region(vnet, region):
            continue
        for subnet in getattr(vnet, "subnets", None) or []:
            nsg = getattr(subnet, "network_security_group", None)
            records.append(
                ResourceRecord(
                    "network:subnet",
                    subnet.id,
                    {
                        "virtual_network_id": vnet.id,
                        "address_prefix": getattr(subnet, "address_prefix", None),
                        "network_security_group_id": getattr(nsg, "id", None),
                    },
                    {},
                    subnet.name,
                    vnet.location,
                )
            )
    return records


def _security_groups(clients: dict[str, Any], region: str | None) -> list[ResourceRecord]:
    return [
        ResourceRecord(
            "network:nsg",
            nsg.id,
            {"resource_group_id": resource_group_id(nsg.id)},
            dict(nsg.tags or {}),
            nsg.name,
            nsg.location,
        )
        for nsg in clients["network"].network_security_groups.list_all()
        if _in_region(nsg, region)
    ]


def _virtual_machines(clients: dict[str, Any], region: str | None) -> list[ResourceRecord]:
    records = []
    for vm in clients["compute"].virtual_machines.list_all():
        if not _in_region(vm, region):
            continue
        hardware = getattr(vm, "hardware_profile", None)
        records.append(
            ResourceRecord(
                "compute:vm",
                vm.id,
                {
                    "resource_group_id": resource_group_id(vm.id),
                    "vm_size": getattr(hardware, "vm_size", None),
                },
                dict(vm.tags or {}),
                vm.name,
                vm.location,
            )
        )
    return records


QUERIES: dict[str, Callable[[dict[str, Any], str | None], list[ResourceRecord]]] = {
    "resourcegroup": _resource_groups,
    "network:vnet": _virtual_networks,
    "network:subnet": _subnets,
    "network:nsg": _security_groups,
    "compute:vm": _virtual_machines,
}


def translate_error(exc: Exception, resource_type: str, region: str | None) -> Exception:
    """Map an azure-core exception onto the import error taxonomy."""
    if isinstance(exc, ClientAuthenticationError):
        return AuthenticationError("azure", exc.message or str(exc))
    if isinstance(exc, HttpResponseError):
        if exc.status_code == 429:
            return ProviderThrottlingError("azure", str(exc.message), resource_type, region)
        return ProviderApiError("azure", str(exc.message), resource_type, region)
    return exc


class AzureProvider:
    """Discovery provider for one Azure subscription."""

    provider = Provider.AZURE

    def __init__(
        self,
        subscription_id: str | None = None,
        credential: Any | None = None,
        clients: dict[str, Any] | None = None,
    ):
        """Initialize the provider.

        Args:
            subscription_id: Subscription to inventory (may come from the scope instead)
            credential: azure-identity credential; DefaultAzureCredential when omitted
            clients: Pre-built management clients keyed "resource", "network", "compute"
        """
        self.subscription_id = subscription_id
        self._credential = credential
        self._clients = clients

    def supported_resource_types(self) -> list[str]:
        return sorted(QUERIES)

    def _get_clients(self, scope: DiscoveryScope) -> dict[str, Any]:
        if self._clients is None:
            subscription_id = scope.subscription_id or self.subscription_id
            if not subscription_id:
                raise InvalidInputError("Azure discovery requires a subscription_id")
            credential = self._credential or DefaultAzureCredential()
            self._clients = {
                "resource": ResourceManagementClient(credential, subscription_id),
                "network": NetworkManagementClient(credential, subscription_id),
                "compute": ComputeManagementClient(credential, subscription_id),
            }
        return self._clients

    async def discover(
        self, scope: DiscoveryScope, resource_type: str, region: str | None
    ) -> list[ResourceRecord]:
        clients = self._get_clients(scope)
        logger.debug("azure_query_started", resource_type=resource_type, region=region)
        try:
            return await run_blocking(QUERIES[resource_type], clients, region)
        except HttpResponseError as e:
            raise translate_error(e, resource_type, region) from e
