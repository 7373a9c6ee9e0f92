"""Tests for the discovery engine and providers."""

import asyncio
from types import SimpleNamespace

import pytest
from azure.core.exceptions import ClientAuthenticationError, HttpResponseError
from botocore.exceptions import ClientError, NoCredentialsError, OperationNotPageableError

from conftest import FakeAWSProvider, aws
from iac_import.client.exceptions import (
    AuthenticationError,
    ConfigurationError,
    InvalidInputError,
    ProviderApiError,
    ProviderThrottlingError,
    UnsupportedResourceTypeError,
)
from iac_import.config import DiscoveryConfig
from iac_import.discovery.engine import DiscoveryEngine
from iac_import.discovery.providers import aws as aws_module
from iac_import.discovery.providers.aws import AWSProvider, safe_paginate
from iac_import.discovery.providers.azure import AzureProvider, resource_group_id
from iac_import.discovery.providers.manual import ManualProvider
from iac_import.discovery.registry import ProviderRegistry
from iac_import.models import DiscoveredResource, DiscoveryFilter, DiscoveryScope, Provider

FAST = DiscoveryConfig(retry_attempts=3, retry_min_wait=0, retry_max_wait=0)


def engine_for(provider):
    return DiscoveryEngine(ProviderRegistry().register_provider(provider), FAST)


class FakePaginator:
    def __init__(self, pages):
        self.pages = pages

    def paginate(self, **kwargs):
        return iter(self.pages)


class FakeClient:
    """boto3 client returning canned pages per operation."""

    def __init__(self, pages=None, unpaged=None, error=None):
        self.pages = pages or {}
        self.unpaged = unpaged or {}
        self.error = error

    def get_paginator(self, method_name):
        if self.error is not None:
            raise self.error
        if method_name in self.unpaged:
            raise OperationNotPageableError(operation_name=method_name)
        return FakePaginator(self.pages.get(method_name, []))

    def __getattr__(self, name):
        if name in self.unpaged:
            return lambda **kwargs: self.unpaged[name]
        raise AttributeError(name)


class FakeSession:
    def __init__(self, clients):
        self.clients = clients
        self.requested = []

    def client(self, service, region_name=None):
        self.requested.append((service, region_name))
        return self.clients[service]


class FailingProvider(FakeAWSProvider):
    def __init__(self, error, resources_=None):
        super().__init__(resources_)
        self.error = error

    async def discover(self, scope, resource_type, region):
        if resource_type == "ec2:subnet":
            raise self.error
        return await super().discover(scope, resource_type, region)


class ThrottledOnceProvider(FakeAWSProvider):
    async def discover(self, scope, resource_type, region):
        self.queries.append((resource_type, region))
        if self.queries.count((resource_type, region)) == 1:
            raise ProviderThrottlingError("aws", "Throttling: slow down", resource_type, region)
        return await super().discover(scope, resource_type, region)


class TestDiscoveryEngine:
    async def test_queries_every_type_and_region(self, network_resources):
        provider = FakeAWSProvider(network_resources)

        result = await engine_for(provider).discover(
            Provider.AWS, scope=DiscoveryScope(regions=["us-east-1", "eu-west-1"])
        )

        assert len(result.resources) == 5
        assert not result.is_partial
        assert len(provider.queries) == 2 * len(provider.supported_resource_types())

    async def test_failed_query_does_not_hide_completed_ones(self, network_resources):
        provider = FakeAWSProvider(network_resources, failing_types={"ec2:subnet"})

        result = await engine_for(provider).discover(
            Provider.AWS, scope=DiscoveryScope(regions=["us-east-1"])
        )

        assert result.is_partial
        assert {r.resource_type for r in result.resources} == {
            "ec2:vpc",
            "ec2:security-group",
            "s3:bucket",
        }
        assert len(result.failures) == 1
        failure = result.failures[0]
        assert isinstance(failure, ProviderApiError)
        assert failure.resource_type == "ec2:subnet"

    async def test_duplicates_across_regions_are_merged(self):
        vpc = aws("ec2:vpc", "vpc-0f1e2d3c4b", "main")
        provider = FakeAWSProvider([DiscoveredResource(**{**vpc.__dict__, "region": None})])

        result = await engine_for(provider).discover(
            Provider.AWS, scope=DiscoveryScope(regions=["us-east-1", "us-west-2"])
        )

        assert [r.resource_id for r in result.resources] == ["vpc-0f1e2d3c4b"]

    async def test_authentication_error_is_raised(self, network_resources):
        provider = FailingProvider(AuthenticationError("aws", "ExpiredToken"), network_resources)

        with pytest.raises(AuthenticationError):
            await engine_for(provider).discover(Provider.AWS, scope=DiscoveryScope(regions=["us-east-1"]))

    async def test_unsupported_type_filter_is_reported(self, network_resources):
        provider = FakeAWSProvider(network_resources)

        result = await engine_for(provider).discover(
            Provider.AWS,
            scope=DiscoveryScope(regions=["us-east-1"]),
            resource_type_filter=["ec2:vpc", "ec2:transit-gateway"],
        )

        assert [r.resource_type for r in result.resources] == ["ec2:vpc"]
        assert isinstance(result.failures[0], UnsupportedResourceTypeError)
        assert provider.queries == [("ec2:vpc", "us-east-1")]

    async def test_tag_filter(self, network_resources):
        result = await engine_for(FakeAWSProvider(network_resources)).discover(
            Provider.AWS,
            scope=DiscoveryScope(regions=["us-east-1"]),
            tag_filter={"Name": "app"},
        )
        assert [r.resource_id for r in result.resources] == ["subnet-0a1b2c3d4e"]

    async def test_resource_filter_applies_glob_and_limit(self, network_resources):
        result = await engine_for(FakeAWSProvider(network_resources)).discover(
            Provider.AWS,
            scope=DiscoveryScope(regions=["us-east-1"]),
            resource_filter=DiscoveryFilter(name_pattern="subnet-*", limit=1),
        )
        assert len(result.resources) == 1
        assert result.resources[0].resource_type == "ec2:subnet"

    async def test_throttled_query_is_retried(self, network_resources):
        provider = ThrottledOnceProvider(network_resources)

        result = await engine_for(provider).discover(
            Provider.AWS,
            scope=DiscoveryScope(regions=["us-east-1"]),
            resource_type_filter=["ec2:vpc"],
        )

        assert not result.is_partial
        assert [r.resource_id for r in result.resources] == ["vpc-0f1e2d3c4b"]

    async def test_cancelled_call_leaves_no_history(self, network_resources):
        class SlowProvider(FakeAWSProvider):
            async def discover(self, scope, resource_type, region):
                await asyncio.sleep(10)
                return []

        engine = engine_for(SlowProvider(network_resources))
        task = asyncio.create_task(engine.discover(Provider.AWS, scope=DiscoveryScope(["us-east-1"])))
        await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert not engine.history

    async def test_concurrent_queries_are_bounded(self, network_resources):
        class TrackingProvider(FakeAWSProvider):
            active = 0
            peak = 0

            async def discover(self, scope, resource_type, region):
                type(self).active += 1
                type(self).peak = max(type(self).peak, type(self).active)
                try:
                    await asyncio.sleep(0.01)
                    return await super().discover(scope, resource_type, region)
                finally:
                    type(self).active -= 1

        provider = TrackingProvider(network_resources)
        config = DiscoveryConfig(max_concurrent=2, retry_min_wait=0, retry_max_wait=0)
        engine = DiscoveryEngine(ProviderRegistry().register_provider(provider), config)

        await engine.discover(Provider.AWS, scope=DiscoveryScope(["us-east-1", "eu-west-1"]))

        assert len(provider.queries) > 2
        assert TrackingProvider.peak == 2

    async def test_history_keeps_only_recent_results(self, network_resources):
        engine = DiscoveryEngine(
            ProviderRegistry().register_provider(FakeAWSProvider(network_resources)),
            FAST,
            history_size=2,
        )
        scope = DiscoveryScope(["us-east-1"])

        for resource_type in ("ec2:vpc", "ec2:subnet", "s3:bucket"):
            await engine.discover(Provider.AWS, scope=scope, resource_type_filter=[resource_type])

        assert len(engine.history) == 2
        assert [r.resources[0].resource_type for r in engine.history] == ["ec2:subnet", "s3:bucket"]

    async def test_descriptors_use_manual_provider(self, network_resources):
        engine = DiscoveryEngine(ProviderRegistry(), FAST)

        result = await engine.discover(Provider.MANUAL, descriptors=network_resources)

        assert len(result.resources) == 5
        assert all(r.provider is Provider.AWS for r in result.resources)

    async def test_unregistered_provider_raises(self):
        with pytest.raises(InvalidInputError):
            await DiscoveryEngine(ProviderRegistry(), FAST).discover(Provider.GCP)


class TestRegistry:
    def test_rejects_objects_without_provider_interface(self):
        with pytest.raises(ConfigurationError):
            ProviderRegistry().register_provider(object())

    def test_unknown_executor(self):
        with pytest.raises(ConfigurationError):
            ProviderRegistry().executor("pulumi")


class TestAWSProvider:
    def make_provider(self):
        ec2 = FakeClient(
            pages={
                "describe_vpcs": [
                    {"Vpcs": [{"VpcId": "vpc-0f1e2d3c4b", "CidrBlock": "10.0.0.0/16", "Tags": [{"Key": "Name", "Value": "main"}]}]},
                    {"Vpcs": [{"VpcId": "vpc-0a9b8c7d6e", "CidrBlock": "10.1.0.0/16"}]},
                ],
            }
        )
        s3 = FakeClient(unpaged={"list_buckets": {"Buckets": [{"Name": "assets-bucket"}]}})
        session = FakeSession({"ec2": ec2, "s3": s3})
        return AWSProvider(session=session), session

    async def test_vpcs_are_read_across_pages(self):
        provider, session = self.make_provider()

        records = await provider.discover(DiscoveryScope(regions=["us-east-1"]), "ec2:vpc", "us-east-1")

        assert [r.resource_id for r in records] == ["vpc-0f1e2d3c4b", "vpc-0a9b8c7d6e"]
        assert records[0].name == "main"
        assert records[0].attributes["cidr_block"] == "10.0.0.0/16"
        assert session.requested == [("ec2", "us-east-1")]

    async def test_global_types_only_query_first_region(self):
        provider, session = self.make_provider()
        scope = DiscoveryScope(regions=["us-east-1", "eu-west-1"])

        first = await provider.discover(scope, "s3:bucket", "us-east-1")
        second = await provider.discover(scope, "s3:bucket", "eu-west-1")

        assert [r.resource_id for r in first] == ["assets-bucket"]
        assert second == []
        assert session.requested == [("s3", "us-east-1")]

    async def test_client_errors_are_translated(self):
        throttled = ClientError({"Error": {"Code": "Throttling", "Message": "Rate exceeded"}}, "DescribeVpcs")
        session = FakeSession({"ec2": FakeClient(error=throttled)})
        provider = AWSProvider(session=session)

        with pytest.raises(ProviderThrottlingError):
            await provider.discover(DiscoveryScope(), "ec2:vpc", None)

    @pytest.mark.parametrize(
        "error,expected",
        [
            (NoCredentialsError(), AuthenticationError),
            (ClientError({"Error": {"Code": "ExpiredToken", "Message": "x"}}, "op"), AuthenticationError),
            (ClientError({"Error": {"Code": "AccessDenied", "Message": "x"}}, "op"), ProviderApiError),
        ],
    )
    def test_translate_error(self, error, expected):
        translated = aws_module.translate_error(error, "ec2:vpc", "us-east-1")
        assert isinstance(translated, expected)

    def test_safe_paginate_falls_back_to_single_call(self):
        client = FakeClient(unpaged={"list_buckets": {"Buckets": [{"Name": "a"}, {"Name": "b"}]}})
        assert [b["Name"] for b in safe_paginate(client, "list_buckets", "Buckets")] == ["a", "b"]


class TestAzureProvider:
    def make_clients(self, error=None):
        vnet_id = "/subscriptions/sub-1/resourceGroups/rg-net/providers/Microsoft.Network/virtualNetworks/hub"

        def list_all():
            if error is not None:
                raise error
            return [
                SimpleNamespace(
                    id=vnet_id,
                    name="hub",
                    location="westeurope",
                    tags={"env": "prod"},
                    address_space=SimpleNamespace(address_prefixes=["10.0.0.0/16"]),
                    subnets=[
                        SimpleNamespace(
                            id=f"{vnet_id}/subnets/app",
                            name="app",
                            address_prefix="10.0.1.0/24",
                            network_security_group=None,
                        )
                    ],
                )
            ]

        network = SimpleNamespace(virtual_networks=SimpleNamespace(list_all=list_all))
        return {"network": network}

    async def test_subnets_reference_their_vnet(self):
        provider = AzureProvider(clients=self.make_clients())

        records = await provider.discover(DiscoveryScope(), "network:subnet", "westeurope")

        assert len(records) == 1
        assert records[0].attributes["virtual_network_id"].endswith("/virtualNetworks/hub")

    async def test_region_filter(self):
        provider = AzureProvider(clients=self.make_clients())
        assert await provider.discover(DiscoveryScope(), "network:vnet", "eastus") == []

    async def test_authentication_failure(self):
        provider = AzureProvider(clients=self.make_clients(ClientAuthenticationError("token expired")))
        with pytest.raises(AuthenticationError):
            await provider.discover(DiscoveryScope(), "network:vnet", None)

    async def test_http_error(self):
        provider = AzureProvider(clients=self.make_clients(HttpResponseError("server error")))
        with pytest.raises(ProviderApiError):
            await provider.discover(DiscoveryScope(), "network:vnet", None)

    async def test_subscription_is_required(self):
        with pytest.raises(InvalidInputError):
            await AzureProvider().discover(DiscoveryScope(), "network:vnet", None)

    def test_resource_group_id(self):
        rid = "/subscriptions/sub-1/resourceGroups/rg-net/providers/Microsoft.Network/networkSecurityGroups/web"
        assert resource_group_id(rid) == "/subscriptions/sub-1/resourceGroups/rg-net"
        assert resource_group_id("not-an-arm-id") is None


class TestManualProvider:
    async def test_serves_descriptors_by_type_and_region(self, network_resources):
        provider = ManualProvider(network_resources)

        records = await provider.discover(DiscoveryScope(), "ec2:subnet", None)
        elsewhere = await provider.discover(DiscoveryScope(), "ec2:subnet", "eu-west-1")

        assert sorted(r.resource_id for r in records) == ["subnet-0a1b2c3d4e", "subnet-0b2c3d4e5f"]
        assert all(r.provider is Provider.AWS for r in records)
        assert elsewhere == []

    def test_supported_types_include_descriptor_types(self):
        provider = ManualProvider([DiscoveredResource(Provider.MANUAL, "custom:thing", "x")])
        assert "custom:thing" in provider.supported_resource_types()
