"""Tests for resource mapping and dependency ordering."""

import random

import pytest

from conftest import aws
from iac_import.client.exceptions import InvalidInputError, UnsupportedResourceTypeError
from iac_import.mapping.mapper import ResourceMapper
from iac_import.models import DiscoveredResource, EntryStatus, Provider


@pytest.fixture
def mapper():
    return ResourceMapper()


class TestMap:
    def test_derives_address_from_name_tag(self, mapper):
        destination = mapper.map(aws("ec2:vpc", "vpc-0f1e2d3c4b", "Main VPC"))
        assert destination.target_resource_address == "aws_vpc.main_vpc"
        assert destination.requirement.name == "aws"
        assert destination.schema_version == "1"

    def test_falls_back_to_resource_id(self, mapper):
        destination = mapper.map(aws("ec2:vpc", "vpc-0f1e2d3c4b"))
        assert destination.target_resource_address == "aws_vpc.vpc_0f1e2d3c4b"

    def test_module_path_prefixes_address(self):
        mapper = ResourceMapper(module_path="module.network")
        destination = mapper.map(aws("ec2:subnet", "subnet-0a1b2c3d4e", "app"))
        assert destination.target_resource_address == "module.network.aws_subnet.app"
        assert destination.target_module_path == "module.network"

    def test_unsupported_type_raises(self, mapper):
        with pytest.raises(UnsupportedResourceTypeError):
            mapper.map(aws("ec2:transit-gateway", "tgw-0123456789"))

    def test_explicit_address_is_used_verbatim(self, mapper):
        destination = mapper.map(aws("ec2:vpc", "vpc-0f1e2d3c4b"), address="aws_vpc.legacy")
        assert destination.target_resource_address == "aws_vpc.legacy"

    def test_explicit_address_of_other_type_is_rejected(self, mapper):
        with pytest.raises(InvalidInputError):
            mapper.map(aws("ec2:vpc", "vpc-0f1e2d3c4b"), address="aws_subnet.legacy")

    def test_malformed_explicit_address_is_rejected(self, mapper):
        with pytest.raises(InvalidInputError):
            mapper.map(aws("ec2:vpc", "vpc-0f1e2d3c4b"), address="aws_vpc")

    def test_manual_resource_may_name_destination_type(self, mapper):
        resource = DiscoveredResource(Provider.MANUAL, "aws_s3_bucket", "logs-bucket")
        destination = mapper.map(resource)
        assert destination.target_resource_address == "aws_s3_bucket.logs_bucket"


class TestInferDependencies:
    def test_vpc_is_imported_before_subnet_and_security_group(self, mapper):
        vpc = aws("ec2:vpc", "vpc-0f1e2d3c4b", "main")
        subnet = aws("ec2:subnet", "subnet-0a1b2c3d4e", "app", vpc_id=vpc.resource_id)
        group = aws("ec2:security-group", "sg-0c3d4e5f6a", "web", vpc_id=vpc.resource_id)

        order = mapper.infer_dependencies([subnet, group, vpc])

        assert order.ordinals[vpc.key] < order.ordinals[subnet.key]
        assert order.ordinals[vpc.key] < order.ordinals[group.key]
        assert sorted(order.ordinals.values()) == [1, 2, 3]
        assert not order.warnings

    def test_references_inside_nested_attributes_count(self, mapper):
        group = aws("ec2:security-group", "sg-0c3d4e5f6a", "web")
        instance = aws(
            "ec2:instance", "i-0123456789abcdef0", "api", network={"groups": [group.resource_id]}
        )
        order = mapper.infer_dependencies([instance, group])
        assert order.ordinals[group.key] == 1
        assert order.ordinals[instance.key] == 2

    def test_order_is_independent_of_input_order(self, mapper, network_resources):
        expected = mapper.infer_dependencies(network_resources).ordinals
        shuffled = list(network_resources)
        for seed in range(5):
            random.Random(seed).shuffle(shuffled)
            assert mapper.infer_dependencies(shuffled).ordinals == expected

    def test_cycle_is_broken_with_exactly_one_warning(self, mapper):
        first = aws("ec2:security-group", "sg-0aaaaaaaaa", "a", peer="sg-0bbbbbbbbb")
        second = aws("ec2:security-group", "sg-0bbbbbbbbb", "b", peer="sg-0aaaaaaaaa")

        order = mapper.infer_dependencies([first, second])

        assert sorted(order.ordinals.values()) == [1, 2]
        assert len(order.warnings) == 1
        warning = order.warnings[0]
        assert warning.dropped_edge is not None
        assert len(warning.cycle) == 2

    def test_cycle_break_keeps_edge_towards_foundational_type(self, mapper):
        vpc = aws("ec2:vpc", "vpc-0f1e2d3c4b", "main", default_group="sg-0c3d4e5f6a")
        group = aws("ec2:security-group", "sg-0c3d4e5f6a", "default", vpc_id="vpc-0f1e2d3c4b")

        order = mapper.infer_dependencies([group, vpc])

        # The vpc -> security group edge is the one dropped
        assert order.ordinals[vpc.key] == 1
        assert order.warnings[0].dropped_edge == (
            "ec2:vpc:vpc-0f1e2d3c4b",
            "ec2:security-group:sg-0c3d4e5f6a",
        )


class TestPlan:
    def test_entries_are_mapped_and_sorted(self, mapper, network_resources):
        result = mapper.plan(network_resources)

        assert [e.address for e in result.entries] == [
            "aws_vpc.main",
            "aws_security_group.web",
            "aws_subnet.app",
            "aws_subnet.data",
            "aws_s3_bucket.assets",
        ]
        assert [e.ordinal for e in result.entries] == [1, 2, 3, 4, 5]
        assert all(e.status is EntryStatus.MAPPED for e in result.entries)

    def test_unsupported_resources_are_skipped_not_fatal(self, mapper):
        supported = aws("ec2:vpc", "vpc-0f1e2d3c4b", "main")
        unsupported = aws("ec2:transit-gateway", "tgw-0123456789")

        result = mapper.plan([supported, unsupported])

        assert len(result.mapped) == 1
        skipped = [e for e in result.entries if e.status is EntryStatus.SKIPPED]
        assert len(skipped) == 1
        assert skipped[0].error
        assert isinstance(result.failures[0], UnsupportedResourceTypeError)

    def test_derived_name_collisions_are_disambiguated(self, mapper):
        first = aws("ec2:subnet", "subnet-0a1b2c3d4e", "app")
        second = aws("ec2:subnet", "subnet-0b2c3d4e5f", "app")

        result = mapper.plan([first, second])

        assert sorted(e.address for e in result.entries) == [
            "aws_subnet.app_subnet_0a1b2c3d4e",
            "aws_subnet.app_subnet_0b2c3d4e5f",
        ]

    def test_explicit_addresses_are_not_rewritten(self, mapper):
        first = aws("ec2:subnet", "subnet-0a1b2c3d4e", "app")
        second = aws("ec2:subnet", "subnet-0b2c3d4e5f", "other")

        result = mapper.plan(
            [first, second],
            {first.key: "aws_subnet.shared", second.key: "aws_subnet.shared"},
        )

        assert [e.address for e in result.entries] == ["aws_subnet.shared", "aws_subnet.shared"]
        assert result.entries[0].requested_address == "aws_subnet.shared"
