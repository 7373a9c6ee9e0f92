"""AWS discovery provider built on boto3.

Each supported native type has a small query function that lists resources
through the service paginator and normalizes them into ResourceRecords.
Blocking boto3 calls run in worker threads.
"""

from collections.abc import Callable, Iterator
from typing import Any

import boto3
from botocore.exceptions import (
    ClientError,
    EndpointConnectionError,
    NoCredentialsError,
    OperationNotPageableError,
    PartialCredentialsError,
)

from iac_import.client.exceptions import (
    AuthenticationError,
    ProviderApiError,
    ProviderThrottlingError,
)
from iac_import.discovery.base import ResourceRecord, run_blocking, tags_from_pairs
from iac_import.models import DiscoveryScope, Provider
from iac_import.utils.logging import get_logger

logger = get_logger(__name__)

AUTH_ERROR_CODES = {
    "AuthFailure",
    "ExpiredToken",
    "ExpiredTokenException",
    "InvalidClientTokenId",
    "SignatureDoesNotMatch",
    "UnrecognizedClientException",
}
THROTTLE_ERROR_CODES = {
    "RequestLimitExceeded",
    "SlowDown",
    "Throttling",
    "ThrottlingException",
    "TooManyRequestsException",
}
# Queried once per discover call instead of once per region
GLOBAL_TYPES = {"s3:bucket", "iam:role", "iam:user"}

ClientFactory = Callable[[str], Any]


def safe_paginate(client: Any, method_name: str, result_key: str, **kwargs: Any) -> Iterator[dict]:
    """Iterate through paginated boto3 results, falling back to a single call."""
    try:
        paginator = client.get_paginator(method_name)
    except OperationNotPageableError:
        response = getattr(client, method_name)(**kwargs)
        yield from response.get(result_key, [])
        return

    for page in paginator.paginate(**kwargs):
        yield from page.get(result_key, [])


def _vpcs(clients: ClientFactory, region: str | None) -> list[ResourceRecord]:
    records = []
    for vpc in safe_paginate(clients("ec2"), "describe_vpcs", "Vpcs"):
        tags = tags_from_pairs(vpc.get("Tags"))
        records.append(
            ResourceRecord(
                "ec2:vpc",
                vpc["VpcId"],
                {
                    "cidr_block": vpc.get("CidrBlock"),
                    "instance_tenancy": vpc.get("InstanceTenancy"),
                    "is_default": vpc.get("IsDefault", False),
                },
                tags,
                tags.get("Name"),
                region,
            )
        )
    return records


def _subnets(clients: ClientFactory, region: str | None) -> list[ResourceRecord]:
    records = []
    for subnet in safe_paginate(clients("ec2"), "describe_subnets", "Subnets"):
        tags = tags_from_pairs(subnet.get("Tags"))
        records.append(
            ResourceRecord(
                "ec2:subnet",
                subnet["SubnetId"],
                {
                    "vpc_id": subnet.get("VpcId"),
                    "cidr_block": subnet.get("CidrBlock"),
                    "availability_zone": subnet.get("AvailabilityZone"),
                },
                tags,
                tags.get("Name"),
                region,
            )
        )
    return records


def _security_groups(clients: ClientFactory, region: str | None) -> list[ResourceRecord]:
    records = []
    for group in safe_paginate(clients("ec2"), "describe_security_groups", "SecurityGroups"):
        tags = tags_from_pairs(group.get("Tags"))
        records.append(
            ResourceRecord(
                "ec2:security-group",
                group["GroupId"],
                {
                    "name": group.get("GroupName"),
                    "description": group.get("Description"),
                    "vpc_id": group.get("VpcId"),
                },
                tags,
                tags.get("Name") or group.get("GroupName"),
                region,
            )
        )
    return records


def _internet_gateways(clients: ClientFactory, region: str | None) -> list[ResourceRecord]:
    records = []
    for igw in safe_paginate(clients("ec2"), "describe_internet_gateways", "InternetGateways"):
        tags = tags_from_pairs(igw.get("Tags"))
        attachments = igw.get("Attachments") or []
        records.append(
            ResourceRecord(
                "ec2:internet-gateway",
                igw["InternetGatewayId"],
                {"vpc_id": attachments[0].get("VpcId") if attachments else None},
                tags,
                tags.get("Name"),
                region,
            )
        )
    return records


def _route_tables(clients: ClientFactory, region: str | None) -> list[ResourceRecord]:
    records = []
    for table in safe_paginate(clients("ec2"), "describe_route_tables", "RouteTables"):
        tags = tags_from_pairs(table.get("Tags"))
        records.append(
            ResourceRecord(
                "ec2:route-table",
                table["RouteTableId"],
                {
                    "vpc_id": table.get("VpcId"),
                    "subnet_ids": sorted(
                        a["SubnetId"] for a in table.get("Associations", []) if a.get("SubnetId")
                    ),
                },
                tags,
                tags.get("Name"),
                region,
            )
        )
    return records


def _instances(clients: ClientFactory, region: str | None) -> list[ResourceRecord]:
    records = []
    for reservation in safe_paginate(clients("ec2"), "describe_instances", "Reservations"):
        for instance in reservation.get("Instances", []):
            if instance.get("State", {}).get("Name") == "terminated":
                continue
            tags = tags_from_pairs(instance.get("Tags"))
            records.append(
                ResourceRecord(
                    "ec2:instance",
                    instance["InstanceId"],
                    {
                        "instance_type": instance.get("InstanceType"),
                        "ami": instance.get("ImageId"),
                        "subnet_id": instance.get("SubnetId"),
                        "vpc_security_group_ids": [
                            g["GroupId"] for g in instance.get("SecurityGroups", [])
                        ],
                    },
                    tags,
                    tags.get("Name"),
                    region,
                )
            )
    return records


def _buckets(clients: ClientFactory, region: str | None) -> list[ResourceRecord]:
    return [
        ResourceRecord(
            "s3:bucket",
            bucket["Name"],
            {"creation_date": str(bucket.get("CreationDate", ""))},
            {},
            bucket["Name"],
            None,
        )
        for bucket in safe_paginate(clients("s3"), "list_buckets", "Buckets")
    ]


def _iam_roles(clients: ClientFactory, region: str | None) -> list[ResourceRecord]:
    return [
        ResourceRecord(
            "iam:role",
            role["RoleName"],
            {"arn": role.get("Arn"), "path": role.get("Path")},
            {},
            role["RoleName"],
            None,
        )
        for role in safe_paginate(clients("iam"), "list_roles", "Roles")
    ]


def _iam_users(clients: ClientFactory, region: str | None) -> list[ResourceRecord]:
    return [
        ResourceRecord(
            "iam:user",
            user["UserName"],
            {"arn": user.get("Arn"), "path": user.get("Path")},
            {},
            user["UserName"],
            None,
        )
        for user in safe_paginate(clients("iam"), "list_users", "Users")
    ]


def _lambda_functions(clients: ClientFactory, region: str | None) -> list[ResourceRecord]:
    records = []
    for function in safe_paginate(clients("lambda"), "list_functions", "Functions"):
        vpc_config = function.get("VpcConfig") or {}
        records.append(
            ResourceRecord(
                "lambda:function",
                function["FunctionName"],
                {
                    "runtime": function.get("Runtime"),
                    "role": function.get("Role"),
                    "subnet_ids": vpc_config.get("SubnetIds", []),
                    "security_group_ids": vpc_config.get("SecurityGroupIds", []),
                },
                {},
                function["FunctionName"],
                region,
            )
        )
    return records


def _db_instances(clients: ClientFactory, region: str | None) -> list[ResourceRecord]:
    records = []
    for db in safe_paginate(clients("rds"), "describe_db_instances", "DBInstances"):
        tags = tags_from_pairs(db.get("TagList"))
        subnet_group = db.get("DBSubnetGroup") or {}
        records.append(
            ResourceRecord(
                "rds:instance",
                db["DBInstanceIdentifier"],
                {
                    "engine": db.get("Engine"),
                    "instance_class": db.get("DBInstanceClass"),
                    "vpc_id": subnet_group.get("VpcId"),
                    "vpc_security_group_ids": [
                        g["VpcSecurityGroupId"] for g in db.get("VpcSecurityGroups", [])
                    ],
                },
                tags,
                db["DBInstanceIdentifier"],
                region,
            )
        )
    return records


QUERIES: dict[str, Callable[[ClientFactory, str | None], list[ResourceRecord]]] = {
    "ec2:vpc": _vpcs,
    "ec2:subnet": _subnets,
    "ec2:security-group": _security_groups,
    "ec2:internet-gateway": _internet_gateways,
    "ec2:route-table": _route_tables,
    "ec2:instance": _instances,
    "s3:bucket": _buckets,
    "iam:role": _iam_roles,
    "iam:user": _iam_users,
    "lambda:function": _lambda_functions,
    "rds:instance": _db_instances,
}


def translate_error(exc: Exception, resource_type: str, region: str | None) -> Exception:
    """Map a botocore exception onto the import error taxonomy."""
    if isinstance(exc, (NoCredentialsError, PartialCredentialsError)):
        return AuthenticationError("aws", str(exc))
    if isinstance(exc, ClientError):
        code = exc.response.get("Error", {}).get("Code", "")
        message = exc.response.get("Error", {}).get("Message", str(exc))
        if code in AUTH_ERROR_CODES:
            return AuthenticationError("aws", f"{code}: {message}")
        if code in THROTTLE_ERROR_CODES:
            return ProviderThrottlingError("aws", f"{code}: {message}", resource_type, region)
        return ProviderApiError("aws", f"{code}: {message}", resource_type, region)
    if isinstance(exc, EndpointConnectionError):
        return ProviderApiError("aws", str(exc), resource_type, region)
    return exc


class AWSProvider:
    """Discovery provider for AWS accounts."""

    provider = Provider.AWS

    def __init__(self, session: Any | None = None, profile: str | None = None):
        """Initialize the provider.

        Args:
            session: boto3 Session-like object (anything with ``client(name, region_name=)``)
            profile: Named profile used when no session is given
        """
        self._session = session
        self._profile = profile

    @property
    def session(self) -> Any:
        if self._session is None:
            self._session = boto3.Session(profile_name=self._profile)
        return self._session

    def supported_resource_types(self) -> list[str]:
        return sorted(QUERIES)

    def _query(self, resource_type: str, region: str | None) -> list[ResourceRecord]:
        clients: dict[str, Any] = {}

        def client_for(service: str) -> Any:
            if service not in clients:
                clients[service] = self.session.client(service, region_name=region)
            return clients[service]

        return QUERIES[resource_type](client_for, region)

    async def discover(
        self, scope: DiscoveryScope, resource_type: str, region: str | None
    ) -> list[ResourceRecord]:
        if resource_type in GLOBAL_TYPES and region != scope.region_list()[0]:
            return []

        logger.debug("aws_query_started", resource_type=resource_type, region=region)
        try:
            records = await run_blocking(self._query, resource_type, region)
        except (ClientError, EndpointConnectionError, NoCredentialsError, PartialCredentialsError) as e:
            raise translate_error(e, resource_type, region) from e

        logger.debug(
            "aws_query_completed", resource_type=resource_type, region=region, count=len(records)
        )
        return records
