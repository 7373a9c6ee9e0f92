"""Central resource type table - single source of truth.

Maps each (provider, native resource type) pair discovered in the cloud to
the destination resource type the IaC engine imports it as, together with
the provider requirement, the schema version the mapping was written
against, and a precedence rank used when dependency cycles must be broken.

Native types use the ``service:kind`` form produced by the discovery
adapters (for example ``ec2:vpc``). Destination type names are accepted as
native types too, so hand-written batches can name ``aws_vpc`` directly.
"""

from dataclasses import dataclass

from iac_import.models import Provider, ProviderRequirement


@dataclass(frozen=True)
class ResourceTypeInfo:
    """Metadata for a mappable resource type."""

    provider: Provider
    native_type: str
    destination_type: str
    description: str
    id_format: str
    precedence: int  # Lower = more foundational (imported earlier, cycle edges kept)
    schema_version: str = "0"
    min_provider_version: str | None = None


# Baseline required_providers entries per provider
PROVIDER_REQUIREMENTS: dict[Provider, ProviderRequirement] = {
    Provider.AWS: ProviderRequirement(name="aws", source="hashicorp/aws", min_version="5.0.0"),
    Provider.AZURE: ProviderRequirement(
        name="azurerm", source="hashicorp/azurerm", min_version="3.0.0"
    ),
    Provider.GCP: ProviderRequirement(
        name="google", source="hashicorp/google", min_version="5.0.0"
    ),
}


def _aws(native, dest, desc, id_format, precedence, schema="0", min_version=None):
    return ResourceTypeInfo(Provider.AWS, native, dest, desc, id_format, precedence, schema, min_version)


def _azure(native, dest, desc, id_format, precedence, schema="0", min_version=None):
    return ResourceTypeInfo(
        Provider.AZURE, native, dest, desc, id_format, precedence, schema, min_version
    )


def _gcp(native, dest, desc, id_format, precedence, schema="0", min_version=None):
    return ResourceTypeInfo(Provider.GCP, native, dest, desc, id_format, precedence, schema, min_version)


RESOURCE_TYPES: list[ResourceTypeInfo] = [
    # AWS - identity and networking foundation
    _aws("iam:role", "aws_iam_role", "IAM role", "Role name", 5),
    _aws("iam:user", "aws_iam_user", "IAM user", "User name", 5),
    _aws("ec2:vpc", "aws_vpc", "VPC", "VPC ID", 10, schema="1"),
    _aws("ec2:subnet", "aws_subnet", "Subnet", "Subnet ID", 20, schema="1"),
    _aws("ec2:internet-gateway", "aws_internet_gateway", "Internet gateway", "IGW ID", 20),
    _aws("ec2:route-table", "aws_route_table", "Route table", "Route table ID", 25),
    _aws("ec2:security-group", "aws_security_group", "Security group", "SG ID", 30, schema="1"),
    # AWS - data and messaging
    _aws("s3:bucket", "aws_s3_bucket", "S3 bucket", "Bucket name", 40),
    _aws("dynamodb:table", "aws_dynamodb_table", "DynamoDB table", "Table name", 40, schema="1"),
    _aws("sns:topic", "aws_sns_topic", "SNS topic", "Topic ARN", 40),
    _aws("sqs:queue", "aws_sqs_queue", "SQS queue", "Queue URL", 40),
    _aws("secretsmanager:secret", "aws_secretsmanager_secret", "Secret", "Secret ARN", 40),
    _aws("logs:loggroup", "aws_cloudwatch_log_group", "Log group", "Log group name", 40),
    _aws("ecr:repository", "aws_ecr_repository", "ECR repository", "Repository name", 40),
    _aws("rds:cluster", "aws_rds_cluster", "RDS cluster", "Cluster identifier", 50, schema="1"),
    _aws("rds:instance", "aws_db_instance", "RDS instance", "DB identifier", 55, schema="2"),
    # AWS - compute
    _aws("elb:application", "aws_lb", "Application load balancer", "ALB ARN", 55),
    _aws("ecs:cluster", "aws_ecs_cluster", "ECS cluster", "Cluster ARN", 55),
    _aws("eks:cluster", "aws_eks_cluster", "EKS cluster", "Cluster name", 55, min_version="5.30.0"),
    _aws("ec2:instance", "aws_instance", "EC2 instance", "Instance ID", 60, schema="1"),
    _aws("lambda:function", "aws_lambda_function", "Lambda function", "Function name", 60),
    _aws("ecs:service", "aws_ecs_service", "ECS service", "cluster/service", 70),
    # Azure
    _azure("resourcegroup", "azurerm_resource_group", "Resource group", "Resource ID", 0),
    _azure("network:vnet", "azurerm_virtual_network", "Virtual network", "Resource ID", 10),
    _azure("network:subnet", "azurerm_subnet", "Subnet", "Resource ID", 20),
    _azure("network:nsg", "azurerm_network_security_group", "NSG", "Resource ID", 30),
    _azure("storage:account", "azurerm_storage_account", "Storage account", "Resource ID", 40, schema="4"),
    _azure("keyvault:vault", "azurerm_key_vault", "Key vault", "Resource ID", 40, schema="2"),
    _azure("compute:vm", "azurerm_linux_virtual_machine", "Virtual machine", "Resource ID", 60),
    # GCP
    _gcp("compute:network", "google_compute_network", "VPC network", "projects/{p}/global/networks/{n}", 10),
    _gcp("compute:subnetwork", "google_compute_subnetwork", "Subnetwork", "self_link", 20),
    _gcp("compute:firewall", "google_compute_firewall", "Firewall rule", "self_link", 30, schema="1"),
    _gcp("storage:bucket", "google_storage_bucket", "Storage bucket", "Bucket name", 40, schema="1"),
    _gcp("compute:instance", "google_compute_instance", "VM instance", "self_link", 60, schema="6"),
    _gcp("run:service", "google_cloud_run_v2_service", "Cloud Run service", "Service name", 60, min_version="5.10.0"),
]

_BY_NATIVE: dict[tuple[Provider, str], ResourceTypeInfo] = {
    (info.provider, info.native_type): info for info in RESOURCE_TYPES
}
_BY_DESTINATION: dict[str, ResourceTypeInfo] = {}
for _info in RESOURCE_TYPES:
    _BY_DESTINATION.setdefault(_info.destination_type, _info)

# Rank for destination types outside the table (e.g. manual batches)
DEFAULT_PRECEDENCE = 100


def lookup(provider: Provider, resource_type: str) -> ResourceTypeInfo | None:
    """Find the table row for a discovered resource type.

    Manual resources and hand-written batches may name either a native type
    or a destination type; a destination type resolves to its own row as
    long as its provider agrees (Manual agrees with every provider).
    """
    info = _BY_NATIVE.get((provider, resource_type))
    if info is not None:
        return info
    info = _BY_DESTINATION.get(resource_type)
    if info is not None and provider in (info.provider, Provider.MANUAL):
        return info
    if provider is Provider.MANUAL:
        for (_, native), candidate in _BY_NATIVE.items():
            if native == resource_type:
                return candidate
    return None


def supported_types(provider: Provider) -> list[str]:
    """Native resource types the table can map for a provider."""
    if provider is Provider.MANUAL:
        return sorted(_BY_DESTINATION)
    return sorted(info.native_type for info in RESOURCE_TYPES if info.provider is provider)


def requirement_for(info: ResourceTypeInfo) -> ProviderRequirement:
    """Provider requirement for a type, honouring a per-type minimum version."""
    base = PROVIDER_REQUIREMENTS[info.provider]
    if info.min_provider_version is None:
        return base
    return ProviderRequirement(
        name=base.name, source=base.source, min_version=info.min_provider_version
    )
