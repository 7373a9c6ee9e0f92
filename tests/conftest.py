"""Shared test fixtures for iac-import."""

import re
from pathlib import Path

import pytest

from iac_import import resources
from iac_import.client.exceptions import ExecutorFailedError, ResourceNotFoundError
from iac_import.client.executor import ExecutionResult
from iac_import.config import (
    DiscoveryConfig,
    ExecutorConfig,
    ImportConfig,
    PathConfig,
    StateConfig,
)
from iac_import.discovery.base import ResourceRecord
from iac_import.discovery.registry import ProviderRegistry
from iac_import.models import DiscoveredResource, DiscoveryScope, Provider
from iac_import.state.store import BatchStore
from iac_import.workflow.coordinator import ImportWorkflow

_IMPORT_TO = re.compile(r"^\s*to\s*=\s*(\S+)\s*$", re.MULTILINE)


class FakeExecutor:
    """In-memory stand-in for the engine.

    Reads the import directives from the working directory like the real
    engine would; addresses in ``fail_addresses`` fail to import.
    """

    def __init__(
        self,
        working_dir=".",
        fail_addresses=(),
        schema_versions=None,
        write_generated=True,
        **options,
    ):
        self.working_dir = Path(working_dir)
        self.fail_addresses = set(fail_addresses)
        if schema_versions is None:
            schema_versions = {
                info.destination_type: info.schema_version for info in resources.RESOURCE_TYPES
            }
        self.schema_versions = dict(schema_versions)
        self.write_generated = write_generated
        self.options = options
        self.state: set[str] = set()
        self.calls: list[str] = []

    def pending_addresses(self) -> list[str]:
        addresses = []
        for path in sorted(self.working_dir.glob("_imports*.tf")):
            addresses.extend(_IMPORT_TO.findall(path.read_text()))
        return addresses

    def init(self) -> ExecutionResult:
        self.calls.append("init")
        return ExecutionResult("tofu init", 0, "OpenTofu has been successfully initialized!")

    def plan(self, generate_config: bool = True) -> ExecutionResult:
        self.calls.append("plan")
        addresses = self.pending_addresses()
        if generate_config and self.write_generated:
            blocks = []
            for address in addresses:
                parts = address.split(".")
                if len(parts) == 2:
                    blocks.append(
                        "# __generated__ by OpenTofu\n"
                        f'resource "{parts[0]}" "{parts[1]}" {{\n  tags = {{}}\n}}\n'
                    )
            (self.working_dir / "generated_resources.tf").write_text("\n".join(blocks))
        return ExecutionResult(
            "tofu plan",
            0,
            f"Plan: {len(addresses)} to import, 0 to add, 0 to change, 0 to destroy.\n",
        )

    def apply(self) -> ExecutionResult:
        self.calls.append("apply")
        errors = []
        for address in self.pending_addresses():
            if address in self.fail_addresses:
                errors.append(
                    "╷\n│ Error: Cannot import non-existent remote object\n│\n"
                    f"│   with {address},\n│   on _imports.tf line 1:\n╵\n"
                )
            else:
                self.state.add(address)
        if errors:
            raise ExecutorFailedError(
                "tofu apply", "apply failed", exit_code=1, stderr="".join(errors), phase="applying"
            )
        return ExecutionResult("tofu apply", 0, "Apply complete!")

    def state_list(self) -> list[str]:
        self.calls.append("state_list")
        return sorted(self.state)

    def state_rm(self, address: str) -> ExecutionResult:
        self.calls.append(f"state_rm {address}")
        if address not in self.state:
            raise ResourceNotFoundError("state address", address, phase="rollback")
        self.state.discard(address)
        return ExecutionResult(f"tofu state rm {address}", 0, "Removed 1 object(s).")

    def provider_schema_versions(self) -> dict[str, str]:
        self.calls.append("providers_schema")
        return dict(self.schema_versions)


class FakeAWSProvider:
    """AWS provider serving a fixed inventory and counting queries."""

    provider = Provider.AWS

    def __init__(self, resources_=None, failing_types=()):
        self.resources = list(resources_ or [])
        self.failing_types = set(failing_types)
        self.queries: list[tuple[str, str | None]] = []

    def supported_resource_types(self) -> list[str]:
        return resources.supported_types(Provider.AWS)

    async def discover(self, scope: DiscoveryScope, resource_type: str, region: str | None):
        self.queries.append((resource_type, region))
        if resource_type in self.failing_types:
            raise RuntimeError(f"{resource_type} endpoint unavailable")
        return [
            ResourceRecord(
                r.resource_type, r.resource_id, dict(r.attributes), dict(r.tags), r.name, region
            )
            for r in self.resources
            if r.resource_type == resource_type and (region is None or r.region in (None, region))
        ]


def aws(resource_type: str, resource_id: str, name: str | None = None, **attributes):
    """Build an AWS DiscoveredResource in us-east-1."""
    return DiscoveredResource(
        provider=Provider.AWS,
        resource_type=resource_type,
        resource_id=resource_id,
        attributes=attributes,
        tags={"Name": name} if name else {},
        name=name,
        region="us-east-1",
    )


@pytest.fixture
def network_resources():
    """VPC with two subnets, a security group and a bucket."""
    return [
        aws("ec2:subnet", "subnet-0a1b2c3d4e", "app", vpc_id="vpc-0f1e2d3c4b"),
        aws("ec2:vpc", "vpc-0f1e2d3c4b", "main", cidr_block="10.0.0.0/16"),
        aws("ec2:subnet", "subnet-0b2c3d4e5f", "data", vpc_id="vpc-0f1e2d3c4b"),
        aws("ec2:security-group", "sg-0c3d4e5f6a", "web", vpc_id="vpc-0f1e2d3c4b"),
        aws("s3:bucket", "assets-bucket", "assets"),
    ]


@pytest.fixture
def working_dir(tmp_path):
    path = tmp_path / "infra"
    path.mkdir()
    return path


@pytest.fixture
def config(tmp_path, working_dir):
    """Configuration with auto-approve and a throwaway SQLite store."""
    return ImportConfig(
        paths=PathConfig(working_dir=str(working_dir)),
        discovery=DiscoveryConfig(retry_attempts=2, retry_min_wait=0, retry_max_wait=0),
        executor=ExecutorConfig(auto_approve=True),
        state=StateConfig(db_path=str(tmp_path / "state" / "state.db")),
    )


@pytest.fixture
def store(config):
    batch_store = BatchStore(config.state.database_url)
    yield batch_store
    batch_store.close()


@pytest.fixture
def aws_provider(network_resources):
    return FakeAWSProvider(network_resources)


@pytest.fixture
def registry(aws_provider):
    return ProviderRegistry().register_provider(aws_provider)


@pytest.fixture
def executor(working_dir):
    return FakeExecutor(working_dir)


@pytest.fixture
def workflow(config, registry, store, executor):
    return ImportWorkflow(config, registry, store, executor=executor)


@pytest.fixture
def aws_scope():
    return DiscoveryScope(regions=["us-east-1"])
