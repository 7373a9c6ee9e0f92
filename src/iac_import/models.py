"""Core data model for import batches.

Discovered resources are immutable records produced by discovery. Plan
entries, batches and rollback records are owned by one workflow run and
serialize to the batch status record persisted between runs.
"""

import fnmatch
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from iac_import.client.exceptions import InvalidInputError, SerializationError
from iac_import.utils.versions import format_version, parse_version

_NON_IDENTIFIER = re.compile(r"[^A-Za-z0-9_]")


def utcnow() -> datetime:
    return datetime.now(UTC)


def sanitize_name(value: str) -> str:
    """Turn an arbitrary string into a valid resource name.

    >>> sanitize_name("My-App.Server")
    'my_app_server'
    >>> sanitize_name("123abc")
    'r_123abc'
    >>> sanitize_name("---")
    'resource'
    """
    name = _NON_IDENTIFIER.sub("_", value).lower().strip("_")
    if not name:
        return "resource"
    if name[0].isdigit():
        name = f"r_{name}"
    return name


class Provider(str, Enum):
    """Discovery provider variants."""

    AWS = "aws"
    AZURE = "azure"
    GCP = "gcp"
    MANUAL = "manual"

    @classmethod
    def from_str(cls, value: str) -> "Provider":
        """Parse a provider name, accepting the engine's provider aliases."""
        aliases = {
            "aws": cls.AWS,
            "azure": cls.AZURE,
            "azurerm": cls.AZURE,
            "gcp": cls.GCP,
            "google": cls.GCP,
            "manual": cls.MANUAL,
        }
        try:
            return aliases[value.strip().lower()]
        except KeyError:
            raise InvalidInputError(
                f"Unknown provider '{value}' (expected one of aws, azure, gcp, manual)"
            ) from None


@dataclass(frozen=True)
class DiscoveredResource:
    """A cloud resource found by discovery. Read-only once produced."""

    provider: Provider
    resource_type: str
    resource_id: str
    attributes: dict[str, Any] = field(default_factory=dict)
    tags: dict[str, str] = field(default_factory=dict)
    name: str | None = None
    region: str | None = None

    @property
    def key(self) -> tuple[str, str, str]:
        """Identity of the resource within a batch."""
        return (self.provider.value, self.resource_type, self.resource_id)

    @property
    def suggested_name(self) -> str:
        """Destination name derived from the Name tag, name or id."""
        return sanitize_name(self.tags.get("Name") or self.name or self.resource_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider.value,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "name": self.name,
            "region": self.region,
            "attributes": dict(self.attributes),
            "tags": dict(self.tags),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DiscoveredResource":
        try:
            return cls(
                provider=Provider.from_str(data["provider"]),
                resource_type=str(data["resource_type"]),
                resource_id=str(data["resource_id"]),
                attributes=dict(data.get("attributes") or {}),
                tags={str(k): str(v) for k, v in (data.get("tags") or {}).items()},
                name=data.get("name"),
                region=data.get("region"),
            )
        except KeyError as e:
            raise SerializationError(f"Discovered resource record missing field {e}") from e


@dataclass
class DiscoveryScope:
    """Where to look: regions plus account, subscription or project identifiers."""

    regions: list[str] = field(default_factory=list)
    account_id: str | None = None
    subscription_id: str | None = None
    project_id: str | None = None

    def region_list(self) -> list[str | None]:
        """Regions to query, or a single global query when none are set."""
        return list(self.regions) if self.regions else [None]


@dataclass
class DiscoveryFilter:
    """Post-query filter applied to discovered resources."""

    resource_types: list[str] = field(default_factory=list)
    tags: dict[str, str] = field(default_factory=dict)
    regions: list[str] = field(default_factory=list)
    name_pattern: str | None = None
    limit: int | None = None

    def matches(self, resource: DiscoveredResource) -> bool:
        """Check whether a resource passes every configured criterion."""
        if self.resource_types and resource.resource_type not in self.resource_types:
            return False
        for key, value in self.tags.items():
            if resource.tags.get(key) != value:
                return False
        if self.regions and resource.region not in self.regions:
            return False
        if self.name_pattern:
            candidates = [resource.resource_id]
            if resource.name:
                candidates.append(resource.name)
            if not any(fnmatch.fnmatch(c, self.name_pattern) for c in candidates):
                return False
        return True

    def apply(self, resources: list[DiscoveredResource]) -> list[DiscoveredResource]:
        matched = [r for r in resources if self.matches(r)]
        if self.limit is not None:
            matched = matched[: self.limit]
        return matched


@dataclass
class DiscoveryResult:
    """Resources found by one discover call plus the failures encountered.

    Failures never replace results: a failed query contributes an error here
    while every query that completed still contributes its resources.
    """

    provider: Provider
    resources: list[DiscoveredResource] = field(default_factory=list)
    failures: list[Exception] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return bool(self.failures)


@dataclass(frozen=True)
class ProviderRequirement:
    """An entry of the generated required_providers block."""

    name: str
    source: str
    min_version: str

    @property
    def version_tuple(self) -> tuple[int, int, int]:
        return parse_version(self.min_version) or (0, 0, 0)

    @property
    def constraint(self) -> str:
        return f">= {format_version(self.version_tuple)}"

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "source": self.source, "min_version": self.min_version}


@dataclass(frozen=True)
class ImportDestination:
    """Where a discovered resource lands in configuration."""

    target_resource_address: str
    target_module_path: str
    resource_type: str
    name: str
    requirement: ProviderRequirement
    schema_version: str

    @classmethod
    def build(
        cls,
        resource_type: str,
        name: str,
        requirement: ProviderRequirement,
        schema_version: str,
        module_path: str = "",
    ) -> "ImportDestination":
        local = f"{resource_type}.{name}"
        address = f"{module_path}.{local}" if module_path else local
        return cls(
            target_resource_address=address,
            target_module_path=module_path,
            resource_type=resource_type,
            name=name,
            requirement=requirement,
            schema_version=schema_version,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_resource_address": self.target_resource_address,
            "target_module_path": self.target_module_path,
            "resource_type": self.resource_type,
            "name": self.name,
            "requirement": self.requirement.to_dict(),
            "schema_version": self.schema_version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ImportDestination":
        return cls(
            target_resource_address=data["target_resource_address"],
            target_module_path=data.get("target_module_path", ""),
            resource_type=data["resource_type"],
            name=data["name"],
            requirement=ProviderRequirement(**data["requirement"]),
            schema_version=str(data["schema_version"]),
        )


class EntryStatus(str, Enum):
    """Lifecycle of a single import plan entry."""

    PENDING = "pending"
    MAPPED = "mapped"
    GENERATED = "generated"
    PLANNED = "planned"
    APPLIED = "applied"
    FAILED = "failed"
    SKIPPED = "skipped"
    ROLLED_BACK = "rolled_back"


class BatchStatus(str, Enum):
    """Workflow state of a batch. The persisted value is the resumption point."""

    DISCOVERING = "discovering"
    MAPPING = "mapping"
    CONFIG_GENERATED = "config_generated"
    VALIDATED = "validated"
    PLANNING = "planning"
    APPLYING = "applying"
    FINALIZED = "finalized"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"
    EMPTY = "empty"

    @property
    def is_terminal(self) -> bool:
        return self in (BatchStatus.FINALIZED, BatchStatus.ROLLED_BACK, BatchStatus.EMPTY)


@dataclass
class ImportPlanEntry:
    """One resource moving through the import workflow."""

    resource: DiscoveredResource
    destination: ImportDestination | None = None
    ordinal: int = 0
    status: EntryStatus = EntryStatus.PENDING
    error: str | None = None
    requested_address: str | None = None

    @property
    def address(self) -> str | None:
        return self.destination.target_resource_address if self.destination else None

    @property
    def sort_key(self) -> tuple[int, str]:
        return (self.ordinal, self.address or "")

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource": self.resource.to_dict(),
            "destination": self.destination.to_dict() if self.destination else None,
            "ordinal": self.ordinal,
            "status": self.status.value,
            "error": self.error,
            "requested_address": self.requested_address,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ImportPlanEntry":
        destination = data.get("destination")
        return cls(
            resource=DiscoveredResource.from_dict(data["resource"]),
            destination=ImportDestination.from_dict(destination) if destination else None,
            ordinal=int(data.get("ordinal", 0)),
            status=EntryStatus(data.get("status", EntryStatus.PENDING.value)),
            error=data.get("error"),
            requested_address=data.get("requested_address"),
        )


class RollbackActionKind(str, Enum):
    """Compensating actions. Neither touches the underlying cloud resource."""

    REMOVE_FROM_STATE = "remove_from_state"
    DISCARD_CONFIG = "discard_config"


@dataclass(frozen=True)
class RollbackAction:
    """A planned compensating step for one entry."""

    address: str
    resource_id: str
    ordinal: int
    kind: RollbackActionKind


@dataclass
class RollbackRecord:
    """Outcome of one executed rollback action."""

    address: str
    resource_id: str
    kind: RollbackActionKind
    executed_at: datetime
    success: bool
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "resource_id": self.resource_id,
            "kind": self.kind.value,
            "executed_at": self.executed_at.isoformat(),
            "success": self.success,
            "message": self.message,
        }


@dataclass
class ImportBatch:
    """A unit of work: entries processed together through one workflow run."""

    batch_id: str
    working_dir: str
    status: BatchStatus = BatchStatus.DISCOVERING
    entries: list[ImportPlanEntry] = field(default_factory=list)
    file_organization: str = "single_file"
    warnings: list[str] = field(default_factory=list)
    generated_files: dict[str, str] = field(default_factory=dict)
    error: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def ordered_entries(self) -> list[ImportPlanEntry]:
        """Entries in ordinal-then-address order."""
        return sorted(self.entries, key=lambda e: e.sort_key)

    def entries_with_status(self, *statuses: EntryStatus) -> list[ImportPlanEntry]:
        return [e for e in self.ordered_entries() if e.status in statuses]

    def active_entries(self) -> list[ImportPlanEntry]:
        """Entries still moving through the workflow (not skipped or failed)."""
        return [
            e
            for e in self.ordered_entries()
            if e.status not in (EntryStatus.SKIPPED, EntryStatus.FAILED, EntryStatus.ROLLED_BACK)
        ]

    def find_entry(self, address: str) -> ImportPlanEntry | None:
        for entry in self.entries:
            if entry.address == address:
                return entry
        return None

    def status_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for entry in self.entries:
            counts[entry.status.value] = counts.get(entry.status.value, 0) + 1
        return counts

    def touch(self) -> None:
        self.updated_at = utcnow()

    def to_dict(self) -> dict[str, Any]:
        """Batch status record."""
        return {
            "batch_id": self.batch_id,
            "status": self.status.value,
            "working_dir": self.working_dir,
            "file_organization": self.file_organization,
            "entries": [e.to_dict() for e in self.ordered_entries()],
            "warnings": list(self.warnings),
            "generated_files": dict(sorted(self.generated_files.items())),
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ImportBatch":
        try:
            return cls(
                batch_id=data["batch_id"],
                working_dir=data["working_dir"],
                status=BatchStatus(data["status"]),
                entries=[ImportPlanEntry.from_dict(e) for e in data.get("entries", [])],
                file_organization=data.get("file_organization", "single_file"),
                warnings=list(data.get("warnings", [])),
                generated_files=dict(data.get("generated_files", {})),
                error=data.get("error"),
                created_at=datetime.fromisoformat(data["created_at"]),
                updated_at=datetime.fromisoformat(data["updated_at"]),
            )
        except (KeyError, ValueError) as e:
            raise SerializationError(f"Invalid batch status record: {e}") from e
