"""Readers for file-based discovery sources.

Two formats are accepted:

* **Batch input**: an ordered list of ``{provider, resource_type,
  resource_id, destination_address}`` records describing a hand-curated
  import, either top-level or under a ``resources`` key.
* **Inventory export**: a snapshot written by an inventory tool, with a
  ``schema_version`` and a ``resources`` list whose ``type`` values look like
  ``aws:ec2:vpc``. Record data sits under ``properties`` and links to other
  records under ``relationships``.

Both are YAML or JSON (JSON is valid YAML, so one loader serves both).
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from iac_import.client.exceptions import ConfigParseError, ImportIOError, InvalidInputError
from iac_import.models import DiscoveredResource, DiscoveryFilter, Provider
from iac_import.utils.logging import get_logger
from iac_import.utils.versions import parse_version

logger = get_logger(__name__)

SUPPORTED_EXPORT_VERSIONS = ("1.0.0", "1.0", "1")
MINIMUM_EXPORT_VERSION = (1, 0, 0)
# Export link types that point from a resource to what it contains
OUTWARD_RELATIONSHIPS = frozenset({"contains"})


def _load_document(path: Path) -> Any:
    if not path.exists():
        raise ConfigParseError("file not found", path=str(path))
    try:
        with open(path) as f:
            if path.suffix == ".json":
                return json.load(f)
            return yaml.safe_load(f)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigParseError(f"cannot parse: {e}", path=str(path)) from e
    except OSError as e:
        raise ImportIOError(f"cannot read {path}: {e}") from e


class BatchInputItem(BaseModel):
    """One record of a hand-curated batch."""

    provider: str
    resource_type: str
    resource_id: str
    destination_address: str | None = None
    name: str | None = None
    region: str | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)
    tags: dict[str, str] = Field(default_factory=dict)

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        return Provider.from_str(v).value

    @field_validator("resource_id", "resource_type")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()

    def to_resource(self) -> DiscoveredResource:
        return DiscoveredResource(
            provider=Provider(self.provider),
            resource_type=self.resource_type,
            resource_id=self.resource_id,
            attributes=dict(self.attributes),
            tags=dict(self.tags),
            name=self.name,
            region=self.region,
        )


@dataclass
class BatchInput:
    """Parsed batch input: descriptors plus explicit destination addresses."""

    resources: list[DiscoveredResource] = field(default_factory=list)
    addresses: dict[tuple[str, str, str], str] = field(default_factory=dict)


def load_batch_input(path: str | Path) -> BatchInput:
    """Load a batch input file.

    Raises:
        ConfigParseError: If the file cannot be read or parsed
        InvalidInputError: If a record is invalid or duplicated
    """
    path = Path(path)
    data = _load_document(path)
    if isinstance(data, dict):
        data = data.get("resources")
    if not isinstance(data, list):
        raise ConfigParseError("expected a list of resources", path=str(path))

    batch = BatchInput()
    seen: set[tuple[str, str, str]] = set()
    for index, raw in enumerate(data):
        try:
            item = BatchInputItem.model_validate(raw)
        except (ValidationError, InvalidInputError) as e:
            raise InvalidInputError(f"{path}: record {index}: {e}") from e

        resource = item.to_resource()
        if resource.key in seen:
            raise InvalidInputError(
                f"{path}: record {index}: duplicate resource {resource.resource_type} "
                f"'{resource.resource_id}'"
            )
        seen.add(resource.key)
        batch.resources.append(resource)
        if item.destination_address:
            batch.addresses[resource.key] = item.destination_address

    logger.info("batch_input_loaded", path=str(path), resources=len(batch.resources))
    return batch


class SchemaVersionCheck(str, Enum):
    """Outcome of checking an inventory export's schema version."""

    VALID = "valid"
    MISSING = "missing"
    NEWER = "newer"
    TOO_OLD = "too_old"
    INVALID = "invalid"


def check_export_version(version: str | None) -> SchemaVersionCheck:
    """Classify an export schema version against the supported range."""
    if version is None:
        return SchemaVersionCheck.MISSING
    if str(version) in SUPPORTED_EXPORT_VERSIONS:
        return SchemaVersionCheck.VALID
    parsed = parse_version(str(version))
    if parsed is None:
        return SchemaVersionCheck.INVALID
    if parsed < MINIMUM_EXPORT_VERSION:
        return SchemaVersionCheck.TOO_OLD
    if parsed > MINIMUM_EXPORT_VERSION:
        return SchemaVersionCheck.NEWER
    return SchemaVersionCheck.VALID


def _split_export_type(raw_type: str, default_provider: str | None) -> tuple[Provider, str]:
    """Split ``aws:ec2:vpc`` into (AWS, ``ec2:vpc``)."""
    head, sep, rest = raw_type.partition(":")
    if sep:
        try:
            return Provider.from_str(head), rest
        except InvalidInputError:
            pass
    if default_provider:
        return Provider.from_str(default_provider), raw_type
    raise InvalidInputError(f"Cannot determine provider for resource type '{raw_type}'")


def _export_attributes(raw: dict[str, Any]) -> dict[str, Any]:
    """Attributes of an export record, with its relationships folded in.

    Exports keep resource data under ``properties`` (older writers use
    ``attributes``) and links under ``relationships``. Target ids of links
    that point at something this resource needs are stored under
    ``relationships`` keyed by link type, where dependency inference finds
    them. ``contains`` links point the other way and are left out.
    """
    attributes = dict(raw.get("properties") or raw.get("attributes") or {})
    links: dict[str, list[str]] = {}
    for relationship in raw.get("relationships") or []:
        kind = str(relationship.get("type") or "references")
        target = relationship.get("target_id")
        if kind in OUTWARD_RELATIONSHIPS or not target:
            continue
        links.setdefault(kind, []).append(str(target))
    if links and "relationships" not in attributes:
        attributes["relationships"] = links
    return attributes


def load_inventory_export(
    path: str | Path, resource_filter: DiscoveryFilter | None = None
) -> tuple[list[DiscoveredResource], list[str]]:
    """Read resources from an inventory export.

    Returns:
        (resources, warnings)

    Raises:
        ConfigParseError: If the file is unreadable or its schema version is unusable
    """
    path = Path(path)
    data = _load_document(path)
    if not isinstance(data, dict) or not isinstance(data.get("resources"), list):
        raise ConfigParseError("expected a mapping with a 'resources' list", path=str(path))

    warnings: list[str] = []
    version = data.get("schema_version")
    check = check_export_version(None if version is None else str(version))
    if check is SchemaVersionCheck.MISSING:
        warnings.append(f"{path}: no schema_version, assuming {SUPPORTED_EXPORT_VERSIONS[0]}")
    elif check is SchemaVersionCheck.NEWER:
        warnings.append(f"{path}: schema_version {version} is newer than supported; continuing")
    elif check in (SchemaVersionCheck.TOO_OLD, SchemaVersionCheck.INVALID):
        raise ConfigParseError(f"unsupported schema_version {version!r}", path=str(path))

    default_provider = data.get("provider")
    found: list[DiscoveredResource] = []
    for index, raw in enumerate(data["resources"]):
        try:
            provider, resource_type = _split_export_type(
                raw.get("type") or raw["resource_type"], default_provider
            )
            resource = DiscoveredResource(
                provider=provider,
                resource_type=resource_type,
                resource_id=str(raw.get("id") or raw["resource_id"]),
                attributes=_export_attributes(raw),
                tags={str(k): str(v) for k, v in (raw.get("tags") or {}).items()},
                name=raw.get("name"),
                region=raw.get("region"),
            )
        except (KeyError, AttributeError, TypeError, ValueError, InvalidInputError) as e:
            raise ConfigParseError(f"resource {index} is malformed: {e}", path=str(path)) from e
        found.append(resource)

    if resource_filter is not None:
        found = resource_filter.apply(found)

    for warning in warnings:
        logger.warning("inventory_export_warning", message=warning)
    logger.info("inventory_export_loaded", path=str(path), resources=len(found))
    return found, warnings
