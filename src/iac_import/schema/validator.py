"""Schema validation and preflight checks.

``ValidationEngine.validate`` compares the schema version each destination
type was mapped against with the live provider schema. Incompatible types
are pulled out of the batch (their entries become Skipped); stale types only
produce warnings.

``preflight`` inspects a batch and its working directory before anything
is generated and reports errors and warnings without changing either.
"""

import re
from collections.abc import Mapping
from pathlib import Path

from iac_import.mapping.mapper import scalar_values
from iac_import.models import EntryStatus, ImportBatch
from iac_import.schema.models import (
    Severity,
    TypeVerdict,
    ValidationIssue,
    ValidationReport,
    Verdict,
)
from iac_import.utils.logging import get_logger
from iac_import.utils.versions import parse_version

logger = get_logger(__name__)

# Attribute values that look like references to other cloud resources
REFERENCE_PATTERNS = [
    re.compile(r"^(vpc|subnet|sg|igw|rtb|nat|eni|acl|i|vol|snap|ami|lt|tgw|pcx)-[0-9a-f]{6,}$"),
    re.compile(r"^/subscriptions/[^/]+/resourceGroups/[^/]+/providers/.+", re.IGNORECASE),
    re.compile(r"^projects/[^/]+/(global|regions/[^/]+|zones/[^/]+)/[^/]+/[^/]+$"),
]

_STATE_FILES = ("terraform.tfstate",)


def compare_versions(recorded: str, live: str | int | None) -> tuple[Verdict, str]:
    """Compute the verdict for one recorded/live schema version pair."""
    if live is None:
        return Verdict.INCOMPATIBLE, "type missing from live provider schema"
    recorded_version = parse_version(recorded)
    live_version = parse_version(live)
    if recorded_version is None or live_version is None:
        return Verdict.INCOMPATIBLE, f"unparseable schema version ({recorded!r} vs {live!r})"
    if recorded_version == live_version:
        return Verdict.CURRENT, ""
    if recorded_version[0] == live_version[0]:
        return Verdict.STALE, f"schema changed from {recorded} to {live}"
    return Verdict.INCOMPATIBLE, f"major schema version changed from {recorded} to {live}"


class ValidationEngine:
    """Checks mapped entries against the live provider schema."""

    def validate(
        self, batch: ImportBatch, live_schema_versions: Mapping[str, str | int]
    ) -> ValidationReport:
        """Produce per-type verdicts and skip entries of incompatible types.

        Args:
            batch: Batch whose generated entries are checked
            live_schema_versions: Destination type -> live schema version

        Returns:
            ValidationReport; entries of incompatible types are left Skipped
        """
        report = ValidationReport()
        candidates = [e for e in batch.active_entries() if e.destination is not None]

        for entry in candidates:
            dest = entry.destination
            if dest.resource_type in report.verdicts:
                continue
            live = live_schema_versions.get(dest.resource_type)
            verdict, reason = compare_versions(dest.schema_version, live)
            report.verdicts[dest.resource_type] = TypeVerdict(
                resource_type=dest.resource_type,
                recorded_version=dest.schema_version,
                live_version=None if live is None else str(live),
                verdict=verdict,
                reason=reason,
            )

        for resource_type in report.stale:
            warning = f"{resource_type}: {report.verdicts[resource_type].reason}"
            report.warnings.append(warning)
            logger.warning("schema_version_stale", resource_type=resource_type, detail=warning)

        incompatible = set(report.incompatible)
        for entry in candidates:
            if entry.destination.resource_type not in incompatible:
                continue
            verdict = report.verdicts[entry.destination.resource_type]
            entry.status = EntryStatus.SKIPPED
            entry.error = f"Incompatible schema for {verdict.resource_type}: {verdict.reason}"
            report.skipped.append(entry.address)

        if incompatible:
            logger.warning(
                "schema_incompatible_entries_skipped",
                batch_id=batch.batch_id,
                resource_types=sorted(incompatible),
                skipped=len(report.skipped),
            )
        batch.touch()
        logger.info(
            "validation_completed",
            batch_id=batch.batch_id,
            types=len(report.verdicts),
            stale=len(report.stale),
            incompatible=len(incompatible),
        )
        return report


def preflight(batch: ImportBatch, working_dir: str | Path | None = None) -> list[ValidationIssue]:
    """Check a batch before generation.

    Errors: empty batch, duplicate destination addresses.
    Warnings: references to resources outside the batch, an existing local
    state file, a non-empty working directory.
    """
    issues: list[ValidationIssue] = []
    entries = [e for e in batch.ordered_entries() if e.status is not EntryStatus.SKIPPED]

    if not entries:
        issues.append(ValidationIssue(Severity.ERROR, "batch contains no importable resources"))

    seen: dict[str, str] = {}
    for entry in entries:
        if entry.address is None:
            continue
        if entry.address in seen:
            issues.append(
                ValidationIssue(
                    Severity.ERROR,
                    f"destination address also used by {seen[entry.address]}",
                    address=entry.address,
                    resource_id=entry.resource.resource_id,
                )
            )
        else:
            seen[entry.address] = entry.resource.resource_id

    known_ids = {e.resource.resource_id for e in batch.entries}
    for entry in entries:
        missing = sorted(
            {
                value
                for value in scalar_values(entry.resource.attributes)
                if value not in known_ids and any(p.match(value) for p in REFERENCE_PATTERNS)
            }
        )
        for value in missing:
            issues.append(
                ValidationIssue(
                    Severity.WARNING,
                    f"references {value}, which is not part of this batch",
                    address=entry.address,
                    resource_id=entry.resource.resource_id,
                )
            )

    directory = Path(working_dir or batch.working_dir)
    if directory.is_dir():
        for name in _STATE_FILES:
            if (directory / name).exists():
                issues.append(
                    ValidationIssue(
                        Severity.WARNING,
                        f"{name} exists in {directory}; imports will be added to existing state",
                    )
                )
        if any(p for p in directory.iterdir() if not p.name.startswith(".")):
            issues.append(ValidationIssue(Severity.WARNING, f"working directory {directory} is not empty"))

    logger.debug(
        "preflight_completed",
        batch_id=batch.batch_id,
        errors=sum(1 for i in issues if i.severity is Severity.ERROR),
        warnings=sum(1 for i in issues if i.severity is Severity.WARNING),
    )
    return issues
