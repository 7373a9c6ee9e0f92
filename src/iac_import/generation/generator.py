"""Import directive generation.

Renders one ``import`` block per plan entry plus the ``required_providers``
block, grouped into files according to the batch's file organization.
Rendering is a pure function of the batch (entries in ordinal-then-address
order, no timestamps), so regenerating an unchanged batch is byte-identical.

Checksums of everything written are kept in a manifest next to the files.
A file whose content no longer matches its checksum was edited by hand and
is never overwritten or removed unless ``force`` is set.
"""

import json
import re
from dataclasses import dataclass, field
from pathlib import Path

from iac_import.client.exceptions import (
    ConfigParseError,
    DestinationCollisionError,
    FileSystemError,
    GeneratedFileModifiedError,
    InvalidInputError,
)
from iac_import.client.filesystem import LocalFileSystem
from iac_import.config import FileOrganization, PathConfig
from iac_import.models import (
    EntryStatus,
    ImportBatch,
    ImportPlanEntry,
    ProviderRequirement,
    sanitize_name,
)
from iac_import.utils.idempotency import hash_content
from iac_import.utils.logging import get_logger

logger = get_logger(__name__)

# Entries in these states have nothing to import
_EXCLUDED = (EntryStatus.PENDING, EntryStatus.SKIPPED, EntryStatus.ROLLED_BACK)

_RESOURCE_HEADER = re.compile(r'^resource\s+"([^"]+)"\s+"([^"]+)"\s*\{')
_GENERATED_MARKER = "# __generated__"


def hcl_string(value: str) -> str:
    """Quote a value as an HCL string literal."""
    escaped = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("${", "$${")
        .replace("%{", "%%{")
    )
    return f'"{escaped}"'


def merge_requirements(requirements: list[ProviderRequirement]) -> list[ProviderRequirement]:
    """Deduplicate by provider name, keeping the highest minimum version."""
    merged: dict[str, ProviderRequirement] = {}
    for requirement in requirements:
        current = merged.get(requirement.name)
        if current is None or requirement.version_tuple > current.version_tuple:
            merged[requirement.name] = requirement
    return [merged[name] for name in sorted(merged)]


def strip_resource_blocks(text: str, addresses: set[str]) -> str:
    """Remove ``resource "type" "name" {...}`` blocks for the given root addresses.

    Comment lines emitted by the engine directly above a removed block are
    removed with it.
    """
    lines = text.splitlines(keepends=True)
    kept: list[str] = []
    depth = 0
    skipping = False
    for line in lines:
        if skipping:
            depth += _brace_delta(line)
            if depth <= 0:
                skipping = False
            continue
        match = _RESOURCE_HEADER.match(line)
        if match and f"{match.group(1)}.{match.group(2)}" in addresses:
            while kept and kept[-1].lstrip().startswith(_GENERATED_MARKER):
                kept.pop()
            depth = _brace_delta(line)
            skipping = depth > 0
            continue
        kept.append(line)
    return re.sub(r"\n{3,}", "\n\n", "".join(kept))


def _brace_delta(line: str) -> int:
    """Net brace count of a line, ignoring braces inside string literals."""
    delta = 0
    in_string = False
    escaped = False
    for char in line:
        if escaped:
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == '"':
            in_string = not in_string
        elif not in_string and char == "{":
            delta += 1
        elif not in_string and char == "}":
            delta -= 1
    return delta


@dataclass
class GenerationResult:
    """Files rendered for a batch and what happened to each on disk."""

    files: dict[str, str]
    written: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)


class ConfigGenerator:
    """Writes import directives and provider requirements for a batch."""

    def __init__(
        self,
        paths: PathConfig | None = None,
        filesystem: LocalFileSystem | None = None,
        skeleton: bool = False,
    ):
        self.paths = paths or PathConfig()
        self.fs = filesystem or LocalFileSystem()
        self.skeleton = skeleton

    # Rendering

    def _import_file_for(self, entry: ImportPlanEntry, organization: FileOrganization) -> str:
        base = self.paths.imports_file
        stem, dot, ext = base.rpartition(".")
        if not dot:
            stem, ext = base, "tf"
        if organization is FileOrganization.BY_TYPE:
            return f"{stem}_{entry.destination.resource_type}.{ext}"
        if organization is FileOrganization.BY_MODULE:
            module = entry.destination.target_module_path.replace("module.", "")
            return f"{stem}_{sanitize_name(module) if module else 'root'}.{ext}"
        return base

    def included_entries(
        self, batch: ImportBatch, exclude: set[str] | None = None
    ) -> list[ImportPlanEntry]:
        exclude = exclude or set()
        return [
            e
            for e in batch.ordered_entries()
            if e.destination is not None and e.status not in _EXCLUDED and e.address not in exclude
        ]

    def check_collisions(self, entries: list[ImportPlanEntry]) -> None:
        """Reject duplicate destination addresses or duplicate source resources."""
        by_address: dict[str, list[str]] = {}
        by_source: dict[tuple[str, str, str], int] = {}
        for entry in entries:
            by_address.setdefault(entry.address, []).append(entry.resource.resource_id)
            by_source[entry.resource.key] = by_source.get(entry.resource.key, 0) + 1

        collisions = {addr: ids for addr, ids in by_address.items() if len(ids) > 1}
        if collisions:
            raise DestinationCollisionError(collisions)
        duplicates = sorted(f"{k[1]}:{k[2]}" for k, n in by_source.items() if n > 1)
        if duplicates:
            raise InvalidInputError(
                f"Resources appear more than once in the batch: {', '.join(duplicates)}",
                phase="generation",
            )

    def render(
        self,
        batch: ImportBatch,
        file_organization: FileOrganization | str | None = None,
        exclude: set[str] | None = None,
    ) -> dict[str, str]:
        """Render file name -> content for a batch without touching disk."""
        organization = FileOrganization(file_organization or batch.file_organization)
        entries = self.included_entries(batch, exclude)
        self.check_collisions(entries)
        if not entries:
            return {}

        grouped: dict[str, list[ImportPlanEntry]] = {}
        for entry in entries:
            grouped.setdefault(self._import_file_for(entry, organization), []).append(entry)

        files: dict[str, str] = {}
        header = (
            f"# Import directives generated by iac-import for batch {batch.batch_id}.\n"
            "# Manual edits are detected and block regeneration.\n"
        )
        for name in sorted(grouped):
            blocks = [
                f"import {{\n  to = {e.address}\n  id = {hcl_string(e.resource.resource_id)}\n}}\n"
                for e in grouped[name]
            ]
            files[name] = header + "\n" + "\n".join(blocks)

        files[self.paths.providers_file] = self._render_providers(entries)
        if self.skeleton:
            files[self.paths.skeleton_file] = self._render_skeleton(entries)
        return files

    def _render_providers(self, entries: list[ImportPlanEntry]) -> str:
        requirements = merge_requirements([e.destination.requirement for e in entries])
        lines = ["terraform {", "  required_providers {"]
        for requirement in requirements:
            lines += [
                f"    {requirement.name} = {{",
                f"      source  = {hcl_string(requirement.source)}",
                f"      version = {hcl_string(requirement.constraint)}",
                "    }",
            ]
        lines += ["  }", "}"]
        return "\n".join(lines) + "\n"

    def _render_skeleton(self, entries: list[ImportPlanEntry]) -> str:
        blocks = []
        for entry in entries:
            dest = entry.destination
            if dest.target_module_path:
                blocks.append(f"# {entry.address}: declare inside {dest.target_module_path}\n")
                continue
            body = "".join(
                f"  # {key} = {json.dumps(value, sort_keys=True, default=str)}\n"
                for key, value in entry.resource.attributes.items()
            )
            blocks.append(
                f"resource {hcl_string(dest.resource_type)} {hcl_string(dest.name)} {{\n{body}}}\n"
            )
        return "\n".join(blocks)

    # Manifest

    def _manifest_path(self, batch: ImportBatch) -> Path:
        return Path(batch.working_dir) / self.paths.manifest_file

    def _recorded_checksums(self, batch: ImportBatch) -> dict[str, str]:
        """Checksums from the batch record merged with the on-disk manifest.

        Raises:
            FileSystemError: Another batch's import directives are still pending here
        """
        recorded = dict(batch.generated_files)
        path = self._manifest_path(batch)
        if self.fs.exists(path):
            try:
                manifest = json.loads(self.fs.read_text(path))
            except json.JSONDecodeError as e:
                raise ConfigParseError(f"corrupt manifest: {e}", path=str(path)) from e
            files = manifest.get("files", {})
            owner = manifest.get("batch_id")
            if owner and owner != batch.batch_id:
                pending = sorted(n for n in files if self._is_import_file(n))
                if pending:
                    raise FileSystemError(
                        f"Import directives of batch {owner} are still pending "
                        f"({', '.join(pending)}); finish or roll back that batch first",
                        path=str(path),
                    )
            recorded.update(files)
        return recorded

    def _is_import_file(self, name: str) -> bool:
        stem = self.paths.imports_file.rpartition(".")[0] or self.paths.imports_file
        return name.startswith(stem) and name != self.paths.generated_config_file

    def _write_manifest(self, batch: ImportBatch, checksums: dict[str, str]) -> None:
        batch.generated_files = dict(sorted(checksums.items()))
        path = self._manifest_path(batch)
        if not checksums:
            self.fs.remove(path)
            return
        content = json.dumps(
            {"batch_id": batch.batch_id, "files": batch.generated_files}, indent=2, sort_keys=True
        )
        self.fs.write_text(path, content + "\n")

    def _is_modified(self, path: Path, recorded: str | None, new_content: str | None) -> bool:
        """True when an existing file differs from both its checksum and the new content."""
        if not self.fs.exists(path):
            return False
        current = hash_content(self.fs.read_text(path))
        if recorded is not None and current == recorded:
            return False
        if new_content is not None and current == hash_content(new_content):
            return False
        return True

    # Writing

    def generate(
        self,
        batch: ImportBatch,
        file_organization: FileOrganization | str | None = None,
        force: bool = False,
        exclude: set[str] | None = None,
    ) -> GenerationResult:
        """Write the batch's generated files.

        Every check (collisions, manual edits) runs before the first write, so
        a rejected batch leaves the working directory untouched.

        Raises:
            DestinationCollisionError: Two entries share a destination address
            GeneratedFileModifiedError: A generated file was edited and force is off
            FileSystemError: A write failed
        """
        if file_organization is not None:
            batch.file_organization = FileOrganization(file_organization).value
        files = self.render(batch, exclude=exclude)
        working_dir = Path(batch.working_dir)
        recorded = self._recorded_checksums(batch)
        stale = sorted(set(recorded) - set(files) - {self.paths.generated_config_file})

        if not force:
            for name, content in files.items():
                if self._is_modified(working_dir / name, recorded.get(name), content):
                    raise GeneratedFileModifiedError(str(working_dir / name))
            for name in stale:
                if self._is_modified(working_dir / name, recorded[name], None):
                    raise GeneratedFileModifiedError(str(working_dir / name))

        self.fs.create_dir_all(working_dir)
        result = GenerationResult(files=files)
        for name, content in files.items():
            path = working_dir / name
            if self.fs.exists(path) and self.fs.read_text(path) == content:
                result.unchanged.append(name)
                continue
            self.fs.write_text(path, content)
            result.written.append(name)
        for name in stale:
            self.fs.remove(working_dir / name)
            result.removed.append(name)

        checksums = {name: hash_content(content) for name, content in files.items()}
        if self.paths.generated_config_file in recorded:
            checksums[self.paths.generated_config_file] = recorded[self.paths.generated_config_file]
        self._write_manifest(batch, checksums)

        for entry in self.included_entries(batch, exclude):
            if entry.status is EntryStatus.MAPPED:
                entry.status = EntryStatus.GENERATED
        batch.touch()

        logger.info(
            "config_generated",
            batch_id=batch.batch_id,
            organization=batch.file_organization,
            files=len(files),
            written=len(result.written),
            unchanged=len(result.unchanged),
            removed=len(result.removed),
        )
        return result

    def discard(self, batch: ImportBatch, addresses: set[str], force: bool = False) -> None:
        """Drop entries from the generated files and from engine-generated bodies."""
        hidden = set(addresses)
        self.generate(batch, force=force, exclude=hidden)
        self._strip_generated_config(batch, hidden)
        logger.info("config_discarded", batch_id=batch.batch_id, addresses=sorted(hidden))

    def _strip_generated_config(self, batch: ImportBatch, addresses: set[str]) -> None:
        path = Path(batch.working_dir) / self.paths.generated_config_file
        if not self.fs.exists(path):
            return
        original = self.fs.read_text(path)
        stripped = strip_resource_blocks(original, addresses)
        if stripped == original:
            return
        checksums = self._recorded_checksums(batch)
        if not any(
            line.strip() and not line.lstrip().startswith("#") for line in stripped.splitlines()
        ):
            self.fs.remove(path)
            checksums.pop(self.paths.generated_config_file, None)
        else:
            self.fs.write_text(path, stripped)
            checksums[self.paths.generated_config_file] = hash_content(stripped)
        self._write_manifest(batch, checksums)

    def prepare_generated_config(self, batch: ImportBatch, force: bool = False) -> None:
        """Clear a previous plan's generated bodies so plan can write them again.

        The engine refuses to generate into an existing file. A file this
        tool recorded and nobody edited is removed; anything else blocks.
        """
        path = Path(batch.working_dir) / self.paths.generated_config_file
        if not self.fs.exists(path):
            return
        checksums = self._recorded_checksums(batch)
        recorded = checksums.get(self.paths.generated_config_file)
        if recorded is None:
            raise FileSystemError(
                "Engine-generated configuration not written by this batch is in the way; "
                "rename it or merge it into your configuration before planning",
                path=str(path),
            )
        if not force and self._is_modified(path, recorded, None):
            raise GeneratedFileModifiedError(str(path))
        self.fs.remove(path)
        checksums.pop(self.paths.generated_config_file, None)
        self._write_manifest(batch, checksums)

    def record_generated_config(self, batch: ImportBatch) -> None:
        """Checksum the bodies the engine wrote during plan."""
        path = Path(batch.working_dir) / self.paths.generated_config_file
        if not self.fs.exists(path):
            return
        checksums = self._recorded_checksums(batch)
        checksums[self.paths.generated_config_file] = hash_content(self.fs.read_text(path))
        self._write_manifest(batch, checksums)

    def archive(self, batch: ImportBatch) -> list[Path]:
        """Rename the batch's import directive files to completed markers.

        The engine-generated bodies become regular configuration: they are
        renamed to a per-batch file and no longer tracked, so the next batch
        can generate into a fresh file.
        """
        working_dir = Path(batch.working_dir)
        checksums = self._recorded_checksums(batch)
        archived = []
        for name in sorted(checksums):
            if not self._is_import_file(name):
                continue
            source = working_dir / name
            checksums.pop(name)
            if not self.fs.exists(source):
                continue
            target = working_dir / f"{name}{self.paths.completed_suffix}"
            if self.fs.exists(target):
                target = working_dir / f"{name}.{batch.batch_id}{self.paths.completed_suffix}"
            self.fs.rename(source, target)
            archived.append(target)

        generated = working_dir / self.paths.generated_config_file
        if checksums.pop(self.paths.generated_config_file, None) and self.fs.exists(generated):
            config_stem, _, ext = self.paths.generated_config_file.rpartition(".")
            self.fs.rename(generated, working_dir / f"{config_stem}_{batch.batch_id}.{ext}")

        self._write_manifest(batch, checksums)
        logger.info(
            "import_files_archived", batch_id=batch.batch_id, files=[p.name for p in archived]
        )
        return archived
