"""Filesystem collaborator.

A thin wrapper over pathlib so generated-file writes and completed-marker
renames surface as FileSystemError with the path attached.
"""

import os
from pathlib import Path

from iac_import.client.exceptions import FileSystemError


class LocalFileSystem:
    """Filesystem operations used by config generation and the workflow."""

    def exists(self, path: Path) -> bool:
        return Path(path).exists()

    def read_text(self, path: Path) -> str:
        try:
            return Path(path).read_text(encoding="utf-8")
        except OSError as e:
            raise FileSystemError(f"Failed to read file ({e.strerror})", path=str(path)) from e

    def write_text(self, path: Path, content: str) -> None:
        """Write atomically: content goes to a sibling temp file, then replaces the target."""
        path = Path(path)
        tmp = path.with_name(f".{path.name}.tmp")
        try:
            with open(tmp, "w", encoding="utf-8", newline="\n") as f:
                f.write(content)
            os.replace(tmp, path)
        except OSError as e:
            raise FileSystemError(f"Failed to write file ({e.strerror})", path=str(path)) from e

    def create_dir_all(self, path: Path) -> None:
        try:
            Path(path).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FileSystemError(
                f"Failed to create directory ({e.strerror})", path=str(path)
            ) from e

    def rename(self, source: Path, target: Path) -> None:
        try:
            os.replace(source, target)
        except OSError as e:
            raise FileSystemError(
                f"Failed to rename to {target} ({e.strerror})", path=str(source)
            ) from e

    def remove(self, path: Path) -> None:
        try:
            Path(path).unlink(missing_ok=True)
        except OSError as e:
            raise FileSystemError(f"Failed to remove file ({e.strerror})", path=str(path)) from e
