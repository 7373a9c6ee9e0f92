"""Content hashing used to detect edits to generated files.

The manifest written next to generated files stores one checksum per file;
regeneration compares the on-disk content against it before overwriting.
"""

import hashlib
import json
from typing import Any


def hash_content(content: str) -> str:
    """Return the SHA-256 hex digest of ``content`` encoded as UTF-8."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def hash_record(record: dict[str, Any]) -> str:
    """Generate a stable hash of a JSON-serializable record.

    Keys are sorted so logically equal records hash identically.

    Args:
        record: Record to hash

    Returns:
        SHA256 hash as hex string
    """
    serialized = json.dumps(record, sort_keys=True, separators=(",", ":"), default=str)
    return hash_content(serialized)
