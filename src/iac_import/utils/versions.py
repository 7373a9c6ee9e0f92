"""Version string helpers shared by schema validation and provider requirements."""

import re

_VERSION_RE = re.compile(r"^\s*(?:[~><=!^]+\s*)?v?(\d+)(?:\.(\d+))?(?:\.(\d+))?(?:[-+].*)?\s*$")


def parse_version(value: str | int | None) -> tuple[int, int, int] | None:
    """Parse ``major[.minor[.patch]]`` into a tuple, or None when unparseable.

    Leading constraint operators (``>=``, ``~>``) and a ``v`` prefix are
    ignored, so provider constraints can be compared directly.

    >>> parse_version("5.0")
    (5, 0, 0)
    >>> parse_version(">= 3.1.4")
    (3, 1, 4)
    >>> parse_version("latest") is None
    True
    """
    if value is None:
        return None
    if isinstance(value, int):
        return (value, 0, 0) if value >= 0 else None
    match = _VERSION_RE.match(str(value))
    if not match:
        return None
    major, minor, patch = match.groups()
    return int(major), int(minor or 0), int(patch or 0)


def format_version(version: tuple[int, int, int]) -> str:
    """Render a version tuple as ``major.minor.patch``."""
    return ".".join(str(part) for part in version)
