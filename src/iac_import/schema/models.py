"""Validation result types."""

from dataclasses import dataclass, field
from enum import Enum


class Verdict(str, Enum):
    """Schema compatibility of a mapped resource type."""

    CURRENT = "current"
    STALE = "stale"
    INCOMPATIBLE = "incompatible"


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass
class TypeVerdict:
    """Verdict for one destination resource type."""

    resource_type: str
    recorded_version: str
    live_version: str | None
    verdict: Verdict
    reason: str = ""


@dataclass
class ValidationIssue:
    """A preflight finding."""

    severity: Severity
    message: str
    address: str | None = None
    resource_id: str | None = None

    def __str__(self) -> str:
        target = f" ({self.address or self.resource_id})" if self.address or self.resource_id else ""
        return f"{self.severity.value}: {self.message}{target}"


@dataclass
class ValidationReport:
    """Outcome of schema validation for a batch."""

    verdicts: dict[str, TypeVerdict] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def types_with(self, verdict: Verdict) -> list[str]:
        return sorted(t for t, v in self.verdicts.items() if v.verdict is verdict)

    @property
    def stale(self) -> list[str]:
        return self.types_with(Verdict.STALE)

    @property
    def incompatible(self) -> list[str]:
        return self.types_with(Verdict.INCOMPATIBLE)

    def to_dict(self) -> dict:
        return {
            "verdicts": {
                t: {
                    "recorded": v.recorded_version,
                    "live": v.live_version,
                    "verdict": v.verdict.value,
                    "reason": v.reason,
                }
                for t, v in sorted(self.verdicts.items())
            },
            "skipped": list(self.skipped),
            "warnings": list(self.warnings),
        }
