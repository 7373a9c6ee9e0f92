"""Custom exceptions for iac-import.

This module defines the error taxonomy shared by discovery providers, the
resource mapper, config generation, the executor adapter and the import
workflow. Every error carries enough context (resource id, phase, underlying
message) for an operator to resume or hand-fix a batch.
"""

from typing import Any


class IacImportError(Exception):
    """Base exception for all iac-import errors."""

    def __init__(self, message: str, phase: str | None = None, resource_id: str | None = None):
        self.message = message
        self.phase = phase
        self.resource_id = resource_id
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format error message with phase and resource context."""
        msg = self.message
        if self.resource_id:
            msg = f"{msg} (resource: {self.resource_id})"
        if self.phase:
            msg = f"[{self.phase}] {msg}"
        return msg


class AuthenticationError(IacImportError):
    """Raised when a cloud provider rejects the configured credentials."""

    def __init__(self, provider: str, message: str, phase: str | None = "discovery"):
        self.provider = provider
        super().__init__(f"Authentication failed for {provider}: {message}", phase=phase)


class ResourceNotFoundError(IacImportError):
    """Raised when a referenced resource does not exist at the provider."""

    def __init__(self, resource_type: str, resource_id: str, phase: str | None = None):
        self.resource_type = resource_type
        super().__init__(
            f"Resource not found: {resource_type} with ID '{resource_id}'",
            phase=phase,
            resource_id=resource_id,
        )


class DependencyResolutionError(IacImportError):
    """Recorded (not raised) when a dependency cycle had to be broken.

    Attributes:
        dropped_edge: (dependent_key, dependency_key) of the edge that was removed
        cycle: keys of the resources that formed the cycle
    """

    def __init__(
        self,
        message: str,
        dropped_edge: tuple[str, str] | None = None,
        cycle: list[str] | None = None,
    ):
        self.dropped_edge = dropped_edge
        self.cycle = cycle or []
        super().__init__(message, phase="mapping")


class ExecutorFailedError(IacImportError):
    """Raised when the IaC engine exits non-zero."""

    def __init__(
        self,
        command: str,
        message: str,
        exit_code: int | None = None,
        stdout: str = "",
        stderr: str = "",
        phase: str | None = None,
    ):
        self.command = command
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        self.detail = message
        super().__init__(message, phase=phase)

    def format_message(self) -> str:
        code = f"exit code {self.exit_code}" if self.exit_code is not None else "no exit code"
        msg = f"Executor command '{self.command}' failed ({code}): {self.message}"
        if self.phase:
            msg = f"[{self.phase}] {msg}"
        return msg


class PartialImportError(IacImportError):
    """Raised when apply succeeds for some entries and fails for others.

    Attributes:
        succeeded: destination addresses that reached tracked state
        failed: (destination address, error text) pairs
        rollback_actions: candidate compensating actions for the caller
    """

    def __init__(
        self,
        succeeded: list[str],
        failed: list[tuple[str, str]],
        rollback_actions: list[Any] | None = None,
    ):
        self.succeeded = succeeded
        self.failed = failed
        self.rollback_actions = rollback_actions or []
        super().__init__(
            f"Partial import: {len(succeeded)} succeeded, {len(failed)} failed",
            phase="applying",
        )


class ConfigParseError(IacImportError):
    """Raised when an input or generated file cannot be parsed or trusted."""

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        if path:
            message = f"{path}: {message}"
        super().__init__(message)


class UnsupportedResourceTypeError(IacImportError):
    """Raised when no destination type is known for a provider resource type."""

    def __init__(self, provider: str, resource_type: str, resource_id: str | None = None):
        self.provider = provider
        self.resource_type = resource_type
        super().__init__(
            f"Unsupported resource type '{resource_type}' for provider {provider}",
            phase="mapping",
            resource_id=resource_id,
        )


class ProviderApiError(IacImportError):
    """Raised when a cloud provider API call fails."""

    def __init__(
        self,
        provider: str,
        message: str,
        resource_type: str | None = None,
        region: str | None = None,
    ):
        self.provider = provider
        self.resource_type = resource_type
        self.region = region
        where = "/".join(part for part in (resource_type, region) if part)
        prefix = f"{provider} API error"
        if where:
            prefix = f"{prefix} ({where})"
        super().__init__(f"{prefix}: {message}", phase="discovery")


class ProviderThrottlingError(ProviderApiError):
    """Raised when a provider API throttles requests. Retried with backoff."""

    pass


class FileSystemError(IacImportError):
    """Raised when a filesystem operation fails."""

    def __init__(self, message: str, path: str | None = None, phase: str | None = None):
        self.path = path
        if path:
            message = f"{message}: {path}"
        super().__init__(message, phase=phase)


class GeneratedFileModifiedError(FileSystemError):
    """Raised when a generated file was edited since it was last written."""

    def __init__(self, path: str):
        super().__init__(
            "Refusing to overwrite user-modified generated file (use force to override)",
            path=path,
            phase="generation",
        )


class InvalidInputError(IacImportError):
    """Raised when caller-supplied input is invalid."""

    pass


class DestinationCollisionError(InvalidInputError):
    """Raised when two entries map to the same destination address.

    Attributes:
        collisions: destination address -> resource ids claiming it
    """

    def __init__(self, collisions: dict[str, list[str]]):
        self.collisions = collisions
        detail = "; ".join(
            f"{address} <- {', '.join(ids)}" for address, ids in sorted(collisions.items())
        )
        super().__init__(f"Destination address collision: {detail}", phase="generation")


class ProjectNotFoundError(IacImportError):
    """Raised when the working directory or batch does not exist."""

    pass


class SerializationError(IacImportError):
    """Raised when a record cannot be serialized or deserialized."""

    pass


class ImportIOError(IacImportError):
    """Raised on general I/O failures that are not filesystem writes."""

    pass


class ConfigurationError(IacImportError):
    """Raised when configuration is invalid or missing."""

    pass


class StateError(IacImportError):
    """Raised when batch state persistence fails."""

    pass


class InvalidTransitionError(StateError):
    """Raised when the workflow attempts a transition the state table forbids."""

    def __init__(self, batch_id: str, from_status: str, to_status: str):
        self.batch_id = batch_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Batch {batch_id}: illegal transition {from_status} -> {to_status}",
        )


class WorkingDirectoryLockedError(StateError):
    """Raised when another run holds the working directory lock."""

    def __init__(self, working_dir: str, holder: dict[str, Any] | None = None):
        self.working_dir = working_dir
        self.holder = holder or {}
        owner = self.holder.get("batch_id") or self.holder.get("locked_by") or "unknown"
        super().__init__(f"Working directory {working_dir} is locked by {owner}")
