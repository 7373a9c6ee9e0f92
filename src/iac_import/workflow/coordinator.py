"""Import workflow state machine.

Drives a batch through Discovering -> Mapping -> ConfigGenerated ->
Validated -> Planning -> Applying -> Finalized, with Failed -> RolledBack
as the recovery path. Every transition is checked against ``TRANSITIONS``,
persisted, and appended to the transition log, so a batch can be resumed
from its stored status after a restart without repeating finished phases.
"""

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from iac_import.client.exceptions import (
    ExecutorFailedError,
    IacImportError,
    InvalidInputError,
    InvalidTransitionError,
    PartialImportError,
    ProviderApiError,
    StateError,
    UnsupportedResourceTypeError,
)
from iac_import.client.executor import ExecutionResult, Executor, diagnostics_by_address
from iac_import.client.filesystem import LocalFileSystem
from iac_import.config import ImportConfig
from iac_import.discovery.engine import DiscoveryEngine
from iac_import.discovery.inputs import BatchInput
from iac_import.discovery.registry import ProviderRegistry
from iac_import.generation.generator import ConfigGenerator
from iac_import.mapping.mapper import ResourceMapper
from iac_import.models import (
    BatchStatus,
    DiscoveryFilter,
    DiscoveryResult,
    DiscoveryScope,
    EntryStatus,
    ImportBatch,
    ImportPlanEntry,
    Provider,
    RollbackAction,
    RollbackRecord,
    utcnow,
)
from iac_import.schema.models import Severity, ValidationReport
from iac_import.schema.validator import ValidationEngine, preflight
from iac_import.state.store import BatchStore
from iac_import.utils.logging import get_logger
from iac_import.workflow.lock import WorkingDirectoryLock
from iac_import.workflow.rollback import RollbackManager

logger = get_logger(__name__)

S = BatchStatus

TRANSITIONS: dict[BatchStatus, frozenset[BatchStatus]] = {
    S.DISCOVERING: frozenset({S.MAPPING, S.EMPTY, S.FAILED}),
    S.MAPPING: frozenset({S.CONFIG_GENERATED, S.FAILED}),
    S.CONFIG_GENERATED: frozenset({S.VALIDATED, S.FAILED}),
    S.VALIDATED: frozenset({S.PLANNING, S.FAILED}),
    S.PLANNING: frozenset({S.APPLYING, S.FAILED}),
    S.APPLYING: frozenset({S.FINALIZED, S.FAILED}),
    S.FAILED: frozenset({S.ROLLED_BACK}),
    S.FINALIZED: frozenset(),
    S.ROLLED_BACK: frozenset(),
    S.EMPTY: frozenset(),
}

# Phases that write to or run the engine against the working directory
LOCKED_PHASES = frozenset({S.MAPPING, S.CONFIG_GENERATED, S.VALIDATED, S.PLANNING, S.APPLYING})

ConfirmCallback = Callable[[ImportBatch, ExecutionResult], bool]


def new_batch_id() -> str:
    return f"batch-{utcnow():%Y%m%d%H%M%S}-{uuid.uuid4().hex[:8]}"


@dataclass
class WorkflowResult:
    """What a workflow run produced, for the caller to act on."""

    batch: ImportBatch
    discovery_failures: list[Exception] = field(default_factory=list)
    mapping_failures: list[IacImportError] = field(default_factory=list)
    validation: ValidationReport | None = None
    warnings: list[str] = field(default_factory=list)
    error: IacImportError | None = None
    partial_import: PartialImportError | None = None
    rollback_actions: list[RollbackAction] = field(default_factory=list)
    rollback_records: list[RollbackRecord] = field(default_factory=list)
    awaiting_confirmation: bool = False

    @property
    def status(self) -> BatchStatus:
        return self.batch.status

    @property
    def succeeded(self) -> bool:
        return self.batch.status in (S.FINALIZED, S.EMPTY)


class ImportWorkflow:
    """Runs and resumes import batches."""

    def __init__(
        self,
        config: ImportConfig,
        registry: ProviderRegistry,
        store: BatchStore,
        executor: Executor | None = None,
        filesystem: LocalFileSystem | None = None,
        confirm: ConfirmCallback | None = None,
    ):
        """Initialize the workflow.

        Args:
            config: Import configuration
            registry: Provider and executor registry
            store: Batch persistence
            executor: Fixed executor (default: built from the registry per batch)
            filesystem: Filesystem collaborator
            confirm: Asked before apply unless auto-approve is set; a False
                answer leaves the batch in Planning
        """
        self.config = config
        self.registry = registry
        self.store = store
        self.filesystem = filesystem or LocalFileSystem()
        self.confirm = confirm
        self._executor = executor
        self.discovery = DiscoveryEngine(registry, config.discovery)
        self.mapper = ResourceMapper(module_path=config.workflow.module_path)
        self.generator = ConfigGenerator(
            paths=config.paths, filesystem=self.filesystem, skeleton=config.generation.skeleton
        )
        self.validator = ValidationEngine()

    # Collaborators

    def executor_for(self, batch: ImportBatch) -> Executor:
        if self._executor is not None:
            return self._executor
        settings = self.config.executor
        kwargs = {
            "working_dir": batch.working_dir,
            "timeout": settings.timeout,
            "plan_command": settings.plan_command,
            "apply_command": settings.apply_command,
            "generated_config_file": self.config.paths.generated_config_file,
            "extra_env": settings.extra_env,
        }
        if settings.binary:
            kwargs["binary"] = settings.binary
        return self.registry.executor(settings.name, **kwargs)

    def rollback_manager_for(self, batch: ImportBatch) -> RollbackManager:
        return RollbackManager(self.executor_for(batch), self.generator)

    # State machine

    def _transition(self, batch: ImportBatch, to_status: BatchStatus, message: str | None = None) -> None:
        from_status = batch.status
        if to_status not in TRANSITIONS[from_status]:
            raise InvalidTransitionError(batch.batch_id, from_status.value, to_status.value)
        batch.status = to_status
        batch.touch()
        self.store.save(batch)
        self.store.record_transition(batch.batch_id, from_status, to_status, message)
        logger.info(
            "phase_transition",
            batch_id=batch.batch_id,
            from_status=from_status.value,
            to_status=to_status.value,
            message=message,
        )
        if to_status.is_terminal:
            self.store.archive(batch)

    def _fail(self, batch: ImportBatch, error: IacImportError, result: WorkflowResult) -> None:
        result.error = error
        batch.error = str(error)
        if batch.status is S.FAILED:
            batch.touch()
            self.store.save(batch)
            return
        logger.error(
            "phase_failed",
            batch_id=batch.batch_id,
            phase=batch.status.value,
            error=str(error),
            error_type=type(error).__name__,
        )
        self._transition(batch, S.FAILED, message=str(error))

    # Entry points

    def _new_batch(self, working_dir: str | Path | None, batch_id: str | None) -> ImportBatch:
        directory = Path(working_dir or self.config.paths.working_dir).resolve()
        batch = ImportBatch(
            batch_id=batch_id or new_batch_id(),
            working_dir=str(directory),
            file_organization=self.config.generation.file_organization.value,
        )
        if self.store.exists(batch.batch_id):
            raise InvalidInputError(f"Batch '{batch.batch_id}' already exists; use resume")
        self.store.save(batch)
        self.store.record_transition(batch.batch_id, None, S.DISCOVERING, "batch created")
        logger.info("batch_created", batch_id=batch.batch_id, working_dir=batch.working_dir)
        return batch

    async def start(
        self,
        provider: Provider,
        scope: DiscoveryScope | None = None,
        resource_type_filter: list[str] | None = None,
        tag_filter: dict[str, str] | None = None,
        resource_filter: DiscoveryFilter | None = None,
        working_dir: str | Path | None = None,
        batch_id: str | None = None,
        auto_approve: bool | None = None,
    ) -> WorkflowResult:
        """Start a batch from live discovery and drive it as far as it can go."""
        batch = self._new_batch(working_dir, batch_id)
        result = WorkflowResult(batch=batch)
        try:
            discovered = await self.discovery.discover(
                provider,
                scope=scope,
                resource_type_filter=resource_type_filter,
                tag_filter=tag_filter,
                resource_filter=resource_filter,
            )
        except IacImportError as e:
            self._fail(batch, e, result)
            return result
        self._record_discovery(batch, discovered, result)
        return await self._drive(batch, result, auto_approve)

    async def start_from_input(
        self,
        batch_input: BatchInput,
        working_dir: str | Path | None = None,
        batch_id: str | None = None,
        auto_approve: bool | None = None,
    ) -> WorkflowResult:
        """Start a batch from a curated batch input; no cloud API is queried."""
        batch = self._new_batch(working_dir, batch_id)
        result = WorkflowResult(batch=batch)
        discovered = await self.discovery.discover(
            Provider.MANUAL, descriptors=list(batch_input.resources)
        )
        self._record_discovery(batch, discovered, result, batch_input.addresses)
        return await self._drive(batch, result, auto_approve)

    async def resume(self, batch_id: str, auto_approve: bool | None = None) -> WorkflowResult:
        """Continue a stored batch from its persisted status.

        Raises:
            ProjectNotFoundError: Unknown batch id
            StateError: The batch was interrupted during discovery
        """
        batch = self.store.load(batch_id)
        result = WorkflowResult(batch=batch, warnings=list(batch.warnings))
        if batch.status.is_terminal or batch.status is S.FAILED:
            logger.info("batch_not_resumable", batch_id=batch_id, status=batch.status.value)
            return result
        if batch.status is S.DISCOVERING:
            raise StateError(
                f"Batch '{batch_id}' was interrupted during discovery; start a new batch",
                phase="discovering",
            )
        logger.info("batch_resumed", batch_id=batch_id, status=batch.status.value)
        return await self._drive(batch, result, auto_approve, resumed=True)

    def _record_discovery(
        self,
        batch: ImportBatch,
        discovered: DiscoveryResult,
        result: WorkflowResult,
        addresses: dict[tuple[str, str, str], str] | None = None,
    ) -> None:
        addresses = addresses or {}
        result.discovery_failures = list(discovered.failures)
        for failure in discovered.failures:
            batch.warnings.append(f"discovery: {failure}")
        batch.warnings.extend(discovered.warnings)
        result.warnings = list(batch.warnings)

        if not discovered.resources:
            query_failures = [
                f for f in discovered.failures if not isinstance(f, UnsupportedResourceTypeError)
            ]
            if query_failures:
                error = ProviderApiError(
                    discovered.provider.value,
                    f"no resources discovered and {len(query_failures)} queries failed "
                    f"(first: {query_failures[0]})",
                )
                self._fail(batch, error, result)
                return
            self._transition(batch, S.EMPTY, message="discovery found no resources")
            return
        batch.entries = [
            ImportPlanEntry(resource=r, requested_address=addresses.get(r.key))
            for r in discovered.resources
        ]
        self._transition(
            batch, S.MAPPING, message=f"discovered {len(discovered.resources)} resources"
        )

    # Driver

    async def _drive(
        self,
        batch: ImportBatch,
        result: WorkflowResult,
        auto_approve: bool | None,
        resumed: bool = False,
    ) -> WorkflowResult:
        approve = self.config.executor.auto_approve if auto_approve is None else auto_approve
        lock = WorkingDirectoryLock(batch.working_dir, batch.batch_id, self.config.paths.lock_file)
        resumed_in = batch.status if resumed else None
        try:
            while not batch.status.is_terminal and batch.status is not S.FAILED:
                if batch.status in LOCKED_PHASES:
                    lock.acquire()
                if batch.status is S.MAPPING:
                    self._map_and_generate(batch, result)
                elif batch.status is S.CONFIG_GENERATED:
                    self._validate(batch, result)
                elif batch.status is S.VALIDATED:
                    self._transition(batch, S.PLANNING, message="plan started")
                elif batch.status is S.PLANNING:
                    if not self._plan(batch, result, approve):
                        result.awaiting_confirmation = True
                        break
                elif batch.status is S.APPLYING:
                    self._apply(batch, result, replan=resumed_in is S.APPLYING)
                else:
                    raise InvalidTransitionError(batch.batch_id, batch.status.value, "next phase")
        except IacImportError as e:
            self._fail(batch, e, result)
        finally:
            lock.release()

        if result.partial_import is not None and self.config.workflow.auto_rollback:
            logger.info("auto_rollback_started", batch_id=batch.batch_id)
            try:
                self._rollback(batch, result)
            except IacImportError as e:
                batch.error = f"Automatic rollback failed: {e}"
                self.store.save(batch)
                logger.error("auto_rollback_failed", batch_id=batch.batch_id, error=str(e))

        result.warnings = list(batch.warnings)
        return result

    # Phases

    def _map_and_generate(self, batch: ImportBatch, result: WorkflowResult) -> None:
        items = [e.resource for e in batch.entries]
        addresses = {e.resource.key: e.requested_address for e in batch.entries if e.requested_address}
        mapping = self.mapper.plan(items, addresses)
        batch.entries = mapping.entries
        result.mapping_failures = list(mapping.failures)
        for warning in mapping.warnings:
            batch.warnings.append(f"mapping: {warning.message}")
        self.store.save(batch)

        if not mapping.mapped:
            raise InvalidInputError("No discovered resource could be mapped", phase="mapping")

        # Blocking problems surface from generate() with their own error types
        for issue in preflight(batch):
            if issue.severity is Severity.WARNING:
                batch.warnings.append(f"preflight: {issue.message}")

        self.generator.generate(batch, force=self.config.generation.force)
        self._transition(
            batch,
            S.CONFIG_GENERATED,
            message=f"{len(mapping.mapped)} mapped, {len(mapping.failures)} skipped",
        )

    def _validate(self, batch: ImportBatch, result: WorkflowResult) -> None:
        executor = self.executor_for(batch)
        executor.init()
        report = self.validator.validate(batch, executor.provider_schema_versions())
        result.validation = report
        batch.warnings.extend(f"validation: {w}" for w in report.warnings)

        if not batch.active_entries():
            self.store.save(batch)
            raise InvalidInputError(
                "Every entry was skipped; remap the batch before importing", phase="validation"
            )
        if report.skipped:
            # Drop the skipped entries' directives before planning
            self.generator.generate(batch, force=self.config.generation.force)
        self._transition(
            batch, S.VALIDATED, message=f"{len(report.skipped)} entries skipped as incompatible"
        )

    def _plan(self, batch: ImportBatch, result: WorkflowResult, approve: bool) -> bool:
        """Run plan; return False when the operator declined to apply."""
        executor = self.executor_for(batch)
        executor.init()
        generate_config = not self.generator.skeleton
        if generate_config:
            self.generator.prepare_generated_config(batch, force=self.config.generation.force)
        plan = executor.plan(generate_config=generate_config)
        self.generator.record_generated_config(batch)
        for entry in batch.entries_with_status(EntryStatus.GENERATED):
            entry.status = EntryStatus.PLANNED
        batch.touch()
        self.store.save(batch)

        if not approve:
            if self.confirm is None or not self.confirm(batch, plan):
                logger.info("apply_not_confirmed", batch_id=batch.batch_id)
                return False
        self._transition(batch, S.APPLYING, message="apply started")
        return True

    def _apply(self, batch: ImportBatch, result: WorkflowResult, replan: bool = False) -> None:
        executor = self.executor_for(batch)
        if replan:
            # A saved plan from the interrupted run may be stale
            executor.plan(generate_config=False)

        apply_error: ExecutorFailedError | None = None
        try:
            executor.apply()
        except ExecutorFailedError as e:
            apply_error = e

        tracked = set(executor.state_list())
        diagnostics = diagnostics_by_address(
            "\n".join([apply_error.stdout, apply_error.stderr]) if apply_error else ""
        )
        succeeded: list[str] = []
        failed: list[tuple[str, str]] = []
        for entry in batch.active_entries():
            if entry.address in tracked:
                entry.status = EntryStatus.APPLIED
                entry.error = None
                succeeded.append(entry.address)
            else:
                entry.status = EntryStatus.FAILED
                entry.error = diagnostics.get(entry.address) or (
                    apply_error.message if apply_error else "not present in state after apply"
                )
                failed.append((entry.address, entry.error))
        batch.touch()
        self.store.save(batch)

        logger.info(
            "apply_completed",
            batch_id=batch.batch_id,
            succeeded=len(succeeded),
            failed=len(failed),
        )

        if not failed:
            self.generator.archive(batch)
            batch.error = None
            self._transition(batch, S.FINALIZED, message=f"{len(succeeded)} resources imported")
            return

        if not succeeded:
            raise apply_error or ExecutorFailedError(
                "apply", "no resource reached state", phase="applying"
            )

        actions = self.rollback_manager_for(batch).plan_rollback(batch, tracked)
        partial = PartialImportError(succeeded, failed, actions)
        result.partial_import = partial
        result.rollback_actions = actions
        self._fail(batch, partial, result)

    # Rollback

    def rollback(self, batch_id: str) -> WorkflowResult:
        """Roll back a Failed batch.

        Raises:
            ProjectNotFoundError: Unknown batch id
            InvalidTransitionError: The batch is not Failed
        """
        batch = self.store.load(batch_id)
        if batch.status is not S.FAILED:
            raise InvalidTransitionError(batch.batch_id, batch.status.value, S.ROLLED_BACK.value)
        result = WorkflowResult(batch=batch, warnings=list(batch.warnings))
        self._rollback(batch, result)
        return result

    def _rollback(self, batch: ImportBatch, result: WorkflowResult) -> None:
        with WorkingDirectoryLock(batch.working_dir, batch.batch_id, self.config.paths.lock_file):
            manager = self.rollback_manager_for(batch)
            actions = manager.plan_rollback(batch)
            records = manager.execute(batch, actions)
            result.rollback_actions = actions
            result.rollback_records = records
            if records:
                self.store.save_rollback_records(batch.batch_id, records)

            failures = [r for r in records if not r.success]
            if failures:
                batch.error = f"Rollback incomplete: {len(failures)} of {len(records)} actions failed"
                batch.touch()
                self.store.save(batch)
                logger.error(
                    "rollback_incomplete",
                    batch_id=batch.batch_id,
                    failed=[r.address for r in failures],
                )
                return

            leftover = {
                e.address
                for e in batch.entries
                if e.address and e.status not in (EntryStatus.SKIPPED, EntryStatus.ROLLED_BACK)
            }
            self.generator.discard(batch, leftover, force=True)
            for entry in batch.entries:
                if entry.status not in (EntryStatus.SKIPPED, EntryStatus.ROLLED_BACK):
                    entry.status = EntryStatus.ROLLED_BACK
        self._transition(batch, S.ROLLED_BACK, message=f"{len(records)} rollback actions succeeded")
