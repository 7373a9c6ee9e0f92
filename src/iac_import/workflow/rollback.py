"""Compensating actions for a failed batch.

Rollback never touches the cloud resources themselves. An applied entry is
either removed from engine-tracked state (when the engine recorded it) or
has its generated configuration discarded. Actions run one at a time in
reverse ordinal order; a failed action is recorded and the rest still run.
"""

from iac_import.client.exceptions import IacImportError, ResourceNotFoundError
from iac_import.client.executor import Executor
from iac_import.generation.generator import ConfigGenerator
from iac_import.models import (
    EntryStatus,
    ImportBatch,
    RollbackAction,
    RollbackActionKind,
    RollbackRecord,
    utcnow,
)
from iac_import.utils.logging import get_logger, log_phase_progress

logger = get_logger(__name__)


class RollbackManager:
    """Plans and executes rollback actions for a batch."""

    def __init__(self, executor: Executor, generator: ConfigGenerator):
        self.executor = executor
        self.generator = generator

    def plan_rollback(
        self, batch: ImportBatch, tracked_addresses: set[str] | None = None
    ) -> list[RollbackAction]:
        """One action per Applied entry, in ordinal order.

        Args:
            batch: Failed batch
            tracked_addresses: Addresses in engine state; queried when omitted
        """
        applied = batch.entries_with_status(EntryStatus.APPLIED)
        if not applied:
            return []
        if tracked_addresses is None:
            tracked_addresses = set(self.executor.state_list())

        actions = [
            RollbackAction(
                address=entry.address,
                resource_id=entry.resource.resource_id,
                ordinal=entry.ordinal,
                kind=(
                    RollbackActionKind.REMOVE_FROM_STATE
                    if entry.address in tracked_addresses
                    else RollbackActionKind.DISCARD_CONFIG
                ),
            )
            for entry in applied
        ]
        logger.info(
            "rollback_planned",
            batch_id=batch.batch_id,
            remove_from_state=sum(1 for a in actions if a.kind is RollbackActionKind.REMOVE_FROM_STATE),
            discard_config=sum(1 for a in actions if a.kind is RollbackActionKind.DISCARD_CONFIG),
        )
        return actions

    def execute(self, batch: ImportBatch, actions: list[RollbackAction]) -> list[RollbackRecord]:
        """Run actions most-recently-imported first and record every outcome."""
        records: list[RollbackRecord] = []
        ordered = sorted(actions, key=lambda a: (a.ordinal, a.address), reverse=True)

        for action in ordered:
            try:
                if action.kind is RollbackActionKind.REMOVE_FROM_STATE:
                    try:
                        self.executor.state_rm(action.address)
                        message = "removed from state; generated configuration discarded"
                    except ResourceNotFoundError:
                        message = "already absent from state; generated configuration discarded"
                else:
                    message = "generated configuration discarded"
                self.generator.discard(batch, {action.address}, force=True)
                success = True
            except IacImportError as e:
                success = False
                message = str(e)
                logger.error(
                    "rollback_action_failed",
                    batch_id=batch.batch_id,
                    address=action.address,
                    kind=action.kind.value,
                    error=message,
                )
            else:
                entry = batch.find_entry(action.address)
                if entry is not None:
                    entry.status = EntryStatus.ROLLED_BACK
                logger.info(
                    "rollback_action_succeeded",
                    batch_id=batch.batch_id,
                    address=action.address,
                    kind=action.kind.value,
                )
            records.append(
                RollbackRecord(
                    address=action.address,
                    resource_id=action.resource_id,
                    kind=action.kind,
                    executed_at=utcnow(),
                    success=success,
                    message=message,
                )
            )
            log_phase_progress(logger, batch.batch_id, "rollback", len(records), len(ordered))

        batch.touch()
        return records
