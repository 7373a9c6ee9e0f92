"""Batch persistence.

``BatchStore`` keeps the batch status record (the resumption checkpoint),
the phase transition log and rollback outcomes. Each store owns its engine
and session factory.
"""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy.orm import Session

from iac_import.client.exceptions import ProjectNotFoundError
from iac_import.models import (
    BatchStatus,
    DiscoveredResource,
    EntryStatus,
    ImportBatch,
    ImportDestination,
    ImportPlanEntry,
    RollbackRecord,
    utcnow,
)
from iac_import.state.database import create_database_engine, init_database, session_scope
from iac_import.state.models import (
    BatchRecord,
    CompletedBatch,
    EntryRecord,
    PhaseTransitionRecord,
    RollbackRecordRow,
)
from iac_import.utils.idempotency import hash_record
from iac_import.utils.logging import get_logger

logger = get_logger(__name__)


def _aware(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo; everything is stored in UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class BatchStore:
    """SQLAlchemy-backed store for import batches."""

    def __init__(self, database_url: str, echo: bool = False):
        self.database_url = database_url
        self.engine = create_database_engine(database_url, echo=echo)
        self._session_factory = init_database(self.engine)

    def close(self) -> None:
        self.engine.dispose()

    def session(self):
        return session_scope(self._session_factory)

    # Batches

    def save(self, batch: ImportBatch) -> None:
        """Insert or update a batch and its entries."""
        with self.session() as session:
            record = session.get(BatchRecord, batch.batch_id)
            if record is None:
                record = BatchRecord(batch_id=batch.batch_id, created_at=batch.created_at)
                session.add(record)
            record.working_dir = batch.working_dir
            record.status = batch.status.value
            record.file_organization = batch.file_organization
            record.generated_files = dict(batch.generated_files)
            record.warnings = list(batch.warnings)
            record.error = batch.error
            record.updated_at = batch.updated_at
            self._sync_entries(session, record, batch)

        logger.debug(
            "batch_saved", batch_id=batch.batch_id, status=batch.status.value, entries=len(batch.entries)
        )

    @staticmethod
    def _sync_entries(session: Session, record: BatchRecord, batch: ImportBatch) -> None:
        existing = {(e.provider, e.resource_type, e.resource_id): e for e in record.entries}
        wanted = set()
        for entry in batch.ordered_entries():
            key = entry.resource.key
            wanted.add(key)
            row = existing.get(key)
            if row is None:
                row = EntryRecord(provider=key[0], resource_type=key[1], resource_id=key[2])
                record.entries.append(row)
            row.address = entry.address
            row.ordinal = entry.ordinal
            row.status = entry.status.value
            row.error = entry.error
            row.resource = entry.resource.to_dict()
            row.destination = entry.destination.to_dict() if entry.destination else None
            row.requested_address = entry.requested_address
        for key, row in existing.items():
            if key not in wanted:
                record.entries.remove(row)

    @staticmethod
    def _to_batch(record: BatchRecord) -> ImportBatch:
        entries = [
            ImportPlanEntry(
                resource=DiscoveredResource.from_dict(row.resource),
                destination=ImportDestination.from_dict(row.destination) if row.destination else None,
                ordinal=row.ordinal,
                status=EntryStatus(row.status),
                error=row.error,
                requested_address=row.requested_address,
            )
            for row in record.entries
        ]
        return ImportBatch(
            batch_id=record.batch_id,
            working_dir=record.working_dir,
            status=BatchStatus(record.status),
            entries=entries,
            file_organization=record.file_organization,
            warnings=list(record.warnings or []),
            generated_files=dict(record.generated_files or {}),
            error=record.error,
            created_at=_aware(record.created_at),
            updated_at=_aware(record.updated_at),
        )

    def load(self, batch_id: str) -> ImportBatch:
        """Load an active batch, or the snapshot of an archived one.

        Raises:
            ProjectNotFoundError: If no batch with this id exists
        """
        with self.session() as session:
            record = session.get(BatchRecord, batch_id)
            if record is not None:
                return self._to_batch(record)
            completed = session.get(CompletedBatch, batch_id)
            if completed is not None:
                return ImportBatch.from_dict(completed.snapshot["batch"])
        raise ProjectNotFoundError(f"Batch '{batch_id}' not found")

    def exists(self, batch_id: str) -> bool:
        with self.session() as session:
            return (
                session.get(BatchRecord, batch_id) is not None
                or session.get(CompletedBatch, batch_id) is not None
            )

    def list_batches(self, include_completed: bool = True) -> list[dict[str, Any]]:
        """Summaries of stored batches, newest first."""
        summaries: list[dict[str, Any]] = []
        with self.session() as session:
            for record in session.query(BatchRecord).all():
                batch = self._to_batch(record)
                summaries.append(
                    {
                        "batch_id": batch.batch_id,
                        "status": batch.status.value,
                        "working_dir": batch.working_dir,
                        "entries": len(batch.entries),
                        "counts": batch.status_counts(),
                        "updated_at": batch.updated_at,
                        "archived": False,
                    }
                )
            if include_completed:
                for completed in session.query(CompletedBatch).all():
                    batch = ImportBatch.from_dict(completed.snapshot["batch"])
                    summaries.append(
                        {
                            "batch_id": batch.batch_id,
                            "status": batch.status.value,
                            "working_dir": batch.working_dir,
                            "entries": len(batch.entries),
                            "counts": batch.status_counts(),
                            "updated_at": batch.updated_at,
                            "archived": True,
                        }
                    )
        summaries.sort(key=lambda s: s["updated_at"], reverse=True)
        return summaries

    def find_active(self, working_dir: str) -> list[str]:
        """Ids of non-terminal batches targeting a working directory."""
        terminal = [s.value for s in BatchStatus if s.is_terminal]
        with self.session() as session:
            rows = (
                session.query(BatchRecord.batch_id)
                .filter(BatchRecord.working_dir == working_dir)
                .filter(BatchRecord.status.notin_(terminal))
                .order_by(BatchRecord.created_at)
                .all()
            )
        return [row[0] for row in rows]

    # Transition log

    def record_transition(
        self,
        batch_id: str,
        from_status: BatchStatus | None,
        to_status: BatchStatus,
        message: str | None = None,
    ) -> None:
        with self.session() as session:
            session.add(
                PhaseTransitionRecord(
                    batch_id=batch_id,
                    from_status=from_status.value if from_status else None,
                    to_status=to_status.value,
                    message=message,
                    created_at=utcnow(),
                )
            )

    def transitions(self, batch_id: str) -> list[dict[str, Any]]:
        with self.session() as session:
            rows = (
                session.query(PhaseTransitionRecord)
                .filter(PhaseTransitionRecord.batch_id == batch_id)
                .order_by(PhaseTransitionRecord.id)
                .all()
            )
            if not rows:
                completed = session.get(CompletedBatch, batch_id)
                if completed is not None:
                    return list(completed.snapshot.get("transitions", []))
            return [
                {
                    "from_status": row.from_status,
                    "to_status": row.to_status,
                    "message": row.message,
                    "created_at": _aware(row.created_at).isoformat(),
                }
                for row in rows
            ]

    # Rollback outcomes

    def save_rollback_records(self, batch_id: str, records: list[RollbackRecord]) -> None:
        with self.session() as session:
            for record in records:
                session.add(
                    RollbackRecordRow(
                        batch_id=batch_id,
                        address=record.address,
                        resource_id=record.resource_id,
                        kind=record.kind.value,
                        success=record.success,
                        message=record.message,
                        executed_at=record.executed_at,
                    )
                )
        logger.debug("rollback_records_saved", batch_id=batch_id, records=len(records))

    def rollback_records(self, batch_id: str) -> list[dict[str, Any]]:
        with self.session() as session:
            rows = (
                session.query(RollbackRecordRow)
                .filter(RollbackRecordRow.batch_id == batch_id)
                .order_by(RollbackRecordRow.id)
                .all()
            )
            if not rows:
                completed = session.get(CompletedBatch, batch_id)
                if completed is not None:
                    return list(completed.snapshot.get("rollback_records", []))
            return [
                {
                    "address": row.address,
                    "resource_id": row.resource_id,
                    "kind": row.kind,
                    "success": row.success,
                    "message": row.message,
                    "executed_at": _aware(row.executed_at).isoformat(),
                }
                for row in rows
            ]

    # Archive

    def archive(self, batch: ImportBatch) -> str:
        """Move a terminal batch into ``completed_batches``.

        Returns:
            SHA-256 checksum of the archived snapshot
        """
        self.save(batch)
        snapshot = {
            "batch": batch.to_dict(),
            "transitions": self.transitions(batch.batch_id),
            "rollback_records": self.rollback_records(batch.batch_id),
        }
        checksum = hash_record(snapshot)
        with self.session() as session:
            session.merge(
                CompletedBatch(
                    batch_id=batch.batch_id,
                    status=batch.status.value,
                    working_dir=batch.working_dir,
                    snapshot=snapshot,
                    checksum=checksum,
                    archived_at=utcnow(),
                )
            )
            record = session.get(BatchRecord, batch.batch_id)
            if record is not None:
                session.delete(record)
        logger.info(
            "batch_archived", batch_id=batch.batch_id, status=batch.status.value, checksum=checksum
        )
        return checksum
