"""
SQLAlchemy models for import batch persistence.

One row per batch holds its workflow status (the resumption point); entries,
phase transitions and rollback outcomes hang off it. Finalized and
rolled-back batches are archived into ``completed_batches`` as a JSON
snapshot and removed from the active tables.
"""

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from iac_import.models import BatchStatus, EntryStatus, utcnow


def _in_list(column: str, values) -> str:
    return f"{column} IN ({', '.join(repr(v.value) for v in values)})"


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class BatchRecord(Base):
    """An import batch and its workflow status."""

    __tablename__ = "import_batches"

    batch_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    working_dir: Mapped[str] = mapped_column(
        String(1024), nullable=False, comment="Directory the engine runs in"
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, index=True, comment="Workflow status; the resumption point"
    )
    file_organization: Mapped[str] = mapped_column(
        String(20), nullable=False, default="single_file", comment="Import directive grouping"
    )
    generated_files: Mapped[dict] = mapped_column(
        JSON, nullable=False, default=dict, comment="Generated file name -> SHA-256"
    )
    warnings: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    error: Mapped[str | None] = mapped_column(Text, nullable=True, comment="Last phase error")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    entries: Mapped[list["EntryRecord"]] = relationship(
        "EntryRecord",
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="EntryRecord.ordinal",
    )
    transitions: Mapped[list["PhaseTransitionRecord"]] = relationship(
        "PhaseTransitionRecord",
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="PhaseTransitionRecord.id",
    )
    rollback_records: Mapped[list["RollbackRecordRow"]] = relationship(
        "RollbackRecordRow",
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="RollbackRecordRow.id",
    )

    __table_args__ = (
        CheckConstraint(_in_list("status", BatchStatus), name="ck_import_batches_status"),
        Index("idx_batches_working_dir", "working_dir"),
    )

    def __repr__(self) -> str:
        return f"<BatchRecord(batch_id='{self.batch_id}', status='{self.status}')>"


class EntryRecord(Base):
    """One import plan entry of a batch."""

    __tablename__ = "import_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    batch_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("import_batches.batch_id", ondelete="CASCADE"), nullable=False
    )
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(100), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(1024), nullable=False)
    address: Mapped[str | None] = mapped_column(
        String(512), nullable=True, comment="Destination address (null when unmapped)"
    )
    ordinal: Mapped[int] = mapped_column(Integer, nullable=False, comment="1-based import order")
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    resource: Mapped[dict] = mapped_column(JSON, nullable=False, comment="Discovered resource")
    destination: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    requested_address: Mapped[str | None] = mapped_column(
        String(512), nullable=True, comment="Address named by the batch input"
    )

    batch: Mapped["BatchRecord"] = relationship("BatchRecord", back_populates="entries")

    __table_args__ = (
        UniqueConstraint(
            "batch_id", "provider", "resource_type", "resource_id", name="uq_entries_resource"
        ),
        Index("idx_entries_batch_address", "batch_id", "address"),
        CheckConstraint(_in_list("status", EntryStatus), name="ck_import_entries_status"),
        Index("idx_entries_batch_status", "batch_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<EntryRecord(address='{self.address}', status='{self.status}')>"


class PhaseTransitionRecord(Base):
    """Append-only log of workflow transitions."""

    __tablename__ = "phase_transitions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    batch_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("import_batches.batch_id", ondelete="CASCADE"), nullable=False
    )
    from_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    to_status: Mapped[str] = mapped_column(String(20), nullable=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    batch: Mapped["BatchRecord"] = relationship("BatchRecord", back_populates="transitions")

    __table_args__ = (Index("idx_transitions_batch", "batch_id"),)


class RollbackRecordRow(Base):
    """Outcome of one executed rollback action."""

    __tablename__ = "rollback_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    batch_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("import_batches.batch_id", ondelete="CASCADE"), nullable=False
    )
    address: Mapped[str] = mapped_column(String(512), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(1024), nullable=False)
    kind: Mapped[str] = mapped_column(String(30), nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    executed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    batch: Mapped["BatchRecord"] = relationship("BatchRecord", back_populates="rollback_records")

    __table_args__ = (Index("idx_rollback_batch", "batch_id"),)


class CompletedBatch(Base):
    """Archived snapshot of a batch that reached a terminal status."""

    __tablename__ = "completed_batches"

    batch_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    working_dir: Mapped[str] = mapped_column(String(1024), nullable=False)
    snapshot: Mapped[dict] = mapped_column(JSON, nullable=False, comment="Full batch record")
    checksum: Mapped[str] = mapped_column(String(64), nullable=False, comment="SHA-256 of snapshot")
    archived_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
