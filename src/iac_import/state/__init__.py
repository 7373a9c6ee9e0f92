"""
State module for iac-import.

Persists import batches, the phase transition log and rollback outcomes so
a batch can be resumed or audited after the process exits.
"""

from iac_import.state.database import create_database_engine, init_database, session_scope
from iac_import.state.models import (
    Base,
    BatchRecord,
    CompletedBatch,
    EntryRecord,
    PhaseTransitionRecord,
    RollbackRecordRow,
)
from iac_import.state.store import BatchStore

__all__ = [
    # Models
    "Base",
    "BatchRecord",
    "EntryRecord",
    "PhaseTransitionRecord",
    "RollbackRecordRow",
    "CompletedBatch",
    # Database utilities
    "create_database_engine",
    "init_database",
    "session_scope",
    # Store
    "BatchStore",
]
