"""
Workflow module for iac-import.

The import state machine, its working directory lock and the rollback
manager.
"""

from iac_import.workflow.coordinator import TRANSITIONS, ImportWorkflow, WorkflowResult
from iac_import.workflow.lock import WorkingDirectoryLock
from iac_import.workflow.rollback import RollbackManager

__all__ = [
    "TRANSITIONS",
    "ImportWorkflow",
    "WorkflowResult",
    "WorkingDirectoryLock",
    "RollbackManager",
]
