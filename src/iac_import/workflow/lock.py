"""Exclusive working directory lock.

Planning and Applying run an engine subprocess against the working
directory. The lock file is created with O_CREAT | O_EXCL, so exactly one
run can hold it; the file records who holds it for the error message the
other run sees.

A lock left behind by a crashed run of the same batch is taken over when
its process is gone, so ``resume`` and ``rollback`` work after a restart.
Any other stale lock has to be removed with ``force_release``.
"""

import getpass
import json
import os
import socket
import uuid
from pathlib import Path
from typing import Any

from iac_import.client.exceptions import FileSystemError, WorkingDirectoryLockedError
from iac_import.models import utcnow
from iac_import.utils.logging import get_logger

logger = get_logger(__name__)


def process_alive(pid: int) -> bool:
    """Whether a process with ``pid`` exists on this host."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by another user
        return True
    return True


def holder_alive(holder: dict[str, Any]) -> bool:
    """Whether the run recorded in a lock file may still be running.

    Records from another host, or without a usable pid, count as alive.
    """
    host = holder.get("host")
    if host is not None and host != socket.gethostname():
        return True
    try:
        pid = int(holder.get("pid"))
    except (TypeError, ValueError):
        return True
    return process_alive(pid)


class WorkingDirectoryLock:
    """Context manager holding the lock file for one batch."""

    def __init__(self, working_dir: str | Path, batch_id: str, lock_file: str = ".iac-import.lock"):
        self.working_dir = Path(working_dir)
        self.batch_id = batch_id
        self.path = self.working_dir / lock_file
        self.lock_id = uuid.uuid4().hex
        self.held = False

    def holder(self) -> dict[str, Any] | None:
        """Contents of the current lock file, if any."""
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError):
            return {"lock_id": "unknown"}

    def is_abandoned(self, holder: dict[str, Any]) -> bool:
        """True when ``holder`` is this batch's lock from a run that no longer exists.

        The holding process must be this one or dead.
        """
        if holder.get("batch_id") != self.batch_id:
            return False
        same_host = holder.get("host") in (None, socket.gethostname())
        if same_host and holder.get("pid") == os.getpid():
            return True
        return not holder_alive(holder)

    def _create(self) -> bool:
        record = {
            "batch_id": self.batch_id,
            "locked_by": getpass.getuser(),
            "locked_at": utcnow().isoformat(),
            "lock_id": self.lock_id,
            "pid": os.getpid(),
            "host": socket.gethostname(),
        }
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        except OSError as e:
            raise FileSystemError(f"Failed to create lock ({e.strerror})", path=str(self.path)) from e
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(record, f, indent=2)
        return True

    def acquire(self) -> None:
        if self.held:
            return
        created = self._create()
        if not created:
            holder = self.holder() or {}
            if self.is_abandoned(holder):
                logger.warning(
                    "working_dir_lock_taken_over",
                    working_dir=str(self.working_dir),
                    batch_id=self.batch_id,
                    stale_pid=holder.get("pid"),
                    stale_lock_id=holder.get("lock_id"),
                )
                self.path.unlink(missing_ok=True)
                created = self._create()
                holder = self.holder() or {}
            if not created:
                logger.warning(
                    "working_dir_locked",
                    working_dir=str(self.working_dir),
                    batch_id=self.batch_id,
                    holder_batch=holder.get("batch_id"),
                )
                raise WorkingDirectoryLockedError(str(self.working_dir), holder)
        self.held = True
        logger.debug("working_dir_lock_acquired", working_dir=str(self.working_dir), lock_id=self.lock_id)

    def release(self) -> None:
        if not self.held:
            return
        holder = self.holder()
        # Only remove a lock this instance created
        if holder is not None and holder.get("lock_id") == self.lock_id:
            self.path.unlink(missing_ok=True)
        self.held = False
        logger.debug("working_dir_lock_released", working_dir=str(self.working_dir), lock_id=self.lock_id)

    def force_release(self) -> dict[str, Any] | None:
        """Remove the lock file whoever holds it; return the removed holder record."""
        holder = self.holder()
        if holder is None:
            return None
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            raise FileSystemError(f"Failed to remove lock ({e.strerror})", path=str(self.path)) from e
        self.held = False
        logger.warning(
            "working_dir_lock_force_released",
            working_dir=str(self.working_dir),
            holder_batch=holder.get("batch_id"),
            holder_user=holder.get("locked_by"),
        )
        return holder

    def __enter__(self) -> "WorkingDirectoryLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()
