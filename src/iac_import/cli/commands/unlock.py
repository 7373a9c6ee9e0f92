"""
Unlock command.

Releases the working directory lock left behind by a run that did not
finish. Runs of the same batch take over their own abandoned lock on
resume; this command is for everything else.
"""

import getpass
from pathlib import Path

import click

from iac_import.cli.context import ImportContext
from iac_import.cli.decorators import EXIT_STATE, handle_errors, pass_context, requires_config
from iac_import.cli.utils import echo_info, echo_success, echo_warning
from iac_import.utils.logging import get_logger
from iac_import.workflow.lock import WorkingDirectoryLock, holder_alive

logger = get_logger(__name__)


@click.command(name="unlock")
@click.option("--force", is_flag=True, help="Release a lock owned by another user or a running process")
@pass_context
@requires_config
@handle_errors
def unlock(ctx: ImportContext, force: bool) -> None:
    """Release the working directory lock.

    Without --force only a lock taken by the current user whose process
    has exited is released.

    Examples:

        iac-import -w ./infra unlock
        iac-import -w ./infra unlock --force
    """
    paths = ctx.config.paths
    lock = WorkingDirectoryLock(Path(paths.working_dir).resolve(), "", paths.lock_file)
    holder = lock.holder()
    if holder is None:
        echo_info(f"Working directory {lock.working_dir} is not locked")
        return

    click.echo(f"Batch:     {holder.get('batch_id', 'unknown')}")
    click.echo(f"Locked by: {holder.get('locked_by', 'unknown')}")
    click.echo(f"Locked at: {holder.get('locked_at', 'unknown')}")
    click.echo(f"Process:   {holder.get('pid', 'unknown')} on {holder.get('host', 'unknown')}")

    owned = holder.get("locked_by") == getpass.getuser()
    if not force:
        if not owned:
            echo_warning("Lock is owned by another user; use --force to override")
            raise click.exceptions.Exit(EXIT_STATE)
        if holder_alive(holder):
            echo_warning("The locking process may still be running; use --force to override")
            raise click.exceptions.Exit(EXIT_STATE)
    elif not owned:
        echo_warning("Forcing release of a lock owned by another user")

    lock.force_release()
    echo_success("Lock released")
