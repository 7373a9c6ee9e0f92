"""
Rollback command.

Removes the resources a failed batch managed to import from state and
discards their generated configuration.
"""

import click

from iac_import.cli.context import ImportContext
from iac_import.cli.decorators import (
    EXIT_EXECUTOR,
    confirm_action,
    handle_errors,
    pass_context,
    requires_config,
)
from iac_import.cli.utils import echo_error, echo_info, echo_success, print_table
from iac_import.models import BatchStatus
from iac_import.utils.logging import get_logger

logger = get_logger(__name__)


@click.command(name="rollback")
@click.argument("batch_id")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@pass_context
@requires_config
@confirm_action(
    message="Remove this batch's imported resources from state? The cloud resources are not touched.",
    abort_message="Rollback cancelled.",
)
@handle_errors
def rollback(ctx: ImportContext, batch_id: str, yes: bool) -> None:
    """Roll back a failed import batch.

    Examples:

        iac-import rollback batch-20250101120000-1a2b3c4d --yes
    """
    echo_info(f"Rolling back {batch_id}...")
    result = ctx.workflow().rollback(batch_id)

    if result.rollback_records:
        print_table(
            "Rollback",
            ["Address", "Action", "Result", "Message"],
            [
                [r.address, r.kind.value, "ok" if r.success else "failed", r.message]
                for r in result.rollback_records
            ],
        )

    if result.batch.status is BatchStatus.ROLLED_BACK:
        echo_success(f"Batch {batch_id} rolled back ({len(result.rollback_records)} actions)")
        return

    echo_error(result.batch.error or "Rollback did not complete")
    echo_info("Fix the failures above and run rollback again")
    raise click.exceptions.Exit(EXIT_EXECUTOR)
