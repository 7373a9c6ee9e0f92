"""
Batch status command.

Without an argument lists stored batches; with a batch id shows its entries,
phase history and any rollback outcomes.
"""

import json

import click

from iac_import.cli.context import ImportContext
from iac_import.cli.decorators import handle_errors, pass_context, requires_config
from iac_import.cli.utils import echo_info, format_timestamp, print_batch, print_table
from iac_import.utils.logging import get_logger

logger = get_logger(__name__)


@click.command(name="status")
@click.argument("batch_id", required=False)
@click.option("--active-only", is_flag=True, help="Hide finalized, rolled back and empty batches")
@click.option("--json", "as_json", is_flag=True, help="Print the batch as JSON")
@pass_context
@requires_config
@handle_errors
def status(ctx: ImportContext, batch_id: str | None, active_only: bool, as_json: bool) -> None:
    """Show stored import batches.

    Examples:

        iac-import status

        iac-import status batch-20250101120000-1a2b3c4d --json
    """
    store = ctx.store

    if batch_id is None:
        summaries = store.list_batches(include_completed=not active_only)
        if not summaries:
            echo_info("No batches recorded")
            return
        rows = [
            [
                s["batch_id"],
                s["status"],
                s["entries"],
                ", ".join(f"{k}={v}" for k, v in sorted(s["counts"].items())),
                format_timestamp(s["updated_at"]),
                s["working_dir"],
            ]
            for s in summaries
        ]
        print_table(
            "Import Batches",
            ["Batch", "Status", "Entries", "Entry Status", "Updated", "Working Dir"],
            rows,
        )
        return

    batch = store.load(batch_id)
    transitions = store.transitions(batch_id)
    rollback_records = store.rollback_records(batch_id)

    if as_json:
        document = {
            "batch": batch.to_dict(),
            "transitions": transitions,
            "rollback_records": rollback_records,
        }
        click.echo(json.dumps(document, indent=2, sort_keys=True, default=str))
        return

    click.echo(f"Batch:       {batch.batch_id}")
    click.echo(f"Status:      {batch.status.value}")
    click.echo(f"Working dir: {batch.working_dir}")
    click.echo(f"Created:     {format_timestamp(batch.created_at)}")
    if batch.error:
        click.echo(f"Error:       {batch.error}")
    click.echo()

    if batch.entries:
        print_batch(batch)

    print_table(
        "Phase History",
        ["From", "To", "Message", "At"],
        [[t["from_status"] or "-", t["to_status"], t["message"], t["created_at"]] for t in transitions],
    )

    if rollback_records:
        print_table(
            "Rollback",
            ["Address", "Action", "Result", "Message"],
            [
                [r["address"], r["kind"], "ok" if r["success"] else "failed", r["message"]]
                for r in rollback_records
            ],
        )

    for warning in batch.warnings:
        click.echo(f"  warning: {warning}")
