"""
Import commands.

``run`` starts a batch from live discovery, a curated batch file or an
inventory export; ``resume`` continues a stored batch from its last phase.
"""

import asyncio
from pathlib import Path

import click

from iac_import.cli.commands.discover import CLOUD_PROVIDERS, parse_tags, scope_for
from iac_import.cli.context import ImportContext, prompt_confirm
from iac_import.cli.decorators import exit_code_for, handle_errors, pass_context, requires_config
from iac_import.cli.utils import (
    echo_error,
    echo_info,
    echo_success,
    echo_warning,
    print_batch,
    print_stats,
)
from iac_import.client.exceptions import InvalidInputError
from iac_import.discovery.inputs import BatchInput, load_batch_input, load_inventory_export
from iac_import.models import BatchStatus, DiscoveryFilter, EntryStatus, Provider
from iac_import.utils.logging import get_logger
from iac_import.workflow.coordinator import WorkflowResult

logger = get_logger(__name__)


def report_result(result: WorkflowResult) -> None:
    """Print the outcome of a workflow run and exit non-zero on failure."""
    batch = result.batch
    click.echo()
    if batch.entries:
        print_batch(batch)
    print_stats(batch.status_counts(), f"Batch {batch.batch_id}")

    for warning in result.warnings:
        echo_warning(warning)

    if result.awaiting_confirmation:
        echo_info(f"Plan ready; run 'iac-import resume {batch.batch_id}' to apply")
        return

    if batch.status is BatchStatus.FINALIZED:
        echo_success(f"Imported {len(batch.entries_with_status(EntryStatus.APPLIED))} resources")
        return
    if batch.status is BatchStatus.EMPTY:
        echo_info("Discovery found nothing to import")
        return

    if result.partial_import is not None:
        echo_error(str(result.partial_import))
        if batch.status is BatchStatus.ROLLED_BACK:
            echo_info("Applied imports were rolled back automatically")
        else:
            for action in result.rollback_actions:
                click.echo(f"  rollback: {action.kind.value} {action.address}")
            echo_info(f"Run 'iac-import rollback {batch.batch_id}' to undo the applied imports")
        raise click.exceptions.Exit(exit_code_for(result.partial_import))

    if result.error is not None:
        echo_error(str(result.error))
        raise click.exceptions.Exit(exit_code_for(result.error))

    if batch.status is BatchStatus.FAILED:
        echo_error(batch.error or "Batch failed")
        raise click.exceptions.Exit(1)


@click.command(name="run")
@click.option(
    "--provider",
    "-p",
    type=click.Choice(CLOUD_PROVIDERS, case_sensitive=False),
    help="Cloud provider to discover from",
)
@click.option("--region", "-r", "regions", multiple=True, help="Region to query (repeatable)")
@click.option("--type", "-t", "resource_types", multiple=True, help="Resource type (repeatable)")
@click.option("--tag", "tags", multiple=True, help="Required tag KEY=VALUE (repeatable)")
@click.option("--name-pattern", help="Glob the resource name or id must match")
@click.option("--limit", type=int, help="Import at most this many resources")
@click.option(
    "--batch-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Curated batch input (YAML or JSON)",
)
@click.option(
    "--export",
    "export_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Inventory export written by 'discover --output' or another tool",
)
@click.option("--batch-id", help="Batch identifier (default: generated)")
@click.option("--yes", "-y", is_flag=True, help="Apply without asking")
@pass_context
@requires_config
@handle_errors
def run(
    ctx: ImportContext,
    provider: str | None,
    regions: tuple[str, ...],
    resource_types: tuple[str, ...],
    tags: tuple[str, ...],
    name_pattern: str | None,
    limit: int | None,
    batch_file: Path | None,
    export_file: Path | None,
    batch_id: str | None,
    yes: bool,
) -> None:
    """Discover, map, generate, plan and apply one import batch.

    Exactly one source is required: --provider, --batch-file or --export.

    Examples:

        iac-import -w ./infra run -p aws -r us-east-1 -t ec2:vpc

        iac-import -w ./infra run --batch-file resources.yaml --yes
    """
    sources = [s for s in (provider, batch_file, export_file) if s]
    if len(sources) != 1:
        raise InvalidInputError("Give exactly one of --provider, --batch-file or --export")

    workflow = ctx.workflow(confirm=prompt_confirm)
    auto_approve = True if yes else None
    resource_filter = DiscoveryFilter(
        resource_types=list(resource_types),
        tags=parse_tags(tags),
        regions=list(regions),
        name_pattern=name_pattern,
        limit=limit,
    )

    if batch_file is not None:
        echo_info(f"Loading batch input {batch_file}...")
        batch_input = load_batch_input(batch_file)
        result = asyncio.run(
            workflow.start_from_input(batch_input, batch_id=batch_id, auto_approve=auto_approve)
        )
    elif export_file is not None:
        echo_info(f"Loading inventory export {export_file}...")
        resources, warnings = load_inventory_export(export_file, resource_filter)
        for warning in warnings:
            echo_warning(warning)
        result = asyncio.run(
            workflow.start_from_input(
                BatchInput(resources=resources), batch_id=batch_id, auto_approve=auto_approve
            )
        )
    else:
        selected = Provider.from_str(provider)
        echo_info(f"Discovering {selected.value} resources...")
        result = asyncio.run(
            workflow.start(
                selected,
                scope=scope_for(ctx.config, selected, regions),
                resource_type_filter=list(resource_types) or None,
                tag_filter=resource_filter.tags,
                resource_filter=DiscoveryFilter(name_pattern=name_pattern, limit=limit),
                batch_id=batch_id,
                auto_approve=auto_approve,
            )
        )

    report_result(result)


@click.command(name="resume")
@click.argument("batch_id")
@click.option("--yes", "-y", is_flag=True, help="Apply without asking")
@pass_context
@requires_config
@handle_errors
def resume(ctx: ImportContext, batch_id: str, yes: bool) -> None:
    """Continue a stored batch from its last completed phase.

    Examples:

        iac-import resume batch-20250101120000-1a2b3c4d --yes
    """
    workflow = ctx.workflow(confirm=prompt_confirm)
    result = asyncio.run(workflow.resume(batch_id, auto_approve=True if yes else None))
    batch = result.batch
    if batch.status in (BatchStatus.FAILED, BatchStatus.ROLLED_BACK) and result.error is None:
        echo_warning(f"Batch {batch_id} is {batch.status.value}; nothing to resume")
        if batch.status is BatchStatus.FAILED:
            echo_info(f"Run 'iac-import rollback {batch_id}' to undo its applied imports")
        return
    report_result(result)
