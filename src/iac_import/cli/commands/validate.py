"""
Batch input validation command.

Parses and maps a batch input without touching the working directory or
any cloud API, then runs the pre-flight checks.
"""

from pathlib import Path

import click

from iac_import.cli.context import ImportContext
from iac_import.cli.decorators import (
    EXIT_INVALID_INPUT,
    handle_errors,
    pass_context,
    requires_config,
)
from iac_import.cli.utils import echo_error, echo_success, echo_warning, print_batch
from iac_import.discovery.inputs import load_batch_input
from iac_import.mapping.mapper import ResourceMapper
from iac_import.models import ImportBatch
from iac_import.schema.models import Severity
from iac_import.schema.validator import preflight
from iac_import.utils.logging import get_logger

logger = get_logger(__name__)


@click.command(name="validate-input")
@click.argument("batch_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@pass_context
@requires_config
@handle_errors
def validate_input(ctx: ImportContext, batch_file: Path) -> None:
    """Check a batch input file before running it.

    Reports unmappable resources, duplicate addresses, references to
    resources outside the batch and an already populated working directory.

    Examples:

        iac-import -w ./infra validate-input resources.yaml
    """
    batch_input = load_batch_input(batch_file)
    mapper = ResourceMapper(module_path=ctx.config.workflow.module_path)
    mapping = mapper.plan(batch_input.resources, batch_input.addresses)

    batch = ImportBatch(
        batch_id=f"preflight-{batch_file.stem}",
        working_dir=str(Path(ctx.config.paths.working_dir).resolve()),
        entries=mapping.entries,
    )
    print_batch(batch)

    errors = 0
    for failure in mapping.failures:
        echo_error(str(failure))
        errors += 1
    for warning in mapping.warnings:
        echo_warning(warning.message)

    for issue in preflight(batch):
        if issue.severity is Severity.ERROR:
            echo_error(str(issue))
            errors += 1
        else:
            echo_warning(str(issue))

    if errors:
        echo_error(f"{errors} problem(s) found in {batch_file}")
        raise click.exceptions.Exit(EXIT_INVALID_INPUT)
    echo_success(f"{batch_file} is ready to import ({len(mapping.mapped)} resources)")
