"""
Main CLI entry point for iac-import.

This module provides the command-line interface for adopting existing
cloud resources into OpenTofu/Terraform state.
"""

import sys
from pathlib import Path

import click
from dotenv import load_dotenv

from iac_import import __version__
from iac_import.cli.commands import discover as discover_commands
from iac_import.cli.commands import rollback as rollback_commands
from iac_import.cli.commands import run as run_commands
from iac_import.cli.commands import status as status_commands
from iac_import.cli.commands import unlock as unlock_commands
from iac_import.cli.commands import validate as validate_commands
from iac_import.cli.context import ImportContext
from iac_import.utils.logging import configure_logging, get_logger

# Load environment variables from .env file
load_dotenv()

logger = get_logger(__name__)


@click.group()
@click.version_option(version=__version__, prog_name="iac-import")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
    envvar="IAC_IMPORT_CONFIG",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Set console logging level [default: logging.level or WARNING]",
    envvar="IAC_IMPORT_LOG_LEVEL",
)
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    help="Also write JSON logs to this file",
    envvar="IAC_IMPORT_LOG_FILE",
)
@click.option(
    "--working-dir",
    "-w",
    type=click.Path(file_okay=False, path_type=Path),
    help="IaC working directory (overrides paths.working_dir)",
    envvar="IAC_IMPORT_WORKING_DIR",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Path | None,
    log_level: str | None,
    log_file: Path | None,
    working_dir: Path | None,
) -> None:
    """iac-import - Adopt existing cloud resources into IaC state.

    Discovers resources in AWS, Azure or GCP (or reads them from a batch
    file), maps them onto resource addresses, writes import blocks and
    drives OpenTofu/Terraform through plan and apply.

    Examples:

        # List VPCs and subnets in two regions
        iac-import discover --provider aws --region us-east-1 --region eu-west-1 \\
            --type ec2:vpc --type ec2:subnet

        # Import everything tagged team=payments
        iac-import -w ./infra run --provider aws --tag team=payments

        # Import a curated list of resources
        iac-import -w ./infra run --batch-file resources.yaml --yes

        # Continue an interrupted batch
        iac-import resume batch-20250101120000-1a2b3c4d
    """
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)

    configure_logging(level=log_level or "WARNING", log_file=str(log_file) if log_file else None)

    ctx.obj = ImportContext(
        config_path=config,
        log_level=log_level,
        log_file=log_file,
        working_dir=working_dir,
    )
    ctx.call_on_close(ctx.obj.cleanup)

    logger.debug(
        "cli_initialized",
        config=str(config) if config else None,
        log_level=log_level,
        working_dir=str(working_dir) if working_dir else None,
    )


cli.add_command(discover_commands.discover)
cli.add_command(run_commands.run)
cli.add_command(run_commands.resume)
cli.add_command(status_commands.status)
cli.add_command(rollback_commands.rollback)
cli.add_command(validate_commands.validate_input)
cli.add_command(unlock_commands.unlock)


def main() -> int:
    """Main entry point for CLI."""
    try:
        # Non-standalone mode returns the exit code of click.exceptions.Exit
        exit_code = cli(standalone_mode=False)
        return exit_code if isinstance(exit_code, int) else 0
    except click.exceptions.Abort:
        click.echo("Aborted!", err=True)
        return 1
    except click.ClickException as e:
        e.show()
        return e.exit_code
    except Exception as e:
        logger.error("unexpected_error", error=str(e), exc_info=True)
        click.echo(f"Error: {e}", err=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
