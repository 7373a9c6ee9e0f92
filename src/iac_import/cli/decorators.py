"""
Decorators for CLI commands.

Error handling with stable exit codes, context passing and confirmation
prompts.
"""

import functools
from collections.abc import Callable

import click

from iac_import.cli.context import ImportContext
from iac_import.client.exceptions import (
    AuthenticationError,
    ConfigParseError,
    ConfigurationError,
    ExecutorFailedError,
    FileSystemError,
    IacImportError,
    InvalidInputError,
    PartialImportError,
    ProjectNotFoundError,
    ProviderApiError,
    StateError,
)
from iac_import.utils.logging import get_logger

logger = get_logger(__name__)

EXIT_UNEXPECTED = 1
EXIT_CONFIG = 2
EXIT_AUTH = 3
EXIT_PROVIDER_API = 4
EXIT_STATE = 5
EXIT_EXECUTOR = 6
EXIT_PARTIAL_IMPORT = 7
EXIT_INVALID_INPUT = 8


def exit_code_for(error: BaseException) -> int:
    """Map an error to its CLI exit code."""
    if isinstance(error, ConfigurationError):
        return EXIT_CONFIG
    if isinstance(error, AuthenticationError):
        return EXIT_AUTH
    if isinstance(error, ProviderApiError):
        return EXIT_PROVIDER_API
    if isinstance(error, (StateError, ProjectNotFoundError)):
        return EXIT_STATE
    if isinstance(error, (ExecutorFailedError, FileSystemError)):
        return EXIT_EXECUTOR
    if isinstance(error, PartialImportError):
        return EXIT_PARTIAL_IMPORT
    if isinstance(error, (InvalidInputError, ConfigParseError)):
        return EXIT_INVALID_INPUT
    return EXIT_UNEXPECTED


def pass_context(f: Callable) -> Callable:
    """
    Decorator to pass ImportContext to the command function.

    Usage:
        @click.command()
        @pass_context
        def my_command(ctx: ImportContext):
            print(ctx.config)
    """

    @click.pass_context
    @functools.wraps(f)
    def wrapper(click_ctx: click.Context, *args, **kwargs):
        import_ctx: ImportContext = click_ctx.obj
        return f(import_ctx, *args, **kwargs)

    return wrapper


def handle_errors(f: Callable) -> Callable:
    """
    Decorator converting errors into messages and exit codes.

    Exit codes:
        0: Success
        1: Unexpected error
        2: Configuration error
        3: Authentication error
        4: Provider API error
        5: State error
        6: Executor error
        7: Partial import
        8: Invalid input or unparseable file
    """

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)

        except click.exceptions.Exit:
            raise

        except ConfigurationError as e:
            logger.error("configuration_error", error=str(e))
            click.echo(f"Configuration Error: {e}", err=True)
            click.echo("\nPlease check your configuration file and environment.", err=True)
            raise click.exceptions.Exit(EXIT_CONFIG) from e

        except AuthenticationError as e:
            logger.error("authentication_error", error=str(e))
            click.echo(f"Authentication Error: {e}", err=True)
            click.echo("\nPlease verify your cloud credentials or profile.", err=True)
            raise click.exceptions.Exit(EXIT_AUTH) from e

        except IacImportError as e:
            code = exit_code_for(e)
            logger.error("command_failed", error=str(e), error_type=type(e).__name__)
            click.echo(f"Error: {e}", err=True)
            raise click.exceptions.Exit(code) from e

        except Exception as e:
            logger.error("unexpected_error", error=str(e), exc_info=True)
            click.echo(f"Unexpected Error: {e}", err=True)
            click.echo("\nAn unexpected error occurred. Please check the logs for details.", err=True)
            raise click.exceptions.Exit(EXIT_UNEXPECTED) from e

    return wrapper


def requires_config(f: Callable) -> Callable:
    """Decorator that loads and validates configuration before the command runs."""

    @functools.wraps(f)
    def wrapper(ctx: ImportContext, *args, **kwargs):
        try:
            _ = ctx.config
        except (ConfigurationError, ValueError) as e:
            click.echo(f"Error loading configuration: {e}", err=True)
            raise click.exceptions.Exit(EXIT_CONFIG) from e
        return f(ctx, *args, **kwargs)

    return wrapper


def confirm_action(
    message: str = "Do you want to continue?",
    abort_message: str = "Operation cancelled.",
) -> Callable:
    """
    Decorator to prompt for confirmation before executing a command.

    Skipped when the command was given ``--yes``.
    """

    def decorator(f: Callable) -> Callable:
        @functools.wraps(f)
        def wrapper(*args, **kwargs):
            ctx = click.get_current_context()
            if ctx.params.get("yes", False):
                return f(*args, **kwargs)

            if not click.confirm(message):
                click.echo(abort_message)
                raise click.exceptions.Exit(0)

            return f(*args, **kwargs)

        return wrapper

    return decorator
