"""
CLI context for iac-import.

Holds configuration and lazily-built collaborators (registry, batch store,
workflow) shared by the CLI commands through Click's context object.
"""

from dataclasses import dataclass, field
from pathlib import Path

import click

from iac_import.client.executor import ExecutionResult
from iac_import.config import ImportConfig, LoggingConfig, load_config_from_yaml
from iac_import.discovery.registry import ProviderRegistry, build_default_registry
from iac_import.models import ImportBatch
from iac_import.state.store import BatchStore
from iac_import.utils.logging import configure_logging, get_logger
from iac_import.workflow.coordinator import ConfirmCallback, ImportWorkflow

logger = get_logger(__name__)


@dataclass
class ImportContext:
    """
    Context object for CLI commands.

    Attributes:
        config_path: Path to configuration file (environment and defaults when absent)
        log_level: Console logging level (config file or WARNING when unset)
        log_file: Optional log file path
        working_dir: Working directory override from the command line
    """

    config_path: Path | None = None
    log_level: str | None = None
    log_file: Path | None = None
    working_dir: Path | None = None

    # Lazy-loaded attributes
    _config: ImportConfig | None = field(default=None, init=False, repr=False)
    _registry: ProviderRegistry | None = field(default=None, init=False, repr=False)
    _store: BatchStore | None = field(default=None, init=False, repr=False)

    @property
    def config(self) -> ImportConfig:
        """Get or load configuration."""
        if self._config is None:
            if self.config_path is None:
                logger.debug("config_defaults_used")
                self._config = ImportConfig()
            else:
                logger.debug("config_loading", config_path=str(self.config_path))
                self._config = load_config_from_yaml(self.config_path)
            if self.working_dir is not None:
                self._config.paths.working_dir = str(self.working_dir)
            self._apply_logging_config(self._config.logging)
        return self._config

    def _apply_logging_config(self, settings: LoggingConfig) -> None:
        """Let the logging section fill in what the command line left unset."""
        if self.log_level is not None and (self.log_file is not None or not settings.file):
            return
        configure_logging(
            level=self.log_level or settings.level,
            log_format=settings.format,
            log_file=str(self.log_file) if self.log_file else settings.file,
        )

    @property
    def registry(self) -> ProviderRegistry:
        if self._registry is None:
            self._registry = build_default_registry(self.config)
        return self._registry

    @property
    def store(self) -> BatchStore:
        """Get or open the batch store."""
        if self._store is None:
            logger.debug("batch_store_opening", database_url=self.config.state.database_url)
            self._store = BatchStore(self.config.state.database_url)
        return self._store

    def workflow(self, confirm: ConfirmCallback | None = None) -> ImportWorkflow:
        return ImportWorkflow(self.config, self.registry, self.store, confirm=confirm)

    def cleanup(self) -> None:
        if self._store is not None:
            self._store.close()
            self._store = None

    def __enter__(self) -> "ImportContext":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.cleanup()


def prompt_confirm(batch: ImportBatch, plan: ExecutionResult) -> bool:
    """Show the plan summary and ask before applying."""
    summary = [line for line in plan.stdout.splitlines() if line.startswith("Plan:")]
    if summary:
        click.echo(summary[-1])
    return click.confirm(
        f"Apply {len(batch.active_entries())} imports in {batch.working_dir}?", default=False
    )
