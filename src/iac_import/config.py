"""Configuration management for iac-import using Pydantic.

This module provides type-safe configuration models for discovery, the IaC
executor, config generation, the workflow and batch state persistence.
"""

import os
from enum import Enum
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from iac_import.client.exceptions import ConfigurationError


class FileOrganization(str, Enum):
    """How generated import directives are grouped into files."""

    SINGLE_FILE = "single_file"
    BY_TYPE = "by_type"
    BY_MODULE = "by_module"


class PathConfig(BaseModel):
    """Configuration for the working directory and generated file names."""

    working_dir: str = Field(default=".", description="IaC working directory to import into")
    imports_file: str = Field(
        default="_imports.tf", description="Import directive file (single_file layout)"
    )
    providers_file: str = Field(
        default="_providers.tf", description="File holding the required_providers block"
    )
    skeleton_file: str = Field(
        default="_skeleton.tf", description="Optional skeleton resource bodies"
    )
    generated_config_file: str = Field(
        default="generated_resources.tf",
        description="File the engine writes resource bodies into during plan",
    )
    manifest_file: str = Field(
        default=".iac-import-manifest.json",
        description="Checksums of generated files, used to detect manual edits",
    )
    completed_suffix: str = Field(
        default=".completed", description="Suffix appended to import files on finalize"
    )
    lock_file: str = Field(
        default=".iac-import.lock", description="Working directory lock file name"
    )

    @field_validator("completed_suffix")
    @classmethod
    def validate_completed_suffix(cls, v: str) -> str:
        """Ensure the suffix changes the file extension away from .tf."""
        if not v or v.endswith(".tf"):
            raise ValueError("completed_suffix must be non-empty and must not end with .tf")
        return v


class DiscoveryConfig(BaseModel):
    """Discovery concurrency and retry tuning."""

    max_concurrent: int = Field(
        default=8, ge=1, le=64, description="Maximum concurrent provider queries"
    )
    retry_attempts: int = Field(
        default=5, ge=1, le=10, description="Attempts for throttled provider queries"
    )
    retry_min_wait: float = Field(
        default=1.0, ge=0, le=60, description="Minimum backoff between throttled attempts"
    )
    retry_max_wait: float = Field(
        default=30.0, ge=0, le=300, description="Maximum backoff between throttled attempts"
    )


class ExecutorConfig(BaseModel):
    """Configuration for the IaC engine subprocess."""

    name: str = Field(default="opentofu", description="Executor registry key")
    binary: str | None = Field(
        default=None, description="Engine binary override (default: the executor's own)"
    )
    plan_command: str | None = Field(
        default=None, description="Custom plan command line (overrides the default)"
    )
    apply_command: str | None = Field(
        default=None, description="Custom apply command line (overrides the default)"
    )
    timeout: int = Field(
        default=3600, ge=10, le=86400, description="Per-command timeout in seconds"
    )
    auto_approve: bool = Field(
        default=False, description="Apply without asking the operator for confirmation"
    )
    extra_env: dict[str, str] = Field(
        default_factory=dict, description="Extra environment variables for the engine"
    )


class GenerationConfig(BaseModel):
    """Configuration for import directive generation."""

    file_organization: FileOrganization = Field(
        default=FileOrganization.SINGLE_FILE, description="Grouping of import directives"
    )
    skeleton: bool = Field(
        default=False,
        description="Write empty resource bodies instead of letting plan generate them",
    )
    force: bool = Field(default=False, description="Overwrite user-modified generated files")


class WorkflowConfig(BaseModel):
    """Workflow behavior options."""

    auto_rollback: bool = Field(
        default=False, description="Roll back immediately after a partial import"
    )
    module_path: str = Field(
        default="", description="Module path for destinations, e.g. module.network"
    )

    @field_validator("module_path")
    @classmethod
    def validate_module_path(cls, v: str) -> str:
        """Validate module path segments."""
        v = v.strip().strip(".")
        if not v:
            return ""
        parts = v.split(".")
        if len(parts) % 2 != 0 or any(p != "module" for p in parts[::2]):
            raise ValueError("module_path must look like 'module.<name>[.module.<name>...]'")
        return v


class StateConfig(BaseModel):
    """Configuration for batch state persistence."""

    db_path: str = Field(
        default=".iac-import/state.db", description="SQLite file or SQLAlchemy database URL"
    )

    @property
    def database_url(self) -> str:
        """Return a SQLAlchemy URL for ``db_path``."""
        if "://" in self.db_path:
            return self.db_path
        return f"sqlite:///{self.db_path}"


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="WARNING", description="Console log level")
    file: str | None = Field(default=None, description="Log file path")
    format: str = Field(default="json", description="File log format: json or console")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"Log level must be one of {sorted(valid)}")
        return v.upper()

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate file log format."""
        if v not in ("json", "console"):
            raise ValueError("Log format must be 'json' or 'console'")
        return v


class AWSConfig(BaseModel):
    """AWS discovery settings."""

    profile: str | None = Field(default=None, description="Named profile from ~/.aws/config")
    regions: list[str] = Field(default_factory=lambda: ["us-east-1"])


class AzureConfig(BaseModel):
    """Azure discovery settings."""

    subscription_id: str | None = Field(default=None, description="Subscription to inventory")
    regions: list[str] = Field(default_factory=list, description="Locations filter (empty = all)")


class GCPConfig(BaseModel):
    """GCP discovery settings."""

    project_id: str | None = Field(default=None, description="Project to inventory")
    regions: list[str] = Field(default_factory=list, description="Regions filter (empty = all)")


class ProvidersConfig(BaseModel):
    """Per-provider discovery settings."""

    aws: AWSConfig = Field(default_factory=AWSConfig)
    azure: AzureConfig = Field(default_factory=AzureConfig)
    gcp: GCPConfig = Field(default_factory=GCPConfig)


class ImportConfig(BaseSettings):
    """Top-level iac-import configuration.

    Values come from the YAML file and can be overridden by environment
    variables such as ``IAC_IMPORT_EXECUTOR__BINARY=terraform``.
    """

    model_config = SettingsConfigDict(
        env_prefix="IAC_IMPORT_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    paths: PathConfig = Field(default_factory=PathConfig)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    executor: ExecutorConfig = Field(default_factory=ExecutorConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)
    state: StateConfig = Field(default_factory=StateConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)

    @property
    def working_dir(self) -> Path:
        """Working directory as a Path."""
        return Path(self.paths.working_dir)


def load_config_from_yaml(config_path: str | Path) -> ImportConfig:
    """Load configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        ImportConfig: Loaded configuration

    Raises:
        ConfigurationError: If the file is missing, empty or invalid
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path) as f:
            config_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    if not config_data:
        raise ConfigurationError(f"Empty configuration file: {config_path}")

    config_data = _expand_env_vars(config_data)

    try:
        return ImportConfig(**config_data)
    except ValueError as e:
        raise ConfigurationError(f"Invalid configuration in {config_path}: {e}") from e


def _expand_env_vars(data):
    """Recursively expand ``${VAR_NAME}`` references in config values."""
    if isinstance(data, dict):
        return {k: _expand_env_vars(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        if data.startswith("${") and data.endswith("}"):
            var_name = data[2:-1]
            env_value = os.environ.get(var_name)
            if env_value is None:
                raise ConfigurationError(
                    f"Environment variable '{var_name}' not found. "
                    f"Please set it in your environment or .env file."
                )
            return env_value
        return data
    else:
        return data

