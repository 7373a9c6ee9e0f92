"""Tests for configuration loading."""

import pytest

from iac_import.client.exceptions import ConfigurationError
from iac_import.config import (
    FileOrganization,
    ImportConfig,
    PathConfig,
    StateConfig,
    WorkflowConfig,
    load_config_from_yaml,
)


class TestLoadConfigFromYaml:
    def test_sections_are_parsed(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "paths:\n"
            "  working_dir: ./infra\n"
            "executor:\n"
            "  name: terraform\n"
            "  timeout: 600\n"
            "generation:\n"
            "  file_organization: by_type\n"
            "discovery:\n"
            "  max_concurrent: 4\n"
        )

        config = load_config_from_yaml(path)

        assert config.paths.working_dir == "./infra"
        assert config.executor.name == "terraform"
        assert config.executor.timeout == 600
        assert config.generation.file_organization is FileOrganization.BY_TYPE
        assert config.discovery.max_concurrent == 4
        assert config.paths.imports_file == "_imports.tf"

    def test_environment_references_are_expanded(self, tmp_path, monkeypatch):
        monkeypatch.setenv("IMPORT_SUBSCRIPTION", "sub-1234")
        path = tmp_path / "config.yaml"
        path.write_text("providers:\n  azure:\n    subscription_id: ${IMPORT_SUBSCRIPTION}\n")

        config = load_config_from_yaml(path)

        assert config.providers.azure.subscription_id == "sub-1234"

    def test_missing_environment_reference(self, tmp_path, monkeypatch):
        monkeypatch.delenv("IMPORT_SUBSCRIPTION", raising=False)
        path = tmp_path / "config.yaml"
        path.write_text("providers:\n  azure:\n    subscription_id: ${IMPORT_SUBSCRIPTION}\n")

        with pytest.raises(ConfigurationError, match="IMPORT_SUBSCRIPTION"):
            load_config_from_yaml(path)

    @pytest.mark.parametrize(
        "content",
        ["", "discovery:\n  max_concurrent: 0\n", "executor: [unclosed\n"],
    )
    def test_invalid_files_raise_configuration_error(self, tmp_path, content):
        path = tmp_path / "config.yaml"
        path.write_text(content)
        with pytest.raises(ConfigurationError):
            load_config_from_yaml(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config_from_yaml(tmp_path / "absent.yaml")


class TestModels:
    def test_environment_overrides_nested_values(self, monkeypatch):
        monkeypatch.setenv("IAC_IMPORT_EXECUTOR__BINARY", "terraform")
        assert ImportConfig().executor.binary == "terraform"

    def test_database_url(self):
        assert StateConfig(db_path="state/state.db").database_url == "sqlite:///state/state.db"
        assert StateConfig(db_path="postgresql://db/imports").database_url == "postgresql://db/imports"

    @pytest.mark.parametrize("value,expected", [("", ""), ("module.network", "module.network"), (".module.a.module.b.", "module.a.module.b")])
    def test_module_path_is_normalized(self, value, expected):
        assert WorkflowConfig(module_path=value).module_path == expected

    @pytest.mark.parametrize("value", ["network", "module", "modules.network"])
    def test_module_path_is_validated(self, value):
        with pytest.raises(ValueError):
            WorkflowConfig(module_path=value)

    def test_completed_suffix_must_leave_tf_extension(self):
        with pytest.raises(ValueError):
            PathConfig(completed_suffix=".done.tf")
