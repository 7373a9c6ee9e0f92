"""Tests for the OpenTofu executor."""

import json
import subprocess

import pytest

from iac_import.client import executor as executor_module
from iac_import.client.exceptions import ExecutorFailedError, ResourceNotFoundError
from iac_import.client.executor import PLAN_FILE, OpenTofuExecutor, diagnostics_by_address


class FakeRun:
    """Replacement for subprocess.run returning queued results."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    def __call__(self, args, **kwargs):
        self.calls.append((args, kwargs))
        result = self.results.pop(0)
        if isinstance(result, BaseException):
            raise result
        returncode, stdout, stderr = result
        return subprocess.CompletedProcess(args, returncode, stdout, stderr)


@pytest.fixture
def fake_run(monkeypatch):
    def install(*results):
        run = FakeRun(*results)
        monkeypatch.setattr(executor_module.subprocess, "run", run)
        return run

    return install


class TestDiagnostics:
    def test_box_drawn_diagnostics_map_to_addresses(self):
        output = (
            "╷\n"
            "│ Error: Cannot import non-existent remote object\n"
            "│\n"
            "│   with aws_subnet.app,\n"
            "│   on _imports.tf line 7:\n"
            "╵\n"
            "╷\n"
            "│ Error: AccessDenied\n"
            "│\n"
            '│   with module.network.aws_vpc.main["a"],\n'
            "╵\n"
        )
        assert diagnostics_by_address(output) == {
            "aws_subnet.app": "Cannot import non-existent remote object",
            'module.network.aws_vpc.main["a"]': "AccessDenied",
        }

    def test_errors_without_address_are_ignored(self):
        assert diagnostics_by_address("Error: Failed to load plugin\n") == {}


class TestOpenTofuExecutor:
    def test_plan_generates_config_into_configured_file(self, fake_run, tmp_path):
        run = fake_run((0, "Plan: 2 to import", ""))
        executor = OpenTofuExecutor(tmp_path, extra_env={"TF_LOG": "ERROR"})

        result = executor.plan()

        args, kwargs = run.calls[0]
        assert args[:2] == ["tofu", "plan"]
        assert "-generate-config-out=generated_resources.tf" in args
        assert f"-out={PLAN_FILE}" in args
        assert kwargs["cwd"] == tmp_path
        assert kwargs["env"]["TF_LOG"] == "ERROR"
        assert kwargs["env"]["TF_IN_AUTOMATION"] == "1"
        assert result.stdout == "Plan: 2 to import"

    def test_custom_plan_command(self, fake_run, tmp_path):
        run = fake_run((0, "", ""))
        OpenTofuExecutor(tmp_path, plan_command="make plan ARGS='-lock=false'").plan()
        assert run.calls[0][0] == ["make", "plan", "ARGS=-lock=false"]

    def test_apply_uses_saved_plan_when_present(self, fake_run, tmp_path):
        run = fake_run((0, "", ""), (0, "", ""))
        executor = OpenTofuExecutor(tmp_path, binary="terraform")

        executor.apply()
        (tmp_path / PLAN_FILE).write_text("plan")
        executor.apply()

        assert run.calls[0][0][-1] == "-auto-approve"
        assert run.calls[1][0][-1] == PLAN_FILE
        assert run.calls[0][0][0] == "terraform"

    def test_failure_carries_last_error_line(self, fake_run, tmp_path):
        fake_run((1, "", "╷\n│ Error: Invalid provider configuration\n╵\n"))

        with pytest.raises(ExecutorFailedError) as exc_info:
            OpenTofuExecutor(tmp_path).init()

        error = exc_info.value
        assert error.exit_code == 1
        assert "Invalid provider configuration" in error.stderr

    def test_missing_binary(self, fake_run, tmp_path):
        fake_run(FileNotFoundError("tofu"))
        with pytest.raises(ExecutorFailedError, match="executable not found"):
            OpenTofuExecutor(tmp_path).init()

    def test_timeout(self, fake_run, tmp_path):
        fake_run(subprocess.TimeoutExpired(["tofu", "apply"], 10))
        with pytest.raises(ExecutorFailedError, match="timed out"):
            OpenTofuExecutor(tmp_path, timeout=10).apply()

    def test_state_list(self, fake_run, tmp_path):
        fake_run((0, "aws_vpc.main\naws_subnet.app\n\n", ""))
        assert OpenTofuExecutor(tmp_path).state_list() == ["aws_vpc.main", "aws_subnet.app"]

    def test_state_list_without_state_is_empty(self, fake_run, tmp_path):
        fake_run((1, "", "No state file was found!\n"))
        assert OpenTofuExecutor(tmp_path).state_list() == []

    def test_state_rm_of_unknown_address(self, fake_run, tmp_path):
        fake_run((1, "", "Error: Invalid target address\n\nNo matching objects found.\n"))
        with pytest.raises(ResourceNotFoundError):
            OpenTofuExecutor(tmp_path).state_rm("aws_vpc.main")

    def test_state_rm_other_failure(self, fake_run, tmp_path):
        fake_run((1, "", "Error: Error acquiring the state lock\n"))
        with pytest.raises(ExecutorFailedError):
            OpenTofuExecutor(tmp_path).state_rm("aws_vpc.main")

    def test_provider_schema_versions(self, fake_run, tmp_path):
        document = {
            "format_version": "1.0",
            "provider_schemas": {
                "registry.opentofu.org/hashicorp/aws": {
                    "resource_schemas": {"aws_vpc": {"version": 1}, "aws_s3_bucket": {"version": 0}}
                }
            },
        }
        fake_run((0, json.dumps(document), ""))

        versions = OpenTofuExecutor(tmp_path).provider_schema_versions()

        assert versions == {"aws_vpc": "1", "aws_s3_bucket": "0"}

    def test_provider_schema_garbage(self, fake_run, tmp_path):
        fake_run((0, "not json", ""))
        with pytest.raises(ExecutorFailedError):
            OpenTofuExecutor(tmp_path).provider_schema_versions()
