"""IaC engine executor.

Runs the OpenTofu (or Terraform) binary as a subprocess in the batch's
working directory. Every command returns an ``ExecutionResult``; a non-zero
exit raises ``ExecutorFailedError`` carrying the command line, exit code and
captured output.
"""

import json
import os
import re
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

from iac_import.client.exceptions import ExecutorFailedError, ResourceNotFoundError
from iac_import.utils.logging import get_logger

logger = get_logger(__name__)

PLAN_FILE = ".iac-import.tfplan"

_BOX_CHARS = re.compile(r"^[\s│╷╵]+")
_WITH_ADDRESS = re.compile(r"\bwith ((?:module\.[A-Za-z0-9_-]+(?:\[[^\]]*\])?\.)*[A-Za-z0-9_]+\.[A-Za-z0-9_-]+(?:\[[^\]]*\])?),")
_NO_STATE = "No state file was found"
_NOT_IN_STATE = "No matching objects found"


@dataclass
class ExecutionResult:
    """Exit status and captured output of one engine command."""

    command: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


@runtime_checkable
class Executor(Protocol):
    """Capabilities the workflow needs from an IaC engine."""

    def init(self) -> ExecutionResult: ...

    def plan(self, generate_config: bool = True) -> ExecutionResult: ...

    def apply(self) -> ExecutionResult: ...

    def state_list(self) -> list[str]: ...

    def state_rm(self, address: str) -> ExecutionResult: ...

    def provider_schema_versions(self) -> dict[str, str]: ...


def diagnostics_by_address(output: str) -> dict[str, str]:
    """Map resource addresses to the error summary the engine reported for them.

    Diagnostics look like::

        Error: Cannot import non-existent remote object
          with aws_subnet.app,
          on _imports.tf line 7:
    """
    errors: dict[str, str] = {}
    summary: str | None = None
    for raw in output.splitlines():
        line = _BOX_CHARS.sub("", raw).strip()
        if line.startswith("Error:"):
            summary = line[len("Error:") :].strip()
            continue
        match = _WITH_ADDRESS.search(line)
        if match and summary is not None:
            errors.setdefault(match.group(1), summary)
            summary = None
    return errors


class OpenTofuExecutor:
    """Executor backed by the ``tofu`` (or ``terraform``) command line."""

    def __init__(
        self,
        working_dir: str | Path = ".",
        binary: str = "tofu",
        timeout: int = 3600,
        plan_command: str | None = None,
        apply_command: str | None = None,
        generated_config_file: str = "generated_resources.tf",
        extra_env: dict[str, str] | None = None,
    ):
        self.working_dir = Path(working_dir)
        self.binary = binary
        self.timeout = timeout
        self.plan_command = plan_command
        self.apply_command = apply_command
        self.generated_config_file = generated_config_file
        self.extra_env = extra_env or {}

    def _env(self) -> dict[str, str]:
        env = dict(os.environ)
        env["TF_IN_AUTOMATION"] = "1"
        env["TF_INPUT"] = "0"
        env.update(self.extra_env)
        return env

    def _run(self, args: list[str], phase: str, check: bool = True) -> ExecutionResult:
        command = shlex.join(args)
        logger.info("executor_command_started", command=command, working_dir=str(self.working_dir))
        try:
            completed = subprocess.run(
                args,
                cwd=self.working_dir,
                env=self._env(),
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise ExecutorFailedError(
                command, f"executable not found: {args[0]}", phase=phase
            ) from e
        except subprocess.TimeoutExpired as e:
            raise ExecutorFailedError(
                command,
                f"timed out after {self.timeout}s",
                stdout=e.stdout if isinstance(e.stdout, str) else "",
                stderr=e.stderr if isinstance(e.stderr, str) else "",
                phase=phase,
            ) from e

        result = ExecutionResult(
            command=command,
            exit_code=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )
        logger.info("executor_command_finished", command=command, exit_code=result.exit_code)
        if check:
            self._check(result, phase)
        return result

    @staticmethod
    def _check(result: ExecutionResult, phase: str) -> None:
        if result.exit_code == 0:
            return
        last_line = (result.stderr.strip() or result.stdout.strip()).splitlines()[-1:] or [""]
        raise ExecutorFailedError(
            result.command,
            _BOX_CHARS.sub("", last_line[0]) or "command failed",
            exit_code=result.exit_code,
            stdout=result.stdout,
            stderr=result.stderr,
            phase=phase,
        )

    def init(self) -> ExecutionResult:
        return self._run([self.binary, "init", "-input=false", "-no-color"], phase="planning")

    def plan(self, generate_config: bool = True) -> ExecutionResult:
        """Plan the imports, optionally generating resource bodies from live state."""
        if self.plan_command:
            return self._run(shlex.split(self.plan_command), phase="planning")
        args = [self.binary, "plan", "-input=false", "-no-color", f"-out={PLAN_FILE}"]
        if generate_config:
            args.append(f"-generate-config-out={self.generated_config_file}")
        return self._run(args, phase="planning")

    def apply(self) -> ExecutionResult:
        """Apply the saved plan (or the configured apply command)."""
        if self.apply_command:
            return self._run(shlex.split(self.apply_command), phase="applying")
        args = [self.binary, "apply", "-input=false", "-no-color"]
        if (self.working_dir / PLAN_FILE).exists():
            args.append(PLAN_FILE)
        else:
            args.append("-auto-approve")
        return self._run(args, phase="applying")

    def state_list(self) -> list[str]:
        """Addresses currently tracked in engine state."""
        result = self._run([self.binary, "state", "list"], phase="state", check=False)
        if result.exit_code != 0:
            if _NO_STATE in result.output:
                return []
            raise ExecutorFailedError(
                result.command,
                "could not list state",
                exit_code=result.exit_code,
                stdout=result.stdout,
                stderr=result.stderr,
                phase="state",
            )
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def state_rm(self, address: str) -> ExecutionResult:
        """Remove one address from state.

        Raises:
            ResourceNotFoundError: If the address is not in state
        """
        result = self._run([self.binary, "state", "rm", address], phase="rollback", check=False)
        if result.exit_code != 0 and _NOT_IN_STATE in result.output:
            raise ResourceNotFoundError("state address", address, phase="rollback")
        self._check(result, "rollback")
        return result

    def provider_schema_versions(self) -> dict[str, str]:
        """Schema version of every resource type the initialized providers offer."""
        result = self._run([self.binary, "providers", "schema", "-json"], phase="validation")
        try:
            document = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise ExecutorFailedError(
                result.command,
                f"invalid provider schema output: {e}",
                exit_code=result.exit_code,
                phase="validation",
            ) from e

        versions: dict[str, str] = {}
        for schema in (document.get("provider_schemas") or {}).values():
            for resource_type, resource_schema in (schema.get("resource_schemas") or {}).items():
                versions[resource_type] = str(resource_schema.get("version", 0))
        return versions
