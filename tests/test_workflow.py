"""Tests for the import workflow state machine."""

import json

import pytest

from conftest import FakeAWSProvider, FakeExecutor, aws
from iac_import import resources
from iac_import.client.exceptions import (
    InvalidInputError,
    InvalidTransitionError,
    ProjectNotFoundError,
    ProviderApiError,
    StateError,
    WorkingDirectoryLockedError,
)
from iac_import.discovery.inputs import BatchInput
from iac_import.discovery.registry import ProviderRegistry
from iac_import.generation.generator import ConfigGenerator
from iac_import.mapping.mapper import ResourceMapper
from iac_import.models import (
    BatchStatus,
    EntryStatus,
    ImportBatch,
    Provider,
    RollbackActionKind,
)
from iac_import.workflow import lock as lock_module
from iac_import.workflow.coordinator import TRANSITIONS, ImportWorkflow

FAILING = {"aws_subnet.app", "aws_subnet.data", "aws_s3_bucket.assets"}


async def run_aws(workflow, aws_scope, **kwargs):
    return await workflow.start(Provider.AWS, scope=aws_scope, batch_id="batch-1", **kwargs)


class TestTransitionTable:
    def test_terminal_states_have_no_exits(self):
        for status in (BatchStatus.FINALIZED, BatchStatus.ROLLED_BACK, BatchStatus.EMPTY):
            assert TRANSITIONS[status] == frozenset()

    def test_failed_only_leads_to_rolled_back(self):
        assert TRANSITIONS[BatchStatus.FAILED] == frozenset({BatchStatus.ROLLED_BACK})

    def test_every_non_terminal_phase_can_fail(self):
        for status, targets in TRANSITIONS.items():
            if not status.is_terminal and status is not BatchStatus.FAILED:
                assert BatchStatus.FAILED in targets


class TestHappyPath:
    async def test_batch_is_finalized(self, workflow, executor, store, working_dir, aws_scope):
        result = await run_aws(workflow, aws_scope)

        assert result.status is BatchStatus.FINALIZED
        assert result.succeeded
        assert all(e.status is EntryStatus.APPLIED for e in result.batch.entries)
        assert executor.state == {
            "aws_vpc.main",
            "aws_security_group.web",
            "aws_subnet.app",
            "aws_subnet.data",
            "aws_s3_bucket.assets",
        }
        assert executor.calls.index("plan") < executor.calls.index("apply")

    async def test_files_are_archived(self, workflow, working_dir, aws_scope):
        await run_aws(workflow, aws_scope)

        assert not (working_dir / "_imports.tf").exists()
        assert (working_dir / "_imports.tf.completed").exists()
        assert (working_dir / "generated_resources_batch-1.tf").exists()
        assert (working_dir / "_providers.tf").exists()
        assert not (working_dir / ".iac-import.lock").exists()

    async def test_phase_history_is_recorded(self, workflow, store, aws_scope):
        await run_aws(workflow, aws_scope)

        statuses = [t["to_status"] for t in store.transitions("batch-1")]
        assert statuses == [
            "discovering",
            "mapping",
            "config_generated",
            "validated",
            "planning",
            "applying",
            "finalized",
        ]
        assert store.load("batch-1").status is BatchStatus.FINALIZED
        assert store.find_active(str(workflow.config.working_dir.resolve())) == []

    async def test_batch_input_skips_cloud_discovery(self, workflow, aws_provider, network_resources):
        vpc = network_resources[1]
        batch_input = BatchInput(resources=[vpc], addresses={vpc.key: "aws_vpc.core"})

        result = await workflow.start_from_input(batch_input, batch_id="batch-1")

        assert result.status is BatchStatus.FINALIZED
        assert [e.address for e in result.batch.entries] == ["aws_vpc.core"]
        assert aws_provider.queries == []

    async def test_duplicate_batch_id_is_rejected(self, workflow, aws_scope):
        await run_aws(workflow, aws_scope)
        with pytest.raises(InvalidInputError):
            await run_aws(workflow, aws_scope)


class TestDiscoveryOutcomes:
    async def test_empty_discovery_ends_empty(self, config, store, executor, aws_scope):
        registry = ProviderRegistry().register_provider(FakeAWSProvider([]))
        workflow = ImportWorkflow(config, registry, store, executor=executor)

        result = await run_aws(workflow, aws_scope)

        assert result.status is BatchStatus.EMPTY
        assert result.succeeded
        assert executor.calls == []

    async def test_every_query_failing_fails_the_batch(
        self, config, store, executor, network_resources, aws_scope
    ):
        provider = FakeAWSProvider(
            network_resources, failing_types=resources.supported_types(Provider.AWS)
        )
        registry = ProviderRegistry().register_provider(provider)
        workflow = ImportWorkflow(config, registry, store, executor=executor)

        result = await run_aws(workflow, aws_scope)

        assert result.status is BatchStatus.FAILED
        assert not result.succeeded
        assert isinstance(result.error, ProviderApiError)
        assert "queries failed" in str(result.error)
        assert store.load("batch-1").status is BatchStatus.FAILED
        assert executor.calls == []

    async def test_only_unsupported_types_requested_ends_empty(
        self, workflow, executor, aws_scope
    ):
        result = await run_aws(workflow, aws_scope, resource_type_filter=["ec2:transit-gateway"])

        assert result.status is BatchStatus.EMPTY
        assert len(result.discovery_failures) == 1
        assert executor.calls == []

    async def test_partial_discovery_continues_with_warnings(
        self, config, store, executor, network_resources, aws_scope
    ):
        provider = FakeAWSProvider(network_resources, failing_types={"s3:bucket"})
        registry = ProviderRegistry().register_provider(provider)
        workflow = ImportWorkflow(config, registry, store, executor=executor)

        result = await run_aws(workflow, aws_scope)

        assert result.status is BatchStatus.FINALIZED
        assert len(result.batch.entries) == 4
        assert len(result.discovery_failures) == 1
        assert any("s3:bucket" in w for w in result.warnings)

    async def test_unmappable_resources_are_skipped(self, config, store, executor, aws_scope):
        provider = FakeAWSProvider(
            [aws("ec2:vpc", "vpc-0f1e2d3c4b", "main"), aws("ec2:transit-gateway", "tgw-0123456789")]
        )
        provider.supported_resource_types = lambda: ["ec2:transit-gateway", "ec2:vpc"]
        registry = ProviderRegistry().register_provider(provider)
        workflow = ImportWorkflow(config, registry, store, executor=executor)

        result = await run_aws(workflow, aws_scope)

        assert result.status is BatchStatus.FINALIZED
        assert len(result.mapping_failures) == 1
        statuses = {e.resource.resource_id: e.status for e in result.batch.entries}
        assert statuses == {
            "vpc-0f1e2d3c4b": EntryStatus.APPLIED,
            "tgw-0123456789": EntryStatus.SKIPPED,
        }


class TestValidationPhase:
    async def test_incompatible_types_are_dropped_before_plan(
        self, config, registry, store, working_dir, aws_scope
    ):
        executor = FakeExecutor(working_dir)
        executor.schema_versions["aws_subnet"] = "2"
        workflow = ImportWorkflow(config, registry, store, executor=executor)

        result = await run_aws(workflow, aws_scope)

        assert result.status is BatchStatus.FINALIZED
        assert result.validation.incompatible == ["aws_subnet"]
        assert "aws_subnet.app" not in executor.state
        assert len(executor.state) == 3

    async def test_everything_incompatible_fails_the_batch(
        self, config, registry, store, working_dir, aws_scope
    ):
        executor = FakeExecutor(working_dir, schema_versions={})
        workflow = ImportWorkflow(config, registry, store, executor=executor)

        result = await run_aws(workflow, aws_scope)

        assert result.status is BatchStatus.FAILED
        assert isinstance(result.error, InvalidInputError)
        assert "apply" not in executor.calls


class TestPartialImport:
    async def test_mixed_outcome_reports_partial_import(self, config, registry, store, working_dir, aws_scope):
        executor = FakeExecutor(working_dir, fail_addresses=FAILING)
        workflow = ImportWorkflow(config, registry, store, executor=executor)

        result = await run_aws(workflow, aws_scope)

        assert result.status is BatchStatus.FAILED
        partial = result.partial_import
        assert partial is not None
        assert sorted(partial.succeeded) == ["aws_security_group.web", "aws_vpc.main"]
        assert sorted(address for address, _ in partial.failed) == sorted(FAILING)
        assert all(error == "Cannot import non-existent remote object" for _, error in partial.failed)
        assert [a.address for a in result.rollback_actions] == [
            "aws_vpc.main",
            "aws_security_group.web",
        ]
        assert {a.kind for a in result.rollback_actions} == {RollbackActionKind.REMOVE_FROM_STATE}

    async def test_failed_entries_keep_their_error(self, config, registry, store, working_dir, aws_scope):
        executor = FakeExecutor(working_dir, fail_addresses=FAILING)
        workflow = ImportWorkflow(config, registry, store, executor=executor)

        await run_aws(workflow, aws_scope)

        stored = store.load("batch-1")
        failed = stored.entries_with_status(EntryStatus.FAILED)
        assert sorted(e.address for e in failed) == sorted(FAILING)
        assert all(e.error for e in failed)
        assert "Partial import" in stored.error

    async def test_total_apply_failure_is_an_executor_failure(
        self, config, registry, store, working_dir, aws_scope
    ):
        executor = FakeExecutor(
            working_dir,
            fail_addresses=FAILING | {"aws_vpc.main", "aws_security_group.web"},
        )
        workflow = ImportWorkflow(config, registry, store, executor=executor)

        result = await run_aws(workflow, aws_scope)

        assert result.status is BatchStatus.FAILED
        assert result.partial_import is None
        assert result.rollback_actions == []

    async def test_rollback_removes_applied_entries(self, config, registry, store, working_dir, aws_scope):
        executor = FakeExecutor(working_dir, fail_addresses=FAILING)
        workflow = ImportWorkflow(config, registry, store, executor=executor)
        await run_aws(workflow, aws_scope)

        result = workflow.rollback("batch-1")

        assert result.status is BatchStatus.ROLLED_BACK
        assert executor.state == set()
        assert [c for c in executor.calls if c.startswith("state_rm")] == [
            "state_rm aws_security_group.web",
            "state_rm aws_vpc.main",
        ]
        assert all(r.success for r in result.rollback_records)
        assert all(e.status is EntryStatus.ROLLED_BACK for e in result.batch.entries)
        assert not (working_dir / "_imports.tf").exists()
        assert not (working_dir / "generated_resources.tf").exists()
        assert not (working_dir / ".iac-import-manifest.json").exists()
        assert len(store.rollback_records("batch-1")) == 2

    async def test_rollback_tolerates_address_already_gone(
        self, config, registry, store, working_dir, aws_scope
    ):
        executor = FakeExecutor(working_dir, fail_addresses=FAILING)
        workflow = ImportWorkflow(config, registry, store, executor=executor)
        result = await run_aws(workflow, aws_scope)
        manager = workflow.rollback_manager_for(result.batch)
        actions = manager.plan_rollback(result.batch)
        executor.state.discard("aws_vpc.main")

        records = manager.execute(result.batch, actions)

        assert all(r.success for r in records)
        messages = {r.address: r.message for r in records}
        assert messages["aws_vpc.main"].startswith("already absent")
        assert result.batch.find_entry("aws_vpc.main").status is EntryStatus.ROLLED_BACK

    async def test_auto_rollback(self, config, registry, store, working_dir, aws_scope):
        config.workflow.auto_rollback = True
        executor = FakeExecutor(working_dir, fail_addresses=FAILING)
        workflow = ImportWorkflow(config, registry, store, executor=executor)

        result = await run_aws(workflow, aws_scope)

        assert result.partial_import is not None
        assert result.status is BatchStatus.ROLLED_BACK
        assert executor.state == set()

    async def test_rollback_requires_failed_batch(self, workflow, aws_scope):
        await run_aws(workflow, aws_scope)
        with pytest.raises(InvalidTransitionError):
            workflow.rollback("batch-1")

    def test_rollback_of_unknown_batch(self, workflow):
        with pytest.raises(ProjectNotFoundError):
            workflow.rollback("batch-missing")


class TestRollbackPlanning:
    async def test_untracked_applied_entry_only_discards_config(
        self, config, registry, store, working_dir, aws_scope
    ):
        executor = FakeExecutor(working_dir, fail_addresses=FAILING)
        workflow = ImportWorkflow(config, registry, store, executor=executor)
        result = await run_aws(workflow, aws_scope)
        executor.state.discard("aws_vpc.main")

        manager = workflow.rollback_manager_for(result.batch)
        actions = manager.plan_rollback(result.batch)

        kinds = {a.address: a.kind for a in actions}
        assert kinds == {
            "aws_vpc.main": RollbackActionKind.DISCARD_CONFIG,
            "aws_security_group.web": RollbackActionKind.REMOVE_FROM_STATE,
        }


class TestResume:
    def seed_batch(self, config, store, working_dir, network_resources, status):
        """Store a batch that stopped after generating its directives."""
        mapping = ResourceMapper().plan(network_resources)
        batch = ImportBatch(
            batch_id="batch-1", working_dir=str(working_dir.resolve()), entries=mapping.entries
        )
        ConfigGenerator(config.paths).generate(batch)
        batch.status = status
        store.save(batch)
        return batch

    async def test_resume_from_config_generated_skips_discovery(
        self, config, store, working_dir, network_resources
    ):
        self.seed_batch(config, store, working_dir, network_resources, BatchStatus.CONFIG_GENERATED)
        provider = FakeAWSProvider(network_resources)
        executor = FakeExecutor(working_dir)
        workflow = ImportWorkflow(
            config, ProviderRegistry().register_provider(provider), store, executor=executor
        )

        result = await workflow.resume("batch-1")

        assert result.status is BatchStatus.FINALIZED
        assert provider.queries == []
        assert len(executor.state) == 5

    async def test_resume_in_applying_replans_before_apply(
        self, config, store, working_dir, network_resources, registry
    ):
        self.seed_batch(config, store, working_dir, network_resources, BatchStatus.APPLYING)
        executor = FakeExecutor(working_dir)
        workflow = ImportWorkflow(config, registry, store, executor=executor)

        result = await workflow.resume("batch-1")

        assert result.status is BatchStatus.FINALIZED
        assert executor.calls[:2] == ["plan", "apply"]

    async def test_resume_of_finished_batch_is_a_no_op(self, workflow, executor, aws_scope):
        await run_aws(workflow, aws_scope)
        calls = list(executor.calls)

        result = await workflow.resume("batch-1")

        assert result.status is BatchStatus.FINALIZED
        assert executor.calls == calls

    async def test_resume_of_interrupted_discovery_is_refused(self, store, workflow, working_dir):
        store.save(ImportBatch(batch_id="batch-1", working_dir=str(working_dir)))
        with pytest.raises(StateError):
            await workflow.resume("batch-1")


class TestConfirmation:
    async def test_declined_confirmation_stays_in_planning(
        self, config, registry, store, working_dir, aws_scope
    ):
        config.executor.auto_approve = False
        executor = FakeExecutor(working_dir)
        asked = []
        workflow = ImportWorkflow(
            config,
            registry,
            store,
            executor=executor,
            confirm=lambda batch, plan: asked.append(plan.stdout) or False,
        )

        result = await run_aws(workflow, aws_scope)

        assert result.status is BatchStatus.PLANNING
        assert result.awaiting_confirmation
        assert "apply" not in executor.calls
        assert asked and asked[0].startswith("Plan: 5 to import")
        assert all(e.status is EntryStatus.PLANNED for e in result.batch.entries)
        assert not (working_dir / ".iac-import.lock").exists()

        resumed = await workflow.resume("batch-1", auto_approve=True)
        assert resumed.status is BatchStatus.FINALIZED

    async def test_no_confirm_callback_counts_as_declined(
        self, config, registry, store, executor, aws_scope
    ):
        config.executor.auto_approve = False
        workflow = ImportWorkflow(config, registry, store, executor=executor)

        result = await run_aws(workflow, aws_scope)

        assert result.status is BatchStatus.PLANNING


class TestLocking:
    async def test_locked_working_directory_fails_the_batch(self, workflow, working_dir, executor, aws_scope):
        (working_dir / ".iac-import.lock").write_text(
            json.dumps({"batch_id": "batch-other", "lock_id": "abc"})
        )

        result = await run_aws(workflow, aws_scope)

        assert result.status is BatchStatus.FAILED
        assert isinstance(result.error, WorkingDirectoryLockedError)
        assert "batch-other" in str(result.error)
        assert executor.calls == []
        assert (working_dir / ".iac-import.lock").exists()

    def crashed_lock(self, working_dir, batch_id="batch-1"):
        (working_dir / ".iac-import.lock").write_text(
            json.dumps({"batch_id": batch_id, "lock_id": "crashed-run", "pid": 999999})
        )

    async def test_resume_takes_over_lock_of_crashed_run(
        self, monkeypatch, config, registry, store, executor, working_dir, aws_scope
    ):
        config.executor.auto_approve = False
        workflow = ImportWorkflow(config, registry, store, executor=executor)
        assert (await run_aws(workflow, aws_scope)).status is BatchStatus.PLANNING
        self.crashed_lock(working_dir)
        monkeypatch.setattr(lock_module, "process_alive", lambda pid: False)

        result = await workflow.resume("batch-1", auto_approve=True)

        assert result.status is BatchStatus.FINALIZED
        assert not (working_dir / ".iac-import.lock").exists()

    async def test_rollback_takes_over_lock_of_crashed_run(
        self, monkeypatch, workflow, executor, working_dir, aws_scope
    ):
        executor.fail_addresses = FAILING
        assert (await run_aws(workflow, aws_scope)).status is BatchStatus.FAILED
        self.crashed_lock(working_dir)
        monkeypatch.setattr(lock_module, "process_alive", lambda pid: False)

        result = workflow.rollback("batch-1")

        assert result.status is BatchStatus.ROLLED_BACK
        assert executor.state == set()

    async def test_live_holder_of_same_batch_still_blocks(
        self, monkeypatch, config, registry, store, executor, working_dir, aws_scope
    ):
        config.executor.auto_approve = False
        workflow = ImportWorkflow(config, registry, store, executor=executor)
        await run_aws(workflow, aws_scope)
        self.crashed_lock(working_dir)
        monkeypatch.setattr(lock_module, "process_alive", lambda pid: True)

        result = await workflow.resume("batch-1", auto_approve=True)

        assert result.status is BatchStatus.FAILED
        assert isinstance(result.error, WorkingDirectoryLockedError)
