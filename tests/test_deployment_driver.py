"""Tests for the per-workspace deployment driver."""

from unittest.mock import AsyncMock

import pytest

from tests.fakes import MODULE_STATE, FakeStateConverter, FakeTfeClient, make_run, make_step
from tfstack_migrate.core.exceptions import ConversionError, TfeApiError
from tfstack_migrate.core.stack_config_parser import DeploymentDeclarations
from tfstack_migrate.models.enums import DeploymentGroupStatus, StepOperation, StepStatus
from tfstack_migrate.services.stack.deployment_driver import DeploymentDriver


@pytest.fixture
def declarations() -> DeploymentDeclarations:
    return DeploymentDeclarations({"production": True, "staging": True})


@pytest.fixture
def driver_factory(fake_client: FakeTfeClient, settings, stack_config_dir, terraform_config_dir, converter):
    def build(declarations: DeploymentDeclarations, converter_override=None, **kwargs) -> DeploymentDriver:
        active = converter_override or converter
        return DeploymentDriver(
            fake_client,
            settings,
            organization="acme-corp",
            stack_id="st-networking",
            stack_name="networking",
            config_file_dir=str(stack_config_dir),
            terraform_config_dir=str(terraform_config_dir),
            declarations=declarations,
            converter_factory=lambda: active,
            **kwargs,
        )

    return build


class FailingConverter(FakeStateConverter):
    async def convert(self, raw_state, resource_address_map=None, module_address_map=None):
        raise ConversionError("Diagnostic: Unsupported resource: aws_vpc.main")


class TestMigrateWorkspace:
    """Deployment run trajectories."""

    @pytest.mark.asyncio
    async def test_pending_group_is_imported_and_succeeds(
        self, driver_factory, declarations, fake_client: FakeTfeClient, converter
    ):
        import_id = fake_client.script_import("network-prod", "production")

        data = await driver_factory(declarations).migrate_workspace("network-prod", "production")

        assert data.failure_reason is None
        assert data.workspace_id == "ws-network-prod"
        assert data.deployment_name == "production"
        assert data.deployment_group.id == "sdg-production"
        assert data.deployment_group.status == "succeeded"
        assert fake_client.advanced == ["sds-allow-production", import_id]
        assert fake_client.locked == ["ws-network-prod"]
        assert fake_client.unlocked == ["ws-network-prod"]
        assert fake_client.uploaded_states == [("https://upload.example.com/production", converter.payload)]
        assert fake_client.reruns == []

        (call,) = converter.calls
        assert call["resource_address_map"] == {
            "aws_vpc.main": "component.network",
            "data.aws_region.current": "component.network",
        }

    @pytest.mark.asyncio
    async def test_failed_group_is_rerun_before_import(self, driver_factory, declarations, fake_client):
        fake_client.script_import("network-prod", "production", initial_status=DeploymentGroupStatus.FAILED)

        data = await driver_factory(declarations).migrate_workspace("network-prod", "production")

        assert data.failure_reason is None
        assert fake_client.reruns == [("sdg-production", ["production"])]
        assert fake_client.advanced[0] == "sds-allow-production"

    @pytest.mark.asyncio
    async def test_abandoned_group_without_retry_fails(self, driver_factory, declarations, fake_client):
        fake_client.script_import("network-prod", "production", initial_status=DeploymentGroupStatus.ABANDONED)

        data = await driver_factory(declarations).migrate_workspace("network-prod", "production")

        assert "is in abandoned state" in data.failure_reason
        assert fake_client.reruns == []
        assert fake_client.advanced == []

    @pytest.mark.asyncio
    async def test_abandoned_group_with_retry_is_rerun(self, driver_factory, declarations, fake_client):
        fake_client.script_import("network-prod", "production", initial_status=DeploymentGroupStatus.ABANDONED)

        data = await driver_factory(declarations).migrate_workspace(
            "network-prod", "production", retry_abandoned=True
        )

        assert data.failure_reason is None
        assert fake_client.reruns == [("sdg-production", ["production"])]

    @pytest.mark.asyncio
    async def test_succeeded_group_is_left_alone(self, driver_factory, declarations, fake_client):
        fake_client.script_settled("network-prod", "production", DeploymentGroupStatus.SUCCEEDED)

        data = await driver_factory(declarations).migrate_workspace("network-prod", "production")

        assert data.failure_reason is None
        assert data.deployment_group.status == "succeeded"
        assert fake_client.advanced == []
        assert fake_client.locked == []

    @pytest.mark.asyncio
    async def test_deployment_not_marked_for_import(self, driver_factory, fake_client):
        fake_client.script_import("network-prod", "production")

        data = await driver_factory(DeploymentDeclarations({"production": False})).migrate_workspace(
            "network-prod", "production"
        )

        assert data.failure_reason is None
        assert data.warnings == ["Deployment production not marked for state import, no state will be imported"]
        assert fake_client.advanced == []

    @pytest.mark.asyncio
    async def test_missing_workspace(self, driver_factory, declarations):
        data = await driver_factory(declarations).migrate_workspace("network-prod", "production")

        assert data.failure_reason.startswith("Error reading workspace name: network-prod")
        assert data.workspace_id is None

    @pytest.mark.asyncio
    async def test_missing_deployment_run(self, driver_factory, declarations, fake_client):
        fake_client.add_workspace("network-prod")

        data = await driver_factory(declarations).migrate_workspace("network-prod", "production")

        assert data.failure_reason == "No deployment run found deployment: production"

    @pytest.mark.asyncio
    async def test_missing_allow_import_step(self, driver_factory, declarations, fake_client):
        fake_client.script_import("network-prod", "production")
        fake_client.steps["sdr-production"] = fake_client.steps["sdr-production"][1:]

        data = await driver_factory(declarations).migrate_workspace("network-prod", "production")

        assert data.failure_reason == "No allow-import step found for deployment: production"

    @pytest.mark.asyncio
    async def test_missing_upload_url(self, driver_factory, declarations, fake_client):
        import_id = fake_client.script_import("network-prod", "production")
        fake_client.step_reads[import_id] = [make_step(import_id, StepOperation.IMPORT_STATE, StepStatus.RUNNING)]

        data = await driver_factory(declarations).migrate_workspace("network-prod", "production")

        assert data.failure_reason == "No upload-url found for import-state step for deployment: production"
        assert fake_client.locked == []

    @pytest.mark.asyncio
    async def test_conversion_failure_releases_lock(self, driver_factory, declarations, fake_client):
        fake_client.script_import("network-prod", "production")

        data = await driver_factory(declarations, converter_override=FailingConverter()).migrate_workspace(
            "network-prod", "production"
        )

        assert "Unsupported resource" in data.failure_reason
        assert fake_client.locked == ["ws-network-prod"]
        assert fake_client.unlocked == ["ws-network-prod"]
        assert fake_client.uploaded_states == []

    @pytest.mark.asyncio
    async def test_unlock_failure_keeps_conversion_error(self, driver_factory, declarations, fake_client):
        fake_client.script_import("network-prod", "production")
        fake_client.unlock_workspace = AsyncMock(side_effect=TfeApiError("unlock refused", status=409))

        data = await driver_factory(declarations, converter_override=FailingConverter()).migrate_workspace(
            "network-prod", "production"
        )

        assert "Unsupported resource" in data.failure_reason
        assert "unlock refused" not in data.failure_reason
        fake_client.unlock_workspace.assert_awaited_once_with("ws-network-prod")

    @pytest.mark.asyncio
    async def test_unlock_failure_after_upload_is_reported(self, driver_factory, declarations, fake_client):
        fake_client.script_import("network-prod", "production")
        fake_client.unlock_workspace = AsyncMock(side_effect=TfeApiError("unlock refused", status=409))

        data = await driver_factory(declarations).migrate_workspace("network-prod", "production")

        assert data.failure_reason == "unlock refused"
        assert len(fake_client.uploaded_states) == 1

    @pytest.mark.asyncio
    async def test_empty_state_fails(self, driver_factory, declarations, fake_client):
        fake_client.script_import("network-prod", "production", state=b"")

        data = await driver_factory(declarations).migrate_workspace("network-prod", "production")

        assert data.failure_reason.startswith("No state data found")
        assert fake_client.unlocked == ["ws-network-prod"]

    @pytest.mark.asyncio
    async def test_import_step_not_back_to_operator_after_upload(self, driver_factory, declarations, fake_client):
        import_id = fake_client.script_import("network-prod", "production")
        upload_url = "https://upload.example.com/production"
        fake_client.step_reads[import_id] = [
            make_step(import_id, StepOperation.IMPORT_STATE, StepStatus.RUNNING, upload_url),
            make_step(import_id, StepOperation.IMPORT_STATE, StepStatus.FAILED, upload_url),
        ]

        data = await driver_factory(declarations).migrate_workspace("network-prod", "production")

        assert "after state upload" in data.failure_reason
        assert fake_client.advanced == ["sds-allow-production"]

    @pytest.mark.asyncio
    async def test_group_fails_after_import(self, driver_factory, declarations, fake_client):
        fake_client.script_import("network-prod", "production", final_status=DeploymentGroupStatus.FAILED)

        data = await driver_factory(declarations).migrate_workspace("network-prod", "production")

        assert data.deployment_group.status == "failed"
        assert "is in failed status after state import advance" in data.failure_reason

    @pytest.mark.asyncio
    async def test_poll_budget_exhaustion_is_a_failure(self, driver_factory, declarations, fake_client, settings):
        fake_client.script_import("network-prod", "production", final_status=DeploymentGroupStatus.DEPLOYING)

        data = await driver_factory(declarations).migrate_workspace("network-prod", "production")

        assert data.deployment_group.status == "deploying"
        assert data.failure_reason.endswith(
            f"did not reach a terminal status after {settings.group_poll_attempts} status checks"
        )

    @pytest.mark.asyncio
    async def test_declared_module_map_is_passed_through(self, driver_factory, declarations, fake_client, converter):
        fake_client.script_import("network-prod", "production", state=MODULE_STATE)

        data = await driver_factory(declarations, module_address_map={"network": "vpc"}).migrate_workspace(
            "network-prod", "production"
        )

        assert data.failure_reason is None
        assert converter.calls[0]["module_address_map"] == {"network": "vpc"}


class TestMigrateAll:
    @pytest.mark.asyncio
    async def test_runs_every_workspace(self, driver_factory, declarations, fake_client):
        fake_client.script_import("network-prod", "production")
        fake_client.script_settled("network-staging", "staging", DeploymentGroupStatus.SUCCEEDED)

        results = await driver_factory(declarations).migrate_all(
            {"network-prod": "production", "network-staging": "staging"}
        )

        assert set(results) == {"network-prod", "network-staging"}
        assert all(data.failure_reason is None for data in results.values())
        assert fake_client.locked == ["ws-network-prod"]

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_others(self, driver_factory, declarations, fake_client):
        fake_client.script_import("network-prod", "production")
        fake_client.runs["staging"] = [make_run("staging")]

        results = await driver_factory(declarations).migrate_all(
            {"network-prod": "production", "network-staging": "staging"}
        )

        assert results["network-prod"].failure_reason is None
        assert results["network-staging"].failure_reason.startswith("Error reading workspace name")


class TestImportSteps:
    """Step states reported by allow-import and import-state."""

    @pytest.mark.asyncio
    async def test_completed_allow_import_is_not_advanced(self, driver_factory, declarations, fake_client):
        import_id = fake_client.script_import(
            "network-prod", "production", step_statuses={StepOperation.ALLOW_IMPORT: StepStatus.COMPLETED}
        )

        data = await driver_factory(declarations).migrate_workspace("network-prod", "production")

        assert data.failure_reason is None
        assert fake_client.advanced == [import_id]
        assert len(fake_client.uploaded_states) == 1

    @pytest.mark.asyncio
    async def test_allow_import_in_unexpected_state(self, driver_factory, declarations, fake_client):
        fake_client.script_import(
            "network-prod", "production", step_statuses={StepOperation.ALLOW_IMPORT: StepStatus.RUNNING}
        )

        data = await driver_factory(declarations).migrate_workspace("network-prod", "production")

        assert data.failure_reason == "Allow-import step for deployment production is in unexpected state: running"
        assert fake_client.advanced == []
        assert fake_client.locked == []

    @pytest.mark.asyncio
    async def test_completed_import_state_skips_upload(self, driver_factory, declarations, fake_client):
        fake_client.script_import("network-prod", "production", import_reads=[StepStatus.COMPLETED])

        data = await driver_factory(declarations).migrate_workspace("network-prod", "production")

        assert data.failure_reason is None
        assert data.deployment_group.status == "succeeded"
        assert fake_client.advanced == ["sds-allow-production"]
        assert fake_client.uploaded_states == []
        assert fake_client.locked == []

    @pytest.mark.asyncio
    async def test_import_state_awaiting_operator_is_advanced_without_upload(
        self, driver_factory, declarations, fake_client
    ):
        import_id = fake_client.script_import(
            "network-prod", "production", import_reads=[StepStatus.PENDING_OPERATOR]
        )

        data = await driver_factory(declarations).migrate_workspace("network-prod", "production")

        assert data.failure_reason is None
        assert fake_client.advanced == ["sds-allow-production", import_id]
        assert fake_client.uploaded_states == []
        assert fake_client.locked == []

    @pytest.mark.asyncio
    async def test_import_state_in_unexpected_state(self, driver_factory, declarations, fake_client):
        fake_client.script_import("network-prod", "production", import_reads=[StepStatus.FAILED])

        data = await driver_factory(declarations).migrate_workspace("network-prod", "production")

        assert data.failure_reason == "Import-state step for deployment production is in unexpected state: failed"
        assert fake_client.advanced == ["sds-allow-production"]
        assert fake_client.uploaded_states == []

    @pytest.mark.asyncio
    async def test_missing_import_state_step(self, driver_factory, declarations, fake_client):
        fake_client.script_import("network-prod", "production")
        fake_client.steps["sdr-production"] = fake_client.steps["sdr-production"][:1]

        data = await driver_factory(declarations).migrate_workspace("network-prod", "production")

        assert data.failure_reason == "No import-state step found for deployment: production"
        assert fake_client.advanced == ["sds-allow-production"]
