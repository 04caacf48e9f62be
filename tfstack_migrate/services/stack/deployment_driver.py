"""
Deployment Driver Module

Drives one deployment run per mapped workspace through the remote
allow-import and import-state steps, converting and uploading the
workspace's state along the way.
"""

import asyncio
from collections.abc import Callable

import structlog
from structlog.stdlib import BoundLogger

from ...core.exceptions import ConversionError, StackMigrationError, TfeApiError
from ...core.settings import StackMigrationSettings
from ...core.stack_config_parser import DeploymentDeclarations
from ...models.api import DeploymentRun, DeploymentRunStep
from ...models.enums import DeploymentGroupStatus, StepOperation, StepStatus
from ...models.migration import DeploymentGroupData, StackMigrationData
from ..rpcapi.converter import StateConverter, stack_state_file
from ..tfe_client import TfeClient
from .conversion_metadata import derive_conversion_metadata


class DeploymentDriver:
    """Per-workspace state import driver for one stack."""

    def __init__(
        self,
        client: TfeClient,
        settings: StackMigrationSettings,
        organization: str,
        stack_id: str,
        stack_name: str,
        config_file_dir: str,
        terraform_config_dir: str,
        declarations: DeploymentDeclarations,
        resource_address_map: dict[str, str] | None = None,
        module_address_map: dict[str, str] | None = None,
        converter_factory: Callable[[], StateConverter] | None = None,
    ):
        """Initialize the driver.

        Args:
            client: Open HCP Terraform client
            settings: Poll budgets and settle delays
            organization: Organization owning the workspaces
            stack_id: Stack the deployments belong to
            stack_name: Stack name used in messages
            config_file_dir: Stack source bundle directory
            terraform_config_dir: Initialized Terraform configuration directory
            declarations: Deployment blocks parsed from the source bundle
            resource_address_map: Declared resource address overrides
            module_address_map: Declared module address overrides
            converter_factory: Builds the state converter
        """
        self.client = client
        self.settings = settings
        self.organization = organization
        self.stack_id = stack_id
        self.stack_name = stack_name
        self.config_file_dir = config_file_dir
        self.terraform_config_dir = terraform_config_dir
        self.declarations = declarations
        self.resource_address_map = resource_address_map
        self.module_address_map = module_address_map
        self.converter_factory = converter_factory or (
            lambda: StateConverter(config_file_dir, terraform_config_dir, settings=settings)
        )
        self.logger: BoundLogger = structlog.get_logger().bind(
            component="deployment_driver", stack_id=stack_id
        )

    async def migrate_all(
        self, mapping: dict[str, str], retry_abandoned: bool = False
    ) -> dict[str, StackMigrationData]:
        """Run one driver per workspace concurrently.

        Args:
            mapping: Workspace name to deployment name
            retry_abandoned: Rerun abandoned deployment groups instead of failing

        Returns:
            Migration data keyed by workspace name
        """
        results: dict[str, StackMigrationData] = {}
        lock = asyncio.Lock()

        async def run(workspace_name: str, deployment_name: str) -> None:
            data = await self.migrate_workspace(workspace_name, deployment_name, retry_abandoned)
            async with lock:
                results[workspace_name] = data

        await asyncio.gather(*(run(ws, dep) for ws, dep in mapping.items()))
        return results

    async def migrate_workspace(
        self, workspace_name: str, deployment_name: str, retry_abandoned: bool = False
    ) -> StackMigrationData:
        """Drive a single deployment; errors land in ``failure_reason``."""
        data = StackMigrationData(deployment_name=deployment_name)
        log = self.logger.bind(workspace=workspace_name, deployment=deployment_name)
        try:
            await self._drive(data, workspace_name, deployment_name, retry_abandoned, log)
        except (StackMigrationError, OSError) as e:
            log.error("Deployment migration failed", error=str(e))
            data.fail(str(e))

        if data.failure_reason:
            log.warning("Deployment migration finished with failure", reason=data.failure_reason)
        else:
            log.info("Deployment migration finished", group_status=data.deployment_group.status)
        return data

    async def _drive(
        self,
        data: StackMigrationData,
        workspace_name: str,
        deployment_name: str,
        retry_abandoned: bool,
        log: BoundLogger,
    ) -> None:
        # Step 1: Resolve the workspace
        try:
            workspace = await self.client.read_workspace(self.organization, workspace_name)
        except TfeApiError as e:
            data.fail(f"Error reading workspace name: {workspace_name}, error: {e}")
            return
        data.workspace_id = workspace.id

        # Step 2: Latest run and its deployment group
        run = await self._read_latest_run(data, deployment_name, "No deployment run found deployment")
        if run is None:
            return
        if not self.declarations.is_marked_for_import(deployment_name):
            message = f"Deployment {deployment_name} not marked for state import, no state will be imported"
            log.warning(message)
            data.warnings.append(message)
            return

        # Step 3: Classify the group, rerunning failed or abandoned ones
        status = run.group.status if run.group else DeploymentGroupStatus.PENDING
        if status is DeploymentGroupStatus.SUCCEEDED:
            log.info("Deployment group already succeeded", group_id=run.group_id)
            return
        if status is DeploymentGroupStatus.ABANDONED and not retry_abandoned:
            data.fail(
                f"Deployment group {run.group_id} for deployment {deployment_name} is in abandoned state, "
                "please fix the deployment config in the stack configuration files and reupload to trigger "
                "the process"
            )
            return
        if status.is_failed:
            log.info("Rerunning deployment group", group_id=run.group_id, status=str(status))
            await self.client.rerun_deployment_group(run.group_id or "", [deployment_name])
            # Step ids of the superseded run are stale after a rerun
            run = await self._read_latest_run(data, deployment_name, "No deployment run found for deployment")
            if run is None:
                return

        # Step 4: List the run's steps
        try:
            steps = await self.client.list_deployment_run_steps(run.id)
        except TfeApiError as e:
            data.fail(f"Failed to fetch deployment run steps, {e}")
            return

        # Step 5: allow-import
        if not await self._handle_allow_import(data, deployment_name, steps):
            return

        # Step 6: import-state
        if not await self._handle_import_state(data, deployment_name, steps, log):
            return

        # Step 7: Wait for the group to settle
        await self._poll_deployment_group(data, deployment_name, log)

    async def _read_latest_run(
        self, data: StackMigrationData, deployment_name: str, missing_message: str
    ) -> DeploymentRun | None:
        try:
            run = await self.client.read_latest_deployment_run(self.stack_id, deployment_name)
        except TfeApiError as e:
            data.fail(f"Error reading latest deployment run for deployment {deployment_name}: {e}")
            return None
        if run is None:
            data.fail(f"{missing_message}: {deployment_name}")
            return None
        if not run.group_id:
            data.fail(f"No deployment group found for deployment: {deployment_name}")
            return None

        data.deployment_group = DeploymentGroupData(
            id=run.group_id,
            status=str(run.group.status) if run.group else None,
        )
        return run

    @staticmethod
    def _find_step(steps: list[DeploymentRunStep], operation: StepOperation) -> DeploymentRunStep | None:
        return next((step for step in steps if step.operation_type == operation.value), None)

    async def _handle_allow_import(
        self, data: StackMigrationData, deployment_name: str, steps: list[DeploymentRunStep]
    ) -> bool:
        step = self._find_step(steps, StepOperation.ALLOW_IMPORT)
        if step is None:
            data.fail(f"No allow-import step found for deployment: {deployment_name}")
            return False

        if step.status == StepStatus.PENDING_OPERATOR.value:
            await self.client.advance_step(step.id)
            return True
        if step.status == StepStatus.COMPLETED.value:
            return True

        data.fail(f"Allow-import step for deployment {deployment_name} is in unexpected state: {step.status}")
        return False

    async def _handle_import_state(
        self,
        data: StackMigrationData,
        deployment_name: str,
        steps: list[DeploymentRunStep],
        log: BoundLogger,
    ) -> bool:
        step = self._find_step(steps, StepOperation.IMPORT_STATE)
        if step is None:
            data.fail(f"No import-state step found for deployment: {deployment_name}")
            return False

        # Upload links appear only after the remote settles from the previous advance
        await asyncio.sleep(self.settings.step_settle_delay)
        step = await self.client.read_step(step.id)
        upload_url = step.upload_url
        if not upload_url:
            data.fail(f"No upload-url found for import-state step for deployment: {deployment_name}")
            return False

        if step.status == StepStatus.PENDING_OPERATOR.value:
            await self.client.advance_step(step.id)
            return True
        if step.status == StepStatus.COMPLETED.value:
            return True
        if step.status != StepStatus.RUNNING.value:
            data.fail(f"Import-state step for deployment {deployment_name} is in unexpected state: {step.status}")
            return False

        await self.convert_and_upload(data.workspace_id or "", upload_url)
        log.info("Stack state uploaded for import", step_id=step.id)

        await asyncio.sleep(self.settings.step_settle_delay)
        step = await self.client.read_step(step.id)
        if step.status != StepStatus.PENDING_OPERATOR.value:
            data.fail(
                f"Import-state step for deployment {deployment_name} is in unexpected state: "
                f"{step.status} after state upload"
            )
            return False

        await self.client.advance_step(step.id)
        return True

    async def convert_and_upload(self, workspace_id: str, upload_url: str) -> None:
        """Convert a workspace's current state to stack state and upload it.

        The workspace stays locked for the whole conversion; the lock is
        released on every exit path once taken.

        Raises:
            ConversionError: On empty state or a conversion failure
            TfeApiError: On lock, download or upload failure
        """
        await self.client.lock_workspace(workspace_id)
        try:
            await self._convert_and_upload_locked(workspace_id, upload_url)
        except BaseException:
            await self._unlock_after_failure(workspace_id)
            raise
        await self.client.unlock_workspace(workspace_id)

    async def _unlock_after_failure(self, workspace_id: str) -> None:
        """Release the lock without masking the error that is already propagating."""
        try:
            await self.client.unlock_workspace(workspace_id)
        except TfeApiError as e:
            self.logger.error(
                "Failed to unlock workspace after conversion error",
                workspace_id=workspace_id,
                error=str(e),
            )

    async def _convert_and_upload_locked(self, workspace_id: str, upload_url: str) -> None:
        state_version = await self.client.read_current_state_version(workspace_id)
        raw_state = await self.client.download_state(state_version.download_url)
        if not raw_state:
            raise ConversionError(
                f"No state data found: workspace {workspace_id} has no state data to convert"
            )

        metadata = derive_conversion_metadata(
            raw_state,
            self.config_file_dir,
            resource_address_map=self.resource_address_map,
            module_address_map=self.module_address_map,
        )
        stack_state = await self.converter_factory().convert(
            raw_state,
            resource_address_map=metadata.resource_address_map,
            module_address_map=metadata.module_address_map,
        )

        try:
            async with stack_state_file(stack_state, workspace_id) as path:
                await self.client.upload_stack_state(upload_url, path)
        except OSError as e:
            raise ConversionError(f"Failed to write stack state for workspace {workspace_id}: {e}") from e

    async def _poll_deployment_group(
        self, data: StackMigrationData, deployment_name: str, log: BoundLogger
    ) -> None:
        attempts = self.settings.group_poll_attempts
        for attempt in range(1, attempts + 1):
            await asyncio.sleep(self.settings.group_poll_interval)
            log.debug("Checking deployment group status", attempt=attempt, attempts=attempts)
            error: TfeApiError | None = None
            try:
                run = await self.client.read_latest_deployment_run(self.stack_id, deployment_name)
            except TfeApiError as e:
                run, error = None, e
            if run is None or run.group is None:
                data.fail(
                    f"Failed to read latest deployment run for deployment {deployment_name} in stack "
                    f"{self.stack_name} after state import advance, err: {error}"
                )
                continue

            status = run.group.status
            data.deployment_group = DeploymentGroupData(id=run.group.id, status=str(status))
            if status is DeploymentGroupStatus.SUCCEEDED:
                data.failure_reason = None
                return
            if status.is_failed:
                data.fail(
                    f"Deployment group {deployment_name} in stack {self.stack_name} is in {status} status after "
                    "state import advance. Please check your deployment config or workspace state data and retry."
                )
                return

        data.fail(
            f"Deployment group for deployment {deployment_name} in stack {self.stack_name} did not reach a "
            f"terminal status after {attempts} status checks"
        )
