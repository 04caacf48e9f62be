"""Read-only per-workspace migration snapshots and their fingerprint."""

import asyncio

import structlog

from ...core.exceptions import ConfigurationError, TfeApiError
from ...core.fingerprint import hash_migration_data
from ...models.migration import DeploymentGroupData, StackMigrationData
from ..tfe_client import TfeClient


class MigrationHashService:
    """Builds migration snapshots from the remote without mutating anything."""

    def __init__(self, client: TfeClient):
        self.client = client
        self.logger = structlog.get_logger().bind(component="migration_hash")

    async def generate_migration_data(
        self,
        organization: str,
        stack_id: str,
        mapping: dict[str, str],
    ) -> dict[str, StackMigrationData]:
        """Read the current deployment outcome of every mapped workspace concurrently.

        Per-workspace read errors are recorded as that workspace's
        ``failure_reason``; they never fail the whole call.

        Args:
            organization: Organization owning the workspaces
            stack_id: Stack owning the deployments
            mapping: Workspace name to deployment name

        Returns:
            Snapshot keyed by workspace name

        Raises:
            ConfigurationError: If organization or mapping is empty
        """
        if not organization:
            raise ConfigurationError("organization name is required")
        if not mapping:
            raise ConfigurationError("migration map cannot be empty")

        results = await asyncio.gather(
            *(
                self._read_workspace_deployment(organization, stack_id, workspace, deployment)
                for workspace, deployment in mapping.items()
            )
        )
        return dict(zip(mapping, results, strict=True))

    async def _read_workspace_deployment(
        self, organization: str, stack_id: str, workspace_name: str, deployment_name: str
    ) -> StackMigrationData:
        data = StackMigrationData()

        try:
            workspace = await self.client.read_workspace(organization, workspace_name)
        except TfeApiError as e:
            return data.fail(f"Error reading workspace name: {workspace_name}, error: {e}")
        data.workspace_id = workspace.id

        try:
            run = await self.client.read_latest_deployment_run(stack_id, deployment_name)
        except TfeApiError as e:
            return data.fail(f"Error reading deployment data name: {deployment_name}, error: {e}")
        if run is None or not run.id:
            return data.fail(f"No deployment with the name {deployment_name} found in stack")

        data.deployment_name = deployment_name
        data.deployment_group = DeploymentGroupData(
            id=run.group_id,
            status=str(run.group.status) if run.group else None,
        )
        self.logger.debug(
            "Migration data read",
            workspace=workspace_name,
            deployment=deployment_name,
            group_status=data.deployment_group.status,
        )
        return data

    @staticmethod
    def migration_hash(migration_data: dict[str, StackMigrationData]) -> str:
        return hash_migration_data(migration_data)
