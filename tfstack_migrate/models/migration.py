"""Per-workspace migration outcome models."""

from pydantic import Field

from .base import MigrationModel


class DeploymentGroupData(MigrationModel):
    """Identity and status of the deployment group a workspace's deployment ran in."""

    id: str | None = None
    status: str | None = None


class StackMigrationData(MigrationModel):
    """Snapshot of a single workspace's migration result."""

    workspace_id: str | None = None
    deployment_name: str | None = None
    deployment_group: DeploymentGroupData = Field(default_factory=DeploymentGroupData)
    failure_reason: str | None = None
    warnings: list[str] = Field(default_factory=list)

    def fail(self, reason: str) -> "StackMigrationData":
        """Record a failure reason and return self for early returns."""
        self.failure_reason = reason
        return self
