"""Update strategies chosen while planning and the pure parts of the decision."""

from dataclasses import dataclass, field
from typing import Union

from ...models.attributes import PlannedStackMigration
from ...models.diagnostics import Diagnostics
from ...models.enums import DeploymentGroupStatus, UpdateStrategyKind
from ...models.migration import StackMigrationData


@dataclass(frozen=True)
class RequiresReplace:
    """An identity attribute changed; the migration must be destroyed and re-applied."""

    attributes: tuple[str, ...]
    kind: UpdateStrategyKind = field(default=UpdateStrategyKind.REQUIRES_REPLACE, init=False)

    def describe(self) -> str:
        return f"{', '.join(self.attributes)} changed; run destroy and apply again"


@dataclass(frozen=True)
class ApplyNewConfiguration:
    """Upload a new source bundle and drive every deployment."""

    reason: str
    kind: UpdateStrategyKind = field(default=UpdateStrategyKind.APPLY_NEW_CONFIGURATION, init=False)

    def describe(self) -> str:
        return self.reason


@dataclass(frozen=True)
class RetryFailedDeployments:
    """Rerun the given workspaces' deployments against the existing configuration."""

    workspaces: frozenset[str]
    reason: str = ""
    kind: UpdateStrategyKind = field(default=UpdateStrategyKind.RETRY_FAILED_DEPLOYMENTS, init=False)

    def describe(self) -> str:
        names = ", ".join(sorted(self.workspaces))
        return f"{self.reason} (workspaces: {names})" if self.reason else f"workspaces: {names}"


@dataclass(frozen=True)
class NoAction:
    """Nothing changed; state is kept as is."""

    reason: str = ""
    kind: UpdateStrategyKind = field(default=UpdateStrategyKind.NO_ACTION, init=False)

    def describe(self) -> str:
        return self.reason


@dataclass(frozen=True)
class WaitForCompletion:
    """A rollout is in progress; the requested change is rejected."""

    summary: str
    detail: str
    kind: UpdateStrategyKind = field(default=UpdateStrategyKind.WAIT_FOR_COMPLETION, init=False)

    def describe(self) -> str:
        return self.summary


UpdateStrategy = Union[
    RequiresReplace, ApplyNewConfiguration, RetryFailedDeployments, NoAction, WaitForCompletion
]


@dataclass
class PlanResult:
    """Outcome of planning: the chosen strategy, expected attributes and diagnostics."""

    strategy: UpdateStrategy | None
    planned: PlannedStackMigration | None = None
    diagnostics: Diagnostics = field(default_factory=Diagnostics)

    @property
    def kind(self) -> UpdateStrategyKind | None:
        return self.strategy.kind if self.strategy else None


@dataclass(frozen=True)
class ChangeSet:
    """Which inputs differ between the persisted state and the declaration."""

    mapping_changed: bool
    source_bundle_changed: bool
    terraform_config_changed: bool

    @property
    def any(self) -> bool:
        return self.mapping_changed or self.source_bundle_changed or self.terraform_config_changed

    def describe(self) -> str:
        changed = [
            name
            for name, flag in (
                ("workspace_deployment_mapping", self.mapping_changed),
                ("source_bundle_hash", self.source_bundle_changed),
                ("terraform_config_hash", self.terraform_config_changed),
            )
            if flag
        ]
        return ", ".join(changed) if changed else "none"


def count_terminal_groups(statuses: list[DeploymentGroupStatus]) -> tuple[int, int]:
    """Return (succeeded, failed or abandoned) deployment group counts."""
    succeeded = sum(1 for status in statuses if status is DeploymentGroupStatus.SUCCEEDED)
    failed = sum(1 for status in statuses if status.is_failed)
    return succeeded, failed


def decide_completed_strategy(
    succeeded: int,
    failed: int,
    mapping_size: int,
    changes: ChangeSet,
) -> UpdateStrategyKind:
    """Strategy for a Completed configuration whose deployment groups are all terminal.

    Args:
        succeeded: Succeeded deployment group count
        failed: Failed or abandoned deployment group count
        mapping_size: Number of mapped workspaces
        changes: Detected input changes

    Returns:
        NO_ACTION, APPLY_NEW_CONFIGURATION or RETRY_FAILED_DEPLOYMENTS
    """
    if succeeded == mapping_size and not changes.any:
        return UpdateStrategyKind.NO_ACTION
    if changes.any or failed == mapping_size:
        return UpdateStrategyKind.APPLY_NEW_CONFIGURATION
    return UpdateStrategyKind.RETRY_FAILED_DEPLOYMENTS


def idempotency_violation(
    changes: ChangeSet,
    stack_name: str,
    organization: str,
    project: str,
    config_file_dir: str,
    terraform_config_dir: str,
) -> WaitForCompletion | None:
    """The first input change that is not allowed while a rollout is running, if any."""
    target = f"stack {stack_name!r} in organization {organization!r} and project {project!r}"
    if changes.mapping_changed:
        return WaitForCompletion(
            "Deployment Mapping Change Not Allowed During Running Deployments",
            f"Changes to the workspace_deployment_mapping are not allowed while there are running "
            f"deployment groups for {target}. Please wait for the running deployments to complete "
            "before making changes to the deployment mapping.",
        )
    if changes.source_bundle_changed:
        return WaitForCompletion(
            "Source Bundle Hash Change Not Allowed During Running Deployments",
            f"Changes to the files in dir {config_file_dir!r} are not allowed while there are running "
            f"deployment groups for {target}. Please wait for the running deployments to complete "
            "before making changes to the source bundle.",
        )
    if changes.terraform_config_changed:
        return WaitForCompletion(
            "Terraform Configuration Hash Change Not Allowed During Running Deployments",
            f"Changes to the files in dir {terraform_config_dir!r} are not allowed while there are "
            f"running deployment groups for {target}. Please wait for the running deployments to "
            "complete before making changes to the terraform configuration.",
        )
    return None


def failed_workspaces(migration_data: dict[str, StackMigrationData]) -> frozenset[str]:
    """Workspaces whose deployment group is Failed or Abandoned."""
    failed_values = {DeploymentGroupStatus.FAILED.value, DeploymentGroupStatus.ABANDONED.value}
    return frozenset(
        workspace
        for workspace, data in migration_data.items()
        if data.deployment_group.status in failed_values
    )
