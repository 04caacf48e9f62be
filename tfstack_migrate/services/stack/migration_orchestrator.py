"""Stack migration controller."""

import json
from collections.abc import Callable
from dataclasses import replace

import structlog
from structlog.stdlib import BoundLogger

from ...core.archive import ArchiveError
from ...core.config_loader import read_credentials_token
from ...core.exceptions import (
    ConfigurationError,
    FingerprintError,
    PreconditionError,
    RemoteConflictError,
    TfeApiError,
)
from ...core.fingerprint import hash_directory_async
from ...core.settings import DEFAULT_TFE_HOSTNAME, StackMigrationSettings
from ...models.api import Stack
from ...models.attributes import (
    AttributeValue,
    PlannedStackMigration,
    StackMigrationResource,
    StackMigrationState,
)
from ...models.diagnostics import Diagnostics
from ...models.enums import (
    ERRORED_OR_CANCELED_CONFIGURATION_STATUSES,
    ConfigurationStatus,
    DeploymentGroupStatus,
    Severity,
    StepOperation,
    StepStatus,
    UpdateStrategyKind,
)
from ...models.migration import StackMigrationData
from ..rpcapi.converter import StateConverter
from ..tfe_client import TfeClient
from .deployment_driver import DeploymentDriver
from .migration_hash import MigrationHashService
from .plan import (
    ApplyNewConfiguration,
    ChangeSet,
    NoAction,
    PlanResult,
    RequiresReplace,
    RetryFailedDeployments,
    WaitForCompletion,
    count_terminal_groups,
    decide_completed_strategy,
    failed_workspaces,
    idempotency_violation,
)
from .validation import RemoteTarget, StackMigrationValidation
from .watcher import ConfigurationWatcher, allow_source_bundle_upload

IDENTITY_ATTRIBUTES = ("name", "organization", "project")
CONFIG_HASH_ERROR_SUMMARY = "Unable to Calculate Configuration Hash"
DESTROY_NOT_SUPPORTED = "Destroy Action is not supported for this resource."
DESTROY_NOT_SUPPORTED_DETAIL = (
    "The stack migration cannot be undone. The local state entry is removed; the stack, its "
    "configurations and the migrated workspaces are left untouched."
)


def _config_hash_error(directory: str, error: Exception) -> str:
    return f"Could not calculate the hash of the configuration files in the directory {directory!r}, err: {error}"


def _pretty_migration_data(migration_data: dict[str, StackMigrationData]) -> str:
    document = {workspace: data.model_dump(mode="json") for workspace, data in migration_data.items()}
    return json.dumps(document, indent=2, sort_keys=True)


class StackMigrationController:
    """Drives the lifecycle of a workspace to stack migration.

    Mirrors the resource lifecycle of a declarative provider: ``modify_plan``
    chooses an update strategy, ``create`` and ``update`` apply it, ``read``
    refreshes state from the remote and ``delete`` only warns.

    Use as an async context manager so the HCP Terraform client is closed::

        controller = StackMigrationController(settings)
        diagnostics = controller.configure()
        async with controller:
            state, diagnostics = await controller.create(resource)
    """

    def __init__(
        self,
        settings: StackMigrationSettings,
        client_factory: Callable[[str, str, float], TfeClient] | None = None,
        converter_factory: Callable[[str, str], StateConverter] | None = None,
    ):
        """Initialize controller and its dependencies.

        Args:
            settings: Remote access, polling and timeout settings
            client_factory: Builds the HCP Terraform client from (hostname, token, timeout)
            converter_factory: Builds a state converter from (config_file_dir, terraform_config_dir)
        """
        self.settings = settings
        self.client_factory = client_factory or TfeClient
        self.converter_factory = converter_factory
        self.client: TfeClient | None = None
        self.validation = StackMigrationValidation()
        self.logger: BoundLogger = structlog.get_logger().bind(component="migration_controller")

    async def __aenter__(self) -> "StackMigrationController":
        if self.client is None:
            raise ConfigurationError("Controller is not configured")
        await self.client.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.client is not None:
            await self.client.close()

    def _require_client(self) -> TfeClient:
        if self.client is None:
            raise ConfigurationError("Controller is not configured")
        return self.client

    # Lifecycle: configure

    def configure(self) -> Diagnostics:
        """Validate the hostname, resolve the API token and build the remote client."""
        diagnostics = Diagnostics()
        hostname = self.settings.tfe_hostname
        if hostname != DEFAULT_TFE_HOSTNAME:
            diagnostics.add_error(
                f"Host name must be set to {DEFAULT_TFE_HOSTNAME}",
                f"The hostname must be {DEFAULT_TFE_HOSTNAME!r}, but got {hostname!r}. "
                "Please check the TFE_HOSTNAME setting.",
            )
            return diagnostics

        try:
            token = self.settings.tfe_token or read_credentials_token(hostname)
        except ConfigurationError as e:
            diagnostics.add_exception(e, "Unable to Read Credentials")
            return diagnostics
        if not token:
            diagnostics.add_error(
                "Missing API Token",
                f"No API token found for {hostname}. Set TFE_TOKEN or run `terraform login`.",
            )
            return diagnostics

        self.client = self.client_factory(hostname, token, self.settings.http_timeout)
        self.logger.debug("Controller configured", hostname=hostname)
        return diagnostics

    def validate(self, resource: StackMigrationResource) -> tuple[StackMigrationResource, Diagnostics]:
        """Apply attribute defaults and run attribute validation."""
        return self.validation.validate_attributes(
            resource, self.settings.tfe_organization, self.settings.tfe_project
        )

    # Lifecycle: create

    async def create(
        self, resource: StackMigrationResource
    ) -> tuple[StackMigrationState | None, Diagnostics]:
        """Run preconditions, upload the source bundle and migrate every workspace.

        Returns:
            Tuple of (state, diagnostics). State is None when nothing was applied.
        """
        resource, diagnostics = self.validate(resource)
        if diagnostics.has_error():
            return None, diagnostics

        try:
            target = await self.validation.check_preconditions(self._require_client(), resource)
        except PreconditionError as e:
            diagnostics.add_exception(e)
            return None, diagnostics

        self.logger.info("Creating stack migration", stack=resource.name, stack_id=target.stack.id)
        state, apply_diagnostics = await self.apply_stack_configuration(
            resource, target, upload_new_config=True, retry_abandoned=False
        )
        diagnostics.extend(apply_diagnostics)
        return state, diagnostics

    # Lifecycle: read

    async def read(self, state: StackMigrationState) -> tuple[StackMigrationState, Diagnostics]:
        """Refresh state from the remote without mutating anything.

        Persisted hashes are kept; freshly computed ones only fill missing
        values so that file changes stay visible to planning. The migration
        snapshot is replaced only when its fingerprint changed.
        """
        diagnostics = Diagnostics()
        client = self._require_client()
        resource = StackMigrationResource(
            name=state.name,
            organization=state.organization,
            project=state.project,
            config_file_dir=state.config_file_dir,
            terraform_config_dir=state.terraform_config_dir,
            workspace_deployment_mapping=state.workspace_deployment_mapping,
        )

        # Step 1: Refetch organization, project and stack
        try:
            organization, project, stack = await self.validation.read_remote_target(client, resource)
        except PreconditionError as e:
            diagnostics.add_exception(e)
            return state, diagnostics

        # Step 2: Hash both directories
        try:
            source_bundle_hash = await hash_directory_async(state.config_file_dir)
        except FingerprintError as e:
            diagnostics.add_error(
                "Error Calculating Configuration Hash",
                f"Could not calculate the hash of the configuration files in the directory "
                f"{state.config_file_dir!r}: {e}",
            )
            return state, diagnostics
        try:
            terraform_config_hash = await hash_directory_async(state.terraform_config_dir)
        except FingerprintError as e:
            diagnostics.add_error(
                "Error Calculating Terraform Configuration Hash",
                f"Could not calculate the hash of the Terraform configuration files in the directory "
                f"{state.terraform_config_dir!r}: {e}",
            )
            return state, diagnostics

        # Step 3: Current deployment outcomes
        hash_service = MigrationHashService(client)
        try:
            migration_data = await hash_service.generate_migration_data(
                organization.name, stack.id, state.workspace_deployment_mapping
            )
            migration_hash = hash_service.migration_hash(migration_data)
        except (ConfigurationError, FingerprintError) as e:
            diagnostics.add_error(
                "Error Generating Migration Data",
                f"Could not generate migration data for stack {stack.name!r} in organization "
                f"{organization.name!r}: {e}",
            )
            return state, diagnostics

        if migration_hash == state.migration_hash and state.migration_data:
            migration_data = state.migration_data

        latest = stack.latest_stack_configuration
        refreshed = state.model_copy(
            update={
                "name": stack.name,
                "organization": organization.name,
                "project": project.name,
                "current_configuration_id": latest.id if latest else None,
                "current_configuration_status": str(latest.status) if latest else None,
                "source_bundle_hash": state.source_bundle_hash or source_bundle_hash,
                "terraform_config_hash": state.terraform_config_hash or terraform_config_hash,
                "migration_hash": migration_hash,
                "migration_data": migration_data,
            }
        )
        diagnostics.add_warning("Migration Data Retrieved", _pretty_migration_data(migration_data))
        self.logger.info("Stack migration refreshed", stack_id=stack.id, migration_hash=migration_hash)
        return refreshed, diagnostics

    # Lifecycle: plan

    async def modify_plan(
        self, resource: StackMigrationResource, state: StackMigrationState | None
    ) -> PlanResult:
        """Choose the update strategy for a declaration against the persisted state."""
        # Step 1: Identity changes force replacement
        resource, diagnostics = self.validate(resource)
        if state is not None:
            changed_identity = tuple(
                attribute
                for attribute in IDENTITY_ATTRIBUTES
                if getattr(resource, attribute) != getattr(state, attribute)
            )
            if changed_identity:
                strategy = RequiresReplace(changed_identity)
                diagnostics.add_warning("Resource Requires Replacement", strategy.describe())
                return PlanResult(strategy, self._planned(resource, None, None, None), diagnostics)

        # Step 2: Validation, preconditions and fresh hashes
        if diagnostics.has_error():
            return PlanResult(None, None, diagnostics)
        client = self._require_client()
        try:
            target = await self.validation.check_preconditions(client, resource)
        except PreconditionError as e:
            diagnostics.add_exception(e)
            return PlanResult(None, None, diagnostics)

        hashes = await self._fresh_hashes(resource, diagnostics)
        if hashes is None:
            return PlanResult(None, None, diagnostics)
        source_bundle_hash, terraform_config_hash = hashes

        if state is None:
            strategy = ApplyNewConfiguration("No prior state; a new source bundle will be uploaded")
            return PlanResult(
                strategy,
                self._planned(resource, None, source_bundle_hash, terraform_config_hash),
                diagnostics,
            )

        stack = target.stack
        latest = stack.latest_stack_configuration

        # Step 3: The configuration was deleted outside the migration
        if latest is None:
            strategy = ApplyNewConfiguration("Stack has no configuration; a new source bundle will be uploaded")
            return PlanResult(
                strategy,
                self._planned(resource, None, source_bundle_hash, terraform_config_hash),
                diagnostics,
            )

        # Step 4: Persisted state must be complete
        if state.missing_attributes():
            diagnostics.add_error(
                "Invalid State Values",
                "One or more required state values are empty or null. Please ensure all required "
                "state values are set by running a `refresh` operation before updating the resource.",
            )
            return PlanResult(None, None, diagnostics)

        changes = ChangeSet(
            mapping_changed=resource.workspace_deployment_mapping != state.workspace_deployment_mapping,
            source_bundle_changed=state.source_bundle_hash != source_bundle_hash,
            terraform_config_changed=state.terraform_config_hash != terraform_config_hash,
        )
        log = self.logger.bind(stack_id=stack.id, configuration_id=latest.id, status=str(latest.status))

        # Step 5: Errored or canceled configurations accept any change
        if latest.status in ERRORED_OR_CANCELED_CONFIGURATION_STATUSES:
            log.debug("Prior configuration errored or canceled, allowing all changes")
            strategy = ApplyNewConfiguration(f"Latest stack configuration is {latest.status}")
            return PlanResult(
                strategy,
                self._planned(resource, None, source_bundle_hash, terraform_config_hash),
                diagnostics,
            )

        # Step 6: A running configuration blocks every change
        if latest.status.is_running:
            strategy = idempotency_violation(
                changes,
                stack.name,
                target.organization.name,
                target.project.name,
                resource.config_file_dir,
                resource.terraform_config_dir,
            ) or WaitForCompletion(
                "Stack Configuration Rollout In Progress",
                f"Stack configuration {latest.id} is {latest.status}. Wait for it to reach a terminal "
                "status before applying again.",
            )
            diagnostics.add_error(strategy.summary, strategy.detail)
            return PlanResult(strategy, self._planned_from_state(state, resource), diagnostics)

        # Step 7: Completed with every deployment group terminal
        try:
            groups = await client.list_deployment_groups(latest.id)
        except TfeApiError as e:
            diagnostics.add_error(
                "Error Checking Running Deployment Groups",
                f"Could not check running deployment groups for stack {stack.name!r} in organization "
                f"{target.organization.name!r} and project {target.project.name!r}: {e}",
            )
            return PlanResult(None, None, diagnostics)

        mapping_size = len(resource.workspace_deployment_mapping)
        if not any(group.status.is_running for group in groups):
            succeeded, failed = count_terminal_groups([group.status for group in groups])
            kind = decide_completed_strategy(succeeded, failed, mapping_size, changes)
            log.debug(
                "Deployment groups terminal",
                succeeded=succeeded,
                failed=failed,
                changes=changes.describe(),
                strategy=kind.value,
            )

            if kind is UpdateStrategyKind.NO_ACTION:
                strategy = NoAction("All deployment groups succeeded and no configuration changes detected")
                return PlanResult(strategy, self._planned_from_state(state, resource), diagnostics)

            if kind is UpdateStrategyKind.APPLY_NEW_CONFIGURATION:
                strategy = ApplyNewConfiguration(
                    f"New source bundle upload required (changed: {changes.describe()}, failed or "
                    f"abandoned deployment groups: {failed}/{mapping_size})"
                )
                return PlanResult(
                    strategy,
                    self._planned(resource, None, source_bundle_hash, terraform_config_hash),
                    diagnostics,
                )

            current = await self._generate_migration_data(target, resource, diagnostics)
            if current is None:
                return PlanResult(None, None, diagnostics)
            candidates = failed_workspaces(current)
            if not candidates:
                strategy = NoAction("No failed deployments found to retry")
                diagnostics.add_warning("No Failed Deployments", strategy.describe())
                return PlanResult(strategy, self._planned_from_state(state, resource), diagnostics)
            strategy = RetryFailedDeployments(
                candidates, "Failed deployment groups detected without configuration changes"
            )
            return PlanResult(strategy, self._planned_for_retry(state, resource, latest.id), diagnostics)

        # Step 8: Completed with running deployment groups
        violation = idempotency_violation(
            changes,
            stack.name,
            target.organization.name,
            target.project.name,
            resource.config_file_dir,
            resource.terraform_config_dir,
        )
        if violation is not None:
            diagnostics.add_error(violation.summary, violation.detail)
            return PlanResult(violation, self._planned_from_state(state, resource), diagnostics)

        current = await self._generate_migration_data(target, resource, diagnostics)
        if current is None:
            return PlanResult(None, None, diagnostics)
        candidates = await self._retry_candidates(stack, current, state.migration_data, diagnostics)
        if candidates is None:
            return PlanResult(None, None, diagnostics)

        if candidates:
            strategy = RetryFailedDeployments(
                candidates,
                "Partial deployment group failures detected with running deployment groups",
            )
            return PlanResult(strategy, self._planned_for_retry(state, resource, latest.id), diagnostics)

        strategy = NoAction("Deployment groups are still running")
        diagnostics.add_warning(
            "Deployments Still Running",
            f"Deployment groups of stack configuration {latest.id} are still running and none need a retry.",
        )
        return PlanResult(strategy, self._planned_from_state(state, resource), diagnostics)

    async def _fresh_hashes(
        self, resource: StackMigrationResource, diagnostics: Diagnostics
    ) -> tuple[str, str] | None:
        hashes: list[str] = []
        for directory in (resource.config_file_dir, resource.terraform_config_dir):
            try:
                hashes.append(await hash_directory_async(directory))
            except FingerprintError as e:
                diagnostics.add_error(CONFIG_HASH_ERROR_SUMMARY, _config_hash_error(directory, e))
                return None
        return hashes[0], hashes[1]

    async def _generate_migration_data(
        self, target: RemoteTarget, resource: StackMigrationResource, diagnostics: Diagnostics
    ) -> dict[str, StackMigrationData] | None:
        try:
            return await MigrationHashService(self._require_client()).generate_migration_data(
                target.organization.name, target.stack.id, resource.workspace_deployment_mapping
            )
        except ConfigurationError as e:
            diagnostics.add_error(
                "Error Generating Migration Data",
                f"Could not generate migration data for stack {target.stack.name!r} in organization "
                f"{target.organization.name!r} and project {target.project.name}: {e}",
            )
            return None

    async def _retry_candidates(
        self,
        stack: Stack,
        current: dict[str, StackMigrationData],
        previous: dict[str, StackMigrationData],
        diagnostics: Diagnostics,
    ) -> frozenset[str] | None:
        """Workspaces to retry while other deployment groups are still running."""
        configuration_id = stack.latest_stack_configuration.id if stack.latest_stack_configuration else ""
        if set(current) != set(previous):
            diagnostics.add_error(
                "Workspace Names Mismatch",
                "The workspace names in the current migration data do not match those in the previous "
                f"migration data. Cannot determine deployment status differences For Completed "
                f"ConfigurationId {configuration_id!r}",
            )
            return None

        candidates: set[str] = set()
        for workspace, data in current.items():
            status = data.deployment_group.status
            if status in (DeploymentGroupStatus.FAILED.value, DeploymentGroupStatus.ABANDONED.value):
                candidates.add(workspace)
            elif status in (DeploymentGroupStatus.PENDING.value, DeploymentGroupStatus.DEPLOYING.value):
                awaiting = await self._is_awaiting_provider_action(stack, data.deployment_name or "", diagnostics)
                if awaiting is None:
                    return None
                if awaiting:
                    candidates.add(workspace)
        return frozenset(candidates)

    async def _is_awaiting_provider_action(
        self, stack: Stack, deployment_name: str, diagnostics: Diagnostics
    ) -> bool | None:
        client = self._require_client()
        try:
            run = await client.read_latest_deployment_run(stack.id, deployment_name)
        except TfeApiError as e:
            diagnostics.add_error(
                "Error Reading Latest Deployment Run",
                f"Could not read latest deployment run for deployment {deployment_name!r} in stack "
                f"{stack.name!r}: {e}",
            )
            return None
        if run is None:
            diagnostics.add_error(
                "Error Reading Deployment Group from Latest Deployment Run",
                f"Could not read deployment group from latest deployment run for deployment "
                f"{deployment_name!r} in stack {stack.name!r}",
            )
            return None
        if not run.current_step_id:
            return False

        try:
            step = await client.read_step(run.current_step_id)
        except TfeApiError as e:
            diagnostics.add_error(
                "Error Reading Deployment Run Steps",
                f"Could not read deployment run steps for step ID {run.current_step_id!r} in deployment "
                f"{deployment_name!r} in stack {stack.name!r}: {e}",
            )
            return None

        if step.operation_type == StepOperation.ALLOW_IMPORT.value:
            return step.status == StepStatus.PENDING_OPERATOR.value
        if step.operation_type == StepOperation.IMPORT_STATE.value:
            return step.status in (StepStatus.PENDING_OPERATOR.value, StepStatus.RUNNING.value)
        return False

    @staticmethod
    def _planned(
        resource: StackMigrationResource,
        configuration_id: str | None,
        source_bundle_hash: str | None,
        terraform_config_hash: str | None,
    ) -> PlannedStackMigration:
        def known_or_unknown(value: str | None) -> AttributeValue[str]:
            return AttributeValue.of(value) if value else AttributeValue.unknown()

        return PlannedStackMigration(
            name=resource.name,
            organization=resource.organization or "",
            project=resource.project or "",
            config_file_dir=resource.config_file_dir,
            terraform_config_dir=resource.terraform_config_dir,
            workspace_deployment_mapping=dict(resource.workspace_deployment_mapping),
            current_configuration_id=known_or_unknown(configuration_id),
            current_configuration_status=AttributeValue.unknown(),
            source_bundle_hash=known_or_unknown(source_bundle_hash),
            terraform_config_hash=known_or_unknown(terraform_config_hash),
            migration_hash=AttributeValue.unknown(),
        )

    @staticmethod
    def _planned_from_state(
        state: StackMigrationState, resource: StackMigrationResource
    ) -> PlannedStackMigration:
        return PlannedStackMigration(
            name=state.name,
            organization=state.organization,
            project=state.project,
            config_file_dir=resource.config_file_dir,
            terraform_config_dir=resource.terraform_config_dir,
            workspace_deployment_mapping=dict(resource.workspace_deployment_mapping),
            current_configuration_id=AttributeValue.of(state.current_configuration_id),
            current_configuration_status=AttributeValue.of(state.current_configuration_status),
            source_bundle_hash=AttributeValue.of(state.source_bundle_hash),
            terraform_config_hash=AttributeValue.of(state.terraform_config_hash),
            migration_hash=AttributeValue.of(state.migration_hash),
        )

    def _planned_for_retry(
        self, state: StackMigrationState, resource: StackMigrationResource, configuration_id: str
    ) -> PlannedStackMigration:
        return replace(
            self._planned_from_state(state, resource),
            current_configuration_id=AttributeValue.of(configuration_id),
            migration_hash=AttributeValue.unknown(),
        )

    # Lifecycle: update

    async def update(
        self,
        resource: StackMigrationResource,
        state: StackMigrationState,
        plan: PlanResult,
    ) -> tuple[StackMigrationState, Diagnostics]:
        """Apply the strategy chosen by ``modify_plan``."""
        diagnostics = Diagnostics()
        strategy = plan.strategy
        if strategy is None:
            diagnostics.add_error("No Update Strategy", "Planning did not produce an update strategy.")
            return state, diagnostics

        resource, validation_diagnostics = self.validate(resource)
        if validation_diagnostics.has_error():
            return state, validation_diagnostics

        if isinstance(strategy, NoAction):
            self.logger.info("No changes to apply", stack=state.name, reason=strategy.reason)
            return state, diagnostics

        if isinstance(strategy, WaitForCompletion):
            diagnostics.add_error(strategy.summary, strategy.detail)
            return state, diagnostics

        if isinstance(strategy, RequiresReplace):
            diagnostics.add_error(
                "Resource Requires Replacement",
                f"{strategy.describe()}. No remote changes were made.",
            )
            return state, diagnostics

        try:
            target = await self.validation.check_preconditions(self._require_client(), resource)
        except PreconditionError as e:
            diagnostics.add_exception(e)
            return state, diagnostics

        if isinstance(strategy, ApplyNewConfiguration):
            self.logger.info("Applying new stack configuration", stack_id=target.stack.id, reason=strategy.reason)
            new_state, apply_diagnostics = await self.apply_stack_configuration(
                resource, target, upload_new_config=True, retry_abandoned=False
            )
        else:
            self.logger.info(
                "Retrying failed deployments",
                stack_id=target.stack.id,
                workspaces=sorted(strategy.workspaces),
            )
            new_state, apply_diagnostics = await self.apply_stack_configuration(
                resource,
                target,
                upload_new_config=False,
                retry_abandoned=True,
                workspaces=strategy.workspaces,
            )

        diagnostics.extend(apply_diagnostics)
        return (new_state or state), diagnostics

    # Lifecycle: delete

    def delete(self, state: StackMigrationState | None) -> Diagnostics:
        """Destroy is a warning-only no-op on the remote."""
        diagnostics = Diagnostics()
        self.logger.warning(DESTROY_NOT_SUPPORTED, stack=state.name if state else None)
        diagnostics.add_warning(DESTROY_NOT_SUPPORTED, DESTROY_NOT_SUPPORTED_DETAIL)
        return diagnostics

    # Apply

    async def apply_stack_configuration(
        self,
        resource: StackMigrationResource,
        target: RemoteTarget,
        upload_new_config: bool,
        retry_abandoned: bool,
        workspaces: frozenset[str] | None = None,
    ) -> tuple[StackMigrationState | None, Diagnostics]:
        """Upload or sync the configuration, wait for it and migrate workspace state.

        Args:
            resource: Validated declaration
            target: Remote target resolved by the preconditions
            upload_new_config: Upload a new source bundle instead of syncing the latest one
            retry_abandoned: Rerun abandoned deployment groups
            workspaces: Restrict drivers to these workspaces; the rest is refreshed read-only

        Returns:
            Tuple of (state, diagnostics). State is None when no configuration was resolved.
        """
        diagnostics = Diagnostics()
        client = self._require_client()
        stack = target.stack
        log = self.logger.bind(stack_id=stack.id, stack=stack.name)

        # Step 1: Terraform configuration hash
        try:
            terraform_config_hash = await hash_directory_async(resource.terraform_config_dir)
        except FingerprintError as e:
            diagnostics.add_error(CONFIG_HASH_ERROR_SUMMARY, _config_hash_error(resource.terraform_config_dir, e))
            return None, diagnostics

        # Step 2: Upload a new source bundle or sync the latest configuration
        try:
            if upload_new_config:
                if not await allow_source_bundle_upload(client, stack.latest_stack_configuration):
                    raise RemoteConflictError(
                        "Source Bundle Upload Is Requested But Is Not Allowed",
                        f"The latest stack configuration of stack {stack.name!r} is still rolling out. "
                        "Wait for it to reach a terminal status before uploading a new source bundle.",
                    )
                source_bundle_hash = await hash_directory_async(resource.config_file_dir)
                configuration_id = await client.upload_stack_configuration(stack.id, resource.config_file_dir)
            else:
                latest = stack.latest_stack_configuration
                if latest is None or not latest.id:
                    diagnostics.add_error(
                        "Stack Configuration cannot be nil",
                        "The latest stack configuration is nil. Please ensure the stack has a "
                        "configuration before proceeding.",
                    )
                    return None, diagnostics
                configuration_id = latest.id
                source_bundle_hash = await hash_directory_async(resource.config_file_dir)
        except FingerprintError as e:
            diagnostics.add_error(CONFIG_HASH_ERROR_SUMMARY, _config_hash_error(resource.config_file_dir, e))
            return None, diagnostics
        except RemoteConflictError as e:
            diagnostics.add_exception(e)
            return None, diagnostics
        except (TfeApiError, ArchiveError) as e:
            diagnostics.add_error(
                "Error Uploading Stack Configuration",
                f"Failed to upload the stack configuration files from directory "
                f"{resource.config_file_dir!r}, err: {e}",
            )
            return None, diagnostics

        # Step 3: Wait for the configuration to become terminal
        status = await ConfigurationWatcher(client, self.settings).watch(configuration_id)

        state = StackMigrationState(
            name=stack.name,
            organization=target.organization.name,
            project=target.project.name,
            config_file_dir=resource.config_file_dir,
            terraform_config_dir=resource.terraform_config_dir,
            workspace_deployment_mapping=dict(resource.workspace_deployment_mapping),
            current_configuration_id=configuration_id,
            current_configuration_status=str(status),
            source_bundle_hash=source_bundle_hash,
            terraform_config_hash=terraform_config_hash,
        )

        # Step 4: Surface remote diagnostics of a failed configuration
        if status is ConfigurationStatus.FAILED:
            await self._add_stack_diagnostics(configuration_id, diagnostics)
            return state, diagnostics

        # Step 5: Only a completed configuration accepts state
        if status is not ConfigurationStatus.COMPLETED:
            diagnostics.add_warning(
                "Stack Configuration Status Not Ready for State Upload",
                f"Stack configuration {configuration_id} is {status}. State upload is skipped; "
                "apply again once the configuration has completed.",
            )
            return state, diagnostics

        # Step 6: Drive the deployments
        mapping = resource.workspace_deployment_mapping
        selected = {ws: dep for ws, dep in mapping.items() if workspaces is None or ws in workspaces}
        driver = DeploymentDriver(
            client,
            self.settings,
            organization=target.organization.name,
            stack_id=stack.id,
            stack_name=stack.name,
            config_file_dir=resource.config_file_dir,
            terraform_config_dir=resource.terraform_config_dir,
            declarations=target.declarations,
            resource_address_map=resource.resource_address_map,
            module_address_map=resource.module_address_map,
            converter_factory=self._converter_factory_for(resource),
        )
        migration_data = await driver.migrate_all(selected, retry_abandoned=retry_abandoned)

        untouched = {ws: dep for ws, dep in mapping.items() if ws not in selected}
        if untouched:
            migration_data.update(
                await MigrationHashService(client).generate_migration_data(
                    target.organization.name, stack.id, untouched
                )
            )

        # Step 7: Fingerprint the outcome
        try:
            state.migration_hash = MigrationHashService.migration_hash(migration_data)
        except FingerprintError as e:
            diagnostics.add_error("Error calculating migration hash", f"Failed to calculate migration hash: {e}")
            return state, diagnostics
        state.migration_data = {ws: migration_data[ws] for ws in sorted(migration_data)}

        failures = sorted(ws for ws, data in migration_data.items() if data.failure_reason)
        log.info(
            "Stack migration applied",
            configuration_id=configuration_id,
            migration_hash=state.migration_hash,
            failed_workspaces=failures,
        )
        diagnostics.add_warning("Migration Data Retrieved", _pretty_migration_data(state.migration_data))
        return state, diagnostics

    def _converter_factory_for(self, resource: StackMigrationResource) -> Callable[[], StateConverter] | None:
        if self.converter_factory is None:
            return None
        factory = self.converter_factory
        return lambda: factory(resource.config_file_dir, resource.terraform_config_dir)

    async def _add_stack_diagnostics(self, configuration_id: str, diagnostics: Diagnostics) -> None:
        try:
            remote_diagnostics = await self._require_client().read_stack_diagnostics(configuration_id)
        except TfeApiError as e:
            diagnostics.add_error(
                "Error Reading Stack Diagnostics",
                f"Stack configuration {configuration_id} failed and its diagnostics could not be read: {e}",
            )
            return

        if not remote_diagnostics:
            diagnostics.add_error(
                "Stack Configuration Failed",
                f"Stack configuration {configuration_id} failed without reporting diagnostics.",
            )
            return
        for item in remote_diagnostics:
            if item.severity == Severity.WARNING.value:
                diagnostics.add_warning(item.summary, item.detail)
            else:
                diagnostics.add_error(item.summary, item.detail)
        if not diagnostics.has_error():
            diagnostics.add_error(
                "Stack Configuration Failed",
                f"Stack configuration {configuration_id} failed.",
            )

