"""
Stack Migration Validation Module

Attribute validation for stack migration declarations and the fail-fast
preconditions checked against HCP Terraform before any remote mutation.
"""

import re
from dataclasses import dataclass
from pathlib import Path

import structlog

from ...core.exceptions import (
    ConfigurationError,
    PreconditionError,
    RemoteConflictError,
    TfeApiError,
)
from ...core.stack_config_parser import DeploymentDeclarations, StackConfigParser
from ...models.api import Organization, Project, Stack
from ...models.attributes import StackMigrationResource
from ...models.diagnostics import Diagnostics
from ..tfe_client import TfeClient

_CHARSET_HINT = (
    "may contain valid characters including ASCII letters, numbers, spaces, "
    "as well as dashes (-), and underscores (_)."
)

STACK_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9 _-]{1,90}$")
ORGANIZATION_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9 _-]{3,40}$")
PROJECT_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9 _-]{3,40}$")
WORKSPACE_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9 _-]{1,260}$")
DEPLOYMENT_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9 _-]{1,90}$")

STACK_NAME_MESSAGE = f"The stack name must be between 1 and 90 characters long and {_CHARSET_HINT}"
ORGANIZATION_NAME_MESSAGE = f"The organization name must be between 3 and 40 characters long and {_CHARSET_HINT}"
PROJECT_NAME_MESSAGE = f"The project name must be between 3 and 40 characters long and {_CHARSET_HINT}"
WORKSPACE_NAME_MESSAGE = f"The workspace name must be between 1 and 260 characters long and {_CHARSET_HINT}"
DEPLOYMENT_NAME_MESSAGE = f"The deployment name must be between 1 and 90 characters long and {_CHARSET_HINT}"


@dataclass
class RemoteTarget:
    """Organization, project and stack resolved by the preconditions."""

    organization: Organization
    project: Project
    stack: Stack
    declarations: DeploymentDeclarations


class StackMigrationValidation:
    """Attribute validation and precondition checks for stack migrations."""

    def __init__(self):
        self.logger = structlog.get_logger().bind(component="stack_validation")

    def validate_attributes(
        self,
        resource: StackMigrationResource,
        default_organization: str | None = None,
        default_project: str | None = None,
    ) -> tuple[StackMigrationResource, Diagnostics]:
        """Validate declared attributes and apply organization/project defaults.

        Args:
            resource: Declared migration
            default_organization: Value of TFE_ORGANIZATION
            default_project: Value of TFE_PROJECT

        Returns:
            Tuple of (resource with defaults applied, diagnostics)
        """
        diagnostics = Diagnostics()
        resource = resource.with_defaults(default_organization, default_project)

        if not STACK_NAME_PATTERN.match(resource.name or ""):
            diagnostics.add_error("Invalid Attribute Value", STACK_NAME_MESSAGE, attribute="name")

        if not resource.organization:
            diagnostics.add_error(
                "Invalid Organization Name",
                "The organization name cannot be null. Please provide a valid organization name "
                "or set the TFE_ORGANIZATION environment variable.",
                attribute="organization",
            )
        elif not ORGANIZATION_NAME_PATTERN.match(resource.organization):
            diagnostics.add_error("Invalid Attribute Value", ORGANIZATION_NAME_MESSAGE, attribute="organization")

        if not resource.project:
            diagnostics.add_error(
                "Invalid Project Name",
                "The project name cannot be null. Please provide a valid project name "
                "or set the TFE_PROJECT environment variable.",
                attribute="project",
            )
        elif not PROJECT_NAME_PATTERN.match(resource.project):
            diagnostics.add_error("Invalid Attribute Value", PROJECT_NAME_MESSAGE, attribute="project")

        self._validate_mapping(resource.workspace_deployment_mapping, diagnostics)

        for attribute in ("config_file_dir", "terraform_config_dir"):
            self._validate_directory(attribute, getattr(resource, attribute), diagnostics)

        if diagnostics.has_error():
            self.logger.warning(
                "Attribute validation failed",
                stack=resource.name,
                errors=len(diagnostics.errors),
            )
        return resource, diagnostics

    def _validate_mapping(self, mapping: dict[str, str], diagnostics: Diagnostics) -> None:
        attribute = "workspace_deployment_mapping"
        if not mapping:
            diagnostics.add_error(
                "Invalid Attribute Value",
                "The workspace_deployment_mapping must contain at least one workspace to deployment entry.",
                attribute=attribute,
            )
            return

        for workspace, deployment in mapping.items():
            if not WORKSPACE_NAME_PATTERN.match(workspace):
                diagnostics.add_error(
                    "Invalid Attribute Value", f"{WORKSPACE_NAME_MESSAGE} Got {workspace!r}.", attribute=attribute
                )
            if not DEPLOYMENT_NAME_PATTERN.match(deployment or ""):
                diagnostics.add_error(
                    "Invalid Attribute Value", f"{DEPLOYMENT_NAME_MESSAGE} Got {deployment!r}.", attribute=attribute
                )

    def _validate_directory(self, attribute: str, value: str | None, diagnostics: Diagnostics) -> None:
        if not value:
            diagnostics.add_error(
                f"Invalid value for attribute {attribute}",
                f"The path {attribute} cannot be null. Please provide a valid absolute path.",
                attribute=attribute,
            )
            return

        path = Path(value)
        if not path.is_absolute():
            diagnostics.add_error(
                "Invalid Path",
                f"The path {value!r} is not absolute. Please provide an absolute path.",
                attribute=attribute,
            )
        elif not path.exists():
            diagnostics.add_error(
                "Path Does Not Exist",
                f"The path {value!r} does not exist. Please provide a valid absolute path.",
                attribute=attribute,
            )
        elif not path.is_dir():
            diagnostics.add_error(
                "Path Is Not a Directory",
                f"The path {value!r} is not a directory. Please provide a valid absolute directory path.",
                attribute=attribute,
            )

    async def check_preconditions(
        self, client: TfeClient, resource: StackMigrationResource
    ) -> RemoteTarget:
        """Run the fail-fast preconditions of a mutating lifecycle call.

        Checks, in order: unique deployment names in the mapping, the
        organization, the project, the stack and its VCS binding, and the
        deployment names declared in the source bundle.

        Args:
            client: Open HCP Terraform client
            resource: Validated declaration with organization and project set

        Returns:
            Resolved remote target

        Raises:
            PreconditionError: On the first failed precondition
        """
        seen: set[str] = set()
        for deployment in resource.deployment_names:
            if deployment in seen:
                raise PreconditionError(
                    "Duplicate Deployment Name",
                    f"The deployment name {deployment!r} is duplicated in the migration map. "
                    "Each deployment name must be unique.",
                )
            seen.add(deployment)

        organization, project, stack = await self.read_remote_target(client, resource)

        try:
            declarations = StackConfigParser(resource.config_file_dir).read_deployments()
        except ConfigurationError as e:
            raise PreconditionError(
                "Error Reading deployment names from stack configuration directory",
                f"The stack configuration directory {resource.config_file_dir!r} does not contain "
                f"valid deployment names: {e}",
            ) from e

        if seen.symmetric_difference(declarations.names):
            raise PreconditionError(
                "Deployment names mismatch",
                f"The deployment names from the migration map {sorted(seen)} do not match the deployment "
                f"names in the stack configuration directory {resource.config_file_dir!r}: "
                f"{sorted(declarations.names)}",
            )

        self.logger.debug(
            "Preconditions passed",
            organization=organization.name,
            project=project.name,
            stack_id=stack.id,
        )
        return RemoteTarget(organization, project, stack, declarations)

    async def read_remote_target(
        self, client: TfeClient, resource: StackMigrationResource
    ) -> tuple[Organization, Project, Stack]:
        """Read the organization, project and non-VCS stack a migration targets.

        Raises:
            PreconditionError: If any of them is missing
            RemoteConflictError: If the stack is VCS backed
        """
        org_name = resource.organization or ""
        try:
            organization = await client.read_organization(org_name)
        except TfeApiError as e:
            raise PreconditionError(
                "Error Reading organization",
                f"The organization {org_name!r} does not exist or could not be accessed: {e}",
            ) from e

        try:
            project = await client.read_project(organization.name, resource.project or "")
        except TfeApiError as e:
            raise PreconditionError(
                "Error Reading project",
                f"The project {resource.project!r} does not exist or could not be accessed in "
                f"organization {organization.name!r}: {e}",
            ) from e

        try:
            stack = await client.read_stack(organization.name, project.id, resource.name)
        except TfeApiError as e:
            raise PreconditionError(
                "Error Reading stack",
                f"The stack {resource.name!r} does not exist or could not be accessed in organization "
                f"{organization.name!r} and project {project.name!r}: {e}",
            ) from e

        if stack.vcs_repo is not None:
            raise RemoteConflictError(
                "Migration to VCS backed stacks is not supported",
                f"The stack {stack.name!r} in organization {organization.name!r} and project "
                f"{project.name!r} is a VCS backed stack. Only non-VCS backed stacks can be "
                "migrated to.",
            )

        return organization, project, stack
