"""HCP Terraform API resource models parsed from JSON:API documents."""

from datetime import datetime
from typing import Any

from pydantic import Field

from .base import MigrationModel
from .enums import ConfigurationStatus, DeploymentGroupStatus


def _relationship_id(resource: dict[str, Any], name: str) -> str | None:
    """Return the related object id of a to-one relationship, if any."""
    data = (resource.get("relationships") or {}).get(name, {}).get("data")
    if isinstance(data, dict):
        return data.get("id")
    return None


class Organization(MigrationModel):
    """HCP Terraform organization."""

    name: str
    external_id: str | None = None

    @classmethod
    def from_jsonapi(cls, resource: dict[str, Any]) -> "Organization":
        attributes = resource.get("attributes", {})
        return cls(name=attributes.get("name") or resource["id"], external_id=attributes.get("external-id"))


class Project(MigrationModel):
    """Project inside an organization."""

    id: str
    name: str

    @classmethod
    def from_jsonapi(cls, resource: dict[str, Any]) -> "Project":
        return cls(id=resource["id"], name=resource.get("attributes", {}).get("name", ""))


class Workspace(MigrationModel):
    """Community workspace whose state is migrated."""

    id: str
    name: str
    locked: bool = False

    @classmethod
    def from_jsonapi(cls, resource: dict[str, Any]) -> "Workspace":
        attributes = resource.get("attributes", {})
        return cls(id=resource["id"], name=attributes.get("name", ""), locked=bool(attributes.get("locked")))


class StackConfiguration(MigrationModel):
    """A single uploaded source bundle and its rollout status."""

    id: str
    status: ConfigurationStatus = ConfigurationStatus.PENDING

    @classmethod
    def from_jsonapi(cls, resource: dict[str, Any]) -> "StackConfiguration":
        status = ConfigurationStatus.parse(resource.get("attributes", {}).get("status"))
        return cls(id=resource["id"], status=status)


class Stack(MigrationModel):
    """Remote stack target."""

    id: str
    name: str
    vcs_repo: dict[str, Any] | None = None
    latest_stack_configuration: StackConfiguration | None = None

    @classmethod
    def from_jsonapi(
        cls, resource: dict[str, Any], included: list[dict[str, Any]] | None = None
    ) -> "Stack":
        attributes = resource.get("attributes", {})
        latest: StackConfiguration | None = None
        latest_id = _relationship_id(resource, "latest-stack-configuration")
        if latest_id:
            match = next(
                (
                    item
                    for item in included or []
                    if item.get("type") == "stack-configurations" and item.get("id") == latest_id
                ),
                None,
            )
            latest = StackConfiguration.from_jsonapi(match) if match else StackConfiguration(id=latest_id)
        return cls(
            id=resource["id"],
            name=attributes.get("name", ""),
            vcs_repo=attributes.get("vcs-repo") or None,
            latest_stack_configuration=latest,
        )


class DeploymentGroup(MigrationModel):
    """A batched rollout unit inside a configuration."""

    id: str
    name: str = ""
    status: DeploymentGroupStatus = DeploymentGroupStatus.PENDING

    @classmethod
    def from_jsonapi(cls, resource: dict[str, Any]) -> "DeploymentGroup":
        attributes = resource.get("attributes", {})
        return cls(
            id=resource["id"],
            name=attributes.get("name", ""),
            status=DeploymentGroupStatus.parse(attributes.get("status")),
        )


class DeploymentRun(MigrationModel):
    """One execution attempt of a deployment within a group."""

    id: str
    deployment_name: str
    status: str | None = None
    created_at: datetime | None = None
    group_id: str | None = None
    configuration_id: str | None = None
    current_step_id: str | None = None
    group: DeploymentGroup | None = None

    @classmethod
    def from_jsonapi(
        cls, resource: dict[str, Any], included: list[dict[str, Any]] | None = None
    ) -> "DeploymentRun":
        attributes = resource.get("attributes", {})
        group_id = _relationship_id(resource, "stack-deployment-group")
        group = None
        if group_id:
            match = next(
                (
                    item
                    for item in included or []
                    if item.get("type") == "stack-deployment-groups" and item.get("id") == group_id
                ),
                None,
            )
            if match:
                group = DeploymentGroup.from_jsonapi(match)
        return cls(
            id=resource["id"],
            deployment_name=attributes.get("deployment", ""),
            status=attributes.get("status"),
            created_at=attributes.get("created-at"),
            group_id=group_id,
            configuration_id=_relationship_id(resource, "stack-configuration"),
            current_step_id=_relationship_id(resource, "current-step"),
            group=group,
        )


class DeploymentRunStep(MigrationModel):
    """Step in the remote deployment run state machine."""

    id: str
    operation_type: str
    status: str
    requires_state_lock: bool = False
    links: dict[str, Any] = Field(default_factory=dict)

    @property
    def upload_url(self) -> str | None:
        url = self.links.get("upload-url")
        return url or None

    @classmethod
    def from_jsonapi(cls, resource: dict[str, Any]) -> "DeploymentRunStep":
        attributes = resource.get("attributes", {})
        return cls(
            id=resource["id"],
            operation_type=attributes.get("operation-type", ""),
            status=attributes.get("status", ""),
            requires_state_lock=bool(attributes.get("requires-state-lock")),
            links=resource.get("links") or {},
        )


class StateVersion(MigrationModel):
    """Current state version of a workspace."""

    id: str
    download_url: str

    @classmethod
    def from_jsonapi(cls, resource: dict[str, Any]) -> "StateVersion":
        attributes = resource.get("attributes", {})
        return cls(
            id=resource["id"],
            download_url=attributes.get("hosted-state-download-url") or "",
        )


class StackDiagnostic(MigrationModel):
    """Diagnostic reported by the remote for a stack configuration."""

    id: str
    severity: str = "error"
    summary: str = ""
    detail: str = ""

    @classmethod
    def from_jsonapi(cls, resource: dict[str, Any]) -> "StackDiagnostic":
        attributes = resource.get("attributes", {})
        return cls(
            id=resource["id"],
            severity=attributes.get("severity", "error"),
            summary=attributes.get("summary", ""),
            detail=attributes.get("detail", ""),
        )
