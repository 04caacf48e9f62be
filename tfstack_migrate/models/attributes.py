"""Declared, planned and persisted attribute models of a stack migration."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

from .base import MigrationModel
from .migration import StackMigrationData

T = TypeVar("T")


class Presence(Enum):
    """Presence of an optional attribute value."""

    MISSING = "missing"
    UNKNOWN = "unknown"
    PRESENT = "present"


@dataclass(frozen=True)
class AttributeValue(Generic[T]):
    """Three-valued attribute wrapper: Missing, Unknown (known after apply) or Present."""

    presence: Presence
    value: T | None = None

    @classmethod
    def missing(cls) -> "AttributeValue[T]":
        return cls(Presence.MISSING)

    @classmethod
    def unknown(cls) -> "AttributeValue[T]":
        return cls(Presence.UNKNOWN)

    @classmethod
    def of(cls, value: T | None) -> "AttributeValue[T]":
        """Wrap a value; None and empty strings are treated as missing."""
        if value is None or value == "":
            return cls(Presence.MISSING)
        return cls(Presence.PRESENT, value)

    @property
    def is_unknown(self) -> bool:
        return self.presence is Presence.UNKNOWN

    @property
    def is_present(self) -> bool:
        return self.presence is Presence.PRESENT

    def render(self) -> str:
        if self.presence is Presence.UNKNOWN:
            return "(known after apply)"
        if self.presence is Presence.MISSING:
            return "(null)"
        return str(self.value)


class StackMigrationResource(BaseModel):
    """User declaration of a workspace to stack migration."""

    name: str
    organization: str | None = None
    project: str | None = None
    config_file_dir: str
    terraform_config_dir: str
    workspace_deployment_mapping: dict[str, str] = Field(default_factory=dict)
    resource_address_map: dict[str, str] | None = None
    module_address_map: dict[str, str] | None = None

    def with_defaults(self, organization: str | None, project: str | None) -> "StackMigrationResource":
        """Fill organization and project from environment defaults when not declared."""
        return self.model_copy(
            update={
                "organization": self.organization or organization,
                "project": self.project or project,
            }
        )

    @property
    def deployment_names(self) -> list[str]:
        return list(self.workspace_deployment_mapping.values())


class StackMigrationState(MigrationModel):
    """Persisted attribute set of a stack migration."""

    name: str
    organization: str
    project: str
    config_file_dir: str
    terraform_config_dir: str
    workspace_deployment_mapping: dict[str, str] = Field(default_factory=dict)
    current_configuration_id: str | None = None
    current_configuration_status: str | None = None
    source_bundle_hash: str | None = None
    terraform_config_hash: str | None = None
    migration_hash: str | None = None
    migration_data: dict[str, StackMigrationData] = Field(default_factory=dict)

    def missing_attributes(self) -> list[str]:
        """Names of persisted attributes that are empty."""
        required = (
            "config_file_dir",
            "current_configuration_id",
            "current_configuration_status",
            "migration_hash",
            "source_bundle_hash",
            "terraform_config_dir",
            "terraform_config_hash",
        )
        missing = [name for name in required if not getattr(self, name)]
        if not self.workspace_deployment_mapping:
            missing.append("workspace_deployment_mapping")
        return missing

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


@dataclass(frozen=True)
class PlannedStackMigration:
    """Attribute values a plan expects after apply."""

    name: str
    organization: str
    project: str
    config_file_dir: str
    terraform_config_dir: str
    workspace_deployment_mapping: dict[str, str]
    current_configuration_id: AttributeValue[str]
    current_configuration_status: AttributeValue[str]
    source_bundle_hash: AttributeValue[str]
    terraform_config_hash: AttributeValue[str]
    migration_hash: AttributeValue[str]

    def render(self) -> dict[str, str]:
        return {
            "name": self.name,
            "organization": self.organization,
            "project": self.project,
            "config_file_dir": self.config_file_dir,
            "terraform_config_dir": self.terraform_config_dir,
            "current_configuration_id": self.current_configuration_id.render(),
            "current_configuration_status": self.current_configuration_status.render(),
            "source_bundle_hash": self.source_bundle_hash.render(),
            "terraform_config_hash": self.terraform_config_hash.render(),
            "migration_hash": self.migration_hash.render(),
        }
