"""Enum definitions for stack migration."""

from enum import Enum
from typing import Literal

# Type aliases
SeverityLiteral = Literal["error", "warning"]


class ConfigurationStatus(Enum):
    """Status of an uploaded stack configuration."""

    PENDING = "pending"
    QUEUED = "queued"
    PREPARING = "preparing"
    CONVERGING = "converging"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"

    @classmethod
    def parse(cls, value: str | None) -> "ConfigurationStatus":
        """Map an API status string onto a status, folding legacy names.

        Null and unrecognized values read as Pending so callers keep polling.
        """
        if not value:
            return cls.PENDING
        value = value.lower()
        legacy = {
            "converged": cls.COMPLETED,
            "errored": cls.FAILED,
            "enqueueing": cls.QUEUED,
        }
        if value in legacy:
            return legacy[value]
        try:
            return cls(value)
        except ValueError:
            return cls.PENDING

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_CONFIGURATION_STATUSES

    @property
    def is_running(self) -> bool:
        return self in RUNNING_CONFIGURATION_STATUSES

    def __str__(self) -> str:
        return self.value


TERMINAL_CONFIGURATION_STATUSES = frozenset(
    {ConfigurationStatus.COMPLETED, ConfigurationStatus.FAILED, ConfigurationStatus.CANCELED}
)
RUNNING_CONFIGURATION_STATUSES = frozenset(
    {
        ConfigurationStatus.PENDING,
        ConfigurationStatus.QUEUED,
        ConfigurationStatus.PREPARING,
        ConfigurationStatus.CONVERGING,
    }
)
ERRORED_OR_CANCELED_CONFIGURATION_STATUSES = frozenset(
    {ConfigurationStatus.FAILED, ConfigurationStatus.CANCELED}
)


class DeploymentGroupStatus(Enum):
    """Status of a deployment group."""

    PENDING = "pending"
    DEPLOYING = "deploying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABANDONED = "abandoned"

    @classmethod
    def parse(cls, value: str | None) -> "DeploymentGroupStatus":
        """Map an API status string onto a status; null or unknown reads as Pending."""
        try:
            return cls((value or "pending").lower())
        except ValueError:
            return cls.PENDING

    @property
    def is_running(self) -> bool:
        return self in (DeploymentGroupStatus.PENDING, DeploymentGroupStatus.DEPLOYING)

    @property
    def is_failed(self) -> bool:
        return self in (DeploymentGroupStatus.FAILED, DeploymentGroupStatus.ABANDONED)

    def __str__(self) -> str:
        return self.value


class StepOperation(Enum):
    """Operation type of a deployment run step."""

    ALLOW_IMPORT = "allow-import"
    IMPORT_STATE = "import-state"
    PLAN = "plan"
    APPLY = "apply"


class StepStatus(Enum):
    """Status of a deployment run step."""

    PENDING_OPERATOR = "pending_operator"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class Severity(Enum):
    """Diagnostic severity."""

    ERROR = "error"
    WARNING = "warning"


class UpdateStrategyKind(Enum):
    """Update strategies chosen while planning a stack migration."""

    REQUIRES_REPLACE = "requires_replace"
    APPLY_NEW_CONFIGURATION = "apply_new_configuration"
    RETRY_FAILED_DEPLOYMENTS = "retry_failed_deployments"
    NO_ACTION = "no_action"
    WAIT_FOR_COMPLETION = "wait_for_completion"
