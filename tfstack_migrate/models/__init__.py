"""Data models for stack migration."""

from .api import (  # noqa: F401
    DeploymentGroup,
    DeploymentRun,
    DeploymentRunStep,
    Organization,
    Project,
    Stack,
    StackConfiguration,
    StackDiagnostic,
    StateVersion,
    Workspace,
)
from .attributes import (  # noqa: F401
    AttributeValue,
    PlannedStackMigration,
    Presence,
    StackMigrationResource,
    StackMigrationState,
)
from .diagnostics import Diagnostic, Diagnostics  # noqa: F401
from .enums import (  # noqa: F401
    ConfigurationStatus,
    DeploymentGroupStatus,
    Severity,
    StepOperation,
    StepStatus,
    UpdateStrategyKind,
)
from .migration import DeploymentGroupData, StackMigrationData  # noqa: F401

__all__ = [
    # Remote API models
    "DeploymentGroup",
    "DeploymentRun",
    "DeploymentRunStep",
    "Organization",
    "Project",
    "Stack",
    "StackConfiguration",
    "StackDiagnostic",
    "StateVersion",
    "Workspace",
    # Attribute models
    "AttributeValue",
    "PlannedStackMigration",
    "Presence",
    "StackMigrationResource",
    "StackMigrationState",
    # Diagnostics
    "Diagnostic",
    "Diagnostics",
    # Enums
    "ConfigurationStatus",
    "DeploymentGroupStatus",
    "Severity",
    "StepOperation",
    "StepStatus",
    "UpdateStrategyKind",
    # Migration data
    "DeploymentGroupData",
    "StackMigrationData",
]
