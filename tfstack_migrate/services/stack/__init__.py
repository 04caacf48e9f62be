"""
Stack Migration Modules

Stack migration split into focused, single-responsibility modules:
- validation: Attribute validation and remote preconditions
- watcher: Stack configuration terminal-status polling
- plan: Update strategies and the pure parts of the planning decision
- conversion_metadata: Address maps for state conversion
- migration_hash: Read-only migration snapshots and their fingerprint
- deployment_driver: Per-workspace deployment run driving and state upload
- migration_orchestrator: Lifecycle controller coordinating the modules above

The StackMigrationController is the entry point used by the command line.
"""

from .deployment_driver import DeploymentDriver
from .migration_hash import MigrationHashService
from .migration_orchestrator import StackMigrationController
from .validation import StackMigrationValidation
from .watcher import ConfigurationWatcher

__all__ = [
    "StackMigrationValidation",
    "ConfigurationWatcher",
    "MigrationHashService",
    "DeploymentDriver",
    "StackMigrationController",
]
