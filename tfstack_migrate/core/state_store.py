"""JSON persistence of the stack migration state."""

import json
import os
import tempfile
from pathlib import Path

import structlog
from pydantic import ValidationError

from ..models.attributes import StackMigrationState
from .exceptions import ConfigurationError

logger = structlog.get_logger()

DEFAULT_STATE_FILE = "stack_migration.state.json"


class StateStore:
    """Reads and writes the state file as sorted-key JSON.

    Writes go through a temp file and ``os.replace`` so an interrupted apply
    never leaves a truncated state behind.
    """

    def __init__(self, path: str | Path = DEFAULT_STATE_FILE):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> StackMigrationState | None:
        """Return the stored state, or None when no state file exists."""
        if not self.exists():
            return None
        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
            return StackMigrationState.model_validate(document)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise ConfigurationError(f"Failed to read state file {self.path}: {e}") from e

    @staticmethod
    def serialize(state: StackMigrationState) -> str:
        return json.dumps(state.to_document(), indent=2, sort_keys=True) + "\n"

    def save(self, state: StackMigrationState) -> None:
        content = self.serialize(state)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".tfstack-migrate-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
            os.replace(temp_path, self.path)
        except OSError as e:
            Path(temp_path).unlink(missing_ok=True)
            raise ConfigurationError(f"Failed to write state file {self.path}: {e}") from e
        logger.debug("State saved", path=str(self.path))

    def delete(self) -> bool:
        """Remove the state file; returns whether one existed."""
        if not self.exists():
            return False
        self.path.unlink()
        logger.info("State removed", path=str(self.path))
        return True
