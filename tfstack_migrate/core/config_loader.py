"""Declaration and credential loading for stack migrations."""

import asyncio
import json
import os
from pathlib import Path
from typing import Any

import structlog
import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from ..models.attributes import StackMigrationResource
from .exceptions import ConfigurationError

logger = structlog.get_logger()

DEFAULT_DECLARATION_FILE = "stack_migration.yml"
DECLARATION_KEY = "stack_migration"
CREDENTIALS_FILE = Path(".terraform.d") / "credentials.tfrc.json"


def load_config(config_path: str | None = None) -> StackMigrationResource:
    """Load a stack migration declaration (synchronous interface).

    Args:
        config_path: Optional path to the YAML declaration

    Returns:
        Parsed declaration

    Note:
        For async code, use load_config_async() instead.
    """
    try:
        asyncio.get_running_loop()
        raise RuntimeError(
            "load_config() cannot be called from within an async context. "
            "Use 'await load_config_async()' instead."
        )
    except RuntimeError as e:
        if "no running event loop" in str(e).lower():
            return asyncio.run(load_config_async(config_path))
        raise


async def load_config_async(config_path: str | None = None) -> StackMigrationResource:
    """Load a stack migration declaration (async interface).

    Args:
        config_path: Optional path to the YAML declaration

    Returns:
        Parsed declaration

    Raises:
        ConfigurationError: If the file is missing, malformed or invalid
    """
    load_dotenv()

    path = Path(config_path or os.getenv("TF_MIGRATE_DECLARATION", DEFAULT_DECLARATION_FILE))
    if not path.exists():
        raise ConfigurationError(f"Declaration file not found: {path}")

    yaml_config = await _load_yaml_config(path)
    declaration = yaml_config.get(DECLARATION_KEY)
    if not isinstance(declaration, dict):
        raise ConfigurationError(f"{path} has no '{DECLARATION_KEY}' section")

    try:
        resource = StackMigrationResource(**declaration)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid declaration in {path}: {e}") from e

    logger.debug("Declaration loaded", path=str(path), stack=resource.name)
    return resource


async def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """Load YAML declaration file."""
    try:
        content = await asyncio.to_thread(config_path.read_text)
        loaded = yaml.safe_load(content)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to load config from {config_path}: {e}") from e
    if not isinstance(loaded, dict):
        return {}
    return loaded


def read_credentials_token(hostname: str, home: Path | None = None) -> str | None:
    """Read the API token for a host from the Terraform CLI credentials file.

    Args:
        hostname: Host whose ``credentials.<hostname>.token`` entry is read
        home: Home directory override

    Returns:
        The token, or None when the file or entry is absent
    """
    path = (home or Path.home()) / CREDENTIALS_FILE
    if not path.is_file():
        return None
    try:
        document = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Failed to read credentials file {path}: {e}") from e

    token = (document.get("credentials") or {}).get(hostname, {}).get("token")
    return token or None
