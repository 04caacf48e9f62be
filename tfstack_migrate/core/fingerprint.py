"""Deterministic fingerprints of configuration directories and migration snapshots."""

import asyncio
import hashlib
import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import structlog

from .exceptions import FingerprintError

logger = structlog.get_logger()

HASH_LENGTH = 32  # Hex characters kept in state
READ_CHUNK_SIZE = 64 * 1024


def _iter_files(root: Path) -> list[Path]:
    """All regular files under root, ordered by their POSIX relative path."""
    files = [path for path in root.rglob("*") if path.is_file()]
    return sorted(files, key=lambda path: path.relative_to(root).as_posix())


def hash_directory(directory: str | Path) -> str:
    """Hash the relative path and byte content of every file under a directory.

    Line endings are not normalized and nothing is ignored, so any change to a
    file name or a single byte of content produces a different hash.

    Args:
        directory: Absolute path of the directory to fingerprint

    Returns:
        First 32 hex characters of the SHA-256 digest

    Raises:
        FingerprintError: If the directory is missing or a file cannot be read
    """
    root = Path(directory)
    if not root.is_dir():
        raise FingerprintError(f"Cannot hash {directory}: not a directory")

    digest = hashlib.sha256()
    try:
        for path in _iter_files(root):
            relative = path.relative_to(root).as_posix().encode("utf-8")
            # Length prefixes keep path/content boundaries unambiguous
            digest.update(len(relative).to_bytes(8, "big"))
            digest.update(relative)
            digest.update(path.stat().st_size.to_bytes(8, "big"))
            with path.open("rb") as handle:
                while chunk := handle.read(READ_CHUNK_SIZE):
                    digest.update(chunk)
    except OSError as e:
        raise FingerprintError(f"Failed to hash directory {directory}: {e}") from e

    fingerprint = digest.hexdigest()[:HASH_LENGTH]
    logger.debug("Directory hashed", directory=str(root), hash=fingerprint)
    return fingerprint


async def hash_directory_async(directory: str | Path) -> str:
    """Hash a directory without blocking the event loop."""
    return await asyncio.to_thread(hash_directory, directory)


def canonical_migration_payload(migration_data: Mapping[str, Any]) -> dict[str, Any]:
    """Reduce per-workspace migration data to the fields that enter the hash.

    Accepts either ``StackMigrationData`` models or plain dicts keyed by
    workspace name.
    """
    payload: dict[str, Any] = {}
    for workspace, data in migration_data.items():
        if hasattr(data, "model_dump"):
            data = data.model_dump(mode="json")
        group = data.get("deployment_group") or {}
        payload[workspace] = {
            "deployment_name": data.get("deployment_name"),
            "deployment_group": {"id": group.get("id"), "status": group.get("status")},
        }
    return payload


def hash_migration_data(migration_data: Mapping[str, Any]) -> str:
    """Hash a per-workspace migration snapshot in sorted-key canonical form.

    Raises:
        FingerprintError: If the snapshot is empty or cannot be serialized
    """
    if not migration_data:
        raise FingerprintError("Cannot hash empty migration data")
    try:
        canonical = json.dumps(
            canonical_migration_payload(migration_data),
            sort_keys=True,
            separators=(",", ":"),
        )
    except (TypeError, ValueError) as e:
        raise FingerprintError(f"Failed to serialize migration data: {e}") from e
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:HASH_LENGTH]
