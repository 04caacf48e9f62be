"""
Archive utilities for stack source bundle uploads.

The source bundle is packed as an in-memory tar.gz of the configuration
directory. Paths are stored relative to the directory root.
"""

import asyncio
import fnmatch
import io
import tarfile
from pathlib import Path

import structlog

from .exceptions import StackMigrationError

logger = structlog.get_logger()


class ArchiveError(StackMigrationError):
    """Archive operation failed."""


class SourceBundleArchiver:
    """Packs a stack configuration directory into a tar.gz payload."""

    # Never shipped to the remote
    DEFAULT_EXCLUSIONS = [
        ".git/",
        ".terraform/",
        "*.tfstate",
        "*.tfstate.backup",
        ".DS_Store",
    ]

    def __init__(self, exclusions: list[str] | None = None):
        self.exclusions = self.DEFAULT_EXCLUSIONS if exclusions is None else exclusions

    def _is_excluded(self, relative: str) -> bool:
        parts = relative.split("/")
        for pattern in self.exclusions:
            if pattern.endswith("/"):
                if pattern.rstrip("/") in parts[:-1] or relative == pattern.rstrip("/"):
                    return True
            elif fnmatch.fnmatch(parts[-1], pattern):
                return True
        return False

    def pack(self, directory: str | Path) -> bytes:
        """Create the tar.gz payload for a directory.

        Args:
            directory: Configuration directory to pack

        Returns:
            Compressed archive bytes

        Raises:
            ArchiveError: If the directory is missing or unreadable
        """
        root = Path(directory)
        if not root.is_dir():
            raise ArchiveError(f"Source bundle directory does not exist: {directory}")

        buffer = io.BytesIO()
        file_count = 0
        try:
            with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
                for path in sorted(root.rglob("*")):
                    relative = path.relative_to(root).as_posix()
                    if self._is_excluded(relative) or not path.is_file():
                        continue
                    tar.add(path, arcname=relative, recursive=False)
                    file_count += 1
        except (OSError, tarfile.TarError) as e:
            raise ArchiveError(f"Failed to pack source bundle {directory}: {e}") from e

        payload = buffer.getvalue()
        logger.info(
            "Source bundle packed",
            directory=str(root),
            files=file_count,
            size_bytes=len(payload),
        )
        return payload

    async def pack_async(self, directory: str | Path) -> bytes:
        return await asyncio.to_thread(self.pack, directory)
