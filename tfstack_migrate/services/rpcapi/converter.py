"""Workspace state to stack state conversion over the RPC client."""

import asyncio
import os
import tempfile
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing, asynccontextmanager
from pathlib import Path

import structlog

from ...core.exceptions import ConversionError
from ...core.settings import StackMigrationSettings
from . import messages
from .client import AppliedChangeEvent, DiagnosticEvent, MigrationEvent, TerraformRPCClient

STACK_STATE_FORMAT_VERSION = 1
STACK_STATE_SUFFIX = "_stack_state.tfstackstate"

logger = structlog.get_logger()


def relative_source(path: str | Path, cwd: str | Path) -> str:
    """Express a path relative to cwd in the ``./``-prefixed form the RPC API expects."""
    relative = Path(os.path.relpath(path, cwd)).as_posix()
    if relative == ".":
        return "./"
    if relative.startswith("../"):
        return relative
    return f"./{relative}"


class StackStateAccumulator:
    """Merges ``AppliedChange`` events into a single ``StackState`` message."""

    def __init__(self):
        self.state = messages.StackState(format_version=STACK_STATE_FORMAT_VERSION)
        self.change_count = 0

    def add(self, event: MigrationEvent) -> None:
        """Merge one event.

        Raises:
            ConversionError: For any diagnostic event
        """
        if isinstance(event, DiagnosticEvent):
            raise ConversionError(f"Diagnostic: {event.summary}: {event.detail}" if event.summary else event.detail)
        if not isinstance(event, AppliedChangeEvent):
            raise ConversionError(f"Unexpected migration event: {type(event).__name__}")

        for key, value in event.raw:
            self.state.raw[key].CopyFrom(value)
        for description in event.descriptions:
            self.state.descriptions[description.key].CopyFrom(description)
        self.change_count += 1

    def serialize(self) -> bytes:
        return self.state.SerializeToString(deterministic=True)


class StateConverter:
    """Converts raw Terraform state into serialized stack state."""

    def __init__(
        self,
        config_file_dir: str | Path,
        terraform_config_dir: str | Path,
        settings: StackMigrationSettings | None = None,
        client_factory: Callable[[], TerraformRPCClient] | None = None,
        cwd: str | Path | None = None,
    ):
        """Initialize the converter.

        Args:
            config_file_dir: Stack source bundle directory
            terraform_config_dir: Initialized Terraform configuration directory
            settings: Binary and handshake timeout configuration
            client_factory: Builds the RPC client (defaults to ``terraform rpcapi``)
            cwd: Directory the stack and lock sources are made relative to
        """
        self.config_file_dir = Path(config_file_dir)
        self.terraform_config_dir = Path(terraform_config_dir)
        self.settings = settings or StackMigrationSettings()
        self.client_factory = client_factory or (
            lambda: TerraformRPCClient(
                terraform_binary=self.settings.terraform_binary,
                handshake_timeout=self.settings.rpc_handshake_timeout,
            )
        )
        self.cwd = Path(cwd) if cwd else Path.cwd()
        self.logger = structlog.get_logger().bind(component="state_converter")

    @property
    def modules_cache_dir(self) -> str:
        return str(self.config_file_dir / ".terraform" / "modules")

    @property
    def provider_cache_dir(self) -> str:
        return str(self.terraform_config_dir / ".terraform" / "providers")

    @property
    def stack_config_source(self) -> str:
        return relative_source(self.config_file_dir, self.cwd)

    @property
    def dependency_lock_source(self) -> str:
        return relative_source(self.terraform_config_dir / ".terraform.lock.hcl", self.cwd)

    async def convert(
        self,
        raw_state: bytes,
        resource_address_map: dict[str, str] | None = None,
        module_address_map: dict[str, str] | None = None,
    ) -> bytes:
        """Convert raw workspace state into serialized ``StackState`` bytes.

        Handles are opened in the order state, source bundle, stack
        configuration, dependency locks, provider cache and closed in reverse.

        Raises:
            ConversionError: On empty input, missing address maps, RPC failure or a diagnostic
        """
        if not raw_state:
            raise ConversionError("No state data to convert")
        if not resource_address_map and not module_address_map:
            raise ConversionError("No resource or module address map provided for migration")

        accumulator = StackStateAccumulator()
        async with self.client_factory() as client:
            async with client.terraform_state(raw_state) as state_handle:
                async with client.source_bundle(self.modules_cache_dir) as bundle_handle:
                    async with client.stack_configuration(bundle_handle, self.stack_config_source) as config_handle:
                        async with client.dependency_locks(bundle_handle, self.dependency_lock_source) as locks_handle:
                            async with client.provider_cache(self.provider_cache_dir) as cache_handle:
                                events = client.migrate_terraform_state(
                                    state_handle,
                                    config_handle,
                                    locks_handle,
                                    cache_handle,
                                    resource_address_map=resource_address_map,
                                    module_address_map=module_address_map,
                                )
                                async with aclosing(events):
                                    async for event in events:
                                        accumulator.add(event)

        self.logger.info(
            "Workspace state converted",
            applied_changes=accumulator.change_count,
            objects=len(accumulator.state.raw),
        )
        return accumulator.serialize()


@asynccontextmanager
async def stack_state_file(data: bytes, workspace_id: str) -> AsyncIterator[Path]:
    """Write converted stack state to a unique temp file that is removed on exit."""
    fd, name = tempfile.mkstemp(prefix=f"{workspace_id}_", suffix=STACK_STATE_SUFFIX)
    path = Path(name)
    try:
        with os.fdopen(fd, "wb") as handle:
            await asyncio.to_thread(handle.write, data)
        yield path
    finally:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.error("Failed to remove temporary stack state file", path=str(path), error=str(e))
