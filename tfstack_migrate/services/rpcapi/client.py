"""Client for the ``terraform rpcapi`` state conversion process.

The child process speaks the go-plugin handshake on its first stdout line and
then serves gRPC. Every handle opened on the client is exposed as an async
context manager so it is closed on all exit paths.
"""

import asyncio
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import grpc
import structlog

from ...core.exceptions import ConversionError, RPCHandshakeError
from . import messages

MAGIC_COOKIE_KEY = "TERRAFORM_RPCAPI_COOKIE"
MAGIC_COOKIE_VALUE = "fba0991c9bcd453982f0d88e2da95940"
CORE_PROTOCOL_VERSION = "1"
APP_PROTOCOL_VERSION = "1"
SUPPORTED_NETWORKS = ("tcp", "unix")
KILL_TIMEOUT = 5  # Time to wait after SIGTERM before SIGKILL


@dataclass(frozen=True)
class HandshakeInfo:
    """Parsed go-plugin handshake line."""

    core_version: str
    app_version: str
    network: str
    address: str
    protocol: str

    @property
    def target(self) -> str:
        """gRPC channel target for the advertised address."""
        if self.network == "unix":
            return f"unix:{self.address}"
        return self.address


def parse_handshake(line: str) -> HandshakeInfo:
    """Parse ``CORE|APP|NETWORK|ADDRESS|PROTOCOL`` from the child's first stdout line.

    Raises:
        RPCHandshakeError: If the line is malformed or advertises an unsupported protocol
    """
    parts = line.strip().split("|")
    if len(parts) < 5:
        raise RPCHandshakeError(f"Malformed handshake line: {line.strip()!r}")

    info = HandshakeInfo(*parts[:5])
    if info.core_version != CORE_PROTOCOL_VERSION:
        raise RPCHandshakeError(f"Unsupported core protocol version: {info.core_version}")
    if info.app_version != APP_PROTOCOL_VERSION:
        raise RPCHandshakeError(f"Unsupported app protocol version: {info.app_version}")
    if info.network not in SUPPORTED_NETWORKS:
        raise RPCHandshakeError(f"Unsupported network type: {info.network}")
    if info.protocol != "grpc":
        raise RPCHandshakeError(f"Unsupported plugin protocol: {info.protocol}")
    return info


@dataclass
class AppliedChangeEvent:
    """Converted state objects streamed by ``MigrateTerraformState``."""

    raw: list[tuple[str, Any]] = field(default_factory=list)
    descriptions: list[Any] = field(default_factory=list)


@dataclass
class DiagnosticEvent:
    """Diagnostic streamed by ``MigrateTerraformState``."""

    severity: int
    summary: str
    detail: str


MigrationEvent = AppliedChangeEvent | DiagnosticEvent


def _raise_on_error_diagnostics(operation: str, diagnostics: Any) -> None:
    errors = [d for d in diagnostics if d.severity == messages.SEVERITY_ERROR]
    if errors:
        details = "; ".join(f"{d.summary}: {d.detail}" if d.detail else d.summary for d in errors)
        raise ConversionError(f"{operation} failed: {details}")


class TerraformRPCClient:
    """Launches ``terraform rpcapi`` and calls its Dependencies and Stacks services."""

    def __init__(self, terraform_binary: str = "terraform", handshake_timeout: float = 30):
        self.terraform_binary = terraform_binary
        self.handshake_timeout = handshake_timeout
        self._process: asyncio.subprocess.Process | None = None
        self._channel: grpc.aio.Channel | None = None
        self.logger = structlog.get_logger().bind(component="rpcapi_client")

    async def __aenter__(self) -> "TerraformRPCClient":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    async def start(self) -> None:
        """Launch the child process, read its handshake and open the gRPC channel."""
        env = os.environ.copy()
        env[MAGIC_COOKIE_KEY] = MAGIC_COOKIE_VALUE
        env["PLUGIN_PROTOCOL_VERSIONS"] = CORE_PROTOCOL_VERSION

        try:
            self._process = await asyncio.create_subprocess_exec(
                self.terraform_binary,
                "rpcapi",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
                env=env,
            )
        except OSError as e:
            raise RPCHandshakeError(f"Failed to launch {self.terraform_binary} rpcapi: {e}") from e

        try:
            line = await asyncio.wait_for(self._process.stdout.readline(), timeout=self.handshake_timeout)
        except asyncio.TimeoutError as e:
            await self.stop()
            raise RPCHandshakeError(
                f"No handshake from {self.terraform_binary} rpcapi after {self.handshake_timeout} seconds"
            ) from e

        if not line:
            await self.stop()
            raise RPCHandshakeError(f"{self.terraform_binary} rpcapi exited before completing the handshake")

        try:
            info = parse_handshake(line.decode("utf-8", errors="replace"))
        except RPCHandshakeError:
            await self.stop()
            raise

        self.logger.debug("RPC handshake received", network=info.network, address=info.address)
        self._channel = grpc.aio.insecure_channel(info.target)

        try:
            await self._unary(messages.HANDSHAKE, messages.HandshakeRequest(), messages.HandshakeResponse)
        except ConversionError:
            await self.stop()
            raise
        self.logger.info("RPC client started", pid=self._process.pid)

    async def stop(self) -> None:
        """Close the channel and terminate the child process."""
        if self._channel is not None:
            await self._channel.close()
            self._channel = None

        process = self._process
        self._process = None
        if process is None or process.returncode is not None:
            return

        try:
            process.terminate()
            await asyncio.wait_for(process.wait(), timeout=KILL_TIMEOUT)
        except asyncio.TimeoutError:
            self.logger.warning("RPC process did not terminate gracefully, sending SIGKILL", pid=process.pid)
            process.kill()
            await process.wait()
        except ProcessLookupError:
            # Process already terminated
            pass
        self.logger.debug("RPC client stopped")

    def _require_channel(self) -> grpc.aio.Channel:
        if self._channel is None:
            raise ConversionError("RPC client is not started")
        return self._channel

    async def _unary(self, method: str, request: Any, response_type: Any) -> Any:
        call = self._require_channel().unary_unary(
            method,
            request_serializer=lambda message: message.SerializeToString(),
            response_deserializer=response_type.FromString,
        )
        try:
            return await call(request)
        except grpc.aio.AioRpcError as e:
            raise ConversionError(f"{method} failed: {e.code().name}: {e.details()}") from e

    # Dependencies service

    async def open_source_bundle(self, local_path: str) -> int:
        response = await self._unary(
            messages.OPEN_SOURCE_BUNDLE,
            messages.OpenSourceBundleRequest(local_path=local_path),
            messages.OpenSourceBundleResponse,
        )
        _raise_on_error_diagnostics("OpenSourceBundle", response.diagnostics)
        return response.source_bundle_handle

    async def close_source_bundle(self, handle: int) -> None:
        await self._unary(
            messages.CLOSE_SOURCE_BUNDLE,
            messages.CloseSourceBundleRequest(source_bundle_handle=handle),
            messages.Empty,
        )

    async def open_dependency_lock_file(self, source_bundle_handle: int, source: str) -> int:
        response = await self._unary(
            messages.OPEN_DEPENDENCY_LOCK_FILE,
            messages.OpenDependencyLockFileRequest(
                source_bundle_handle=source_bundle_handle,
                source_address=messages.SourceAddress(source=source),
            ),
            messages.OpenDependencyLockFileResponse,
        )
        _raise_on_error_diagnostics("OpenDependencyLockFile", response.diagnostics)
        return response.dependency_locks_handle

    async def close_dependency_locks(self, handle: int) -> None:
        await self._unary(
            messages.CLOSE_DEPENDENCY_LOCKS,
            messages.CloseDependencyLocksRequest(dependency_locks_handle=handle),
            messages.Empty,
        )

    async def open_provider_plugin_cache(self, cache_dir: str) -> int:
        response = await self._unary(
            messages.OPEN_PROVIDER_PLUGIN_CACHE,
            messages.OpenProviderPluginCacheRequest(cache_dir=cache_dir),
            messages.OpenProviderPluginCacheResponse,
        )
        _raise_on_error_diagnostics("OpenProviderPluginCache", response.diagnostics)
        return response.provider_cache_handle

    async def close_provider_plugin_cache(self, handle: int) -> None:
        await self._unary(
            messages.CLOSE_PROVIDER_PLUGIN_CACHE,
            messages.CloseProviderPluginCacheRequest(provider_cache_handle=handle),
            messages.Empty,
        )

    # Stacks service

    async def open_stack_configuration(self, source_bundle_handle: int, source: str) -> int:
        response = await self._unary(
            messages.OPEN_STACK_CONFIGURATION,
            messages.OpenStackConfigurationRequest(
                source_bundle_handle=source_bundle_handle,
                source_address=messages.SourceAddress(source=source),
            ),
            messages.OpenStackConfigurationResponse,
        )
        _raise_on_error_diagnostics("OpenStackConfiguration", response.diagnostics)
        return response.stack_config_handle

    async def close_stack_configuration(self, handle: int) -> None:
        await self._unary(
            messages.CLOSE_STACK_CONFIGURATION,
            messages.CloseStackConfigurationRequest(stack_config_handle=handle),
            messages.Empty,
        )

    async def open_terraform_state(self, raw_state: bytes) -> int:
        response = await self._unary(
            messages.OPEN_TERRAFORM_STATE,
            messages.OpenTerraformStateRequest(raw=raw_state),
            messages.OpenTerraformStateResponse,
        )
        _raise_on_error_diagnostics("OpenTerraformState", response.diagnostics)
        return response.state_handle

    async def close_terraform_state(self, handle: int) -> None:
        await self._unary(
            messages.CLOSE_TERRAFORM_STATE,
            messages.CloseTerraformStateRequest(state_handle=handle),
            messages.Empty,
        )

    async def migrate_terraform_state(
        self,
        state_handle: int,
        config_handle: int,
        dependency_locks_handle: int,
        provider_cache_handle: int,
        resource_address_map: dict[str, str] | None = None,
        module_address_map: dict[str, str] | None = None,
    ) -> AsyncIterator[MigrationEvent]:
        """Stream conversion events until the server closes the stream.

        Raises:
            ConversionError: If neither address map is provided or the stream fails
        """
        if not resource_address_map and not module_address_map:
            raise ConversionError("No resource or module address map provided for migration")

        request = messages.MigrateTerraformStateRequest(
            state_handle=state_handle,
            config_handle=config_handle,
            dependency_locks_handle=dependency_locks_handle,
            provider_cache_handle=provider_cache_handle,
            simple=messages.MigrationMapping(
                resource_address_map=resource_address_map or {},
                module_address_map=module_address_map or {},
            ),
        )
        call = self._require_channel().unary_stream(
            messages.MIGRATE_TERRAFORM_STATE,
            request_serializer=lambda message: message.SerializeToString(),
            response_deserializer=messages.MigrateTerraformStateEvent.FromString,
        )
        try:
            async for event in call(request):
                kind = event.WhichOneof("result")
                if kind == "applied_change":
                    yield AppliedChangeEvent(
                        raw=[(raw.key, raw.value) for raw in event.applied_change.raw],
                        descriptions=list(event.applied_change.descriptions),
                    )
                elif kind == "diagnostic":
                    yield DiagnosticEvent(
                        severity=event.diagnostic.severity,
                        summary=event.diagnostic.summary,
                        detail=event.diagnostic.detail,
                    )
                else:
                    raise ConversionError(f"Unexpected migration event: {kind}")
        except grpc.aio.AioRpcError as e:
            raise ConversionError(f"MigrateTerraformState stream failed: {e.code().name}: {e.details()}") from e

    # Scoped handles

    @asynccontextmanager
    async def _scoped(self, name: str, handle: int, close) -> AsyncIterator[int]:
        try:
            yield handle
        finally:
            try:
                await close(handle)
            except ConversionError as e:
                self.logger.error("Failed to close RPC handle", handle_type=name, handle=handle, error=str(e))

    @asynccontextmanager
    async def terraform_state(self, raw_state: bytes) -> AsyncIterator[int]:
        handle = await self.open_terraform_state(raw_state)
        async with self._scoped("terraform_state", handle, self.close_terraform_state):
            yield handle

    @asynccontextmanager
    async def source_bundle(self, local_path: str) -> AsyncIterator[int]:
        handle = await self.open_source_bundle(local_path)
        async with self._scoped("source_bundle", handle, self.close_source_bundle):
            yield handle

    @asynccontextmanager
    async def stack_configuration(self, source_bundle_handle: int, source: str) -> AsyncIterator[int]:
        handle = await self.open_stack_configuration(source_bundle_handle, source)
        async with self._scoped("stack_configuration", handle, self.close_stack_configuration):
            yield handle

    @asynccontextmanager
    async def dependency_locks(self, source_bundle_handle: int, source: str) -> AsyncIterator[int]:
        handle = await self.open_dependency_lock_file(source_bundle_handle, source)
        async with self._scoped("dependency_locks", handle, self.close_dependency_locks):
            yield handle

    @asynccontextmanager
    async def provider_cache(self, cache_dir: str) -> AsyncIterator[int]:
        handle = await self.open_provider_plugin_cache(cache_dir)
        async with self._scoped("provider_cache", handle, self.close_provider_plugin_cache):
            yield handle
