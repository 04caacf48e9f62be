"""Terminal-state watcher for stack configurations."""

import asyncio
import math

import structlog
from structlog.stdlib import BoundLogger

from ...core.exceptions import TfeApiError
from ...core.settings import StackMigrationSettings
from ...models.api import StackConfiguration
from ...models.enums import ConfigurationStatus
from ..tfe_client import TfeClient


class ConfigurationWatcher:
    """Polls a stack configuration until it reaches a terminal status."""

    def __init__(self, client: TfeClient, settings: StackMigrationSettings):
        self.client = client
        self.timeout = settings.config_watch_timeout
        self.interval = settings.config_watch_interval
        self.logger: BoundLogger = structlog.get_logger().bind(component="configuration_watcher")

    async def watch(self, configuration_id: str) -> ConfigurationStatus:
        """Wait for a configuration to become Completed, Failed or Canceled.

        Read errors are logged and retried until the budget runs out. A timeout
        is a soft return, never an error.

        Args:
            configuration_id: Stack configuration to poll

        Returns:
            The terminal status, or the last observed status (Pending if none) on timeout
        """
        attempts = max(1, math.ceil(self.timeout / self.interval)) if self.interval > 0 else 1
        last_status: ConfigurationStatus | None = None

        for attempt in range(attempts):
            try:
                configuration = await self.client.read_stack_configuration(configuration_id)
                last_status = configuration.status
                if last_status.is_terminal:
                    self.logger.info(
                        "Stack configuration reached terminal status",
                        configuration_id=configuration_id,
                        status=str(last_status),
                    )
                    return last_status
                self.logger.debug(
                    "Stack configuration not terminal yet",
                    configuration_id=configuration_id,
                    status=str(last_status),
                )
            except TfeApiError as e:
                self.logger.warning(
                    "Failed to read stack configuration, retrying",
                    configuration_id=configuration_id,
                    error=str(e),
                )

            if attempt < attempts - 1:
                await asyncio.sleep(self.interval)

        status = last_status or ConfigurationStatus.PENDING
        self.logger.warning(
            "Timed out waiting for stack configuration",
            configuration_id=configuration_id,
            status=str(status),
            timeout=self.timeout,
        )
        return status


async def allow_source_bundle_upload(
    client: TfeClient, latest: StackConfiguration | None
) -> bool:
    """Whether a new source bundle may be uploaded on top of the latest configuration.

    Allowed when there is no latest configuration, when it Failed or was
    Canceled, or when it Completed with no running deployment groups.
    """
    if latest is None or not latest.id:
        return True
    if latest.status in (ConfigurationStatus.FAILED, ConfigurationStatus.CANCELED):
        return True
    if latest.status is ConfigurationStatus.COMPLETED:
        return not await has_running_deployment_groups(client, latest.id)
    return False


async def has_running_deployment_groups(client: TfeClient, configuration_id: str) -> bool:
    groups = await client.list_deployment_groups(configuration_id)
    return any(group.status.is_running for group in groups)
