"""Settings for stack migration operations.

Provides centralized remote, polling and timeout configuration using Pydantic
BaseSettings with environment variable support for operational tuning.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_TFE_HOSTNAME = "app.terraform.io"


class StackMigrationSettings(BaseSettings):
    """Remote access, polling budget and timeout configuration."""

    tfe_hostname: str = Field(
        DEFAULT_TFE_HOSTNAME, alias="TFE_HOSTNAME", description="HCP Terraform hostname"
    )

    tfe_token: str | None = Field(
        None, alias="TFE_TOKEN", description="HCP Terraform API token"
    )

    tfe_organization: str | None = Field(
        None, alias="TFE_ORGANIZATION", description="Default organization name"
    )

    tfe_project: str | None = Field(
        None, alias="TFE_PROJECT", description="Default project name"
    )

    terraform_binary: str = Field(
        "terraform",
        alias="TF_MIGRATE_TERRAFORM_BINARY",
        description="Terraform binary launched as the state conversion RPC server",
    )

    http_timeout: float = Field(
        30, alias="TF_MIGRATE_HTTP_TIMEOUT", description="Per-request HTTP timeout in seconds"
    )

    config_watch_timeout: float = Field(
        300,
        alias="TF_MIGRATE_CONFIG_WATCH_TIMEOUT",
        description="Stack configuration watch budget in seconds",
    )

    config_watch_interval: float = Field(
        5,
        alias="TF_MIGRATE_CONFIG_WATCH_INTERVAL",
        description="Stack configuration poll interval in seconds",
    )

    group_poll_attempts: int = Field(
        10,
        alias="TF_MIGRATE_GROUP_POLL_ATTEMPTS",
        description="Deployment group status polls after the import-state advance",
    )

    group_poll_interval: float = Field(
        10,
        alias="TF_MIGRATE_GROUP_POLL_INTERVAL",
        description="Deployment group status poll interval in seconds",
    )

    step_settle_delay: float = Field(
        5,
        alias="TF_MIGRATE_STEP_SETTLE_DELAY",
        description="Quiescence before re-reading a deployment step in seconds",
    )

    rpc_handshake_timeout: float = Field(
        30,
        alias="TF_MIGRATE_RPC_HANDSHAKE_TIMEOUT",
        description="State conversion process handshake timeout in seconds",
    )

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)


def get_settings() -> StackMigrationSettings:
    """Build settings from the current environment and .env file."""
    return StackMigrationSettings()
