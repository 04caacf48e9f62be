"""Shared pytest fixtures for stack migration tests."""

import logging
from pathlib import Path

import pytest
import structlog

from tests.fakes import FakeStateConverter, FakeTfeClient
from tfstack_migrate.core.settings import StackMigrationSettings
from tfstack_migrate.models.attributes import StackMigrationResource
from tfstack_migrate.services.stack.migration_orchestrator import StackMigrationController

DEPLOYMENTS_HCL = """
deployment "production" {
  import = true
  inputs = {
    region = "us-east-1"
  }
}

deployment "staging" {
  import = true
  inputs = {
    region = "us-west-2"
  }
}
"""

COMPONENTS_HCL = """
component "network" {
  source = "./modules/network"
  inputs = {
    cidr = "10.0.0.0/16"
  }
}
"""

MAIN_TF = """
resource "aws_vpc" "main" {
  cidr_block = "10.0.0.0/16"
}
"""

WORKSPACE_MAPPING = {"network-prod": "production", "network-staging": "staging"}


@pytest.fixture(autouse=True, scope="session")
def configure_structlog():
    """Route structlog through stdlib logging so test output stays clean."""
    logging.getLogger().setLevel(logging.DEBUG)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    yield


@pytest.fixture
def stack_config_dir(tmp_path: Path) -> Path:
    """Stack source bundle with two importable deployments and one component."""
    config_dir = tmp_path / "stack"
    config_dir.mkdir()
    (config_dir / "deployments.tfdeploy.hcl").write_text(DEPLOYMENTS_HCL)
    (config_dir / "components.tfcomponent.hcl").write_text(COMPONENTS_HCL)
    return config_dir


@pytest.fixture
def terraform_config_dir(tmp_path: Path) -> Path:
    """Initialized Terraform configuration directory of the migrated workspaces."""
    tf_dir = tmp_path / "terraform"
    tf_dir.mkdir()
    (tf_dir / "main.tf").write_text(MAIN_TF)
    (tf_dir / ".terraform.lock.hcl").write_text("# lock file\n")
    return tf_dir


@pytest.fixture
def resource(stack_config_dir: Path, terraform_config_dir: Path) -> StackMigrationResource:
    return StackMigrationResource(
        name="networking",
        organization="acme-corp",
        project="platform",
        config_file_dir=str(stack_config_dir),
        terraform_config_dir=str(terraform_config_dir),
        workspace_deployment_mapping=dict(WORKSPACE_MAPPING),
    )


@pytest.fixture
def settings() -> StackMigrationSettings:
    """Settings with a test token and no waiting between polls."""
    return StackMigrationSettings(
        _env_file=None,
        tfe_hostname="app.terraform.io",
        tfe_token="test-token",
        tfe_organization=None,
        tfe_project=None,
        config_watch_timeout=0,
        config_watch_interval=0,
        group_poll_attempts=3,
        group_poll_interval=0,
        step_settle_delay=0,
    )


@pytest.fixture
def fake_client() -> FakeTfeClient:
    return FakeTfeClient()


@pytest.fixture
def converter() -> FakeStateConverter:
    return FakeStateConverter()


@pytest.fixture
def controller(
    settings: StackMigrationSettings, fake_client: FakeTfeClient, converter: FakeStateConverter
) -> StackMigrationController:
    """Configured controller wired to the in-memory client and converter."""
    controller = StackMigrationController(
        settings,
        client_factory=lambda hostname, token, timeout: fake_client,
        converter_factory=lambda config_file_dir, terraform_config_dir: converter,
    )
    diagnostics = controller.configure()
    assert not diagnostics.has_error()
    return controller
