"""Tests for declaration loading, credentials, settings and the state store."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from tfstack_migrate.core.config_loader import load_config, load_config_async, read_credentials_token
from tfstack_migrate.core.exceptions import ConfigurationError
from tfstack_migrate.core.settings import StackMigrationSettings
from tfstack_migrate.core.state_store import StateStore
from tfstack_migrate.models.attributes import StackMigrationState
from tfstack_migrate.models.migration import DeploymentGroupData, StackMigrationData

DECLARATION = """
stack_migration:
  name: networking
  organization: acme-corp
  project: platform
  config_file_dir: /srv/stack
  terraform_config_dir: /srv/terraform
  workspace_deployment_mapping:
    network-prod: production
    network-staging: staging
"""


@pytest.fixture
def declaration_file(tmp_path: Path) -> Path:
    path = tmp_path / "stack_migration.yml"
    path.write_text(DECLARATION)
    return path


class TestLoadConfig:
    """Declaration file loading."""

    @pytest.mark.asyncio
    async def test_load_declaration(self, declaration_file: Path):
        with patch("tfstack_migrate.core.config_loader.load_dotenv"):
            resource = await load_config_async(str(declaration_file))

        assert resource.name == "networking"
        assert resource.workspace_deployment_mapping == {
            "network-prod": "production",
            "network-staging": "staging",
        }
        assert resource.resource_address_map is None

    def test_sync_interface(self, declaration_file: Path):
        with patch("tfstack_migrate.core.config_loader.load_dotenv"):
            resource = load_config(str(declaration_file))

        assert resource.project == "platform"

    @pytest.mark.asyncio
    async def test_sync_interface_refuses_running_loop(self, declaration_file: Path):
        with pytest.raises(RuntimeError, match="load_config_async"):
            load_config(str(declaration_file))

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path: Path):
        with patch("tfstack_migrate.core.config_loader.load_dotenv"):
            with pytest.raises(ConfigurationError, match="not found"):
                await load_config_async(str(tmp_path / "nope.yml"))

    @pytest.mark.asyncio
    async def test_missing_section(self, tmp_path: Path):
        path = tmp_path / "other.yml"
        path.write_text("hosts: {}\n")

        with patch("tfstack_migrate.core.config_loader.load_dotenv"):
            with pytest.raises(ConfigurationError, match="stack_migration"):
                await load_config_async(str(path))

    @pytest.mark.asyncio
    async def test_invalid_declaration(self, tmp_path: Path):
        path = tmp_path / "invalid.yml"
        path.write_text("stack_migration:\n  name: networking\n  workspace_deployment_mapping: [a, b]\n")

        with patch("tfstack_migrate.core.config_loader.load_dotenv"):
            with pytest.raises(ConfigurationError, match="Invalid declaration"):
                await load_config_async(str(path))

    @pytest.mark.asyncio
    async def test_malformed_yaml(self, tmp_path: Path):
        path = tmp_path / "broken.yml"
        path.write_text("stack_migration: [unclosed\n")

        with patch("tfstack_migrate.core.config_loader.load_dotenv"):
            with pytest.raises(ConfigurationError, match="Failed to load config"):
                await load_config_async(str(path))


class TestCredentials:
    """Terraform CLI credentials file lookup."""

    def _write_credentials(self, home: Path, document: dict) -> None:
        path = home / ".terraform.d" / "credentials.tfrc.json"
        path.parent.mkdir(parents=True)
        path.write_text(json.dumps(document))

    def test_reads_token_for_host(self, tmp_path: Path):
        self._write_credentials(tmp_path, {"credentials": {"app.terraform.io": {"token": "abc.atlasv1.xyz"}}})

        assert read_credentials_token("app.terraform.io", home=tmp_path) == "abc.atlasv1.xyz"

    def test_missing_host_entry(self, tmp_path: Path):
        self._write_credentials(tmp_path, {"credentials": {"tfe.example.com": {"token": "other"}}})

        assert read_credentials_token("app.terraform.io", home=tmp_path) is None

    def test_missing_file(self, tmp_path: Path):
        assert read_credentials_token("app.terraform.io", home=tmp_path) is None

    def test_corrupt_file(self, tmp_path: Path):
        path = tmp_path / ".terraform.d" / "credentials.tfrc.json"
        path.parent.mkdir(parents=True)
        path.write_text("{not json")

        with pytest.raises(ConfigurationError):
            read_credentials_token("app.terraform.io", home=tmp_path)


class TestSettings:
    def test_environment_aliases(self, monkeypatch):
        monkeypatch.setenv("TFE_TOKEN", "env-token")
        monkeypatch.setenv("TFE_ORGANIZATION", "acme-corp")
        monkeypatch.setenv("TF_MIGRATE_GROUP_POLL_ATTEMPTS", "4")

        settings = StackMigrationSettings(_env_file=None)

        assert settings.tfe_token == "env-token"
        assert settings.tfe_organization == "acme-corp"
        assert settings.group_poll_attempts == 4
        assert settings.tfe_hostname == "app.terraform.io"


class TestStateStore:
    """State file persistence."""

    def _state(self) -> StackMigrationState:
        return StackMigrationState(
            name="networking",
            organization="acme-corp",
            project="platform",
            config_file_dir="/srv/stack",
            terraform_config_dir="/srv/terraform",
            workspace_deployment_mapping={"network-prod": "production"},
            current_configuration_id="stc-1",
            current_configuration_status="completed",
            source_bundle_hash="a" * 32,
            terraform_config_hash="b" * 32,
            migration_hash="c" * 32,
            migration_data={
                "network-prod": StackMigrationData(
                    workspace_id="ws-1",
                    deployment_name="production",
                    deployment_group=DeploymentGroupData(id="sdg-1", status="succeeded"),
                )
            },
        )

    def test_save_and_load(self, tmp_path: Path):
        store = StateStore(tmp_path / "state" / "stack_migration.state.json")
        assert store.load() is None

        store.save(self._state())

        assert store.exists()
        assert store.load() == self._state()

    def test_serialization_is_sorted_and_stable(self, tmp_path: Path):
        store = StateStore(tmp_path / "state.json")
        store.save(self._state())
        first = store.path.read_text()
        store.save(store.load())

        assert store.path.read_text() == first
        document = json.loads(first)
        assert list(document) == sorted(document)
        assert "failure_reason" not in document["migration_data"]["network-prod"]

    def test_delete(self, tmp_path: Path):
        store = StateStore(tmp_path / "state.json")
        store.save(self._state())

        assert store.delete() is True
        assert store.delete() is False
        assert not store.exists()

    def test_corrupt_state_raises(self, tmp_path: Path):
        path = tmp_path / "state.json"
        path.write_text("{")

        with pytest.raises(ConfigurationError, match="Failed to read state file"):
            StateStore(path).load()
