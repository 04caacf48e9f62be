"""Tests for the command line entry point."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from tests.fakes import persisted_state
from tfstack_migrate.cli import EXIT_ERROR, EXIT_OK, MigrationCommands, main, parse_args
from tfstack_migrate.core.state_store import StateStore
from tfstack_migrate.models.enums import DeploymentGroupStatus


@pytest.fixture(autouse=True)
def no_dotenv():
    with patch("tfstack_migrate.core.config_loader.load_dotenv"):
        yield


@pytest.fixture
def declaration(tmp_path: Path, resource) -> Path:
    path = tmp_path / "stack_migration.yml"
    path.write_text(yaml.safe_dump({"stack_migration": resource.model_dump(exclude_none=True)}))
    return path


@pytest.fixture
def state_path(tmp_path: Path) -> Path:
    return tmp_path / "state" / "stack_migration.state.json"


class TestParseArgs:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("TF_MIGRATE_DECLARATION", raising=False)
        monkeypatch.delenv("TF_MIGRATE_STATE_FILE", raising=False)
        monkeypatch.setenv("TF_MIGRATE_LOG_LEVEL", "DEBUG")

        args = parse_args(["plan"])

        assert args.command == "plan"
        assert args.config == "stack_migration.yml"
        assert args.state == "stack_migration.state.json"
        assert args.log_level == "DEBUG"

    def test_options(self):
        args = parse_args(["--config", "m.yml", "--state", "s.json", "--log-level", "ERROR", "show-migration"])

        assert (args.config, args.state, args.log_level, args.command) == ("m.yml", "s.json", "ERROR", "show-migration")

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            parse_args([])


class TestMigrationCommands:
    """Lifecycle commands against an in-memory remote."""

    def _commands(self, declaration, state_path, settings, controller=None) -> MigrationCommands:
        factory = (lambda s: controller) if controller is not None else None
        return MigrationCommands(str(declaration), str(state_path), settings, controller_factory=factory)

    @pytest.mark.asyncio
    async def test_validate(self, declaration, state_path, settings, capsys):
        code = await self._commands(declaration, state_path, settings).run("validate")

        assert code == EXIT_OK
        assert f"Declaration {declaration} is valid" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_validate_reports_attribute_errors(self, tmp_path, state_path, settings, capsys):
        path = tmp_path / "bad.yml"
        path.write_text(
            yaml.safe_dump(
                {
                    "stack_migration": {
                        "name": "networking",
                        "organization": "acme-corp",
                        "project": "platform",
                        "config_file_dir": "relative/stack",
                        "terraform_config_dir": str(tmp_path),
                        "workspace_deployment_mapping": {"network-prod": "production"},
                    }
                }
            )
        )

        code = await self._commands(path, state_path, settings).run("validate")

        assert code == EXIT_ERROR
        assert "Error: Invalid Path (config_file_dir)" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_show_migration(self, declaration, state_path, settings, resource, capsys):
        StateStore(state_path).save(persisted_state(resource, statuses={"network-staging": "failed"}))

        code = await self._commands(declaration, state_path, settings).run("show-migration")

        document = json.loads(capsys.readouterr().out)
        assert code == EXIT_OK
        assert document["network-staging"]["deployment_group"] == {"id": "sdg-staging", "status": "failed"}
        assert document["network-prod"]["workspace_id"] == "ws-network-prod"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("command", ["show-migration", "refresh"])
    async def test_commands_requiring_state(self, command, declaration, state_path, settings, capsys):
        code = await self._commands(declaration, state_path, settings).run(command)

        assert code == EXIT_ERROR
        assert f"No state found at {state_path}" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_destroy_forgets_state(self, declaration, state_path, settings, resource, capsys):
        StateStore(state_path).save(persisted_state(resource))

        code = await self._commands(declaration, state_path, settings).run("destroy")

        assert code == EXIT_OK
        assert not state_path.exists()
        assert "Warning: Destroy Action is not supported for this resource." in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_apply_then_plan_is_no_action(
        self, declaration, state_path, settings, controller, fake_client, capsys
    ):
        fake_client.script_import("network-prod", "production")
        fake_client.script_import("network-staging", "staging")
        commands = self._commands(declaration, state_path, settings, controller)

        assert await commands.run("apply") == EXIT_OK
        assert "Strategy: apply_new_configuration" in capsys.readouterr().out

        stored = StateStore(state_path).load()
        assert stored.current_configuration_id == "stc-upload-1"
        assert set(stored.migration_data) == {"network-prod", "network-staging"}

        fake_client.set_groups(
            "stc-upload-1",
            {"production": DeploymentGroupStatus.SUCCEEDED, "staging": DeploymentGroupStatus.SUCCEEDED},
        )
        assert await commands.run("plan") == EXIT_OK
        output = capsys.readouterr().out
        assert "Strategy: no_action" in output
        assert "  current_configuration_id = stc-upload-1" in output

    @pytest.mark.asyncio
    async def test_refresh_saves_state(self, declaration, state_path, settings, controller, fake_client, resource):
        StateStore(state_path).save(persisted_state(resource, statuses={"network-staging": "failed"}))
        fake_client.set_latest_configuration("stc-1")
        fake_client.script_settled("network-prod", "production", DeploymentGroupStatus.SUCCEEDED)
        fake_client.script_settled("network-staging", "staging", DeploymentGroupStatus.SUCCEEDED)

        code = await self._commands(declaration, state_path, settings, controller).run("refresh")

        stored = StateStore(state_path).load()
        assert code == EXIT_OK
        assert stored.migration_data["network-staging"].deployment_group.status == "succeeded"


class TestMain:
    """Process entry point."""

    def test_exit_code_from_command(self, declaration, state_path, settings):
        with (
            patch("tfstack_migrate.cli.setup_logging") as setup_logging,
            patch("tfstack_migrate.cli.get_settings", return_value=settings),
        ):
            with pytest.raises(SystemExit) as exc_info:
                main(["--config", str(declaration), "--state", str(state_path), "--log-level", "WARNING", "validate"])

        assert exc_info.value.code == EXIT_OK
        setup_logging.assert_called_once_with(log_level="WARNING")

    def test_migration_errors_exit_non_zero(self, tmp_path, state_path, settings, capsys):
        missing = tmp_path / "missing.yml"
        with (
            patch("tfstack_migrate.cli.setup_logging"),
            patch("tfstack_migrate.cli.get_settings", return_value=settings),
        ):
            with pytest.raises(SystemExit) as exc_info:
                main(["--config", str(missing), "--state", str(state_path), "validate"])

        assert exc_info.value.code == EXIT_ERROR
        assert f"Error: Declaration file not found: {missing}" in capsys.readouterr().err
