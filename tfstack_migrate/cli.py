"""Command line entry point driving the stack migration lifecycle."""

import argparse
import asyncio
import json
import os
import sys
from collections.abc import Callable

from .core.config_loader import DEFAULT_DECLARATION_FILE, load_config_async
from .core.exceptions import StackMigrationError
from .core.logging_config import get_cli_logger, setup_logging
from .core.settings import StackMigrationSettings, get_settings
from .core.state_store import DEFAULT_STATE_FILE, StateStore
from .models.attributes import StackMigrationResource, StackMigrationState
from .models.diagnostics import Diagnostics
from .services.stack.migration_orchestrator import StackMigrationController
from .services.stack.plan import PlanResult

EXIT_OK = 0
EXIT_ERROR = 1

ControllerFactory = Callable[[StackMigrationSettings], StackMigrationController]


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    default_config = os.getenv("TF_MIGRATE_DECLARATION", DEFAULT_DECLARATION_FILE)
    default_state = os.getenv("TF_MIGRATE_STATE_FILE", DEFAULT_STATE_FILE)
    default_log_level = os.getenv("TF_MIGRATE_LOG_LEVEL", "INFO")

    parser = argparse.ArgumentParser(
        prog="tfstack-migrate",
        description="Migrate HCP Terraform workspace state into non-VCS Stack deployments",
    )
    parser.add_argument("--config", default=default_config, help="Stack migration declaration file")
    parser.add_argument("--state", default=default_state, help="State file path")
    parser.add_argument(
        "--log-level",
        default=default_log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("validate", help="Validate the declaration and exit")
    subparsers.add_parser("plan", help="Refresh state and show the update strategy")
    subparsers.add_parser("apply", help="Refresh state, plan and apply the migration")
    subparsers.add_parser("refresh", help="Refresh state from HCP Terraform")
    subparsers.add_parser("destroy", help="Forget the migration; nothing is changed remotely")
    subparsers.add_parser("show-migration", help="Print the stored per-workspace migration data")

    return parser.parse_args(argv)


def print_diagnostics(diagnostics: Diagnostics) -> None:
    for diagnostic in diagnostics:
        print(diagnostic.render(), file=sys.stderr)


def _exit_code(diagnostics: Diagnostics) -> int:
    return EXIT_ERROR if diagnostics.has_error() else EXIT_OK


def _print_plan(plan: PlanResult) -> None:
    if plan.strategy is None:
        return
    print(f"Strategy: {plan.kind.value}")
    description = plan.strategy.describe()
    if description:
        print(f"  {description}")
    if plan.planned is not None:
        for name, value in plan.planned.render().items():
            print(f"  {name} = {value}")


class MigrationCommands:
    """Lifecycle commands run against a declaration and a state file."""

    def __init__(
        self,
        config_path: str,
        state_path: str,
        settings: StackMigrationSettings,
        controller_factory: ControllerFactory | None = None,
    ):
        self.config_path = config_path
        self.store = StateStore(state_path)
        self.settings = settings
        self.controller_factory = controller_factory or StackMigrationController
        self.logger = get_cli_logger()

    async def run(self, command: str) -> int:
        handlers = {
            "validate": self.validate,
            "plan": self.plan,
            "apply": self.apply,
            "refresh": self.refresh,
            "destroy": self.destroy,
            "show-migration": self.show_migration,
        }
        return await handlers[command]()

    async def _load_resource(self) -> tuple[StackMigrationController, StackMigrationResource]:
        resource = await load_config_async(self.config_path)
        return self.controller_factory(self.settings), resource

    async def validate(self) -> int:
        controller, resource = await self._load_resource()
        _, diagnostics = controller.validate(resource)
        print_diagnostics(diagnostics)
        if not diagnostics.has_error():
            print(f"Declaration {self.config_path} is valid")
        return _exit_code(diagnostics)

    async def _refreshed_state(
        self, controller: StackMigrationController, diagnostics: Diagnostics
    ) -> StackMigrationState | None:
        state = self.store.load()
        if state is None:
            return None
        refreshed, read_diagnostics = await controller.read(state)
        diagnostics.extend(read_diagnostics)
        return refreshed

    async def plan(self) -> int:
        controller, resource = await self._load_resource()
        diagnostics = controller.configure()
        if diagnostics.has_error():
            print_diagnostics(diagnostics)
            return EXIT_ERROR

        async with controller:
            state = await self._refreshed_state(controller, diagnostics)
            if diagnostics.has_error():
                print_diagnostics(diagnostics)
                return EXIT_ERROR
            plan = await controller.modify_plan(resource, state)

        diagnostics.extend(plan.diagnostics)
        print_diagnostics(diagnostics)
        _print_plan(plan)
        return _exit_code(diagnostics)

    async def apply(self) -> int:
        controller, resource = await self._load_resource()
        diagnostics = controller.configure()
        if diagnostics.has_error():
            print_diagnostics(diagnostics)
            return EXIT_ERROR

        async with controller:
            # Step 1: Refresh
            state = await self._refreshed_state(controller, diagnostics)
            if diagnostics.has_error():
                print_diagnostics(diagnostics)
                return EXIT_ERROR
            if state is not None:
                self.store.save(state)

            # Step 2: Plan
            plan = await controller.modify_plan(resource, state)
            diagnostics.extend(plan.diagnostics)
            if plan.diagnostics.has_error() or plan.strategy is None:
                print_diagnostics(diagnostics)
                _print_plan(plan)
                return EXIT_ERROR
            _print_plan(plan)

            # Step 3: Create or update
            if state is None:
                new_state, apply_diagnostics = await controller.create(resource)
            else:
                new_state, apply_diagnostics = await controller.update(resource, state, plan)

        diagnostics.extend(apply_diagnostics)
        if new_state is not None:
            self.store.save(new_state)
            self.logger.info("State saved", path=str(self.store.path), migration_hash=new_state.migration_hash)
        print_diagnostics(diagnostics)
        return _exit_code(diagnostics)

    async def refresh(self) -> int:
        controller = self.controller_factory(self.settings)
        state = self.store.load()
        if state is None:
            print(f"No state found at {self.store.path}", file=sys.stderr)
            return EXIT_ERROR

        diagnostics = controller.configure()
        if diagnostics.has_error():
            print_diagnostics(diagnostics)
            return EXIT_ERROR

        async with controller:
            refreshed, read_diagnostics = await controller.read(state)
        diagnostics.extend(read_diagnostics)
        if not read_diagnostics.has_error():
            self.store.save(refreshed)
        print_diagnostics(diagnostics)
        return _exit_code(diagnostics)

    async def destroy(self) -> int:
        controller = self.controller_factory(self.settings)
        diagnostics = controller.delete(self.store.load())
        self.store.delete()
        print_diagnostics(diagnostics)
        return _exit_code(diagnostics)

    async def show_migration(self) -> int:
        state = self.store.load()
        if state is None:
            print(f"No state found at {self.store.path}", file=sys.stderr)
            return EXIT_ERROR
        document = {workspace: data.model_dump(mode="json") for workspace, data in state.migration_data.items()}
        print(json.dumps(document, indent=2, sort_keys=True))
        return EXIT_OK


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = parse_args(argv)
    setup_logging(log_level=args.log_level)
    logger = get_cli_logger()

    commands = MigrationCommands(args.config, args.state, get_settings())
    try:
        exit_code = asyncio.run(commands.run(args.command))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        exit_code = EXIT_ERROR
    except StackMigrationError as e:
        logger.error("Command failed", command=args.command, error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        exit_code = EXIT_ERROR

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
