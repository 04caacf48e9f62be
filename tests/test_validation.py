"""Tests for attribute validation and remote preconditions."""

from pathlib import Path

import pytest

from tests.fakes import FakeTfeClient
from tfstack_migrate.core.exceptions import PreconditionError, RemoteConflictError
from tfstack_migrate.models.attributes import StackMigrationResource
from tfstack_migrate.services.stack.validation import StackMigrationValidation


@pytest.fixture
def validation() -> StackMigrationValidation:
    return StackMigrationValidation()


def _summaries(diagnostics) -> list[str]:
    return [d.summary for d in diagnostics.errors]


class TestValidateAttributes:
    """Declaration attribute validation."""

    def test_valid_resource(self, validation, resource):
        validated, diagnostics = validation.validate_attributes(resource)

        assert not diagnostics.has_error()
        assert validated == resource

    def test_environment_defaults_fill_missing_values(self, validation, resource):
        resource = resource.model_copy(update={"organization": None, "project": None})

        validated, diagnostics = validation.validate_attributes(resource, "acme-corp", "platform")

        assert not diagnostics.has_error()
        assert validated.organization == "acme-corp"
        assert validated.project == "platform"

    def test_missing_organization_and_project(self, validation, resource):
        resource = resource.model_copy(update={"organization": None, "project": None})

        _, diagnostics = validation.validate_attributes(resource)

        assert _summaries(diagnostics) == ["Invalid Organization Name", "Invalid Project Name"]

    @pytest.mark.parametrize(
        "field,value",
        [
            ("name", "bad/name"),
            ("name", "x" * 91),
            ("organization", "ab"),
            ("project", "has.dot"),
        ],
    )
    def test_name_patterns(self, validation, resource, field, value):
        _, diagnostics = validation.validate_attributes(resource.model_copy(update={field: value}))

        (error,) = diagnostics.errors
        assert error.summary == "Invalid Attribute Value"
        assert error.attribute == field
        assert "may contain valid characters" in error.detail

    def test_empty_mapping(self, validation, resource):
        _, diagnostics = validation.validate_attributes(
            resource.model_copy(update={"workspace_deployment_mapping": {}})
        )

        (error,) = diagnostics.errors
        assert error.attribute == "workspace_deployment_mapping"
        assert "at least one" in error.detail

    def test_invalid_mapping_entries(self, validation, resource):
        _, diagnostics = validation.validate_attributes(
            resource.model_copy(update={"workspace_deployment_mapping": {"bad/ws": "prod!"}})
        )

        assert len(diagnostics.errors) == 2
        assert "workspace name" in diagnostics.errors[0].detail
        assert "deployment name" in diagnostics.errors[1].detail

    def test_relative_path(self, validation, resource):
        _, diagnostics = validation.validate_attributes(resource.model_copy(update={"config_file_dir": "stack"}))

        assert _summaries(diagnostics) == ["Invalid Path"]

    def test_missing_path(self, validation, resource, tmp_path: Path):
        _, diagnostics = validation.validate_attributes(
            resource.model_copy(update={"terraform_config_dir": str(tmp_path / "missing")})
        )

        assert _summaries(diagnostics) == ["Path Does Not Exist"]

    def test_path_is_file(self, validation, resource, terraform_config_dir: Path):
        _, diagnostics = validation.validate_attributes(
            resource.model_copy(update={"terraform_config_dir": str(terraform_config_dir / "main.tf")})
        )

        assert _summaries(diagnostics) == ["Path Is Not a Directory"]


class TestCheckPreconditions:
    """Fail-fast remote preconditions."""

    @pytest.mark.asyncio
    async def test_resolves_remote_target(self, validation, resource, fake_client: FakeTfeClient):
        target = await validation.check_preconditions(fake_client, resource)

        assert target.organization.name == "acme-corp"
        assert target.project.id == "prj-platform"
        assert target.stack.id == "st-networking"
        assert target.declarations.names == {"production", "staging"}

    @pytest.mark.asyncio
    async def test_duplicate_deployment_name(self, validation, resource, fake_client):
        resource = resource.model_copy(
            update={"workspace_deployment_mapping": {"network-prod": "production", "network-dr": "production"}}
        )

        with pytest.raises(PreconditionError) as exc_info:
            await validation.check_preconditions(fake_client, resource)

        assert exc_info.value.summary == "Duplicate Deployment Name"

    @pytest.mark.asyncio
    async def test_missing_organization(self, validation, resource, fake_client):
        resource = resource.model_copy(update={"organization": "other-org"})

        with pytest.raises(PreconditionError) as exc_info:
            await validation.check_preconditions(fake_client, resource)

        assert exc_info.value.summary == "Error Reading organization"

    @pytest.mark.asyncio
    async def test_missing_stack(self, validation, resource, fake_client):
        resource = resource.model_copy(update={"name": "compute"})

        with pytest.raises(PreconditionError) as exc_info:
            await validation.check_preconditions(fake_client, resource)

        assert exc_info.value.summary == "Error Reading stack"

    @pytest.mark.asyncio
    async def test_vcs_backed_stack_rejected(self, validation, resource, fake_client):
        fake_client.stack = fake_client.stack.model_copy(update={"vcs_repo": {"identifier": "acme/networking"}})

        with pytest.raises(RemoteConflictError) as exc_info:
            await validation.check_preconditions(fake_client, resource)

        assert exc_info.value.summary == "Migration to VCS backed stacks is not supported"

    @pytest.mark.asyncio
    async def test_deployment_names_mismatch(self, validation, resource, fake_client):
        resource = resource.model_copy(update={"workspace_deployment_mapping": {"network-prod": "production"}})

        with pytest.raises(PreconditionError) as exc_info:
            await validation.check_preconditions(fake_client, resource)

        assert exc_info.value.summary == "Deployment names mismatch"
        assert "staging" in exc_info.value.detail

    @pytest.mark.asyncio
    async def test_unreadable_deployment_files(self, validation, resource, fake_client, stack_config_dir: Path):
        (stack_config_dir / "broken.tfdeploy.hcl").write_text('deployment "dr" {\n')

        with pytest.raises(PreconditionError) as exc_info:
            await validation.check_preconditions(fake_client, resource)

        assert exc_info.value.summary == "Error Reading deployment names from stack configuration directory"

    @pytest.mark.asyncio
    async def test_stack_resource_model_is_not_mutated(self, validation, resource: StackMigrationResource, fake_client):
        before = resource.model_dump()

        await validation.check_preconditions(fake_client, resource)

        assert resource.model_dump() == before
