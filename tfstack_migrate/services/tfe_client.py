"""HCP Terraform API client over aiohttp."""

import asyncio
from pathlib import Path
from typing import Any

import aiohttp
import structlog

from ..core.archive import SourceBundleArchiver
from ..core.exceptions import RemoteNotFoundError, TfeApiError
from ..models.api import (
    DeploymentGroup,
    DeploymentRun,
    DeploymentRunStep,
    Organization,
    Project,
    Stack,
    StackConfiguration,
    StackDiagnostic,
    StateVersion,
    Workspace,
)

JSONAPI_CONTENT_TYPE = "application/vnd.api+json"
PAGE_SIZE = 100
LOCK_REASON = "Preparing to convert workspace state to stack state"


class TfeClient:
    """Typed read/write operations against the HCP Terraform API.

    Use as an async context manager so the HTTP session is always closed::

        async with TfeClient(hostname, token) as client:
            org = await client.read_organization("my-org")
    """

    def __init__(self, hostname: str, token: str, timeout: float = 30):
        """Initialize the client.

        Args:
            hostname: HCP Terraform hostname
            token: API bearer token
            timeout: Total per-request timeout in seconds
        """
        self.hostname = hostname
        self.timeout = timeout
        self._token = token
        self._api_url = f"https://{hostname}/api/v2"
        self._session: aiohttp.ClientSession | None = None
        self._archiver = SourceBundleArchiver()
        self.logger = structlog.get_logger().bind(component="tfe_client", hostname=hostname)

    async def __aenter__(self) -> "TfeClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def connect(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                connector=aiohttp.TCPConnector(limit=10),
            )

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    @property
    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._token}"}

    def _require_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise TfeApiError("Client session is not open")
        return self._session

    async def api_request(
        self,
        method: str,
        endpoint: str,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Make a JSON:API request.

        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: Path relative to ``/api/v2``
            **kwargs: Additional request parameters

        Returns:
            Decoded JSON document, empty for bodiless responses

        Raises:
            RemoteNotFoundError: On HTTP 404
            TfeApiError: On any other request failure
        """
        session = self._require_session()
        url = f"{self._api_url}/{endpoint.lstrip('/')}"
        headers = {**self._auth_headers, "Content-Type": JSONAPI_CONTENT_TYPE}

        try:
            async with session.request(method, url, headers=headers, **kwargs) as response:
                if response.status == 404:
                    raise RemoteNotFoundError(f"{method} {endpoint}: not found", status=404)
                response.raise_for_status()
                if response.status == 204 or response.content_length == 0:
                    return {}
                return await response.json(content_type=None) or {}
        except aiohttp.ClientResponseError as e:
            raise TfeApiError(f"{method} {endpoint} failed: {e.message}", status=e.status) from e
        except asyncio.TimeoutError as e:
            raise TfeApiError(f"{method} {endpoint} timed out after {self.timeout}s") from e
        except aiohttp.ClientError as e:
            raise TfeApiError(f"{method} {endpoint} failed: {e}") from e

    async def _paginate(self, endpoint: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """Collect ``data`` across all pages of a list endpoint."""
        items: list[dict[str, Any]] = []
        page = 1
        while True:
            query = {**(params or {}), "page[number]": page, "page[size]": PAGE_SIZE}
            document = await self.api_request("GET", endpoint, params=query)
            items.extend(document.get("data") or [])
            next_page = ((document.get("meta") or {}).get("pagination") or {}).get("next-page")
            if not next_page:
                return items
            page = next_page

    # Organizations, projects, stacks

    async def read_organization(self, name: str) -> Organization:
        document = await self.api_request("GET", f"organizations/{name}")
        return Organization.from_jsonapi(document["data"])

    async def read_project(self, organization: str, name: str) -> Project:
        """Find a project by exact name within an organization."""
        items = await self._paginate(
            f"organizations/{organization}/projects", {"filter[names]": name}
        )
        for item in items:
            project = Project.from_jsonapi(item)
            if project.name == name:
                return project
        raise RemoteNotFoundError(f"Project {name} not found in organization {organization}", status=404)

    async def read_stack(self, organization: str, project_id: str, name: str) -> Stack:
        """Find a stack by exact name within a project, with its latest configuration."""
        document = await self.api_request(
            "GET",
            f"organizations/{organization}/stacks",
            params={
                "filter[project][id]": project_id,
                "search[name]": name,
                "include": "latest_stack_configuration",
                "page[size]": PAGE_SIZE,
            },
        )
        included = document.get("included") or []
        for item in document.get("data") or []:
            stack = Stack.from_jsonapi(item, included)
            if stack.name == name:
                return stack
        raise RemoteNotFoundError(f"Stack {name} not found in project {project_id}", status=404)

    # Stack configurations

    async def upload_stack_configuration(self, stack_id: str, config_file_dir: str | Path) -> str:
        """Create a stack source and upload the directory as its tar.gz bundle.

        Returns:
            ID of the stack configuration created for the upload
        """
        document = await self.api_request(
            "POST",
            f"stacks/{stack_id}/stack-sources",
            json={"data": {"type": "stack-sources", "attributes": {"speculative-enabled": False}}},
        )
        data = document.get("data") or {}
        upload_url = (data.get("links") or {}).get("upload-url")
        configuration = (
            (data.get("relationships") or {}).get("stack-configuration", {}).get("data") or {}
        )
        if not upload_url or not configuration.get("id"):
            raise TfeApiError(f"Stack source for stack {stack_id} returned no upload target")

        payload = await self._archiver.pack_async(config_file_dir)
        await self.upload_tar_gzip(upload_url, payload)
        self.logger.info(
            "Stack configuration uploaded",
            stack_id=stack_id,
            configuration_id=configuration["id"],
        )
        return configuration["id"]

    async def read_stack_configuration(self, configuration_id: str) -> StackConfiguration:
        document = await self.api_request("GET", f"stack-configurations/{configuration_id}")
        return StackConfiguration.from_jsonapi(document["data"])

    async def list_deployment_groups(self, configuration_id: str) -> list[DeploymentGroup]:
        items = await self._paginate(f"stack-configurations/{configuration_id}/stack-deployment-groups")
        return [DeploymentGroup.from_jsonapi(item) for item in items]

    async def read_stack_diagnostics(self, configuration_id: str) -> list[StackDiagnostic]:
        items = await self._paginate(f"stack-configurations/{configuration_id}/stack-diagnostics")
        return [StackDiagnostic.from_jsonapi(item) for item in items]

    async def rerun_deployment_group(self, group_id: str, deployments: list[str]) -> None:
        await self.api_request(
            "POST",
            f"stack-deployment-groups/{group_id}/rerun",
            json={"deployments": deployments},
        )
        self.logger.info("Deployment group rerun requested", group_id=group_id, deployments=deployments)

    # Deployment runs and steps

    async def read_latest_deployment_run(self, stack_id: str, deployment_name: str) -> DeploymentRun | None:
        """Most recently created run of a deployment, or None if it has never run."""
        document = await self.api_request(
            "GET",
            f"stacks/{stack_id}/stack-deployments/{deployment_name}/stack-deployment-runs",
            params={"include": "stack-deployment-group"},
        )
        included = document.get("included") or []
        runs = [DeploymentRun.from_jsonapi(item, included) for item in document.get("data") or []]
        if not runs:
            return None
        return max(runs, key=lambda run: (run.created_at is not None, run.created_at or 0))

    async def list_deployment_run_steps(self, run_id: str) -> list[DeploymentRunStep]:
        items = await self._paginate(f"stack-deployment-runs/{run_id}/stack-deployment-steps")
        return [DeploymentRunStep.from_jsonapi(item) for item in items]

    async def read_step(self, step_id: str) -> DeploymentRunStep:
        document = await self.api_request("GET", f"stack-deployment-steps/{step_id}")
        return DeploymentRunStep.from_jsonapi(document["data"])

    async def advance_step(self, step_id: str) -> None:
        await self.api_request("POST", f"stack-deployment-steps/{step_id}/advance")
        self.logger.info("Deployment step advanced", step_id=step_id)

    # Workspaces and state

    async def read_workspace(self, organization: str, name: str) -> Workspace:
        document = await self.api_request("GET", f"organizations/{organization}/workspaces/{name}")
        return Workspace.from_jsonapi(document["data"])

    async def lock_workspace(self, workspace_id: str, reason: str = LOCK_REASON) -> None:
        await self.api_request("POST", f"workspaces/{workspace_id}/actions/lock", json={"reason": reason})
        self.logger.info("Workspace locked", workspace_id=workspace_id)

    async def unlock_workspace(self, workspace_id: str) -> None:
        await self.api_request("POST", f"workspaces/{workspace_id}/actions/unlock")
        self.logger.info("Workspace unlocked", workspace_id=workspace_id)

    async def read_current_state_version(self, workspace_id: str) -> StateVersion:
        document = await self.api_request("GET", f"workspaces/{workspace_id}/current-state-version")
        return StateVersion.from_jsonapi(document["data"])

    async def download_state(self, download_url: str) -> bytes:
        """Download raw state bytes from a state version download URL."""
        session = self._require_session()
        try:
            async with session.get(download_url, headers=self._auth_headers) as response:
                response.raise_for_status()
                return await response.read()
        except aiohttp.ClientResponseError as e:
            raise TfeApiError(f"State download failed: {e.message}", status=e.status) from e
        except asyncio.TimeoutError as e:
            raise TfeApiError(f"State download timed out after {self.timeout}s") from e
        except aiohttp.ClientError as e:
            raise TfeApiError(f"State download failed: {e}") from e

    async def upload_tar_gzip(self, upload_url: str, payload: bytes) -> None:
        """PUT a binary payload to a pre-signed upload URL."""
        session = self._require_session()
        try:
            async with session.put(
                upload_url,
                data=payload,
                headers={"Content-Type": "application/octet-stream"},
            ) as response:
                response.raise_for_status()
        except aiohttp.ClientResponseError as e:
            raise TfeApiError(f"Upload failed: {e.message}", status=e.status) from e
        except asyncio.TimeoutError as e:
            raise TfeApiError(f"Upload timed out after {self.timeout}s") from e
        except aiohttp.ClientError as e:
            raise TfeApiError(f"Upload failed: {e}") from e

    async def upload_stack_state(self, upload_url: str, state_file: str | Path) -> None:
        """Upload a converted stack-state file to an import-state step's upload URL."""
        payload = Path(state_file).read_bytes()
        await self.upload_tar_gzip(upload_url, payload)
        self.logger.info("Stack state uploaded", size_bytes=len(payload))
