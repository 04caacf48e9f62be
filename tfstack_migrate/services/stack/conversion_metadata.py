"""Derivation of the address maps used to convert workspace state into stack state."""

import json
import re
from dataclasses import dataclass, field
from typing import Any

import structlog

from ...core.exceptions import ConfigurationError, ConversionError
from ...core.stack_config_parser import StackConfigParser

logger = structlog.get_logger()

_MODULE_SEGMENT = re.compile(r"^module\.([^.\[]+)")


@dataclass
class ConversionMetadata:
    """Address maps passed to MigrateTerraformState; exactly one side is normally used."""

    resource_address_map: dict[str, str] = field(default_factory=dict)
    module_address_map: dict[str, str] = field(default_factory=dict)

    @property
    def is_modular(self) -> bool:
        return bool(self.module_address_map)


def _resource_address(resource: dict[str, Any]) -> str:
    prefix = "data." if resource.get("mode") == "data" else ""
    return f"{prefix}{resource.get('type', '')}.{resource.get('name', '')}"


def _top_level_module(module_address: str) -> str | None:
    match = _MODULE_SEGMENT.match(module_address)
    return match.group(1) if match else None


def parse_state_resources(raw_state: bytes) -> list[dict[str, Any]]:
    """Resource entries of a raw Terraform state document.

    Raises:
        ConversionError: If the state is not valid JSON
    """
    try:
        document = json.loads(raw_state)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ConversionError(f"Workspace state is not valid JSON: {e}") from e
    resources = document.get("resources") if isinstance(document, dict) else None
    return [item for item in resources or [] if isinstance(item, dict)]


def is_fully_modular(resources: list[dict[str, Any]]) -> bool:
    """True when the state has resources and every one lives inside a module."""
    return bool(resources) and all(resource.get("module") for resource in resources)


def derive_conversion_metadata(
    raw_state: bytes,
    config_file_dir: str,
    resource_address_map: dict[str, str] | None = None,
    module_address_map: dict[str, str] | None = None,
) -> ConversionMetadata:
    """Build the address maps for converting one workspace's state.

    Explicit maps from the declaration win over derived ones. Otherwise a fully
    modular state maps each top-level module to the component of the same
    name, and a state with root resources requires a single component that
    receives every root resource.

    Args:
        raw_state: Raw Terraform state bytes of the workspace
        config_file_dir: Stack source bundle directory
        resource_address_map: Declared resource address overrides
        module_address_map: Declared module address overrides

    Returns:
        Conversion metadata with at least one non-empty map

    Raises:
        ConversionError: When no map can be derived
    """
    if resource_address_map or module_address_map:
        return ConversionMetadata(
            resource_address_map=dict(resource_address_map or {}),
            module_address_map=dict(module_address_map or {}),
        )

    resources = parse_state_resources(raw_state)
    if not resources:
        raise ConversionError("Workspace state has no resources to convert")

    try:
        components = StackConfigParser(config_file_dir).read_component_names()
    except ConfigurationError as e:
        raise ConversionError(f"Failed to read components from {config_file_dir}: {e}") from e

    if is_fully_modular(resources):
        module_map: dict[str, str] = {}
        for resource in resources:
            module_name = _top_level_module(resource.get("module", ""))
            if module_name is None:
                raise ConversionError(f"Unrecognized module address {resource.get('module')!r} in state")
            if module_name not in components:
                raise ConversionError(
                    f"No component named {module_name!r} found in {config_file_dir} for module.{module_name}"
                )
            module_map[module_name] = module_name
        logger.debug("Derived module address map", modules=sorted(module_map))
        return ConversionMetadata(module_address_map=module_map)

    if len(components) != 1:
        raise ConversionError(
            f"Workspace state has root module resources and requires exactly one component in "
            f"{config_file_dir}, found {len(components)}"
        )
    component = f"component.{components[0]}"
    resource_map = {
        _resource_address(resource): component for resource in resources if not resource.get("module")
    }
    logger.debug("Derived resource address map", component=component, resources=len(resource_map))
    return ConversionMetadata(resource_address_map=resource_map)
