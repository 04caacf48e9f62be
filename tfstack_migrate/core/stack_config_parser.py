"""Parser for stack configuration files in a source bundle directory.

Reads ``deployment`` blocks from ``*.tfdeploy.hcl`` files and ``component``
blocks from ``*.tfcomponent.hcl`` / ``*.tfstack.hcl`` files.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import hcl2
import structlog

from .exceptions import ConfigurationError

logger = structlog.get_logger()

DEPLOYMENT_FILE_PATTERN = "*.tfdeploy.hcl"
COMPONENT_FILE_PATTERNS = ("*.tfcomponent.hcl", "*.tfstack.hcl")


@dataclass
class DeploymentDeclarations:
    """Deployment names declared in a source bundle and their import flags."""

    import_flags: dict[str, bool] = field(default_factory=dict)

    @property
    def names(self) -> set[str]:
        return set(self.import_flags)

    def is_marked_for_import(self, deployment_name: str) -> bool:
        return self.import_flags.get(deployment_name, False)


def _strip_label(label: str) -> str:
    """Block labels may keep their surrounding quotes depending on the parser version."""
    if len(label) >= 2 and label[0] == label[-1] == '"':
        return label[1:-1]
    return label


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return _strip_label(value).strip().lower() == "true"
    return False


def _load_hcl_file(path: Path) -> dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            return hcl2.load(handle)
    except OSError as e:
        raise ConfigurationError(f"Failed to read {path}: {e}") from e
    except Exception as e:  # hcl2 surfaces lark parse errors of several types
        raise ConfigurationError(f"Failed to parse HCL file {path}: {e}") from e


def _labeled_blocks(document: dict[str, Any], block_type: str) -> list[tuple[str, dict[str, Any]]]:
    """Flatten ``{block_type: [{label: body}, ...]}`` into (label, body) pairs."""
    blocks: list[tuple[str, dict[str, Any]]] = []
    for entry in document.get(block_type, []) or []:
        if not isinstance(entry, dict):
            continue
        for label, body in entry.items():
            if label.startswith("__"):
                continue
            blocks.append((_strip_label(label), body if isinstance(body, dict) else {}))
    return blocks


class StackConfigParser:
    """Reads deployment and component declarations from a stack configuration directory."""

    def __init__(self, config_file_dir: str | Path):
        self.config_file_dir = Path(config_file_dir)

    def read_deployments(self) -> DeploymentDeclarations:
        """Collect ``deployment "<name>"`` blocks from ``*.tfdeploy.hcl`` files.

        Returns:
            Declarations with each deployment's ``import`` flag

        Raises:
            ConfigurationError: On parse failures, a deployment file without
                deployment blocks, or a duplicate deployment name
        """
        declarations = DeploymentDeclarations()
        for path in sorted(self.config_file_dir.glob(DEPLOYMENT_FILE_PATTERN)):
            blocks = _labeled_blocks(_load_hcl_file(path), "deployment")
            if not blocks:
                raise ConfigurationError(f"No deployment blocks found in file {path}")

            for name, body in blocks:
                if name in declarations.import_flags:
                    raise ConfigurationError(f"Duplicate deployment name found in file {path}: {name}")
                declarations.import_flags[name] = _as_bool(body.get("import", False))

        logger.debug(
            "Deployment declarations parsed",
            config_file_dir=str(self.config_file_dir),
            deployments=sorted(declarations.names),
        )
        return declarations

    def read_component_names(self) -> list[str]:
        """Names of all ``component`` blocks, in file order."""
        names: list[str] = []
        for pattern in COMPONENT_FILE_PATTERNS:
            for path in sorted(self.config_file_dir.glob(pattern)):
                for name, _body in _labeled_blocks(_load_hcl_file(path), "component"):
                    if name not in names:
                        names.append(name)
        return names
