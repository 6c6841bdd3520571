"""Reading and writing pkgflow.yaml, pkgflow.lock and package.json."""

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

import yaml
from pydantic import BaseModel, ValidationError

from pkgflow.config.schemas import LockFile, PackageManifest, WorkspaceConfig

WORKSPACE_FILE = "pkgflow.yaml"
LOCK_FILE = "pkgflow.lock"
MANIFEST_FILE = "package.json"

ModelT = TypeVar("ModelT", bound=BaseModel)


class ConfigError(Exception):
    """A configuration or metadata file is missing, unreadable or invalid."""

    def __init__(self, message: str, path: Path | None = None):
        self.path = path
        super().__init__(message)


def _read_document(path: Path, parse: Callable[[str], Any], kind: str) -> Any:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ConfigError(f"File not found: {path}", path) from e
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Cannot read {path}: {e}", path) from e

    try:
        return parse(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"Invalid {kind} in {path}: {e}", path) from e


def _validate(model: type[ModelT], data: Any, what: str, path: Path | None) -> ModelT:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid {what}: {e}", path) from e


def load_json(path: Path) -> dict[str, Any]:
    """Load a JSON document that must be an object.

    Raises:
        ConfigError: If the file is missing, unreadable, malformed or not an object
    """
    result = _read_document(path, json.loads, "JSON")
    if not isinstance(result, dict):
        raise ConfigError(f"JSON file must contain an object: {path}", path)
    return result


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML document that must be a mapping. An empty file is ``{}``.

    Raises:
        ConfigError: If the file is missing, unreadable, malformed or not a mapping
    """
    result = _read_document(path, yaml.safe_load, "YAML")
    if result is None:
        return {}
    if not isinstance(result, dict):
        raise ConfigError(f"YAML file must contain a mapping: {path}", path)
    return result


def save_yaml(path: Path, data: dict[str, Any]) -> None:
    """Write block-style YAML, keeping key order."""
    path.parent.mkdir(parents=True, exist_ok=True)
    text = yaml.safe_dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True)
    path.write_text(text, encoding="utf-8")


def load_workspace_config(workspace_root: Path) -> WorkspaceConfig:
    """Load and validate pkgflow.yaml.

    Raises:
        ConfigError: If the file is missing or invalid
    """
    config_path = workspace_root / WORKSPACE_FILE
    return _validate(WorkspaceConfig, load_yaml(config_path), "workspace config", config_path)


def save_workspace_config(workspace_root: Path, config: WorkspaceConfig) -> None:
    save_yaml(workspace_root / WORKSPACE_FILE, config.model_dump(exclude_none=True))


def load_lockfile(workspace_root: Path) -> LockFile | None:
    """Load pkgflow.lock, or None while the workspace has none.

    Raises:
        ConfigError: If the file exists but is invalid
    """
    lock_path = workspace_root / LOCK_FILE
    if not lock_path.exists():
        return None
    return _validate(LockFile, load_yaml(lock_path), "lock file", lock_path)


def save_lockfile(workspace_root: Path, lockfile: LockFile) -> None:
    save_yaml(workspace_root / LOCK_FILE, lockfile.model_dump())


def parse_package_manifest(data: dict[str, Any], path: Path | None = None) -> PackageManifest:
    """Validate a parsed package.json document."""
    return _validate(PackageManifest, data, "package manifest", path)


def load_package_manifest(package_dir: Path) -> PackageManifest:
    """Load package.json from a package version directory."""
    manifest_path = package_dir / MANIFEST_FILE
    return parse_package_manifest(load_json(manifest_path), manifest_path)


def find_workspace_root(start_path: Path | None = None) -> Path | None:
    """Closest directory at or above ``start_path`` (default: cwd) holding pkgflow.yaml."""
    start = (start_path or Path.cwd()).resolve()
    for candidate in (start, *start.parents):
        if (candidate / WORKSPACE_FILE).is_file():
            return candidate
    return None
