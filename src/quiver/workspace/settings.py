"""
quiver.workspace.settings - Project and stack settings files.

quiver.yaml (project):

    name: my-project
    runtime: python
    description: A minimal program
    main: ./infra
    backend:
      url: file://~/.quiver/state

quiver.<stack>.yaml (stack):

    secretsprovider: passphrase
    config:
      my-project:region: us-west-2
      my-project:password:
        secure: v1:aHVudGVyMg==

Each file may be YAML (.yaml, .yml) or JSON (.json). When several
exist, they are tried in that order.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from quiver.errors import ParseError, SettingsNotFoundError


SETTINGS_EXTENSIONS = (".yaml", ".yml", ".json")
PROJECT_FILE_STEM = "quiver"


@dataclass
class ProjectBackend:
    url: str | None = None


@dataclass
class ProjectSettings:
    """Parsed quiver.yaml."""
    name: str
    runtime: str = "python"
    description: str | None = None
    main: str | None = None
    backend: ProjectBackend | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = {k: v for k, v in self.raw.items()}
        data["name"] = self.name
        data["runtime"] = self.runtime
        if self.description is not None:
            data["description"] = self.description
        if self.main is not None:
            data["main"] = self.main
        if self.backend is not None and self.backend.url:
            data["backend"] = {"url": self.backend.url}
        return data


@dataclass
class SecureValue:
    """An encrypted config entry as stored in a stack settings file."""
    secure: str


@dataclass
class StackSettings:
    """Parsed quiver.<stack>.yaml."""
    secrets_provider: str | None = None
    encrypted_key: str | None = None
    encryption_salt: str | None = None
    config: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.secrets_provider:
            data["secretsprovider"] = self.secrets_provider
        if self.encrypted_key:
            data["encryptedkey"] = self.encrypted_key
        if self.encryption_salt:
            data["encryptionsalt"] = self.encryption_salt
        if self.config:
            data["config"] = {
                k: {"secure": v.secure} if isinstance(v, SecureValue) else v
                for k, v in self.config.items()
            }
        return data


def stack_file_stem(stack_name: str) -> str:
    """Settings file stem for a (possibly fully qualified) stack name."""
    return f"{PROJECT_FILE_STEM}.{stack_name.split('/')[-1]}"


def find_settings_file(directory: str | Path, stem: str) -> Path | None:
    d = Path(directory)
    for ext in SETTINGS_EXTENSIONS:
        candidate = d / f"{stem}{ext}"
        if candidate.exists():
            return candidate
    return None


def _load(path: Path) -> dict[str, Any]:
    text = path.read_text()
    try:
        if path.suffix == ".json":
            data = json.loads(text) if text.strip() else {}
        else:
            data = yaml.safe_load(text) or {}
    except (ValueError, yaml.YAMLError) as e:
        raise ParseError(f"Failed to parse {path}: {e}") from e
    if not isinstance(data, dict):
        raise ParseError(f"Settings file must be a mapping: {path}")
    return data


def _dump(path: Path, data: dict[str, Any]) -> None:
    with open(path, "w") as f:
        if path.suffix == ".json":
            json.dump(data, f, indent=4)
            f.write("\n")
        else:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)


def parse_project_settings(data: dict[str, Any], source: str = "project settings") -> ProjectSettings:
    name = data.get("name")
    if not name or not isinstance(name, str):
        raise ParseError(f"{source}: 'name' is required")
    runtime = data.get("runtime", "python")
    # runtime may also be written as {name: python, options: {...}}
    if isinstance(runtime, dict):
        runtime = runtime.get("name", "python")

    backend = None
    backend_raw = data.get("backend")
    if isinstance(backend_raw, dict):
        backend = ProjectBackend(url=backend_raw.get("url"))

    return ProjectSettings(
        name=name,
        runtime=str(runtime),
        description=data.get("description"),
        main=data.get("main"),
        backend=backend,
        raw=data,
    )


def parse_stack_settings(data: dict[str, Any], source: str = "stack settings") -> StackSettings:
    config_raw = data.get("config") or {}
    if not isinstance(config_raw, dict):
        raise ParseError(f"{source}: 'config' must be a mapping")

    config: dict[str, Any] = {}
    for key, value in config_raw.items():
        if isinstance(value, dict) and set(value) == {"secure"}:
            config[key] = SecureValue(secure=str(value["secure"]))
        else:
            config[key] = value

    return StackSettings(
        secrets_provider=data.get("secretsprovider"),
        encrypted_key=data.get("encryptedkey"),
        encryption_salt=data.get("encryptionsalt"),
        config=config,
    )


def load_project_settings(directory: str | Path) -> ProjectSettings:
    """Read the project settings file from a directory.

    Raises:
        SettingsNotFoundError: no quiver.yaml/.yml/.json present
        ParseError: malformed content
    """
    path = find_settings_file(directory, PROJECT_FILE_STEM)
    if path is None:
        raise SettingsNotFoundError(f"No project settings file found in {directory}")
    return parse_project_settings(_load(path), str(path))


def save_project_settings(directory: str | Path, settings: ProjectSettings) -> Path:
    """Write project settings, keeping the format of an existing file."""
    path = find_settings_file(directory, PROJECT_FILE_STEM)
    if path is None:
        path = Path(directory) / f"{PROJECT_FILE_STEM}.yaml"
    _dump(path, settings.to_dict())
    return path


def load_stack_settings(directory: str | Path, stack_name: str) -> StackSettings:
    stem = stack_file_stem(stack_name)
    path = find_settings_file(directory, stem)
    if path is None:
        raise SettingsNotFoundError(f"No settings file for stack '{stack_name}' in {directory}")
    return parse_stack_settings(_load(path), str(path))


def save_stack_settings(directory: str | Path, stack_name: str, settings: StackSettings) -> Path:
    stem = stack_file_stem(stack_name)
    path = find_settings_file(directory, stem)
    if path is None:
        path = Path(directory) / f"{stem}.yaml"
    _dump(path, settings.to_dict())
    return path
