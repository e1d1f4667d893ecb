"""
quiver.config - Typed stack configuration.

Configuration is a flat map of project-qualified keys to string values:

    myproj:region   -> ConfigValue("us-west-2")
    myproj:password -> ConfigValue("hunter2", secret=True)
    myproj:tags     -> ConfigValue('{"team":"infra"}', nested=True)

Values are always stored as text. Booleans, numbers and objects are
serialized before they reach the engine and can be read back with
ConfigValue.as_python(). The secret flag only picks the persistence path
(the engine encrypts secrets at rest); it is passed through untouched.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Mapping

from loguru import logger

from quiver.errors import (
    ConfigNotFoundError,
    ConfigSetError,
    ExecutionError,
    StackNotFoundError,
)

if TYPE_CHECKING:
    from quiver.workspace.workspace import Workspace


@dataclass
class ConfigValue:
    """A single configuration value."""
    value: str
    secret: bool = False
    nested: bool = False

    @classmethod
    def of(cls, obj: Any, secret: bool = False) -> ConfigValue:
        """Build a ConfigValue from any Python value."""
        if isinstance(obj, ConfigValue):
            return obj
        return cls(
            value=serialize_value(obj),
            secret=secret,
            nested=isinstance(obj, (dict, list)),
        )

    def as_python(self) -> Any:
        return deserialize_value(self.value)

    def to_dict(self) -> dict[str, Any]:
        return {"value": self.value, "secret": self.secret}


ConfigMap = dict[str, ConfigValue]


@dataclass
class ConfigDiff:
    """Difference between stored and desired configuration."""
    added: dict[str, ConfigValue] = field(default_factory=dict)
    changed: dict[str, tuple[ConfigValue, ConfigValue]] = field(default_factory=dict)
    removed: dict[str, ConfigValue] = field(default_factory=dict)

    @property
    def empty(self) -> bool:
        return not (self.added or self.changed or self.removed)


def is_qualified(key: str) -> bool:
    return ":" in key and not key.startswith(":")


def normalize_key(key: str, project: str) -> str:
    """Qualify a bare key with the project name.

    >>> normalize_key("region", "web")
    'web:region'
    >>> normalize_key("aws:region", "web")
    'aws:region'
    """
    if not key:
        raise ValueError("config key must not be empty")
    if is_qualified(key):
        return key
    return f"{project}:{key}"


def serialize_value(obj: Any) -> str:
    """Convert a Python value to the text form the engine stores.

    >>> serialize_value(True)
    'true'
    >>> serialize_value({"inner": "x"})
    '{"inner":"x"}'
    """
    if isinstance(obj, str):
        return obj
    if isinstance(obj, bool):
        return "true" if obj else "false"
    if isinstance(obj, (int, float)):
        return str(obj)
    if isinstance(obj, (dict, list, tuple)):
        return json.dumps(obj, separators=(",", ":"))
    if obj is None:
        return ""
    return str(obj)


def deserialize_value(text: str) -> Any:
    """Best-effort inverse of serialize_value; plain text stays text."""
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return text


def coerce_config_map(values: Mapping[str, Any], project: str) -> ConfigMap:
    """Normalize keys and wrap raw values as ConfigValue."""
    result: ConfigMap = {}
    for key, value in values.items():
        result[normalize_key(key, project)] = ConfigValue.of(value)
    return result


def diff_config(current: Mapping[str, ConfigValue], desired: Mapping[str, ConfigValue]) -> ConfigDiff:
    """Compare two qualified config maps."""
    diff = ConfigDiff()
    for key, want in desired.items():
        have = current.get(key)
        if have is None:
            diff.added[key] = want
        elif (have.value, have.secret) != (want.value, want.secret):
            diff.changed[key] = (have, want)
    for key, have in current.items():
        if key not in desired:
            diff.removed[key] = have
    return diff


def parse_config_json(data: Any) -> ConfigMap:
    """Parse the engine's `config --json` output."""
    if not isinstance(data, dict):
        return {}
    result: ConfigMap = {}
    for key, entry in data.items():
        if not isinstance(entry, dict):
            result[key] = ConfigValue(serialize_value(entry))
            continue
        result[key] = ConfigValue(
            value=serialize_value(entry.get("value", "")),
            secret=bool(entry.get("secret", False)),
            nested="objectValue" in entry,
        )
    return result


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# STORE
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
class ConfigStore:
    """Configuration of one stack, backed by the engine.

    Writes round-trip through the stack's settings file, so concurrent
    writers to the same stack must be serialized by the caller.
    """

    def __init__(self, workspace: Workspace, stack_name: str):
        self.workspace = workspace
        self.stack_name = stack_name

    @property
    def project(self) -> str:
        return self.workspace.project_name

    def _key(self, key: str) -> str:
        return normalize_key(key, self.project)

    def _stack_args(self) -> list[str]:
        return ["--stack", self.stack_name]

    def get(self, key: str, path: bool = False) -> ConfigValue:
        qualified = self._key(key)
        args = ["config", "get", qualified, "--json", *self._stack_args()]
        if path:
            args.append("--path")
        try:
            result = self.workspace.run(args)
        except StackNotFoundError:
            raise
        except ExecutionError as e:
            if "not found" in e.stderr:
                raise ConfigNotFoundError.wrap(
                    e, f"configuration key '{qualified}' not found "
                       f"for stack '{self.stack_name}'",
                ) from e
            raise
        data = json.loads(result.stdout)
        return ConfigValue(
            value=serialize_value(data.get("value", "")),
            secret=bool(data.get("secret", False)),
            nested="objectValue" in data,
        )

    def get_all(self) -> ConfigMap:
        args = ["config", "--show-secrets", "--json", *self._stack_args()]
        result = self.workspace.run(args)
        if not result.stdout.strip():
            return {}
        return parse_config_json(json.loads(result.stdout))

    def set(self, key: str, value: Any, path: bool = False) -> None:
        cv = ConfigValue.of(value)
        qualified = self._key(key)
        args = [
            "config", "set", qualified,
            "--secret" if cv.secret else "--plaintext",
            *self._stack_args(),
        ]
        if path:
            args.append("--path")
        # "--" so flag-like values (e.g. "-value") reach the engine intact
        args.extend(["--", cv.value])
        self.workspace.run(args)
        logger.debug("config set {} on {} (secret={})", qualified, self.stack_name, cv.secret)

    def set_all(self, values: Mapping[str, Any], path: bool = False) -> None:
        """Write several values in a single engine invocation.

        Raises:
            ConfigSetError: the engine rejected the batch; no key in it
                should be assumed written
        """
        if not values:
            return
        args = ["config", "set-all", *self._stack_args()]
        if path:
            args.append("--path")
        keys: list[str] = []
        for key, value in values.items():
            cv = ConfigValue.of(value)
            qualified = self._key(key)
            keys.append(qualified)
            args.extend([
                "--secret" if cv.secret else "--plaintext",
                f"{qualified}={cv.value}",
            ])
        try:
            self.workspace.run(args)
        except StackNotFoundError:
            raise
        except ExecutionError as e:
            raise ConfigSetError.wrap(
                e, f"failed to set config keys {', '.join(keys)}: {e.stderr.strip()}",
                keys=keys,
            ) from e

    def remove(self, key: str, path: bool = False) -> None:
        args = ["config", "rm", self._key(key), *self._stack_args()]
        if path:
            args.append("--path")
        self.workspace.run(args)

    def remove_all(self, keys: list[str], path: bool = False) -> None:
        if not keys:
            return
        args = ["config", "rm-all", *self._stack_args()]
        if path:
            args.append("--path")
        args.extend(self._key(k) for k in keys)
        self.workspace.run(args)

    def refresh(self) -> ConfigMap:
        """Replace local config with the one from the last deployment."""
        self.workspace.run(["config", "refresh", "--force", *self._stack_args()])
        return self.get_all()

    def diff(self, desired: Mapping[str, Any]) -> ConfigDiff:
        return diff_config(self.get_all(), coerce_config_map(desired, self.project))
