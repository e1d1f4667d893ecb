"""
quiver.program - Run context for inline programs.

An inline program is a plain callable that receives a RunContext and
returns its stack outputs:

    def program(ctx):
        cfg = ctx.config
        return {
            "exp_static": "foo",
            "exp_cfg": cfg.get("bar"),
            "exp_secret": cfg.get_secret("buzz"),
        }

There is no module-level runtime state; everything a program may read
travels through its context. Contexts are registered per process and
session so a second concurrent context for the same session is
detected instead of silently sharing state.
"""

from __future__ import annotations

import json
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Mapping

from quiver.config import ConfigValue, deserialize_value, normalize_key
from quiver.errors import DuplicateContextError


@dataclass(frozen=True)
class Secret:
    """Marks an output value as secret."""
    value: Any

    def __repr__(self) -> str:
        return "Secret([secret])"


class ConfigMissingError(KeyError):
    """A required configuration key is not set."""
    pass


class ProgramConfig:
    """Read-only view of the stack configuration for one run."""

    def __init__(self, project: str, values: Mapping[str, ConfigValue]):
        self.project = project
        self._values = dict(values)
        self.warnings: list[str] = []

    def _lookup(self, key: str) -> ConfigValue | None:
        return self._values.get(normalize_key(key, self.project))

    def _plain(self, key: str, getter: str) -> ConfigValue | None:
        cv = self._lookup(key)
        if cv is not None and cv.secret:
            secret_getter = "get_secret" if getter == "get" else f"{getter}_secret"
            self.warnings.append(
                f"Configuration '{normalize_key(key, self.project)}' value is a secret; "
                f"use `{secret_getter}` instead of `{getter}`"
            )
        return cv

    def get(self, key: str, default: str | None = None) -> str | None:
        cv = self._plain(key, "get")
        return default if cv is None else cv.value

    def require(self, key: str) -> str:
        cv = self._plain(key, "require")
        if cv is None:
            raise ConfigMissingError(f"Missing required configuration variable '{key}'")
        return cv.value

    def get_secret(self, key: str) -> Secret | None:
        cv = self._lookup(key)
        return None if cv is None else Secret(cv.value)

    def require_secret(self, key: str) -> Secret:
        cv = self._lookup(key)
        if cv is None:
            raise ConfigMissingError(f"Missing required configuration variable '{key}'")
        return Secret(cv.value)

    def get_bool(self, key: str) -> bool | None:
        value = self.get(key)
        if value is None:
            return None
        if value not in ("true", "false"):
            raise ValueError(f"Configuration '{key}' value '{value}' is not a valid boolean")
        return value == "true"

    def get_int(self, key: str) -> int | None:
        value = self.get(key)
        return None if value is None else int(value)

    def get_float(self, key: str) -> float | None:
        value = self.get(key)
        return None if value is None else float(value)

    def get_object(self, key: str) -> Any:
        value = self.get(key)
        return None if value is None else deserialize_value(value)

    def __contains__(self, key: str) -> bool:
        return self._lookup(key) is not None


@dataclass
class RunContext:
    """Everything an inline program may observe during one run."""
    project: str
    stack: str
    config: ProgramConfig
    dry_run: bool = False
    session_id: str = ""
    pid: int = field(default_factory=os.getpid)

    @property
    def warnings(self) -> list[str]:
        return self.config.warnings


class ContextRegistry:
    """Active run contexts keyed by (process, session)."""

    def __init__(self):
        self._lock = threading.Lock()
        self._active: dict[tuple[int, str], RunContext] = {}

    @contextmanager
    def activate(self, ctx: RunContext) -> Iterator[RunContext]:
        key = (ctx.pid, ctx.session_id)
        with self._lock:
            if key in self._active:
                raise DuplicateContextError(
                    f"Detected multiple concurrent run contexts for session "
                    f"'{ctx.session_id}' (stack '{ctx.stack}'). "
                    f"A program must not start a second context for its own session."
                )
            self._active[key] = ctx
        try:
            yield ctx
        finally:
            with self._lock:
                self._active.pop(key, None)

    def active(self) -> list[RunContext]:
        with self._lock:
            return list(self._active.values())


default_registry = ContextRegistry()

Program = Callable[[RunContext], "Mapping[str, Any] | None"]


def serialize_outputs(outputs: Mapping[str, Any] | None) -> dict[str, dict[str, Any]]:
    """Convert program outputs to the wire form {name: {value, secret}}."""
    result: dict[str, dict[str, Any]] = {}
    for name, value in (outputs or {}).items():
        secret = isinstance(value, Secret)
        raw = value.value if secret else value
        # Values must survive a JSON round trip
        json.dumps(raw)
        result[name] = {"value": raw, "secret": secret}
    return result


def run_program(
    program: Program,
    ctx: RunContext,
    registry: ContextRegistry | None = None,
) -> dict[str, Any]:
    """Run a program inside a registered context.

    Returns:
        {"outputs": {...}, "warnings": [...]}
    """
    registry = registry or default_registry
    with registry.activate(ctx):
        outputs = program(ctx)
    return {
        "outputs": serialize_outputs(outputs),
        "warnings": list(ctx.warnings),
    }
