"""
quiver.workspace.workspace - Workspace: the context stacks run in.

A workspace is a directory holding the project settings file and one
settings file per stack, plus the environment the engine runs with:

    ws = Workspace(work_dir="./infra", env_vars={"QUIVER_CONFIG_PASSPHRASE": "x"})
    ws.create_stack("dev")
    ws.set_config("dev", "region", "us-west-2")
    ws.list_stacks()

Constructing a workspace checks the installed engine version. Each
method is one engine invocation; nothing is cached between calls
except the per-stack ConfigStore handles.
"""

from __future__ import annotations

import json
import shlex
import tempfile
import threading
import uuid
from pathlib import Path
from typing import Any, Mapping, Sequence

from loguru import logger

from quiver.config import ConfigDiff, ConfigMap, ConfigStore, ConfigValue
from quiver.errors import (
    AuthenticationError,
    ExecutionError,
    PluginNotFoundError,
    SettingsNotFoundError,
    StackNotFoundError,
    TagNotFoundError,
)
from quiver.program import ContextRegistry, Program
from quiver.runner.command import CommandResult, CommandRunner
from quiver.settings import BACKEND_URL_VAR, load_config
from quiver.version import MINIMUM_ENGINE_VERSION, check_version
from quiver.workspace.models import (
    Deployment,
    OutputMap,
    OutputValue,
    PluginInfo,
    StackSummary,
    WhoAmIResult,
)
from quiver.workspace.settings import (
    ProjectSettings,
    StackSettings,
    find_settings_file,
    load_project_settings,
    load_stack_settings,
    PROJECT_FILE_STEM,
    save_project_settings,
    save_stack_settings,
)


SECRET_SENTINEL = "[secret]"

# Bookkeeping directory inside the work dir (event logs, import files)
STATE_DIR = ".quiver"


class Workspace:
    """Execution context for one project directory."""

    def __init__(
        self,
        work_dir: str | Path | None = None,
        program: Program | None = None,
        project_settings: ProjectSettings | None = None,
        stack_settings: Mapping[str, StackSettings] | None = None,
        env_vars: Mapping[str, str] | None = None,
        secrets_provider: str | None = None,
        engine: str | Sequence[str] | None = None,
        backend_url: str | None = None,
        skip_version_check: bool | None = None,
        registry: ContextRegistry | None = None,
    ):
        cfg = load_config()

        self.work_dir = Path(work_dir) if work_dir else Path(tempfile.mkdtemp(prefix="quiver-"))
        self.work_dir.mkdir(parents=True, exist_ok=True)
        self.program = program
        self.secrets_provider = secrets_provider
        self.registry = registry

        self.env_vars: dict[str, str] = dict(cfg.env)
        self.env_vars.update(env_vars or {})
        backend = backend_url or cfg.backend_url
        if backend and BACKEND_URL_VAR not in self.env_vars:
            self.env_vars[BACKEND_URL_VAR] = backend

        if engine is None:
            command = cfg.engine_command
        elif isinstance(engine, str):
            command = shlex.split(engine)
        else:
            command = list(engine)
        self.runner = CommandRunner(command)

        self._stores: dict[str, ConfigStore] = {}
        self._stores_lock = threading.Lock()

        if project_settings is not None:
            save_project_settings(self.work_dir, project_settings)
        if stack_settings:
            for name, settings in stack_settings.items():
                save_stack_settings(self.work_dir, name, settings)

        # Malformed settings fail here rather than on first use
        if find_settings_file(self.work_dir, PROJECT_FILE_STEM) is not None:
            self.project_settings()

        if skip_version_check is None:
            skip_version_check = cfg.skip_version_check
        self.engine_version = self._check_engine_version(skip_version_check)

    def __repr__(self) -> str:
        return f"Workspace(work_dir={str(self.work_dir)!r})"

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # ENGINE
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    def run(
        self,
        args: Sequence[str],
        env: Mapping[str, str] | None = None,
        **kwargs,
    ) -> CommandResult:
        """Run one engine command in the work dir."""
        merged = dict(self.env_vars)
        if env:
            merged.update(env)
        return self.runner.run(args, cwd=self.work_dir, env=merged, **kwargs)

    def run_program(
        self,
        args: Sequence[str],
        program: Program,
        stack: str,
        env: Mapping[str, str] | None = None,
        **kwargs,
    ) -> CommandResult:
        merged = dict(self.env_vars)
        if env:
            merged.update(env)
        return self.runner.run_program(
            args,
            cwd=self.work_dir,
            program=program,
            project=self.project_name,
            stack=stack,
            registry=self.registry,
            env=merged,
            **kwargs,
        )

    def _check_engine_version(self, opt_out: bool) -> str:
        result = self.run(["version"])
        current = result.stdout.strip()
        check_version(MINIMUM_ENGINE_VERSION, current, opt_out)
        logger.debug("engine version {} (check skipped: {})", current, opt_out)
        return current

    def state_path(self, suffix: str) -> Path:
        """A fresh file path under the work dir's bookkeeping directory."""
        state = self.work_dir / STATE_DIR
        state.mkdir(exist_ok=True)
        return state / f"{uuid.uuid4().hex}{suffix}"

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # SETTINGS
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    def project_settings(self) -> ProjectSettings:
        return load_project_settings(self.work_dir)

    def save_project_settings(self, settings: ProjectSettings) -> None:
        save_project_settings(self.work_dir, settings)

    def stack_settings(self, stack_name: str) -> StackSettings:
        return load_stack_settings(self.work_dir, stack_name)

    def save_stack_settings(self, stack_name: str, settings: StackSettings) -> None:
        save_stack_settings(self.work_dir, stack_name, settings)

    @property
    def project_name(self) -> str:
        return self.project_settings().name

    def ensure_project(self, name: str) -> ProjectSettings:
        """Synthesize project settings for an inline program if none exist."""
        try:
            return self.project_settings()
        except SettingsNotFoundError:
            settings = ProjectSettings(name=name, runtime="python", main=str(self.work_dir))
            self.save_project_settings(settings)
            logger.debug("wrote default project settings for {}", name)
            return settings

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # STACKS
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    def create_stack(self, stack_name: str) -> None:
        args = ["stack", "init", stack_name]
        if self.secrets_provider:
            args.extend(["--secrets-provider", self.secrets_provider])
        self.run(args)
        logger.debug("created stack {}", stack_name)

    def select_stack(self, stack_name: str) -> None:
        self.run(["stack", "select", stack_name])

    def create_or_select_stack(self, stack_name: str) -> None:
        try:
            self.select_stack(stack_name)
        except StackNotFoundError:
            self.create_stack(stack_name)

    def remove_stack(self, stack_name: str, force: bool = False) -> None:
        """Delete the stack record. A second removal raises StackNotFoundError."""
        args = ["stack", "rm", "--yes", stack_name]
        if force:
            args.append("--force")
        self.run(args)
        with self._stores_lock:
            self._stores.pop(stack_name, None)

    def rename_stack(self, stack_name: str, new_name: str) -> None:
        self.run(["stack", "rename", new_name, "--stack", stack_name])
        with self._stores_lock:
            self._stores.pop(stack_name, None)

    def list_stacks(self) -> list[StackSummary]:
        result = self.run(["stack", "ls", "--json"])
        return [StackSummary.from_dict(d) for d in json.loads(result.stdout or "[]")]

    def stack(self) -> StackSummary | None:
        """The currently selected stack, if any."""
        for summary in self.list_stacks():
            if summary.current:
                return summary
        return None

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # CONFIG
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    def config_store(self, stack_name: str) -> ConfigStore:
        with self._stores_lock:
            store = self._stores.get(stack_name)
            if store is None:
                store = self._stores[stack_name] = ConfigStore(self, stack_name)
            return store

    def get_config(self, stack_name: str, key: str, path: bool = False) -> ConfigValue:
        return self.config_store(stack_name).get(key, path=path)

    def get_all_config(self, stack_name: str) -> ConfigMap:
        return self.config_store(stack_name).get_all()

    def set_config(self, stack_name: str, key: str, value: Any, path: bool = False) -> None:
        self.config_store(stack_name).set(key, value, path=path)

    def set_all_config(self, stack_name: str, values: Mapping[str, Any], path: bool = False) -> None:
        self.config_store(stack_name).set_all(values, path=path)

    def remove_config(self, stack_name: str, key: str, path: bool = False) -> None:
        self.config_store(stack_name).remove(key, path=path)

    def remove_all_config(self, stack_name: str, keys: list[str], path: bool = False) -> None:
        self.config_store(stack_name).remove_all(keys, path=path)

    def refresh_config(self, stack_name: str) -> ConfigMap:
        return self.config_store(stack_name).refresh()

    def diff_config(self, stack_name: str, desired: Mapping[str, Any]) -> ConfigDiff:
        return self.config_store(stack_name).diff(desired)

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # TAGS
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    def get_tag(self, stack_name: str, key: str) -> str:
        try:
            result = self.run(["stack", "tag", "get", key, "--stack", stack_name])
        except StackNotFoundError:
            raise
        except ExecutionError as e:
            if "not found" in e.stderr:
                raise TagNotFoundError.wrap(e, f"tag '{key}' not found on stack '{stack_name}'") from e
            raise
        return result.stdout.strip()

    def set_tag(self, stack_name: str, key: str, value: str) -> None:
        self.run(["stack", "tag", "set", key, value, "--stack", stack_name])

    def remove_tag(self, stack_name: str, key: str) -> None:
        self.run(["stack", "tag", "rm", key, "--stack", stack_name])

    def list_tags(self, stack_name: str) -> dict[str, str]:
        result = self.run(["stack", "tag", "ls", "--json", "--stack", stack_name])
        return {str(k): str(v) for k, v in json.loads(result.stdout or "{}").items()}

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # PLUGINS
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    def install_plugin(self, name: str, version: str, kind: str = "resource") -> None:
        self.run(["plugin", "install", kind, name, version])

    def remove_plugin(self, name: str, version: str | None = None, kind: str = "resource") -> None:
        """Remove a plugin.

        Raises:
            PluginNotFoundError: no installed plugin matches
        """
        if not any(p.matches(name, version, kind) for p in self.list_plugins()):
            label = f"{kind} plugin '{name}'" + (f" version {version}" if version else "")
            raise PluginNotFoundError(f"no {label} is installed")
        args = ["plugin", "rm", kind, name]
        if version:
            args.append(version)
        args.append("--yes")
        self.run(args)

    def list_plugins(self) -> list[PluginInfo]:
        result = self.run(["plugin", "ls", "--json"])
        return [PluginInfo.from_dict(d) for d in json.loads(result.stdout or "[]")]

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # IDENTITY / STATE
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    def who_am_i(self) -> WhoAmIResult:
        try:
            result = self.run(["whoami", "--json"])
        except ExecutionError as e:
            raise AuthenticationError(
                f"could not determine the current backend user: {e.stderr.strip()}"
            ) from e
        data = json.loads(result.stdout)
        return WhoAmIResult(
            user=data.get("user", ""),
            url=data.get("url"),
            organizations=list(data.get("organizations") or []),
        )

    def export_stack(self, stack_name: str) -> Deployment:
        result = self.run(["stack", "export", "--show-secrets", "--stack", stack_name])
        return Deployment.from_dict(json.loads(result.stdout))

    def import_stack(self, stack_name: str, state: Deployment) -> None:
        path = self.state_path(".json")
        try:
            path.write_text(json.dumps(state.to_dict()))
            self.run(["stack", "import", "--file", str(path), "--stack", stack_name])
        finally:
            path.unlink(missing_ok=True)

    def stack_outputs(self, stack_name: str) -> OutputMap:
        masked = self.run(["stack", "output", "--json", "--stack", stack_name])
        plain = self.run(["stack", "output", "--json", "--show-secrets", "--stack", stack_name])
        masked_data = json.loads(masked.stdout or "{}")
        plain_data = json.loads(plain.stdout or "{}")
        return {
            name: OutputValue(value=value, secret=masked_data.get(name) == SECRET_SENTINEL)
            for name, value in plain_data.items()
        }
