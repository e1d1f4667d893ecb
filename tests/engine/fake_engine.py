"""
tests/engine/fake_engine.py - Scripted engine for the test suite.

Implements the engine command line quiver drives, backed by plain files:

    <backend>/.quiver/stacks/<project>/<stack>.json   stack state
    <backend>/.quiver/locks/<project>/<stack>.lock    update lock
    <backend>/.quiver/current.json                    selected stack per project
    <backend>/.quiver/plugins.json                    plugin inventory
    <work_dir>/quiver.<stack>.yaml                    stack config

The backend comes from QUIVER_BACKEND_URL (file://<dir>). Each stack has
one root resource whose outputs are whatever the program returns. Local
programs live in <main>/program.py and define main(ctx); inline programs
are reached through --client.

Knobs for tests:
    FAKE_ENGINE_VERSION   reported version (default v3.100.0)
    FAKE_ENGINE_DELAY     seconds to sleep inside up before committing
    FAKE_ENGINE_USER      whoami user
"""

import base64
import importlib.util
import json
import os
import re
import sys
import time
import urllib.error
import urllib.request
from datetime import datetime, timezone
from pathlib import Path

import click
import yaml

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "..", "src"))

from quiver.config import parse_config_json
from quiver.program import ProgramConfig, RunContext, run_program


DEFAULT_VERSION = "v3.100.0"
ROOT_TYPE = "quiver:quiver:Stack"
PROJECT_STEM = "quiver"
EXTENSIONS = (".yaml", ".yml", ".json")
SECRET_MASK = "[secret]"

_NAME = re.compile(r"^[A-Za-z0-9_.-]{1,100}$")


class EngineError(Exception):
    pass


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _fail(message: str, code: int = 255) -> None:
    click.echo(f"error: {message}", err=True)
    sys.exit(code)


# ─────────────────────────────────────────────
# FILES
# ─────────────────────────────────────────────
def _backend() -> Path:
    url = os.environ.get("QUIVER_BACKEND_URL", "").strip()
    if not url:
        raise EngineError("no backend configured; set QUIVER_BACKEND_URL")
    if url.startswith("file://"):
        url = url[len("file://"):]
    root = Path(url).expanduser() / ".quiver"
    root.mkdir(parents=True, exist_ok=True)
    return root


def _find(directory: Path, stem: str) -> Path | None:
    for ext in EXTENSIONS:
        p = directory / f"{stem}{ext}"
        if p.exists():
            return p
    return None


def _read(path: Path) -> dict:
    text = path.read_text()
    if path.suffix == ".json":
        return json.loads(text) if text.strip() else {}
    return yaml.safe_load(text) or {}


def _write(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    with open(tmp, "w") as f:
        if path.suffix == ".json":
            json.dump(data, f, indent=2)
        else:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
    os.replace(tmp, path)


def _project() -> dict:
    path = _find(Path.cwd(), PROJECT_STEM)
    if path is None:
        raise EngineError(f"no project settings file found in {Path.cwd()}")
    data = _read(path)
    if not data.get("name"):
        raise EngineError(f"{path}: project name is required")
    return data


def _short(stack: str) -> str:
    return stack.split("/")[-1]


def _state_path(project: str, stack: str) -> Path:
    return _backend() / "stacks" / project / f"{_short(stack)}.json"


def _lock_path(project: str, stack: str) -> Path:
    return _backend() / "locks" / project / f"{_short(stack)}.lock"


def _settings_path(stack: str) -> Path:
    stem = f"{PROJECT_STEM}.{_short(stack)}"
    return _find(Path.cwd(), stem) or Path.cwd() / f"{stem}.yaml"


def _load_state(project: str, stack: str) -> dict:
    path = _state_path(project, stack)
    if not path.exists():
        raise EngineError(f"no stack named '{stack}' found")
    return json.loads(path.read_text())


def _save_state(project: str, stack: str, state: dict) -> None:
    _write(_state_path(project, stack), state)


def _current() -> dict:
    path = _backend() / "current.json"
    return json.loads(path.read_text()) if path.exists() else {}


def _set_current(project: str, stack: str | None) -> None:
    current = _current()
    if stack is None:
        current.pop(project, None)
    else:
        current[project] = stack
    _write(_backend() / "current.json", current)


# ─────────────────────────────────────────────
# CONFIG
# ─────────────────────────────────────────────
def _encrypt(value: str) -> dict:
    if not os.environ.get("QUIVER_CONFIG_PASSPHRASE"):
        raise EngineError(
            "passphrase must be set with QUIVER_CONFIG_PASSPHRASE environment variable"
        )
    return {"secure": "v1:" + base64.b64encode(value.encode()).decode()}


def _decrypt(entry: dict) -> str:
    return base64.b64decode(entry["secure"][3:]).decode()


def _is_secure(entry) -> bool:
    return isinstance(entry, dict) and set(entry) == {"secure"}


def _load_settings(stack: str) -> dict:
    path = _settings_path(stack)
    return _read(path) if path.exists() else {}


def _save_settings(stack: str, settings: dict) -> None:
    _write(_settings_path(stack), settings)


def _config_entries(stack: str, show_secrets: bool = True) -> dict:
    """Stack config in `config --json` form."""
    result = {}
    for key, raw in (_load_settings(stack).get("config") or {}).items():
        if _is_secure(raw):
            value = _decrypt(raw) if show_secrets else SECRET_MASK
            result[key] = {"value": value, "secret": True}
        elif isinstance(raw, (dict, list)):
            result[key] = {
                "value": json.dumps(raw, separators=(",", ":")),
                "objectValue": raw,
                "secret": False,
            }
        else:
            result[key] = {"value": raw if isinstance(raw, str) else json.dumps(raw), "secret": False}
    return result


_PATH_PART = re.compile(r"([^.\[\]]+)|\[(\d+)\]")


def _split_path(key: str) -> tuple[str, list]:
    """'proj:a.b[0]' -> ('proj:a', ['b', 0])."""
    ns, _, rest = key.partition(":")
    parts = []
    for name, index in _PATH_PART.findall(rest):
        parts.append(int(index) if index else name)
    if not parts:
        raise EngineError(f"invalid configuration key '{key}'")
    head = parts.pop(0)
    return f"{ns}:{head}", parts


def _path_get(obj, parts: list):
    for part in parts:
        try:
            obj = obj[part]
        except (KeyError, IndexError, TypeError):
            return None
    return obj


def _path_set(obj, parts: list, value):
    if not parts:
        return value
    part = parts[0]
    if isinstance(part, int):
        obj = obj if isinstance(obj, list) else []
        while len(obj) <= part:
            obj.append(None)
    else:
        obj = obj if isinstance(obj, dict) else {}
    obj[part] = _path_set(obj[part] if (isinstance(part, int) or part in obj) else None, parts[1:], value)
    return obj


def _path_rm(obj, parts: list) -> None:
    parent = _path_get(obj, parts[:-1])
    try:
        del parent[parts[-1]]
    except (KeyError, IndexError, TypeError):
        pass


# ─────────────────────────────────────────────
# EVENTS
# ─────────────────────────────────────────────
class EventLog:
    def __init__(self, path: str | None):
        self.path = path
        self.sequence = 0

    def emit(self, kind: str, payload: dict) -> None:
        if not self.path:
            return
        record = {"sequence": self.sequence, "timestamp": int(time.time()), kind: payload}
        self.sequence += 1
        with open(self.path, "a") as f:
            f.write(json.dumps(record) + "\n")
            f.flush()


def _urn(project: str, stack: str) -> str:
    return f"urn:quiver:{_short(stack)}::{project}::{ROOT_TYPE}::{project}-{_short(stack)}"


def _metadata(op: str, project: str, stack: str) -> dict:
    return {"op": op, "urn": _urn(project, stack), "type": ROOT_TYPE, "provider": ""}


# ─────────────────────────────────────────────
# PROGRAMS
# ─────────────────────────────────────────────
def _run_local(project: dict, stack: str, config: dict, dry_run: bool) -> dict:
    main_dir = Path.cwd() / (project.get("main") or ".")
    path = main_dir / "program.py"
    if not path.exists():
        return {"outputs": {}, "warnings": []}
    spec = importlib.util.spec_from_file_location("quiver_program", path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    ctx = RunContext(
        project=project["name"],
        stack=stack,
        config=ProgramConfig(project["name"], parse_config_json(config)),
        dry_run=dry_run,
        session_id="local",
    )
    try:
        return run_program(module.main, ctx)
    except Exception as e:
        raise EngineError(f"program failed: {e!r}") from e


def _run_inline(address: str, project: str, stack: str, config: dict, dry_run: bool) -> dict:
    body = json.dumps({
        "project": project, "stack": stack, "config": config, "dryRun": dry_run,
    }).encode()
    req = urllib.request.Request(
        f"http://{address}/run", data=body,
        headers={"Content-Type": "application/json"}, method="POST",
    )
    try:
        with urllib.request.urlopen(req, timeout=60) as resp:
            return json.loads(resp.read())
    except urllib.error.HTTPError as e:
        detail = json.loads(e.read() or b"{}").get("error", "")
        raise EngineError(f"program failed:\n{detail}") from e
    except urllib.error.URLError as e:
        raise EngineError(f"could not reach program at {address}: {e.reason}") from e


# ─────────────────────────────────────────────
# CLI
# ─────────────────────────────────────────────
@click.group()
def cli():
    pass


@cli.command("version")
def version():
    click.echo(os.environ.get("FAKE_ENGINE_VERSION", DEFAULT_VERSION))


@cli.command("whoami")
@click.option("--json", "as_json", is_flag=True)
def whoami(as_json):
    url = os.environ.get("QUIVER_BACKEND_URL", "").strip()
    if not url:
        _fail("not logged in; set QUIVER_BACKEND_URL", code=1)
    user = os.environ.get("FAKE_ENGINE_USER", "quiver-user")
    data = {"user": user, "url": url, "organizations": [user]}
    click.echo(json.dumps(data) if as_json else user)


@cli.command("cancel")
@click.option("--yes", is_flag=True)
@click.option("--stack", required=True)
def cancel(yes, stack):
    project = _project()["name"]
    _load_state(project, stack)
    _lock_path(project, stack).unlink(missing_ok=True)
    click.echo(f"The currently running update for '{stack}' has been canceled!")


# ─────────────────────────────────────────────
# STACK
# ─────────────────────────────────────────────
@cli.group("stack")
def stack_group():
    pass


def _check_name(name: str) -> None:
    for part in name.split("/"):
        if not _NAME.match(part):
            raise EngineError(f"invalid stack name '{name}'")


@stack_group.command("init")
@click.argument("name")
@click.option("--secrets-provider", default=None)
def stack_init(name, secrets_provider):
    project = _project()["name"]
    _check_name(name)
    path = _state_path(project, name)
    if path.exists():
        raise EngineError(f"stack '{name}' already exists")
    _save_state(project, name, {
        "name": name,
        "tags": {},
        "resources": [],
        "outputs": {},
        "secretOutputs": [],
        "config": {},
        "history": [],
        "lastUpdate": None,
    })
    if secrets_provider:
        settings = _load_settings(name)
        settings["secretsprovider"] = secrets_provider
        _save_settings(name, settings)
    _set_current(project, name)
    click.echo(f"Created stack '{name}'")


@stack_group.command("select")
@click.argument("name")
def stack_select(name):
    project = _project()["name"]
    _load_state(project, name)
    _set_current(project, name)


@stack_group.command("rm")
@click.argument("name")
@click.option("--yes", is_flag=True)
@click.option("--force", is_flag=True)
def stack_rm(name, yes, force):
    project = _project()["name"]
    state = _load_state(project, name)
    if state["resources"] and not force:
        raise EngineError(
            f"'{name}' still has resources; removal rejected. "
            f"Possible actions:\n- Make sure that '{name}' is the correct stack to delete\n"
            f"- Use --force to override"
        )
    _state_path(project, name).unlink()
    settings = _find(Path.cwd(), f"{PROJECT_STEM}.{_short(name)}")
    if settings is not None:
        settings.unlink()
    if _current().get(project) == name:
        _set_current(project, None)
    click.echo(f"Stack '{name}' has been removed!")


@stack_group.command("rename")
@click.argument("new_name")
@click.option("--stack", required=True)
def stack_rename(new_name, stack):
    project = _project()["name"]
    _check_name(new_name)
    state = _load_state(project, stack)
    if _state_path(project, new_name).exists():
        raise EngineError(f"stack '{new_name}' already exists")
    state["name"] = new_name
    _save_state(project, new_name, state)
    _state_path(project, stack).unlink()
    old_settings = _find(Path.cwd(), f"{PROJECT_STEM}.{_short(stack)}")
    if old_settings is not None:
        old_settings.rename(Path.cwd() / f"{PROJECT_STEM}.{_short(new_name)}{old_settings.suffix}")
    if _current().get(project) == stack:
        _set_current(project, new_name)
    click.echo(f"Renamed {stack} to {new_name}")


@stack_group.command("ls")
@click.option("--json", "as_json", is_flag=True)
def stack_ls(as_json):
    project = _project()["name"]
    current = _current().get(project)
    directory = _backend() / "stacks" / project
    summaries = []
    for path in sorted(directory.glob("*.json")) if directory.exists() else []:
        state = json.loads(path.read_text())
        summaries.append({
            "name": state["name"],
            "current": state["name"] == current,
            "lastUpdate": state.get("lastUpdate"),
            "updateInProgress": _lock_path(project, state["name"]).exists(),
            "resourceCount": len(state["resources"]),
            "url": f"file://{path}",
        })
    if as_json:
        click.echo(json.dumps(summaries))
    else:
        for s in summaries:
            click.echo(("* " if s["current"] else "  ") + s["name"])


def _deployment(project: str, state: dict) -> dict:
    return {
        "version": 3,
        "deployment": {
            "manifest": {"time": state.get("lastUpdate"), "magic": "", "version": DEFAULT_VERSION},
            "resources": state["resources"],
            "outputs": state["outputs"],
            "secretOutputs": state["secretOutputs"],
        },
    }


@stack_group.command("export")
@click.option("--show-secrets", is_flag=True)
@click.option("--stack", required=True)
def stack_export(show_secrets, stack):
    project = _project()["name"]
    state = _load_state(project, stack)
    click.echo(json.dumps(_deployment(project, state)))


@stack_group.command("import")
@click.option("--file", "path", required=True, type=click.Path(exists=True))
@click.option("--stack", required=True)
def stack_import(path, stack):
    project = _project()["name"]
    state = _load_state(project, stack)
    with open(path) as f:
        data = json.load(f)
    if not isinstance(data, dict) or "deployment" not in data:
        raise EngineError("could not deserialize deployment: missing 'deployment'")
    deployment = data["deployment"]
    state["resources"] = deployment.get("resources") or []
    state["outputs"] = deployment.get("outputs") or {}
    state["secretOutputs"] = deployment.get("secretOutputs") or []
    _save_state(project, stack, state)
    click.echo("Import complete.")


@stack_group.command("output")
@click.option("--json", "as_json", is_flag=True)
@click.option("--show-secrets", is_flag=True)
@click.option("--stack", required=True)
def stack_output(as_json, show_secrets, stack):
    project = _project()["name"]
    state = _load_state(project, stack)
    outputs = {
        k: v if show_secrets or k not in state["secretOutputs"] else SECRET_MASK
        for k, v in state["outputs"].items()
    }
    click.echo(json.dumps(outputs))


@stack_group.command("history")
@click.option("--json", "as_json", is_flag=True)
@click.option("--show-secrets", is_flag=True)
@click.option("--stack", required=True)
@click.option("--page-size", type=int, default=None)
@click.option("--page", type=int, default=1)
def stack_history(as_json, show_secrets, stack, page_size, page):
    project = _project()["name"]
    entries = list(reversed(_load_state(project, stack)["history"]))
    if page_size:
        start = (max(page, 1) - 1) * page_size
        entries = entries[start:start + page_size]
    if not show_secrets:
        for e in entries:
            e["config"] = {
                k: SECRET_MASK if v.get("secret") else v for k, v in e["config"].items()
            }
    click.echo(json.dumps(entries))


@stack_group.group("tag")
def tag_group():
    pass


@tag_group.command("get")
@click.argument("key")
@click.option("--stack", required=True)
def tag_get(key, stack):
    project = _project()["name"]
    tags = _load_state(project, stack)["tags"]
    if key not in tags:
        raise EngineError(f"stack tag '{key}' not found for stack '{stack}'")
    click.echo(tags[key])


@tag_group.command("set")
@click.argument("key")
@click.argument("value")
@click.option("--stack", required=True)
def tag_set(key, value, stack):
    project = _project()["name"]
    state = _load_state(project, stack)
    state["tags"][key] = value
    _save_state(project, stack, state)


@tag_group.command("rm")
@click.argument("key")
@click.option("--stack", required=True)
def tag_rm(key, stack):
    project = _project()["name"]
    state = _load_state(project, stack)
    state["tags"].pop(key, None)
    _save_state(project, stack, state)


@tag_group.command("ls")
@click.option("--json", "as_json", is_flag=True)
@click.option("--stack", required=True)
def tag_ls(as_json, stack):
    project = _project()["name"]
    click.echo(json.dumps(_load_state(project, stack)["tags"]))


# ─────────────────────────────────────────────
# CONFIG
# ─────────────────────────────────────────────
@cli.group("config", invoke_without_command=True)
@click.option("--show-secrets", is_flag=True)
@click.option("--json", "as_json", is_flag=True)
@click.option("--stack", default=None)
@click.pass_context
def config_group(ctx, show_secrets, as_json, stack):
    if ctx.invoked_subcommand is not None:
        return
    project = _project()["name"]
    _load_state(project, stack)
    click.echo(json.dumps(_config_entries(stack, show_secrets)))


def _set_value(config: dict, key: str, value: str, secret: bool, path: bool) -> None:
    stored = _encrypt(value) if secret else value
    if not path:
        config[key] = stored
        return
    base, parts = _split_path(key)
    if not parts:
        config[base] = stored
        return
    config[base] = _path_set(config.get(base), parts, stored)


@config_group.command("get")
@click.argument("key")
@click.option("--json", "as_json", is_flag=True)
@click.option("--stack", required=True)
@click.option("--path", is_flag=True)
def config_get(key, as_json, stack, path):
    project = _project()["name"]
    _load_state(project, stack)
    entries = _config_entries(stack)
    if path:
        base, parts = _split_path(key)
        entry = entries.get(base)
        if entry is not None and parts:
            found = _path_get(entry.get("objectValue"), parts)
            if found is None:
                entry = None
            elif isinstance(found, (dict, list)):
                entry = {"value": json.dumps(found, separators=(",", ":")), "objectValue": found, "secret": False}
            else:
                entry = {"value": str(found), "secret": False}
    else:
        entry = entries.get(key)
    if entry is None:
        raise EngineError(f"configuration key '{key}' not found for stack '{stack}'")
    click.echo(json.dumps(entry) if as_json else entry["value"])


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@click.option("--secret", is_flag=True)
@click.option("--plaintext", is_flag=True)
@click.option("--stack", required=True)
@click.option("--path", is_flag=True)
def config_set(key, value, secret, plaintext, stack, path):
    project = _project()["name"]
    _load_state(project, stack)
    settings = _load_settings(stack)
    config = settings.setdefault("config", {})
    _set_value(config, key, value, secret, path)
    _save_settings(stack, settings)


@config_group.command("set-all")
@click.option("--plaintext", "plain", multiple=True)
@click.option("--secret", "secret", multiple=True)
@click.option("--stack", required=True)
@click.option("--path", is_flag=True)
def config_set_all(plain, secret, stack, path):
    project = _project()["name"]
    _load_state(project, stack)
    settings = _load_settings(stack)
    config = settings.setdefault("config", {})
    for pairs, is_secret in ((plain, False), (secret, True)):
        for pair in pairs:
            key, sep, value = pair.partition("=")
            if not sep:
                raise EngineError(f"expected KEY=VALUE, got '{pair}'")
            _set_value(config, key, value, is_secret, path)
    _save_settings(stack, settings)


def _remove(config: dict, key: str, path: bool) -> None:
    if not path:
        config.pop(key, None)
        return
    base, parts = _split_path(key)
    if not parts:
        config.pop(base, None)
    elif base in config:
        _path_rm(config[base], parts)


@config_group.command("rm")
@click.argument("key")
@click.option("--stack", required=True)
@click.option("--path", is_flag=True)
def config_rm(key, stack, path):
    project = _project()["name"]
    _load_state(project, stack)
    settings = _load_settings(stack)
    _remove(settings.setdefault("config", {}), key, path)
    _save_settings(stack, settings)


@config_group.command("rm-all")
@click.argument("keys", nargs=-1)
@click.option("--stack", required=True)
@click.option("--path", is_flag=True)
def config_rm_all(keys, stack, path):
    project = _project()["name"]
    _load_state(project, stack)
    settings = _load_settings(stack)
    config = settings.setdefault("config", {})
    for key in keys:
        _remove(config, key, path)
    _save_settings(stack, settings)


@config_group.command("refresh")
@click.option("--force", is_flag=True)
@click.option("--stack", required=True)
def config_refresh(force, stack):
    project = _project()["name"]
    state = _load_state(project, stack)
    if not state["history"]:
        raise EngineError(f"no previous deployment for stack '{stack}'")
    settings = _load_settings(stack)
    config = {}
    for key, entry in state["config"].items():
        config[key] = _encrypt(entry["value"]) if entry.get("secret") else entry["value"]
    settings["config"] = config
    _save_settings(stack, settings)


# ─────────────────────────────────────────────
# PLUGINS
# ─────────────────────────────────────────────
def _plugins_path() -> Path:
    return _backend() / "plugins.json"


def _plugins() -> list:
    path = _plugins_path()
    return json.loads(path.read_text()) if path.exists() else []


@cli.group("plugin")
def plugin_group():
    pass


@plugin_group.command("install")
@click.argument("kind")
@click.argument("name")
@click.argument("version")
def plugin_install(kind, name, version):
    version = version.lstrip("v")
    plugins = [p for p in _plugins() if (p["kind"], p["name"], p["version"]) != (kind, name, version)]
    plugins.append({
        "name": name, "kind": kind, "version": version,
        "size": 1024, "installTime": _now(), "lastUsedTime": _now(),
    })
    _write(_plugins_path(), plugins)


@plugin_group.command("rm")
@click.argument("kind")
@click.argument("name")
@click.argument("version", required=False)
@click.option("--yes", is_flag=True)
def plugin_rm(kind, name, version, yes):
    def matches(p):
        if (p["kind"], p["name"]) != (kind, name):
            return False
        return version is None or p["version"] == version.lstrip("v")

    _write(_plugins_path(), [p for p in _plugins() if not matches(p)])


@plugin_group.command("ls")
@click.option("--json", "as_json", is_flag=True)
def plugin_ls(as_json):
    click.echo(json.dumps(_plugins()))


# ─────────────────────────────────────────────
# OPERATIONS
# ─────────────────────────────────────────────
def _operation_options(f):
    options = [
        click.option("--stack", required=True),
        click.option("--event-log", default=None),
        click.option("--exec-kind", default="auto.local"),
        click.option("--exec-agent", default=""),
        click.option("--client", default=None),
        click.option("--message", default=""),
        click.option("--target", multiple=True),
        click.option("--replace", multiple=True),
        click.option("--target-dependents", is_flag=True),
        click.option("--parallel", type=int, default=None),
        click.option("--expect-no-changes", is_flag=True),
        click.option("--diff", is_flag=True),
        click.option("--yes", is_flag=True),
        click.option("--skip-preview", is_flag=True),
    ]
    for option in reversed(options):
        f = option(f)
    return f


class _Lock:
    def __init__(self, project: str, stack: str):
        self.path = _lock_path(project, stack)

    def __enter__(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            raise EngineError("[409] Conflict: Another update is currently in progress.")
        os.close(fd)
        return self

    def __exit__(self, *exc_info):
        self.path.unlink(missing_ok=True)


def _execute_program(project: dict, stack: str, client: str | None, dry_run: bool, events: EventLog) -> dict:
    config = _config_entries(stack)
    events.emit("preludeEvent", {"config": {k: v["value"] for k, v in _config_entries(stack, False).items()}})
    try:
        if client:
            result = _run_inline(client, project["name"], stack, config, dry_run)
        else:
            result = _run_local(project, stack, config, dry_run)
    except EngineError as e:
        events.emit("diagnosticEvent", {"message": str(e), "color": "never", "severity": "error"})
        raise
    for warning in result.get("warnings") or []:
        events.emit("diagnosticEvent", {"message": warning, "color": "never", "severity": "warning"})
    return result


def _record(state: dict, kind: str, result: str, started: str, message: str,
            changes: dict, exec_kind: str, exec_agent: str, config: dict) -> None:
    state["history"].append({
        "kind": kind,
        "result": result,
        "startTime": started,
        "endTime": _now(),
        "message": message,
        "version": len(state["history"]) + 1,
        "environment": {"exec.kind": exec_kind, "exec.agent": exec_agent},
        "config": config,
        "resourceChanges": changes,
    })
    state["lastUpdate"] = _now()


def _summarize(events: EventLog, changes: dict) -> None:
    events.emit("summaryEvent", {
        "maybeCorrupt": False,
        "durationSeconds": 0,
        "resourceChanges": changes,
        "PolicyPacks": {},
    })
    events.emit("cancelEvent", {})


@cli.command("up")
@_operation_options
def up(stack, event_log, exec_kind, exec_agent, client, message, target, replace,
       target_dependents, parallel, expect_no_changes, diff, yes, skip_preview):
    project = _project()
    name = project["name"]
    state = _load_state(name, stack)
    events = EventLog(event_log)
    started = _now()

    with _Lock(name, stack):
        click.echo(f"Updating ({stack}):")
        op = "same" if state["resources"] else "create"
        try:
            result = _execute_program(project, stack, client, False, events)
        except EngineError:
            _record(state, "update", "failed", started, message, {}, exec_kind, exec_agent,
                    _config_entries(stack))
            _save_state(name, stack, state)
            raise
        events.emit("resourcePreEvent", {"metadata": _metadata(op, name, stack), "planning": False})

        delay = float(os.environ.get("FAKE_ENGINE_DELAY", "0") or 0)
        if delay:
            time.sleep(delay)

        changes = {op: 1}
        if expect_no_changes and op != "same":
            raise EngineError("no changes were expected but changes occurred")

        outputs = result.get("outputs") or {}
        state["resources"] = [{
            "urn": _urn(name, stack),
            "type": ROOT_TYPE,
            "custom": False,
            "outputs": {k: v["value"] for k, v in outputs.items()},
        }]
        state["outputs"] = {k: v["value"] for k, v in outputs.items()}
        state["secretOutputs"] = [k for k, v in outputs.items() if v.get("secret")]
        state["config"] = _config_entries(stack)
        events.emit("resOutputsEvent", {"metadata": _metadata(op, name, stack), "planning": False})
        _record(state, "update", "succeeded", started, message, changes, exec_kind, exec_agent,
                state["config"])
        _save_state(name, stack, state)
        _summarize(events, changes)

    click.echo(f"    {'+' if op == 'create' else ' '} {ROOT_TYPE} {name}-{_short(stack)} {op}")
    click.echo("Outputs:")
    for k, v in state["outputs"].items():
        shown = SECRET_MASK if k in state["secretOutputs"] else json.dumps(v)
        click.echo(f"    {k}: {shown}")
    click.echo(f"Resources:\n    {op}: 1")


@cli.command("preview")
@_operation_options
def preview(stack, event_log, exec_kind, exec_agent, client, message, target, replace,
            target_dependents, parallel, expect_no_changes, diff, yes, skip_preview):
    project = _project()
    name = project["name"]
    state = _load_state(name, stack)
    events = EventLog(event_log)

    click.echo(f"Previewing update ({stack}):")
    op = "same" if state["resources"] else "create"
    _execute_program(project, stack, client, True, events)
    events.emit("resourcePreEvent", {"metadata": _metadata(op, name, stack), "planning": True})
    changes = {op: 1}
    if expect_no_changes and op != "same":
        raise EngineError("no changes were expected but changes occurred")
    events.emit("resOutputsEvent", {"metadata": _metadata(op, name, stack), "planning": True})
    _summarize(events, changes)
    click.echo(f"Resources:\n    {op}: 1")


@cli.command("refresh")
@_operation_options
def refresh(stack, event_log, exec_kind, exec_agent, client, message, target, replace,
            target_dependents, parallel, expect_no_changes, diff, yes, skip_preview):
    name = _project()["name"]
    state = _load_state(name, stack)
    events = EventLog(event_log)
    started = _now()

    with _Lock(name, stack):
        click.echo(f"Refreshing ({stack}):")
        changes = {"same": len(state["resources"])} if state["resources"] else {}
        for _ in state["resources"]:
            events.emit("resourcePreEvent", {"metadata": _metadata("refresh", name, stack), "planning": False})
        _record(state, "refresh", "succeeded", started, message, changes, exec_kind, exec_agent,
                _config_entries(stack))
        _save_state(name, stack, state)
        _summarize(events, changes)


@cli.command("destroy")
@_operation_options
def destroy(stack, event_log, exec_kind, exec_agent, client, message, target, replace,
            target_dependents, parallel, expect_no_changes, diff, yes, skip_preview):
    name = _project()["name"]
    state = _load_state(name, stack)
    events = EventLog(event_log)
    started = _now()

    with _Lock(name, stack):
        click.echo(f"Destroying ({stack}):")
        changes = {"delete": len(state["resources"])} if state["resources"] else {}
        for _ in state["resources"]:
            events.emit("resourcePreEvent", {"metadata": _metadata("delete", name, stack), "planning": False})
        state["resources"] = []
        state["outputs"] = {}
        state["secretOutputs"] = []
        _record(state, "destroy", "succeeded", started, message, changes, exec_kind, exec_agent,
                _config_entries(stack))
        _save_state(name, stack, state)
        _summarize(events, changes)
    click.echo("The resources in the stack have been deleted.")


def main():
    try:
        cli(standalone_mode=False)
    except EngineError as e:
        _fail(str(e))
    except click.ClickException as e:
        e.show()
        sys.exit(e.exit_code)
    except click.exceptions.Abort:
        sys.exit(1)


if __name__ == "__main__":
    main()
