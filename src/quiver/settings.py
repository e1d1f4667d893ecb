"""
quiver.settings - Global quiver settings.

~/.quiver/config.yaml:

    engine: quiver-engine            # or "python /path/to/engine.py"
    backend_url: file://~/.quiver/state
    skip_version_check: false
    log_level: WARNING
    env:
      QUIVER_CONFIG_PASSPHRASE: ""

Environment variables win over the file:

    QUIVER_HOME, QUIVER_ENGINE, QUIVER_BACKEND_URL,
    QUIVER_AUTOMATION_API_SKIP_VERSION_CHECK, QUIVER_LOG_LEVEL
"""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from quiver.version import SKIP_VERSION_CHECK_VAR


DEFAULT_ENGINE = "quiver-engine"
BACKEND_URL_VAR = "QUIVER_BACKEND_URL"
PASSPHRASE_VAR = "QUIVER_CONFIG_PASSPHRASE"


def quiver_home() -> Path:
    env_home = os.environ.get("QUIVER_HOME", "").strip()
    if env_home:
        return Path(env_home).expanduser()
    return Path.home() / ".quiver"


@dataclass
class QuiverConfig:
    """Global quiver config."""
    engine: str = DEFAULT_ENGINE
    backend_url: str | None = None
    skip_version_check: bool = False
    log_level: str = "WARNING"
    env: dict[str, str] = field(default_factory=dict)

    @property
    def engine_command(self) -> list[str]:
        """The engine invocation split into argv form."""
        return shlex.split(self.engine)


def config_path() -> Path:
    return quiver_home() / "config.yaml"


def _truthy(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config() -> QuiverConfig:
    """Read ~/.quiver/config.yaml and apply environment overrides."""
    cfg = QuiverConfig()

    cp = config_path()
    if cp.exists():
        with open(cp) as f:
            data = yaml.safe_load(f) or {}
        if isinstance(data, dict):
            cfg.engine = data.get("engine", cfg.engine)
            cfg.backend_url = data.get("backend_url")
            cfg.skip_version_check = bool(data.get("skip_version_check", False))
            cfg.log_level = data.get("log_level", cfg.log_level)
            env = data.get("env", {})
            if isinstance(env, dict):
                cfg.env = {str(k): str(v) for k, v in env.items()}

    engine = os.environ.get("QUIVER_ENGINE", "").strip()
    if engine:
        cfg.engine = engine

    backend = os.environ.get(BACKEND_URL_VAR, "").strip()
    if backend:
        cfg.backend_url = backend

    skip = os.environ.get(SKIP_VERSION_CHECK_VAR)
    if skip is not None:
        cfg.skip_version_check = _truthy(skip)

    level = os.environ.get("QUIVER_LOG_LEVEL", "").strip()
    if level:
        cfg.log_level = level

    return cfg


def save_config(cfg: QuiverConfig) -> None:
    """Write ~/.quiver/config.yaml."""
    home = quiver_home()
    home.mkdir(parents=True, exist_ok=True)

    data: dict[str, Any] = {}
    if cfg.engine != DEFAULT_ENGINE:
        data["engine"] = cfg.engine
    if cfg.backend_url:
        data["backend_url"] = cfg.backend_url
    if cfg.skip_version_check:
        data["skip_version_check"] = True
    if cfg.log_level != "WARNING":
        data["log_level"] = cfg.log_level
    if cfg.env:
        data["env"] = dict(cfg.env)

    with open(config_path(), "w") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)
