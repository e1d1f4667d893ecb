"""
tests/conftest.py - Shared fixtures.

Every test runs against the scripted engine in tests/engine/, with a
private QUIVER_HOME and a file backend under tmp_path.
"""

import os
import shlex
import sys

import pytest
import yaml
from loguru import logger

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

ENGINE_SCRIPT = os.path.join(os.path.dirname(__file__), "engine", "fake_engine.py")
ENGINE_COMMAND = [sys.executable, ENGINE_SCRIPT]

PROJECT = "testproj"

PROGRAM = '''
def main(ctx):
    cfg = ctx.config
    return {
        "exp_static": "foo",
        "exp_cfg": cfg.get("bar"),
        "exp_secret": cfg.get_secret("buzz"),
    }
'''


@pytest.fixture(autouse=True)
def quiver_env(tmp_path, monkeypatch):
    """Isolated home, backend and engine for each test."""
    monkeypatch.setenv("QUIVER_HOME", str(tmp_path / "home"))
    monkeypatch.setenv("QUIVER_ENGINE", " ".join(shlex.quote(p) for p in ENGINE_COMMAND))
    monkeypatch.setenv("QUIVER_BACKEND_URL", f"file://{tmp_path / 'backend'}")
    monkeypatch.setenv("QUIVER_CONFIG_PASSPHRASE", "correct horse")
    for var in (
        "QUIVER_AUTOMATION_API_SKIP_VERSION_CHECK",
        "QUIVER_LOG_LEVEL",
        "FAKE_ENGINE_VERSION",
        "FAKE_ENGINE_DELAY",
        "FAKE_ENGINE_USER",
    ):
        monkeypatch.delenv(var, raising=False)
    return tmp_path


@pytest.fixture(autouse=True)
def quiet_library():
    """Leave quiver's logger disabled after tests that enable it."""
    yield
    logger.disable("quiver")


@pytest.fixture
def project_dir(tmp_path):
    """A project directory with quiver.yaml and a local program."""
    d = tmp_path / "project"
    d.mkdir()
    with open(d / "quiver.yaml", "w") as f:
        yaml.dump({"name": PROJECT, "runtime": "python", "description": "test project"}, f)
    (d / "program.py").write_text(PROGRAM)
    return d


@pytest.fixture
def workspace(project_dir):
    from quiver.workspace import Workspace
    return Workspace(work_dir=project_dir)
