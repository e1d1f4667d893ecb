"""quiver.workspace - Project directories, settings and engine context."""

from quiver.workspace.models import Deployment, PluginInfo, StackSummary, WhoAmIResult
from quiver.workspace.settings import ProjectBackend, ProjectSettings, SecureValue, StackSettings
from quiver.workspace.workspace import Workspace

__all__ = [
    "Workspace",
    "ProjectSettings",
    "ProjectBackend",
    "StackSettings",
    "SecureValue",
    "StackSummary",
    "PluginInfo",
    "WhoAmIResult",
    "Deployment",
]
