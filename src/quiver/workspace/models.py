"""quiver.workspace.models - Records returned by workspace queries."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any


@dataclass
class OutputValue:
    """A stack output; secret outputs were masked by the engine."""
    value: Any
    secret: bool = False


OutputMap = dict[str, OutputValue]


@dataclass
class StackSummary:
    name: str
    current: bool = False
    last_update: str | None = None
    update_in_progress: bool = False
    resource_count: int | None = None
    url: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StackSummary:
        return cls(
            name=data.get("name", ""),
            current=bool(data.get("current", False)),
            last_update=data.get("lastUpdate"),
            update_in_progress=bool(data.get("updateInProgress", False)),
            resource_count=data.get("resourceCount"),
            url=data.get("url"),
        )


@dataclass(frozen=True)
class PluginInfo:
    name: str
    version: str
    kind: str = "resource"
    size: int = 0
    install_time: str | None = None
    last_used_time: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PluginInfo:
        return cls(
            name=data.get("name", ""),
            version=str(data.get("version", "")).lstrip("v"),
            kind=data.get("kind", "resource"),
            size=int(data.get("size", 0)),
            install_time=data.get("installTime"),
            last_used_time=data.get("lastUsedTime"),
        )

    def matches(self, name: str, version: str | None, kind: str) -> bool:
        if self.name != name or self.kind != kind:
            return False
        return version is None or self.version == version.lstrip("v")


@dataclass
class WhoAmIResult:
    user: str
    url: str | None = None
    organizations: list[str] = field(default_factory=list)


@dataclass
class Deployment:
    """Exported stack state; the document is passed through untouched.

    `version` and `deployment` are read for convenience; `raw` holds the
    whole document, including fields quiver does not know about.
    """
    version: int
    deployment: dict[str, Any] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Deployment:
        return cls(
            version=int(data.get("version", 0)),
            deployment=data.get("deployment") or {},
            raw=copy.deepcopy(data),
        )

    def to_dict(self) -> dict[str, Any]:
        doc = copy.deepcopy(self.raw)
        doc["version"] = self.version
        doc["deployment"] = self.deployment
        return doc
