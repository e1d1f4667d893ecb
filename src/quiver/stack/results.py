"""
quiver.stack.results - Results of stack lifecycle operations.

Every successful result carries a summary whose resource_changes map
is always present (possibly empty); UpResult.outputs likewise.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from quiver.workspace.models import OutputMap, OutputValue


@dataclass
class UpdateSummary:
    """One entry of the stack's update history."""
    kind: str
    result: str
    start_time: str | None = None
    end_time: str | None = None
    message: str = ""
    version: int | None = None
    environment: dict[str, str] = field(default_factory=dict)
    config: dict[str, Any] = field(default_factory=dict)
    resource_changes: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UpdateSummary:
        return cls(
            kind=data.get("kind", ""),
            result=data.get("result", ""),
            start_time=data.get("startTime"),
            end_time=data.get("endTime"),
            message=data.get("message", ""),
            version=data.get("version"),
            environment=dict(data.get("environment") or {}),
            config=dict(data.get("config") or {}),
            resource_changes=dict(data.get("resourceChanges") or {}),
        )


@dataclass
class UpResult:
    stdout: str
    stderr: str
    summary: UpdateSummary
    outputs: OutputMap = field(default_factory=dict)


@dataclass
class PreviewResult:
    stdout: str
    stderr: str
    change_summary: dict[str, int] = field(default_factory=dict)


@dataclass
class RefreshResult:
    stdout: str
    stderr: str
    summary: UpdateSummary


@dataclass
class DestroyResult:
    stdout: str
    stderr: str
    summary: UpdateSummary
