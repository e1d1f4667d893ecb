"""
quiver.stack.names - Stack name parsing.

A stack reference has one of three forms:

    dev
    acme/dev
    acme/web/dev          (organization/project/stack)

Each segment is non-empty, at most 100 characters, and limited to
alphanumerics, hyphens, underscores and periods.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from quiver.errors import QuiverError

MAX_NAME_LENGTH = 100

_SEGMENT = re.compile(r"^[A-Za-z0-9_.-]+$")


class StackNameError(QuiverError, ValueError):
    """Invalid stack reference."""
    pass


@dataclass(frozen=True)
class StackName:
    stack: str
    project: str | None = None
    organization: str | None = None

    @property
    def fully_qualified(self) -> bool:
        return self.organization is not None and self.project is not None

    def __str__(self) -> str:
        parts = [p for p in (self.organization, self.project, self.stack) if p is not None]
        return "/".join(parts)


def _check_segment(value: str, what: str) -> str:
    if not value:
        raise StackNameError(f"{what} name must not be empty")
    if len(value) > MAX_NAME_LENGTH:
        raise StackNameError(f"{what} names are limited to {MAX_NAME_LENGTH} characters")
    if not _SEGMENT.match(value):
        raise StackNameError(
            f"{what} names may only contain alphanumerics, hyphens, "
            f"underscores, or periods: {value}"
        )
    return value


def parse_stack_name(text: str) -> StackName:
    """Parse `stack`, `org/stack` or `org/project/stack`.

    >>> str(parse_stack_name("acme/web/dev"))
    'acme/web/dev'
    """
    parts = text.split("/")
    if len(parts) == 1:
        return StackName(stack=_check_segment(parts[0], "stack"))
    if len(parts) == 2:
        return StackName(
            stack=_check_segment(parts[1], "stack"),
            organization=_check_segment(parts[0], "organization"),
        )
    if len(parts) == 3:
        return StackName(
            stack=_check_segment(parts[2], "stack"),
            project=_check_segment(parts[1], "project"),
            organization=_check_segment(parts[0], "organization"),
        )
    raise StackNameError(f"invalid stack reference '{text}': too many '/' separators")


def fully_qualified_stack_name(org: str, project: str, stack: str) -> str:
    """Build `org/project/stack`, validating every segment."""
    return str(StackName(
        stack=_check_segment(stack, "stack"),
        project=_check_segment(project, "project"),
        organization=_check_segment(org, "organization"),
    ))
