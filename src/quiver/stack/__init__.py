"""quiver.stack - Named stacks and their lifecycle operations."""

from quiver.stack.names import StackName, StackNameError, fully_qualified_stack_name, parse_stack_name
from quiver.stack.results import (
    DestroyResult,
    OutputValue,
    PreviewResult,
    RefreshResult,
    UpdateSummary,
    UpResult,
)
from quiver.stack.stack import Stack, create_or_select_stack, create_stack, select_stack

__all__ = [
    "Stack",
    "create_stack",
    "select_stack",
    "create_or_select_stack",
    "StackName",
    "StackNameError",
    "parse_stack_name",
    "fully_qualified_stack_name",
    "OutputValue",
    "UpdateSummary",
    "UpResult",
    "PreviewResult",
    "RefreshResult",
    "DestroyResult",
]
