"""
quiver.cli.common - Options and helpers shared by the commands.
"""

import sys
from contextlib import contextmanager

import click

from quiver.errors import QuiverError
from quiver.workspace import Workspace


workspace_dir_option = click.option(
    "-C", "--dir", "workspace_dir", default=None,
    help="Project directory (default: pwd)",
)

stack_option = click.option(
    "-s", "--stack", "stack_name", default=None,
    help="Stack name (default: the selected stack)",
)


def fail(message) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


@contextmanager
def reporting_errors():
    """Turn quiver errors and rejected input into `Error: ...` and exit status 1."""
    try:
        yield
    except (QuiverError, ValueError) as e:
        fail(e)


def open_workspace(workspace_dir) -> Workspace:
    return Workspace(work_dir=workspace_dir or ".")


def resolve_stack(ws: Workspace, stack_name) -> str:
    if stack_name:
        return stack_name
    current = ws.stack()
    if current is None:
        fail("No stack selected. Pass --stack or run 'quiver stack select <name>'.")
    return current.name
