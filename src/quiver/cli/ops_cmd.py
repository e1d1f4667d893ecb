"""
quiver.cli.ops_cmd - Lifecycle commands.

  quiver up -s dev -m "first deploy"
  quiver preview -s dev
  quiver refresh -s dev
  quiver destroy -s dev --yes
"""

import click

from quiver.cli.common import (
    open_workspace,
    reporting_errors,
    resolve_stack,
    stack_option,
    workspace_dir_option,
)
from quiver.stack import Stack


def _open_stack(workspace_dir, stack_name) -> Stack:
    ws = open_workspace(workspace_dir)
    return Stack.select(resolve_stack(ws, stack_name), ws)


def _print_changes(changes):
    if not changes:
        click.echo("No resource changes.", err=True)
        return
    for kind, count in sorted(changes.items()):
        click.echo(f"  {kind:<10} {count}", err=True)


@click.command("up")
@stack_option
@click.option("-m", "--message", default=None, help="Update message")
@click.option("--target", "targets", multiple=True, help="Only update these resources")
@click.option("--parallel", type=int, default=None, help="Max parallel resource operations")
@click.option("--expect-no-changes", is_flag=True, help="Fail if the update changes anything")
@workspace_dir_option
def up_cmd(stack_name, message, targets, parallel, expect_no_changes, workspace_dir):
    """Deploy the stack."""
    with reporting_errors():
        stack = _open_stack(workspace_dir, stack_name)
        click.echo(f"Updating {stack.name}...", err=True)
        res = stack.up(
            message=message,
            target=list(targets),
            parallel=parallel,
            expect_no_changes=expect_no_changes,
            on_output=click.echo,
        )

    click.echo(f"✓ Update {res.summary.result}", err=True)
    _print_changes(res.summary.resource_changes)
    for name, out in res.outputs.items():
        click.echo(f"  {name:<24} {'[secret]' if out.secret else out.value}", err=True)


@click.command("preview")
@stack_option
@click.option("--target", "targets", multiple=True, help="Only preview these resources")
@click.option("--diff", is_flag=True, help="Show a detailed diff")
@workspace_dir_option
def preview_cmd(stack_name, targets, diff, workspace_dir):
    """Show what an update would change."""
    with reporting_errors():
        stack = _open_stack(workspace_dir, stack_name)
        res = stack.preview(target=list(targets), diff=diff, on_output=click.echo)
    _print_changes(res.change_summary)


@click.command("refresh")
@stack_option
@workspace_dir_option
def refresh_cmd(stack_name, workspace_dir):
    """Reconcile state with the real infrastructure."""
    with reporting_errors():
        stack = _open_stack(workspace_dir, stack_name)
        res = stack.refresh(on_output=click.echo)
    click.echo(f"✓ Refresh {res.summary.result}", err=True)
    _print_changes(res.summary.resource_changes)


@click.command("destroy")
@stack_option
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@workspace_dir_option
def destroy_cmd(stack_name, yes, workspace_dir):
    """Delete every resource of the stack."""
    with reporting_errors():
        stack = _open_stack(workspace_dir, stack_name)
        if not yes:
            click.confirm(f"Destroy all resources of '{stack.name}'?", abort=True)
        res = stack.destroy(on_output=click.echo)
    click.echo(f"✓ Destroy {res.summary.result}", err=True)
    _print_changes(res.summary.resource_changes)
