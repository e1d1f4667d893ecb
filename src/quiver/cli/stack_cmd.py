"""
quiver.cli.stack_cmd - quiver stack commands.

  quiver stack ls
  quiver stack init dev
  quiver stack select dev
  quiver stack rm dev [--force]
  quiver stack export -s dev > state.json
  quiver stack import -s dev state.json
  quiver stack output -s dev [--show-secrets]
  quiver stack history -s dev
  quiver stack tag set -s dev owner infra
"""

import json

import click

from quiver.cli.common import (
    open_workspace,
    reporting_errors,
    resolve_stack,
    stack_option,
    workspace_dir_option,
)
from quiver.stack import Stack
from quiver.workspace import Deployment


@click.group("stack")
def stack_cmd():
    """Manage stacks."""
    pass


@stack_cmd.command("ls")
@workspace_dir_option
def stack_ls(workspace_dir):
    """List stacks."""
    with reporting_errors():
        stacks = open_workspace(workspace_dir).list_stacks()

    if not stacks:
        click.echo("No stacks.")
        return
    for s in stacks:
        marker = "*" if s.current else " "
        updated = s.last_update or "never"
        count = "-" if s.resource_count is None else s.resource_count
        click.echo(f"{marker} {s.name:<30} {updated:<28} {count}")


@stack_cmd.command("init")
@click.argument("name")
@click.option("--secrets-provider", default=None, help="Secrets provider for the stack")
@workspace_dir_option
def stack_init(name, secrets_provider, workspace_dir):
    """Create a stack."""
    with reporting_errors():
        ws = open_workspace(workspace_dir)
        ws.secrets_provider = secrets_provider
        Stack.create(name, ws)
    click.echo(f"✓ Created stack {name}")


@stack_cmd.command("select")
@click.argument("name")
@click.option("--create", is_flag=True, help="Create the stack if it does not exist")
@workspace_dir_option
def stack_select(name, create, workspace_dir):
    """Select the current stack."""
    with reporting_errors():
        ws = open_workspace(workspace_dir)
        if create:
            Stack.create_or_select(name, ws)
        else:
            Stack.select(name, ws)
    click.echo(f"✓ Selected stack {name}")


@stack_cmd.command("rm")
@click.argument("name")
@click.option("--force", is_flag=True, help="Remove even if resources remain")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@workspace_dir_option
def stack_rm(name, force, yes, workspace_dir):
    """Remove a stack record."""
    if not yes:
        click.confirm(f"Remove stack '{name}'?", abort=True)
    with reporting_errors():
        open_workspace(workspace_dir).remove_stack(name, force=force)
    click.echo(f"✓ Removed stack {name}")


@stack_cmd.command("export")
@stack_option
@click.option("--file", "-o", "out_file", type=click.Path(dir_okay=False), default=None,
              help="Write to file instead of stdout")
@workspace_dir_option
def stack_export(stack_name, out_file, workspace_dir):
    """Export stack state as JSON."""
    with reporting_errors():
        ws = open_workspace(workspace_dir)
        state = ws.export_stack(resolve_stack(ws, stack_name))

    text = json.dumps(state.to_dict(), indent=2)
    if out_file:
        with open(out_file, "w") as f:
            f.write(text + "\n")
        click.echo(f"✓ Exported to {out_file}", err=True)
    else:
        click.echo(text)


@stack_cmd.command("import")
@click.argument("state_file", type=click.Path(exists=True, dir_okay=False))
@stack_option
@workspace_dir_option
def stack_import(state_file, stack_name, workspace_dir):
    """Import stack state from a JSON file."""
    with open(state_file) as f:
        data = json.load(f)
    with reporting_errors():
        ws = open_workspace(workspace_dir)
        name = resolve_stack(ws, stack_name)
        ws.import_stack(name, Deployment.from_dict(data))
    click.echo(f"✓ Imported state into {name}")


@stack_cmd.command("output")
@stack_option
@click.option("--show-secrets", is_flag=True, help="Print secret values")
@click.option("--json", "as_json", is_flag=True, help="JSON output")
@workspace_dir_option
def stack_output(stack_name, show_secrets, as_json, workspace_dir):
    """Show stack outputs."""
    with reporting_errors():
        ws = open_workspace(workspace_dir)
        outputs = ws.stack_outputs(resolve_stack(ws, stack_name))

    shown = {
        name: "[secret]" if out.secret and not show_secrets else out.value
        for name, out in outputs.items()
    }
    if as_json:
        click.echo(json.dumps(shown, indent=2))
        return
    if not shown:
        click.echo("No outputs.")
        return
    for name, value in shown.items():
        click.echo(f"{name:<24} {value}")


@stack_cmd.command("history")
@stack_option
@click.option("--page-size", type=int, default=None, help="Entries per page")
@click.option("--page", type=int, default=None, help="Page number (1-based)")
@workspace_dir_option
def stack_history(stack_name, page_size, page, workspace_dir):
    """Show the update history, newest first."""
    with reporting_errors():
        ws = open_workspace(workspace_dir)
        stack = Stack(resolve_stack(ws, stack_name), ws)
        entries = stack.history(page_size=page_size, page=page)

    if not entries:
        click.echo("No history.")
        return
    for e in entries:
        changes = ", ".join(f"{k}={v}" for k, v in e.resource_changes.items())
        click.echo(f"#{e.version}  {e.kind:<8} {e.result:<10} {e.start_time or '':<28} {changes}")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# TAGS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
@stack_cmd.group("tag")
def tag_cmd():
    """Manage stack tags."""
    pass


@tag_cmd.command("get")
@click.argument("key")
@stack_option
@workspace_dir_option
def tag_get(key, stack_name, workspace_dir):
    with reporting_errors():
        ws = open_workspace(workspace_dir)
        click.echo(ws.get_tag(resolve_stack(ws, stack_name), key))


@tag_cmd.command("set")
@click.argument("key")
@click.argument("value")
@stack_option
@workspace_dir_option
def tag_set(key, value, stack_name, workspace_dir):
    with reporting_errors():
        ws = open_workspace(workspace_dir)
        ws.set_tag(resolve_stack(ws, stack_name), key, value)


@tag_cmd.command("rm")
@click.argument("key")
@stack_option
@workspace_dir_option
def tag_rm(key, stack_name, workspace_dir):
    with reporting_errors():
        ws = open_workspace(workspace_dir)
        ws.remove_tag(resolve_stack(ws, stack_name), key)


@tag_cmd.command("ls")
@stack_option
@workspace_dir_option
def tag_ls(stack_name, workspace_dir):
    with reporting_errors():
        ws = open_workspace(workspace_dir)
        tags = ws.list_tags(resolve_stack(ws, stack_name))
    for key in sorted(tags):
        click.echo(f"{key:<30} {tags[key]}")
