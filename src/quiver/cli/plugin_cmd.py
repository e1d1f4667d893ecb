"""
quiver.cli.plugin_cmd - quiver plugin commands.

  quiver plugin install aws 6.0.0
  quiver plugin ls
  quiver plugin rm aws 6.0.0
"""

import click

from quiver.cli.common import open_workspace, reporting_errors, workspace_dir_option


@click.group("plugin")
def plugin_cmd():
    """Manage engine plugins."""
    pass


@plugin_cmd.command("install")
@click.argument("name")
@click.argument("version")
@click.option("--kind", default="resource", help="Plugin kind (default: resource)")
@workspace_dir_option
def plugin_install(name, version, kind, workspace_dir):
    with reporting_errors():
        open_workspace(workspace_dir).install_plugin(name, version, kind=kind)
    click.echo(f"✓ Installed {kind} plugin {name} {version}")


@plugin_cmd.command("rm")
@click.argument("name")
@click.argument("version", required=False, default=None)
@click.option("--kind", default="resource", help="Plugin kind (default: resource)")
@workspace_dir_option
def plugin_rm(name, version, kind, workspace_dir):
    with reporting_errors():
        open_workspace(workspace_dir).remove_plugin(name, version, kind=kind)
    click.echo(f"✓ Removed {kind} plugin {name}")


@plugin_cmd.command("ls")
@workspace_dir_option
def plugin_ls(workspace_dir):
    with reporting_errors():
        plugins = open_workspace(workspace_dir).list_plugins()
    if not plugins:
        click.echo("No plugins installed.")
        return
    for p in plugins:
        click.echo(f"{p.name:<24} {p.kind:<10} {p.version}")
