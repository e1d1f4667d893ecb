"""
quiver.cli - CLI entry point.

Commands:
  quiver version                 - Library and engine versions
  quiver whoami                  - Current backend identity
  quiver stack ...               - Create, select, list, export stacks
  quiver config ...              - Stack configuration
  quiver plugin ...              - Engine plugins
  quiver up|preview|refresh|destroy
"""

import click

from quiver.cli.common import open_workspace, reporting_errors, workspace_dir_option
from quiver.cli.config_cmd import config_cmd
from quiver.cli.ops_cmd import destroy_cmd, preview_cmd, refresh_cmd, up_cmd
from quiver.cli.plugin_cmd import plugin_cmd
from quiver.cli.stack_cmd import stack_cmd


@click.group()
@click.version_option(package_name="quiver")
@click.option("-v", "--verbose", is_flag=True, help="Log engine invocations to stderr")
def main(verbose):
    """quiver - Stack orchestration for infrastructure engines."""
    from quiver.log import setup_logging
    from quiver.settings import load_config

    if verbose:
        setup_logging("DEBUG")
    else:
        level = load_config().log_level
        if level.upper() != "WARNING":
            setup_logging(level)


@main.command("version")
@workspace_dir_option
def version_cmd(workspace_dir):
    """Show library and engine versions."""
    from quiver import __version__

    click.echo(f"quiver  {__version__}")
    with reporting_errors():
        ws = open_workspace(workspace_dir)
    click.echo(f"engine  {ws.engine_version}")


@main.command("whoami")
@workspace_dir_option
def whoami_cmd(workspace_dir):
    """Show the authenticated backend user."""
    with reporting_errors():
        who = open_workspace(workspace_dir).who_am_i()
    click.echo(f"User: {who.user}")
    if who.url:
        click.echo(f"URL:  {who.url}")
    if who.organizations:
        click.echo(f"Orgs: {', '.join(who.organizations)}")


main.add_command(stack_cmd, "stack")
main.add_command(config_cmd, "config")
main.add_command(plugin_cmd, "plugin")
main.add_command(up_cmd, "up")
main.add_command(preview_cmd, "preview")
main.add_command(refresh_cmd, "refresh")
main.add_command(destroy_cmd, "destroy")
