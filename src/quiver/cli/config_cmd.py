"""
quiver.cli.config_cmd - quiver config commands.

  quiver config set region us-west-2 -s dev
  quiver config set password hunter2 --secret -s dev
  quiver config get region -s dev
  quiver config rm region -s dev
  quiver config ls -s dev [--show-secrets]
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
from quiver.config import ConfigValue


@click.group("config")
def config_cmd():
    """Manage stack configuration."""
    pass


@config_cmd.command("get")
@click.argument("key")
@stack_option
@click.option("--path", is_flag=True, help="Treat KEY as a path into a nested value")
@workspace_dir_option
def config_get(key, stack_name, path, workspace_dir):
    """Print one config value."""
    with reporting_errors():
        ws = open_workspace(workspace_dir)
        value = ws.get_config(resolve_stack(ws, stack_name), key, path=path)
    click.echo(value.value)


@config_cmd.command("set")
@click.argument("key")
@click.argument("value")
@stack_option
@click.option("--secret", is_flag=True, help="Encrypt the value")
@click.option("--path", is_flag=True, help="Treat KEY as a path into a nested value")
@workspace_dir_option
def config_set(key, value, stack_name, secret, path, workspace_dir):
    """Set one config value."""
    with reporting_errors():
        ws = open_workspace(workspace_dir)
        ws.set_config(
            resolve_stack(ws, stack_name), key,
            ConfigValue(value=value, secret=secret), path=path,
        )


@config_cmd.command("rm")
@click.argument("keys", nargs=-1, required=True)
@stack_option
@click.option("--path", is_flag=True, help="Treat KEYS as paths into nested values")
@workspace_dir_option
def config_rm(keys, stack_name, path, workspace_dir):
    """Remove one or more config values."""
    with reporting_errors():
        ws = open_workspace(workspace_dir)
        name = resolve_stack(ws, stack_name)
        if len(keys) == 1:
            ws.remove_config(name, keys[0], path=path)
        else:
            ws.remove_all_config(name, list(keys), path=path)


@config_cmd.command("ls")
@stack_option
@click.option("--show-secrets", is_flag=True, help="Print secret values")
@click.option("--json", "as_json", is_flag=True, help="JSON output")
@workspace_dir_option
def config_ls(stack_name, show_secrets, as_json, workspace_dir):
    """List config values."""
    with reporting_errors():
        ws = open_workspace(workspace_dir)
        values = ws.get_all_config(resolve_stack(ws, stack_name))

    def shown(v):
        return "[secret]" if v.secret and not show_secrets else v.value

    if as_json:
        click.echo(json.dumps(
            {k: {"value": shown(v), "secret": v.secret} for k, v in values.items()},
            indent=2,
        ))
        return
    if not values:
        click.echo("No configuration values.")
        return
    for key in sorted(values):
        click.echo(f"{key:<30} {shown(values[key])}")
