"""Configuration CLI commands for bitseed.

Adds commands:
- config show
- config get
"""

from __future__ import annotations

import json

import click
import toml

from bitseed.config import ConfigManager


@click.group()
def config():
    """``bitseed config`` subcommands for inspecting the merged configuration."""


@config.command("show")
@click.option(
    "--format",
    "format_",
    type=click.Choice(["toml", "json"]),
    default="toml",
)
@click.option(
    "--section",
    type=str,
    default=None,
    help="Show a single section (e.g. seeder)",
)
@click.option("--config", "config_file", type=click.Path(exists=True), default=None)
@click.pass_context
def show_config(ctx: click.Context, format_: str, section: str | None, config_file: str | None):
    """Print the merged configuration, or one section of it."""
    cm = ConfigManager(config_file or _parent_config_file(ctx), setup_logs=False)
    if section is None:
        click.echo(cm.export(format_))
        return

    data = cm.config.model_dump(mode="json", exclude_none=True)
    if section not in data:
        msg = f"Section not found: {section}"
        raise click.ClickException(msg)
    if format_ == "json":
        click.echo(json.dumps({section: data[section]}, indent=2))
    else:
        click.echo(toml.dumps({section: data[section]}))


@config.command("get")
@click.argument("key")
@click.option("--config", "config_file", type=click.Path(exists=True), default=None)
@click.pass_context
def get_value(ctx: click.Context, key: str, config_file: str | None):
    """Print one value, addressed as ``section.option``."""
    cm = ConfigManager(config_file or _parent_config_file(ctx), setup_logs=False)
    ref = cm.config.model_dump(mode="json")
    try:
        for part in key.split("."):
            ref = ref[part]
    except (KeyError, TypeError):
        msg = f"Key not found: {key}"
        raise click.ClickException(msg) from None
    click.echo(json.dumps(ref, indent=2))


def _parent_config_file(ctx: click.Context) -> str | None:
    obj = ctx.find_root().obj
    if isinstance(obj, dict):
        return obj.get("config")
    return None
