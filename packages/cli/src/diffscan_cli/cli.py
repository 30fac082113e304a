"""CLI entry point for diffscan.

Commands:
  scan  scan a commit and report findings introduced by its pull requests
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from diffscan_cli.commands.scan import scan_cmd

console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@click.group()
@click.version_option(
    version=importlib.metadata.version("diffscan"),
    prog_name="diffscan",
)
@click.option(
    "--config",
    "config_path",
    default=".diffscan.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="DIFFSCAN_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Log debug output to stderr.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """Report static-analysis issues introduced by pull requests."""
    _configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


main.add_command(scan_cmd)
