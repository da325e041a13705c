#!/usr/bin/env python3
"""Command-line entry point for nmhost.

  nmhost run       Run the reference host on stdin/stdout.
  nmhost install   Write launcher + manifest and register
                   them with Firefox.
"""
from __future__ import annotations

import sys
from pathlib import Path

import click
from pydantic import ValidationError
from returns.io import IOFailure

from nmhost.native_host import main as host_main
from nmhost.native_host.installer import (
    HOST_DESCRIPTION,
    HOST_NAME,
    format_summary,
    install_host,
)
from nmhost.nmh_modules.types import TransportConfig


@click.group()
def cli() -> None:
    """Browser native messaging host tools."""


@cli.command()
@click.option(
    "--max-frame-size",
    default=None,
    type=int,
    help="Reject frames larger than this many bytes (default: unbounded)",
)
@click.option(
    "--log-file",
    default=None,
    type=click.Path(dir_okay=False, path_type=Path),
    help="Debug log file (default: ~/.local/lib/nmhost/debug.log)",
)
def run(max_frame_size: int | None, log_file: Path | None) -> None:
    """Run the host; browsers launch this via the manifest."""
    try:
        config = TransportConfig(max_frame_size=max_frame_size)
    except ValidationError as exc:
        raise click.BadParameter(str(exc), param_hint="--max-frame-size") from exc
    host_main.main(config, log_file)


@cli.command()
@click.option("--extension-id", required=True, help="Allowed extension ID")
@click.option(
    "--manifest-path",
    required=True,
    type=click.Path(dir_okay=False, path_type=Path),
    help="Where to write the manifest JSON",
)
@click.option(
    "--script-path",
    required=True,
    type=click.Path(dir_okay=False, path_type=Path),
    help="Where to write the launcher script",
)
@click.option("--name", "host_name", default=HOST_NAME, help="Host name")
@click.option(
    "--description",
    "host_description",
    default=HOST_DESCRIPTION,
    help="Host description",
)
@click.option(
    "--python",
    "python_exe",
    default=None,
    help="Interpreter the launcher runs (default: current)",
)
def install(  # noqa: PLR0913
    extension_id: str,
    manifest_path: Path,
    script_path: Path,
    host_name: str,
    host_description: str,
    python_exe: str | None,
) -> None:
    """Install the host so Firefox can launch it."""
    result = install_host(
        script_path=script_path.expanduser().absolute(),
        manifest_path=manifest_path.expanduser().absolute(),
        extension_id=extension_id,
        host_name=host_name,
        host_description=host_description,
        python_exe=python_exe,
    )
    summary = format_summary(result)
    if isinstance(result, IOFailure):
        click.echo(summary, err=True)
        sys.exit(1)
    click.echo(summary)


if __name__ == "__main__":
    cli()
