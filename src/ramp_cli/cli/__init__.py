"""dockramp command line."""

from __future__ import annotations

from pathlib import Path

import typer

from ramp_cli.cli.commands import cache as cache_module
from ramp_cli.cli.commands.digest import digest
from ramp_cli.cli.helpers import CliState, configure_logging, fail
from ramp_cli.config import ConfigError, load_config

app = typer.Typer(
    name="dockramp",
    help="Content digests and local build cache for client-driven image builds",
    add_completion=False,
    no_args_is_help=True,
)
app.command("digest")(digest)
app.add_typer(cache_module.app, name="cache")


@app.callback()
def callback(
    ctx: typer.Context,
    context_dir: Path = typer.Option(
        Path("."), "--context", "-C", help="Build context directory", file_okay=False
    ),
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug output"),
) -> None:
    """Load build-context configuration and set up logging."""
    try:
        config = load_config(context_dir)
    except ConfigError as exc:
        raise fail(str(exc)) from exc

    configure_logging(config.logging.level, debug=debug)
    ctx.obj = CliState(context_dir=context_dir, config=config, debug=debug)


def main() -> None:
    app()


__all__ = ["app", "main"]
