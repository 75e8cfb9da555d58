"""Shared CLI plumbing: console, logging setup and per-invocation state."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from ramp_cli.config import DockrampConfig

console = Console()
err_console = Console(stderr=True)


@dataclass
class CliState:
    """Options resolved by the top-level callback."""

    context_dir: Path
    config: DockrampConfig
    debug: bool = False


def configure_logging(level: str, debug: bool = False) -> None:
    """Route log records through rich on stderr."""
    logging.basicConfig(
        level=logging.DEBUG if debug else getattr(logging, level, logging.WARNING),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=debug)],
        force=True,
    )


def get_state(ctx: typer.Context) -> CliState:
    state = ctx.find_object(CliState)
    if state is None:
        state = CliState(context_dir=Path.cwd(), config=DockrampConfig())
    return state


def fail(message: str) -> "typer.Exit":
    """Print an error on stderr and return the exit to raise."""
    typer.secho(message, fg=typer.colors.RED, err=True)
    return typer.Exit(1)
