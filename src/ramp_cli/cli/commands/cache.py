"""``dockramp cache``: inspect and manage the local build cache."""

from __future__ import annotations

import json
from typing import List

import typer
from rich.table import Table

from ramp_cli.cache import BuildCache, CacheError, cache_key
from ramp_cli.cli.helpers import console, fail, get_state

app = typer.Typer(help="Local build cache commands")


def _open_cache(ctx: typer.Context) -> BuildCache:
    return BuildCache(get_state(ctx).config.cache_path())


@app.command("show")
def show_command(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Render cache entries as JSON"),
) -> None:
    """List cache keys and the images they map to."""
    cache = _open_cache(ctx)
    try:
        entries = dict(cache.items())
    except CacheError as exc:
        raise fail(str(exc)) from exc

    if as_json:
        typer.echo(json.dumps({"path": str(cache.path), "entries": entries}, indent=2, sort_keys=True))
        return

    if not entries:
        console.print(f"[yellow]Build cache {cache.path} is empty.[/yellow]")
        return

    table = Table(title=f"Build cache ({cache.path})")
    table.add_column("Key", style="cyan")
    table.add_column("Image", style="bold")
    for key, image_id in entries.items():
        table.add_row(key, image_id)
    console.print(table)


@app.command("key")
def key_command(
    image_id: str = typer.Argument(..., help="Parent image id"),
    commands: List[str] = typer.Argument(..., help="Pending instruction strings, in order"),
) -> None:
    """Print the cache key for pending commands on top of an image."""
    typer.echo(cache_key(image_id, commands))


@app.command("clear")
def clear_command(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Remove every entry from the build cache."""
    cache = _open_cache(ctx)
    if not yes and not typer.confirm(f"Clear build cache {cache.path}?", default=False):
        raise typer.Exit(1)
    try:
        count = len(cache)
        cache.clear()
    except CacheError as exc:
        raise fail(str(exc)) from exc
    console.print(f"[green]Removed {count} cache entries.[/green]")
