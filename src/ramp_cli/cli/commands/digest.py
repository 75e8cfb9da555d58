"""``dockramp digest``: TarSum of a tar file, directory or file."""

from __future__ import annotations

import json
from pathlib import Path
from typing import List, Optional

import typer

from ramp_cli.archive import ArchiveError, write_tar
from ramp_cli.cli.helpers import console, fail, get_state
from ramp_tarsum import Digest, TarsumError


def _is_tar_file(path: Path, force_archive: Optional[bool]) -> bool:
    if force_archive is not None:
        return force_archive
    return path.is_file() and path.suffix == ".tar"


def _feed_tar_file(
    digest: Digest,
    path: Path,
    chunk_size: int,
    stop_after: Optional[int],
) -> None:
    with path.open("rb") as handle:
        handle.seek(digest.bytes_consumed)
        while stop_after is None or digest.bytes_consumed < stop_after:
            size = chunk_size
            if stop_after is not None:
                size = min(size, stop_after - digest.bytes_consumed)
            chunk = handle.read(size)
            if not chunk:
                digest.close()
                return
            digest.write(chunk)


def digest(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="Tar file, directory or file to digest"),
    version: Optional[str] = typer.Option(
        None, "--version", "-v", help="TarSum policy version (0 or 1; default from config)"
    ),
    extra: Optional[str] = typer.Option(
        None, "--extra", help="Extra bytes (UTF-8 text) to seed the aggregate digest with"
    ),
    exclude: List[str] = typer.Option(
        [], "--exclude", "-e", help="Pattern to exclude when archiving a directory (repeatable)"
    ),
    archive: Optional[bool] = typer.Option(
        None,
        "--archive/--source",
        help="Treat PATH as an existing tar file (default: only *.tar files)",
    ),
    checkpoint: Optional[Path] = typer.Option(
        None, "--checkpoint", help="Write the session state to this file"
    ),
    resume: Optional[Path] = typer.Option(
        None, "--resume", help="Resume a tar file digest from a checkpoint file"
    ),
    stop_after: Optional[int] = typer.Option(
        None, "--stop-after", min=0, help="Stop after this many tar bytes (use with --checkpoint)"
    ),
    json_output: bool = typer.Option(False, "--json", help="Output in JSON format"),
) -> None:
    """Compute the TarSum used for COPY/EXTRACT cache keys."""
    state = get_state(ctx)
    config = state.config

    if not path.exists():
        raise fail(f"Path does not exist: {path}")

    is_tar = _is_tar_file(path, archive)
    if (resume is not None or stop_after is not None) and not is_tar:
        raise fail("--resume and --stop-after only apply to tar files")

    try:
        session = Digest(version if version is not None else config.tarsum.version)
        if resume is not None:
            session.restore(resume.read_bytes())

        if is_tar:
            _feed_tar_file(session, path, config.tarsum.chunk_size, stop_after)
        else:
            write_tar(path, session, [*config.archive.exclude, *exclude])
            session.close()

        if checkpoint is not None:
            checkpoint.write_bytes(session.checkpoint())
    except (TarsumError, ArchiveError, OSError) as exc:
        raise fail(f"Error: {exc}") from exc

    payload: dict[str, object] = {
        "path": str(path),
        "label": session.label(),
        "finished": session.finished,
        "bytes_consumed": session.bytes_consumed,
        "entries": len(session.entries),
    }
    if session.ok:
        extra_bytes = extra.encode("utf-8") if extra else None
        payload["digest"] = session.hexdigest(extra_bytes)
        payload["sum"] = session.sum_string(extra_bytes)
    if checkpoint is not None:
        payload["checkpoint"] = str(checkpoint)

    if json_output:
        typer.echo(json.dumps(payload, indent=2, sort_keys=True))
        return

    if session.ok:
        typer.echo(payload["sum"])
        console.print(
            f"[dim]{payload['entries']} entries, {session.bytes_consumed} bytes[/dim]"
        )
    else:
        console.print(
            f"[yellow]Stopped after {session.bytes_consumed} bytes "
            f"({payload['entries']} entries complete).[/yellow]"
        )
    if checkpoint is not None:
        console.print(f"[dim]Checkpoint written to {checkpoint}[/dim]")
