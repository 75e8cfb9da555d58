"""Archive producer for build sources.

Streams a POSIX tar of a local file or directory into any object with a
``write(bytes)`` method. Feeding a ``ramp_tarsum.Digest`` directly computes
the source's cache digest without ever materializing the archive.
"""

from __future__ import annotations

import fnmatch
import logging
import tarfile
from pathlib import Path, PurePosixPath
from typing import Iterable, Optional, Protocol, Sequence

from ramp_tarsum import DEFAULT_CHUNK_SIZE, Digest, Version, digest_stream

logger = logging.getLogger(__name__)


class ArchiveError(RuntimeError):
    """Raised when a build source cannot be archived."""


class Writer(Protocol):
    def write(self, data: bytes) -> int: ...


def is_excluded(arcname: str, patterns: Sequence[str]) -> bool:
    """Whether an archive-relative path matches any exclude pattern.

    Patterns are matched against the full path and against every trailing
    sub-path, so ``*.pyc`` excludes ``pkg/mod.pyc`` and ``.git`` excludes
    ``src/.git``.

    Examples:
        >>> is_excluded("src/pkg/mod.pyc", ["*.pyc"])
        True
        >>> is_excluded("src/.git", [".git"])
        True
        >>> is_excluded("src/main.py", ["*.pyc", ".git"])
        False
    """
    if not patterns:
        return False
    parts = PurePosixPath(arcname.rstrip("/")).parts
    candidates = ["/".join(parts[i:]) for i in range(len(parts))]
    return any(
        fnmatch.fnmatchcase(candidate, pattern)
        for pattern in patterns
        for candidate in candidates
    )


def write_tar(src: Path, fileobj: Writer, exclude: Iterable[str] = ()) -> None:
    """Stream a tar archive of ``src`` into ``fileobj``.

    Entry names are relative to the parent of ``src``: the source's own base
    name is the root entry. Directory walks are sorted, so the byte stream is
    reproducible for unchanged sources.

    Raises:
        ArchiveError: If ``src`` does not exist or cannot be read.
    """
    src = Path(src)
    if not src.exists() and not src.is_symlink():
        raise ArchiveError(f"Source path does not exist: {src}")

    patterns = list(exclude)

    def _filter(info: tarfile.TarInfo) -> Optional[tarfile.TarInfo]:
        if is_excluded(info.name, patterns):
            logger.debug("excluding %s from archive", info.name)
            return None
        return info

    try:
        with tarfile.open(mode="w|", fileobj=fileobj, format=tarfile.PAX_FORMAT) as archive:
            archive.add(str(src), arcname=src.name, recursive=True, filter=_filter)
    except OSError as exc:
        raise ArchiveError(f"Unable to archive {src}: {exc}") from exc


def digest_path(
    path: Path,
    version: object = Version.V1,
    exclude: Iterable[str] = (),
) -> Digest:
    """Digest a local file or directory by archiving it on the fly."""
    digest = Digest(version)
    write_tar(Path(path), digest, exclude)
    digest.close()
    return digest


def digest_archive(
    path: Path,
    version: object = Version.V1,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> Digest:
    """Digest an existing tar file.

    Raises:
        ArchiveError: If the file cannot be opened.
        TarsumError: If the file is not a complete tar archive.
    """
    try:
        handle = Path(path).open("rb")
    except OSError as exc:
        raise ArchiveError(f"Unable to open source archive {path}: {exc}") from exc
    with handle:
        return digest_stream(handle, version, chunk_size)
