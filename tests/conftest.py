from __future__ import annotations

import io
import tarfile
from typing import Callable, Iterable, Iterator

import pytest

Member = tuple[tarfile.TarInfo, bytes]


def tar_member(name: str, data: bytes = b"", **attrs: object) -> Member:
    """Build a (TarInfo, data) pair; extra keyword args set TarInfo fields."""
    info = tarfile.TarInfo(name)
    info.size = len(data)
    for key, value in attrs.items():
        setattr(info, key, value)
    return info, data


def make_tar(
    members: Iterable[Member],
    format: int = tarfile.PAX_FORMAT,
    trim: bool = True,
) -> bytes:
    """Serialize members to tar bytes.

    With ``trim`` the result ends exactly after the two-zero-block
    terminator instead of being padded to a full tar record.
    """
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w", format=format) as archive:
        for info, data in members:
            archive.addfile(info, io.BytesIO(data) if info.isfile() else None)
        end = archive.offset + 2 * tarfile.BLOCKSIZE
    payload = buf.getvalue()
    return payload[:end] if trim else payload


def chunked(data: bytes, size: int) -> Iterator[bytes]:
    for offset in range(0, len(data), size):
        yield data[offset:offset + size]


@pytest.fixture()
def member() -> Callable[..., Member]:
    return tar_member


@pytest.fixture()
def build_tar() -> Callable[..., bytes]:
    return make_tar


@pytest.fixture()
def chunks() -> Callable[[bytes, int], Iterator[bytes]]:
    return chunked


@pytest.fixture()
def sample_tar() -> bytes:
    """Two regular files and a directory, bodies not block aligned."""
    return make_tar(
        [
            tar_member("./etc/", type=tarfile.DIRTYPE, mode=0o755),
            tar_member("./etc/hostname", b"abc", uid=1000, gid=1000, uname="dev", gname="dev"),
            tar_member("./etc/motd", b"x" * 600, mtime=1700000000),
        ]
    )
