"""TarSum policy versions and header canonicalization.

A policy version decides which fields of a tar entry header are folded into
the entry's digest, and is part of the label of every aggregate digest so a
stored digest string identifies the rules it was computed under.

Version 0 (``tarsum``) selects the fixed legacy field set::

    name, mode, uid, gid, size, mtime, typeflag,
    linkname, uname, gname, devmajor, devminor

Version 1 (``tarsum.v1``) drops ``mtime`` and appends every extended
attribute, sorted byte-wise by key.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable, List, Tuple

from .exceptions import UnsupportedPolicyVersion
from .tarheader import TarHeader

HeaderPairs = List[Tuple[str, str]]


class Version(str, Enum):
    """Known TarSum policy versions, valued by their label identifier."""

    V0 = "tarsum"
    V1 = "tarsum.v1"

    def __str__(self) -> str:
        return self.value

    @property
    def number(self) -> str:
        """Short policy number (``"0"``, ``"1"``)."""
        return _NUMBERS[self]


_NUMBERS = {Version.V0: "0", Version.V1: "1"}
_ALIASES = {
    "0": Version.V0,
    "1": Version.V1,
    "v0": Version.V0,
    "v1": Version.V1,
    "tarsum": Version.V0,
    "tarsum.v0": Version.V0,
    "tarsum.v1": Version.V1,
}


def get_version(value: object) -> Version:
    """Resolve a policy version from a number, short name or identifier.

    Raises:
        UnsupportedPolicyVersion: If ``value`` names no known version.
    """
    if isinstance(value, Version):
        return value
    if isinstance(value, bool):
        raise UnsupportedPolicyVersion(value)
    key = str(value) if isinstance(value, int) else value
    if isinstance(key, str):
        version = _ALIASES.get(key.strip().lower())
        if version is not None:
            return version
    raise UnsupportedPolicyVersion(value)


def supported_versions() -> list[Version]:
    return list(Version)


def _v0_headers(header: TarHeader) -> HeaderPairs:
    return [
        ("name", header.name),
        ("mode", str(header.mode)),
        ("uid", str(header.uid)),
        ("gid", str(header.gid)),
        ("size", str(header.size)),
        ("mtime", str(header.mtime)),
        ("typeflag", header.typeflag),
        ("linkname", header.linkname),
        ("uname", header.uname),
        ("gname", header.gname),
        ("devmajor", str(header.devmajor)),
        ("devminor", str(header.devminor)),
    ]


def _v1_headers(header: TarHeader) -> HeaderPairs:
    v0_headers = _v0_headers(header)
    # Everything from v0 except mtime (the sixth field).
    ordered = v0_headers[:5] + v0_headers[6:]

    xattrs = header.xattrs or {}
    for key in sorted(xattrs, key=_byte_key):
        ordered.append((key, xattrs[key]))
    return ordered


def _byte_key(value: str) -> bytes:
    return value.encode("utf-8", "surrogateescape")


_SELECTORS: dict[Version, Callable[[TarHeader], HeaderPairs]] = {
    Version.V0: _v0_headers,
    Version.V1: _v1_headers,
}


class HeaderSelector:
    """Canonicalizes tar headers for one policy version.

    Construction validates the version, so an unknown version fails before
    any archive bytes are read.
    """

    def __init__(self, version: object):
        self.version = get_version(version)
        self._select = _SELECTORS[self.version]

    @classmethod
    def for_version(cls, version: object) -> "HeaderSelector":
        return cls(version)

    def select_headers(self, header: TarHeader) -> HeaderPairs:
        """Return the ordered ``(field, value)`` pairs for ``header``."""
        return self._select(header)

    def encode(self, header: TarHeader) -> list[bytes]:
        """Return the byte strings fed to the entry hash, in order.

        Each element is ``field + value``; nothing separates the elements.
        """
        return [
            (field + value).encode("utf-8", "surrogateescape")
            for field, value in self.select_headers(header)
        ]


def get_header_selector(version: object) -> HeaderSelector:
    return HeaderSelector(version)
