"""TarSum: incremental, resumable, order-independent digests of tar streams."""

from .digest import DEFAULT_CHUNK_SIZE, HASH_NAME, Digest, Stage, digest_bytes, digest_stream
from .entries import EntryResult, EntryResults, sort_by_sums
from .exceptions import (
    CorruptState,
    DigestNotFinished,
    MalformedArchive,
    TarsumError,
    TruncatedArchive,
    UnsupportedPolicyVersion,
)
from .sha256 import ResumableSHA256
from .tarheader import TarHeader, block_padding, clean_name, decode_header
from .versioning import HeaderSelector, Version, get_header_selector, get_version

__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "HASH_NAME",
    "Digest",
    "Stage",
    "digest_bytes",
    "digest_stream",
    "EntryResult",
    "EntryResults",
    "sort_by_sums",
    "CorruptState",
    "DigestNotFinished",
    "MalformedArchive",
    "TarsumError",
    "TruncatedArchive",
    "UnsupportedPolicyVersion",
    "ResumableSHA256",
    "TarHeader",
    "block_padding",
    "clean_name",
    "decode_header",
    "HeaderSelector",
    "Version",
    "get_header_selector",
    "get_version",
]
