"""Write-driven TarSum digest of a tar byte stream.

``Digest`` consumes raw archive bytes in chunks of any size, detects entry
boundaries as they arrive and hashes every entry (canonical header fields
followed by the body) with its own resumable SHA-256. Once the terminator
marker has been seen, the per-entry digests are combined into one aggregate
digest that does not depend on the order of unrelated entries.

Stages of one entry cycle::

    read_header -> read_entry -> skip_padding -> read_header ... -> finished

Each stage has one transition method. ``write`` appends the new bytes to the
stage's buffer and runs transitions until one of them needs more bytes.
"""

from __future__ import annotations

import hashlib
import logging
from enum import Enum
from typing import TYPE_CHECKING, BinaryIO, Callable, Dict

from . import sha256
from .entries import EntryResult, EntryResults, sort_by_sums
from .exceptions import DigestNotFinished, TarsumError, TruncatedArchive
from .tarheader import (
    BLOCK_SIZE,
    EndOfArchive,
    IncompleteHeader,
    block_padding,
    clean_name,
    decode_header,
)
from .versioning import HeaderSelector, Version

if TYPE_CHECKING:
    from .state import DigestSnapshot

logger = logging.getLogger(__name__)

HASH_NAME = "sha256"
DEFAULT_CHUNK_SIZE = 32 * 1024


class Stage(str, Enum):
    """Digest session stages."""

    READ_HEADER = "read_header"
    READ_ENTRY = "read_entry"
    SKIP_PADDING = "skip_padding"
    FINISHED = "finished"


class Digest:
    """Incremental, resumable TarSum of one archive stream.

    Not thread safe; each session is owned by one writer.

    Examples:
        >>> d = Digest("1")
        >>> d.write(bytes(1024))
        1024
        >>> d.ok
        True
        >>> d.sum_string()
        'tarsum.v1+sha256:e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855'
    """

    def __init__(self, version: object = Version.V1):
        self._selector = HeaderSelector(version)
        self._version = self._selector.version
        self._handlers: Dict[Stage, Callable[[], bool]] = {
            Stage.READ_HEADER: self._read_header,
            Stage.READ_ENTRY: self._read_entry,
            Stage.SKIP_PADDING: self._skip_padding,
        }
        self.reset()

    # ------------------------------------------------------------------
    # Session state
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Return to a fresh session bound to the same version."""
        self._stage = Stage.READ_HEADER
        self._header_buffer = bytearray()
        self._entry_buffer = bytearray()
        self._entry_hash = sha256.new()
        self._entry_name = ""
        self._entry_remaining = 0
        self._pad = 0
        self._entry_counter = 0
        self._bytes_consumed = 0
        self._entries = EntryResults()
        self._error: TarsumError | None = None

    @property
    def version(self) -> Version:
        return self._version

    @property
    def stage(self) -> Stage:
        return self._stage

    @property
    def finished(self) -> bool:
        return self._stage is Stage.FINISHED

    @property
    def ok(self) -> bool:
        """True once the terminator has been seen without any error."""
        return self.finished and self._error is None

    @property
    def error(self) -> TarsumError | None:
        return self._error

    @property
    def bytes_consumed(self) -> int:
        return self._bytes_consumed

    @property
    def entries(self) -> tuple[EntryResult, ...]:
        """Completed entry results in archive order."""
        return tuple(self._entries)

    @property
    def entry_results(self) -> EntryResults:
        """Copy of the completed results, with lookup helpers."""
        return EntryResults(self._entries)

    @property
    def size(self) -> int:
        return sha256.DIGEST_SIZE

    digest_size = sha256.DIGEST_SIZE

    @property
    def block_size(self) -> int:
        return sha256.BLOCK_SIZE

    def __repr__(self) -> str:
        return (
            f"Digest(version={self._version.value!r}, stage={self._stage.value!r}, "
            f"entries={len(self._entries)}, bytes_consumed={self._bytes_consumed})"
        )

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def write(self, data: bytes) -> int:
        """Consume the next chunk of archive bytes.

        Every chunk is accepted in full. After the session has finished,
        further bytes are absorbed without touching the digest.

        Returns:
            ``len(data)``

        Raises:
            MalformedArchive: The chunk completed an invalid header. The
                session is finished with the error recorded, and later
                writes are absorbed silently.
        """
        n = len(data)
        self._bytes_consumed += n
        if self._stage is Stage.FINISHED:
            return n

        if self._stage is Stage.READ_HEADER:
            self._header_buffer += data
        else:
            self._entry_buffer += data
        logger.debug("writing %d bytes at stage %s", n, self._stage.value)

        try:
            self._run()
        except TarsumError as exc:
            self._fail(exc)
            raise
        return n

    update = write

    def _run(self) -> None:
        while self._stage is not Stage.FINISHED:
            if not self._handlers[self._stage]():
                return

    def _fail(self, exc: TarsumError) -> None:
        if exc.stage is None:
            exc.stage = self._stage.value
        if exc.bytes_consumed is None:
            exc.bytes_consumed = self._bytes_consumed
        logger.debug("fatal error at stage %s: %s", self._stage.value, exc)
        self._error = exc
        self._stage = Stage.FINISHED
        self._header_buffer.clear()
        self._entry_buffer.clear()

    def _read_header(self) -> bool:
        if len(self._header_buffer) < 2 * BLOCK_SIZE:
            logger.debug("waiting for more header bytes (%d buffered)", len(self._header_buffer))
            return False

        try:
            header, consumed = decode_header(self._header_buffer)
        except IncompleteHeader:
            logger.debug("incomplete header, waiting for more bytes")
            return False
        except EndOfArchive:
            logger.debug(
                "finished %s digest with %d bytes left over",
                self._version.value,
                len(self._header_buffer) - 2 * BLOCK_SIZE,
            )
            self._stage = Stage.FINISHED
            self._header_buffer.clear()
            return False

        logger.debug("got header for %r of size %d bytes", header.name, header.size)
        self._entry_name = clean_name(header.name)
        for element in self._selector.encode(header):
            self._entry_hash.update(element)

        self._entry_remaining = header.size
        self._pad = block_padding(header.size)
        self._entry_buffer = self._header_buffer[consumed:]
        self._header_buffer = bytearray()
        self._stage = Stage.READ_ENTRY
        return True

    def _read_entry(self) -> bool:
        if self._entry_remaining:
            chunk = self._entry_buffer[:self._entry_remaining]
            if chunk:
                self._entry_hash.update(chunk)
                del self._entry_buffer[:len(chunk)]
                self._entry_remaining -= len(chunk)
            if self._entry_remaining:
                logger.debug("%d entry bytes remain, waiting for more", self._entry_remaining)
                return False

        self._stage = Stage.SKIP_PADDING
        return True

    def _skip_padding(self) -> bool:
        skipped = min(self._pad, len(self._entry_buffer))
        del self._entry_buffer[:skipped]
        self._pad -= skipped
        if self._pad:
            logger.debug("%d padding bytes remain, waiting for more", self._pad)
            return False

        self._entries.append(
            EntryResult(
                name=self._entry_name,
                digest=self._entry_hash.hexdigest(),
                position=self._entry_counter,
            )
        )
        self._entry_hash.reset()
        self._entry_counter += 1
        self._entry_name = ""

        self._header_buffer = self._entry_buffer
        self._entry_buffer = bytearray()
        self._stage = Stage.READ_HEADER
        return True

    def close(self) -> None:
        """Declare the end of input.

        Raises:
            TruncatedArchive: Input ended before the terminator marker.
            TarsumError: The session had already failed.
        """
        if self._error is not None:
            raise self._error
        if self._stage is Stage.FINISHED:
            return
        exc = TruncatedArchive("archive ended before the end-of-archive marker")
        self._fail(exc)
        raise exc

    def __enter__(self) -> "Digest":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()

    # ------------------------------------------------------------------
    # Aggregate
    # ------------------------------------------------------------------

    def label(self) -> str:
        """Self-describing label, e.g. ``tarsum.v1+sha256``."""
        return f"{self._version.value}+{HASH_NAME}"

    def _check_finished(self) -> None:
        if self._error is not None:
            raise self._error
        if self._stage is not Stage.FINISHED:
            raise DigestNotFinished(
                "archive digest requested before the end-of-archive marker",
                stage=self._stage.value,
                bytes_consumed=self._bytes_consumed,
            )

    def sum(self, extra: bytes | None = None) -> bytes:
        """Aggregate digest of all entries, optionally seeded with ``extra``.

        Raises:
            DigestNotFinished: The terminator has not been seen yet.
            TarsumError: The session failed; its error is raised again.
        """
        self._check_finished()
        hasher = hashlib.sha256()
        if extra:
            hasher.update(extra)
        for entry in sort_by_sums(self._entries):
            hasher.update(entry.digest.encode("ascii"))
        return hasher.digest()

    def hexdigest(self, extra: bytes | None = None) -> str:
        return self.sum(extra).hex()

    def sum_string(self, extra: bytes | None = None) -> str:
        """``<label>:<hex digest>``"""
        return f"{self.label()}:{self.hexdigest(extra)}"

    # ------------------------------------------------------------------
    # Checkpointing
    # ------------------------------------------------------------------

    def checkpoint(self) -> bytes:
        """Serialize the full session state.

        Raises:
            TarsumError: The session failed; its error is raised again.
        """
        from .state import encode_state

        if self._error is not None:
            raise self._error
        return encode_state(self)

    def restore(self, blob: bytes) -> None:
        """Replace this session's state with a checkpoint.

        Raises:
            CorruptState: The blob is invalid or was taken under another
                version. This session is left untouched.
        """
        from .state import decode_state

        snapshot = decode_state(blob, self._version)
        self._apply(snapshot)

    def _apply(self, snapshot: "DigestSnapshot") -> None:
        self.reset()
        self._bytes_consumed = snapshot.bytes_consumed
        self._entry_counter = snapshot.entry_counter
        self._entries = EntryResults(snapshot.entries)
        if snapshot.finished:
            self._stage = Stage.FINISHED
            return
        self._stage = Stage(snapshot.stage)
        self._entry_name = snapshot.entry_name
        self._pad = snapshot.pad
        self._entry_remaining = snapshot.entry_remaining
        self._header_buffer = bytearray(snapshot.header_buffer)
        self._entry_buffer = bytearray(snapshot.entry_buffer)
        self._entry_hash = snapshot.entry_hash


def digest_stream(
    stream: BinaryIO,
    version: object = Version.V1,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> Digest:
    """Digest a whole binary stream and close the session.

    Raises:
        MalformedArchive: The stream is not a valid tar archive.
        TruncatedArchive: The stream ended before the terminator marker.
    """
    digest = Digest(version)
    while True:
        chunk = stream.read(chunk_size)
        if not chunk:
            break
        digest.write(chunk)
    digest.close()
    return digest


def digest_bytes(data: bytes, version: object = Version.V1) -> Digest:
    digest = Digest(version)
    digest.write(data)
    digest.close()
    return digest


__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "Digest",
    "HASH_NAME",
    "Stage",
    "digest_bytes",
    "digest_stream",
]
