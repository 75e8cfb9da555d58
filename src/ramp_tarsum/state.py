"""Checkpoint encoding for digest sessions.

A checkpoint is a UTF-8 JSON document validated by the ``DigestState``
pydantic model. It is self-versioned (``"format": 1``) and carries binary
fields (buffered header bytes, SHA-256 running state) as base64.

Decoding builds a complete ``DigestSnapshot`` before anything is applied to a
session, so a failed restore never leaves a session half-updated.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .entries import EntryResult
from .exceptions import CorruptState
from .sha256 import ResumableSHA256
from .tarheader import BLOCK_SIZE
from .versioning import Version

if TYPE_CHECKING:
    from .digest import Digest

logger = logging.getLogger(__name__)

STATE_FORMAT = 1
ALGORITHM = "sha256"


class EntryRecord(BaseModel):
    """Serialized ``EntryResult``."""

    model_config = ConfigDict(extra="forbid")

    name: str
    digest: str = Field(..., pattern=r"^[0-9a-f]{64}$")
    position: int = Field(..., ge=0)


class ParserState(BaseModel):
    """Continuation state of the tar parser inside the current entry."""

    model_config = ConfigDict(extra="forbid")

    remaining: int = Field(..., ge=0, description="Entry body bytes not yet read")


class PendingEntryState(BaseModel):
    """Fields only present while the archive is still being read."""

    model_config = ConfigDict(extra="forbid")

    stage: Literal["read_header", "read_entry", "skip_padding"]
    entry_name: str = ""
    pad: int = Field(0, ge=0, lt=BLOCK_SIZE)
    header_buffer: str = Field("", description="base64 of buffered header bytes")
    entry_buffer: str = Field("", description="base64 of buffered body/padding bytes")
    parser: ParserState
    entry_hash: str = Field(..., description="base64 of the entry SHA-256 state")


class DigestState(BaseModel):
    """Complete serialized digest session."""

    model_config = ConfigDict(extra="forbid")

    format: Literal[1] = STATE_FORMAT
    version: str
    algorithm: Literal["sha256"] = ALGORITHM
    finished: bool
    bytes_consumed: int = Field(..., ge=0)
    entry_counter: int = Field(..., ge=0)
    pending: Optional[PendingEntryState] = None
    entries: List[EntryRecord] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_consistency(self) -> "DigestState":
        if self.finished and self.pending is not None:
            raise ValueError("finished state must not carry pending entry fields")
        if not self.finished and self.pending is None:
            raise ValueError("unfinished state requires pending entry fields")
        if len(self.entries) != self.entry_counter:
            raise ValueError(
                f"entry_counter {self.entry_counter} does not match "
                f"{len(self.entries)} entries"
            )
        positions = [entry.position for entry in self.entries]
        if positions != list(range(len(positions))):
            raise ValueError("entry positions must be 0..n-1 in archive order")
        return self


@dataclass(frozen=True)
class DigestSnapshot:
    """Decoded, validated checkpoint ready to be applied to a session."""

    version: Version
    finished: bool
    bytes_consumed: int
    entry_counter: int
    entries: tuple[EntryResult, ...]
    stage: str | None = None
    entry_name: str = ""
    pad: int = 0
    entry_remaining: int = 0
    header_buffer: bytes = b""
    entry_buffer: bytes = b""
    entry_hash: ResumableSHA256 | None = None


def _b64(data: bytes) -> str:
    return base64.b64encode(bytes(data)).decode("ascii")


def _unb64(text: str, field_name: str) -> bytes:
    try:
        return base64.b64decode(text.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise CorruptState(f"checkpoint field {field_name!r} is not valid base64") from exc


def build_state(digest: "Digest") -> DigestState:
    """Capture a session as a ``DigestState`` model."""
    pending = None
    if not digest.finished:
        pending = PendingEntryState(
            stage=digest.stage.value,
            entry_name=digest._entry_name,
            pad=digest._pad,
            header_buffer=_b64(digest._header_buffer),
            entry_buffer=_b64(digest._entry_buffer),
            parser=ParserState(remaining=digest._entry_remaining),
            entry_hash=_b64(digest._entry_hash.state()),
        )

    return DigestState(
        version=digest.version.value,
        finished=digest.finished,
        bytes_consumed=digest.bytes_consumed,
        entry_counter=digest._entry_counter,
        pending=pending,
        entries=[
            EntryRecord(name=entry.name, digest=entry.digest, position=entry.position)
            for entry in digest.entries
        ],
    )


def encode_state(digest: "Digest") -> bytes:
    """Serialize a session to checkpoint bytes."""
    state = build_state(digest)
    return json.dumps(state.model_dump(), sort_keys=True, separators=(",", ":")).encode("utf-8")


def decode_state(blob: bytes, expected_version: Version) -> DigestSnapshot:
    """Parse and validate checkpoint bytes.

    Args:
        blob: Bytes produced by :func:`encode_state`
        expected_version: Version of the session being restored; a
            checkpoint taken under another version is rejected

    Raises:
        CorruptState: On malformed input, unknown format, version mismatch
            or inconsistent fields.
    """
    try:
        payload = json.loads(bytes(blob).decode("utf-8"))
    except (UnicodeDecodeError, ValueError, TypeError) as exc:
        raise CorruptState(f"checkpoint is not valid JSON: {exc}") from exc

    if not isinstance(payload, dict):
        raise CorruptState("checkpoint must be a JSON object")
    if payload.get("format") != STATE_FORMAT:
        raise CorruptState(f"unsupported checkpoint format: {payload.get('format')!r}")

    try:
        state = DigestState.model_validate(payload)
    except ValidationError as exc:
        raise CorruptState(f"invalid checkpoint: {exc}") from exc

    if state.version != expected_version.value:
        raise CorruptState(
            f"checkpoint was taken with {state.version!r}, "
            f"session uses {expected_version.value!r}"
        )

    entries = tuple(
        EntryResult(name=record.name, digest=record.digest, position=record.position)
        for record in state.entries
    )
    if state.pending is None:
        logger.debug("decoded finished checkpoint with %d entries", len(entries))
        return DigestSnapshot(
            version=expected_version,
            finished=True,
            bytes_consumed=state.bytes_consumed,
            entry_counter=state.entry_counter,
            entries=entries,
        )

    pending = state.pending
    entry_hash = ResumableSHA256()
    entry_hash.restore(_unb64(pending.entry_hash, "entry_hash"))

    return DigestSnapshot(
        version=expected_version,
        finished=False,
        bytes_consumed=state.bytes_consumed,
        entry_counter=state.entry_counter,
        entries=entries,
        stage=pending.stage,
        entry_name=pending.entry_name,
        pad=pending.pad,
        entry_remaining=pending.parser.remaining,
        header_buffer=_unb64(pending.header_buffer, "header_buffer"),
        entry_buffer=_unb64(pending.entry_buffer, "entry_buffer"),
        entry_hash=entry_hash,
    )
