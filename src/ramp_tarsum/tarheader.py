"""Incremental tar header decoding.

The digest engine never owns the whole archive, so headers are decoded from
whatever prefix of the stream has been buffered so far. ``decode_header``
either returns a complete header together with the number of bytes it spans,
or signals that more bytes are needed, that the terminator marker was found,
or that the bytes are not a tar header at all.

Meta entries are resolved here: a PAX extended header (``x``) or a GNU long
name/link (``L``/``K``) is merged into the entry header that follows it, and
the bytes of both are reported as consumed.

Text fields are decoded with ``surrogateescape`` so that non-UTF-8 names
survive a round trip back to their original bytes.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace

from .exceptions import MalformedArchive

BLOCK_SIZE = 512
ZERO_BLOCK = bytes(BLOCK_SIZE)
END_OF_ARCHIVE = bytes(2 * BLOCK_SIZE)

TYPE_REG = "0"
TYPE_CHAR = "3"
TYPE_BLOCK = "4"
TYPE_XHEADER = "x"
TYPE_GNU_LONGNAME = "L"
TYPE_GNU_LONGLINK = "K"

PAX_XATTR_PREFIX = "SCHILY.xattr."

_POSIX_MAGIC = b"ustar\x0000"
_GNU_MAGIC = b"ustar  \x00"


class IncompleteHeader(Exception):
    """The buffered bytes end before the header does."""


class EndOfArchive(Exception):
    """The buffered bytes start with the two-zero-block terminator."""


@dataclass(frozen=True)
class TarHeader:
    """Decoded metadata of one archive entry.

    Absent fields hold their zero value so canonicalization never has to
    distinguish "missing" from "zero".
    """

    name: str = ""
    mode: int = 0
    uid: int = 0
    gid: int = 0
    size: int = 0
    mtime: int = 0
    typeflag: str = TYPE_REG
    linkname: str = ""
    uname: str = ""
    gname: str = ""
    devmajor: int = 0
    devminor: int = 0
    xattrs: dict[str, str] = field(default_factory=dict)


def block_padding(size: int) -> int:
    """Bytes of zero padding that follow an entry body of ``size`` bytes."""
    return -size & (BLOCK_SIZE - 1)


def _decode_text(raw: bytes) -> str:
    return raw.decode("utf-8", "surrogateescape")


def _cstring(raw: bytes) -> str:
    end = raw.find(b"\x00")
    if end != -1:
        raw = raw[:end]
    return _decode_text(raw)


def _numeric(raw: bytes, field_name: str) -> int:
    """Parse an octal or base-256 numeric header field."""
    if raw and raw[0] & 0x80:
        value = int.from_bytes(bytes([raw[0] & 0x7F]) + raw[1:], "big")
        value &= 0xFFFFFFFFFFFFFFFF
        if value >= 1 << 63:
            value -= 1 << 64
        return value

    text = raw.strip(b" \x00")
    end = text.find(b"\x00")
    if end != -1:
        text = text[:end]
    if not text:
        return 0
    try:
        return int(text, 8)
    except ValueError as exc:
        raise MalformedArchive(
            f"invalid numeric header field {field_name!r}: {raw!r}"
        ) from exc


def _verify_checksum(block: bytes) -> None:
    given = _numeric(block[148:156], "chksum")
    unsigned = sum(block[:148]) + 8 * 0x20 + sum(block[156:])
    signed = (
        sum(b - 256 if b > 127 else b for b in block[:148])
        + 8 * 0x20
        + sum(b - 256 if b > 127 else b for b in block[156:])
    )
    if given not in (unsigned, signed):
        raise MalformedArchive("tar header checksum mismatch")


def _parse_block(block: bytes) -> TarHeader:
    _verify_checksum(block)

    typeflag = _decode_text(block[156:157])
    name = _cstring(block[0:100])
    uname = gname = ""
    devmajor = devminor = 0

    magic = block[257:265]
    if magic in (_POSIX_MAGIC, _GNU_MAGIC):
        uname = _cstring(block[265:297])
        gname = _cstring(block[297:329])
        if typeflag in (TYPE_CHAR, TYPE_BLOCK):
            devmajor = _numeric(block[329:337], "devmajor")
            devminor = _numeric(block[337:345], "devminor")
        if magic == _POSIX_MAGIC:
            prefix = _cstring(block[345:500])
            if prefix:
                name = f"{prefix}/{name}"

    size = _numeric(block[124:136], "size")
    if size < 0:
        raise MalformedArchive(f"negative entry size {size} for {name!r}")

    return TarHeader(
        name=name,
        mode=_numeric(block[100:108], "mode"),
        uid=_numeric(block[108:116], "uid"),
        gid=_numeric(block[116:124], "gid"),
        size=size,
        mtime=_numeric(block[136:148], "mtime"),
        typeflag=typeflag,
        linkname=_cstring(block[157:257]),
        uname=uname,
        gname=gname,
        devmajor=devmajor,
        devminor=devminor,
    )


def parse_pax_records(data: bytes) -> dict[str, str]:
    """Parse PAX extended header records (``"%d %s=%s\\n"``)."""
    records: dict[str, str] = {}
    while data:
        space = data.find(b" ")
        if space <= 0:
            raise MalformedArchive("invalid PAX record: missing length")
        try:
            length = int(data[:space])
        except ValueError as exc:
            raise MalformedArchive("invalid PAX record length") from exc
        if length <= space + 1 or length > len(data):
            raise MalformedArchive(f"invalid PAX record length {length}")

        record, data = data[space + 1:length], data[length:]
        if not record.endswith(b"\n") or b"=" not in record:
            raise MalformedArchive("invalid PAX record")
        key, _, value = record[:-1].partition(b"=")
        records[key.decode("utf-8", "surrogateescape")] = _decode_text(value)
    return records


def _pax_int(records: dict[str, str], key: str) -> int:
    value = records[key]
    try:
        return int(value, 10)
    except ValueError as exc:
        raise MalformedArchive(f"invalid PAX {key} value {value!r}") from exc


def _pax_seconds(value: str) -> int:
    seconds = value.partition(".")[0]
    try:
        return int(seconds or "0", 10)
    except ValueError as exc:
        raise MalformedArchive(f"invalid PAX time value {value!r}") from exc


def merge_pax(header: TarHeader, records: dict[str, str]) -> TarHeader:
    """Apply PAX overrides and extended attributes to ``header``."""
    changes: dict[str, object] = {}
    xattrs = dict(header.xattrs)
    for key in records:
        if key == "path":
            changes["name"] = records[key]
        elif key == "linkpath":
            changes["linkname"] = records[key]
        elif key in ("uname", "gname"):
            changes[key] = records[key]
        elif key in ("uid", "gid", "size"):
            changes[key] = _pax_int(records, key)
        elif key == "mtime":
            changes["mtime"] = _pax_seconds(records[key])
        elif key.startswith(PAX_XATTR_PREFIX):
            xattrs[key[len(PAX_XATTR_PREFIX):]] = records[key]

    size = changes.get("size", header.size)
    if isinstance(size, int) and size < 0:
        raise MalformedArchive(f"negative PAX size {size}")
    return replace(header, xattrs=xattrs, **changes)


def _read_block(buf: bytes, offset: int) -> bytes:
    end = offset + BLOCK_SIZE
    if len(buf) < end:
        raise IncompleteHeader()
    return bytes(buf[offset:end])


def _read_meta_data(buf: bytes, offset: int, size: int) -> tuple[bytes, int]:
    """Return the data of a meta entry and the offset after its padding."""
    end = offset + size
    if len(buf) < end + block_padding(size):
        raise IncompleteHeader()
    return bytes(buf[offset:end]), end + block_padding(size)


def decode_header(buf: bytes) -> tuple[TarHeader, int]:
    """Decode the next entry header at the start of ``buf``.

    Returns:
        The header, and the number of bytes of ``buf`` it occupies (meta
        entries and their data included, entry body excluded).

    Raises:
        IncompleteHeader: ``buf`` ends before the header does.
        EndOfArchive: ``buf`` starts with the terminator marker.
        MalformedArchive: The bytes are not a valid tar header.
    """
    offset = 0
    pax: dict[str, str] = {}
    long_name: str | None = None
    long_link: str | None = None
    meta_seen = False

    while True:
        block = _read_block(buf, offset)
        if block == ZERO_BLOCK:
            second = _read_block(buf, offset + BLOCK_SIZE)
            if second != ZERO_BLOCK:
                raise MalformedArchive("zero block followed by a non-zero block")
            if meta_seen:
                raise MalformedArchive("archive ends after an extended header")
            raise EndOfArchive()

        header = _parse_block(block)
        offset += BLOCK_SIZE

        if header.typeflag == TYPE_XHEADER:
            data, offset = _read_meta_data(buf, offset, header.size)
            pax.update(parse_pax_records(data))
            meta_seen = True
            continue
        if header.typeflag == TYPE_GNU_LONGNAME:
            data, offset = _read_meta_data(buf, offset, header.size)
            long_name = _cstring(data)
            meta_seen = True
            continue
        if header.typeflag == TYPE_GNU_LONGLINK:
            data, offset = _read_meta_data(buf, offset, header.size)
            long_link = _cstring(data)
            meta_seen = True
            continue
        break

    if long_name is not None:
        header = replace(header, name=long_name)
    if long_link is not None:
        header = replace(header, linkname=long_link)
    if pax:
        header = merge_pax(header, pax)
    return header, offset


def clean_name(name: str) -> str:
    """Archive-relative entry name used for aggregation.

    Strips one leading ``./`` and any trailing ``/``.
    """
    if name.startswith("./"):
        name = name[2:]
    return name.rstrip("/")
