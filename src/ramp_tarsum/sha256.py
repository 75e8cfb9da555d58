"""Pure-Python SHA-256 with exportable internal state.

``hashlib`` does not expose the compression state of a running hash, so a
checkpointed digest could never be resumed with it. This implementation keeps
the eight running state words, the partially filled block and the message
length as plain attributes and can serialize them to a fixed-size blob.

The blob layout is::

    b"sha\\x03" | 8 x uint32 state words | 64-byte block buffer | uint64 length

all big-endian, 108 bytes in total. The block buffer is zero-padded; the
number of valid bytes in it is ``length % 64``.
"""

from __future__ import annotations

import struct

from .exceptions import CorruptState

BLOCK_SIZE = 64
DIGEST_SIZE = 32

_MAGIC = b"sha\x03"
_STATE_SIZE = len(_MAGIC) + 8 * 4 + BLOCK_SIZE + 8

_INITIAL_STATE = (
    0x6A09E667, 0xBB67AE85, 0x3C6EF372, 0xA54FF53A,
    0x510E527F, 0x9B05688C, 0x1F83D9AB, 0x5BE0CD19,
)

_K = (
    0x428A2F98, 0x71374491, 0xB5C0FBCF, 0xE9B5DBA5, 0x3956C25B, 0x59F111F1, 0x923F82A4, 0xAB1C5ED5,
    0xD807AA98, 0x12835B01, 0x243185BE, 0x550C7DC3, 0x72BE5D74, 0x80DEB1FE, 0x9BDC06A7, 0xC19BF174,
    0xE49B69C1, 0xEFBE4786, 0x0FC19DC6, 0x240CA1CC, 0x2DE92C6F, 0x4A7484AA, 0x5CB0A9DC, 0x76F988DA,
    0x983E5152, 0xA831C66D, 0xB00327C8, 0xBF597FC7, 0xC6E00BF3, 0xD5A79147, 0x06CA6351, 0x14292967,
    0x27B70A85, 0x2E1B2138, 0x4D2C6DFC, 0x53380D13, 0x650A7354, 0x766A0ABB, 0x81C2C92E, 0x92722C85,
    0xA2BFE8A1, 0xA81A664B, 0xC24B8B70, 0xC76C51A3, 0xD192E819, 0xD6990624, 0xF40E3585, 0x106AA070,
    0x19A4C116, 0x1E376C08, 0x2748774C, 0x34B0BCB5, 0x391C0CB3, 0x4ED8AA4A, 0x5B9CCA4F, 0x682E6FF3,
    0x748F82EE, 0x78A5636F, 0x84C87814, 0x8CC70208, 0x90BEFFFA, 0xA4506CEB, 0xBEF9A3F7, 0xC67178F2,
)

_MASK = 0xFFFFFFFF
_WORDS = struct.Struct(">16I")


def _compress(state: list[int], data: bytes, start: int = 0, stop: int | None = None) -> None:
    """Compress the 64-byte blocks of ``data[start:stop]`` into ``state``.

    The working variables stay in locals for the whole run of blocks; this
    loop is where nearly all digest time is spent.
    """
    if stop is None:
        stop = len(data)
    k = _K
    mask = _MASK
    unpack_from = _WORDS.unpack_from
    h0, h1, h2, h3, h4, h5, h6, h7 = state

    for offset in range(start, stop, BLOCK_SIZE):
        w = list(unpack_from(data, offset))
        append = w.append
        for i in range(16, 64):
            x = w[i - 15]
            y = w[i - 2]
            append(
                (
                    w[i - 16]
                    + w[i - 7]
                    + (((x >> 7) | (x << 25)) ^ ((x >> 18) | (x << 14)) ^ (x >> 3))
                    + (((y >> 17) | (y << 15)) ^ ((y >> 19) | (y << 13)) ^ (y >> 10))
                )
                & mask
            )

        a, b, c, d, e, f, g, h = h0, h1, h2, h3, h4, h5, h6, h7
        for ki, wi in zip(k, w):
            # Bits above 32 from the rotations vanish in the masked sums below.
            t1 = (
                h
                + (((e >> 6) | (e << 26)) ^ ((e >> 11) | (e << 21)) ^ ((e >> 25) | (e << 7)))
                + ((e & f) ^ (~e & g))
                + ki
                + wi
            )
            t2 = (((a >> 2) | (a << 30)) ^ ((a >> 13) | (a << 19)) ^ ((a >> 22) | (a << 10))) + (
                (a & b) | (c & (a | b))
            )
            h = g
            g = f
            f = e
            e = (d + t1) & mask
            d = c
            c = b
            b = a
            a = (t1 + t2) & mask

        h0 = (h0 + a) & mask
        h1 = (h1 + b) & mask
        h2 = (h2 + c) & mask
        h3 = (h3 + d) & mask
        h4 = (h4 + e) & mask
        h5 = (h5 + f) & mask
        h6 = (h6 + g) & mask
        h7 = (h7 + h) & mask

    state[:] = [h0, h1, h2, h3, h4, h5, h6, h7]


class ResumableSHA256:
    """Incremental SHA-256 whose running state can be saved and restored.

    The writer surface mirrors ``hashlib`` (``update``/``digest``/
    ``hexdigest``/``copy``) plus ``write`` and ``sum(extra)`` for use as a
    byte sink, and ``state``/``restore`` for checkpointing.

    Examples:
        >>> import hashlib
        >>> h = ResumableSHA256()
        >>> h.update(b"hello ")
        >>> saved = h.state()
        >>> resumed = ResumableSHA256()
        >>> resumed.restore(saved)
        >>> resumed.update(b"world")
        >>> resumed.hexdigest() == hashlib.sha256(b"hello world").hexdigest()
        True
    """

    name = "sha256"
    digest_size = DIGEST_SIZE
    block_size = BLOCK_SIZE

    def __init__(self, data: bytes = b""):
        self.reset()
        if data:
            self.update(data)

    @property
    def size(self) -> int:
        return DIGEST_SIZE

    def reset(self) -> None:
        self._h = list(_INITIAL_STATE)
        self._buffer = b""
        self._length = 0

    def update(self, data: bytes) -> None:
        if not data:
            return
        data = bytes(data)
        self._length += len(data)

        if self._buffer:
            need = BLOCK_SIZE - len(self._buffer)
            if len(data) < need:
                self._buffer += data
                return
            _compress(self._h, self._buffer + data[:need])
            data = data[need:]
            self._buffer = b""

        full = len(data) - len(data) % BLOCK_SIZE
        _compress(self._h, data, 0, full)
        self._buffer = data[full:]

    def write(self, data: bytes) -> int:
        """Writer-style update; always consumes everything."""
        self.update(data)
        return len(data)

    def sum(self, extra: bytes | None = None) -> bytes:
        """Digest of the data written so far plus ``extra``.

        Does not change the running state, so writing may continue.
        """
        h = list(self._h)
        tail = self._buffer + (bytes(extra) if extra else b"")
        bit_length = ((self._length + len(tail) - len(self._buffer)) * 8) & 0xFFFFFFFFFFFFFFFF

        tail += b"\x80"
        tail += b"\x00" * ((56 - len(tail)) % BLOCK_SIZE)
        tail += struct.pack(">Q", bit_length)
        _compress(h, tail)
        return struct.pack(">8I", *h)

    def digest(self) -> bytes:
        return self.sum()

    def hexdigest(self) -> str:
        return self.sum().hex()

    def copy(self) -> "ResumableSHA256":
        other = ResumableSHA256()
        other._h = list(self._h)
        other._buffer = self._buffer
        other._length = self._length
        return other

    def state(self) -> bytes:
        """Export the running state as a 108-byte blob."""
        return b"".join(
            (
                _MAGIC,
                struct.pack(">8I", *self._h),
                self._buffer.ljust(BLOCK_SIZE, b"\x00"),
                struct.pack(">Q", self._length),
            )
        )

    def restore(self, blob: bytes) -> None:
        """Import a blob produced by :meth:`state`.

        Raises:
            CorruptState: If the blob is not a valid SHA-256 state. The
                instance is left unchanged in that case.
        """
        blob = bytes(blob)
        if len(blob) != _STATE_SIZE:
            raise CorruptState(
                f"SHA-256 state must be {_STATE_SIZE} bytes; got {len(blob)}"
            )
        if not blob.startswith(_MAGIC):
            raise CorruptState("SHA-256 state has an invalid identifier")

        offset = len(_MAGIC)
        words = struct.unpack(">8I", blob[offset:offset + 32])
        offset += 32
        block = blob[offset:offset + BLOCK_SIZE]
        offset += BLOCK_SIZE
        (length,) = struct.unpack(">Q", blob[offset:])

        buffered = length % BLOCK_SIZE
        if any(block[buffered:]):
            raise CorruptState("SHA-256 state has data past its buffered length")

        self._h = list(words)
        self._buffer = block[:buffered]
        self._length = length


def new(data: bytes = b"") -> ResumableSHA256:
    """Return a new resumable SHA-256 hasher, like ``hashlib.sha256``."""
    return ResumableSHA256(data)
