"""SHA-1 message digests of byte strings and files."""

from __future__ import annotations

import os
import struct
from typing import Union

_Bytes = Union[bytes, bytearray, memoryview]

DIGEST_SIZE = 20
BLOCK_SIZE = 64
_READ_CHUNK = 256
_MASK = 0xFFFFFFFF

_INITIAL_STATE = (0x67452301, 0xEFCDAB89, 0x98BADCFE, 0x10325476, 0xC3D2E1F0)


def _rotl(x: int, n: int) -> int:
    return ((x << n) | (x >> (32 - n))) & _MASK


def _compress(state: tuple, block: bytes) -> tuple:
    """Process one 64-byte block and return the new state."""
    w = list(struct.unpack(">16I", block))
    for t in range(16, 80):
        w.append(_rotl(w[t - 3] ^ w[t - 8] ^ w[t - 14] ^ w[t - 16], 1))

    a, b, c, d, e = state
    for t, word in enumerate(w):
        if t < 20:
            f = d ^ (b & (c ^ d))
            k = 0x5A827999
        elif t < 40:
            f = b ^ c ^ d
            k = 0x6ED9EBA1
        elif t < 60:
            f = (b & c) | (d & (b | c))
            k = 0x8F1BBCDC
        else:
            f = b ^ c ^ d
            k = 0xCA62C1D6
        temp = (_rotl(a, 5) + f + e + k + word) & _MASK
        a, b, c, d, e = temp, a, _rotl(b, 30), c, d

    return tuple((s + v) & _MASK for s, v in zip(state, (a, b, c, d, e)))


class Sha1:
    """Incremental SHA-1 hasher."""

    digest_size = DIGEST_SIZE
    block_size = BLOCK_SIZE

    def __init__(self) -> None:
        self._state = _INITIAL_STATE
        self._buffer = b""
        self._length = 0

    def update(self, data: _Bytes) -> "Sha1":
        """Feed more data into the digest."""
        chunk = bytes(memoryview(data))
        if not chunk:
            return self
        self._length += len(chunk)
        buffer = self._buffer + chunk
        whole = len(buffer) - len(buffer) % BLOCK_SIZE
        state = self._state
        for offset in range(0, whole, BLOCK_SIZE):
            state = _compress(state, buffer[offset:offset + BLOCK_SIZE])
        self._state = state
        self._buffer = buffer[whole:]
        return self

    def digest(self) -> bytes:
        """Return the 20-byte digest of the data fed so far."""
        bit_length = (self._length * 8) & 0xFFFFFFFFFFFFFFFF
        tail = self._buffer + b"\x80"
        tail += b"\0" * ((56 - len(tail)) % BLOCK_SIZE)
        tail += struct.pack(">Q", bit_length)
        state = self._state
        for offset in range(0, len(tail), BLOCK_SIZE):
            state = _compress(state, tail[offset:offset + BLOCK_SIZE])
        return struct.pack(">5I", *state)

    def hexdigest(self) -> str:
        """Return the digest as lower-case hexadecimal."""
        return self.digest().hex()

    def copy(self) -> "Sha1":
        """Return an independent hasher with the same state."""
        clone = Sha1()
        clone._state = self._state
        clone._buffer = self._buffer
        clone._length = self._length
        return clone


def sha1(data: _Bytes) -> bytes:
    """Return the SHA-1 digest of ``data``."""
    return Sha1().update(data).digest()


def file_sha1(path: Union[str, os.PathLike]) -> bytes:
    """Return the SHA-1 digest of a file's contents.

    A file that cannot be opened yields twenty zero bytes.
    """
    hasher = Sha1()
    try:
        with open(path, "rb") as handle:
            while chunk := handle.read(_READ_CHUNK):
                hasher.update(chunk)
    except OSError:
        return bytes(DIGEST_SIZE)
    return hasher.digest()