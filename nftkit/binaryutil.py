"""Fixed-width integer and string encoding helpers.

Every encoder returns a freshly allocated ``bytes`` object.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field

__all__ = [
    "ByteOrder",
    "NATIVE_ENDIAN",
    "BIG_ENDIAN",
    "put_int32",
    "int32",
    "put_string",
    "string",
]


@dataclass(frozen=True)
class ByteOrder:
    """Encodes and decodes unsigned integers in one byte order.

    ``prefix`` is a :mod:`struct` byte-order character: ``"="`` for the
    machine's native order, ``">"`` for big endian.
    """

    prefix: str
    _u16: struct.Struct = field(init=False, repr=False, compare=False)
    _u32: struct.Struct = field(init=False, repr=False, compare=False)
    _u64: struct.Struct = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_u16", struct.Struct(self.prefix + "H"))
        object.__setattr__(self, "_u32", struct.Struct(self.prefix + "I"))
        object.__setattr__(self, "_u64", struct.Struct(self.prefix + "Q"))

    def put_uint16(self, v: int) -> bytes:
        """Encode ``v`` as a 2-byte unsigned integer."""
        return self._u16.pack(v)

    def put_uint32(self, v: int) -> bytes:
        """Encode ``v`` as a 4-byte unsigned integer."""
        return self._u32.pack(v)

    def put_uint64(self, v: int) -> bytes:
        """Encode ``v`` as an 8-byte unsigned integer."""
        return self._u64.pack(v)

    def uint16(self, b: bytes) -> int:
        """Decode a 2-byte unsigned integer from the start of ``b``."""
        return self._u16.unpack_from(b)[0]

    def uint32(self, b: bytes) -> int:
        """Decode a 4-byte unsigned integer from the start of ``b``."""
        return self._u32.unpack_from(b)[0]

    def uint64(self, b: bytes) -> int:
        """Decode an 8-byte unsigned integer from the start of ``b``."""
        return self._u64.unpack_from(b)[0]


NATIVE_ENDIAN = ByteOrder("=")
BIG_ENDIAN = ByteOrder(">")

_INT32 = struct.Struct("=i")


def put_int32(v: int) -> bytes:
    """Encode ``v`` as a signed 32-bit integer in native byte order."""
    return _INT32.pack(v)


def int32(b: bytes) -> int:
    """Decode a signed 32-bit native-order integer from the start of ``b``."""
    return _INT32.unpack_from(b)[0]


def put_string(s: str) -> bytes:
    """Encode ``s`` as UTF-8 bytes, without a terminator."""
    return s.encode("utf-8")


def string(b: bytes) -> str:
    """Decode ``b`` as a string, dropping any trailing NUL bytes."""
    return bytes(b).rstrip(b"\x00").decode("utf-8")