"""Reading and writing naturally aligned values in native byte order.

The alignment and padding follow the C layout of the host architecture, which
is what the kernel expects for xtables match and target payloads.
"""

from __future__ import annotations

import struct

from . import binaryutil

__all__ = [
    "AlignedBuffEOF",
    "AlignedBuff",
    "UINT16_ALIGN_MASK",
    "UINT32_ALIGN_MASK",
    "UINT64_ALIGN_MASK",
    "INT32_ALIGN_MASK",
    "UINT_SIZE",
]


def _align_mask(code: str) -> int:
    # A leading byte forces padding equal to the alignment minus one.
    return struct.calcsize("@B" + code) - struct.calcsize("@" + code) - 1


UINT16_ALIGN_MASK = _align_mask("H")
UINT32_ALIGN_MASK = _align_mask("I")
UINT64_ALIGN_MASK = _align_mask("Q")
INT32_ALIGN_MASK = _align_mask("i")
# Size of the C "unsigned int" type.
UINT_SIZE = struct.calcsize("@I")

_NATIVE = binaryutil.NATIVE_ENDIAN
_BIG = binaryutil.BIG_ENDIAN


class AlignedBuffEOF(EOFError):
    """Raised when reading beyond the available payload."""

    def __init__(self, message: str = "not enough data left") -> None:
        super().__init__(message)


class AlignedBuff:
    """A buffer of native-endian, naturally aligned values.

    Create it with data to read values from it, or empty to write values to
    it. ``bytes(buff)`` gives the bytes written so far without final padding.
    """

    def __init__(self, data: bytes = b"") -> None:
        self._buf = bytearray(data)
        self._pos = 0

    def __bytes__(self) -> bytes:
        return bytes(self._buf)

    def data(self) -> bytes:
        """Return the written payload, padded to the uint64 alignment."""
        self._align_write(UINT64_ALIGN_MASK)
        return bytes(self._buf)

    # Reading

    def _align_checked_read(self, mask: int) -> None:
        self._pos = (self._pos + mask) & ~mask
        if self._pos > len(self._buf) - (mask + 1):
            raise AlignedBuffEOF()

    def _take(self, size: int) -> bytes:
        chunk = bytes(self._buf[self._pos:self._pos + size])
        self._pos += size
        return chunk

    def bytes_aligned32(self, size: int) -> bytes:
        """Read ``size`` raw bytes starting at uint32 alignment."""
        self._align_checked_read(UINT32_ALIGN_MASK)
        if self._pos > len(self._buf) - size:
            raise AlignedBuffEOF()
        return self._take(size)

    def uint8(self) -> int:
        """Read an unsigned byte."""
        if self._pos >= len(self._buf):
            raise AlignedBuffEOF()
        value = self._buf[self._pos]
        self._pos += 1
        return value

    def uint16(self) -> int:
        """Read a native-endian uint16."""
        self._align_checked_read(UINT16_ALIGN_MASK)
        return _NATIVE.uint16(self._take(2))

    def uint16_be(self) -> int:
        """Read a big-endian uint16 at native uint16 alignment."""
        self._align_checked_read(UINT16_ALIGN_MASK)
        return _BIG.uint16(self._take(2))

    def uint32(self) -> int:
        """Read a native-endian uint32."""
        self._align_checked_read(UINT32_ALIGN_MASK)
        return _NATIVE.uint32(self._take(4))

    def uint64(self) -> int:
        """Read a native-endian uint64."""
        self._align_checked_read(UINT64_ALIGN_MASK)
        return _NATIVE.uint64(self._take(8))

    def int32(self) -> int:
        """Read a native-endian int32."""
        self._align_checked_read(INT32_ALIGN_MASK)
        return binaryutil.int32(self._take(4))

    def string(self) -> str:
        """Read a NUL-terminated string; the terminator is not consumed."""
        end = self._buf.find(b"\x00", self._pos)
        if end < 0:
            raise AlignedBuffEOF("string is not NUL-terminated")
        return binaryutil.string(self._take(end - self._pos))

    def string_with_length(self, length: int) -> str:
        """Read a string of exactly ``length`` bytes."""
        if self._pos + length > len(self._buf):
            raise AlignedBuffEOF()
        return binaryutil.string(self._take(length))

    def uint(self) -> int:
        """Read a C ``unsigned int``."""
        readers = {2: self.uint16, 4: self.uint32, 8: self.uint64}
        try:
            reader = readers[UINT_SIZE]
        except KeyError:
            raise RuntimeError(f"unsupported uint size {UINT_SIZE}") from None
        return reader()

    # Writing

    def _align_write(self, mask: int) -> None:
        pos = (self._pos + mask) & ~mask
        if pos != self._pos:
            self._buf.extend(bytes(pos - self._pos))
            self._pos = pos

    def _append(self, chunk: bytes) -> None:
        self._buf.extend(chunk)
        self._pos += len(chunk)

    def put_bytes_aligned32(self, data: bytes, size: int) -> None:
        """Write ``data`` at uint32 alignment, zero-padded to ``size``."""
        self._align_write(UINT32_ALIGN_MASK)
        self._append(bytes(data))
        if len(data) < size:
            self._append(bytes(size - len(data)))

    def put_uint8(self, v: int) -> None:
        """Write an unsigned byte."""
        self._append(bytes([v]))

    def put_uint16(self, v: int) -> None:
        """Write a native-endian uint16."""
        self._align_write(UINT16_ALIGN_MASK)
        self._append(_NATIVE.put_uint16(v))

    def put_uint16_be(self, v: int) -> None:
        """Write a big-endian uint16 at native uint16 alignment."""
        self._align_write(UINT16_ALIGN_MASK)
        self._append(_BIG.put_uint16(v))

    def put_uint32(self, v: int) -> None:
        """Write a native-endian uint32."""
        self._align_write(UINT32_ALIGN_MASK)
        self._append(_NATIVE.put_uint32(v))

    def put_uint64(self, v: int) -> None:
        """Write a native-endian uint64."""
        self._align_write(UINT64_ALIGN_MASK)
        self._append(_NATIVE.put_uint64(v))

    def put_int32(self, v: int) -> None:
        """Write a native-endian int32."""
        self._align_write(INT32_ALIGN_MASK)
        self._append(binaryutil.put_int32(v))

    def put_string(self, v: str) -> None:
        """Write the bytes of ``v`` without alignment or terminator."""
        self._append(binaryutil.put_string(v))

    def put_uint(self, v: int) -> None:
        """Write a C ``unsigned int``."""
        writers = {2: self.put_uint16, 4: self.put_uint32, 8: self.put_uint64}
        try:
            writer = writers[UINT_SIZE]
        except KeyError:
            raise RuntimeError(f"unsupported uint size {UINT_SIZE}") from None
        writer(v)