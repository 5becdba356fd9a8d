import struct

import pytest

from nftkit.binaryutil import (
    BIG_ENDIAN,
    NATIVE_ENDIAN,
    int32,
    put_int32,
    put_string,
    string,
)


@pytest.mark.parametrize(
    "put, get, value, fmt",
    [
        (NATIVE_ENDIAN.put_uint16, NATIVE_ENDIAN.uint16, 0x1234, "=H"),
        (NATIVE_ENDIAN.put_uint32, NATIVE_ENDIAN.uint32, 0x12345678, "=I"),
        (NATIVE_ENDIAN.put_uint64, NATIVE_ENDIAN.uint64, 0x1234567801020304, "=Q"),
    ],
)
def test_native_byte_order(put, get, value, fmt):
    encoded = put(value)
    assert encoded == struct.pack(fmt, value)
    assert get(encoded) == value


@pytest.mark.parametrize(
    "put, get, value, expected",
    [
        (BIG_ENDIAN.put_uint16, BIG_ENDIAN.uint16, 0x1234, bytes([0x12, 0x34])),
        (
            BIG_ENDIAN.put_uint32,
            BIG_ENDIAN.uint32,
            0x12345678,
            bytes([0x12, 0x34, 0x56, 0x78]),
        ),
        (
            BIG_ENDIAN.put_uint64,
            BIG_ENDIAN.uint64,
            0x1234567801020304,
            bytes([0x12, 0x34, 0x56, 0x78, 0x01, 0x02, 0x03, 0x04]),
        ),
    ],
)
def test_big_endian(put, get, value, expected):
    encoded = put(value)
    assert encoded == expected
    assert get(encoded) == value


def test_int32_round_trip():
    encoded = put_int32(0x12345678)
    assert encoded == struct.pack("=i", 0x12345678)
    assert int32(encoded) == 0x12345678


def test_int32_negative():
    assert int32(put_int32(-2)) == -2


def test_string_round_trip():
    encoded = put_string("test")
    assert encoded == bytes([0x74, 0x65, 0x73, 0x74])
    assert string(encoded) == "test"


def test_string_trims_trailing_nuls():
    assert string(b"eth0\x00\x00\x00") == "eth0"


def test_decode_reads_only_prefix():
    assert BIG_ENDIAN.uint16(b"\x00\x01\xff\xff") == 1


def test_out_of_range_raises():
    with pytest.raises(struct.error):
        BIG_ENDIAN.put_uint16(0x10000)