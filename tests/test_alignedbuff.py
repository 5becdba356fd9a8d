import pytest

from nftkit.alignedbuff import (
    UINT32_ALIGN_MASK,
    UINT64_ALIGN_MASK,
    AlignedBuff,
    AlignedBuffEOF,
)


def test_alignment_masks_drive_padding():
    assert UINT32_ALIGN_MASK > 0
    assert UINT64_ALIGN_MASK >= UINT32_ALIGN_MASK

    w = AlignedBuff()
    w.put_uint8(0x42)
    w.put_uint32(0x12345678)
    raw = bytes(w)
    assert len(raw) == (UINT32_ALIGN_MASK + 1) + 4
    assert raw[0] == 0x42
    assert set(raw[1 : UINT32_ALIGN_MASK + 1]) == {0}


def test_uint8_then_eof():
    b = AlignedBuff(bytes([0x42]))
    assert b.uint8() == 0x42
    with pytest.raises(AlignedBuffEOF):
        b.uint8()


def test_uint16():
    w = AlignedBuff()
    w.put_uint8(0x42)
    w.put_uint16(0x1234)
    w.put_uint16(0x5678)

    r = AlignedBuff(bytes(w))
    assert r.uint8() == 0x42
    assert r.uint16() == 0x1234
    assert r.uint16() == 0x5678
    with pytest.raises(AlignedBuffEOF):
        r.uint16()


def test_uint32():
    w = AlignedBuff()
    w.put_uint8(0x42)
    w.put_uint32(0x12345678)
    w.put_uint32(0x01CECAFE)
    raw = bytes(w)

    expected_len = 2 * (UINT32_ALIGN_MASK + 1) + (UINT64_ALIGN_MASK + 1)
    assert len(w.data()) == expected_len

    r = AlignedBuff(raw)
    assert r.uint8() == 0x42
    assert r.uint32() == 0x12345678
    assert r.uint32() == 0x01CECAFE
    with pytest.raises(AlignedBuffEOF):
        r.uint32()


def test_uint64():
    w = AlignedBuff()
    w.put_uint8(0x42)
    w.put_uint64(0x01CECAFE0BADF00D)
    w.put_uint64(0x01CECAFEC001BEEF)

    r = AlignedBuff(bytes(w))
    assert r.uint8() == 0x42
    assert r.uint64() == 0x01CECAFE0BADF00D
    assert r.uint64() == 0x01CECAFEC001BEEF
    with pytest.raises(AlignedBuffEOF):
        r.uint64()


def test_uint_between_sentinels():
    expected = 0xFFFFFFFE
    w = AlignedBuff()
    w.put_uint8(0x55)
    w.put_uint(expected)
    w.put_uint8(0xAA)

    r = AlignedBuff(bytes(w))
    assert r.uint8() == 0x55
    assert r.uint() == expected
    assert r.uint8() == 0xAA


def test_int32():
    w = AlignedBuff()
    w.put_uint8(0x42)
    w.put_int32(0x12345678)
    w.put_int32(0x01CECAFE)
    raw = bytes(w)

    expected_len = 2 * (UINT32_ALIGN_MASK + 1) + (UINT64_ALIGN_MASK + 1)
    assert len(w.data()) == expected_len

    r = AlignedBuff(raw)
    assert r.uint8() == 0x42
    assert r.int32() == 0x12345678
    assert r.int32() == 0x01CECAFE
    with pytest.raises(AlignedBuffEOF):
        r.int32()


def test_int32_negative():
    w = AlignedBuff()
    w.put_int32(-7)
    assert AlignedBuff(bytes(w)).int32() == -7


def test_null_terminated_string():
    w = AlignedBuff()
    w.put_uint8(0x42)
    w.put_string("test" + "\x00")

    r = AlignedBuff(bytes(w))
    assert r.uint8() == 0x42
    assert r.string() == "test"


def test_string_without_terminator_raises():
    r = AlignedBuff(b"abc")
    with pytest.raises(AlignedBuffEOF):
        r.string()


def test_string_with_length():
    w = AlignedBuff()
    w.put_uint8(0x42)
    w.put_string("test")

    r = AlignedBuff(bytes(w))
    assert r.uint8() == 0x42
    assert r.string_with_length(len("test")) == "test"


def test_string_with_length_beyond_end():
    r = AlignedBuff(b"ab")
    with pytest.raises(AlignedBuffEOF):
        r.string_with_length(3)


def test_uint16_be_layout():
    w = AlignedBuff()
    w.put_uint8(0x42)
    w.put_uint16_be(0x1234)
    assert bytes(w) == b"\x42\x00\x12\x34"

    r = AlignedBuff(bytes(w))
    assert r.uint8() == 0x42
    assert r.uint16_be() == 0x1234


def test_bytes_aligned32_round_trip():
    w = AlignedBuff()
    w.put_uint8(1)
    w.put_bytes_aligned32(b"\x0a\x00\x00\x01", 16)
    raw = bytes(w)
    assert len(raw) == (UINT32_ALIGN_MASK + 1) + 16

    r = AlignedBuff(raw)
    assert r.uint8() == 1
    assert r.bytes_aligned32(16) == b"\x0a\x00\x00\x01" + bytes(12)
    with pytest.raises(AlignedBuffEOF):
        r.bytes_aligned32(4)


def test_data_is_padded_to_uint64_alignment():
    w = AlignedBuff()
    w.put_uint8(9)
    data = w.data()
    assert len(data) == UINT64_ALIGN_MASK + 1
    assert data[0] == 9
    assert set(data[1:]) == {0}