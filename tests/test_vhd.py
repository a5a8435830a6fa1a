"""Tests for blobdisk.vhd — fixed VHD footer encoding."""

from __future__ import annotations

import struct

import pytest

from blobdisk.vhd import (
    VHD_COOKIE,
    VHD_DISK_TYPE_FIXED,
    VHD_FOOTER_SIZE,
    VhdFooter,
    chs_geometry,
    create_fixed_footer,
    footer_checksum,
)

GIB = 1024**3


class TestChsGeometry:
    def test_ten_gib(self):
        assert chs_geometry(10 * GIB) == (20805, 16, 63)

    def test_capped_for_huge_disks(self):
        assert chs_geometry(4096 * GIB) == (65535, 16, 255)

    def test_small_disk_uses_minimum_heads(self):
        cylinders, heads, sectors = chs_geometry(1024 * 1024)
        assert heads == 4
        assert sectors == 17
        assert cylinders == (2048 // 17) // 4


class TestFooter:
    def test_size_and_cookie(self):
        footer = create_fixed_footer(10 * GIB)
        assert len(footer) == VHD_FOOTER_SIZE
        assert footer[:8] == VHD_COOKIE

    def test_fields_are_big_endian(self):
        footer = create_fixed_footer(10 * GIB)
        assert struct.unpack(">Q", footer[16:24])[0] == 0xFFFFFFFFFFFFFFFF
        assert struct.unpack(">Q", footer[40:48])[0] == 10 * GIB
        assert struct.unpack(">Q", footer[48:56])[0] == 10 * GIB
        assert struct.unpack(">I", footer[60:64])[0] == VHD_DISK_TYPE_FIXED

    def test_checksum_matches(self):
        footer = create_fixed_footer(GIB)
        assert struct.unpack(">I", footer[64:68])[0] == footer_checksum(footer)

    def test_decode(self):
        original = VhdFooter(size_bytes=5 * GIB, timestamp=12345, unique_id=b"\x01" * 16)
        decoded = VhdFooter.decode(original.encode())
        assert decoded == original

    def test_decode_rejects_corruption(self):
        footer = bytearray(create_fixed_footer(GIB))
        footer[100] ^= 0xFF
        with pytest.raises(ValueError, match="checksum"):
            VhdFooter.decode(bytes(footer))

    def test_decode_rejects_wrong_cookie(self):
        footer = b"notavhd!" + create_fixed_footer(GIB)[8:]
        with pytest.raises(ValueError, match="cookie"):
            VhdFooter.decode(footer)

    def test_decode_rejects_wrong_length(self):
        with pytest.raises(ValueError, match="512"):
            VhdFooter.decode(b"\x00" * 100)

    def test_unique_ids_differ(self):
        assert create_fixed_footer(GIB)[68:84] != create_fixed_footer(GIB)[68:84]
