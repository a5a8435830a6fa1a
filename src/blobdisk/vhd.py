"""Fixed VHD footer encoding.

A fixed VHD is the raw disk image followed by a 512-byte footer.  Field
layout (all integers big-endian)::

    Field           Size (bytes)
    Cookie          8     'conectix'
    Features        4
    Version         4
    Data Offset     8     all ones for fixed disks
    Timestamp       4     seconds since 2000-01-01 00:00:00 UTC
    Creator App     4
    Creator Ver     4
    CreatorHostOS   4
    Original Size   8
    Current Size    8
    Disk Geometry   4     cylinders (2), heads (1), sectors/track (1)
    Disk Type       4     2 = fixed
    Checksum        4     one's complement of the byte sum, checksum zeroed
    Unique ID       16
    Saved State     1
    Reserved        427
"""

from __future__ import annotations

import datetime
import struct
import uuid
from dataclasses import dataclass, field

VHD_FOOTER_SIZE = 512
VHD_COOKIE = b"conectix"
VHD_FEATURES = 0x00000002
VHD_FILE_FORMAT_VERSION = 0x00010000
VHD_FIXED_DATA_OFFSET = 0xFFFFFFFFFFFFFFFF
VHD_DISK_TYPE_FIXED = 2
SECTOR_SIZE = 512

_CREATOR_APP = b"bdsk"
_CREATOR_VERSION = 0x00010000
_CREATOR_HOST_OS = b"Wi2k"
_EPOCH = datetime.datetime(2000, 1, 1, tzinfo=datetime.UTC)

_FOOTER = struct.Struct(">8sIIQI4sI4sQQHBBII16sB427x")
_CHECKSUM_OFFSET = 64


def chs_geometry(size_bytes: int) -> tuple[int, int, int]:
    """Cylinders/heads/sectors-per-track for a disk of *size_bytes*.

    Follows the algorithm from the VHD format specification, capping the
    geometry at 65535 x 16 x 255 sectors.
    """
    total_sectors = min(size_bytes // SECTOR_SIZE, 65535 * 16 * 255)

    if total_sectors >= 65535 * 16 * 63:
        sectors_per_track = 255
        heads = 16
        cylinder_times_heads = total_sectors // sectors_per_track
    else:
        sectors_per_track = 17
        cylinder_times_heads = total_sectors // sectors_per_track
        heads = max((cylinder_times_heads + 1023) // 1024, 4)
        if cylinder_times_heads >= heads * 1024 or heads > 16:
            sectors_per_track = 31
            heads = 16
            cylinder_times_heads = total_sectors // sectors_per_track
        if cylinder_times_heads >= heads * 1024:
            sectors_per_track = 63
            heads = 16
            cylinder_times_heads = total_sectors // sectors_per_track

    return cylinder_times_heads // heads, heads, sectors_per_track


def footer_checksum(footer: bytes) -> int:
    """One's complement of the byte sum, with the checksum field treated as zero."""
    data = footer[:_CHECKSUM_OFFSET] + b"\x00" * 4 + footer[_CHECKSUM_OFFSET + 4 :]
    return ~sum(data) & 0xFFFFFFFF


@dataclass(frozen=True)
class VhdFooter:
    """Footer of a fixed-size VHD image."""

    size_bytes: int
    timestamp: int = field(
        default_factory=lambda: int(
            (datetime.datetime.now(datetime.UTC) - _EPOCH).total_seconds(),
        ),
    )
    unique_id: bytes = field(default_factory=lambda: uuid.uuid4().bytes)

    def encode(self) -> bytes:
        cylinders, heads, sectors = chs_geometry(self.size_bytes)
        fields = (
            VHD_COOKIE,
            VHD_FEATURES,
            VHD_FILE_FORMAT_VERSION,
            VHD_FIXED_DATA_OFFSET,
            self.timestamp & 0xFFFFFFFF,
            _CREATOR_APP,
            _CREATOR_VERSION,
            _CREATOR_HOST_OS,
            self.size_bytes,
            self.size_bytes,
            cylinders,
            heads,
            sectors,
            VHD_DISK_TYPE_FIXED,
            0,
            self.unique_id,
            0,
        )
        unsigned = _FOOTER.pack(*fields)
        return _FOOTER.pack(*fields[:14], footer_checksum(unsigned), *fields[15:])

    @classmethod
    def decode(cls, data: bytes) -> VhdFooter:
        """Parse a footer, validating cookie, disk type and checksum."""
        if len(data) != VHD_FOOTER_SIZE:
            raise ValueError(f"VHD footer must be {VHD_FOOTER_SIZE} bytes, got {len(data)}")
        values = _FOOTER.unpack(data)
        if values[0] != VHD_COOKIE:
            raise ValueError("Missing 'conectix' cookie")
        if values[13] != VHD_DISK_TYPE_FIXED:
            raise ValueError(f"Unsupported VHD disk type {values[13]}")
        if values[14] != footer_checksum(data):
            raise ValueError("VHD footer checksum mismatch")
        return cls(size_bytes=values[9], timestamp=values[4], unique_id=values[15])


def create_fixed_footer(size_bytes: int) -> bytes:
    """Encode the footer for a fixed VHD whose data region is *size_bytes*."""
    return VhdFooter(size_bytes=size_bytes).encode()
