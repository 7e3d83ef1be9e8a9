"""On-flash layout of an espfs image.

An image is a concatenation of ``{header, name, data}`` entries, each part
padded to a 32-bit boundary. The final entry is a data-less header with
the last-file flag set. All integers are little-endian.
"""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass

FLAG_LASTFILE = 1 << 0
FLAG_GZIP = 1 << 1
ESPFS_MAGIC = 0x73665345

_HEADER = struct.Struct("<ibbhii")
HEADER_SIZE = _HEADER.size


class Compression(enum.IntEnum):
    """Compression applied to a file's stored data."""

    NONE = 0
    HEATSHRINK = 1


@dataclass
class EspFsHeader:
    """Header preceding each entry of an espfs image."""

    flags: int = 0
    compression: int = Compression.NONE
    name_len: int = 0
    file_len_comp: int = 0
    file_len_decomp: int = 0
    magic: int = ESPFS_MAGIC

    def pack(self) -> bytes:
        """Serialise the header to its 16-byte packed form."""
        return _HEADER.pack(
            self.magic,
            self.flags,
            int(self.compression),
            self.name_len,
            self.file_len_comp,
            self.file_len_decomp,
        )

    @classmethod
    def unpack(cls, data, offset: int = 0) -> "EspFsHeader":
        """Read a header from *data* starting at *offset*."""
        if offset < 0 or len(data) - offset < HEADER_SIZE:
            raise ValueError(f"need {HEADER_SIZE} bytes for a header at offset {offset}")
        magic, flags, compression, name_len, comp, decomp = _HEADER.unpack_from(data, offset)
        return cls(
            flags=flags,
            compression=compression,
            name_len=name_len,
            file_len_comp=comp,
            file_len_decomp=decomp,
            magic=magic,
        )

    def is_last(self) -> bool:
        """True for the terminating header of an image."""
        return bool(self.flags & FLAG_LASTFILE)


def padded_length(length: int) -> int:
    """Round *length* up to the next multiple of four."""
    return (length + 3) & ~3