"""Read-only access to the files held in an espfs image.

An :class:`EspFs` wraps the bytes of an image. Files are opened by name and
read either directly, when stored uncompressed, or through a heatshrink
decoder fed in small pieces.
"""

from __future__ import annotations

import enum
import errno
import os
from dataclasses import dataclass
from typing import Iterator

from espfs_tools.decoder import HeatshrinkDecoder
from espfs_tools.encoder import HeatshrinkError
from espfs_tools.format import (
    ESPFS_MAGIC,
    HEADER_SIZE,
    Compression,
    EspFsHeader,
    padded_length,
)

# The decoder is fed at most this many compressed bytes at a time.
_DECODER_INPUT_SIZE = 16


class EspFsError(Exception):
    """Raised for a broken image or an unsupported operation on a file."""


class StatType(enum.Enum):
    """Kind of object a path names in an image."""

    MISSING = 0
    FILE = 1
    DIR = 2


@dataclass(frozen=True)
class EspFsStat:
    """What :meth:`EspFs.stat` learns about a path."""

    type: StatType = StatType.MISSING
    size: int = 0
    flags: int = 0


def _header_at(data: bytes, offset: int, context: str) -> EspFsHeader:
    try:
        header = EspFsHeader.unpack(data, offset)
    except ValueError as exc:
        raise EspFsError(f"image truncated {context}") from exc
    if header.magic != ESPFS_MAGIC:
        raise EspFsError(f"magic not found at offset {offset} {context}")
    return header


def _entry_length(header: EspFsHeader) -> int:
    length = padded_length(HEADER_SIZE + header.name_len + header.file_len_comp)
    if length < HEADER_SIZE:
        raise EspFsError("corrupt entry lengths in image")
    return length


def _image_name(file_name) -> bytes:
    name = os.fsencode(file_name)
    # Only one leading slash is removed, so "//x" never matches "x".
    return name[1:] if name.startswith(b"/") else name


class EspFsFile:
    """An open file inside an image."""

    def __init__(self, data: bytes, header: EspFsHeader, start: int) -> None:
        self._data = data
        self.header = header
        self._start = start
        self._pos_comp = start
        self._pos_decomp = 0
        self._closed = False
        self._decoder: HeatshrinkDecoder | None = None
        if header.compression == Compression.NONE:
            return
        if header.compression == Compression.HEATSHRINK:
            try:
                params = data[start]
            except IndexError as exc:
                raise EspFsError("heatshrink parameters missing") from exc
            self._pos_comp = start + 1
            try:
                self._decoder = HeatshrinkDecoder(
                    _DECODER_INPUT_SIZE, (params >> 4) & 0xF, params & 0xF
                )
            except HeatshrinkError as exc:
                raise EspFsError(f"bad heatshrink parameters 0x{params:02x}") from exc
            return
        raise EspFsError(f"Invalid compression: {header.compression}")

    def __enter__(self) -> "EspFsFile":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def size(self) -> int:
        """Length of the file once decompressed."""
        return self.header.file_len_decomp

    @property
    def flags(self) -> int:
        """Flags stored in the file's header."""
        return self.header.flags

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise EspFsError("I/O operation on closed file")

    def read(self, size: int = -1) -> bytes:
        """Read up to *size* bytes (all that is left if negative)."""
        self._check_open()
        comp_len = self.header.file_len_comp
        if self._decoder is None:
            remaining = comp_len - (self._pos_comp - self._start)
            if size < 0 or size > remaining:
                size = remaining
            chunk = bytes(self._data[self._pos_comp:self._pos_comp + size])
            self._pos_comp += size
            self._pos_decomp += size
            return chunk

        decomp_len = self.header.file_len_decomp
        if self._pos_decomp == decomp_len:
            return b""
        if size < 0:
            size = max(decomp_len - self._pos_decomp, 0)
        decoder = self._decoder
        out = bytearray()
        # Keep polling even once all input is sunk, until the whole file is out.
        while len(out) < size:
            remaining = comp_len - (self._pos_comp - self._start)
            if remaining > 0:
                piece = self._data[self._pos_comp:self._pos_comp + min(remaining, _DECODER_INPUT_SIZE)]
                self._pos_comp += decoder.sink(piece)
            produced, _ = decoder.poll(size - len(out))
            self._pos_decomp += len(produced)
            out += produced
            if remaining <= 0:
                if self._pos_decomp == decomp_len:
                    decoder.finish()
                return bytes(out)
        return bytes(out)

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        """Move the read position; return the new decompressed position.

        Compressed files only support rewinding to the start and asking
        for the current position.
        """
        self._check_open()
        comp_len = self.header.file_len_comp
        plain = self._decoder is None
        if whence == os.SEEK_SET:
            if offset < 0:
                raise EspFsError("negative seek position")
            if offset == 0:
                self._pos_comp = self._start
                self._pos_decomp = 0
            elif plain:
                offset = min(offset, comp_len)
                self._pos_comp = self._start + offset
                self._pos_decomp = offset
            else:
                raise EspFsError("cannot seek in a compressed file")
        elif whence == os.SEEK_CUR:
            if offset == 0:
                return self._pos_decomp
            if not plain:
                raise EspFsError("cannot seek in a compressed file")
            target = self._pos_decomp + offset
            target = max(0, min(target, comp_len))
            self._pos_comp = self._start + target
            self._pos_decomp = target
        elif whence == os.SEEK_END and plain:
            if offset > 0:
                raise EspFsError("cannot seek past the end of a file")
            target = max(comp_len + offset, 0)
            self._pos_comp = self._start + target
            self._pos_decomp = target
        else:
            raise EspFsError(f"unsupported seek mode {whence}")
        return self._pos_decomp

    def is_compressed(self) -> bool:
        """True if the stored data is heatshrink compressed."""
        return self.header.compression != Compression.NONE

    def access(self) -> bytes:
        """Return the whole stored data of an uncompressed file."""
        self._check_open()
        if self.is_compressed():
            raise EspFsError("direct access to a compressed file")
        return bytes(self._data[self._start:self._start + self.header.file_len_comp])

    def close(self) -> None:
        """Release the file; further use raises :class:`EspFsError`."""
        self._decoder = None
        self._closed = True


class EspFs:
    """A parsed espfs image."""

    def __init__(self, data) -> None:
        data = bytes(data)
        header = _header_at(data, 0, "at start of image")
        entry = _entry_length(header)
        length = entry
        num_files = 0
        offset = 0
        while True:
            num_files += 1
            offset += entry
            header = _header_at(data, offset, "while walking image")
            entry = _entry_length(header)
            length += entry
            if header.is_last():
                break
        self._data = data
        self.length = length
        self.num_files = num_files

    def _entries(self) -> Iterator[tuple[int, EspFsHeader, bytes]]:
        offset = 0
        while True:
            header = _header_at(self._data, offset, "image broken")
            if header.is_last():
                return
            name_start = offset + HEADER_SIZE
            raw = self._data[name_start:name_start + max(header.name_len, 0)]
            yield offset, header, raw.split(b"\0", 1)[0]
            offset += _entry_length(header)

    def open(self, file_name) -> EspFsFile:
        """Open a file by name; a single leading slash is ignored."""
        name = _image_name(file_name)
        for offset, header, entry_name in self._entries():
            if entry_name == name:
                return EspFsFile(self._data, header, offset + HEADER_SIZE + header.name_len)
        raise FileNotFoundError(errno.ENOENT, "no such file in image", os.fsdecode(file_name))

    def stat(self, file_name) -> EspFsStat:
        """Describe *file_name*; the type is MISSING unless it names a file."""
        name = _image_name(file_name)
        for _, header, entry_name in self._entries():
            if entry_name == name:
                return EspFsStat(StatType.FILE, header.file_len_decomp, header.flags)
        return EspFsStat()