"""File-descriptor style access to mounted espfs images.

Each :class:`EspFsVfs` keeps a fixed table of open files; a
:class:`VfsRegistry` holds a fixed number of mounted images.
"""

from __future__ import annotations

import os
import stat as _stat
from dataclasses import dataclass

from espfs_tools.espfs import EspFs, EspFsError, EspFsFile, StatType
from espfs_tools.format import ESPFS_MAGIC

_READ_EXEC_ALL = (
    _stat.S_IRUSR | _stat.S_IXUSR | _stat.S_IRGRP | _stat.S_IXGRP | _stat.S_IROTH | _stat.S_IXOTH
)
_WRITE_FLAGS = os.O_CREAT | os.O_WRONLY | os.O_RDWR


class VfsError(Exception):
    """Raised when a file operation on a mounted image fails."""


@dataclass(frozen=True)
class StatResult:
    """File status as reported by the mounted image."""

    st_mode: int
    st_size: int
    magic: int
    flags: int


class EspFsVfs:
    """An image mounted under *base_path* with at most *max_files* open files."""

    def __init__(self, fs: EspFs, base_path: str, max_files: int) -> None:
        self.fs = fs
        self.base_path = base_path
        self.max_files = max_files
        self._files: list[EspFsFile | None] = [None] * max_files

    def _check_fd(self, fd: int) -> None:
        if not 0 <= fd < self.max_files:
            raise VfsError(f"bad file descriptor {fd}")

    def _file(self, fd: int) -> EspFsFile:
        self._check_fd(fd)
        handle = self._files[fd]
        if handle is None:
            raise VfsError(f"file descriptor {fd} is not open")
        return handle

    def open(self, path, flags: int = os.O_RDONLY) -> int:
        """Open *path* read-only and return its file descriptor."""
        if flags & _WRITE_FLAGS:
            raise VfsError("image is read-only")
        fd = next((i for i, handle in enumerate(self._files) if handle is None), None)
        if fd is None:
            raise VfsError("too many open files")
        try:
            self._files[fd] = self.fs.open(path)
        except (FileNotFoundError, EspFsError) as exc:
            raise VfsError(f"cannot open {os.fsdecode(path)!r}: {exc}") from exc
        return fd

    def read(self, fd: int, size: int) -> bytes:
        """Read up to *size* bytes from an open file."""
        return self._file(fd).read(size)

    def write(self, fd: int, data) -> int:
        """Refuse to write: the image is read-only.

        A descriptor that is out of range or not open is reported as such;
        any other descriptor is reported as read-only.
        """
        if not 0 <= fd < self.max_files or self._files[fd] is None:
            raise VfsError(f"cannot write to file descriptor {fd}: not open")
        size = len(data)
        raise VfsError(f"cannot write {size} bytes to file descriptor {fd}: image is read-only")

    def lseek(self, fd: int, offset: int, whence: int = os.SEEK_SET) -> int:
        """Move the read position of an open file; return the new position."""
        handle = self._file(fd)
        try:
            return handle.seek(offset, whence)
        except EspFsError as exc:
            raise VfsError(str(exc)) from exc

    def close(self, fd: int) -> None:
        """Close an open file and free its descriptor."""
        self._file(fd).close()
        self._files[fd] = None

    def fstat(self, fd: int) -> StatResult:
        """Status of an open file."""
        handle = self._file(fd)
        return StatResult(
            st_mode=_READ_EXEC_ALL | _stat.S_IFREG,
            st_size=handle.header.file_len_decomp,
            magic=ESPFS_MAGIC,
            flags=handle.header.flags,
        )

    def stat(self, path) -> StatResult:
        """Status of *path* inside the image."""
        try:
            info = self.fs.stat(path)
        except EspFsError as exc:
            raise VfsError(str(exc)) from exc
        if info.type is StatType.MISSING:
            raise VfsError(f"no such file: {os.fsdecode(path)!r}")
        kind = _stat.S_IFREG if info.type is StatType.FILE else _stat.S_IFDIR
        return StatResult(
            st_mode=_READ_EXEC_ALL | kind,
            st_size=info.size,
            magic=ESPFS_MAGIC,
            flags=info.flags,
        )


class VfsRegistry:
    """A fixed number of slots for mounted images."""

    def __init__(self, max_partitions: int) -> None:
        self._slots: list[EspFsVfs | None] = [None] * max_partitions

    @property
    def mounts(self) -> tuple[EspFsVfs, ...]:
        """The images mounted so far."""
        return tuple(vfs for vfs in self._slots if vfs is not None)

    def register(self, base_path: str, fs: EspFs, max_files: int) -> EspFsVfs:
        """Mount *fs* under *base_path* in the first free slot."""
        if base_path is None:
            raise ValueError("base_path is required")
        if fs is None:
            raise ValueError("fs is required")
        index = next((i for i, vfs in enumerate(self._slots) if vfs is None), None)
        if index is None:
            raise VfsError("no free slot to mount another image")
        vfs = EspFsVfs(fs, base_path, max_files)
        self._slots[index] = vfs
        return vfs