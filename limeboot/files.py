"""Open files on whichever supported filesystem a partition holds."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from limeboot import echfs, ext2, fat32
from limeboot.disk import Disk, Partition

__all__ = ["FileHandle", "open_file"]

_FILESYSTEMS: tuple[tuple[Callable[[Disk, Partition], bool], Callable[..., Any]], ...] = (
    (echfs.check_signature, echfs.open_file),
    (ext2.check_signature, ext2.open_file),
    (fat32.check_signature, fat32.open_file),
)


@dataclass
class FileHandle:
    """An open file together with where it came from."""

    disk: Disk
    partition: Partition
    fd: Any
    size: int

    def read(self, loc: int, count: int) -> bytes:
        """Read count bytes from offset loc of the file."""
        return self.fd.read(loc, count)


def open_file(disk: Disk, partition: Partition, filename: str) -> FileHandle:
    """Open filename on the first filesystem that recognises the partition."""
    for check, opener in _FILESYSTEMS:
        if check(disk, partition):
            fd = opener(disk, partition, filename)
            return FileHandle(disk=disk, partition=partition, fd=fd, size=fd.size)
    raise ValueError("no supported filesystem found on the partition")