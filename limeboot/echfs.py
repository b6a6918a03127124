"""Read-only access to files on an echfs filesystem."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import Iterator

from limeboot.disk import Disk, Partition

__all__ = [
    "EchfsError",
    "EchfsDirEntry",
    "EchfsFile",
    "check_signature",
    "open_file",
]

ROOT_DIR_ID = (1 << 64) - 1
END_OF_CHAIN = (1 << 64) - 1
FILE_TYPE = 0
DIR_TYPE = 1
SIGNATURE = b"_ECH_FS_"

_ID_TABLE = struct.Struct("<4s8sQQQ")
_DIR_ENTRY = struct.Struct("<QB201sQQHHHQQQ")
_ALLOC_ENTRY_SIZE = 8


class EchfsError(Exception):
    """Raised when a filesystem is invalid or a file cannot be found or read."""


@dataclass
class EchfsDirEntry:
    """One entry of the echfs main directory."""

    parent_id: int
    type: int
    name: str
    atime: int = 0
    mtime: int = 0
    perms: int = 0
    owner: int = 0
    group: int = 0
    ctime: int = 0
    payload: int = 0
    size: int = 0

    SIZE = _DIR_ENTRY.size

    def pack(self) -> bytes:
        return _DIR_ENTRY.pack(
            self.parent_id,
            self.type,
            self.name.encode("utf-8"),
            self.atime,
            self.mtime,
            self.perms,
            self.owner,
            self.group,
            self.ctime,
            self.payload,
            self.size,
        )

    @classmethod
    def unpack(cls, data: bytes) -> EchfsDirEntry:
        if len(data) < _DIR_ENTRY.size:
            raise EchfsError("truncated directory entry")
        fields = list(_DIR_ENTRY.unpack(bytes(data[:_DIR_ENTRY.size])))
        fields[2] = fields[2].split(b"\0", 1)[0].decode("utf-8", "replace")
        return cls(*fields)


@dataclass
class EchfsFile:
    """An open echfs file with its allocation chain loaded."""

    disk: Disk
    partition: Partition
    block_size: int
    block_count: int
    dir_length: int
    alloc_table_size: int
    alloc_table_offset: int
    dir_offset: int
    dir_entry: EchfsDirEntry
    alloc_map: list[int] = field(default_factory=list)

    @property
    def size(self) -> int:
        return self.dir_entry.size

    def read(self, loc: int, count: int) -> bytes:
        """Read count bytes from offset loc of the file."""
        out = bytearray()
        while len(out) < count:
            block, offset = divmod(loc + len(out), self.block_size)
            if block >= len(self.alloc_map):
                raise EchfsError("read beyond the end of the file")
            chunk = min(count - len(out), self.block_size - offset)
            out += self.disk.read_partition(
                self.partition, self.alloc_map[block] * self.block_size + offset, chunk
            )
        return bytes(out)


def _identity(disk: Disk, partition: Partition) -> tuple[bytes, int, int, int]:
    _, signature, block_count, dir_length, block_size = _ID_TABLE.unpack(
        disk.read_partition(partition, 0, _ID_TABLE.size)
    )
    return signature, block_count, dir_length, block_size


def check_signature(disk: Disk, partition: Partition) -> bool:
    """Tell whether the partition holds an echfs filesystem."""
    return _identity(disk, partition)[0] == SIGNATURE


def _dir_entries(
    disk: Disk, partition: Partition, dir_offset: int, dir_length: int
) -> Iterator[EchfsDirEntry]:
    for pos in range(0, dir_length, _DIR_ENTRY.size):
        entry = EchfsDirEntry.unpack(
            disk.read_partition(partition, dir_offset + pos, _DIR_ENTRY.size)
        )
        if not entry.parent_id:
            return
        yield entry


def _lookup(
    disk: Disk, partition: Partition, dir_offset: int, dir_length: int, path: str
) -> EchfsDirEntry:
    wanted_parent = ROOT_DIR_ID
    rest = path
    while True:
        name, sep, rest = rest.lstrip("/").partition("/")
        last = not sep
        wanted_type = FILE_TYPE if last else DIR_TYPE
        for entry in _dir_entries(disk, partition, dir_offset, dir_length):
            if (
                entry.name == name
                and entry.parent_id == wanted_parent
                and entry.type == wanted_type
            ):
                break
        else:
            raise EchfsError(f"echfs: file {path} not found")
        if last:
            return entry
        wanted_parent = entry.payload


def open_file(disk: Disk, partition: Partition, path: str) -> EchfsFile:
    """Open the file at path on an echfs partition."""
    signature, block_count, dir_blocks, block_size = _identity(disk, partition)
    if signature != SIGNATURE:
        raise EchfsError("echfs: signature invalid")
    if block_size == 0:
        raise EchfsError("echfs: invalid block size")

    dir_length = dir_blocks * block_size
    alloc_table_size = -(-block_count * _ALLOC_ENTRY_SIZE // block_size) * block_size
    alloc_table_offset = 16 * block_size
    dir_offset = alloc_table_offset + alloc_table_size

    entry = _lookup(disk, partition, dir_offset, dir_length, path)

    file_block_count = -(-entry.size // block_size)
    alloc_map: list[int] = [entry.payload] if file_block_count else []
    while len(alloc_map) < file_block_count:
        raw = disk.read_partition(
            partition, alloc_table_offset + alloc_map[-1] * _ALLOC_ENTRY_SIZE, _ALLOC_ENTRY_SIZE
        )
        alloc_map.append(int.from_bytes(raw, "little"))

    return EchfsFile(
        disk=disk,
        partition=partition,
        block_size=block_size,
        block_count=block_count,
        dir_length=dir_length,
        alloc_table_size=alloc_table_size,
        alloc_table_offset=alloc_table_offset,
        dir_offset=dir_offset,
        dir_entry=entry,
        alloc_map=alloc_map,
    )