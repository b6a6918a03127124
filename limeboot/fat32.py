"""Read-only access to files on a FAT32 filesystem."""

from __future__ import annotations

import struct
from dataclasses import dataclass

from limeboot.disk import Disk, Partition

__all__ = [
    "Fat32Error",
    "Fat32Context",
    "Fat32File",
    "filename_to_8_3",
    "check_signature",
    "open_file",
]

SECTOR_SIZE = 512
LFN_MAX_ENTRIES = 20
LFN_MAX_FILENAME_LENGTH = LFN_MAX_ENTRIES * 13 + 1
VALID_SIGNATURES = (0x28, 0x29)
SYSTEM_IDENTIFIER = b"FAT32   "
ATTRIBUTE_SUBDIRECTORY = 0x10
LFN_ATTRIBUTE = 0x0F

_CLUSTER_MASK = 0x0FFFFFFF
_FIRST_DATA_CLUSTER = 0x00000002
_LAST_DATA_CLUSTER = 0x0FFFFFEF

_BPB = struct.Struct("<3s8sHBHBHHBHHHIIIHHIHH12sBBBI11s8s")
_DIR_ENTRY = struct.Struct("<11sB8sH4sHI")
_ENTRIES_PER_SECTOR = SECTOR_SIZE // _DIR_ENTRY.size


class Fat32Error(Exception):
    """Raised when a FAT32 volume is invalid or a file cannot be found or read."""


@dataclass
class Fat32Context:
    """Geometry of a FAT32 volume, taken from its BIOS parameter block."""

    disk: Disk
    partition: Partition
    sectors_per_cluster: int
    reserved_sectors: int
    number_of_fats: int
    hidden_sectors: int
    sectors_per_fat: int
    root_directory_cluster: int
    fat_start_lba: int
    data_start_lba: int

    @property
    def cluster_size(self) -> int:
        return self.sectors_per_cluster * SECTOR_SIZE


@dataclass(frozen=True)
class _DirEntry:
    name: bytes
    attribute: int
    cluster: int
    size: int

    @classmethod
    def unpack(cls, raw: bytes) -> _DirEntry:
        name, attribute, _, high, _, low, size = _DIR_ENTRY.unpack(bytes(raw))
        return cls(name, attribute, (high << 16) | low, size)


def _in_chain(cluster: int) -> bool:
    return _FIRST_DATA_CLUSTER <= cluster <= _LAST_DATA_CLUSTER


def _init_context(disk: Disk, partition: Partition) -> Fat32Context | None:
    fields = _BPB.unpack(disk.read_partition(partition, 0, _BPB.size))
    (
        _jump, _oem, _bytes_per_sector, sectors_per_cluster, reserved_sectors,
        fats_count, _dir_entries, _totals, _media, _spf16, _spt, _heads,
        hidden_sectors, _large, sectors_per_fat, _flags, _version,
        root_cluster, _fs_info, _backup, _reserved, _drive, _nt_flags,
        signature, _serial, _label, system_identifier,
    ) = fields

    if signature not in VALID_SIGNATURES:
        return None
    if system_identifier != SYSTEM_IDENTIFIER:
        return None

    return Fat32Context(
        disk=disk,
        partition=partition,
        sectors_per_cluster=sectors_per_cluster,
        reserved_sectors=reserved_sectors,
        number_of_fats=fats_count,
        hidden_sectors=hidden_sectors,
        sectors_per_fat=sectors_per_fat,
        root_directory_cluster=root_cluster,
        fat_start_lba=reserved_sectors,
        data_start_lba=reserved_sectors + fats_count * sectors_per_fat,
    )


def _next_cluster(context: Fat32Context, cluster: int) -> int:
    raw = context.disk.read_partition(
        context.partition, context.fat_start_lba * SECTOR_SIZE + cluster * 4, 4
    )
    return int.from_bytes(raw, "little") & _CLUSTER_MASK


def _load_cluster(context: Fat32Context, cluster: int, offset: int, limit: int) -> bytes:
    sector = context.data_start_lba + (cluster - 2) * context.sectors_per_cluster
    return context.disk.read_partition(
        context.partition, sector * SECTOR_SIZE + offset, limit
    )


def _strn_equal(a: bytes, b: bytes, n: int) -> bool:
    return a[:n].split(b"\0", 1)[0] == b[:n].split(b"\0", 1)[0]


def filename_to_8_3(name: str) -> str | None:
    """Turn a name into its space-padded 8.3 form, or None if it has none."""
    out: list[str] = []
    has_ext = False
    for ch in name:
        if ch == ".":
            if has_ext:
                return None
            has_ext = True
            out.extend(" " * (8 - len(out)))
            continue
        if len(out) >= 8 + 3 or (len(out) >= 8 and not has_ext):
            return None
        out.append(ch.upper() if "a" <= ch <= "z" else ch)
    return "".join(out).ljust(11)


def _lfn_matches(lfn: bytearray, entry: bytes, name: bytes) -> bool:
    seq = entry[0]
    if seq & 0x40:
        lfn[:] = b" " * len(lfn)

    index = ((seq & 0x1F) - 1) * 13
    if index < 0 or index >= LFN_MAX_ENTRIES * 13:
        return False

    # Only the low byte of each UCS-2 character is kept.
    lfn[index:index + 5] = entry[1:11:2]
    lfn[index + 5:index + 11] = entry[14:26:2]
    lfn[index + 11:index + 13] = entry[28:32:2]

    if index != 0:
        return False

    stripped = bytes(lfn[:LFN_MAX_FILENAME_LENGTH - 1]).rstrip(b" ")
    lfn[len(stripped)] = 0
    return stripped.split(b"\0", 1)[0] == name


def _open_in(context: Fat32Context, directory_cluster: int, name: str) -> _DirEntry | None:
    wanted = name.encode("utf-8")
    short = filename_to_8_3(name)
    short_bytes = short.encode("utf-8") if short is not None else None
    lfn = bytearray(LFN_MAX_FILENAME_LENGTH)
    take_next = False
    cluster = directory_cluster

    while True:
        for sector in range(context.sectors_per_cluster):
            raw = _load_cluster(context, cluster, sector * SECTOR_SIZE, SECTOR_SIZE)
            entries = (
                raw[pos:pos + _DIR_ENTRY.size]
                for pos in range(0, _ENTRIES_PER_SECTOR * _DIR_ENTRY.size, _DIR_ENTRY.size)
            )
            for entry in entries:
                if take_next:
                    return _DirEntry.unpack(entry)
                if entry[0] == 0x00:
                    break
                if entry[11] == LFN_ATTRIBUTE:
                    take_next = _lfn_matches(lfn, entry, wanted)
                elif short_bytes is not None and _strn_equal(entry[:11], short_bytes, 11):
                    return _DirEntry.unpack(entry)

        cluster = _next_cluster(context, cluster)
        if not _in_chain(cluster):
            return None


@dataclass
class Fat32File:
    """An open file on a FAT32 volume."""

    context: Fat32Context
    first_cluster: int
    size_bytes: int
    size_clusters: int

    @property
    def size(self) -> int:
        return self.size_bytes

    def read(self, loc: int, count: int) -> bytes:
        """Read count bytes from offset loc of the file."""
        if loc < 0 or count < 0:
            raise ValueError("location and count must not be negative")
        context = self.context
        cluster_size = context.cluster_size
        cluster = self.first_cluster

        skip, loc = divmod(loc, cluster_size)
        for _ in range(skip):
            cluster = _next_cluster(context, cluster)

        if count == 0:
            return b""

        out = bytearray()
        while True:
            # Read runs of consecutive clusters in one go.
            run = 1
            for i in range(count // cluster_size):
                if _next_cluster(context, cluster + i) != cluster + i + 1:
                    break
                run += 1

            current = min(count, run * cluster_size - loc)
            out += _load_cluster(context, cluster, loc, current)
            loc = 0
            count -= current
            if count == 0:
                return bytes(out)

            cluster = _next_cluster(context, cluster + run - 1)
            if not _in_chain(cluster):
                raise Fat32Error("fat32: read failed, unexpected end of cluster chain")


def check_signature(disk: Disk, partition: Partition) -> bool:
    """Tell whether the partition holds a FAT32 filesystem."""
    return _init_context(disk, partition) is not None


def open_file(disk: Disk, partition: Partition, path: str) -> Fat32File:
    """Open the file at path on a FAT32 partition."""
    context = _init_context(disk, partition)
    if context is None:
        raise Fat32Error("fat32: context init failure (1)")

    rest = path.lstrip("/")
    directory = context.root_directory_cluster
    while True:
        part, sep, tail = rest.partition("/")
        if len(part) >= LFN_MAX_FILENAME_LENGTH:
            raise Fat32Error(f"fat32: file {path} not found")
        entry = _open_in(context, directory, part)
        if entry is None:
            raise Fat32Error(f"fat32: file {path} not found")
        if not sep:
            return Fat32File(
                context=context,
                first_cluster=entry.cluster,
                size_bytes=entry.size,
                size_clusters=-(-entry.size // SECTOR_SIZE),
            )
        directory = entry.cluster
        rest = tail