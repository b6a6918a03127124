"""Read-only access to files on an ext2 (and simple ext4) filesystem."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field

from limeboot.disk import Disk, Partition

__all__ = [
    "Ext2Error",
    "Ext2Inode",
    "Ext2File",
    "check_signature",
    "open_file",
]

EXT2_S_MAGIC = 0xEF53
EXT2_FS_UNRECOVERABLE_ERRORS = 3

EXT2_IF_COMPRESSION = 0x01
EXT2_FEATURE_INCOMPAT_META_BG = 0x0010
EXT2_IF_EXTENTS = 0x40
EXT2_IF_64BIT = 0x80
EXT2_IF_INLINE_DATA = 0x8000
EXT2_IF_ENCRYPT = 0x10000

EXT4_EXTENTS_FLAG = 0x80000
EXT4_EXT_MAGIC = 0xF30A

EXT2_INO_DIRECTORY = 0x4000
ROOT_INODE = 2

_UNSUPPORTED_FEATURES = (
    EXT2_IF_COMPRESSION
    | EXT2_IF_INLINE_DATA
    | EXT2_FEATURE_INCOMPAT_META_BG
    | EXT2_IF_ENCRYPT
)

_SUPERBLOCK_OFFSET = 1024
_SUPERBLOCK_SIZE = 336
_EXT2_BGD_SIZE = 32
_EXT4_BGD_SIZE = 64

_INODE = struct.Struct("<HHIIIIIHHIII15IIIII12s")
_DIR_ENTRY = struct.Struct("<IHBB")
_EXTENT_HEADER = struct.Struct("<HHHH")
_EXTENT_HEADER_SIZE = 12
_EXTENT = struct.Struct("<IHHI")
_EXTENT_IDX = struct.Struct("<IIHH")

_U32_MASK = 0xFFFFFFFF


class Ext2Error(Exception):
    """Raised when the filesystem is damaged, unsupported, or a file is missing."""


@dataclass
class Ext2Inode:
    """An on-disk inode (the first 128 bytes)."""

    mode: int = 0
    uid: int = 0
    size: int = 0
    atime: int = 0
    ctime: int = 0
    mtime: int = 0
    dtime: int = 0
    gid: int = 0
    links_count: int = 0
    blocks_count: int = 0
    flags: int = 0
    osd1: int = 0
    blocks: tuple[int, ...] = field(default_factory=lambda: (0,) * 15)
    generation: int = 0
    eab: int = 0
    maj: int = 0
    frag_block: int = 0
    osd2: bytes = bytes(12)

    SIZE = _INODE.size

    @property
    def is_directory(self) -> bool:
        return (self.mode & 0xF000) == EXT2_INO_DIRECTORY

    def pack(self) -> bytes:
        if len(self.blocks) != 15:
            raise Ext2Error("an inode holds exactly 15 block pointers")
        return _INODE.pack(
            self.mode,
            self.uid,
            self.size,
            self.atime,
            self.ctime,
            self.mtime,
            self.dtime,
            self.gid,
            self.links_count,
            self.blocks_count,
            self.flags,
            self.osd1,
            *self.blocks,
            self.generation,
            self.eab,
            self.maj,
            self.frag_block,
            bytes(self.osd2).ljust(12, b"\0")[:12],
        )

    @classmethod
    def unpack(cls, data: bytes) -> Ext2Inode:
        if len(data) < _INODE.size:
            raise Ext2Error("truncated inode")
        values = _INODE.unpack(bytes(data[:_INODE.size]))
        return cls(
            *values[:12],
            tuple(values[12:27]),
            *values[27:31],
            values[31],
        )


@dataclass(frozen=True)
class _Superblock:
    log_block_size: int
    inodes_per_group: int
    magic: int
    state: int
    rev_level: int
    inode_size: int
    feature_incompat: int
    group_desc_size: int

    @classmethod
    def read(cls, disk: Disk, partition: Partition) -> _Superblock:
        raw = disk.read_partition(partition, _SUPERBLOCK_OFFSET, _SUPERBLOCK_SIZE)
        (log_block_size,) = struct.unpack_from("<I", raw, 24)
        (inodes_per_group,) = struct.unpack_from("<I", raw, 40)
        magic, state = struct.unpack_from("<HH", raw, 56)
        (rev_level,) = struct.unpack_from("<I", raw, 76)
        (inode_size,) = struct.unpack_from("<H", raw, 88)
        (feature_incompat,) = struct.unpack_from("<I", raw, 96)
        (group_desc_size,) = struct.unpack_from("<H", raw, 254)
        return cls(
            log_block_size,
            inodes_per_group,
            magic,
            state,
            rev_level,
            inode_size,
            feature_incompat,
            group_desc_size,
        )

    @property
    def block_size(self) -> int:
        return 1024 << self.log_block_size

    @property
    def uses_64bit(self) -> bool:
        size = self.group_desc_size
        return (
            self.rev_level != 0
            and bool(self.feature_incompat & EXT2_IF_64BIT)
            and size != 0
            and (size & (size - 1)) == 0
            and size > 32
        )

    @property
    def inode_record_size(self) -> int:
        return _INODE.size if self.rev_level == 0 else self.inode_size


def _read_u32(disk: Disk, partition: Partition, loc: int) -> int:
    return int.from_bytes(disk.read_partition(partition, loc, 4), "little")


def _get_inode(
    disk: Disk, partition: Partition, number: int, sb: _Superblock
) -> Ext2Inode:
    if number == 0:
        raise Ext2Error("ext2: invalid inode number 0")
    if sb.inodes_per_group == 0:
        raise Ext2Error("ext2: superblock has no inodes per group")

    group, index = divmod(number - 1, sb.inodes_per_group)
    block_size = sb.block_size
    bgd_start = block_size if block_size >= 2048 else block_size * 2

    if sb.uses_64bit:
        raw = disk.read_partition(
            partition, bgd_start + _EXT4_BGD_SIZE * group, _EXT4_BGD_SIZE
        )
        (low,) = struct.unpack_from("<I", raw, 8)
        (high,) = struct.unpack_from("<I", raw, 40)
        table = low | (high << 32)
    else:
        raw = disk.read_partition(
            partition, bgd_start + _EXT2_BGD_SIZE * group, _EXT2_BGD_SIZE
        )
        (table,) = struct.unpack_from("<I", raw, 8)

    offset = table * block_size + sb.inode_record_size * index
    return Ext2Inode.unpack(disk.read_partition(partition, offset, _INODE.size))


def _block_bytes(inode: Ext2Inode) -> bytes:
    return struct.pack("<15I", *inode.blocks)


def _find_leaf(
    disk: Disk, partition: Partition, node: bytes, block: int, block_size: int
) -> bytes:
    while True:
        magic, entries, _, depth = _EXTENT_HEADER.unpack_from(node, 0)
        if magic != EXT4_EXT_MAGIC:
            raise Ext2Error("invalid extent magic")
        if depth == 0:
            return node
        if _EXTENT_HEADER_SIZE + _EXTENT_IDX.size * entries > len(node):
            raise Ext2Error("corrupt extent index node")

        chosen = None
        for i in range(entries):
            first, leaf, leaf_hi, _ = _EXTENT_IDX.unpack_from(
                node, _EXTENT_HEADER_SIZE + _EXTENT_IDX.size * i
            )
            if block < first:
                break
            chosen = (leaf_hi << 32) | leaf
        if chosen is None:
            raise Ext2Error("extent not found")
        node = disk.read_partition(partition, chosen * block_size, block_size)


def _extent_block(
    disk: Disk, partition: Partition, inode: Ext2Inode, block: int, block_size: int
) -> int:
    leaf = _find_leaf(disk, partition, _block_bytes(inode), block, block_size)
    (_, entries, _, _) = _EXTENT_HEADER.unpack_from(leaf, 0)
    if _EXTENT_HEADER_SIZE + _EXTENT.size * entries > len(leaf):
        raise Ext2Error("corrupt extent leaf node")

    chosen = None
    for i in range(entries):
        extent = _EXTENT.unpack_from(leaf, _EXTENT_HEADER_SIZE + _EXTENT.size * i)
        if block < extent[0]:
            break
        chosen = extent
    if chosen is None:
        raise Ext2Error("extent for block not found")

    first, length, start_hi, start = chosen
    relative = block - first
    if relative >= length:
        raise Ext2Error("block longer than extent")
    return ((start_hi << 32) + start + relative) & _U32_MASK


def _indirect_block(
    disk: Disk, partition: Partition, inode: Ext2Inode, block: int, block_size: int
) -> int:
    per_block = block_size // 4
    block -= 12
    if block < per_block:
        return _read_u32(disk, partition, inode.blocks[12] * block_size + block * 4)

    block -= per_block
    index, offset = divmod(block, per_block)
    if index >= per_block:
        raise Ext2Error("ext2: triply indirect blocks unsupported")
    indirect = _read_u32(disk, partition, inode.blocks[13] * block_size + index * 4)
    return _read_u32(disk, partition, indirect * block_size + offset * 4)


def _resolve_block(
    disk: Disk, partition: Partition, inode: Ext2Inode, block: int, block_size: int
) -> int:
    if inode.flags & EXT4_EXTENTS_FLAG:
        return _extent_block(disk, partition, inode, block, block_size)
    if block < 12:
        return inode.blocks[block]
    return _indirect_block(disk, partition, inode, block, block_size)


def _inode_read(
    disk: Disk,
    partition: Partition,
    inode: Ext2Inode,
    block_size: int,
    loc: int,
    count: int,
) -> bytes:
    out = bytearray()
    while len(out) < count:
        block, offset = divmod(loc + len(out), block_size)
        chunk = min(count - len(out), block_size - offset)
        index = _resolve_block(disk, partition, inode, block, block_size)
        out += disk.read_partition(partition, index * block_size + offset, chunk)
    return bytes(out)


def _find_entry(
    disk: Disk,
    partition: Partition,
    directory: Ext2Inode,
    block_size: int,
    name: bytes,
) -> int | None:
    pos = 0
    while pos < directory.size:
        header = _inode_read(disk, partition, directory, block_size, pos, _DIR_ENTRY.size)
        number, rec_len, name_len, _ = _DIR_ENTRY.unpack(header)
        entry_name = _inode_read(
            disk, partition, directory, block_size, pos + _DIR_ENTRY.size, name_len
        )
        if entry_name.split(b"\0", 1)[0] == name:
            return number
        if rec_len == 0:
            raise Ext2Error("ext2: corrupt directory entry")
        pos += rec_len
    return None


def _lookup(
    disk: Disk,
    partition: Partition,
    root: Ext2Inode,
    block_size: int,
    sb: _Superblock,
    path: str,
) -> int:
    relative = path[1:] if path.startswith("/") else path
    tokens = relative.split("/")
    current = root
    for position, token in enumerate(tokens):
        number = _find_entry(disk, partition, current, block_size, token.encode("utf-8"))
        if number is None:
            raise Ext2Error(f"ext2: file {path} not found")
        if position == len(tokens) - 1:
            return number
        current = _get_inode(disk, partition, number, sb)
    raise Ext2Error(f"ext2: file {path} not found")


@dataclass
class Ext2File:
    """An open file on an ext2 partition."""

    disk: Disk
    partition: Partition
    inode: Ext2Inode
    root_inode: Ext2Inode
    block_size: int
    size: int

    def read(self, loc: int, count: int) -> bytes:
        """Read count bytes from offset loc of the file."""
        if loc < 0 or count < 0:
            raise ValueError("location and count must not be negative")
        return _inode_read(
            self.disk, self.partition, self.inode, self.block_size, loc, count
        )


def check_signature(disk: Disk, partition: Partition) -> bool:
    """Tell whether the partition holds an ext2 filesystem this reader supports."""
    sb = _Superblock.read(disk, partition)
    if sb.magic != EXT2_S_MAGIC:
        return False
    if sb.rev_level == 0:
        return True
    if sb.feature_incompat & _UNSUPPORTED_FEATURES:
        raise Ext2Error(
            f"EXT2: filesystem has unsupported features {sb.feature_incompat:x}"
        )
    return True


def open_file(disk: Disk, partition: Partition, path: str) -> Ext2File:
    """Open the regular file at path on an ext2 partition."""
    sb = _Superblock.read(disk, partition)
    if sb.state == EXT2_FS_UNRECOVERABLE_ERRORS:
        raise Ext2Error("EXT2: unrecoverable errors found")

    block_size = sb.block_size
    root = _get_inode(disk, partition, ROOT_INODE, sb)
    number = _lookup(disk, partition, root, block_size, sb, path)
    inode = _get_inode(disk, partition, number, sb)

    if inode.is_directory:
        raise Ext2Error(f'ext2: Requested file "{path}" is a directory!')

    return Ext2File(
        disk=disk,
        partition=partition,
        inode=inode,
        root_inode=root,
        block_size=block_size,
        size=inode.size,
    )