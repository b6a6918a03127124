import struct

import pytest

from limeboot.disk import Disk, Partition
from limeboot.ext2 import Ext2Error, Ext2Inode, check_signature, open_file

EXT2_MAGIC = 0xEF53
EXTENT_MAGIC = 0xF30A
EXTENTS_FLAG = 0x80000


class Ext2Image:
    """Builds a small ext2 image in memory."""

    def __init__(
        self,
        blocks=64,
        block_size=1024,
        inodes_per_group=16,
        groups=1,
        magic=EXT2_MAGIC,
        state=1,
        rev_level=0,
        inode_size=128,
        incompat=0,
        desc_size=0,
    ):
        self.bs = block_size
        self.ipg = inodes_per_group
        self.inode_size = inode_size if rev_level else 128
        self.data = bytearray(blocks * block_size)
        log = (block_size // 1024).bit_length() - 1
        sb = 1024
        struct.pack_into("<I", self.data, sb + 24, log)
        struct.pack_into("<I", self.data, sb + 40, inodes_per_group)
        struct.pack_into("<HH", self.data, sb + 56, magic, state)
        struct.pack_into("<I", self.data, sb + 76, rev_level)
        struct.pack_into("<H", self.data, sb + 88, inode_size)
        struct.pack_into("<I", self.data, sb + 96, incompat)
        struct.pack_into("<H", self.data, sb + 254, desc_size)
        stride = 64 if desc_size > 32 else 32
        bgd = block_size if block_size >= 2048 else 2 * block_size
        self.tables = []
        for group in range(groups):
            table = 4 + group * 8
            struct.pack_into("<III", self.data, bgd + group * stride, 0, 0, table)
            self.tables.append(table)
        self.next_block = 4 + groups * 8

    def alloc(self, count=1):
        start = self.next_block
        self.next_block += count
        return start

    def write(self, block, payload):
        offset = block * self.bs
        self.data[offset:offset + len(payload)] = payload

    def put_inode(self, number, inode):
        group, index = divmod(number - 1, self.ipg)
        offset = self.tables[group] * self.bs + index * self.inode_size
        self.data[offset:offset + Ext2Inode.SIZE] = inode.pack()

    def add_dir(self, number, entries):
        block = self.alloc()
        payload = bytearray()
        for i, (ino, name) in enumerate(entries):
            raw = name.encode()
            rec_len = (8 + len(raw) + 3) & ~3
            if i == len(entries) - 1:
                rec_len = self.bs - len(payload)
            payload += struct.pack("<IHBB", ino, rec_len, len(raw), 2) + raw
            payload += bytes(rec_len - 8 - len(raw))
        self.write(block, payload)
        blocks = (block,) + (0,) * 14
        self.put_inode(number, Ext2Inode(mode=0x41ED, size=self.bs, blocks=blocks))

    def add_file(self, number, content):
        per = self.bs // 4
        count = -(-len(content) // self.bs)
        start = self.alloc(count) if count else 0
        self.write(start, content)
        numbers = list(range(start, start + count))
        direct = numbers[:12] + [0] * (12 - len(numbers[:12]))
        single = double = 0
        rest = numbers[12:]
        if rest:
            single = self.alloc()
            chunk = rest[:per]
            self.write(single, struct.pack(f"<{len(chunk)}I", *chunk))
            rest = rest[per:]
        if rest:
            double = self.alloc()
            children = []
            for i in range(0, len(rest), per):
                chunk = rest[i:i + per]
                child = self.alloc()
                self.write(child, struct.pack(f"<{len(chunk)}I", *chunk))
                children.append(child)
            self.write(double, struct.pack(f"<{len(children)}I", *children))
        blocks = tuple(direct + [single, double, 0])
        self.put_inode(number, Ext2Inode(mode=0x81A4, size=len(content), blocks=blocks))

    def add_extent_file(self, number, content, depth=0, magic=EXTENT_MAGIC):
        count = -(-len(content) // self.bs)
        start = self.alloc(count)
        self.write(start, content)
        leaf = struct.pack("<HHHHI", magic, 1, 4, 0, 0) + struct.pack(
            "<IHHI", 0, count, 0, start
        )
        if depth == 0:
            root = leaf
        else:
            leaf_block = self.alloc()
            self.write(leaf_block, leaf)
            root = struct.pack("<HHHHI", EXTENT_MAGIC, 1, 4, 1, 0) + struct.pack(
                "<IIHH", 0, leaf_block, 0, 0
            )
        blocks = struct.unpack("<15I", root.ljust(60, b"\0"))
        self.put_inode(
            number,
            Ext2Inode(mode=0x81A4, size=len(content), flags=EXTENTS_FLAG, blocks=blocks),
        )

    def disk(self):
        return Disk(bytes(self.data))


def pattern(length, step=7):
    return bytes((i * step) % 251 for i in range(length))


HELLO = b"hello world\n"
KERNEL = pattern(3000)


def standard_image(**kwargs):
    img = Ext2Image(**kwargs)
    img.add_dir(2, [(2, "."), (2, ".."), (11, "hello.txt"), (12, "boot")])
    img.add_file(11, HELLO)
    img.add_dir(12, [(12, "."), (2, ".."), (13, "kernel.elf")])
    img.add_file(13, KERNEL)
    return img


def test_open_root_file_reads_content():
    f = open_file(standard_image().disk(), Partition(), "/hello.txt")
    assert f.read(0, len(HELLO)) == HELLO
    assert f.size == len(HELLO)


def test_open_nested_file():
    f = open_file(standard_image().disk(), Partition(), "/boot/kernel.elf")
    assert f.size == len(KERNEL)
    assert f.read(0, len(KERNEL)) == KERNEL


def test_path_without_leading_slash():
    f = open_file(standard_image().disk(), Partition(), "boot/kernel.elf")
    assert f.read(0, 16) == KERNEL[:16]


def test_read_across_block_boundary():
    f = open_file(standard_image().disk(), Partition(), "/boot/kernel.elf")
    assert f.read(1000, 100) == KERNEL[1000:1100]
    assert f.read(2040, 20) == KERNEL[2040:2060]


def test_missing_file_raises():
    with pytest.raises(Ext2Error):
        open_file(standard_image().disk(), Partition(), "/missing.txt")


def test_missing_directory_component_raises():
    with pytest.raises(Ext2Error):
        open_file(standard_image().disk(), Partition(), "/nope/kernel.elf")


def test_opening_directory_raises():
    with pytest.raises(Ext2Error, match="is a directory"):
        open_file(standard_image().disk(), Partition(), "/boot")


def test_unrecoverable_state_raises():
    with pytest.raises(Ext2Error, match="unrecoverable"):
        open_file(standard_image(state=3).disk(), Partition(), "/hello.txt")


def test_entry_with_inode_zero_raises():
    img = Ext2Image()
    img.add_dir(2, [(2, "."), (0, "ghost")])
    with pytest.raises(Ext2Error):
        open_file(img.disk(), Partition(), "/ghost")


def test_zero_record_length_raises():
    img = Ext2Image()
    block = img.alloc()
    img.write(block, struct.pack("<IHBB", 2, 0, 1, 2) + b".")
    img.put_inode(2, Ext2Inode(mode=0x41ED, size=img.bs, blocks=(block,) + (0,) * 14))
    with pytest.raises(Ext2Error):
        open_file(img.disk(), Partition(), "/other")


def test_singly_indirect_file():
    content = pattern(20 * 1024 - 5, step=3)
    img = Ext2Image(blocks=80)
    img.add_dir(2, [(2, "."), (11, "big.bin")])
    img.add_file(11, content)
    f = open_file(img.disk(), Partition(), "/big.bin")
    assert f.read(0, len(content)) == content
    assert f.read(12 * 1024 - 3, 10) == content[12 * 1024 - 3:12 * 1024 + 7]


def test_doubly_indirect_file():
    content = pattern(300 * 1024 - 100, step=11)
    img = Ext2Image(blocks=400)
    img.add_dir(2, [(2, "."), (11, "huge.bin")])
    img.add_file(11, content)
    f = open_file(img.disk(), Partition(), "/huge.bin")
    assert f.read(0, len(content)) == content


def test_triply_indirect_offset_raises():
    f = open_file(standard_image().disk(), Partition(), "/hello.txt")
    with pytest.raises(Ext2Error, match="triply"):
        f.read((12 + 256 + 256 * 256) * 1024, 1)


@pytest.mark.parametrize("depth", [0, 1])
def test_extent_file(depth):
    content = pattern(3 * 1024 + 77, step=13)
    img = Ext2Image()
    img.add_dir(2, [(2, "."), (11, "ext.bin")])
    img.add_extent_file(11, content, depth=depth)
    f = open_file(img.disk(), Partition(), "/ext.bin")
    assert f.read(0, len(content)) == content
    assert f.read(1020, 10) == content[1020:1030]


def test_extent_bad_magic_raises():
    img = Ext2Image()
    img.add_dir(2, [(2, "."), (11, "ext.bin")])
    img.add_extent_file(11, pattern(100), magic=0x1234)
    f = open_file(img.disk(), Partition(), "/ext.bin")
    with pytest.raises(Ext2Error, match="magic"):
        f.read(0, 10)


def test_read_beyond_extent_raises():
    img = Ext2Image()
    img.add_dir(2, [(2, "."), (11, "ext.bin")])
    img.add_extent_file(11, pattern(2 * 1024))
    f = open_file(img.disk(), Partition(), "/ext.bin")
    with pytest.raises(Ext2Error, match="longer than extent"):
        f.read(2 * 1024, 1)


def test_larger_block_size():
    img = standard_image(block_size=2048, blocks=40)
    f = open_file(img.disk(), Partition(), "/boot/kernel.elf")
    assert f.block_size == 2048
    assert f.read(0, len(KERNEL)) == KERNEL


def test_revision_one_inode_size():
    img = standard_image(rev_level=1, inode_size=256)
    f = open_file(img.disk(), Partition(), "/boot/kernel.elf")
    assert f.read(0, len(KERNEL)) == KERNEL


@pytest.mark.parametrize(
    "options",
    [
        {},
        {"rev_level": 1, "incompat": 0x80, "desc_size": 64},
    ],
)
def test_second_block_group(options):
    img = Ext2Image(inodes_per_group=8, groups=2, **options)
    img.add_dir(2, [(2, "."), (9, "far.txt")])
    img.add_file(9, HELLO)
    f = open_file(img.disk(), Partition(), "/far.txt")
    assert f.read(0, len(HELLO)) == HELLO


def test_partition_offset():
    img = standard_image()
    disk = Disk(bytes(4 * 512) + bytes(img.data))
    f = open_file(disk, Partition(first_sector=4), "/hello.txt")
    assert f.read(0, len(HELLO)) == HELLO


def test_root_inode_is_directory():
    f = open_file(standard_image().disk(), Partition(), "/hello.txt")
    assert f.root_inode.is_directory
    assert not f.inode.is_directory


def test_check_signature_accepts_magic():
    assert check_signature(standard_image().disk(), Partition()) is True


def test_check_signature_rejects_bad_magic():
    assert check_signature(standard_image(magic=0).disk(), Partition()) is False


def test_check_signature_allows_extents_feature():
    img = standard_image(rev_level=1, incompat=0x40)
    assert check_signature(img.disk(), Partition()) is True


@pytest.mark.parametrize("feature", [0x01, 0x10, 0x8000, 0x10000])
def test_check_signature_unsupported_features(feature):
    img = standard_image(rev_level=1, incompat=feature)
    with pytest.raises(Ext2Error, match="unsupported features"):
        check_signature(img.disk(), Partition())


def test_check_signature_revision_zero_ignores_features():
    img = standard_image(rev_level=0, incompat=0x01)
    assert check_signature(img.disk(), Partition()) is True


def test_inode_round_trip():
    inode = Ext2Inode(
        mode=0x81A4,
        uid=5,
        size=12345,
        flags=EXTENTS_FLAG,
        blocks=tuple(range(15)),
        generation=9,
        osd2=b"abcdefghijkl",
    )
    raw = inode.pack()
    assert len(raw) == Ext2Inode.SIZE
    assert Ext2Inode.unpack(raw) == inode


def test_inode_size_is_128():
    assert len(Ext2Inode().pack()) == 128


def test_inode_unpack_short_raises():
    with pytest.raises(Ext2Error):
        Ext2Inode.unpack(bytes(100))


def test_inode_wrong_block_count_raises():
    with pytest.raises(Ext2Error):
        Ext2Inode(blocks=(1, 2, 3)).pack()