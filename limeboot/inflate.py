"""Deflate and gzip decompression.

Only decompression is provided. The gzip trailer (CRC-32 and size) is
skipped rather than verified, as the boot decompressor does.
"""

from __future__ import annotations

from dataclasses import dataclass, field

__all__ = ["InflateError", "inflate", "gunzip"]

# gzip header flags
_FTEXT = 1
_FHCRC = 2
_FEXTRA = 4
_FNAME = 8
_FCOMMENT = 16

_CLCIDX = (16, 17, 18, 0, 8, 7, 9, 6, 10, 5, 11, 4, 12, 3, 13, 2, 14, 1, 15)

_LENGTH_BITS = (
    0, 0, 0, 0, 0, 0, 0, 0, 1, 1,
    1, 1, 2, 2, 2, 2, 3, 3, 3, 3,
    4, 4, 4, 4, 5, 5, 5, 5, 0, 127,
)
_LENGTH_BASE = (
    3, 4, 5, 6, 7, 8, 9, 10, 11, 13,
    15, 17, 19, 23, 27, 31, 35, 43, 51, 59,
    67, 83, 99, 115, 131, 163, 195, 227, 258, 0,
)
_DIST_BITS = (
    0, 0, 0, 0, 1, 1, 2, 2, 3, 3,
    4, 4, 5, 5, 6, 6, 7, 7, 8, 8,
    9, 9, 10, 10, 11, 11, 12, 12, 13, 13,
)
_DIST_BASE = (
    1, 2, 3, 4, 5, 7, 9, 13, 17, 25,
    33, 49, 65, 97, 129, 193, 257, 385, 513, 769,
    1025, 1537, 2049, 3073, 4097, 6145, 8193, 12289, 16385, 24577,
)


class InflateError(ValueError):
    """Raised when compressed data is malformed."""


@dataclass
class _Tree:
    counts: list[int] = field(default_factory=lambda: [0] * 16)
    symbols: list[int] = field(default_factory=list)
    max_sym: int = -1

    @classmethod
    def build(cls, lengths: list[int]) -> _Tree:
        """Build a canonical Huffman tree from code lengths."""
        tree = cls()
        for sym, length in enumerate(lengths):
            if length:
                tree.max_sym = sym
                tree.counts[length] += 1

        offsets = [0] * 16
        available = 1
        num_codes = 0
        for length, used in enumerate(tree.counts):
            if used > available:
                raise InflateError("over-subscribed code lengths")
            available = 2 * (available - used)
            offsets[length] = num_codes
            num_codes += used

        if (num_codes > 1 and available > 0) or (
            num_codes == 1 and tree.counts[1] != 1
        ):
            raise InflateError("incomplete code lengths")

        symbols = [0] * max(num_codes, 2)
        for sym, length in enumerate(lengths):
            if length:
                symbols[offsets[length]] = sym
                offsets[length] += 1

        # A lone code gets a partner that decodes to an out-of-range symbol.
        if num_codes == 1:
            tree.counts[1] = 2
            symbols[1] = tree.max_sym + 1

        tree.symbols = symbols
        return tree

    @classmethod
    def fixed_trees(cls) -> tuple[_Tree, _Tree]:
        lit = cls()
        lit.counts[7] = 24
        lit.counts[8] = 152
        lit.counts[9] = 112
        lit.symbols = (
            list(range(256, 280))
            + list(range(0, 144))
            + list(range(280, 288))
            + list(range(144, 256))
        )
        lit.max_sym = 285

        dist = cls()
        dist.counts[5] = 32
        dist.symbols = list(range(32))
        dist.max_sym = 29
        return lit, dist


class _BitReader:
    def __init__(self, data: bytes) -> None:
        self.data = data
        self.pos = 0
        self.tag = 0
        self.bitcount = 0
        self.overflow = False

    def _refill(self, num: int) -> None:
        while self.bitcount < num:
            if self.pos < len(self.data):
                self.tag |= self.data[self.pos] << self.bitcount
                self.pos += 1
            else:
                self.overflow = True
            self.bitcount += 8

    def bits(self, num: int) -> int:
        self._refill(num)
        value = self.tag & ((1 << num) - 1)
        self.tag >>= num
        self.bitcount -= num
        return value

    def bits_base(self, num: int, base: int) -> int:
        return base + (self.bits(num) if num else 0)

    def decode(self, tree: _Tree) -> int:
        base = 0
        offs = 0
        for length in range(1, 16):
            offs = 2 * offs + self.bits(1)
            if offs < tree.counts[length]:
                return tree.symbols[base + offs]
            base += tree.counts[length]
            offs -= tree.counts[length]
        raise InflateError("invalid Huffman code")

    def remaining(self) -> int:
        return len(self.data) - self.pos

    def take(self, count: int) -> bytes:
        chunk = self.data[self.pos:self.pos + count]
        self.pos += count
        return chunk

    def align(self) -> None:
        self.tag = 0
        self.bitcount = 0


def _decode_trees(reader: _BitReader) -> tuple[_Tree, _Tree]:
    hlit = reader.bits_base(5, 257)
    hdist = reader.bits_base(5, 1)
    hclen = reader.bits_base(4, 4)

    if hlit > 286 or hdist > 30:
        raise InflateError("too many length or distance codes")

    cl_lengths = [0] * 19
    for index in _CLCIDX[:hclen]:
        cl_lengths[index] = reader.bits(3)

    cl_tree = _Tree.build(cl_lengths)
    if cl_tree.max_sym == -1:
        raise InflateError("empty code length tree")

    total = hlit + hdist
    lengths: list[int] = []
    while len(lengths) < total:
        sym = reader.decode(cl_tree)
        if sym > cl_tree.max_sym:
            raise InflateError("invalid code length symbol")
        if sym == 16:
            if not lengths:
                raise InflateError("repeat with no previous length")
            sym = lengths[-1]
            repeat = reader.bits_base(2, 3)
        elif sym == 17:
            sym = 0
            repeat = reader.bits_base(3, 3)
        elif sym == 18:
            sym = 0
            repeat = reader.bits_base(7, 11)
        else:
            repeat = 1
        if repeat > total - len(lengths):
            raise InflateError("code lengths overflow")
        lengths.extend([sym] * repeat)

    if lengths[256] == 0:
        raise InflateError("missing end-of-block code")

    return _Tree.build(lengths[:hlit]), _Tree.build(lengths[hlit:])


def _inflate_block_data(
    reader: _BitReader, out: bytearray, lit: _Tree, dist: _Tree
) -> None:
    while True:
        sym = reader.decode(lit)
        if reader.overflow:
            raise InflateError("unexpected end of data")

        if sym < 256:
            out.append(sym)
            continue
        if sym == 256:
            return

        if sym > lit.max_sym or sym - 257 > 28 or dist.max_sym == -1:
            raise InflateError("invalid length symbol")
        sym -= 257
        length = reader.bits_base(_LENGTH_BITS[sym], _LENGTH_BASE[sym])

        dsym = reader.decode(dist)
        if dsym > dist.max_sym or dsym > 29:
            raise InflateError("invalid distance symbol")
        offset = reader.bits_base(_DIST_BITS[dsym], _DIST_BASE[dsym])
        if offset > len(out):
            raise InflateError("distance too far back")

        start = len(out) - offset
        if offset >= length:
            out += out[start:start + length]
        else:
            for i in range(length):
                out.append(out[start + i])


def _inflate_stored_block(reader: _BitReader, out: bytearray) -> None:
    if reader.remaining() < 4:
        raise InflateError("truncated stored block header")
    header = reader.take(4)
    length = int.from_bytes(header[0:2], "little")
    inverse = int.from_bytes(header[2:4], "little")
    if length != (~inverse & 0xFFFF):
        raise InflateError("stored block length mismatch")
    if reader.remaining() < length:
        raise InflateError("truncated stored block")
    out += reader.take(length)
    reader.align()


def inflate(data: bytes) -> bytes:
    """Decompress a raw deflate stream."""
    reader = _BitReader(bytes(data))
    out = bytearray()

    while True:
        final = reader.bits(1)
        btype = reader.bits(2)
        if btype == 0:
            _inflate_stored_block(reader, out)
        elif btype == 1:
            lit, dist = _Tree.fixed_trees()
            _inflate_block_data(reader, out, lit, dist)
        elif btype == 2:
            lit, dist = _decode_trees(reader)
            _inflate_block_data(reader, out, lit, dist)
        else:
            raise InflateError("invalid block type")
        if final:
            break

    if reader.overflow:
        raise InflateError("unexpected end of data")
    return bytes(out)


def _skip_zero_terminated(src: bytes, start: int) -> int:
    while True:
        if start >= len(src):
            raise InflateError("unterminated header string")
        byte = src[start]
        start += 1
        if byte == 0:
            return start


def gunzip(data: bytes) -> bytes:
    """Decompress a gzip member; the trailer is not verified."""
    src = bytes(data)
    size = len(src)

    if size < 18:
        raise InflateError("gzip data too short")
    if src[0] != 0x1F or src[1] != 0x8B:
        raise InflateError("bad gzip magic")
    if src[2] != 8:
        raise InflateError("unsupported compression method")
    flags = src[3]
    if flags & 0xE0:
        raise InflateError("reserved flag bits set")

    start = 10
    if flags & _FEXTRA:
        xlen = int.from_bytes(src[start:start + 2], "little")
        if xlen > size - 12:
            raise InflateError("extra field too long")
        start += xlen + 2
    if flags & _FNAME:
        start = _skip_zero_terminated(src, start)
    if flags & _FCOMMENT:
        start = _skip_zero_terminated(src, start)
    if flags & _FHCRC:
        start += 2

    if size - start < 8:
        raise InflateError("gzip data truncated")

    try:
        return inflate(src[start:size - 8])
    except InflateError as exc:
        raise InflateError(f"corrupt deflate data: {exc}") from exc