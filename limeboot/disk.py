"""Block-cached reads from a disk image."""

from __future__ import annotations

import io
from dataclasses import dataclass
from typing import BinaryIO, Union

__all__ = ["DiskError", "Partition", "Disk"]

BLOCK_SIZE_IN_SECTORS = 16
PARTITION_SECTOR_SIZE = 512


class DiskError(OSError):
    """Raised when a read falls outside the disk."""


@dataclass(frozen=True)
class Partition:
    """A partition, located by its first 512-byte sector."""

    first_sector: int = 0

    @property
    def offset(self) -> int:
        return self.first_sector * PARTITION_SECTOR_SIZE


class Disk:
    """A disk read in blocks of 16 sectors, keeping the last block cached."""

    def __init__(
        self, source: Union[bytes, bytearray, memoryview, BinaryIO], sector_size: int = 512
    ) -> None:
        if sector_size <= 0:
            raise ValueError("sector size must be positive")
        if isinstance(source, (bytes, bytearray, memoryview)):
            self._stream: BinaryIO = io.BytesIO(bytes(source))
        else:
            self._stream = source
        self.sector_size = sector_size
        self._cache = b""
        self._cached_block: int | None = None

    @property
    def block_size(self) -> int:
        return self.sector_size * BLOCK_SIZE_IN_SECTORS

    def _cache_block(self, block: int) -> bytes:
        if block != self._cached_block:
            self._stream.seek(block * self.block_size)
            self._cache = self._stream.read(self.block_size)
            self._cached_block = block
        return self._cache

    def read(self, loc: int, count: int) -> bytes:
        """Read count bytes starting at byte offset loc."""
        if loc < 0 or count < 0:
            raise ValueError("location and count must not be negative")
        block_size = self.block_size
        out = bytearray()
        while len(out) < count:
            block, offset = divmod(loc + len(out), block_size)
            cache = self._cache_block(block)
            chunk = min(count - len(out), block_size - offset)
            piece = cache[offset:offset + chunk]
            if len(piece) < chunk:
                raise DiskError(
                    f"Disk error: LBA {block * BLOCK_SIZE_IN_SECTORS:#x} is beyond the end of the disk"
                )
            out += piece
        return bytes(out)

    def read_partition(self, partition: Partition, loc: int, count: int) -> bytes:
        """Read count bytes at offset loc within a partition."""
        return self.read(loc + partition.offset, count)