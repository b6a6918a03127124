"""Install the bootloader image onto a disk image or device."""

from __future__ import annotations

import re
import sys
from typing import BinaryIO

__all__ = ["InstallError", "install", "main"]

SECTOR_SIZE = 512
BOOTLOADER_SECTORS = 64
STAGE2_POINTER_OFFSET = 0x1B0
TIMESTAMP_OFFSET = 218
TIMESTAMP_SIZE = 6
PARTITION_TABLE_OFFSET = 440
PARTITION_TABLE_SIZE = 70

_PROG = "limeboot-install"


class InstallError(Exception):
    """Raised when the bootloader or the device cannot be opened."""


def _read_at(stream: BinaryIO, offset: int, size: int) -> bytes:
    stream.seek(offset)
    return stream.read(size)


def _write_at(stream: BinaryIO, offset: int, data: bytes) -> None:
    stream.seek(offset)
    stream.write(data)


def install(bootloader_path, device_path, stage2_sector=1) -> None:
    """Write the boot sector and stage 2, keeping the timestamp and partition table."""
    if not 0 <= stage2_sector <= 0xFFFFFFFF:
        raise ValueError("stage2 sector must fit in 32 bits")

    image_size = BOOTLOADER_SECTORS * SECTOR_SIZE
    try:
        with open(bootloader_path, "rb") as boot_file:
            image = boot_file.read(image_size)
    except OSError as exc:
        raise InstallError(str(exc)) from exc
    image = image.ljust(image_size, b"\0")

    try:
        device = open(device_path, "r+b")
    except OSError as exc:
        raise InstallError(str(exc)) from exc

    with device:
        timestamp = _read_at(device, TIMESTAMP_OFFSET, TIMESTAMP_SIZE)
        partition_table = _read_at(device, PARTITION_TABLE_OFFSET, PARTITION_TABLE_SIZE)

        _write_at(device, 0, image[:SECTOR_SIZE])
        _write_at(device, stage2_sector * SECTOR_SIZE, image[SECTOR_SIZE:])
        _write_at(device, STAGE2_POINTER_OFFSET, stage2_sector.to_bytes(4, "little"))

        _write_at(device, TIMESTAMP_OFFSET, timestamp)
        _write_at(device, PARTITION_TABLE_OFFSET, partition_table)


def _parse_sector(text: str) -> int:
    match = re.match(r"\s*([+-]?)(\d+)", text)
    if not match:
        return 1
    value = int(match.group(2))
    if match.group(1) == "-":
        value = -value
    return value % (1 << 32)


def main(argv=None) -> int:
    """Command-line entry: <bootloader image> <device> [stage2 start sector]."""
    args = list(sys.argv[1:] if argv is None else argv)
    if len(args) < 2:
        print(f"Usage: {_PROG} <bootloader image> <device> [stage2 start sector]")
        return 1

    stage2_sector = _parse_sector(args[2]) if len(args) >= 3 else 1
    try:
        install(args[0], args[1], stage2_sector)
    except InstallError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0