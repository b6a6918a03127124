# limeboot

A pure-Python toolkit for the parts of a small x86 boot chain. It works on
ordinary disk images and byte strings. It has no dependencies outside the
standard library.

## Modules

- `limeboot.inflate` decompresses data.
  - `inflate(data)` decodes a raw DEFLATE stream. It handles stored,
    fixed-Huffman and dynamic-Huffman blocks.
  - `gunzip(data)` decodes one gzip member. It skips the optional header
    fields. It does not verify the CRC-32 or size trailer.
  - Both functions raise `InflateError` on malformed input. `InflateError` is
    a subclass of `ValueError`.
- `limeboot.installer` writes a boot-loader image into the MBR and the
  sectors that follow it. The module has `install(bootloader_path,
  device_path, stage2_sector=1)`, `InstallError` and `main()`. `main()` is the
  entry point of the `limeboot-install` command.
- `limeboot.disk` reads from a disk image.
  - `Disk(source, sector_size=512)` accepts bytes or a binary file object.
  - It reads in blocks of 16 sectors and keeps the last block cached.
  - `Disk.read(loc, count)` reads bytes at an absolute offset.
    `Disk.read_partition(partition, loc, count)` reads bytes at an offset
    inside a partition.
  - A read past the end of the disk raises `DiskError`.
  - `Partition(first_sector)` locates a partition by its first 512-byte
    sector.
- Filesystem readers. All three are read-only. Each module provides
  `check_signature(disk, partition)` and `open_file(disk, partition, path)`.
  - `limeboot.echfs` returns an `EchfsFile` and raises `EchfsError`.
  - `limeboot.ext2` returns an `Ext2File` and raises `Ext2Error`.
    - It resolves direct blocks, single- and double-indirect blocks, and ext4
      extent trees. Triple-indirect blocks are rejected.
    - `check_signature` raises `Ext2Error` when the filesystem uses
      compression, inline data, meta block groups or encryption.
    - Opening a directory raises `Ext2Error`.
  - `limeboot.fat32` returns a `Fat32File` and raises `Fat32Error`.
    - It matches long file names and 8.3 names. Only the low byte of each
      long-name character is compared.
    - `filename_to_8_3(name)` returns the space-padded short form of a name,
      or `None` when the name has no such form.
  - Every file object has a `size` attribute and a `read(loc, count)` method.
- `limeboot.files.open_file(disk, partition, filename)` probes the partition
  for echfs, then ext2, then FAT32. It opens the file on the first filesystem
  that matches and returns a `FileHandle`. If no filesystem matches, it
  raises `ValueError`.
- `limeboot.libc` has string helpers that follow C semantics.
  - `strcmp` and `strncmp` accept `str` or `bytes` and return -1, 0 or 1.
  - `toupper` and `tolower` change ASCII letters only. They accept a
    character code or a string.
  - `itob(num, base)` writes an unsigned 64-bit number in upper-case digits,
    in any base from 2 to 16.
- `limeboot.vga_text.TextModeConsole` is an in-memory 80x25 VGA text screen.
  - Each cell holds a character byte and an attribute byte.
  - It draws a highlighted cursor and scrolls.
  - It handles `\b`, `\r` and `\n`.
  - Colours are set by ANSI index 0–7 through `set_text_fg` and
    `set_text_bg`.
  - `memory` returns the whole screen buffer. `cell(x, y)` returns a single
    cell.
- `limeboot.vbe` handles video modes and a framebuffer terminal.
  - `colour_blend(fg, bg)` blends two colours.
  - `edid_resolution(edid)` reads the preferred resolution from an EDID
    block.
  - `choose_mode(modes, width, height, bpp, edid)` picks from a list of
    `VbeMode` values.
    - It tries the requested mode first.
    - If no resolution is requested, it uses the EDID resolution or
      1024x768x32 as the request instead.
    - After the request it tries 1024x768, 800x600 and 640x480 at 32 bpp.
    - It raises `VbeError` when nothing matches.
  - `FramebufferTerminal(width, height, colours, ...)` draws a centred grid
    of 8x16 glyphs onto an in-memory 32-bit framebuffer.
    - The font, the background image and the margin gradient are optional.
    - `pixel(x, y)` returns one pixel and `framebuffer` returns all of them.

## Installing

```
pip install .
```

## Installing a boot loader into a disk image

```
limeboot-install limine.bin disk.hdd [stage2-start-sector]
```

The command works as follows:

1. It reads the first 32 KiB of the image. If the image is shorter, it pads
   the data with zeros.
2. It writes the first 512 bytes to sector 0.
3. It writes the remaining 63 sectors starting at the stage-2 sector. The
   default stage-2 sector is 1.
4. It stores the stage-2 sector number at offset `0x1B0`.
5. It puts back the disk's original timestamp (offset 218) and partition
   table (offset 440).

Exit codes:

- Without two arguments, the command prints a usage line and exits with 1.
- If either file cannot be opened, it exits with 1.

From Python:

```python
from limeboot.installer import install

install("limine.bin", "disk.hdd", 1)
```

## Reading a file from a partition

```python
from limeboot.disk import Disk, Partition
from limeboot.files import open_file

with open("disk.hdd", "rb") as image:
    disk = Disk(image)
    handle = open_file(disk, Partition(first_sector=2048), "/boot/kernel.elf")
    data = handle.read(0, handle.size)
```

## Decompressing

```python
from limeboot.inflate import gunzip

with open("stage2.bin.gz", "rb") as f:
    payload = gunzip(f.read())
```

## What it does not do

- It does not read partition tables. You must give the first sector of a
  partition yourself.
- It does not load or start a kernel.
- It does not build or parse the structures a boot loader hands to a kernel.
- It does not manage physical memory.
- The text console and the framebuffer terminal are models in memory. They
  never drive real video hardware.

## Running the tests

```
pip install .[test]
pytest
```