[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "limeboot"
version = "0.5.0"
description = "Boot-loader toolkit: gzip inflate, MBR installer, echfs/ext2/FAT32 readers and text consoles"
requires-python = ">=3.10"
dependencies = []
keywords = ["bootloader", "inflate", "gzip", "mbr", "fat32", "ext2", "echfs", "vga", "vbe"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Boot",
    "Topic :: System :: Filesystems",
    "Topic :: System :: Archiving :: Compression",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
limeboot-install = "limeboot.installer:main"

[tool.hatch.build.targets.wheel]
packages = ["limeboot"]

[tool.pytest.ini_options]
addopts = "-ra"
