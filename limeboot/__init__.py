"""Boot-loader toolkit: inflate, MBR installer, disk and filesystem readers, string helpers and consoles."""

__version__ = "0.5.0"