"""An 80x25 VGA text-mode console kept in a byte buffer."""

from __future__ import annotations

from typing import Union

__all__ = ["ANSI_COLOURS", "TextModeConsole"]

VD_COLS = 80 * 2  # bytes per row: character and attribute
VD_ROWS = 25
VIDEO_BOTTOM = VD_ROWS * VD_COLS - 1

# VGA attribute values for the eight ANSI colours.
ANSI_COLOURS = (0, 4, 2, 0x0E, 1, 5, 3, 7)


class TextModeConsole:
    """Character cells with attributes, a highlighted cursor and scrolling."""

    def __init__(self) -> None:
        self._mem = bytearray(VD_ROWS * VD_COLS)
        self._offset = 0
        self.cursor_enabled = True
        self.text_palette = 0x07
        self.cursor_palette = 0x70
        self.rows = VD_ROWS
        self.cols = VD_COLS // 2
        self.clear(True)

    @property
    def memory(self) -> bytes:
        """The video memory: a character byte then an attribute byte per cell."""
        return bytes(self._mem)

    def cell(self, x: int, y: int) -> tuple[str, int]:
        """Character and attribute of the cell at column x, row y."""
        self._check_pos(x, y)
        pos = y * VD_COLS + x * 2
        return chr(self._mem[pos]), self._mem[pos + 1]

    def _check_pos(self, x: int, y: int) -> None:
        if not (0 <= x < self.cols and 0 <= y < self.rows):
            raise ValueError(f"position ({x}, {y}) is off the screen")

    def _clear_cursor(self) -> None:
        self._mem[self._offset + 1] = self.text_palette

    def _draw_cursor(self) -> None:
        if self.cursor_enabled:
            self._mem[self._offset + 1] = self.cursor_palette

    def _scroll(self) -> None:
        self._mem[: VIDEO_BOTTOM - VD_COLS + 1] = self._mem[VD_COLS:]
        last_row = VIDEO_BOTTOM + 1 - VD_COLS
        self._mem[last_row:] = bytes([ord(" "), self.text_palette]) * (VD_COLS // 2)

    def _row(self) -> int:
        return self._offset // VD_COLS

    def clear(self, move: bool) -> None:
        """Blank the screen, moving the cursor home if move is true."""
        self._clear_cursor()
        self._mem[:] = bytes([ord(" "), self.text_palette]) * (VD_ROWS * VD_COLS // 2)
        if move:
            self._offset = 0
        self._draw_cursor()

    def enable_cursor(self) -> None:
        self.cursor_enabled = True
        self._draw_cursor()

    def disable_cursor(self) -> None:
        self.cursor_enabled = False
        self._clear_cursor()

    def get_cursor_pos(self) -> tuple[int, int]:
        """The cursor position as (column, row)."""
        return (self._offset % VD_COLS) // 2, self._offset // VD_COLS

    def set_cursor_pos(self, x: int, y: int) -> None:
        self._check_pos(x, y)
        self._clear_cursor()
        self._offset = y * VD_COLS + x * 2
        self._draw_cursor()

    def set_text_fg(self, fg: int) -> None:
        """Set the foreground to one of the eight ANSI colours."""
        if not 0 <= fg < len(ANSI_COLOURS):
            raise ValueError(f"colour index {fg} out of range")
        self.text_palette = (self.text_palette & 0xF0) | ANSI_COLOURS[fg]

    def set_text_bg(self, bg: int) -> None:
        """Set the background to one of the eight ANSI colours."""
        if not 0 <= bg < len(ANSI_COLOURS):
            raise ValueError(f"colour index {bg} out of range")
        self.text_palette = (self.text_palette & 0x0F) | (ANSI_COLOURS[bg] << 4)

    def putchar(self, c: Union[str, int]) -> None:
        """Write one character, handling backspace, carriage return and newline."""
        code = ord(c) if isinstance(c, str) else c
        if not 0 <= code <= 0xFF:
            raise ValueError(f"character {c!r} cannot be shown in text mode")

        if code == ord("\b"):
            if self._offset:
                self._clear_cursor()
                self._offset -= 2
                self._draw_cursor()
        elif code == ord("\r"):
            self.set_cursor_pos(0, self._row())
        elif code == ord("\n"):
            if self._row() == VD_ROWS - 1:
                self._clear_cursor()
                self._scroll()
                self.set_cursor_pos(0, VD_ROWS - 1)
            else:
                self.set_cursor_pos(0, self._row() + 1)
        else:
            self._clear_cursor()
            self._mem[self._offset] = code
            if self._offset >= VIDEO_BOTTOM - 1:
                self._scroll()
                self._offset = VIDEO_BOTTOM - (VD_COLS - 1)
            else:
                self._offset += 2
            self._draw_cursor()

    def write(self, text: str) -> None:
        """Write every character of text."""
        for ch in text:
            self.putchar(ch)