"""VESA video mode selection and a text terminal drawn onto a framebuffer."""

from __future__ import annotations

import math
from dataclasses import dataclass
from itertools import chain
from typing import Callable, Iterable, NamedTuple, Optional, Sequence, Union

__all__ = [
    "FONT_WIDTH",
    "FONT_HEIGHT",
    "CURSOR_FG",
    "CURSOR_BG",
    "DEFAULT_RESOLUTION",
    "FALLBACK_RESOLUTIONS",
    "VbeError",
    "VbeMode",
    "colour_blend",
    "edid_resolution",
    "choose_mode",
    "FramebufferTerminal",
]

FONT_WIDTH = 8
FONT_HEIGHT = 16
FONT_GLYPHS = 256
FONT_SIZE = FONT_HEIGHT * FONT_GLYPHS

CURSOR_FG = 0x00000000
CURSOR_BG = 0x00FFFFFF

DEFAULT_RESOLUTION = (1024, 768, 32)
FALLBACK_RESOLUTIONS = (
    (1024, 768, 32),
    (800, 600, 32),
    (640, 480, 32),
)

_EDID_DETAILED_TIMING = 54
_EDID_DESCRIPTOR_SIZE = 18

Background = Callable[[int, int], int]


class VbeError(Exception):
    """Raised when no usable video mode exists or EDID data is malformed."""


@dataclass(frozen=True)
class VbeMode:
    """A video mode offered by the display adapter."""

    number: int
    width: int
    height: int
    bpp: int
    pitch: int = 0
    framebuffer: int = 0


def _alpha(c: int) -> int:
    return (c >> 24) & 0xFF


def _red(c: int) -> int:
    return (c >> 16) & 0xFF


def _green(c: int) -> int:
    return (c >> 8) & 0xFF


def _blue(c: int) -> int:
    return c & 0xFF


def colour_blend(fg: int, bg: int) -> int:
    """Blend fg over bg; the top byte of fg is its transparency (0 = opaque)."""
    alpha = 255 - _alpha(fg)
    inv_alpha = _alpha(fg) + 1
    r = ((alpha * _red(fg) + inv_alpha * _red(bg)) // 256) & 0xFF
    g = ((alpha * _green(fg) + inv_alpha * _green(bg)) // 256) & 0xFF
    b = ((alpha * _blue(fg) + inv_alpha * _blue(bg)) // 256) & 0xFF
    return (r << 16) | (g << 8) | b


def edid_resolution(edid: Optional[bytes]) -> Optional[tuple[int, int]]:
    """Preferred (width, height) from the first detailed timing of an EDID block."""
    if edid is None:
        return None
    data = bytes(edid)
    end = _EDID_DETAILED_TIMING + _EDID_DESCRIPTOR_SIZE
    if len(data) < end:
        raise VbeError("EDID block too short")
    desc = data[_EDID_DETAILED_TIMING:end]
    width = desc[2] + ((desc[4] & 0xF0) << 4)
    height = desc[5] + ((desc[7] & 0xF0) << 4)
    if width and height:
        return width, height
    return None


def choose_mode(
    modes: Iterable[VbeMode],
    width: int = 0,
    height: int = 0,
    bpp: int = 0,
    edid: Optional[bytes] = None,
) -> VbeMode:
    """Pick the mode matching the request, or else the first matching fallback."""
    available = list(modes)
    if not (width and height and bpp):
        width, height, bpp = DEFAULT_RESOLUTION
        found = edid_resolution(edid)
        if found:
            width, height = found

    for target in chain([(width, height, bpp)], FALLBACK_RESOLUTIONS):
        for mode in available:
            if (mode.width, mode.height, mode.bpp) == target:
                return mode
    raise VbeError("Could not set a video mode")


class _Cell(NamedTuple):
    code: int
    fg: int
    bg: int


class FramebufferTerminal:
    """A character grid centred on a 32-bit framebuffer, with cursor and scrolling."""

    def __init__(
        self,
        width: int,
        height: int,
        colours: Sequence[int],
        margin: int = 0,
        margin_gradient: int = 0,
        background: Optional[Background] = None,
        font: Optional[bytes] = None,
        pitch: Optional[int] = None,
    ) -> None:
        if len(colours) != 8:
            raise ValueError("exactly eight ANSI colours are needed")
        if width <= 0 or height <= 0:
            raise ValueError("framebuffer dimensions must be positive")
        if margin < 0 or margin_gradient < 0:
            raise ValueError("margins must not be negative")

        self.width = width
        self.height = height
        self.pitch = width * 4 if pitch is None else pitch
        if self.pitch < width * 4:
            raise ValueError("pitch is smaller than a row of pixels")
        self._fb = [0] * ((self.pitch // 4) * height)

        # Without a font every glyph is blank.
        self._font = bytes(FONT_SIZE) if font is None else bytes(font)
        if len(self._font) < FONT_SIZE:
            raise ValueError(f"font must hold {FONT_SIZE} bytes")

        self.cols = (width - margin * 2) // FONT_WIDTH
        self.rows = (height - margin * 2) // FONT_HEIGHT
        if self.cols <= 0 or self.rows <= 0:
            raise ValueError("framebuffer too small for a single character")

        self._colours = tuple(colours)
        self.text_bg = self._colours[0]
        self.text_fg = self._colours[7]
        self.margin_gradient = margin_gradient
        self._background = background
        self._grid = [_Cell(0, 0, 0)] * (self.rows * self.cols)

        self._frame_y = height // 2 - (FONT_HEIGHT * self.rows) // 2
        self._frame_x = width // 2 - (FONT_WIDTH * self.cols) // 2

        self.cursor_enabled = True
        self._cx = 0
        self._cy = 0

        self._plot_background(0, 0, width, height)
        self.clear(True)

    @property
    def framebuffer(self) -> list[int]:
        """A copy of the framebuffer, one 32-bit value per pixel slot."""
        return list(self._fb)

    def pixel(self, x: int, y: int) -> int:
        """The colour at pixel (x, y)."""
        if not (0 <= x < self.width and 0 <= y < self.height):
            raise ValueError(f"pixel ({x}, {y}) is off the framebuffer")
        return self._fb[x + (self.pitch // 4) * y]

    def _plot_px(self, x: int, y: int, colour: int) -> None:
        self._fb[x + (self.pitch // 4) * y] = colour

    def _plot_bg_blent_px(self, x: int, y: int, colour: int) -> None:
        if self._background is None:
            self._plot_px(x, y, colour)
        else:
            self._plot_px(x, y, colour_blend(colour, self._background(x, y)))

    def _gradient_from_box(self, x: int, y: int, colour: int) -> int:
        box_right = self._frame_x + FONT_WIDTH * self.cols
        box_bottom = self._frame_y + FONT_HEIGHT * self.rows
        in_cols = self._frame_x <= x < box_right
        in_rows = self._frame_y <= y < box_bottom
        if in_cols and in_rows:
            return colour

        assert self._background is not None
        bg_px = self._background(x, y)
        if self.margin_gradient == 0:
            return bg_px

        x_distance = self._frame_x - x if x < self._frame_x else x - box_right
        y_distance = self._frame_y - y if y < self._frame_y else y - box_bottom
        if in_cols:
            distance = y_distance
        elif in_rows:
            distance = x_distance
        else:
            distance = math.isqrt(x_distance * x_distance + y_distance * y_distance)

        if distance > self.margin_gradient:
            return bg_px

        step = ((0xFF - _alpha(colour)) // self.margin_gradient) & 0xFF
        new_alpha = (_alpha(colour) + step * distance) & 0xFF
        return colour_blend((colour & 0xFFFFFF) | (new_alpha << 24), bg_px)

    def _plot_background(self, x: int, y: int, width: int, height: int) -> None:
        for yy in range(height):
            for xx in range(width):
                if self._background is None:
                    colour = self.text_bg
                else:
                    colour = self._gradient_from_box(xx, yy, self.text_bg)
                self._plot_px(x + xx, y + yy, colour)

    def _plot_char(self, cell: _Cell, x: int, y: int) -> None:
        glyph = self._font[cell.code * FONT_HEIGHT:(cell.code + 1) * FONT_HEIGHT]
        for i, row in enumerate(glyph):
            for j in range(FONT_WIDTH):
                colour = cell.fg if row & (0x80 >> j) else cell.bg
                self._plot_bg_blent_px(x + j, y + i, colour)

    def _cell_origin(self, cx: int, cy: int) -> tuple[int, int]:
        return cx * FONT_WIDTH + self._frame_x, cy * FONT_HEIGHT + self._frame_y

    def _plot_char_grid(self, cell: _Cell, cx: int, cy: int) -> None:
        self._plot_char(cell, *self._cell_origin(cx, cy))
        self._grid[cx + cy * self.cols] = cell

    def _clear_cursor(self) -> None:
        if self.cursor_enabled:
            cell = self._grid[self._cx + self._cy * self.cols]
            self._plot_char(cell, *self._cell_origin(self._cx, self._cy))

    def _draw_cursor(self) -> None:
        if self.cursor_enabled:
            cell = self._grid[self._cx + self._cy * self.cols]
            shown = _Cell(cell.code, CURSOR_FG, CURSOR_BG)
            self._plot_char(shown, *self._cell_origin(self._cx, self._cy))

    def _empty(self) -> _Cell:
        return _Cell(ord(" "), self.text_fg, self.text_bg)

    def _scroll(self) -> None:
        self._clear_cursor()
        total = self.rows * self.cols
        for i in range(self.cols, total):
            dest = i - self.cols
            self._plot_char_grid(self._grid[i], dest % self.cols, dest // self.cols)
        empty = self._empty()
        for i in range(total - self.cols, total):
            self._plot_char_grid(empty, i % self.cols, i // self.cols)
        self._draw_cursor()

    def clear(self, move: bool) -> None:
        """Blank every cell, moving the cursor home if move is true."""
        self._clear_cursor()
        empty = self._empty()
        for i in range(self.rows * self.cols):
            self._plot_char_grid(empty, i % self.cols, i // self.cols)
        if move:
            self._cx = 0
            self._cy = 0
        self._draw_cursor()

    def enable_cursor(self) -> None:
        self.cursor_enabled = True
        self._draw_cursor()

    def disable_cursor(self) -> None:
        self._clear_cursor()
        self.cursor_enabled = False

    def set_cursor_pos(self, x: int, y: int) -> None:
        if not (0 <= x < self.cols and 0 <= y < self.rows):
            raise ValueError(f"position ({x}, {y}) is off the screen")
        self._clear_cursor()
        self._cx = x
        self._cy = y
        self._draw_cursor()

    def get_cursor_pos(self) -> tuple[int, int]:
        """The cursor position as (column, row)."""
        return self._cx, self._cy

    def set_text_fg(self, fg: int) -> None:
        """Set the foreground to one of the eight ANSI colours."""
        if not 0 <= fg < len(self._colours):
            raise ValueError(f"colour index {fg} out of range")
        self.text_fg = self._colours[fg]

    def set_text_bg(self, bg: int) -> None:
        """Set the background to one of the eight ANSI colours."""
        if not 0 <= bg < len(self._colours):
            raise ValueError(f"colour index {bg} out of range")
        self.text_bg = self._colours[bg]

    def putchar(self, c: Union[str, int]) -> None:
        """Write one character, handling backspace, carriage return and newline."""
        code = ord(c) if isinstance(c, str) else c
        if not 0 <= code < FONT_GLYPHS:
            raise ValueError(f"character {c!r} is not in the font")

        if code == ord("\b"):
            if self._cx or self._cy:
                self._clear_cursor()
                if self._cx:
                    self._cx -= 1
                else:
                    self._cy -= 1
                    self._cx = self.cols - 1
                self._draw_cursor()
        elif code == ord("\r"):
            self.set_cursor_pos(0, self._cy)
        elif code == ord("\n"):
            if self._cy == self.rows - 1:
                self.set_cursor_pos(0, self.rows - 1)
                self._scroll()
            else:
                self.set_cursor_pos(0, self._cy + 1)
        else:
            self._clear_cursor()
            self._plot_char_grid(_Cell(code, self.text_fg, self.text_bg), self._cx, self._cy)
            self._cx += 1
            if self._cx == self.cols:
                self._cx = 0
                self._cy += 1
            if self._cy == self.rows:
                self._cy -= 1
                self._scroll()
            self._draw_cursor()

    def write(self, text: str) -> None:
        """Write every character of text."""
        for ch in text:
            self.putchar(ch)