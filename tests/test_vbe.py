import pytest

from limeboot.vbe import (
    CURSOR_BG,
    CURSOR_FG,
    FramebufferTerminal,
    VbeError,
    VbeMode,
    choose_mode,
    colour_blend,
    edid_resolution,
)

COLOURS = [
    0x000000,
    0x0000AA,
    0x00AA00,
    0x00AAAA,
    0xAA0000,
    0xAA00AA,
    0xAAAA00,
    0xAAAAAA,
]


def make_font():
    font = bytearray(4096)
    font[ord("A") * 16:(ord("A") + 1) * 16] = b"\xff" * 16
    return bytes(font)


FONT = make_font()


def make_term(**kwargs):
    # 32x32 pixels: 4 columns, 2 rows, frame at the origin.
    return FramebufferTerminal(32, 32, COLOURS, font=FONT, **kwargs)


def make_edid(width, height):
    data = bytearray(128)
    d = 54
    data[d + 2] = width & 0xFF
    data[d + 4] = (width >> 8) << 4
    data[d + 5] = height & 0xFF
    data[d + 7] = (height >> 8) << 4
    return bytes(data)


# colour_blend


def test_blend_opaque_same_colour_is_unchanged():
    assert colour_blend(0x00123456, 0x00123456) == 0x123456


def test_blend_fully_transparent_gives_background():
    assert colour_blend(0xFF00FF00, 0x00123456) == 0x123456


def test_blend_clears_alpha_byte():
    assert colour_blend(0x80FFFFFF, 0xFF000000) >> 24 == 0


# edid_resolution


def test_edid_resolution_reads_detailed_timing():
    assert edid_resolution(make_edid(1920, 1080)) == (1920, 1080)


def test_edid_resolution_zero_is_none():
    assert edid_resolution(make_edid(0, 0)) is None
    assert edid_resolution(None) is None


def test_edid_resolution_short_block():
    with pytest.raises(VbeError):
        edid_resolution(b"\0" * 10)


# choose_mode

MODES = [
    VbeMode(0x100, 640, 480, 32),
    VbeMode(0x101, 800, 600, 32),
    VbeMode(0x102, 1280, 1024, 32),
]


def test_choose_exact_match():
    assert choose_mode(MODES, 1280, 1024, 32).number == 0x102


def test_choose_falls_back_in_order():
    assert choose_mode(MODES, 1600, 1200, 32).number == 0x101


def test_choose_default_without_edid_uses_fallbacks():
    modes = MODES + [VbeMode(0x200, 1024, 768, 32)]
    assert choose_mode(modes).number == 0x200


def test_choose_uses_edid_when_unrequested():
    modes = MODES + [VbeMode(0x200, 1024, 768, 32)]
    assert choose_mode(modes, edid=make_edid(1280, 1024)).number == 0x102


def test_choose_no_mode_raises():
    with pytest.raises(VbeError):
        choose_mode([VbeMode(1, 320, 200, 8)], 1280, 1024, 32)


# FramebufferTerminal


def test_initial_screen_has_cursor_at_home():
    term = make_term()
    assert term.get_cursor_pos() == (0, 0)
    assert (term.cols, term.rows) == (4, 2)
    assert term.pixel(0, 0) == CURSOR_BG
    assert term.pixel(8, 0) == COLOURS[0]


def test_write_draws_glyph_in_foreground():
    term = make_term()
    term.write("A")
    assert term.pixel(0, 0) == COLOURS[7]
    assert term.pixel(7, 15) == COLOURS[7]
    assert term.get_cursor_pos() == (1, 0)
    assert term.pixel(8, 0) == CURSOR_BG


def test_line_wrap():
    term = make_term()
    term.write("AAAA")
    assert term.get_cursor_pos() == (0, 1)


def test_newline_on_last_row_scrolls():
    term = make_term()
    term.write("A\n")
    assert term.get_cursor_pos() == (0, 1)
    assert term.pixel(0, 0) == COLOURS[7]
    term.write("\n")
    assert term.get_cursor_pos() == (0, 1)
    assert term.pixel(0, 0) == COLOURS[0]


def test_full_screen_scrolls_content_up():
    term = make_term()
    term.write("A" * 8)
    assert term.get_cursor_pos() == (0, 1)
    assert term.pixel(0, 0) == COLOURS[7]
    assert term.pixel(0, 16) == CURSOR_BG


def test_backspace_moves_to_previous_row():
    term = make_term()
    term.set_cursor_pos(0, 1)
    term.putchar("\b")
    assert term.get_cursor_pos() == (term.cols - 1, 0)


def test_backspace_at_home_stays():
    term = make_term()
    term.putchar("\b")
    assert term.get_cursor_pos() == (0, 0)


def test_carriage_return_shows_cursor_over_glyph():
    term = make_term()
    term.write("AA\r")
    assert term.get_cursor_pos() == (0, 0)
    assert term.pixel(0, 0) == CURSOR_FG
    assert term.pixel(8, 0) == COLOURS[7]


def test_disable_and_enable_cursor():
    term = make_term()
    term.disable_cursor()
    assert term.pixel(0, 0) == COLOURS[0]
    term.enable_cursor()
    assert term.pixel(0, 0) == CURSOR_BG


def test_text_colours():
    term = make_term()
    term.set_text_fg(2)
    term.write("A")
    assert term.pixel(0, 0) == COLOURS[2]
    term.set_text_bg(4)
    term.write(" ")
    assert term.pixel(8, 0) == COLOURS[4]


def test_colour_index_out_of_range():
    term = make_term()
    with pytest.raises(ValueError):
        term.set_text_fg(8)
    with pytest.raises(ValueError):
        term.set_text_bg(-1)


def test_clear_keeps_or_homes_cursor():
    term = make_term()
    term.write("AA")
    term.clear(False)
    assert term.get_cursor_pos() == (2, 0)
    assert term.pixel(0, 0) == COLOURS[0]
    term.clear(True)
    assert term.get_cursor_pos() == (0, 0)


def test_set_cursor_pos_off_screen():
    term = make_term()
    with pytest.raises(ValueError):
        term.set_cursor_pos(4, 0)


def test_background_outside_frame():
    term = FramebufferTerminal(
        40, 40, COLOURS, margin=4, background=lambda x, y: 0x123456, font=FONT
    )
    assert term.pixel(0, 0) == 0x123456
    assert term.pixel(12, 4) == colour_blend(COLOURS[0], 0x123456)


def test_wide_pitch():
    term = make_term(pitch=256)
    assert len(term.framebuffer) == 64 * 32
    term.write("A")
    assert term.pixel(7, 15) == COLOURS[7]


def test_invalid_construction():
    with pytest.raises(ValueError):
        FramebufferTerminal(4, 4, COLOURS)
    with pytest.raises(ValueError):
        FramebufferTerminal(32, 32, COLOURS[:3])


def test_character_outside_font():
    term = make_term()
    with pytest.raises(ValueError):
        term.putchar("\u4e2d")