"""Tests for TerminalEmulator - pyte-backed byte stream to cell grid.

DIMENSION ORDERING: the emulator takes (rows, cols) = (HEIGHT, WIDTH)
everywhere, same as the PTY winsize struct. pyte's own order is the
opposite; these tests pin the conversion down.
"""

import random
from unittest.mock import Mock

import pytest

from agentdeck.core.screen import CellAttrs, TermColor
from agentdeck.core.term_emulator import (
    TerminalEmulator,
    color_from_pyte,
    normalize_sequences,
)


def make(rows=5, cols=10, **kwargs) -> TerminalEmulator:
    return TerminalEmulator(rows=rows, cols=cols, **kwargs)


def lines(emu: TerminalEmulator):
    return emu.snapshot().text().split("\n")


class TestConstruction:
    def test_blank_screen(self):
        emu = make()
        snap = emu.snapshot()
        assert (snap.rows, snap.cols) == (5, 10)
        assert snap.cursor == (0, 0)
        assert snap.cursor_visible is True
        assert all(len(row) == 10 for row in snap.lines)
        assert snap.text() == "\n" * 4

    def test_pyte_dimension_order(self):
        """REGRESSION: pyte takes (columns, lines); we take (rows, cols)."""
        emu = TerminalEmulator(rows=39, cols=175)
        assert emu._screen.columns == 175
        assert emu._screen.lines == 39
        emu.resize(20, 100)
        assert (emu._screen.lines, emu._screen.columns) == (20, 100)

    @pytest.mark.parametrize("rows,cols", [(0, 10), (5, 0), (-1, -1)])
    def test_non_positive_size_rejected(self, rows, cols):
        with pytest.raises(ValueError):
            TerminalEmulator(rows=rows, cols=cols)


class TestPrinting:
    def test_printable_row(self):
        emu = make()
        emu.feed(b"hello")
        assert lines(emu)[0] == "hello"
        assert emu.cursor == (0, 5)

    def test_str_input_accepted(self):
        emu = make()
        emu.feed("héllo")
        assert lines(emu)[0] == "héllo"

    def test_deferred_autowrap(self):
        emu = make(rows=3, cols=5)
        emu.feed(b"abcde")
        # Cursor parks on the last column until the next printable arrives.
        assert emu.cursor == (0, 4)
        emu.feed(b"f")
        assert lines(emu)[:2] == ["abcde", "f"]
        assert emu.cursor == (1, 1)

    def test_carriage_return_cancels_pending_wrap(self):
        emu = make(rows=3, cols=5)
        emu.feed(b"abcde\rX")
        assert lines(emu)[0] == "Xbcde"
        assert emu.cursor == (0, 1)

    def test_autowrap_disabled(self):
        emu = make(rows=3, cols=5)
        emu.feed(b"\x1b[?7labcdefg")
        assert lines(emu)[:2] == ["abcdg", ""]

    def test_wide_character_takes_two_cells(self):
        emu = make()
        emu.feed("中x".encode("utf-8"))
        snap = emu.snapshot()
        assert snap.cell(0, 0).char == "中"
        assert snap.cell(0, 1).char == ""
        assert snap.cell(0, 2).char == "x"
        assert emu.cursor == (0, 3)

    def test_wide_character_in_last_column_is_blanked(self):
        emu = make(rows=3, cols=5)
        emu.feed("abcd中".encode("utf-8"))
        snap = emu.snapshot()
        assert snap.row_text(0) == "abcd "
        assert all(cell.char != "中" for cell in snap.lines[0])

    def test_overwritten_wide_character_leaves_no_stub(self):
        emu = make()
        emu.feed("中".encode("utf-8") + b"\rx")
        snap = emu.snapshot()
        assert snap.cell(0, 0).char == "x"
        assert snap.cell(0, 1).char == " "

    def test_combining_mark_joins_previous_cell(self):
        emu = make()
        emu.feed("e\u0301x".encode("utf-8"))
        snap = emu.snapshot()
        # Composed to NFC when joined.
        assert snap.cell(0, 0).char == "\u00e9"
        assert snap.cell(0, 1).char == "x"

    def test_utf8_split_across_feeds(self):
        emu = make()
        data = "é中".encode("utf-8")
        for byte in data:
            emu.feed(bytes([byte]))
        assert emu.snapshot().cell(0, 0).char == "é"
        assert emu.snapshot().cell(0, 1).char == "中"

    def test_invalid_utf8_becomes_replacement_character(self):
        emu = make()
        emu.feed(b"a\xffb")
        assert lines(emu)[0] == "a�b"

    def test_tab_stops_every_eight_columns(self):
        emu = make(cols=20)
        emu.feed(b"a\tb")
        assert emu.snapshot().cell(0, 8).char == "b"

    def test_tab_clamps_to_last_column(self):
        emu = make(cols=10)
        emu.feed(b"\t\t\t")
        assert emu.cursor == (0, 9)

    def test_tab_stops_extend_after_growing(self):
        emu = make(cols=10)
        emu.resize(5, 30)
        emu.feed(b"\t\t")
        assert emu.cursor == (0, 16)

    def test_backspace(self):
        emu = make()
        emu.feed(b"ab\x08c")
        assert lines(emu)[0] == "ac"


class TestScrolling:
    def test_linefeed_at_bottom_scrolls(self):
        emu = make(rows=3, cols=5)
        emu.feed(b"a\r\nb\r\nc\r\nd")
        assert lines(emu) == ["b", "c", "d"]
        assert emu.cursor == (2, 1)
        assert emu.scrollback_len == 1

    def test_scrollback_is_capped(self):
        emu = make(rows=3, cols=5, scrollback_limit=4)
        for i in range(20):
            emu.feed(f"{i}\r\n".encode())
        assert emu.scrollback_len == 4

    def test_scroll_offset_shows_history(self):
        emu = make(rows=3, cols=5)
        emu.feed(b"1\r\n2\r\n3\r\n4\r\n5")
        snap = emu.snapshot(scroll_offset=2)
        assert snap.text().split("\n") == ["1", "2", "3"]
        assert snap.cursor_visible is False
        assert snap.scroll_offset == 2

    def test_scroll_offset_is_clamped(self):
        emu = make(rows=3, cols=5)
        emu.feed(b"1\r\n2\r\n3\r\n4")
        assert emu.snapshot(scroll_offset=99).scroll_offset == emu.scrollback_len

    def test_scroll_region(self):
        emu = make(rows=4, cols=5)
        emu.feed(b"top\x1b[2;3r\x1b[2;1Ha\r\nb\r\nc")
        assert lines(emu) == ["top", "b", "c", ""]
        # Rows scrolled out of a region that does not start at the top stay out of history.
        assert emu.scrollback_len == 0

    def test_reverse_index_at_top_scrolls_down(self):
        emu = make(rows=3, cols=5)
        emu.feed(b"a\r\nb\x1b[H\x1bM")
        assert lines(emu) == ["", "a", "b"]

    def test_scroll_up_and_down_sequences(self):
        emu = make(rows=3, cols=5)
        emu.feed(b"a\r\nb\r\nc\x1b[S")
        assert lines(emu) == ["b", "c", ""]
        emu.feed(b"\x1b[2T")
        assert lines(emu) == ["", "", "b"]

    def test_insert_and_delete_lines(self):
        emu = make(rows=3, cols=5)
        emu.feed(b"a\r\nb\r\nc\x1b[2H\x1b[L")
        assert lines(emu) == ["a", "", "b"]
        emu.feed(b"\x1b[M")
        assert lines(emu) == ["a", "b", ""]

    def test_erase_display_3_clears_scrollback(self):
        emu = make(rows=2, cols=5)
        emu.feed(b"a\r\nb\r\nc")
        assert emu.scrollback_len == 1
        generation = emu.generation
        emu.feed(b"\x1b[3J")
        assert emu.scrollback_len == 0
        assert lines(emu) == ["b", "c"]
        assert emu.generation > generation


class TestCursorMovement:
    def test_cursor_position_is_one_based(self):
        emu = make()
        emu.feed(b"\x1b[3;4HX")
        assert emu.snapshot().cell(2, 3).char == "X"

    def test_moves_are_clamped(self):
        emu = make(rows=5, cols=10)
        emu.feed(b"\x1b[99;99H")
        assert emu.cursor == (4, 9)
        emu.feed(b"\x1b[99A\x1b[99D")
        assert emu.cursor == (0, 0)

    def test_relative_moves(self):
        emu = make()
        emu.feed(b"\x1b[2B\x1b[3C")
        assert emu.cursor == (2, 3)
        emu.feed(b"\x1b[A\x1b[2D")
        assert emu.cursor == (1, 1)

    def test_column_and_line_absolute(self):
        emu = make()
        emu.feed(b"\x1b[5G\x1b[3d")
        assert emu.cursor == (2, 4)

    def test_next_line_returns_carriage(self):
        emu = make()
        emu.feed(b"abc\x1bEd")
        assert lines(emu)[:2] == ["abc", "d"]

    def test_save_and_restore_cursor(self):
        emu = make()
        emu.feed(b"\x1b[2;3H\x1b7\x1b[H\x1b8")
        assert emu.cursor == (1, 2)
        emu.feed(b"\x1b[4;5H\x1b[s\x1b[H\x1b[u")
        assert emu.cursor == (3, 4)

    def test_cursor_move_bumps_generation(self):
        emu = make()
        generation = emu.generation
        emu.feed(b"\x1b[3;3H")
        assert emu.generation > generation


class TestErasing:
    def test_erase_to_end_of_line(self):
        emu = make()
        emu.feed(b"hello\x1b[1;3H\x1b[K")
        assert lines(emu)[0] == "he"

    def test_erase_whole_display(self):
        emu = make()
        emu.feed(b"abc\r\ndef\x1b[2J")
        assert emu.snapshot().text().strip() == ""

    def test_erase_and_delete_characters(self):
        emu = make()
        emu.feed(b"abcdef\x1b[1;2H\x1b[2X")
        assert lines(emu)[0] == "a  def"
        emu.feed(b"\x1b[2P")
        assert lines(emu)[0] == "adef"
        emu.feed(b"\x1b[2@")
        assert lines(emu)[0] == "a  def"

    def test_erase_uses_current_background(self):
        emu = make()
        emu.feed(b"\x1b[44m\x1b[2K")
        assert emu.snapshot().cell(0, 5).bg == TermColor.indexed(4)


class TestAttributes:
    def test_bold_red_then_reset(self):
        emu = make()
        emu.feed(b"\x1b[1;31mX\x1b[0mY")
        snap = emu.snapshot()
        x, y = snap.cell(0, 0), snap.cell(0, 1)
        assert x.char == "X"
        assert x.bold
        assert x.fg == TermColor.indexed(1)
        assert y.attrs == CellAttrs.NONE
        assert y.fg.is_default

    def test_attributes_combine_and_clear_individually(self):
        emu = make()
        emu.feed(b"\x1b[1;3;4;7mA\x1b[22;27mB")
        snap = emu.snapshot()
        assert snap.cell(0, 0).attrs == (
            CellAttrs.BOLD | CellAttrs.ITALIC | CellAttrs.UNDERLINE | CellAttrs.INVERSE
        )
        assert snap.cell(0, 1).attrs == CellAttrs.ITALIC | CellAttrs.UNDERLINE

    def test_256_and_truecolor(self):
        emu = make()
        emu.feed(b"\x1b[38;2;10;20;30;48;5;200mX")
        cell = emu.snapshot().cell(0, 0)
        assert cell.fg == TermColor.rgb(10, 20, 30)
        # pyte resolves palette indexes to their xterm RGB value.
        assert cell.bg == TermColor.rgb(0xFF, 0x00, 0xD7)

    def test_private_sgr_is_ignored(self):
        emu = make()
        emu.feed(b"\x1b[>4;1mX")
        cell = emu.snapshot().cell(0, 0)
        assert cell.attrs == CellAttrs.NONE
        assert cell.char == "X"

    def test_kitty_keyboard_sequences_are_ignored(self):
        emu = make()
        emu.feed(b"\x1b[2;2H\x1b[>1u\x1b[<uX")
        assert emu.cursor == (1, 2)
        assert emu.snapshot().cell(1, 1).char == "X"
        assert "u" not in emu.snapshot().text()

    def test_default_color_codes(self):
        emu = make()
        emu.feed(b"\x1b[31;41m\x1b[39;49mX")
        cell = emu.snapshot().cell(0, 0)
        assert cell.fg.is_default and cell.bg.is_default


class TestColonSubParameters:
    def test_truecolor_with_empty_colorspace(self):
        emu = make()
        emu.feed(b"\x1b[38:2::10:20:30mX")
        cell = emu.snapshot().cell(0, 0)
        assert cell.fg == TermColor.rgb(10, 20, 30)
        assert cell.attrs == CellAttrs.NONE

    def test_truecolor_without_colorspace(self):
        emu = make()
        emu.feed(b"\x1b[48:2:1:2:3;1mX")
        cell = emu.snapshot().cell(0, 0)
        assert cell.bg == TermColor.rgb(1, 2, 3)
        assert cell.attrs == CellAttrs.BOLD

    def test_indexed_color(self):
        emu = make()
        emu.feed(b"\x1b[38:5:200mX")
        assert emu.snapshot().cell(0, 0).fg == TermColor.rgb(0xFF, 0x00, 0xD7)

    def test_underline_styles(self):
        emu = make()
        emu.feed(b"\x1b[4:3mA\x1b[4:0mB")
        snap = emu.snapshot()
        assert snap.cell(0, 0).underline
        assert not snap.cell(0, 1).underline

    def test_underline_color_dropped(self):
        assert normalize_sequences(b"\x1b[58:2::1:2:3m") == b""
        assert normalize_sequences(b"\x1b[1;58:5:3m") == b"\x1b[1m"

    def test_nothing_to_rewrite_is_untouched(self):
        data = b"plain \x1b[1;31mred\x1b[0m"
        assert normalize_sequences(data) == data


class TestColorNames:
    @pytest.mark.parametrize(
        "name,expected",
        [
            ("default", TermColor()),
            ("red", TermColor.indexed(1)),
            ("brown", TermColor.indexed(3)),
            ("brightred", TermColor.indexed(9)),
            ("brightwhite", TermColor.indexed(15)),
            ("ff8700", TermColor.rgb(255, 135, 0)),
            ("zzzzzz", TermColor()),
            ("3e70000", TermColor()),
        ],
    )
    def test_mapping(self, name, expected):
        assert color_from_pyte(name) == expected


class TestModesAndReports:
    def test_cursor_visibility(self):
        emu = make()
        emu.feed(b"\x1b[?25l")
        assert emu.snapshot().cursor_visible is False
        emu.feed(b"\x1b[?25h")
        assert emu.snapshot().cursor_visible is True

    def test_alternate_screen_restores_primary(self):
        emu = make()
        emu.feed(b"primary\x1b[?1049h")
        assert emu.alternate_screen
        assert emu.snapshot().text().strip() == ""
        emu.feed(b"\x1b[3;3Halt")
        emu.feed(b"\x1b[?1049l")
        assert not emu.alternate_screen
        assert lines(emu)[0] == "primary"
        assert emu.cursor == (0, 7)

    def test_alternate_screen_keeps_scrollback_untouched(self):
        emu = make(rows=2, cols=5)
        emu.feed(b"\x1b[?1049h1\r\n2\r\n3\r\n4")
        assert emu.scrollback_len == 0

    def test_column_mode_does_not_resize(self):
        emu = make()
        emu.feed(b"\x1b[?3h")
        assert (emu.rows, emu.cols) == (5, 10)

    def test_cursor_position_report(self):
        emu = make()
        emu.feed(b"\x1b[3;5H\x1b[6n")
        assert emu.take_replies() == b"\x1b[3;5R"
        assert emu.take_replies() == b""

    def test_device_status_report(self):
        emu = make()
        emu.feed(b"\x1b[5n")
        assert emu.take_replies() == b"\x1b[0n"

    def test_osc_title_bel_and_st(self):
        emu = make()
        emu.feed(b"\x1b]0;first\x07")
        assert emu.title == "first"
        emu.feed(b"\x1b]2;second\x1b\\")
        assert emu.snapshot().title == "second"

    def test_other_osc_ignored(self):
        emu = make()
        before = emu.generation
        emu.feed(b"\x1b]8;;https://example.com\x07")
        assert emu.generation == before
        assert emu.title == ""

    def test_full_reset(self):
        emu = make()
        emu.feed(b"\x1b[1mhello\x1bc")
        assert emu.snapshot().text().strip() == ""
        assert emu.cursor == (0, 0)


class TestMalformedInput:
    def test_unknown_csi_consumed(self):
        emu = make()
        emu.feed(b"\x1b[12;34zX")
        assert lines(emu)[0] == "X"

    def test_dcs_string_consumed(self):
        emu = make()
        emu.feed(b"\x1bPq#0;2;0;0;0\x1b\\X")
        assert lines(emu)[0] == "X"

    def test_dcs_string_split_across_feeds(self):
        emu = make()
        emu.feed(b"\x1bPq#0;2")
        emu.feed(b";0;0;0\x1b")
        emu.feed(b"\\X")
        assert lines(emu)[0] == "X"

    def test_csi_split_across_feeds(self):
        emu = make()
        emu.feed(b"\x1b[38:2:")
        emu.feed(b":1:2:3mX")
        assert emu.snapshot().cell(0, 0).fg == TermColor.rgb(1, 2, 3)

    def test_can_aborts_sequence(self):
        emu = make()
        emu.feed(b"\x1b[3\x18X")
        assert lines(emu)[0] == "X"

    def test_escape_aborts_csi_in_progress(self):
        emu = make()
        emu.feed(b"\x1b[12\x1b[2;2HX")
        assert emu.snapshot().cell(1, 1).char == "X"
        assert lines(emu)[0] == ""

    def test_huge_parameters_do_not_break_the_stream(self):
        emu = make()
        emu.feed(b"\x1b[" + b"9" * 50 + b";" * 100 + b"H")
        emu.feed(b"\x1b[HX")
        assert emu.snapshot().cell(0, 0).char == "X"
        row, col = emu.cursor
        assert 0 <= row < 5 and 0 <= col < 10

    def test_parser_error_is_logged_and_survived(self):
        messages = []
        emu = make(debug_logger=messages.append)
        emu.feed(b"keep")
        emu._stream.feed = Mock(side_effect=TypeError("bad params"))
        emu.feed(b"\x1b[1;2;3;4H")
        assert any("recovered" in m for m in messages)
        assert lines(emu)[0] == "keep"

    @pytest.mark.parametrize("seed", range(20))
    def test_fuzz_never_raises_and_stays_in_bounds(self, seed):
        rng = random.Random(seed)
        alphabet = b"\x1b[];:?<>0123456789;mHJKABCDrhlPXLSTsu@M\x07\x18\r\n\t\x08 abc\xe4\xb8\xad\xff"
        emu = make(rows=6, cols=12)
        for _ in range(50):
            chunk = bytes(rng.choice(alphabet) for _ in range(rng.randint(1, 64)))
            emu.feed(chunk)
            if rng.random() < 0.1:
                emu.resize(rng.randint(1, 10), rng.randint(1, 20))
            snap = emu.snapshot()
            assert len(snap.lines) == snap.rows == emu.rows
            assert all(len(row) == snap.cols for row in snap.lines)
            assert 0 <= snap.cursor_row < snap.rows
            assert 0 <= snap.cursor_col < snap.cols


class TestResize:
    def test_same_size_is_noop(self):
        emu = make()
        emu.feed(b"x")
        emu.resize(7, 12)
        generation = emu.generation
        emu.resize(7, 12)
        assert emu.generation == generation

    def test_invalid_size_rejected_without_change(self):
        emu = make()
        with pytest.raises(ValueError):
            emu.resize(0, 20)
        assert (emu.rows, emu.cols) == (5, 10)

    def test_grow_pads(self):
        emu = make(rows=2, cols=3)
        emu.feed(b"abc")
        emu.resize(4, 6)
        snap = emu.snapshot()
        assert (snap.rows, snap.cols) == (4, 6)
        assert lines(emu)[0] == "abc"

    def test_shrink_truncates_columns(self):
        emu = make(rows=2, cols=6)
        emu.feed(b"abcdef")
        emu.resize(2, 3)
        assert lines(emu)[0] == "abc"
        assert emu.cursor == (0, 2)

    def test_shrink_keeps_cursor_row_visible(self):
        emu = make(rows=5, cols=5)
        emu.feed(b"1\r\n2\r\n3\r\n4\r\n5")
        emu.resize(3, 5)
        assert lines(emu) == ["3", "4", "5"]
        assert emu.cursor == (2, 1)
        assert emu.scrollback_len == 2

    def test_shrink_with_cursor_at_top_keeps_top_rows(self):
        emu = make(rows=5, cols=5)
        emu.feed(b"1\r\n2\r\n3\x1b[H")
        emu.resize(3, 5)
        assert lines(emu) == ["1", "2", "3"]
        assert emu.scrollback_len == 0

    def test_shrink_splitting_wide_char_blanks_it(self):
        emu = make(rows=2, cols=4)
        emu.feed("a中".encode("utf-8"))
        emu.resize(2, 2)
        assert emu.snapshot().cell(0, 1).char == " "


class TestSnapshot:
    def test_unchanged_screen_returns_same_object(self):
        emu = make()
        emu.feed(b"abc")
        first = emu.snapshot()
        emu.feed(b"")
        assert emu.snapshot() is first

    def test_unchanged_rows_are_shared(self):
        emu = make()
        emu.feed(b"abc\r\ndef")
        first = emu.snapshot()
        emu.feed(b"g")
        second = emu.snapshot()
        assert second is not first
        assert second.lines[0] is first.lines[0]
        assert second.lines[1] is not first.lines[1]

    def test_generation_never_decreases(self):
        emu = make()
        seen = [emu.generation]
        for data in (b"a", b"\x1b[2J", b"\x1b[H", b"\r\n" * 10, b"\x1b[?1049h", b"\x1b[?1049l"):
            emu.feed(data)
            seen.append(emu.generation)
        assert seen == sorted(seen)
        assert seen[-1] > seen[0]
