"""VT100/xterm emulation backed by pyte.

pyte does the parsing and keeps the character buffer; this module adapts
it to the dashboard: an immutable :class:`ScreenSnapshot` per generation,
capped scrollback with a view offset, an alternate screen, and the replies
(cursor position reports and the like) the child expects back.

DIMENSION ORDERING:
- Everything here uses (rows, cols) = (HEIGHT, WIDTH), same as the PTY
  winsize struct.
- pyte.HistoryScreen(columns, lines) is (WIDTH, HEIGHT) and
  Screen.resize(lines, columns) is (HEIGHT, WIDTH). Always pass keywords.
"""

from __future__ import annotations

import re
from collections import defaultdict
from dataclasses import replace
from functools import lru_cache
from itertools import islice
from typing import Callable, Dict, List, Optional, Tuple

import pyte
import wcwidth
from pyte import modes as mo
from pyte.screens import Margins

from .screen import (
    DEFAULT_COLOR,
    Cell,
    CellAttrs,
    Row,
    ScreenSnapshot,
    TermColor,
)


DEFAULT_SCROLLBACK = 10000
# Longest incomplete escape sequence held back between feeds.
MAX_HELD_BYTES = 65536

# Private mode numbers as pyte sees them (shifted by 5 bits).
ALTERNATE_MODES = frozenset(mode << 5 for mode in (47, 1047, 1049))
SAVE_CURSOR_ALTERNATE = 1049 << 5

# A CSI cut short by the next ESC.
_ABORTED_CSI = re.compile(rb"\x1b\[[0-9;:<=>?]*(?=\x1b)")
# DCS, SOS, PM and APC strings. pyte would draw their payload as text.
_STRING_SEQUENCE = re.compile(rb"\x1b[P^_X][^\x1b\x07]*(?:\x1b\\|\x07)")
# CSI with a <, = or > marker: modifyOtherKeys, kitty keyboard, DA2.
_EXTENDED_CSI = re.compile(rb"\x1b\[[<=>][0-9;:]*[ -/]*[@-~]")
# SGR using ITU colon sub-parameters (38:2::r:g:b, 4:3).
_COLON_SGR = re.compile(rb"\x1b\[([0-9;]*:[0-9;:]*)m")
_INCOMPLETE_TAIL = re.compile(rb"\x1b(?:\[[0-9;:<=>?]*|[P^_X][^\x1b\x07]*\x1b?)?\Z")

_NAMED_COLORS: Dict[str, int] = {
    "black": 0,
    "red": 1,
    "green": 2,
    "brown": 3,
    "yellow": 3,
    "blue": 4,
    "magenta": 5,
    "cyan": 6,
    "white": 7,
}


def check_size(rows: int, cols: int) -> None:
    if rows < 1 or cols < 1:
        raise ValueError(f"terminal size must be positive, got {rows}x{cols}")


@lru_cache(maxsize=1024)
def color_from_pyte(name: str) -> TermColor:
    """Map a pyte color (a name like ``"brightred"`` or ``"ff8700"``) to a TermColor."""
    if not name or name == "default":
        return DEFAULT_COLOR
    bright = name.startswith("bright")
    base = name[len("bright"):] if bright else name
    if base in _NAMED_COLORS:
        return TermColor.indexed(_NAMED_COLORS[base] + (8 if bright else 0))
    if len(name) == 6:
        try:
            value = int(name, 16)
        except ValueError:
            return DEFAULT_COLOR
        return TermColor.rgb(value >> 16, (value >> 8) & 0xFF, value & 0xFF)
    return DEFAULT_COLOR


@lru_cache(maxsize=8192)
def _cell(char) -> Cell:
    attrs = CellAttrs.NONE
    if char.bold:
        attrs |= CellAttrs.BOLD
    if char.italics:
        attrs |= CellAttrs.ITALIC
    if char.underscore:
        attrs |= CellAttrs.UNDERLINE
    if char.reverse:
        attrs |= CellAttrs.INVERSE
    return Cell(char.data, attrs, color_from_pyte(char.fg), color_from_pyte(char.bg))


def _is_wide(text: str) -> bool:
    return bool(text) and wcwidth.wcwidth(text[0]) == 2


def _flatten_sgr_group(group: bytes) -> Optional[bytes]:
    if b":" not in group:
        return group
    parts = group.split(b":")
    head = parts[0]
    if head in (b"38", b"48") and len(parts) >= 3:
        if parts[1] == b"5":
            return b";".join((head, b"5", parts[2] or b"0"))
        if parts[1] == b"2":
            # 38:2:<colorspace>:r:g:b, or 38:2:r:g:b without the colorspace.
            rgb = parts[3:6] if len(parts) >= 6 else parts[2:5]
            if len(rgb) == 3:
                return b";".join([head, b"2"] + [c or b"0" for c in rgb])
        return None
    if head == b"4":
        return b"24" if parts[1] in (b"0", b"") else b"4"
    if head == b"58":
        return None
    return head or None


def _rewrite_colon_sgr(match) -> bytes:
    groups = [_flatten_sgr_group(g) for g in match.group(1).split(b";")]
    kept = [g for g in groups if g is not None]
    if not kept:
        return b""
    return b"\x1b[" + b";".join(kept) + b"m"


def normalize_sequences(data: bytes) -> bytes:
    """Rewrite or drop sequences pyte cannot parse, before it sees them."""
    if b"\x1b" not in data:
        return data
    data = _ABORTED_CSI.sub(b"", data)
    data = _STRING_SEQUENCE.sub(b"", data)
    data = _EXTENDED_CSI.sub(b"", data)
    return _COLON_SGR.sub(_rewrite_colon_sgr, data)


class _DeckStream(pyte.ByteStream):
    """ByteStream with NEL as CR+LF, ANSI.SYS cursor save/restore, and SU/SD."""

    escape = dict(pyte.ByteStream.escape, E="next_line")

    csi = dict(
        pyte.ByteStream.csi,
        s="save_cursor_ansi",
        u="restore_cursor_ansi",
        S="scroll_up",
        T="scroll_down",
    )


class _DeckScreen(pyte.HistoryScreen):
    """HistoryScreen with an alternate buffer, DSR replies and stable sizing."""

    def __init__(self, columns: int, lines: int, history: int) -> None:
        self.title = ""
        self.replies = bytearray()
        self.primary_buffer = None
        super().__init__(columns, lines, history=history, ratio=0.5)

    @property
    def alternate(self) -> bool:
        return self.primary_buffer is not None

    def write_process_input(self, data: str) -> None:
        self.replies.extend(data.encode("utf-8"))

    def set_title(self, param: str) -> None:
        self.title = param

    def reset(self) -> None:
        self.primary_buffer = None
        super().reset()

    def index(self) -> None:
        # Only lines leaving a full-height scroll region of the primary
        # screen become history.
        top, bottom = self.margins or Margins(0, self.lines - 1)
        if self.cursor.y == bottom and top == 0 and not self.alternate:
            self.history.top.append(self.buffer[top])
        pyte.Screen.index(self)

    def erase_in_display(self, how: int = 0, *args, **kwargs) -> None:
        if how == 3:
            self.history.top.clear()
            return
        super().erase_in_display(how, *args, **kwargs)

    def set_mode(self, *modes, **kwargs) -> None:
        if kwargs.get("private"):
            shifted = {mode << 5 for mode in modes}
            if shifted & ALTERNATE_MODES:
                self._enter_alternate(SAVE_CURSOR_ALTERNATE in shifted)
            # DECCOLM would resize pyte to 132 columns behind the PTY's back.
            modes = tuple(m for m in modes if m << 5 not in ALTERNATE_MODES and m != 3)
            if not modes:
                return
        super().set_mode(*modes, **kwargs)

    def reset_mode(self, *modes, **kwargs) -> None:
        if kwargs.get("private"):
            shifted = {mode << 5 for mode in modes}
            if shifted & ALTERNATE_MODES:
                self._exit_alternate(SAVE_CURSOR_ALTERNATE in shifted)
            modes = tuple(m for m in modes if m << 5 not in ALTERNATE_MODES and m != 3)
            if not modes:
                return
        super().reset_mode(*modes, **kwargs)

    def _enter_alternate(self, save_cursor: bool) -> None:
        if self.alternate:
            return
        if save_cursor:
            self.save_cursor()
        self.primary_buffer = self.buffer
        self.buffer = defaultdict(self.primary_buffer.default_factory)
        self.dirty.update(range(self.lines))

    def _exit_alternate(self, restore_cursor: bool) -> None:
        if not self.alternate:
            return
        self.buffer = self.primary_buffer
        self.primary_buffer = None
        if restore_cursor:
            self.restore_cursor()
        self.dirty.update(range(self.lines))

    def save_cursor_ansi(self, *args, **kwargs) -> None:
        if not kwargs.get("private"):
            self.save_cursor()

    def restore_cursor_ansi(self, *args, **kwargs) -> None:
        if not kwargs.get("private"):
            self.restore_cursor()

    def next_line(self) -> None:
        self.carriage_return()
        self.linefeed()

    def scroll_up(self, count: int = 1, *args, **kwargs) -> None:
        top, bottom = self.margins or Margins(0, self.lines - 1)
        row = self.cursor.y
        self.cursor.y = bottom
        for _ in range(max(count, 1)):
            self.index()
        self.cursor.y = row

    def scroll_down(self, count: int = 1, *args, **kwargs) -> None:
        top, bottom = self.margins or Margins(0, self.lines - 1)
        row = self.cursor.y
        self.cursor.y = top
        for _ in range(max(count, 1)):
            self.reverse_index()
        self.cursor.y = row

    def resize(self, lines: Optional[int] = None, columns: Optional[int] = None) -> None:
        """Resize keeping the cursor row on screen.

        pyte drops rows from the top whatever the cursor position; here the
        screen only shifts up as far as needed to keep the cursor visible,
        and the rows shifted out go to history.
        """
        lines = lines or self.lines
        columns = columns or self.columns
        old_columns = self.columns
        if lines < self.lines:
            shift = max(0, self.cursor.y - (lines - 1))
            if shift:
                if not self.alternate:
                    for y in range(shift):
                        self.history.top.append(self.buffer[y])
                for y in range(self.lines):
                    if y + shift < self.lines:
                        self.buffer[y] = self.buffer[y + shift]
                    else:
                        self.buffer.pop(y, None)
                self.cursor.y -= shift
            for y in range(lines, self.lines):
                self.buffer.pop(y, None)
            self.lines = lines
        super().resize(lines=lines, columns=columns)
        if columns > old_columns:
            self.tabstops.update(x for x in range(8, columns, 8) if x >= old_columns)
        self.margins = None
        self.cursor.y = min(self.cursor.y, lines - 1)
        self.cursor.x = min(self.cursor.x, columns - 1)
        self.dirty.update(range(lines))


class TerminalEmulator:
    """Interpret a terminal byte stream into a ``rows`` x ``cols`` grid.

    ``feed`` never raises: a sequence pyte chokes on is logged, the parser
    is reset and the screen keeps its content. ``generation`` increases
    whenever anything visible changed.
    """

    def __init__(
        self,
        rows: int = 24,
        cols: int = 80,
        scrollback_limit: int = DEFAULT_SCROLLBACK,
        debug_logger: Optional[Callable[[str], None]] = None,
    ) -> None:
        check_size(rows, cols)
        self._debug_logger = debug_logger
        # pyte.HistoryScreen(columns, lines) - note the order!
        self._screen = _DeckScreen(columns=cols, lines=rows, history=max(0, scrollback_limit))
        self._stream = _DeckStream(self._screen)
        self._pending = b""
        self._generation = 0
        self._row_cache: List[Optional[Row]] = [None] * rows
        self._snapshot: Optional[ScreenSnapshot] = None
        self._snapshot_key: Optional[Tuple[int, int]] = None
        self._screen.dirty.clear()

    @property
    def rows(self) -> int:
        return self._screen.lines

    @property
    def cols(self) -> int:
        return self._screen.columns

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def cursor(self) -> Tuple[int, int]:
        """(row, col); a cursor parked past the last column reports the last column."""
        screen = self._screen
        return (min(screen.cursor.y, screen.lines - 1), min(screen.cursor.x, screen.columns - 1))

    @property
    def cursor_visible(self) -> bool:
        return mo.DECTCEM in self._screen.mode

    @property
    def title(self) -> str:
        return self._screen.title

    @property
    def scrollback_len(self) -> int:
        return len(self._screen.history.top)

    @property
    def alternate_screen(self) -> bool:
        return self._screen.alternate

    def _visible_state(self) -> tuple:
        screen = self._screen
        return (
            self.cursor,
            self.cursor_visible,
            screen.title,
            len(screen.history.top),
            screen.alternate,
        )

    def feed(self, data) -> None:
        """Consume terminal output. Accepts bytes or str; never raises."""
        if isinstance(data, str):
            data = data.encode("utf-8", errors="replace")
        data = self._pending + data
        self._pending = b""
        tail = _INCOMPLETE_TAIL.search(data)
        if tail:
            held = data[tail.start():]
            data = data[: tail.start()]
            if len(held) <= MAX_HELD_BYTES:
                self._pending = held
            elif self._debug_logger:
                self._debug_logger(f"[emulator] dropped {len(held)} byte unterminated sequence")
        if not data:
            return

        before = self._visible_state()
        try:
            self._stream.feed(normalize_sequences(data))
        except Exception as exc:  # emulation has to survive any input
            if self._debug_logger:
                self._debug_logger(f"[emulator] recovered from {exc!r}")
            self._recover()
        self._commit(before)

    def _recover(self) -> None:
        screen = self._screen
        screen.cursor.y = max(0, min(screen.cursor.y, screen.lines - 1))
        screen.cursor.x = max(0, min(screen.cursor.x, screen.columns))
        screen.dirty.update(range(screen.lines))

    def _commit(self, before: tuple) -> None:
        dirty = self._screen.dirty
        if not dirty and self._visible_state() == before:
            return
        for row in dirty:
            if 0 <= row < len(self._row_cache):
                self._row_cache[row] = None
        dirty.clear()
        self._generation += 1

    def resize(self, rows: int, cols: int) -> None:
        """Resize the grid, keeping content best-effort and the cursor row visible."""
        check_size(rows, cols)
        if rows == self.rows and cols == self.cols:
            return
        # CRITICAL: pyte.Screen.resize(lines, columns) not (columns, lines)!
        self._screen.resize(lines=rows, columns=cols)
        self._screen.dirty.clear()
        self._row_cache = [None] * rows
        self._generation += 1
        if self._debug_logger:
            self._debug_logger(f"[emulator] resized to {rows}x{cols}")

    def _convert(self, line) -> Row:
        cols = self.cols
        cells = [_cell(line[x]) for x in range(cols)]
        for x, cell in enumerate(cells):
            if cell.char == "":
                # A stub whose wide character was overwritten.
                if x == 0 or not _is_wide(cells[x - 1].char):
                    cells[x] = replace(cell, char=" ")
            elif _is_wide(cell.char) and (x + 1 >= cols or cells[x + 1].char != ""):
                # Half a wide character does not fit; draw it as a blank.
                cells[x] = replace(cell, char=" ")
        return tuple(cells)

    def _live_rows(self) -> Tuple[Row, ...]:
        buffer = self._screen.buffer
        cache = self._row_cache
        for y, cached in enumerate(cache):
            if cached is None:
                cache[y] = self._convert(buffer[y])
        return tuple(cache)

    def snapshot(self, scroll_offset: int = 0) -> ScreenSnapshot:
        """Immutable view of the screen, ``scroll_offset`` lines back in history.

        Returns the same object until the generation (or offset) changes.
        """
        screen = self._screen
        history = screen.history.top
        offset = 0 if screen.alternate else max(0, min(scroll_offset, len(history)))
        key = (self._generation, offset)
        if self._snapshot is not None and self._snapshot_key == key:
            return self._snapshot

        rows = self.rows
        lines = self._live_rows()
        if offset:
            start = len(history) - offset
            older = tuple(
                self._convert(line)
                for line in islice(history, start, start + min(offset, rows))
            )
            lines = (older + lines)[:rows]

        top, bottom = screen.margins or Margins(0, rows - 1)
        cursor_row, cursor_col = self.cursor
        self._snapshot = ScreenSnapshot(
            rows=rows,
            cols=self.cols,
            lines=lines,
            cursor_row=cursor_row,
            cursor_col=cursor_col,
            cursor_visible=self.cursor_visible and offset == 0,
            scroll_top=top,
            scroll_bottom=bottom,
            generation=self._generation,
            title=screen.title,
            scroll_offset=offset,
            scrollback_len=len(history),
        )
        self._snapshot_key = key
        return self._snapshot

    def take_replies(self) -> bytes:
        """Pop the bytes the emulator owes the child (e.g. cursor reports)."""
        data = bytes(self._screen.replies)
        self._screen.replies.clear()
        return data
