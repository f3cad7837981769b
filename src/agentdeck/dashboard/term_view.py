from __future__ import annotations

from functools import lru_cache
from typing import Callable, Dict, Iterable, Optional, Set

from rich.color import Color
from rich.style import Style
from rich.text import Text
from textual.events import Key
from textual.widgets import Static

from ..core.screen import Cell, CellAttrs, ColorKind, ScreenSnapshot, TermColor


SIMPLE_KEYS: Dict[str, bytes] = {
    "enter": b"\r",
    "return": b"\r",
    "backspace": b"\x7f",
    "tab": b"\t",
    "escape": b"\x1b",
}

# Final byte of CSI cursor keys; with modifiers they become CSI 1;<m><final>.
CURSOR_KEYS = {"up": "A", "down": "B", "right": "C", "left": "D", "home": "H", "end": "F"}

# CSI <n>~ editing and function keys.
TILDE_KEYS = {
    "insert": 2,
    "delete": 3,
    "pageup": 5,
    "pagedown": 6,
    "f5": 15,
    "f6": 17,
    "f7": 18,
    "f8": 19,
    "f9": 20,
    "f10": 21,
    "f11": 23,
    "f12": 24,
}

SS3_KEYS = {"f1": "P", "f2": "Q", "f3": "R", "f4": "S"}

CTRL_SYMBOLS = {
    "space": b"\x00",
    "@": b"\x00",
    "left_square_bracket": b"\x1b",
    "[": b"\x1b",
    "backslash": b"\x1c",
    "\\": b"\x1c",
    "right_square_bracket": b"\x1d",
    "]": b"\x1d",
    "circumflex_accent": b"\x1e",
    "^": b"\x1e",
    "underscore": b"\x1f",
    "_": b"\x1f",
}

SCROLL_KEYS = ("pageup", "pagedown", "home", "end")
WHEEL_LINES = 3


def _split_key(key: str, modifiers: Iterable[str] = ()) -> "tuple[str, Set[str]]":
    parts = (key or "").lower().split("+")
    mods = {m for m in parts[:-1] if m}
    mods.update(m.lower() for m in modifiers)
    return parts[-1], mods


def key_to_bytes(
    key: str,
    character: Optional[str] = None,
    modifiers: Iterable[str] = (),
) -> Optional[bytes]:
    """Translate a Textual key event into the bytes an xterm would send.

    Returns None for keys with no terminal encoding.
    """
    base, mods = _split_key(key, modifiers)
    ctrl = "ctrl" in mods
    alt = "alt" in mods or "meta" in mods
    shift = "shift" in mods
    # xterm modifier parameter: 1 + shift(1) + alt(2) + ctrl(4)
    mod_param = 1 + (1 if shift else 0) + (2 if alt else 0) + (4 if ctrl else 0)

    if base == "tab" and shift:
        return b"\x1b[Z"
    if base in SIMPLE_KEYS:
        seq = SIMPLE_KEYS[base]
        if base == "backspace" and ctrl:
            seq = b"\x08"
        return b"\x1b" + seq if alt else seq
    if base in CURSOR_KEYS:
        final = CURSOR_KEYS[base]
        if mod_param == 1:
            return f"\x1b[{final}".encode()
        return f"\x1b[1;{mod_param}{final}".encode()
    if base in TILDE_KEYS:
        code = TILDE_KEYS[base]
        if mod_param == 1:
            return f"\x1b[{code}~".encode()
        return f"\x1b[{code};{mod_param}~".encode()
    if base in SS3_KEYS:
        final = SS3_KEYS[base]
        if mod_param == 1:
            return f"\x1bO{final}".encode()
        return f"\x1b[1;{mod_param}{final}".encode()

    if ctrl:
        if len(base) == 1 and base.isalpha():
            seq = bytes([ord(base.upper()) & 0x1F])
        else:
            seq = CTRL_SYMBOLS.get(base)
        if seq is None:
            return None
        return b"\x1b" + seq if alt else seq

    text: Optional[str] = None
    if character and len(character) == 1 and character.isprintable():
        text = character
    elif base == "space":
        text = " "
    elif len(base) == 1:
        text = base.upper() if shift else base
    if text is None:
        return None
    data = text.encode("utf-8")
    return b"\x1b" + data if alt else data


def _rich_color(color: TermColor) -> Optional[Color]:
    if color.kind is ColorKind.INDEXED:
        return Color.from_ansi(color.value[0])
    if color.kind is ColorKind.RGB:
        r, g, b = color.value
        return Color.from_rgb(r, g, b)
    return None


@lru_cache(maxsize=4096)
def cell_style(attrs: CellAttrs, fg: TermColor, bg: TermColor, cursor: bool = False) -> Style:
    """Rich style for one cell; the cursor is drawn by flipping reverse video."""
    reverse = bool(attrs & CellAttrs.INVERSE) != cursor
    return Style(
        color=_rich_color(fg),
        bgcolor=_rich_color(bg),
        bold=bool(attrs & CellAttrs.BOLD) or None,
        italic=bool(attrs & CellAttrs.ITALIC) or None,
        underline=bool(attrs & CellAttrs.UNDERLINE) or None,
        reverse=reverse or None,
    )


def _style_of(cell: Cell, cursor: bool = False) -> Style:
    return cell_style(cell.attrs, cell.fg, cell.bg, cursor)


def render_snapshot(snapshot: ScreenSnapshot, show_cursor: bool = True) -> Text:
    """Convert a snapshot into rich Text, one line per row.

    Adjacent cells with the same style become one span. The trailing half
    of a wide character contributes nothing: rich measures the wide glyph
    as two columns already.
    """
    text = Text(no_wrap=True, overflow="crop", end="")
    draw_cursor = show_cursor and snapshot.cursor_visible
    for row_index, row in enumerate(snapshot.lines):
        if row_index:
            text.append("\n")
        cursor_col = snapshot.cursor_col if draw_cursor and row_index == snapshot.cursor_row else -1
        run: list = []
        run_style: Optional[Style] = None
        for col, cell in enumerate(row):
            if cell.char == "":
                continue
            style = _style_of(cell, cursor=col == cursor_col)
            if style != run_style and run:
                text.append("".join(run), run_style)
                run = []
            run_style = style
            run.append(cell.char)
        if run:
            text.append("".join(run), run_style)
    return text


class TermView(Static):
    """Focusable terminal pane that forwards keystrokes to a writer.

    The app sets a writer callback that receives raw bytes destined for
    the session shown in this pane, and a navigator for scrollback.
    """

    can_focus = True

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._writer: Optional[Callable[[bytes], None]] = None
        self._navigator: Optional[Callable[[str, int], bool]] = None
        self._on_focus_callback: Optional[Callable[[], None]] = None
        self._size_listener: Optional[Callable[[], None]] = None
        self._key_logger: Optional[Callable[[str, Optional[str], Set[str]], None]] = None

    def set_writer(self, writer: Optional[Callable[[bytes], None]]) -> None:
        self._writer = writer

    def set_navigator(self, handler: Optional[Callable[[str, int], bool]]) -> None:
        """Set navigator handler; it returns True if it handled the action.

        action in {'pageup','pagedown','home','end','wheel'}; amount is
        lines, negative meaning towards older output.
        """
        self._navigator = handler

    def set_on_focus(self, callback: Callable[[], None]) -> None:
        self._on_focus_callback = callback

    def set_size_listener(self, callback: Callable[[], None]) -> None:
        """Set callback invoked when the widget is resized."""
        self._size_listener = callback

    def set_key_logger(self, callback: Callable[[str, Optional[str], Set[str]], None]) -> None:
        self._key_logger = callback

    def show_snapshot(self, snapshot: ScreenSnapshot) -> None:
        self.update(render_snapshot(snapshot, show_cursor=self.has_focus))

    def on_focus(self) -> None:
        self.add_class("has-focus")
        if self._on_focus_callback:
            self._on_focus_callback()

    def on_blur(self) -> None:
        self.remove_class("has-focus")

    def on_resize(self, event) -> None:
        if self._size_listener:
            self._size_listener()

    # --- Key handling -------------------------------------------------

    def on_key(self, event: Key) -> None:
        key = event.key or ""
        character = getattr(event, "character", None)
        base, mods = _split_key(key, getattr(event, "modifiers", None) or ())

        if self._key_logger:
            self._key_logger(base, character, mods)

        # Scrollback with Ctrl+PageUp/PageDown/Home/End
        if self._navigator and "ctrl" in mods and base in SCROLL_KEYS:
            amount = {"pageup": -self._page_lines(), "pagedown": self._page_lines()}.get(base, 0)
            if self._navigator(base, amount):
                event.stop()
                return

        if not self._writer:
            return
        data = key_to_bytes(key, character, getattr(event, "modifiers", None) or ())
        if data is not None:
            self._writer(data)
            event.stop()

    def _page_lines(self) -> int:
        return max(1, self.content_size.height - 1) if self.is_mounted else 20

    def on_mouse_scroll_up(self, event) -> None:
        if self._navigator and self._navigator("wheel", -WHEEL_LINES):
            event.stop()

    def on_mouse_scroll_down(self, event) -> None:
        if self._navigator and self._navigator("wheel", WHEEL_LINES):
            event.stop()
