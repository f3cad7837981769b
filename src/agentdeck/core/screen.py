"""Screen model types shared by the emulator and the renderer.

All of these are immutable so a snapshot can be handed to the UI without
copying: the emulator builds new rows when it mutates, the renderer only
ever reads.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterator, Optional, Tuple


class CellAttrs(enum.IntFlag):
    """Text attributes of a cell. Independent and combinable."""

    NONE = 0
    BOLD = 1
    ITALIC = 2
    UNDERLINE = 4
    INVERSE = 8


class ColorKind(enum.Enum):
    DEFAULT = "default"
    INDEXED = "indexed"
    RGB = "rgb"


@dataclass(frozen=True)
class TermColor:
    """A terminal color: the default color, a palette index or 24-bit RGB.

    Build instances with :meth:`indexed` and :meth:`rgb` rather than the
    constructor; :data:`DEFAULT_COLOR` is the shared default.
    """

    kind: ColorKind = ColorKind.DEFAULT
    value: Tuple[int, ...] = ()

    @classmethod
    def indexed(cls, index: int) -> "TermColor":
        if not 0 <= index <= 255:
            raise ValueError(f"palette index out of range: {index}")
        return cls(ColorKind.INDEXED, (index,))

    @classmethod
    def rgb(cls, r: int, g: int, b: int) -> "TermColor":
        for component in (r, g, b):
            if not 0 <= component <= 255:
                raise ValueError(f"rgb component out of range: {component}")
        return cls(ColorKind.RGB, (r, g, b))

    @property
    def is_default(self) -> bool:
        return self.kind is ColorKind.DEFAULT

    @property
    def index(self) -> Optional[int]:
        """Palette index, or None for non-indexed colors."""
        return self.value[0] if self.kind is ColorKind.INDEXED else None

    def __repr__(self) -> str:
        if self.kind is ColorKind.INDEXED:
            return f"TermColor.indexed({self.value[0]})"
        if self.kind is ColorKind.RGB:
            return "TermColor.rgb(%d, %d, %d)" % self.value
        return "TermColor.DEFAULT"


DEFAULT_COLOR = TermColor()


@dataclass(frozen=True)
class Cell:
    """One grid position.

    ``char`` is ``""`` for the right half of a double-width character and
    may hold a base character plus combining marks.
    """

    char: str = " "
    attrs: CellAttrs = CellAttrs.NONE
    fg: TermColor = DEFAULT_COLOR
    bg: TermColor = DEFAULT_COLOR

    @property
    def bold(self) -> bool:
        return bool(self.attrs & CellAttrs.BOLD)

    @property
    def italic(self) -> bool:
        return bool(self.attrs & CellAttrs.ITALIC)

    @property
    def underline(self) -> bool:
        return bool(self.attrs & CellAttrs.UNDERLINE)

    @property
    def inverse(self) -> bool:
        return bool(self.attrs & CellAttrs.INVERSE)

    def same_style(self, other: "Cell") -> bool:
        return self.attrs == other.attrs and self.fg == other.fg and self.bg == other.bg


BLANK_CELL = Cell()

Row = Tuple[Cell, ...]


@dataclass(frozen=True)
class ScreenSnapshot:
    """Immutable view of the emulator at one generation.

    ``lines`` always has exactly ``rows`` entries of exactly ``cols`` cells.
    ``scroll_top``/``scroll_bottom`` are 0-based and inclusive.
    """

    rows: int
    cols: int
    lines: Tuple[Row, ...]
    cursor_row: int
    cursor_col: int
    cursor_visible: bool
    scroll_top: int
    scroll_bottom: int
    generation: int
    title: str = ""
    scroll_offset: int = 0
    scrollback_len: int = 0

    @property
    def cursor(self) -> Tuple[int, int]:
        return (self.cursor_row, self.cursor_col)

    def cell(self, row: int, col: int) -> Cell:
        return self.lines[row][col]

    def row_text(self, row: int) -> str:
        """Characters of one row, fill cells included."""
        return "".join(cell.char for cell in self.lines[row])

    def iter_text(self) -> Iterator[str]:
        for row in range(self.rows):
            yield self.row_text(row)

    def text(self) -> str:
        """Whole screen as text, trailing blanks stripped from each row."""
        return "\n".join(line.rstrip() for line in self.iter_text())
