"""A PTY channel coupled to its terminal emulator."""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from ..errors import ChannelIOError
from .pty_channel import PtyChannel
from .screen import ScreenSnapshot
from .term_emulator import TerminalEmulator, check_size


# Cap on chunks fed per pump() so one chatty session cannot stall a frame.
MAX_READS_PER_PUMP = 64


class PumpResult(enum.Enum):
    IDLE = "idle"
    UPDATED = "updated"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class SessionState:
    """Everything the UI needs to draw one session, computed ahead of time."""

    session_id: str
    alive: bool
    ended: bool
    rows: int
    cols: int
    screen: ScreenSnapshot
    scroll_offset: int
    scroll_locked: bool
    scrollback_len: int
    command: Tuple[str, ...]
    cwd: str
    resume_id: Optional[str]
    last_activity: float

    @property
    def generation(self) -> int:
        return self.screen.generation


class ManagedSession:
    """Owns exactly one :class:`PtyChannel` and one :class:`TerminalEmulator`.

    Only the control thread calls into a session; the channel's reader
    thread never sees the emulator.
    """

    def __init__(
        self,
        session_id: str,
        channel: PtyChannel,
        emulator: TerminalEmulator,
        command: List[str],
        cwd: str,
        resume_id: Optional[str] = None,
        max_reads: int = MAX_READS_PER_PUMP,
        debug_logger: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.session_id = session_id
        self.channel = channel
        self.emulator = emulator
        self.command = list(command)
        self.cwd = cwd
        self.resume_id = resume_id
        self.max_reads = max(1, max_reads)
        self.last_activity = time.monotonic()
        self.alive = True
        self.ended = False
        self.scroll_offset = 0
        self.scroll_locked = False
        self._debug_logger = debug_logger or (lambda msg: None)

    def pump(self) -> PumpResult:
        """Feed newly arrived output to the emulator.

        Returns TERMINATED once the child is gone and its output has been
        fully drained; later calls keep returning TERMINATED.
        """
        if not self.alive:
            return PumpResult.TERMINATED

        reads = self._drain(self.max_reads)
        if reads < self.max_reads and self.channel.is_closed():
            self.alive = False
            self._debug_logger(
                f"[{self.session_id}] process exited (code {self.channel.exit_code})"
            )
            return PumpResult.TERMINATED
        return PumpResult.UPDATED if reads else PumpResult.IDLE

    def flush(self) -> bool:
        """Drain everything still buffered, ignoring the per-pump cap."""
        total = 0
        while True:
            reads = self._drain(self.max_reads)
            total += reads
            if reads < self.max_reads:
                return total > 0

    def _drain(self, limit: int) -> int:
        reads = 0
        while reads < limit:
            chunk = self.channel.try_recv()
            if chunk is None:
                break
            self.emulator.feed(chunk)
            reads += 1
        if reads:
            self.last_activity = time.monotonic()
            self._answer_queries()
            if not self.scroll_locked:
                self.scroll_offset = 0
        return reads

    def _answer_queries(self) -> None:
        # Cursor position reports and the like; the child may block on them.
        replies = self.emulator.take_replies()
        if not replies:
            return
        try:
            self.channel.write(replies)
        except ChannelIOError as exc:
            self._debug_logger(f"[{self.session_id}] dropped terminal reply: {exc}")

    def write_input(self, data) -> None:
        """Forward keystrokes to the child. Raises ChannelIOError after exit."""
        self.channel.write(data)

    def resize(self, rows: int, cols: int) -> None:
        """Resize the PTY, then the emulator.

        The child redraws for the new geometry as soon as it gets SIGWINCH,
        so the channel goes first; if it fails the emulator keeps its size.
        An invalid size is rejected before either is touched.
        """
        check_size(rows, cols)
        if (rows, cols) == (self.emulator.rows, self.emulator.cols):
            return
        self.channel.resize(rows, cols)
        self.emulator.resize(rows, cols)
        self.scroll_offset = min(self.scroll_offset, self.emulator.scrollback_len)

    def scroll_up(self, lines: int) -> None:
        self.scroll_offset = min(self.scroll_offset + lines, self.emulator.scrollback_len)
        if self.scroll_offset > 0:
            self.scroll_locked = True

    def scroll_down(self, lines: int) -> None:
        self.scroll_offset = max(0, self.scroll_offset - lines)
        if self.scroll_offset == 0:
            self.scroll_locked = False

    def scroll_to_bottom(self) -> None:
        self.scroll_offset = 0
        self.scroll_locked = False

    def state(self) -> SessionState:
        screen = self.emulator.snapshot(self.scroll_offset)
        return SessionState(
            session_id=self.session_id,
            alive=self.alive,
            ended=self.ended,
            rows=self.emulator.rows,
            cols=self.emulator.cols,
            screen=screen,
            scroll_offset=screen.scroll_offset,
            scroll_locked=self.scroll_locked,
            scrollback_len=screen.scrollback_len,
            command=tuple(self.command),
            cwd=self.cwd,
            resume_id=self.resume_id,
            last_activity=self.last_activity,
        )

    def close(self) -> None:
        """Tear down the channel: stop the reader and reap the child."""
        self.alive = False
        self.channel.close()
