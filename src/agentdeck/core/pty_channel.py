"""One pseudo-terminal, its child process and a background reader thread.

The reader thread is the only code in agentdeck that runs off the control
thread. It touches nothing but the PTY fd and a FIFO queue, so the
emulator grid never needs a lock:

    child --> pty master --> reader thread --> SimpleQueue --> try_recv()

DIMENSION ORDERING:
- PTY winsize struct is (rows, cols, xpixel, ypixel) = (HEIGHT, WIDTH).
  Every method here takes ``rows`` before ``cols`` to match it.
"""

from __future__ import annotations

import fcntl
import os
import pty
import queue
import select
import signal
import struct
import subprocess
import termios
import threading
from typing import Callable, Dict, Mapping, Optional, Sequence

from ..errors import ChannelIOError, SpawnError


READ_CHUNK_SIZE = 4096
POLL_INTERVAL = 0.05
TERMINAL_ENV = {"TERM": "xterm-256color", "COLORTERM": "truecolor"}


MAX_WINSIZE = 0xFFFF


def _check_winsize(rows: int, cols: int) -> None:
    if not (1 <= rows <= MAX_WINSIZE and 1 <= cols <= MAX_WINSIZE):
        raise ValueError(f"invalid terminal size {rows}x{cols}")


def _pack_winsize(rows: int, cols: int) -> bytes:
    return struct.pack("HHHH", rows, cols, 0, 0)


class PtyChannel:
    """Drive one interactive child process through a pseudo-terminal.

    Create instances with :meth:`spawn`. All methods except the reader
    loop are meant to be called from the control thread.
    """

    def __init__(
        self,
        process: subprocess.Popen,
        master_fd: int,
        command: Sequence[str],
        debug_logger: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.process = process
        self.master_fd: Optional[int] = master_fd
        self.command = list(command)
        self._debug_logger = debug_logger or (lambda msg: None)
        self._queue: "queue.SimpleQueue[bytes]" = queue.SimpleQueue()
        self._stop_event = threading.Event()
        self._exited = threading.Event()
        self._closed = False
        self._reader_thread = threading.Thread(
            target=self._reader_loop,
            name=f"pty-reader-{process.pid}",
            daemon=True,
        )
        self._reader_thread.start()

    @classmethod
    def spawn(
        cls,
        command: Sequence[str],
        cwd: str,
        rows: int,
        cols: int,
        env: Optional[Mapping[str, str]] = None,
        debug_logger: Optional[Callable[[str], None]] = None,
    ) -> "PtyChannel":
        """Open a PTY pair and start ``command`` on its subordinate side.

        Raises:
            SpawnError: the PTY could not be allocated, ``cwd`` does not
                exist or the executable could not be started.
        """
        if not command:
            raise SpawnError("empty command")
        try:
            _check_winsize(rows, cols)
        except ValueError as exc:
            raise SpawnError(str(exc)) from exc
        if not os.path.isdir(cwd):
            raise SpawnError(f"working directory does not exist: {cwd}")

        try:
            master_fd, slave_fd = pty.openpty()
        except OSError as exc:
            raise SpawnError(f"failed to allocate pseudo-terminal: {exc}") from exc

        # Size the pair before exec so the child never sees the 80x24 default.
        try:
            fcntl.ioctl(slave_fd, termios.TIOCSWINSZ, _pack_winsize(rows, cols))
        except OSError:
            pass

        child_env: Dict[str, str] = dict(os.environ)
        child_env.update(TERMINAL_ENV)
        child_env["LINES"] = str(rows)
        child_env["COLUMNS"] = str(cols)
        if env:
            child_env.update(env)

        try:
            process = subprocess.Popen(
                list(command),
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                cwd=cwd,
                env=child_env,
                start_new_session=True,
                close_fds=True,
            )
        except (OSError, ValueError) as exc:
            os.close(master_fd)
            os.close(slave_fd)
            raise SpawnError(f"failed to start {command[0]!r}: {exc}") from exc

        # Only the child keeps the subordinate side open; EOF/EIO on the
        # master then means the child (and its descendants) went away.
        os.close(slave_fd)
        channel = cls(process, master_fd, command, debug_logger=debug_logger)
        channel._debug_logger(f"spawned pid={process.pid} cmd={' '.join(command)} cwd={cwd} size={rows}x{cols}")
        return channel

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def exit_code(self) -> Optional[int]:
        """Exit status once the child has been reaped, else None."""
        return self.process.poll()

    def _reader_loop(self) -> None:
        fd = self.master_fd
        try:
            while fd is not None and not self._stop_event.is_set():
                try:
                    ready, _, _ = select.select([fd], [], [], POLL_INTERVAL)
                except (OSError, ValueError):
                    break
                if fd not in ready:
                    continue
                try:
                    data = os.read(fd, READ_CHUNK_SIZE)
                except OSError:
                    # EIO on Linux once the last subordinate fd closes.
                    break
                if not data:
                    break
                self._queue.put(data)
        finally:
            self._exited.set()

    def try_recv(self) -> Optional[bytes]:
        """Next buffered chunk, or None when nothing is waiting. Never blocks."""
        try:
            return self._queue.get_nowait()
        except queue.Empty:
            return None

    def is_alive(self) -> bool:
        """True while the reader thread is still draining the PTY."""
        return not self._exited.is_set()

    def is_closed(self) -> bool:
        """True once the reader has stopped and every chunk was delivered."""
        # Order matters: the reader enqueues before it flags the exit.
        return self._exited.is_set() and self._queue.empty()

    def write(self, data) -> None:
        """Write keystrokes (bytes or str) to the child."""
        if isinstance(data, str):
            data = data.encode("utf-8")
        fd = self._live_fd()
        view = memoryview(data)
        try:
            while view:
                written = os.write(fd, view)
                view = view[written:]
        except OSError as exc:
            raise ChannelIOError(f"write failed: {exc}") from exc

    def resize(self, rows: int, cols: int) -> None:
        """Set the PTY winsize and notify the child with SIGWINCH.

        Raises:
            ValueError: the size does not fit the winsize struct
            ChannelIOError: the channel is closed or the ioctl failed
        """
        _check_winsize(rows, cols)
        fd = self._live_fd()
        try:
            fcntl.ioctl(fd, termios.TIOCSWINSZ, _pack_winsize(rows, cols))
        except OSError as exc:
            raise ChannelIOError(f"resize failed: {exc}") from exc
        try:
            self.process.send_signal(signal.SIGWINCH)
        except OSError:
            pass

    def get_winsize(self) -> Optional[tuple[int, int]]:
        """Current PTY winsize as (rows, cols), or None once closed."""
        if self.master_fd is None:
            return None
        try:
            data = fcntl.ioctl(self.master_fd, termios.TIOCGWINSZ, _pack_winsize(0, 0))
        except OSError:
            return None
        rows, cols, _, _ = struct.unpack("HHHH", data)
        return rows, cols

    def _live_fd(self) -> int:
        if self._closed or self.master_fd is None or self._exited.is_set():
            raise ChannelIOError("channel is closed")
        return self.master_fd

    def close(self, timeout: float = 0.5) -> None:
        """Stop the reader, terminate and reap the child. Idempotent.

        Blocks for at most roughly ``timeout`` plus a short kill grace.
        """
        if self._closed:
            return
        self._closed = True
        self._stop_event.set()

        if self.process.poll() is None:
            self._signal_group(signal.SIGHUP)

        self._reader_thread.join(timeout=timeout)

        if self.master_fd is not None:
            try:
                os.close(self.master_fd)
            except OSError:
                pass
            self.master_fd = None

        try:
            self.process.wait(timeout=0.1)
        except subprocess.TimeoutExpired:
            self._signal_group(signal.SIGKILL)
            try:
                self.process.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                self._debug_logger(f"pid={self.pid} did not exit after SIGKILL")
        self._debug_logger(f"closed pid={self.pid} exit_code={self.process.returncode}")

    def _signal_group(self, sig: int) -> None:
        # start_new_session makes the child a group leader; reach its children too.
        try:
            os.killpg(self.process.pid, sig)
        except (ProcessLookupError, PermissionError):
            try:
                self.process.send_signal(sig)
            except OSError:
                pass
