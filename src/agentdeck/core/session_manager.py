"""Registry of live sessions, polled by the UI once per frame.

Lifecycle of a session:

    open() --> pumped by every tick() --> child exits
        --> tick N reports it terminated (still queryable, ``ended`` set)
        --> tick N+1 evicts it (reader stopped, child reaped)

``close()`` skips the grace tick and tears the session down at once.
"""

from __future__ import annotations

import itertools
import os
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Sequence

from ..config import DeckConfig
from ..errors import AgentDeckError
from .managed_session import ManagedSession, PumpResult, SessionState
from .pty_channel import PtyChannel
from .term_emulator import TerminalEmulator


ChannelFactory = Callable[[Sequence[str], str, int, int], PtyChannel]


@dataclass
class TickResult:
    """What changed during one ``tick()``."""

    updated: List[str] = field(default_factory=list)
    terminated: List[str] = field(default_factory=list)
    evicted: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.updated or self.terminated or self.evicted)


class SessionManager:
    """Owns every :class:`ManagedSession`, keyed by session id.

    Responsibilities:
    - Spawn and tear down sessions
    - Pump PTY output into emulators once per frame
    - Keep a precomputed :class:`SessionState` per session for O(1) queries
    - Broadcast resizes
    """

    def __init__(
        self,
        config: Optional[DeckConfig] = None,
        channel_factory: Optional[ChannelFactory] = None,
        debug_logger: Optional[Callable[[str], None]] = None,
    ) -> None:
        """Initialize the manager.

        Args:
            config: Settings for spawned sessions (command, scrollback, read cap)
            channel_factory: Callable(command, cwd, rows, cols) returning a
                channel; defaults to :meth:`PtyChannel.spawn`
            debug_logger: Optional callback for debug messages
        """
        self.config = config or DeckConfig()
        self._debug_logger = debug_logger or (lambda msg: None)
        self._channel_factory = channel_factory or self._spawn_pty
        self._sessions: Dict[str, ManagedSession] = {}
        self._states: Dict[str, SessionState] = {}
        self._ending: List[str] = []
        self._ids = itertools.count()

    def _spawn_pty(self, command: Sequence[str], cwd: str, rows: int, cols: int) -> PtyChannel:
        return PtyChannel.spawn(command, cwd, rows, cols, debug_logger=self._debug_logger)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._sessions))

    def session_ids(self) -> List[str]:
        return list(self._sessions)

    def open(
        self,
        command: Optional[Sequence[str]] = None,
        cwd: str = ".",
        rows: Optional[int] = None,
        cols: Optional[int] = None,
        resume_id: Optional[str] = None,
    ) -> str:
        """Spawn a session and register it.

        Args:
            command: Command to run; None uses the configured assistant
            cwd: Working directory (the project path)
            rows: Height in rows
            cols: Width in columns
            resume_id: Assistant conversation to resume

        Returns:
            The new session id

        Raises:
            SpawnError: the child could not be started; nothing is registered
        """
        rows = rows or self.config.default_rows
        cols = cols or self.config.default_cols
        argv = list(command) if command else self.config.build_command(resume_id)
        cwd = os.path.abspath(os.path.expanduser(cwd))

        channel = self._channel_factory(argv, cwd, rows, cols)
        session_id = f"session-{next(self._ids)}"
        emulator = TerminalEmulator(
            rows=rows,
            cols=cols,
            scrollback_limit=self.config.scrollback_lines,
        )
        session = ManagedSession(
            session_id,
            channel,
            emulator,
            command=argv,
            cwd=cwd,
            resume_id=resume_id,
            max_reads=self.config.max_reads_per_pump,
            debug_logger=self._debug_logger,
        )
        self._sessions[session_id] = session
        self._refresh(session)
        self._debug_logger(f"Opened {session_id}: {' '.join(argv)} in {cwd} ({rows}x{cols})")
        return session_id

    def close(self, session_id: str) -> bool:
        """Remove and tear down a session.

        Unknown or already-evicted ids are a no-op: a session can exit on
        its own while a close request is in flight.

        Returns:
            True if a session was removed
        """
        session = self._sessions.pop(session_id, None)
        self._states.pop(session_id, None)
        if session_id in self._ending:
            self._ending.remove(session_id)
        if session is None:
            return False
        session.close()
        self._debug_logger(f"Closed {session_id}")
        return True

    def shutdown(self) -> None:
        """Close every session (application exit)."""
        for session_id in list(self._sessions):
            self.close(session_id)

    def tick(self) -> TickResult:
        """Advance every session by one frame.

        Sessions that terminated on the previous tick are evicted first;
        sessions terminating now stay queryable until the next tick so
        their last frame can still be drawn. TERMINATED is only reported
        once the channel queue is empty, so that frame already holds every
        byte the child wrote.
        """
        result = TickResult()

        for session_id in self._ending:
            session = self._sessions.pop(session_id, None)
            self._states.pop(session_id, None)
            if session is None:
                continue
            session.close()
            result.evicted.append(session_id)
            self._debug_logger(f"Evicted {session_id}")
        self._ending = []

        for session_id, session in self._sessions.items():
            outcome = session.pump()
            if outcome is PumpResult.TERMINATED:
                session.ended = True
                self._ending.append(session_id)
                result.terminated.append(session_id)
                self._refresh(session)
            elif outcome is PumpResult.UPDATED:
                result.updated.append(session_id)
                self._refresh(session)
        return result

    def get_session_state(self, session_id: str) -> Optional[SessionState]:
        """Precomputed state for a session, or None. Never touches the PTY."""
        return self._states.get(session_id)

    def get_session(self, session_id: str) -> Optional[ManagedSession]:
        return self._sessions.get(session_id)

    def find_by_resume_id(self, resume_id: str) -> Optional[str]:
        """Id of a running session that resumed ``resume_id``, if any."""
        for session_id, session in self._sessions.items():
            if session.resume_id == resume_id and not session.ended:
                return session_id
        return None

    def write_input(self, session_id: str, data) -> bool:
        """Send keystrokes to a session.

        Returns:
            False for an unknown session id

        Raises:
            ChannelIOError: the session's child has already exited
        """
        session = self._sessions.get(session_id)
        if session is None:
            return False
        session.write_input(data)
        return True

    def resize(self, session_id: str, rows: int, cols: int) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        session.resize(rows, cols)
        self._refresh(session)
        return True

    def resize_all(self, rows: int, cols: int) -> None:
        """Resize every session; a failing session does not stop the others."""
        for session_id, session in self._sessions.items():
            try:
                session.resize(rows, cols)
            except (AgentDeckError, ValueError) as exc:
                self._debug_logger(f"Resize of {session_id} to {rows}x{cols} failed: {exc}")
                continue
            self._refresh(session)

    def scroll_up(self, session_id: str, lines: int) -> bool:
        return self._scroll(session_id, lambda s: s.scroll_up(lines))

    def scroll_down(self, session_id: str, lines: int) -> bool:
        return self._scroll(session_id, lambda s: s.scroll_down(lines))

    def scroll_to_bottom(self, session_id: str) -> bool:
        return self._scroll(session_id, lambda s: s.scroll_to_bottom())

    def _scroll(self, session_id: str, action: Callable[[ManagedSession], None]) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        action(session)
        self._refresh(session)
        return True

    def _refresh(self, session: ManagedSession) -> None:
        self._states[session.session_id] = session.state()
