"""Session and terminal-emulation core.

Nothing in this package touches the UI: the dashboard polls
:class:`SessionManager` once per frame and renders the returned
snapshots.
"""

from ..errors import AgentDeckError, ChannelIOError, SpawnError
from .managed_session import ManagedSession, PumpResult, SessionState
from .pty_channel import PtyChannel
from .screen import Cell, CellAttrs, ScreenSnapshot, TermColor
from .session_manager import SessionManager, TickResult
from .term_emulator import TerminalEmulator

__all__ = [
    "AgentDeckError",
    "ChannelIOError",
    "SpawnError",
    "ManagedSession",
    "PumpResult",
    "SessionState",
    "PtyChannel",
    "Cell",
    "CellAttrs",
    "ScreenSnapshot",
    "TermColor",
    "SessionManager",
    "TickResult",
    "TerminalEmulator",
]
