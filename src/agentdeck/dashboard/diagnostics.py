"""Diagnostics and troubleshooting snapshot generation.

Collects version information, pane assignments, per-session terminal
state and recent logs into one text report that can be exported to a
file and attached to a bug report.
"""

from __future__ import annotations

from collections import deque
from datetime import datetime, timezone
from importlib import metadata
from pathlib import Path
from typing import Callable, Deque, Dict, List, Optional, Set, TYPE_CHECKING

from ..errors import AgentDeckError

if TYPE_CHECKING:
    from ..core.session_manager import SessionManager
    from .log_manager import LogManager
    from .pane_cache import PaneStateCache


TRACKED_PACKAGES = ("agentdeck", "textual", "rich", "wcwidth", "typer")
MAX_KEY_EVENTS = 100


def gather_version_info(packages=TRACKED_PACKAGES) -> Dict[str, str]:
    """Installed version of each package, or "unknown" when not installed."""
    versions: Dict[str, str] = {}
    for name in packages:
        try:
            versions[name] = metadata.version(name)
        except metadata.PackageNotFoundError:
            versions[name] = "unknown"
    return versions


class DiagnosticsManager:
    """Manages diagnostic snapshot generation and export.

    Responsibilities:
    - Generate troubleshooting snapshots
    - Record recent key events
    - Export snapshots to files
    """

    def __init__(
        self,
        session_manager: SessionManager,
        pane_cache: PaneStateCache,
        log_manager: LogManager,
        version_info: Optional[Dict[str, str]] = None,
        get_app_state: Optional[Callable[[], Dict[str, object]]] = None,
    ) -> None:
        """Initialize diagnostics manager.

        Args:
            session_manager: Source of per-session state
            pane_cache: Pane to session assignments
            log_manager: LogManager instance for log access
            version_info: Package versions; gathered lazily when omitted
            get_app_state: Callback returning extra app state (focused pane, etc.)
        """
        self.session_manager = session_manager
        self.pane_cache = pane_cache
        self.log_manager = log_manager
        self.version_info = version_info
        self.get_app_state = get_app_state or dict
        self.key_events: Deque[str] = deque(maxlen=MAX_KEY_EVENTS)

    def record_key_event(self, key: str, character: Optional[str], modifiers: Set[str]) -> None:
        mods = "+".join(sorted(modifiers)) if modifiers else ""
        char_repr = repr(character) if character else "None"
        self.key_events.append(f"{key} char={char_repr} mods={mods}")

    def generate_snapshot(self) -> str:
        """Generate a complete troubleshooting snapshot.

        Returns:
            Formatted snapshot text
        """
        if self.version_info is None:
            self.version_info = gather_version_info()
        lines: List[str] = []

        lines.append(f"timestamp: {datetime.now(timezone.utc).isoformat()}")
        lines.append("versions:")
        for name, version in self.version_info.items():
            lines.append(f"  {name}: {version}")

        for key, value in self.get_app_state().items():
            lines.append(f"{key}: {value}")

        lines.append("panes:")
        for slot, entry in self.pane_cache.panes.items():
            lines.append(f"  {slot.name.lower()}: {entry.session_id or '(empty)'}")

        lines.append("sessions:")
        for session_id in self.session_manager.session_ids():
            lines.extend(self._session_lines(session_id))

        for category in ("events", "errors", "debug", "output"):
            lines.append(f"---- recent {category} ----")
            lines.append(self._recent_log_text(category))

        if self.key_events:
            lines.append("---- recent key events ----")
            lines.extend(list(self.key_events)[-20:])

        return "\n".join(lines)

    def _session_lines(self, session_id: str) -> List[str]:
        state = self.session_manager.get_session_state(session_id)
        session = self.session_manager.get_session(session_id)
        if state is None or session is None:
            return []
        winsize = session.channel.get_winsize()
        winsize_str = f"{winsize[0]}x{winsize[1]}" if winsize else "n/a"
        lines = [
            f"  - {session_id}: cmd={' '.join(state.command)} cwd={state.cwd}",
            f"    emu={state.rows}x{state.cols} pty={winsize_str} gen={state.generation} "
            f"alive={state.alive} ended={state.ended}",
            f"    scrollback={state.scrollback_len} offset={state.scroll_offset} "
            f"locked={state.scroll_locked} resume={state.resume_id or '-'}",
        ]
        if state.screen.title:
            lines.append(f"    title={state.screen.title!r}")
        screen_text = state.screen.text().strip()
        if screen_text:
            lines.append("    screen_tail:")
            for row in screen_text.splitlines()[-5:]:
                lines.append("      " + row)
        return lines

    def update_troubleshooting_log(self) -> str:
        """Generate a snapshot and make it the troubleshooting log's content."""
        snapshot = self.generate_snapshot()
        self.log_manager.clear("troubleshooting")
        self.log_manager.add("troubleshooting", snapshot)
        return snapshot

    def export_to_file(self, target_dir: Path) -> Path:
        """Export a troubleshooting snapshot to ``target_dir``.

        Raises:
            AgentDeckError: the file could not be written
        """
        snapshot = self.update_troubleshooting_log()
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        target_file = Path(target_dir) / f"troubleshooting_pack_{timestamp}.txt"
        try:
            target_file.parent.mkdir(parents=True, exist_ok=True)
            target_file.write_text(snapshot, encoding="utf-8")
        except OSError as exc:
            raise AgentDeckError(f"Could not write {target_file}: {exc}") from exc
        return target_file

    def _recent_log_text(self, category: str, limit: int = 50) -> str:
        recent = self.log_manager.lines(category, limit)
        if not recent:
            return f"(no {category})"
        return "\n".join(recent)
