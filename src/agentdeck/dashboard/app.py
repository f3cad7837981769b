"""Textual dashboard running assistant sessions side by side.

Goals:
- Keep each pane behaving like a standalone terminal running the CLI
- Poll the session core once per frame and redraw only what changed
- Keep all PTY and emulator work on the event loop thread; reader
  threads only ever fill queues
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

from rich.text import Text
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal
from textual.timer import Timer
from textual.widgets import Footer, Static

from ..config import DeckConfig, config_dir
from ..core.session_manager import ChannelFactory, SessionManager, TickResult
from ..errors import AgentDeckError, ChannelIOError, SpawnError
from .diagnostics import DiagnosticsManager, gather_version_info
from .log_manager import LogManager
from .pane_cache import PaneSlot, PaneStateCache
from .term_view import TermView


PANE_IDS = {PaneSlot.PRIMARY: "pane-primary", PaneSlot.SECONDARY: "pane-secondary"}


class DeckApp(App):
    TITLE = "agentdeck"

    CSS = """
    #status {
        height: 1;
        padding: 0 1;
        background: $panel;
    }
    #panes {
        height: 1fr;
    }
    TermView {
        width: 1fr;
        height: 1fr;
        border: round $panel-lighten-2;
    }
    TermView.has-focus {
        border: round $accent;
    }
    """

    BINDINGS = [
        Binding("ctrl+n", "open_session", "New session", priority=True),
        Binding("ctrl+w", "close_session", "Close session", priority=True),
        Binding("ctrl+o", "switch_pane", "Switch pane", priority=True),
        Binding("f12", "export_diagnostics", "Diagnostics", priority=True),
        Binding("ctrl+q", "quit", "Quit", priority=True),
    ]

    def __init__(
        self,
        project_path: str = ".",
        config: Optional[DeckConfig] = None,
        resume_id: Optional[str] = None,
        autostart: bool = True,
        channel_factory: Optional[ChannelFactory] = None,
        diagnostics_dir: Optional[Path] = None,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.project_path = project_path
        self.config = config or DeckConfig()
        self.resume_id = resume_id
        self.autostart = autostart
        self.diagnostics_dir = Path(diagnostics_dir) if diagnostics_dir else config_dir() / "trouble-snaps"

        self.log_manager = LogManager()
        self._debug_logger = self.log_manager.logger("debug")
        self.manager = SessionManager(
            config=self.config,
            channel_factory=channel_factory,
            debug_logger=self._debug_logger,
        )
        self.pane_cache = PaneStateCache()
        self.diagnostics = DiagnosticsManager(
            session_manager=self.manager,
            pane_cache=self.pane_cache,
            log_manager=self.log_manager,
            get_app_state=self._get_app_state_for_diagnostics,
        )

        self.focused_slot: PaneSlot = PaneSlot.PRIMARY
        self.status_message: str = ""
        self._views: Dict[PaneSlot, TermView] = {}
        self._frame_timer: Optional[Timer] = None
        self._version_info: Dict[str, str] = {}

    def compose(self) -> ComposeResult:
        self.status_line = Static("", id="status")
        yield self.status_line
        with Horizontal(id="panes"):
            for slot in PaneSlot:
                view = TermView(id=PANE_IDS[slot])
                self._views[slot] = view
                yield view
        yield Footer()

    def on_mount(self) -> None:
        self._version_info = gather_version_info()
        self.diagnostics.version_info = self._version_info
        for slot, view in self._views.items():
            view.set_writer(lambda data, s=slot: self._write_to_pane(s, data))
            view.set_navigator(lambda action, amount, s=slot: self._on_navigate(s, action, amount))
            view.set_size_listener(lambda s=slot: self._on_pane_resized(s))
            view.set_on_focus(lambda s=slot: self._on_pane_focused(s))
            view.set_key_logger(self._record_key_event)
            self._render_pane(slot)
        self._views[self.focused_slot].focus()
        self._frame_timer = self.set_interval(self.config.frame_interval, self._on_frame)
        if self.autostart:
            self.call_after_refresh(self._autostart)
        self._update_status_line()

    def on_unmount(self) -> None:
        self.manager.shutdown()

    def _autostart(self) -> None:
        self._open_in(self.focused_slot, resume_id=self.resume_id)

    # --- Frame loop -----------------------------------------------------

    def _on_frame(self) -> None:
        result = self.manager.tick()
        self._log_tick(result)
        for slot in self.pane_cache.refresh(self.manager):
            self._render_pane(slot)
        if result.terminated or result.evicted:
            self._update_status_line()

    def _log_tick(self, result: TickResult) -> None:
        for session_id in result.terminated:
            session = self.manager.get_session(session_id)
            code = session.channel.exit_code if session is not None else None
            self._log_action(f"{session_id} exited (code {code})")
        for session_id in result.evicted:
            self._debug_logger(f"{session_id} evicted")

    def _render_pane(self, slot: PaneSlot) -> None:
        view = self._views[slot]
        state = self.pane_cache.state(slot)
        if state is None:
            view.update(Text("No session. Press ctrl+n to open one.", style="dim"))
            view.border_title = slot.name.lower()
            view.border_subtitle = ""
        else:
            view.show_snapshot(state.screen)
            view.border_title = state.screen.title or f"{state.session_id}: {' '.join(state.command[:1])}"
            if state.ended:
                view.border_subtitle = "ended"
            elif state.scroll_offset:
                view.border_subtitle = f"scrollback -{state.scroll_offset}/{state.scrollback_len}"
            else:
                view.border_subtitle = ""
        self.pane_cache.mark_rendered(slot)

    # --- Sessions -------------------------------------------------------

    def _open_in(self, slot: PaneSlot, resume_id: Optional[str] = None) -> Optional[str]:
        if resume_id:
            existing = self.manager.find_by_resume_id(resume_id)
            if existing is not None:
                self.pane_cache.assign(slot, existing)
                self._set_status(f"Showing {existing} (already resumed {resume_id})")
                return existing

        rows, cols = self._pane_size(slot)
        try:
            session_id = self.manager.open(
                cwd=self.project_path,
                rows=rows,
                cols=cols,
                resume_id=resume_id,
            )
        except SpawnError as exc:
            self.log_manager.add("errors", f"Open failed: {exc}")
            self._log_action(f"Open failed: {exc}")
            self._set_status(f"Open failed: {exc}")
            return None

        self.pane_cache.assign(slot, session_id)
        self.pane_cache.refresh(self.manager)
        self._render_pane(slot)
        self._log_action(f"Opened {session_id} in {slot.name.lower()} pane ({rows}x{cols})")
        self._set_status(f"Opened {session_id}")
        return session_id

    def _pane_size(self, slot: PaneSlot) -> "tuple[int, int]":
        region = self._views[slot].content_region
        if region.width <= 0 or region.height <= 0:
            return self.config.default_rows, self.config.default_cols
        return region.height, region.width

    def _write_to_pane(self, slot: PaneSlot, data: bytes) -> None:
        session_id = self.pane_cache.session_id(slot)
        if session_id is None:
            return
        try:
            self.manager.write_input(session_id, data)
        except ChannelIOError as exc:
            self.log_manager.add("errors", f"[{session_id}] input dropped: {exc}")

    def _on_navigate(self, slot: PaneSlot, action: str, amount: int) -> bool:
        session_id = self.pane_cache.session_id(slot)
        state = self.pane_cache.state(slot)
        if session_id is None or state is None:
            return False
        if action in ("wheel", "pageup", "pagedown"):
            if amount < 0:
                self.manager.scroll_up(session_id, -amount)
            else:
                self.manager.scroll_down(session_id, amount)
        elif action == "home":
            self.manager.scroll_up(session_id, state.scrollback_len)
        elif action == "end":
            self.manager.scroll_to_bottom(session_id)
        else:
            return False
        for dirty in self.pane_cache.refresh(self.manager):
            self._render_pane(dirty)
        return True

    def _on_pane_resized(self, slot: PaneSlot) -> None:
        region = self._views[slot].content_region
        rows, cols = region.height, region.width
        if rows <= 0 or cols <= 0:
            return
        self.manager.resize_all(rows, cols)
        for dirty in self.pane_cache.refresh(self.manager):
            self._render_pane(dirty)

    def _on_pane_focused(self, slot: PaneSlot) -> None:
        previous = self.focused_slot
        self.focused_slot = slot
        # The cursor is only drawn in the focused pane.
        self.pane_cache.invalidate(previous)
        self.pane_cache.invalidate(slot)
        self._render_pane(previous)
        self._render_pane(slot)
        self._update_status_line()

    # --- Actions --------------------------------------------------------

    def action_open_session(self) -> None:
        slot = self.focused_slot
        if self.pane_cache.session_id(slot) is not None:
            free = self.pane_cache.free_slot()
            if free is None:
                self._set_status("Both panes are busy; close one with ctrl+w first")
                return
            slot = free
        if self._open_in(slot) is not None:
            self._views[slot].focus()

    def action_close_session(self) -> None:
        session_id = self.pane_cache.release(self.focused_slot)
        if session_id is None:
            self._set_status("No session in this pane")
            return
        self.manager.close(session_id)
        self._render_pane(self.focused_slot)
        self._log_action(f"Closed {session_id}")
        self._set_status(f"Closed {session_id}")

    def action_switch_pane(self) -> None:
        slots = list(PaneSlot)
        target = slots[(slots.index(self.focused_slot) + 1) % len(slots)]
        self._views[target].focus()

    def action_export_diagnostics(self) -> None:
        try:
            path = self.diagnostics.export_to_file(self.diagnostics_dir)
        except AgentDeckError as exc:
            self.log_manager.add("errors", str(exc))
            self._set_status("Troubleshooting pack export failed")
            return
        self._log_action(f"Troubleshooting pack saved -> {path}")
        self._set_status(f"Saved {path}")

    # --- Status / logging -----------------------------------------------

    def _set_status(self, message: str) -> None:
        self.status_message = message
        self._update_status_line()

    def _update_status_line(self) -> None:
        status = getattr(self, "status_line", None)
        if status is None:
            return
        version = self._version_info.get("agentdeck", "dev")
        parts = [
            f"agentdeck {version}",
            f"project {self.project_path}",
            f"sessions {len(self.manager)}",
            f"focus {self.focused_slot.name.lower()}",
        ]
        if self.status_message:
            parts.append(self.status_message)
        status.update("  |  ".join(parts))

    def _log_action(self, message: str) -> None:
        self.log_manager.add("events", message)

    def _record_key_event(self, key: str, character: Optional[str], modifiers: set) -> None:
        self.diagnostics.record_key_event(key, character, modifiers)

    def _get_app_state_for_diagnostics(self) -> Dict[str, object]:
        return {
            "project": self.project_path,
            "focused_pane": self.focused_slot.name.lower(),
            "status": self.status_message or "(none)",
        }
